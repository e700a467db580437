"""
Per-step metric time series with trend, correlation and event detection.

Each recorded sample holds lattice-wide energy figures, the vacuum
(symmetry) ratio, class entropy, phase coherence and anomaly counts. Series
keep the most recent ``max_points`` samples; summary statistics cover every
sample since the last reset.

Events:
    energy_spike     |z-score| of total energy above threshold (after 10 samples)
    symmetry_change  vacuum ratio moved by more than threshold since last sample
    anomaly_burst    more than threshold new anomalous nodes since last sample
    entropy_jump     class entropy moved by more than threshold bits
"""

import math
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np
import pandas as pd

from ..config import AnalyticsConfig
from ..lattice import Lattice
from ..physics import Physics
from ..utils.logger import Logger

METRIC_COLUMNS = [
    "t",
    "energy_total", "energy_mean", "energy_max", "energy_min",
    "symmetry_ratio", "count_vacuum", "count_broken", "anomalies",
    "entropy", "phase_coherence", "anomaly_density",
]

# Metrics with running summary statistics
SUMMARY_METRICS = ("energy_total", "symmetry_ratio", "entropy", "anomalies")

# Energy spikes are only judged once this many samples exist
MIN_SPIKE_SAMPLES = 10

TREND_SLOPE_THRESHOLD = 0.01


class EventType(Enum):
    ENERGY_SPIKE = "energy_spike"
    SYMMETRY_CHANGE = "symmetry_change"
    ANOMALY_BURST = "anomaly_burst"
    ENTROPY_JUMP = "entropy_jump"


@dataclass(frozen=True)
class EventThresholds:
    energy_spike: float = 2.0
    symmetry_change: float = 0.3
    anomaly_burst: int = 10
    entropy_jump: float = 0.5


@dataclass(frozen=True)
class MetricEvent:
    kind: EventType
    t: int
    severity: float
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class MetricSummary:
    mean: float
    variance: float
    std: float
    min: float
    max: float
    count: int


@dataclass(frozen=True)
class TrendAnalysis:
    """Least-squares trend over the last ``window`` samples; confidence is R^2."""
    trend: str
    slope: float
    confidence: float


class _Accumulator:

    def __init__(self):
        self.count = 0
        self.mean = 0.0
        self._m2 = 0.0
        self.min = math.inf
        self.max = -math.inf

    def update(self, value: float) -> None:
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self._m2 += delta * (value - self.mean)
        self.min = min(self.min, value)
        self.max = max(self.max, value)

    def summary(self) -> MetricSummary:
        if self.count == 0:
            return MetricSummary(mean=0.0, variance=0.0, std=0.0, min=0.0, max=0.0, count=0)
        # Population variance
        variance = self._m2 / self.count
        return MetricSummary(
            mean=self.mean,
            variance=variance,
            std=math.sqrt(variance),
            min=self.min,
            max=self.max,
            count=self.count,
        )


class MetricsCollector:
    """
    Records one metric sample every ``sampling_interval`` calls to ``collect``.

    Args:
        max_points: Capacity of each time series.
        sampling_interval: Record every n-th call; the others return None.
        detect_events: Run event detection on each recorded sample.
        thresholds: Event thresholds; defaults to ``EventThresholds()``.
        max_events: Capacity of the event log.
    """

    def __init__(
        self,
        max_points: int = 1000,
        sampling_interval: int = 1,
        detect_events: bool = True,
        thresholds: Optional[EventThresholds] = None,
        max_events: int = 100,
    ):
        if sampling_interval < 1:
            raise ValueError("sampling_interval must be >= 1")
        self.sampling_interval = sampling_interval
        self.detect_events = detect_events
        self.thresholds = thresholds or EventThresholds()
        self.series: dict[str, deque] = {name: deque(maxlen=max_points) for name in METRIC_COLUMNS}
        self.events: deque[MetricEvent] = deque(maxlen=max_events)
        self.call_count = 0
        self._accumulators = {name: _Accumulator() for name in SUMMARY_METRICS}
        self._last: Optional[dict] = None

    @classmethod
    def from_config(cls, config: AnalyticsConfig) -> "MetricsCollector":
        return cls(
            max_points=config.metrics_max_points,
            sampling_interval=config.metrics_sampling_interval,
            detect_events=config.detect_events,
        )

    def __len__(self) -> int:
        return len(self.series["t"])

    @property
    def max_points(self) -> int:
        return self.series["t"].maxlen

    def set_capacity(self, max_points: int) -> None:
        """Change series capacity, keeping the most recent samples."""
        self.series = {name: deque(values, maxlen=max_points) for name, values in self.series.items()}

    # -------------------------------------------------------------------------
    # Sampling
    # -------------------------------------------------------------------------

    @staticmethod
    def measure(lattice: Lattice, t: int) -> dict:
        """One sample of every metric in ``METRIC_COLUMNS``."""
        per_node = lattice.e_sym + lattice.e_asym
        stats = lattice.statistics()
        has_nodes = lattice.n_nodes > 0
        return {
            "t": t,
            "energy_total": lattice.total_energy().actual,
            "energy_mean": float(np.mean(per_node)) if has_nodes else 0.0,
            "energy_max": float(np.max(per_node)) if has_nodes else 0.0,
            "energy_min": float(np.min(per_node)) if has_nodes else 0.0,
            "symmetry_ratio": stats.symmetry_ratio,
            "count_vacuum": stats.count_vacuum,
            "count_broken": stats.count_broken,
            "anomalies": stats.count_anomalous,
            "entropy": Physics.entropy(lattice),
            "phase_coherence": stats.phase_coherence,
            "anomaly_density": stats.anomaly_density,
        }

    def collect(self, lattice: Lattice, t: int) -> Optional[dict]:
        """Record a sample on every ``sampling_interval``-th call."""
        self.call_count += 1
        if self.call_count % self.sampling_interval != 0:
            return None

        sample = self.measure(lattice, t)
        for name in METRIC_COLUMNS:
            self.series[name].append(sample[name])
        for name, accumulator in self._accumulators.items():
            accumulator.update(sample[name])

        if self.detect_events:
            self._detect_events(sample)
        self._last = sample
        return sample

    def _detect_events(self, sample: dict) -> None:
        t = sample["t"]
        thresholds = self.thresholds

        energy = self._accumulators["energy_total"].summary()
        if energy.count > MIN_SPIKE_SAMPLES:
            z_score = (sample["energy_total"] - energy.mean) / (energy.std or 1.0)
            if abs(z_score) > thresholds.energy_spike:
                self._add_event(EventType.ENERGY_SPIKE, t, abs(z_score),
                                energy=sample["energy_total"], mean=energy.mean, z_score=z_score)

        # Change-based events need a previous sample
        if self._last is None:
            return

        change = abs(sample["symmetry_ratio"] - self._last["symmetry_ratio"])
        if change > thresholds.symmetry_change:
            self._add_event(EventType.SYMMETRY_CHANGE, t, change,
                            old_ratio=self._last["symmetry_ratio"], new_ratio=sample["symmetry_ratio"])

        increase = sample["anomalies"] - self._last["anomalies"]
        if increase > thresholds.anomaly_burst:
            self._add_event(EventType.ANOMALY_BURST, t, increase / thresholds.anomaly_burst,
                            new_anomalies=increase, total_anomalies=sample["anomalies"])

        jump = abs(sample["entropy"] - self._last["entropy"])
        if jump > thresholds.entropy_jump:
            self._add_event(EventType.ENTROPY_JUMP, t, jump / thresholds.entropy_jump,
                            old_entropy=self._last["entropy"], new_entropy=sample["entropy"])

    def _add_event(self, kind: EventType, t: int, severity: float, **data) -> MetricEvent:
        event = MetricEvent(kind=kind, t=t, severity=float(severity), data=data)
        self.events.append(event)
        Logger.log(f"Metric event {kind.value} at t={t}: severity={severity:.3f}", Logger.LogPriority.INFO)
        return event

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_events(self, kind: Optional[EventType] = None) -> list[MetricEvent]:
        if kind is None:
            return list(self.events)
        return [e for e in self.events if e.kind == kind]

    def time_series(
        self, metric: str, start: Optional[float] = None, end: Optional[float] = None
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        (t, values) for one metric, optionally limited to ``start <= t <= end``.

        Raises:
            ValueError: Unknown metric name.
        """
        if metric not in self.series:
            raise ValueError(f"Unknown metric: {metric}")
        time = np.asarray(self.series["t"], dtype=np.float64)
        values = np.asarray(self.series[metric], dtype=np.float64)
        mask = np.ones(len(time), dtype=bool)
        if start is not None:
            mask &= time >= start
        if end is not None:
            mask &= time <= end
        return time[mask], values[mask]

    def moving_average(self, metric: str, window: int = 10) -> np.ndarray:
        """Trailing mean; the first entries average over what is available."""
        if window < 1:
            raise ValueError("window must be >= 1")
        _, values = self.time_series(metric)
        return pd.Series(values).rolling(window, min_periods=1).mean().to_numpy()

    def correlation(self, metric_a: str, metric_b: str) -> float:
        """Pearson correlation of two series; 0 when either is constant or empty."""
        _, a = self.time_series(metric_a)
        _, b = self.time_series(metric_b)
        n = min(len(a), len(b))
        if n == 0:
            return 0.0
        da = a[:n] - np.mean(a[:n])
        db = b[:n] - np.mean(b[:n])
        denominator = math.sqrt(float(np.dot(da, da)) * float(np.dot(db, db)))
        if denominator == 0:
            return 0.0
        return float(np.dot(da, db)) / denominator

    def detect_trend(self, metric: str, window: int = 50) -> TrendAnalysis:
        _, values = self.time_series(metric)
        if window < 2 or len(values) < window:
            return TrendAnalysis(trend="insufficient_data", slope=0.0, confidence=0.0)

        y = values[-window:]
        dx = np.arange(window, dtype=np.float64) - (window - 1) / 2.0
        dy = y - np.mean(y)
        slope = float(np.dot(dx, dy) / np.dot(dx, dx))

        residual = dy - slope * dx
        ss_tot = float(np.dot(dy, dy))
        confidence = 1.0 - float(np.dot(residual, residual)) / ss_tot if ss_tot > 0 else 0.0

        if abs(slope) > TREND_SLOPE_THRESHOLD:
            trend = "increasing" if slope > 0 else "decreasing"
        else:
            trend = "stable"
        return TrendAnalysis(trend=trend, slope=slope, confidence=confidence)

    def statistics(self) -> dict[str, MetricSummary]:
        return {name: accumulator.summary() for name, accumulator in self._accumulators.items()}

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({name: list(self.series[name]) for name in METRIC_COLUMNS}, columns=METRIC_COLUMNS)

    def reset(self) -> None:
        for values in self.series.values():
            values.clear()
        self.events.clear()
        self.call_count = 0
        self._accumulators = {name: _Accumulator() for name in SUMMARY_METRICS}
        self._last = None
