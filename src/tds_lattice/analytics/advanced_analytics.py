"""
Aggregated per-step instrumentation.

Feeds one lattice observation per step into the Welford statistics, the
drift monitor, the mode tracker, the metrics collector and the simulation
log, and keeps a bounded table of panel values for CSV export.
"""

import csv
import io
from collections import deque
from dataclasses import dataclass
from typing import Optional

from ..config import AnalyticsConfig
from ..lattice import Lattice
from .drift_monitor import DriftMonitor
from .metrics_collector import MetricsCollector
from .mode_amplitude import ModeAmplitudeTracker
from .online_statistics import OnlineStatistics
from .simulation_log import SimulationLog

STATS_COLUMNS = ["t", "rho", "drift_mean", "drift_max", "Akx_rms"]


@dataclass(frozen=True)
class StatsPanelData:
    rho: float
    drift_mean: float
    drift_max: float
    rms_akx: float


class AdvancedAnalytics:

    def __init__(self, lattice: Lattice, config: Optional[AnalyticsConfig] = None):
        self.config = config or AnalyticsConfig()
        self.statistics = OnlineStatistics()
        self.drift = DriftMonitor.from_lattice(lattice)
        self.modes = ModeAmplitudeTracker(lattice.nx, kx=self.config.kx, window=self.config.rms_window)
        self.log = SimulationLog(max_entries=self.config.max_log_entries)
        self.metrics = MetricsCollector.from_config(self.config)
        self._rows: deque[tuple] = deque(maxlen=self.config.max_log_entries)

    def update(self, lattice: Lattice, t: int) -> StatsPanelData:
        totals = lattice.total_energy()
        self.statistics.update(totals.e_sym, totals.e_asym)
        self.drift.update(lattice)
        a_kx = self.modes.update(lattice)
        self.log.append(t, totals.e_0, totals.e_sym, totals.e_asym, a_kx)
        self.metrics.collect(lattice, t)

        panel = self.get_stats_panel_data()
        self._rows.append((t, panel.rho, panel.drift_mean, panel.drift_max, panel.rms_akx))
        return panel

    def get_stats_panel_data(self) -> StatsPanelData:
        return StatsPanelData(
            rho=self.statistics.correlation,
            drift_mean=self.drift.mean,
            drift_max=self.drift.max,
            rms_akx=self.modes.rms(),
        )

    def export_stats_to_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(STATS_COLUMNS)
        writer.writerows(self._rows)
        return buffer.getvalue()

    def export_log_to_csv(self) -> str:
        return self.log.to_csv()

    def set_kx(self, kx: int) -> None:
        self.modes.set_kx(kx)

    def apply_config(self, config: AnalyticsConfig) -> None:
        if config.kx != self.modes.kx:
            self.modes.set_kx(config.kx)
        if config.rms_window != self.modes.window:
            self.modes.set_window(config.rms_window)
        if config.metrics_max_points != self.metrics.max_points:
            self.metrics.set_capacity(config.metrics_max_points)
        self.metrics.sampling_interval = config.metrics_sampling_interval
        self.metrics.detect_events = config.detect_events
        self.config = config

    def reset_drift_reference(self, lattice: Lattice) -> None:
        self.drift.set_reference(DriftMonitor.measure_e0(lattice))

    def reset(self, lattice: Optional[Lattice] = None) -> None:
        """Clear all series; with a lattice, also re-capture the drift reference."""
        self.statistics.reset()
        self.modes.reset()
        self.log.clear()
        self.metrics.reset()
        self._rows.clear()
        if lattice is not None:
            self.reset_drift_reference(lattice)
        else:
            self.drift.reset()
