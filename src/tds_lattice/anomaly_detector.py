"""
Persistent-excitation detection.

Every node owns a fixed-size ring of its recent classifications and E_asym
values. The rings live in two (N, H) arrays sharing one cursor, so a scan is
a column write plus a few vectorized reductions.

State machine per node:

    VACUUM  <->  BROKEN  <->  ANOMALOUS

A node is promoted to ANOMALOUS once more than ``persistence_threshold`` of
its H-entry window is non-vacuum. The ratio is taken over the full window
capacity H, so a fresh detector needs more than threshold * H scans before it
can report anything. An anomalous node whose ratio drops back below the
threshold reverts to BROKEN, or VACUUM when its E_asym has vanished.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import numpy as np

from .config import AnomalyConfig
from .lattice import Lattice
from .node import HBAR, NodeState
from .utils.logger import Logger

# Direct omega estimate: OMEGA_BASE + OMEGA_SPAN * persistence_factor * energy_factor
OMEGA_BASE = 0.5
OMEGA_SPAN = 4.5


@dataclass(frozen=True)
class DetectedAnomaly:
    node_index: int
    coord: tuple[int, int, int]
    omega: float
    persistence: float
    scan_index: int
    timestamp: str

    @property
    def mass(self) -> float:
        return HBAR * self.omega


@dataclass
class AnomalyReport:
    """Outcome of one scan."""
    new_anomaly_ids: list[int] = field(default_factory=list)
    anomalies: list[DetectedAnomaly] = field(default_factory=list)
    density: float = 0.0


class AnomalyDetector:
    """
    Classifies lattice nodes from their recent history.

    Arrays are allocated on the first scan and re-allocated (history
    discarded) if a lattice with a different node count is scanned.
    """

    def __init__(self, config: Optional[AnomalyConfig] = None, max_detected: int = 1000):
        self.config = config or AnomalyConfig()
        self.history_depth = self.config.history_depth
        self.detected: deque[DetectedAnomaly] = deque(maxlen=max_detected)
        self.n_nodes = 0
        self._states = np.zeros((0, self.history_depth), dtype=np.int8)
        self._e_asym = np.zeros((0, self.history_depth), dtype=np.float64)
        self._cursor = 0
        self._count = 0
        self.scan_count = 0
        self.last_report = AnomalyReport()

    # -------------------------------------------------------------------------
    # History arena
    # -------------------------------------------------------------------------

    def _allocate(self, n_nodes: int) -> None:
        self.n_nodes = n_nodes
        self._states = np.zeros((n_nodes, self.history_depth), dtype=np.int8)
        self._e_asym = np.zeros((n_nodes, self.history_depth), dtype=np.float64)
        self._cursor = 0
        self._count = 0

    def _chronological_columns(self) -> np.ndarray:
        """Ring column indices, oldest first."""
        return (self._cursor - self._count + np.arange(self._count)) % self.history_depth

    def history(self, node_index: int) -> tuple[np.ndarray, np.ndarray]:
        """(states, e_asym) recorded for one node, oldest first."""
        columns = self._chronological_columns()
        return self._states[node_index, columns].copy(), self._e_asym[node_index, columns].copy()

    def persistence_ratio(self, node_index: int) -> float:
        if self.n_nodes == 0:
            return 0.0
        return float(np.count_nonzero(self._states[node_index] != NodeState.VACUUM)) / self.history_depth

    def _persistence_ratios(self) -> np.ndarray:
        return np.count_nonzero(self._states != NodeState.VACUUM, axis=1) / self.history_depth

    # -------------------------------------------------------------------------
    # Scan
    # -------------------------------------------------------------------------

    def scan(self, lattice: Lattice) -> AnomalyReport:
        """
        Record the current classification of every node and update states.

        Writes ``state`` and ``omega`` on the lattice; energies are untouched.
        """
        if lattice.n_nodes != self.n_nodes:
            self._allocate(lattice.n_nodes)

        vacuum = lattice.e_asym <= self.config.vacuum_epsilon
        raw = np.where(vacuum, NodeState.VACUUM, NodeState.BROKEN).astype(np.int8)
        was_anomalous = lattice.state == NodeState.ANOMALOUS
        pushed = np.where(was_anomalous & ~vacuum, NodeState.ANOMALOUS, raw).astype(np.int8)

        self._states[:, self._cursor] = pushed
        self._e_asym[:, self._cursor] = lattice.e_asym
        self._cursor = (self._cursor + 1) % self.history_depth
        self._count = min(self._count + 1, self.history_depth)
        self.scan_count += 1

        ratios = self._persistence_ratios()
        promoted = ratios > self.config.persistence_threshold

        reverted = np.flatnonzero(was_anomalous & ~promoted)
        if len(reverted):
            Logger.log(f"{len(reverted)} anomaly(ies) lost persistence and reverted", Logger.LogPriority.INFO)

        lattice.state[:] = np.where(promoted, NodeState.ANOMALOUS, raw)
        lattice.omega[~promoted] = 0.0

        timestamp = datetime.now().isoformat(timespec="milliseconds")
        new_ids = []
        anomalies = []
        for i in np.flatnonzero(promoted):
            i = int(i)
            omega = self.estimate_omega(i, float(lattice.e_0[i]))
            lattice.omega[i] = omega
            anomaly = DetectedAnomaly(
                node_index=i,
                coord=lattice.coord_of(i),
                omega=omega,
                persistence=float(ratios[i]),
                scan_index=self.scan_count,
                timestamp=timestamp,
            )
            anomalies.append(anomaly)
            if not was_anomalous[i]:
                new_ids.append(i)
                self.detected.append(anomaly)

        if new_ids:
            Logger.log(f"New anomalies at nodes {new_ids}", Logger.LogPriority.INFO)

        self.last_report = AnomalyReport(
            new_anomaly_ids=new_ids,
            anomalies=anomalies,
            density=len(anomalies) / lattice.n_nodes if lattice.n_nodes else 0.0,
        )
        return self.last_report

    # -------------------------------------------------------------------------
    # Frequency estimation
    # -------------------------------------------------------------------------

    def estimate_omega(self, node_index: int, e_0: float) -> float:
        """
        Internal frequency of a persistent node.

        With a full window and a non-flat E_asym signal, omega = 2*pi / period
        of the dominant rfft bin. Otherwise the direct estimate
        OMEGA_BASE + OMEGA_SPAN * persistence_factor * energy_factor is used.
        """
        states, series = self.history(node_index)

        if self._count == self.history_depth and np.ptp(series) > self.config.vacuum_epsilon:
            spectrum = np.abs(np.fft.rfft(series - series.mean()))
            spectrum[0] = 0.0
            k = int(np.argmax(spectrum))
            if k > 0:
                period = self.history_depth / k
                return 2.0 * np.pi / period

        return self._direct_omega(states, series, e_0)

    def _direct_omega(self, states: np.ndarray, series: np.ndarray, e_0: float) -> float:
        run = 0
        for value in states[::-1]:
            if value == NodeState.VACUUM:
                break
            run += 1
        persistence_factor = run / self.history_depth
        mean_asym = float(series.mean()) if len(series) else 0.0
        energy_factor = min(mean_asym / e_0, 1.0) if e_0 > 0 else 0.0
        return OMEGA_BASE + OMEGA_SPAN * persistence_factor * energy_factor

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def statistics(self) -> dict:
        anomalies = self.last_report.anomalies
        if not anomalies:
            return {"count": 0, "avg_omega": 0.0, "max_omega": 0.0, "min_omega": 0.0, "avg_mass": 0.0}
        omegas = [a.omega for a in anomalies]
        return {
            "count": len(anomalies),
            "avg_omega": sum(omegas) / len(omegas),
            "max_omega": max(omegas),
            "min_omega": min(omegas),
            "avg_mass": sum(a.mass for a in anomalies) / len(anomalies),
        }

    def reset(self) -> None:
        """Discard all history; the next scan starts from an empty window."""
        self._allocate(self.n_nodes)
        self.detected.clear()
        self.scan_count = 0
        self.last_report = AnomalyReport()

    def resize(self, history_depth: int) -> None:
        """Change H, keeping the most recent min(count, H) entries."""
        if history_depth < 1:
            raise ValueError("history_depth must be >= 1")
        columns = self._chronological_columns()[-history_depth:]
        kept = len(columns)

        states = np.zeros((self.n_nodes, history_depth), dtype=np.int8)
        e_asym = np.zeros((self.n_nodes, history_depth), dtype=np.float64)
        states[:, :kept] = self._states[:, columns]
        e_asym[:, :kept] = self._e_asym[:, columns]

        self.history_depth = history_depth
        self._states = states
        self._e_asym = e_asym
        self._count = kept
        self._cursor = kept % history_depth
