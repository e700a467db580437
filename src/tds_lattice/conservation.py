"""
Energy conservation enforcement.

Law: e_sym + e_asym == e_0 per node, and sum(e_sym) + sum(e_asym) == sum(e_0)
over the lattice.

``measure`` is read-only. ``enforce`` corrects per-node drift by rescaling a
node's components to its e_0 (split ratio kept), then removes any remaining
global deviation by distributing it over all nodes in proportion to their
share of the total energy. Every correction is recorded and logged; none is
silently dropped.
"""

import csv
import io
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import numpy as np

from .config import ConservationConfig
from .lattice import Lattice
from .utils.logger import Logger


@dataclass(frozen=True)
class ConservationViolation:
    """Recoverable per-node drift beyond the soft tolerance."""
    timestamp: str
    node_index: int
    coord: tuple[int, int, int]
    e_sym: float
    e_asym: float
    e_0_expected: float
    e_0_actual: float
    deviation: float


@dataclass(frozen=True)
class ConservationCorrection:
    """
    One applied correction.

    Attributes:
        kind: "node" (per-node rescale) or "global" (proportional redistribution).
        first_node, last_node: Affected node id range.
        n_nodes: Number of nodes touched.
        deviation: Magnitude corrected (max per-node deviation, or global delta).
    """
    timestamp: str
    kind: str
    first_node: int
    last_node: int
    n_nodes: int
    deviation: float


@dataclass
class ConservationReport:
    total_nodes: int
    global_deviation: float
    max_deviation: float
    mean_deviation: float
    threshold: float
    hard_ceiling: float
    violations: list[ConservationViolation] = field(default_factory=list)
    corrections: list[ConservationCorrection] = field(default_factory=list)
    # Nodes beyond hard_ceiling_factor times their own tolerance
    nodes_beyond_ceiling: int = 0

    @property
    def is_conserved(self) -> bool:
        return not self.violations and self.global_deviation <= self.threshold

    @property
    def is_fatal(self) -> bool:
        return self.global_deviation > self.hard_ceiling or self.nodes_beyond_ceiling > 0


@dataclass(frozen=True)
class RateCheck:
    """Result of the dE_sym/dt = -dE_asym/dt diagnostic."""
    is_valid: bool
    max_deviation: float
    violations: int
    samples: int


def _now() -> str:
    return datetime.now().isoformat(timespec="milliseconds")


class ConservationEnforcer:
    """
    Detects and corrects floating-point drift in the conserved energy.
    """

    def __init__(self, config: Optional[ConservationConfig] = None):
        self.config = config or ConservationConfig()
        self.corrections: deque[ConservationCorrection] = deque(maxlen=self.config.max_logged_corrections)
        self.violation_count = 0
        self._totals_history: deque[tuple[float, float]] = deque(maxlen=self.config.rate_window)

    # -------------------------------------------------------------------------
    # Thresholds
    # -------------------------------------------------------------------------

    def threshold(self, total_e0: float) -> float:
        """Global soft tolerance; relative mode scales by sum(e_0)."""
        if self.config.tolerance_mode == "relative":
            return self.config.tolerance * total_e0
        return self.config.tolerance

    def _node_thresholds(self, lattice: Lattice) -> np.ndarray:
        if self.config.tolerance_mode == "relative":
            return self.config.tolerance * lattice.e_0
        return np.full(lattice.n_nodes, self.config.tolerance)

    # -------------------------------------------------------------------------
    # Measurement (read-only)
    # -------------------------------------------------------------------------

    def measure(self, lattice: Lattice) -> ConservationReport:
        """Check conservation without touching the lattice."""
        totals = lattice.total_energy()
        threshold = self.threshold(totals.e_0)
        node_dev = np.abs(lattice.e_sym + lattice.e_asym - lattice.e_0)
        node_thresholds = self._node_thresholds(lattice)
        offending = np.flatnonzero(node_dev > node_thresholds)

        timestamp = _now()
        violations = [
            ConservationViolation(
                timestamp=timestamp,
                node_index=int(i),
                coord=lattice.coord_of(int(i)),
                e_sym=float(lattice.e_sym[i]),
                e_asym=float(lattice.e_asym[i]),
                e_0_expected=float(lattice.e_0[i]),
                e_0_actual=float(lattice.e_sym[i] + lattice.e_asym[i]),
                deviation=float(node_dev[i]),
            )
            for i in offending
        ]

        return ConservationReport(
            total_nodes=lattice.n_nodes,
            global_deviation=totals.deviation,
            max_deviation=float(node_dev.max()) if lattice.n_nodes else 0.0,
            mean_deviation=float(node_dev.mean()) if lattice.n_nodes else 0.0,
            threshold=threshold,
            hard_ceiling=self.config.hard_ceiling_factor * threshold,
            violations=violations,
            nodes_beyond_ceiling=int(np.count_nonzero(node_dev > self.config.hard_ceiling_factor * node_thresholds)),
        )

    def is_fatal(self, report: ConservationReport) -> bool:
        return report.is_fatal

    # -------------------------------------------------------------------------
    # Correction
    # -------------------------------------------------------------------------

    def enforce(self, lattice: Lattice) -> ConservationReport:
        """
        Measure and, when auto_correct is on, correct drift in place.

        Returns:
            Report of the pre-correction measurement, with applied corrections attached.
        """
        report = self.measure(lattice)
        self.violation_count += len(report.violations)

        if not self.config.auto_correct:
            if report.violations or report.global_deviation > report.threshold:
                Logger.log(
                    f"Conservation drift left uncorrected: delta={report.global_deviation:.3e}, "
                    f"{len(report.violations)} node violation(s)",
                    Logger.LogPriority.WARNING,
                )
            return report

        if report.violations:
            report.corrections.append(self._correct_nodes(lattice, report.violations))

        totals = lattice.total_energy()
        if totals.deviation > self.threshold(totals.e_0):
            report.corrections.append(self._redistribute(lattice, totals.deviation))

        return report

    def _correct_nodes(self, lattice: Lattice, violations: list[ConservationViolation]) -> ConservationCorrection:
        ids = np.array([v.node_index for v in violations], dtype=np.int64)
        actual = lattice.e_sym[ids] + lattice.e_asym[ids]
        target = lattice.e_0[ids]

        empty = actual == 0
        ratio = np.divide(target, actual, out=np.ones_like(actual), where=~empty)
        lattice.e_sym[ids] = np.where(empty, target, lattice.e_sym[ids] * ratio)
        lattice.e_asym[ids] = np.where(empty, 0.0, lattice.e_asym[ids] * ratio)

        correction = ConservationCorrection(
            timestamp=_now(),
            kind="node",
            first_node=int(ids.min()),
            last_node=int(ids.max()),
            n_nodes=len(ids),
            deviation=max(v.deviation for v in violations),
        )
        self._record(correction)
        return correction

    def _redistribute(self, lattice: Lattice, delta: float) -> ConservationCorrection:
        totals = lattice.total_energy()
        if totals.actual == 0:
            lattice.e_sym[:] = lattice.e_0
            lattice.e_asym[:] = 0.0
        else:
            # Node i receives delta * (its share of the total); equivalent to a uniform rescale
            scale = totals.e_0 / totals.actual
            lattice.e_sym *= scale
            lattice.e_asym *= scale

        correction = ConservationCorrection(
            timestamp=_now(),
            kind="global",
            first_node=0,
            last_node=lattice.n_nodes - 1,
            n_nodes=lattice.n_nodes,
            deviation=delta,
        )
        self._record(correction)
        return correction

    def _record(self, correction: ConservationCorrection) -> None:
        self.corrections.append(correction)
        Logger.log(
            f"Conservation correction [{correction.kind}] at {correction.timestamp}: "
            f"nodes {correction.first_node}..{correction.last_node} ({correction.n_nodes}), "
            f"delta={correction.deviation:.3e}",
            Logger.LogPriority.WARNING,
        )

    # -------------------------------------------------------------------------
    # Energy-rate diagnostic
    # -------------------------------------------------------------------------

    def record_totals(self, lattice: Lattice) -> None:
        totals = lattice.total_energy()
        self._totals_history.append((totals.e_sym, totals.e_asym))

    def verify_energy_rate_relationship(self, dt: float = 1.0) -> RateCheck:
        """
        Check d(sum E_sym)/dt == -d(sum E_asym)/dt over the recorded window.

        Diagnostic only: nothing is corrected.
        """
        history = list(self._totals_history)
        if len(history) < 2:
            return RateCheck(is_valid=True, max_deviation=0.0, violations=0, samples=len(history))

        sym = np.array([h[0] for h in history])
        asym = np.array([h[1] for h in history])
        deviation = np.abs(np.diff(sym) / dt + np.diff(asym) / dt)
        threshold = self.config.tolerance
        violations = int(np.count_nonzero(deviation > threshold))

        return RateCheck(
            is_valid=violations == 0,
            max_deviation=float(deviation.max()),
            violations=violations,
            samples=len(history),
        )

    # -------------------------------------------------------------------------
    # Bookkeeping
    # -------------------------------------------------------------------------

    def statistics(self) -> dict:
        if not self.corrections:
            return {"total_corrections": 0, "total_violations": self.violation_count,
                    "max_deviation": 0.0, "mean_deviation": 0.0}
        deviations = [c.deviation for c in self.corrections]
        return {
            "total_corrections": len(self.corrections),
            "total_violations": self.violation_count,
            "max_deviation": max(deviations),
            "mean_deviation": sum(deviations) / len(deviations),
        }

    def export_corrections_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["timestamp", "kind", "first_node", "last_node", "n_nodes", "deviation"])
        for c in self.corrections:
            writer.writerow([c.timestamp, c.kind, c.first_node, c.last_node, c.n_nodes, c.deviation])
        return buffer.getvalue()

    def clear(self) -> None:
        self.corrections.clear()
        self._totals_history.clear()
        self.violation_count = 0
