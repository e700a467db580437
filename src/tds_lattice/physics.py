"""
One-step orchestration of dynamics, detection and conservation.

Step order:
    1. Snapshot the lattice.
    2. Apply SwapDynamics forward or backward.
    3. Structural check and hard-ceiling check (read-only). On breach the
       lattice is restored from the snapshot and FatalInvariantBreachError is
       raised, before any detector history is written.
    4. AnomalyDetector scan.
    5. ConservationEnforcer pass.
"""

import copy
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np

from .anomaly_detector import AnomalyDetector, DetectedAnomaly
from .config import SimulationConfig
from .conservation import ConservationCorrection, ConservationEnforcer, ConservationViolation
from .exceptions import FatalInvariantBreachError
from .lattice import EnergyTotals, Lattice
from .node import NodeState
from .swap_dynamics import SwapDynamics
from .utils.logger import Logger


class Direction(Enum):
    FORWARD = 1
    BACKWARD = -1


@dataclass(frozen=True)
class AnomalyField:
    """
    Localized E_asym perturbation.

    By default the center spin is inverted. An inverted spin among aligned
    neighbours never satisfies the exchange rule, so the injected energy is
    pinned there and the center persists as a defect. With ``flip_spin=False``
    the injection on an aligned lattice is a free packet moving two sites per
    step.

    Attributes:
        amplitude: E_asym added at the center node.
        radius: Neighbours within this distance receive amplitude * exp(-d / radius).
            0 perturbs the center only.
        flip_spin: Invert the center spin.
    """
    amplitude: float
    radius: float = 0.0
    flip_spin: bool = True


@dataclass
class PhysicsStepReport:
    direction: Direction
    energies: EnergyTotals
    deviation: float
    violations: list[ConservationViolation] = field(default_factory=list)
    corrections: list[ConservationCorrection] = field(default_factory=list)
    new_anomaly_ids: list[int] = field(default_factory=list)
    anomalies: list[DetectedAnomaly] = field(default_factory=list)


class Physics:
    """Drives a lattice through reversible steps under conservation enforcement."""

    def __init__(self, config: Optional[SimulationConfig] = None):
        self.config = config or SimulationConfig()
        self.dynamics = SwapDynamics(J=self.config.dynamics.J)
        self.enforcer = ConservationEnforcer(self.config.conservation)
        self.detector = AnomalyDetector(self.config.anomaly)

    @property
    def J(self) -> float:
        return self.dynamics.J

    def step(self, lattice: Lattice, direction: Direction = Direction.FORWARD) -> PhysicsStepReport:
        """
        Advance (or rewind) the lattice by one step.

        Raises:
            FatalInvariantBreachError: Hard ceiling exceeded or structure broken.
                The lattice is left exactly as it was before the call.
        """
        before = lattice.copy()

        if direction == Direction.FORWARD:
            self.dynamics.step(lattice)
        else:
            self.dynamics.reverse_step(lattice)

        is_valid, error = lattice.check_structure()
        if not is_valid:
            lattice.restore_from(before)
            raise FatalInvariantBreachError(f"Lattice structure broken during step: {error}")

        measured = self.enforcer.measure(lattice)
        if self.enforcer.is_fatal(measured):
            lattice.restore_from(before)
            raise FatalInvariantBreachError(
                f"Energy deviation beyond hard ceiling: global={measured.global_deviation:.3e}, "
                f"max node={measured.max_deviation:.3e}, ceiling={measured.hard_ceiling:.3e}, "
                f"nodes beyond ceiling={measured.nodes_beyond_ceiling}",
                report=measured,
            )

        detection = self.detector.scan(lattice)

        if self.config.conservation.auto_correct:
            conservation = self.enforcer.enforce(lattice)
        else:
            conservation = measured

        self.enforcer.record_totals(lattice)
        totals = lattice.total_energy()

        return PhysicsStepReport(
            direction=direction,
            energies=totals,
            deviation=totals.deviation,
            violations=conservation.violations,
            corrections=conservation.corrections,
            new_anomaly_ids=detection.new_anomaly_ids,
            anomalies=detection.anomalies,
        )

    def propagate_anomaly(self, lattice: Lattice, node_id: int, anomaly_field: AnomalyField) -> list[int]:
        """
        Inject E_asym around ``node_id``; each node's total stays at its e_0.

        Returns:
            Ids of the nodes whose energy split changed.
        """
        distances = lattice.distances_from(node_id)
        gains = np.zeros(lattice.n_nodes, dtype=np.float64)
        if anomaly_field.radius > 0:
            within = distances <= anomaly_field.radius
            gains[within] = anomaly_field.amplitude * np.exp(-distances[within] / anomaly_field.radius)
        gains[node_id] = anomaly_field.amplitude

        affected = np.flatnonzero(gains != 0)
        lattice.e_asym[affected] = np.clip(lattice.e_asym[affected] + gains[affected], 0.0, lattice.e_0[affected])
        lattice.e_sym[affected] = lattice.e_0[affected] - lattice.e_asym[affected]

        excited = affected[lattice.e_asym[affected] > self.config.anomaly.vacuum_epsilon]
        lattice.state[excited] = np.where(
            lattice.state[excited] == NodeState.ANOMALOUS, NodeState.ANOMALOUS, NodeState.BROKEN
        )

        if anomaly_field.flip_spin:
            lattice.spin[node_id] = -lattice.spin[node_id]

        Logger.log(
            f"Anomaly field injected at node {node_id}: amplitude={anomaly_field.amplitude}, "
            f"radius={anomaly_field.radius}, {len(affected)} node(s) affected",
            Logger.LogPriority.INFO,
        )
        return affected.tolist()

    @staticmethod
    def entropy(lattice: Lattice) -> float:
        """Shannon entropy (bits) of the VACUUM/BROKEN/ANOMALOUS fractions."""
        stats = lattice.statistics()
        if stats.total == 0:
            return 0.0
        entropy = 0.0
        for count in (stats.count_vacuum, stats.count_broken, stats.count_anomalous):
            if count:
                p = count / stats.total
                entropy -= p * math.log2(p)
        return entropy

    def set_coupling(self, J: float) -> None:
        self.dynamics.J = float(J)

    def apply_config(self, config: SimulationConfig) -> None:
        """Propagate a (validated) config to all components; the resize runs first so a failure changes nothing."""
        if config.anomaly.history_depth != self.detector.history_depth:
            self.detector.resize(config.anomaly.history_depth)
        self.config = config
        self.set_coupling(config.dynamics.J)
        self.enforcer.config = config.conservation
        self.detector.config = config.anomaly

    def reset(self) -> None:
        self.detector.reset()
        self.enforcer.clear()

    def copy(self) -> "Physics":
        """Independent copy (detector history included) for shadow runs."""
        return copy.deepcopy(self)
