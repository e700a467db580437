"""
Reversibility and conservation validation.

All checks run on shadow copies of the lattice and of the physics engine, so
validating never disturbs the live simulation (detector history included).
"""

import csv
import io
from collections import deque
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .config import ValidationConfig
from .exceptions import FatalInvariantBreachError
from .lattice import Lattice
from .physics import Direction, Physics
from .utils.logger import Logger


@dataclass(frozen=True)
class ConservationCheck:
    step: int
    deviation: float
    max_node_deviation: float


@dataclass(frozen=True)
class ValidationRun:
    """Cycle outcome; ``conservation_checks`` holds the shadow cycle's own measurements."""
    score: float
    energy_drift: float
    state_deviation: float
    passed: bool
    steps: int = 0
    conservation_checks: tuple[ConservationCheck, ...] = ()


class ReversibilityValidator:
    """
    Scores forward/backward cycles and tracks conservation over time.
    """

    def __init__(self, physics: Physics, config: Optional[ValidationConfig] = None):
        self.physics = physics
        self.config = config or ValidationConfig()
        self.history: deque[ConservationCheck] = deque(maxlen=self.config.max_history)

    # -------------------------------------------------------------------------
    # Cycle scoring
    # -------------------------------------------------------------------------

    def score(self, reference: Lattice, result: Lattice) -> float:
        """
        Weighted mean of spin match, state match and energy agreement, in [0, 1].
        """
        if reference.n_nodes == 0:
            return 1.0
        spin_match = float(np.mean(reference.spin == result.spin))
        state_match = float(np.mean(reference.state == result.state))

        total_e0 = float(np.sum(reference.e_0))
        energy_error = float(
            np.sum(np.abs(reference.e_sym - result.e_sym)) + np.sum(np.abs(reference.e_asym - result.e_asym))
        )
        energy_match = 1.0 - min(1.0, energy_error / total_e0) if total_e0 > 0 else 1.0

        weights = (self.config.spin_weight, self.config.state_weight, self.config.energy_weight)
        parts = (spin_match, state_match, energy_match)
        return sum(w * p for w, p in zip(weights, parts)) / sum(weights)

    def test_reversibility_cycle(self, lattice: Lattice, steps: int) -> float:
        """Score of ``steps`` forward then ``steps`` backward on a shadow copy."""
        return self.run(lattice, steps).score

    def run(self, lattice: Lattice, steps: int) -> ValidationRun:
        """
        Run a forward/backward cycle on shadow copies and score the result.

        A fatal breach inside the cycle ends it with score 0.
        """
        if steps < 0:
            raise ValueError("steps must be non-negative")

        reference = lattice.copy()
        shadow = lattice.copy()
        shadow_physics = self.physics.copy()
        initial_total = shadow.total_energy().actual
        checks: list[ConservationCheck] = []

        try:
            for i in range(steps):
                shadow_physics.step(shadow, Direction.FORWARD)
                checks.append(self._measure(shadow, i + 1))
            for i in range(steps):
                shadow_physics.step(shadow, Direction.BACKWARD)
                checks.append(self._measure(shadow, steps - i - 1))
        except FatalInvariantBreachError as e:
            Logger.log(f"Reversibility cycle aborted by fatal breach: {e}", Logger.LogPriority.ERROR)
            return ValidationRun(score=0.0, energy_drift=float("inf"), state_deviation=1.0,
                                 passed=False, steps=steps, conservation_checks=tuple(checks))

        score = self.score(reference, shadow)
        energy_drift = abs(shadow.total_energy().actual - initial_total)
        state_deviation = float(np.mean(reference.state != shadow.state)) if reference.n_nodes else 0.0
        passed = score >= self.config.min_score

        Logger.log(
            f"Reversibility cycle over {steps} step(s): score={score:.6f}, drift={energy_drift:.3e}, "
            f"passed={passed}",
            Logger.LogPriority.INFO if passed else Logger.LogPriority.WARNING,
        )
        return ValidationRun(
            score=score,
            energy_drift=energy_drift,
            state_deviation=state_deviation,
            passed=passed,
            steps=steps,
            conservation_checks=tuple(checks),
        )

    # -------------------------------------------------------------------------
    # Conservation tracking
    # -------------------------------------------------------------------------

    def _measure(self, lattice: Lattice, step: int) -> ConservationCheck:
        report = self.physics.enforcer.measure(lattice)
        return ConservationCheck(
            step=step,
            deviation=report.global_deviation,
            max_node_deviation=report.max_deviation,
        )

    def validate_conservation(self, lattice: Lattice, step: int) -> ConservationCheck:
        """Measure the live lattice and append the result to ``history``."""
        check = self._measure(lattice, step)
        self.history.append(check)
        return check

    def conservation_summary(self) -> dict:
        if not self.history:
            return {"samples": 0, "max_deviation": 0.0, "mean_deviation": 0.0}
        deviations = [c.deviation for c in self.history]
        return {
            "samples": len(deviations),
            "max_deviation": max(deviations),
            "mean_deviation": sum(deviations) / len(deviations),
        }

    def get_conservation_status(self) -> str:
        """'good', 'warning' or 'error' from the recorded deviations."""
        summary = self.conservation_summary()
        if summary["samples"] == 0 or summary["max_deviation"] <= self.config.warning_threshold:
            return "good"
        if (summary["mean_deviation"] <= self.config.warning_threshold
                and summary["max_deviation"] <= self.config.error_threshold):
            return "warning"
        return "error"

    def export_history_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["step", "deviation", "max_node_deviation"])
        for check in self.history:
            writer.writerow([check.step, check.deviation, check.max_node_deviation])
        return buffer.getvalue()

    def clear_history(self) -> None:
        self.history.clear()
