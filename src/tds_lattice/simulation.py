"""
Top-level simulation controller.

Owns the live lattice and everything that mutates it. External readers get
read-only snapshots; control goes through step / restore / set_parameter /
reset.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .analytics import AdvancedAnalytics, PhotonWindowResult, PhotonWindowTest
from .anomaly_detector import DetectedAnomaly
from .config import SimulationConfig, with_parameters
from .conservation import ConservationCorrection, ConservationViolation
from .exceptions import (
    BookmarkNotFoundError,
    FatalInvariantBreachError,
    HistoryEntryNotFoundError,
    InvalidParameterError,
)
from .lattice import EnergyTotals, Lattice, LatticeSnapshot
from .physics import AnomalyField, Direction, Physics
from .reversibility import ReversibilityValidator, ValidationRun
from .utils.logger import Logger


class StepStatus(Enum):
    OK = "ok"
    CORRECTED = "corrected"
    FATAL = "fatal"


@dataclass
class StepReport:
    """
    Outcome of one ``Simulation.step`` call.

    Attributes:
        step_index: Counter after the step (unchanged when FATAL).
        direction: Requested direction.
        status: OK, CORRECTED (enforcer touched the lattice) or FATAL (rolled back).
        energies: Lattice-wide totals after the step.
        t_info: Informational tension after the step.
        violations: Per-node conservation violations found this step.
        corrections: Corrections applied this step.
        anomalies: All currently anomalous nodes.
        new_anomaly_ids: Nodes that became anomalous this step.
        error: Breach message for FATAL steps.
    """
    step_index: int
    direction: Direction
    status: StepStatus
    energies: EnergyTotals
    t_info: float
    violations: list[ConservationViolation] = field(default_factory=list)
    corrections: list[ConservationCorrection] = field(default_factory=list)
    anomalies: list[DetectedAnomaly] = field(default_factory=list)
    new_anomaly_ids: list[int] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class HistoryEntry:
    step_index: int
    direction: Optional[Direction]
    snapshot: LatticeSnapshot


@dataclass(frozen=True)
class Bookmark:
    """Independent copy of the lattice plus the metrics at bookmark time."""
    name: str
    lattice: Lattice
    snapshot: LatticeSnapshot
    e_sym: float
    e_asym: float
    e_0: float
    t_info: float
    timestamp: str
    step_index: int
    metadata: dict = field(default_factory=dict)


class Simulation:

    def __init__(self, config: Optional[SimulationConfig] = None, lattice: Optional[Lattice] = None):
        """
        Args:
            config: Validated on entry; defaults to ``SimulationConfig()``.
            lattice: Pre-built lattice to take ownership of. Built from
                ``config.lattice`` when omitted.

        Raises:
            InvalidParameterError: If the config does not validate.
        """
        self.config = (config or SimulationConfig()).ensure_valid()
        self.lattice = lattice if lattice is not None else Lattice.from_config(self.config.lattice)
        self._initial = self.lattice.copy()
        self.physics = Physics(self.config)
        self.validator = ReversibilityValidator(self.physics, self.config.validation)
        self.analytics = AdvancedAnalytics(self.lattice, self.config.analytics)

        self.step_index = 0
        self.direction = Direction.FORWARD
        self.history: deque[HistoryEntry] = deque(maxlen=self.config.history_capacity)
        self.bookmarks: dict[str, Bookmark] = {}
        self._record_history(None)

        Logger.log(
            f"Simulation created: shape={self.lattice.shape}, boundary={self.lattice.boundary}, "
            f"nodes={self.lattice.n_nodes}",
            Logger.LogPriority.INFO,
        )

    # -------------------------------------------------------------------------
    # Stepping
    # -------------------------------------------------------------------------

    def step(self, direction: Optional[Direction] = None) -> StepReport:
        """
        Advance or rewind one step.

        ``direction`` defaults to the persistent ``self.direction``.
        A fatal invariant breach leaves the lattice, counter and history as
        they were and is reported with status FATAL; with ``halt_on_fatal``
        the FatalInvariantBreachError is re-raised instead.
        """
        if direction is None:
            direction = self.direction
        try:
            result = self.physics.step(self.lattice, direction)
        except FatalInvariantBreachError as e:
            Logger.log(f"Fatal invariant breach at step {self.step_index}: {e}", Logger.LogPriority.CRITICAL)
            if self.config.halt_on_fatal:
                raise
            return StepReport(
                step_index=self.step_index,
                direction=direction,
                status=StepStatus.FATAL,
                energies=self.lattice.total_energy(),
                t_info=self.lattice.informational_tension(self.physics.J),
                violations=e.report.violations if e.report is not None else [],
                error=str(e),
            )

        self.step_index += direction.value
        self.validator.validate_conservation(self.lattice, self.step_index)
        self.analytics.update(self.lattice, self.step_index)
        entry = self._record_history(direction)

        return StepReport(
            step_index=self.step_index,
            direction=direction,
            status=StepStatus.CORRECTED if result.corrections else StepStatus.OK,
            energies=result.energies,
            t_info=entry.snapshot.t_info,
            violations=result.violations,
            corrections=result.corrections,
            anomalies=result.anomalies,
            new_anomaly_ids=result.new_anomaly_ids,
        )

    def run(self, n_steps: int, direction: Optional[Direction] = None) -> list[StepReport]:
        """Step ``n_steps`` times; stops early after a FATAL step."""
        reports = []
        for _ in range(n_steps):
            report = self.step(direction)
            reports.append(report)
            if report.status == StepStatus.FATAL:
                break
        return reports

    def set_direction(self, direction) -> None:
        """Set the persistent step direction; accepts a Direction or +1 / -1."""
        self.direction = Direction(direction)
        Logger.log(f"Direction set to {self.direction.name}", Logger.LogPriority.DEBUG)

    def reverse(self) -> None:
        self.set_direction(Direction.BACKWARD)

    def forward(self) -> None:
        self.set_direction(Direction.FORWARD)

    def propagate_anomaly(self, node_id: int, anomaly_field: AnomalyField) -> list[int]:
        return self.physics.propagate_anomaly(self.lattice, node_id, anomaly_field)

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def _record_history(self, direction: Optional[Direction]) -> HistoryEntry:
        entry = HistoryEntry(
            step_index=self.step_index,
            direction=direction,
            snapshot=self.lattice.snapshot(self.physics.J, self.step_index),
        )
        self.history.append(entry)
        return entry

    def seek_history(self, step_index: int) -> HistoryEntry:
        """
        Load the most recent history entry recorded at ``step_index``.

        Raises:
            HistoryEntryNotFoundError: The step is not (or no longer) buffered.
        """
        for entry in reversed(self.history):
            if entry.step_index == step_index:
                self.lattice.load_snapshot(entry.snapshot)
                self.step_index = step_index
                self.physics.detector.reset()
                Logger.log(f"Seeked to history step {step_index}", Logger.LogPriority.DEBUG)
                return entry
        raise HistoryEntryNotFoundError(f"Step {step_index} not found in history buffer.")

    def clear_history(self, keep_current: bool = True) -> None:
        """Drop buffered history; with ``keep_current`` the live lattice becomes the only entry."""
        self.history.clear()
        if keep_current:
            self._record_history(None)
        Logger.log(f"History cleared (keep_current={keep_current})", Logger.LogPriority.DEBUG)

    # -------------------------------------------------------------------------
    # Bookmarks
    # -------------------------------------------------------------------------

    def bookmark(self, name: str, **metadata: Any) -> Bookmark:
        """Store an independent copy of the live lattice; an existing name is overwritten."""
        totals = self.lattice.total_energy()
        snapshot = self.get_snapshot()
        bookmark = Bookmark(
            name=name,
            lattice=self.lattice.copy(),
            snapshot=snapshot,
            e_sym=totals.e_sym,
            e_asym=totals.e_asym,
            e_0=totals.e_0,
            t_info=snapshot.t_info,
            timestamp=datetime.now().isoformat(timespec="seconds"),
            step_index=self.step_index,
            metadata=dict(metadata),
        )
        if name in self.bookmarks:
            Logger.log(f"Bookmark '{name}' overwritten", Logger.LogPriority.WARNING)
        self.bookmarks[name] = bookmark
        Logger.log(f"Bookmark '{name}' stored at step {self.step_index}", Logger.LogPriority.INFO)
        return bookmark

    def get_bookmark(self, name: str) -> Bookmark:
        if name not in self.bookmarks:
            raise BookmarkNotFoundError(f"Bookmark '{name}' not found.")
        return self.bookmarks[name]

    def restore(self, name: str) -> Bookmark:
        """
        Replace the live lattice content with a bookmark's copy.

        The bookmark itself is not modified. Detector history is discarded.
        """
        bookmark = self.get_bookmark(name)
        self.lattice.restore_from(bookmark.lattice)
        self.step_index = bookmark.step_index
        self.physics.detector.reset()
        self._record_history(None)
        Logger.log(f"Restored bookmark '{name}' (step {bookmark.step_index})", Logger.LogPriority.INFO)
        return bookmark

    def list_bookmarks(self) -> list[str]:
        return list(self.bookmarks)

    def remove_bookmark(self, name: str) -> None:
        self.get_bookmark(name)
        del self.bookmarks[name]
        Logger.log(f"Bookmark '{name}' removed", Logger.LogPriority.DEBUG)

    # -------------------------------------------------------------------------
    # Read-only access
    # -------------------------------------------------------------------------

    def get_snapshot(self) -> LatticeSnapshot:
        return self.lattice.snapshot(self.physics.J, self.step_index)

    def get_conservation_status(self) -> str:
        return self.validator.get_conservation_status()

    # -------------------------------------------------------------------------
    # Parameters
    # -------------------------------------------------------------------------

    def set_parameter(self, **params: Any) -> SimulationConfig:
        return self.set_parameters(params)

    def set_parameters(self, params: dict[str, Any]) -> SimulationConfig:
        """
        Apply runtime parameters atomically.

        Raises:
            InvalidParameterError: Unknown name or out-of-domain value; nothing
                is changed.
        """
        try:
            config = with_parameters(self.config, params)
        except InvalidParameterError as e:
            Logger.log(f"Rejected parameters {params}: {e}", Logger.LogPriority.ERROR)
            raise

        previous = self.config
        try:
            self._apply_config(config)
        except (TypeError, ValueError) as e:
            self._apply_config(previous)
            Logger.log(f"Rejected parameters {params}: {e}", Logger.LogPriority.ERROR)
            raise InvalidParameterError(f"Invalid parameter value(s) {params}: {e}") from e
        self.config = config

        if config.lattice.e_0 != previous.lattice.e_0:
            self.lattice.rescale_e0(config.lattice.e_0)
            self._initial.rescale_e0(config.lattice.e_0)
            self.analytics.reset_drift_reference(self.lattice)
        if config.history_capacity != previous.history_capacity:
            self.history = deque(self.history, maxlen=config.history_capacity)

        Logger.log(f"Parameters updated: {params}", Logger.LogPriority.INFO)
        return config

    def _apply_config(self, config: SimulationConfig) -> None:
        self.physics.apply_config(config)
        self.validator.config = config.validation
        self.analytics.apply_config(config.analytics)

    # -------------------------------------------------------------------------
    # Validation and lifecycle
    # -------------------------------------------------------------------------

    def validate_reversibility(self, steps: int = 100) -> ValidationRun:
        """Forward/backward cycle on a shadow copy; the live lattice is untouched."""
        return self.validator.run(self.lattice, steps)

    def photon_window_test(self, steps: int = 64) -> PhotonWindowResult:
        return PhotonWindowTest(self.physics, steps=steps).run(self.lattice)

    def reset(self) -> None:
        """Return the lattice to its initial state and clear all run state. Bookmarks are kept."""
        self.lattice.restore_from(self._initial)
        self.step_index = 0
        self.direction = Direction.FORWARD
        self.physics.reset()
        self.validator.clear_history()
        self.analytics.reset(self.lattice)
        self.clear_history(keep_current=True)
        Logger.log("Simulation reset", Logger.LogPriority.INFO)
