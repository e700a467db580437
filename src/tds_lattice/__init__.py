"""
Reversible, energy-conserving lattice simulation.

A lattice of binary spins, each carrying a conserved energy split into a
symmetric and an asymmetric part, evolves under an invertible six-phase swap
rule. Persistent excitations are detected as anomalies with an effective mass.
"""

__version__ = "0.1.0"

from .config import SimulationConfig, load_config
from .exceptions import (
    BookmarkNotFoundError,
    FatalInvariantBreachError,
    HistoryEntryNotFoundError,
    InvalidParameterError,
)
from .lattice import Lattice, LatticeSnapshot
from .node import HBAR, Node, NodeState
from .physics import AnomalyField, Direction, Physics
from .simulation import Simulation, StepReport, StepStatus

__all__ = [
    "SimulationConfig",
    "load_config",
    "BookmarkNotFoundError",
    "FatalInvariantBreachError",
    "HistoryEntryNotFoundError",
    "InvalidParameterError",
    "Lattice",
    "LatticeSnapshot",
    "HBAR",
    "Node",
    "NodeState",
    "AnomalyField",
    "Direction",
    "Physics",
    "Simulation",
    "StepReport",
    "StepStatus",
]
