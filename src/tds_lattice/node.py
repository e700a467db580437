"""
Per-site physical state.

A lattice site carries a binary spin, a conserved energy ``e_0`` split into a
symmetric and an asymmetric component, an oscillation frequency (meaningful
only for anomalies) and a phase angle used for mode analysis.

Nodes are stored column-wise inside ``Lattice``; ``Node`` is the immutable
value view handed to readers.

Units:
    - Energy: simulation units (per-node E_0, default 1.0)
    - Frequency: radians per step
    - HBAR = 1.0, so mass == omega
"""

from dataclasses import dataclass
from enum import IntEnum

# Reduced Planck constant in simulation units
HBAR = 1.0


class NodeState(IntEnum):
    """Derived classification of a site."""
    VACUUM = 0
    BROKEN = 1
    ANOMALOUS = 2


@dataclass(frozen=True)
class Node:
    """
    Read-only view of one lattice site.

    Attributes:
        index: Node id inside the lattice arena.
        coord: (x, y, z) coordinate; unused axes are 0.
        spin: +1 or -1.
        state: Current NodeState classification.
        e_sym: Symmetric energy component.
        e_asym: Asymmetric energy component.
        e_0: Conserved per-node total.
        omega: Internal oscillation frequency (0 unless anomalous).
        phase: Phase angle in radians.
    """
    index: int
    coord: tuple[int, int, int]
    spin: int
    state: NodeState
    e_sym: float
    e_asym: float
    e_0: float
    omega: float = 0.0
    phase: float = 0.0

    @property
    def mass(self) -> float:
        """Effective mass M = HBAR * omega."""
        return HBAR * self.omega

    @property
    def total_energy(self) -> float:
        return self.e_sym + self.e_asym

    @property
    def energy_deviation(self) -> float:
        """|e_sym + e_asym - e_0|."""
        return abs(self.total_energy - self.e_0)

    @property
    def asymmetry(self) -> float:
        """Fraction of e_0 held in the asymmetric component."""
        if self.e_0 <= 0:
            return 0.0
        return self.e_asym / self.e_0

    def is_conserved(self, tolerance: float) -> bool:
        return self.energy_deviation <= tolerance

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "coord": self.coord,
            "spin": self.spin,
            "state": self.state.name,
            "e_sym": self.e_sym,
            "e_asym": self.e_asym,
            "e_0": self.e_0,
            "omega": self.omega,
            "mass": self.mass,
            "phase": self.phase,
        }
