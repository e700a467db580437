"""
Margolus-style reversible swap dynamics.

One time step is an explicit pipeline of six phases:

    X_EVEN, Y_ODD, Z_EVEN, X_ODD, Y_EVEN, Z_ODD

A phase partitions the lattice into disjoint neighbour pairs (a, a+1) along
one axis, with the lower coordinate a of the given parity. Each pair goes
through the same local rule:

    if J * s_a * s_b > 0:  exchange spin, phase and energy split
    else:                  identity

The product s_a * s_b is unchanged by the exchange, so the rule is an
involution and every phase is its own inverse. ``reverse_step`` therefore
replays the phases in reverse order. Sites without a partner (open boundary
edge, odd periodic extent, or an axis of extent 1) are left unchanged.

Each phase is evaluated as a single vectorized gather/scatter over disjoint
index arrays, which is a barrier by construction: phase N+1 only starts once
phase N has been written back.
"""

from enum import Enum

import numpy as np

from .lattice import Lattice


class SwapPhase(Enum):
    X_EVEN = (0, 0)
    Y_ODD = (1, 1)
    Z_EVEN = (2, 0)
    X_ODD = (0, 1)
    Y_EVEN = (1, 0)
    Z_ODD = (2, 1)

    @property
    def axis(self) -> int:
        return self.value[0]

    @property
    def parity(self) -> int:
        return self.value[1]


FORWARD_ORDER = (
    SwapPhase.X_EVEN,
    SwapPhase.Y_ODD,
    SwapPhase.Z_EVEN,
    SwapPhase.X_ODD,
    SwapPhase.Y_EVEN,
    SwapPhase.Z_ODD,
)
REVERSE_ORDER = tuple(reversed(FORWARD_ORDER))


def _fraction(e_asym: np.ndarray, e_0: np.ndarray) -> np.ndarray:
    """e_asym / e_0, taken as 0 where e_0 is 0."""
    return np.divide(e_asym, e_0, out=np.zeros_like(e_asym), where=e_0 != 0)


class SwapDynamics:
    """
    Deterministic, invertible six-phase update.

    Pair tables are computed once per lattice geometry and cached, so the
    same instance can drive a live lattice and its shadow copies.
    """

    def __init__(self, J: float = 1.0):
        self.J = float(J)
        self._pair_cache: dict[tuple, dict[SwapPhase, tuple[np.ndarray, np.ndarray]]] = {}
        self.steps_forward = 0
        self.steps_backward = 0

    # -------------------------------------------------------------------------
    # Pair tables
    # -------------------------------------------------------------------------

    def pairs_for_phase(self, lattice: Lattice, phase: SwapPhase) -> tuple[np.ndarray, np.ndarray]:
        """(a, b) node id arrays of the disjoint blocks of ``phase``."""
        key = (lattice.shape, lattice.boundary)
        if key not in self._pair_cache:
            self._pair_cache[key] = {p: self._compute_pairs(lattice, p) for p in FORWARD_ORDER}
        return self._pair_cache[key][phase]

    @staticmethod
    def _compute_pairs(lattice: Lattice, phase: SwapPhase) -> tuple[np.ndarray, np.ndarray]:
        coords = (lattice.x, lattice.y, lattice.z)[phase.axis]
        extent = (lattice.nx, lattice.ny, lattice.nz)[phase.axis]
        stride = (1, lattice.nx, lattice.nx * lattice.ny)[phase.axis]
        ids = np.arange(lattice.n_nodes)

        if extent < 2:
            empty = np.array([], dtype=np.int64)
            return empty, empty

        lower = (coords % 2 == phase.parity)
        interior = lower & (coords + 1 < extent)
        a = ids[interior]
        b = a + stride

        # Wrap-around block only keeps the partition disjoint for even extents
        if lattice.boundary == "periodic" and extent % 2 == 0 and (extent - 1) % 2 == phase.parity:
            wrap = ids[lower & (coords == extent - 1)]
            a = np.concatenate([a, wrap])
            b = np.concatenate([b, wrap - (extent - 1) * stride])

        return a.astype(np.int64), b.astype(np.int64)

    # -------------------------------------------------------------------------
    # Phase kernel
    # -------------------------------------------------------------------------

    def apply_phase(self, lattice: Lattice, phase: SwapPhase) -> int:
        """
        Apply one phase in place.

        Returns:
            Number of blocks that exchanged content.
        """
        a, b = self.pairs_for_phase(lattice, phase)
        if len(a) == 0 or self.J == 0:
            return 0

        coupling = self.J * lattice.spin[a].astype(np.float64) * lattice.spin[b]
        active = coupling > 0
        a = a[active]
        b = b[active]
        if len(a) == 0:
            return 0

        spin_a = lattice.spin[a].copy()
        lattice.spin[a] = lattice.spin[b]
        lattice.spin[b] = spin_a

        phase_a = lattice.phase[a].copy()
        lattice.phase[a] = lattice.phase[b]
        lattice.phase[b] = phase_a

        e0_a = lattice.e_0[a]
        e0_b = lattice.e_0[b]
        sym_a, asym_a = lattice.e_sym[a].copy(), lattice.e_asym[a].copy()
        sym_b, asym_b = lattice.e_sym[b].copy(), lattice.e_asym[b].copy()

        # Equal e_0: move raw components (bit-exact). Otherwise move the asymmetric fraction.
        same = e0_a == e0_b
        new_asym_a, new_asym_b = asym_b.copy(), asym_a.copy()
        new_sym_a, new_sym_b = sym_b.copy(), sym_a.copy()
        diff = ~same
        if diff.any():
            new_asym_a[diff] = _fraction(asym_b[diff], e0_b[diff]) * e0_a[diff]
            new_asym_b[diff] = _fraction(asym_a[diff], e0_a[diff]) * e0_b[diff]
            new_sym_a[diff] = e0_a[diff] - new_asym_a[diff]
            new_sym_b[diff] = e0_b[diff] - new_asym_b[diff]
        lattice.e_asym[a] = new_asym_a
        lattice.e_asym[b] = new_asym_b
        lattice.e_sym[a] = new_sym_a
        lattice.e_sym[b] = new_sym_b

        return int(len(a))

    def apply_inverse_phase(self, lattice: Lattice, phase: SwapPhase) -> int:
        """Inverse of ``apply_phase``; the pair rule is an involution."""
        return self.apply_phase(lattice, phase)

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def step(self, lattice: Lattice) -> int:
        """Advance one time step (six phases in forward order)."""
        exchanged = 0
        for phase in FORWARD_ORDER:
            exchanged += self.apply_phase(lattice, phase)
        self.steps_forward += 1
        return exchanged

    def reverse_step(self, lattice: Lattice) -> int:
        """Undo one time step (inverse phases in reverse order)."""
        exchanged = 0
        for phase in REVERSE_ORDER:
            exchanged += self.apply_inverse_phase(lattice, phase)
        self.steps_backward += 1
        return exchanged

    @staticmethod
    def phase_names(order=FORWARD_ORDER) -> list[str]:
        return [phase.name for phase in order]
