"""
Lattice arena.

Node data lives in contiguous numpy arrays indexed by node id
(``index = z * nx * ny + y * nx + x``). The neighbour relation is precomputed
once into an index table and an edge list, so cloning a lattice is a handful
of array copies rather than a graph walk.

Invariants:
    - Node count and topology are fixed after construction.
    - e_sym + e_asym == e_0 per node (within tolerance).
    - sum(e_sym) + sum(e_asym) == sum(e_0) globally.
"""

import copy
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np

from .config import CONNECTIVITY_BY_DIMENSION, LatticeConfig
from .node import Node, NodeState

ARRAY_FIELDS = ("spin", "state", "e_sym", "e_asym", "e_0", "omega", "phase")

Coord = Union[int, Sequence[int]]


@dataclass(frozen=True)
class EnergyTotals:
    """Exact lattice-wide energy sums."""
    e_sym: float
    e_asym: float
    e_0: float

    @property
    def actual(self) -> float:
        """sum(e_sym) + sum(e_asym)."""
        return self.e_sym + self.e_asym

    @property
    def deviation(self) -> float:
        """|sum(e_sym) + sum(e_asym) - sum(e_0)|."""
        return abs(self.actual - self.e_0)


@dataclass(frozen=True)
class LatticeStatistics:
    total: int
    count_vacuum: int
    count_broken: int
    count_anomalous: int
    phase_coherence: float

    @property
    def anomaly_density(self) -> float:
        return self.count_anomalous / self.total if self.total else 0.0

    @property
    def symmetry_ratio(self) -> float:
        return self.count_vacuum / self.total if self.total else 0.0


def _neighbor_offsets(dimension: int, connectivity: int) -> list[tuple[int, int, int]]:
    if dimension == 1:
        return [(-1, 0, 0), (1, 0, 0)]
    if dimension == 2:
        offsets = [(-1, 0, 0), (1, 0, 0), (0, -1, 0), (0, 1, 0)]
        if connectivity == 8:
            offsets += [(-1, -1, 0), (1, -1, 0), (-1, 1, 0), (1, 1, 0)]
        return offsets
    return [(-1, 0, 0), (1, 0, 0), (0, -1, 0), (0, 1, 0), (0, 0, -1), (0, 0, 1)]


class Lattice:
    """
    Ordered collection of nodes with fixed topology and boundary policy.

    Attributes:
        spin: int8 array of +1/-1.
        state: int8 array of NodeState values.
        e_sym, e_asym, e_0: float64 energy arrays.
        omega: float64 oscillation frequencies.
        phase: float64 phase angles in radians.
    """

    def __init__(
        self,
        shape: Sequence[int],
        boundary: str = "periodic",
        connectivity: Optional[int] = None,
        e_0: float = 1.0,
    ):
        if not 1 <= len(shape) <= 3:
            raise ValueError(f"shape must have 1-3 extents (got {list(shape)})")
        if boundary not in ("open", "periodic"):
            raise ValueError(f"Unknown boundary policy: {boundary}")
        self.dimension = len(shape)
        if connectivity is None:
            connectivity = CONNECTIVITY_BY_DIMENSION[self.dimension][0]
        if connectivity not in CONNECTIVITY_BY_DIMENSION[self.dimension]:
            raise ValueError(f"connectivity {connectivity} not valid for {self.dimension}D")

        padded = [int(n) for n in shape] + [1] * (3 - len(shape))
        self.shape = tuple(int(n) for n in shape)
        self.nx, self.ny, self.nz = padded
        self.boundary = boundary
        self.connectivity = connectivity
        self.n_nodes = self.nx * self.ny * self.nz

        ids = np.arange(self.n_nodes)
        self.x = ids % self.nx
        self.y = (ids // self.nx) % self.ny
        self.z = ids // (self.nx * self.ny)

        self._neighbors, self.edges = self._build_topology()

        self.spin = np.ones(self.n_nodes, dtype=np.int8)
        self.state = np.full(self.n_nodes, NodeState.VACUUM, dtype=np.int8)
        self.e_0 = np.full(self.n_nodes, float(e_0), dtype=np.float64)
        self.e_sym = self.e_0.copy()
        self.e_asym = np.zeros(self.n_nodes, dtype=np.float64)
        self.omega = np.zeros(self.n_nodes, dtype=np.float64)
        self.phase = np.zeros(self.n_nodes, dtype=np.float64)

    @classmethod
    def from_config(cls, config: LatticeConfig) -> "Lattice":
        """Build and initialize a lattice from its config section."""
        lattice = cls(
            config.shape,
            boundary=config.boundary,
            connectivity=config.connectivity,
            e_0=config.e_0,
        )
        lattice.initialize_spins(config.initial_spin, kx=config.initial_kx, seed=config.seed)
        return lattice

    # -------------------------------------------------------------------------
    # Topology
    # -------------------------------------------------------------------------

    def _build_topology(self) -> tuple[list[np.ndarray], np.ndarray]:
        offsets = _neighbor_offsets(self.dimension, self.connectivity)
        extents = (self.nx, self.ny, self.nz)
        periodic = self.boundary == "periodic"

        neighbors = []
        edges = set()
        for i in range(self.n_nodes):
            coord = (int(self.x[i]), int(self.y[i]), int(self.z[i]))
            found = []
            for offset in offsets:
                target = []
                for axis in range(3):
                    c = coord[axis] + offset[axis]
                    if periodic:
                        c %= extents[axis]
                    elif not 0 <= c < extents[axis]:
                        break
                    target.append(c)
                else:
                    j = self.index_of(target)
                    if j != i and j not in found:
                        found.append(j)
                        edges.add((min(i, j), max(i, j)))
            neighbors.append(np.array(found, dtype=np.int64))

        edge_array = np.array(sorted(edges), dtype=np.int64).reshape(-1, 2)
        return neighbors, edge_array

    def index_of(self, coord: Sequence[int]) -> int:
        """Node id of an (x[, y[, z]]) coordinate; raises IndexError when out of range."""
        padded = list(coord) + [0] * (3 - len(coord))
        x, y, z = (int(c) for c in padded)
        if not (0 <= x < self.nx and 0 <= y < self.ny and 0 <= z < self.nz):
            raise IndexError(f"Coordinate {tuple(coord)} outside lattice {self.shape}")
        return z * (self.nx * self.ny) + y * self.nx + x

    def coord_of(self, index: int) -> tuple[int, int, int]:
        if not 0 <= index < self.n_nodes:
            raise IndexError(f"Node id {index} outside lattice of {self.n_nodes} nodes")
        return int(self.x[index]), int(self.y[index]), int(self.z[index])

    def _resolve(self, coord_or_index: Coord) -> int:
        if isinstance(coord_or_index, (int, np.integer)):
            if not 0 <= coord_or_index < self.n_nodes:
                raise IndexError(f"Node id {coord_or_index} outside lattice of {self.n_nodes} nodes")
            return int(coord_or_index)
        return self.index_of(coord_or_index)

    def neighbors(self, coord_or_index: Coord) -> np.ndarray:
        """Neighbour node ids of a site given by id or coordinate."""
        return self._neighbors[self._resolve(coord_or_index)].copy()

    def center_index(self) -> int:
        return self.index_of((self.nx // 2, self.ny // 2, self.nz // 2))

    def distances_from(self, index: int) -> np.ndarray:
        """Euclidean distance from ``index`` to every node, minimum image when periodic."""
        cx, cy, cz = self.coord_of(index)
        deltas = []
        for values, center, extent in ((self.x, cx, self.nx), (self.y, cy, self.ny), (self.z, cz, self.nz)):
            d = np.abs(values - center)
            if self.boundary == "periodic":
                d = np.minimum(d, extent - d)
            deltas.append(d.astype(np.float64))
        return np.sqrt(deltas[0] ** 2 + deltas[1] ** 2 + deltas[2] ** 2)

    # -------------------------------------------------------------------------
    # Initialization
    # -------------------------------------------------------------------------

    def initialize_spins(self, pattern: str = "uniform", kx: int = 1, seed: int = 42) -> None:
        """
        Set the spin field.

        Patterns:
            uniform: all +1 (ordered vacuum).
            random:  independent +/-1 from a seeded generator.
            cosine:  sign(cos(2*pi*kx*x/nx)), the reference photon pattern.
        """
        if pattern == "uniform":
            self.spin[:] = 1
        elif pattern == "random":
            rng = np.random.default_rng(seed)
            self.spin[:] = rng.choice(np.array([-1, 1], dtype=np.int8), size=self.n_nodes)
        elif pattern == "cosine":
            u = np.cos(2.0 * np.pi * kx * self.x / self.nx)
            self.spin[:] = np.where(u >= 0, 1, -1)
        else:
            raise ValueError(f"Unknown spin pattern: {pattern}")

    def rescale_e0(self, e_0: float) -> None:
        """Assign a new uniform e_0, keeping each node's asymmetric fraction."""
        fraction = np.divide(self.e_asym, self.e_0, out=np.zeros_like(self.e_asym), where=self.e_0 > 0)
        self.e_0[:] = e_0
        self.e_asym[:] = fraction * e_0
        self.e_sym[:] = self.e_0 - self.e_asym

    # -------------------------------------------------------------------------
    # Read operations (pure)
    # -------------------------------------------------------------------------

    def node(self, index: int) -> Node:
        i = self._resolve(index)
        return Node(
            index=i,
            coord=self.coord_of(i),
            spin=int(self.spin[i]),
            state=NodeState(int(self.state[i])),
            e_sym=float(self.e_sym[i]),
            e_asym=float(self.e_asym[i]),
            e_0=float(self.e_0[i]),
            omega=float(self.omega[i]),
            phase=float(self.phase[i]),
        )

    def nodes(self) -> list[Node]:
        return [self.node(i) for i in range(self.n_nodes)]

    def total_energy(self) -> EnergyTotals:
        """Exact sums, recomputed on every call."""
        return EnergyTotals(
            e_sym=math.fsum(self.e_sym),
            e_asym=math.fsum(self.e_asym),
            e_0=math.fsum(self.e_0),
        )

    def informational_tension(self, J: float = 1.0) -> float:
        """T_info = J * sum over edges (1 - s_i * s_j), each edge once."""
        if len(self.edges) == 0:
            return 0.0
        s = self.spin.astype(np.int64)
        products = s[self.edges[:, 0]] * s[self.edges[:, 1]]
        return float(J * np.sum(1 - products))

    def statistics(self) -> LatticeStatistics:
        counts = np.bincount(self.state.astype(np.int64), minlength=3)
        coherence = float(np.abs(np.mean(np.exp(1j * self.phase)))) if self.n_nodes else 0.0
        return LatticeStatistics(
            total=self.n_nodes,
            count_vacuum=int(counts[NodeState.VACUUM]),
            count_broken=int(counts[NodeState.BROKEN]),
            count_anomalous=int(counts[NodeState.ANOMALOUS]),
            phase_coherence=coherence,
        )

    def anomaly_ids(self) -> list[int]:
        return np.flatnonzero(self.state == NodeState.ANOMALOUS).tolist()

    def check_structure(self) -> tuple[bool, Optional[str]]:
        """Verify node count, array shapes and value domains."""
        if self.n_nodes != self.nx * self.ny * self.nz:
            return False, "node count does not match extents"
        for name in ARRAY_FIELDS:
            array = getattr(self, name)
            if array.shape != (self.n_nodes,):
                return False, f"{name} array has shape {array.shape}, expected ({self.n_nodes},)"
        if len(self._neighbors) != self.n_nodes:
            return False, "neighbour table size changed"
        if not np.all(np.abs(self.spin) == 1):
            return False, "spin outside {-1, +1}"
        for name in ("e_sym", "e_asym", "e_0", "omega", "phase"):
            if not np.all(np.isfinite(getattr(self, name))):
                return False, f"non-finite values in {name}"
        return True, None

    # -------------------------------------------------------------------------
    # Copies and snapshots
    # -------------------------------------------------------------------------

    def copy(self) -> "Lattice":
        """Deep, independent copy. Topology tables are immutable and shared."""
        clone = copy.copy(self)
        for name in ARRAY_FIELDS:
            setattr(clone, name, getattr(self, name).copy())
        return clone

    def restore_from(self, other: "Lattice") -> None:
        """Overwrite this lattice's node data in place with ``other``'s."""
        if other.shape != self.shape or other.boundary != self.boundary:
            raise ValueError("Cannot restore from a lattice with different geometry")
        for name in ARRAY_FIELDS:
            np.copyto(getattr(self, name), getattr(other, name))

    def load_snapshot(self, snapshot: "LatticeSnapshot") -> None:
        """Overwrite node data in place from a snapshot of the same geometry."""
        if snapshot.shape != self.shape or snapshot.boundary != self.boundary:
            raise ValueError("Cannot load a snapshot with different geometry")
        for name in ARRAY_FIELDS:
            np.copyto(getattr(self, name), snapshot.arrays[name])

    def snapshot(self, J: float = 1.0, step_index: int = 0) -> "LatticeSnapshot":
        arrays = {}
        for name in ARRAY_FIELDS:
            array = getattr(self, name).copy()
            array.setflags(write=False)
            arrays[name] = array
        return LatticeSnapshot(
            shape=self.shape,
            boundary=self.boundary,
            connectivity=self.connectivity,
            step_index=step_index,
            arrays=arrays,
            total_energy=self.total_energy(),
            t_info=self.informational_tension(J),
            statistics=self.statistics(),
        )


@dataclass(frozen=True)
class LatticeSnapshot:
    """
    Read-only view of a fully stepped lattice.

    Arrays are private copies flagged non-writeable, so readers never observe
    a lattice mid-update and cannot mutate the live one.
    """
    shape: tuple
    boundary: str
    connectivity: int
    step_index: int
    arrays: dict
    total_energy: EnergyTotals
    t_info: float
    statistics: LatticeStatistics

    @property
    def n_nodes(self) -> int:
        return len(self.arrays["spin"])

    @property
    def nodes(self) -> list[Node]:
        """Node views read straight from the snapshot arrays."""
        nx, ny = (list(self.shape) + [1, 1])[:2]
        a = self.arrays
        return [
            Node(
                index=i,
                coord=(i % nx, (i // nx) % ny, i // (nx * ny)),
                spin=int(a["spin"][i]),
                state=NodeState(int(a["state"][i])),
                e_sym=float(a["e_sym"][i]),
                e_asym=float(a["e_asym"][i]),
                e_0=float(a["e_0"][i]),
                omega=float(a["omega"][i]),
                phase=float(a["phase"][i]),
            )
            for i in range(self.n_nodes)
        ]

    def to_lattice(self) -> Lattice:
        """Rebuild an independent live lattice from this snapshot."""
        lattice = Lattice(self.shape, boundary=self.boundary, connectivity=self.connectivity)
        for name in ARRAY_FIELDS:
            np.copyto(getattr(lattice, name), self.arrays[name])
        return lattice
