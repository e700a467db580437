"""Conserved-energy drift against a fixed reference."""

import numpy as np

from ..lattice import Lattice


class DriftMonitor:
    """
    Tracks |E_0 - E_0_ref| where E_0 is the per-node mean of e_sym + e_asym.

    The reference is captured once and only moves on an explicit
    ``set_reference`` (e.g. after the configured E_0 changes).
    """

    def __init__(self, reference: float):
        self.reference = float(reference)
        self.reset()

    @classmethod
    def from_lattice(cls, lattice: Lattice) -> "DriftMonitor":
        return cls(cls.measure_e0(lattice))

    @staticmethod
    def measure_e0(lattice: Lattice) -> float:
        if lattice.n_nodes == 0:
            return 0.0
        return float(np.mean(lattice.e_sym + lattice.e_asym))

    def update(self, lattice: Lattice) -> float:
        drift = abs(self.measure_e0(lattice) - self.reference)
        self.last = drift
        self.max = max(self.max, drift)
        self.samples += 1
        self._total += drift
        return drift

    @property
    def mean(self) -> float:
        return self._total / self.samples if self.samples else 0.0

    def is_violated(self, threshold: float) -> bool:
        return self.max > threshold

    def set_reference(self, reference: float) -> None:
        self.reference = float(reference)
        self.reset()

    def reset(self) -> None:
        self.last = 0.0
        self.max = 0.0
        self.samples = 0
        self._total = 0.0
