"""
Fourier mode amplitude of the spin field along x.

    A_kx = (1 / N) * sum_i spin_i * cos(2 * pi * kx * x_i / nx)

The cosine factor depends only on x, so it is tabulated once per (nx, kx)
and gathered by each node's x coordinate.
"""

from collections import deque

import numpy as np

from ..lattice import Lattice


class ModeAmplitudeTracker:
    """Signed A_kx per update plus a rolling RMS over the last ``window`` values."""

    def __init__(self, nx: int, kx: int = 1, window: int = 100):
        if nx < 1:
            raise ValueError("nx must be >= 1")
        self.nx = nx
        self.window = window
        self.amplitudes: deque[float] = deque(maxlen=window)
        self.set_kx(kx)

    def set_kx(self, kx: int) -> None:
        """Rebuild the lookup table; only the amplitude series is cleared."""
        if kx < 0:
            raise ValueError("kx must be non-negative")
        self.kx = kx
        self.lut = np.cos(2.0 * np.pi * kx * np.arange(self.nx) / self.nx)
        self.amplitudes.clear()

    def set_window(self, window: int) -> None:
        self.window = window
        self.amplitudes = deque(self.amplitudes, maxlen=window)

    def _check(self, lattice: Lattice) -> None:
        if lattice.nx != self.nx:
            raise ValueError(f"Tracker built for nx={self.nx}, lattice has nx={lattice.nx}")

    def amplitude(self, lattice: Lattice) -> float:
        self._check(lattice)
        if lattice.n_nodes == 0:
            return 0.0
        return float(np.dot(lattice.spin.astype(np.float64), self.lut[lattice.x]) / lattice.n_nodes)

    def direct_amplitude(self, lattice: Lattice) -> float:
        """Same quantity with the cosine evaluated per node; for verification."""
        self._check(lattice)
        if lattice.n_nodes == 0:
            return 0.0
        weights = np.cos(2.0 * np.pi * self.kx * lattice.x / self.nx)
        return float(np.sum(lattice.spin * weights) / lattice.n_nodes)

    def update(self, lattice: Lattice) -> float:
        value = self.amplitude(lattice)
        self.amplitudes.append(value)
        return value

    def rms(self) -> float:
        if not self.amplitudes:
            return 0.0
        values = np.fromiter(self.amplitudes, dtype=np.float64)
        return float(np.sqrt(np.mean(values ** 2)))

    def reset(self) -> None:
        self.amplitudes.clear()
