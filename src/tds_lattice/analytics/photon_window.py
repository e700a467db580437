"""
Photon window test.

Runs N steps forward and N back on shadow copies and compares the spin field
with its starting point. A Hamming ratio below 0.001 counts as a pass.
"""

from dataclasses import dataclass

import numpy as np

from ..lattice import Lattice
from ..physics import Direction, Physics
from ..utils.logger import Logger

PASS_RATIO = 0.001


@dataclass(frozen=True)
class PhotonWindowResult:
    steps: int
    hamming_distance: int
    ratio: float
    passed: bool


class PhotonWindowTest:

    def __init__(self, physics: Physics, steps: int = 64, pass_ratio: float = PASS_RATIO):
        self.physics = physics
        self.steps = steps
        self.pass_ratio = pass_ratio

    def run(self, lattice: Lattice) -> PhotonWindowResult:
        shadow = lattice.copy()
        shadow_physics = self.physics.copy()

        for _ in range(self.steps):
            shadow_physics.step(shadow, Direction.FORWARD)
        for _ in range(self.steps):
            shadow_physics.step(shadow, Direction.BACKWARD)

        distance = int(np.count_nonzero(shadow.spin != lattice.spin))
        ratio = distance / lattice.n_nodes if lattice.n_nodes else 0.0
        passed = ratio < self.pass_ratio

        Logger.log(
            f"Photon window test ({self.steps} steps): hamming={distance}, ratio={ratio:.6f}, passed={passed}",
            Logger.LogPriority.INFO,
        )
        return PhotonWindowResult(steps=self.steps, hamming_distance=distance, ratio=ratio, passed=passed)
