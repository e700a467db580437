"""
End-to-end scenarios on the full Simulation.

Tests:
    - Quiet vacuum stays vacuum
    - A frozen spin defect becomes a persistent anomaly
    - Photon packets are reversible and conserve E_asym
    - Conservation holds on every step of a disordered run
    - Welford statistics agree with batch statistics over a long stream
"""

import numpy as np
import pytest

from tds_lattice.analytics import OnlineStatistics
from tds_lattice.config import AnomalyConfig, LatticeConfig, SimulationConfig
from tds_lattice.node import NodeState
from tds_lattice.physics import AnomalyField, Direction
from tds_lattice.simulation import Simulation, StepStatus


class TestVacuum:
    """8x8 open lattice with no perturbation."""

    def test_hundred_steps_stay_vacuum(self):
        config = SimulationConfig(lattice=LatticeConfig(shape=[8, 8], boundary="open", e_0=1.0))
        sim = Simulation(config)
        reports = sim.run(100)
        assert all(r.status == StepStatus.OK for r in reports)
        assert np.all(sim.lattice.state == NodeState.VACUUM)
        assert sim.lattice.total_energy().e_asym == pytest.approx(0.0, abs=1e-12)
        assert sim.get_conservation_status() == "good"


class TestPersistentAnomaly:
    """16x16 periodic lattice with E_asym = 0.5 injected at the center."""

    def _seeded(self):
        config = SimulationConfig(
            lattice=LatticeConfig(shape=[16, 16], boundary="periodic"),
            anomaly=AnomalyConfig(history_depth=50, persistence_threshold=0.8),
        )
        sim = Simulation(config)
        center = sim.lattice.center_index()
        sim.propagate_anomaly(center, AnomalyField(amplitude=0.5))
        return sim, center

    def test_center_becomes_anomalous(self):
        sim, center = self._seeded()
        reports = sim.run(50)
        assert sim.lattice.state[center] == NodeState.ANOMALOUS
        assert sim.lattice.omega[center] > 0
        assert sim.lattice.node(center).mass == pytest.approx(sim.lattice.omega[center])

        first = next(r for r in reports if r.new_anomaly_ids)
        # 41 / 50 is the first ratio above 0.8
        assert first.step_index == 41
        assert first.new_anomaly_ids == [center]

    def test_anomaly_survives_reversal_cycle(self):
        sim, _ = self._seeded()
        result = sim.validate_reversibility(100)
        assert result.score >= 0.95
        assert result.passed


class TestPhotonMode:
    """Spin-aligned packet on a ring of extent 4 * tau."""

    TAU = 4

    def _seeded(self):
        config = SimulationConfig(lattice=LatticeConfig(shape=[4 * self.TAU], boundary="periodic"))
        sim = Simulation(config)
        sim.propagate_anomaly(self.TAU, AnomalyField(amplitude=0.5, radius=2.0, flip_spin=False))
        return sim

    def test_reversibility_score(self):
        sim = self._seeded()
        assert sim.validate_reversibility(4 * self.TAU).score >= 0.99

    def test_asym_total_conserved_and_periodic(self):
        sim = self._seeded()
        initial = sim.lattice.e_asym.copy()
        total = sim.lattice.total_energy().e_asym

        for step in range(1, 4 * self.TAU + 1):
            report = sim.step()
            assert report.energies.e_asym == pytest.approx(total, abs=1e-12)
            if step % (2 * self.TAU) == 0:
                np.testing.assert_array_equal(sim.lattice.e_asym, initial)

        for _ in range(4 * self.TAU):
            sim.step(Direction.BACKWARD)
        np.testing.assert_array_equal(sim.lattice.e_asym, initial)
        assert sim.step_index == 0


class TestConservationProperty:
    """Global conservation after enforcement on every step."""

    def test_disordered_run(self):
        config = SimulationConfig(lattice=LatticeConfig(shape=[12, 12], initial_spin="random", seed=4))
        sim = Simulation(config)
        rng = np.random.default_rng(4)
        for node_id in rng.choice(sim.lattice.n_nodes, size=10, replace=False):
            sim.propagate_anomaly(int(node_id), AnomalyField(amplitude=0.3, radius=1.5))
        for report in sim.run(60):
            assert report.status != StepStatus.FATAL
            assert report.energies.deviation <= config.conservation.tolerance


class TestWelfordAgainstBatch:
    """Streaming statistics match numpy batch statistics."""

    def test_ten_thousand_updates(self):
        rng = np.random.default_rng(1234)
        x = rng.normal(100.0, 3.0, 10_000)
        y = 0.5 * x + rng.normal(0.0, 1.0, 10_000)

        stats = OnlineStatistics()
        for a, b in zip(x, y):
            stats.update(float(a), float(b))

        assert stats.mean_sym == pytest.approx(np.mean(x), rel=1e-9)
        assert stats.mean_asym == pytest.approx(np.mean(y), rel=1e-9)
        assert stats.variance_sym == pytest.approx(np.var(x, ddof=1), rel=1e-9)
        assert stats.variance_asym == pytest.approx(np.var(y, ddof=1), rel=1e-9)
        assert stats.correlation == pytest.approx(np.corrcoef(x, y)[0, 1], rel=1e-9)
