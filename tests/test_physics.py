"""
Tests for step orchestration, fatal rollback and anomaly injection.
"""

import numpy as np
import pytest

from tds_lattice.config import AnomalyConfig, ConservationConfig, SimulationConfig
from tds_lattice.exceptions import FatalInvariantBreachError
from tds_lattice.lattice import Lattice
from tds_lattice.node import NodeState
from tds_lattice.physics import AnomalyField, Direction, Physics


class _DriftingDynamics:
    """Stand-in dynamics that leaks energy on every step."""

    def __init__(self, leak):
        self.J = 1.0
        self.leak = leak

    def step(self, lattice):
        lattice.e_sym[0] += self.leak

    def reverse_step(self, lattice):
        lattice.e_sym[0] -= self.leak


class TestStep:
    """Tests for Physics.step."""

    def test_forward_then_backward_restores(self):
        lattice = Lattice([8, 8])
        physics = Physics()
        physics.propagate_anomaly(lattice, 10, AnomalyField(amplitude=0.4, radius=2.0))
        before = lattice.copy()
        for _ in range(5):
            physics.step(lattice, Direction.FORWARD)
        for _ in range(5):
            physics.step(lattice, Direction.BACKWARD)
        np.testing.assert_array_equal(lattice.e_asym, before.e_asym)
        np.testing.assert_array_equal(lattice.spin, before.spin)

    def test_report_contents(self):
        lattice = Lattice([6, 6])
        report = Physics().step(lattice)
        assert report.direction == Direction.FORWARD
        assert report.energies.e_sym == pytest.approx(36.0)
        assert report.deviation == 0.0
        assert report.violations == []
        assert report.corrections == []
        assert report.new_anomaly_ids == []

    def test_small_drift_corrected(self):
        lattice = Lattice([4, 4])
        physics = Physics()
        physics.dynamics = _DriftingDynamics(leak=5e-6)
        report = physics.step(lattice)
        assert len(report.violations) == 1
        assert len(report.corrections) == 1
        assert lattice.total_energy().deviation <= 1e-6

    def test_fatal_breach_rolls_back(self):
        lattice = Lattice([4, 4])
        lattice.e_asym[3] = 0.25
        lattice.e_sym[3] = 0.75
        before = lattice.copy()
        physics = Physics()
        physics.dynamics = _DriftingDynamics(leak=0.5)

        with pytest.raises(FatalInvariantBreachError) as excinfo:
            physics.step(lattice)

        assert excinfo.value.report is not None
        assert excinfo.value.report.global_deviation == pytest.approx(0.5)
        np.testing.assert_array_equal(lattice.e_sym, before.e_sym)
        np.testing.assert_array_equal(lattice.e_asym, before.e_asym)
        # detector never saw the breached state
        assert physics.detector.scan_count == 0

    def test_structure_breach_rolls_back(self):
        class _Corrupting(_DriftingDynamics):
            def step(self, lattice):
                lattice.e_asym[1] = np.nan

        lattice = Lattice([4])
        physics = Physics()
        physics.dynamics = _Corrupting(leak=0.0)
        with pytest.raises(FatalInvariantBreachError, match="structure"):
            physics.step(lattice)
        assert lattice.e_asym[1] == 0.0

    def test_auto_correct_off(self):
        config = SimulationConfig(conservation=ConservationConfig(auto_correct=False))
        lattice = Lattice([4, 4])
        physics = Physics(config)
        physics.dynamics = _DriftingDynamics(leak=5e-6)
        report = physics.step(lattice)
        assert len(report.violations) == 1
        assert report.corrections == []
        assert lattice.e_sym[0] == pytest.approx(1.0 + 5e-6)


class TestPropagateAnomaly:
    """Tests for the explicit perturbation."""

    def test_center_only(self):
        lattice = Lattice([8, 8])
        center = lattice.center_index()
        affected = Physics().propagate_anomaly(lattice, center, AnomalyField(amplitude=0.5))
        assert affected == [center]
        assert lattice.e_asym[center] == 0.5
        assert lattice.e_sym[center] == 0.5
        assert lattice.spin[center] == -1
        assert lattice.state[center] == NodeState.BROKEN

    def test_free_packet_keeps_spin_and_moves(self):
        lattice = Lattice([16])
        physics = Physics()
        physics.propagate_anomaly(lattice, 4, AnomalyField(amplitude=0.5, flip_spin=False))
        assert np.all(lattice.spin == 1)
        physics.step(lattice)
        assert lattice.e_asym[4] == 0.0
        assert lattice.total_energy().e_asym == pytest.approx(0.5)

    def test_exponential_falloff(self):
        lattice = Lattice([11])
        affected = Physics().propagate_anomaly(lattice, 5, AnomalyField(amplitude=0.4, radius=2.0))
        assert affected == [3, 4, 5, 6, 7]
        assert lattice.e_asym[5] == pytest.approx(0.4)
        assert lattice.e_asym[4] == pytest.approx(0.4 * np.exp(-0.5))
        assert lattice.e_asym[7] == pytest.approx(0.4 * np.exp(-1.0))
        np.testing.assert_allclose(lattice.e_sym + lattice.e_asym, lattice.e_0)

    def test_wraps_on_periodic(self):
        lattice = Lattice([10])
        affected = Physics().propagate_anomaly(lattice, 0, AnomalyField(amplitude=0.2, radius=1.0))
        assert affected == [0, 1, 9]

    def test_clipped_to_e0(self):
        lattice = Lattice([4])
        Physics().propagate_anomaly(lattice, 1, AnomalyField(amplitude=3.0))
        assert lattice.e_asym[1] == 1.0
        assert lattice.e_sym[1] == 0.0


class TestHelpers:
    """Entropy, coupling and copies."""

    def test_entropy_uniform_vacuum(self):
        assert Physics.entropy(Lattice([4, 4])) == 0.0

    def test_entropy_even_split(self):
        lattice = Lattice([4])
        lattice.state[:2] = NodeState.BROKEN
        assert Physics.entropy(lattice) == pytest.approx(1.0)

    def test_set_coupling(self):
        physics = Physics()
        physics.set_coupling(-2.0)
        assert physics.J == -2.0

    def test_copy_is_independent(self):
        physics = Physics(SimulationConfig(anomaly=AnomalyConfig(history_depth=5)))
        lattice = Lattice([4])
        physics.step(lattice)
        shadow = physics.copy()
        shadow.step(lattice.copy())
        assert physics.detector.scan_count == 1
        assert shadow.detector.scan_count == 2

    def test_apply_config_resizes_detector(self):
        physics = Physics()
        config = SimulationConfig(anomaly=AnomalyConfig(history_depth=7))
        config.dynamics.J = 0.5
        physics.apply_config(config)
        assert physics.detector.history_depth == 7
        assert physics.J == 0.5
