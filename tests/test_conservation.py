"""
Tests for conservation measurement and correction.
"""

import numpy as np
import pytest

from tds_lattice.config import ConservationConfig
from tds_lattice.conservation import ConservationEnforcer
from tds_lattice.lattice import Lattice


class TestMeasure:
    """measure() is read-only."""

    def test_clean_lattice_is_conserved(self):
        report = ConservationEnforcer().measure(Lattice([8, 8]))
        assert report.is_conserved
        assert not report.is_fatal
        assert report.violations == []
        assert report.global_deviation == 0.0

    def test_node_violation_reported(self):
        lattice = Lattice([4, 4])
        lattice.e_sym[5] += 1e-3
        report = ConservationEnforcer().measure(lattice)
        assert [v.node_index for v in report.violations] == [5]
        v = report.violations[0]
        assert v.coord == (1, 1, 0)
        assert v.deviation == pytest.approx(1e-3)
        assert v.e_0_actual == pytest.approx(1.001)
        assert report.global_deviation == pytest.approx(1e-3)

    def test_measure_does_not_mutate(self):
        lattice = Lattice([4, 4])
        lattice.e_sym[0] = 1.5
        ConservationEnforcer().measure(lattice)
        assert lattice.e_sym[0] == 1.5

    def test_relative_tolerance_scales_with_total(self):
        lattice = Lattice([10, 10])
        lattice.e_sym[:] += 5e-7
        absolute = ConservationEnforcer(ConservationConfig(tolerance=1e-6)).measure(lattice)
        relative = ConservationEnforcer(ConservationConfig(tolerance=1e-6, tolerance_mode="relative")).measure(lattice)
        assert absolute.threshold == pytest.approx(1e-6)
        assert relative.threshold == pytest.approx(1e-4)
        # global drift of 5e-5 exceeds the absolute but not the relative threshold
        assert not absolute.is_conserved
        assert relative.is_conserved

    def test_fatal_beyond_hard_ceiling(self):
        lattice = Lattice([4, 4])
        lattice.e_sym[0] += 1.0
        enforcer = ConservationEnforcer()
        report = enforcer.measure(lattice)
        assert report.hard_ceiling == pytest.approx(1e-4)
        assert report.nodes_beyond_ceiling == 1
        assert enforcer.is_fatal(report)

    def test_relative_node_ceiling_uses_node_tolerance(self):
        lattice = Lattice([10, 10])
        lattice.e_sym[3] += 5e-4
        config = ConservationConfig(tolerance=1e-6, tolerance_mode="relative", hard_ceiling_factor=100.0)
        report = ConservationEnforcer(config).measure(lattice)
        # global ceiling is 100 * 1e-6 * 100 = 1e-2; node 3's own is 100 * 1e-6 * 1 = 1e-4
        assert report.hard_ceiling == pytest.approx(1e-2)
        assert report.global_deviation < report.hard_ceiling
        assert report.nodes_beyond_ceiling == 1
        assert report.is_fatal

    def test_relative_node_within_its_ceiling_not_fatal(self):
        lattice = Lattice([10, 10])
        lattice.e_sym[3] += 5e-5
        config = ConservationConfig(tolerance=1e-6, tolerance_mode="relative", hard_ceiling_factor=100.0)
        report = ConservationEnforcer(config).measure(lattice)
        assert [v.node_index for v in report.violations] == [3]
        assert report.nodes_beyond_ceiling == 0
        assert not report.is_fatal


class TestEnforce:
    """Per-node rescale and global redistribution."""

    def test_node_rescaled_keeping_ratio(self):
        lattice = Lattice([4, 4])
        lattice.e_sym[3] = 0.6
        lattice.e_asym[3] = 0.6
        enforcer = ConservationEnforcer()
        report = enforcer.enforce(lattice)
        assert lattice.e_sym[3] == pytest.approx(0.5)
        assert lattice.e_asym[3] == pytest.approx(0.5)
        assert len(report.corrections) == 1
        assert report.corrections[0].kind == "node"
        assert enforcer.measure(lattice).is_conserved

    def test_zero_total_node_reset_to_symmetric(self):
        lattice = Lattice([4])
        lattice.e_sym[2] = 0.0
        ConservationEnforcer().enforce(lattice)
        assert lattice.e_sym[2] == 1.0
        assert lattice.e_asym[2] == 0.0

    def test_global_drift_redistributed(self):
        lattice = Lattice([10, 10])
        # each node below its own tolerance, global sum well above it
        lattice.e_sym[:] += 5e-7
        enforcer = ConservationEnforcer()
        report = enforcer.enforce(lattice)
        assert report.violations == []
        assert [c.kind for c in report.corrections] == ["global"]
        assert report.corrections[0].n_nodes == 100
        assert lattice.total_energy().deviation <= 1e-6

    def test_redistribution_follows_energy_share(self):
        lattice = Lattice([4])
        lattice.e_asym[:] = [0.0, 0.5, 0.0, 0.0]
        lattice.e_sym[:] = [1.0, 0.5, 1.0, 1.0]
        lattice.e_sym[:] += 5e-7
        report = ConservationEnforcer().enforce(lattice)
        assert [c.kind for c in report.corrections] == ["global"]
        # each node gives back delta in proportion to its share of the total
        assert lattice.e_asym[1] == pytest.approx(0.5 * 4.0 / (4.0 + 2e-6), rel=1e-12)
        assert lattice.e_asym[0] == 0.0
        assert lattice.total_energy().deviation <= 1e-12

    def test_auto_correct_off_leaves_lattice(self):
        lattice = Lattice([4])
        lattice.e_sym[0] = 1.00001
        report = ConservationEnforcer(ConservationConfig(auto_correct=False)).enforce(lattice)
        assert lattice.e_sym[0] == 1.00001
        assert report.corrections == []
        assert len(report.violations) == 1

    def test_corrections_logged(self, log_file):
        lattice = Lattice([4])
        lattice.e_sym[0] = 1.00001
        ConservationEnforcer().enforce(lattice)
        entries = [e for e in log_file.read_entries() if "[WARNING]" in e]
        assert len(entries) == 1
        assert "Conservation correction" in entries[0]

    def test_correction_log_bounded(self):
        enforcer = ConservationEnforcer(ConservationConfig(max_logged_corrections=3))
        lattice = Lattice([4])
        for _ in range(5):
            lattice.e_sym[0] = 1.00001
            enforcer.enforce(lattice)
        assert len(enforcer.corrections) == 3
        assert enforcer.statistics()["total_violations"] == 5

    def test_export_corrections_csv(self):
        enforcer = ConservationEnforcer()
        lattice = Lattice([4])
        lattice.e_sym[1] = 0.9999
        enforcer.enforce(lattice)
        lines = enforcer.export_corrections_csv().splitlines()
        assert lines[0] == "timestamp,kind,first_node,last_node,n_nodes,deviation"
        assert ",node,1,1,1," in lines[1]

    def test_clear(self):
        enforcer = ConservationEnforcer()
        lattice = Lattice([4])
        lattice.e_sym[1] = 0.9999
        enforcer.enforce(lattice)
        enforcer.clear()
        assert enforcer.statistics()["total_corrections"] == 0


class TestEnergyRate:
    """dE_sym/dt = -dE_asym/dt diagnostic."""

    def test_exchange_between_components_is_valid(self):
        enforcer = ConservationEnforcer()
        lattice = Lattice([4])
        for k in range(5):
            lattice.e_asym[0] = 0.1 * k
            lattice.e_sym[0] = 1.0 - 0.1 * k
            enforcer.record_totals(lattice)
        check = enforcer.verify_energy_rate_relationship()
        assert check.is_valid
        assert check.samples == 5

    def test_unbalanced_change_flagged(self):
        enforcer = ConservationEnforcer()
        lattice = Lattice([4])
        enforcer.record_totals(lattice)
        lattice.e_asym[0] = 0.5
        enforcer.record_totals(lattice)
        check = enforcer.verify_energy_rate_relationship()
        assert not check.is_valid
        assert check.violations == 1
        assert check.max_deviation == pytest.approx(0.5)

    def test_window_is_bounded(self):
        enforcer = ConservationEnforcer(ConservationConfig(rate_window=3))
        lattice = Lattice([4])
        for _ in range(10):
            enforcer.record_totals(lattice)
        assert enforcer.verify_energy_rate_relationship().samples == 3

    def test_single_sample_trivially_valid(self):
        enforcer = ConservationEnforcer()
        enforcer.record_totals(Lattice([4]))
        assert enforcer.verify_energy_rate_relationship().is_valid

    def test_diagnostic_does_not_correct(self):
        enforcer = ConservationEnforcer()
        lattice = Lattice([4])
        enforcer.record_totals(lattice)
        lattice.e_asym[0] = 0.5
        enforcer.record_totals(lattice)
        enforcer.verify_energy_rate_relationship()
        np.testing.assert_array_equal(lattice.e_asym, [0.5, 0.0, 0.0, 0.0])
