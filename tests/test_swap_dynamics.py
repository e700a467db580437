"""
Tests for the six-phase swap dynamics.

Tests:
    - Pair tables are disjoint partitions
    - Pair rule exchanges only aligned pairs
    - step / reverse_step are exact inverses
    - Photon packets travel two sites per step
"""

import warnings

import numpy as np
import pytest

from tds_lattice.lattice import Lattice
from tds_lattice.swap_dynamics import FORWARD_ORDER, REVERSE_ORDER, SwapDynamics, SwapPhase


def _excite(lattice, index, e_asym):
    lattice.e_asym[index] = e_asym
    lattice.e_sym[index] = lattice.e_0[index] - e_asym


class TestPairTables:
    """Tests for phase pair computation."""

    def test_phase_order(self):
        assert SwapDynamics.phase_names() == ["X_EVEN", "Y_ODD", "Z_EVEN", "X_ODD", "Y_EVEN", "Z_ODD"]
        assert REVERSE_ORDER[0] == SwapPhase.Z_ODD

    @pytest.mark.parametrize("shape,boundary", [
        ([8, 8], "periodic"),
        ([7, 5], "periodic"),
        ([6, 4, 2], "periodic"),
        ([5, 6], "open"),
    ])
    def test_pairs_disjoint(self, shape, boundary):
        lattice = Lattice(shape, boundary=boundary)
        dynamics = SwapDynamics()
        for phase in FORWARD_ORDER:
            a, b = dynamics.pairs_for_phase(lattice, phase)
            touched = np.concatenate([a, b])
            assert len(np.unique(touched)) == len(touched)

    def test_even_periodic_ring_covers_all_nodes(self):
        lattice = Lattice([8])
        dynamics = SwapDynamics()
        for phase in (SwapPhase.X_EVEN, SwapPhase.X_ODD):
            a, b = dynamics.pairs_for_phase(lattice, phase)
            assert len(a) == 4
        a, b = dynamics.pairs_for_phase(lattice, SwapPhase.X_ODD)
        assert (7, 0) in set(zip(a.tolist(), b.tolist()))

    def test_open_edge_left_unpaired(self):
        lattice = Lattice([8], boundary="open")
        a, b = SwapDynamics().pairs_for_phase(lattice, SwapPhase.X_ODD)
        assert len(a) == 3
        assert 0 not in a and 0 not in b
        assert 7 not in a and 7 not in b

    def test_odd_periodic_extent_has_no_wrap(self):
        lattice = Lattice([7])
        a, _ = SwapDynamics().pairs_for_phase(lattice, SwapPhase.X_EVEN)
        assert sorted(a.tolist()) == [0, 2, 4]

    def test_unit_axis_is_identity(self):
        lattice = Lattice([8])
        a, _ = SwapDynamics().pairs_for_phase(lattice, SwapPhase.Y_ODD)
        assert len(a) == 0


class TestPairRule:
    """Tests for the exchange rule."""

    def test_aligned_pair_exchanges(self):
        lattice = Lattice([4], boundary="open")
        _excite(lattice, 0, 0.4)
        lattice.phase[0] = 1.5
        SwapDynamics().apply_phase(lattice, SwapPhase.X_EVEN)
        assert lattice.e_asym[1] == 0.4
        assert lattice.e_asym[0] == 0.0
        assert lattice.phase[1] == 1.5

    def test_anti_aligned_pair_is_identity(self):
        lattice = Lattice([4], boundary="open")
        lattice.spin[0] = -1
        _excite(lattice, 0, 0.4)
        exchanged = SwapDynamics().apply_phase(lattice, SwapPhase.X_EVEN)
        assert lattice.e_asym[0] == 0.4
        assert lattice.spin[0] == -1
        # pair (2, 3) is aligned and still counts
        assert exchanged == 1

    def test_negative_coupling_swaps_anti_aligned(self):
        lattice = Lattice([2], boundary="open")
        lattice.spin[:] = [1, -1]
        SwapDynamics(J=-1.0).apply_phase(lattice, SwapPhase.X_EVEN)
        assert lattice.spin.tolist() == [-1, 1]

    def test_zero_coupling_freezes(self):
        lattice = Lattice([4])
        _excite(lattice, 0, 0.3)
        SwapDynamics(J=0.0).step(lattice)
        assert lattice.e_asym[0] == 0.3

    def test_unequal_e0_moves_fraction(self):
        lattice = Lattice([2], boundary="open")
        lattice.e_0[:] = [1.0, 2.0]
        lattice.e_sym[:] = [0.5, 2.0]
        lattice.e_asym[:] = [0.5, 0.0]
        SwapDynamics().apply_phase(lattice, SwapPhase.X_EVEN)
        assert lattice.e_asym[1] == pytest.approx(1.0)
        assert lattice.e_sym[1] == pytest.approx(1.0)
        assert lattice.e_asym[0] == pytest.approx(0.0)
        np.testing.assert_allclose(lattice.e_sym + lattice.e_asym, lattice.e_0)

    def test_zero_e0_exchanges_without_warnings(self):
        lattice = Lattice([8], e_0=0.0)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            SwapDynamics().step(lattice)
        np.testing.assert_array_equal(lattice.e_asym, 0.0)
        np.testing.assert_array_equal(lattice.e_sym, 0.0)

    def test_zero_e0_partner_receives_nothing(self):
        lattice = Lattice([2], boundary="open")
        lattice.e_0[:] = [0.0, 2.0]
        lattice.e_sym[:] = [0.0, 2.0]
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            SwapDynamics().apply_phase(lattice, SwapPhase.X_EVEN)
        assert lattice.e_asym[1] == 0.0
        assert lattice.e_sym[1] == pytest.approx(2.0)
        np.testing.assert_array_equal(lattice.e_sym + lattice.e_asym, lattice.e_0)

    def test_phase_is_involution(self):
        lattice = Lattice([6, 6])
        lattice.initialize_spins("random", seed=3)
        rng = np.random.default_rng(3)
        lattice.e_asym[:] = rng.uniform(0, 1, lattice.n_nodes)
        lattice.e_sym[:] = 1.0 - lattice.e_asym
        before = lattice.copy()
        dynamics = SwapDynamics()
        for phase in FORWARD_ORDER:
            dynamics.apply_phase(lattice, phase)
            dynamics.apply_inverse_phase(lattice, phase)
        np.testing.assert_array_equal(lattice.spin, before.spin)
        np.testing.assert_array_equal(lattice.e_asym, before.e_asym)


class TestReversibility:
    """Tests for step / reverse_step."""

    @pytest.mark.parametrize("shape,boundary", [
        ([16, 16], "periodic"),
        ([9, 7], "open"),
        ([4, 4, 4], "periodic"),
        ([15], "periodic"),
    ])
    def test_reverse_step_undoes_step(self, shape, boundary):
        lattice = Lattice(shape, boundary=boundary)
        lattice.initialize_spins("random", seed=11)
        rng = np.random.default_rng(11)
        lattice.e_asym[:] = rng.uniform(0, 1, lattice.n_nodes)
        lattice.e_sym[:] = 1.0 - lattice.e_asym
        lattice.phase[:] = rng.uniform(0, 2 * np.pi, lattice.n_nodes)
        before = lattice.copy()

        dynamics = SwapDynamics()
        for _ in range(25):
            dynamics.step(lattice)
        for _ in range(25):
            dynamics.reverse_step(lattice)

        np.testing.assert_array_equal(lattice.spin, before.spin)
        np.testing.assert_array_equal(lattice.e_sym, before.e_sym)
        np.testing.assert_array_equal(lattice.e_asym, before.e_asym)
        np.testing.assert_array_equal(lattice.phase, before.phase)
        assert dynamics.steps_forward == 25
        assert dynamics.steps_backward == 25

    def test_step_is_a_permutation(self):
        lattice = Lattice([10, 10])
        lattice.initialize_spins("random", seed=5)
        lattice.e_asym[:] = np.linspace(0, 1, lattice.n_nodes)
        lattice.e_sym[:] = 1.0 - lattice.e_asym
        SwapDynamics().step(lattice)
        np.testing.assert_array_equal(np.sort(lattice.e_asym), np.linspace(0, 1, 100))


class TestPhotonMotion:
    """Spin-aligned packets on a uniform ring travel two sites per step."""

    def test_even_site_moves_right(self):
        lattice = Lattice([8])
        _excite(lattice, 2, 0.5)
        SwapDynamics().step(lattice)
        assert np.flatnonzero(lattice.e_asym).tolist() == [4]

    def test_odd_site_moves_left(self):
        lattice = Lattice([8])
        _excite(lattice, 3, 0.5)
        SwapDynamics().step(lattice)
        assert np.flatnonzero(lattice.e_asym).tolist() == [1]

    def test_returns_after_half_ring(self):
        lattice = Lattice([12])
        _excite(lattice, 0, 0.5)
        _excite(lattice, 5, 0.2)
        before = lattice.e_asym.copy()
        dynamics = SwapDynamics()
        for _ in range(6):
            dynamics.step(lattice)
        np.testing.assert_array_equal(lattice.e_asym, before)

    def test_flipped_spin_is_frozen(self):
        lattice = Lattice([8, 8])
        center = lattice.center_index()
        lattice.spin[center] = -1
        _excite(lattice, center, 0.5)
        dynamics = SwapDynamics()
        for _ in range(10):
            dynamics.step(lattice)
        assert lattice.spin[center] == -1
        assert lattice.e_asym[center] == 0.5
        assert np.count_nonzero(lattice.e_asym) == 1
