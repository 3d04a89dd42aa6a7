"""Tests for the spread engine: host state, sporulation and dispersal.

Tests:
  1. Initial bay laurel infection from infected oaks
  2. Spore generation (zero sources, Poisson mean, weather scaling)
  3. Infection rule at the target cell (bay laurel first, then oaks)
  4. Conservation: S + I constant, S >= 0, I non-decreasing
  5. Reproducibility per seed
  6. Small end-to-end grid
  7. Rejection of impossible tree counts
"""

import numpy as np
import pytest

from sod_spread.errors import HostDataError
from sod_spread.kernel import DispersalKernel
from sod_spread.spread import (
    HostState,
    SporulationRun,
    check_host_counts,
    initial_host_state,
    initial_umca_infection,
)
from sod_spread.weather import WeeklyWeather


STAY_HOME = DispersalKernel(scale_1=1e-6)


def _state(s_umca, i_umca, s_oaks, i_oaks):
    return HostState(
        susceptible_umca=np.array(s_umca, dtype=np.int32),
        infected_umca=np.array(i_umca, dtype=np.int32),
        susceptible_oaks=np.array(s_oaks, dtype=np.int32),
        infected_oaks=np.array(i_oaks, dtype=np.int32),
    )


def _weather(value=1.0, week=0):
    return WeeklyWeather(week=week, scalar=value)


def _landscape(n=15, umca=5, oaks=5, seed_cells=((7, 7),)):
    umca_grid = np.full((n, n), umca, dtype=np.int32)
    oaks_grid = np.full((n, n), oaks, dtype=np.int32)
    ioaks = np.zeros((n, n), dtype=np.int32)
    for r, c in seed_cells:
        ioaks[r, c] = 1
    lvtree = umca_grid + oaks_grid + 2
    return umca_grid, oaks_grid, lvtree, ioaks


# ═══════════════════════════════════════════════════════════════════════
# INITIAL STATE
# ═══════════════════════════════════════════════════════════════════════

class TestInitialInfection:
    def test_twice_infected_oaks(self):
        out = initial_umca_infection(np.array([[10]]), np.array([[3]]))
        assert out[0, 0] == 6

    def test_capped_at_umca(self):
        out = initial_umca_infection(np.array([[4]]), np.array([[3]]))
        assert out[0, 0] == 4

    def test_zero_where_no_infected_oaks(self):
        out = initial_umca_infection(np.array([[10, 10]]), np.array([[0, 1]]))
        np.testing.assert_array_equal(out, [[0, 2]])

    def test_no_umca(self):
        out = initial_umca_infection(np.array([[0]]), np.array([[5]]))
        assert out[0, 0] == 0

    def test_initial_host_state(self):
        st = initial_host_state(np.array([[10, 3]]), np.array([[5, 5]]),
                                np.array([[2, 0]]))
        np.testing.assert_array_equal(st.infected_umca, [[4, 0]])
        np.testing.assert_array_equal(st.susceptible_umca, [[6, 3]])
        np.testing.assert_array_equal(st.infected_oaks, [[2, 0]])
        np.testing.assert_array_equal(st.susceptible_oaks, [[3, 5]])

    def test_copy_is_independent(self):
        st = _state([[1]], [[1]], [[1]], [[1]])
        c = st.copy()
        c.infected_oaks[0, 0] = 9
        assert st.infected_oaks[0, 0] == 1

    def test_oaks_exhausted(self):
        assert _state([[1]], [[0]], [[0]], [[3]]).oaks_exhausted()
        assert not _state([[1]], [[0]], [[1]], [[3]]).oaks_exhausted()


# ═══════════════════════════════════════════════════════════════════════
# SPORE GENERATION
# ═══════════════════════════════════════════════════════════════════════

class TestGenerate:
    def test_no_infection_no_spores(self):
        run = SporulationRun(0, 1, _state(np.ones((4, 4)), np.zeros((4, 4)),
                                          np.ones((4, 4)), np.zeros((4, 4))))
        spores = run.generate(_weather(), spore_rate=4.4)
        assert spores.shape == (4, 4)
        assert not spores.any()

    def test_spores_only_from_infected_cells(self):
        i_umca = np.zeros((5, 5))
        i_umca[2, 3] = 10
        run = SporulationRun(0, 1, _state(np.zeros((5, 5)), i_umca,
                                          np.zeros((5, 5)), np.zeros((5, 5))))
        spores = run.generate(_weather(), spore_rate=4.4)
        mask = np.ones((5, 5), dtype=bool)
        mask[2, 3] = False
        assert not spores[mask].any()
        assert spores[2, 3] > 0

    def test_poisson_mean(self):
        n = 100
        run = SporulationRun(0, 7, _state(np.zeros((n, n)), np.full((n, n), 2),
                                          np.zeros((n, n)), np.zeros((n, n))))
        spores = run.generate(_weather(), spore_rate=4.4)
        assert spores.mean() == pytest.approx(8.8, rel=0.02)

    def test_zero_weather_no_spores(self):
        run = SporulationRun(0, 1, _state([[0]], [[50]], [[0]], [[0]]))
        assert run.generate(_weather(0.0), spore_rate=4.4)[0, 0] == 0

    def test_spatial_weather_scales_source(self):
        grid = np.array([[0.0, 1.0]])
        run = SporulationRun(0, 3, _state([[0, 0]], [[100, 100]], [[0, 0]], [[0, 0]]))
        spores = run.generate(WeeklyWeather(week=0, grid=grid), spore_rate=4.4)
        assert spores[0, 0] == 0
        assert spores[0, 1] > 0


# ═══════════════════════════════════════════════════════════════════════
# INFECTION RULE
# ═══════════════════════════════════════════════════════════════════════

class TestInfectionRule:
    def test_umca_saturated_cell_infects_umca(self):
        """S_umca == L: every landing spore infects until none are left."""
        st = _state([[2]], [[0]], [[0]], [[0]])
        run = SporulationRun(0, 1, st)
        new = run.disperse(np.array([[5]]), np.array([[2]]), STAY_HOME, _weather())
        assert new == 2
        assert st.susceptible_umca[0, 0] == 0
        assert st.infected_umca[0, 0] == 2

    def test_oaks_infected_when_no_umca(self):
        st = _state([[0]], [[0]], [[3]], [[0]])
        run = SporulationRun(0, 1, st)
        new = run.disperse(np.array([[2]]), np.array([[3]]), STAY_HOME, _weather())
        assert new == 2
        assert st.infected_oaks[0, 0] == 2
        assert st.susceptible_oaks[0, 0] == 1
        assert st.infected_umca[0, 0] == 0

    def test_zero_weather_at_target_blocks_infection(self):
        st = _state([[4]], [[0]], [[4]], [[0]])
        run = SporulationRun(0, 1, st)
        new = run.disperse(np.array([[10]]), np.array([[8]]), STAY_HOME, _weather(0.0))
        assert new == 0
        assert st.infected_umca[0, 0] == 0
        assert st.infected_oaks[0, 0] == 0

    def test_zero_live_trees_skipped(self):
        st = _state([[1]], [[0]], [[1]], [[0]])
        run = SporulationRun(0, 1, st)
        assert run.disperse(np.array([[10]]), np.array([[0]]), STAY_HOME, _weather()) == 0

    def test_fully_infected_cell_unchanged(self):
        st = _state([[0]], [[1]], [[0]], [[1]])
        run = SporulationRun(0, 1, st)
        assert run.disperse(np.array([[10]]), np.array([[2]]), STAY_HOME, _weather()) == 0
        assert st.infected_umca[0, 0] == 1
        assert st.infected_oaks[0, 0] == 1

    def test_mixed_cell_split_follows_host_shares(self):
        """Equal susceptible shares: infections split roughly evenly."""
        n_cells = 200
        st = _state(np.full((1, n_cells), 50), np.zeros((1, n_cells)),
                    np.full((1, n_cells), 50), np.zeros((1, n_cells)))
        run = SporulationRun(0, 11, st)
        run.disperse(np.full((1, n_cells), 10), np.full((1, n_cells), 100),
                     STAY_HOME, _weather())
        umca, oaks = st.infected_umca.sum(), st.infected_oaks.sum()
        assert 9 * n_cells < umca + oaks <= 10 * n_cells
        assert 0.4 < umca / (umca + oaks) < 0.6


# ═══════════════════════════════════════════════════════════════════════
# CONSERVATION
# ═══════════════════════════════════════════════════════════════════════

class TestConservation:
    def _run(self, seed=5):
        umca, oaks, lvtree, ioaks = _landscape()
        run = SporulationRun(0, seed, initial_host_state(umca, oaks, ioaks, lvtree))
        return run, umca, oaks, lvtree

    def test_totals_constant_and_non_negative(self):
        run, umca, oaks, lvtree = self._run()
        kernel = DispersalKernel(scale_1=2.0)
        for week in range(10):
            run.step(_weather(week=week), 4.4, lvtree, kernel)
            st = run.state
            np.testing.assert_array_equal(st.susceptible_umca + st.infected_umca, umca)
            np.testing.assert_array_equal(st.susceptible_oaks + st.infected_oaks, oaks)
            assert (st.susceptible_umca >= 0).all()
            assert (st.susceptible_oaks >= 0).all()

    def test_infection_never_decreases(self):
        run, _, _, lvtree = self._run()
        kernel = DispersalKernel(scale_1=2.0)
        prev_umca = run.state.infected_umca.copy()
        prev_oaks = run.state.infected_oaks.copy()
        for week in range(10):
            run.step(_weather(week=week), 4.4, lvtree, kernel)
            assert (run.state.infected_umca >= prev_umca).all()
            assert (run.state.infected_oaks >= prev_oaks).all()
            prev_umca = run.state.infected_umca.copy()
            prev_oaks = run.state.infected_oaks.copy()

    def test_epidemic_spreads(self):
        run, _, _, lvtree = self._run()
        before = run.state.infected_oaks.sum()
        run.run_weeks([_weather(week=w) for w in range(10)], 4.4, lvtree,
                      DispersalKernel(scale_1=2.0))
        assert run.state.infected_oaks.sum() > before


# ═══════════════════════════════════════════════════════════════════════
# REPRODUCIBILITY
# ═══════════════════════════════════════════════════════════════════════

class TestReproducibility:
    def _final(self, seed):
        umca, oaks, lvtree, ioaks = _landscape()
        run = SporulationRun(0, seed, initial_host_state(umca, oaks, ioaks, lvtree))
        run.run_weeks([_weather(week=w) for w in range(5)], 4.4, lvtree,
                      DispersalKernel(scale_1=3.0))
        return run.state

    def test_same_seed_same_result(self):
        a, b = self._final(42), self._final(42)
        np.testing.assert_array_equal(a.infected_oaks, b.infected_oaks)
        np.testing.assert_array_equal(a.infected_umca, b.infected_umca)

    def test_different_seed_different_result(self):
        a, b = self._final(42), self._final(43)
        assert not np.array_equal(a.infected_umca, b.infected_umca)


# ═══════════════════════════════════════════════════════════════════════
# END TO END
# ═══════════════════════════════════════════════════════════════════════

class TestSmallGrid:
    def test_three_by_three_one_week(self):
        """Center cell fully infected with capacity 1; neighbors gain at most 1."""
        umca = np.ones((3, 3), dtype=np.int32)
        oaks = np.zeros((3, 3), dtype=np.int32)
        lvtree = np.ones((3, 3), dtype=np.int32)
        check_host_counts(umca, oaks, oaks, lvtree)
        i_umca = np.zeros((3, 3), dtype=np.int32)
        i_umca[1, 1] = 1
        initial = _state(umca - i_umca, i_umca, oaks, oaks)

        kernel = DispersalKernel(scale_1=0.5)
        for seed in (1, 2):
            run = SporulationRun(seed, seed, initial.copy())
            run.step(_weather(), 4.4, lvtree, kernel)
            st = run.state
            assert st.infected_umca[1, 1] == 1
            assert (st.infected_umca <= 1).all()
            assert not st.infected_oaks.any()
            np.testing.assert_array_equal(st.susceptible_umca + st.infected_umca, umca)


# ═══════════════════════════════════════════════════════════════════════
# HOST COUNT VALIDATION
# ═══════════════════════════════════════════════════════════════════════

class TestHostCounts:
    def test_consistent_landscape_accepted(self):
        umca, oaks, lvtree, ioaks = _landscape()
        check_host_counts(umca, oaks, ioaks, lvtree)

    def test_more_infected_than_present_rejected(self):
        """One oak can not hold three infections."""
        with pytest.raises(HostDataError, match="ioaks"):
            initial_host_state(np.array([[0]]), np.array([[1]]), np.array([[3]]))

    def test_error_names_first_bad_cell(self):
        oaks = np.array([[2, 2], [2, 2]])
        ioaks = np.array([[0, 0], [0, 5]])
        with pytest.raises(HostDataError, match=r"\(1, 1\)"):
            check_host_counts(np.zeros((2, 2)), oaks, ioaks)

    @pytest.mark.parametrize("name", ["umca", "oaks", "ioaks", "lvtree"])
    def test_negative_count_rejected(self, name):
        counts = {
            'umca': np.array([[1, 1]]),
            'oaks': np.array([[1, 1]]),
            'ioaks': np.array([[0, 0]]),
            'lvtree': np.array([[3, 3]]),
        }
        counts[name] = counts[name].copy()
        counts[name][0, 1] = -1
        with pytest.raises(HostDataError, match=f"'{name}'.*negative"):
            check_host_counts(counts['umca'], counts['oaks'], counts['ioaks'],
                              counts['lvtree'])

    def test_hosts_exceeding_live_trees_rejected(self):
        with pytest.raises(HostDataError, match="lvtree"):
            initial_host_state(np.array([[3]]), np.array([[2]]), np.array([[0]]),
                               np.array([[4]]))

    def test_live_tree_bound_skipped_without_lvtree(self):
        st = initial_host_state(np.array([[3]]), np.array([[2]]), np.array([[0]]))
        assert st.susceptible_oaks[0, 0] == 2

    def test_no_clamping_in_initial_state(self):
        """S + I equals the input counts exactly."""
        umca, oaks, lvtree, ioaks = _landscape(n=5, seed_cells=((1, 1), (3, 2)))
        st = initial_host_state(umca, oaks, ioaks, lvtree)
        np.testing.assert_array_equal(st.susceptible_oaks + st.infected_oaks, oaks)
        np.testing.assert_array_equal(st.susceptible_umca + st.infected_umca, umca)
