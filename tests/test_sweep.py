import math
import warnings

import pandas as pd
import pytest

from crt_sim import parallel
from crt_sim.design import InvalidParameter
from crt_sim.replicate import RESULT_COLUMNS
from crt_sim.sweep import build_grid, sweep


@pytest.fixture
def small_grid():
    return dict(
        g_values=[6, 10],
        r_values=[4],
        icc_values=[0.0, 0.2],
        sigma_sq_values=[1.0],
        beta_values=[0.0, 0.5],
    )


def test_grid_order_is_g_outer_beta_inner():
    cases = build_grid([1, 2], [3], [0.1, 0.2], [1.0], [0.0, 0.5])
    keys = [(c.g, c.r, c.icc, c.sigma_sq, c.beta) for c in cases]
    assert keys == [
        (1, 3, 0.1, 1.0, 0.0),
        (1, 3, 0.1, 1.0, 0.5),
        (1, 3, 0.2, 1.0, 0.0),
        (1, 3, 0.2, 1.0, 0.5),
        (2, 3, 0.1, 1.0, 0.0),
        (2, 3, 0.1, 1.0, 0.5),
        (2, 3, 0.2, 1.0, 0.0),
        (2, 3, 0.2, 1.0, 0.5),
    ]
    assert [c.index for c in cases] == list(range(8))


def test_sweep_table_has_one_row_per_combination(small_grid):
    result = sweep(**small_grid, n_sim=3, seed=11, model="ols_cluster")
    table = result.table
    assert list(table.columns) == RESULT_COLUMNS
    assert len(table) == 2 * 1 * 2 * 1 * 2
    assert (table["model"] == "ols_cluster").all()
    assert table[["g", "ICC", "beta"]].drop_duplicates().shape[0] == len(table)
    assert table["g"].tolist() == [6, 6, 6, 6, 10, 10, 10, 10]
    assert (result.diagnostics["n_sim"] == 3).all()


def test_sweep_is_reproducible(small_grid):
    first = sweep(**small_grid, n_sim=3, seed=5, model="ols_cluster")
    second = sweep(**small_grid, n_sim=3, seed=5, model="ols_cluster")
    pd.testing.assert_frame_equal(first.table, second.table)
    pd.testing.assert_frame_equal(first.diagnostics, second.diagnostics)


def test_sweep_matches_between_serial_and_pool(small_grid):
    serial = sweep(**small_grid, n_sim=2, seed=8, model="ols_cluster", n_jobs=1)
    pooled = sweep(**small_grid, n_sim=2, seed=8, model="ols_cluster", n_jobs=2)
    pd.testing.assert_frame_equal(serial.table, pooled.table)


def test_sweep_with_mixed_model():
    result = sweep([12], [5], [0.1], [1.0], [0.5], n_sim=4, seed=21)
    row = result.table.iloc[0]
    assert row["model"] == "lmm"
    assert 0.0 <= row["mean_coverage"] <= 1.0
    assert row["mean_se"] > 0


def test_undefined_design_points_are_surfaced():
    with pytest.warns(RuntimeWarning, match="no usable fit"):
        result = sweep([1], [5], [0.1], [1.0], [0.5], n_sim=3, seed=1, model="ols_cluster")
    assert len(result.undefined_points) == 1
    assert result.n_failed == 3
    assert math.isnan(result.table.loc[0, "mean_bias"])


@pytest.mark.parametrize(
    "override",
    [
        {"g_values": []},
        {"r_values": [0]},
        {"icc_values": [0.1, 1.0]},
        {"sigma_sq_values": [-1.0]},
        {"beta_values": [float("nan")]},
    ],
)
def test_malformed_sweep_fails_before_running(small_grid, override):
    small_grid.update(override)
    with pytest.raises(InvalidParameter):
        sweep(**small_grid, n_sim=2, seed=1)


def test_non_positive_n_sim_is_rejected(small_grid):
    with pytest.raises(InvalidParameter):
        sweep(**small_grid, n_sim=0, seed=1)


def test_thread_fallback_leaves_warning_filters_intact(small_grid, monkeypatch):
    def no_processes(*args, **kwargs):
        raise PermissionError("process pools are not permitted")

    monkeypatch.setattr(parallel, "ProcessPoolExecutor", no_processes)
    filters_before = list(warnings.filters)
    for _ in range(3):
        threaded = sweep(**small_grid, n_sim=3, seed=5, model="ols_cluster", n_jobs=4)
    assert list(warnings.filters) == filters_before

    serial = sweep(**small_grid, n_sim=3, seed=5, model="ols_cluster", n_jobs=1)
    pd.testing.assert_frame_equal(threaded.table, serial.table)

    with pytest.warns(RuntimeWarning, match="no usable fit"):
        sweep([1], [5], [0.1], [1.0], [0.5], n_sim=3, seed=1, model="ols_cluster")
