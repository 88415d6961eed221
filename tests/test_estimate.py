import math

import numpy as np
import pandas as pd
import pytest
from statsmodels.regression.mixed_linear_model import MixedLM

from crt_sim.design import InvalidParameter
from crt_sim.estimate import (
    MIXED_OPTIMIZERS,
    FitResult,
    _extract,
    fit_cluster_ols,
    fit_mixed_model,
    get_estimator,
)
from crt_sim.generate import generate


@pytest.fixture
def balanced_data():
    """Clustered data with both arms present."""
    rng = np.random.default_rng(42)
    data = generate(30, 20, 0.0, 0.5, 0.2, 1.0, rng)
    assert data["treatment"].nunique() == 2
    return data


@pytest.fixture
def single_arm_data():
    return pd.DataFrame({
        "cluster": np.repeat([1, 2, 3], 4),
        "treatment": 1,
        "y": np.linspace(0, 1, 12),
    })


@pytest.mark.parametrize("estimator", [fit_mixed_model, fit_cluster_ols])
def test_fit_returns_treatment_estimate(estimator, balanced_data):
    fit = estimator(balanced_data)
    assert not fit.is_missing
    assert fit.se > 0
    assert abs(fit.beta_estimate - 0.5) < 5 * fit.se


@pytest.mark.parametrize("estimator", [fit_mixed_model, fit_cluster_ols])
def test_single_treatment_level_is_a_missing_result(estimator, single_arm_data):
    fit = estimator(single_arm_data)
    assert fit.is_missing
    assert math.isnan(fit.beta_estimate)
    assert math.isnan(fit.se)
    assert "single level" in fit.message


def test_mixed_model_is_deterministic(balanced_data):
    assert fit_mixed_model(balanced_data) == fit_mixed_model(balanced_data.copy())


def test_mixed_model_falls_back_across_optimizers(balanced_data, monkeypatch):
    calls = []
    original_fit = MixedLM.fit

    def recording_fit(self, *args, **kwargs):
        calls.append(kwargs)
        return original_fit(self, *args, **kwargs)

    monkeypatch.setattr(MixedLM, "fit", recording_fit)
    fit = fit_mixed_model(balanced_data)
    assert not fit.is_missing
    assert calls[0]["reml"] is True
    assert calls[0]["method"] == list(MIXED_OPTIMIZERS)
    assert MIXED_OPTIMIZERS[0] == "lbfgs"


def test_fit_result_missing_flag():
    assert FitResult.missing("x").is_missing
    assert FitResult(beta_estimate=0.1, se=float("nan")).is_missing
    assert not FitResult(beta_estimate=0.1, se=0.2, converged=True).is_missing


def test_get_estimator():
    assert get_estimator("lmm") is fit_mixed_model
    assert get_estimator("ols_cluster") is fit_cluster_ols
    with pytest.raises(InvalidParameter):
        get_estimator("glmm_poisson")


def _cov(names, values):
    return pd.DataFrame(np.asarray(values, dtype=float), index=names, columns=names)


def test_extract_reads_treatment_entry():
    params = pd.Series({"Intercept": 0.1, "treatment": 0.4})
    fit = _extract(params, _cov(["Intercept", "treatment"], [[0.01, 0.0], [0.0, 0.04]]), True)
    assert not fit.is_missing
    assert fit.beta_estimate == pytest.approx(0.4)
    assert fit.se == pytest.approx(0.2)
    assert fit.message == ""


def test_absent_treatment_coefficient_is_missing():
    fit = _extract(pd.Series({"Intercept": 0.1}), _cov(["Intercept"], [[0.01]]), True)
    assert fit.is_missing
    assert fit.converged
    assert fit.message == "treatment coefficient absent"


def test_absent_treatment_variance_is_missing():
    params = pd.Series({"Intercept": 0.1, "treatment": 0.4})
    fit = _extract(params, _cov(["Intercept"], [[0.01]]), True)
    assert fit.is_missing
    assert fit.message == "treatment variance absent"


def test_array_covariance_is_labelled_by_fixed_effects():
    params = pd.Series({"Intercept": 0.1, "treatment": 0.4})
    # Trailing row/column stands in for a variance component
    cov = np.array([
        [0.01, 0.0, 0.0],
        [0.0, 0.09, 0.0],
        [0.0, 0.0, 5.0],
    ])
    fit = _extract(params, cov, True)
    assert fit.beta_estimate == pytest.approx(0.4)
    assert fit.se == pytest.approx(0.3)


@pytest.mark.parametrize("variance", [-0.04, float("nan"), float("inf")])
def test_unusable_treatment_variance_is_missing(variance):
    params = pd.Series({"Intercept": 0.1, "treatment": 0.4})
    fit = _extract(params, _cov(["Intercept", "treatment"], [[0.01, 0.0], [0.0, variance]]), True)
    assert fit.is_missing
    assert math.isnan(fit.se)
    assert "non-finite" in fit.message


def test_nan_treatment_estimate_is_missing():
    params = pd.Series({"Intercept": 0.1, "treatment": float("nan")})
    fit = _extract(params, _cov(["Intercept", "treatment"], [[0.01, 0.0], [0.0, 0.04]]), True)
    assert fit.is_missing
