import math

import pytest

from crt_sim.design import InvalidParameter
from crt_sim.estimate import FitResult
from crt_sim.evaluate import critical_value, evaluate, wald_interval


def test_exact_estimate_has_zero_bias_and_full_coverage():
    fit = FitResult(beta_estimate=0.5, se=0.1, converged=True)
    record = evaluate(fit, 0.5)
    assert record.bias == 0
    assert record.mse == pytest.approx(0.01)
    assert record.se == pytest.approx(0.1)
    assert record.coverage == 1.0


def test_critical_value_matches_normal_quantile():
    assert critical_value(0.95) == pytest.approx(1.959964, abs=1e-6)
    assert critical_value(0.90) == pytest.approx(1.644854, abs=1e-6)


def test_true_value_outside_interval_is_not_covered():
    fit = FitResult(beta_estimate=1.0, se=0.1, converged=True)
    record = evaluate(fit, 0.5)
    assert record.bias == pytest.approx(0.5)
    assert record.mse == pytest.approx(0.25 + 0.01)
    assert record.coverage == 0.0


def test_interval_bounds_are_inclusive():
    fit = FitResult(beta_estimate=0.0, se=1.0, converged=True)
    lower, upper = wald_interval(fit.beta_estimate, fit.se)
    assert evaluate(fit, upper).coverage == 1.0
    assert evaluate(fit, lower).coverage == 1.0


def test_wider_level_covers_more():
    fit = FitResult(beta_estimate=0.0, se=1.0, converged=True)
    assert evaluate(fit, 1.8, confidence_level=0.90).coverage == 0.0
    assert evaluate(fit, 1.8, confidence_level=0.95).coverage == 1.0


def test_missing_fit_propagates_to_every_field():
    record = evaluate(FitResult.missing("treatment coefficient absent"), 0.5)
    assert record.is_missing
    assert all(math.isnan(v) for v in record.to_dict().values())


@pytest.mark.parametrize("level", [0.0, 1.0, 1.2])
def test_invalid_confidence_level(level):
    with pytest.raises(InvalidParameter):
        evaluate(FitResult(beta_estimate=0.0, se=1.0), 0.0, confidence_level=level)
