from __future__ import annotations

import math
from dataclasses import asdict, dataclass

from scipy import stats

from .design import InvalidParameter
from .estimate import FitResult


@dataclass(frozen=True)
class PerformanceRecord:
    """Bias, MSE, standard error and CI coverage for one simulated trial."""

    bias: float = math.nan
    mse: float = math.nan
    se: float = math.nan
    coverage: float = math.nan

    @property
    def is_missing(self) -> bool:
        return math.isnan(self.bias)

    def to_dict(self) -> dict:
        return asdict(self)


def check_confidence_level(confidence_level: float) -> float:
    if not 0 < confidence_level < 1:
        raise InvalidParameter("Confidence level must be between 0 and 1")
    return confidence_level


def critical_value(confidence_level: float = 0.95) -> float:
    check_confidence_level(confidence_level)
    return stats.norm.ppf(1 - (1 - confidence_level) / 2)


def wald_interval(estimate: float, se: float, confidence_level: float = 0.95) -> tuple[float, float]:
    z = critical_value(confidence_level)
    return estimate - z * se, estimate + z * se


def evaluate(
    fit: FitResult,
    true_beta: float,
    confidence_level: float = 0.95,
) -> PerformanceRecord:
    """Score a fitted treatment effect against the known truth.

    A missing estimate or standard error gives an all-NaN record. Coverage is
    1 when the true value lies in the closed Wald interval.
    """
    check_confidence_level(confidence_level)
    if fit.is_missing:
        return PerformanceRecord()

    bias = fit.beta_estimate - true_beta
    lower, upper = wald_interval(fit.beta_estimate, fit.se, confidence_level)
    return PerformanceRecord(
        bias=bias,
        mse=bias**2 + fit.se**2,
        se=fit.se,
        coverage=1.0 if lower <= true_beta <= upper else 0.0,
    )
