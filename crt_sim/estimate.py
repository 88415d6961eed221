"""
Treatment effect estimators for simulated cluster randomized trials
Random-intercept linear mixed model (statsmodels MixedLM) and cluster-robust OLS
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass
from typing import Callable, Dict

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from .design import InvalidParameter

TREATMENT_TERM = "treatment"

# Tried in order until one reports convergence
MIXED_OPTIMIZERS = ("lbfgs", "bfgs", "cg", "powell")


@dataclass(frozen=True)
class FitResult:
    """Point estimate and standard error of the treatment coefficient.

    Attributes:
        beta_estimate: Estimated treatment effect, NaN when unavailable
        se: Standard error of the estimate, NaN when unavailable
        converged: Whether the solver reported convergence
        message: Reason the estimate is missing, empty otherwise
    """

    beta_estimate: float = math.nan
    se: float = math.nan
    converged: bool = False
    message: str = ""

    @property
    def is_missing(self) -> bool:
        return not (math.isfinite(self.beta_estimate) and math.isfinite(self.se))

    @classmethod
    def missing(cls, message: str, converged: bool = False) -> "FitResult":
        return cls(converged=converged, message=message)


def _single_arm(data: pd.DataFrame) -> bool:
    return data[TREATMENT_TERM].nunique() < 2


def _extract(params: pd.Series, cov: pd.DataFrame, converged: bool) -> FitResult:
    """Pull the treatment coefficient and its variance out of a fitted model."""
    if not isinstance(cov, pd.DataFrame):
        # Fixed effects lead the parameter vector
        names = list(params.index)
        cov = pd.DataFrame(np.asarray(cov)[: len(names), : len(names)], index=names, columns=names)
    if TREATMENT_TERM not in params.index:
        return FitResult.missing("treatment coefficient absent", converged)
    if TREATMENT_TERM not in cov.index or TREATMENT_TERM not in cov.columns:
        return FitResult.missing("treatment variance absent", converged)

    estimate = float(params[TREATMENT_TERM])
    variance = float(cov.loc[TREATMENT_TERM, TREATMENT_TERM])
    if not math.isfinite(estimate) or not math.isfinite(variance) or variance < 0:
        return FitResult.missing("non-finite treatment estimate or variance", converged)

    return FitResult(
        beta_estimate=estimate,
        se=math.sqrt(variance),
        converged=converged,
    )


def fit_mixed_model(data: pd.DataFrame) -> FitResult:
    """
    Fit y ~ treatment with a random intercept per cluster (REML)

    Never raises for estimation problems: a single treatment arm, a singular
    design, a solver error or non-convergence all yield a missing FitResult.
    """
    if _single_arm(data):
        return FitResult.missing("treatment has a single level")

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            warnings.simplefilter("ignore", RuntimeWarning)
            model = smf.mixedlm(f"y ~ {TREATMENT_TERM}", data, groups=data["cluster"])
            result = model.fit(reml=True, method=list(MIXED_OPTIMIZERS))
    except (np.linalg.LinAlgError, ValueError) as exc:
        return FitResult.missing(f"mixed model failed: {exc}")

    converged = bool(getattr(result, "converged", False))
    if not converged:
        return FitResult.missing("mixed model did not converge")

    return _extract(result.fe_params, result.cov_params(), converged)


def fit_cluster_ols(data: pd.DataFrame) -> FitResult:
    """OLS of y on treatment with cluster-robust standard errors."""
    if _single_arm(data):
        return FitResult.missing("treatment has a single level")

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", RuntimeWarning)
            result = smf.ols(f"y ~ {TREATMENT_TERM}", data=data).fit(
                cov_type="cluster", cov_kwds={"groups": data["cluster"]}
            )
    except (np.linalg.LinAlgError, ValueError) as exc:
        return FitResult.missing(f"cluster-robust OLS failed: {exc}")

    return _extract(result.params, result.cov_params(), True)


Estimator = Callable[[pd.DataFrame], FitResult]

ESTIMATORS: Dict[str, Estimator] = {
    "lmm": fit_mixed_model,
    "ols_cluster": fit_cluster_ols,
}


def get_estimator(name: str) -> Estimator:
    try:
        return ESTIMATORS[name]
    except KeyError:
        raise InvalidParameter(
            f"Unknown model '{name}'. Choose one of: {', '.join(sorted(ESTIMATORS))}"
        ) from None
