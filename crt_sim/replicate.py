"""
Monte Carlo replication of one cluster randomized design point
Repeats generate -> fit -> evaluate n_sim times and averages the metrics
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from .design import InvalidParameter, check_positive_int, gamma_sq_from_icc
from .estimate import FitResult, get_estimator
from .evaluate import PerformanceRecord, check_confidence_level, critical_value, evaluate
from .generate import generate
from .parallel import SeedLike, as_seed_sequence, child_seed, map_tasks

RESULT_COLUMNS = [
    "model",
    "g",
    "r",
    "ICC",
    "sigma_sq",
    "beta",
    "mean_bias",
    "mean_mse",
    "mean_se",
    "mean_coverage",
]

DIAGNOSTIC_COLUMNS = [
    "model",
    "g",
    "r",
    "ICC",
    "sigma_sq",
    "beta",
    "n_sim",
    "n_failed",
    "mean_estimate",
    "empirical_se",
    "rejection_rate",
]


@dataclass(frozen=True)
class TrialTask:
    """Everything one simulated trial needs; picklable for worker processes."""

    g: int
    r: int
    alpha: float
    beta: float
    gamma_sq: float
    sigma_sq: float
    treatment_share: float
    model: str
    confidence_level: float
    seed: np.random.SeedSequence


@dataclass(frozen=True)
class AggregatedRow:
    """Mean performance of one design point across its trials.

    Attributes:
        mean_bias, mean_mse, mean_se, mean_coverage: Means over trials with a
            usable fit; NaN when every trial failed
        n_sim: Number of trials run
        n_failed: Trials whose fit produced no treatment estimate
        mean_estimate: Mean treatment estimate
        empirical_se: Standard deviation of the estimates across trials
        rejection_rate: Share of usable trials rejecting beta = 0 (Wald test)
    """

    model: str
    g: int
    r: int
    icc: float
    sigma_sq: float
    beta: float
    mean_bias: float
    mean_mse: float
    mean_se: float
    mean_coverage: float
    n_sim: int
    n_failed: int
    mean_estimate: float = math.nan
    empirical_se: float = math.nan
    rejection_rate: float = math.nan
    failure_reasons: Dict[str, int] = field(default_factory=dict, compare=False)

    @property
    def n_valid(self) -> int:
        return self.n_sim - self.n_failed

    @property
    def all_missing(self) -> bool:
        return self.n_valid == 0

    def _keys(self) -> dict:
        return {
            "model": self.model,
            "g": self.g,
            "r": self.r,
            "ICC": self.icc,
            "sigma_sq": self.sigma_sq,
            "beta": self.beta,
        }

    def result_record(self) -> dict:
        return {
            **self._keys(),
            "mean_bias": self.mean_bias,
            "mean_mse": self.mean_mse,
            "mean_se": self.mean_se,
            "mean_coverage": self.mean_coverage,
        }

    def diagnostics_record(self) -> dict:
        return {
            **self._keys(),
            "n_sim": self.n_sim,
            "n_failed": self.n_failed,
            "mean_estimate": self.mean_estimate,
            "empirical_se": self.empirical_se,
            "rejection_rate": self.rejection_rate,
        }


def run_trial(task: TrialTask) -> Tuple[FitResult, PerformanceRecord]:
    """Generate one dataset, fit it and score the fit."""
    rng = np.random.default_rng(task.seed)
    data = generate(
        task.g,
        task.r,
        task.alpha,
        task.beta,
        task.gamma_sq,
        task.sigma_sq,
        rng,
        treatment_share=task.treatment_share,
    )
    fit = get_estimator(task.model)(data)
    return fit, evaluate(fit, task.beta, task.confidence_level)


def aggregate_trials(
    outcomes: List[Tuple[FitResult, PerformanceRecord]],
    *,
    model: str,
    g: int,
    r: int,
    icc: float,
    sigma_sq: float,
    beta: float,
    confidence_level: float = 0.95,
) -> AggregatedRow:
    """Average trial metrics, leaving failed trials out of every mean."""
    records = pd.DataFrame(
        [record.to_dict() for _, record in outcomes],
        columns=["bias", "mse", "se", "coverage"],
        dtype=float,
    )
    # pandas skips NaN; an all-NaN column averages to NaN, never 0
    means = records.mean()

    fits = [fit for fit, _ in outcomes if not fit.is_missing]
    n_failed = len(outcomes) - len(fits)
    reasons: Dict[str, int] = {}
    for fit, _ in outcomes:
        if fit.is_missing:
            reasons[fit.message] = reasons.get(fit.message, 0) + 1

    if fits:
        estimates = np.array([fit.beta_estimate for fit in fits])
        ses = np.array([fit.se for fit in fits])
        z = critical_value(confidence_level)
        with np.errstate(divide="ignore", invalid="ignore"):
            rejections = np.abs(estimates / ses) > z
        mean_estimate = float(estimates.mean())
        empirical_se = float(estimates.std(ddof=1)) if len(fits) > 1 else math.nan
        rejection_rate = float(rejections.mean())
    else:
        mean_estimate = empirical_se = rejection_rate = math.nan
        warnings.warn(
            f"All {len(outcomes)} trials failed for model={model}, g={g}, r={r}, "
            f"ICC={icc}, sigma_sq={sigma_sq}, beta={beta}; metrics are undefined (NaN)",
            RuntimeWarning,
            stacklevel=2,
        )

    return AggregatedRow(
        model=model,
        g=g,
        r=r,
        icc=icc,
        sigma_sq=sigma_sq,
        beta=beta,
        mean_bias=float(means["bias"]),
        mean_mse=float(means["mse"]),
        mean_se=float(means["se"]),
        mean_coverage=float(means["coverage"]),
        n_sim=len(outcomes),
        n_failed=n_failed,
        mean_estimate=mean_estimate,
        empirical_se=empirical_se,
        rejection_rate=rejection_rate,
        failure_reasons=reasons,
    )


def replicate(
    g: int,
    r: int,
    icc: float,
    sigma_sq: float,
    beta: float,
    n_sim: int,
    seed: SeedLike = None,
    *,
    model: str = "lmm",
    confidence_level: float = 0.95,
    alpha: float = 0.0,
    treatment_share: float = 0.5,
    n_jobs: Optional[int] = 1,
) -> AggregatedRow:
    """
    Run n_sim independent trials of one design point and average them

    Trial i draws from its own stream keyed by (seed, i), so the result is
    the same for any n_jobs.

    Raises:
        InvalidParameter: ICC outside [0, 1), non-positive sigma_sq or n_sim,
            unknown model
    """
    g = check_positive_int(g, "g")
    r = check_positive_int(r, "r")
    n_sim = check_positive_int(n_sim, "n_sim")
    gamma_sq = gamma_sq_from_icc(icc, sigma_sq)
    check_confidence_level(confidence_level)
    get_estimator(model)
    if not 0 < treatment_share < 1:
        raise InvalidParameter("Treatment share must be between 0 and 1")

    root = as_seed_sequence(seed)
    tasks = [
        TrialTask(
            g=g,
            r=r,
            alpha=alpha,
            beta=beta,
            gamma_sq=gamma_sq,
            sigma_sq=sigma_sq,
            treatment_share=treatment_share,
            model=model,
            confidence_level=confidence_level,
            seed=child_seed(root, i),
        )
        for i in range(n_sim)
    ]
    outcomes = map_tasks(run_trial, tasks, n_jobs)

    return aggregate_trials(
        outcomes,
        model=model,
        g=g,
        r=r,
        icc=icc,
        sigma_sq=sigma_sq,
        beta=beta,
        confidence_level=confidence_level,
    )
