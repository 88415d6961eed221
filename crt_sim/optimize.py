"""
Budget-Constrained Design Optimization for Cluster Randomized Trials
Closed-form variance of the treatment effect over a (clusters, cluster size) grid
Cost model: total cost = g * (c1 + c2 * r), with c1 = c1_c2_ratio * c2
"""

from __future__ import annotations

import itertools
from typing import Sequence

import pandas as pd

from .design import InvalidParameter, check_positive_int, design_effect, icc_from_components

CANDIDATE_COLUMNS = [
    "g",
    "r",
    "var_beta_hat",
    "total_cost",
    "gamma_sq",
    "sigma_sq",
    "ICC",
    "c1_c2_ratio",
    "feasible",
]

OPTIMIZATION_COLUMNS = [
    "g",
    "r",
    "var_beta_hat",
    "total_cost",
    "gamma_sq",
    "sigma_sq",
    "ICC",
    "c1_c2_ratio",
    "budget",
    "alloc_ratio",
]


def asymptotic_variance(
    g: int,
    r: int,
    sigma_sq: float,
    icc: float,
    treatment_share: float = 0.5,
) -> float:
    """
    Large-sample variance of the treatment effect estimate
    Var(beta_hat) = sigma_sq * DEFF / (g * r * p * (1 - p))
    With p = 0.5 the denominator is g * r * 0.25
    """
    p = treatment_share
    return sigma_sq * design_effect(r, icc) / (g * r * p * (1 - p))


def total_cost(g: int, r: int, c1_c2_ratio: float, c2: float = 1.0) -> float:
    """Cost of g clusters with r observations each."""
    c1 = c1_c2_ratio * c2
    return g * (c1 + c2 * r)


def validate_optimizer_inputs(
    g_grid: Sequence[int],
    r_grid: Sequence[int],
    gamma_sq_values: Sequence[float],
    sigma_sq_values: Sequence[float],
    c1_c2_ratios: Sequence[float],
    c2: float,
    budget: float,
    treatment_share: float = 0.5,
) -> None:
    """Reject a malformed optimization setup before enumerating anything."""
    named = {
        "g_grid": g_grid,
        "r_grid": r_grid,
        "gamma_sq_values": gamma_sq_values,
        "sigma_sq_values": sigma_sq_values,
        "c1_c2_ratios": c1_c2_ratios,
    }
    for name, values in named.items():
        if len(values) == 0:
            raise InvalidParameter(f"{name} must contain at least one value")
    for g in g_grid:
        check_positive_int(g, "g")
    for r in r_grid:
        check_positive_int(r, "r")
    for gamma_sq in gamma_sq_values:
        if not gamma_sq >= 0:
            raise InvalidParameter(f"gamma_sq must be non-negative, got {gamma_sq}")
    for sigma_sq in sigma_sq_values:
        if not sigma_sq > 0:
            raise InvalidParameter(f"sigma_sq must be positive, got {sigma_sq}")
    for ratio in c1_c2_ratios:
        if not ratio >= 0:
            raise InvalidParameter(f"c1_c2_ratio must be non-negative, got {ratio}")
    if not c2 > 0:
        raise InvalidParameter(f"c2 must be positive, got {c2}")
    if not budget > 0:
        raise InvalidParameter(f"Budget must be positive, got {budget}")
    if not 0 < treatment_share < 1:
        raise InvalidParameter("Treatment share must be between 0 and 1")


def enumerate_candidates(
    g_grid: Sequence[int],
    r_grid: Sequence[int],
    gamma_sq: float,
    sigma_sq: float,
    c1_c2_ratio: float,
    c2: float,
    budget: float,
    treatment_share: float = 0.5,
) -> pd.DataFrame:
    """
    Score every (g, r) pair for one variance/cost configuration

    Rows follow the grid order (g outer, r inner); feasible marks
    total_cost <= budget.
    """
    for g in g_grid:
        check_positive_int(g, "g")
    for r in r_grid:
        check_positive_int(r, "r")
    icc = icc_from_components(gamma_sq, sigma_sq)
    records = []
    for g, r in itertools.product(g_grid, r_grid):
        cost = total_cost(g, r, c1_c2_ratio, c2)
        records.append({
            "g": int(g),
            "r": int(r),
            "var_beta_hat": asymptotic_variance(g, r, sigma_sq, icc, treatment_share),
            "total_cost": cost,
            "gamma_sq": gamma_sq,
            "sigma_sq": sigma_sq,
            "ICC": icc,
            "c1_c2_ratio": c1_c2_ratio,
            "feasible": cost <= budget,
        })
    return pd.DataFrame(records, columns=CANDIDATE_COLUMNS)


def select_optimal(candidates: pd.DataFrame) -> pd.Series | None:
    """Minimum-variance feasible candidate; ties go to the first in grid order."""
    feasible = candidates[candidates["feasible"]]
    if feasible.empty:
        return None
    # idxmin returns the first occurrence of the minimum
    return feasible.loc[feasible["var_beta_hat"].idxmin()]


def optimize(
    g_grid: Sequence[int],
    r_grid: Sequence[int],
    gamma_sq_values: Sequence[float],
    sigma_sq_values: Sequence[float],
    c1_c2_ratios: Sequence[float],
    c2: float = 1.0,
    budget: float = 2000.0,
    treatment_share: float = 0.5,
) -> pd.DataFrame:
    """
    Find the variance-minimizing affordable design for each configuration

    Configurations are enumerated gamma_sq -> sigma_sq -> c1_c2_ratio.
    A configuration with no affordable (g, r) contributes no row.

    Returns:
        DataFrame with one row per configuration that has a feasible design
    """
    validate_optimizer_inputs(
        g_grid, r_grid, gamma_sq_values, sigma_sq_values, c1_c2_ratios, c2, budget, treatment_share
    )

    results = []
    for gamma_sq, sigma_sq, ratio in itertools.product(gamma_sq_values, sigma_sq_values, c1_c2_ratios):
        candidates = enumerate_candidates(
            g_grid, r_grid, gamma_sq, sigma_sq, ratio, c2, budget, treatment_share
        )
        best = select_optimal(candidates)
        if best is None:
            continue
        results.append({
            "g": int(best["g"]),
            "r": int(best["r"]),
            "var_beta_hat": float(best["var_beta_hat"]),
            "total_cost": float(best["total_cost"]),
            "gamma_sq": gamma_sq,
            "sigma_sq": sigma_sq,
            "ICC": float(best["ICC"]),
            "c1_c2_ratio": ratio,
            "budget": budget,
            "alloc_ratio": treatment_share,
        })

    return pd.DataFrame(results, columns=OPTIMIZATION_COLUMNS)
