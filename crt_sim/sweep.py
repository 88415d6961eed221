"""
Parameter sweep over cluster randomized trial designs
Full Cartesian grid of (g, r, ICC, sigma_sq, beta), one replication per grid point
"""

from __future__ import annotations

import itertools
import math
import warnings
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .design import InvalidParameter, check_positive_int
from .estimate import get_estimator
from .evaluate import check_confidence_level
from .parallel import SeedLike, as_seed_sequence, child_seed, map_tasks, resolve_n_jobs
from .replicate import DIAGNOSTIC_COLUMNS, RESULT_COLUMNS, AggregatedRow, replicate


@dataclass(frozen=True)
class SweepCase:
    """One grid point; index is its position in enumeration order."""

    index: int
    g: int
    r: int
    icc: float
    sigma_sq: float
    beta: float


@dataclass(frozen=True)
class SweepTask:
    case: SweepCase
    n_sim: int
    model: str
    confidence_level: float
    treatment_share: float
    seed: np.random.SeedSequence


@dataclass
class SweepResult:
    """Outcome of a parameter sweep.

    Attributes:
        table: One row per grid point with the published result columns
        diagnostics: Per grid point trial counts, failures and estimate spread
        rows: Aggregated rows in grid order
    """

    table: pd.DataFrame
    diagnostics: pd.DataFrame
    rows: List[AggregatedRow] = field(default_factory=list)

    @property
    def n_failed(self) -> int:
        return int(self.diagnostics["n_failed"].sum()) if not self.diagnostics.empty else 0

    @property
    def undefined_points(self) -> pd.DataFrame:
        """Grid points where every trial failed."""
        diag = self.diagnostics
        return diag[diag["n_failed"] == diag["n_sim"]]


def _require_values(values: Sequence, name: str) -> list:
    values = list(values)
    if not values:
        raise InvalidParameter(f"{name} must contain at least one value")
    return values


def validate_sweep_inputs(
    g_values: Sequence[int],
    r_values: Sequence[int],
    icc_values: Sequence[float],
    sigma_sq_values: Sequence[float],
    beta_values: Sequence[float],
    n_sim: int,
) -> None:
    """Reject a malformed sweep before any trial is run."""
    for g in _require_values(g_values, "g_values"):
        check_positive_int(g, "g")
    for r in _require_values(r_values, "r_values"):
        check_positive_int(r, "r")
    for icc in _require_values(icc_values, "icc_values"):
        if not 0 <= icc < 1:
            raise InvalidParameter(f"ICC must be in [0, 1), got {icc}")
    for sigma_sq in _require_values(sigma_sq_values, "sigma_sq_values"):
        if not sigma_sq > 0:
            raise InvalidParameter(f"sigma_sq must be positive, got {sigma_sq}")
    for beta in _require_values(beta_values, "beta_values"):
        if not math.isfinite(beta):
            raise InvalidParameter(f"beta must be finite, got {beta}")
    check_positive_int(n_sim, "n_sim")


def build_grid(
    g_values: Sequence[int],
    r_values: Sequence[int],
    icc_values: Sequence[float],
    sigma_sq_values: Sequence[float],
    beta_values: Sequence[float],
) -> Tuple[SweepCase, ...]:
    """Cartesian product in fixed order: g outer, then r, ICC, sigma_sq, beta inner."""
    product = itertools.product(g_values, r_values, icc_values, sigma_sq_values, beta_values)
    return tuple(
        SweepCase(index=i, g=int(g), r=int(r), icc=float(icc), sigma_sq=float(s2), beta=float(b))
        for i, (g, r, icc, s2, b) in enumerate(product)
    )


def run_case(task: SweepTask) -> AggregatedRow:
    case = task.case
    with warnings.catch_warnings():
        # All-failure warnings are reported once by the parent sweep
        warnings.simplefilter("ignore", RuntimeWarning)
        return replicate(
            case.g,
            case.r,
            case.icc,
            case.sigma_sq,
            case.beta,
            task.n_sim,
            task.seed,
            model=task.model,
            confidence_level=task.confidence_level,
            treatment_share=task.treatment_share,
            n_jobs=1,
        )


def rows_to_tables(rows: Sequence[AggregatedRow]) -> Tuple[pd.DataFrame, pd.DataFrame]:
    table = pd.DataFrame([row.result_record() for row in rows], columns=RESULT_COLUMNS)
    diagnostics = pd.DataFrame([row.diagnostics_record() for row in rows], columns=DIAGNOSTIC_COLUMNS)
    return table, diagnostics


def sweep(
    g_values: Sequence[int],
    r_values: Sequence[int],
    icc_values: Sequence[float],
    sigma_sq_values: Sequence[float],
    beta_values: Sequence[float],
    n_sim: int,
    seed: SeedLike = None,
    *,
    model: str = "lmm",
    confidence_level: float = 0.95,
    treatment_share: float = 0.5,
    n_jobs: Optional[int] = 1,
    verbose: bool = False,
) -> SweepResult:
    """
    Replicate every combination of the five parameter grids

    Grid point k draws its trials from streams keyed by (seed, k, trial), so
    the output is reproducible for a fixed seed whatever the worker count.

    Returns:
        SweepResult whose table has one row per combination in grid order
    """
    validate_sweep_inputs(g_values, r_values, icc_values, sigma_sq_values, beta_values, n_sim)
    get_estimator(model)
    check_confidence_level(confidence_level)
    if not 0 < treatment_share < 1:
        raise InvalidParameter("Treatment share must be between 0 and 1")

    root = as_seed_sequence(seed)
    cases = build_grid(g_values, r_values, icc_values, sigma_sq_values, beta_values)
    tasks = [
        SweepTask(
            case=case,
            n_sim=int(n_sim),
            model=model,
            confidence_level=confidence_level,
            treatment_share=treatment_share,
            seed=child_seed(root, case.index),
        )
        for case in cases
    ]

    workers = resolve_n_jobs(n_jobs)
    total = len(tasks)
    if verbose:
        print(f"Running {total} design points x {n_sim} simulations ({workers} worker(s))...")

    if workers <= 1:
        rows = []
        for i, task in enumerate(tasks, start=1):
            rows.append(run_case(task))
            if verbose and i % max(1, total // 10) == 0:
                print(f"  Design point {i}/{total}")
    else:
        rows = map_tasks(run_case, tasks, workers)

    table, diagnostics = rows_to_tables(rows)
    result = SweepResult(table=table, diagnostics=diagnostics, rows=list(rows))

    undefined = result.undefined_points
    if not undefined.empty:
        warnings.warn(
            f"{len(undefined)} of {total} design points had no usable fit; "
            "their metrics are undefined (NaN)",
            RuntimeWarning,
            stacklevel=2,
        )
    if verbose:
        print(f"Sweep complete: {result.n_failed} failed fits across {total * n_sim} trials")

    return result
