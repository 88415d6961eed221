"""
Hierarchical data generation for cluster randomized trials
y = alpha + beta * treatment + u_cluster + e, with treatment assigned per cluster
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from .design import InvalidParameter, check_positive_int


def generate(
    g: int,
    r: int,
    alpha: float,
    beta: float,
    gamma_sq: float,
    sigma_sq: float,
    rng: np.random.Generator,
    treatment_share: float = 0.5,
) -> pd.DataFrame:
    """
    Simulate one cluster randomized dataset

    Args:
        g: Number of clusters
        r: Observations per cluster
        alpha: Fixed intercept
        beta: True treatment effect
        gamma_sq: Between-cluster (random intercept) variance
        sigma_sq: Residual variance
        rng: Seeded numpy Generator; draws g cluster effects, then g
            treatment indicators, then g * r residuals
        treatment_share: Probability that a cluster is treated

    Returns:
        DataFrame with g * r rows and columns cluster (1..g), treatment, y.
        Treatment is not rebalanced, so small g can yield a single arm.
    """
    g = check_positive_int(g, "g")
    r = check_positive_int(r, "r")
    if not gamma_sq >= 0:
        raise InvalidParameter(f"gamma_sq must be non-negative, got {gamma_sq}")
    if not sigma_sq > 0:
        raise InvalidParameter(f"sigma_sq must be positive, got {sigma_sq}")
    if not 0 < treatment_share < 1:
        raise InvalidParameter("Treatment share must be between 0 and 1")

    # Cluster-level draws
    cluster_effects = rng.normal(0, np.sqrt(gamma_sq), g)
    cluster_treat = rng.binomial(1, treatment_share, g)

    # Expand to individuals
    cluster_ids = np.repeat(np.arange(1, g + 1), r)
    treatments = np.repeat(cluster_treat, r)
    residuals = rng.normal(0, np.sqrt(sigma_sq), g * r)

    y = alpha + beta * treatments + np.repeat(cluster_effects, r) + residuals

    return pd.DataFrame(
        {
            "cluster": cluster_ids,
            "treatment": treatments.astype(int),
            "y": y,
        }
    )
