"""
Design parameters for cluster randomized trial simulations
Variance components, ICC conversions and the design effect
"""

from __future__ import annotations

import math
from dataclasses import dataclass


class InvalidParameter(ValueError):
    """Raised when a design or variance parameter violates its precondition."""


def design_effect(cluster_size: int, icc: float) -> float:
    """
    Calculate design effect (DEFF) for cluster randomization
    DEFF = 1 + (m - 1) * ICC
    where m is the number of observations per cluster
    """
    return 1 + (cluster_size - 1) * icc


def gamma_sq_from_icc(icc: float, sigma_sq: float) -> float:
    """Between-cluster variance implied by an ICC and a residual variance."""
    if not 0 <= icc < 1:
        raise InvalidParameter(f"ICC must be in [0, 1), got {icc}")
    if sigma_sq <= 0:
        raise InvalidParameter(f"sigma_sq must be positive, got {sigma_sq}")
    return (icc * sigma_sq) / (1 - icc)


def icc_from_components(gamma_sq: float, sigma_sq: float) -> float:
    """ICC = gamma_sq / (gamma_sq + sigma_sq)"""
    if not gamma_sq >= 0:
        raise InvalidParameter(f"gamma_sq must be non-negative, got {gamma_sq}")
    if not sigma_sq > 0:
        raise InvalidParameter(f"sigma_sq must be positive, got {sigma_sq}")
    return gamma_sq / (gamma_sq + sigma_sq)


def check_positive_int(value, name: str) -> int:
    if isinstance(value, bool) or int(value) != value or value < 1:
        raise InvalidParameter(f"{name} must be a positive integer, got {value}")
    return int(value)


@dataclass(frozen=True)
class DesignPoint:
    """Number of clusters and observations per cluster"""

    g: int
    r: int

    def __post_init__(self):
        check_positive_int(self.g, "g")
        check_positive_int(self.r, "r")

    @property
    def total_n(self) -> int:
        return self.g * self.r


@dataclass(frozen=True)
class VarianceConfig:
    """Residual variance and intra-cluster correlation"""

    sigma_sq: float
    icc: float = 0.0

    def __post_init__(self):
        if not math.isfinite(self.sigma_sq) or self.sigma_sq <= 0:
            raise InvalidParameter(f"sigma_sq must be positive, got {self.sigma_sq}")
        if not 0 <= self.icc < 1:
            raise InvalidParameter(f"ICC must be in [0, 1), got {self.icc}")

    @property
    def gamma_sq(self) -> float:
        return gamma_sq_from_icc(self.icc, self.sigma_sq)

    @classmethod
    def from_components(cls, gamma_sq: float, sigma_sq: float) -> "VarianceConfig":
        return cls(sigma_sq=sigma_sq, icc=icc_from_components(gamma_sq, sigma_sq))
