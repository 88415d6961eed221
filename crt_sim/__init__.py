from .design import DesignPoint, InvalidParameter, VarianceConfig, design_effect
from .estimate import FitResult, fit_cluster_ols, fit_mixed_model
from .evaluate import PerformanceRecord, evaluate
from .generate import generate
from .optimize import asymptotic_variance, enumerate_candidates, optimize, total_cost
from .replicate import AggregatedRow, replicate
from .sweep import SweepResult, build_grid, sweep

__all__ = [
    "AggregatedRow",
    "DesignPoint",
    "FitResult",
    "InvalidParameter",
    "PerformanceRecord",
    "SweepResult",
    "VarianceConfig",
    "asymptotic_variance",
    "build_grid",
    "design_effect",
    "enumerate_candidates",
    "evaluate",
    "fit_cluster_ols",
    "fit_mixed_model",
    "generate",
    "optimize",
    "replicate",
    "sweep",
    "total_cost",
]
__version__ = "0.1.0"
