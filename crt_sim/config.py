from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import yaml

from .design import InvalidParameter

DEFAULT_CONFIG_PATH = Path(__file__).parent / "configs" / "default.yaml"


def _expand_env(value):
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def load_config(path: str | Path) -> dict:
    with open(path, "r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle)
    return _expand_env(raw or {})


def expand_grid(raw, name: str, integer: bool = False) -> list:
    """Accept a list, a scalar, or a {start, stop, step} mapping (stop inclusive)."""
    if raw is None:
        raise InvalidParameter(f"{name} is required")
    if isinstance(raw, dict):
        try:
            start, stop, step = raw["start"], raw["stop"], raw.get("step", 1)
        except KeyError as exc:
            raise InvalidParameter(f"{name} range needs 'start' and 'stop'") from exc
        if step <= 0:
            raise InvalidParameter(f"{name} step must be positive")
        count = int(np.floor((stop - start) / step + 1e-9)) + 1
        values = [start + i * step for i in range(max(0, count))]
    elif isinstance(raw, (list, tuple)):
        values = list(raw)
    else:
        values = [raw]
    if integer:
        values = [float(v) for v in values]
        if any(not v.is_integer() for v in values):
            raise InvalidParameter(f"{name} must contain whole numbers")
        return [int(v) for v in values]
    return [float(v) for v in values]


def _filtered(cls, raw: Dict) -> Dict:
    valid = {f.name for f in fields(cls)}
    return {k: v for k, v in raw.items() if k in valid}


@dataclass
class SimulationConfig:
    g_values: List[int] = field(default_factory=lambda: [10, 30, 50])
    r_values: List[int] = field(default_factory=lambda: [5, 20])
    icc_values: List[float] = field(default_factory=lambda: [0.05, 0.2])
    sigma_sq_values: List[float] = field(default_factory=lambda: [1.0])
    beta_values: List[float] = field(default_factory=lambda: [0.5])
    n_sim: int = 100
    model: str = "lmm"
    confidence_level: float = 0.95
    treatment_share: float = 0.5
    n_jobs: Optional[int] = 1

    @classmethod
    def from_dict(cls, raw: Dict | None) -> "SimulationConfig":
        if not raw:
            return cls()
        cfg = _filtered(cls, raw)
        for key in ("g_values", "r_values"):
            if key in cfg:
                cfg[key] = expand_grid(cfg[key], key, integer=True)
        for key in ("icc_values", "sigma_sq_values", "beta_values"):
            if key in cfg:
                cfg[key] = expand_grid(cfg[key], key)
        if "n_sim" in cfg:
            cfg["n_sim"] = int(cfg["n_sim"])
        return cls(**cfg)


@dataclass
class OptimizationConfig:
    g_grid: List[int] = field(default_factory=lambda: list(range(10, 101, 10)))
    r_grid: List[int] = field(default_factory=lambda: list(range(5, 51, 5)))
    gamma_sq_values: List[float] = field(default_factory=lambda: [0.05, 0.1, 0.2])
    sigma_sq_values: List[float] = field(default_factory=lambda: [1.0])
    c1_c2_ratios: List[float] = field(default_factory=lambda: [1.0, 10.0, 50.0])
    c2: float = 1.0
    budget: float = 2000.0
    treatment_share: float = 0.5

    @classmethod
    def from_dict(cls, raw: Dict | None) -> "OptimizationConfig":
        if not raw:
            return cls()
        cfg = _filtered(cls, raw)
        for key in ("g_grid", "r_grid"):
            if key in cfg:
                cfg[key] = expand_grid(cfg[key], key, integer=True)
        for key in ("gamma_sq_values", "sigma_sq_values", "c1_c2_ratios"):
            if key in cfg:
                cfg[key] = expand_grid(cfg[key], key)
        for key in ("c2", "budget", "treatment_share"):
            if key in cfg:
                cfg[key] = float(cfg[key])
        return cls(**cfg)


@dataclass
class OutputConfig:
    simulation_csv: str = "simulation_results.csv"
    optimization_csv: str = "optimization_results.csv"
    diagnostics_csv: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict | None) -> "OutputConfig":
        if not raw:
            return cls()
        return cls(**_filtered(cls, raw))


@dataclass
class StudyConfig:
    seed: Optional[int] = None
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    optimization: OptimizationConfig = field(default_factory=OptimizationConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    @classmethod
    def from_dict(cls, raw: Dict | None) -> "StudyConfig":
        raw = raw or {}
        seed = raw.get("seed")
        if isinstance(seed, str):
            seed = int(seed) if seed.strip() and not seed.startswith("$") else None
        return cls(
            seed=seed,
            simulation=SimulationConfig.from_dict(raw.get("simulation")),
            optimization=OptimizationConfig.from_dict(raw.get("optimization")),
            output=OutputConfig.from_dict(raw.get("output")),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "StudyConfig":
        return cls.from_dict(load_config(path))
