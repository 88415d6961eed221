from __future__ import annotations

from pathlib import Path
from typing import Optional

import pandas as pd
import typer

from .config import DEFAULT_CONFIG_PATH, StudyConfig
from .design import InvalidParameter
from .optimize import optimize
from .sweep import SweepResult, sweep

app = typer.Typer(help="Cluster randomized trial simulation study")


def _load(config_path: Path, seed: Optional[int] = None) -> StudyConfig:
    study = StudyConfig.from_file(config_path)
    if seed is not None:
        study.seed = seed
    return study


def _write(df: pd.DataFrame, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)


def _run_simulation(study: StudyConfig, n_jobs: Optional[int], verbose: bool) -> SweepResult:
    cfg = study.simulation
    return sweep(
        cfg.g_values,
        cfg.r_values,
        cfg.icc_values,
        cfg.sigma_sq_values,
        cfg.beta_values,
        cfg.n_sim,
        study.seed,
        model=cfg.model,
        confidence_level=cfg.confidence_level,
        treatment_share=cfg.treatment_share,
        n_jobs=cfg.n_jobs if n_jobs is None else n_jobs,
        verbose=verbose,
    )


def _run_optimization(study: StudyConfig) -> pd.DataFrame:
    cfg = study.optimization
    return optimize(
        cfg.g_grid,
        cfg.r_grid,
        cfg.gamma_sq_values,
        cfg.sigma_sq_values,
        cfg.c1_c2_ratios,
        c2=cfg.c2,
        budget=cfg.budget,
        treatment_share=cfg.treatment_share,
    )


def _report_simulation(result: SweepResult, output: Path, diagnostics: Optional[Path]) -> None:
    _write(result.table, output)
    typer.echo(f"Saved {len(result.table)} simulation rows to {output}")
    if result.n_failed:
        typer.echo(f"Failed fits excluded from averages: {result.n_failed}")
    if not result.undefined_points.empty:
        typer.echo(f"Design points with no usable fit: {len(result.undefined_points)}", err=True)
    if diagnostics:
        _write(result.diagnostics, diagnostics)
        typer.echo(f"Diagnostics saved to {diagnostics}")


def _report_optimization(table: pd.DataFrame, output: Path, n_configs: int) -> None:
    _write(table, output)
    typer.echo(f"Saved {len(table)} optimal designs to {output}")
    skipped = n_configs - len(table)
    if skipped:
        typer.echo(f"Configurations with no design within budget: {skipped}")


@app.command()
def simulate(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", exists=True, readable=True, help="Study config (YAML)."),
    output: Optional[Path] = typer.Option(None, help="Output CSV for simulation results."),
    diagnostics: Optional[Path] = typer.Option(None, help="Optional CSV for per-design diagnostics."),
    seed: Optional[int] = typer.Option(None, help="Override the configured random seed."),
    n_jobs: Optional[int] = typer.Option(None, help="Worker processes (-1 for all cores)."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Run the Monte Carlo parameter sweep."""
    try:
        study = _load(config_path, seed)
        result = _run_simulation(study, n_jobs, verbose)
    except InvalidParameter as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(code=1)
    diag_path = diagnostics or (Path(study.output.diagnostics_csv) if study.output.diagnostics_csv else None)
    _report_simulation(result, output or Path(study.output.simulation_csv), diag_path)


@app.command("optimize")
def optimize_cmd(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", exists=True, readable=True, help="Study config (YAML)."),
    output: Optional[Path] = typer.Option(None, help="Output CSV for optimal designs."),
    budget: Optional[float] = typer.Option(None, help="Override the configured budget."),
) -> None:
    """Search the (clusters, cluster size) grid for the cheapest-variance design."""
    try:
        study = _load(config_path)
        if budget is not None:
            study.optimization.budget = budget
        table = _run_optimization(study)
    except InvalidParameter as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(code=1)
    cfg = study.optimization
    n_configs = len(cfg.gamma_sq_values) * len(cfg.sigma_sq_values) * len(cfg.c1_c2_ratios)
    _report_optimization(table, output or Path(study.output.optimization_csv), n_configs)


@app.command()
def run(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", exists=True, readable=True, help="Study config (YAML)."),
    seed: Optional[int] = typer.Option(None, help="Override the configured random seed."),
    n_jobs: Optional[int] = typer.Option(None, help="Worker processes (-1 for all cores)."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Run the simulation sweep and the design optimizer."""
    try:
        study = _load(config_path, seed)
        table = _run_optimization(study)
        result = _run_simulation(study, n_jobs, verbose)
    except InvalidParameter as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(code=1)
    out = study.output
    _report_simulation(
        result,
        Path(out.simulation_csv),
        Path(out.diagnostics_csv) if out.diagnostics_csv else None,
    )
    cfg = study.optimization
    n_configs = len(cfg.gamma_sq_values) * len(cfg.sigma_sq_values) * len(cfg.c1_c2_ratios)
    _report_optimization(table, Path(out.optimization_csv), n_configs)


def main():
    app()


if __name__ == "__main__":
    main()
