"""Objective evaluation and parameter search for compartmental model fits."""

from epifit.estimation.objective import (
    sse,
    trajectory_sse,
    make_objective,
)
from epifit.estimation.search import (
    ScanResult,
    SearchSurface,
    OptimizationResult,
    scan_values,
    grid_axis,
    scan_parameter,
    grid_scan,
    optimize_parameters,
)

__all__ = [
    "sse",
    "trajectory_sse",
    "make_objective",
    "ScanResult",
    "SearchSurface",
    "OptimizationResult",
    "scan_values",
    "grid_axis",
    "scan_parameter",
    "grid_scan",
    "optimize_parameters",
]
