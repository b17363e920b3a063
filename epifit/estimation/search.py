"""
Parameter Search Module

Three strategies over the SSE objective, each a pure sweep that builds a
fresh parameter mapping per evaluation:

1. Linear scan - one free parameter stepped from lower to upper
2. Grid scan - exhaustive SSE surface over two parameters, for inspecting
   the shape (non-convexity, multiple basins) of the loss landscape
3. Nelder-Mead - unconstrained derivative-free local optimization over
   any number of free parameters

None of the strategies enforces bounds on rates. A point whose evaluation
raises InvalidParameterError is recorded as NaN and the sweep continues.
"""

import os
import numpy as np
import pandas as pd
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from scipy import optimize
from tqdm import tqdm
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from epifit.epidemic_model.compartmental import (
    IntegratorSettings,
    ModelVariant,
    check_required_parameters,
)
from epifit.estimation.objective import make_objective, sse
from epifit.preprocessing.case_series import TimeSeries
from epifit.utils.exceptions import InvalidParameterError
from epifit.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass
class ScanResult:
    """Result of a one-parameter linear scan."""
    parameter: str
    values: np.ndarray
    sse: np.ndarray
    best_index: int
    best_value: float
    best_sse: float

    def __len__(self) -> int:
        return len(self.values)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({self.parameter: self.values, 'sse': self.sse})


@dataclass
class SearchSurface:
    """
    SSE evaluated on every point of a two-parameter grid.

    ``sse[i, j]`` is the SSE at ``(values[0][i], values[1][j])``. The surface
    is a diagnostic artifact for heat-map/contour inspection; it carries no
    notion of a best point.
    """
    parameters: Tuple[str, str]
    values: Tuple[np.ndarray, np.ndarray]
    sse: np.ndarray

    def __len__(self) -> int:
        return int(self.sse.size)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.sse.shape

    def points(self) -> Iterator[Tuple[float, float, float]]:
        """Iterate (p1, p2, sse) in row-major order."""
        for i, v1 in enumerate(self.values[0]):
            for j, v2 in enumerate(self.values[1]):
                yield float(v1), float(v2), float(self.sse[i, j])

    def to_frame(self) -> pd.DataFrame:
        """Tidy DataFrame with one row per grid point."""
        p1, p2 = self.parameters
        return pd.DataFrame(list(self.points()), columns=[p1, p2, 'sse'])

    def pivot(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Meshgrid triple for plotting.

        Returns:
            X (first parameter), Y (second parameter) and Z (SSE), each shaped
            (len(values[1]), len(values[0])) so rows follow the y axis
        """
        X, Y = np.meshgrid(self.values[0], self.values[1])
        return X, Y, self.sse.T


@dataclass
class OptimizationResult:
    """Outcome of a Nelder-Mead fit."""
    params: Dict[str, float]
    sse: float
    converged: bool
    iterations: int
    n_evaluations: int = 0
    message: str = ""
    free_parameters: List[str] = field(default_factory=list)
    start: Dict[str, float] = field(default_factory=dict)

    def r0(self) -> float:
        """Compute R₀ = β/γ at the fitted point."""
        gamma = self.params['gamma']
        return self.params['Beta'] / gamma if gamma != 0 else np.inf

    def to_dict(self) -> Dict:
        return {
            'params': dict(self.params),
            'sse': self.sse,
            'converged': self.converged,
            'iterations': self.iterations,
            'n_evaluations': self.n_evaluations,
            'message': self.message,
            'free_parameters': list(self.free_parameters),
            'start': dict(self.start),
        }


def scan_values(lower: float, upper: float, step: float) -> np.ndarray:
    """
    Grid ``lower + i*step`` for ``i = 0..round((upper - lower)/step)``.

    Raises:
        InvalidParameterError: Non-positive step or upper < lower
    """
    if not step > 0:
        raise InvalidParameterError('step', f"scan step must be positive, got {step}")
    if upper < lower:
        raise InvalidParameterError('upper', f"upper bound {upper} is below lower bound {lower}")

    n_steps = int(round((upper - lower) / step))
    return lower + step * np.arange(n_steps + 1, dtype=float)


def grid_axis(lower: float, upper: float, n_points: int) -> np.ndarray:
    """Evenly spaced grid axis, (min, max, n_points) like numpy.linspace."""
    if int(n_points) < 1:
        raise InvalidParameterError('n_points', f"grid resolution must be >= 1, got {n_points}")
    return np.linspace(lower, upper, int(n_points))


def _evaluate_point(
    system: ModelVariant,
    params: Mapping[str, float],
    observed: TimeSeries,
    settings: Optional[IntegratorSettings]
) -> float:
    """SSE at one point, NaN when the point is rejected."""
    try:
        return sse(system, params, observed, settings)
    except InvalidParameterError as e:
        logger.warning(f"Skipping scan point: {e}")
        return np.nan


def _evaluate_row(
    system: ModelVariant,
    params: Mapping[str, float],
    observed: TimeSeries,
    parameters: Tuple[str, str],
    first_value: float,
    second_values: np.ndarray,
    settings: Optional[IntegratorSettings]
) -> np.ndarray:
    """Evaluate one grid row (fixed first parameter). Picklable for workers."""
    p1, p2 = parameters
    row = np.empty(len(second_values), dtype=float)
    for j, v2 in enumerate(second_values):
        candidate = dict(params)
        candidate[p1] = float(first_value)
        candidate[p2] = float(v2)
        row[j] = _evaluate_point(system, candidate, observed, settings)
    return row


def scan_parameter(
    system: Union[ModelVariant, str],
    params: Mapping[str, float],
    observed: TimeSeries,
    parameter: str,
    lower: float,
    upper: float,
    step: float,
    settings: Optional[IntegratorSettings] = None
) -> ScanResult:
    """
    Evaluate SSE at every step of one parameter, low to high.

    Args:
        system: Model variant
        params: Values for every other parameter (the scanned one may be absent)
        observed: Observed case series
        parameter: Name of the free parameter
        lower, upper, step: Scan range and step size
        settings: Solver tolerances

    Returns:
        ScanResult; the best value is the first minimal SSE in scan order.
        NaN points never win.

    Raises:
        InvalidParameterError: Missing fixed parameter or malformed range
    """
    system = ModelVariant.coerce(system)
    values = scan_values(lower, upper, step)
    check_required_parameters(system, {**params, parameter: values[0]})

    logger.info(
        f"Scanning {parameter} over [{lower}, {upper}] step {step} "
        f"({len(values)} points, {system.value} model)"
    )

    sse_values = np.empty(len(values), dtype=float)
    for i, v in enumerate(values):
        candidate = dict(params)
        candidate[parameter] = float(v)
        sse_values[i] = _evaluate_point(system, candidate, observed, settings)

    # np.argmin returns the first occurrence of the minimum
    ranked = np.where(np.isnan(sse_values), np.inf, sse_values)
    best_index = int(np.argmin(ranked))

    if not np.isfinite(ranked[best_index]):
        logger.warning(f"No finite SSE found while scanning {parameter}")

    result = ScanResult(
        parameter=parameter,
        values=values,
        sse=sse_values,
        best_index=best_index,
        best_value=float(values[best_index]),
        best_sse=float(sse_values[best_index]),
    )

    logger.info(
        f"Scan complete: {parameter}={result.best_value:.6g}, SSE={result.best_sse:.6g}"
    )
    return result


def grid_scan(
    system: Union[ModelVariant, str],
    params: Mapping[str, float],
    observed: TimeSeries,
    parameters: Tuple[str, str],
    first_range: Tuple[float, float, int],
    second_range: Tuple[float, float, int],
    settings: Optional[IntegratorSettings] = None,
    n_workers: Optional[int] = 1,
    show_progress: bool = False
) -> SearchSurface:
    """
    Evaluate SSE on the outer product of two parameter axes.

    Args:
        system: Model variant
        params: Values for every other parameter
        observed: Observed case series
        parameters: Names of the two free parameters
        first_range, second_range: (min, max, n_points) per axis
        settings: Solver tolerances
        n_workers: Worker processes (1 = sequential, None = cpu_count)
        show_progress: Display a progress bar

    Returns:
        SearchSurface with len(first) × len(second) points

    Raises:
        InvalidParameterError: Missing fixed parameter or bad resolution
    """
    system = ModelVariant.coerce(system)
    p1, p2 = parameters
    if p1 == p2:
        raise InvalidParameterError(p2, "grid parameters must differ")

    first_values = grid_axis(*first_range)
    second_values = grid_axis(*second_range)
    check_required_parameters(
        system, {**params, p1: first_values[0], p2: second_values[0]}
    )

    if n_workers is None:
        n_workers = os.cpu_count() or 4
    n_workers = max(1, min(int(n_workers), len(first_values)))

    logger.info(
        f"Running grid scan over {p1} x {p2} "
        f"({len(first_values)}x{len(second_values)} points, {n_workers} worker(s))"
    )

    surface = np.full((len(first_values), len(second_values)), np.nan)
    progress = tqdm(total=len(first_values), desc=f"Grid {p1} x {p2}", disable=not show_progress)

    if n_workers == 1:
        for i, v1 in enumerate(first_values):
            surface[i] = _evaluate_row(
                system, params, observed, (p1, p2), v1, second_values, settings
            )
            progress.update(1)
    else:
        with ProcessPoolExecutor(max_workers=n_workers) as executor:
            futures = {
                executor.submit(
                    _evaluate_row,
                    system, dict(params), observed, (p1, p2), v1, second_values, settings
                ): i
                for i, v1 in enumerate(first_values)
            }
            for future in as_completed(futures):
                i = futures[future]
                try:
                    surface[i] = future.result()
                except Exception as e:
                    logger.warning(f"Grid row {p1}={first_values[i]:g} failed: {e}")
                progress.update(1)

    progress.close()

    n_finite = int(np.isfinite(surface).sum())
    logger.info(f"Grid scan complete: {n_finite}/{surface.size} finite points")

    return SearchSurface(
        parameters=(p1, p2),
        values=(first_values, second_values),
        sse=surface,
    )


def optimize_parameters(
    system: Union[ModelVariant, str],
    params: Mapping[str, float],
    observed: TimeSeries,
    free_parameters: Sequence[str] = ('Beta', 'alpha'),
    start: Optional[Mapping[str, float]] = None,
    xatol: float = 1e-4,
    fatol: float = 1e-4,
    max_iterations: Optional[int] = None,
    max_evaluations: Optional[int] = None,
    settings: Optional[IntegratorSettings] = None
) -> OptimizationResult:
    """
    Minimize SSE over the free parameters with the Nelder-Mead simplex.

    Only a single start point is used. No bounds are enforced; candidates
    that are rejected or produce a non-finite SSE score +inf.

    Args:
        system: Model variant
        params: Values for every parameter (free ones provide the default start)
        observed: Observed case series
        free_parameters: Names of the parameters to optimize
        start: Start point overriding ``params`` for the free parameters
        xatol, fatol: Absolute convergence tolerances on parameters and SSE
        max_iterations, max_evaluations: Ceilings bounding runtime
        settings: Solver tolerances

    Returns:
        OptimizationResult; ``converged`` is False when a ceiling was hit

    Raises:
        InvalidParameterError: No free parameters, missing start value, or
            a fixed parameter missing
    """
    system = ModelVariant.coerce(system)
    free = list(free_parameters)
    if not free:
        raise InvalidParameterError('free_parameters', "at least one free parameter is required")

    start = dict(start or {})
    x0 = []
    for name in free:
        if name in start:
            x0.append(float(start[name]))
        elif name in params:
            x0.append(float(params[name]))
        else:
            raise InvalidParameterError(name, "no start value for free parameter")

    base = dict(params)
    base.update(zip(free, x0))
    check_required_parameters(system, base)

    logger.info(
        f"Optimizing {free} with Nelder-Mead from {dict(zip(free, x0))} "
        f"({system.value} model)"
    )

    objective = make_objective(system, base, observed, free, settings)

    options = {'xatol': xatol, 'fatol': fatol}
    if max_iterations is not None:
        options['maxiter'] = int(max_iterations)
    if max_evaluations is not None:
        options['maxfev'] = int(max_evaluations)

    res = optimize.minimize(objective, np.asarray(x0, dtype=float), method='Nelder-Mead', options=options)

    fitted = dict(base)
    fitted.update(zip(free, (float(v) for v in res.x)))

    result = OptimizationResult(
        params=fitted,
        sse=float(res.fun),
        converged=bool(res.success) and bool(np.isfinite(res.fun)),
        iterations=int(res.nit),
        n_evaluations=int(res.nfev),
        message=str(res.message),
        free_parameters=free,
        start=dict(zip(free, x0)),
    )

    if result.converged:
        best = {name: fitted[name] for name in free}
        logger.info(
            f"Optimization converged after {result.iterations} iterations: "
            f"{best}, SSE={result.sse:.6g}"
        )
    else:
        logger.warning(
            f"Optimization did not converge after {result.iterations} iterations "
            f"({result.message}); SSE={result.sse:.6g}"
        )

    return result
