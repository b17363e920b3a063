"""
Objective Evaluator

Sum-of-squared-errors between the simulated infected compartment and an
observed case series, paired by observation day. No weighting and no
normalisation; non-finite trajectories yield a non-finite SSE.
"""

import numpy as np
from typing import Callable, Mapping, Optional, Sequence, Union

from epifit.epidemic_model.compartmental import (
    IntegratorSettings,
    ModelVariant,
    Trajectory,
    integrate,
)
from epifit.preprocessing.case_series import TimeSeries
from epifit.utils.exceptions import DimensionMismatchError, InvalidParameterError
from epifit.utils.logger import get_logger


logger = get_logger(__name__)

FITTED_COMPARTMENT = 'I'


def trajectory_sse(
    trajectory: Trajectory,
    observed: TimeSeries,
    compartment: str = FITTED_COMPARTMENT
) -> float:
    """
    SSE between one compartment of a trajectory and the observations.

    Raises:
        DimensionMismatchError: Lengths or time points differ
    """
    if len(trajectory) != len(observed):
        raise DimensionMismatchError(len(observed), len(trajectory))
    if not np.array_equal(trajectory.times, observed.times):
        raise DimensionMismatchError(
            len(observed), len(trajectory), reason="time points differ"
        )

    with np.errstate(over='ignore', invalid='ignore'):
        residuals = trajectory.compartment(compartment) - observed.values
        return float(np.sum(residuals ** 2))


def sse(
    system: Union[ModelVariant, str],
    params: Mapping[str, float],
    observed: TimeSeries,
    settings: Optional[IntegratorSettings] = None
) -> float:
    """
    Integrate the model over the observed days and score the I compartment.

    Args:
        system: Model variant
        params: Full parameter mapping
        observed: Observed case series (never mutated)
        settings: Solver tolerances

    Returns:
        Sum of squared errors (NaN/inf when the trajectory is non-finite)

    Raises:
        InvalidParameterError: Missing parameter or N <= 0
    """
    trajectory = integrate(system, params, 0.0, observed.times, settings)
    return trajectory_sse(trajectory, observed)


def make_objective(
    system: Union[ModelVariant, str],
    params: Mapping[str, float],
    observed: TimeSeries,
    free_parameters: Sequence[str],
    settings: Optional[IntegratorSettings] = None
) -> Callable[[np.ndarray], float]:
    """
    Turn the SSE evaluator into a function of the free parameters only.

    The returned function builds a fresh parameter dict per call. Invalid
    candidates and non-finite SSE map to +inf, which ranks them worse than
    any finite point.
    """
    base = dict(params)
    free = list(free_parameters)

    def objective(x: np.ndarray) -> float:
        candidate = dict(base)
        candidate.update(zip(free, (float(v) for v in x)))
        try:
            value = sse(system, candidate, observed, settings)
        except InvalidParameterError as e:
            logger.debug(f"Rejected candidate {dict(zip(free, x))}: {e}")
            return np.inf
        return value if np.isfinite(value) else np.inf

    return objective
