"""
Deterministic Compartmental Epidemic Models

Implements the SIR and SEIR ordinary differential equation systems and a
trajectory integrator reporting compartment states at requested days.

Mathematical Model (SIR):
    dS/dt = -β × S × I / N
    dI/dt =  β × S × I / N - γ × I
    dR/dt =  γ × I

Mathematical Model (SEIR):
    dS/dt = -β × S × I / N
    dE/dt =  β × S × I / N - α × E
    dI/dt =  α × E - γ × I
    dR/dt =  γ × I

Where:
    β (Beta)  = transmission rate
    γ (gamma) = removal rate
    α (alpha) = incubation -> infectious rate
    N         = total population (constant)

Parameters are plain mappings keyed by name (Beta, gamma, alpha, N, S_0, E_0,
I_0). The integrator never clamps or validates rates, so searches can explore
physically meaningless regions without crashing.
"""

import numpy as np
import pandas as pd
from scipy.integrate import BDF, DOP853, LSODA, RK23, RK45, Radau
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from epifit.utils.exceptions import InvalidParameterError
from epifit.utils.logger import get_logger


logger = get_logger(__name__)

ParameterMap = Mapping[str, float]

SOLVERS = {
    'DOP853': DOP853,
    'RK45': RK45,
    'RK23': RK23,
    'Radau': Radau,
    'BDF': BDF,
    'LSODA': LSODA,
}


def sir_derivatives(
    t: float,
    y: np.ndarray,
    Beta: float,
    gamma: float,
    N: float
) -> List[float]:
    """
    SIR ODE right-hand side for the scipy.integrate solvers.

    Args:
        t: Time (autonomous system, unused)
        y: State vector [S, I, R]
        Beta: Transmission rate
        gamma: Removal rate
        N: Total population

    Returns:
        Derivatives [dS/dt, dI/dt, dR/dt]
    """
    S, I, R = y

    # Mass-action incidence
    incidence = Beta * S * I / N

    dSdt = -incidence
    dIdt = incidence - gamma * I
    dRdt = gamma * I

    return [dSdt, dIdt, dRdt]


def seir_derivatives(
    t: float,
    y: np.ndarray,
    Beta: float,
    alpha: float,
    gamma: float,
    N: float
) -> List[float]:
    """
    SEIR ODE right-hand side for the scipy.integrate solvers.

    Args:
        t: Time (autonomous system, unused)
        y: State vector [S, E, I, R]
        Beta: Transmission rate
        alpha: Incubation rate (E -> I)
        gamma: Removal rate
        N: Total population

    Returns:
        Derivatives [dS/dt, dE/dt, dI/dt, dR/dt]
    """
    S, E, I, R = y

    incidence = Beta * S * I / N

    dSdt = -incidence
    dEdt = incidence - alpha * E
    dIdt = alpha * E - gamma * I
    dRdt = gamma * I

    return [dSdt, dEdt, dIdt, dRdt]


class ModelVariant(Enum):
    """Compartmental model variants supported by the integrator."""
    SIR = "SIR"
    SEIR = "SEIR"

    @classmethod
    def coerce(cls, value: Union['ModelVariant', str]) -> 'ModelVariant':
        """Resolve a variant from an enum member or its (case-insensitive) name."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            choices = ', '.join(m.value for m in cls)
            raise InvalidParameterError(
                'variant', f"unknown model variant {value!r} (expected one of {choices})"
            ) from None

    @property
    def compartments(self) -> Tuple[str, ...]:
        if self is ModelVariant.SIR:
            return ('S', 'I', 'R')
        return ('S', 'E', 'I', 'R')

    @property
    def rate_parameters(self) -> Tuple[str, ...]:
        """Rate parameters in the order the derivative function expects them."""
        if self is ModelVariant.SIR:
            return ('Beta', 'gamma')
        return ('Beta', 'alpha', 'gamma')

    @property
    def initial_parameters(self) -> Tuple[str, ...]:
        if self is ModelVariant.SIR:
            return ('S_0', 'I_0')
        return ('S_0', 'E_0', 'I_0')

    @property
    def required_parameters(self) -> Tuple[str, ...]:
        return self.rate_parameters + ('N',) + self.initial_parameters

    @property
    def derivatives(self):
        if self is ModelVariant.SIR:
            return sir_derivatives
        return seir_derivatives

    def initial_state(self, params: ParameterMap) -> np.ndarray:
        """
        Build the initial compartment vector.

        Removed individuals make up the remainder of the population,
        R = N - S_0 - [E_0] - I_0.
        """
        values = resolve_parameters(self, params)
        seeded = [values[name] for name in self.initial_parameters]
        return np.array(seeded + [values['N'] - sum(seeded)], dtype=float)

    def r0(self, params: ParameterMap) -> float:
        """Basic reproduction number R₀ = β/γ."""
        gamma = float(params['gamma'])
        return float(params['Beta']) / gamma if gamma != 0 else np.inf


def check_required_parameters(
    variant: Union[ModelVariant, str],
    params: ParameterMap
) -> None:
    """
    Raise if any parameter the variant needs is absent.

    Raises:
        InvalidParameterError: Naming the first missing parameter
    """
    variant = ModelVariant.coerce(variant)
    for name in variant.required_parameters:
        if name not in params:
            raise InvalidParameterError(name, f"required for the {variant.value} model")


def resolve_parameters(
    variant: Union[ModelVariant, str],
    params: ParameterMap
) -> Dict[str, float]:
    """
    Extract the variant's parameters as floats and fail fast on unusable input.

    Negative rates and initial counts exceeding N are accepted; only a missing
    key, a non-numeric value or a non-positive population is rejected.

    Raises:
        InvalidParameterError: Missing key, non-numeric value, or N <= 0
    """
    variant = ModelVariant.coerce(variant)
    check_required_parameters(variant, params)

    values = {}
    for name in variant.required_parameters:
        try:
            values[name] = float(params[name])
        except (TypeError, ValueError):
            raise InvalidParameterError(name, f"not a real number: {params[name]!r}") from None

    if not values['N'] > 0:
        raise InvalidParameterError(
            'N', f"total population must be positive, got {values['N']}"
        )

    return values


@dataclass(frozen=True)
class IntegratorSettings:
    """
    Solver choice, tolerances and step ceiling for the scipy.integrate solvers.

    The defaults (8th-order Dormand-Prince, rtol close to the 100 * eps floor
    scipy accepts) hold each compartment within 1e-6 of a high-precision
    reference for populations in the millions. ``max_steps`` bounds the work
    spent on a single trajectory; unbounded searches can propose rates that
    make the system stiff.
    """
    method: str = 'DOP853'
    rtol: float = 1e-13
    atol: float = 1e-12
    max_steps: int = 50000

    def __post_init__(self):
        if self.method not in SOLVERS:
            raise InvalidParameterError(
                'method', f"unknown solver {self.method!r} (expected one of {', '.join(SOLVERS)})"
            )


@dataclass(frozen=True)
class Trajectory:
    """Compartment states reported at each requested time point."""
    variant: ModelVariant
    times: np.ndarray
    states: np.ndarray   # shape (len(times), len(variant.compartments))

    def __len__(self) -> int:
        return len(self.times)

    def compartment(self, name: str) -> np.ndarray:
        """Return the series of one compartment (e.g. 'I')."""
        try:
            idx = self.variant.compartments.index(name)
        except ValueError:
            raise KeyError(
                f"{self.variant.value} model has no compartment {name!r}"
            ) from None
        return self.states[:, idx]

    def totals(self) -> np.ndarray:
        """Total population across compartments at each time point."""
        return self.states.sum(axis=1)

    def to_frame(self) -> pd.DataFrame:
        """
        Convert to a DataFrame with columns [t, S, (E,) I, R].
        """
        df = pd.DataFrame(self.states, columns=list(self.variant.compartments))
        df.insert(0, 't', self.times)
        return df


def _as_time_grid(time_grid: Sequence[float], t0: float) -> np.ndarray:
    grid = np.asarray(time_grid, dtype=float)

    if grid.ndim != 1 or len(grid) == 0:
        raise InvalidParameterError('time_grid', "must be a non-empty 1-D sequence")
    if not np.all(np.isfinite(grid)):
        raise InvalidParameterError('time_grid', "contains non-finite time points")
    if np.any(np.diff(grid) <= 0):
        raise InvalidParameterError('time_grid', "time points must be strictly increasing")
    if grid[0] < t0:
        raise InvalidParameterError(
            'time_grid', f"first time point {grid[0]} precedes start time {t0}"
        )

    return grid


def _solve(
    variant: ModelVariant,
    args: Tuple[float, ...],
    y0: np.ndarray,
    times: np.ndarray,
    states: np.ndarray,
    settings: IntegratorSettings
) -> Tuple[int, Optional[str]]:
    """
    Step the solver from times[0] to times[-1], filling ``states`` in place.

    Returns:
        (number of rows filled, solver message or None on success)
    """
    derivatives = variant.derivatives

    def rhs(t, y):
        return derivatives(t, y, *args)

    reached = 1
    n_steps = 0
    with np.errstate(over='ignore', invalid='ignore', divide='ignore'):
        solver = SOLVERS[settings.method](
            rhs, times[0], y0, times[-1], rtol=settings.rtol, atol=settings.atol
        )
        while reached < len(times) and solver.status == 'running':
            if n_steps >= settings.max_steps:
                return reached, f"step ceiling of {settings.max_steps} reached"
            message = solver.step()
            n_steps += 1
            if solver.status == 'failed':
                return reached, message

            # Dense output covers every report time passed by this step
            upper = int(np.searchsorted(times, solver.t, side='right'))
            if upper > reached:
                dense = solver.dense_output()
                states[reached:upper] = dense(times[reached:upper]).T
                reached = upper

    return reached, None


def integrate(
    system: Union[ModelVariant, str],
    params: ParameterMap,
    t0: float,
    time_grid: Sequence[float],
    settings: Optional[IntegratorSettings] = None
) -> Trajectory:
    """
    Integrate a compartmental model forward from t0 and report each grid day.

    Args:
        system: Model variant (SIR or SEIR)
        params: Parameter mapping for the variant
        t0: Start time of the initial-value problem
        time_grid: Strictly increasing report times, all >= t0
        settings: Solver tolerances (defaults to IntegratorSettings())

    Returns:
        Trajectory with exactly one row per grid point, in order

    Raises:
        InvalidParameterError: Missing parameter, N <= 0 or malformed grid.
            Raised before the solver is invoked.
    """
    variant = ModelVariant.coerce(system)
    values = resolve_parameters(variant, params)
    grid = _as_time_grid(time_grid, float(t0))
    settings = settings or IntegratorSettings()

    y0 = variant.initial_state(values)
    args = tuple(values[name] for name in variant.rate_parameters) + (values['N'],)

    # Row 0 always holds the initial condition at t0
    prepend = grid[0] != t0
    times = np.concatenate(([float(t0)], grid)) if prepend else grid

    states = np.full((len(times), len(y0)), np.nan)
    states[0] = y0

    if len(times) > 1:
        reached, message = _solve(variant, args, y0, times, states, settings)

        non_finite = ~np.all(np.isfinite(states[:reached]), axis=1)
        if non_finite.any():
            reached = max(int(np.argmax(non_finite)), 1)
            message = message or "state became non-finite"
        if reached < len(times):
            # Advisory only: callers see NaN and keep searching
            states[reached:] = np.nan
            rates = {name: values[name] for name in variant.rate_parameters}
            logger.warning(
                f"{variant.value} integration failed after t={times[reached - 1]:g} "
                f"for {rates}: {message}"
            )

    if prepend:
        states = states[1:]

    logger.debug(f"Integrated {variant.value} over {len(grid)} time points")

    return Trajectory(variant=variant, times=grid.copy(), states=np.asarray(states, dtype=float))


def simulate(
    system: Union[ModelVariant, str],
    params: ParameterMap,
    time_grid: Sequence[float],
    settings: Optional[IntegratorSettings] = None
) -> pd.DataFrame:
    """Integrate from day 0 and return the trajectory as a DataFrame."""
    return integrate(system, params, 0.0, time_grid, settings).to_frame()


def summarize_trajectory(trajectory: Trajectory) -> Dict[str, float]:
    """
    Compute peak and final-size statistics of a trajectory.

    Rows left NaN by a failed integration are ignored; a trajectory with no
    finite infected count yields NaN for every statistic.

    Returns:
        Dict with peak_day, peak_infected, peak_prevalence, final_size
        (removed fraction at the last finite time point)
    """
    I = trajectory.compartment('I')
    R = trajectory.compartment('R')
    N0 = float(trajectory.states[0].sum())

    finite = np.isfinite(I)
    if not finite.any():
        return {key: np.nan for key in ('peak_day', 'peak_infected', 'peak_prevalence', 'final_size')}
    last = int(np.flatnonzero(finite)[-1])

    peak_idx = int(np.nanargmax(I))

    return {
        'peak_day': float(trajectory.times[peak_idx]),
        'peak_infected': float(I[peak_idx]),
        'peak_prevalence': float(I[peak_idx] / N0),
        'final_size': float(R[last] / N0),
    }
