"""
Unit Tests for Compartmental Models

Tests the ODE definitions and trajectory integrator including:
- Variant selection and parameter requirements
- Initial state construction
- Population conservation
- Fail-fast parameter validation
- Permissive handling of degenerate parameters
"""

import pytest
import numpy as np
import pandas as pd
from scipy.integrate import solve_ivp

from epifit.epidemic_model import compartmental
from epifit.epidemic_model.compartmental import (
    IntegratorSettings,
    ModelVariant,
    Trajectory,
    integrate,
    resolve_parameters,
    seir_derivatives,
    simulate,
    sir_derivatives,
    summarize_trajectory,
)
from epifit.utils.exceptions import InvalidParameterError


class TestModelVariant:
    """Tests for the ModelVariant enum."""

    def test_coerce_from_string(self):
        """Test case-insensitive lookup by name."""
        assert ModelVariant.coerce('sir') is ModelVariant.SIR
        assert ModelVariant.coerce('SEIR') is ModelVariant.SEIR
        assert ModelVariant.coerce(ModelVariant.SIR) is ModelVariant.SIR

    def test_coerce_unknown_raises(self):
        """Test that an unknown variant name is rejected."""
        with pytest.raises(InvalidParameterError) as exc_info:
            ModelVariant.coerce('SIRS')
        assert exc_info.value.parameter == 'variant'

    def test_compartments(self):
        """Test compartment ordering per variant."""
        assert ModelVariant.SIR.compartments == ('S', 'I', 'R')
        assert ModelVariant.SEIR.compartments == ('S', 'E', 'I', 'R')

    def test_required_parameters(self):
        """Test required parameter names per variant."""
        assert set(ModelVariant.SIR.required_parameters) == {'Beta', 'gamma', 'N', 'S_0', 'I_0'}
        assert set(ModelVariant.SEIR.required_parameters) == {
            'Beta', 'gamma', 'alpha', 'N', 'S_0', 'E_0', 'I_0'
        }

    def test_sir_initial_state(self):
        """Test that R starts as the population remainder."""
        y0 = ModelVariant.SIR.initial_state({'Beta': 1, 'gamma': 1, 'N': 100, 'S_0': 90, 'I_0': 4})
        np.testing.assert_array_equal(y0, [90.0, 4.0, 6.0])

    def test_seir_initial_state(self):
        """Test SEIR initial state with exposed seed."""
        y0 = ModelVariant.SEIR.initial_state({
            'Beta': 1, 'gamma': 1, 'alpha': 1, 'N': 100, 'S_0': 90, 'E_0': 3, 'I_0': 2
        })
        np.testing.assert_array_equal(y0, [90.0, 3.0, 2.0, 5.0])

    def test_r0(self, sir_params):
        """Test basic reproduction number."""
        assert ModelVariant.SIR.r0(sir_params) == pytest.approx(5.0)
        assert ModelVariant.SIR.r0({**sir_params, 'gamma': 0.0}) == np.inf


class TestDerivatives:
    """Tests for the derivative functions."""

    def test_sir_derivatives_sum_to_zero(self):
        """Test that SIR derivatives conserve population."""
        d = sir_derivatives(0.0, np.array([900.0, 80.0, 20.0]), 0.4, 0.1, 1000.0)
        assert sum(d) == pytest.approx(0.0, abs=1e-12)

    def test_sir_derivative_values(self):
        """Test mass-action incidence values."""
        dS, dI, dR = sir_derivatives(0.0, np.array([500.0, 100.0, 400.0]), 2.0, 0.5, 1000.0)
        assert dS == pytest.approx(-100.0)
        assert dI == pytest.approx(50.0)
        assert dR == pytest.approx(50.0)

    def test_seir_derivative_values(self):
        """Test SEIR flows through the exposed compartment."""
        dS, dE, dI, dR = seir_derivatives(
            0.0, np.array([500.0, 40.0, 100.0, 360.0]), 2.0, 0.25, 0.5, 1000.0
        )
        assert dS == pytest.approx(-100.0)
        assert dE == pytest.approx(90.0)
        assert dI == pytest.approx(-40.0)
        assert dR == pytest.approx(50.0)
        assert dS + dE + dI + dR == pytest.approx(0.0, abs=1e-12)


class TestIntegrate:
    """Tests for the trajectory integrator."""

    def test_one_row_per_time_point(self, sir_params):
        """Test output rows align one-to-one with the grid."""
        days = np.arange(15, dtype=float)
        traj = integrate(ModelVariant.SIR, sir_params, 0.0, days)

        assert isinstance(traj, Trajectory)
        assert len(traj) == 15
        assert traj.states.shape == (15, 3)
        np.testing.assert_array_equal(traj.times, days)

    def test_single_point_at_start_returns_initial_state(self, seir_params):
        """Test zero-length integration returns the initial condition exactly."""
        traj = integrate('SEIR', seir_params, 0.0, [0.0])
        expected = ModelVariant.SEIR.initial_state(seir_params)

        assert len(traj) == 1
        np.testing.assert_array_equal(traj.states[0], expected)

    def test_first_row_is_initial_state(self, sir_params):
        """Test the day-0 row equals the initial condition."""
        traj = integrate('SIR', sir_params, 0.0, np.arange(5))
        np.testing.assert_allclose(traj.states[0], [1999999.0, 1.0, 0.0])

    def test_grid_starting_after_t0(self, sir_params):
        """Test a grid that starts after t0 still integrates from t0."""
        full = integrate('SIR', sir_params, 0.0, np.arange(0, 11, dtype=float))
        late = integrate('SIR', sir_params, 0.0, np.arange(5, 11, dtype=float))

        assert len(late) == 6
        np.testing.assert_allclose(late.states, full.states[5:], rtol=1e-8, atol=1e-3)

    @pytest.mark.parametrize("variant", ['SIR', 'SEIR'])
    def test_population_conservation(self, variant, sir_params, seir_params):
        """Test that compartments sum to N at every reported time."""
        params = sir_params if variant == 'SIR' else seir_params
        traj = integrate(variant, params, 0.0, np.arange(60, dtype=float))

        np.testing.assert_allclose(traj.totals(), params['N'], rtol=1e-6)

    def test_deterministic(self, seir_params):
        """Test identical inputs give identical trajectories."""
        days = np.arange(30, dtype=float)
        a = integrate('SEIR', seir_params, 0.0, days)
        b = integrate('SEIR', seir_params, 0.0, days)
        np.testing.assert_array_equal(a.states, b.states)

    @pytest.mark.parametrize("variant,days", [('SIR', 21), ('SEIR', 41)])
    def test_matches_independent_reference(self, variant, days, sir_params, seir_params):
        """Test each compartment is within 1e-6 of an implicit Radau reference solve."""
        params = sir_params if variant == 'SIR' else seir_params
        t = np.arange(days, dtype=float)
        N, Beta, gamma = params['N'], params['Beta'], params['gamma']

        def rhs(_, y):
            if variant == 'SIR':
                S, I, R = y
                new = Beta * S * I / N
                return [-new, new - gamma * I, gamma * I]
            S, E, I, R = y
            new = Beta * S * I / N
            return [-new, new - params['alpha'] * E, params['alpha'] * E - gamma * I, gamma * I]

        y0 = ModelVariant.coerce(variant).initial_state(params)
        reference = solve_ivp(
            rhs, (0.0, t[-1]), y0, method='Radau', t_eval=t, rtol=1e-13, atol=1e-12
        )
        traj = integrate(variant, params, 0.0, t)

        assert reference.success
        np.testing.assert_allclose(traj.states, reference.y.T, rtol=0, atol=1e-6)

    def test_epidemic_grows_then_declines(self, sir_params):
        """Test R0 > 1 produces a peak followed by decline."""
        traj = integrate('SIR', sir_params, 0.0, np.arange(60, dtype=float))
        I = traj.compartment('I')
        peak = int(np.argmax(I))

        assert 0 < peak < 59
        assert I[-1] < I[peak]

    def test_seir_exposed_delays_infection(self, seir_params):
        """Test that an exposed stage delays the peak relative to SIR."""
        days = np.arange(200, dtype=float)
        seir = integrate('SEIR', seir_params, 0.0, days)
        sir_like = {k: seir_params[k] for k in ('Beta', 'gamma', 'N', 'S_0', 'I_0')}
        sir = integrate('SIR', sir_like, 0.0, days)

        assert np.argmax(seir.compartment('I')) > np.argmax(sir.compartment('I'))


class TestParameterValidation:
    """Tests for fail-fast parameter errors."""

    def test_zero_population_raises_before_integration(self, sir_params, monkeypatch):
        """Test N=0 raises InvalidParameter before any solver step."""
        def fail(*args, **kwargs):
            raise AssertionError("solver should not be called")

        monkeypatch.setitem(compartmental.SOLVERS, 'DOP853', fail)

        with pytest.raises(InvalidParameterError) as exc_info:
            integrate('SIR', {**sir_params, 'N': 0}, 0.0, np.arange(5))
        assert exc_info.value.parameter == 'N'

    def test_negative_population_raises(self, seir_params):
        """Test N<0 is rejected."""
        with pytest.raises(InvalidParameterError):
            integrate('SEIR', {**seir_params, 'N': -10}, 0.0, np.arange(5))

    def test_missing_parameter_raises(self, seir_params):
        """Test a missing SEIR key names the parameter."""
        params = {k: v for k, v in seir_params.items() if k != 'alpha'}
        with pytest.raises(InvalidParameterError) as exc_info:
            integrate('SEIR', params, 0.0, np.arange(5))
        assert exc_info.value.parameter == 'alpha'
        assert 'alpha' in str(exc_info.value)

    def test_non_numeric_parameter_raises(self, sir_params):
        """Test a non-numeric value is rejected."""
        with pytest.raises(InvalidParameterError):
            resolve_parameters('SIR', {**sir_params, 'Beta': 'fast'})

    def test_extra_parameters_ignored(self, sir_params):
        """Test SIR accepts a mapping carrying SEIR-only keys."""
        traj = integrate('SIR', {**sir_params, 'alpha': 0.3, 'E_0': 5}, 0.0, np.arange(3))
        assert traj.states.shape == (3, 3)

    def test_non_increasing_grid_raises(self, sir_params):
        """Test the time grid must be strictly increasing."""
        with pytest.raises(InvalidParameterError):
            integrate('SIR', sir_params, 0.0, [0.0, 2.0, 2.0])

    def test_grid_before_start_raises(self, sir_params):
        """Test report times may not precede t0."""
        with pytest.raises(InvalidParameterError):
            integrate('SIR', sir_params, 0.0, [-1.0, 0.0, 1.0])

    def test_caller_mapping_not_mutated(self, sir_params):
        """Test integration leaves the parameter mapping untouched."""
        params = dict(sir_params)
        integrate('SIR', params, 0.0, np.arange(5))
        assert params == sir_params


class TestDegenerateParameters:
    """Tests that nonsensical but well-formed parameters do not raise."""

    def test_negative_rates_allowed(self, sir_params):
        """Test negative Beta produces a (degenerate) finite trajectory."""
        traj = integrate('SIR', {**sir_params, 'Beta': -1.0}, 0.0, np.arange(10))
        assert np.all(np.isfinite(traj.states))

    def test_initial_counts_exceeding_population_allowed(self, sir_params):
        """Test S_0 + I_0 > N gives negative R without raising."""
        traj = integrate('SIR', {**sir_params, 'N': 1000000.0}, 0.0, np.arange(10))
        assert traj.states[0, 2] < 0
        assert len(traj) == 10

    def test_no_clamping(self, seir_params):
        """Test the integrator does not clamp compartments at zero."""
        params = {**seir_params, 'gamma': -0.5}
        traj = integrate('SEIR', params, 0.0, np.arange(20))
        assert traj.compartment('R')[-1] < 0


class TestTrajectoryHelpers:
    """Tests for Trajectory conversions and summaries."""

    def test_to_frame_columns(self, seir_params):
        """Test DataFrame conversion."""
        df = integrate('SEIR', seir_params, 0.0, np.arange(4)).to_frame()
        assert list(df.columns) == ['t', 'S', 'E', 'I', 'R']
        assert len(df) == 4

    def test_unknown_compartment_raises(self, sir_params):
        """Test requesting E from an SIR trajectory fails."""
        traj = integrate('SIR', sir_params, 0.0, np.arange(3))
        with pytest.raises(KeyError):
            traj.compartment('E')

    def test_simulate_returns_frame(self, sir_params):
        """Test the DataFrame convenience wrapper."""
        df = simulate('SIR', sir_params, np.arange(10))
        assert isinstance(df, pd.DataFrame)
        assert df['t'].tolist() == list(range(10))

    def test_summary_statistics(self, sir_params):
        """Test peak and final-size summary."""
        traj = integrate('SIR', sir_params, 0.0, np.arange(80, dtype=float))
        summary = summarize_trajectory(traj)

        I = traj.compartment('I')
        assert summary['peak_infected'] == pytest.approx(I.max())
        assert summary['peak_day'] == float(np.argmax(I))
        assert 0 < summary['peak_prevalence'] < 1
        # R0 = 5 infects nearly everyone
        assert summary['final_size'] > 0.95


class TestIntegrationFailure:
    """Tests for solver blow-up, which is reported as NaN rather than raised."""

    @pytest.fixture
    def blowup_params(self, sir_params):
        # No transmission and a negative removal rate: I grows like exp(60 t)
        # and overflows shortly before day 12
        return {**sir_params, 'Beta': 0.0, 'gamma': -60.0}

    def test_rows_after_blowup_are_nan(self, blowup_params):
        """Test rows up to the failure stay finite and the rest become NaN."""
        traj = integrate('SIR', blowup_params, 0.0, np.arange(21, dtype=float))

        finite_rows = np.all(np.isfinite(traj.states), axis=1)
        assert len(traj) == 21
        assert finite_rows[0] and finite_rows[1]
        assert not finite_rows[-1]
        # Finite rows form a prefix
        n_finite = int(finite_rows.sum())
        assert finite_rows[:n_finite].all()
        assert np.isnan(traj.states[n_finite:]).all()

    def test_blowup_logs_warning(self, blowup_params, monkeypatch):
        """Test a failed integration emits a warning."""
        messages = []
        monkeypatch.setattr(compartmental.logger, 'warning', messages.append)

        integrate('SIR', blowup_params, 0.0, np.arange(21, dtype=float))

        assert len(messages) == 1
        assert 'integration failed' in messages[0]

    def test_successful_run_logs_nothing(self, sir_params, monkeypatch):
        """Test a well-behaved integration stays silent."""
        messages = []
        monkeypatch.setattr(compartmental.logger, 'warning', messages.append)

        integrate('SIR', sir_params, 0.0, np.arange(21, dtype=float))

        assert messages == []

    def test_step_ceiling_stops_integration(self, sir_params, monkeypatch):
        """Test exhausting max_steps leaves the unreached rows NaN."""
        messages = []
        monkeypatch.setattr(compartmental.logger, 'warning', messages.append)

        traj = integrate(
            'SIR', sir_params, 0.0, np.arange(21, dtype=float),
            settings=IntegratorSettings(max_steps=1)
        )

        np.testing.assert_array_equal(traj.states[0], [1999999.0, 1.0, 0.0])
        assert np.isnan(traj.states[1:]).all()
        assert 'step ceiling' in messages[0]

    def test_summary_of_failed_trajectory(self, blowup_params):
        """Test summaries skip NaN rows."""
        traj = integrate('SIR', blowup_params, 0.0, np.arange(21, dtype=float))
        summary = summarize_trajectory(traj)

        assert np.isfinite(summary['peak_infected'])
        assert np.isfinite(summary['final_size'])

    def test_summary_of_all_nan_trajectory(self):
        """Test a trajectory without finite I gives NaN statistics."""
        states = np.full((3, 3), np.nan)
        traj = Trajectory(ModelVariant.SIR, np.arange(3, dtype=float), states)

        summary = summarize_trajectory(traj)
        assert all(np.isnan(v) for v in summary.values())


class TestIntegratorSettings:
    """Tests for solver configuration."""

    def test_defaults(self):
        settings = IntegratorSettings()
        assert settings.method == 'DOP853'
        assert settings.rtol == 1e-13

    def test_unknown_method_raises(self):
        """Test unknown solver names are rejected up front."""
        with pytest.raises(InvalidParameterError) as exc_info:
            IntegratorSettings(method='Euler')
        assert exc_info.value.parameter == 'method'

    def test_alternative_method(self, seir_params):
        """Test a different scipy solver still conserves population."""
        traj = integrate(
            'SEIR', seir_params, 0.0, np.arange(30, dtype=float),
            settings=IntegratorSettings(method='RK45', rtol=1e-10, atol=1e-8)
        )
        np.testing.assert_allclose(traj.totals(), seir_params['N'], rtol=1e-6)
