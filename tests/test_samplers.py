"""
Transition Kernel Tests

Tests the kernels and their shared helpers:
- Metropolis test boundaries and acceptance probabilities
- Rank-1 Cholesky updates
- Leapfrog reversibility
- Kernel invariants (target = likelihood + prior after every step)
- Rejection of candidates outside the support
- NUTS tree depth bounds
- Gibbs sub-steps leave the other parameters untouched
- Kernel validation and the sampler registry

Run with: pytest tests/test_samplers.py -v
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from mcgraph import (
    ConfigurationError, HMC, MALA, NUTS, Parameter, RWM, SMMALA, SamplerType, build_model,
    make_sampler,
)
from mcgraph.samplers import (
    GibbsSweep, StepRecord, TargetDensity, acceptance_probability, chol_rank1_update, integrate,
    metropolis_accept,
)

from conftest import make_mvn_parameter, make_normal_parameter, make_state


def run_kernel(sampler, parameter, value, n, rng, fields=('logtarget',), values=None):
    """Run n steps of sampler from value; returns (state, draws, records)."""
    values = {} if values is None else values
    state = make_state(parameter, value, fields=fields,
                       diagnostickeys=sampler.diagnostickeys, values=values)
    sampler.validate(state)
    sampler.reset(state)
    target = TargetDensity(parameter, values)
    draws, records = [], []
    for _ in range(n):
        records.append(sampler.step(state, target, rng))
        draws.append(np.copy(state.value))
    return state, np.array(draws), records


# ============================================================================
# HELPERS
# ============================================================================

class TestMetropolisTest:
    """Test the log-space Metropolis test."""

    def test_u_zero_accepts_finite(self):
        assert metropolis_accept(-1e6, 0.0)
        assert metropolis_accept(0.5, 0.0)

    def test_u_one_rejects_negative(self):
        assert not metropolis_accept(-1e-9, 1.0)
        assert metropolis_accept(1e-9, 1.0)

    @pytest.mark.parametrize("log_ratio", [-np.inf, np.nan])
    def test_non_finite_rejected(self, log_ratio):
        assert not metropolis_accept(log_ratio, 0.3)

    def test_acceptance_probability_bounds(self):
        for r in [-np.inf, -50.0, -1.0, 0.0, 2.0, np.inf, np.nan]:
            p = acceptance_probability(r)
            assert 0.0 <= p <= 1.0
        assert acceptance_probability(np.nan) == 0.0
        assert acceptance_probability(3.0) == 1.0
        assert acceptance_probability(-1.0) == pytest.approx(np.exp(-1.0))


class TestCholeskyUpdate:
    """Test rank-1 updates of lower Cholesky factors."""

    def setup_method(self):
        self.A = np.array([[4.0, 1.0, 0.5], [1.0, 3.0, 0.2], [0.5, 0.2, 2.0]])
        self.L = np.linalg.cholesky(self.A)
        self.x = np.array([0.3, -0.6, 0.9])

    def test_update(self):
        L1 = chol_rank1_update(self.L, self.x, 1.0)
        assert_allclose(L1, np.linalg.cholesky(self.A + np.outer(self.x, self.x)), atol=1e-12)
        assert_allclose(L1, np.tril(L1))

    def test_downdate(self):
        L1 = chol_rank1_update(self.L, self.x, -1.0)
        assert_allclose(L1 @ L1.T, self.A - np.outer(self.x, self.x), atol=1e-12)

    def test_input_untouched(self):
        before = self.L.copy()
        chol_rank1_update(self.L, self.x, 1.0)
        assert_allclose(self.L, before)

    def test_indefinite_downdate(self):
        with pytest.raises(np.linalg.LinAlgError):
            chol_rank1_update(np.eye(2), np.array([2.0, 0.0]), -1.0)


class TestLeapfrog:
    """Test the leapfrog integrator."""

    def test_reversible(self):
        def grad_fn(q):
            return -q

        q0 = np.array([0.7, -1.3])
        p0 = np.array([0.4, 0.9])
        q1, p1, g1 = integrate(q0, p0, grad_fn(q0), 0.1, 25, grad_fn)
        q2, p2, _ = integrate(q1, -p1, g1, 0.1, 25, grad_fn)

        assert_allclose(q2, q0, atol=1e-10)
        assert_allclose(-p2, p0, atol=1e-10)

    def test_energy_nearly_conserved(self):
        def grad_fn(q):
            return -q

        q0, p0 = np.array([1.0]), np.array([0.5])
        q1, p1, _ = integrate(q0, p0, grad_fn(q0), 0.05, 100, grad_fn)
        h0 = 0.5 * (q0 @ q0 + p0 @ p0)
        h1 = 0.5 * (q1 @ q1 + p1 @ p1)
        assert abs(h1 - h0) < 1e-2


# ============================================================================
# KERNELS
# ============================================================================

class TestKernelInvariants:
    """Test properties every kernel must keep."""

    @pytest.mark.parametrize("sampler", [RWM(0.8), HMC(0.2, 5), NUTS(0.3), MALA(0.5)])
    def test_target_is_likelihood_plus_prior(self, sampler, rng):
        p = Parameter(
            'mu',
            loglikelihood=lambda v, vals: -0.5 * (v - vals['ybar']) ** 2,
            logprior=lambda v, vals: -0.5 * v ** 2 / 4.0,
            gradloglikelihood=lambda v, vals: -(v - vals['ybar']),
            gradlogprior=lambda v, vals: -v / 4.0,
        )
        fields = ['loglikelihood', 'logprior', 'logtarget',
                  'gradloglikelihood', 'gradlogprior', 'gradlogtarget']
        values = {'ybar': 1.0}
        state = make_state(p, 0.0, fields=fields,
                           diagnostickeys=sampler.diagnostickeys, values=values)
        target = TargetDensity(p, values)
        for _ in range(200):
            record = sampler.step(state, target, rng)
            assert isinstance(record, StepRecord)
            assert state.logtarget == pytest.approx(state.loglikelihood + state.logprior)
            assert state.gradlogtarget == pytest.approx(state.gradloglikelihood + state.gradlogprior)

    def test_rejected_step_leaves_state(self, rng):
        p = make_normal_parameter()
        sampler = RWM(50.0)
        state = make_state(p, 0.0)
        target = TargetDensity(p, {})
        for _ in range(100):
            before = state.value, state.logtarget
            record = sampler.step(state, target, rng)
            if not record.accepted:
                assert (state.value, state.logtarget) == before
            assert state.diagnostics['accept'] == record.accepted

    @pytest.mark.parametrize("sampler", [RWM(2.0), HMC(0.8, 5), NUTS(0.8), MALA(1.5)])
    def test_outside_support_rejected(self, sampler, rng):
        # Half-normal: log-target is -inf below zero
        p = Parameter('s',
                      logtarget=lambda v, vals: -0.5 * v ** 2 if v >= 0 else -np.inf,
                      gradlogtarget=lambda v, vals: -v)
        state, draws, records = run_kernel(sampler, p, 0.1, 500, rng,
                                           fields=['logtarget', 'gradlogtarget'])
        assert len(records) == 500
        assert np.all(draws >= 0)
        assert draws.max() > 0.5
        if isinstance(sampler, RWM):
            assert any(not r.accepted for r in records)
        assert np.isfinite(state.logtarget)


class TestRWM:
    """Test the random-walk Metropolis kernel."""

    def test_standard_normal_moments(self, rng):
        _, draws, records = run_kernel(RWM(2.4), make_normal_parameter(), 0.0, 20000, rng)
        assert abs(draws.mean()) < 0.1
        assert abs(draws.std() - 1.0) < 0.1
        rate = np.mean([r.accepted for r in records])
        assert 0.2 < rate < 0.6

    def test_direction_recorded(self, rng):
        sampler = RWM(1.0)
        _, _, records = run_kernel(sampler, make_normal_parameter(), 0.0, 1, rng)
        assert records[0].info['direction'] == sampler.last_direction

    def test_matrix_scale(self, rng):
        L = np.linalg.cholesky(np.array([[1.0, 0.5], [0.5, 1.0]]))
        sampler = RWM(L)
        assert sampler.is_matrix_scale
        _, draws, _ = run_kernel(sampler, make_mvn_parameter(dim=2), np.zeros(2), 100, rng)
        assert draws.shape == (100, 2)

    def test_matrix_scale_size_checked(self):
        sampler = RWM(np.eye(3))
        state = make_state(make_mvn_parameter(dim=2), np.zeros(2))
        with pytest.raises(ConfigurationError):
            sampler.validate(state)

    @pytest.mark.parametrize("scale", [0.0, -1.0, np.array([[1.0, 1.0], [0.0, 1.0]]), np.ones(3)])
    def test_bad_scale(self, scale):
        with pytest.raises(ConfigurationError):
            RWM(scale)

    def test_discrete_rejected(self):
        p = Parameter('k', support='discrete', logtarget=lambda v, vals: 0.0)
        state = make_state(p, 1)
        with pytest.raises(ConfigurationError):
            RWM(1.0).validate(state)

    def test_rescale(self):
        sampler = RWM(2.0)
        sampler.rescale(1.5)
        assert sampler.scale == 3.0


class TestGradientKernels:
    """Test HMC, MALA and SMMALA."""

    def test_missing_gradient_rejected(self):
        state = make_state(make_normal_parameter(), 0.0, fields=['logtarget'])
        for sampler in [HMC(), MALA(), NUTS()]:
            with pytest.raises(ConfigurationError):
                sampler.validate(state)

    def test_hmc_high_acceptance(self, rng):
        _, draws, records = run_kernel(HMC(0.1, 10), make_normal_parameter(), 0.0, 2000, rng,
                                       fields=['logtarget', 'gradlogtarget'])
        assert np.mean([r.accepted for r in records]) > 0.9
        assert abs(draws.mean()) < 0.15

    def test_mala_moments(self, rng):
        _, draws, _ = run_kernel(MALA(1.0), make_normal_parameter(mean=2.0), 2.0, 5000, rng,
                                 fields=['logtarget', 'gradlogtarget'])
        assert abs(draws.mean() - 2.0) < 0.15
        assert abs(draws.std() - 1.0) < 0.15

    def test_smmala_correlated_normal(self, rng):
        cov = np.array([[1.0, 0.9], [0.9, 1.0]])
        p = make_mvn_parameter(cov=cov)
        _, draws, records = run_kernel(
            SMMALA(1.0), p, np.zeros(2), 5000, rng,
            fields=['logtarget', 'gradlogtarget', 'tensorlogtarget'],
        )
        assert np.mean([r.accepted for r in records]) > 0.3
        assert_allclose(draws.mean(axis=0), [0.0, 0.0], atol=0.15)
        assert np.corrcoef(draws.T)[0, 1] == pytest.approx(0.9, abs=0.05)

    def test_smmala_needs_multivariate(self):
        state = make_state(make_normal_parameter(), 0.0, fields=['logtarget', 'gradlogtarget'])
        with pytest.raises(ConfigurationError):
            SMMALA().validate(state)


class TestNUTS:
    """Test the No-U-Turn Sampler."""

    def test_doublings_in_range(self, rng):
        sampler = NUTS(step_size=0.2, max_doublings=4)
        state, draws, records = run_kernel(sampler, make_mvn_parameter(dim=3), np.zeros(3), 300,
                                           rng, fields=['logtarget', 'gradlogtarget'])
        doublings = [r.diagnostics['ndoublings'] for r in records]
        assert all(0 <= d <= 4 for d in doublings)
        assert max(doublings) >= 1
        assert 0 <= state.diagnostics['ndoublings'] <= 4
        assert all(0.0 <= r.accept_stat <= 1.0 for r in records)

    def test_zero_doublings_never_moves(self, rng):
        sampler = NUTS(max_doublings=0)
        _, draws, records = run_kernel(sampler, make_normal_parameter(), 0.5, 20, rng,
                                       fields=['logtarget', 'gradlogtarget'])
        assert np.all(draws == 0.5)
        assert not any(r.accepted for r in records)

    def test_standard_normal_moments(self, rng):
        _, draws, _ = run_kernel(NUTS(0.5), make_mvn_parameter(dim=2), np.zeros(2), 3000, rng,
                                 fields=['logtarget', 'gradlogtarget'])
        assert_allclose(draws.mean(axis=0), [0.0, 0.0], atol=0.1)
        assert_allclose(draws.std(axis=0), [1.0, 1.0], atol=0.1)


class TestGibbsSweep:
    """Test single-parameter updates inside a Gibbs sweep."""

    def coupled_model(self):
        a = Parameter('a', logtarget=lambda v, vals: -0.5 * (v - vals['b']) ** 2)
        b = Parameter('b', logtarget=lambda v, vals: -0.5 * (v - vals['a']) ** 2 - 0.5 * v ** 2)
        return build_model([a, b], [('a', 'b')])

    def test_kernel_substep_leaves_other_parameters(self, rng):
        model = self.coupled_model()
        sweep = GibbsSweep(model, {'a': RWM(1.0), 'b': RWM(1.0)})
        values = {'a': 0.0, 'b': 0.5}
        states = {k: make_state(model[k], values[k], values=values) for k in 'ab'}
        other = states['b']
        before = (other.value, other.logtarget, dict(other.diagnostics))

        moved = 0
        for _ in range(50):
            record = sweep.update_parameter(model['a'], states['a'], values, rng)
            moved += record.accepted
            assert states['b'] is other
            assert (other.value, other.logtarget, dict(other.diagnostics)) == before
            assert values['b'] == 0.5
        assert moved > 0

    def test_sweep_refreshes_values(self, rng):
        model = self.coupled_model()
        sweep = GibbsSweep(model, {'a': RWM(1.0), 'b': RWM(1.0)})
        values = {'a': 0.0, 'b': 0.5}
        states = {k: make_state(model[k], values[k], values=values) for k in 'ab'}
        for _ in range(20):
            records = sweep.sweep(states, values, rng)
            assert set(records) == {'a', 'b'}
            assert values == {'a': states['a'].value, 'b': states['b'].value}


class TestSamplerRegistry:
    """Test make_sampler."""

    def test_by_name(self):
        sampler = make_sampler('nuts', step_size=0.2)
        assert isinstance(sampler, NUTS)
        assert sampler.step_size == 0.2

    def test_by_type(self):
        assert isinstance(make_sampler(SamplerType.SMMALA), SMMALA)
        assert str(SamplerType.HMC) == "HMC"

    def test_instance_passthrough(self):
        sampler = RWM(0.5)
        assert make_sampler(sampler) is sampler
        with pytest.raises(ConfigurationError):
            make_sampler(sampler, scale=1.0)

    def test_unknown(self):
        with pytest.raises(ConfigurationError):
            make_sampler('slice')
        with pytest.raises(ConfigurationError):
            make_sampler(3.5)

    def test_repr(self):
        assert repr(HMC(0.5, 3)) == "HMC(step_size=0.5, n_steps=3)"
        assert str(RWM()) == "RWM"
