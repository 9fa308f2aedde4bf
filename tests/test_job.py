"""
Job Integration Tests

Runs complete jobs and checks:
- Posterior moments on Gaussian targets (RWM, Gibbs)
- Iteration ranges, burn-in and thinning of the retained output
- Job lifecycle: status transitions, single run, frozen adaptation
- Set-up validation (initial values, parameter count, initial density)
- Output chains are snapshots of the live states
- Downstream transformations and data updates
- Independent chains and R-hat

Run with: pytest tests/test_job.py -v
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from mcgraph import (
    AcceptanceRateTuner, BasicMCJob, ConfigurationError, Constant, CyclicGraphError, Data,
    GibbsJob, JobStatus, MCRange, Parameter, RWM, RangeError, Transformation, VanillaTuner,
    as_mcrange, build_job, build_model, compute_rhat, likelihood_model, run, run_chains,
)
from mcgraph.mcmc import Tuner

from conftest import make_mvn_parameter, make_normal_parameter


class RecordingTuner(Tuner):
    """Tuner that records the iterations it was called on."""

    def __init__(self):
        self.iterations = []
        self.finalized = 0

    def update(self, sampler, record, iteration):
        self.iterations.append(iteration)

    def finalize(self, sampler):
        self.finalized += 1


def bivariate_gibbs_model(rho):
    """Standard bivariate normal with correlation rho, both coordinates by conditionals."""
    s = np.sqrt(1 - rho ** 2)
    x1 = Parameter('x1', conditional=lambda vals, rng: rho * vals['x2'] + s * rng.standard_normal())
    x2 = Parameter('x2', conditional=lambda vals, rng: rho * vals['x1'] + s * rng.standard_normal())
    return build_model([Constant('rho'), x1, x2], [('rho', 'x1'), ('rho', 'x2'), ('x1', 'x2')])


def normal_job(mcrange=MCRange.from_burnin(2000, 500), tuner=None, **kwargs):
    model = likelihood_model([make_normal_parameter()])
    return build_job(model, RWM(2.4), mcrange, {'x': 0.0}, tuner=tuner, **kwargs)


# ============================================================================
# RANGES
# ============================================================================

class TestMCRange:
    """Test retained-iteration ranges."""

    def test_burnin_range(self):
        r = MCRange(1001, 10000)
        assert r.burnin == 1000
        assert r.nsteps == 10000
        assert r.npost == 9000
        assert 1001 in r and 1000 not in r

    def test_from_burnin(self):
        r = MCRange.from_burnin(20000, 5000)
        assert (r.first, r.last, r.npost) == (5001, 20000, 15000)

    def test_thinning(self):
        r = MCRange(1, 100, thinning=10)
        assert list(r) == list(range(1, 101, 10))
        assert len(r) == 10
        assert r.is_retained(91) and not r.is_retained(95)

    def test_empty_range(self):
        assert MCRange(11, 10).npost == 0

    @pytest.mark.parametrize("args", [(0, 10), (5, 3), (1, 10, 0)])
    def test_invalid(self, args):
        with pytest.raises(RangeError):
            MCRange(*args)

    def test_as_mcrange(self):
        assert as_mcrange((1000, 10000)).npost == 9001
        assert as_mcrange(range(1000, 10001)).npost == 9001
        assert as_mcrange(range(1, 101, 10)) == MCRange(1, 91, 10)
        assert as_mcrange(500) == MCRange(1, 500)
        with pytest.raises(RangeError):
            as_mcrange("all")


# ============================================================================
# BASIC JOBS
# ============================================================================

class TestBasicJob:
    """Test single-parameter jobs end to end."""

    def test_standard_normal(self):
        chain = normal_job(MCRange.from_burnin(20000, 5000),
                           tuner=AcceptanceRateTuner(target_rate=0.35)).run()
        assert len(chain) == 15000
        assert abs(chain.mean()) < 0.05
        assert abs(chain.std() - 1.0) < 0.1
        assert 0.2 <= chain.acceptance() <= 0.5

    def test_retained_count_and_iterations(self):
        chain = normal_job((1000, 10000)).run()
        assert len(chain) == 9001
        assert chain.iterations[0] == 1000
        assert chain.iterations[-1] == 10000

    def test_thinned_output(self):
        chain = normal_job(MCRange(101, 1000, thinning=10)).run()
        assert len(chain) == 90
        assert_array_equal(chain.iterations, np.arange(101, 1001, 10))

    def test_status_and_single_run(self):
        job = normal_job()
        assert job.status == JobStatus.CONFIGURING
        run(job)
        assert job.status == JobStatus.DONE
        assert job.iteration == 2000
        with pytest.raises(ConfigurationError):
            job.run()

    def test_adaptation_frozen_after_burnin(self):
        tuner = RecordingTuner()
        job = normal_job(MCRange.from_burnin(1000, 300), tuner=tuner)
        job.run()
        assert job.tuner.iterations == list(range(1, 301))
        assert job.tuner.finalized == 1
        # The job tunes its own copy
        assert tuner.iterations == []

    def test_adapt_end_override(self):
        job = normal_job(MCRange.from_burnin(1000, 300), tuner=RecordingTuner(), adapt_end=50)
        job.run()
        assert max(job.tuner.iterations) == 50
        assert job.tuner.finalized == 1

    def test_no_adaptation(self):
        job = normal_job(MCRange(1, 100), tuner=RecordingTuner())
        job.run()
        assert job.tuner.iterations == []
        assert job.tuner.finalized == 1

    def test_scale_constant_after_adaptation(self):
        job = normal_job(MCRange.from_burnin(600, 300), tuner=AcceptanceRateTuner(period=10))
        job.run()
        frozen = job.sampler.scale
        # A fresh run of the same configuration stops adapting at the same scale
        job2 = normal_job(MCRange.from_burnin(300, 300), tuner=AcceptanceRateTuner(period=10))
        job2.run()
        assert frozen == job2.sampler.scale

    def test_sampler_is_copied(self):
        sampler = RWM(0.5)
        model = likelihood_model([make_normal_parameter()])
        job = build_job(model, sampler, MCRange.from_burnin(500, 200), {'x': 0.0},
                        tuner=AcceptanceRateTuner(period=10))
        job.run()
        assert sampler.scale == 0.5
        assert job.sampler.scale != 0.5

    def test_chain_is_snapshot(self):
        model = likelihood_model([make_mvn_parameter(dim=2)])
        job = build_job(model, 'rwm', MCRange(1, 50), {'theta': np.zeros(2)})
        chain = job.run()
        last = chain.value[-1].copy()
        job.state.value[:] = 99.0
        assert_array_equal(chain.value[-1], last)
        assert chain.value.shape == (50, 2)

    def test_monitored_fields(self, split_normal_model):
        job = build_job(split_normal_model, 'mala', MCRange(1, 200),
                        {'tau': 4.0, 'ybar': 1.0, 'mu': 0.0},
                        outopts={'monitor': ['loglikelihood', 'logprior', 'logtarget']})
        chain = job.run()
        assert_allclose(chain['logtarget'], chain['loglikelihood'] + chain['logprior'])
        with pytest.raises(KeyError):
            chain['gradlogtarget']

    def test_diagnostics_selection(self):
        job = normal_job(MCRange(1, 100), outopts={'diagnostics': []})
        chain = job.run()
        assert chain.diagnostics == {}

    def test_downstream_transformation(self):
        x = make_normal_parameter()
        model = build_model([x, Transformation('x2', lambda vals: 2 * vals['x'])], [('x', 'x2')])
        job = build_job(model, 'rwm', MCRange(1, 100), {'x': 0.5})
        assert job.values['x2'] == 1.0
        job.run()
        assert job.values['x2'] == 2 * job.state.value

    def test_reproducible(self):
        a = normal_job(MCRange(1, 300), rng_seed=7).run()
        b = normal_job(MCRange(1, 300), rng_seed=7).run()
        c = normal_job(MCRange(1, 300), rng_seed=8).run()
        assert_array_equal(a.value, b.value)
        assert not np.array_equal(a.value, c.value)


class TestJobSetup:
    """Test errors raised while a job is built."""

    def test_missing_initial_value(self, split_normal_model):
        with pytest.raises(ConfigurationError):
            build_job(split_normal_model, 'rwm', 100, {'mu': 0.0, 'tau': 1.0})

    def test_unknown_initial_value(self):
        model = likelihood_model([make_normal_parameter()])
        with pytest.raises(ConfigurationError):
            build_job(model, 'rwm', 100, {'x': 0.0, 'z': 1.0})

    def test_two_parameters(self):
        model = build_model([make_normal_parameter('a'), make_normal_parameter('b')])
        with pytest.raises(ConfigurationError):
            BasicMCJob(model, 'rwm', 100, {'a': 0.0, 'b': 0.0})

    def test_non_finite_initial_density(self):
        p = Parameter('s', logtarget=lambda v, vals: np.log(v))
        model = likelihood_model([p])
        with pytest.raises(ConfigurationError):
            build_job(model, 'rwm', 100, {'s': -1.0})

    def test_initial_check_disabled(self):
        p = Parameter('s', logtarget=lambda v, vals: -np.inf if v < 0 else -v)
        job = build_job(likelihood_model([p]), 'rwm', 100, {'s': -1.0}, check_initial=False)
        assert job.status == JobStatus.CONFIGURING

    def test_unchecked_nan_start_moves_into_support(self):
        p = Parameter('s', logtarget=lambda v, vals: -v if v >= 0 else np.nan)
        job = build_job(likelihood_model([p]), RWM(1.0), 500, {'s': -1.0}, check_initial=False)
        chain = job.run()
        assert chain.acceptance() > 0.0
        assert np.all(chain.value[-100:] >= 0)
        assert np.isfinite(job.state.logtarget)

    def test_missing_gradient(self):
        p = Parameter('x', logtarget=lambda v, vals: -0.5 * v ** 2)
        with pytest.raises(ConfigurationError):
            build_job(likelihood_model([p]), 'hmc', 100, {'x': 0.0})

    def test_incompatible_tuner(self):
        with pytest.raises(ConfigurationError):
            normal_job(tuner='dual_averaging')

    def test_bad_config(self):
        with pytest.raises(ConfigurationError):
            normal_job(rng_seed=-1)
        with pytest.raises(ConfigurationError):
            normal_job(n_chains=4)

    def test_reseed_only_before_run(self):
        job = normal_job(MCRange(1, 10))
        job.reseed(3)
        assert job.config['rng_seed'] == 3
        job.run()
        with pytest.raises(ConfigurationError):
            job.reseed(4)

    def test_cyclic_model(self):
        a = make_normal_parameter('a')
        model = build_model([a, Constant('c')], [('a', 'c'), ('c', 'a')])
        with pytest.raises(CyclicGraphError):
            build_job(model, 'rwm', 10, {'a': 0.0, 'c': 1.0})


# ============================================================================
# GIBBS JOBS
# ============================================================================

class TestGibbsJob:
    """Test Gibbs sweeps over several parameters."""

    def test_bivariate_normal_correlation(self):
        model = bivariate_gibbs_model(0.8)
        job = build_job(model, None, MCRange.from_burnin(10000, 1000),
                        {'rho': 0.8, 'x1': 0.0, 'x2': 0.0})
        assert isinstance(job, GibbsJob)
        out = job.run()
        x1, x2 = out['x1'].value, out['x2'].value
        assert len(x1) == 9000
        assert np.corrcoef(x1, x2)[0, 1] == pytest.approx(0.8, abs=0.05)
        assert abs(x1.mean()) < 0.1
        assert out['x1'].acceptance() == 1.0

    def test_mixed_kernels(self):
        rho = 0.5
        s = np.sqrt(1 - rho ** 2)
        x1 = Parameter('x1', conditional=lambda vals, rng: rho * vals['x2'] + s * rng.standard_normal())
        x2 = Parameter(
            'x2',
            logtarget=lambda v, vals: -0.5 * (v - rho * vals['x1']) ** 2 / s ** 2,
            gradlogtarget=lambda v, vals: -(v - rho * vals['x1']) / s ** 2,
        )
        model = build_model([x1, x2], [('x1', 'x2')])
        job = build_job(model, {'x2': 'mala'}, MCRange.from_burnin(8000, 1000),
                        {'x1': 0.0, 'x2': 0.0}, tuner={'x2': AcceptanceRateTuner(target_rate=0.57)})
        out = job.run()
        assert set(out) == {'x1', 'x2'}
        assert 0.3 < out['x2'].acceptance() < 0.9
        assert np.corrcoef(out['x1'].value, out['x2'].value)[0, 1] == pytest.approx(rho, abs=0.1)
        assert 'x2' in job.samplers

    def test_data_update_and_transformation(self):
        counter = Data('n', update=lambda vals: vals['n'] + 1)
        x = Parameter('x', conditional=lambda vals, rng: float(vals['n']))
        double = Transformation('x2', lambda vals: 2 * vals['x'])
        model = build_model([counter, x, double], [('n', 'x'), ('x', 'x2')])
        job = GibbsJob(model, MCRange(1, 5), {'n': 0, 'x': 0.0})
        out = job.run()
        assert_array_equal(out['x'].value, [1.0, 2.0, 3.0, 4.0, 5.0])
        assert job.values['x2'] == 10.0

    def test_parameter_without_update(self):
        model = build_model([make_normal_parameter('a'), Parameter('b', logtarget=lambda v, vals: 0.0)])
        with pytest.raises(ConfigurationError):
            build_job(model, {'a': 'rwm'}, 10, {'a': 0.0, 'b': 0.0})

    def test_sampler_for_unknown_key(self):
        with pytest.raises(ConfigurationError):
            build_job(bivariate_gibbs_model(0.5), {'rho': 'rwm'}, 10,
                      {'rho': 0.5, 'x1': 0.0, 'x2': 0.0})

    def test_tuner_without_sampler(self):
        with pytest.raises(ConfigurationError):
            build_job(bivariate_gibbs_model(0.5), 'gibbs', 10,
                      {'rho': 0.5, 'x1': 0.0, 'x2': 0.0}, tuner={'x1': VanillaTuner()})


# ============================================================================
# MULTIPLE CHAINS
# ============================================================================

class TestRunChains:
    """Test independent chains."""

    def test_chains_differ_and_agree(self):
        chains = run_chains(lambda i: normal_job(MCRange.from_burnin(3000, 1000),
                                                 tuner=AcceptanceRateTuner()), 4)
        assert len(chains) == 4
        assert not np.array_equal(chains[0].value, chains[1].value)
        rhat = compute_rhat(chains)
        assert rhat.shape == (1,)
        assert rhat[0] < 1.05

    def test_needs_one_chain(self):
        with pytest.raises(ConfigurationError):
            run_chains(lambda i: normal_job(), 0)
