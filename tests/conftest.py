"""
Pytest configuration and shared fixtures for mcgraph tests.
"""

import pytest
import numpy as np

from mcgraph import Constant, Parameter, likelihood_model


@pytest.fixture
def rng_seed():
    """Default RNG seed for reproducible tests."""
    return 42


@pytest.fixture
def rng(rng_seed):
    return np.random.default_rng(rng_seed)


@pytest.fixture
def normal_model():
    """Single standard normal parameter 'x'."""
    return likelihood_model([make_normal_parameter('x')])


@pytest.fixture
def split_normal_model():
    """
    Parameter 'mu' with a N(0, tau) prior and a normal likelihood of the data
    mean, with 'tau' a constant.
    """
    tau = Constant('tau')
    mu = Parameter(
        'mu',
        loglikelihood=lambda v, vals: -0.5 * (v - vals['ybar']) ** 2,
        logprior=lambda v, vals: -0.5 * v ** 2 / vals['tau'],
        gradloglikelihood=lambda v, vals: -(v - vals['ybar']),
        gradlogprior=lambda v, vals: -v / vals['tau'],
    )
    ybar = Constant('ybar')
    return likelihood_model([tau, ybar, mu])


def make_normal_parameter(key='x', mean=0.0, sd=1.0, **kwargs):
    """Univariate normal parameter with log-target and gradient callbacks."""
    return Parameter(
        key,
        logtarget=lambda v, vals: -0.5 * ((v - mean) / sd) ** 2,
        gradlogtarget=lambda v, vals: -(v - mean) / sd ** 2,
        **kwargs,
    )


def make_mvn_parameter(key='theta', mean=None, cov=None, dim=2, **kwargs):
    """
    Multivariate normal parameter with log-target, gradient and metric
    tensor (the precision matrix) callbacks.
    """
    mean = np.zeros(dim) if mean is None else np.asarray(mean, dtype=float)
    cov = np.eye(len(mean)) if cov is None else np.asarray(cov, dtype=float)
    precision = np.linalg.inv(cov)

    def logtarget(v, vals):
        d = v - mean
        return -0.5 * float(d @ precision @ d)

    return Parameter(
        key,
        logtarget=logtarget,
        gradlogtarget=lambda v, vals: -precision @ (v - mean),
        tensorlogtarget=lambda v, vals: precision,
        **kwargs,
    )


def make_state(parameter, value, fields=('logtarget',), diagnostickeys=('accept',), values=None):
    """Evaluated parameter state monitoring `fields`."""
    state = parameter.default_state(value, monitor=fields, diagnostickeys=diagnostickeys)
    parameter.evaluate(state, values if values is not None else {})
    return state


def ar1_series(n, phi, rng):
    """AR(1) series x_t = phi x_{t-1} + e_t with unit innovation variance."""
    x = np.zeros(n)
    e = rng.standard_normal(n)
    for t in range(1, n):
        x[t] = phi * x[t - 1] + e[t]
    return x
