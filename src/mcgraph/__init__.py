"""
mcgraph - Bayesian MCMC on model dependency graphs

Public API:
    Variables:
        Constant / Hyperparameter - Fixed value
        Data - Observed value, optionally refreshed by an update callback
        Transformation - Deterministic function of other variables
        Parameter - Stochastic variable with density callbacks

    Model:
        GenericModel - Dependency graph with topological order and DOT export
        Dependency - Graph edge
        build_model - Build a model from variables and (source, target) pairs
        likelihood_model - Single-parameter model fed by every other variable

    States:
        parameter_state, basic_state, default_state - State factories
        UnivariateParameterState, MultivariateParameterState
        OutputSettings - Which fields and diagnostics a chain records

    Samplers:
        RWM, HMC, NUTS, MALA, SMMALA - Transition kernels
        GibbsSweep - Conditional sweep over a model
        SamplerType, make_sampler - Kernel registry

    Tuners:
        VanillaTuner, AcceptanceRateTuner, RobustAdaptiveTuner, DualAveragingTuner

    Jobs:
        MCRange - Retained iterations (burn-in, length, thinning)
        BasicMCJob, GibbsJob, build_job, run, run_chains
        Chain - Output samples and diagnostics

    Diagnostics:
        compute_rhat, compute_nested_rhat, effective_sample_size,
        diagnose_sampler_issues, print_acceptance_summary

Example:
    import numpy as np
    from mcgraph import Parameter, likelihood_model, build_job, MCRange, AcceptanceRateTuner

    p = Parameter('x', logtarget=lambda v, vals: -0.5 * v**2)
    model = likelihood_model([p])
    job = build_job(model, 'rwm', MCRange.from_burnin(20000, 5000), {'x': 0.0},
                    tuner=AcceptanceRateTuner())
    chain = job.run()
    chain.mean(), chain.acceptance()
"""
# CRITICAL: Import jax_config FIRST to set environment variables before JAX loads
from . import jax_config  # noqa: F401

from .error_handling import (
    MCGraphError,
    DuplicateKeyError,
    CyclicGraphError,
    ShapeMismatchError,
    DiagnosticsLengthError,
    ConfigurationError,
    RangeError,
    NonFiniteDensityError,
    diagnose_sampler_issues,
    print_diagnostics,
)
from .settings import StateField, OutputSettings, build_output_settings
from .states import (
    VariateForm,
    ValueSupport,
    VariableState,
    UnivariateState,
    MultivariateState,
    MatrixvariateState,
    ParameterState,
    UnivariateParameterState,
    MultivariateParameterState,
    basic_state,
    parameter_state,
    default_state,
)
from .variables import (
    VariableKind,
    Variable,
    Constant,
    Hyperparameter,
    Data,
    Transformation,
    Parameter,
)
from .model import Dependency, GenericModel, build_model, likelihood_model
from .samplers import (
    MCSampler,
    RWM,
    HMC,
    NUTS,
    MALA,
    SMMALA,
    GibbsSweep,
    SamplerType,
    make_sampler,
)
from .mcmc import (
    JobStatus,
    MCRange,
    as_mcrange,
    VanillaTuner,
    AcceptanceRateTuner,
    RobustAdaptiveTuner,
    DualAveragingTuner,
    Chain,
    BasicMCJob,
    GibbsJob,
    build_job,
    run,
    run_chains,
    compute_rhat,
    compute_nested_rhat,
    effective_sample_size,
    print_acceptance_summary,
)

__all__ = [
    # Errors
    'MCGraphError',
    'DuplicateKeyError',
    'CyclicGraphError',
    'ShapeMismatchError',
    'DiagnosticsLengthError',
    'ConfigurationError',
    'RangeError',
    'NonFiniteDensityError',
    'diagnose_sampler_issues',
    'print_diagnostics',
    # Settings and states
    'StateField',
    'OutputSettings',
    'build_output_settings',
    'VariateForm',
    'ValueSupport',
    'VariableState',
    'UnivariateState',
    'MultivariateState',
    'MatrixvariateState',
    'ParameterState',
    'UnivariateParameterState',
    'MultivariateParameterState',
    'basic_state',
    'parameter_state',
    'default_state',
    # Variables and model
    'VariableKind',
    'Variable',
    'Constant',
    'Hyperparameter',
    'Data',
    'Transformation',
    'Parameter',
    'Dependency',
    'GenericModel',
    'build_model',
    'likelihood_model',
    # Samplers
    'MCSampler',
    'RWM',
    'HMC',
    'NUTS',
    'MALA',
    'SMMALA',
    'GibbsSweep',
    'SamplerType',
    'make_sampler',
    # Jobs and tuners
    'JobStatus',
    'MCRange',
    'as_mcrange',
    'VanillaTuner',
    'AcceptanceRateTuner',
    'RobustAdaptiveTuner',
    'DualAveragingTuner',
    'Chain',
    'BasicMCJob',
    'GibbsJob',
    'build_job',
    'run',
    'run_chains',
    # Diagnostics
    'compute_rhat',
    'compute_nested_rhat',
    'effective_sample_size',
    'print_acceptance_summary',
]
