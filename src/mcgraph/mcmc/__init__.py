"""
MCMC Subpackage - chain drivers, tuners and output.

This package contains the sampling loop around the transition kernels:
- types: Core data structures (MCRange, JobStatus, StepRecord)
- config: Job configuration and random generator creation
- tuners: Adaptive tuning of kernel parameters
- chain: Output container (Chain)
- diagnostics: Convergence diagnostics (R-hat, ESS) and acceptance summaries
- job: BasicMCJob, GibbsJob and the run entry points
"""

# Import types first (needed by other modules)
from .types import JobStatus, MCRange, StepRecord, as_mcrange

from .config import clean_config, gen_rng
from .tuners import (
    Tuner,
    VanillaTuner,
    AcceptanceRateTuner,
    RobustAdaptiveTuner,
    DualAveragingTuner,
    TUNER_REGISTRY,
    make_tuner,
)
from .diagnostics import (
    compute_nested_rhat,
    compute_rhat,
    batch_means_variance,
    effective_sample_size,
    acceptance_summary,
    print_acceptance_summary,
)
from .chain import Chain
from .job import MCJob, BasicMCJob, GibbsJob, build_job, run, run_chains

__all__ = [
    # Types
    'JobStatus',
    'MCRange',
    'StepRecord',
    'as_mcrange',
    # Config
    'clean_config',
    'gen_rng',
    # Tuners
    'Tuner',
    'VanillaTuner',
    'AcceptanceRateTuner',
    'RobustAdaptiveTuner',
    'DualAveragingTuner',
    'TUNER_REGISTRY',
    'make_tuner',
    # Diagnostics
    'compute_nested_rhat',
    'compute_rhat',
    'batch_means_variance',
    'effective_sample_size',
    'acceptance_summary',
    'print_acceptance_summary',
    # Output and jobs
    'Chain',
    'MCJob',
    'BasicMCJob',
    'GibbsJob',
    'build_job',
    'run',
    'run_chains',
]
