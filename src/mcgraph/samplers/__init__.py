"""
Transition Kernels for MCMC Sampling

This package implements the per-parameter transition kernels and the Gibbs
sweep that drives them over a model graph. SamplerType is defined in
dispatch.py.

To add a new kernel:
1. Add enum value to SamplerType in dispatch.py
2. Create new file in samplers/ with an MCSampler subclass
3. Add to SAMPLER_REGISTRY in dispatch.py
4. Export from this __init__.py

Each kernel computes its own Hastings correction in `propose`; the shared
`MCSampler.step` runs the Metropolis test. Candidates with a non-finite
log-target are rejected inside the kernel.
"""

from .common import (
    MCSampler,
    Proposal,
    StepRecord,
    TargetDensity,
    acceptance_probability,
    chol_rank1_update,
    draw_normal,
    metropolis_accept,
)
from .rwm import RWM
from .hmc import HMC, integrate, leapfrog
from .nuts import NUTS
from .mala import MALA, SMMALA
from .gibbs import GibbsSweep
from .dispatch import SAMPLER_REGISTRY, SamplerType, make_sampler

__all__ = [
    'MCSampler',
    'Proposal',
    'StepRecord',
    'TargetDensity',
    'acceptance_probability',
    'chol_rank1_update',
    'draw_normal',
    'metropolis_accept',
    'RWM',
    'HMC',
    'integrate',
    'leapfrog',
    'NUTS',
    'MALA',
    'SMMALA',
    'GibbsSweep',
    'SAMPLER_REGISTRY',
    'SamplerType',
    'make_sampler',
]
