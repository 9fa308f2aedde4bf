"""
Sampler registry.

To add a new kernel:
1. Add an enum value to SamplerType
2. Implement the kernel as an MCSampler subclass in its own module
3. Add it to SAMPLER_REGISTRY below
"""

from enum import IntEnum

from ..error_handling import ConfigurationError
from .common import MCSampler
from .hmc import HMC
from .mala import MALA, SMMALA
from .nuts import NUTS
from .rwm import RWM


class SamplerType(IntEnum):
    """Enumeration of available transition kernels."""
    RWM = 0      # Random-walk Metropolis
    HMC = 1      # Hamiltonian Monte Carlo
    NUTS = 2     # No-U-Turn Sampler
    MALA = 3     # Metropolis-adjusted Langevin
    SMMALA = 4   # Simplified manifold MALA

    def __str__(self):
        return self.name


SAMPLER_REGISTRY = {
    SamplerType.RWM: RWM,
    SamplerType.HMC: HMC,
    SamplerType.NUTS: NUTS,
    SamplerType.MALA: MALA,
    SamplerType.SMMALA: SMMALA,
}


def make_sampler(spec, **kwargs) -> MCSampler:
    """
    Build a kernel from an instance, a SamplerType or a name.

    Args:
        spec: MCSampler instance (returned as is), SamplerType, or a
              case-insensitive name ('rwm', 'hmc', 'nuts', 'mala', 'smmala')
        **kwargs: Constructor arguments for the kernel

    Raises:
        ConfigurationError: Unknown name, or kwargs given with an instance
    """
    if isinstance(spec, MCSampler):
        if kwargs:
            raise ConfigurationError("Sampler arguments cannot be applied to an existing sampler")
        return spec
    if isinstance(spec, str):
        try:
            spec = SamplerType[spec.upper()]
        except KeyError:
            available = ", ".join(t.name.lower() for t in SamplerType)
            raise ConfigurationError(
                f"Unknown sampler '{spec}'. Available: {available}"
            ) from None
    if not isinstance(spec, SamplerType):
        raise ConfigurationError(f"Cannot build a sampler from {spec!r}")
    return SAMPLER_REGISTRY[spec](**kwargs)
