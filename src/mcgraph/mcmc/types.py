"""
MCMC Data Structures and Type Definitions.

This module contains the core data structures used by the job driver:
- MCRange: Retained iteration range (burn-in, length, thinning)
- JobStatus: Job lifecycle states
- StepRecord: Outcome of one kernel transition (defined with the kernels)
- as_mcrange: Factory accepting the supported range specifications
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union

from ..error_handling import RangeError
from ..samplers.common import StepRecord


class JobStatus(Enum):
    """Lifecycle of a job: CONFIGURING -> BURNING_IN -> SAMPLING -> DONE."""
    CONFIGURING = 0
    BURNING_IN = 1
    SAMPLING = 2
    DONE = 3

    def __str__(self):
        return self.name.replace('_', ' ').title()


@dataclass(frozen=True)
class MCRange:
    """
    Iterations retained by a run: first, first + thinning, ..., <= last.

    The run performs `last` iterations in total; the first `first - 1` are
    burn-in.

    Fields:
        first: First retained iteration (1-based)
        last: Last iteration of the run
        thinning: Keep every `thinning`-th iteration from `first` on
    """
    first: int
    last: int
    thinning: int = 1

    def __post_init__(self):
        errors = []
        if self.first < 1:
            errors.append(f"first must be >= 1, got {self.first}")
        if self.last < self.first - 1:
            errors.append(f"last ({self.last}) must be >= first - 1 ({self.first - 1})")
        if self.thinning < 1:
            errors.append(f"thinning must be >= 1, got {self.thinning}")
        if errors:
            raise RangeError("Invalid MCMC range:\n  " + "\n  ".join(errors))

    @classmethod
    def from_burnin(cls, nsteps: int, burnin: int = 0, thinning: int = 1) -> 'MCRange':
        """Range of a run of nsteps iterations discarding the first burnin."""
        return cls(burnin + 1, nsteps, thinning)

    @property
    def nsteps(self) -> int:
        return self.last

    @property
    def burnin(self) -> int:
        return self.first - 1

    @property
    def npost(self) -> int:
        """Number of retained iterations."""
        if self.last < self.first:
            return 0
        return (self.last - self.first) // self.thinning + 1

    @property
    def postrange(self) -> range:
        return range(self.first, self.last + 1, self.thinning)

    def is_retained(self, iteration: int) -> bool:
        return (self.first <= iteration <= self.last
                and (iteration - self.first) % self.thinning == 0)

    def __len__(self):
        return self.npost

    def __iter__(self):
        return iter(self.postrange)

    def __contains__(self, iteration):
        return self.is_retained(iteration)

    def __repr__(self):
        return (f"MCRange(first={self.first}, last={self.last}, thinning={self.thinning}, "
                f"burnin={self.burnin}, npost={self.npost})")


def as_mcrange(spec: Union[MCRange, range, tuple, int]) -> MCRange:
    """
    Convert a range specification to MCRange.

    Accepts:
        MCRange            returned as is
        range              range(first, last + 1, thinning)
        (first, last)      inclusive bounds; (first, last, thinning) too
        int n              n iterations, no burn-in

    Raises:
        RangeError: Invalid bounds or an unsupported specification
    """
    if isinstance(spec, MCRange):
        return spec
    if isinstance(spec, range):
        if spec.step < 1:
            raise RangeError(f"Range step must be >= 1, got {spec.step}")
        last = spec[-1] if len(spec) else spec.start - 1
        return MCRange(spec.start, last, spec.step)
    if isinstance(spec, tuple) and len(spec) in (2, 3):
        return MCRange(*(int(x) for x in spec))
    if isinstance(spec, int) and not isinstance(spec, bool):
        return MCRange(1, spec)
    raise RangeError(f"Cannot build an MCMC range from {spec!r}")


__all__ = ['JobStatus', 'MCRange', 'StepRecord', 'as_mcrange']
