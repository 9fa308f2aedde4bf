"""
Common utilities for transition kernels.

This module provides the shared kernel interface and the helpers every
kernel uses, so that the individual kernels only implement their proposal.

Classes:
    Proposal: Candidate state, log Hastings correction and auxiliary info
    StepRecord: Outcome of one transition, consumed by tuners and chains
    TargetDensity: Evaluates one parameter's densities with the rest of the
                   model held fixed
    MCSampler: Base class of all kernels

Functions:
    draw_normal: Standard normal draw shaped like a value
    metropolis_accept: Metropolis test in log space
    acceptance_probability: min(1, exp(log_ratio)), 0 for non-finite ratios
    chol_rank1_update: Rank-1 update/downdate of a lower Cholesky factor
"""

from collections import namedtuple
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np

from ..error_handling import ConfigurationError, NonFiniteDensityError, check_finite_density
from ..states import ParameterState, VariateForm

import logging
logger = logging.getLogger('mcgraph')


Proposal = namedtuple('Proposal', ['state', 'log_hastings_ratio', 'info'])


@dataclass
class StepRecord:
    """
    Outcome of one kernel transition.

    Fields:
        accepted: Whether the state moved to the candidate
        accept_stat: Acceptance probability of the transition (for NUTS the
                     mean acceptance statistic of the trajectory)
        diagnostics: Diagnostic key -> value recorded for this iteration
        info: Kernel-specific extras read by tuners (e.g. the RWM direction)
    """
    accepted: bool
    accept_stat: float
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    info: Dict[str, Any] = field(default_factory=dict)


def draw_normal(rng: np.random.Generator, value):
    """Standard normal draw with the shape of value (float for scalars)."""
    shape = np.shape(value)
    if shape == ():
        return float(rng.standard_normal())
    return rng.standard_normal(shape)


def metropolis_accept(log_ratio: float, u: float) -> bool:
    """
    Metropolis test: accept iff log(u) < log_ratio.

    u = 0 accepts every finite ratio; u = 1 rejects every negative ratio;
    NaN and -inf ratios are never accepted.
    """
    with np.errstate(divide='ignore'):
        log_u = np.log(u)
    return bool(log_u < log_ratio)


def acceptance_probability(log_ratio: float) -> float:
    if not np.isfinite(log_ratio):
        return 0.0
    return float(np.exp(min(0.0, log_ratio)))


def chol_rank1_update(L: np.ndarray, x: np.ndarray, sign: float = 1.0) -> np.ndarray:
    """
    Lower Cholesky factor of L Lᵀ + sign · x xᵀ.

    Args:
        L: Lower-triangular Cholesky factor (d, d)
        x: Update vector (d,)
        sign: +1 for an update, -1 for a downdate

    Returns:
        New lower-triangular factor (L is not modified)

    Raises:
        np.linalg.LinAlgError: If a downdate leaves the matrix indefinite
    """
    L = np.array(L, dtype=np.float64)
    x = np.array(x, dtype=np.float64)
    n = x.shape[0]
    for k in range(n):
        r2 = L[k, k] ** 2 + sign * x[k] ** 2
        if r2 <= 0:
            raise np.linalg.LinAlgError("Cholesky downdate lost positive definiteness")
        r = np.sqrt(r2)
        c = r / L[k, k]
        s = x[k] / L[k, k]
        L[k, k] = r
        if k + 1 < n:
            L[k + 1:, k] = (L[k + 1:, k] + sign * s * x[k + 1:]) / c
            x[k + 1:] = c * x[k + 1:] - s * L[k + 1:, k]
    return L


# ============================================================================
# TARGET DENSITY
# ============================================================================

class TargetDensity:
    """
    Target density of one parameter conditional on the current values of
    the other variables.

    Args:
        parameter: Parameter variable
        values: Mapping key -> current value; read at evaluation time, so
                updates made by a Gibbs sweep are seen by later sub-steps
    """

    def __init__(self, parameter, values: Mapping):
        self.parameter = parameter
        self.values = values

    @property
    def key(self) -> str:
        return self.parameter.key

    def evaluate(self, state: ParameterState) -> ParameterState:
        """Recompute every monitored field of state at its current value."""
        return self.parameter.evaluate(state, self.values)

    def candidate(self, current: ParameterState, value) -> ParameterState:
        """
        Build and evaluate a candidate state at value, with the monitor set
        of current.

        Raises:
            NonFiniteDensityError: If value or its log-target is non-finite
        """
        if not np.all(np.isfinite(value)):
            raise NonFiniteDensityError(f"Non-finite candidate value for '{self.key}'")
        state = current.copy()
        state.set_value(value)
        self.evaluate(state)
        check_finite_density(state.logtarget, self.key)
        return state

    def _field(self, name: str, value):
        fn = self.parameter.resolve(name)
        if fn is None:
            raise ConfigurationError(f"Parameter '{self.key}' cannot compute '{name}'")
        return fn(value, self.values)

    def logtarget_at(self, value) -> float:
        return float(self._field('logtarget', value))

    def gradient_at(self, value):
        grad = self._field('gradlogtarget', value)
        return float(grad) if np.ndim(grad) == 0 else np.asarray(grad, dtype=np.float64)

    def tensor_at(self, value) -> np.ndarray:
        return np.asarray(self._field('tensorlogtarget', value), dtype=np.float64)


# ============================================================================
# KERNEL INTERFACE
# ============================================================================

class MCSampler:
    """
    Base class of all transition kernels.

    Subclasses set `required_fields`, implement `propose`, and name their
    tuned attribute in `tunable`. The default `step` runs the Metropolis
    test on `acceptance_log_ratio` and copies the candidate into the live
    state on acceptance.
    """

    name = None
    required_fields: Tuple[str, ...] = ('logtarget',)
    diagnostickeys: Tuple[str, ...] = ('accept',)
    tunable: Optional[str] = None
    forms = (VariateForm.UNIVARIATE, VariateForm.MULTIVARIATE)
    continuous_only = True

    def validate(self, state: ParameterState) -> None:
        """
        Check that this kernel can run on state.

        Raises:
            ConfigurationError: On a discrete state for a continuous kernel,
                                an unsupported variate form, or a missing
                                required field in the state's monitor set
        """
        errors = []
        if self.continuous_only and not state.is_continuous:
            errors.append(f"{self} needs a continuous parameter")
        if state.form not in self.forms:
            errors.append(f"{self} does not support {str(state.form).lower()} parameters")
        missing = [f for f in self.required_fields if f not in state.monitor]
        if missing:
            errors.append(f"{self} needs state fields: {', '.join(missing)}")
        if errors:
            raise ConfigurationError("Invalid sampler set-up:\n  " + "\n  ".join(errors))

    def reset(self, state: ParameterState) -> None:
        """Per-job initialisation of auxiliary kernel state."""

    def propose(self, state: ParameterState, target: TargetDensity,
                rng: np.random.Generator) -> Proposal:
        raise NotImplementedError

    def acceptance_log_ratio(self, state: ParameterState, proposal: Proposal) -> float:
        # A non-finite current density (unchecked start) counts as -inf,
        # so any finite candidate moves the chain off it
        current = state.logtarget
        if not np.isfinite(current):
            current = -np.inf
        return proposal.state.logtarget - current + proposal.log_hastings_ratio

    def step(self, state: ParameterState, target: TargetDensity,
             rng: np.random.Generator) -> StepRecord:
        """One transition; state is updated in place on acceptance."""
        try:
            proposal = self.propose(state, target, rng)
        except NonFiniteDensityError as e:
            logger.debug(f"{self}: rejected candidate ({e})")
            return self._record(state, False, 0.0)
        log_ratio = self.acceptance_log_ratio(state, proposal)
        accepted = metropolis_accept(log_ratio, rng.random())
        if accepted:
            state.update_from(proposal.state)
        return self._record(state, accepted, acceptance_probability(log_ratio), proposal.info)

    def _record(self, state: ParameterState, accepted: bool, accept_stat: float,
                info: Optional[Dict[str, Any]] = None) -> StepRecord:
        state.set_diagnostic('accept', accepted)
        return StepRecord(accepted, accept_stat, {'accept': accepted}, dict(info or {}))

    # --- tuning hook -----------------------------------------------------

    def rescale(self, factor: float) -> None:
        """Multiply the tuned attribute by factor."""
        if self.tunable is None:
            raise ConfigurationError(f"{self} has no tunable parameter")
        setattr(self, self.tunable, getattr(self, self.tunable) * factor)

    def __repr__(self):
        params = ", ".join(f"{k}={v!r}" for k, v in self._params().items())
        return f"{type(self).__name__}({params})"

    def __str__(self):
        return self.name or type(self).__name__

    def _params(self) -> Dict[str, Any]:
        return {}
