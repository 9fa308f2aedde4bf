"""
Langevin proposals: MALA and simplified manifold MALA.

MALA (Metropolis-adjusted Langevin algorithm):

    value' = value + (ε²/2) · ∇ + ε · ξ,   ξ ~ N(0, I)

SMMALA (simplified manifold MALA, Girolami & Calderhead 2011) preconditions
the drift and the noise with the metric tensor G = tensorlogtarget:

    value' = value + (ε²/2) · G⁻¹∇ + ε · G^{-1/2} ξ

Both proposals are asymmetric. The log Hastings correction is

    log q(value | value') - log q(value' | value)

with q(y | x) = N(y | x + drift(x), ε² · G(x)⁻¹) (G = I for MALA). SMMALA
evaluates G at both ends, so the log-determinants do not cancel.
"""

import numpy as np
import scipy.linalg

from ..error_handling import ConfigurationError, NonFiniteDensityError
from ..states import VariateForm
from .common import MCSampler, Proposal, draw_normal


class MALA(MCSampler):
    """
    Metropolis-adjusted Langevin kernel.

    Args:
        step_size: Langevin step size ε (tuned)
    """

    name = "MALA"
    required_fields = ('logtarget', 'gradlogtarget')
    tunable = 'step_size'

    def __init__(self, step_size: float = 0.1):
        if not step_size > 0:
            raise ConfigurationError(f"{self.name} step_size must be positive, got {step_size}")
        self.step_size = float(step_size)

    def _mean(self, value, grad):
        return value + 0.5 * self.step_size ** 2 * grad

    def propose(self, state, target, rng):
        eps = self.step_size
        forward_mean = self._mean(state.value, state.gradlogtarget)
        candidate = target.candidate(state, forward_mean + eps * draw_normal(rng, state.value))
        reverse_mean = self._mean(candidate.value, candidate.gradlogtarget)

        # q(x|x') over q(x'|x); normalising constants cancel
        forward = np.sum(np.square(candidate.value - forward_mean))
        reverse = np.sum(np.square(state.value - reverse_mean))
        log_hastings_ratio = -0.5 * float(reverse - forward) / eps ** 2
        return Proposal(candidate, log_hastings_ratio, {})

    def _params(self):
        return {'step_size': self.step_size}


class SMMALA(MALA):
    """
    Simplified manifold MALA kernel, for multivariate continuous parameters
    whose tensorlogtarget is positive definite.

    Args:
        step_size: Langevin step size ε (tuned)
    """

    name = "SMMALA"
    required_fields = ('logtarget', 'gradlogtarget', 'tensorlogtarget')
    forms = (VariateForm.MULTIVARIATE,)

    def _geometry(self, state):
        """Cholesky factor C of G (G = C Cᵀ) and the preconditioned mean."""
        try:
            C = np.linalg.cholesky(state.tensorlogtarget)
        except np.linalg.LinAlgError:
            raise NonFiniteDensityError(
                "Metric tensor is not positive definite"
            ) from None
        drift = scipy.linalg.cho_solve((C, True), state.gradlogtarget)
        return C, state.value + 0.5 * self.step_size ** 2 * drift

    def _log_density(self, y, mean, C) -> float:
        # log N(y | mean, ε² G⁻¹) up to the shared constant
        z = C.T @ (y - mean)
        return float(np.sum(np.log(np.diag(C))) - 0.5 * np.dot(z, z) / self.step_size ** 2)

    def propose(self, state, target, rng):
        eps = self.step_size
        C, forward_mean = self._geometry(state)
        # Cᵀ⁻¹ ξ has covariance G⁻¹
        noise = scipy.linalg.solve_triangular(C.T, draw_normal(rng, state.value), lower=False)
        candidate = target.candidate(state, forward_mean + eps * noise)
        C_new, reverse_mean = self._geometry(candidate)

        log_hastings_ratio = (self._log_density(state.value, reverse_mean, C_new)
                              - self._log_density(candidate.value, forward_mean, C))
        return Proposal(candidate, log_hastings_ratio, {})
