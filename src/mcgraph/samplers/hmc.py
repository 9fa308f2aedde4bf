"""
Hamiltonian Monte Carlo.

Momentum p ~ N(0, I) is drawn each iteration and the pair (value, p) is
moved along `n_steps` leapfrog steps of size `step_size`. The candidate is
accepted on the joint Hamiltonian

    H(q, p) = -logtarget(q) + 0.5 · pᵀp

`leapfrog` and `integrate` are pure functions of their arguments, so a
trajectory run forward and then from the end point with negated momentum
returns to its start.
"""

from typing import Callable

import numpy as np

from ..error_handling import ConfigurationError
from .common import MCSampler, Proposal, draw_normal


def leapfrog(position, momentum, grad, step_size: float, grad_fn: Callable):
    """
    One leapfrog step: half momentum, full position, half momentum.

    Args:
        position, momentum: Current point
        grad: Gradient of the log-target at position
        step_size: Integrator step size
        grad_fn: position -> gradient of the log-target

    Returns:
        (position, momentum, grad) after the step
    """
    momentum = momentum + 0.5 * step_size * grad
    position = position + step_size * momentum
    grad = grad_fn(position)
    momentum = momentum + 0.5 * step_size * grad
    return position, momentum, grad


def integrate(position, momentum, grad, step_size: float, n_steps: int, grad_fn: Callable):
    """Run n_steps leapfrog steps. Returns (position, momentum, grad)."""
    for _ in range(n_steps):
        position, momentum, grad = leapfrog(position, momentum, grad, step_size, grad_fn)
    return position, momentum, grad


def kinetic_energy(momentum) -> float:
    return 0.5 * float(np.sum(np.square(momentum)))


class HMC(MCSampler):
    """
    Hamiltonian Monte Carlo kernel.

    Args:
        step_size: Leapfrog step size (tuned)
        n_steps: Leapfrog steps per iteration
    """

    name = "HMC"
    required_fields = ('logtarget', 'gradlogtarget')
    tunable = 'step_size'

    def __init__(self, step_size: float = 0.1, n_steps: int = 10):
        if not step_size > 0:
            raise ConfigurationError(f"HMC step_size must be positive, got {step_size}")
        if int(n_steps) < 1:
            raise ConfigurationError(f"HMC n_steps must be >= 1, got {n_steps}")
        self.step_size = float(step_size)
        self.n_steps = int(n_steps)

    def propose(self, state, target, rng):
        p0 = draw_normal(rng, state.value)
        q, p, _ = integrate(state.value, p0, state.gradlogtarget,
                            self.step_size, self.n_steps, target.gradient_at)
        candidate = target.candidate(state, q)
        # Hamiltonian difference beyond the log-target terms
        log_correction = kinetic_energy(p0) - kinetic_energy(p)
        return Proposal(candidate, log_correction, {})

    def _params(self):
        return {'step_size': self.step_size, 'n_steps': self.n_steps}
