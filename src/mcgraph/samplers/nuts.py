"""
No-U-Turn Sampler (Hoffman & Gelman 2014, Algorithm 3).

Each iteration draws a momentum and a slice variable, then doubles a
leapfrog trajectory forwards or backwards in time until it starts to turn
back on itself (or `max_doublings` is reached, or the energy error exceeds
`max_delta`). The next state is chosen among the trajectory points inside
the slice, favouring points from the newest subtree.

Diagnostics:
    ndoublings: Number of tree doublings performed (0..max_doublings)
    accept: Whether the value moved

The mean Metropolis acceptance statistic of the final trajectory is
returned as the step record's accept_stat for dual-averaging step size
adaptation.
"""

from collections import namedtuple

import numpy as np

from ..error_handling import ConfigurationError, NonFiniteDensityError
from .common import MCSampler, Proposal, StepRecord, draw_normal
from .hmc import kinetic_energy

import logging
logger = logging.getLogger('mcgraph')


# Trajectory end point: evaluated state and its momentum
Node = namedtuple('Node', ['state', 'momentum'])

# Result of building a subtree
Tree = namedtuple('Tree', [
    'minus', 'plus', 'proposal', 'n_valid', 'keep_going', 'alpha_sum', 'n_alpha',
])


def no_uturn(minus: Node, plus: Node) -> bool:
    """True while the trajectory between minus and plus keeps extending."""
    span = np.asarray(plus.state.value - minus.state.value)
    return (float(np.sum(span * minus.momentum)) >= 0
            and float(np.sum(span * plus.momentum)) >= 0)


class NUTS(MCSampler):
    """
    No-U-Turn Sampler kernel.

    Args:
        step_size: Leapfrog step size (tuned)
        max_doublings: Maximum tree depth
        max_delta: Energy error beyond which a trajectory is abandoned
    """

    name = "NUTS"
    required_fields = ('logtarget', 'gradlogtarget')
    diagnostickeys = ('ndoublings', 'accept')
    tunable = 'step_size'

    def __init__(self, step_size: float = 0.1, max_doublings: int = 5, max_delta: float = 1000.0):
        if not step_size > 0:
            raise ConfigurationError(f"NUTS step_size must be positive, got {step_size}")
        if int(max_doublings) < 0:
            raise ConfigurationError(f"NUTS max_doublings must be >= 0, got {max_doublings}")
        self.step_size = float(step_size)
        self.max_doublings = int(max_doublings)
        self.max_delta = float(max_delta)

    # --- trajectory ------------------------------------------------------

    def _leapfrog(self, node: Node, direction: int, target) -> Node:
        eps = direction * self.step_size
        momentum = node.momentum + 0.5 * eps * node.state.gradlogtarget
        state = target.candidate(node.state, node.state.value + eps * momentum)
        momentum = momentum + 0.5 * eps * state.gradlogtarget
        return Node(state, momentum)

    def _build_tree(self, node: Node, log_u: float, direction: int, depth: int,
                    joint0: float, target, rng) -> Tree:
        if depth == 0:
            try:
                new = self._leapfrog(node, direction, target)
            except NonFiniteDensityError as e:
                logger.debug(f"{self}: trajectory left the support ({e})")
                return Tree(node, node, node.state, 0, False, 0.0, 1)
            joint = new.state.logtarget - kinetic_energy(new.momentum)
            n_valid = int(log_u <= joint)
            keep_going = bool(log_u < self.max_delta + joint)
            alpha = float(np.exp(min(0.0, joint - joint0)))
            return Tree(new, new, new.state, n_valid, keep_going, alpha, 1)

        tree = self._build_tree(node, log_u, direction, depth - 1, joint0, target, rng)
        if not tree.keep_going:
            return tree

        if direction == -1:
            sub = self._build_tree(tree.minus, log_u, direction, depth - 1, joint0, target, rng)
            minus, plus = sub.minus, tree.plus
        else:
            sub = self._build_tree(tree.plus, log_u, direction, depth - 1, joint0, target, rng)
            minus, plus = tree.minus, sub.plus

        n_valid = tree.n_valid + sub.n_valid
        proposal = tree.proposal
        if n_valid > 0 and rng.random() < sub.n_valid / n_valid:
            proposal = sub.proposal
        keep_going = sub.keep_going and no_uturn(minus, plus)
        return Tree(minus, plus, proposal, n_valid, keep_going,
                    tree.alpha_sum + sub.alpha_sum, tree.n_alpha + sub.n_alpha)

    def propose(self, state, target, rng):
        """
        Build one NUTS trajectory from state and select the next state.

        Returns a Proposal whose info holds 'ndoublings', 'accept_stat' and
        'moved'. The selection already is the transition, so the Hastings
        correction is zero and the proposal is always taken.
        """
        momentum0 = draw_normal(rng, state.value)
        joint0 = state.logtarget - kinetic_energy(momentum0)
        with np.errstate(divide='ignore'):
            log_u = joint0 + np.log(rng.random())

        minus = plus = Node(state, momentum0)
        selected = state
        n_valid = 1
        keep_going = True
        alpha_sum, n_alpha = 0.0, 0
        depth = 0
        while keep_going and depth < self.max_doublings:
            direction = -1 if rng.random() < 0.5 else 1
            if direction == -1:
                tree = self._build_tree(minus, log_u, direction, depth, joint0, target, rng)
                minus = tree.minus
            else:
                tree = self._build_tree(plus, log_u, direction, depth, joint0, target, rng)
                plus = tree.plus
            if tree.keep_going and rng.random() < tree.n_valid / n_valid:
                selected = tree.proposal
            n_valid += tree.n_valid
            alpha_sum += tree.alpha_sum
            n_alpha += tree.n_alpha
            keep_going = tree.keep_going and no_uturn(minus, plus)
            depth += 1

        info = {
            'ndoublings': depth,
            'accept_stat': alpha_sum / n_alpha if n_alpha else 0.0,
            'moved': selected is not state,
        }
        return Proposal(selected, 0.0, info)

    def acceptance_log_ratio(self, state, proposal):
        return 0.0

    def step(self, state, target, rng):
        proposal = self.propose(state, target, rng)
        info = proposal.info
        moved = info['moved']
        if moved:
            state.update_from(proposal.state)
        state.set_diagnostic('ndoublings', info['ndoublings'])
        state.set_diagnostic('accept', moved)
        return StepRecord(
            moved, info['accept_stat'],
            {'ndoublings': info['ndoublings'], 'accept': moved},
            {'ndoublings': info['ndoublings']},
        )

    def _params(self):
        return {'step_size': self.step_size, 'max_doublings': self.max_doublings,
                'max_delta': self.max_delta}
