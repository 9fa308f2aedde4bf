"""
Adaptive Tuners.

A tuner adjusts the tunable parameter of a kernel during the adaptation
window (by default the burn-in) and freezes it afterwards:

    VanillaTuner         no adaptation; optionally logs windowed acceptance
    AcceptanceRateTuner  log(scale) += gain · w^(-decay) · (rate - target)
                         after every window of `period` iterations
    RobustAdaptiveTuner  RAM (Vihola 2012): rank-1 update of the RWM scale
                         factor towards a target acceptance rate
    DualAveragingTuner   Hoffman & Gelman (2014) step-size adaptation for
                         gradient-based kernels

Interface:
    validate(sampler)                 at job set-up
    update(sampler, record, iteration) each iteration inside the window
    finalize(sampler)                  once, when adaptation stops

The adaptation gains diminish with the window (or iteration) number, which
keeps the adapted chains ergodic.
"""

import numpy as np

from ..error_handling import ConfigurationError
from ..samplers.common import MCSampler, StepRecord, chol_rank1_update

import logging
logger = logging.getLogger('mcgraph')


class Tuner:
    """Base class of tuners."""

    name = "Tuner"

    def validate(self, sampler: MCSampler) -> None:
        pass

    def update(self, sampler: MCSampler, record: StepRecord, iteration: int) -> None:
        raise NotImplementedError

    def finalize(self, sampler: MCSampler) -> None:
        if sampler.tunable is not None:
            logger.info(f"{self.name}: adaptation frozen, "
                        f"{sampler.tunable}={getattr(sampler, sampler.tunable)!r}")

    def __repr__(self):
        return f"{type(self).__name__}()"


class _WindowedTuner(Tuner):
    """Counts acceptances over consecutive windows of `period` iterations."""

    def __init__(self, period: int = 100, verbose: bool = False):
        if int(period) < 1:
            raise ConfigurationError(f"Tuner period must be >= 1, got {period}")
        self.period = int(period)
        self.verbose = verbose
        self.accepted = 0
        self.proposed = 0
        self.window = 0
        self.rates = []

    def _count(self, record: StepRecord):
        """Add a step to the window. Returns the window rate when it closes."""
        self.proposed += 1
        self.accepted += int(record.accepted)
        if self.proposed < self.period:
            return None
        rate = self.accepted / self.proposed
        self.window += 1
        self.rates.append(rate)
        self.accepted = 0
        self.proposed = 0
        return rate


class VanillaTuner(_WindowedTuner):
    """
    No adaptation. With verbose=True the acceptance rate of every window of
    `period` iterations is logged.
    """

    name = "VanillaTuner"

    def update(self, sampler, record, iteration):
        rate = self._count(record)
        if rate is not None and self.verbose:
            logger.info(f"Iteration {iteration}: acceptance rate {rate:.3f} "
                        f"over the last {self.period} iterations")

    def __repr__(self):
        return f"VanillaTuner(period={self.period}, verbose={self.verbose})"


class AcceptanceRateTuner(_WindowedTuner):
    """
    Scale adaptation towards a target acceptance rate.

    After window w closes with acceptance rate r:
        log(scale) += gain · w^(-decay) · (r - target_rate)

    Args:
        target_rate: Acceptance rate to aim for
        period: Window length in iterations (1 tunes every iteration)
        gain: Initial adaptation gain
        decay: Gain decay exponent, in (0, 1]
        verbose: Log each window's rate and the new scale
    """

    name = "AcceptanceRateTuner"

    def __init__(self, target_rate: float = 0.234, period: int = 100, gain: float = 1.0,
                 decay: float = 0.6, verbose: bool = False):
        super().__init__(period, verbose)
        if not 0 < target_rate < 1:
            raise ConfigurationError(f"target_rate must be in (0, 1), got {target_rate}")
        if not 0 < decay <= 1:
            raise ConfigurationError(f"decay must be in (0, 1], got {decay}")
        self.target_rate = float(target_rate)
        self.gain = float(gain)
        self.decay = float(decay)

    def validate(self, sampler):
        if sampler.tunable is None:
            raise ConfigurationError(f"{self.name} cannot tune {sampler}: nothing to tune")

    def update(self, sampler, record, iteration):
        rate = self._count(record)
        if rate is None:
            return
        gamma = self.gain * self.window ** (-self.decay)
        sampler.rescale(np.exp(gamma * (rate - self.target_rate)))
        if self.verbose:
            logger.info(f"Iteration {iteration}: acceptance rate {rate:.3f}, "
                        f"{sampler.tunable}={getattr(sampler, sampler.tunable)!r}")

    def __repr__(self):
        return (f"AcceptanceRateTuner(target_rate={self.target_rate}, period={self.period}, "
                f"gain={self.gain}, decay={self.decay})")


class RobustAdaptiveTuner(Tuner):
    """
    Robust adaptive Metropolis (Vihola 2012) for RWM.

    Every iteration n, with u the standardised RWM direction and α_n the
    acceptance probability:

        S Sᵀ <- S (I + η_n (α_n - α*) u uᵀ / |u|²) Sᵀ,  η_n = min(1, d · n^(-decay))

    A scalar scale is promoted to scale · I on the first update of a
    multivariate parameter.

    Args:
        target_rate: Target acceptance rate α*
        decay: Step-size decay exponent, in (1/2, 1]
        verbose: Log the scale factor every 1000 updates
    """

    name = "RobustAdaptiveTuner"

    def __init__(self, target_rate: float = 0.234, decay: float = 2 / 3, verbose: bool = False):
        if not 0 < target_rate < 1:
            raise ConfigurationError(f"target_rate must be in (0, 1), got {target_rate}")
        if not 0.5 < decay <= 1:
            raise ConfigurationError(f"decay must be in (1/2, 1], got {decay}")
        self.target_rate = float(target_rate)
        self.decay = float(decay)
        self.verbose = verbose
        self.n = 0

    def validate(self, sampler):
        if sampler.tunable != 'scale':
            raise ConfigurationError(f"{self.name} needs an RWM sampler, got {sampler}")

    def update(self, sampler, record, iteration):
        self.n += 1
        direction = getattr(sampler, 'last_direction', None)
        if direction is None:
            return

        u = np.asarray(direction, dtype=np.float64)
        eta = min(1.0, u.size * self.n ** (-self.decay))
        c = eta * (record.accept_stat - self.target_rate)
        norm2 = float(np.sum(u * u))
        if c == 0 or norm2 == 0:
            return
        if u.ndim == 0:
            # S² <- S² (1 + c)
            sampler.scale = float(sampler.scale * np.sqrt(1.0 + c))
        else:
            S = sampler.scale
            if not isinstance(S, np.ndarray):
                S = S * np.eye(u.shape[0])
            x = np.sqrt(abs(c) / norm2) * (S @ u)
            sampler.scale = chol_rank1_update(S, x, np.sign(c))

        if self.verbose and self.n % 1000 == 0:
            logger.info(f"Iteration {iteration}: RAM scale={sampler.scale!r}")

    def __repr__(self):
        return f"RobustAdaptiveTuner(target_rate={self.target_rate}, decay={self.decay})"


class DualAveragingTuner(Tuner):
    """
    Dual-averaging step-size adaptation (Hoffman & Gelman 2014, Algorithms
    5 and 6).

    With m the update count and α_m the kernel's acceptance statistic:

        H̄_m = (1 - 1/(m + t0)) H̄_{m-1} + (δ - α_m) / (m + t0)
        log ε_m = μ - √m / γ · H̄_m,               μ = log(10 ε_0)
        log ε̄_m = m^(-κ) log ε_m + (1 - m^(-κ)) log ε̄_{m-1}

    The step size is frozen at ε̄ when adaptation ends.

    Args:
        target_rate: Target acceptance statistic δ
        gamma, t0, kappa: Dual-averaging constants
    """

    name = "DualAveragingTuner"

    def __init__(self, target_rate: float = 0.8, gamma: float = 0.05, t0: float = 10.0,
                 kappa: float = 0.75, verbose: bool = False):
        if not 0 < target_rate < 1:
            raise ConfigurationError(f"target_rate must be in (0, 1), got {target_rate}")
        if not 0.5 < kappa <= 1:
            raise ConfigurationError(f"kappa must be in (1/2, 1], got {kappa}")
        self.target_rate = float(target_rate)
        self.gamma = float(gamma)
        self.t0 = float(t0)
        self.kappa = float(kappa)
        self.verbose = verbose
        self.m = 0
        self.mu = None
        self.h_bar = 0.0
        self.log_step_bar = 0.0

    def validate(self, sampler):
        if sampler.tunable != 'step_size':
            raise ConfigurationError(f"{self.name} needs a step-size kernel, got {sampler}")

    def update(self, sampler, record, iteration):
        if self.mu is None:
            self.mu = np.log(10.0 * sampler.step_size)
        self.m += 1
        m = self.m
        w = 1.0 / (m + self.t0)
        self.h_bar = (1.0 - w) * self.h_bar + w * (self.target_rate - record.accept_stat)
        log_step = self.mu - np.sqrt(m) / self.gamma * self.h_bar
        eta = m ** (-self.kappa)
        self.log_step_bar = eta * log_step + (1.0 - eta) * self.log_step_bar
        sampler.step_size = float(np.exp(log_step))

    def finalize(self, sampler):
        if self.m > 0:
            sampler.step_size = float(np.exp(self.log_step_bar))
        super().finalize(sampler)

    def __repr__(self):
        return (f"DualAveragingTuner(target_rate={self.target_rate}, gamma={self.gamma}, "
                f"t0={self.t0}, kappa={self.kappa})")


TUNER_REGISTRY = {
    'vanilla': VanillaTuner,
    'acceptance': AcceptanceRateTuner,
    'ram': RobustAdaptiveTuner,
    'dual_averaging': DualAveragingTuner,
}


def make_tuner(spec, **kwargs) -> Tuner:
    """Build a tuner from an instance or a registry name."""
    if isinstance(spec, Tuner):
        return spec
    try:
        return TUNER_REGISTRY[str(spec).lower()](**kwargs)
    except KeyError:
        raise ConfigurationError(
            f"Unknown tuner '{spec}'. Available: {', '.join(TUNER_REGISTRY)}"
        ) from None
