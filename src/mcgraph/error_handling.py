"""
Error Handling and Validation Utilities for the MCMC engine.

This module defines the exception hierarchy used across mcgraph and provides
validation functions and diagnostic tools for sampling runs.

Exceptions raised while a model or job is being built (before any iteration
runs):
    DuplicateKeyError, CyclicGraphError, ShapeMismatchError,
    DiagnosticsLengthError, ConfigurationError, RangeError

Exception raised inside an iteration and always recovered by the kernel
(the offending candidate is rejected):
    NonFiniteDensityError
"""

from typing import Any, Dict, List

import numpy as np

import logging
logger = logging.getLogger('mcgraph')


class MCGraphError(Exception):
    """Base class for all mcgraph errors."""


class DuplicateKeyError(MCGraphError, ValueError):
    """A variable key is already present in the model."""


class CyclicGraphError(MCGraphError, ValueError):
    """The dependency graph admits no topological order."""


class ShapeMismatchError(MCGraphError, ValueError):
    """A value does not have the rank or shape its state slot expects."""


class DiagnosticsLengthError(MCGraphError, ValueError):
    """Diagnostic keys and values have different lengths."""


class ConfigurationError(MCGraphError, ValueError):
    """A model, sampler or job is misconfigured."""


class RangeError(MCGraphError, ValueError):
    """The retained iteration range is invalid."""


class NonFiniteDensityError(MCGraphError, ArithmeticError):
    """A candidate has a non-finite log-target (zero posterior mass)."""


def check_finite_density(logtarget: float, key: str = "") -> float:
    """
    Return logtarget unchanged if it is finite.

    Raises:
        NonFiniteDensityError: If logtarget is NaN or +/-Inf
    """
    if not np.isfinite(logtarget):
        label = f" for '{key}'" if key else ""
        raise NonFiniteDensityError(f"Non-finite log-target{label}: {logtarget}")
    return logtarget


def raise_collected(errors: List[str], header: str, exc_type=ConfigurationError) -> None:
    """Raise exc_type listing every collected error, if there are any."""
    if errors:
        raise exc_type(f"{header}:\n  " + "\n  ".join(errors))


def validate_job_config(config: Dict[str, Any]) -> None:
    """
    Validates that a job configuration is sensible.

    Args:
        config: Configuration dictionary (after clean_config)

    Raises:
        ConfigurationError: If configuration is invalid
    """
    errors = []

    seed = config.get('rng_seed')
    if seed is not None:
        if not isinstance(seed, (int, np.integer)) or isinstance(seed, bool):
            errors.append(f"rng_seed must be an integer or None, got {seed!r}")
        elif seed < 0:
            errors.append(f"rng_seed must be >= 0, got {seed}")

    adapt_end = config.get('adapt_end')
    if adapt_end is not None:
        if not isinstance(adapt_end, (int, np.integer)) or isinstance(adapt_end, bool):
            errors.append(f"adapt_end must be an integer or None, got {adapt_end!r}")
        elif adapt_end < 0:
            errors.append(f"adapt_end must be >= 0, got {adapt_end}")

    for key in ('verbose', 'check_initial'):
        if key in config and not isinstance(config[key], bool):
            errors.append(f"{key} must be True or False, got {config[key]!r}")

    raise_collected(errors, "Invalid job configuration")


def diagnose_sampler_issues(chain, diagnostics: Dict[str, Any] = None) -> Dict[str, Any]:
    """
    Analyzes a finished chain to identify common issues.

    Args:
        chain: Chain returned by a job run
        diagnostics: Existing diagnostics dict to extend

    Returns:
        diagnostics: Dictionary with issues, warnings, and info
    """
    diagnostics = (diagnostics or {}) | {
        'issues': [],
        'warnings': [],
        'info': []
    }

    values = chain.value.reshape(len(chain), -1)

    # Check for NaN/Inf in history
    if not np.all(np.isfinite(values)):
        diagnostics['issues'].append(
            "Chain contains NaN or Inf values - sampler became unstable"
        )

    # Check for stuck coordinates (variance near zero)
    if len(chain) > 1:
        stuck = int(np.sum(np.var(values, axis=0) < 1e-10))
        if stuck > 0:
            diagnostics['warnings'].append(
                f"{stuck} coordinate(s) of '{chain.key}' appear stuck (near-zero variance)"
            )

    if 'accept' in chain.diagnostickeys and len(chain) > 0:
        rate = chain.acceptance()
        if rate < 0.10:
            diagnostics['warnings'].append(
                f"Acceptance rate of '{chain.key}' is {rate:.1%} (< 10%)"
            )
        diagnostics['info'].append(f"Acceptance rate: {rate:.1%}")

    diagnostics['info'].append(f"Retained samples: {len(chain)}")
    diagnostics['info'].append(f"Parameter: {chain.key}")

    return diagnostics


def print_diagnostics(diagnostics: Dict[str, Any]) -> None:
    """Pretty-print diagnostics from diagnose_sampler_issues."""
    if diagnostics['issues']:
        logger.error("[ERROR] ISSUES:")
        for issue in diagnostics['issues']:
            logger.error(f"  - {issue}")

    if diagnostics['warnings']:
        logger.warning("[WARN] WARNINGS:")
        for warning in diagnostics['warnings']:
            logger.warning(f"  - {warning}")

    if diagnostics['info']:
        logger.info("[INFO] INFO:")
        for info in diagnostics['info']:
            logger.info(f"  - {info}")

    if not diagnostics['issues'] and not diagnostics['warnings']:
        logger.info("[OK] No issues detected")
