"""
MCMC Diagnostics.

Convergence and efficiency diagnostics for output chains:
- compute_nested_rhat: Nested R-hat over superchains (Margossian et al., 2022)
- compute_rhat: R-hat across chains, optionally grouped into superchains
- batch_means_variance: Asymptotic variance by non-overlapping batch means
- effective_sample_size: ESS from the batch-means variance
- acceptance_summary / print_acceptance_summary: Acceptance rate statistics
"""

from functools import partial
from typing import Any, Dict, Optional, Sequence

from .. import jax_config  # noqa: F401

import jax
import jax.numpy as jnp
import numpy as np

from ..error_handling import ConfigurationError

import logging
logger = logging.getLogger('mcgraph')


@partial(jax.jit, static_argnums=(1, 2))
def compute_nested_rhat(history: jnp.ndarray, K: int, M: int) -> jnp.ndarray:
    """
    Nested R-hat (Margossian et al., 2022) over K superchains of M subchains.

    Subchains of one superchain share a starting point, so their spread
    counts as within-superchain variance. With M = 1 this is the standard
    Gelman-Rubin R-hat over K chains.

    Args:
        history: (n_samples, K * M, n_params), superchain-major along axis 1
        K: Number of superchains
        M: Number of subchains per superchain

    Returns:
        (n_params,) array of R-hat values; NaN or inf for stuck coordinates
    """
    n = history.shape[0]
    x = history.reshape(n, K, M, -1)

    sub_mean = jnp.mean(x, axis=0)                  # (K, M, n_params)
    super_mean = jnp.mean(sub_mean, axis=1)         # (K, n_params)

    if n > 1:
        sub_var = jnp.mean(jnp.var(x, axis=0, ddof=1), axis=1)
    else:
        sub_var = jnp.zeros_like(super_mean)
    if M > 1:
        sub_spread = jnp.var(sub_mean, axis=1, ddof=1)
    else:
        sub_spread = jnp.zeros_like(super_mean)

    W = jnp.mean(sub_spread + sub_var, axis=0)
    B = n * jnp.var(super_mean, axis=0, ddof=1)
    V = (n - 1) / n * W + (K + 1) / (K * n) * B
    return jnp.sqrt(V / W)


def _as_values(chain) -> np.ndarray:
    values = chain.value if hasattr(chain, 'value') else chain
    values = np.asarray(values, dtype=np.float64)
    return values.reshape(values.shape[0], -1)


def compute_rhat(chains: Sequence, n_superchains: Optional[int] = None) -> np.ndarray:
    """
    R-hat across chains of equal length.

    Args:
        chains: Chains (or arrays of shape (n,) / (n, p)) of one parameter
        n_superchains: Group the chains, in order, into this many
                       superchains of equal size and return nested R-hat.
                       Default: every chain is its own superchain.

    Returns:
        (p,) array of R-hat values

    Raises:
        ConfigurationError: Fewer than two superchains, unequal lengths, or
                            a chain count not divisible by n_superchains
    """
    K = len(chains) if n_superchains is None else int(n_superchains)
    if K < 2:
        raise ConfigurationError("R-hat needs at least two chains")
    if len(chains) % K:
        raise ConfigurationError(
            f"Cannot split {len(chains)} chains into {K} superchains of equal size"
        )
    arrays = [_as_values(c) for c in chains]
    if len({a.shape for a in arrays}) != 1:
        raise ConfigurationError("R-hat needs chains of equal length and shape")
    history = jnp.asarray(np.stack(arrays, axis=1))  # (n, n_chains, p)
    return np.asarray(jax.device_get(compute_nested_rhat(history, K, len(arrays) // K)))


def batch_means_variance(values, batch_size: Optional[int] = None) -> np.ndarray:
    """
    Asymptotic variance of the sample mean times n, by batch means.

    Args:
        values: (n,) or (n, p) samples
        batch_size: Batch length (default floor(sqrt(n)))

    Returns:
        (p,) variance estimates
    """
    x = _as_values(values)
    n = x.shape[0]
    if batch_size is None:
        batch_size = max(1, int(np.floor(np.sqrt(n))))
    n_batches = n // batch_size
    if n_batches < 2:
        raise ConfigurationError(f"Need at least two batches of {batch_size}, have {n} samples")
    batches = x[:n_batches * batch_size].reshape(n_batches, batch_size, -1)
    return batch_size * np.var(batches.mean(axis=1), axis=0, ddof=1)


def effective_sample_size(values, batch_size: Optional[int] = None) -> np.ndarray:
    """ESS = n · var(x) / batch-means variance, per coordinate."""
    x = _as_values(values)
    n = x.shape[0]
    sigma2 = batch_means_variance(x, batch_size)
    with np.errstate(divide='ignore', invalid='ignore'):
        return n * np.var(x, axis=0, ddof=1) / sigma2


def acceptance_summary(chains) -> Dict[str, Any]:
    """
    Acceptance statistics over chains that recorded 'accept'.

    Args:
        chains: Chain, list of chains, or dict key -> chain

    Returns:
        Dict with 'rates' (label -> rate), 'mean', 'median', 'min', 'max'
        and 'low' (labels with rate < 10%)
    """
    if hasattr(chains, 'diagnostickeys'):
        chains = [chains]
    items = chains.items() if isinstance(chains, dict) else (
        (f"{c.key} [{i}]", c) for i, c in enumerate(chains))
    rates = {label: c.acceptance() for label, c in items
             if 'accept' in c.diagnostickeys and len(c) > 0}
    if not rates:
        return {'rates': {}}
    arr = np.array(list(rates.values()))
    return {
        'rates': rates,
        'mean': float(np.mean(arr)),
        'median': float(np.median(arr)),
        'min': float(np.min(arr)),
        'max': float(np.max(arr)),
        'low': [label for label, r in rates.items() if r < 0.10],
    }


def print_acceptance_summary(chains) -> None:
    """Log summary statistics of acceptance rates."""
    summary = acceptance_summary(chains)
    if not summary['rates']:
        return
    logger.info(f"--- Acceptance Rates ({len(summary['rates'])} chains) ---")
    logger.info(f"  Mean: {summary['mean']:.1%}  Median: {summary['median']:.1%}  "
                f"Min: {summary['min']:.1%}  Max: {summary['max']:.1%}")
    if summary['low']:
        logger.warning(f"  {len(summary['low'])} chain(s) have acceptance rate < 10%")
        if len(summary['low']) <= 10:
            logger.warning(f"    Low chains: {', '.join(summary['low'])}")
