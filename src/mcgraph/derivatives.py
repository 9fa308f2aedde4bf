"""
Automatic derivatives of log-densities via JAX.

Parameters declared with `autodiff=True` get their gradient, metric tensor
and tensor-derivative callbacks built here from their log-density callbacks.
The log-density callbacks must then be written with `jax.numpy` so JAX can
trace them.

    order 1: gradient           jax.grad
    order 2: metric tensor      negative Hessian, -jax.hessian
    order 3: tensor derivative  jax.jacfwd of the metric tensor; entry
                                [i, j, k] is d G[i, j] / d value[k]

All derivative functions share the callback signature f(value, values) and
are differentiated with respect to `value` only. Results are returned as
float64 NumPy arrays (plain floats for scalar values).
"""

from . import jax_config  # noqa: F401

from typing import Callable, Dict

import jax
import jax.numpy as jnp
import numpy as np

jax.config.update("jax_enable_x64", True)

MAX_AUTODIFF_ORDER = 3


def _to_host(x):
    """Move a JAX result to a float or float64 NumPy array."""
    arr = np.asarray(jax.device_get(x), dtype=np.float64)
    return float(arr) if arr.ndim == 0 else arr


def _host_fn(fn: Callable) -> Callable:
    def wrapped(value, values):
        return _to_host(fn(jnp.asarray(value, dtype=jnp.float64), values))
    return wrapped


def autodiff_derivatives(logdensity: Callable, order: int) -> Dict[int, Callable]:
    """
    Build derivative callbacks of a log-density up to the given order.

    Args:
        logdensity: fn(value, values) -> scalar, traceable by JAX
        order: Highest derivative order to build (1, 2 or 3)

    Returns:
        Dict mapping order -> fn(value, values) returning the derivative
        as a float / NumPy array

    Raises:
        ValueError: If order is outside 1..3
    """
    if not 1 <= order <= MAX_AUTODIFF_ORDER:
        raise ValueError(f"autodiff order must be in 1..{MAX_AUTODIFF_ORDER}, got {order}")

    grad_fn = jax.grad(logdensity, argnums=0)

    def tensor_fn(value, values):
        return -jax.hessian(logdensity, argnums=0)(value, values)

    derivatives = {1: _host_fn(jax.jit(grad_fn))}
    if order >= 2:
        derivatives[2] = _host_fn(jax.jit(tensor_fn))
    if order >= 3:
        derivatives[3] = _host_fn(jax.jit(jax.jacfwd(tensor_fn, argnums=0)))
    return derivatives
