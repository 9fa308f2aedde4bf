"""
Model Variables.

A model is a graph of named variables. Each variable is one of a closed set
of kinds, each carrying only the fields it needs:

    Constant (alias Hyperparameter)  fixed value supplied at job set-up
    Data                             observed value, optionally refreshed by
                                     an `update` callback once per sweep
    Transformation                   deterministic value computed by
                                     `transform(values)`
    Parameter                        stochastic; carries the density
                                     callbacks the samplers evaluate

All kinds share the accessor interface: key, index, kind, is_indexed,
default_state(value), dotshape.

Density callbacks have the signature f(value, values), where `values` maps
variable keys to the current values of the model's variables.

Example:
    mu = Parameter(
        'mu',
        logprior=lambda v, vals: -0.5 * v**2 / vals['tau'],
        loglikelihood=lambda v, vals: -0.5 * np.sum((vals['y'] - v)**2),
        gradlogtarget=lambda v, vals: -v / vals['tau'] + np.sum(vals['y'] - v),
    )
"""

from enum import Enum
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from .error_handling import ConfigurationError, ShapeMismatchError
from .settings import (
    DENSITY_FIELDS, FIELD_COMPONENT, FIELD_ORDER, StateField, field_name, normalize_fields,
)
from .states import ParameterState, ValueSupport, VariableState, VariateForm, as_support, default_state


class VariableKind(Enum):
    """Closed enumeration of node kinds."""
    CONSTANT = 0
    DATA = 1
    TRANSFORMATION = 2
    PARAMETER = 3

    def __str__(self):
        return self.name.title()


# ============================================================================
# ABSTRACT VARIABLE
# ============================================================================

class Variable:
    """Named node of a model graph."""

    kind: VariableKind = None
    dotshape = "ellipse"

    def __init__(self, key: str, index: int = 0):
        if not isinstance(key, str) or not key:
            raise ConfigurationError(f"Variable key must be a non-empty string, got {key!r}")
        if index < 0:
            raise ConfigurationError(f"Variable index must be >= 0, got {index}")
        self.key = key
        self.index = int(index)

    @property
    def is_indexed(self) -> bool:
        return self.index > 0

    @property
    def is_parameter(self) -> bool:
        return self.kind == VariableKind.PARAMETER

    def default_state(self, value, **kwargs) -> VariableState:
        """Build the state holding value (existing states are returned as is)."""
        return default_state(self, value, **kwargs)

    def __repr__(self):
        return f"Variable [{self.index}]: {self.key} ({self.kind})"


# ============================================================================
# DETERMINISTIC VARIABLES
# ============================================================================

class Constant(Variable):
    """Fixed value, never changed during sampling."""
    kind = VariableKind.CONSTANT
    dotshape = "trapezium"


Hyperparameter = Constant


class Data(Variable):
    """
    Observed data. If `update` is given, it is called as update(values) once
    per Gibbs sweep and its result replaces the current value.
    """
    kind = VariableKind.DATA
    dotshape = "box"

    def __init__(self, key: str, index: int = 0, update: Optional[Callable] = None):
        super().__init__(key, index)
        self.update = update


class Transformation(Variable):
    """Deterministic function of other variables: value = transform(values)."""
    kind = VariableKind.TRANSFORMATION
    dotshape = "polygon"

    def __init__(self, key: str, transform: Callable, index: int = 0):
        super().__init__(key, index)
        if not callable(transform):
            raise ConfigurationError(f"Transformation '{key}' needs a callable transform")
        self.transform = transform

    def compute(self, values: Mapping):
        return self.transform(values)


# ============================================================================
# PARAMETER
# ============================================================================

_COMPONENTS = ('likelihood', 'prior', 'target')


class Parameter(Variable):
    """
    Stochastic variable sampled by the MCMC engine.

    Args:
        key: Unique variable name
        index: Graph position (0 = assigned by the model)
        support: 'continuous' (default) or 'discrete'
        form: Optional expected VariateForm of the value; initial values of
              another rank raise ShapeMismatchError
        size: Optional declared vector length
        logprior, loglikelihood, logtarget: fn(value, values) -> float
        gradlogprior, gradloglikelihood, gradlogtarget: fn -> value-shaped
        tensorlogprior, tensorloglikelihood, tensorlogtarget: fn -> (d, d)
        dtensorlogprior, dtensorloglikelihood, dtensorlogtarget: fn -> (d, d, d)
        autodiff: Build missing derivative callbacks with JAX from the
                  log-density callbacks (which must then use jax.numpy)
        order: Highest derivative order autodiff provides (1..3)
        conditional: fn(values, rng) -> value, a draw from the full
                     conditional, used by Gibbs sweeps

    A target field with no callback of its own is the sum of the
    likelihood and prior fields of the same order (or the prior alone when
    no likelihood is given).
    """
    kind = VariableKind.PARAMETER
    dotshape = "circle"

    def __init__(self, key: str, index: int = 0, support='continuous',
                 form: Optional[VariateForm] = None, size: Optional[int] = None,
                 autodiff: bool = False, order: int = 1,
                 conditional: Optional[Callable] = None, **callbacks):
        super().__init__(key, index)
        self.support = as_support(support)
        if form is not None and not isinstance(form, VariateForm):
            form = VariateForm[str(form).upper()]
        self.form = form
        self.size = size
        self.autodiff = bool(autodiff)
        self.order = int(order)
        self.conditional = conditional

        unknown = set(callbacks) - set(DENSITY_FIELDS)
        if unknown:
            raise ConfigurationError(
                f"Parameter '{key}' got unknown callbacks: {sorted(unknown)}"
            )
        self.callbacks: Dict[str, Callable] = {
            name: fn for name, fn in callbacks.items() if fn is not None
        }
        if self.autodiff and not 1 <= self.order <= 3:
            raise ConfigurationError(f"Parameter '{key}': autodiff order must be in 1..3")
        if self.support == ValueSupport.DISCRETE and self.autodiff:
            raise ConfigurationError(f"Parameter '{key}': autodiff needs a continuous parameter")

        self._resolved: Dict[str, Optional[Callable]] = {}
        self._autodiff_cache: Dict[str, dict] = {}
        self._plans: Dict[frozenset, List[Tuple[str, Optional[Callable]]]] = {}

    # --- capability resolution ------------------------------------------

    def _components_present(self) -> Tuple[str, ...]:
        return tuple(c for c in ('likelihood', 'prior')
                     if field_name(0, c) in self.callbacks)

    def _autodiff_fn(self, component: str, order: int) -> Optional[Callable]:
        base = self.resolve(field_name(0, component))
        if base is None:
            return None
        if component not in self._autodiff_cache:
            from .derivatives import autodiff_derivatives
            self._autodiff_cache[component] = autodiff_derivatives(base, self.order)
        return self._autodiff_cache[component][order]

    def resolve(self, name: str) -> Optional[Callable]:
        """
        Callable computing field `name`, or None if this parameter cannot
        supply it.
        """
        if name in self._resolved:
            return self._resolved[name]

        fn = self.callbacks.get(name)
        order = FIELD_ORDER[StateField(name)]
        component = FIELD_COMPONENT[name]

        if fn is None and component == 'target':
            parts = [self.resolve(field_name(order, c)) for c in self._components_present()]
            if parts and all(p is not None for p in parts):
                fn = parts[0] if len(parts) == 1 else _summed(parts)

        if fn is None and order >= 1 and self.autodiff and order <= self.order:
            fn = self._autodiff_fn(component, order)

        if fn is not None and order >= 1 and self.support == ValueSupport.DISCRETE:
            fn = None

        self._resolved[name] = fn
        return fn

    def capabilities(self) -> frozenset:
        """Names of all state fields this parameter can compute."""
        return frozenset(
            ['value'] + [name for name in DENSITY_FIELDS if self.resolve(name) is not None]
        )

    def missing_fields(self, fields: Iterable) -> List[str]:
        """Fields from `fields` this parameter cannot compute."""
        available = self.capabilities()
        return [f for f in normalize_fields(fields) if f not in available]

    # --- states ----------------------------------------------------------

    def default_state(self, value, monitor: Iterable = ('logtarget',),
                      diagnostickeys: Iterable[str] = (),
                      diagnosticvalues=None, **kwargs) -> ParameterState:
        """
        Build a parameter state for value (or for the declared size when
        value is None). Existing parameter states are returned unchanged.
        """
        return default_state(self, value, monitor=monitor, diagnostickeys=diagnostickeys,
                             diagnosticvalues=diagnosticvalues)

    def _plan(self, monitor: frozenset):
        """
        Evaluation plan for a monitor set: fields in derivative order, with
        target fields marked for summation when both components are in the
        same plan.
        """
        if monitor in self._plans:
            return self._plans[monitor]
        missing = self.missing_fields(monitor)
        if missing:
            raise ConfigurationError(
                f"Parameter '{self.key}' cannot compute: {', '.join(missing)}"
            )
        ordered = sorted(monitor, key=lambda n: (FIELD_ORDER[StateField(n)],
                                                 _COMPONENTS.index(FIELD_COMPONENT[n])))
        plan = []
        for name in ordered:
            order = FIELD_ORDER[StateField(name)]
            parts = [field_name(order, c) for c in self._components_present()]
            if (FIELD_COMPONENT[name] == 'target' and name not in self.callbacks
                    and len(parts) == 2 and all(p in monitor for p in parts)):
                plan.append((name, None))
            else:
                plan.append((name, self.resolve(name)))
        self._plans[monitor] = plan
        return plan

    def evaluate(self, state: ParameterState, values: Mapping) -> ParameterState:
        """
        Compute every monitored density field of state at state.value.

        Args:
            state: Parameter state, modified in place
            values: Current values of the model's variables

        Returns:
            The same state

        Raises:
            ShapeMismatchError: If a callback returns a wrongly shaped result
        """
        value = state.value
        for name, fn in self._plan(state.monitor):
            if fn is None:
                prefix = name[:-len('target')]
                result = getattr(state, prefix + 'likelihood') + getattr(state, prefix + 'prior')
            else:
                result = _as_field(fn(value, values), state, name)
            setattr(state, name, result)
        return state

    def sample_conditional(self, values: Mapping, rng: np.random.Generator):
        if self.conditional is None:
            raise ConfigurationError(f"Parameter '{self.key}' has no conditional sampler")
        return self.conditional(values, rng)


def _summed(parts):
    def summed(value, values):
        return sum(p(value, values) for p in parts)
    return summed


def _as_field(result, state: ParameterState, name: str):
    """Convert a callback result to storage type, checking its shape."""
    order = FIELD_ORDER[StateField(name)]
    if order == 0:
        return float(np.asarray(result))
    arr = np.asarray(result, dtype=np.float64)
    expected = state._field_shape(order)
    if arr.shape != expected:
        raise ShapeMismatchError(
            f"'{name}' returned shape {arr.shape}, expected {expected}"
        )
    return float(arr) if arr.ndim == 0 else arr
