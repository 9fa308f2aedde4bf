"""
Variable States.

A state holds the current realization of one variable during sampling and,
for parameters, the target-density information computed at that value.

Basic states (constants, data, transformations):
    UnivariateState      value is a scalar
    MultivariateState    value is a vector, size = len(value)
    MatrixvariateState   value is a matrix, size = value.shape

Parameter states add log-densities, derivatives up to third order and
per-iteration diagnostics:
    UnivariateParameterState     scalar value (continuous or discrete)
    MultivariateParameterState   vector value (continuous or discrete)

Which optional fields are populated is decided by the state's `monitor`
set, fixed when the state is built. Unmonitored array fields are sized-zero
arrays; monitored fields start NaN-filled.

Diagnostics are kept as two parallel lists (diagnostickeys and
diagnosticvalues). The `diagnostics` property zips them into a dict only
when someone asks.
"""

from enum import Enum
from typing import Any, Iterable, List, Optional

import numpy as np

from .error_handling import ConfigurationError, DiagnosticsLengthError, ShapeMismatchError
from .settings import DENSITY_FIELDS, FIELD_COMPONENT, FIELD_ORDER, StateField, normalize_fields


class VariateForm(Enum):
    """Rank of a variable's value."""
    UNIVARIATE = 0
    MULTIVARIATE = 1
    MATRIXVARIATE = 2

    def __str__(self):
        return self.name.title()


class ValueSupport(Enum):
    """Support of a parameter's value."""
    DISCRETE = 'discrete'
    CONTINUOUS = 'continuous'

    def __str__(self):
        return self.value


def variate_form_of(value) -> VariateForm:
    """
    Infer the variate form of a numeric value from its rank.

    Raises:
        ShapeMismatchError: If the value is not numeric or has rank > 2
    """
    arr = np.asarray(value)
    if not (np.issubdtype(arr.dtype, np.number) or arr.dtype == np.bool_):
        raise ShapeMismatchError(f"Value of type {type(value).__name__} is not numeric")
    if arr.ndim > 2:
        raise ShapeMismatchError(f"Values of rank {arr.ndim} are not supported")
    return VariateForm(arr.ndim)


def as_support(support) -> ValueSupport:
    if isinstance(support, ValueSupport):
        return support
    try:
        return ValueSupport(str(support).lower())
    except ValueError:
        raise ConfigurationError(
            f"support must be 'continuous' or 'discrete', got {support!r}"
        ) from None


def _coerce_value(value, form: VariateForm, support: Optional[ValueSupport] = None):
    """Check the rank of value against form and convert it to storage type."""
    actual = variate_form_of(value)
    if actual != form:
        raise ShapeMismatchError(
            f"{form} slot cannot hold a value of rank {actual.value}"
        )
    if form == VariateForm.UNIVARIATE:
        scalar = np.asarray(value).item()
        if support == ValueSupport.DISCRETE:
            return int(scalar)
        if support == ValueSupport.CONTINUOUS:
            return float(scalar)
        return scalar
    dtype = int if support == ValueSupport.DISCRETE else float
    return np.array(value, dtype=dtype)


# ============================================================================
# BASIC STATES
# ============================================================================

class VariableState:
    """Base class for all variable states."""

    form: VariateForm = None

    def __init__(self, value):
        self.value = _coerce_value(value, self.form)

    @property
    def size(self):
        """Cached size: 1, vector length, or matrix shape."""
        if self.form == VariateForm.UNIVARIATE:
            return 1
        if self.form == VariateForm.MULTIVARIATE:
            return self.value.shape[0]
        return self.value.shape

    @property
    def eltype(self):
        return np.asarray(self.value).dtype

    def copy(self):
        """Independent snapshot of this state."""
        return type(self)(np.copy(self.value))

    def __repr__(self):
        return f"{type(self).__name__}(value={self.value!r})"


class UnivariateState(VariableState):
    form = VariateForm.UNIVARIATE

    def copy(self):
        return type(self)(self.value)


class MultivariateState(VariableState):
    form = VariateForm.MULTIVARIATE


class MatrixvariateState(VariableState):
    form = VariateForm.MATRIXVARIATE


BASIC_STATE_TYPES = {
    VariateForm.UNIVARIATE: UnivariateState,
    VariateForm.MULTIVARIATE: MultivariateState,
    VariateForm.MATRIXVARIATE: MatrixvariateState,
}


def basic_state(value, form: Optional[VariateForm] = None) -> VariableState:
    """
    Build the basic state matching the rank of value.

    Args:
        value: Scalar, vector or matrix
        form: Expected form; a value of a different rank raises
              ShapeMismatchError

    Returns:
        UnivariateState, MultivariateState or MatrixvariateState
    """
    if isinstance(value, VariableState):
        return value
    if form is None:
        form = variate_form_of(value)
    return BASIC_STATE_TYPES[form](value)


# ============================================================================
# PARAMETER STATES
# ============================================================================

class ParameterState(VariableState):
    """
    State of a parameter: value, target-density fields and diagnostics.

    Fields (all except value are optional):
        loglikelihood, logprior, logtarget: floats, NaN when not computed
        gradloglikelihood, gradlogprior, gradlogtarget: shaped like value
        tensorloglikelihood, tensorlogprior, tensorlogtarget: (d, d)
        dtensorloglikelihood, dtensorlogprior, dtensorlogtarget: (d, d, d)
        diagnostickeys, diagnosticvalues: parallel lists
        monitor: frozenset of the field names this state populates
    """

    max_order = 3

    def __init__(self, value, monitor: Iterable = ('logtarget',),
                 support=ValueSupport.CONTINUOUS,
                 diagnostickeys: Iterable[str] = (),
                 diagnosticvalues: Optional[Iterable[Any]] = None):
        self.support = as_support(support)
        self.value = _coerce_value(value, self.form, self.support)

        monitor = frozenset(normalize_fields(monitor)) - {StateField.VALUE.value}
        self._validate_monitor(monitor)
        self.monitor = monitor

        for name in DENSITY_FIELDS:
            setattr(self, name, self._blank_field(name))

        diagnostickeys = list(diagnostickeys)
        if diagnosticvalues is None:
            diagnosticvalues = [None] * len(diagnostickeys)
        else:
            diagnosticvalues = list(diagnosticvalues)
        if len(diagnostickeys) != len(diagnosticvalues):
            raise DiagnosticsLengthError(
                f"Got {len(diagnostickeys)} diagnostic keys but "
                f"{len(diagnosticvalues)} diagnostic values"
            )
        self.diagnostickeys: List[str] = diagnostickeys
        self.diagnosticvalues: List[Any] = diagnosticvalues

    def _validate_monitor(self, monitor):
        errors = []
        for name in sorted(monitor):
            order = FIELD_ORDER[StateField(name)]
            if order >= 1 and self.support == ValueSupport.DISCRETE:
                errors.append(f"'{name}' is undefined for a discrete parameter")
            elif order > self.max_order:
                errors.append(f"'{name}' is undefined for a {str(self.form).lower()} parameter")
        if errors:
            raise ConfigurationError("Invalid monitor set:\n  " + "\n  ".join(errors))

    def _field_shape(self, order: int):
        raise NotImplementedError

    def _blank_field(self, name: str):
        order = FIELD_ORDER[StateField(name)]
        if order == 0:
            return np.nan
        shape = self._field_shape(order)
        if name in self.monitor:
            return np.full(shape, np.nan) if shape else np.nan
        return np.empty((0,) * len(shape)) if shape else np.nan

    @property
    def is_continuous(self) -> bool:
        return self.support == ValueSupport.CONTINUOUS

    def set_value(self, value) -> None:
        """Replace the value, checked against the state's form, and clear densities."""
        self.value = _coerce_value(value, self.form, self.support)
        self.reset_densities()

    # --- target density bookkeeping --------------------------------------

    def reset_densities(self) -> None:
        """Return every density field to its unset value."""
        for name in DENSITY_FIELDS:
            setattr(self, name, self._blank_field(name))

    def sum_target(self) -> None:
        """
        Set every target field of each order to likelihood + prior, for
        orders where both components are populated.
        """
        for name in DENSITY_FIELDS:
            if FIELD_COMPONENT[name] != 'target':
                continue
            prefix = name[:-len('target')]
            lik = getattr(self, prefix + 'likelihood')
            pri = getattr(self, prefix + 'prior')
            if _is_set(lik) and _is_set(pri):
                setattr(self, name, lik + pri)

    # --- diagnostics -----------------------------------------------------

    @property
    def diagnostics(self) -> dict:
        """Diagnostics as a key -> value mapping, built on request."""
        return dict(zip(self.diagnostickeys, self.diagnosticvalues))

    def set_diagnostic(self, key: str, value) -> None:
        """Set a diagnostic value, appending the key if it is new."""
        try:
            self.diagnosticvalues[self.diagnostickeys.index(key)] = value
        except ValueError:
            self.diagnostickeys.append(key)
            self.diagnosticvalues.append(value)

    # --- copying ---------------------------------------------------------

    def copy(self):
        """Independent snapshot including density fields and diagnostics."""
        new = type(self).__new__(type(self))
        new.update_from(self)
        return new

    def update_from(self, other: 'ParameterState') -> None:
        """Copy every field of other into this state in place."""
        self.support = other.support
        self.monitor = other.monitor
        self.value = _copy_field(other.value)
        for name in DENSITY_FIELDS:
            setattr(self, name, _copy_field(getattr(other, name)))
        self.diagnostickeys = list(other.diagnostickeys)
        self.diagnosticvalues = list(other.diagnosticvalues)

    def __repr__(self):
        return (f"{type(self).__name__}(value={self.value!r}, "
                f"logtarget={self.logtarget!r}, support={self.support})")


class UnivariateParameterState(ParameterState):
    """Scalar parameter. Gradients are scalars; tensors are not defined."""

    form = VariateForm.UNIVARIATE
    max_order = 1

    def _field_shape(self, order: int):
        return ()


class MultivariateParameterState(ParameterState):
    """Vector parameter of length d."""

    form = VariateForm.MULTIVARIATE
    max_order = 3

    def _field_shape(self, order: int):
        return (self.value.shape[0],) * order


PARAMETER_STATE_TYPES = {
    VariateForm.UNIVARIATE: UnivariateParameterState,
    VariateForm.MULTIVARIATE: MultivariateParameterState,
}


def parameter_state(value=None, size: Optional[int] = None,
                    support=ValueSupport.CONTINUOUS,
                    monitor: Iterable = ('logtarget',),
                    diagnostickeys: Iterable[str] = (),
                    diagnosticvalues: Optional[Iterable[Any]] = None,
                    form: Optional[VariateForm] = None) -> ParameterState:
    """
    Build a parameter state from a value or from a declared size.

    Args:
        value: Scalar or vector initial value. If None, `size` must be given
               and a NaN-filled vector of that size is created (or a NaN
               scalar when size is None and form is univariate).
        size: Declared vector length
        support: 'continuous' or 'discrete'
        monitor: Density fields the state populates
        diagnostickeys, diagnosticvalues: Parallel diagnostics sequences
        form: Expected variate form; a value of a different rank raises
              ShapeMismatchError

    Raises:
        ShapeMismatchError: Wrong rank, size mismatch or matrix value
        DiagnosticsLengthError: Keys and values of different lengths
        ConfigurationError: Monitor fields undefined for this kind of state
    """
    if value is None:
        if size is None:
            if form not in (None, VariateForm.UNIVARIATE):
                raise ShapeMismatchError(f"A {form} parameter needs a value or a size")
            value = np.nan
        else:
            value = np.full(int(size), np.nan)
    if form is None:
        form = variate_form_of(value)
    if form == VariateForm.MATRIXVARIATE:
        raise ShapeMismatchError("Matrix-variate parameters are not supported")
    if size is not None and np.ndim(value) == 1 and len(value) != size:
        raise ShapeMismatchError(
            f"Value of length {len(value)} does not match declared size {size}"
        )
    state_type = PARAMETER_STATE_TYPES[form]
    return state_type(value, monitor=monitor, support=support,
                      diagnostickeys=diagnostickeys, diagnosticvalues=diagnosticvalues)


def _is_set(x) -> bool:
    """True if a density field holds a computed value."""
    if np.ndim(x) == 0:
        return not np.isnan(x)
    return np.size(x) > 0 and not np.all(np.isnan(x))


def _copy_field(x):
    return np.copy(x) if isinstance(x, np.ndarray) else x


def default_state(variable, value, monitor: Optional[Iterable] = None,
                  diagnostickeys: Iterable[str] = (),
                  diagnosticvalues: Optional[Iterable[Any]] = None) -> VariableState:
    """
    Build the state for a variable from an initial value.

    Existing states are returned unchanged. Parameters get a parameter state
    honouring their declared support, size and form; every other kind gets
    the basic state matching the rank of the value.
    """
    if isinstance(value, VariableState):
        if getattr(variable, 'is_parameter', False) and not isinstance(value, ParameterState):
            value = value.value
        else:
            return value
    if getattr(variable, 'is_parameter', False):
        return parameter_state(
            value, size=variable.size, support=variable.support,
            monitor=('logtarget',) if monitor is None else monitor,
            diagnostickeys=diagnostickeys, diagnosticvalues=diagnosticvalues,
            form=variable.form,
        )
    return basic_state(value)
