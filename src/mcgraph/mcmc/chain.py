"""
Output chains.

A Chain holds the retained states of one parameter: one preallocated array
per monitored field (one row per retained iteration), the retained
iteration numbers, and a parallel diagnostics array whose columns are named
by `diagnostickeys`. States are copied into the arrays, so later changes to
live states never alter the recorded history.

    chain.value            (n, ...) retained values
    chain['logtarget']     (n,) any monitored field
    chain.diagnostics      {'accept': (n,), ...}, built on first access
    chain.mean(), chain.std(), chain.acceptance(), chain.ess()
"""

from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np

from ..error_handling import ConfigurationError
from ..settings import FIELD_ORDER, StateField
from ..states import ParameterState
from .diagnostics import effective_sample_size


class Chain:
    """
    Retained states and diagnostics of one parameter.

    Args:
        key: Parameter key
        n: Number of retained iterations to preallocate
        template: Parameter state giving the value and field shapes
        monitor: Fields to record (value is always recorded)
        diagnostickeys: Diagnostics to record
    """

    def __init__(self, key: str, n: int, template: ParameterState,
                 monitor: Sequence[str] = ('value',), diagnostickeys: Iterable[str] = ()):
        self.key = key
        self.n = int(n)
        self.monitor: Tuple[str, ...] = tuple(monitor)
        self.diagnostickeys: Tuple[str, ...] = tuple(diagnostickeys)
        self.form = template.form
        self.support = template.support

        self._fields: Dict[str, np.ndarray] = {}
        value_dtype = np.int64 if not template.is_continuous else np.float64
        for name in self.monitor:
            if name == 'value':
                shape = np.shape(template.value)
                self._fields[name] = np.zeros((self.n,) + shape, dtype=value_dtype)
            else:
                order = FIELD_ORDER[StateField(name)]
                shape = template._field_shape(order) if order else ()
                self._fields[name] = np.full((self.n,) + shape, np.nan)

        self.iterations = np.zeros(self.n, dtype=np.int64)
        self.diagnosticvalues = np.full((self.n, len(self.diagnostickeys)), np.nan)
        self.count = 0
        self._diagnostics: Optional[Dict[str, np.ndarray]] = None

    # --- recording -------------------------------------------------------

    def record(self, state: ParameterState, iteration: int) -> None:
        """Copy the monitored fields and diagnostics of state into the next row."""
        if self.count >= self.n:
            raise ConfigurationError(f"Chain '{self.key}' is full ({self.n} rows)")
        i = self.count
        for name, arr in self._fields.items():
            arr[i] = getattr(state, name)
        diagnostics = state.diagnostics
        for j, dkey in enumerate(self.diagnostickeys):
            value = diagnostics.get(dkey)
            if value is not None:
                self.diagnosticvalues[i, j] = float(value)
        self.iterations[i] = iteration
        self.count += 1
        self._diagnostics = None

    # --- read access -----------------------------------------------------

    def __getitem__(self, name: str) -> np.ndarray:
        try:
            return self._fields[name][:self.count]
        except KeyError:
            raise KeyError(
                f"'{name}' was not monitored for '{self.key}'. Monitored: {', '.join(self.monitor)}"
            ) from None

    @property
    def value(self) -> np.ndarray:
        return self['value']

    @property
    def fields(self) -> Tuple[str, ...]:
        return self.monitor

    @property
    def diagnostics(self) -> Dict[str, np.ndarray]:
        """Diagnostic key -> (n,) array, built on first access."""
        if self._diagnostics is None:
            self._diagnostics = {
                k: self.diagnosticvalues[:self.count, j]
                for j, k in enumerate(self.diagnostickeys)
            }
        return self._diagnostics

    def __len__(self):
        return self.count

    def _flat(self) -> np.ndarray:
        return self.value.reshape(self.count, -1).astype(np.float64)

    def mean(self):
        m = np.mean(self.value, axis=0)
        return float(m) if np.ndim(m) == 0 else m

    def var(self, ddof: int = 1):
        v = np.var(self.value, axis=0, ddof=ddof)
        return float(v) if np.ndim(v) == 0 else v

    def std(self, ddof: int = 1):
        s = np.std(self.value, axis=0, ddof=ddof)
        return float(s) if np.ndim(s) == 0 else s

    def acceptance(self) -> float:
        """Fraction of retained iterations whose transition was accepted."""
        if 'accept' not in self.diagnostickeys:
            raise KeyError(f"Chain '{self.key}' did not record 'accept'")
        if self.count == 0:
            return float('nan')
        return float(np.mean(self.diagnostics['accept']))

    acceptance_rate = acceptance

    def ess(self):
        """Effective sample size of each value coordinate."""
        ess = effective_sample_size(self._flat())
        return float(ess[0]) if self.value.ndim == 1 else ess.reshape(self.value.shape[1:])

    def __repr__(self):
        return (f"Chain(key='{self.key}', samples={self.count}, "
                f"monitor={list(self.monitor)}, diagnostics={list(self.diagnostickeys)})")
