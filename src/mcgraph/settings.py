"""
State field and output settings configuration.

This module defines the canonical set of parameter-state fields and the
OutputSettings capability struct that decides which of them are populated
and recorded during a run.

Each field has a derivative order:
    0 - value and log-densities
    1 - gradients
    2 - metric tensors
    3 - tensor derivatives

OutputSettings is built once at job set-up time (from an `outopts` dict or
passed directly) and validated against the sampler and the parameter, so the
sampling loop never checks monitor flags itself.

To add a new field:
1. Add it to StateField
2. Add its order to FIELD_ORDER
3. Add the attribute to the parameter states in states.py
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from .error_handling import ConfigurationError


class StateField(str, Enum):
    """Names of the optional fields a parameter state can carry."""
    VALUE = 'value'
    LOGLIKELIHOOD = 'loglikelihood'
    LOGPRIOR = 'logprior'
    LOGTARGET = 'logtarget'
    GRADLOGLIKELIHOOD = 'gradloglikelihood'
    GRADLOGPRIOR = 'gradlogprior'
    GRADLOGTARGET = 'gradlogtarget'
    TENSORLOGLIKELIHOOD = 'tensorloglikelihood'
    TENSORLOGPRIOR = 'tensorlogprior'
    TENSORLOGTARGET = 'tensorlogtarget'
    DTENSORLOGLIKELIHOOD = 'dtensorloglikelihood'
    DTENSORLOGPRIOR = 'dtensorlogprior'
    DTENSORLOGTARGET = 'dtensorlogtarget'

    def __str__(self):
        return self.value


# Derivative order of each field
FIELD_ORDER = {
    StateField.VALUE: 0,
    StateField.LOGLIKELIHOOD: 0,
    StateField.LOGPRIOR: 0,
    StateField.LOGTARGET: 0,
    StateField.GRADLOGLIKELIHOOD: 1,
    StateField.GRADLOGPRIOR: 1,
    StateField.GRADLOGTARGET: 1,
    StateField.TENSORLOGLIKELIHOOD: 2,
    StateField.TENSORLOGPRIOR: 2,
    StateField.TENSORLOGTARGET: 2,
    StateField.DTENSORLOGLIKELIHOOD: 3,
    StateField.DTENSORLOGPRIOR: 3,
    StateField.DTENSORLOGTARGET: 3,
}

# Fields other than the value (the value is always present)
DENSITY_FIELDS = tuple(f.value for f in StateField if f != StateField.VALUE)

# Component of the target density each field belongs to
FIELD_COMPONENT = {
    f.value: ('likelihood' if 'likelihood' in f.value else
              'prior' if 'prior' in f.value else
              'target' if 'target' in f.value else None)
    for f in StateField
}

# Field prefix per derivative order
ORDER_PREFIX = {0: 'log', 1: 'gradlog', 2: 'tensorlog', 3: 'dtensorlog'}

DEFAULT_MONITOR = ('value',)


def field_name(order: int, component: str) -> str:
    """Name of the field holding the given order of the given component."""
    return ORDER_PREFIX[order] + component


def normalize_fields(fields: Optional[Iterable[Union[str, StateField]]]) -> Tuple[str, ...]:
    """
    Convert field names or StateField members to a tuple of unique names.

    Raises:
        ConfigurationError: If a name is not a known state field
    """
    if fields is None:
        return ()
    if isinstance(fields, (str, StateField)):
        fields = (fields,)
    names = []
    for f in fields:
        try:
            name = StateField(f).value
        except ValueError:
            raise ConfigurationError(f"Unknown state field: {f!r}") from None
        if name not in names:
            names.append(name)
    return tuple(names)


@dataclass(frozen=True)
class OutputSettings:
    """
    Which state fields are recorded in the output chain, and which
    diagnostics.

    Fields:
        monitor: State fields copied into the chain every retained iteration.
                 The value is always recorded.
        diagnostics: Diagnostic keys recorded per retained iteration. None
                     means "all diagnostics the sampler produces".
    """
    monitor: Tuple[str, ...] = DEFAULT_MONITOR
    diagnostics: Optional[Tuple[str, ...]] = None

    def __post_init__(self):
        monitor = normalize_fields(self.monitor)
        if 'value' not in monitor:
            monitor = ('value',) + monitor
        object.__setattr__(self, 'monitor', monitor)
        if self.diagnostics is not None:
            diagnostics = self.diagnostics
            if isinstance(diagnostics, str):
                diagnostics = (diagnostics,)
            object.__setattr__(self, 'diagnostics', tuple(str(d) for d in diagnostics))

    @property
    def max_order(self) -> int:
        """Highest derivative order among monitored fields."""
        return max(FIELD_ORDER[StateField(f)] for f in self.monitor)

    def diagnostic_keys(self, available: Iterable[str]) -> Tuple[str, ...]:
        """Resolve the recorded diagnostic keys against what a sampler produces."""
        available = tuple(available)
        if self.diagnostics is None:
            return available
        return tuple(k for k in self.diagnostics if k in available)


def build_output_settings(outopts: Union[None, Dict[str, Any], OutputSettings]) -> OutputSettings:
    """
    Convert an `outopts` dict into OutputSettings.

    Args:
        outopts: None, an OutputSettings, or a dict with optional keys
                 'monitor' and 'diagnostics'

    Returns:
        OutputSettings

    Raises:
        ConfigurationError: If the dict has unknown keys or unknown field names
    """
    if outopts is None:
        return OutputSettings()
    if isinstance(outopts, OutputSettings):
        return outopts
    unknown = set(outopts) - {'monitor', 'diagnostics'}
    if unknown:
        raise ConfigurationError(f"Unknown output options: {sorted(unknown)}")
    return OutputSettings(
        monitor=outopts.get('monitor', DEFAULT_MONITOR),
        diagnostics=outopts.get('diagnostics'),
    )
