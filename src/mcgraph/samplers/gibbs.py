"""
Gibbs sweep over a model graph.

One sweep visits every variable in topological order:

    Constant        left unchanged
    Data            refreshed from `update(values)` when it has one
    Transformation  recomputed from `transform(values)`
    Parameter       a draw from `conditional(values, rng)`, or one step of
                    its assigned kernel on the full conditional

While one parameter is updated, every other parameter's state is left
untouched; the shared `values` mapping is refreshed after each sub-step so
later variables condition on the new value.
"""

from typing import Dict, Mapping, MutableMapping, Optional

import numpy as np

from ..error_handling import ConfigurationError
from ..states import ParameterState, VariableState, basic_state
from ..variables import VariableKind
from .common import MCSampler, StepRecord, TargetDensity


class GibbsSweep:
    """
    Block/conditional Gibbs sweep.

    Args:
        model: GenericModel to sweep (must be acyclic)
        samplers: Parameter key -> kernel. Parameters without an entry are
                  drawn from their `conditional`.

    Raises:
        CyclicGraphError: If the model has no topological order
        ConfigurationError: If a parameter has neither a kernel nor a
                            conditional, or a kernel is assigned to an
                            unknown or non-parameter key
    """

    name = "Gibbs"

    def __init__(self, model, samplers: Optional[Mapping[str, MCSampler]] = None):
        self.order = model.topological_order()
        self.samplers: Dict[str, MCSampler] = dict(samplers or {})

        errors = []
        parameter_keys = {p.key for p in model.parameters()}
        for key in self.samplers:
            if key not in parameter_keys:
                errors.append(f"'{key}' is not a parameter of the model")
        for p in model.parameters():
            if p.key not in self.samplers and p.conditional is None:
                errors.append(f"Parameter '{p.key}' has neither a sampler nor a conditional")
        if errors:
            raise ConfigurationError("Invalid Gibbs set-up:\n  " + "\n  ".join(errors))

    def diagnostickeys(self, key: str):
        sampler = self.samplers.get(key)
        return sampler.diagnostickeys if sampler is not None else ('accept',)

    def required_fields(self, key: str):
        sampler = self.samplers.get(key)
        return sampler.required_fields if sampler is not None else ()

    def sweep(self, states: MutableMapping[str, VariableState],
              values: MutableMapping, rng: np.random.Generator) -> Dict[str, StepRecord]:
        """
        Run one sweep, updating states and values in place.

        Returns:
            Parameter key -> StepRecord of its sub-step
        """
        records = {}
        for v in self.order:
            if v.kind == VariableKind.CONSTANT:
                continue
            if v.kind == VariableKind.DATA:
                if v.update is not None:
                    states[v.key] = basic_state(v.update(values))
                    values[v.key] = states[v.key].value
            elif v.kind == VariableKind.TRANSFORMATION:
                states[v.key] = basic_state(v.compute(values))
                values[v.key] = states[v.key].value
            else:
                records[v.key] = self.update_parameter(v, states[v.key], values, rng)
                values[v.key] = states[v.key].value
        return records

    def update_parameter(self, parameter, state: ParameterState, values: Mapping,
                         rng: np.random.Generator) -> StepRecord:
        """One conditional update of a single parameter."""
        target = TargetDensity(parameter, values)
        sampler = self.samplers.get(parameter.key)
        if sampler is None:
            state.set_value(parameter.sample_conditional(values, rng))
            target.evaluate(state)
            state.set_diagnostic('accept', True)
            return StepRecord(True, 1.0, {'accept': True})

        # Densities depend on the other variables, which may have moved
        target.evaluate(state)
        return sampler.step(state, target, rng)
