"""
MCMC Jobs - chain drivers.

A job binds a model, its kernels and tuners, an iteration range and the
initial values, and runs the chain:

    BasicMCJob  one parameter sampled jointly by one kernel
    GibbsJob    Gibbs sweep over every parameter of the model

Lifecycle (JobStatus): CONFIGURING -> BURNING_IN -> SAMPLING -> DONE.
Everything that can be wrong with a job is checked while it is built; a
built job only fails inside `run` on errors raised by user callbacks.

Each iteration:
1. Kernel transition (or Gibbs sweep)
2. Tuner update, while iteration <= adapt_end (default: end of burn-in)
3. Retained iterations are copied into the output chain(s)

Example:
    job = build_job(model, 'rwm', MCRange.from_burnin(10000, 1000),
                    {'y': data, 'mu': 0.0}, tuner=AcceptanceRateTuner())
    chain = run(job)
"""

import copy
import time
from datetime import timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import numpy as np

from ..error_handling import ConfigurationError
from ..settings import OutputSettings, build_output_settings
from ..states import ParameterState, VariableState
from ..samplers.common import MCSampler, StepRecord, TargetDensity
from ..samplers.dispatch import make_sampler
from ..samplers.gibbs import GibbsSweep
from ..variables import VariableKind
from .chain import Chain
from .config import clean_config, gen_rng
from .tuners import Tuner, VanillaTuner, make_tuner
from .types import JobStatus, MCRange, as_mcrange

import logging
logger = logging.getLogger('mcgraph')


class MCJob:
    """
    Shared job machinery: configuration, initial states, status and the
    iteration loop. Subclasses implement `_iterate` and `_record`.
    """

    name = "MCJob"

    def __init__(self, model, mcrange, initial_values: Mapping[str, Any],
                 outopts: Union[None, Dict[str, Any], OutputSettings] = None,
                 config: Optional[Dict[str, Any]] = None):
        self.status = JobStatus.CONFIGURING
        self.model = model
        self.range: MCRange = as_mcrange(mcrange)
        self.config = clean_config(config)
        self.outopts = build_output_settings(outopts)
        self.rng = gen_rng(self.config['rng_seed'])
        self.iteration = 0
        self.output = None
        self._adapting = True

        self.order = model.topological_order()
        self._check_initial_values(initial_values)
        self.initial_values = dict(initial_values)
        self.states: Dict[str, VariableState] = {}
        self.values: Dict[str, Any] = {}

    # --- configuration ---------------------------------------------------

    @property
    def adapt_end(self) -> int:
        """Last iteration in which tuners adapt."""
        adapt_end = self.config['adapt_end']
        return self.range.burnin if adapt_end is None else adapt_end

    def reseed(self, seed: Optional[int]) -> None:
        """Replace the job's random generator (before running)."""
        if self.status != JobStatus.CONFIGURING:
            raise ConfigurationError("Cannot reseed a job that has started")
        self.config['rng_seed'] = seed
        self.rng = gen_rng(seed)

    def _make_tuner(self, spec) -> Tuner:
        tuner = copy.deepcopy(make_tuner(spec if spec is not None else VanillaTuner()))
        if self.config['verbose'] and hasattr(tuner, 'verbose'):
            tuner.verbose = True
        return tuner

    def _check_initial_values(self, initial_values: Mapping[str, Any]) -> None:
        errors = []
        keys = set(self.model.keys())
        for key in initial_values:
            if key not in keys:
                errors.append(f"'{key}' is not a variable of the model")
        for v in self.order:
            if v.kind != VariableKind.TRANSFORMATION and v.key not in initial_values:
                errors.append(f"No initial value for {str(v.kind).lower()} '{v.key}'")
        if errors:
            raise ConfigurationError("Invalid initial values:\n  " + "\n  ".join(errors))

    def _monitor_for(self, required) -> tuple:
        fields = tuple(f for f in self.outopts.monitor if f != 'value')
        return tuple(dict.fromkeys(tuple(required) + fields))

    def _init_states(self, parameter_setup: Callable) -> None:
        """
        Build every variable's state in topological order.

        parameter_setup(parameter, value) -> ParameterState builds (and
        validates) the state of each parameter.
        """
        for v in self.order:
            if v.kind == VariableKind.TRANSFORMATION:
                state = v.default_state(v.compute(self.values))
            elif v.kind == VariableKind.PARAMETER:
                state = parameter_setup(v, self.initial_values[v.key])
            else:
                state = v.default_state(self.initial_values[v.key])
            self.states[v.key] = state
            self.values[v.key] = state.value

    def _setup_parameter(self, parameter, value, required, diagnostickeys) -> ParameterState:
        monitor = self._monitor_for(required)
        missing = parameter.missing_fields(monitor)
        if missing:
            raise ConfigurationError(
                f"Parameter '{parameter.key}' cannot compute required fields: {', '.join(missing)}"
            )
        if isinstance(value, ParameterState):
            value = value.value
        return parameter.default_state(value, monitor=monitor, diagnostickeys=diagnostickeys)

    def _check_initial_density(self, parameter, state: ParameterState) -> None:
        parameter.evaluate(state, self.values)
        if self.config['check_initial'] and 'logtarget' in state.monitor:
            if not np.isfinite(state.logtarget):
                raise ConfigurationError(
                    f"Initial log-target of '{parameter.key}' is {state.logtarget}; "
                    f"start the chain inside the support"
                )

    def _new_chain(self, key: str, state: ParameterState, diagnostickeys) -> Chain:
        return Chain(key, self.range.npost, state, monitor=self.outopts.monitor,
                     diagnostickeys=self.outopts.diagnostic_keys(diagnostickeys))

    # --- running ---------------------------------------------------------

    def _iterate(self) -> None:
        raise NotImplementedError

    def _record(self) -> None:
        raise NotImplementedError

    def _finalize_tuners(self) -> None:
        raise NotImplementedError

    def _stop_adapting(self) -> None:
        if self._adapting:
            self._adapting = False
            self._finalize_tuners()

    def run(self):
        """
        Run the chain over iterations 1..nsteps.

        Returns:
            The job's output (a Chain, or a dict key -> Chain)

        Raises:
            ConfigurationError: If the job has already run
        """
        if self.status == JobStatus.DONE:
            raise ConfigurationError(f"{self.name} job has already run; build a new job")

        r = self.range
        logger.info(f"--- {self.name} RUN: {r.nsteps} iterations, burn-in {r.burnin}, "
                    f"thinning {r.thinning} ---")
        start = time.perf_counter()

        if self.adapt_end == 0:
            self._stop_adapting()
        for i in range(1, r.nsteps + 1):
            self.iteration = i
            self.status = JobStatus.BURNING_IN if i <= r.burnin else JobStatus.SAMPLING
            self._iterate()
            if i == self.adapt_end:
                self._stop_adapting()
            if r.is_retained(i):
                self._record()
        self._stop_adapting()

        self.status = JobStatus.DONE
        wall_time = time.perf_counter() - start
        logger.info(f"{self.name} run complete: {r.npost} samples retained in "
                    f"{timedelta(seconds=int(wall_time))} ({wall_time:.2f}s)")
        return self.output

    def __repr__(self):
        return f"{type(self).__name__}(model={self.model!r}, range={self.range!r}, status={self.status})"


# ============================================================================
# BASIC JOB
# ============================================================================

class BasicMCJob(MCJob):
    """
    Job sampling the single parameter of a model with one kernel.

    Args:
        model: GenericModel with exactly one Parameter
        sampler: MCSampler, SamplerType or name; deep-copied into the job
        mcrange: MCRange, range, inclusive (first, last) tuple or int
        initial_values: key -> value for the parameter and every constant
                        and data variable
        tuner: Tuner or tuner name (default: VanillaTuner)
        outopts: Output options dict or OutputSettings
        config: Job configuration dict (see mcmc.config)

    Raises:
        ConfigurationError: Wrong parameter count, missing initial values,
                            kernel/parameter mismatch, non-finite initial
                            log-target
        RangeError: Invalid range
        CyclicGraphError: Cyclic model graph
    """

    name = "BasicMCJob"

    def __init__(self, model, sampler: Union[MCSampler, str], mcrange,
                 initial_values: Mapping[str, Any], tuner: Union[None, Tuner, str] = None,
                 outopts=None, config: Optional[Dict[str, Any]] = None):
        super().__init__(model, mcrange, initial_values, outopts, config)

        parameters = model.parameters()
        if len(parameters) != 1:
            raise ConfigurationError(
                f"BasicMCJob needs a model with exactly one Parameter, got {len(parameters)}; "
                f"use GibbsJob for several"
            )
        self.parameter = parameters[0]
        self.sampler: MCSampler = copy.deepcopy(make_sampler(sampler))
        self.tuner = self._make_tuner(tuner)
        self.tuner.validate(self.sampler)

        self._init_states(lambda p, value: self._setup_parameter(
            p, value, self.sampler.required_fields, self.sampler.diagnostickeys))
        self.state: ParameterState = self.states[self.parameter.key]
        self.sampler.validate(self.state)
        self._check_initial_density(self.parameter, self.state)
        self.sampler.reset(self.state)

        descendants = {v.key for v in model.descendants(self.parameter)}
        self.downstream = [v for v in self.order
                           if v.kind == VariableKind.TRANSFORMATION and v.key in descendants]
        self.target = TargetDensity(self.parameter, self.values)
        self.output = self._new_chain(self.parameter.key, self.state, self.sampler.diagnostickeys)
        self.last_record: Optional[StepRecord] = None

    def _iterate(self):
        record = self.sampler.step(self.state, self.target, self.rng)
        self.values[self.parameter.key] = self.state.value
        for v in self.downstream:
            self.states[v.key] = v.default_state(v.compute(self.values))
            self.values[v.key] = self.states[v.key].value
        if self._adapting:
            self.tuner.update(self.sampler, record, self.iteration)
        self.last_record = record

    def _record(self):
        self.output.record(self.state, self.iteration)

    def _finalize_tuners(self):
        self.tuner.finalize(self.sampler)


# ============================================================================
# GIBBS JOB
# ============================================================================

class GibbsJob(MCJob):
    """
    Job running Gibbs sweeps over every parameter of a model.

    Args:
        model: GenericModel (acyclic)
        mcrange: Range specification
        initial_values: key -> value for every parameter, constant and data
                        variable
        samplers: Parameter key -> kernel (instance, SamplerType or name).
                  Parameters without one are drawn from their conditional.
        tuners: Tuner applied (as a copy) to every kernel, or key -> Tuner
        outopts: Output options, applied to every parameter's chain
        config: Job configuration dict

    Output: dict parameter key -> Chain.
    """

    name = "GibbsJob"

    def __init__(self, model, mcrange, initial_values: Mapping[str, Any],
                 samplers: Optional[Mapping[str, Any]] = None,
                 tuners: Union[None, Tuner, str, Mapping[str, Any]] = None,
                 outopts=None, config: Optional[Dict[str, Any]] = None):
        super().__init__(model, mcrange, initial_values, outopts, config)

        kernels = {key: copy.deepcopy(make_sampler(s)) for key, s in (samplers or {}).items()}
        self.sweep = GibbsSweep(model, kernels)

        if isinstance(tuners, Mapping):
            unknown = set(tuners) - set(kernels)
            if unknown:
                raise ConfigurationError(f"Tuners given for parameters without a sampler: {sorted(unknown)}")
            self.tuners = {key: self._make_tuner(tuners.get(key)) for key in kernels}
        else:
            self.tuners = {key: self._make_tuner(tuners) for key in kernels}
        for key, tuner in self.tuners.items():
            tuner.validate(kernels[key])

        self._init_states(lambda p, value: self._setup_parameter(
            p, value, self.sweep.required_fields(p.key), self.sweep.diagnostickeys(p.key)))
        for p in model.parameters():
            state = self.states[p.key]
            if p.key in kernels:
                kernels[p.key].validate(state)
                self._check_initial_density(p, state)
                kernels[p.key].reset(state)
            elif state.monitor:
                self._check_initial_density(p, state)

        self.output: Dict[str, Chain] = {
            p.key: self._new_chain(p.key, self.states[p.key], self.sweep.diagnostickeys(p.key))
            for p in model.parameters()
        }
        self.last_records: Dict[str, StepRecord] = {}

    @property
    def samplers(self) -> Dict[str, MCSampler]:
        return self.sweep.samplers

    def _iterate(self):
        records = self.sweep.sweep(self.states, self.values, self.rng)
        if self._adapting:
            for key, tuner in self.tuners.items():
                tuner.update(self.sweep.samplers[key], records[key], self.iteration)
        self.last_records = records

    def _record(self):
        for key, chain in self.output.items():
            chain.record(self.states[key], self.iteration)

    def _finalize_tuners(self):
        for key, tuner in self.tuners.items():
            tuner.finalize(self.sweep.samplers[key])


# ============================================================================
# ENTRY POINTS
# ============================================================================

def build_job(model, sampler, mcrange, initial_values: Mapping[str, Any],
              tuner=None, outopts=None, **config) -> MCJob:
    """
    Build a job for a model.

    Args:
        sampler: A kernel (instance, SamplerType or name) for a BasicMCJob;
                 None, 'gibbs' or a dict key -> kernel for a GibbsJob
        tuner: Tuner (or dict key -> Tuner for Gibbs)
        **config: Job configuration (rng_seed, verbose, adapt_end,
                  check_initial)
    """
    if sampler is None or isinstance(sampler, Mapping) or (
            isinstance(sampler, str) and sampler.lower() == 'gibbs'):
        samplers = sampler if isinstance(sampler, Mapping) else None
        return GibbsJob(model, mcrange, initial_values, samplers=samplers, tuners=tuner,
                        outopts=outopts, config=config)
    return BasicMCJob(model, sampler, mcrange, initial_values, tuner=tuner,
                      outopts=outopts, config=config)


def run(job: MCJob):
    """Run a job and return its output."""
    return job.run()


def run_chains(job_factory: Callable[[int], MCJob], n_chains: int) -> List:
    """
    Run independent chains one after the other.

    Args:
        job_factory: chain index -> new job
        n_chains: Number of chains

    Returns:
        List of the jobs' outputs. Chain i is seeded with the job's rng_seed
        plus i.
    """
    if n_chains < 1:
        raise ConfigurationError(f"n_chains must be >= 1, got {n_chains}")
    outputs = []
    for i in range(n_chains):
        job = job_factory(i)
        seed = job.config['rng_seed']
        if seed is not None:
            job.reseed(seed + i)
        logger.info(f"Chain {i + 1}/{n_chains}")
        outputs.append(job.run())
    return outputs
