"""
Job Configuration.

Jobs take a plain dict of options. All keys use lowercase with underscores.

    rng_seed       Seed of the job's numpy Generator (default 42)
    verbose        Log tuner window summaries (default False)
    adapt_end      Last iteration in which tuners adapt (default None, the
                   end of burn-in)
    check_initial  Require a finite initial log-target (default True)
"""

from typing import Any, Dict, Optional

import numpy as np

from ..error_handling import ConfigurationError, validate_job_config

DEFAULT_RNG_SEED = 42

CONFIG_KEYS = ('rng_seed', 'verbose', 'adapt_end', 'check_initial')


def clean_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Cleans the config dict and sets defaults.

    Raises:
        ConfigurationError: On unknown keys or invalid values
    """
    config = dict(config or {})

    unknown = set(config) - set(CONFIG_KEYS)
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration keys: {sorted(unknown)}. Valid keys: {', '.join(CONFIG_KEYS)}"
        )

    config.setdefault('rng_seed', DEFAULT_RNG_SEED)
    config.setdefault('verbose', False)
    config.setdefault('adapt_end', None)
    config.setdefault('check_initial', True)

    validate_job_config(config)
    return config


def gen_rng(seed: Optional[int] = DEFAULT_RNG_SEED) -> np.random.Generator:
    """Random generator for one job (None draws fresh OS entropy)."""
    return np.random.default_rng(seed)
