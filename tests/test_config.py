"""
Configuration Tests

Tests job configuration and output settings:
- clean_config defaults and key checking
- validate_job_config error collection
- Random generator seeding
- OutputSettings / build_output_settings

Run with: pytest tests/test_config.py -v
"""

import numpy as np
import pytest

from mcgraph import ConfigurationError, OutputSettings, StateField, build_output_settings
from mcgraph.error_handling import validate_job_config
from mcgraph.mcmc import clean_config, gen_rng


# ============================================================================
# JOB CONFIGURATION
# ============================================================================

class TestCleanConfig:
    """Test defaults and key checking."""

    def test_defaults(self):
        config = clean_config({})
        assert config == {
            'rng_seed': 42,
            'verbose': False,
            'adapt_end': None,
            'check_initial': True,
        }

    def test_none_is_empty(self):
        assert clean_config(None)['rng_seed'] == 42

    def test_user_values_kept(self):
        config = clean_config({'rng_seed': 7, 'adapt_end': 100})
        assert config['rng_seed'] == 7
        assert config['adapt_end'] == 100

    def test_input_not_modified(self):
        user = {'verbose': True}
        clean_config(user)
        assert user == {'verbose': True}

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError, match="num_chains"):
            clean_config({'num_chains': 4})


class TestValidateJobConfig:
    """Test value checks."""

    @pytest.mark.parametrize("config", [
        {'rng_seed': -1},
        {'rng_seed': 1.5},
        {'rng_seed': True},
        {'adapt_end': -5},
        {'adapt_end': '10'},
        {'verbose': 'yes'},
        {'check_initial': 1},
    ])
    def test_invalid_values(self, config):
        with pytest.raises(ConfigurationError):
            validate_job_config(config)

    def test_errors_collected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_job_config({'rng_seed': -1, 'adapt_end': -1})
        message = str(exc_info.value)
        assert "rng_seed" in message and "adapt_end" in message

    def test_valid(self):
        validate_job_config({'rng_seed': None, 'adapt_end': np.int64(3), 'verbose': True})


class TestGenRng:
    """Test job random generators."""

    def test_reproducible(self):
        a = gen_rng(11).standard_normal(5)
        b = gen_rng(11).standard_normal(5)
        np.testing.assert_array_equal(a, b)

    def test_seeds_differ(self):
        assert gen_rng(1).random() != gen_rng(2).random()


# ============================================================================
# OUTPUT SETTINGS
# ============================================================================

class TestOutputSettings:
    """Test monitor and diagnostics settings."""

    def test_value_always_recorded(self):
        settings = OutputSettings(monitor=('logtarget',))
        assert settings.monitor == ('value', 'logtarget')

    def test_field_enum_accepted(self):
        settings = OutputSettings(monitor=(StateField.GRADLOGTARGET,))
        assert settings.monitor == ('value', 'gradlogtarget')
        assert settings.max_order == 1

    def test_unknown_field(self):
        with pytest.raises(ConfigurationError):
            OutputSettings(monitor=('posterior',))

    def test_diagnostic_keys(self):
        assert OutputSettings().diagnostic_keys(['accept', 'ndoublings']) == ('accept', 'ndoublings')
        settings = OutputSettings(diagnostics='ndoublings')
        assert settings.diagnostic_keys(['accept', 'ndoublings']) == ('ndoublings',)
        assert settings.diagnostic_keys(['accept']) == ()

    def test_build_from_dict(self):
        settings = build_output_settings({'monitor': ['logtarget', 'logtarget']})
        assert settings.monitor == ('value', 'logtarget')
        assert build_output_settings(None) == OutputSettings()
        assert build_output_settings(settings) is settings

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError):
            build_output_settings({'monitor': ['value'], 'thin': 10})
