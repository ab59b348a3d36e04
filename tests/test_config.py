"""Unit tests for config.py module."""

import dataclasses

import pytest

from adaptive_reservoir.config import (
    PARAM_RANGES,
    ControllerConfig,
    Hyperparameters,
    SimulationConfig,
)
from adaptive_reservoir.errors import ConfigurationError


class TestSimulationConfig:
    """Test SimulationConfig validation."""

    def test_defaults_are_valid(self):
        """Test that the default configuration constructs."""
        config = SimulationConfig()
        assert config.initial_neurons <= config.max_neurons
        assert config.density_min <= config.initial_density <= config.density_max

    def test_frozen(self):
        """Test that the configuration is immutable."""
        config = SimulationConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.max_neurons = 10

    def test_replace_revalidates(self):
        """Test that dataclasses.replace goes through validation."""
        config = SimulationConfig()
        with pytest.raises(ConfigurationError):
            dataclasses.replace(config, initial_neurons=config.max_neurons + 1)

    @pytest.mark.parametrize("overrides", [
        {'max_neurons': 0},
        {'initial_neurons': 0},
        {'initial_neurons': 65, 'max_neurons': 64},
        {'density_min': 0.3, 'initial_density': 0.2},
        {'density_max': 1.5},
        {'excitatory_fraction': 1.2},
        {'solved_threshold': 0.05, 'unlock_threshold': 0.02},
        {'prune_threshold': 0.0},
        {'slope_window': 101},
        {'energy_min': 1.0, 'energy_max': 1.0},
        {'winter_duration': 2000},
        {'winter_multiplier': 0.5},
        {'learning_rate': 5.0},
        {'lv_decay': -0.1},
        {'regrowth_min_batch': 600, 'regrowth_max_batch': 500},
    ])
    def test_invalid_values_raise(self, overrides):
        """Test that out-of-range values fail fast."""
        with pytest.raises(ConfigurationError):
            SimulationConfig(**overrides)

    def test_winter_can_be_disabled(self):
        """Test that a zero winter period skips the duration check."""
        config = SimulationConfig(winter_period=0, winter_duration=5000)
        assert config.winter_period == 0


class TestControllerConfig:
    """Test ControllerConfig validation."""

    @pytest.mark.parametrize("overrides", [
        {'temperature': 0.0},
        {'temperature': 1.5},
        {'eligibility_decay': 1.0},
        {'hidden_size': 0},
        {'input_features': 12},
        {'warmup_steps': -1},
        {'update_interval': 0},
    ])
    def test_invalid_values_raise(self, overrides):
        """Test that invalid controller settings raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            ControllerConfig(**overrides)


class TestHyperparameters:
    """Test the live hyperparameter set."""

    def test_clamp_enforces_ranges(self):
        """Test that clamp pulls every field into PARAM_RANGES."""
        hp = Hyperparameters(leak=5.0, spectral=-1.0, learning_rate=3.0)
        hp.clamp()
        for name, (low, high) in PARAM_RANGES.items():
            assert low <= getattr(hp, name) <= high

    def test_copy_is_independent(self):
        """Test that copies do not share state."""
        hp = Hyperparameters()
        other = hp.copy()
        other.leak = 0.7
        assert hp.leak != other.leak

    def test_to_dict_has_all_fields(self):
        """Test that to_dict lists every tunable parameter."""
        assert set(Hyperparameters().to_dict()) == set(PARAM_RANGES)
