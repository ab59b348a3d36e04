"""Shared fixtures for the adaptive reservoir tests."""

import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from adaptive_reservoir.config import Hyperparameters, SimulationConfig  # noqa: E402
from adaptive_reservoir.network import create_network  # noqa: E402
from adaptive_reservoir.spectral import SpectralRegulator  # noqa: E402


@pytest.fixture
def config():
    """Small seeded configuration."""
    return SimulationConfig(seed=7, max_neurons=16, initial_neurons=8)


@pytest.fixture
def rng():
    return np.random.default_rng(11)


@pytest.fixture
def network(config, rng):
    """Freshly wired network with birth hyperparameters."""
    return create_network(config, Hyperparameters(), rng)


@pytest.fixture
def regulator(rng):
    return SpectralRegulator(rng)


def _assert_dales_law(weights, neuron_types, size):
    block = weights[:size, :size]
    rows, cols = np.nonzero(block)
    signs = np.sign(block[rows, cols])
    assert np.all(signs == neuron_types[rows]), "Dale's law violated"


@pytest.fixture
def assert_dales_law():
    """Checker: every existing synapse carries its row neuron's sign."""
    return _assert_dales_law
