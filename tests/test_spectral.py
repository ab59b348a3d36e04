"""Unit tests for spectral.py module."""

import numpy as np
import pytest

from adaptive_reservoir.config import Hyperparameters, SimulationConfig
from adaptive_reservoir.network import create_network
from adaptive_reservoir.spectral import SpectralRegulator


def create_full_network(size=20, spectral=0.85, seed=5):
    """Helper: network whose whole storage is active."""
    config = SimulationConfig(max_neurons=size, initial_neurons=size)
    return create_network(config, Hyperparameters(spectral=spectral),
                          np.random.default_rng(seed))


def dominant_matrix(size, scale=3.0, seed=9):
    """Helper: matrix with one clearly dominant singular value."""
    rng = np.random.default_rng(seed)
    a = rng.standard_normal(size)
    b = rng.standard_normal(size)
    return scale * np.outer(a / np.linalg.norm(a), b / np.linalg.norm(b)) \
        + 0.05 * rng.standard_normal((size, size))


class TestEstimate:
    """Test power iteration."""

    def test_matches_true_norm(self, regulator):
        """Test that the estimate converges to the largest singular value."""
        net = create_full_network()
        net.weights[:] = dominant_matrix(20)
        sigma = regulator.estimate(net, iterations=100)
        assert sigma == pytest.approx(np.linalg.norm(net.weights, 2), rel=1e-4)

    def test_empty_block_is_zero(self, regulator):
        """Test that a network without synapses has zero norm."""
        net = create_full_network()
        net.weights[:] = 0.0
        assert regulator.estimate(net, iterations=5) == 0.0

    def test_degenerate_vectors_are_reseeded(self, regulator):
        """Test that zero warm-start vectors recover instead of returning NaN."""
        net = create_full_network()
        net.weights[:] = dominant_matrix(20)
        net.spectral_u[:] = 0.0
        net.spectral_v[:] = 0.0
        sigma = regulator.estimate(net, iterations=50)
        assert np.isfinite(sigma)
        assert sigma > 0.0
        assert np.all(np.isfinite(net.spectral_u))


class TestRegulate:
    """Test the global norm clamp."""

    def test_norm_bounded_after_regulation(self, regulator):
        """Test that the true operator norm ends within tolerance of the target."""
        net = create_full_network(spectral=0.85)
        net.weights[:] = dominant_matrix(20)
        regulator.regulate(net, iterations=100)
        assert np.linalg.norm(net.weights, 2) <= 0.85 + 1e-3
        assert net.current_spectral_radius == pytest.approx(0.85)

    def test_small_norm_untouched(self, regulator):
        """Test that a block already under the target is not rescaled."""
        net = create_full_network(spectral=0.85)
        net.weights[:] = dominant_matrix(20, scale=0.1)
        before = net.weights.copy()
        regulator.regulate(net, iterations=50)
        np.testing.assert_array_equal(net.weights, before)
        assert net.current_spectral_radius < 0.85

    def test_scaling_preserves_signs(self, regulator):
        """Test that regulation never flips a synapse."""
        net = create_full_network(spectral=0.6)
        net.weights[:] = dominant_matrix(20)
        signs = np.sign(net.weights)
        regulator.regulate(net, iterations=20)
        np.testing.assert_array_equal(np.sign(net.weights), signs)

    def test_should_run_schedule(self):
        """Test per-tick regulation for small networks only."""
        regulator = SpectralRegulator(np.random.default_rng(0), small_network=256,
                                      large_interval=10)
        assert regulator.should_run(3, 100)
        assert not regulator.should_run(3, 300)
        assert regulator.should_run(20, 300)


class TestRowNormalization:
    """Test local L1 normalization."""

    def test_scales_down(self):
        """Test that a heavy row is scaled to the target L1 sum."""
        net = create_full_network()
        net.weights[2, :] = 0.5
        SpectralRegulator.normalize_row(net, 2, 0.85)
        assert np.abs(net.weights[2]).sum() == pytest.approx(0.85)

    def test_never_scales_up(self):
        """Test that a light row is left alone."""
        net = create_full_network()
        net.weights[2, :] = 0.0
        net.weights[2, 0] = 0.1
        SpectralRegulator.normalize_row(net, 2, 0.85)
        assert net.weights[2, 0] == pytest.approx(0.1)


class TestSinkhorn:
    """Test sign-preserving Sinkhorn balancing."""

    def test_preserves_signs_and_sparsity(self, regulator):
        """Test that existing synapses keep their sign and no new ones appear."""
        net = create_full_network()
        before = net.weights.copy()
        regulator.sinkhorn_normalize(net, 0.85, iterations=20)
        np.testing.assert_array_equal(net.weights != 0, before != 0)
        np.testing.assert_array_equal(np.sign(net.weights), np.sign(before))

    def test_columns_sum_to_target(self, regulator):
        """Test that non-empty columns end with L1 sum equal to the target."""
        net = create_full_network()
        regulator.sinkhorn_normalize(net, 0.85, iterations=20)
        sums = np.abs(net.weights).sum(axis=0)
        nonzero = sums > 0
        np.testing.assert_allclose(sums[nonzero], 0.85, rtol=1e-9)

    def test_empty_network_is_noop(self, regulator):
        """Test that an empty block stays empty."""
        net = create_full_network()
        net.weights[:] = 0.0
        regulator.sinkhorn_normalize(net, 0.85)
        assert not net.weights.any()
