"""
Spectral Stability Regulator

Keeps the recurrent weight block at the edge of chaos:
- Warm-started power iteration estimates the largest singular value
- The whole block is scaled down when the estimate exceeds the target
- Local L1 row normalization after a structural change
- Sign-preserving Sinkhorn-Knopp balancing for emergency recovery

Key insight: the singular vectors barely move between ticks, so a couple
of power iterations from last tick's vectors track the norm cheaply.
"""

import logging

import numpy as np

from .network import Network

logger = logging.getLogger(__name__)

_EPS = 1e-12


class SpectralRegulator:
    """
    Bounds the operator norm of the active weight block.

    The u/v vectors live on the Network so a snapshot or reset carries them
    with the rest of the numeric state.
    """

    def __init__(self, rng: np.random.Generator, small_network: int = 256,
                 large_interval: int = 10):
        self.rng = rng
        self.small_network = small_network
        self.large_interval = large_interval

    def should_run(self, step: int, size: int) -> bool:
        """Every tick for small networks, every large_interval ticks otherwise."""
        if size < self.small_network:
            return True
        return step % self.large_interval == 0

    def _reseed(self, vector: np.ndarray) -> None:
        vector[:] = self.rng.uniform(-0.5, 0.5, vector.shape[0])

    def estimate(self, net: Network, iterations: int = 1) -> float:
        """
        Estimate the largest singular value of the active block.

        Args:
            net: Network whose spectral_u / spectral_v are updated in place
            iterations: Power iteration sweeps

        Returns:
            sigma = |u^T W v| after the sweeps (0 for an empty block)
        """
        n = net.current_size
        if n == 0:
            return 0.0
        W = net.weights[:n, :n]
        if not W.any():
            return 0.0

        u = net.spectral_u[:n]
        v = net.spectral_v[:n]
        for _ in range(max(1, iterations)):
            v_new = W.T @ u
            norm = np.linalg.norm(v_new)
            if not np.isfinite(norm) or norm < _EPS:
                self._reseed(u)
                v_new = W.T @ u
                norm = np.linalg.norm(v_new)
                if not np.isfinite(norm) or norm < _EPS:
                    return 0.0
            v[:] = v_new / norm

            u_new = W @ v
            norm = np.linalg.norm(u_new)
            if not np.isfinite(norm) or norm < _EPS:
                self._reseed(v)
                continue
            u[:] = u_new / norm

        sigma = float(abs(u @ W @ v))
        return sigma if np.isfinite(sigma) else 0.0

    def regulate(self, net: Network, iterations: int = 1) -> float:
        """Scale the active block so its estimated norm does not exceed the target."""
        target = net.hyperparams.spectral
        sigma = self.estimate(net, iterations)
        if sigma > target:
            n = net.current_size
            net.weights[:n, :n] *= target / sigma
            net.current_spectral_radius = target
        else:
            net.current_spectral_radius = sigma
        return net.current_spectral_radius

    @staticmethod
    def normalize_row(net: Network, row: int, target: float) -> None:
        """Scale one neuron's incoming L1 weight sum down to the target."""
        n = net.current_size
        weights = net.weights[row, :n]
        total = np.abs(weights).sum()
        if total > target and total > _EPS:
            weights *= target / total

    def sinkhorn_normalize(self, net: Network, target: float, iterations: int = 10) -> None:
        """
        Balance existing synapse magnitudes to a doubly-stochastic pattern.

        Magnitudes become exp(|w|) on existing synapses only, rows and columns
        are normalized alternately, the original signs are restored and the
        result is scaled by the target. Dormant entries stay zero.
        """
        n = net.current_size
        W = net.weights[:n, :n]
        mask = W != 0
        if not mask.any():
            return
        signs = np.sign(W)
        M = np.where(mask, np.exp(np.minimum(np.abs(W), 50.0)), 0.0)
        for _ in range(iterations):
            rows = M.sum(axis=1)
            nonzero = rows > _EPS
            M[nonzero] /= rows[nonzero, None]
            cols = M.sum(axis=0)
            nonzero = cols > _EPS
            M[:, nonzero] /= cols[nonzero]
        W[:] = signs * M * target
        logger.debug("Sinkhorn balanced %d synapses to target %.3f", int(mask.sum()), target)
