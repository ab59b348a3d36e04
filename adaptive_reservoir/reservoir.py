"""
Numeric Reservoir Core

Implements:
- Leaky-integrator tanh recurrent update over the active neurons
- Energy (fatigue) modulation of the new states
- Linear readout with online LMS and a per-weight delta clamp
- Noise-floor gating and solved freeze of the learning rate
- Feedback-alignment update of the recurrent synapses with engram traces
- Divergence detection and emergency state reset

Key insight: only the readout has to be accurate. The recurrent weights
get a small, local, sign-preserving nudge and are otherwise left to the
structural machinery.
"""

import logging

import numpy as np

from .config import SimulationConfig
from .fatigue import FatigueParams, NeuronFatigue
from .network import Network

logger = logging.getLogger(__name__)

# Magnitude a weight keeps when a learning update would push it through zero
_SIGN_FLOOR = 1e-6


class ReservoirCore:
    """
    Per-tick numeric update of a Network.

    Holds no state of its own beyond configuration; everything it touches
    lives on the Network passed in.
    """

    def __init__(self, config: SimulationConfig):
        self.config = config
        self.fatigue = NeuronFatigue(FatigueParams.from_config(config))

    # ------------------------------------------------------------------
    # Forward pass
    # ------------------------------------------------------------------

    def forward(self, net: Network, input_value: float) -> np.ndarray:
        """
        Advance the active neurons by one tick.

        a_i <- (1 - leak) * a_i + leak * tanh(sum_j W_ij a_j + w_in_i * u * input_scale)

        All sums use the previous tick's activations.
        """
        n = net.current_size
        hp = net.hyperparams
        net.prev_activations[:] = net.activations
        prev = net.prev_activations[:n]

        drive = net.weights[:n, :n] @ prev + net.input_weights[:n] * (input_value * hp.input_scale)
        states = (1.0 - hp.leak) * prev + hp.leak * np.tanh(drive)

        if self.config.energy_modulation:
            self.fatigue.modulate(states, net.neuron_energy[:n])

        net.activations[:n] = states
        return net.activations[:n]

    @staticmethod
    def predict(net: Network) -> float:
        n = net.current_size
        return float(net.activations[:n] @ net.readout[:n])

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def effective_learning_rate(self, base_rate: float, abs_error: float,
                                noise_floor: float, recent_error: float,
                                locked: bool) -> float:
        """
        Gate the base learning rate for this tick.

        Zero while locked or already converged below the solved threshold.
        Reduced when the smoothed error exceeds the instantaneous error,
        since the sample then looks like noise rather than signal.
        """
        if locked or recent_error < self.config.solved_threshold:
            return 0.0
        rate = base_rate
        if noise_floor > abs_error:
            rate *= self.config.noise_gate_factor
        return rate

    def learn_readout(self, net: Network, error: float, learning_rate: float) -> None:
        """Clamped LMS step on the readout weights, scaled by output_gain."""
        if learning_rate <= 0.0:
            return
        n = net.current_size
        clamp = self.config.readout_delta_clamp
        delta = learning_rate * error * net.hyperparams.output_gain * net.activations[:n]
        net.readout[:n] += np.clip(delta, -clamp, clamp)

    def apply_feedback_alignment(self, net: Network, error: float, learning_rate: float) -> int:
        """
        Local update of existing recurrent synapses.

        The output error is sent back through a fixed random feedback vector,
        gated by each neuron's tanh slope, and combined with the presynaptic
        activity of the previous tick. Weights shrink toward zero but never
        change sign; engram traces record how much each synapse moved.

        Returns:
            Number of synapses updated
        """
        cfg = self.config
        rate = learning_rate * cfg.feedback_scale
        if rate < cfg.feedback_min_rate:
            return 0

        n = net.current_size
        W = net.weights[:n, :n]
        mask = W != 0
        if not mask.any():
            return 0

        a = net.activations[:n]
        local_error = error * net.feedback_weights[:n] * (1.0 - a * a)
        delta = rate * np.outer(local_error, net.prev_activations[:n])
        delta -= rate * cfg.feedback_weight_decay * W
        np.clip(delta, -cfg.feedback_delta_clamp, cfg.feedback_delta_clamp, out=delta)
        delta[~mask] = 0.0

        old_signs = np.sign(W)
        updated = W + delta
        if cfg.enforce_dales_law:
            signs = net.neuron_types[:n, None].astype(float) * np.ones((1, n))
        else:
            signs = old_signs
        crossed = mask & (updated * signs <= 0)
        updated[crossed] = signs[crossed] * _SIGN_FLOOR
        W[:] = updated

        trace = net.engram_trace[:n, :n]
        trace *= cfg.engram_decay
        trace[mask] += np.abs(delta[mask]) * cfg.engram_gain
        np.minimum(trace, 1.0, out=trace)
        return int(mask.sum())

    # ------------------------------------------------------------------
    # Divergence handling
    # ------------------------------------------------------------------

    def input_diverged(self, input_value: float, target: float) -> bool:
        """True for non-finite or absurdly large external values."""
        limit = self.config.input_limit
        return not (np.isfinite(input_value) and np.isfinite(target)
                    and abs(input_value) <= limit and abs(target) <= limit)

    def output_diverged(self, net: Network, error: float) -> bool:
        n = net.current_size
        if not np.isfinite(error) or abs(error) > self.config.explosion_threshold:
            logger.debug("Readout error %.3g beyond %.3g", error, self.config.explosion_threshold)
            return True
        if not np.all(np.isfinite(net.activations[:n])):
            logger.debug("Non-finite activations in %d active neurons", n)
            return True
        return False

    def penalty(self, error: float) -> float:
        """Finite stand-in for a diverged error."""
        cap = self.config.explosion_penalty_cap
        if not np.isfinite(error):
            return cap
        return min(abs(error), cap)

    @staticmethod
    def reset_state(net: Network) -> None:
        """Zero all activations, current and previous."""
        net.activations.fill(0.0)
        net.prev_activations.fill(0.0)
