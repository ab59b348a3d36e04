"""
Structural Plasticity Engine

The network changes its own wiring while it learns:
1. DENSITY target follows Lotka-Volterra dynamics driven by the error
2. MITOSIS adds a neuron when learning has stalled short of a good fit
3. PRUNING removes synapses whose strength plus merit is negligible
4. REGROWTH refills toward the density target
5. REWIRING connects active senders to silent receivers
6. WINTER periodically raises decay pressure to renew weak wiring

Key insight: pruning is dangerous while the network is struggling, so it
only happens once the error is already low. Growth is what fixes a bad fit;
pruning only tidies up a good one.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set

import numpy as np

from .config import CompetitionMode, MitosisMode, SimulationConfig
from .network import Network, excitatory_fraction, strongest_neuron
from .spectral import SpectralRegulator

logger = logging.getLogger(__name__)

# Regrowth pauses while a controller-driven action is still settling
_REGROWTH_COOLDOWN_GATE = 100
# Attention pruning considers synapses up to this multiple of the prune threshold
_ATTENTION_PRUNE_MARGIN = 5.0
# Tolerance around the excitatory fraction before new neurons rebalance it
_TYPE_TOLERANCE = 0.05


class AdaptationStatus(Enum):
    """Per-tick label of what the network did"""
    STABLE = "STABLE"
    LEARNING = "LEARNING"
    STAGNANT = "STAGNANT"
    LOCKED = "LOCKED"
    CONVERGING = "CONVERGING"
    GROWING = "GROWING"
    GROWING_SYNAPSES = "GROWING_SYNAPSES"
    PRUNING = "PRUNING"
    REWIRING = "REWIRING"
    STABILIZING = "STABILIZING"
    UNLOCKED = "UNLOCKED"


@dataclass
class AdaptationResult:
    """Outcome of one structural adaptation pass"""
    status: AdaptationStatus
    events: List[str] = field(default_factory=list)
    grown: Optional[int] = None
    pruned: int = 0
    regrown: int = 0


class StructuralPlasticityEngine:
    """
    Grows, prunes and rewires a Network.

    Owns the structural cooldowns. The mitosis cooldown is separate from the
    controller's structural cooldown so that patience-driven growth is never
    blocked by a rewiring pass.
    """

    def __init__(self, config: SimulationConfig, rng: np.random.Generator,
                 regulator: SpectralRegulator):
        self.config = config
        self.rng = rng
        self.regulator = regulator
        self.reset()

    def reset(self):
        self.mitosis_cooldown = 0
        self.structural_cooldown = 0
        self._winter_active = False

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def update_patience(self, net: Network, abs_error: float) -> AdaptationStatus:
        """
        Push the error into the slope window and update patience.

        The slope is the sum of the newer half of the window minus the sum of
        the older half; it stays 0 until the window is full.
        """
        window = net.loss_window
        window.append(abs_error)
        if len(window) == window.maxlen:
            errors = np.fromiter(window, dtype=float)
            half = errors.size // 2
            net.regression_slope = float(errors[half:].sum() - errors[:half].sum())
        else:
            net.regression_slope = 0.0

        if net.regression_slope < self.config.learning_slope_threshold:
            net.patience_counter = max(0, net.patience_counter - 1)
            return AdaptationStatus.LEARNING
        net.patience_counter += 1
        return AdaptationStatus.STAGNANT

    def update_density(self, net: Network, demand: float, winter: bool = False) -> float:
        """
        Lotka-Volterra step of the density target:

            D <- D + growth * D * demand - decay * D^2

        Decay is multiplied during winter. The result is clamped.
        """
        cfg = self.config
        hp = net.hyperparams
        decay = hp.lv_decay * (cfg.winter_multiplier if winter else 1.0)
        density = net.current_target_density
        density += hp.lv_growth * density * demand - decay * density * density
        net.current_target_density = float(min(cfg.density_max, max(cfg.density_min, density)))
        return net.current_target_density

    def is_winter(self, step: int) -> bool:
        period = self.config.winter_period
        if period <= 0 or step < period:
            return False
        return step % period < self.config.winter_duration

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _row_signs(self, net: Network, rows: np.ndarray) -> np.ndarray:
        if self.config.enforce_dales_law:
            return net.neuron_types[rows].astype(float)
        return np.where(self.rng.random(np.shape(rows)) < 0.5, -1.0, 1.0)

    def _choose_type(self, net: Network) -> int:
        """New neurons pull the population back toward the target E/I ratio."""
        target = self.config.excitatory_fraction
        fraction = excitatory_fraction(net)
        if fraction < target - _TYPE_TOLERANCE:
            return 1
        if fraction > target + _TYPE_TOLERANCE:
            return -1
        return 1 if self.rng.random() < target else -1

    def _normalize_rows(self, net: Network, rows) -> None:
        target = net.hyperparams.spectral
        for row in rows:
            self.regulator.normalize_row(net, int(row), target)

    # ------------------------------------------------------------------
    # Growth
    # ------------------------------------------------------------------

    def perform_mitosis(self, net: Network, last_input: float) -> Optional[int]:
        """
        Add one neuron.

        Returns:
            Index of the new neuron, or None at capacity
        """
        cfg = self.config
        n = net.current_size
        if n >= net.max_neurons:
            return None

        hp = net.hyperparams
        new_type = self._choose_type(net)
        parent = strongest_neuron(net)

        idx = n
        net.weights[idx, :] = 0.0
        net.weights[:, idx] = 0.0
        net.engram_trace[idx, :] = 0.0
        net.engram_trace[:, idx] = 0.0
        net.activations[idx] = 0.0
        net.prev_activations[idx] = 0.0
        net.readout[idx] = 0.0
        net.neuron_energy[idx] = cfg.energy_max
        net.neuron_types[idx] = new_type
        if abs(last_input) > 0.1:
            net.input_weights[idx] = np.sign(last_input) * 0.5
        else:
            net.input_weights[idx] = self.rng.choice([-1.0, 1.0]) * self.rng.uniform(0.5, 1.0)
        net.current_size = n + 1

        touched: Set[int] = {idx}
        if cfg.mitosis_mode is MitosisMode.CLONE and parent is not None:
            factors = np.clip(1.0 + cfg.clone_noise * self.rng.standard_normal(n), 0.5, 1.5)
            incoming = net.weights[parent, :n]
            if cfg.enforce_dales_law:
                net.weights[idx, :n] = np.abs(incoming) * factors * new_type
            else:
                net.weights[idx, :n] = incoming * factors

            factors = np.clip(1.0 + cfg.clone_noise * self.rng.standard_normal(n), 0.5, 1.5)
            outgoing = net.weights[:n, parent] * factors
            net.weights[:n, idx] = outgoing
            touched.update(np.nonzero(outgoing)[0].tolist())
        else:
            size = n + 1
            activity = np.abs(net.activations[:size])
            probability = net.current_target_density * (1.0 + np.tanh(2.0 * activity))

            senders = np.nonzero(self.rng.random(size) < probability)[0]
            magnitudes = self.rng.random(senders.size) * hp.spectral
            rows = np.full(senders.size, idx)
            net.weights[idx, senders] = magnitudes * self._row_signs(net, rows)

            receivers = np.nonzero(self.rng.random(size) < probability)[0]
            receivers = receivers[receivers != idx]
            magnitudes = self.rng.random(receivers.size) * hp.spectral
            net.weights[receivers, idx] = magnitudes * self._row_signs(net, receivers)
            touched.update(receivers.tolist())

        self._normalize_rows(net, sorted(touched))
        self.regulator.regulate(net, cfg.growth_spectral_iterations)
        self.mitosis_cooldown = cfg.growth_cooldown
        logger.debug("Mitosis: neuron %d (type %+d) via %s", idx, new_type, cfg.mitosis_mode.value)
        return idx

    def regrow_synapses(self, net: Network, count: int) -> int:
        """
        Add up to `count` random synapses in empty slots, batch-limited.

        Returns:
            Number of synapses added
        """
        if count <= 0:
            return 0
        cfg = self.config
        n = net.current_size
        batch = max(cfg.regrowth_min_batch,
                    min(cfg.regrowth_max_batch, int(count * cfg.regrowth_fraction)))
        limit = min(count, batch)
        budget = limit * cfg.regrowth_attempt_factor

        rows = self.rng.integers(0, n, budget)
        cols = self.rng.integers(0, n, budget)
        scale = net.hyperparams.spectral * cfg.regrowth_weight_scale
        added = 0
        touched: Set[int] = set()
        for r, c in zip(rows, cols):
            if added >= limit:
                break
            if net.weights[r, c] != 0.0:
                continue
            sign = self._row_signs(net, np.array([r]))[0]
            net.weights[r, c] = sign * self.rng.uniform(0.1, 1.0) * scale
            touched.add(int(r))
            added += 1

        self._normalize_rows(net, sorted(touched))
        net.total_regrown += added
        return added

    def smart_rewire(self, net: Network, count: int) -> int:
        """
        Wire highly active senders into silent receivers.

        Falls back to random regrowth when either group is empty.
        """
        if count <= 0:
            return 0
        cfg = self.config
        n = net.current_size
        activity = np.abs(net.activations[:n])
        active = np.nonzero(activity > cfg.active_threshold)[0]
        silent = np.nonzero(activity <= cfg.active_threshold)[0]
        if active.size == 0 or silent.size == 0:
            return self.regrow_synapses(net, count)

        limit = min(count, cfg.rewire_limit)
        magnitude = net.hyperparams.spectral * cfg.rewire_weight_scale
        added = 0
        touched: Set[int] = set()
        for _ in range(limit * cfg.regrowth_attempt_factor):
            if added >= limit:
                break
            sender = int(self.rng.choice(active))
            receiver = int(self.rng.choice(silent))
            if net.weights[receiver, sender] != 0.0:
                continue
            sign = self._row_signs(net, np.array([receiver]))[0]
            net.weights[receiver, sender] = sign * magnitude
            touched.add(receiver)
            added += 1

        self._normalize_rows(net, sorted(touched))
        return added

    # ------------------------------------------------------------------
    # Pruning
    # ------------------------------------------------------------------

    def prune_synapses(self, net: Network, recent_error: float,
                       threshold_scale: float = 1.0) -> int:
        """
        Merit-based pruning.

        A synapse survives while |w| + merit reaches the prune threshold.
        Merit rewards a receiver that matters to the readout, synapses that
        bridge excitatory and inhibitory neurons, and recent learning activity
        (engram trace). Nothing is pruned while the error is high.

        Returns:
            Number of synapses removed
        """
        cfg = self.config
        if recent_error > cfg.unlock_threshold:
            return 0
        n = net.current_size
        W = net.weights[:n, :n]
        mask = W != 0
        if not mask.any():
            return 0

        types = net.neuron_types[:n]
        trace = net.engram_trace[:n, :n]
        merit = cfg.readout_merit_gain * np.abs(net.readout[:n])[:, None] \
            + cfg.bridge_bonus * (types[:, None] != types[None, :]) \
            + cfg.engram_merit_gain * trace
        dead = mask & (np.abs(W) + merit < cfg.prune_threshold * threshold_scale)
        W[dead] = 0.0
        trace[dead] = 0.0
        return int(dead.sum())

    def attention_prune(self, net: Network, beta: float, recent_error: float) -> int:
        """
        Controller-driven pruning of weak synapses on quiet neurons.

        Quiet neurons draw more attention; each weak synapse on a row is
        removed with probability proportional to that row's attention.
        """
        cfg = self.config
        if recent_error > cfg.unlock_threshold:
            return 0
        n = net.current_size
        W = net.weights[:n, :n]
        weak = (W != 0) & (np.abs(W) < cfg.prune_threshold * _ATTENTION_PRUNE_MARGIN)
        if not weak.any():
            return 0

        quietness = -5.0 * np.abs(net.activations[:n])
        attention = np.exp(quietness - quietness.max())
        attention /= attention.sum()
        probability = np.clip(attention * n * beta * 0.5, 0.0, 1.0)
        dead = weak & (self.rng.random((n, n)) < probability[:, None])
        W[dead] = 0.0
        net.engram_trace[:n, :n][dead] = 0.0
        return int(dead.sum())

    def lateral_competition(self, net: Network, recent_error: float) -> int:
        """
        Local competition along each row.

        Each synapse grows with its sender's energy and is suppressed by the
        squared strength of its neighbours within lateral_radius columns.
        Synapses that fall below the prune threshold die.
        """
        cfg = self.config
        if recent_error > cfg.unlock_threshold:
            return 0
        n = net.current_size
        W = net.weights[:n, :n]
        mask = W != 0
        if not mask.any():
            return 0

        r = cfg.lateral_radius
        magnitude = np.abs(W)
        squared = magnitude * magnitude
        padded = np.pad(squared, ((0, 0), (r, r)))
        cumulative = np.concatenate([np.zeros((n, 1)), np.cumsum(padded, axis=1)], axis=1)
        neighbours = cumulative[:, 2 * r + 1:2 * r + 1 + n] - cumulative[:, :n] - squared

        pressure = cfg.lateral_growth * net.neuron_energy[:n][None, :]
        growth = pressure - cfg.lateral_inhibition * neighbours
        magnitude = np.maximum(magnitude * (1.0 + cfg.lateral_rate * growth), 0.0)

        dead = mask & (magnitude < cfg.prune_threshold)
        W[mask] = np.sign(W[mask]) * magnitude[mask]
        W[dead] = 0.0
        net.engram_trace[:n, :n][dead] = 0.0
        self._normalize_rows(net, range(n))
        return int(dead.sum())

    # ------------------------------------------------------------------
    # Per-tick state machine
    # ------------------------------------------------------------------

    def adapt(self, net: Network, abs_error: float, recent_error: float,
              decision, step: int, last_input: float) -> AdaptationResult:
        """
        Run one structural adaptation pass for an unlocked network.

        Args:
            net: Network to modify
            abs_error: |error| of this tick
            recent_error: Mean |error| over the recent window
            decision: ControllerDecision of this tick, or None
            step: Tick index
            last_input: Input value of this tick (aligns new input weights)
        """
        cfg = self.config
        if self.mitosis_cooldown > 0:
            self.mitosis_cooldown -= 1
        if self.structural_cooldown > 0:
            self.structural_cooldown -= 1

        result = AdaptationResult(status=self.update_patience(net, abs_error))

        winter = self.is_winter(step)
        if winter != self._winter_active:
            self._winter_active = winter
            result.events.append("[WINTER] Decay pressure raised." if winter
                                 else "[WINTER] Decay pressure restored.")
        self.update_density(net, min(abs_error, 1.0), winter)

        stalled = net.patience_counter > cfg.patience_limit and self.mitosis_cooldown == 0
        if stalled and recent_error > cfg.unlock_threshold:
            idx = self.perform_mitosis(net, last_input)
            if idx is not None:
                net.patience_counter = 0
                result.status = AdaptationStatus.GROWING
                result.grown = idx
                result.events.append(
                    f"[MITOSIS] Neuron {idx} added after stagnation. | Loss: {recent_error:.4f}")

        self._controller_action(net, decision, recent_error, last_input, result)

        if self.structural_cooldown < _REGROWTH_COOLDOWN_GATE:
            deficit = net.target_connections() - net.count_connections()
            if deficit > 0:
                result.regrown = self.regrow_synapses(net, deficit)
                if result.regrown and result.status is not AdaptationStatus.GROWING:
                    result.status = AdaptationStatus.GROWING_SYNAPSES

        removed = 0
        if cfg.competition_mode is CompetitionMode.LATERAL:
            if step % cfg.lateral_interval == 0:
                removed = self.lateral_competition(net, recent_error)
        elif winter:
            removed = self.prune_synapses(net, recent_error, cfg.winter_multiplier)
        elif step % cfg.heartbeat_prune_interval == 0 and self.structural_cooldown == 0:
            removed = self.prune_synapses(net, recent_error)
        if removed:
            result.pruned += removed
            if result.status is not AdaptationStatus.GROWING:
                result.status = AdaptationStatus.PRUNING
            result.events.append(f"[PRUNE] {removed} synapses removed. | Loss: {recent_error:.4f}")

        return result

    def _controller_action(self, net: Network, decision, recent_error: float,
                           last_input: float, result: AdaptationResult):
        """Grow, prune or rewire as the controller's structural bias asks."""
        ccfg = self.config.controller
        if decision is None or self.structural_cooldown > 0:
            return
        beta = decision.beta
        if beta <= ccfg.structural_beta_threshold:
            return
        bias = decision.structural_bias
        threshold = ccfg.structural_bias_threshold

        if bias > threshold:
            if self.mitosis_cooldown > 0:
                return
            idx = self.perform_mitosis(net, last_input)
            self.structural_cooldown = int(200 / beta)
            if idx is not None:
                result.status = AdaptationStatus.GROWING
                result.grown = idx
                result.events.append(
                    f"[MITOSIS] Neuron {idx} added by {decision.strategy_name}. "
                    f"| Loss: {recent_error:.4f}")
        elif bias < -threshold:
            removed = self.attention_prune(net, beta, recent_error)
            self.structural_cooldown = int(100 / beta)
            if removed:
                result.pruned += removed
                result.status = AdaptationStatus.PRUNING
                result.events.append(
                    f"[PRUNE] {removed} weak synapses removed by {decision.strategy_name}. "
                    f"| Loss: {recent_error:.4f}")
        else:
            count = int(net.current_size * beta * 0.01)
            added = self.smart_rewire(net, count)
            self.structural_cooldown = int(50 / beta)
            if added:
                result.status = AdaptationStatus.REWIRING
                result.events.append(f"[REWIRE] {added} synapses routed to silent neurons.")
