"""
Adaptive Regime Controller

A small recurrent policy that watches the error signal and retunes the
reservoir's hyperparameters while it runs.

Implements:
- Two gated LSTM cells on different time scales (fast and slow)
- A learned sigmoid gate blending their hidden states
- A discrete head choosing one of five strategy presets,
  restricted to calm presets at low loss and bold ones at high loss, or
- A continuous head emitting bounded per-parameter deltas
- REINFORCE with a running reward baseline, an advantage threshold and
  eligibility traces on the gate, the policy head and each cell's output gate

Key insight: the controller does not need to be good, only better than
chance. A frozen preset for a hundred ticks is already a strong prior;
learning just shifts which preset gets picked.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

import numpy as np

from .config import PARAM_NAMES, PARAM_RANGES, ControllerConfig, ControllerHead, Hyperparameters

logger = logging.getLogger(__name__)


class Strategy(Enum):
    """Named regimes of the discrete head"""
    EXPLORE = "EXPLORE"
    EXPLOIT = "EXPLOIT"
    STABILIZE = "STABILIZE"
    RESET = "RESET"
    CONSOLIDATE = "CONSOLIDATE"


class ControllerMode(Enum):
    WARMUP = "WARMUP"
    NORMAL = "NORMAL"
    PANIC = "PANIC"


STRATEGIES: List[Strategy] = list(Strategy)

STRATEGY_PRESETS: Dict[Strategy, Hyperparameters] = {
    Strategy.EXPLORE: Hyperparameters(
        leak=0.5, spectral=0.95, input_scale=1.0, learning_rate=0.15,
        smoothing_factor=0.08, lv_growth=0.08, lv_decay=0.005, output_gain=1.1),
    Strategy.EXPLOIT: Hyperparameters(
        leak=0.4, spectral=0.85, input_scale=0.9, learning_rate=0.12,
        smoothing_factor=0.05, lv_growth=0.03, lv_decay=0.01, output_gain=1.0),
    # Calm presets share the EXPLOIT reservoir shape
    Strategy.STABILIZE: Hyperparameters(
        leak=0.4, spectral=0.85, input_scale=0.9, learning_rate=0.03,
        smoothing_factor=0.1, lv_growth=0.0, lv_decay=0.04, output_gain=1.0),
    Strategy.RESET: Hyperparameters(
        leak=0.6, spectral=0.9, input_scale=1.1, learning_rate=0.12,
        smoothing_factor=0.1, lv_growth=0.1, lv_decay=0.02, output_gain=1.2),
    Strategy.CONSOLIDATE: Hyperparameters(
        leak=0.4, spectral=0.85, input_scale=0.9, learning_rate=0.08,
        smoothing_factor=0.08, lv_growth=0.0, lv_decay=0.02, output_gain=1.0),
}

# Starting point of a fresh network, before the controller has spoken
BIRTH_PRESET = Hyperparameters()

# Structural intent of each preset: > 0 grow, < 0 prune, ~0 rewire
STRATEGY_BIAS: Dict[Strategy, float] = {
    Strategy.EXPLORE: 0.8,
    Strategy.EXPLOIT: 0.0,
    Strategy.STABILIZE: -0.8,
    Strategy.RESET: 0.8,
    Strategy.CONSOLIDATE: -0.4,
}

# Candidates when a new strategy is drawn at low or high loss
CALM_STRATEGIES = (Strategy.EXPLOIT, Strategy.CONSOLIDATE)
BOLD_STRATEGIES = (Strategy.EXPLORE, Strategy.RESET)


def _sigmoid(x):
    return 1.0 / (1.0 + np.exp(-x))


def _softmax(logits: np.ndarray) -> np.ndarray:
    shifted = np.exp(logits - logits.max())
    return shifted / shifted.sum()


class LSTMCell:
    """
    Plain numpy LSTM cell.

    Gate rows of W/U/b are stacked as [input, forget, output, candidate].
    Pre-activations and the cell state are clipped so a bad input cannot
    saturate the cell permanently.
    """

    def __init__(self, input_size: int, hidden_size: int, scale: float,
                 rng: np.random.Generator, preactivation_clip: float = 50.0,
                 cell_clip: float = 10.0):
        self.input_size = input_size
        self.hidden_size = hidden_size
        self.preactivation_clip = preactivation_clip
        self.cell_clip = cell_clip

        H = hidden_size
        self.W = rng.normal(0.0, scale / np.sqrt(input_size), (4 * H, input_size))
        self.U = rng.normal(0.0, scale / np.sqrt(H), (4 * H, H))
        self.b = np.zeros(4 * H)
        self.b[H:2 * H] = 1.0  # remember by default

        self.h = np.zeros(H)
        self.c = np.zeros(H)
        self._last_x = np.zeros(input_size)
        self._last_o = np.zeros(H)

    def step(self, x: np.ndarray) -> np.ndarray:
        H = self.hidden_size
        z = self.W @ x + self.U @ self.h + self.b
        np.clip(z, -self.preactivation_clip, self.preactivation_clip, out=z)

        i = _sigmoid(z[:H])
        f = _sigmoid(z[H:2 * H])
        o = _sigmoid(z[2 * H:3 * H])
        g = np.tanh(z[3 * H:])

        self.c = np.clip(f * self.c + i * g, -self.cell_clip, self.cell_clip)
        self.h = o * np.tanh(self.c)
        self._last_x = x
        self._last_o = o
        return self.h

    def reset_state(self):
        self.h = np.zeros(self.hidden_size)
        self.c = np.zeros(self.hidden_size)

    @property
    def activity(self) -> float:
        return float(np.mean(np.abs(self.h)))

    def output_gate_gradient(self, grad_h: np.ndarray) -> np.ndarray:
        """One-step gradient of a scalar w.r.t. the output-gate input weights."""
        o = self._last_o
        grad_pre = grad_h * np.tanh(self.c) * o * (1.0 - o)
        return np.outer(grad_pre, self._last_x)

    def update_output_gate(self, delta: np.ndarray, clip: float):
        H = self.hidden_size
        rows = self.W[2 * H:3 * H]
        rows += delta
        np.clip(rows, -clip, clip, out=rows)


@dataclass
class ControllerDecision:
    """What the controller wants for this tick"""
    strategy: Optional[Strategy]
    hyperparams: Hyperparameters
    structural_bias: float
    beta: float
    mode: ControllerMode
    short_term_activity: float
    long_term_activity: float
    gate: float

    @property
    def strategy_name(self) -> str:
        return self.strategy.value if self.strategy is not None else "ADAPTIVE"


class DualTimescaleController:
    """
    Fast and slow LSTM cells, a gate, and a policy head.

    Usage per tick:
        decision = controller.select(features, loss, current_params)
        ... apply decision ...
        controller.reward(r)
    """

    def __init__(self, config: ControllerConfig = None, rng: np.random.Generator = None):
        self.config = config or ControllerConfig()
        self.rng = rng if rng is not None else np.random.default_rng()

        cfg = self.config
        H = cfg.hidden_size
        F = cfg.input_features

        self.short_term = LSTMCell(F, H, cfg.short_term_scale, self.rng,
                                   cfg.preactivation_clip, cfg.cell_clip)
        self.long_term = LSTMCell(F, H, cfg.long_term_scale, self.rng,
                                  cfg.preactivation_clip, cfg.cell_clip)
        self.gate_weights = self.rng.normal(0.0, cfg.gate_scale, 2 * H + 1)

        # Discrete head
        self.strategy_weights = np.zeros((H, len(STRATEGIES)))
        # Continuous head
        self.output_weights = self.rng.normal(0.0, 0.1, (len(PARAM_NAMES), H))

        self.reset()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self):
        """Clear recurrent state, traces and counters. Learned weights stay."""
        cfg = self.config
        H = cfg.hidden_size
        self.short_term.reset_state()
        self.long_term.reset_state()

        self.step_counter = 0
        self.mode = ControllerMode.WARMUP
        self.current_strategy: Optional[Strategy] = None
        self.lock_remaining = 0
        self.reward_baseline = 0.0
        self.last_gate = 0.5
        self.last_probs = np.full(len(STRATEGIES), 1.0 / len(STRATEGIES))

        self.strategy_eligibility = np.zeros(len(STRATEGIES))
        self.gate_trace = np.zeros(2 * H + 1)
        self.short_trace = np.zeros((H, cfg.input_features))
        self.long_trace = np.zeros((H, cfg.input_features))
        self.output_trace = np.zeros_like(self.output_weights)
        self._blended = np.zeros(H)

    def reset_short_term_memory(self):
        """Forget the fast cell's state after an abrupt structural change."""
        self.short_term.reset_state()

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self, features: np.ndarray, current_loss: float,
               current: Hyperparameters) -> ControllerDecision:
        cfg = self.config
        self.step_counter += 1

        x = np.asarray(features, dtype=float)
        h_short = self.short_term.step(x)
        h_long = self.long_term.step(x)
        gate_input = np.concatenate([h_short, h_long, [1.0]])
        gate = float(_sigmoid(np.clip(self.gate_weights @ gate_input, -50.0, 50.0)))
        blended = gate * h_short + (1.0 - gate) * h_long
        self.last_gate = gate
        self._blended = blended

        strategy: Optional[Strategy]
        if self.step_counter <= cfg.warmup_steps:
            self.mode = ControllerMode.WARMUP
            strategy = Strategy.EXPLOIT
            params = STRATEGY_PRESETS[strategy].copy()
            bias = STRATEGY_BIAS[strategy]
        elif current_loss > cfg.panic_threshold:
            if self.mode is not ControllerMode.PANIC:
                logger.debug("Controller panic at loss %.4f", current_loss)
            self.mode = ControllerMode.PANIC
            strategy = Strategy.STABILIZE
            self.current_strategy = strategy
            self.lock_remaining = cfg.strategy_lock_duration
            params = STRATEGY_PRESETS[strategy].copy()
            bias = STRATEGY_BIAS[strategy]
        else:
            self.mode = ControllerMode.NORMAL
            if cfg.head is ControllerHead.DISCRETE:
                strategy = self._select_strategy(blended, h_short, h_long, gate, gate_input,
                                                 current_loss)
                params = STRATEGY_PRESETS[strategy].copy()
                bias = STRATEGY_BIAS[strategy]
            else:
                strategy = None
                self.current_strategy = None
                params, bias = self._continuous_step(blended, h_short, h_long, gate,
                                                     gate_input, current)

        beta = (params.lv_growth + params.lv_decay) * cfg.structural_beta_gain
        return ControllerDecision(
            strategy=strategy,
            hyperparams=params,
            structural_bias=float(bias),
            beta=float(beta),
            mode=self.mode,
            short_term_activity=self.short_term.activity,
            long_term_activity=self.long_term.activity,
            gate=gate,
        )

    def _select_strategy(self, blended, h_short, h_long, gate, gate_input,
                         current_loss: float) -> Strategy:
        cfg = self.config
        logits = blended @ self.strategy_weights / cfg.temperature
        probs = _softmax(np.where(self._candidates(current_loss), logits, -np.inf))
        self.last_probs = probs

        if self.lock_remaining > 0 and self.current_strategy is not None:
            self.lock_remaining -= 1
            index = STRATEGIES.index(self.current_strategy)
        else:
            index = int(self.rng.choice(len(STRATEGIES), p=probs))
            chosen = STRATEGIES[index]
            if chosen is not self.current_strategy:
                logger.debug("Strategy switch %s -> %s",
                             self.current_strategy.value if self.current_strategy else None,
                             chosen.value)
            self.current_strategy = chosen
            self.lock_remaining = cfg.strategy_lock_duration

        self.strategy_eligibility *= cfg.eligibility_decay
        self.strategy_eligibility[index] += 1.0

        onehot = np.zeros(len(STRATEGIES))
        onehot[index] = 1.0
        grad_h = self.strategy_weights @ (onehot - probs) / cfg.temperature
        self._accumulate_traces(grad_h, h_short, h_long, gate, gate_input)
        return self.current_strategy

    def _candidates(self, current_loss: float) -> np.ndarray:
        """
        Boolean mask of the strategies a new draw may pick.

        Below settle_threshold only the calm presets qualify, above
        struggle_threshold only the bold ones.
        """
        cfg = self.config
        if current_loss < cfg.settle_threshold:
            allowed = CALM_STRATEGIES
        elif current_loss > cfg.struggle_threshold:
            allowed = BOLD_STRATEGIES
        else:
            allowed = STRATEGIES
        return np.array([s in allowed for s in STRATEGIES])

    def _continuous_step(self, blended, h_short, h_long, gate, gate_input,
                         current: Hyperparameters):
        cfg = self.config
        sigma = cfg.exploration_noise
        mean = np.tanh(self.output_weights @ blended)
        noise = self.rng.normal(0.0, sigma, mean.shape[0])
        action = np.clip(mean + noise, -1.0, 1.0)

        grad_pre = noise / (sigma * sigma) * (1.0 - mean * mean)
        self.output_trace = cfg.eligibility_decay * self.output_trace + np.outer(grad_pre, blended)
        grad_h = self.output_weights.T @ grad_pre
        self._accumulate_traces(grad_h, h_short, h_long, gate, gate_input)

        params = current.copy()
        for k, name in enumerate(PARAM_NAMES):
            low, high = PARAM_RANGES[name]
            setattr(params, name, getattr(params, name) + action[k] * cfg.delta_scale * (high - low))
        params.clamp()

        growth = action[PARAM_NAMES.index('lv_growth')]
        decay = action[PARAM_NAMES.index('lv_decay')]
        return params, float(np.tanh(2.0 * (growth - decay)))

    def _accumulate_traces(self, grad_h, h_short, h_long, gate, gate_input):
        decay = self.config.eligibility_decay
        grad_gate = float(grad_h @ (h_short - h_long)) * gate * (1.0 - gate)
        self.gate_trace = decay * self.gate_trace + grad_gate * gate_input
        self.short_trace = decay * self.short_trace + \
            self.short_term.output_gate_gradient(grad_h * gate)
        self.long_trace = decay * self.long_trace + \
            self.long_term.output_gate_gradient(grad_h * (1.0 - gate))

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def reward(self, value: float) -> float:
        """
        Policy-gradient update from a scalar reward in [-1, 1].

        Returns:
            The advantage used (0 when below the threshold or not in NORMAL mode)
        """
        cfg = self.config
        if not np.isfinite(value):
            return 0.0
        advantage = value - self.reward_baseline
        self.reward_baseline += cfg.baseline_alpha * (value - self.reward_baseline)

        if self.mode is not ControllerMode.NORMAL or abs(advantage) < cfg.min_advantage:
            return 0.0

        clip = cfg.weight_clip
        if cfg.head is ControllerHead.DISCRETE:
            self.strategy_weights += cfg.strategy_lr * advantage * np.outer(
                self._blended, self.strategy_eligibility)
            np.clip(self.strategy_weights, -clip, clip, out=self.strategy_weights)
        else:
            self.output_weights += cfg.strategy_lr * advantage * self.output_trace
            np.clip(self.output_weights, -clip, clip, out=self.output_weights)

        self.gate_weights += cfg.gate_lr * advantage * self.gate_trace
        np.clip(self.gate_weights, -clip, clip, out=self.gate_weights)
        self.short_term.update_output_gate(cfg.short_term_lr * advantage * self.short_trace, clip)
        self.long_term.update_output_gate(cfg.long_term_lr * advantage * self.long_trace, clip)
        return float(advantage)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_state(self) -> Dict:
        if self.current_strategy is not None:
            strategy = self.current_strategy.value
        elif self.mode is ControllerMode.WARMUP:
            strategy = Strategy.EXPLOIT.value
        else:
            strategy = "ADAPTIVE"
        return {
            'short_term_activity': self.short_term.activity,
            'long_term_activity': self.long_term.activity,
            'gate': self.last_gate,
            'mode': self.mode.value,
            'strategy': strategy,
        }

    def get_debug_state(self) -> Dict:
        state = self.get_state()
        state.update({
            'step': self.step_counter,
            'head': self.config.head.value,
            'lock_remaining': self.lock_remaining,
            'reward_baseline': self.reward_baseline,
            'strategy_probabilities': {
                s.value: float(p) for s, p in zip(STRATEGIES, self.last_probs)},
            'strategy_eligibility': self.strategy_eligibility.tolist(),
            'gate_weight_norm': float(np.linalg.norm(self.gate_weights)),
            'strategy_weight_norm': float(np.linalg.norm(self.strategy_weights)),
        })
        return state
