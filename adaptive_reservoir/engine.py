"""
Self-Modifying Reservoir Engine

Ties the pieces together into one synchronous tick:

    reservoir update -> readout learning -> spectral regulation
    -> controller selection -> structural adaptation -> metrics

Every call to step() runs to completion before returning. Numeric
divergence never raises: the tick is reported as STABILIZING and the
network is pulled back to a safe state.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from .config import PARAM_RANGES, Hyperparameters, SimulationConfig
from .controller import BIRTH_PRESET, ControllerDecision, DualTimescaleController
from .errors import SimulationError
from .features import ErrorFeatureExtractor
from .network import NetworkState, create_network
from .plasticity import AdaptationStatus, StructuralPlasticityEngine
from .reservoir import ReservoirCore
from .spectral import SpectralRegulator
from .tasks import Task

logger = logging.getLogger(__name__)


@dataclass
class Metrics:
    """Everything an observer needs to know about one tick"""
    loss: float
    avg_loss: float
    active_connections: int
    target_connections: int
    regrown: int
    prediction: float
    target: float
    neuron_count: int
    patience: int
    spectral_radius: float
    status: AdaptationStatus
    hyperparams: Dict[str, float]
    controller: Dict
    events: List[str] = field(default_factory=list)
    step: int = 0

    def to_dict(self) -> Dict:
        return {
            'loss': self.loss,
            'avg_loss': self.avg_loss,
            'active_connections': self.active_connections,
            'target_connections': self.target_connections,
            'regrown': self.regrown,
            'prediction': self.prediction,
            'target': self.target,
            'neuron_count': self.neuron_count,
            'patience': self.patience,
            'spectral_radius': self.spectral_radius,
            'status': self.status.value,
            'hyperparams': dict(self.hyperparams),
            'controller': dict(self.controller),
            'events': list(self.events),
            'step': self.step,
        }


class SelfModifyingReservoir:
    """
    A reservoir that learns its readout online and rewires itself.

    Usage:
        engine = SelfModifyingReservoir(SimulationConfig(seed=1), task=SINE_WAVE)
        for _ in range(1000):
            metrics = engine.step()
    """

    def __init__(self, config: SimulationConfig = None, task: Optional[Task] = None):
        self.config = config or SimulationConfig()
        self.task = task
        self._build()

    def _build(self):
        cfg = self.config
        self.rng = np.random.default_rng(cfg.seed)

        hyperparams = self._initial_hyperparams()
        self.core = ReservoirCore(cfg)
        self.regulator = SpectralRegulator(self.rng, cfg.spectral_small_network,
                                           cfg.spectral_interval_large)
        self.plasticity = StructuralPlasticityEngine(cfg, self.rng, self.regulator)
        self.controller = DualTimescaleController(cfg.controller, self.rng)
        self.features = ErrorFeatureExtractor()

        self.net = create_network(cfg, hyperparams, self.rng)
        self.regulator.regulate(self.net, cfg.init_spectral_iterations)

        self.recent_errors = deque(maxlen=cfg.recent_window)
        self.noise_floor: Optional[float] = None
        self.solved_grace = 0
        self.step_count = 0
        self._prev_recent: Optional[float] = None

        seed_values = self.task.seed() if self.task is not None and self.task.seed else [0.0] * 50
        self.data_series = deque(seed_values, maxlen=cfg.data_history)

    def _initial_hyperparams(self) -> Hyperparameters:
        cfg = self.config
        hp = BIRTH_PRESET.copy()
        if self.task is not None:
            for name, value in self.task.seed_params.items():
                if name in PARAM_RANGES:
                    setattr(hp, name, float(value))
        for name in ('learning_rate', 'lv_growth', 'lv_decay'):
            value = getattr(cfg, name)
            if value is not None:
                setattr(hp, name, value)
        return hp.clamp()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def reset(self, task: Optional[Task] = None):
        """Rebuild the network and controller from scratch, optionally with a new task."""
        if task is not None:
            self.task = task
        self._build()
        logger.info("Simulation reset (task=%s)", self.task.id if self.task else None)

    def get_network_state(self) -> NetworkState:
        return self.net.snapshot()

    def is_locked(self) -> bool:
        return self.net.is_locked

    def get_steps(self) -> int:
        return self.step_count

    def get_controller_debug_state(self) -> Dict:
        return self.controller.get_debug_state()

    def step(self, input_value: Optional[float] = None,
             target: Optional[float] = None) -> Metrics:
        """
        Advance the simulation by one tick.

        Args:
            input_value: External input; taken from the task when omitted
            target: Value to predict; taken from the task when omitted

        Returns:
            Metrics of this tick
        """
        if input_value is None and target is None:
            if self.task is None:
                raise SimulationError("step() needs input and target when no task is attached")
            input_value, target = self.task.generator(self.step_count, self.data_series)
        elif input_value is None or target is None:
            raise SimulationError("step() needs both input and target, or neither")

        input_value = float(input_value)
        target = float(target)
        cfg = self.config
        net = self.net
        hp = net.hyperparams
        events: List[str] = []

        if self.core.input_diverged(input_value, target):
            return self._emergency(target, float('nan'), events, internal=False)

        self.core.forward(net, input_value)
        prediction = self.core.predict(net)
        error = target - prediction
        if self.core.output_diverged(net, error):
            return self._emergency(target, error, events, internal=True)

        abs_error = abs(error)
        self.recent_errors.append(abs_error)
        recent = float(np.mean(self.recent_errors))
        self.features.record(abs_error)
        self.data_series.append(target)

        noise_floor = abs_error if self.noise_floor is None else self.noise_floor
        rate = self.core.effective_learning_rate(
            hp.learning_rate, abs_error, noise_floor, recent, net.is_locked)
        self.noise_floor = noise_floor + hp.smoothing_factor * (abs_error - noise_floor)

        self.core.learn_readout(net, error, rate)
        if not net.is_locked:
            self.core.apply_feedback_alignment(net, error, rate)
            self._regulate()

        # Proposals are held while the fit is frozen
        settled = net.is_locked or recent < cfg.solved_threshold
        decision = self._consult_controller(abs_error, recent, apply=not settled)
        if self.step_count % cfg.strategy_log_interval == 0:
            events.append(
                f"[STRATEGY] {decision.strategy_name} | mode={decision.mode.value} "
                f"gate={decision.gate:.2f} | Loss: {recent:.4f}")

        status = self._update_lock(recent, events)
        if status is None:
            result = self.plasticity.adapt(net, abs_error, recent, decision,
                                           self.step_count, input_value)
            status = result.status
            events.extend(result.events)
            if result.pruned or result.grown is not None:
                self.controller.reset_short_term_memory()

        self.step_count += 1
        for event in events:
            logger.debug(event)
        return self._metrics(abs_error, recent, prediction, target, status, events)

    # ------------------------------------------------------------------
    # Tick stages
    # ------------------------------------------------------------------

    def _regulate(self):
        cfg = self.config
        net = self.net
        if self.regulator.should_run(self.step_count, net.current_size):
            self.regulator.regulate(net, 1)
        if cfg.sinkhorn_interval and self.step_count and \
                self.step_count % cfg.sinkhorn_interval == 0:
            self.regulator.sinkhorn_normalize(net, net.hyperparams.spectral,
                                              cfg.sinkhorn_iterations)
            self.regulator.regulate(net, cfg.growth_spectral_iterations)

    def _consult_controller(self, abs_error: float, recent: float,
                            apply: bool = True) -> ControllerDecision:
        cfg = self.config
        net = self.net
        hp = net.hyperparams
        features = self.features.extract(
            abs_error, recent, net.activations[:net.current_size], hp.learning_rate,
            net.current_target_density, PARAM_RANGES['learning_rate'][1], cfg.density_max)
        decision = self.controller.select(features, recent, hp)
        if apply:
            self._apply_decision(decision)

        if self._prev_recent is not None and \
                self.step_count % cfg.controller.update_interval == 0:
            reward = float(np.clip((self._prev_recent - recent) * cfg.reward_scale, -1.0, 1.0))
            self.controller.reward(reward)
        self._prev_recent = recent
        return decision

    def _apply_decision(self, decision: ControllerDecision):
        """Move the live hyperparameters toward the controller's proposal."""
        cfg = self.config
        net = self.net
        hp = net.hyperparams
        proposed = decision.hyperparams

        hp.learning_rate = self._geometric_step(hp.learning_rate, proposed.learning_rate)
        hp.output_gain = self._geometric_step(hp.output_gain, proposed.output_gain)
        hp.leak = proposed.leak
        hp.spectral = proposed.spectral
        hp.input_scale = proposed.input_scale
        hp.smoothing_factor = proposed.smoothing_factor

        alpha = cfg.lv_alpha_explore if self.step_count < cfg.exploration_steps \
            else cfg.lv_alpha_settle
        window_full = len(net.loss_window) == net.loss_window.maxlen
        flat = window_full and abs(net.regression_slope) < cfg.stagnation_band
        boost = cfg.stagnation_boost if flat else 1.0
        hp.lv_growth += alpha * (proposed.lv_growth * boost - hp.lv_growth)
        hp.lv_decay += alpha * (proposed.lv_decay - hp.lv_decay)
        hp.clamp()

    def _geometric_step(self, current: float, target: float) -> float:
        """Move by at most lr_max_change of the current value per tick."""
        change = self.config.lr_max_change
        base = max(current, 1e-9)
        ratio = min(1.0 + change, max(1.0 - change, target / base))
        return base * ratio

    def _update_lock(self, recent: float, events: List[str]) -> Optional[AdaptationStatus]:
        """
        Lock/unlock state machine.

        Returns:
            The tick's status, or None when structural adaptation should run
        """
        cfg = self.config
        net = self.net
        if recent < cfg.solved_threshold:
            self.solved_grace += 1
            if net.is_locked:
                return AdaptationStatus.LOCKED
            if self.solved_grace >= cfg.solved_grace_steps:
                net.is_locked = True
                net.patience_counter = 0
                events.append(f"[LOCK] Solved; weights frozen. | Loss: {recent:.4f}")
                logger.info("Network locked at step %d (loss %.5f)", self.step_count, recent)
                return AdaptationStatus.LOCKED
            return AdaptationStatus.CONVERGING

        self.solved_grace = 0
        if net.is_locked:
            if recent > cfg.unlock_threshold:
                net.is_locked = False
                events.append(f"[UNLOCK] Error rose; learning resumed. | Loss: {recent:.4f}")
                logger.info("Network unlocked at step %d (loss %.5f)", self.step_count, recent)
                return AdaptationStatus.UNLOCKED
            return AdaptationStatus.LOCKED
        return None

    def _emergency(self, target: float, error: float, events: List[str],
                   internal: bool) -> Metrics:
        """Absorb a diverged tick: penalize, re-stabilize, zero activations."""
        cfg = self.config
        net = self.net
        penalty = self.core.penalty(error)
        self.recent_errors.append(penalty)
        self.features.record(penalty)
        recent = float(np.mean(self.recent_errors))

        if internal:
            self.regulator.sinkhorn_normalize(net, net.hyperparams.spectral,
                                              cfg.sinkhorn_iterations)
        self.regulator.regulate(net, cfg.emergency_iterations)
        self.core.reset_state(net)
        self.solved_grace = 0
        self._prev_recent = recent

        events.append(f"[STABILIZE] Numeric divergence; activations reset. | Error: {penalty:.4f}")
        logger.warning("Divergence at step %d; network stabilized", self.step_count)
        self.step_count += 1
        safe_target = target if np.isfinite(target) else 0.0
        return self._metrics(penalty, recent, 0.0, safe_target,
                             AdaptationStatus.STABILIZING, events)

    def _metrics(self, loss: float, avg_loss: float, prediction: float, target: float,
                 status: AdaptationStatus, events: List[str]) -> Metrics:
        net = self.net
        return Metrics(
            loss=float(loss),
            avg_loss=float(avg_loss),
            active_connections=net.count_connections(),
            target_connections=net.target_connections(),
            regrown=net.total_regrown,
            prediction=float(prediction),
            target=float(target),
            neuron_count=net.current_size,
            patience=net.patience_counter,
            spectral_radius=float(net.current_spectral_radius),
            status=status,
            hyperparams=net.hyperparams.to_dict(),
            controller=self.controller.get_state(),
            events=events,
            step=self.step_count,
        )
