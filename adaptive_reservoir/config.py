"""
Configuration for the self-modifying reservoir.

Three kinds of settings live here:
- SimulationConfig: immutable, fixed for the lifetime of an engine
- ControllerConfig: immutable settings of the regime controller
- Hyperparameters: the live, controller-tuned parameter set

Configs are validated at construction. Out-of-range values raise
ConfigurationError instead of being clamped.
"""

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class MitosisMode(Enum):
    """How a newly grown neuron is wired"""
    CLONE = "clone"                 # Copy the most active neuron's wiring
    PREFERENTIAL = "preferential"   # Attach preferentially to active neurons


class CompetitionMode(Enum):
    """Which pruning rule decides synapse survival"""
    GLOBAL = "global"     # Merit-based heartbeat prune
    LATERAL = "lateral"   # Local neighbour competition along a row


class ControllerHead(Enum):
    """Output head of the regime controller"""
    DISCRETE = "discrete"       # Pick one of the strategy presets
    CONTINUOUS = "continuous"   # Emit bounded deltas per hyperparameter


# Engine-enforced bounds for every live hyperparameter.
PARAM_RANGES: Dict[str, Tuple[float, float]] = {
    'leak': (0.2, 0.8),
    'spectral': (0.6, 1.0),
    'input_scale': (0.6, 1.2),
    'learning_rate': (0.0, 0.2),
    'smoothing_factor': (0.01, 0.1),
    'lv_growth': (0.0, 0.1),
    'lv_decay': (0.0, 0.06),
    'output_gain': (0.6, 1.4),
}

PARAM_NAMES: Tuple[str, ...] = tuple(PARAM_RANGES.keys())


@dataclass
class Hyperparameters:
    """Live hyperparameters, owned by the engine and tuned by the controller"""
    leak: float = 0.4
    spectral: float = 0.85
    input_scale: float = 0.9
    learning_rate: float = 0.05
    smoothing_factor: float = 0.05
    lv_growth: float = 0.03
    lv_decay: float = 0.01
    output_gain: float = 1.0

    def copy(self) -> 'Hyperparameters':
        return Hyperparameters(**asdict(self))

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    def clamp(self) -> 'Hyperparameters':
        """Clamp every field into PARAM_RANGES in place."""
        for name, (low, high) in PARAM_RANGES.items():
            setattr(self, name, float(min(high, max(low, getattr(self, name)))))
        return self


@dataclass(frozen=True)
class ControllerConfig:
    """
    Settings of the dual-timescale regime controller.

    Groups:
        Architecture: hidden_size, input_features, head
        Initialization: short_term_scale, long_term_scale, gate_scale
        Learning: short_term_lr, long_term_lr, gate_lr, strategy_lr,
            eligibility_decay, baseline_alpha, min_advantage, weight_clip
        Policy: warmup_steps, strategy_lock_duration, panic_threshold,
            settle_threshold, struggle_threshold, temperature, update_interval
        Continuous head: delta_scale, exploration_noise
        Structure: structural_beta_gain, structural_beta_threshold,
            structural_bias_threshold
    """
    # === ARCHITECTURE ===
    hidden_size: int = 32
    input_features: int = 10
    head: ControllerHead = ControllerHead.DISCRETE

    # === INITIALIZATION ===
    short_term_scale: float = 0.5
    long_term_scale: float = 0.2
    gate_scale: float = 0.1

    # === LEARNING ===
    short_term_lr: float = 0.005
    long_term_lr: float = 0.0005
    gate_lr: float = 0.005
    strategy_lr: float = 0.001
    eligibility_decay: float = 0.95
    baseline_alpha: float = 0.01
    min_advantage: float = 0.02
    weight_clip: float = 3.0
    preactivation_clip: float = 50.0
    cell_clip: float = 10.0

    # === POLICY ===
    warmup_steps: int = 100
    strategy_lock_duration: int = 100
    panic_threshold: float = 0.5
    settle_threshold: float = 0.1
    struggle_threshold: float = 0.3
    temperature: float = 0.3
    update_interval: int = 1

    # === CONTINUOUS HEAD ===
    delta_scale: float = 0.05
    exploration_noise: float = 0.3

    # === STRUCTURE ===
    structural_beta_gain: float = 10.0
    structural_beta_threshold: float = 0.3
    structural_bias_threshold: float = 0.3

    def __post_init__(self):
        if self.hidden_size <= 0:
            raise ConfigurationError(f"hidden_size must be positive, got {self.hidden_size}")
        if self.input_features != 10:
            raise ConfigurationError(
                f"input_features must be 10 (one per error feature), got {self.input_features}")
        if not 0.0 < self.temperature <= 1.0:
            raise ConfigurationError(f"temperature must be in (0, 1], got {self.temperature}")
        if not 0.0 < self.eligibility_decay < 1.0:
            raise ConfigurationError(
                f"eligibility_decay must be in (0, 1), got {self.eligibility_decay}")
        if not 0.0 < self.baseline_alpha <= 1.0:
            raise ConfigurationError(f"baseline_alpha must be in (0, 1], got {self.baseline_alpha}")
        if self.warmup_steps < 0 or self.strategy_lock_duration < 0:
            raise ConfigurationError("warmup_steps and strategy_lock_duration must be non-negative")
        if self.update_interval <= 0:
            raise ConfigurationError(f"update_interval must be positive, got {self.update_interval}")
        if self.panic_threshold <= 0:
            raise ConfigurationError(f"panic_threshold must be positive, got {self.panic_threshold}")
        if not 0.0 < self.settle_threshold < self.struggle_threshold:
            raise ConfigurationError(
                "settle_threshold must be positive and below struggle_threshold")
        if self.exploration_noise <= 0 or self.delta_scale <= 0:
            raise ConfigurationError("exploration_noise and delta_scale must be positive")
        for name in ('short_term_lr', 'long_term_lr', 'gate_lr', 'strategy_lr', 'min_advantage'):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be non-negative, got {getattr(self, name)}")


@dataclass(frozen=True)
class SimulationConfig:
    """
    Immutable configuration of one simulation.

    Learning-rate and Lotka-Volterra overrides default to None, meaning the
    birth preset decides the starting values.
    """
    # === STRUCTURE ===
    max_neurons: int = 64
    initial_neurons: int = 8
    initial_density: float = 0.2
    density_min: float = 0.1
    density_max: float = 0.5
    enforce_dales_law: bool = True
    excitatory_fraction: float = 0.8
    prune_threshold: float = 0.01

    # === GOALS ===
    patience_limit: int = 128
    solved_threshold: float = 0.01
    unlock_threshold: float = 0.02
    learning_slope_threshold: float = -0.0005
    solved_grace_steps: int = 100
    recent_window: int = 20
    slope_window: int = 200

    # === START OVERRIDES ===
    learning_rate: Optional[float] = None
    lv_growth: Optional[float] = None
    lv_decay: Optional[float] = None

    # === RESERVOIR CORE ===
    energy_modulation: bool = True
    energy_depletion: float = 0.002
    energy_recharge: float = 0.002
    energy_min: float = 0.0
    energy_max: float = 1.0
    readout_delta_clamp: float = 0.1
    noise_gate_factor: float = 0.8
    explosion_threshold: float = 50.0
    input_limit: float = 1.0e3
    explosion_penalty_cap: float = 10.0
    emergency_iterations: int = 20
    feedback_scale: float = 0.1
    feedback_delta_clamp: float = 0.01
    feedback_weight_decay: float = 0.001
    feedback_min_rate: float = 1e-4
    engram_decay: float = 0.99
    engram_gain: float = 10.0

    # === SPECTRAL REGULATION ===
    spectral_small_network: int = 256
    spectral_interval_large: int = 10
    init_spectral_iterations: int = 10
    growth_spectral_iterations: int = 5
    sinkhorn_interval: int = 0          # 0 disables periodic Sinkhorn
    sinkhorn_iterations: int = 10

    # === STRUCTURAL PLASTICITY ===
    mitosis_mode: MitosisMode = MitosisMode.PREFERENTIAL
    clone_noise: float = 0.1
    growth_cooldown: int = 100
    heartbeat_prune_interval: int = 500
    readout_merit_gain: float = 0.5
    bridge_bonus: float = 0.005
    engram_merit_gain: float = 0.05
    winter_period: int = 1000           # 0 disables winter
    winter_duration: int = 50
    winter_multiplier: float = 3.0
    competition_mode: CompetitionMode = CompetitionMode.GLOBAL
    lateral_radius: int = 2
    lateral_inhibition: float = 1.0
    lateral_growth: float = 0.05
    lateral_rate: float = 0.01
    lateral_interval: int = 50
    regrowth_min_batch: int = 50
    regrowth_max_batch: int = 500
    regrowth_fraction: float = 0.1
    regrowth_attempt_factor: int = 3
    regrowth_weight_scale: float = 0.1
    rewire_weight_scale: float = 0.01
    rewire_limit: int = 50
    active_threshold: float = 0.1

    # === HYPERPARAMETER APPLICATION ===
    lr_max_change: float = 0.02
    exploration_steps: int = 500
    lv_alpha_explore: float = 0.3
    lv_alpha_settle: float = 0.1
    stagnation_band: float = 1e-4
    stagnation_boost: float = 3.0
    reward_scale: float = 50.0
    strategy_log_interval: int = 50
    data_history: int = 500

    seed: Optional[int] = None
    controller: ControllerConfig = field(default_factory=ControllerConfig)

    def __post_init__(self):
        self._validate()

    def _validate(self):
        if self.max_neurons <= 0:
            raise ConfigurationError(f"max_neurons must be positive, got {self.max_neurons}")
        if not 0 < self.initial_neurons <= self.max_neurons:
            raise ConfigurationError(
                f"initial_neurons must be in (0, max_neurons={self.max_neurons}], "
                f"got {self.initial_neurons}")
        if not 0.0 < self.density_min <= self.initial_density <= self.density_max <= 1.0:
            raise ConfigurationError(
                "densities must satisfy 0 < density_min <= initial_density <= density_max <= 1, "
                f"got {self.density_min}, {self.initial_density}, {self.density_max}")
        if not 0.0 <= self.excitatory_fraction <= 1.0:
            raise ConfigurationError(
                f"excitatory_fraction must be in [0, 1], got {self.excitatory_fraction}")
        for name in ('prune_threshold', 'solved_threshold', 'unlock_threshold',
                     'explosion_threshold', 'input_limit', 'explosion_penalty_cap',
                     'readout_delta_clamp', 'feedback_delta_clamp'):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.solved_threshold > self.unlock_threshold:
            raise ConfigurationError(
                f"solved_threshold ({self.solved_threshold}) must not exceed "
                f"unlock_threshold ({self.unlock_threshold})")
        if self.patience_limit <= 0:
            raise ConfigurationError(f"patience_limit must be positive, got {self.patience_limit}")
        if self.recent_window <= 0:
            raise ConfigurationError(f"recent_window must be positive, got {self.recent_window}")
        if self.slope_window < 2 or self.slope_window % 2:
            raise ConfigurationError(
                f"slope_window must be an even number >= 2, got {self.slope_window}")
        if not self.energy_min < self.energy_max:
            raise ConfigurationError(
                f"energy_min ({self.energy_min}) must be below energy_max ({self.energy_max})")
        if not 0.0 < self.noise_gate_factor <= 1.0:
            raise ConfigurationError(
                f"noise_gate_factor must be in (0, 1], got {self.noise_gate_factor}")
        if not 0.0 < self.engram_decay < 1.0:
            raise ConfigurationError(f"engram_decay must be in (0, 1), got {self.engram_decay}")
        for name in ('growth_cooldown', 'heartbeat_prune_interval', 'spectral_interval_large',
                     'lateral_interval', 'strategy_log_interval', 'data_history',
                     'emergency_iterations', 'init_spectral_iterations',
                     'growth_spectral_iterations', 'sinkhorn_iterations',
                     'regrowth_attempt_factor'):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.winter_period < 0 or self.sinkhorn_interval < 0:
            raise ConfigurationError("winter_period and sinkhorn_interval must be non-negative")
        if self.winter_period and not 0 < self.winter_duration < self.winter_period:
            raise ConfigurationError(
                f"winter_duration must be in (0, winter_period), got {self.winter_duration}")
        if self.winter_multiplier < 1.0:
            raise ConfigurationError(
                f"winter_multiplier must be >= 1, got {self.winter_multiplier}")
        if self.regrowth_min_batch > self.regrowth_max_batch:
            raise ConfigurationError("regrowth_min_batch must not exceed regrowth_max_batch")
        if not 0.0 < self.lr_max_change < 1.0:
            raise ConfigurationError(f"lr_max_change must be in (0, 1), got {self.lr_max_change}")
        if self.lateral_radius < 1:
            raise ConfigurationError(f"lateral_radius must be >= 1, got {self.lateral_radius}")
        for name in ('learning_rate', 'lv_growth', 'lv_decay'):
            value = getattr(self, name)
            if value is None:
                continue
            low, high = PARAM_RANGES[name]
            if not low <= value <= high:
                raise ConfigurationError(f"{name} must be in [{low}, {high}], got {value}")
        logger.debug("SimulationConfig validated (max_neurons=%d, seed=%s)", self.max_neurons, self.seed)
