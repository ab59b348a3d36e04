# Adaptive Reservoir - a recurrent network that rewires itself while it learns
#
# MODULES:
# ├── engine.py        - One synchronous tick, public API, Metrics
# ├── network.py       - Network aggregate and read-only snapshots
# ├── reservoir.py     - Leaky tanh update, LMS readout, divergence guard
# ├── fatigue.py       - Per-neuron energy modulation
# ├── spectral.py      - Power-iteration norm control, Sinkhorn balancing
# ├── plasticity.py    - Density dynamics, mitosis, pruning, regrowth, rewiring
# ├── controller.py    - Dual-timescale LSTM regime controller (REINFORCE)
# ├── features.py      - Error-signal features for the controller
# ├── tasks.py         - Benchmark (input, target) sources
# └── visualization.py - Matplotlib plots (optional, not imported here)

# =============================================================================
# PRIMARY EXPORTS
# =============================================================================

from .engine import (
    SelfModifyingReservoir,
    Metrics,
)

from .config import (
    SimulationConfig,
    ControllerConfig,
    Hyperparameters,
    MitosisMode,
    CompetitionMode,
    ControllerHead,
    PARAM_RANGES,
)

from .errors import (
    AdaptiveReservoirError,
    ConfigurationError,
    SimulationError,
)

# =============================================================================
# SUPPORTING MODULES
# =============================================================================

from .network import (
    Network,
    NetworkState,
    create_network,
)

from .plasticity import (
    AdaptationStatus,
    StructuralPlasticityEngine,
)

from .controller import (
    DualTimescaleController,
    ControllerMode,
    Strategy,
    STRATEGY_PRESETS,
)

from .spectral import SpectralRegulator
from .reservoir import ReservoirCore

from .tasks import (
    Task,
    TaskType,
    TASKS,
    SINE_WAVE,
    SQUARE_WAVE,
    MACKEY_GLASS,
    TEMPORAL_PATTERNS,
    get_task,
)

__version__ = "0.1.0"

__all__ = [
    # Engine
    'SelfModifyingReservoir',
    'Metrics',
    # Configuration
    'SimulationConfig',
    'ControllerConfig',
    'Hyperparameters',
    'MitosisMode',
    'CompetitionMode',
    'ControllerHead',
    'PARAM_RANGES',
    # Errors
    'AdaptiveReservoirError',
    'ConfigurationError',
    'SimulationError',
    # Network
    'Network',
    'NetworkState',
    'create_network',
    # Components
    'AdaptationStatus',
    'StructuralPlasticityEngine',
    'DualTimescaleController',
    'ControllerMode',
    'Strategy',
    'STRATEGY_PRESETS',
    'SpectralRegulator',
    'ReservoirCore',
    # Tasks
    'Task',
    'TaskType',
    'TASKS',
    'SINE_WAVE',
    'SQUARE_WAVE',
    'MACKEY_GLASS',
    'TEMPORAL_PATTERNS',
    'get_task',
]
