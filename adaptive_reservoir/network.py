"""
Network aggregate: all mutable numeric state of one reservoir.

Storage is sized for max_neurons up front. Neurons with index >= current_size
are dormant: zero activation, zero weights, zero readout. A synapse exists
exactly where weights[i, j] != 0. Row i is the receiving neuron, column j the
sending neuron.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Optional

import numpy as np

from .config import Hyperparameters, SimulationConfig


@dataclass
class Network:
    """Mutable network state. Owned and mutated only by the engine."""
    activations: np.ndarray
    prev_activations: np.ndarray
    weights: np.ndarray
    readout: np.ndarray
    input_weights: np.ndarray
    feedback_weights: np.ndarray
    neuron_types: np.ndarray
    neuron_energy: np.ndarray
    engram_trace: np.ndarray
    spectral_u: np.ndarray
    spectral_v: np.ndarray
    hyperparams: Hyperparameters
    max_neurons: int
    current_size: int
    current_target_density: float
    current_spectral_radius: float = 0.0
    total_regrown: int = 0
    patience_counter: int = 0
    regression_slope: float = 0.0
    is_locked: bool = False
    loss_window: Deque[float] = field(default_factory=deque)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def active_weights(self) -> np.ndarray:
        """View of the weight block among active neurons."""
        n = self.current_size
        return self.weights[:n, :n]

    def count_connections(self) -> int:
        return int(np.count_nonzero(self.active_weights()))

    def target_connections(self) -> int:
        return int(self.current_target_density * self.current_size * self.current_size)

    def snapshot(self) -> 'NetworkState':
        """Read-only copy of the current state."""
        def frozen(array: np.ndarray) -> np.ndarray:
            copy = np.array(array, copy=True)
            copy.setflags(write=False)
            return copy

        return NetworkState(
            activations=frozen(self.activations),
            weights=frozen(self.weights),
            readout=frozen(self.readout),
            input_weights=frozen(self.input_weights),
            neuron_types=frozen(self.neuron_types),
            neuron_energy=frozen(self.neuron_energy),
            current_size=self.current_size,
            max_neurons=self.max_neurons,
            current_target_density=self.current_target_density,
            current_spectral_radius=self.current_spectral_radius,
            patience_counter=self.patience_counter,
            is_locked=self.is_locked,
            hyperparams=self.hyperparams.to_dict(),
        )


@dataclass(frozen=True)
class NetworkState:
    """Immutable snapshot handed to observers (plots, tests, dashboards)."""
    activations: np.ndarray
    weights: np.ndarray
    readout: np.ndarray
    input_weights: np.ndarray
    neuron_types: np.ndarray
    neuron_energy: np.ndarray
    current_size: int
    max_neurons: int
    current_target_density: float
    current_spectral_radius: float
    patience_counter: int
    is_locked: bool
    hyperparams: Dict[str, float]

    def get_stats(self) -> Dict[str, float]:
        n = self.current_size
        block = self.weights[:n, :n]
        types = self.neuron_types[:n]
        return {
            'neurons': n,
            'connections': int(np.count_nonzero(block)),
            'excitatory_fraction': float(np.mean(types > 0)) if n else 0.0,
            'mean_abs_weight': float(np.abs(block[block != 0]).mean()) if block.any() else 0.0,
            'mean_energy': float(self.neuron_energy[:n].mean()) if n else 0.0,
            'spectral_radius': self.current_spectral_radius,
        }


def draw_neuron_types(count: int, excitatory_fraction: float,
                      rng: np.random.Generator) -> np.ndarray:
    """+1 excitatory with the given probability, else -1 inhibitory."""
    return np.where(rng.random(count) < excitatory_fraction, 1, -1).astype(np.int8)


def signed_magnitudes(magnitudes: np.ndarray, rows: np.ndarray, net: Network,
                      enforce_dales_law: bool, rng: np.random.Generator) -> np.ndarray:
    """
    Attach signs to non-negative magnitudes destined for the given rows.

    Under Dale's law the sign is the row neuron's type; otherwise it is random.
    """
    if enforce_dales_law:
        return magnitudes * net.neuron_types[rows]
    return magnitudes * np.where(rng.random(magnitudes.shape) < 0.5, -1.0, 1.0)


def create_network(config: SimulationConfig, hyperparams: Hyperparameters,
                   rng: np.random.Generator) -> Network:
    """
    Build the initial sparse network.

    Existing synapses start at U(0, 1) * spectral target magnitude; the
    regulator brings the block under the target right afterwards.
    """
    m = config.max_neurons
    n = config.initial_neurons

    net = Network(
        activations=np.zeros(m),
        prev_activations=np.zeros(m),
        weights=np.zeros((m, m)),
        readout=np.zeros(m),
        input_weights=rng.uniform(-1.0, 1.0, m),
        feedback_weights=rng.uniform(-1.0, 1.0, m),
        neuron_types=draw_neuron_types(m, config.excitatory_fraction, rng),
        neuron_energy=np.full(m, config.energy_max),
        engram_trace=np.zeros((m, m)),
        spectral_u=rng.uniform(-0.5, 0.5, m),
        spectral_v=rng.uniform(-0.5, 0.5, m),
        hyperparams=hyperparams,
        max_neurons=m,
        current_size=n,
        current_target_density=config.initial_density,
        loss_window=deque(maxlen=config.slope_window),
    )

    mask = rng.random((n, n)) < config.initial_density
    rows, cols = np.nonzero(mask)
    magnitudes = rng.random(rows.size) * hyperparams.spectral
    net.weights[rows, cols] = signed_magnitudes(
        magnitudes, rows, net, config.enforce_dales_law, rng)
    return net


def excitatory_fraction(net: Network) -> float:
    n = net.current_size
    if n == 0:
        return 0.0
    return float(np.mean(net.neuron_types[:n] > 0))


def strongest_neuron(net: Network) -> Optional[int]:
    """Index of the most active neuron, or None for an empty network."""
    n = net.current_size
    if n == 0:
        return None
    return int(np.argmax(np.abs(net.activations[:n])))
