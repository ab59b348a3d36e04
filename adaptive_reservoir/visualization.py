"""
Simulation Visualization Tools

matplotlib-based plots for debugging and monitoring a run:
- Loss curves (instant and windowed)
- Structure over time (neurons, synapses, density target)
- Live hyperparameters chosen by the controller
- Weight matrix heatmap of a network snapshot

Usage:
    from adaptive_reservoir.visualization import SimulationRecorder

    recorder = SimulationRecorder()
    for _ in range(2000):
        recorder.record(engine.step())

    recorder.plot_loss()
    recorder.plot_weights(engine.get_network_state())
    recorder.save_all("session_plots/")
"""

import os
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional

import matplotlib.pyplot as plt
import numpy as np

from .engine import Metrics
from .network import NetworkState


@dataclass
class RecordedStep:
    """Single tick of recorded data."""
    step: int
    loss: float
    avg_loss: float
    neuron_count: int
    active_connections: int
    target_connections: int
    spectral_radius: float
    status: str
    strategy: str
    hyperparams: Dict[str, float]


class SimulationRecorder:
    """
    Records Metrics over time and draws them.

    Only ever reads Metrics and NetworkState snapshots.
    """

    def __init__(self, max_history: int = 5000, max_events: int = 1000):
        self.max_history = max_history
        self.history: deque = deque(maxlen=max_history)
        self.events: deque = deque(maxlen=max_events)

    def record(self, metrics: Metrics):
        """Record one tick (call after each engine.step())."""
        self.history.append(RecordedStep(
            step=metrics.step,
            loss=metrics.loss,
            avg_loss=metrics.avg_loss,
            neuron_count=metrics.neuron_count,
            active_connections=metrics.active_connections,
            target_connections=metrics.target_connections,
            spectral_radius=metrics.spectral_radius,
            status=metrics.status.value,
            strategy=str(metrics.controller.get('strategy', '')),
            hyperparams=dict(metrics.hyperparams),
        ))
        self.events.extend(metrics.events)

    def clear(self):
        self.history.clear()
        self.events.clear()

    def get_arrays(self) -> Dict[str, np.ndarray]:
        """Recorded history as numpy arrays keyed by field name."""
        if not self.history:
            return {}
        steps = list(self.history)
        arrays = {
            'step': np.array([s.step for s in steps]),
            'loss': np.array([s.loss for s in steps]),
            'avg_loss': np.array([s.avg_loss for s in steps]),
            'neuron_count': np.array([s.neuron_count for s in steps]),
            'active_connections': np.array([s.active_connections for s in steps]),
            'target_connections': np.array([s.target_connections for s in steps]),
            'spectral_radius': np.array([s.spectral_radius for s in steps]),
        }
        for name in steps[0].hyperparams:
            arrays[name] = np.array([s.hyperparams[name] for s in steps])
        return arrays

    def plot_loss(self, figsize: tuple = (12, 5), save_path: Optional[str] = None):
        data = self.get_arrays()
        if not data:
            return None
        fig, ax = plt.subplots(figsize=figsize)
        ax.plot(data['step'], data['loss'], alpha=0.3, label='loss')
        ax.plot(data['step'], data['avg_loss'], label='windowed loss')
        ax.set_yscale('log')
        ax.set_xlabel('step')
        ax.set_ylabel('|error|')
        ax.legend()
        ax.set_title('Prediction Error')
        return self._finish(fig, save_path)

    def plot_structure(self, figsize: tuple = (12, 8), save_path: Optional[str] = None):
        data = self.get_arrays()
        if not data:
            return None
        fig, axes = plt.subplots(3, 1, figsize=figsize, sharex=True)
        axes[0].plot(data['step'], data['neuron_count'])
        axes[0].set_ylabel('neurons')
        axes[1].plot(data['step'], data['active_connections'], label='active')
        axes[1].plot(data['step'], data['target_connections'], '--', label='target')
        axes[1].set_ylabel('synapses')
        axes[1].legend()
        axes[2].plot(data['step'], data['spectral_radius'])
        axes[2].set_ylabel('spectral norm')
        axes[2].set_xlabel('step')
        fig.suptitle('Network Structure')
        return self._finish(fig, save_path)

    def plot_hyperparams(self, figsize: tuple = (12, 8), save_path: Optional[str] = None):
        data = self.get_arrays()
        if not data:
            return None
        names = list(self.history[0].hyperparams)
        fig, axes = plt.subplots(len(names), 1, figsize=figsize, sharex=True)
        for ax, name in zip(axes, names):
            ax.plot(data['step'], data[name])
            ax.set_ylabel(name, fontsize=8)
        axes[-1].set_xlabel('step')
        fig.suptitle('Controller Hyperparameters')
        return self._finish(fig, save_path)

    def plot_weights(self, state: NetworkState, figsize: tuple = (7, 6),
                     save_path: Optional[str] = None):
        n = state.current_size
        block = state.weights[:n, :n]
        limit = float(np.abs(block).max()) or 1.0
        fig, ax = plt.subplots(figsize=figsize)
        image = ax.imshow(block, cmap='RdBu_r', vmin=-limit, vmax=limit)
        fig.colorbar(image, ax=ax, label='weight')
        ax.set_xlabel('sender')
        ax.set_ylabel('receiver')
        ax.set_title(f'Recurrent Weights ({n} neurons)')
        return self._finish(fig, save_path)

    def save_all(self, output_dir: str = "reservoir_plots",
                 state: Optional[NetworkState] = None) -> List[str]:
        """Save every plot into output_dir and return the file paths."""
        os.makedirs(output_dir, exist_ok=True)
        paths = []
        for name, plot in (('loss', self.plot_loss),
                           ('structure', self.plot_structure),
                           ('hyperparams', self.plot_hyperparams)):
            path = os.path.join(output_dir, f'{name}.png')
            if plot(save_path=path) is not None:
                paths.append(path)
        if state is not None:
            path = os.path.join(output_dir, 'weights.png')
            self.plot_weights(state, save_path=path)
            paths.append(path)
        return paths

    @staticmethod
    def _finish(fig, save_path: Optional[str]):
        fig.tight_layout()
        if save_path:
            fig.savefig(save_path, dpi=100)
            plt.close(fig)
        return fig
