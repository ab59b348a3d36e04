"""
Neuron Fatigue (short-term energy modulation)

Every active neuron carries an energy level. Each tick:
1. Its state is multiplied by its energy (a tired neuron speaks quietly)
2. Energy DEPLETES in proportion to how strongly it fired
3. Energy RECOVERS by a fixed amount when idle

This damps runaway loops: a neuron that fires hard for many ticks
fades until it has rested.
"""

from dataclasses import dataclass

import numpy as np

from .config import SimulationConfig


@dataclass
class FatigueParams:
    """Parameters for energy dynamics."""
    # Energy lost per unit of |state| per tick
    depletion: float = 0.002

    # Energy regained per tick
    recharge: float = 0.002

    # Bounds
    energy_min: float = 0.0
    energy_max: float = 1.0

    @classmethod
    def from_config(cls, config: SimulationConfig) -> 'FatigueParams':
        return cls(
            depletion=config.energy_depletion,
            recharge=config.energy_recharge,
            energy_min=config.energy_min,
            energy_max=config.energy_max,
        )


class NeuronFatigue:
    """Applies energy modulation to a vector of neuron states in place."""

    def __init__(self, params: FatigueParams = None):
        self.params = params or FatigueParams()

    def modulate(self, states: np.ndarray, energy: np.ndarray) -> None:
        """
        Scale states by energy, then update energy from the scaled states.

        Args:
            states: Active-neuron states, modified in place
            energy: Matching energy levels, modified in place
        """
        p = self.params
        states *= energy
        energy -= np.abs(states) * p.depletion
        energy += p.recharge
        np.clip(energy, p.energy_min, p.energy_max, out=energy)

    def refill(self, energy: np.ndarray) -> None:
        energy.fill(self.params.energy_max)
