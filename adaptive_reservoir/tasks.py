"""
Benchmark tasks.

A task supplies (input, target) pairs one tick at a time. The generator
receives the tick index and the recent target history, so chaotic series
such as Mackey-Glass can be continued from the network's own data stream.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np


class TaskType(Enum):
    FORECAST = "forecast"
    CLASSIFY = "classify"


Generator = Callable[[int, Sequence[float]], Tuple[float, float]]


@dataclass
class Task:
    """A source of (input, target) pairs"""
    id: str
    name: str
    type: TaskType
    description: str
    generator: Generator
    seed: Optional[Callable[[], List[float]]] = None
    seed_params: Dict[str, float] = field(default_factory=dict)


def _sine(t: int, history: Sequence[float]) -> Tuple[float, float]:
    return math.sin(t * 0.1), math.sin((t + 1) * 0.1)


def _square(t: int, history: Sequence[float]) -> Tuple[float, float]:
    def level(k: int) -> float:
        return 1.0 if (k // 50) % 2 == 0 else -1.0
    return level(t), level(t + 1)


_MG_TAU = 17


def _mackey_glass_seed() -> List[float]:
    rng = np.random.default_rng(17)
    return (1.2 + 0.05 * rng.standard_normal(50)).tolist()


def _mackey_glass(t: int, history: Sequence[float]) -> Tuple[float, float]:
    """One Euler step of dx/dt = 0.2 x(t-tau) / (1 + x(t-tau)^10) - 0.1 x(t)."""
    if len(history) < _MG_TAU:
        x, delayed = 1.2, 1.2
    else:
        x, delayed = history[-1], history[-_MG_TAU]
    nxt = x + 0.2 * delayed / (1.0 + delayed ** 10) - 0.1 * x
    return x, nxt


_PATTERN_LENGTH = 10
_PATTERNS = np.array([
    [0.0, 0.2, 0.4, 0.6, 0.8, 1.0, 0.8, 0.6, 0.4, 0.2],
    [1.0, 0.0, 1.0, 0.0, 1.0, 0.0, 1.0, 0.0, 1.0, 0.0],
    [0.0, 0.0, 0.0, 1.0, 1.0, 1.0, 0.0, 0.0, 0.0, 1.0],
    [0.5, 0.5, -0.5, -0.5, 0.5, 0.5, -0.5, -0.5, 0.5, 0.5],
])
_LABELS = np.linspace(-1.0, 1.0, len(_PATTERNS))


def _temporal_patterns(t: int, history: Sequence[float]) -> Tuple[float, float]:
    k = (t // _PATTERN_LENGTH) % len(_PATTERNS)
    return float(_PATTERNS[k, t % _PATTERN_LENGTH]), float(_LABELS[k])


SINE_WAVE = Task(
    id='sine_wave',
    name='Sine Wave',
    type=TaskType.FORECAST,
    description='Predict the next sample of a slow sine wave.',
    generator=_sine,
)

SQUARE_WAVE = Task(
    id='square_wave',
    name='Square Switch',
    type=TaskType.FORECAST,
    description='Predict a square wave that flips sign every 50 ticks.',
    generator=_square,
    seed_params={'leak': 0.6, 'spectral': 0.9},
)

MACKEY_GLASS = Task(
    id='mackey_glass',
    name='Mackey-Glass',
    type=TaskType.FORECAST,
    description='One-step prediction of the Mackey-Glass delay system (tau=17).',
    generator=_mackey_glass,
    seed=_mackey_glass_seed,
    seed_params={'leak': 0.3, 'spectral': 0.95},
)

TEMPORAL_PATTERNS = Task(
    id='temporal_patterns',
    name='Temporal Pattern Classification',
    type=TaskType.CLASSIFY,
    description='Label which of four 10-step patterns is being played.',
    generator=_temporal_patterns,
    seed_params={'leak': 0.5, 'input_scale': 1.0},
)

TASKS: Dict[str, Task] = {
    task.id: task for task in (SINE_WAVE, SQUARE_WAVE, MACKEY_GLASS, TEMPORAL_PATTERNS)
}


def get_task(task_id: str) -> Task:
    if task_id not in TASKS:
        raise KeyError(f"Unknown task '{task_id}'. Available: {', '.join(sorted(TASKS))}")
    return TASKS[task_id]
