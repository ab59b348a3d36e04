"""
Error-signal features for the regime controller.

The controller never sees the raw series. It sees ten bounded features
describing how the error behaves across time scales, plus a little
proprioception about the network itself.
"""

from collections import deque
from typing import Deque, List, Optional

import numpy as np

FEATURE_NAMES: List[str] = [
    'low_frequency_trend',
    'mid_frequency_cycle',
    'high_frequency_volatility',
    'spike',
    'phase',
    'smoothed_trend',
    'entropy',
    'loss_reflex',
    'learning_rate_level',
    'density_level',
]


def activation_entropy(activations: np.ndarray, bins: int = 10) -> float:
    """Normalized Shannon entropy of the activation histogram over [-1, 1]."""
    if activations.size == 0:
        return 0.0
    hist, _ = np.histogram(np.clip(activations, -1.0, 1.0), bins=bins, range=(-1.0, 1.0))
    total = hist.sum()
    if total == 0:
        return 0.0
    p = hist[hist > 0] / total
    return float(-(p * np.log(p)).sum() / np.log(bins))


class ErrorFeatureExtractor:
    """
    Tracks the absolute error history and turns it into a feature vector.

    Window-based features stay at zero until enough history exists.
    """

    def __init__(self, history: int = 128, fast_alpha: float = 0.2,
                 slow_alpha: float = 0.02):
        self.history: Deque[float] = deque(maxlen=history)
        self.fast_alpha = fast_alpha
        self.slow_alpha = slow_alpha
        self.fast_ema: Optional[float] = None
        self.slow_ema: Optional[float] = None

    def reset(self):
        self.history.clear()
        self.fast_ema = None
        self.slow_ema = None

    def record(self, abs_error: float):
        self.history.append(abs_error)
        if self.fast_ema is None:
            self.fast_ema = self.slow_ema = abs_error
        else:
            self.fast_ema += self.fast_alpha * (abs_error - self.fast_ema)
            self.slow_ema += self.slow_alpha * (abs_error - self.slow_ema)

    def extract(self, abs_error: float, recent_error: float, activations: np.ndarray,
                learning_rate: float, density: float, max_learning_rate: float,
                max_density: float) -> np.ndarray:
        errors = np.asarray(self.history, dtype=float)
        features = np.zeros(len(FEATURE_NAMES))

        if errors.size >= 32:
            window = errors.size
            half = window // 2
            # Positive when the error is rising across the window
            features[0] = np.tanh((errors[half:].mean() - errors[:half].mean()) * 20.0)
            centered = errors - errors.mean()
            crossings = int(np.count_nonzero(centered[1:] * centered[:-1] < 0))
            features[1] = np.tanh((crossings / (window / 8.0) - 1.0) * 2.0)
            features[2] = np.tanh(np.diff(errors).var() * 100.0)

        features[3] = np.tanh((abs_error - recent_error) * 10.0)

        if errors.size >= 16:
            features[4] = np.tanh((errors[-8:].mean() - errors[-16:-8].mean()) * 50.0)

        if self.fast_ema is not None:
            features[5] = np.tanh((self.fast_ema - self.slow_ema) * 50.0)

        features[6] = activation_entropy(activations)
        features[7] = np.tanh(abs_error * 10.0)
        if max_learning_rate > 0:
            features[8] = learning_rate / max_learning_rate
        if max_density > 0:
            features[9] = density / max_density

        features[~np.isfinite(features)] = 0.0
        return np.clip(features, -1.0, 1.0)
