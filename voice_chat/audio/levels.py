"""Amplitude metering for the recording visualizer."""

from collections import deque
from typing import Deque, List, Optional

import numpy as np


MIN_DB = -60.0
MAX_DB = 0.0
SILENCE_DB = -160.0
DEFAULT_CAPACITY = 50


def normalize_level(level_db: float, min_db: float = MIN_DB, max_db: float = MAX_DB) -> float:
    """Map a decibel reading onto [0, 1], clamping outside [min_db, max_db]."""
    clamped = max(min_db, min(max_db, level_db))
    return (clamped - min_db) / (max_db - min_db)


def rms_to_db(samples: np.ndarray) -> float:
    """Average power of a float block in dBFS, floored at SILENCE_DB."""
    if samples.size == 0:
        return SILENCE_DB
    rms = float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))
    if rms <= 0.0:
        return SILENCE_DB
    return max(SILENCE_DB, 20.0 * float(np.log10(rms)))


class AudioLevelTrace:
    """
    Bounded FIFO of normalized amplitude samples.

    One writer (the sampling task) pushes; readers take snapshot copies.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._samples: Deque[float] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._samples.maxlen

    @property
    def latest(self) -> Optional[float]:
        return self._samples[-1] if self._samples else None

    def push(self, value: float) -> None:
        """Append a sample, evicting the oldest one when full."""
        self._samples.append(value)

    def snapshot(self) -> List[float]:
        return list(self._samples)

    def clear(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)
