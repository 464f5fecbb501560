"""Running descriptive statistics."""

from __future__ import annotations

import math
from typing import Iterable

import numpy as np


class BasicStat:
    """Accumulates sum, sum of squares, extremes and counts of a sample stream."""

    def __init__(self, values: Iterable[float] | None = None) -> None:
        self.reset()
        if values is not None:
            self.add_samples(values)

    def reset(self) -> None:
        self.sum = 0.0
        self.sum_of_squares = 0.0
        self.min = math.inf
        self.max = -math.inf
        self.count = 0
        self.nonzero_count = 0

    def add_sample(self, value: float) -> None:
        value = float(value)
        self.sum += value
        self.sum_of_squares += value * value
        self.min = min(self.min, value)
        self.max = max(self.max, value)
        self.count += 1
        if value != 0.0:
            self.nonzero_count += 1

    def add_samples(self, values: Iterable[float]) -> None:
        arr = values if isinstance(values, np.ndarray) else np.asarray(list(values))
        arr = np.asarray(arr, dtype=np.float64).reshape(-1)
        if arr.size == 0:
            return
        self.sum += float(np.sum(arr))
        self.sum_of_squares += float(np.sum(arr * arr))
        self.min = min(self.min, float(np.min(arr)))
        self.max = max(self.max, float(np.max(arr)))
        self.count += int(arr.size)
        self.nonzero_count += int(np.count_nonzero(arr))

    def merge(self, other: "BasicStat") -> None:
        if other.count == 0:
            return
        self.sum += other.sum
        self.sum_of_squares += other.sum_of_squares
        self.min = min(self.min, other.min)
        self.max = max(self.max, other.max)
        self.count += other.count
        self.nonzero_count += other.nonzero_count

    @property
    def mean(self) -> float:
        return self.sum / self.count if self.count else 0.0

    @property
    def mean_square(self) -> float:
        return self.sum_of_squares / self.count if self.count else 0.0

    @property
    def rms(self) -> float:
        return math.sqrt(self.mean_square)

    @property
    def variance(self) -> float:
        if not self.count:
            return 0.0
        return self.mean_square - self.mean * self.mean

    @property
    def stddev(self) -> float:
        variance = self.variance
        return math.sqrt(variance) if variance > 0.0 else 0.0

    @property
    def span(self) -> float:
        return self.max - self.min if self.count else 0.0

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "mean": self.mean,
            "rms": self.rms,
            "stddev": self.stddev,
            "min": self.min if self.count else 0.0,
            "max": self.max if self.count else 0.0,
        }

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"BasicStat(count={self.count}, mean={self.mean:.6g}, stddev={self.stddev:.6g})"


__all__ = ["BasicStat"]
