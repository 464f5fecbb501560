"""Per-feature standardisation filters."""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Tuple

import numpy as np

from ..core.stats import BasicStat
from ..core.types import Array


class FeatureUse(str, Enum):
    INPUT = "input"
    OUTPUT = "output"


def _rescale(values: Array, source: Tuple[float, float], target: Tuple[float, float]) -> Array:
    src_lo, src_hi = source
    dst_lo, dst_hi = target
    return dst_lo + (values - src_lo) * (dst_hi - dst_lo) / (src_hi - src_lo)


def _check_finite(values: Array) -> Array:
    values = np.asarray(values, dtype=np.float64)
    if not np.all(np.isfinite(values)):
        raise ValueError("Feature values must be finite numbers")
    return values


class FeatureFilter:
    """Collects feature statistics and maps values to/from the network range."""

    def __init__(self, use: FeatureUse = FeatureUse.INPUT) -> None:
        self.use = FeatureUse(use)
        self.stat = BasicStat()

    def reset(self) -> None:
        self.stat.reset()

    def update(self, values: float | Iterable[float]) -> None:
        self.stat.add_samples(_check_finite(np.atleast_1d(values)))

    def apply(self, values, centered: bool = True):
        raise NotImplementedError

    def reverse(self, values, centered: bool = True):
        raise NotImplementedError


class RealFeatureFilter(FeatureFilter):
    """Standardises a real feature then squeezes it into [-1, 1] or [0, 1]."""

    def _std_interval(self) -> Tuple[float, float]:
        stddev = self.stat.stddev or 1.0
        mean = self.stat.mean
        return (self.stat.min - mean) / stddev, (self.stat.max - mean) / stddev

    def apply(self, values, centered: bool = True):
        values = _check_finite(values)
        if self.stat.span == 0.0:
            return np.ones_like(values)
        standardized = (values - self.stat.mean) / (self.stat.stddev or 1.0)
        target = (-1.0, 1.0) if centered else (0.0, 1.0)
        return _rescale(standardized, self._std_interval(), target)

    def reverse(self, values, centered: bool = True):
        values = _check_finite(values)
        if self.stat.span == 0.0:
            return np.full_like(values, self.stat.mean)
        source = (-1.0, 1.0) if centered else (0.0, 1.0)
        standardized = _rescale(values, source, self._std_interval())
        return standardized * (self.stat.stddev or 1.0) + self.stat.mean


class BinFeatureFilter(FeatureFilter):
    """Binary (0/1) feature; inputs are mapped to -1/1, outputs pass through."""

    def update(self, values: float | Iterable[float]) -> None:
        values = _check_finite(np.atleast_1d(values))
        if not np.all((values == 0.0) | (values == 1.0)):
            raise ValueError("Binary feature accepts only 0 or 1 values")
        self.stat.add_samples(values)

    def apply(self, values, centered: bool = True):
        values = _check_finite(values)
        if self.use == FeatureUse.INPUT:
            low = -1.0 if centered else 0.0
            return np.where(values == 0.0, low, 1.0)
        return values.copy()

    def reverse(self, values, centered: bool = True):
        values = _check_finite(values)
        if self.use == FeatureUse.INPUT:
            low = -1.0 if centered else 0.0
            return np.where(values == low, 0.0, 1.0)
        return values.copy()


__all__ = ["FeatureUse", "FeatureFilter", "RealFeatureFilter", "BinFeatureFilter"]
