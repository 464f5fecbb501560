"""Multivariate time-series pattern decoded from a flat vector."""

from __future__ import annotations

from enum import Enum
from typing import Sequence

import numpy as np

from ..core.types import Array
from .filters import FeatureFilter


class VarSchema(str, Enum):
    """Layout of variables inside a flat pattern vector."""

    GROUPPED = "groupped"
    """``v1(t1) v2(t1) ... v1(t2) v2(t2) ...``"""

    VAR_SEQUENCE = "var_sequence"
    """``v1(t1) v1(t2) ... v2(t1) v2(t2) ...``"""


class TimeSeriesPattern:
    """Variables by time points, stored as a ``(num_vars, length)`` array."""

    def __init__(self, data: Array) -> None:
        self.data = np.array(data, dtype=np.float64, ndmin=2)

    @classmethod
    def from_flat(cls, flat: Sequence[float], num_vars: int, schema: VarSchema = VarSchema.GROUPPED) -> "TimeSeriesPattern":
        flat = np.asarray(flat, dtype=np.float64).reshape(-1)
        if num_vars <= 0 or flat.size < num_vars or flat.size % num_vars != 0:
            raise ValueError(
                f"Flat data length {flat.size} is not a positive multiple of {num_vars} variables"
            )
        timepoints = flat.size // num_vars
        if VarSchema(schema) == VarSchema.GROUPPED:
            data = flat.reshape(timepoints, num_vars).T
        else:
            data = flat.reshape(num_vars, timepoints)
        return cls(data)

    @property
    def num_vars(self) -> int:
        return int(self.data.shape[0])

    @property
    def consistent(self) -> bool:
        return self.data.ndim == 2 and self.data.shape[0] > 0 and self.data.shape[1] > 0

    @property
    def length(self) -> int:
        return int(self.data.shape[1]) if self.consistent else 0

    def data_at(self, timepoint: int) -> Array:
        if not 0 <= timepoint < self.length:
            raise IndexError(f"Time point {timepoint} out of range [0, {self.length})")
        return self.data[:, timepoint].copy()

    def timepoints(self) -> Array:
        """Return the pattern as ``(length, num_vars)`` rows."""

        return self.data.T.copy()

    def flatten(self, schema: VarSchema = VarSchema.GROUPPED) -> Array:
        if VarSchema(schema) == VarSchema.GROUPPED:
            return self.data.T.reshape(-1).copy()
        return self.data.reshape(-1).copy()

    def standardize(self, filters: Sequence[FeatureFilter], centered: bool = True) -> None:
        if not self.consistent:
            raise RuntimeError("Pattern is not consistent")
        for index, filt in enumerate(filters):
            self.data[index] = filt.apply(self.data[index], centered)


__all__ = ["VarSchema", "TimeSeriesPattern"]
