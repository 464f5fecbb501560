"""Loss registry used by the MLP trainer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable

import numpy as np

from .types import Array, EPSILON, BIN_DECISION_BORDER, TaskType

LossFn = Callable[[Array, Array], Array]
ZGradFn = Callable[[Array, Array, Array], Array]


def _bound(computed: Array) -> Array:
    return np.clip(computed, EPSILON, 1.0 - EPSILON)


@dataclass(frozen=True)
class Loss:
    """Loss wrapper returning element-wise losses and output-layer z-gradients.

    ``loss(ideal, computed)`` and ``z_gradient(derivative, ideal, computed)``
    work element-wise so a whole batch of output rows can be scored at once.
    """

    name: str
    fn: LossFn
    z_fn: ZGradFn

    def loss(self, ideal: Array, computed: Array) -> Array:
        return self.fn(np.asarray(ideal, dtype=np.float64), np.asarray(computed, dtype=np.float64))

    def z_gradient(self, derivative: Array, ideal: Array, computed: Array) -> Array:
        return self.z_fn(
            np.asarray(derivative, dtype=np.float64),
            np.asarray(ideal, dtype=np.float64),
            np.asarray(computed, dtype=np.float64),
        )


class LossRegistry:
    """Central registry for loss functions."""

    def __init__(self) -> None:
        self._registry: Dict[str, Loss] = {}

    def register(self, name: str, fn: LossFn, z_fn: ZGradFn) -> None:
        self._registry[name] = Loss(name, fn, z_fn)

    def get(self, name: str) -> Loss:
        try:
            return self._registry[name]
        except KeyError as exc:
            available = ", ".join(sorted(self._registry))
            raise KeyError(f"Unknown loss {name!r}. Available losses: {available}") from exc

    def names(self) -> Iterable[str]:
        return sorted(self._registry)

    def resolve(self, task_type: TaskType) -> Loss:
        """Return the loss paired with the output activation of ``task_type``."""

        if task_type == TaskType.BINARY:
            return self.get("sigmoid_ce")
        if task_type == TaskType.CATEGORICAL:
            return self.get("softmax_ce")
        return self.get("squared_error")


REGISTRY = LossRegistry()


def _sigmoid_ce(ideal: Array, computed: Array) -> Array:
    bounded = _bound(computed)
    return np.where(ideal >= BIN_DECISION_BORDER, -np.log(bounded), -np.log(1.0 - bounded))


def _softmax_ce(ideal: Array, computed: Array) -> Array:
    return np.where(ideal >= BIN_DECISION_BORDER, -np.log(_bound(computed)), 0.0)


def _cross_entropy_z(derivative: Array, ideal: Array, computed: Array) -> Array:
    return computed - ideal


def _squared_error(ideal: Array, computed: Array) -> Array:
    return 0.5 * np.square(ideal - computed)


def _squared_error_z(derivative: Array, ideal: Array, computed: Array) -> Array:
    return derivative * (computed - ideal)


REGISTRY.register("sigmoid_ce", _sigmoid_ce, _cross_entropy_z)
REGISTRY.register("softmax_ce", _softmax_ce, _cross_entropy_z)
REGISTRY.register("squared_error", _squared_error, _squared_error_z)

__all__ = ["Loss", "LossRegistry", "REGISTRY"]
