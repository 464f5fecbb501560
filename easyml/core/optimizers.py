"""Stateful weight-update rules consumed by the trainer.

Every optimizer mutates the flat weight vector in place through
``update(permeability, cost, switches, grads, weights)``. ``switches`` marks
the weights whose gradient was produced by at least one active node in the
batch. The rules here update every weight and its state regardless, so a zero
gradient still decays the moments and lets momentum carry the weight on.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import ClassVar, Dict, Mapping, Type

import numpy as np

from .types import Array, EPSILON, OptimizerID


def _check(condition: bool, message: str) -> None:
    if not condition:
        raise ValueError(message)


def _check_betas(beta1: float, beta2: float) -> None:
    _check(0.0 <= beta1 < 1.0, f"beta1 must be in [0, 1), got {beta1}")
    _check(0.0 <= beta2 < 1.0, f"beta2 must be in [0, 1), got {beta2}")


@dataclass(frozen=True)
class OptimizerConfig:
    """Base class of the optimizer configurations."""

    optimizer_id: ClassVar[OptimizerID]

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"name": self.optimizer_id.value}
        payload.update(self.__dict__)
        return payload


@dataclass(frozen=True)
class SGDConfig(OptimizerConfig):
    optimizer_id: ClassVar[OptimizerID] = OptimizerID.SGD
    lr: float = 1e-4
    momentum: float = 0.9
    dampening: float = 0.0
    nesterov: bool = False

    def __post_init__(self) -> None:
        _check(self.lr > 0.0, f"lr must be positive, got {self.lr}")
        _check(0.0 <= self.momentum < 1.0, f"momentum must be in [0, 1), got {self.momentum}")
        _check(self.dampening >= 0.0, f"dampening must be >= 0, got {self.dampening}")
        if self.nesterov:
            _check(
                self.momentum > 0.0 and self.dampening == 0.0,
                "nesterov requires momentum > 0 and zero dampening",
            )


@dataclass(frozen=True)
class AdamConfig(OptimizerConfig):
    optimizer_id: ClassVar[OptimizerID] = OptimizerID.ADAM
    lr: float = 1e-3
    beta1: float = 0.9
    beta2: float = 0.999
    amsgrad: bool = False

    def __post_init__(self) -> None:
        _check(self.lr > 0.0, f"lr must be positive, got {self.lr}")
        _check_betas(self.beta1, self.beta2)


@dataclass(frozen=True)
class AdabeliefConfig(OptimizerConfig):
    optimizer_id: ClassVar[OptimizerID] = OptimizerID.ADABELIEF
    lr: float = 1e-3
    beta1: float = 0.9
    beta2: float = 0.999

    def __post_init__(self) -> None:
        _check(self.lr > 0.0, f"lr must be positive, got {self.lr}")
        _check_betas(self.beta1, self.beta2)


@dataclass(frozen=True)
class PadamConfig(OptimizerConfig):
    optimizer_id: ClassVar[OptimizerID] = OptimizerID.PADAM
    lr: float = 0.01
    beta1: float = 0.9
    beta2: float = 0.999
    p: float = 0.125

    def __post_init__(self) -> None:
        _check(self.lr > 0.0, f"lr must be positive, got {self.lr}")
        _check_betas(self.beta1, self.beta2)
        _check(0.0 <= self.p <= 0.5, f"p must be in [0, 0.5], got {self.p}")


@dataclass(frozen=True)
class AdamaxConfig(OptimizerConfig):
    optimizer_id: ClassVar[OptimizerID] = OptimizerID.ADAMAX
    lr: float = 0.002
    beta1: float = 0.9
    beta2: float = 0.999

    def __post_init__(self) -> None:
        _check(self.lr > 0.0, f"lr must be positive, got {self.lr}")
        _check_betas(self.beta1, self.beta2)


@dataclass(frozen=True)
class AdagradConfig(OptimizerConfig):
    optimizer_id: ClassVar[OptimizerID] = OptimizerID.ADAGRAD
    lr: float = 0.01

    def __post_init__(self) -> None:
        _check(self.lr > 0.0, f"lr must be positive, got {self.lr}")


@dataclass(frozen=True)
class AdadeltaConfig(OptimizerConfig):
    optimizer_id: ClassVar[OptimizerID] = OptimizerID.ADADELTA
    gamma: float = 0.95

    def __post_init__(self) -> None:
        _check(0.0 < self.gamma < 1.0, f"gamma must be in (0, 1), got {self.gamma}")


@dataclass(frozen=True)
class RMSPropConfig(OptimizerConfig):
    optimizer_id: ClassVar[OptimizerID] = OptimizerID.RMSPROP
    lr: float = 1e-3
    alpha: float = 0.99
    momentum: float = 0.0
    centered: bool = False

    def __post_init__(self) -> None:
        _check(self.lr > 0.0, f"lr must be positive, got {self.lr}")
        _check(0.0 < self.alpha < 1.0, f"alpha must be in (0, 1), got {self.alpha}")
        _check(0.0 <= self.momentum < 1.0, f"momentum must be in [0, 1), got {self.momentum}")


@dataclass(frozen=True)
class RPropConfig(OptimizerConfig):
    optimizer_id: ClassVar[OptimizerID] = OptimizerID.RPROP
    ini_lr: float = 0.0025
    min_lr: float = 1e-6
    max_lr: float = 0.0075
    pos_eta: float = 1.2
    neg_eta: float = 0.5

    def __post_init__(self) -> None:
        _check(self.ini_lr > 0.0, f"ini_lr must be positive, got {self.ini_lr}")
        _check(0.0 < self.min_lr <= self.ini_lr, f"min_lr must be in (0, ini_lr], got {self.min_lr}")
        _check(self.max_lr >= self.ini_lr, f"max_lr must be >= ini_lr, got {self.max_lr}")
        _check(self.pos_eta > 1.0, f"pos_eta must be > 1, got {self.pos_eta}")
        _check(0.0 < self.neg_eta < 1.0, f"neg_eta must be in (0, 1), got {self.neg_eta}")


class Optimizer:
    """Base optimizer holding per-weight state sized to the weight vector."""

    config_type: ClassVar[Type[OptimizerConfig]]

    def __init__(self, num_weights: int, config: OptimizerConfig | None = None) -> None:
        if num_weights <= 0:
            raise ValueError(f"num_weights must be positive, got {num_weights}")
        self.num_weights = int(num_weights)
        self.config = config if config is not None else self.config_type()
        if not isinstance(self.config, self.config_type):
            raise TypeError(
                f"{type(self).__name__} expects {self.config_type.__name__}, got {type(self.config).__name__}"
            )
        self.reset()

    @property
    def optimizer_id(self) -> OptimizerID:
        return self.config.optimizer_id

    def reset(self) -> None:
        raise NotImplementedError

    def new_epoch(self, epoch: int, max_epochs: int) -> None:
        """Hook for schedule-dependent rules; a no-op for the built-in ones."""

    def update(
        self,
        permeability: float,
        cost: float,
        switches: Array,
        grads: Array,
        weights: Array,
    ) -> None:
        raise NotImplementedError

    def _zeros(self) -> Array:
        return np.zeros(self.num_weights, dtype=np.float64)


class SGD(Optimizer):
    config_type = SGDConfig

    def reset(self) -> None:
        self._step = 0
        self._m = self._zeros()

    def update(self, permeability, cost, switches, grads, weights) -> None:
        cfg = self.config
        self._step += 1
        if cfg.momentum > 0.0:
            if self._step == 1:
                self._m[:] = grads
            else:
                self._m *= cfg.momentum
                self._m += (1.0 - cfg.dampening) * grads
            step = grads + cfg.momentum * self._m if cfg.nesterov else self._m
        else:
            step = grads
        weights -= permeability * cfg.lr * step


class Adam(Optimizer):
    config_type = AdamConfig

    def reset(self) -> None:
        self._m = self._zeros()
        self._v = self._zeros()
        self._max_v = self._zeros()
        self._powered_beta1 = self.config.beta1
        self._powered_beta2 = self.config.beta2

    def update(self, permeability, cost, switches, grads, weights) -> None:
        cfg = self.config
        lr = permeability * cfg.lr * math.sqrt(1.0 - self._powered_beta2) / (1.0 - self._powered_beta1)
        self._m = cfg.beta1 * self._m + (1.0 - cfg.beta1) * grads
        self._v = cfg.beta2 * self._v + (1.0 - cfg.beta2) * grads * grads
        np.maximum(self._max_v, self._v, out=self._max_v)
        second = self._max_v if cfg.amsgrad else self._v
        weights -= lr * self._m / (np.sqrt(second) + EPSILON)
        self._powered_beta1 *= cfg.beta1
        self._powered_beta2 *= cfg.beta2


class Adabelief(Optimizer):
    config_type = AdabeliefConfig

    def reset(self) -> None:
        self._m = self._zeros()
        self._s = self._zeros()
        self._powered_beta1 = self.config.beta1
        self._powered_beta2 = self.config.beta2

    def update(self, permeability, cost, switches, grads, weights) -> None:
        cfg = self.config
        lr = permeability * cfg.lr * math.sqrt(1.0 - self._powered_beta2) / (1.0 - self._powered_beta1)
        self._m = cfg.beta1 * self._m + (1.0 - cfg.beta1) * grads
        self._s = cfg.beta2 * self._s + (1.0 - cfg.beta2) * np.square(grads - self._m) + EPSILON
        weights -= lr * self._m / (np.sqrt(self._s) + EPSILON)
        self._powered_beta1 *= cfg.beta1
        self._powered_beta2 *= cfg.beta2


class Padam(Optimizer):
    """Partially adaptive Adam; ``p=0.5`` behaves like AMSGrad."""

    config_type = PadamConfig

    def reset(self) -> None:
        self._m = self._zeros()
        self._v = self._zeros()
        self._max_v = self._zeros()
        self._powered_beta1 = self.config.beta1
        self._powered_beta2 = self.config.beta2

    def update(self, permeability, cost, switches, grads, weights) -> None:
        cfg = self.config
        lr = permeability * cfg.lr * math.sqrt(1.0 - self._powered_beta2) / (1.0 - self._powered_beta1)
        self._m = cfg.beta1 * self._m + (1.0 - cfg.beta1) * grads
        self._v = cfg.beta2 * self._v + (1.0 - cfg.beta2) * grads * grads
        np.maximum(self._max_v, self._v, out=self._max_v)
        weights -= lr * self._m / np.power(self._max_v + EPSILON, cfg.p)
        self._powered_beta1 *= cfg.beta1
        self._powered_beta2 *= cfg.beta2


class Adamax(Optimizer):
    config_type = AdamaxConfig

    def reset(self) -> None:
        self._m = self._zeros()
        self._u = self._zeros()
        self._powered_beta1 = self.config.beta1

    def update(self, permeability, cost, switches, grads, weights) -> None:
        cfg = self.config
        corr_bias1 = 1.0 - self._powered_beta1
        lr = permeability * cfg.lr / corr_bias1
        self._m = cfg.beta1 * self._m + (1.0 - cfg.beta1) * grads
        self._u = np.maximum(cfg.beta2 * self._u, np.abs(grads))
        safe_u = np.where(self._u == 0.0, 1.0, self._u)
        weights -= lr * np.where(self._u == 0.0, 0.0, (self._m / corr_bias1) / safe_u)
        self._powered_beta1 *= cfg.beta1


class Adagrad(Optimizer):
    config_type = AdagradConfig

    def reset(self) -> None:
        self._s = self._zeros()

    def update(self, permeability, cost, switches, grads, weights) -> None:
        self._s += grads * grads
        weights -= permeability * self.config.lr * grads / (np.sqrt(self._s) + EPSILON)


class Adadelta(Optimizer):
    config_type = AdadeltaConfig

    def reset(self) -> None:
        self._g = np.full(self.num_weights, math.sqrt(EPSILON))
        self._d = np.full(self.num_weights, math.sqrt(EPSILON))

    def update(self, permeability, cost, switches, grads, weights) -> None:
        gamma = self.config.gamma
        self._g = gamma * self._g + (1.0 - gamma) * grads * grads
        delta = np.sqrt(self._d + EPSILON) * grads / np.sqrt(self._g + EPSILON)
        self._d = gamma * self._d + (1.0 - gamma) * delta * delta
        weights -= permeability * delta


class RMSProp(Optimizer):
    config_type = RMSPropConfig

    def reset(self) -> None:
        self._s = self._zeros()
        self._g = self._zeros()
        self._m = self._zeros()

    def update(self, permeability, cost, switches, grads, weights) -> None:
        cfg = self.config
        lr = permeability * cfg.lr
        self._s = cfg.alpha * self._s + (1.0 - cfg.alpha) * grads * grads
        if cfg.centered:
            self._g = cfg.alpha * self._g + (1.0 - cfg.alpha) * grads
            avg = self._s - np.square(self._g)
        else:
            avg = self._s
        avg = np.sqrt(np.maximum(avg, 0.0)) + EPSILON
        if cfg.momentum > 0.0:
            self._m = cfg.momentum * self._m + grads / avg
            weights -= lr * self._m
        else:
            weights -= lr * grads / avg


class RProp(Optimizer):
    """Resilient propagation with weight backtracking.

    Runs on full batches only and never with dropout, so every gradient is
    consistent between calls.
    """

    config_type = RPropConfig
    zero_tolerance = 1e-16

    def reset(self) -> None:
        self._prev_grads = self._zeros()
        self._lrs = np.full(self.num_weights, self.config.ini_lr)
        self._changes = self._zeros()
        self._prev_cost = math.inf

    def _sign(self, values: Array) -> Array:
        return np.where(np.abs(values) <= self.zero_tolerance, 0.0, np.sign(values))

    def update(self, permeability, cost, switches, grads, weights) -> None:
        cfg = self.config
        direction = self._sign(grads * self._prev_grads)
        same = direction > 0.0
        flipped = direction < 0.0
        plain = ~(same | flipped)

        self._lrs[same] = np.minimum(self._lrs[same] * cfg.pos_eta, cfg.max_lr)
        self._lrs[flipped] = np.maximum(self._lrs[flipped] * cfg.neg_eta, cfg.min_lr)

        stepped = same | plain
        self._changes[stepped] = -permeability * self._sign(grads[stepped]) * self._lrs[stepped]
        weights[stepped] += self._changes[stepped]
        self._prev_grads[stepped] = grads[stepped]

        self._prev_grads[flipped] = 0.0
        if cost > self._prev_cost:
            self._changes[flipped] *= -1.0
            weights[flipped] += self._changes[flipped]
        self._prev_cost = cost


_OPTIMIZERS: Dict[OptimizerID, Type[Optimizer]] = {
    OptimizerID.SGD: SGD,
    OptimizerID.ADAM: Adam,
    OptimizerID.ADABELIEF: Adabelief,
    OptimizerID.PADAM: Padam,
    OptimizerID.ADAMAX: Adamax,
    OptimizerID.ADAGRAD: Adagrad,
    OptimizerID.ADADELTA: Adadelta,
    OptimizerID.RMSPROP: RMSProp,
    OptimizerID.RPROP: RProp,
}

CONFIGS: Dict[OptimizerID, Type[OptimizerConfig]] = {
    key: cls.config_type for key, cls in _OPTIMIZERS.items()
}


def build_optimizer(num_weights: int, config: OptimizerConfig) -> Optimizer:
    try:
        cls = _OPTIMIZERS[config.optimizer_id]
    except KeyError as exc:  # pragma: no cover - closed set
        raise KeyError(f"Unsupported optimizer: {config.optimizer_id}") from exc
    return cls(num_weights, config)


def optimizer_config_from_mapping(mapping: Mapping[str, object]) -> OptimizerConfig:
    """Build an optimizer config from ``{"name": ..., **params}``."""

    params = dict(mapping)
    name = params.pop("name", OptimizerID.ADAM.value)
    try:
        config_cls = CONFIGS[OptimizerID(name)]
    except ValueError as exc:
        available = ", ".join(sorted(item.value for item in CONFIGS))
        raise KeyError(f"Unknown optimizer {name!r}. Available optimizers: {available}") from exc
    return config_cls(**params)


__all__ = [
    "OptimizerConfig",
    "SGDConfig",
    "AdamConfig",
    "AdabeliefConfig",
    "PadamConfig",
    "AdamaxConfig",
    "AdagradConfig",
    "AdadeltaConfig",
    "RMSPropConfig",
    "RPropConfig",
    "Optimizer",
    "SGD",
    "Adam",
    "Adabelief",
    "Padam",
    "Adamax",
    "Adagrad",
    "Adadelta",
    "RMSProp",
    "RProp",
    "CONFIGS",
    "build_optimizer",
    "optimizer_config_from_mapping",
]
