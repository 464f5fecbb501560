"""Validated configuration objects for network model building."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Tuple

import yaml

from ..core.activations import is_suitable_for_mlp_hidden_layer
from ..core.optimizers import AdamConfig, OptimizerConfig, optimizer_config_from_mapping
from ..core.types import ActivationID, DropoutMode, OptimizerID

AUTO_BATCH_SIZE = 0
FULL_BATCH_SIZE = -1

_BATCH_CODES = {"auto": AUTO_BATCH_SIZE, "full": FULL_BATCH_SIZE}


def _check(condition: bool, message: str) -> None:
    if not condition:
        raise ValueError(message)


def _coerce_enum(instance, name: str, enum_type) -> None:
    value = getattr(instance, name)
    if not isinstance(value, enum_type):
        object.__setattr__(instance, name, enum_type(value))


def _jsonable(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


@dataclass(frozen=True)
class DropoutConfig:
    mode: DropoutMode = DropoutMode.NONE
    p: float = 0.0

    def __post_init__(self) -> None:
        _coerce_enum(self, "mode", DropoutMode)
        _check(0.0 <= self.p < 1.0, f"dropout p must be in [0, 1), got {self.p}")
        _check(
            (self.p == 0.0) == (self.mode == DropoutMode.NONE),
            f"dropout p must be 0 exactly when mode is none (mode={self.mode.value}, p={self.p})",
        )


@dataclass(frozen=True)
class RegL1Config:
    strength: float = 0.0
    biases: bool = False

    def __post_init__(self) -> None:
        _check(self.strength >= 0.0, f"L1 strength must be >= 0, got {self.strength}")


@dataclass(frozen=True)
class RegL2Config:
    strength: float = 0.0
    biases: bool = False

    def __post_init__(self) -> None:
        _check(self.strength >= 0.0, f"L2 strength must be >= 0, got {self.strength}")


@dataclass(frozen=True)
class NormConsConfig:
    """Per-neuron weight-norm bounds; inactive while ``max`` is 0."""

    min: float = 0.0
    max: float = 0.0
    biases: bool = False

    def __post_init__(self) -> None:
        _check(self.min >= 0.0, f"norm min must be >= 0, got {self.min}")
        _check(self.max >= 0.0, f"norm max must be >= 0, got {self.max}")
        _check(self.min <= self.max, f"norm min ({self.min}) must not exceed max ({self.max})")


@dataclass(frozen=True)
class HiddenLayerConfig:
    neurons: int
    activation: ActivationID = ActivationID.LEAKY_RELU
    dropout: DropoutConfig = field(default_factory=DropoutConfig)
    reg_l1: RegL1Config = field(default_factory=RegL1Config)
    reg_l2: RegL2Config = field(default_factory=RegL2Config)
    norm_cons: NormConsConfig = field(default_factory=NormConsConfig)

    def __post_init__(self) -> None:
        _coerce_enum(self, "activation", ActivationID)
        _check(self.neurons >= 1, f"hidden layer neurons must be >= 1, got {self.neurons}")
        _check(
            is_suitable_for_mlp_hidden_layer(self.activation),
            f"activation {self.activation.value} is not usable in a hidden layer",
        )


@dataclass(frozen=True)
class InputOptionsConfig:
    dropout: DropoutConfig = field(default_factory=DropoutConfig)


@dataclass(frozen=True)
class OutputOptionsConfig:
    reg_l1: RegL1Config = field(default_factory=RegL1Config)
    reg_l2: RegL2Config = field(default_factory=RegL2Config)
    norm_cons: NormConsConfig = field(default_factory=NormConsConfig)


@dataclass(frozen=True)
class LearningThrottleValveConfig:
    """Optional throttling of the learning permeability over the first epochs.

    Permeability starts at 1 in epoch 1 and falls to ``min_permeability`` at
    epoch ``epochs * last_throttling_epoch_ratio``; later epochs keep
    ``min_permeability``.
    """

    min_permeability: float = 1.0
    slope: float = 0.0
    last_throttling_epoch_ratio: float = 1.0

    def __post_init__(self) -> None:
        _check(
            0.0 < self.min_permeability <= 1.0,
            f"min_permeability must be in (0, 1], got {self.min_permeability}",
        )
        _check(self.slope >= 0.0, f"slope must be >= 0, got {self.slope}")
        _check(
            0.0 < self.last_throttling_epoch_ratio <= 1.0,
            f"last_throttling_epoch_ratio must be in (0, 1], got {self.last_throttling_epoch_ratio}",
        )


@dataclass(frozen=True)
class NetworkModelConfig:
    """Everything needed to train one MLP network model."""

    attempts: int = 1
    epochs: int = 100
    optimizer: OptimizerConfig = field(default_factory=AdamConfig)
    hidden_layers: Tuple[HiddenLayerConfig, ...] = ()
    input_options: InputOptionsConfig = field(default_factory=InputOptionsConfig)
    output_options: OutputOptionsConfig = field(default_factory=OutputOptionsConfig)
    throttle_valve: LearningThrottleValveConfig = field(default_factory=LearningThrottleValveConfig)
    batch_size: int = AUTO_BATCH_SIZE
    grad_clip_norm: float = 0.0
    grad_clip_val: float = 0.0
    class_balanced_loss: bool = True
    stop_attempt_patiency: float = 0.25

    def __post_init__(self) -> None:
        object.__setattr__(self, "hidden_layers", tuple(self.hidden_layers))
        _check(self.attempts >= 1, f"attempts must be >= 1, got {self.attempts}")
        _check(self.epochs >= 1, f"epochs must be >= 1, got {self.epochs}")
        _check(
            self.batch_size > 0 or self.batch_size in (AUTO_BATCH_SIZE, FULL_BATCH_SIZE),
            f"batch_size must be positive, {AUTO_BATCH_SIZE} (auto) or {FULL_BATCH_SIZE} (full), got {self.batch_size}",
        )
        _check(self.grad_clip_norm >= 0.0, f"grad_clip_norm must be >= 0, got {self.grad_clip_norm}")
        _check(self.grad_clip_val >= 0.0, f"grad_clip_val must be >= 0, got {self.grad_clip_val}")
        _check(
            not (self.grad_clip_norm > 0.0 and self.grad_clip_val > 0.0),
            "grad_clip_norm and grad_clip_val can not be used together",
        )
        _check(
            0.0 <= self.stop_attempt_patiency < 1.0,
            f"stop_attempt_patiency must be in [0, 1), got {self.stop_attempt_patiency}",
        )
        if self.optimizer.optimizer_id == OptimizerID.RPROP:
            _check(
                self.batch_size in (AUTO_BATCH_SIZE, FULL_BATCH_SIZE),
                "RProp allows only the auto or full batch size",
            )
            _check(not self.dropout_active, "RProp can not be combined with dropout")

    @property
    def dropout_active(self) -> bool:
        if self.input_options.dropout.mode != DropoutMode.NONE:
            return True
        return any(layer.dropout.mode != DropoutMode.NONE for layer in self.hidden_layers)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, object]) -> "NetworkModelConfig":
        """Build a config from plain nested dicts (as decoded from JSON/YAML)."""

        data = dict(mapping)
        if "optimizer" in data and isinstance(data["optimizer"], Mapping):
            data["optimizer"] = optimizer_config_from_mapping(data["optimizer"])
        data["hidden_layers"] = tuple(_hidden_layer(item) for item in data.get("hidden_layers", ()))
        if isinstance(data.get("input_options"), Mapping):
            options = dict(data["input_options"])
            data["input_options"] = InputOptionsConfig(dropout=DropoutConfig(**options.get("dropout", {})))
        if isinstance(data.get("output_options"), Mapping):
            options = dict(data["output_options"])
            data["output_options"] = OutputOptionsConfig(
                reg_l1=RegL1Config(**options.get("reg_l1", {})),
                reg_l2=RegL2Config(**options.get("reg_l2", {})),
                norm_cons=NormConsConfig(**options.get("norm_cons", {})),
            )
        if isinstance(data.get("throttle_valve"), Mapping):
            data["throttle_valve"] = LearningThrottleValveConfig(**data["throttle_valve"])
        batch_size = data.get("batch_size")
        if isinstance(batch_size, str):
            try:
                data["batch_size"] = _BATCH_CODES[batch_size.lower()]
            except KeyError as exc:
                raise ValueError(f"Unknown batch size code: {batch_size}") from exc
        return cls(**data)

    def to_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        payload["optimizer"] = self.optimizer.to_dict()
        return _jsonable(payload)


def _hidden_layer(item: Mapping[str, object]) -> HiddenLayerConfig:
    data = dict(item)
    for key, config_cls in (
        ("dropout", DropoutConfig),
        ("reg_l1", RegL1Config),
        ("reg_l2", RegL2Config),
        ("norm_cons", NormConsConfig),
    ):
        if isinstance(data.get(key), Mapping):
            data[key] = config_cls(**data[key])
    return HiddenLayerConfig(**data)


def load_config(path: str | Path) -> Mapping[str, object]:
    """Read a JSON or YAML document into a mapping."""

    path = Path(path)
    text = path.read_text()
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(text) or {}
    elif suffix == ".json":
        data = json.loads(text or "{}")
    else:
        raise ValueError(f"Unsupported config file type: {path.suffix}")
    if not isinstance(data, Mapping):
        raise TypeError(f"Config {path.name} must decode to a mapping")
    return data


__all__ = [
    "AUTO_BATCH_SIZE",
    "FULL_BATCH_SIZE",
    "DropoutConfig",
    "RegL1Config",
    "RegL2Config",
    "NormConsConfig",
    "HiddenLayerConfig",
    "InputOptionsConfig",
    "OutputOptionsConfig",
    "LearningThrottleValveConfig",
    "NetworkModelConfig",
    "load_config",
]
