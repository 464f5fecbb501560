"""Validated configuration of the recurrent reservoir."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, Mapping

from ..core.activations import is_suitable_for_reservoir_hidden_layer
from ..core.types import ActivationID
from ..data.pattern import VarSchema


class InputFeeding(str, Enum):
    """How input data is pushed through the reservoir."""

    TIME_POINT = "time_point"
    PATTERN_CONST_LENGTH = "pattern_const_length"
    PATTERN_VAR_LENGTH = "pattern_var_length"


def _check(condition: bool, message: str) -> None:
    if not condition:
        raise ValueError(message)


def _coerce_enum(instance, name: str, enum_type) -> None:
    value = getattr(instance, name)
    if not isinstance(value, enum_type):
        object.__setattr__(instance, name, enum_type(value))


def _check_density(density: float, limit: int | None = None) -> None:
    _check(density > 0.0, f"density must be > 0, got {density}")
    if density >= 1.0:
        _check(math.floor(density) == density, f"density >= 1 must be an integer, got {density}")
        if limit is not None:
            _check(density <= limit, f"density {density} exceeds the number of neurons {limit}")


@dataclass(frozen=True)
class ReservoirInputConfig:
    flat_data_length: int
    variables: int
    feeding: InputFeeding
    var_schema: VarSchema = VarSchema.GROUPPED
    density: float = 0.25
    max_delay: int = 0
    max_strength: float = 2.0

    def __post_init__(self) -> None:
        _coerce_enum(self, "feeding", InputFeeding)
        _coerce_enum(self, "var_schema", VarSchema)
        _check(self.flat_data_length > 0, f"flat_data_length must be > 0, got {self.flat_data_length}")
        _check(self.variables > 0, f"variables must be > 0, got {self.variables}")
        _check(
            self.variables <= self.flat_data_length,
            f"variables ({self.variables}) exceed flat_data_length ({self.flat_data_length})",
        )
        _check(
            self.flat_data_length % self.variables == 0,
            f"flat_data_length {self.flat_data_length} must be a multiple of variables {self.variables}",
        )
        if self.feeding == InputFeeding.TIME_POINT:
            _check(
                self.flat_data_length == self.variables,
                "time_point feeding expects exactly one time point per input",
            )
        _check_density(self.density)
        _check(self.max_delay >= 0, f"max_delay must be >= 0, got {self.max_delay}")
        _check(self.max_strength > 0.0, f"max_strength must be > 0, got {self.max_strength}")


@dataclass(frozen=True)
class ReservoirHiddenLayerConfig:
    neurons: int
    density: float = 0.1
    max_delay: int = 0
    activation: ActivationID = ActivationID.TANH
    retainment: float = 0.0
    spike_threshold: float = 0.00125
    spectral_radius: float = 0.999

    def __post_init__(self) -> None:
        _coerce_enum(self, "activation", ActivationID)
        _check(self.neurons >= 10, f"neurons must be >= 10, got {self.neurons}")
        _check_density(self.density, self.neurons)
        _check(self.max_delay >= 0, f"max_delay must be >= 0, got {self.max_delay}")
        _check(
            is_suitable_for_reservoir_hidden_layer(self.activation),
            f"activation {self.activation.value} can not be used in a reservoir hidden layer",
        )
        _check(0.0 <= self.retainment < 1.0, f"retainment must be in [0, 1), got {self.retainment}")
        _check(
            0.0 < self.spike_threshold <= 1.0,
            f"spike_threshold must be in (0, 1], got {self.spike_threshold}",
        )
        _check(self.spectral_radius > 0.0, f"spectral_radius must be > 0, got {self.spectral_radius}")


@dataclass(frozen=True)
class ReservoirConfig:
    input: ReservoirInputConfig
    hidden: ReservoirHiddenLayerConfig = field(default_factory=lambda: ReservoirHiddenLayerConfig(neurons=100))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, object]) -> "ReservoirConfig":
        data = dict(mapping)
        input_cfg = data["input"]
        if isinstance(input_cfg, Mapping):
            input_cfg = ReservoirInputConfig(**input_cfg)
        hidden_cfg = data.get("hidden", {"neurons": 100})
        if isinstance(hidden_cfg, Mapping):
            hidden_cfg = ReservoirHiddenLayerConfig(**hidden_cfg)
        return cls(input=input_cfg, hidden=hidden_cfg)

    def to_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        for section in payload.values():
            for key, value in section.items():
                if isinstance(value, Enum):
                    section[key] = value.value
        return payload


__all__ = [
    "InputFeeding",
    "ReservoirInputConfig",
    "ReservoirHiddenLayerConfig",
    "ReservoirConfig",
]
