"""Activation functions used by the MLP engine and the reservoir."""

from __future__ import annotations

import math
from typing import Callable, Dict, Iterable, Optional, Tuple

import numpy as np

from .types import Array, ActivationID, DropoutMode

Range = Tuple[float, float]

_XAVIER = "xavier"
_HE = "he"
_LECUN = "lecun"


class Activation:
    """Element-wise nonlinearity with its derivative and dropout behaviour.

    ``compute`` and ``derive`` work on arrays of any shape; whole-layer
    activations (softmax) normalise along the last axis.
    """

    id: ActivationID
    output_range: Range = (-math.inf, math.inf)
    whole_layer: bool = False
    init_scheme: str = _HE

    def compute(self, sums: Array) -> Array:
        raise NotImplementedError

    def derive(self, sums: Array, activations: Array) -> Array:
        raise NotImplementedError

    def init_stddev(self, n_inputs: int, n_neurons: int) -> float:
        """Standard deviation of the normal weight initialisation."""

        if self.init_scheme == _XAVIER:
            return math.sqrt(2.0 / (n_inputs + n_neurons))
        if self.init_scheme == _LECUN:
            return math.sqrt(1.0 / n_inputs)
        return math.sqrt(2.0 / n_inputs)

    def dropout(
        self,
        mode: DropoutMode,
        p: float,
        rng: np.random.Generator,
        activations: Array,
        derivatives: Optional[Array] = None,
    ) -> Array:
        """Apply dropout in place and return the boolean node switches."""

        if mode == DropoutMode.BERNOULLI:
            switches = rng.random(activations.shape) >= p
            activations *= np.where(switches, 1.0 / (1.0 - p), 0.0)
            if derivatives is not None:
                derivatives[~switches] = 0.0
            return switches
        if mode == DropoutMode.GAUSSIAN:
            activations *= rng.normal(1.0, math.sqrt(p / (1.0 - p)), size=activations.shape)
            return np.ones(activations.shape, dtype=bool)
        return np.ones(activations.shape, dtype=bool)

    def __call__(self, sums: Array) -> Array:
        return self.compute(np.asarray(sums, dtype=np.float64))

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class BentIdentity(Activation):
    id = ActivationID.BENT_IDENTITY

    def compute(self, sums: Array) -> Array:
        return (np.sqrt(sums * sums + 1.0) - 1.0) / 2.0 + sums

    def derive(self, sums: Array, activations: Array) -> Array:
        return sums / (2.0 * np.sqrt(sums * sums + 1.0)) + 1.0


class ElliotSig(Activation):
    id = ActivationID.ELLIOT_SIG
    output_range = (-1.0, 1.0)
    init_scheme = _XAVIER

    def compute(self, sums: Array) -> Array:
        return sums / (1.0 + np.abs(sums))

    def derive(self, sums: Array, activations: Array) -> Array:
        return 1.0 / np.square(1.0 + np.abs(sums))


class ELU(Activation):
    id = ActivationID.ELU
    alpha = 1.0
    output_range = (-1.0, math.inf)
    init_scheme = _LECUN

    def compute(self, sums: Array) -> Array:
        return np.where(sums < 0.0, self.alpha * (np.exp(np.minimum(sums, 0.0)) - 1.0), sums)

    def derive(self, sums: Array, activations: Array) -> Array:
        return np.where(sums < 0.0, activations + self.alpha, 1.0)


class GELU(Activation):
    id = ActivationID.GELU
    output_range = (-0.170041, math.inf)

    def compute(self, sums: Array) -> Array:
        inner = math.sqrt(2.0 / math.pi) * (sums + 0.044715 * sums**3)
        return 0.5 * sums * (1.0 + np.tanh(inner))

    def derive(self, sums: Array, activations: Array) -> Array:
        cube = sums**3
        sech = 1.0 / np.cosh(0.0535161 * cube + 0.398942 * sums)
        return (
            0.5 * np.tanh(0.0356774 * cube + 0.797885 * sums)
            + (0.0535161 * cube + 0.398942 * sums) * sech * sech
            + 0.5
        )


class HardLim(Activation):
    id = ActivationID.HARD_LIM
    output_range = (0.0, 1.0)
    init_scheme = _XAVIER

    def compute(self, sums: Array) -> Array:
        return np.where(sums >= 0.0, 1.0, 0.0)

    def derive(self, sums: Array, activations: Array) -> Array:
        return np.zeros_like(sums, dtype=np.float64)


class LeakyReLU(Activation):
    id = ActivationID.LEAKY_RELU
    negative_slope = 0.01

    def compute(self, sums: Array) -> Array:
        return np.where(sums < 0.0, self.negative_slope * sums, sums)

    def derive(self, sums: Array, activations: Array) -> Array:
        return np.where(sums < 0.0, self.negative_slope, 1.0)


class Linear(Activation):
    id = ActivationID.LINEAR
    init_scheme = _XAVIER

    def compute(self, sums: Array) -> Array:
        return np.array(sums, dtype=np.float64, copy=True)

    def derive(self, sums: Array, activations: Array) -> Array:
        return np.ones_like(sums, dtype=np.float64)


class RadBas(Activation):
    id = ActivationID.RAD_BAS
    output_range = (0.0, 1.0)
    init_scheme = _XAVIER

    def compute(self, sums: Array) -> Array:
        return np.exp(-(sums * sums))

    def derive(self, sums: Array, activations: Array) -> Array:
        return -2.0 * activations * sums


class ReLU(Activation):
    id = ActivationID.RELU
    output_range = (0.0, math.inf)

    def compute(self, sums: Array) -> Array:
        return np.maximum(sums, 0.0)

    def derive(self, sums: Array, activations: Array) -> Array:
        return np.where(sums > 0.0, 1.0, 0.0)


class SELU(Activation):
    """Scaled ELU; Bernoulli dropout uses the alpha-dropout variant."""

    id = ActivationID.SELU
    alpha = 1.6732632423543772
    scale = 1.0507009873554805
    alpha_prime = -scale * alpha
    output_range = (alpha_prime, math.inf)
    init_scheme = _LECUN

    def compute(self, sums: Array) -> Array:
        negative = self.alpha * (np.exp(np.minimum(sums, 0.0)) - 1.0)
        return self.scale * np.where(sums > 0.0, sums, negative)

    def derive(self, sums: Array, activations: Array) -> Array:
        return self.scale * np.where(sums > 0.0, 1.0, self.alpha * np.exp(np.minimum(sums, 0.0)))

    def dropout(
        self,
        mode: DropoutMode,
        p: float,
        rng: np.random.Generator,
        activations: Array,
        derivatives: Optional[Array] = None,
    ) -> Array:
        if mode != DropoutMode.BERNOULLI:
            return super().dropout(mode, p, rng, activations, derivatives)
        keep = 1.0 - p
        a = math.sqrt(1.0 / (keep * (p * self.alpha_prime * self.alpha_prime + 1.0)))
        b = -a * p * self.alpha_prime
        switches = rng.random(activations.shape) >= p
        activations[~switches] = self.alpha_prime
        if derivatives is not None:
            derivatives[~switches] = 0.0
        activations *= a
        activations += b
        return switches


class Sigmoid(Activation):
    id = ActivationID.SIGMOID
    output_range = (0.0, 1.0)
    init_scheme = _XAVIER

    def compute(self, sums: Array) -> Array:
        return 1.0 / (1.0 + np.exp(-np.clip(sums, -500.0, 500.0)))

    def derive(self, sums: Array, activations: Array) -> Array:
        return activations * (1.0 - activations)


class Sine(Activation):
    id = ActivationID.SINE
    output_range = (-1.0, 1.0)
    init_scheme = _XAVIER

    def compute(self, sums: Array) -> Array:
        return np.sin(sums)

    def derive(self, sums: Array, activations: Array) -> Array:
        return np.cos(sums)


class Softmax(Activation):
    id = ActivationID.SOFTMAX
    output_range = (0.0, 1.0)
    whole_layer = True
    init_scheme = _XAVIER

    def compute(self, sums: Array) -> Array:
        sums = np.asarray(sums, dtype=np.float64)
        if sums.ndim == 0:
            raise ValueError("Softmax requires the whole layer of sums")
        shifted = np.exp(sums - np.max(sums, axis=-1, keepdims=True))
        return shifted / np.sum(shifted, axis=-1, keepdims=True)

    def derive(self, sums: Array, activations: Array) -> Array:
        return activations * (1.0 - activations)


class Softplus(Activation):
    id = ActivationID.SOFTPLUS
    output_range = (0.0, math.inf)

    def compute(self, sums: Array) -> Array:
        return np.logaddexp(0.0, sums)

    def derive(self, sums: Array, activations: Array) -> Array:
        return 1.0 / (1.0 + np.exp(-np.clip(sums, -500.0, 500.0)))


class TanH(Activation):
    id = ActivationID.TANH
    output_range = (-1.0, 1.0)
    init_scheme = _XAVIER

    def compute(self, sums: Array) -> Array:
        return np.tanh(sums)

    def derive(self, sums: Array, activations: Array) -> Array:
        return 1.0 - activations * activations


class ActivationRegistry:
    """Central registry mapping activation identifiers to factories."""

    def __init__(self) -> None:
        self._registry: Dict[ActivationID, Callable[[], Activation]] = {}

    def register(self, activation_id: ActivationID, factory: Callable[[], Activation]) -> None:
        self._registry[activation_id] = factory

    def create(self, activation_id: ActivationID | str) -> Activation:
        try:
            key = ActivationID(activation_id)
            return self._registry[key]()
        except (KeyError, ValueError) as exc:
            available = ", ".join(sorted(item.value for item in self._registry))
            raise KeyError(f"Unknown activation {activation_id!r}. Available activations: {available}") from exc

    def ids(self) -> Iterable[ActivationID]:
        return list(self._registry)


REGISTRY = ActivationRegistry()
for _cls in (
    BentIdentity,
    ElliotSig,
    ELU,
    GELU,
    HardLim,
    LeakyReLU,
    Linear,
    RadBas,
    ReLU,
    SELU,
    Sigmoid,
    Sine,
    Softmax,
    Softplus,
    TanH,
):
    REGISTRY.register(_cls.id, _cls)


def create_activation(activation_id: ActivationID | str) -> Activation:
    return REGISTRY.create(activation_id)


def is_suitable_for_mlp_hidden_layer(activation_id: ActivationID | str) -> bool:
    """Hidden MLP layers need a nonlinear, element-wise activation."""

    activation = create_activation(activation_id)
    return not activation.whole_layer and activation.id != ActivationID.LINEAR


def is_suitable_for_reservoir_hidden_layer(activation_id: ActivationID | str) -> bool:
    """Reservoir neurons need an element-wise activation squashing into [-1, 1]."""

    activation = create_activation(activation_id)
    return not activation.whole_layer and activation.output_range == (-1.0, 1.0)


__all__ = [
    "Activation",
    "ActivationRegistry",
    "REGISTRY",
    "BentIdentity",
    "ElliotSig",
    "ELU",
    "GELU",
    "HardLim",
    "LeakyReLU",
    "Linear",
    "RadBas",
    "ReLU",
    "SELU",
    "Sigmoid",
    "Sine",
    "Softmax",
    "Softplus",
    "TanH",
    "create_activation",
    "is_suitable_for_mlp_hidden_layer",
    "is_suitable_for_reservoir_hidden_layer",
]
