"""Fully connected feed-forward network over a single flat weight buffer."""

from __future__ import annotations

import copy
import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from .activations import Activation, create_activation
from .losses import REGISTRY as LOSSES, Loss
from .stats import BasicStat
from .types import Array, ActivationID, TaskType


@dataclass(frozen=True)
class Layer:
    """Offsets of one layer inside the flat weight and neuron buffers.

    Weights of neuron ``j`` for input ``i`` sit at
    ``weights_start + j * num_inputs + i``; the layer's biases follow its
    weights.
    """

    num_neurons: int
    activation: Activation
    num_inputs: int
    neurons_start: int
    weights_start: int
    first_layer: bool
    output_layer: bool

    @property
    def biases_start(self) -> int:
        return self.weights_start + self.num_neurons * self.num_inputs

    @property
    def num_weights(self) -> int:
        return self.num_neurons * self.num_inputs + self.num_neurons

    @property
    def weights_stop(self) -> int:
        return self.weights_start + self.num_weights

    def weight_matrix(self, flat_weights: Array) -> Array:
        """Return a ``(num_neurons, num_inputs)`` view of the layer weights."""

        return flat_weights[self.weights_start : self.biases_start].reshape(self.num_neurons, self.num_inputs)

    def biases(self, flat_weights: Array) -> Array:
        return flat_weights[self.biases_start : self.weights_stop]

    def sums(self, flat_weights: Array, inputs: Array) -> Array:
        return inputs @ self.weight_matrix(flat_weights).T + self.biases(flat_weights)

    def randomize(self, flat_weights: Array, rng: np.random.Generator) -> None:
        stddev = self.activation.init_stddev(self.num_inputs, self.num_neurons)
        count = self.num_neurons * self.num_inputs
        values = rng.standard_normal(count)
        values -= values.mean()
        actual = values.std()
        if actual > 0.0:
            values *= stddev / actual
        flat_weights[self.weights_start : self.biases_start] = values
        biases = self.biases(flat_weights)
        biases[:] = 0.0
        if self.output_layer and self.activation.whole_layer and self.num_neurons > 1:
            # keeps the initial softmax cross-entropy small
            biases[:] = -math.log(self.num_neurons - 1)


class MLPEngine:
    """Owns the network topology and weights and performs forward passes."""

    def __init__(
        self,
        task_type: TaskType,
        num_inputs: int,
        output_names: Sequence[str],
        hidden_layers: Iterable[Tuple[int, ActivationID]] = (),
    ) -> None:
        output_names = list(output_names)
        if num_inputs <= 0:
            raise ValueError(f"num_inputs must be positive, got {num_inputs}")
        if not output_names:
            raise ValueError("At least one output feature name is required")
        if len(set(output_names)) != len(output_names):
            raise ValueError(f"Output feature names must be unique: {output_names}")
        task_type = TaskType(task_type)
        if task_type == TaskType.CATEGORICAL and len(output_names) < 2:
            raise ValueError(
                f"Categorical task requires at least 2 output features, got {len(output_names)}"
            )
        self.task_type = task_type
        self.num_inputs = int(num_inputs)
        self.output_names = output_names
        self.layers: List[Layer] = []

        layer_inputs = self.num_inputs
        neurons = 0
        weights = 0
        for index, (num_neurons, activation_id) in enumerate(hidden_layers):
            layer = Layer(
                num_neurons=int(num_neurons),
                activation=create_activation(activation_id),
                num_inputs=layer_inputs,
                neurons_start=neurons,
                weights_start=weights,
                first_layer=index == 0,
                output_layer=False,
            )
            self.layers.append(layer)
            neurons += layer.num_neurons
            weights += layer.num_weights
            layer_inputs = layer.num_neurons

        if task_type == TaskType.BINARY:
            output_activation = ActivationID.SIGMOID
        elif task_type == TaskType.CATEGORICAL:
            output_activation = ActivationID.SOFTMAX
        else:
            output_activation = ActivationID.LINEAR
        self.loss: Loss = LOSSES.resolve(task_type)
        output_layer = Layer(
            num_neurons=len(output_names),
            activation=create_activation(output_activation),
            num_inputs=layer_inputs,
            neurons_start=neurons,
            weights_start=weights,
            first_layer=not self.layers,
            output_layer=True,
        )
        self.layers.append(output_layer)
        self.num_neurons = neurons + output_layer.num_neurons
        self._weights = np.zeros(weights + output_layer.num_weights, dtype=np.float64)
        self.hidden_weights_stat = BasicStat()
        self.output_weights_stat = BasicStat()

    @classmethod
    def from_config(
        cls,
        task_type: TaskType,
        num_inputs: int,
        output_names: Sequence[str],
        config,
    ) -> "MLPEngine":
        """Build the topology described by a ``NetworkModelConfig``."""

        hidden = [(layer.neurons, layer.activation) for layer in config.hidden_layers]
        return cls(task_type, num_inputs, output_names, hidden)

    @property
    def num_outputs(self) -> int:
        return len(self.output_names)

    @property
    def num_weights(self) -> int:
        return int(self._weights.size)

    @property
    def output_layer(self) -> Layer:
        return self.layers[-1]

    def randomize_weights(self, rng: np.random.Generator) -> None:
        for layer in self.layers:
            layer.randomize(self._weights, rng)
        self._update_weights_stat()

    def get_weights_copy(self) -> Array:
        return self._weights.copy()

    def set_weights(self, weights: Array) -> None:
        weights = np.asarray(weights, dtype=np.float64)
        if weights.shape != self._weights.shape:
            raise ValueError(f"Expected {self._weights.size} weights, got {weights.size}")
        self._weights[:] = weights
        self._update_weights_stat()

    def _update_weights_stat(self) -> None:
        self.hidden_weights_stat.reset()
        self.output_weights_stat.reset()
        for layer in self.layers:
            stat = self.output_weights_stat if layer.output_layer else self.hidden_weights_stat
            stat.add_samples(self._weights[layer.weights_start : layer.biases_start])

    def compute(self, inputs: Array) -> Array:
        """Return the network output for one input vector or a batch of rows."""

        activations = np.asarray(inputs, dtype=np.float64)
        if activations.shape[-1] != self.num_inputs:
            raise ValueError(f"Expected {self.num_inputs} input features, got {activations.shape[-1]}")
        for layer in self.layers:
            activations = layer.activation.compute(layer.sums(self._weights, activations))
        return activations

    def compute_into(self, activations: Array, sums: Array) -> int:
        """Forward pass over caller-owned buffers.

        ``activations`` holds the inputs followed by every neuron activation
        (``num_inputs + num_neurons`` columns), ``sums`` holds every neuron
        sum. Both may carry leading batch dimensions. Returns the column index
        where the output layer activations start.
        """

        input_start = 0
        for layer in self.layers:
            layer_inputs = activations[..., input_start : input_start + layer.num_inputs]
            stop = layer.neurons_start + layer.num_neurons
            sums[..., layer.neurons_start : stop] = layer.sums(self._weights, layer_inputs)
            activations[..., self.num_inputs + layer.neurons_start : self.num_inputs + stop] = layer.activation.compute(
                sums[..., layer.neurons_start : stop]
            )
            input_start = self.num_inputs + layer.neurons_start
        return input_start

    def deep_clone(self) -> "MLPEngine":
        return copy.deepcopy(self)

    def topology(self) -> dict:
        return {
            "task_type": self.task_type.value,
            "num_inputs": self.num_inputs,
            "output_names": list(self.output_names),
            "hidden_layers": [
                [layer.num_neurons, layer.activation.id.value] for layer in self.layers if not layer.output_layer
            ],
        }

    def save(self, path: str | Path) -> Path:
        """Persist topology and weights as a compressed ``.npz`` blob."""

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as fh:
            np.savez_compressed(fh, weights=self._weights, topology=np.array(json.dumps(self.topology())))
        return path

    @classmethod
    def load(cls, path: str | Path) -> "MLPEngine":
        with np.load(Path(path), allow_pickle=False) as data:
            topology = json.loads(str(data["topology"]))
            engine = cls(
                TaskType(topology["task_type"]),
                topology["num_inputs"],
                topology["output_names"],
                [(neurons, ActivationID(act)) for neurons, act in topology["hidden_layers"]],
            )
            engine.set_weights(data["weights"])
        return engine


__all__ = ["Layer", "MLPEngine"]
