"""Mini-batch backpropagation trainer for :class:`~easyml.core.engine.MLPEngine`.

Workers only read the flat weight vector while they compute gradients for
their partition of a batch; the single update step that writes the weights
runs after every worker has been joined.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from ..core.activations import Linear
from ..core.engine import MLPEngine
from ..core.optimizers import Optimizer, build_optimizer
from ..core.types import Array, BIN_DECISION_BORDER, DropoutMode, OptimizerID, TaskType, fixed_partitions
from ..data.dataset import SampleDataset, reverse_filters
from .config import AUTO_BATCH_SIZE, FULL_BATCH_SIZE, NetworkModelConfig
from .errstat import PrecisionErrStat, create_err_stat
from .schedule import ParamValMapper

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ACCEPTABLE_WEIGHT_MAGNITUDE = 1e10
SAMPLES_PER_BATCH_INCREMENT = 100
OPTIMAL_BATCH_MIN = 32
OPTIMAL_BATCH_MAX = 128


class NumericalInstabilityError(RuntimeError):
    """Raised when the weights blow up (NaN or huge magnitude) after an update."""


def _clip_gradients(grads: Array, clip_val: float, clip_norm: float) -> Array:
    """Clip by value (per weight) or by global L2 norm, in place."""

    if clip_val > 0.0:
        np.clip(grads, -clip_val, clip_val, out=grads)
    if clip_norm > 0.0:
        norm = float(np.sqrt(np.dot(grads, grads)))
        if norm > clip_norm:
            grads *= clip_norm / norm
    return grads


class Trainer:
    """Runs training attempts epoch by epoch over a standardized dataset."""

    def __init__(
        self,
        config: NetworkModelConfig,
        engine: MLPEngine,
        dataset: SampleDataset,
        rng: np.random.Generator | int | None = None,
        max_workers: int | None = None,
    ) -> None:
        if not len(dataset):
            raise ValueError("Training dataset is empty")
        if dataset.num_inputs != engine.num_inputs or dataset.num_outputs != engine.num_outputs:
            raise ValueError(
                f"Dataset shape ({dataset.num_inputs} -> {dataset.num_outputs}) does not match "
                f"the network ({engine.num_inputs} -> {engine.num_outputs})"
            )
        self.config = config
        self.engine = engine
        self.max_attempts = config.attempts
        self.max_attempt_epochs = config.epochs
        self._rng = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)
        self._max_workers = max_workers or max(1, (os.cpu_count() or 1) - 1)
        self._executor: Optional[ThreadPoolExecutor] = None

        self.original_dataset = dataset
        self.std_dataset, self.input_filters, self.output_filters = dataset.standardized(engine.task_type)
        self._std_inputs = self.std_dataset.input_matrix()
        self._std_outputs = self.std_dataset.output_matrix()
        self._orig_outputs = dataset.output_matrix()
        self._order = np.arange(len(dataset))

        self._weights = np.zeros(engine.num_weights)
        self._imbalance = self._init_imbalances() if engine.task_type != TaskType.REGRESSION else None
        self._throttle_valve = self._init_throttle_valve()
        self._init_dropout()
        self._init_regularization()
        self._init_norm_constraints()
        self._optimizer: Optimizer = build_optimizer(engine.num_weights, config.optimizer)
        self.batch_size = self._init_batch_size()
        logger.debug("Batch size %d for %d samples", self.batch_size, len(dataset))

        self.attempt = 0
        self.attempt_epoch = 0
        self.epoch_err_stat: Optional[PrecisionErrStat] = None
        self.next_attempt()

    # ------------------------------------------------------------------ setup
    def _init_imbalances(self) -> Array:
        count = len(self.original_dataset)
        beta = (count - 1.0) / count
        num_outputs = self.engine.num_outputs
        coeffs = np.ones((2, num_outputs))

        def weight(samples: int) -> float:
            effective = 1.0 - beta ** max(samples, 1)
            return (1.0 - beta) / effective if effective > 0.0 else 1.0

        if self.engine.task_type == TaskType.CATEGORICAL:
            weights = np.array([weight(f.stat.nonzero_count) for f in self.output_filters])
            coeffs[0] = coeffs[1] = weights / weights.sum() * num_outputs
        else:
            for index, filt in enumerate(self.output_filters):
                w0 = weight(filt.stat.count - filt.stat.nonzero_count)
                w1 = weight(filt.stat.nonzero_count)
                coeffs[0, index] = w0 / (w0 + w1) * 2.0
                coeffs[1, index] = w1 / (w0 + w1) * 2.0
        return coeffs

    def _init_throttle_valve(self) -> Optional[ParamValMapper]:
        valve = self.config.throttle_valve
        last_epoch = self.config.epochs * valve.last_throttling_epoch_ratio
        if valve.min_permeability >= 1.0 or last_epoch <= 1.0:
            return None
        return ParamValMapper(1, last_epoch, 1.0, valve.min_permeability, valve.min_permeability, valve.slope)

    def permeability(self, epoch: int) -> float:
        """Learning permeability the throttle valve grants in ``epoch``."""

        valve = self.config.throttle_valve
        if valve.min_permeability >= 1.0:
            return 1.0
        if self._throttle_valve is None:
            # throttling ends within the first epoch
            return 1.0 if epoch <= 1 else valve.min_permeability
        return self._throttle_valve.map(epoch)

    def _init_dropout(self) -> None:
        self._linear = Linear()
        cfgs = [self.config.input_options.dropout] + [layer.dropout for layer in self.config.hidden_layers]
        self._dropout_modes = [cfg.mode for cfg in cfgs]
        self._dropout_ps = [cfg.p for cfg in cfgs]
        self._keep_ps = [1.0 - cfg.p for cfg in cfgs]
        self._dropout_active = any(mode != DropoutMode.NONE for mode in self._dropout_modes)

    def _layer_options(self, index: int):
        layer = self.engine.layers[index]
        if layer.output_layer:
            return self.config.output_options
        return self.config.hidden_layers[index]

    def _init_regularization(self) -> None:
        count = float(len(self.original_dataset))
        self._l1_w: List[float] = []
        self._l1_b: List[float] = []
        self._l2_w: List[float] = []
        self._l2_b: List[float] = []
        for index in range(len(self.engine.layers)):
            options = self._layer_options(index)
            self._l1_w.append(options.reg_l1.strength / count)
            self._l1_b.append((options.reg_l1.strength if options.reg_l1.biases else 0.0) / count)
            self._l2_w.append(options.reg_l2.strength / count)
            self._l2_b.append((options.reg_l2.strength if options.reg_l2.biases else 0.0) / count)

    def _init_norm_constraints(self) -> None:
        self._norm_cons = [self._layer_options(index).norm_cons for index in range(len(self.engine.layers))]

    def _init_batch_size(self) -> int:
        count = len(self.original_dataset)
        requested = self.config.batch_size
        if requested == FULL_BATCH_SIZE or count == 1 or self._optimizer.optimizer_id == OptimizerID.RPROP:
            size = count
        elif requested == AUTO_BATCH_SIZE:
            if self._optimizer.optimizer_id == OptimizerID.SGD:
                size = 1
            else:
                size = int(np.floor(count / SAMPLES_PER_BATCH_INCREMENT + 0.5))
                size = min(OPTIMAL_BATCH_MAX, max(OPTIMAL_BATCH_MIN, size))
        else:
            size = requested
        return min(size, count)

    # ---------------------------------------------------------- state machine
    @property
    def weights(self) -> Array:
        return self._weights

    @property
    def optimizer(self) -> Optimizer:
        return self._optimizer

    def next_attempt(self) -> bool:
        """Start a fresh attempt; False when every attempt has been used."""

        if self.attempt >= self.max_attempts:
            return False
        self.epoch_err_stat = None
        self.attempt += 1
        self.attempt_epoch = 0
        self.engine.randomize_weights(self._rng)
        self._weights[:] = self.engine.get_weights_copy()
        self._optimizer.reset()
        logger.debug("Training attempt %d/%d started", self.attempt, self.max_attempts)
        return True

    def epoch(self) -> bool:
        """Run one epoch; False when the last epoch of the last attempt is done."""

        if self.attempt_epoch == self.max_attempt_epochs:
            if not self.next_attempt():
                return False
        self.attempt_epoch += 1
        self._optimizer.new_epoch(self.attempt_epoch, self.config.epochs)
        count = len(self._order)
        if self.batch_size != count:
            self._order = self._order[self._rng.permutation(count)]
        for start in range(0, count, self.batch_size):
            self._perform_batch(self._order[start : start + self.batch_size])
        self._finalize_epoch()
        return True

    def save_checkpoint(self, path: str | Path) -> Path:
        """Write the in-progress weights and attempt position to ``path``."""

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as handle:
            np.savez_compressed(
                handle,
                weights=self._weights,
                attempt=np.array(self.attempt),
                attempt_epoch=np.array(self.attempt_epoch),
            )
        return path

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "Trainer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------ internals
    def _run_partitions(self, count: int, work: Callable[[int, Tuple[int, int]], T]) -> List[T]:
        """Run ``work`` per partition; results come back in partition order."""

        partitions = fixed_partitions(count, self._max_workers)
        if len(partitions) == 1:
            return [work(0, partitions[0])]
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="easyml-trainer")
        futures = [self._executor.submit(work, index, part) for index, part in enumerate(partitions)]
        return [future.result() for future in futures]

    def _finalize_epoch(self) -> None:
        self.engine.set_weights(self._weights)
        err_stat = create_err_stat(self.engine.task_type, self.engine.output_names)

        def work(_: int, part: Tuple[int, int]) -> PrecisionErrStat:
            start, stop = part
            computed = reverse_filters(self.output_filters, self.engine.compute(self._std_inputs[start:stop]))
            local = create_err_stat(self.engine.task_type, self.engine.output_names)
            local.update(computed, self._orig_outputs[start:stop])
            return local

        for local in self._run_partitions(len(self._std_inputs), work):
            err_stat.merge(local)
        self.epoch_err_stat = err_stat

    def _sample_gradients(
        self, inputs: Array, ideal: Array, rng: Optional[np.random.Generator]
    ) -> Tuple[Array, float]:
        """Forward and backward pass over a block of samples (one per row)."""

        engine = self.engine
        weights = self._weights
        layers = engine.layers

        activations: List[Array] = [inputs.copy()]
        switches: List[Array] = [np.ones(inputs.shape, dtype=bool)]
        if self._dropout_modes[0] != DropoutMode.NONE:
            switches[0] = self._linear.dropout(self._dropout_modes[0], self._dropout_ps[0], rng, activations[0])
        derivatives: List[Array] = []
        for index, layer in enumerate(layers):
            sums = layer.sums(weights, activations[-1])
            acts = layer.activation.compute(sums)
            derivs = layer.activation.derive(sums, acts)
            layer_switches = np.ones(acts.shape, dtype=bool)
            if not layer.output_layer and self._dropout_modes[1 + index] != DropoutMode.NONE:
                layer_switches = layer.activation.dropout(
                    self._dropout_modes[1 + index], self._dropout_ps[1 + index], rng, acts, derivs
                )
            activations.append(acts)
            derivatives.append(derivs)
            switches.append(layer_switches)

        computed = activations[-1]
        loss_sum = float(np.sum(engine.loss.loss(ideal, computed)))
        node_grads: List[Array] = [np.empty(0)] * len(layers)
        grads = engine.loss.z_gradient(derivatives[-1], ideal, computed)
        if self._imbalance is not None and self.config.class_balanced_loss:
            grads = grads * np.where(ideal >= BIN_DECISION_BORDER, self._imbalance[1], self._imbalance[0])
        node_grads[-1] = grads
        for index in range(len(layers) - 2, -1, -1):
            upstream = node_grads[index + 1] @ layers[index + 1].weight_matrix(weights)
            grads = derivatives[index] * upstream
            if self._dropout_modes[1 + index] == DropoutMode.BERNOULLI:
                grads /= self._keep_ps[1 + index]
            grads[~switches[index + 1]] = 0.0
            node_grads[index] = grads

        flat_grads = np.zeros_like(weights)
        for index, layer in enumerate(layers):
            grads = node_grads[index]
            in_switches = switches[index]
            node_on = switches[index + 1].astype(np.float64)
            layer_inputs = np.where(in_switches, activations[index], 0.0)
            weight_grads = grads.T @ layer_inputs
            matrix = layer.weight_matrix(weights)
            if self._l1_w[index] > 0.0 or self._l2_w[index] > 0.0:
                engaged = node_on.T @ in_switches.astype(np.float64)
                penalty = np.zeros_like(matrix)
                if self._l1_w[index] > 0.0:
                    penalty += self._l1_w[index] * np.sign(matrix)
                if self._l2_w[index] > 0.0:
                    penalty += self._l2_w[index] * matrix
                weight_grads += engaged * penalty
            bias_grads = grads.sum(axis=0)
            if self._l1_b[index] > 0.0 or self._l2_b[index] > 0.0:
                biases = layer.biases(weights)
                penalty = np.zeros_like(biases)
                if self._l1_b[index] > 0.0:
                    penalty += self._l1_b[index] * np.sign(biases)
                if self._l2_b[index] > 0.0:
                    penalty += self._l2_b[index] * biases
                bias_grads += node_on.sum(axis=0) * penalty
            flat_grads[layer.weights_start : layer.biases_start] = weight_grads.reshape(-1)
            flat_grads[layer.biases_start : layer.weights_stop] = bias_grads
        return flat_grads, loss_sum

    def _perform_batch(self, indices: Array) -> None:
        batch_count = len(indices)
        partitions = fixed_partitions(batch_count, self._max_workers)
        worker_rngs: Sequence[Optional[np.random.Generator]] = [None] * len(partitions)
        if self._dropout_active:
            seeds = self._rng.integers(0, 2**63 - 1, size=len(partitions))
            worker_rngs = [np.random.default_rng(int(seed)) for seed in seeds]

        def work(worker: int, part: Tuple[int, int]) -> Tuple[Array, float]:
            rows = indices[part[0] : part[1]]
            return self._sample_gradients(self._std_inputs[rows], self._std_outputs[rows], worker_rngs[worker])

        total_grads = np.zeros_like(self._weights)
        loss_total = 0.0
        for grads, loss_sum in self._run_partitions(batch_count, work):
            total_grads += grads
            loss_total += loss_sum

        count = len(self.original_dataset)
        divisor = count if self.engine.task_type == TaskType.CATEGORICAL else count * self.engine.num_outputs
        cost = loss_total / divisor
        grad_switches = total_grads != 0.0
        total_grads /= batch_count
        _clip_gradients(total_grads, self.config.grad_clip_val, self.config.grad_clip_norm)

        permeability = self.permeability(self.attempt_epoch)
        self._optimizer.update(permeability, cost, grad_switches, total_grads, self._weights)
        magnitude = float(np.max(np.abs(self._weights)))
        if np.isnan(magnitude) or magnitude >= MAX_ACCEPTABLE_WEIGHT_MAGNITUDE:
            raise NumericalInstabilityError(
                f"Weight magnitude is NaN or exceeds {MAX_ACCEPTABLE_WEIGHT_MAGNITUDE:.3e} after the last "
                "update. Decrease the learning rate to avoid numerical instability."
            )
        self._apply_norm_constraints()

    def _apply_norm_constraints(self) -> None:
        for layer, cons in zip(self.engine.layers, self._norm_cons):
            if cons.max <= 0.0:
                continue
            matrix = layer.weight_matrix(self._weights)
            biases = layer.biases(self._weights)
            squares = np.sum(matrix * matrix, axis=1)
            if cons.biases:
                squares = squares + biases * biases
            norms = np.sqrt(squares)
            safe = np.where(norms > 0.0, norms, 1.0)
            scale = np.where(norms < cons.min, cons.min / safe, np.where(norms > cons.max, cons.max / safe, 1.0))
            scale = np.where(norms > 0.0, scale, 1.0)
            matrix *= scale[:, None]
            if cons.biases:
                biases *= scale


__all__ = [
    "MAX_ACCEPTABLE_WEIGHT_MAGNITUDE",
    "NumericalInstabilityError",
    "Trainer",
]
