"""Ordered collections of input/output sample pairs."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence, Tuple

import numpy as np

from ..core.types import Array, TaskType
from .filters import BinFeatureFilter, FeatureFilter, FeatureUse, RealFeatureFilter


@dataclass(frozen=True)
class Sample:
    """A single input vector and its desired output vector."""

    input: Array
    output: Array


class SampleDataset:
    """Ordered samples with consistent input and output vector lengths."""

    def __init__(self, samples: Iterable[Tuple[Sequence[float], Sequence[float]]] = ()) -> None:
        self._inputs: List[Array] = []
        self._outputs: List[Array] = []
        for inputs, outputs in samples:
            self.add(inputs, outputs)

    @classmethod
    def from_arrays(cls, inputs: Array, outputs: Array) -> "SampleDataset":
        inputs = np.asarray(inputs, dtype=np.float64)
        outputs = np.asarray(outputs, dtype=np.float64)
        if inputs.ndim == 1:
            inputs = inputs.reshape(-1, 1)
        if outputs.ndim == 1:
            outputs = outputs.reshape(-1, 1)
        if inputs.shape[0] != outputs.shape[0]:
            raise ValueError(f"Got {inputs.shape[0]} input rows but {outputs.shape[0]} output rows")
        return cls(zip(inputs, outputs))

    def add(self, inputs: Sequence[float], outputs: Sequence[float]) -> None:
        in_vec = np.array(inputs, dtype=np.float64).reshape(-1)
        out_vec = np.array(outputs, dtype=np.float64).reshape(-1)
        if self._inputs:
            if in_vec.size != self.num_inputs:
                raise ValueError(f"Expected input vector of length {self.num_inputs}, got {in_vec.size}")
            if out_vec.size != self.num_outputs:
                raise ValueError(f"Expected output vector of length {self.num_outputs}, got {out_vec.size}")
        elif in_vec.size == 0 or out_vec.size == 0:
            raise ValueError("Input and output vectors must not be empty")
        self._inputs.append(in_vec)
        self._outputs.append(out_vec)

    def __len__(self) -> int:
        return len(self._inputs)

    def __iter__(self) -> Iterator[Sample]:
        for inputs, outputs in zip(self._inputs, self._outputs):
            yield Sample(inputs, outputs)

    def __getitem__(self, index: int) -> Sample:
        return Sample(self._inputs[index], self._outputs[index])

    @property
    def num_inputs(self) -> int:
        return int(self._inputs[0].size) if self._inputs else 0

    @property
    def num_outputs(self) -> int:
        return int(self._outputs[0].size) if self._outputs else 0

    def input_matrix(self) -> Array:
        return np.vstack(self._inputs) if self._inputs else np.zeros((0, 0))

    def output_matrix(self) -> Array:
        return np.vstack(self._outputs) if self._outputs else np.zeros((0, 0))

    def shuffled_copy(self, rng: np.random.Generator) -> "SampleDataset":
        order = rng.permutation(len(self))
        return SampleDataset((self._inputs[i], self._outputs[i]) for i in order)

    def feature_filters(self, task_type: TaskType) -> Tuple[List[FeatureFilter], List[FeatureFilter]]:
        """Return input and output filters fitted on this dataset."""

        inputs = self.input_matrix()
        outputs = self.output_matrix()
        input_filters: List[FeatureFilter] = []
        for column in inputs.T:
            filt = RealFeatureFilter(FeatureUse.INPUT)
            filt.update(column)
            input_filters.append(filt)
        output_filters: List[FeatureFilter] = []
        for column in outputs.T:
            if TaskType(task_type) == TaskType.REGRESSION:
                filt = RealFeatureFilter(FeatureUse.OUTPUT)
            else:
                filt = BinFeatureFilter(FeatureUse.OUTPUT)
            filt.update(column)
            output_filters.append(filt)
        return input_filters, output_filters

    def standardized(
        self, task_type: TaskType, centered: bool = True
    ) -> Tuple["SampleDataset", List[FeatureFilter], List[FeatureFilter]]:
        """Return a filtered copy of the dataset together with the fitted filters."""

        if not len(self):
            raise ValueError("Cannot standardize an empty dataset")
        input_filters, output_filters = self.feature_filters(task_type)
        inputs = apply_filters(input_filters, self.input_matrix(), centered)
        outputs = apply_filters(output_filters, self.output_matrix(), centered)
        return SampleDataset.from_arrays(inputs, outputs), input_filters, output_filters

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as fh:
            np.savez_compressed(fh, inputs=self.input_matrix(), outputs=self.output_matrix())
        return path

    @classmethod
    def load(cls, path: str | Path) -> "SampleDataset":
        with np.load(Path(path), allow_pickle=False) as data:
            return cls.from_arrays(data["inputs"], data["outputs"])


def apply_filters(filters: Sequence[FeatureFilter], matrix: Array, centered: bool = True) -> Array:
    matrix = np.asarray(matrix, dtype=np.float64)
    result = np.empty_like(matrix)
    for index, filt in enumerate(filters):
        result[..., index] = filt.apply(matrix[..., index], centered)
    return result


def reverse_filters(filters: Sequence[FeatureFilter], matrix: Array, centered: bool = True) -> Array:
    matrix = np.asarray(matrix, dtype=np.float64)
    result = np.empty_like(matrix)
    for index, filt in enumerate(filters):
        result[..., index] = filt.reverse(matrix[..., index], centered)
    return result


__all__ = ["Sample", "SampleDataset", "apply_filters", "reverse_filters"]
