"""Trained network snapshot: engine, feature filters and error statistics."""

from __future__ import annotations

import copy
import pickle
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np

from ..core.engine import MLPEngine
from ..core.types import ActivationID, Array, TaskType, fixed_partitions
from ..data.dataset import SampleDataset, apply_filters, reverse_filters
from ..data.filters import FeatureFilter
from .errstat import ModelConfidence, PrecisionErrStat, create_err_stat


class NetworkModel:
    """Self-contained predictor that works on natural (unfiltered) values."""

    def __init__(
        self,
        name: str,
        engine: MLPEngine,
        input_filters: Sequence[FeatureFilter],
        output_filters: Sequence[FeatureFilter],
        training_err_stat: PrecisionErrStat,
        validation_err_stat: Optional[PrecisionErrStat] = None,
    ) -> None:
        self.name = name
        self.engine = engine.deep_clone()
        self.input_filters: List[FeatureFilter] = list(input_filters)
        self.output_filters: List[FeatureFilter] = list(output_filters)
        self.training_err_stat = training_err_stat.clone()
        self.validation_err_stat = validation_err_stat.clone() if validation_err_stat is not None else None

    @property
    def task_type(self) -> TaskType:
        return self.engine.task_type

    @property
    def output_names(self) -> List[str]:
        return list(self.engine.output_names)

    @property
    def confidence(self) -> ModelConfidence:
        return ModelConfidence.from_err_stats(self.training_err_stat, self.validation_err_stat)

    def compute(self, inputs: Array) -> Array:
        """Predict natural output values for one input vector or a batch of rows."""

        standardized = apply_filters(self.input_filters, inputs)
        return reverse_filters(self.output_filters, self.engine.compute(standardized))

    def compute_dataset(self, dataset: SampleDataset) -> PrecisionErrStat:
        """Evaluate ``dataset`` and return a fresh error statistic."""

        inputs = dataset.input_matrix()
        outputs = dataset.output_matrix()
        err_stat = create_err_stat(self.task_type, self.output_names)
        for start, stop in fixed_partitions(len(dataset)):
            local = create_err_stat(self.task_type, self.output_names)
            local.update(self.compute(inputs[start:stop]), outputs[start:stop])
            err_stat.merge(local)
        return err_stat

    def is_better(self, other: "NetworkModel", training_only: bool = False) -> bool:
        """Return True when ``other`` beats this model.

        Compares confidence metrics (training and validation blended) unless
        ``training_only`` is set, in which case only the training error
        statistics decide.
        """

        if training_only:
            return self.training_err_stat.is_better(other.training_err_stat)
        return self.confidence.compare(other.confidence) == 1

    def clone(self) -> "NetworkModel":
        return NetworkModel(
            self.name,
            self.engine,
            copy.deepcopy(self.input_filters),
            copy.deepcopy(self.output_filters),
            self.training_err_stat,
            self.validation_err_stat,
        )

    def save(self, path: str | Path) -> Path:
        """Persist the model as ``.npz``: weights plus an opaque state blob."""

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        state = {
            "name": self.name,
            "topology": self.engine.topology(),
            "input_filters": self.input_filters,
            "output_filters": self.output_filters,
            "training_err_stat": self.training_err_stat,
            "validation_err_stat": self.validation_err_stat,
        }
        blob = np.frombuffer(pickle.dumps(state), dtype=np.uint8)
        with path.open("wb") as handle:
            np.savez_compressed(handle, weights=self.engine.get_weights_copy(), state=blob)
        return path

    @classmethod
    def load(cls, path: str | Path) -> "NetworkModel":
        with np.load(Path(path), allow_pickle=False) as data:
            weights = data["weights"]
            state = pickle.loads(data["state"].tobytes())
        topology = state["topology"]
        engine = MLPEngine(
            TaskType(topology["task_type"]),
            topology["num_inputs"],
            topology["output_names"],
            [(neurons, ActivationID(activation)) for neurons, activation in topology["hidden_layers"]],
        )
        engine.set_weights(weights)
        return cls(
            state["name"],
            engine,
            state["input_filters"],
            state["output_filters"],
            state["training_err_stat"],
            state["validation_err_stat"],
        )


__all__ = ["NetworkModel"]
