"""Task-specific error statistics and model confidence metrics."""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np

from ..core.stats import BasicStat
from ..core.types import Array, BIN_DECISION_BORDER, EPSILON, TaskType

F_SCORE_BETA = 0.5
MISSING_VALIDATION_PENALTY = 0.05


def _rows(values: Array, width: int) -> Array:
    values = np.asarray(values, dtype=np.float64)
    if values.ndim == 1:
        values = values.reshape(1, -1)
    if values.shape[-1] != width:
        raise ValueError(f"Expected {width} output values per row, got {values.shape[-1]}")
    return values


def _log_loss(computed: Array, ideal: Array) -> Array:
    bounded = np.clip(computed, EPSILON, 1.0 - EPSILON)
    return np.where(ideal >= BIN_DECISION_BORDER, -np.log(bounded), -np.log(1.0 - bounded))


class PrecisionErrStat:
    """Absolute-error statistics per output feature and in total (regression)."""

    task_type = TaskType.REGRESSION

    def __init__(self, output_names: Sequence[str]) -> None:
        self.output_names = list(output_names)
        self.num_samples = 0
        self.feature_stats: List[BasicStat] = [BasicStat() for _ in self.output_names]
        self.total_stat = BasicStat()

    @property
    def num_outputs(self) -> int:
        return len(self.output_names)

    def update(self, computed: Array, ideal: Array) -> None:
        """Account one sample or a batch of rows."""

        computed = _rows(computed, self.num_outputs)
        ideal = _rows(ideal, self.num_outputs)
        errors = np.abs(ideal - computed)
        self.num_samples += computed.shape[0]
        for index, stat in enumerate(self.feature_stats):
            stat.add_samples(errors[:, index])
        self.total_stat.add_samples(errors)

    def merge(self, other: "PrecisionErrStat") -> None:
        self.num_samples += other.num_samples
        for mine, theirs in zip(self.feature_stats, other.feature_stats):
            mine.merge(theirs)
        self.total_stat.merge(other.total_stat)

    @property
    def rmse(self) -> float:
        return self.total_stat.rms

    def p_score(self, feature: int) -> float:
        return 1.0 / (EPSILON + self.feature_stats[feature].rms)

    def is_better(self, other: "PrecisionErrStat") -> bool:
        """Return True when ``other`` is better than this statistic."""

        return other.rmse < self.rmse

    def feature_confidences(self) -> Array:
        return np.array([1.0 / (1.0 + stat.rms) for stat in self.feature_stats])

    def cost_stat(self) -> BasicStat:
        return self.total_stat

    def clone(self) -> "PrecisionErrStat":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, float]:
        return {"samples": float(self.num_samples), "rmse": self.rmse}


class BinaryErrStat(PrecisionErrStat):
    """Adds per-feature binary decision statistics."""

    task_type = TaskType.BINARY

    def __init__(self, output_names: Sequence[str]) -> None:
        super().__init__(output_names)
        n = self.num_outputs
        self.ideal_ones = np.zeros(n)
        self.false_flags = np.zeros((2, n))
        self.wrong_decisions = np.zeros(n)
        self.log_loss_stats: List[BasicStat] = [BasicStat() for _ in range(n)]
        self.total_wrong_stat = BasicStat()
        self.total_log_loss_stat = BasicStat()

    def update(self, computed: Array, ideal: Array) -> None:
        super().update(computed, ideal)
        computed = _rows(computed, self.num_outputs)
        ideal = _rows(ideal, self.num_outputs)
        ideal_bin = (ideal >= BIN_DECISION_BORDER).astype(np.int64)
        wrong = (ideal_bin != (computed >= BIN_DECISION_BORDER)).astype(np.float64)
        self.ideal_ones += ideal_bin.sum(axis=0)
        self.false_flags[0] += np.where(ideal_bin == 0, wrong, 0.0).sum(axis=0)
        self.false_flags[1] += np.where(ideal_bin == 1, wrong, 0.0).sum(axis=0)
        self.wrong_decisions += wrong.sum(axis=0)
        losses = _log_loss(computed, ideal)
        for index, stat in enumerate(self.log_loss_stats):
            stat.add_samples(losses[:, index])
        self.total_wrong_stat.add_samples(wrong)
        self.total_log_loss_stat.add_samples(losses)

    def merge(self, other: "BinaryErrStat") -> None:
        super().merge(other)
        self.ideal_ones += other.ideal_ones
        self.false_flags += other.false_flags
        self.wrong_decisions += other.wrong_decisions
        for mine, theirs in zip(self.log_loss_stats, other.log_loss_stats):
            mine.merge(theirs)
        self.total_wrong_stat.merge(other.total_wrong_stat)
        self.total_log_loss_stat.merge(other.total_log_loss_stat)

    @property
    def binary_accuracy(self) -> float:
        return 1.0 - self.total_wrong_stat.mean

    def f_score(self, feature: int) -> float:
        sq_beta = F_SCORE_BETA * F_SCORE_BETA
        false_negative = self.false_flags[1, feature]
        false_positive = self.false_flags[0, feature]
        true_positive = self.ideal_ones[feature] - false_negative
        precision = true_positive / (EPSILON + true_positive + false_positive)
        recall = true_positive / (EPSILON + true_positive + false_negative)
        return float((1.0 + sq_beta) * (precision * recall) / (sq_beta * precision + recall + EPSILON))

    def is_better(self, other: "BinaryErrStat") -> bool:
        if other.total_wrong_stat.sum != self.total_wrong_stat.sum:
            return other.total_wrong_stat.sum < self.total_wrong_stat.sum
        return other.total_log_loss_stat.rms < self.total_log_loss_stat.rms

    def feature_confidences(self) -> Array:
        return np.array([self.f_score(index) for index in range(self.num_outputs)])

    def cost_stat(self) -> BasicStat:
        return self.total_log_loss_stat

    def to_dict(self) -> Dict[str, float]:
        payload = super().to_dict()
        payload["binary_accuracy"] = self.binary_accuracy
        payload["log_loss"] = self.total_log_loss_stat.mean
        return payload


class CategoricalErrStat(BinaryErrStat):
    """Adds single-label classification statistics."""

    task_type = TaskType.CATEGORICAL

    def __init__(self, output_names: Sequence[str]) -> None:
        super().__init__(output_names)
        self.classification_log_loss_stat = BasicStat()
        self.wrong_classification_stat = BasicStat()
        self.low_probability_stat = BasicStat()

    def update(self, computed: Array, ideal: Array) -> None:
        super().update(computed, ideal)
        computed = _rows(computed, self.num_outputs)
        ideal = _rows(ideal, self.num_outputs)
        losses = _log_loss(computed, ideal)
        self.classification_log_loss_stat.add_samples(losses[ideal >= BIN_DECISION_BORDER])
        computed_idx = np.argmax(computed, axis=1)
        ideal_idx = np.argmax(ideal, axis=1)
        row_max = computed[np.arange(computed.shape[0]), computed_idx]
        ties = np.sum(computed == row_max[:, None], axis=1) > 1
        wrong = (computed_idx != ideal_idx) | ties
        self.wrong_classification_stat.add_samples(wrong.astype(np.float64))
        self.low_probability_stat.add_samples((row_max[~wrong] < BIN_DECISION_BORDER).astype(np.float64))

    def merge(self, other: "CategoricalErrStat") -> None:
        super().merge(other)
        self.classification_log_loss_stat.merge(other.classification_log_loss_stat)
        self.wrong_classification_stat.merge(other.wrong_classification_stat)
        self.low_probability_stat.merge(other.low_probability_stat)

    @property
    def categorical_accuracy(self) -> float:
        return 1.0 - self.wrong_classification_stat.mean

    def is_better(self, other: "CategoricalErrStat") -> bool:
        if other.wrong_classification_stat.sum != self.wrong_classification_stat.sum:
            return other.wrong_classification_stat.sum < self.wrong_classification_stat.sum
        if other.low_probability_stat.sum != self.low_probability_stat.sum:
            return other.low_probability_stat.sum < self.low_probability_stat.sum
        return other.classification_log_loss_stat.rms < self.classification_log_loss_stat.rms

    def cost_stat(self) -> BasicStat:
        return self.classification_log_loss_stat

    def to_dict(self) -> Dict[str, float]:
        payload = super().to_dict()
        payload["categorical_accuracy"] = self.categorical_accuracy
        return payload


_ERR_STATS = {
    TaskType.REGRESSION: PrecisionErrStat,
    TaskType.BINARY: BinaryErrStat,
    TaskType.CATEGORICAL: CategoricalErrStat,
}


def create_err_stat(task_type: TaskType, output_names: Sequence[str]) -> PrecisionErrStat:
    return _ERR_STATS[TaskType(task_type)](output_names)


@dataclass(frozen=True)
class ModelConfidence:
    """Comparable summary of how far a model can be trusted."""

    task_type: TaskType
    cost_indicator: float
    categorical_accuracy: float
    binary_accuracy: float
    feature_confidences: tuple

    @classmethod
    def from_err_stats(
        cls, training: PrecisionErrStat, validation: PrecisionErrStat | None = None
    ) -> "ModelConfidence":
        task_type = training.task_type
        if validation is None:
            cost = training.cost_stat().rms
            cat_acc = training.categorical_accuracy if task_type == TaskType.CATEGORICAL else 0.0
            bin_acc = training.binary_accuracy if task_type != TaskType.REGRESSION else 0.0
            confidences = training.feature_confidences() * (1.0 - MISSING_VALIDATION_PENALTY)
        else:
            weight = training.num_samples / validation.num_samples
            train_cost, val_cost = training.cost_stat(), validation.cost_stat()
            cost = math.sqrt(
                (train_cost.sum_of_squares + weight * val_cost.sum_of_squares)
                / max(train_cost.count + weight * val_cost.count, 1.0)
            )
            cat_acc = 0.0
            bin_acc = 0.0
            if task_type == TaskType.CATEGORICAL:
                train_wrong, val_wrong = training.wrong_classification_stat, validation.wrong_classification_stat
                cat_acc = 1.0 - (train_wrong.sum + weight * val_wrong.sum) / (train_wrong.count + weight * val_wrong.count)
            if task_type != TaskType.REGRESSION:
                train_wrong, val_wrong = training.total_wrong_stat, validation.total_wrong_stat
                bin_acc = 1.0 - (train_wrong.sum + weight * val_wrong.sum) / (train_wrong.count + weight * val_wrong.count)
            confidences = (training.feature_confidences() + weight * validation.feature_confidences()) / (1.0 + weight)
        return cls(task_type, float(cost), float(cat_acc), float(bin_acc), tuple(float(c) for c in confidences))

    @property
    def confidence_rms(self) -> float:
        return BasicStat(self.feature_confidences).rms

    def is_better_than(self, other: "ModelConfidence") -> bool:
        return self.compare(other) < 0

    def compare(self, other: "ModelConfidence") -> int:
        """Return -1 when this is the more trustworthy metric, 1 when ``other`` is, else 0."""

        # (mine, theirs) pairs where higher is better
        keys = []
        if self.task_type == TaskType.CATEGORICAL:
            keys.append((self.categorical_accuracy, other.categorical_accuracy))
        if self.task_type != TaskType.REGRESSION:
            keys.append((self.binary_accuracy, other.binary_accuracy))
        keys.append((self.confidence_rms, other.confidence_rms))
        keys.append((-self.cost_indicator, -other.cost_indicator))
        for mine, theirs in keys:
            if mine > theirs:
                return -1
            if mine < theirs:
                return 1
        return 0


__all__ = [
    "PrecisionErrStat",
    "BinaryErrStat",
    "CategoricalErrStat",
    "create_err_stat",
    "ModelConfidence",
]
