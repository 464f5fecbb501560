"""Attempt/epoch build loop that keeps the best network model."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Sequence

import numpy as np

from ..core.engine import MLPEngine
from ..core.types import TaskType
from ..data.dataset import SampleDataset
from .config import NetworkModelConfig
from .model import NetworkModel
from .trainer import Trainer

logger = logging.getLogger(__name__)

RMSE_STOP_THRESHOLD = 1e-6
REPORT_INTERVAL = 10


@dataclass(frozen=True)
class BuildProgress:
    """Snapshot emitted after every training epoch."""

    attempt: int
    max_attempts: int
    epoch: int
    max_epochs: int
    current_model: NetworkModel
    best_model: NetworkModel
    best_attempt: int
    best_epoch: int
    stop_current: bool

    @property
    def current_is_best(self) -> bool:
        return self.best_attempt == self.attempt and self.best_epoch == self.epoch

    @property
    def should_be_reported(self) -> bool:
        return (
            self.stop_current
            or self.current_is_best
            or self.epoch == self.max_epochs
            or self.epoch == 1
            or self.epoch % REPORT_INTERVAL == 0
        )

    def metrics(self) -> Dict[str, float]:
        """Flat numeric view used by metric sinks."""

        current = self.current_model
        best = self.best_model
        payload: Dict[str, float] = {
            "attempt": float(self.attempt),
            "train_rmse": current.training_err_stat.rmse,
            "best_train_rmse": best.training_err_stat.rmse,
            "cost": current.confidence.cost_indicator,
            "best_cost": best.confidence.cost_indicator,
            "current_is_best": float(self.current_is_best),
        }
        if current.validation_err_stat is not None:
            payload["val_rmse"] = current.validation_err_stat.rmse
        if current.task_type != TaskType.REGRESSION:
            payload["train_binary_accuracy"] = current.training_err_stat.binary_accuracy
            payload["best_binary_accuracy"] = best.confidence.binary_accuracy
            if current.validation_err_stat is not None:
                payload["val_binary_accuracy"] = current.validation_err_stat.binary_accuracy
        if current.task_type == TaskType.CATEGORICAL:
            payload["train_categorical_accuracy"] = current.training_err_stat.categorical_accuracy
            payload["best_categorical_accuracy"] = best.confidence.categorical_accuracy
        return payload


class NetworkModelBuilder:
    """Trains a network across attempts and returns the best model seen."""

    def __init__(
        self,
        name: str,
        task_type: TaskType,
        output_names: Sequence[str],
        config: NetworkModelConfig,
        training: SampleDataset,
        validation: Optional[SampleDataset] = None,
        *,
        seed: int | None = 0,
        callbacks: Iterable[object] = (),
        progress: Optional[Callable[[BuildProgress], None]] = None,
        engage_validation: bool | None = None,
        fine_tuning: bool = True,
        checkpoint_dir: str | Path | None = None,
    ) -> None:
        if engage_validation is None:
            engage_validation = validation is not None
        if engage_validation and validation is None:
            raise ValueError("Can't engage validation data: validation dataset is missing")
        self.name = name or "network"
        self.task_type = TaskType(task_type)
        self.output_names = list(output_names)
        self.config = config
        self.training = training
        self.validation = validation
        self.seed = seed
        self.callbacks = list(callbacks)
        self.progress = progress
        self.engage_validation = engage_validation
        self.fine_tuning = fine_tuning
        self.checkpoint_dir = Path(checkpoint_dir) if checkpoint_dir is not None else None

    def _emit(self, progress: BuildProgress) -> None:
        if self.progress is not None:
            self.progress(progress)
        if not self.callbacks:
            return
        metrics = progress.metrics()
        step = (progress.attempt - 1) * progress.max_epochs + progress.epoch
        for callback in self.callbacks:
            if hasattr(callback, "on_epoch"):
                callback.on_epoch(step, metrics)
            elif callable(callback):
                callback(step, metrics)

    def _snapshot(self, engine: MLPEngine, trainer: Trainer) -> NetworkModel:
        model = NetworkModel(
            self.name,
            engine,
            trainer.input_filters,
            trainer.output_filters,
            trainer.epoch_err_stat,
        )
        if self.validation is not None:
            model.validation_err_stat = model.compute_dataset(self.validation)
        return model

    def _perfect(self, model: NetworkModel) -> bool:
        if self.task_type == TaskType.REGRESSION:
            return model.training_err_stat.rmse < RMSE_STOP_THRESHOLD
        return model.training_err_stat.binary_accuracy == 1.0

    def build(self) -> NetworkModel:
        engine = MLPEngine.from_config(self.task_type, self.training.num_inputs, self.output_names, self.config)
        rng = np.random.default_rng(self.seed)
        training_only = not self.engage_validation
        best: Optional[NetworkModel] = None
        best_attempt = 0
        best_epoch = 0
        last_improvement: Optional[NetworkModel] = None
        last_improvement_epoch = 0
        fine_tune = False

        with Trainer(self.config, engine, self.training, rng) as trainer:
            while trainer.epoch():
                current = self._snapshot(engine, trainer)
                if best is None:
                    best = current.clone()
                    best_attempt = trainer.attempt
                    best_epoch = trainer.attempt_epoch
                if trainer.attempt_epoch == 1:
                    last_improvement = None
                    last_improvement_epoch = 0
                    fine_tune = False
                if last_improvement is None or last_improvement.is_better(current, training_only):
                    last_improvement = current
                    last_improvement_epoch = trainer.attempt_epoch

                stop_all = False
                if best.is_better(current, training_only):
                    best = current.clone()
                    best_attempt = trainer.attempt
                    best_epoch = trainer.attempt_epoch
                    if self.checkpoint_dir is not None:
                        trainer.save_checkpoint(self.checkpoint_dir / "best.ckpt")
                    if self.engage_validation:
                        solved = self.task_type != TaskType.REGRESSION and best.confidence.binary_accuracy == 1.0
                        if self.fine_tuning:
                            fine_tune = solved
                        else:
                            stop_all |= solved
                else:
                    stop_all |= self.engage_validation and fine_tune
                stop_all |= fine_tune and trainer.attempt_epoch == trainer.max_attempt_epochs
                if not stop_all and not self.engage_validation:
                    stop_all = self._perfect(current)

                stop_current = stop_all
                if not stop_current:
                    patience = trainer.max_attempt_epochs * self.config.stop_attempt_patiency
                    stop_current |= trainer.attempt_epoch - last_improvement_epoch >= patience
                    stop_current |= current.training_err_stat.rmse < RMSE_STOP_THRESHOLD

                self._emit(
                    BuildProgress(
                        attempt=trainer.attempt,
                        max_attempts=trainer.max_attempts,
                        epoch=trainer.attempt_epoch,
                        max_epochs=trainer.max_attempt_epochs,
                        current_model=current,
                        best_model=best,
                        best_attempt=best_attempt,
                        best_epoch=best_epoch,
                        stop_current=stop_current,
                    )
                )
                if stop_all:
                    logger.info("Stopping build %s at attempt %d epoch %d", self.name, trainer.attempt, trainer.attempt_epoch)
                    break
                if stop_current:
                    logger.debug("Attempt %d stopped at epoch %d", trainer.attempt, trainer.attempt_epoch)
                    if not trainer.next_attempt():
                        break
            if self.checkpoint_dir is not None:
                trainer.save_checkpoint(self.checkpoint_dir / "last.ckpt")

        logger.info(
            "Build %s finished: best model from attempt %d epoch %d (train rmse %.6f)",
            self.name,
            best_attempt,
            best_epoch,
            best.training_err_stat.rmse,
        )
        return best


__all__ = ["BuildProgress", "NetworkModelBuilder", "RMSE_STOP_THRESHOLD"]
