"""Config-driven build runs that write metrics, manifest, summary and model."""

from __future__ import annotations

import json
import logging
import time
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from ..core.types import TaskType
from ..data.dataset import SampleDataset
from ..reporting.artifacts import write_manifest
from ..reporting.metrics import CsvSink, JsonlSink
from ..reporting.summary import write_summary
from .builder import NetworkModelBuilder
from .config import NetworkModelConfig
from .model import NetworkModel

logger = logging.getLogger(__name__)

_PRESETS: Dict[str, Mapping[str, object]] = {
    "regression-small": {
        "name": "regression-small",
        "task_type": "regression",
        "model": {
            "attempts": 1,
            "epochs": 200,
            "optimizer": {"name": "adam", "lr": 0.005},
            "hidden_layers": [{"neurons": 8, "activation": "leaky_relu"}],
            "batch_size": "auto",
        },
        "train": {"seed": 0, "run_dir": "runs/regression-small"},
    },
    "binary-small": {
        "name": "binary-small",
        "task_type": "binary",
        "model": {
            "attempts": 2,
            "epochs": 300,
            "optimizer": {"name": "adam"},
            "hidden_layers": [
                {"neurons": 8, "activation": "relu"},
                {"neurons": 8, "activation": "relu"},
            ],
            "batch_size": "full",
        },
        "train": {"seed": 0, "run_dir": "runs/binary-small"},
    },
    "categorical-small": {
        "name": "categorical-small",
        "task_type": "categorical",
        "model": {
            "attempts": 2,
            "epochs": 300,
            "optimizer": {"name": "rmsprop"},
            "hidden_layers": [
                {
                    "neurons": 16,
                    "activation": "elu",
                    "dropout": {"mode": "bernoulli", "p": 0.1},
                }
            ],
            "output_options": {"reg_l2": {"strength": 0.001}},
            "batch_size": "auto",
        },
        "train": {"seed": 0, "run_dir": "runs/categorical-small"},
    },
}


@dataclass(frozen=True)
class RunResult:
    """Artifacts produced by one pipeline run."""

    run_dir: str
    metrics_path: str
    csv_path: str
    manifest_path: str
    summary_path: str
    model_path: str
    model: NetworkModel


def presets() -> Mapping[str, Mapping[str, object]]:
    return {name: deepcopy(cfg) for name, cfg in _PRESETS.items()}


def load_preset(name: str) -> Mapping[str, object]:
    try:
        return deepcopy(_PRESETS[name])
    except KeyError as exc:
        available = ", ".join(sorted(_PRESETS))
        raise KeyError(f"Unknown preset: {name}. Available presets: {available}") from exc


class _MetricsCapture:
    def __init__(self) -> None:
        self.history: list[tuple[int, Mapping[str, float]]] = []
        self.last: Mapping[str, float] = {}

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        payload = {k: float(v) for k, v in metrics.items()}
        self.history.append((int(epoch), payload))
        self.last = payload


def run_pipeline(
    config: Mapping[str, object],
    training: SampleDataset,
    validation: Optional[SampleDataset] = None,
) -> RunResult:
    """Build a network model as described by ``config`` and persist the run."""

    name = str(config.get("name", "network"))
    task_type = TaskType(config.get("task_type", TaskType.REGRESSION.value))
    train_cfg = dict(config.get("train", {}))
    seed = int(train_cfg.get("seed", 0))
    output_names = _output_names(config, training)
    model_config = NetworkModelConfig.from_mapping(config.get("model", {}))

    run_dir = _resolve_run_dir(train_cfg, name)
    run_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Run %s writing artifacts to %s", name, run_dir)

    jsonl = JsonlSink(run_dir / "metrics.jsonl", split="train", seed=seed)
    csv_sink = CsvSink(run_dir / "metrics.csv", split="train")
    capture = _MetricsCapture()

    builder = NetworkModelBuilder(
        name,
        task_type,
        output_names,
        model_config,
        training,
        validation,
        seed=seed,
        callbacks=[jsonl, csv_sink, capture],
        checkpoint_dir=run_dir if train_cfg.get("checkpoints", False) else None,
    )
    model = builder.build()

    safe_config = _safe_config(config, model_config, output_names)
    (run_dir / "config.json").write_text(json.dumps(safe_config, indent=2))
    manifest = write_manifest(
        run_dir / "manifest.json",
        config=safe_config,
        dataset_provenance=_provenance(training, validation),
        outcome=_outcome(model, capture),
    )
    summary_path = write_summary(jsonl.path, run_dir / "summary.json", tail=int(train_cfg.get("summary_tail", 32)))
    (run_dir / "final_metrics.json").write_text(json.dumps(dict(capture.last), indent=2))
    model_path = model.save(run_dir / "model.npz")

    return RunResult(
        run_dir=str(run_dir),
        metrics_path=str(jsonl.path),
        csv_path=str(csv_sink.path),
        manifest_path=manifest,
        summary_path=summary_path,
        model_path=str(model_path),
        model=model,
    )


def _output_names(config: Mapping[str, object], training: SampleDataset) -> List[str]:
    names = config.get("output_names")
    if names is None:
        return [f"y{index}" for index in range(training.num_outputs)]
    names = [str(item) for item in names]
    if len(names) != training.num_outputs:
        raise ValueError(
            f"Config names {len(names)} outputs but the training data has {training.num_outputs}"
        )
    return names


def _resolve_run_dir(train_cfg: Mapping[str, object], name: str) -> Path:
    if "run_dir" in train_cfg:
        return Path(str(train_cfg["run_dir"]))
    timestamp = time.strftime("%Y%m%d-%H%M%S")
    return Path("runs") / timestamp / name


def _provenance(training: SampleDataset, validation: Optional[SampleDataset]) -> Mapping[str, object]:
    return {
        "training_samples": len(training),
        "validation_samples": len(validation) if validation is not None else 0,
        "num_inputs": training.num_inputs,
        "num_outputs": training.num_outputs,
    }


def _outcome(model: NetworkModel, capture: _MetricsCapture) -> Mapping[str, object]:
    confidence = model.confidence
    return {
        "reported_epochs": len(capture.history),
        "cost_indicator": confidence.cost_indicator,
        "binary_accuracy": confidence.binary_accuracy,
        "categorical_accuracy": confidence.categorical_accuracy,
        "feature_confidences": dict(zip(model.output_names, confidence.feature_confidences)),
    }


def _safe_config(
    config: Mapping[str, object], model_config: NetworkModelConfig, output_names: List[str]
) -> Mapping[str, object]:
    copied = json.loads(json.dumps({k: v for k, v in config.items() if k != "model"}))
    copied["model"] = model_config.to_dict()
    copied["output_names"] = list(output_names)
    return copied


__all__ = ["RunResult", "load_preset", "presets", "run_pipeline"]
