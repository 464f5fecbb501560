import csv
import json
from pathlib import Path

import numpy as np
import pytest

from easyml.data.dataset import SampleDataset
from easyml.training import pipelines
from easyml.training.model import NetworkModel


def _binary_data(n=40, seed=0):
    rng = np.random.default_rng(seed)
    inputs = rng.uniform(-1.0, 1.0, size=(n, 2))
    return SampleDataset.from_arrays(inputs, (inputs[:, 0] > inputs[:, 1]).astype(float))


def test_pipeline_produces_artifacts(tmp_path):
    config = pipelines.load_preset("binary-small")
    config["model"]["epochs"] = 15
    config["model"]["attempts"] = 1
    config["train"] = {"seed": 11, "run_dir": str(tmp_path / "run"), "checkpoints": True}

    result = pipelines.run_pipeline(config, _binary_data(), _binary_data(n=12, seed=1))

    run_dir = Path(result.run_dir)
    for name in ("metrics.jsonl", "metrics.csv", "manifest.json", "summary.json", "config.json", "final_metrics.json", "model.npz"):
        assert (run_dir / name).exists(), name
    assert (run_dir / "last.ckpt").exists()

    manifest = json.loads(Path(result.manifest_path).read_text())
    assert manifest["config"]["train"]["seed"] == 11
    assert manifest["config"]["model"]["optimizer"]["name"] == "adam"
    assert manifest["dataset"] == {
        "training_samples": 40,
        "validation_samples": 12,
        "num_inputs": 2,
        "num_outputs": 1,
    }
    assert "numpy" in manifest["environment"] and "pyyaml" in manifest["environment"]
    assert set(manifest["outcome"]["feature_confidences"]) == {"y0"}
    assert 0.0 <= manifest["outcome"]["binary_accuracy"] <= 1.0

    metrics = [json.loads(line) for line in Path(result.metrics_path).read_text().splitlines() if line]
    assert metrics, "metrics should not be empty"
    first = metrics[0]
    assert first["split"] == "train" and first["seed"] == 11 and "sha" in first
    assert all("train_binary_accuracy" in entry and "val_rmse" in entry for entry in metrics)

    with open(result.csv_path, newline="") as handle:
        rows = list(csv.DictReader(handle))
    assert len(rows) == len(metrics)

    summary = json.loads(Path(result.summary_path).read_text())
    assert summary["records"] == len(metrics)
    assert summary["attempts"] == 1 and "attempt" not in summary["metrics"]
    assert "train_rmse" in summary["metrics"]

    loaded = NetworkModel.load(result.model_path)
    sample_inputs = np.array([[0.5, -0.5], [-0.5, 0.5]])
    np.testing.assert_allclose(loaded.compute(sample_inputs), result.model.compute(sample_inputs))
    assert loaded.output_names == ["y0"]


def test_presets_are_independent_copies():
    names = set(pipelines.presets())
    assert {"regression-small", "binary-small", "categorical-small"} <= names
    preset = pipelines.load_preset("regression-small")
    preset["model"]["epochs"] = 1
    assert pipelines.load_preset("regression-small")["model"]["epochs"] != 1
    with pytest.raises(KeyError):
        pipelines.load_preset("missing")


def test_output_names_must_match_data(tmp_path):
    config = pipelines.load_preset("binary-small")
    config["output_names"] = ["a", "b"]
    config["train"] = {"run_dir": str(tmp_path / "bad")}
    with pytest.raises(ValueError):
        pipelines.run_pipeline(config, _binary_data())
