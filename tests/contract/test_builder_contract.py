import numpy as np
import pytest

from easyml.core.types import TaskType
from easyml.data.dataset import SampleDataset
from easyml.training.builder import NetworkModelBuilder
from easyml.training.config import NetworkModelConfig
from easyml.training.model import NetworkModel


def _regression(n=30, seed=0):
    rng = np.random.default_rng(seed)
    inputs = rng.uniform(-1.0, 1.0, size=(n, 2))
    return SampleDataset.from_arrays(inputs, inputs[:, 0] - 0.5 * inputs[:, 1])


def _config(**overrides):
    mapping = {
        "attempts": 2,
        "epochs": 6,
        "optimizer": {"name": "adam", "lr": 0.01},
        "hidden_layers": [{"neurons": 4}],
    }
    mapping.update(overrides)
    return NetworkModelConfig.from_mapping(mapping)


def test_progress_and_callbacks_are_emitted_per_epoch():
    progress = []
    steps = []
    builder = NetworkModelBuilder(
        "reg",
        TaskType.REGRESSION,
        ["y"],
        _config(),
        _regression(),
        progress=progress.append,
        callbacks=[lambda step, metrics: steps.append((step, metrics))],
    )
    model = builder.build()
    assert isinstance(model, NetworkModel)
    assert len(progress) == len(steps) > 0
    first = progress[0]
    assert (first.attempt, first.epoch) == (1, 1)
    assert first.current_is_best and first.should_be_reported
    numbers = [step for step, _ in steps]
    assert numbers == sorted(numbers) and len(set(numbers)) == len(numbers)
    assert {"train_rmse", "best_train_rmse", "cost", "attempt"} <= set(steps[0][1])
    best = [metrics["best_train_rmse"] for _, metrics in steps]
    assert all(later <= earlier for earlier, later in zip(best, best[1:]))
    assert model.training_err_stat.rmse == pytest.approx(best[-1])


def test_builder_is_reproducible():
    first = NetworkModelBuilder("a", TaskType.REGRESSION, ["y"], _config(), _regression(), seed=3).build()
    second = NetworkModelBuilder("a", TaskType.REGRESSION, ["y"], _config(), _regression(), seed=3).build()
    np.testing.assert_array_equal(first.engine.get_weights_copy(), second.engine.get_weights_copy())


def test_validation_metrics_are_reported():
    seen = []
    builder = NetworkModelBuilder(
        "val",
        TaskType.REGRESSION,
        ["y"],
        _config(attempts=1),
        _regression(),
        _regression(n=10, seed=1),
        callbacks=[lambda step, metrics: seen.append(metrics)],
    )
    model = builder.build()
    assert model.validation_err_stat is not None
    assert all("val_rmse" in metrics for metrics in seen)


def test_engage_validation_requires_validation_data():
    with pytest.raises(ValueError):
        NetworkModelBuilder(
            "x", TaskType.REGRESSION, ["y"], _config(), _regression(), engage_validation=True
        )


def test_patience_stops_attempts_early():
    progress = []
    builder = NetworkModelBuilder(
        "patient",
        TaskType.REGRESSION,
        ["y"],
        _config(attempts=1, epochs=400, optimizer={"name": "sgd", "lr": 1e-20}, stop_attempt_patiency=0.01),
        _regression(),
        progress=progress.append,
    )
    builder.build()
    assert progress[-1].stop_current
    assert progress[-1].epoch < 400


def test_model_compute_and_persistence(tmp_path):
    training = _regression()
    model = NetworkModelBuilder("m", TaskType.REGRESSION, ["y"], _config(), training).build()
    inputs = training.input_matrix()
    predicted = model.compute(inputs)
    assert predicted.shape == (len(training), 1)
    stat = model.compute_dataset(training)
    assert stat.rmse == pytest.approx(model.training_err_stat.rmse)
    loaded = NetworkModel.load(model.save(tmp_path / "model.npz"))
    assert loaded.name == "m"
    np.testing.assert_allclose(loaded.compute(inputs), predicted)
    assert loaded.confidence == model.confidence
    clone = model.clone()
    assert clone.engine is not model.engine
    np.testing.assert_allclose(clone.compute(inputs), predicted)
