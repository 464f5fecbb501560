import json

import numpy as np
import pytest

from easyml.core.optimizers import RPropConfig, SGDConfig
from easyml.core.types import ActivationID, DropoutMode, TaskType
from easyml.training.config import (
    AUTO_BATCH_SIZE,
    FULL_BATCH_SIZE,
    DropoutConfig,
    HiddenLayerConfig,
    InputOptionsConfig,
    NetworkModelConfig,
    load_config,
)
from easyml.training.errstat import ModelConfidence, create_err_stat
from easyml.training.schedule import CyclingCounter, ParamValMapper


def test_config_from_mapping():
    config = NetworkModelConfig.from_mapping(
        {
            "attempts": 2,
            "epochs": 30,
            "optimizer": {"name": "sgd", "lr": 0.01},
            "hidden_layers": [
                {"neurons": 6, "activation": "relu", "dropout": {"mode": "bernoulli", "p": 0.2}},
                {"neurons": 3},
            ],
            "output_options": {"reg_l2": {"strength": 0.01}},
            "batch_size": "full",
        }
    )
    assert isinstance(config.optimizer, SGDConfig)
    assert config.hidden_layers[0].activation == ActivationID.RELU
    assert config.hidden_layers[0].dropout.mode == DropoutMode.BERNOULLI
    assert config.hidden_layers[1].activation == ActivationID.LEAKY_RELU
    assert config.output_options.reg_l2.strength == 0.01
    assert config.batch_size == FULL_BATCH_SIZE
    assert config.dropout_active
    payload = config.to_dict()
    json.dumps(payload)
    assert payload["optimizer"]["name"] == "sgd"
    assert payload["hidden_layers"][0]["activation"] == "relu"


def test_config_validation():
    with pytest.raises(ValueError):
        NetworkModelConfig.from_mapping({"batch_size": "huge"})
    with pytest.raises(ValueError):
        NetworkModelConfig(attempts=0)
    with pytest.raises(ValueError):
        NetworkModelConfig(grad_clip_norm=1.0, grad_clip_val=1.0)
    with pytest.raises(ValueError):
        DropoutConfig(mode=DropoutMode.NONE, p=0.3)
    with pytest.raises(ValueError):
        DropoutConfig(mode=DropoutMode.BERNOULLI, p=0.0)
    with pytest.raises(ValueError):
        HiddenLayerConfig(neurons=4, activation=ActivationID.SOFTMAX)
    with pytest.raises(ValueError):
        NetworkModelConfig(optimizer=RPropConfig(), batch_size=16)
    with pytest.raises(ValueError):
        NetworkModelConfig(
            optimizer=RPropConfig(),
            input_options=InputOptionsConfig(dropout=DropoutConfig(DropoutMode.GAUSSIAN, 0.1)),
        )
    assert NetworkModelConfig().batch_size == AUTO_BATCH_SIZE


def test_load_config_formats(tmp_path):
    yaml_path = tmp_path / "cfg.yaml"
    yaml_path.write_text("model:\n  epochs: 5\n")
    assert load_config(yaml_path) == {"model": {"epochs": 5}}
    json_path = tmp_path / "cfg.json"
    json_path.write_text('{"task_type": "binary"}')
    assert load_config(json_path)["task_type"] == "binary"
    toml_path = tmp_path / "cfg.toml"
    toml_path.write_text("epochs = 5\n")
    with pytest.raises(ValueError):
        load_config(toml_path)
    list_path = tmp_path / "list.json"
    list_path.write_text("[1, 2]")
    with pytest.raises(TypeError):
        load_config(list_path)


def test_cycling_counter_wraps():
    counter = CyclingCounter(0, 2)
    assert [counter.next() for _ in range(5)] == [0, 1, 2, 0, 1]
    counter.reset()
    assert counter.next() == 0
    with pytest.raises(ValueError):
        CyclingCounter(3, 1)


def test_param_val_mapper():
    linear = ParamValMapper(1, 11, 0.2, 1.0, 1.0)
    assert linear.map(1) == pytest.approx(0.2)
    assert linear.map(6) == pytest.approx(0.6)
    assert linear.map(11) == pytest.approx(1.0)
    assert linear.map(20) == 1.0
    curved = ParamValMapper(1, 11, 0.2, 1.0, 1.0, slope=2.0)
    assert curved.map(6) > linear.map(6)
    assert curved.map(11) == pytest.approx(1.0)


def test_regression_err_stat():
    stat = create_err_stat(TaskType.REGRESSION, ["y"])
    stat.update(np.array([[1.0], [3.0]]), np.array([[0.0], [0.0]]))
    assert stat.rmse == pytest.approx(np.sqrt(5.0))
    better = create_err_stat(TaskType.REGRESSION, ["y"])
    better.update(np.array([0.1]), np.array([0.0]))
    assert stat.is_better(better)
    assert not better.is_better(stat)


def test_binary_err_stat_accuracy_and_merge():
    computed = np.array([[0.9], [0.2], [0.6]])
    ideal = np.array([[1.0], [0.0], [0.0]])
    whole = create_err_stat(TaskType.BINARY, ["y"])
    whole.update(computed, ideal)
    assert whole.binary_accuracy == pytest.approx(2.0 / 3.0)
    left = create_err_stat(TaskType.BINARY, ["y"])
    right = create_err_stat(TaskType.BINARY, ["y"])
    left.update(computed[:1], ideal[:1])
    right.update(computed[1:], ideal[1:])
    left.merge(right)
    assert left.binary_accuracy == pytest.approx(whole.binary_accuracy)
    assert left.rmse == pytest.approx(whole.rmse)
    np.testing.assert_array_equal(left.false_flags, whole.false_flags)


def test_categorical_ties_count_as_wrong():
    stat = create_err_stat(TaskType.CATEGORICAL, ["a", "b"])
    stat.update(
        np.array([[0.7, 0.3], [0.5, 0.5], [0.2, 0.8]]),
        np.array([[1.0, 0.0], [1.0, 0.0], [0.0, 1.0]]),
    )
    assert stat.categorical_accuracy == pytest.approx(2.0 / 3.0)
    assert "categorical_accuracy" in stat.to_dict()


def test_model_confidence_prefers_accuracy():
    good = create_err_stat(TaskType.BINARY, ["y"])
    good.update(np.array([[0.9], [0.1]]), np.array([[1.0], [0.0]]))
    bad = create_err_stat(TaskType.BINARY, ["y"])
    bad.update(np.array([[0.9], [0.9]]), np.array([[1.0], [0.0]]))
    good_conf = ModelConfidence.from_err_stats(good)
    bad_conf = ModelConfidence.from_err_stats(bad)
    assert good_conf.binary_accuracy == 1.0
    assert good_conf.compare(bad_conf) == -1
    assert bad_conf.compare(good_conf) == 1
    assert good_conf.compare(good_conf) == 0
    assert good_conf.is_better_than(bad_conf)
    blended = ModelConfidence.from_err_stats(good, bad)
    assert blended.binary_accuracy == pytest.approx(0.75)
