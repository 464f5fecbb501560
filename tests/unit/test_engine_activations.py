import math

import numpy as np
import pytest

from easyml.core.activations import (
    create_activation,
    is_suitable_for_mlp_hidden_layer,
    is_suitable_for_reservoir_hidden_layer,
)
from easyml.core.engine import MLPEngine
from easyml.core.losses import REGISTRY as LOSSES
from easyml.core.types import ActivationID, DropoutMode, TaskType, fixed_partitions


def _engine(task_type=TaskType.REGRESSION, outputs=("a", "b")):
    return MLPEngine(
        task_type,
        3,
        list(outputs),
        [(4, ActivationID.RELU), (3, ActivationID.TANH)],
    )


def test_flat_weight_layout_has_no_gaps():
    engine = _engine()
    expected_start = 0
    expected_neurons = 0
    for layer in engine.layers:
        assert layer.weights_start == expected_start
        assert layer.neurons_start == expected_neurons
        assert layer.biases_start == layer.weights_start + layer.num_inputs * layer.num_neurons
        expected_start = layer.weights_stop
        expected_neurons += layer.num_neurons
    assert expected_start == engine.num_weights == (3 * 4 + 4) + (4 * 3 + 3) + (3 * 2 + 2)
    assert expected_neurons == engine.num_neurons
    assert engine.layers[0].first_layer and engine.layers[-1].output_layer


def test_randomize_is_seeded_and_biases_start_at_zero():
    first = _engine()
    second = _engine()
    first.randomize_weights(np.random.default_rng(7))
    second.randomize_weights(np.random.default_rng(7))
    np.testing.assert_array_equal(first.get_weights_copy(), second.get_weights_copy())
    for layer in first.layers:
        assert np.all(layer.biases(first.get_weights_copy()) == 0.0)


def test_softmax_output_bias_initialisation():
    engine = MLPEngine(TaskType.CATEGORICAL, 2, ["x", "y", "z"], [(5, ActivationID.RELU)])
    engine.randomize_weights(np.random.default_rng(0))
    biases = engine.output_layer.biases(engine.get_weights_copy())
    np.testing.assert_allclose(biases, -math.log(2.0))


def test_compute_is_deterministic_and_batched():
    engine = _engine()
    engine.randomize_weights(np.random.default_rng(3))
    rows = np.random.default_rng(4).uniform(-1.0, 1.0, size=(6, 3))
    batch = engine.compute(rows)
    assert batch.shape == (6, 2)
    for row, expected in zip(rows, batch):
        np.testing.assert_allclose(engine.compute(row), expected)
    np.testing.assert_array_equal(engine.compute(rows), batch)


def test_set_weights_copy_keeps_outputs():
    engine = _engine()
    engine.randomize_weights(np.random.default_rng(5))
    inputs = np.array([0.3, -0.2, 0.9])
    before = engine.compute(inputs)
    engine.set_weights(engine.get_weights_copy())
    np.testing.assert_array_equal(engine.compute(inputs), before)
    with pytest.raises(ValueError):
        engine.set_weights(np.zeros(engine.num_weights + 1))


def test_compute_into_matches_compute():
    engine = _engine()
    engine.randomize_weights(np.random.default_rng(11))
    inputs = np.array([0.5, 0.1, -0.4])
    activations = np.zeros(engine.num_inputs + engine.num_neurons)
    sums = np.zeros(engine.num_neurons)
    activations[:3] = inputs
    start = engine.compute_into(activations, sums)
    np.testing.assert_allclose(activations[start:], engine.compute(inputs))


def test_engine_save_and_load(tmp_path):
    engine = _engine(TaskType.BINARY)
    engine.randomize_weights(np.random.default_rng(2))
    path = engine.save(tmp_path / "engine.npz")
    loaded = MLPEngine.load(path)
    assert loaded.task_type == TaskType.BINARY
    assert loaded.output_names == ["a", "b"]
    np.testing.assert_array_equal(loaded.get_weights_copy(), engine.get_weights_copy())


def test_engine_rejects_bad_topology():
    with pytest.raises(ValueError):
        MLPEngine(TaskType.CATEGORICAL, 2, ["only"])
    with pytest.raises(ValueError):
        MLPEngine(TaskType.REGRESSION, 0, ["y"])
    with pytest.raises(ValueError):
        MLPEngine(TaskType.REGRESSION, 2, ["y", "y"])


def test_output_activation_follows_task_type():
    assert MLPEngine(TaskType.REGRESSION, 1, ["y"]).output_layer.activation.id == ActivationID.LINEAR
    assert MLPEngine(TaskType.BINARY, 1, ["y"]).output_layer.activation.id == ActivationID.SIGMOID
    assert MLPEngine(TaskType.CATEGORICAL, 1, ["a", "b"]).output_layer.activation.id == ActivationID.SOFTMAX


def test_softmax_rows_sum_to_one():
    softmax = create_activation("softmax")
    out = softmax.compute(np.array([[1.0, 2.0, 3.0], [1000.0, 1000.0, -5.0]]))
    np.testing.assert_allclose(out.sum(axis=1), 1.0)
    assert np.all(np.isfinite(out))


def test_element_wise_derivatives():
    sums = np.array([-2.0, -0.5, 0.5, 2.0])
    sigmoid = create_activation(ActivationID.SIGMOID)
    acts = sigmoid.compute(sums)
    np.testing.assert_allclose(sigmoid.derive(sums, acts), acts * (1.0 - acts))
    leaky = create_activation(ActivationID.LEAKY_RELU)
    np.testing.assert_allclose(leaky.compute(sums), [-0.02, -0.005, 0.5, 2.0])
    np.testing.assert_allclose(leaky.derive(sums, leaky.compute(sums)), [0.01, 0.01, 1.0, 1.0])


def test_unknown_activation_raises_key_error():
    with pytest.raises(KeyError):
        create_activation("swishy")


def test_bernoulli_dropout_scales_kept_nodes():
    relu = create_activation(ActivationID.RELU)
    acts = np.ones((200, 10))
    derivs = np.ones((200, 10))
    switches = relu.dropout(DropoutMode.BERNOULLI, 0.25, np.random.default_rng(0), acts, derivs)
    assert switches.dtype == bool
    np.testing.assert_allclose(acts[switches], 1.0 / 0.75)
    assert np.all(acts[~switches] == 0.0)
    assert np.all(derivs[~switches] == 0.0)
    assert 0.65 < switches.mean() < 0.85


def test_gaussian_dropout_keeps_all_switches():
    acts = np.ones(50)
    switches = create_activation("tanh").dropout(DropoutMode.GAUSSIAN, 0.2, np.random.default_rng(1), acts)
    assert switches.all()
    assert not np.allclose(acts, 1.0)


def test_activation_suitability():
    assert is_suitable_for_mlp_hidden_layer(ActivationID.RELU)
    assert not is_suitable_for_mlp_hidden_layer(ActivationID.LINEAR)
    assert not is_suitable_for_mlp_hidden_layer(ActivationID.SOFTMAX)
    assert is_suitable_for_reservoir_hidden_layer(ActivationID.TANH)
    assert not is_suitable_for_reservoir_hidden_layer(ActivationID.RELU)


def test_losses_resolve_by_task():
    assert LOSSES.resolve(TaskType.REGRESSION).name == "squared_error"
    assert LOSSES.resolve(TaskType.BINARY).name == "sigmoid_ce"
    assert LOSSES.resolve(TaskType.CATEGORICAL).name == "softmax_ce"
    mse = LOSSES.get("squared_error")
    np.testing.assert_allclose(mse.loss([1.0], [3.0]), [2.0])
    np.testing.assert_allclose(mse.z_gradient([0.5], [1.0], [3.0]), [1.0])
    ce = LOSSES.get("sigmoid_ce")
    np.testing.assert_allclose(ce.z_gradient([0.1], [1.0], [0.25]), [-0.75])
    with pytest.raises(KeyError):
        LOSSES.get("hinge")


def test_fixed_partitions_cover_range():
    parts = fixed_partitions(10, 3)
    assert parts[0][0] == 0 and parts[-1][1] == 10
    for (_, stop), (start, _) in zip(parts, parts[1:]):
        assert stop == start
    assert fixed_partitions(2, 8) == [(0, 1), (1, 2)]
    with pytest.raises(ValueError):
        fixed_partitions(0)
