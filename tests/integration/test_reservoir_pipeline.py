import numpy as np

from easyml.core.types import TaskType
from easyml.data.dataset import SampleDataset
from easyml.reservoir import (
    InputFeeding,
    OutSection,
    Predictor,
    Reservoir,
    ReservoirConfig,
    ReservoirHiddenLayerConfig,
    ReservoirInputConfig,
)
from easyml.training.builder import NetworkModelBuilder
from easyml.training.config import NetworkModelConfig


def _switches(reservoir):
    return np.array([neuron.predictor_switches.copy() for neuron in reservoir.hidden_neurons])


def test_time_point_zero_stream_becomes_ready():
    config = ReservoirConfig(
        input=ReservoirInputConfig(flat_data_length=1, variables=1, feeding=InputFeeding.TIME_POINT),
        hidden=ReservoirHiddenLayerConfig(neurons=20, spectral_radius=0.9),
    )
    reservoir = Reservoir(config, seed=0)
    outputs, _ = reservoir.init([[0.0]] * 30)
    assert reservoir.ready
    assert len(outputs) == 10
    assert all(len(row) == reservoir.output_length for row in outputs)
    twin = Reservoir(config, seed=0)
    twin.init([[0.0]] * 30)
    for _ in range(5):
        output, sections = reservoir.compute_sections([0.0])
        assert output is not None and np.all(np.isfinite(output))
        assert output.shape == (reservoir.output_length,)
        np.testing.assert_array_equal(sections[OutSection.RES_INPUTS], [0.0])
        assert np.all(np.abs(sections[OutSection.ACTIVATIONS]) <= 1.0)
        assert np.all(sections[OutSection.SPIKES_FADING_TRACES] >= 0.0)
        np.testing.assert_array_equal(twin.compute([0.0]), output)


def test_pruning_is_idempotent():
    config = ReservoirConfig(
        input=ReservoirInputConfig(flat_data_length=8, variables=2, feeding=InputFeeding.PATTERN_CONST_LENGTH),
        hidden=ReservoirHiddenLayerConfig(neurons=20, density=2),
    )
    inputs = np.random.default_rng(3).uniform(-1.0, 1.0, size=(25, 8))
    inputs[:, 1::2] = 0.5
    reservoir = Reservoir(config, seed=4)
    first_outputs, first_stat = reservoir.init(inputs)
    first_switches = _switches(reservoir)
    first_lengths = dict(reservoir.out_section_lengths)
    second_outputs, second_stat = reservoir.init(inputs)
    np.testing.assert_array_equal(_switches(reservoir), first_switches)
    assert reservoir.out_section_lengths == first_lengths
    assert first_stat.blocked_predictors == second_stat.blocked_predictors
    np.testing.assert_allclose(np.stack(second_outputs), np.stack(first_outputs))
    fresh = Reservoir(config, seed=4)
    fresh.init(inputs)
    np.testing.assert_array_equal(_switches(fresh), first_switches)


def test_pattern_sections_layout():
    config = ReservoirConfig(
        input=ReservoirInputConfig(flat_data_length=6, variables=2, feeding=InputFeeding.PATTERN_CONST_LENGTH),
        hidden=ReservoirHiddenLayerConfig(neurons=12),
    )
    reservoir = Reservoir(config, seed=1)
    inputs = np.random.default_rng(7).uniform(-2.0, 2.0, size=(12, 6))
    outputs, stat = reservoir.init(inputs)
    lengths = reservoir.out_section_lengths
    assert lengths[OutSection.RES_INPUTS] == 6
    on = _switches(reservoir)
    assert lengths[OutSection.ACTIVATIONS] == 2 * on[:, Predictor.ACTIVATION].sum()
    assert stat.total_blocked_predictors == 3 * 2 * 12 - sum(
        lengths[section] for section in (OutSection.ACTIVATIONS, OutSection.SQUARED_ACTIVATIONS, OutSection.SPIKES_FADING_TRACES)
    )
    output, sections = reservoir.compute_sections(inputs[0])
    assert list(sections) == [
        OutSection.ACTIVATIONS,
        OutSection.SQUARED_ACTIVATIONS,
        OutSection.SPIKES_FADING_TRACES,
        OutSection.RES_INPUTS,
    ]
    np.testing.assert_array_equal(sections[OutSection.RES_INPUTS], inputs[0])
    assert output.shape == (reservoir.output_length,)


def test_var_length_patterns_omit_raw_inputs():
    config = ReservoirConfig(
        input=ReservoirInputConfig(flat_data_length=2, variables=1, feeding=InputFeeding.PATTERN_VAR_LENGTH),
        hidden=ReservoirHiddenLayerConfig(neurons=10, max_delay=2, density=3),
    )
    reservoir = Reservoir(config, seed=2)
    rng = np.random.default_rng(9)
    inputs = [rng.uniform(-1.0, 1.0, size=length) for length in (2, 5, 3, 7, 4, 6)]
    outputs, _ = reservoir.init(inputs)
    assert reservoir.out_section_lengths[OutSection.RES_INPUTS] == 0
    assert {len(row) for row in outputs} == {reservoir.output_length}
    assert reservoir.compute(rng.uniform(-1.0, 1.0, size=9)).shape == (reservoir.output_length,)


def test_reservoir_features_feed_a_network():
    rng = np.random.default_rng(11)
    series = np.sin(np.linspace(0.0, 12.0 * np.pi, 260)) + rng.normal(0.0, 0.05, 260)
    config = ReservoirConfig(
        input=ReservoirInputConfig(flat_data_length=1, variables=1, feeding=InputFeeding.TIME_POINT),
        hidden=ReservoirHiddenLayerConfig(neurons=20, spectral_radius=0.9),
    )
    reservoir = Reservoir(config, seed=0)
    features, _ = reservoir.init([[value] for value in series[:-1]])
    targets = series[-len(features):]
    model = NetworkModelBuilder(
        "next",
        TaskType.REGRESSION,
        ["next"],
        NetworkModelConfig.from_mapping(
            {"epochs": 30, "optimizer": {"name": "adam", "lr": 0.01}, "hidden_layers": [{"neurons": 8}]}
        ),
        SampleDataset.from_arrays(np.stack(features), targets),
    ).build()
    assert model.training_err_stat.rmse < np.std(targets)
