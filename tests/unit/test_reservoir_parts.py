import numpy as np
import pytest

from easyml.core.activations import create_activation
from easyml.core.types import ActivationID
from easyml.reservoir import (
    InputFeeding,
    Predictor,
    Reservoir,
    ReservoirConfig,
    ReservoirHiddenLayerConfig,
    ReservoirInputConfig,
    ReservoirNeuron,
    ReservoirSynapse,
)


def _config(neurons=50, spectral_radius=0.9, density=0.1):
    return ReservoirConfig(
        input=ReservoirInputConfig(flat_data_length=1, variables=1, feeding=InputFeeding.TIME_POINT),
        hidden=ReservoirHiddenLayerConfig(neurons=neurons, density=density, spectral_radius=spectral_radius),
    )


def test_synapse_delay_is_exact_fifo():
    synapse = ReservoirSynapse(0, 1.0, delay=3)
    pulled = [synapse.pull(np.array([value])) for value in [1.0, 2.0, 3.0, 4.0, 5.0]]
    assert pulled == [0.0, 0.0, 0.0, 1.0, 2.0]
    synapse.reset()
    assert synapse.pull(np.array([9.0])) == 0.0


def test_synapse_without_delay_scales_signal():
    synapse = ReservoirSynapse(1, 0.5)
    assert synapse.pull(np.array([4.0, 2.0])) == 1.0
    synapse.scale_weight(2.0)
    assert synapse.pull(np.array([4.0, 2.0])) == 2.0
    with pytest.raises(ValueError):
        ReservoirSynapse(0, 1.0, delay=-1)


def test_neuron_predictors():
    neuron = ReservoirNeuron(0, create_activation(ActivationID.TANH), 0.00125, 0.5, 0.0)
    neuron.connect_input(0, 1.0)
    neuron.collect_stimuli(np.array([0.5]), np.zeros(1))
    neuron.recompute()
    expected = np.tanh(0.5)
    assert neuron.activation == pytest.approx(expected)
    assert neuron.predictors[Predictor.ACTIVATION] == pytest.approx(expected)
    assert neuron.predictors[Predictor.SQUARED_ACTIVATION] == pytest.approx(expected * expected)
    assert neuron.spike_event
    assert 0.0 < neuron.predictors[Predictor.SPIKES_FADING_TRACE] <= 1.0
    neuron.collect_stimuli(np.array([0.5]), np.zeros(1))
    trace = neuron.predictors[Predictor.SPIKES_FADING_TRACE]
    neuron.recompute()
    assert not neuron.spike_event
    assert neuron.predictors[Predictor.SPIKES_FADING_TRACE] == pytest.approx(trace * 0.5)
    neuron.reset()
    assert neuron.activation == 0.0 and not neuron.predictors.any()


def test_switched_off_predictor_reads_zero():
    neuron = ReservoirNeuron(0, create_activation(ActivationID.TANH), 0.00125, 1.0, 0.0)
    neuron.connect_input(0, 1.0)
    neuron.predictor_switches[Predictor.SQUARED_ACTIVATION] = False
    neuron.collect_stimuli(np.array([-0.8]), np.zeros(1))
    neuron.recompute()
    assert neuron.predictors[Predictor.SQUARED_ACTIVATION] == 0.0
    assert neuron.predictors[Predictor.ACTIVATION] < 0.0


def test_config_validation():
    with pytest.raises(ValueError):
        ReservoirHiddenLayerConfig(neurons=5)
    with pytest.raises(ValueError):
        ReservoirHiddenLayerConfig(neurons=20, activation=ActivationID.RELU)
    with pytest.raises(ValueError):
        ReservoirHiddenLayerConfig(neurons=20, density=25)
    with pytest.raises(ValueError):
        ReservoirHiddenLayerConfig(neurons=20, density=2.5)
    with pytest.raises(ValueError):
        ReservoirInputConfig(flat_data_length=4, variables=2, feeding=InputFeeding.TIME_POINT)
    with pytest.raises(ValueError):
        ReservoirInputConfig(flat_data_length=5, variables=2, feeding="pattern_const_length")


def test_config_mapping_round_trip():
    config = ReservoirConfig.from_mapping(
        {
            "input": {"flat_data_length": 6, "variables": 2, "feeding": "pattern_const_length"},
            "hidden": {"neurons": 12, "activation": "elliot_sig"},
        }
    )
    assert config.input.feeding == InputFeeding.PATTERN_CONST_LENGTH
    payload = config.to_dict()
    assert payload["input"]["feeding"] == "pattern_const_length"
    assert payload["hidden"]["activation"] == "elliot_sig"
    assert ReservoirConfig.from_mapping(payload) == config


def test_hidden_weights_match_spectral_radius():
    reservoir = Reservoir(_config(spectral_radius=0.9), seed=1)
    assert reservoir.estimate_spectral_radius() == pytest.approx(0.9, rel=1e-4)


def test_ring_connectivity():
    reservoir = Reservoir(_config(neurons=50, density=0.1), seed=3)
    for neuron in reservoir.hidden_neurons:
        assert len(neuron.hidden_synapses) == 5
        assert all(s.presynaptic_index != neuron.index for s in neuron.hidden_synapses)
    assert reservoir.num_hidden_synapses == 250
    # one input variable fans out to a quarter of the hidden neurons
    assert reservoir.num_input_synapses == 13
    weights = [s.weight for n in reservoir.hidden_neurons for s in n.input_synapses]
    assert len(weights) == 13
    assert all(1.0 <= w <= 2.0 for w in weights)


def test_construction_is_seeded():
    first = Reservoir(_config(), seed=5)
    second = Reservoir(_config(), seed=5)
    other = Reservoir(_config(), seed=6)
    np.testing.assert_array_equal(first.hidden_weight_matrix(), second.hidden_weight_matrix())
    assert not np.array_equal(first.hidden_weight_matrix(), other.hidden_weight_matrix())


def test_section_lengths_before_init():
    reservoir = Reservoir(_config(neurons=20), seed=0)
    assert not reservoir.ready
    assert reservoir.output_length == 3 * 20
    assert reservoir.num_hidden_neurons == 20
