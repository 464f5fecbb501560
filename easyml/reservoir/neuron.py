"""Leaky-integrator reservoir neuron and the predictors it exposes."""

from __future__ import annotations

import math
from enum import IntEnum
from typing import List

import numpy as np

from ..core.activations import Activation
from ..core.types import Array
from .synapse import ReservoirSynapse


class Predictor(IntEnum):
    """Per-neuron predictor slots (index into ``ReservoirNeuron.predictors``)."""

    ACTIVATION = 0
    SQUARED_ACTIVATION = 1
    SPIKES_FADING_TRACE = 2


class ReservoirNeuron:
    def __init__(
        self,
        index: int,
        activation_fn: Activation,
        spike_threshold: float,
        fading_coeff: float,
        retainment: float,
    ) -> None:
        self.index = index
        self._activation_fn = activation_fn
        self._spike_threshold = spike_threshold
        self._spike_denominator = math.log(1.0 / spike_threshold) + 1.0
        self._fading_coeff = fading_coeff
        self._retainment = retainment
        self.input_synapses: List[ReservoirSynapse] = []
        self.hidden_synapses: List[ReservoirSynapse] = []
        self.predictors = np.zeros(len(Predictor))
        self.predictor_switches = np.ones(len(Predictor), dtype=bool)
        self.reset()

    def connect_input(self, presynaptic_index: int, weight: float, delay: int = 0) -> None:
        self.input_synapses.append(ReservoirSynapse(presynaptic_index, weight, delay))

    def connect_hidden(self, presynaptic_index: int, weight: float, delay: int = 0) -> None:
        self.hidden_synapses.append(ReservoirSynapse(presynaptic_index, weight, delay))

    def adjust_input_synapses_weight(self) -> None:
        """Average incoming input weights over the in-degree."""

        if len(self.input_synapses) > 1:
            factor = 1.0 / len(self.input_synapses)
            for synapse in self.input_synapses:
                synapse.scale_weight(factor)

    def scale_hidden_synapses_weight(self, factor: float) -> None:
        for synapse in self.hidden_synapses:
            synapse.scale_weight(factor)

    def collect_stimuli(self, input_activations: Array, hidden_activations: Array, external: float = 0.0) -> None:
        total = external
        for synapse in self.input_synapses:
            total += synapse.pull(input_activations)
        for synapse in self.hidden_synapses:
            total += synapse.pull(hidden_activations)
        self.stimuli = total

    def recompute(self) -> None:
        self.prev_activation = self.activation
        computed = float(self._activation_fn.compute(np.array([self.stimuli]))[0])
        self.activation = self._retainment * self.prev_activation + (1.0 - self._retainment) * computed

        switches = self.predictor_switches
        predictors = self.predictors
        predictors[Predictor.ACTIVATION] = self.activation if switches[Predictor.ACTIVATION] else 0.0
        if switches[Predictor.SQUARED_ACTIVATION]:
            predictors[Predictor.SQUARED_ACTIVATION] = self.activation * abs(self.activation)
        else:
            predictors[Predictor.SQUARED_ACTIVATION] = 0.0
        if switches[Predictor.SPIKES_FADING_TRACE]:
            predictors[Predictor.SPIKES_FADING_TRACE] *= self._fading_coeff
            rise = self.activation - self.prev_activation
            self.spike_event = rise >= self._spike_threshold
            self.spike_power = 0.0
            if self.spike_event:
                # log-compressed count of threshold quanta, bounded to [0, 1]
                quanta = 1.0 + math.log(rise / self._spike_threshold)
                self.spike_power = min(self._spike_denominator, quanta) / self._spike_denominator
            predictors[Predictor.SPIKES_FADING_TRACE] += self.spike_power
        else:
            predictors[Predictor.SPIKES_FADING_TRACE] = 0.0

    def reset(self) -> None:
        self.activation = 0.0
        self.prev_activation = 0.0
        self.stimuli = 0.0
        self.spike_event = False
        self.spike_power = 0.0
        self.predictors[:] = 0.0
        for synapse in self.input_synapses:
            synapse.reset()
        for synapse in self.hidden_synapses:
            synapse.reset()


__all__ = ["Predictor", "ReservoirNeuron"]
