"""Reservoir computing preprocessor."""

from .config import InputFeeding, ReservoirConfig, ReservoirHiddenLayerConfig, ReservoirInputConfig
from .neuron import Predictor, ReservoirNeuron
from .reservoir import OutSection, Reservoir, ReservoirInitProgress
from .stat import NeuronStat, ReservoirStat
from .synapse import ReservoirSynapse

__all__ = [
    "InputFeeding",
    "NeuronStat",
    "OutSection",
    "Predictor",
    "Reservoir",
    "ReservoirConfig",
    "ReservoirHiddenLayerConfig",
    "ReservoirInitProgress",
    "ReservoirInputConfig",
    "ReservoirNeuron",
    "ReservoirStat",
    "ReservoirSynapse",
]
