"""Network model configuration, training and build orchestration."""

from .builder import BuildProgress, NetworkModelBuilder
from .config import NetworkModelConfig, load_config
from .model import NetworkModel
from .trainer import NumericalInstabilityError, Trainer

__all__ = [
    "BuildProgress",
    "NetworkModelBuilder",
    "NetworkModelConfig",
    "load_config",
    "NetworkModel",
    "NumericalInstabilityError",
    "Trainer",
]
