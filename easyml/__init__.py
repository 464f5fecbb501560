"""easyml public API."""

__version__ = "0.1.0"

from .core import activations  # noqa: F401
from .core import types  # noqa: F401
from .core.engine import MLPEngine
from .data.dataset import SampleDataset
from .reservoir.config import ReservoirConfig
from .reservoir.reservoir import Reservoir
from .training.builder import NetworkModelBuilder
from .training.config import NetworkModelConfig
from .training.model import NetworkModel
from .training.pipelines import load_preset, presets, run_pipeline
from .training.trainer import NumericalInstabilityError, Trainer

__all__ = [
    "__version__",
    "activations",
    "types",
    "MLPEngine",
    "SampleDataset",
    "ReservoirConfig",
    "Reservoir",
    "NetworkModelBuilder",
    "NetworkModelConfig",
    "NetworkModel",
    "NumericalInstabilityError",
    "Trainer",
    "load_preset",
    "presets",
    "run_pipeline",
]
