"""Core typing contracts and shared helpers for easyml."""

from __future__ import annotations

import os
from enum import Enum
from typing import List, Tuple

import numpy as np

Array = np.ndarray

EPSILON = 1e-8
BIN_DECISION_BORDER = 0.5


class TaskType(str, Enum):
    """Kind of task the output layer serves."""

    REGRESSION = "regression"
    BINARY = "binary"
    CATEGORICAL = "categorical"


class ActivationID(str, Enum):
    BENT_IDENTITY = "bent_identity"
    ELLIOT_SIG = "elliot_sig"
    ELU = "elu"
    GELU = "gelu"
    HARD_LIM = "hard_lim"
    LEAKY_RELU = "leaky_relu"
    LINEAR = "linear"
    RAD_BAS = "rad_bas"
    RELU = "relu"
    SELU = "selu"
    SIGMOID = "sigmoid"
    SINE = "sine"
    SOFTMAX = "softmax"
    SOFTPLUS = "softplus"
    TANH = "tanh"


class DropoutMode(str, Enum):
    NONE = "none"
    BERNOULLI = "bernoulli"
    GAUSSIAN = "gaussian"


class OptimizerID(str, Enum):
    RPROP = "rprop"
    SGD = "sgd"
    ADAM = "adam"
    ADABELIEF = "adabelief"
    PADAM = "padam"
    ADAMAX = "adamax"
    ADAGRAD = "adagrad"
    ADADELTA = "adadelta"
    RMSPROP = "rmsprop"


def get_binary(value: float) -> int:
    """Return the binary decision (0 or 1) represented by ``value``."""

    return 0 if value < BIN_DECISION_BORDER else 1


def same_binary_meaning(value1: float, value2: float) -> bool:
    return get_binary(value1) == get_binary(value2)


def fixed_partitions(n: int, desired: int = -1) -> List[Tuple[int, int]]:
    """Split ``range(n)`` into contiguous ``(start, stop)`` chunks for workers.

    The number of chunks defaults to the number of CPUs minus one.
    """

    if n <= 0:
        raise ValueError(f"Number of items must be positive, got {n}")
    if desired > 0:
        max_partitions = desired
    else:
        max_partitions = max(1, (os.cpu_count() or 1) - 1)
    size = max(1.0, n / max_partitions)
    count = min(n, max_partitions)
    partitions: List[Tuple[int, int]] = []
    start = 0
    for i in range(count):
        stop = n if i == count - 1 else min(n, int(round((i + 1) * size)))
        if stop > start:
            partitions.append((start, stop))
        start = stop
    return partitions


__all__ = [
    "Array",
    "EPSILON",
    "BIN_DECISION_BORDER",
    "TaskType",
    "ActivationID",
    "DropoutMode",
    "OptimizerID",
    "get_binary",
    "same_binary_meaning",
    "fixed_partitions",
]
