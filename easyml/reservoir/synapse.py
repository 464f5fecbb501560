"""Weighted, optionally delayed connection between two reservoir neurons."""

from __future__ import annotations

import numpy as np

from ..core.types import Array


class ReservoirSynapse:
    """Delivers ``activation * weight`` of a presynaptic neuron.

    With ``delay = d > 0`` signals pass through a ring buffer of ``d + 1``
    slots: the first ``d`` pulls return 0, later pulls return the signal
    enqueued ``d`` pulls earlier.
    """

    def __init__(self, presynaptic_index: int, weight: float, delay: int = 0) -> None:
        if delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        self.presynaptic_index = int(presynaptic_index)
        self.weight = float(weight)
        self.delay = int(delay)
        self._queue = np.zeros(self.delay + 1) if self.delay > 0 else None
        self.reset()

    def reset(self) -> None:
        self._enqueue_idx = 0
        self._dequeue_idx = 0
        self._count = 0

    def scale_weight(self, factor: float) -> None:
        self.weight *= factor

    def pull(self, activations: Array) -> float:
        signal = float(activations[self.presynaptic_index]) * self.weight
        queue = self._queue
        if queue is None:
            return signal
        queue[self._enqueue_idx] = signal
        self._enqueue_idx = (self._enqueue_idx + 1) % queue.size
        self._count += 1
        if self._count < queue.size:
            return 0.0
        stimuli = float(queue[self._dequeue_idx])
        self._dequeue_idx = (self._dequeue_idx + 1) % queue.size
        self._count -= 1
        return stimuli


__all__ = ["ReservoirSynapse"]
