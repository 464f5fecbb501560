"""Activation statistics gathered while a reservoir is initialised."""

from __future__ import annotations

from typing import Dict, Mapping, Sequence

from ..core.stats import BasicStat


class NeuronStat:
    def __init__(self) -> None:
        self.activation_stat = BasicStat()
        self.neg_activation_stat = BasicStat()
        self.pos_activation_stat = BasicStat()
        self.spike_event_stat = BasicStat()

    def update(self, neuron) -> None:
        activation = neuron.activation
        self.activation_stat.add_sample(activation)
        if activation < 0.0:
            self.neg_activation_stat.add_sample(activation)
        elif activation > 0.0:
            self.pos_activation_stat.add_sample(activation)
        self.spike_event_stat.add_sample(1.0 if neuron.spike_event else 0.0)


class ReservoirStat:
    """Aggregate view over per-neuron statistics plus pruning counts."""

    def __init__(self, neuron_stats: Sequence[NeuronStat], blocked_predictors: Mapping[str, int]) -> None:
        self.neuron_stats = list(neuron_stats)
        self.blocked_predictors: Dict[str, int] = dict(blocked_predictors)
        self.activation_span_stat = BasicStat()
        self.neg_range_usage_stat = BasicStat()
        self.pos_range_usage_stat = BasicStat()
        self.avg_spike_event_stat = BasicStat()
        self.neurons_without_stimuli = 0
        for stat in self.neuron_stats:
            if stat.activation_stat.stddev == 0.0:
                self.neurons_without_stimuli += 1
            self.activation_span_stat.add_sample(stat.activation_stat.span)
            self.neg_range_usage_stat.add_sample(stat.neg_activation_stat.span)
            self.pos_range_usage_stat.add_sample(stat.pos_activation_stat.span)
            self.avg_spike_event_stat.add_sample(stat.spike_event_stat.mean)

    @property
    def total_blocked_predictors(self) -> int:
        return sum(self.blocked_predictors.values())

    def to_dict(self) -> Dict[str, object]:
        return {
            "neurons_without_stimuli": self.neurons_without_stimuli,
            "blocked_predictors": dict(self.blocked_predictors),
            "avg_neg_range_usage": self.neg_range_usage_stat.mean,
            "avg_pos_range_usage": self.pos_range_usage_stat.mean,
            "avg_activation_span": self.activation_span_stat.mean,
            "avg_spike_event_rate": self.avg_spike_event_stat.mean,
        }


__all__ = ["NeuronStat", "ReservoirStat"]
