"""Recurrent reservoir turning time-series input into fixed-width predictors.

Hidden-to-hidden connectivity is a sequence of shuffled rings: each round
connects every neuron to its successor in a fresh permutation, so every
neuron receives exactly one synapse per round. Incoming hidden weights are
normalised to an absolute sum of 1 and then rescaled so the dominant
eigenvalue of the hidden weight matrix equals the configured spectral radius.
"""

from __future__ import annotations

import copy
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..core.activations import create_activation
from ..core.stats import BasicStat
from ..core.types import Array, fixed_partitions
from ..data.filters import FeatureUse, RealFeatureFilter
from ..data.pattern import TimeSeriesPattern
from ..training.schedule import CyclingCounter
from .config import InputFeeding, ReservoirConfig
from .neuron import Predictor, ReservoirNeuron
from .stat import NeuronStat, ReservoirStat

logger = logging.getLogger(__name__)

SYNAPSES_PARALLEL_LIMIT = 7000
NEURONS_WITH_STAT_PARALLEL_LIMIT = 500
NEURONS_ONLY_PARALLEL_LIMIT = NEURONS_WITH_STAT_PARALLEL_LIMIT * 2
BLOCKING_BORDER = 1e-6
BIAS_MAGNITUDE = 0.1
USE_CENTERED_FEATURES = True


class OutSection(str, Enum):
    """Sections of the reservoir output vector, in output order."""

    ACTIVATIONS = "activations"
    SQUARED_ACTIVATIONS = "squared_activations"
    SPIKES_FADING_TRACES = "spikes_fading_traces"
    RES_INPUTS = "res_inputs"


SECTION_PREDICTORS: Dict[OutSection, Predictor] = {
    OutSection.ACTIVATIONS: Predictor.ACTIVATION,
    OutSection.SQUARED_ACTIVATIONS: Predictor.SQUARED_ACTIVATION,
    OutSection.SPIKES_FADING_TRACES: Predictor.SPIKES_FADING_TRACE,
}


@dataclass(frozen=True)
class ReservoirInitProgress:
    processed: int
    total: int
    prepared_outputs: int
    stat: Optional[ReservoirStat] = None

    @property
    def should_be_reported(self) -> bool:
        return self.processed == self.total


class Reservoir:
    """Deterministic (per seed) sparse recurrent network of leaky integrators."""

    def __init__(self, config: ReservoirConfig, seed: int = 0) -> None:
        self.config = config
        self.seed = seed
        input_cfg = config.input
        hidden_cfg = config.hidden
        rng = np.random.default_rng(seed)
        n_hidden = hidden_cfg.neurons
        self._initialized = False
        self._input_filters = [RealFeatureFilter(FeatureUse.INPUT) for _ in range(input_cfg.variables)]
        self._input_activations = np.zeros(input_cfg.variables)

        if input_cfg.feeding == InputFeeding.TIME_POINT:
            fading_coeff = 1.0 - min(0.5, 1.0 / n_hidden)
        else:
            fading_coeff = 1.0
        self._hidden_activation_fn = create_activation(hidden_cfg.activation)
        self._hidden = [
            ReservoirNeuron(i, self._hidden_activation_fn, hidden_cfg.spike_threshold, fading_coeff, hidden_cfg.retainment)
            for i in range(n_hidden)
        ]

        # hidden ring rounds
        rounds = self._num_connections(hidden_cfg.density, n_hidden)
        max_delay = min(rounds - 1, hidden_cfg.max_delay)
        counter = CyclingCounter(0, max_delay) if max_delay > 0 else None
        abs_sums = np.zeros(n_hidden)
        self.num_hidden_synapses = 0
        for _ in range(rounds):
            order = rng.permutation(n_hidden)
            if counter is not None:
                counter.reset()
            for position, target in enumerate(order):
                weight = rng.uniform(-1.0, 1.0)
                delay = counter.next() if counter is not None else 0
                source = order[(position + 1) % n_hidden]
                abs_sums[target] += abs(weight)
                self._hidden[target].connect_hidden(int(source), weight, delay)
                self.num_hidden_synapses += 1
        for neuron, total in zip(self._hidden, abs_sums):
            neuron.scale_hidden_synapses_weight(1.0 / total)
        eigenvalue = self.estimate_spectral_radius()
        for neuron in self._hidden:
            neuron.scale_hidden_synapses_weight(hidden_cfg.spectral_radius / eigenvalue)
        self._hidden_biases = np.random.default_rng(0).uniform(-BIAS_MAGNITUDE, BIAS_MAGNITUDE, n_hidden)

        # input fan-out
        fan_out = self._num_connections(input_cfg.density, n_hidden)
        max_delay = min(fan_out - 1, input_cfg.max_delay)
        counter = CyclingCounter(0, max_delay) if max_delay > 0 else None
        self.num_input_synapses = 0
        for input_idx in range(input_cfg.variables):
            order = rng.permutation(n_hidden)
            if counter is not None:
                counter.reset()
            for target in order[:fan_out]:
                weight = rng.uniform(input_cfg.max_strength / 2.0, input_cfg.max_strength)
                delay = counter.next() if counter is not None else 0
                self._hidden[target].connect_input(input_idx, weight, delay)
                self.num_input_synapses += 1
        for neuron in self._hidden:
            neuron.adjust_input_synapses_weight()

        self.input_weights_stat = BasicStat()
        self.hidden_weights_stat = BasicStat()
        for neuron in self._hidden:
            self.input_weights_stat.add_samples([s.weight for s in neuron.input_synapses])
            self.hidden_weights_stat.add_samples([s.weight for s in neuron.hidden_synapses])

        self._halves = 1 if input_cfg.feeding == InputFeeding.TIME_POINT else 2
        self.out_section_lengths: Dict[OutSection, int] = {}
        self._restore_predictors()
        self.out_section_lengths[OutSection.RES_INPUTS] = 0
        self._set_booting_countdown()
        logger.debug(
            "Reservoir built: %d hidden neurons, %d hidden synapses, %d input synapses",
            n_hidden,
            self.num_hidden_synapses,
            self.num_input_synapses,
        )

    @staticmethod
    def _num_connections(density: float, n_hidden: int) -> int:
        if density < 1.0:
            count = int(np.floor(n_hidden * density + 0.5))
        else:
            count = int(density)
        return min(n_hidden, max(1, count))

    # ------------------------------------------------------------ properties
    @property
    def ready(self) -> bool:
        return self._initialized and self._booting_countdown == 0

    @property
    def output_length(self) -> int:
        return sum(self.out_section_lengths.values())

    @property
    def num_input_neurons(self) -> int:
        return len(self._input_filters)

    @property
    def num_hidden_neurons(self) -> int:
        return len(self._hidden)

    @property
    def hidden_neurons(self) -> List[ReservoirNeuron]:
        return self._hidden

    def hidden_weight_matrix(self) -> Array:
        """Dense ``(n, n)`` matrix of hidden-to-hidden weights (row = target)."""

        n = len(self._hidden)
        matrix = np.zeros((n, n))
        for neuron in self._hidden:
            for synapse in neuron.hidden_synapses:
                matrix[neuron.index, synapse.presynaptic_index] += synapse.weight
        return matrix

    def estimate_spectral_radius(self, max_iterations: int = 1000, stop_delta: float = 1e-6) -> float:
        """Power iteration with max-abs normalisation.

        Returns the eigenvalue estimate from the iteration with the smallest
        change, which keeps the result stable when the iteration oscillates.
        """

        matrix = self.hidden_weight_matrix()
        vector = np.ones(matrix.shape[0])
        eigenvalue = 0.0
        best_delta = np.inf
        radius = 0.0
        for _ in range(max_iterations):
            product = matrix @ vector
            previous = eigenvalue
            eigenvalue = float(np.max(np.abs(product)))
            vector = product / eigenvalue
            delta = abs(eigenvalue - previous)
            if delta < best_delta:
                best_delta = delta
                radius = eigenvalue
            if delta <= stop_delta:
                break
        return radius

    # ---------------------------------------------------------------- state
    def _set_booting_countdown(self) -> None:
        feeding = self.config.input.feeding
        self._booting_countdown = len(self._hidden) if feeding == InputFeeding.TIME_POINT else 0

    def _restore_predictors(self) -> None:
        for neuron in self._hidden:
            neuron.predictor_switches[:] = True
        for section in SECTION_PREDICTORS:
            self.out_section_lengths[section] = self._halves * len(self._hidden)

    def _reset_state(self) -> None:
        self._input_activations[:] = 0.0
        for neuron in self._hidden:
            neuron.reset()

    def reset(self) -> None:
        """Forget neuron state, input filters, pruning and initialisation."""

        self._reset_state()
        self._restore_predictors()
        for filt in self._input_filters:
            filt.reset()
        self._set_booting_countdown()
        self._initialized = False

    def deep_clone(self) -> "Reservoir":
        return copy.deepcopy(self)

    # ----------------------------------------------------------- simulation
    def _run_ranges(self, parallel: bool, work: Callable[[int, int], None]) -> None:
        n = len(self._hidden)
        if not parallel:
            work(0, n)
            return
        partitions = fixed_partitions(n)
        with ThreadPoolExecutor(max_workers=len(partitions), thread_name_prefix="easyml-reservoir") as pool:
            for future in [pool.submit(work, start, stop) for start, stop in partitions]:
                future.result()

    def _push_timepoint(self, values: Array, neuron_stats: Optional[List[NeuronStat]]) -> None:
        self._input_activations[:] = values
        hidden_activations = np.array([neuron.activation for neuron in self._hidden])
        inputs = self._input_activations
        biases = self._hidden_biases
        hidden = self._hidden

        def collect(start: int, stop: int) -> None:
            for i in range(start, stop):
                hidden[i].collect_stimuli(inputs, hidden_activations, biases[i])

        def recompute(start: int, stop: int) -> None:
            for i in range(start, stop):
                hidden[i].recompute()
                if neuron_stats is not None:
                    neuron_stats[i].update(hidden[i])

        n = len(hidden)
        synapses = self.num_hidden_synapses + self.num_input_synapses
        self._run_ranges(synapses >= SYNAPSES_PARALLEL_LIMIT or n >= NEURONS_ONLY_PARALLEL_LIMIT, collect)
        limit = NEURONS_WITH_STAT_PARALLEL_LIMIT if neuron_stats is not None else NEURONS_ONLY_PARALLEL_LIMIT
        self._run_ranges(n >= limit, recompute)

    def _collect_predictors(self, sections: Dict[OutSection, List[float]]) -> None:
        for section, predictor in SECTION_PREDICTORS.items():
            for neuron in self._hidden:
                if neuron.predictor_switches[predictor]:
                    sections[section].append(float(neuron.predictors[predictor]))

    def _compute(
        self, flat_input: Sequence[float], neuron_stats: Optional[List[NeuronStat]]
    ) -> Tuple[Optional[Array], Dict[OutSection, Array]]:
        input_cfg = self.config.input
        raw = np.asarray(flat_input, dtype=np.float64).reshape(-1)
        pattern = TimeSeriesPattern.from_flat(raw, len(self._input_filters), input_cfg.var_schema)
        if not pattern.consistent:
            raise ValueError("Inconsistent input data")
        if input_cfg.feeding == InputFeeding.PATTERN_CONST_LENGTH and raw.size != input_cfg.flat_data_length:
            raise ValueError(f"Expected input of length {input_cfg.flat_data_length}, got {raw.size}")
        pattern.standardize(self._input_filters, USE_CENTERED_FEATURES)
        length = pattern.length
        sections: Dict[OutSection, List[float]] = {section: [] for section in SECTION_PREDICTORS}
        if input_cfg.feeding == InputFeeding.TIME_POINT:
            if length != 1:
                raise ValueError("Input does not contain single time point data")
        else:
            self._reset_state()
            for t in range(length - 1, -1, -1):
                self._push_timepoint(pattern.data_at(t), neuron_stats)
            self._collect_predictors(sections)
            self._reset_state()
        for t in range(length):
            self._push_timepoint(pattern.data_at(t), neuron_stats)
            if input_cfg.feeding == InputFeeding.TIME_POINT and self._booting_countdown > 0:
                self._booting_countdown -= 1
        if not self.ready:
            return None, {}
        self._collect_predictors(sections)
        result = {section: np.asarray(values) for section, values in sections.items()}
        if input_cfg.feeding != InputFeeding.PATTERN_VAR_LENGTH:
            result[OutSection.RES_INPUTS] = raw.copy()
        return np.concatenate(list(result.values())), result

    def compute(self, flat_input: Sequence[float]) -> Optional[Array]:
        """Return the output vector, or ``None`` while still booting."""

        return self.compute_sections(flat_input)[0]

    def compute_sections(self, flat_input: Sequence[float]) -> Tuple[Optional[Array], Dict[OutSection, Array]]:
        if not self._initialized:
            raise RuntimeError("Reservoir is not initialized. Call init() first.")
        return self._compute(flat_input, None)

    # ------------------------------------------------------- initialisation
    def init(
        self,
        inputs: Sequence[Sequence[float]],
        progress: Optional[Callable[[ReservoirInitProgress], None]] = None,
    ) -> Tuple[List[Array], ReservoirStat]:
        """Fit input filters, run every input and prune degenerate predictors.

        Returns the output vectors produced once the reservoir was ready
        (pruned predictors removed) together with activation statistics.
        """

        if not len(inputs):
            raise ValueError("At least one input is required to initialise the reservoir")
        if self._initialized:
            self.reset()
        input_cfg = self.config.input
        if input_cfg.feeding != InputFeeding.PATTERN_VAR_LENGTH:
            self.out_section_lengths[OutSection.RES_INPUTS] = len(inputs[0])
        else:
            self.out_section_lengths[OutSection.RES_INPUTS] = 0

        patterns = [TimeSeriesPattern.from_flat(item, len(self._input_filters), input_cfg.var_schema) for item in inputs]
        for index, filt in enumerate(self._input_filters):
            for pattern in patterns:
                filt.update(pattern.data[index])

        neuron_stats = [NeuronStat() for _ in self._hidden]
        rows: List[Dict[OutSection, Array]] = []
        stat: Optional[ReservoirStat] = None
        for number, item in enumerate(inputs, start=1):
            if self._booting_countdown == 0 and not self._initialized:
                self._initialized = True
            output, sections = self._compute(item, neuron_stats if self._initialized else None)
            if output is not None:
                rows.append(sections)
            if number == len(inputs):
                stat = self._finalize(neuron_stats, rows)
            if progress is not None:
                progress(ReservoirInitProgress(number, len(inputs), len(rows), stat))
        outputs = [np.concatenate(list(row.values())) for row in rows]
        logger.info(
            "Reservoir initialised on %d inputs: %d outputs of length %d, %d predictors blocked",
            len(inputs),
            len(outputs),
            self.output_length,
            stat.total_blocked_predictors,
        )
        return outputs, stat

    def _finalize(self, neuron_stats: List[NeuronStat], rows: List[Dict[OutSection, Array]]) -> ReservoirStat:
        if not rows:
            raise ValueError(
                f"No reservoir output was produced; provide more than {len(self._hidden)} inputs"
            )
        halves = self._halves
        blocked = {section.value: 0 for section in SECTION_PREDICTORS}
        for section, predictor in SECTION_PREDICTORS.items():
            values = np.stack([row[section] for row in rows])
            for neuron in self._hidden:
                column = values[:, neuron.index]
                column_stat = BasicStat(column)
                if column_stat.span <= BLOCKING_BORDER or column_stat.stddev <= BLOCKING_BORDER:
                    neuron.predictor_switches[predictor] = False
                    blocked[section.value] += halves
                    self.out_section_lengths[section] -= halves
            if blocked[section.value]:
                keep = np.array([neuron.predictor_switches[predictor] for neuron in self._hidden])
                mask = np.tile(keep, halves)
                for row, full in zip(rows, values):
                    row[section] = full[mask]
        return ReservoirStat(neuron_stats, blocked)


__all__ = ["OutSection", "SECTION_PREDICTORS", "Reservoir", "ReservoirInitProgress"]
