import numpy as np
import pytest

from easyml.core.stats import BasicStat
from easyml.core.types import TaskType
from easyml.data.dataset import SampleDataset, apply_filters, reverse_filters
from easyml.data.filters import BinFeatureFilter, FeatureUse, RealFeatureFilter
from easyml.data.pattern import TimeSeriesPattern, VarSchema


def test_basic_stat_merge_matches_single_pass():
    values = np.array([1.0, -2.0, 0.0, 4.5, 3.0])
    whole = BasicStat(values)
    left = BasicStat(values[:2])
    right = BasicStat(values[2:])
    left.merge(right)
    assert left.count == whole.count == 5
    assert left.nonzero_count == 4
    assert left.mean == pytest.approx(whole.mean)
    assert left.stddev == pytest.approx(np.std(values))
    assert left.span == pytest.approx(6.5)
    assert BasicStat().span == 0.0


def test_real_filter_maps_range_to_unit_interval():
    filt = RealFeatureFilter(FeatureUse.INPUT)
    filt.update([0.0, 5.0, 10.0])
    np.testing.assert_allclose(filt.apply(np.array([0.0, 5.0, 10.0])), [-1.0, 0.0, 1.0])
    np.testing.assert_allclose(filt.apply(np.array([0.0, 5.0, 10.0]), centered=False), [0.0, 0.5, 1.0])
    np.testing.assert_allclose(filt.reverse(np.array([-1.0, 0.0, 1.0])), [0.0, 5.0, 10.0])


def test_constant_real_feature():
    filt = RealFeatureFilter(FeatureUse.INPUT)
    filt.update([3.0, 3.0])
    np.testing.assert_allclose(filt.apply(np.array([3.0, 7.0])), [1.0, 1.0])
    np.testing.assert_allclose(filt.reverse(np.array([0.2])), [3.0])


def test_tiny_spread_on_large_values_stays_finite():
    values = np.array([1e9, 1e9 + 1e-3, 1e9, 1e9 + 1e-3])
    filt = RealFeatureFilter(FeatureUse.INPUT)
    filt.update(values)
    assert filt.stat.span > 0.0
    applied = filt.apply(values)
    assert np.all(np.isfinite(applied))
    assert np.all(np.abs(applied) <= 1.0 + 1e-9)
    restored = filt.reverse(applied)
    assert np.all(np.isfinite(restored))
    np.testing.assert_allclose(restored, values, rtol=0.0, atol=1e-2)


def test_filters_reject_invalid_values():
    with pytest.raises(ValueError):
        RealFeatureFilter().update([1.0, np.nan])
    with pytest.raises(ValueError):
        BinFeatureFilter().update([0.0, 2.0])


def test_binary_filter_by_use():
    inputs = BinFeatureFilter(FeatureUse.INPUT)
    inputs.update([0.0, 1.0])
    np.testing.assert_allclose(inputs.apply(np.array([0.0, 1.0])), [-1.0, 1.0])
    np.testing.assert_allclose(inputs.reverse(np.array([-1.0, 1.0])), [0.0, 1.0])
    outputs = BinFeatureFilter(FeatureUse.OUTPUT)
    outputs.update([0.0, 1.0])
    np.testing.assert_allclose(outputs.apply(np.array([0.0, 1.0])), [0.0, 1.0])


def test_dataset_consistency_checks():
    dataset = SampleDataset([([1.0, 2.0], [0.0])])
    with pytest.raises(ValueError):
        dataset.add([1.0], [0.0])
    with pytest.raises(ValueError):
        dataset.add([1.0, 2.0], [0.0, 1.0])
    with pytest.raises(ValueError):
        SampleDataset.from_arrays(np.zeros((3, 2)), np.zeros((2, 1)))
    with pytest.raises(ValueError):
        SampleDataset().standardized(TaskType.REGRESSION)


def test_standardized_dataset_round_trips_outputs():
    rng = np.random.default_rng(0)
    inputs = rng.uniform(-3.0, 3.0, size=(20, 2))
    outputs = inputs.sum(axis=1, keepdims=True) * 10.0
    dataset = SampleDataset.from_arrays(inputs, outputs)
    std, input_filters, output_filters = dataset.standardized(TaskType.REGRESSION)
    assert np.all(np.abs(std.input_matrix()) <= 1.0 + 1e-12)
    np.testing.assert_allclose(reverse_filters(output_filters, std.output_matrix()), outputs)
    np.testing.assert_allclose(apply_filters(input_filters, inputs), std.input_matrix())


def test_binary_task_uses_binary_output_filters():
    dataset = SampleDataset.from_arrays(np.array([[0.1], [0.9]]), np.array([[0.0], [1.0]]))
    _, _, output_filters = dataset.feature_filters(TaskType.BINARY)
    assert isinstance(output_filters[0], BinFeatureFilter)


def test_dataset_save_and_load(tmp_path):
    dataset = SampleDataset.from_arrays(np.arange(6.0).reshape(3, 2), np.array([1.0, 0.0, 1.0]))
    loaded = SampleDataset.load(dataset.save(tmp_path / "data.npz"))
    assert len(loaded) == 3
    np.testing.assert_array_equal(loaded.input_matrix(), dataset.input_matrix())
    np.testing.assert_array_equal(loaded[2].output, [1.0])


def test_pattern_schemas():
    flat = [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
    grouped = TimeSeriesPattern.from_flat(flat, 2, VarSchema.GROUPPED)
    np.testing.assert_array_equal(grouped.data, [[1.0, 3.0, 5.0], [2.0, 4.0, 6.0]])
    assert grouped.length == 3
    np.testing.assert_array_equal(grouped.data_at(1), [3.0, 4.0])
    sequence = TimeSeriesPattern.from_flat(flat, 2, VarSchema.VAR_SEQUENCE)
    np.testing.assert_array_equal(sequence.data, [[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
    np.testing.assert_array_equal(sequence.flatten(VarSchema.VAR_SEQUENCE), flat)
    with pytest.raises(ValueError):
        TimeSeriesPattern.from_flat(flat, 4)
    with pytest.raises(IndexError):
        grouped.data_at(3)


def test_pattern_standardize_uses_filters():
    pattern = TimeSeriesPattern.from_flat([0.0, 10.0, 5.0, 20.0], 2)
    filters = [RealFeatureFilter(), RealFeatureFilter()]
    filters[0].update([0.0, 5.0])
    filters[1].update([10.0, 20.0])
    pattern.standardize(filters)
    np.testing.assert_allclose(pattern.data, [[-1.0, 1.0], [-1.0, 1.0]])
