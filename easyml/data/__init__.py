"""Sample datasets, feature filters and time-series patterns."""

from .dataset import Sample, SampleDataset, apply_filters, reverse_filters
from .filters import BinFeatureFilter, FeatureFilter, FeatureUse, RealFeatureFilter
from .pattern import TimeSeriesPattern, VarSchema

__all__ = [
    "Sample",
    "SampleDataset",
    "apply_filters",
    "reverse_filters",
    "BinFeatureFilter",
    "FeatureFilter",
    "FeatureUse",
    "RealFeatureFilter",
    "TimeSeriesPattern",
    "VarSchema",
]
