"""Performance sampling, batching and windowed aggregation."""

from .data_points import (
    AggregatedPerformanceData,
    MetricType,
    RawPerformanceDataPoint,
    calculate_percentile,
)
from .aggregator import PerformanceAggregator
from .collector import CollectionStats, PerformanceDataCollector

__all__ = [
    "AggregatedPerformanceData",
    "MetricType",
    "RawPerformanceDataPoint",
    "calculate_percentile",
    "PerformanceAggregator",
    "CollectionStats",
    "PerformanceDataCollector",
]
