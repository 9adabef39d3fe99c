"""
Performance Aggregator

Groups raw points into fixed time windows and reduces each window to
summary statistics. Processing runs from an idle callback, never inside the
sampling tick, and at most one pass is in flight at a time.
"""

import json
import math
from collections import OrderedDict
from concurrent.futures import Executor
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from qualityloop.collection.data_points import (
    AggregatedMetrics,
    AggregatedPerformanceData,
    CanvasStats,
    FPSStats,
    GPUStats,
    MemoryStats,
    MetricType,
    NetworkStats,
    OperationStats,
    OverheadStats,
    QualitySection,
    RawPerformanceDataPoint,
    TimeWindow,
    calculate_percentile,
)
from qualityloop.utils.config import CollectionConfig
from qualityloop.utils.logging_config import get_logger
from qualityloop.utils.scheduling import Scheduler, perf_counter_ms

logger = get_logger(__name__)

QualitySnapshotProvider = Callable[[], Dict[str, Any]]

# GPU probe values above this average count as throttled
GPU_THROTTLE_UTILIZATION = 0.9


def window_start(timestamp: float, window_ms: float) -> float:
    return math.floor(timestamp / window_ms) * window_ms


def window_key(start: float, window_ms: float) -> str:
    return f"{start:.0f}-{start + window_ms:.0f}"


def group_by_window(
    points: Sequence[RawPerformanceDataPoint],
    window_ms: float,
) -> "OrderedDict[str, List[RawPerformanceDataPoint]]":
    """Bucket points by ``floor(timestamp / window) * window``, in first-seen order."""
    groups: "OrderedDict[str, List[RawPerformanceDataPoint]]" = OrderedDict()
    for point in points:
        key = window_key(window_start(point.timestamp, window_ms), window_ms)
        groups.setdefault(key, []).append(point)
    return groups


def _values(points: Sequence[RawPerformanceDataPoint], metric_type: str) -> List[float]:
    return [p.value for p in points if p.type == metric_type]


def _mean(values: Sequence[float]) -> float:
    return float(np.mean(values)) if len(values) else 0.0


def aggregate_window(
    key: str,
    points: Sequence[RawPerformanceDataPoint],
    quality: Optional[Dict[str, Any]] = None,
) -> AggregatedPerformanceData:
    """
    Reduce the points of one window.

    Pure function of its arguments so it can run on a worker thread.
    """
    started = perf_counter_ms()
    timestamps = [p.timestamp for p in points]
    start, end = min(timestamps), max(timestamps)

    fps = _values(points, MetricType.FPS)
    memory = _values(points, MetricType.MEMORY)
    gpu = _values(points, MetricType.GPU)
    canvas = [p for p in points if p.type == MetricType.CANVAS]
    network = [p for p in points if p.type == MetricType.NETWORK]
    operations = [p for p in points if p.type == MetricType.OPERATION]

    gpu_utilization = _mean(gpu)
    metrics = AggregatedMetrics(
        fps=FPSStats(
            min=float(np.min(fps)) if fps else 0.0,
            max=float(np.max(fps)) if fps else 0.0,
            avg=_mean(fps),
            p95=calculate_percentile(fps, 95),
        ),
        memory=MemoryStats(
            min=float(np.min(memory)) if memory else 0.0,
            max=float(np.max(memory)) if memory else 0.0,
            avg=_mean(memory),
            peak=float(np.max(memory)) if memory else 0.0,
        ),
        canvas=CanvasStats(
            render_time=_mean([p.value for p in canvas]),
            transform_time=_mean([float(p.metadata.get("transform_time", 0.0)) for p in canvas]),
            operation_count=len(canvas),
        ),
        gpu=GPUStats(
            utilization=gpu_utilization,
            throttling=gpu_utilization > GPU_THROTTLE_UTILIZATION,
            degradations=sum(1 for p in points if p.type == MetricType.GPU and p.metadata.get("degraded")),
        ),
        network=NetworkStats(
            latency=_mean([p.value for p in network]),
            requests=len(network),
            errors=sum(1 for p in network if p.metadata.get("error")),
        ),
        operations=OperationStats(
            total=len(operations),
            failed=sum(
                1 for p in operations
                if p.metadata.get("error") or p.metadata.get("success") is False
            ),
            avg_duration=_mean([p.value for p in operations]),
        ),
    )

    aggregated = AggregatedPerformanceData(
        window_key=key,
        time_window=TimeWindow(start=start, end=end, duration=end - start),
        sample_count=len(points),
        metrics=metrics,
        quality=QualitySection(**quality) if quality else QualitySection(),
    )

    collection_time = float(sum(p.collection_overhead for p in points))
    processing_time = perf_counter_ms() - started
    duration = aggregated.time_window.duration
    aggregated.overhead = OverheadStats(
        collection_time=collection_time,
        processing_time=processing_time,
        impact_percentage=(collection_time + processing_time) / duration * 100 if duration > 0 else 0.0,
    )
    aggregated.overhead.storage_size = len(json.dumps(aggregated.to_dict()))
    return aggregated


def aggregate_groups(
    groups: Dict[str, List[RawPerformanceDataPoint]],
    quality: Optional[Dict[str, Any]] = None,
) -> List[AggregatedPerformanceData]:
    return [aggregate_window(key, points, quality) for key, points in groups.items()]


class PerformanceAggregator:
    """Owns the processing queue and the aggregated cache."""

    def __init__(
        self,
        config: CollectionConfig,
        scheduler: Scheduler,
        quality_snapshot: Optional[QualitySnapshotProvider] = None,
        executor: Optional[Executor] = None,
    ):
        """
        Initialize aggregator.

        Args:
            config: Window size, cache ceiling and idle timeout
            scheduler: Loop the processing passes are scheduled on
            quality_snapshot: Returns the quality section for new windows
            executor: Worker used when ``config.use_worker`` is set
        """
        self.config = config
        self.scheduler = scheduler
        self.quality_snapshot = quality_snapshot
        self.executor = executor if config.use_worker else None

        self.processing_queue: List[RawPerformanceDataPoint] = []
        self.cache: "OrderedDict[str, AggregatedPerformanceData]" = OrderedDict()
        self._window_points: Dict[str, List[RawPerformanceDataPoint]] = {}
        self.is_processing = False
        self._scheduled: Optional[int] = None
        self.passes = 0

    @property
    def queue_size(self) -> int:
        return len(self.processing_queue)

    def enqueue(self, points: Sequence[RawPerformanceDataPoint]) -> None:
        self.processing_queue.extend(points)

    def schedule_processing(self) -> None:
        """Request a pass on the next idle turn; no-op if one is pending or running."""
        if self.is_processing or self._scheduled is not None:
            return
        self._scheduled = self.scheduler.call_when_idle(
            self._run_scheduled, timeout_ms=self.config.idle_timeout_ms
        )

    def process_queue(self, use_worker: bool = True) -> bool:
        """
        Aggregate everything currently queued.

        Returns:
            False if a pass is already in flight or nothing is queued
        """
        if self.is_processing or not self.processing_queue:
            return False

        self.is_processing = True
        batch = self.processing_queue
        self.processing_queue = []

        groups = group_by_window(batch, self.config.aggregation_window_ms)
        for key, points in groups.items():
            # Late points join the raw points already seen for their window
            merged = self._window_points.get(key, []) + points
            self._window_points[key] = merged
            groups[key] = merged

        quality = self.quality_snapshot() if self.quality_snapshot else None
        executor = self.executor if use_worker else None
        offloaded = self.scheduler.run_in_worker(
            aggregate_groups, (dict(groups), quality), self._on_aggregated, executor
        )
        logger.debug(
            f"Aggregating {len(batch)} points into {len(groups)} window(s)"
            f"{' on worker' if offloaded else ''}"
        )
        return True

    def flush(self) -> None:
        """Process whatever is queued synchronously on the loop."""
        self.cancel_scheduled()
        self.process_queue(use_worker=False)

    def cancel_scheduled(self) -> None:
        if self._scheduled is not None:
            self.scheduler.cancel(self._scheduled)
            self._scheduled = None

    def get_aggregated_data(
        self,
        start: Optional[float] = None,
        end: Optional[float] = None,
    ) -> List[AggregatedPerformanceData]:
        """Cached windows overlapping ``[start, end]``; all windows when unbounded."""
        results = []
        for aggregated in self.cache.values():
            window = aggregated.time_window
            if start is not None and window.end < start:
                continue
            if end is not None and window.start > end:
                continue
            results.append(aggregated)
        return results

    def clear(self) -> None:
        self.cancel_scheduled()
        self.processing_queue = []
        self.cache.clear()
        self._window_points.clear()

    def _run_scheduled(self) -> None:
        self._scheduled = None
        self.process_queue()

    def _on_aggregated(
        self,
        results: Optional[List[AggregatedPerformanceData]],
        error: Optional[BaseException],
    ) -> None:
        try:
            if error is not None:
                logger.error(f"Aggregation pass failed: {error}")
                return
            for aggregated in results:
                self.cache[aggregated.window_key] = aggregated
            self._manage_cache_size()
            self.passes += 1
        finally:
            self.is_processing = False

        if self.processing_queue:
            self.schedule_processing()

    def _manage_cache_size(self) -> None:
        while len(self.cache) > self.config.max_cache_size:
            key, _ = self.cache.popitem(last=False)
            self._window_points.pop(key, None)
            logger.debug(f"Evicted aggregated window {key}")


__all__ = [
    'PerformanceAggregator',
    'aggregate_window',
    'aggregate_groups',
    'group_by_window',
    'window_start',
    'window_key',
]
