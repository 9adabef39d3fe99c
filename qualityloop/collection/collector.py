"""
Performance Data Collector

Samples frame timing, process memory and GPU presence on a fixed cadence,
keeps a bounded raw buffer and hands full batches to the aggregator.
"""

import time
import uuid
from collections import deque
from concurrent.futures import Executor
from dataclasses import dataclass, asdict
from typing import Any, Callable, Deque, Dict, List, Optional

import psutil

from qualityloop.collection.aggregator import PerformanceAggregator, QualitySnapshotProvider
from qualityloop.collection.data_points import (
    AggregatedPerformanceData,
    MetricType,
    RawPerformanceDataPoint,
)
from qualityloop.utils.config import CollectionConfig
from qualityloop.utils.gpu_detection import get_gpu_detector
from qualityloop.utils.logging_config import get_logger
from qualityloop.utils.scheduling import Scheduler, perf_counter_ms

logger = get_logger(__name__)

MetricsListener = Callable[[float, float], None]

DEFAULT_FPS = 60.0
GPU_PRESENT_VALUE = 0.5
OPERATION_OVERHEAD_MS = 0.1
BYTES_PER_MB = 1024 * 1024


@dataclass
class CollectionStats:
    total_data_points: int = 0
    total_overhead: float = 0.0
    max_overhead: float = 0.0
    avg_overhead: float = 0.0
    is_collecting: bool = False
    cache_size: int = 0
    queue_size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def process_memory_mb() -> float:
    """Resident set size of this process in MB (0 when unavailable)."""
    try:
        return psutil.Process().memory_info().rss / BYTES_PER_MB
    except (psutil.Error, OSError):
        return 0.0


def new_session_id() -> str:
    return f"session-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class PerformanceDataCollector:
    """Low-overhead sampler feeding the aggregation pipeline."""

    def __init__(
        self,
        scheduler: Scheduler,
        config: Optional[CollectionConfig] = None,
        quality_snapshot: Optional[QualitySnapshotProvider] = None,
        metrics_listener: Optional[MetricsListener] = None,
        executor: Optional[Executor] = None,
        memory_probe: Callable[[], float] = process_memory_mb,
        gpu_present: Optional[bool] = None,
        session_id: Optional[str] = None,
    ):
        """
        Initialize collector.

        Args:
            scheduler: Loop the sampling ticks run on
            config: Sampling and aggregation settings
            quality_snapshot: Quality section provider passed to the aggregator
            metrics_listener: Receives ``(fps, memory_mb)`` after every tick
            executor: Optional worker for aggregation passes
            memory_probe: Returns current memory use in MB
            gpu_present: Skip the GPU probe and use this answer
            session_id: Identifier stamped on every point
        """
        self.config = config or CollectionConfig()
        self.scheduler = scheduler
        self.metrics_listener = metrics_listener
        self.memory_probe = memory_probe
        self.gpu_present = gpu_present
        self.session_id = session_id or new_session_id()

        self.aggregator = PerformanceAggregator(
            self.config, scheduler, quality_snapshot=quality_snapshot, executor=executor
        )

        self.raw_data: Deque[RawPerformanceDataPoint] = deque(maxlen=self.config.max_raw_points)
        self._pending: List[RawPerformanceDataPoint] = []
        self.is_collecting = False
        self._handle: Optional[int] = None
        self._last_tick: Optional[float] = None
        self._stats = CollectionStats()

    def start_collection(self) -> None:
        if self.is_collecting:
            return
        if not self.config.enabled:
            logger.info("Performance collection disabled by configuration")
            return

        if self.gpu_present is None:
            self.gpu_present = self._probe_gpu()

        self.is_collecting = True
        self._last_tick = self.scheduler.now()
        self._schedule_tick()
        logger.info(
            f"Started performance collection ({self.session_id}, "
            f"every {self.config.sampling_interval_ms:.2f}ms)"
        )

    def stop_collection(self) -> None:
        """Cancel the pending tick and aggregate whatever is still queued."""
        if not self.is_collecting:
            return
        self.is_collecting = False
        if self._handle is not None:
            self.scheduler.cancel(self._handle)
            self._handle = None

        self._queue_pending(len(self._pending))
        self.aggregator.flush()
        logger.info(f"Stopped performance collection: {self._stats.total_data_points} points")

    def collect_operation_data(
        self,
        operation_name: str,
        duration_ms: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[RawPerformanceDataPoint]:
        """
        Record one instrumented operation.

        Ignored while not collecting. With real-time processing the point
        is aggregated immediately instead of waiting for the next batch.
        """
        if not self.is_collecting:
            return None

        point = RawPerformanceDataPoint(
            timestamp=self.scheduler.now(),
            type=MetricType.OPERATION,
            value=float(duration_ms),
            session_id=self.session_id,
            metadata={"operation_name": operation_name, **(metadata or {})},
            collection_overhead=OPERATION_OVERHEAD_MS,
        )
        self.raw_data.append(point)
        self._record_overhead(1, OPERATION_OVERHEAD_MS)

        if self.config.realtime_processing:
            self.aggregator.enqueue([point])
            self.aggregator.process_queue()
        else:
            self._pending.append(point)
            self._maybe_queue_batch()
        return point

    def collect_sample(self) -> List[RawPerformanceDataPoint]:
        """Take one fps/memory/gpu sample."""
        started = perf_counter_ms()
        now = self.scheduler.now()
        elapsed = now - self._last_tick if self._last_tick is not None else 0.0
        self._last_tick = now

        fps = 1000.0 / elapsed if elapsed > 0 else DEFAULT_FPS
        memory_mb = float(self.memory_probe())
        gpu_value = GPU_PRESENT_VALUE if self.gpu_present else 0.0

        values = (
            (MetricType.FPS, fps),
            (MetricType.MEMORY, memory_mb),
            (MetricType.GPU, gpu_value),
        )
        overhead = perf_counter_ms() - started
        per_point = overhead / len(values)
        points = [
            RawPerformanceDataPoint(
                timestamp=now,
                type=metric_type,
                value=value,
                session_id=self.session_id,
                collection_overhead=per_point,
            )
            for metric_type, value in values
        ]

        self.raw_data.extend(points)
        self._pending.extend(points)
        self._record_overhead(len(points), overhead)
        self._maybe_queue_batch()

        if self.metrics_listener is not None:
            self.metrics_listener(fps, memory_mb)
        return points

    def get_collection_stats(self) -> CollectionStats:
        stats = CollectionStats(**asdict(self._stats))
        stats.is_collecting = self.is_collecting
        stats.cache_size = len(self.aggregator.cache)
        stats.queue_size = self.aggregator.queue_size + len(self._pending)
        return stats

    def get_raw_data_sample(self, limit: int = 100) -> List[RawPerformanceDataPoint]:
        """The most recent ``limit`` raw points, oldest first."""
        if limit <= 0:
            return []
        return list(self.raw_data)[-limit:]

    def get_raw_data(self) -> List[RawPerformanceDataPoint]:
        return list(self.raw_data)

    def get_aggregated_data(
        self,
        start: Optional[float] = None,
        end: Optional[float] = None,
    ) -> List[AggregatedPerformanceData]:
        return self.aggregator.get_aggregated_data(start, end)

    def clear_data(self) -> None:
        self.raw_data.clear()
        self._pending = []
        self.aggregator.clear()
        self._stats = CollectionStats()
        logger.info("Cleared collected performance data")

    def _schedule_tick(self) -> None:
        # Idle callback so sampling yields to other work; the timeout keeps
        # the cadence when the loop never goes idle
        self._handle = self.scheduler.call_when_idle(
            self._tick, timeout_ms=self.config.sampling_interval_ms
        )

    def _tick(self) -> None:
        self._handle = None
        if not self.is_collecting:
            return
        try:
            self.collect_sample()
        except Exception as e:
            logger.warning(f"Performance sample failed: {e}")
        if self.is_collecting:
            self._handle = self.scheduler.call_later(
                self.config.sampling_interval_ms, self._on_interval
            )

    def _on_interval(self) -> None:
        self._handle = None
        if self.is_collecting:
            self._schedule_tick()

    def _record_overhead(self, point_count: int, overhead: float) -> None:
        stats = self._stats
        stats.total_data_points += point_count
        stats.total_overhead += overhead
        stats.max_overhead = max(stats.max_overhead, overhead)
        stats.avg_overhead = stats.total_overhead / stats.total_data_points

    def _maybe_queue_batch(self) -> None:
        if len(self._pending) >= self.config.batch_size:
            self._queue_pending(self.config.batch_size)

    def _queue_pending(self, count: int) -> None:
        if count <= 0:
            return
        batch = self._pending[:count]
        self._pending = self._pending[count:]
        self.aggregator.enqueue(batch)
        self.aggregator.schedule_processing()

    def _probe_gpu(self) -> bool:
        try:
            return get_gpu_detector().has_accelerator()
        except (RuntimeError, AttributeError) as e:
            logger.warning(f"GPU probe failed, assuming none: {e}")
            return False


__all__ = [
    'PerformanceDataCollector',
    'CollectionStats',
    'process_memory_mb',
    'new_session_id',
]
