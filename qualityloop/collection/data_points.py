"""
Performance Data Records

Raw observations produced by the sampler and the per-window summaries the
aggregator reduces them into.
"""

import math
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Mapping, Sequence

from qualityloop.utils.validation import validate_choice


class MetricType:
    """Kinds of raw observations."""
    FPS = "fps"
    MEMORY = "memory"
    CANVAS = "canvas"
    GPU = "gpu"
    NETWORK = "network"
    OPERATION = "operation"

    ALL = (FPS, MEMORY, CANVAS, GPU, NETWORK, OPERATION)


@dataclass(frozen=True)
class RawPerformanceDataPoint:
    """One observation. ``collection_overhead`` is the cost of measuring it (ms)."""
    timestamp: float
    type: str
    value: float
    session_id: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    collection_overhead: float = 0.0

    def __post_init__(self) -> None:
        validate_choice(self.type, MetricType.ALL, "metric type")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "type": self.type,
            "value": self.value,
            "metadata": dict(self.metadata),
            "session_id": self.session_id,
            "collection_overhead": self.collection_overhead,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RawPerformanceDataPoint":
        return cls(
            timestamp=float(data["timestamp"]),
            type=data["type"],
            value=float(data["value"]),
            session_id=data.get("session_id", ""),
            metadata=dict(data.get("metadata", {})),
            collection_overhead=float(data.get("collection_overhead", 0.0)),
        )


@dataclass
class TimeWindow:
    start: float
    end: float
    duration: float


@dataclass
class FPSStats:
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    p95: float = 0.0


@dataclass
class MemoryStats:
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    peak: float = 0.0


@dataclass
class CanvasStats:
    render_time: float = 0.0
    transform_time: float = 0.0
    operation_count: int = 0


@dataclass
class GPUStats:
    utilization: float = 0.0
    throttling: bool = False
    degradations: int = 0


@dataclass
class NetworkStats:
    latency: float = 0.0
    requests: int = 0
    errors: int = 0


@dataclass
class OperationStats:
    total: int = 0
    failed: int = 0
    avg_duration: float = 0.0


@dataclass
class AggregatedMetrics:
    fps: FPSStats = field(default_factory=FPSStats)
    memory: MemoryStats = field(default_factory=MemoryStats)
    canvas: CanvasStats = field(default_factory=CanvasStats)
    gpu: GPUStats = field(default_factory=GPUStats)
    network: NetworkStats = field(default_factory=NetworkStats)
    operations: OperationStats = field(default_factory=OperationStats)


@dataclass
class QualitySection:
    level: str = "unknown"
    changes: int = 0
    degradation_events: int = 0
    optimization_events: int = 0


@dataclass
class OverheadStats:
    collection_time: float = 0.0
    processing_time: float = 0.0
    storage_size: int = 0
    impact_percentage: float = 0.0


@dataclass
class AggregatedPerformanceData:
    """Summary of one aggregation window."""
    window_key: str
    time_window: TimeWindow
    sample_count: int
    metrics: AggregatedMetrics = field(default_factory=AggregatedMetrics)
    quality: QualitySection = field(default_factory=QualitySection)
    overhead: OverheadStats = field(default_factory=OverheadStats)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AggregatedPerformanceData":
        metrics = data.get("metrics", {})
        return cls(
            window_key=data.get("window_key", ""),
            time_window=TimeWindow(**data["time_window"]),
            sample_count=int(data.get("sample_count", 0)),
            metrics=AggregatedMetrics(
                fps=FPSStats(**metrics.get("fps", {})),
                memory=MemoryStats(**metrics.get("memory", {})),
                canvas=CanvasStats(**metrics.get("canvas", {})),
                gpu=GPUStats(**metrics.get("gpu", {})),
                network=NetworkStats(**metrics.get("network", {})),
                operations=OperationStats(**metrics.get("operations", {})),
            ),
            quality=QualitySection(**data.get("quality", {})),
            overhead=OverheadStats(**data.get("overhead", {})),
        )


def calculate_percentile(values: Sequence[float], percentile: float) -> float:
    """
    Nearest-rank percentile.

    Sorts ascending and takes index ``ceil(p / 100 * n) - 1``, clamped to
    the valid range. Returns 0 for an empty sequence.
    """
    if not values:
        return 0.0
    ordered = sorted(values)
    index = math.ceil(percentile / 100 * len(ordered)) - 1
    index = min(len(ordered) - 1, max(0, index))
    return float(ordered[index])


__all__ = [
    'MetricType',
    'RawPerformanceDataPoint',
    'TimeWindow',
    'FPSStats',
    'MemoryStats',
    'CanvasStats',
    'GPUStats',
    'NetworkStats',
    'OperationStats',
    'AggregatedMetrics',
    'QualitySection',
    'OverheadStats',
    'AggregatedPerformanceData',
    'calculate_percentile',
]
