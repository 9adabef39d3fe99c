"""
Performance Analysis

Deterministic analysis of collected data: averages, trends, bottlenecks,
grade, health score, recommendations and chart-ready visualization data.
Identical input always produces identical output.
"""

import math
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from qualityloop.collection.data_points import (
    AggregatedPerformanceData,
    MetricType,
    RawPerformanceDataPoint,
)
from qualityloop.device.profile import DeviceCapabilityProfile
from qualityloop.quality.levels import QualityLevel

MIN_TREND_SAMPLES = 10
FPS_DECLINE_THRESHOLD = 1.0
MEMORY_GROWTH_THRESHOLD = 5.0
DROP_FPS = 30.0
RECOVERED_FPS = 45.0
SLOWEST_OPERATION_LIMIT = 10

FPS_BUCKETS = (0, 30, 45, 60, 90, 120)
MEMORY_BUCKETS = (0, 50, 100, 200, 500, 1000)
OPERATION_BUCKETS = (0, 5, 10, 20, 50, 100)


@dataclass
class TrendResult:
    detected: bool = False
    severity: str = "low"
    rate: float = 0.0


@dataclass
class DegradationTrend:
    events: int = 0
    severity: str = "low"


@dataclass
class SlowOperation:
    name: str
    avg_duration: float
    frequency: int


@dataclass
class FPSDrop:
    timestamp: float
    min_fps: float
    duration: float


@dataclass
class Recommendation:
    priority: str
    category: str
    description: str
    impact: str


@dataclass
class AnalysisSummary:
    total_samples: int
    time_range: Dict[str, float]
    average_performance: Dict[str, float]
    performance_grade: str
    health_score: int


@dataclass
class AnalysisTrends:
    fps_decline: TrendResult
    memory_growth: TrendResult
    performance_degradation: DegradationTrend


@dataclass
class Bottlenecks:
    slowest_operations: List[SlowOperation] = field(default_factory=list)
    memory_leaks: List[Dict[str, Any]] = field(default_factory=list)
    fps_drops: List[FPSDrop] = field(default_factory=list)


@dataclass
class DeviceMetrics:
    capabilities: Dict[str, Any] = field(default_factory=dict)
    limitations: List[str] = field(default_factory=list)
    optimal_settings: Dict[str, str] = field(default_factory=dict)


@dataclass
class PerformanceAnalysisReport:
    summary: AnalysisSummary
    trends: AnalysisTrends
    bottlenecks: Bottlenecks
    recommendations: List[Recommendation]
    device_metrics: DeviceMetrics

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def values_of(raw: Sequence[RawPerformanceDataPoint], metric_type: str) -> List[float]:
    return [p.value for p in raw if p.type == metric_type]


def average(values: Sequence[float]) -> float:
    return float(np.mean(values)) if len(values) else 0.0


def _half_split_delta(values: Sequence[float]) -> float:
    """Second-half average minus first-half average, split at ``floor(n/2)``."""
    half = len(values) // 2
    return average(values[half:]) - average(values[:half])


def detect_fps_decline(fps: Sequence[float]) -> TrendResult:
    if len(fps) < MIN_TREND_SAMPLES:
        return TrendResult()
    decline = -_half_split_delta(fps)
    return TrendResult(
        detected=decline > FPS_DECLINE_THRESHOLD,
        severity="high" if decline > 10 else "medium" if decline > 5 else "low",
        rate=decline,
    )


def detect_memory_growth(memory: Sequence[float]) -> TrendResult:
    if len(memory) < MIN_TREND_SAMPLES:
        return TrendResult()
    growth = _half_split_delta(memory)
    return TrendResult(
        detected=growth > MEMORY_GROWTH_THRESHOLD,
        severity="high" if growth > 50 else "medium" if growth > 20 else "low",
        rate=growth,
    )


def operation_name(point: RawPerformanceDataPoint) -> str:
    return str(point.metadata.get("operation_name", "unknown"))


def _group_operations(operations: Sequence[RawPerformanceDataPoint]) -> Dict[str, List[float]]:
    grouped: Dict[str, List[float]] = {}
    for point in operations:
        grouped.setdefault(operation_name(point), []).append(point.value)
    return grouped


def find_slowest_operations(operations: Sequence[RawPerformanceDataPoint]) -> List[SlowOperation]:
    """Operations ranked by average duration, slowest first (at most 10)."""
    ranked = [
        SlowOperation(name=name, avg_duration=average(durations), frequency=len(durations))
        for name, durations in _group_operations(operations).items()
    ]
    ranked.sort(key=lambda op: -op.avg_duration)
    return ranked[:SLOWEST_OPERATION_LIMIT]


def find_fps_drops(raw: Sequence[RawPerformanceDataPoint]) -> List[FPSDrop]:
    """
    Contiguous low-fps intervals.

    A drop starts below 30 fps and extends while fps stays below 45. Its
    duration runs to the first recovered sample; a drop still open at the
    end of the data has duration 0. The last sample never starts a drop.
    """
    fps_points = [p for p in raw if p.type == MetricType.FPS]
    drops: List[FPSDrop] = []
    i = 0
    while i < len(fps_points) - 1:
        if fps_points[i].value < DROP_FPS:
            start = fps_points[i].timestamp
            min_fps = fps_points[i].value
            j = i
            while j < len(fps_points) and fps_points[j].value < RECOVERED_FPS:
                min_fps = min(min_fps, fps_points[j].value)
                j += 1
            duration = fps_points[j].timestamp - start if j < len(fps_points) else 0.0
            drops.append(FPSDrop(timestamp=start, min_fps=min_fps, duration=duration))
            i = j
        i += 1
    return drops


def generate_recommendations(
    avg_fps: float,
    avg_memory: float,
    fps_decline: TrendResult,
    memory_growth: TrendResult,
) -> List[Recommendation]:
    recommendations = []
    if avg_fps < 30:
        recommendations.append(Recommendation(
            priority="high",
            category="performance",
            description="Low average FPS detected. Consider reducing animation complexity "
                        "or implementing quality degradation.",
            impact="high",
        ))
    if avg_memory > 100:
        recommendations.append(Recommendation(
            priority="high",
            category="memory",
            description="High memory usage detected. Implement memory cleanup and object pooling.",
            impact="high",
        ))
    if fps_decline.detected:
        level = "high" if fps_decline.severity == "high" else "medium"
        recommendations.append(Recommendation(
            priority=level,
            category="performance",
            description="FPS decline trend detected. Monitor for performance regressions and memory leaks.",
            impact=level,
        ))
    if memory_growth.detected:
        level = "high" if memory_growth.severity == "high" else "medium"
        recommendations.append(Recommendation(
            priority=level,
            category="memory",
            description="Memory growth trend detected. Check for memory leaks and reduce allocation churn.",
            impact=level,
        ))
    return recommendations


def calculate_performance_grade(avg_fps: float, avg_memory: float) -> str:
    fps_score = 40 if avg_fps >= 55 else 30 if avg_fps >= 45 else 20 if avg_fps >= 30 else 10
    memory_score = 30 if avg_memory <= 50 else 20 if avg_memory <= 100 else 10 if avg_memory <= 200 else 5
    total = fps_score + memory_score
    if total >= 65:
        return "A"
    if total >= 55:
        return "B"
    if total >= 45:
        return "C"
    if total >= 35:
        return "D"
    return "F"


def calculate_health_score(
    avg_fps: float,
    avg_memory: float,
    has_fps_decline: bool,
    has_memory_growth: bool,
) -> int:
    """0-100; proportional penalties below 60 fps and above 50 MB, flat ones for bad trends."""
    score = 100.0
    if avg_fps < 60:
        score -= (60 - avg_fps) * 2
    if avg_memory > 50:
        score -= (avg_memory - 50) * 0.5
    if has_fps_decline:
        score -= 20
    if has_memory_growth:
        score -= 15
    # Halves round up
    return max(0, math.floor(score + 0.5))


def generate_optimal_settings(avg_fps: float, avg_memory: float) -> Dict[str, str]:
    return {
        "quality_level": "high" if avg_fps > 55 else "medium" if avg_fps > 45 else "low",
        "animation_complexity": "full" if avg_fps > 55 else "reduced" if avg_fps > 45 else "minimal",
        "memory_management": "aggressive" if avg_memory > 100 else "normal" if avg_memory > 50 else "relaxed",
    }


def describe_device(
    profile: Optional[DeviceCapabilityProfile],
    memory_samples: Sequence[float],
) -> DeviceMetrics:
    """Capabilities and limitations from the device profile, if one was captured."""
    limitations = []
    if not any(memory_samples):
        limitations.append("Memory monitoring not available")
    if profile is None:
        limitations.append("Device profile not available")
        return DeviceMetrics(capabilities={}, limitations=limitations)

    capabilities = {
        "device_class": profile.device_class,
        "hardware_acceleration": profile.supports_gpu_compute,
        "gpu_capability": profile.gpu_capability,
        "memory_gb": profile.memory_gb,
        "cpu_cores": profile.cpu_cores,
        "pixel_density": profile.pixel_density,
        "screen_size": f"{profile.screen_width}x{profile.screen_height}",
        "refresh_rate": profile.refresh_rate,
    }
    if not profile.supports_gpu_compute:
        limitations.append("No GPU acceleration detected")
    if profile.memory_gb < 4:
        limitations.append("Limited system memory")
    if profile.screen_width < 768:
        limitations.append("Small display may limit performance")
    if profile.is_low_power_mode:
        limitations.append("Power saving mode active")
    return DeviceMetrics(capabilities=capabilities, limitations=limitations)


def generate_detailed_analysis(
    raw: Sequence[RawPerformanceDataPoint],
    aggregated: Sequence[AggregatedPerformanceData],
    profile: Optional[DeviceCapabilityProfile] = None,
) -> PerformanceAnalysisReport:
    """Full analysis report over raw points (aggregates are used for the window count only)."""
    fps = values_of(raw, MetricType.FPS)
    memory = values_of(raw, MetricType.MEMORY)
    operations = [p for p in raw if p.type == MetricType.OPERATION]

    avg_fps = average(fps)
    avg_memory = average(memory)
    fps_decline = detect_fps_decline(fps)
    memory_growth = detect_memory_growth(memory)
    fps_drops = find_fps_drops(raw)

    timestamps = [p.timestamp for p in raw]
    start = min(timestamps) if timestamps else 0.0
    end = max(timestamps) if timestamps else 0.0

    drop_count = len(fps_drops)
    device_metrics = describe_device(profile, memory)
    device_metrics.optimal_settings = generate_optimal_settings(avg_fps, avg_memory)

    return PerformanceAnalysisReport(
        summary=AnalysisSummary(
            total_samples=len(raw),
            time_range={"start": start, "end": end, "duration": end - start},
            average_performance={
                "fps": avg_fps,
                "memory": avg_memory,
                "operations": float(len(operations)),
                "aggregated_windows": float(len(aggregated)),
            },
            performance_grade=calculate_performance_grade(avg_fps, avg_memory),
            health_score=calculate_health_score(
                avg_fps, avg_memory, fps_decline.detected, memory_growth.detected
            ),
        ),
        trends=AnalysisTrends(
            fps_decline=fps_decline,
            memory_growth=memory_growth,
            performance_degradation=DegradationTrend(
                events=drop_count,
                severity="high" if drop_count > 5 else "medium" if drop_count > 2 else "low",
            ),
        ),
        bottlenecks=Bottlenecks(
            slowest_operations=find_slowest_operations(operations),
            fps_drops=fps_drops,
        ),
        recommendations=generate_recommendations(avg_fps, avg_memory, fps_decline, memory_growth),
        device_metrics=device_metrics,
    )


def create_histogram(values: Sequence[float], buckets: Sequence[float]) -> List[Dict[str, Any]]:
    """Counts per ``[lo, hi)`` bucket; values outside every bucket are dropped."""
    data = np.asarray(values, dtype=float)
    return [
        {"range": f"{lo}-{hi}", "count": int(np.count_nonzero((data >= lo) & (data < hi)))}
        for lo, hi in zip(buckets[:-1], buckets[1:])
    ]


def calculate_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson correlation; 0 for mismatched, empty or constant series."""
    if len(x) != len(y) or len(x) < 2:
        return 0.0
    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    if np.std(xs) == 0 or np.std(ys) == 0:
        return 0.0
    return float(np.corrcoef(xs, ys)[0, 1])


def _quality_rank(level: str) -> Optional[int]:
    try:
        return QualityLevel(level).rank
    except ValueError:
        return None


def generate_visualization_data(
    raw: Sequence[RawPerformanceDataPoint],
    aggregated: Sequence[AggregatedPerformanceData],
) -> Dict[str, Any]:
    """Timeline, histograms, correlations and per-operation frequency."""
    fps = values_of(raw, MetricType.FPS)
    memory = values_of(raw, MetricType.MEMORY)
    operations = [p for p in raw if p.type == MetricType.OPERATION]
    durations = [p.value for p in operations]

    ranked_windows = [
        (rank, window.metrics.fps.avg)
        for window in aggregated
        for rank in (_quality_rank(window.quality.level),)
        if rank is not None
    ]
    operation_fps = [
        (window.metrics.operations.avg_duration, window.metrics.fps.avg)
        for window in aggregated
        if window.metrics.operations.total
    ]

    return {
        "timeline": {
            "timestamps": [p.timestamp for p in raw if p.type == MetricType.FPS],
            "fps": fps,
            "memory": memory,
            "operations": durations,
        },
        "distributions": {
            "fps_histogram": create_histogram(fps, FPS_BUCKETS),
            "memory_histogram": create_histogram(memory, MEMORY_BUCKETS),
            "operation_duration_histogram": create_histogram(durations, OPERATION_BUCKETS),
        },
        "correlations": {
            "fps_memory": calculate_correlation(fps, memory),
            "operation_performance": calculate_correlation(
                [d for d, _ in operation_fps], [f for _, f in operation_fps]
            ),
            "quality_performance": calculate_correlation(
                [r for r, _ in ranked_windows], [f for _, f in ranked_windows]
            ),
        },
        "heatmaps": {
            "operation_frequency": [
                {"operation": name, "frequency": len(values), "avg_duration": average(values)}
                for name, values in sorted(_group_operations(operations).items())
            ],
        },
    }


__all__ = [
    'PerformanceAnalysisReport',
    'TrendResult',
    'FPSDrop',
    'SlowOperation',
    'Recommendation',
    'generate_detailed_analysis',
    'generate_visualization_data',
    'detect_fps_decline',
    'detect_memory_growth',
    'find_fps_drops',
    'find_slowest_operations',
    'calculate_performance_grade',
    'calculate_health_score',
    'create_histogram',
    'calculate_correlation',
]
