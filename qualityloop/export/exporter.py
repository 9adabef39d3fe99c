"""
Performance Data Export

Serializes raw and aggregated performance data as JSON, CSV,
Prometheus-style metrics text or a Markdown summary. Export never raises on
serialization or I/O problems; the failure is returned in the result.
"""

import csv
import gzip
import io
import json
import math
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from qualityloop.collection.data_points import AggregatedPerformanceData, RawPerformanceDataPoint
from qualityloop.device.profile import DeviceCapabilityProfile
from qualityloop.export.analysis import (
    PerformanceAnalysisReport,
    average,
    generate_detailed_analysis,
    generate_visualization_data,
    values_of,
)
from qualityloop.utils.config import ExportConfig
from qualityloop.utils.logging_config import get_logger
from qualityloop.utils.scheduling import perf_counter_ms
from qualityloop.utils.validation import (
    ValidationError,
    validate_compression_level,
    validate_export_format,
)

logger = get_logger(__name__)

EXPORT_VERSION = "1.0.0"
CSV_HEADERS = ("timestamp", "type", "value", "session_id", "collection_overhead", "metadata")
GZIP_LEVELS = {"low": 1, "high": 9}


@dataclass
class ExportOptions:
    """What to export and how. ``format`` is always explicit, never inferred."""
    format: str = "json"
    time_range: Optional[Tuple[float, float]] = None
    include_raw_data: bool = True
    include_aggregated: bool = True
    include_metadata: bool = True
    compression_level: str = "none"
    file_name: Optional[str] = None
    output_dir: Optional[str] = None

    def __post_init__(self) -> None:
        validate_export_format(self.format)
        validate_compression_level(self.compression_level)
        if self.time_range is not None:
            start, end = self.time_range
            if start > end:
                raise ValidationError(f"time_range start ({start}) is after end ({end})")

    @classmethod
    def from_config(cls, config: ExportConfig, **overrides: Any) -> "ExportOptions":
        values = {
            "format": config.default_format,
            "include_raw_data": config.include_raw_data,
            "include_aggregated": config.include_aggregated,
            "include_metadata": config.include_metadata,
            "compression_level": config.compression_level,
            "output_dir": config.output_dir,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class ExportResult:
    success: bool
    format: str
    file_name: str
    size: int
    data_points: int
    export_time: float
    download_url: Optional[str] = None
    error: Optional[str] = None
    content: Optional[bytes] = None


def _timestamp_slug() -> str:
    return datetime.now().strftime("%Y-%m-%dT%H-%M-%S")


def filter_raw(
    raw: Sequence[RawPerformanceDataPoint],
    time_range: Optional[Tuple[float, float]],
) -> List[RawPerformanceDataPoint]:
    if time_range is None:
        return list(raw)
    start, end = time_range
    return [p for p in raw if start <= p.timestamp <= end]


def filter_aggregated(
    aggregated: Sequence[AggregatedPerformanceData],
    time_range: Optional[Tuple[float, float]],
) -> List[AggregatedPerformanceData]:
    """Windows lying entirely inside the range."""
    if time_range is None:
        return list(aggregated)
    start, end = time_range
    return [a for a in aggregated if a.time_window.start >= start and a.time_window.end <= end]


def quick_analysis(
    raw: Sequence[RawPerformanceDataPoint],
    aggregated: Sequence[AggregatedPerformanceData],
) -> Dict[str, Any]:
    return {
        "average_fps": average(values_of(raw, "fps")),
        "average_memory": average(values_of(raw, "memory")),
        "sample_count": len(raw),
        "aggregated_windows": len(aggregated),
    }


class PerformanceDataExportManager:
    """Turns collected data into export artifacts and analysis reports."""

    def __init__(
        self,
        config: Optional[ExportConfig] = None,
        device_profile: Optional[DeviceCapabilityProfile] = None,
    ):
        self.config = config or ExportConfig()
        self.device_profile = device_profile

    def export_data(
        self,
        raw: Sequence[RawPerformanceDataPoint],
        aggregated: Sequence[AggregatedPerformanceData],
        options: Optional[ExportOptions] = None,
    ) -> ExportResult:
        """
        Serialize data in the requested format.

        Args:
            raw: Raw points to export
            aggregated: Aggregated windows to export
            options: Export options (default: from the export config)

        Returns:
            ExportResult; ``success`` is False with ``error`` set on failure
        """
        options = options or ExportOptions.from_config(self.config)
        started = perf_counter_ms()

        try:
            text, file_name = self._render(raw, aggregated, options)
            content = text.encode("utf-8")

            if options.compression_level != "none":
                content = gzip.compress(content, compresslevel=GZIP_LEVELS[options.compression_level])
                file_name += ".gz"

            download_url = None
            if options.output_dir:
                path = Path(options.output_dir) / file_name
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(content)
                download_url = path.resolve().as_uri()
                logger.info(f"Exported {options.format} report to {path}")

            return ExportResult(
                success=True,
                format=options.format,
                file_name=file_name,
                size=len(content),
                data_points=len(raw) + len(aggregated),
                export_time=perf_counter_ms() - started,
                download_url=download_url,
                content=content,
            )
        except (ValueError, TypeError, KeyError, OSError) as e:
            logger.error(f"Export as {options.format} failed: {e}")
            return ExportResult(
                success=False,
                format=options.format,
                file_name="",
                size=0,
                data_points=0,
                export_time=perf_counter_ms() - started,
                error=str(e),
            )

    def generate_detailed_analysis(
        self,
        raw: Sequence[RawPerformanceDataPoint],
        aggregated: Sequence[AggregatedPerformanceData],
    ) -> PerformanceAnalysisReport:
        return generate_detailed_analysis(raw, aggregated, self.device_profile)

    def generate_visualization_data(
        self,
        raw: Sequence[RawPerformanceDataPoint],
        aggregated: Sequence[AggregatedPerformanceData],
    ) -> Dict[str, Any]:
        return generate_visualization_data(raw, aggregated)

    def _render(
        self,
        raw: Sequence[RawPerformanceDataPoint],
        aggregated: Sequence[AggregatedPerformanceData],
        options: ExportOptions,
    ) -> Tuple[str, str]:
        raw = filter_raw(raw, options.time_range)
        aggregated = filter_aggregated(aggregated, options.time_range)

        if options.format == "json":
            text = self._export_json(raw, aggregated, options)
            default_name = f"performance-data-{_timestamp_slug()}.json"
        elif options.format == "csv":
            text = self._export_csv(raw)
            default_name = f"performance-data-{_timestamp_slug()}.csv"
        elif options.format == "metrics":
            text = self._export_metrics(aggregated)
            default_name = f"performance-metrics-{_timestamp_slug()}.txt"
        elif options.format == "summary":
            text = self._export_summary(raw, aggregated)
            default_name = f"performance-summary-{_timestamp_slug()}.md"
        else:
            raise ValueError(f"Unsupported export format: {options.format}")
        return text, options.file_name or default_name

    def _export_json(
        self,
        raw: List[RawPerformanceDataPoint],
        aggregated: List[AggregatedPerformanceData],
        options: ExportOptions,
    ) -> str:
        if options.time_range is not None:
            time_range = {"start": options.time_range[0], "end": options.time_range[1]}
        else:
            time_range = {"start": 0.0, "end": max((p.timestamp for p in raw), default=0.0)}

        document: Dict[str, Any] = {
            "metadata": {
                "export_time": time.time() * 1000,
                "format": "json",
                "version": EXPORT_VERSION,
                "time_range": time_range,
                "data_points": {"raw": len(raw), "aggregated": len(aggregated)},
            }
        }
        if options.include_raw_data:
            document["raw_data"] = [p.to_dict() for p in raw]
        if options.include_aggregated:
            document["aggregated_data"] = [a.to_dict() for a in aggregated]
        if options.include_metadata:
            document["analysis"] = quick_analysis(raw, aggregated)
        return json.dumps(document, indent=2)

    def _export_csv(self, raw: List[RawPerformanceDataPoint]) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for point in raw:
            writer.writerow([
                point.timestamp,
                point.type,
                point.value,
                point.session_id,
                point.collection_overhead,
                json.dumps(dict(point.metadata), sort_keys=True),
            ])
        return buffer.getvalue()

    def _export_metrics(self, aggregated: List[AggregatedPerformanceData]) -> str:
        lines = []
        for window in aggregated:
            start = math.floor(window.time_window.start / 1000)
            label = f'{{window="{start}"}}'
            metrics = window.metrics
            lines.extend([
                f"# Performance metrics for window {start}",
                f"performance_fps_avg{label} {metrics.fps.avg} {start}",
                f"performance_fps_min{label} {metrics.fps.min} {start}",
                f"performance_fps_max{label} {metrics.fps.max} {start}",
                f"performance_memory_avg{label} {metrics.memory.avg} {start}",
                f"performance_memory_peak{label} {metrics.memory.peak} {start}",
                f"performance_operations_total{label} {metrics.operations.total} {start}",
                f"performance_collection_overhead{label} {window.overhead.collection_time} {start}",
                "",
            ])
        return "\n".join(lines) + ("\n" if lines else "")

    def _export_summary(
        self,
        raw: List[RawPerformanceDataPoint],
        aggregated: List[AggregatedPerformanceData],
    ) -> str:
        report = self.generate_detailed_analysis(raw, aggregated)
        summary = report.summary
        trends = report.trends
        bottlenecks = report.bottlenecks

        if trends.fps_decline.detected:
            fps_trend = (
                f"FPS decline detected ({trends.fps_decline.severity} severity, "
                f"{trends.fps_decline.rate:.2f} fps lower in the second half)"
            )
        else:
            fps_trend = "Stable FPS performance"
        if trends.memory_growth.detected:
            memory_trend = (
                f"Memory growth detected ({trends.memory_growth.severity} severity, "
                f"{trends.memory_growth.rate:.2f} MB higher in the second half)"
            )
        else:
            memory_trend = "Stable memory usage"

        slowest = "\n".join(
            f"- **{op.name}**: {op.avg_duration:.2f}ms avg ({op.frequency} occurrences)"
            for op in bottlenecks.slowest_operations
        ) or "No operations recorded"
        drops = "\n".join(
            f"- t={drop.timestamp:.0f}ms: {drop.min_fps:.1f} fps for {drop.duration:.0f}ms"
            for drop in bottlenecks.fps_drops
        ) or "No significant FPS drops detected"
        recommendations = "\n\n".join(
            f"### {rec.priority.upper()} Priority - {rec.category}\n{rec.description}\n*Impact: {rec.impact}*"
            for rec in report.recommendations
        ) or "No recommendations; performance is within targets."
        capabilities = "\n".join(
            f"- {key}: {value}" for key, value in report.device_metrics.capabilities.items()
        ) or "- unknown"
        limitations = "\n".join(f"- {item}" for item in report.device_metrics.limitations) or "- none"

        return f"""# Performance Analysis Report

Generated: {datetime.now().isoformat(timespec='seconds')}

## Summary

- **Total Samples**: {summary.total_samples}
- **Time Range**: {round(summary.time_range['duration'] / 1000)}s
- **Aggregated Windows**: {len(aggregated)}
- **Average FPS**: {summary.average_performance['fps']:.1f}
- **Average Memory**: {summary.average_performance['memory']:.1f} MB
- **Performance Grade**: {summary.performance_grade}
- **Health Score**: {summary.health_score}/100

## Performance Trends

### FPS Performance
{fps_trend}

### Memory Usage
{memory_trend}

## Top Issues

### Slowest Operations
{slowest}

### FPS Drops
{drops}

## Recommendations

{recommendations}

## Device Information

**Detected Capabilities:**
{capabilities}

**Limitations:**
{limitations}
"""


__all__ = [
    'PerformanceDataExportManager',
    'ExportOptions',
    'ExportResult',
    'filter_raw',
    'filter_aggregated',
    'quick_analysis',
]
