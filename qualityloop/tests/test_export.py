"""
Tests for export and analysis
"""

import csv
import gzip
import io
import json
from pathlib import Path

import pytest

from conftest import build_profile
from qualityloop.collection.aggregator import aggregate_window
from qualityloop.collection.data_points import (
    AggregatedPerformanceData,
    MetricType,
    RawPerformanceDataPoint,
)
from qualityloop.export.analysis import (
    calculate_correlation,
    calculate_health_score,
    calculate_performance_grade,
    create_histogram,
    detect_fps_decline,
    detect_memory_growth,
    find_fps_drops,
    find_slowest_operations,
    generate_detailed_analysis,
    generate_recommendations,
    generate_visualization_data,
)
from qualityloop.export.exporter import ExportOptions, PerformanceDataExportManager
from qualityloop.utils.validation import ValidationError


def point(timestamp, type=MetricType.FPS, value=60.0, **metadata):
    return RawPerformanceDataPoint(timestamp, type, value, "session-test", metadata, 0.05)


def fps_series(values, step=100.0):
    return [point(i * step, MetricType.FPS, v) for i, v in enumerate(values)]


@pytest.fixture
def sample_data():
    raw = [
        point(5000, MetricType.FPS, 60),
        point(5100, MetricType.FPS, 30),
        point(5100, MetricType.MEMORY, 100),
    ]
    aggregated = [aggregate_window("5000-10000", raw, {"level": "high"})]
    return raw, aggregated


@pytest.fixture
def exporter():
    return PerformanceDataExportManager()


def test_json_export_document(exporter, sample_data):
    raw, aggregated = sample_data
    result = exporter.export_data(raw, aggregated, ExportOptions(format="json"))

    assert result.success
    assert result.data_points == 4
    assert result.file_name.endswith(".json")
    assert result.size == len(result.content)

    document = json.loads(result.content)
    assert document["metadata"]["version"] == "1.0.0"
    assert document["metadata"]["data_points"] == {"raw": 3, "aggregated": 1}
    assert len(document["raw_data"]) == 3
    assert document["aggregated_data"][0]["window_key"] == "5000-10000"
    assert document["analysis"]["average_fps"] == pytest.approx(45)
    assert document["analysis"]["average_memory"] == pytest.approx(100)

    window = AggregatedPerformanceData.from_dict(document["aggregated_data"][0])
    assert window.metrics.fps.avg == pytest.approx(45)
    assert window.metrics.memory.avg == pytest.approx(100)
    assert window.metrics.fps.min == aggregated[0].metrics.fps.min
    assert window.sample_count == aggregated[0].sample_count


def test_json_sections_can_be_excluded(exporter, sample_data):
    raw, aggregated = sample_data
    options = ExportOptions(include_raw_data=False, include_aggregated=False, include_metadata=False)
    document = json.loads(exporter.export_data(raw, aggregated, options).content)
    assert set(document) == {"metadata"}


def test_csv_quotes_every_field(exporter):
    raw = [point(1000, MetricType.OPERATION, 12.5, operation_name='render, "main"')]
    result = exporter.export_data(raw, [], ExportOptions(format="csv", file_name="ops.csv"))

    text = result.content.decode("utf-8")
    lines = text.splitlines()
    assert lines[0] == '"timestamp","type","value","session_id","collection_overhead","metadata"'
    assert lines[1].startswith('"1000') and lines[1].endswith('"')

    rows = list(csv.reader(io.StringIO(text)))
    assert rows[1][1] == "operation"
    assert json.loads(rows[1][5]) == {"operation_name": 'render, "main"'}
    assert result.file_name == "ops.csv"


def test_metrics_lines(exporter, sample_data):
    raw, aggregated = sample_data
    result = exporter.export_data(raw, aggregated, ExportOptions(format="metrics"))
    lines = result.content.decode("utf-8").splitlines()
    assert "# Performance metrics for window 5" in lines
    assert 'performance_fps_avg{window="5"} 45.0 5' in lines
    assert 'performance_fps_min{window="5"} 30.0 5' in lines
    assert 'performance_memory_peak{window="5"} 100.0 5' in lines


def test_summary_report(sample_data):
    raw, aggregated = sample_data
    exporter = PerformanceDataExportManager(device_profile=build_profile(memory_gb=2.0))
    text = exporter.export_data(raw, aggregated, ExportOptions(format="summary")).content.decode("utf-8")

    assert text.startswith("# Performance Analysis Report")
    assert "- **Total Samples**: 3" in text
    assert "- **Average FPS**: 45.0" in text
    assert "Stable FPS performance" in text
    assert "Limited system memory" in text
    assert "No operations recorded" in text


def test_gzip_compression(exporter, sample_data):
    raw, aggregated = sample_data
    result = exporter.export_data(raw, aggregated, ExportOptions(compression_level="high"))
    assert result.file_name.endswith(".json.gz")
    assert json.loads(gzip.decompress(result.content))["metadata"]["format"] == "json"


def test_output_dir_writes_file(exporter, sample_data, tmp_path):
    raw, aggregated = sample_data
    options = ExportOptions(format="csv", file_name="data.csv", output_dir=str(tmp_path / "reports"))
    result = exporter.export_data(raw, aggregated, options)

    written = tmp_path / "reports" / "data.csv"
    assert written.read_bytes() == result.content
    assert result.download_url == written.resolve().as_uri()


def test_unsupported_format_returns_failure(exporter, sample_data):
    raw, aggregated = sample_data
    options = ExportOptions()
    options.format = "xml"
    result = exporter.export_data(raw, aggregated, options)
    assert not result.success
    assert "Unsupported export format" in result.error
    assert result.size == 0


def test_write_failure_returns_failure(exporter, sample_data, tmp_path):
    raw, aggregated = sample_data
    blocker = tmp_path / "file"
    blocker.write_text("")
    result = exporter.export_data(raw, aggregated, ExportOptions(output_dir=str(blocker / "sub")))
    assert not result.success
    assert result.error


def test_options_are_validated():
    with pytest.raises(ValidationError):
        ExportOptions(format="xml")
    with pytest.raises(ValidationError):
        ExportOptions(compression_level="max")
    with pytest.raises(ValidationError):
        ExportOptions(time_range=(10, 5))


def test_time_range_filters(exporter):
    raw = [point(1000), point(2000), point(3000)]
    aggregated = [aggregate_window("0-5000", raw)]
    result = exporter.export_data(raw, aggregated, ExportOptions(time_range=(1500, 3000)))
    document = json.loads(result.content)
    assert [p["timestamp"] for p in document["raw_data"]] == [2000, 3000]
    # The window starts at 1000, outside the range
    assert document["aggregated_data"] == []
    assert document["metadata"]["time_range"] == {"start": 1500, "end": 3000}


def test_fps_drops():
    drops = find_fps_drops(fps_series([60, 20, 25, 50, 60]))
    assert len(drops) == 1
    assert (drops[0].timestamp, drops[0].min_fps, drops[0].duration) == (100, 20, 200)

    open_drop = find_fps_drops(fps_series([60, 20, 25]))
    assert open_drop[0].duration == 0

    assert find_fps_drops(fps_series([60, 20])) == []


def test_trends():
    decline = detect_fps_decline([60] * 5 + [40] * 5)
    assert decline.detected and decline.severity == "high"
    assert decline.rate == pytest.approx(20)
    assert not detect_fps_decline([60] * 9).detected

    growth = detect_memory_growth([50] * 5 + [80] * 5)
    assert growth.detected and growth.severity == "medium"
    assert not detect_memory_growth([50] * 10).detected


@pytest.mark.parametrize("fps, memory, grade", [
    (60, 40, "A"),
    (55, 100, "B"),
    (50, 80, "C"),
    (30, 100, "D"),
    (20, 300, "F"),
])
def test_performance_grade(fps, memory, grade):
    assert calculate_performance_grade(fps, memory) == grade


def test_health_score():
    assert calculate_health_score(60, 50, False, False) == 100
    assert calculate_health_score(50, 70, True, False) == 50
    assert calculate_health_score(0, 1000, True, True) == 0
    # 98.5 rounds up
    assert calculate_health_score(59.25, 50, False, False) == 99


def test_recommendations_are_deterministic():
    decline = detect_fps_decline([60] * 5 + [40] * 5)
    growth = detect_memory_growth([50] * 10)
    first = generate_recommendations(25, 150, decline, growth)
    second = generate_recommendations(25, 150, decline, growth)
    assert first == second
    assert [(r.priority, r.category) for r in first] == [
        ("high", "performance"),
        ("high", "memory"),
        ("high", "performance"),
    ]


def test_slowest_operations():
    operations = [
        point(0, MetricType.OPERATION, 10, operation_name="layout"),
        point(1, MetricType.OPERATION, 30, operation_name="paint"),
        point(2, MetricType.OPERATION, 50, operation_name="paint"),
        point(3, MetricType.OPERATION, 5),
    ]
    ranked = find_slowest_operations(operations)
    assert [(op.name, op.avg_duration, op.frequency) for op in ranked] == [
        ("paint", 40, 2),
        ("layout", 10, 1),
        ("unknown", 5, 1),
    ]


def test_histogram_buckets_are_half_open():
    histogram = create_histogram([10, 30, 59.9, 60, 200], (0, 30, 45, 60, 90, 120))
    assert [bucket["count"] for bucket in histogram] == [1, 1, 1, 1, 0]
    assert histogram[0]["range"] == "0-30"


def test_correlation():
    assert calculate_correlation([1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)
    assert calculate_correlation([1, 2, 3], [3, 2, 1]) == pytest.approx(-1.0)
    assert calculate_correlation([1, 1, 1], [1, 2, 3]) == 0
    assert calculate_correlation([1, 2], [1, 2, 3]) == 0
    assert calculate_correlation([], []) == 0


def test_detailed_analysis_and_visualization(sample_data):
    raw, aggregated = sample_data
    report = generate_detailed_analysis(raw, aggregated)
    assert report.summary.total_samples == 3
    assert report.summary.time_range["duration"] == 100
    assert report.device_metrics.limitations == ["Device profile not available"]
    assert report.device_metrics.optimal_settings["quality_level"] == "low"
    assert report.to_dict()["summary"]["performance_grade"] == "C"

    visualization = generate_visualization_data(raw, aggregated)
    assert visualization["timeline"]["timestamps"] == [5000, 5100]
    assert set(visualization["distributions"]) == {
        "fps_histogram", "memory_histogram", "operation_duration_histogram",
    }
    assert visualization["correlations"]["quality_performance"] == 0
    assert visualization["heatmaps"]["operation_frequency"] == []


def test_exported_file_name_defaults(exporter, sample_data):
    raw, aggregated = sample_data
    result = exporter.export_data(raw, aggregated, ExportOptions(format="metrics"))
    assert Path(result.file_name).name.startswith("performance-metrics-")
    assert result.file_name.endswith(".txt")
