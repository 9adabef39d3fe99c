"""
Tests for the performance data collector
"""

import pytest

from qualityloop.collection.collector import PerformanceDataCollector, process_memory_mb
from qualityloop.collection.data_points import MetricType
from qualityloop.utils.config import CollectionConfig


def make_collector(scheduler, memory=lambda: 128.0, **config_fields):
    config_fields.setdefault("sampling_interval_ms", 20)
    listener_calls = []
    collector = PerformanceDataCollector(
        scheduler,
        CollectionConfig(**config_fields),
        metrics_listener=lambda fps, mem: listener_calls.append((fps, mem)),
        memory_probe=memory,
        gpu_present=True,
        session_id="session-test",
    )
    return collector, listener_calls


def test_sampling_cadence_and_fps(scheduler):
    collector, calls = make_collector(scheduler)
    collector.start_collection()
    scheduler.advance(100)

    # Ticks at 0, 20, 40, 60, 80 and 100, three points each
    assert collector.get_collection_stats().total_data_points == 18
    fps = [p.value for p in collector.get_raw_data() if p.type == MetricType.FPS]
    assert fps[0] == 60.0
    assert fps[1:] == [pytest.approx(50.0)] * 5
    assert len(calls) == 6
    assert calls[-1] == (pytest.approx(50.0), 128.0)


def test_gpu_point_reflects_accelerator(scheduler):
    collector, _ = make_collector(scheduler)
    points = collector.collect_sample()
    assert [p.type for p in points] == [MetricType.FPS, MetricType.MEMORY, MetricType.GPU]
    assert points[2].value == 0.5
    assert all(p.session_id == "session-test" for p in points)

    collector.gpu_present = False
    assert collector.collect_sample()[2].value == 0.0


def test_batches_flow_to_aggregator(scheduler):
    collector, _ = make_collector(scheduler, batch_size=6)
    collector.start_collection()
    scheduler.advance(20)

    # Two ticks make one full batch which is aggregated on the next idle turn
    stats = collector.get_collection_stats()
    assert stats.queue_size == 0
    assert stats.cache_size == 1
    assert collector.get_aggregated_data()[0].sample_count == 6


def test_stop_drains_partial_batch(scheduler):
    collector, _ = make_collector(scheduler, batch_size=100)
    collector.start_collection()
    scheduler.advance(40)
    assert collector.get_aggregated_data() == []

    collector.stop_collection()
    assert not collector.is_collecting
    assert scheduler.pending_count == 0
    assert collector.get_aggregated_data()[0].sample_count == 9

    count = collector.get_collection_stats().total_data_points
    scheduler.advance(200)
    assert collector.get_collection_stats().total_data_points == count


def test_operation_data_ignored_when_stopped(scheduler):
    collector, _ = make_collector(scheduler)
    assert collector.collect_operation_data("layout", 12.0) is None
    assert collector.get_raw_data() == []


def test_operation_data_metadata(scheduler):
    collector, _ = make_collector(scheduler)
    collector.start_collection()
    point = collector.collect_operation_data("layout", 12.0, {"nodes": 40})
    assert point.type == MetricType.OPERATION
    assert point.metadata == {"operation_name": "layout", "nodes": 40}
    assert point.collection_overhead == pytest.approx(0.1)


def test_realtime_processing_aggregates_immediately(scheduler):
    collector, _ = make_collector(scheduler, realtime_processing=True)
    collector.start_collection()
    collector.collect_operation_data("paint", 8.0)
    aggregated = collector.get_aggregated_data()
    assert len(aggregated) == 1
    assert aggregated[0].metrics.operations.total == 1


def test_probe_failure_does_not_stop_sampling(scheduler):
    readings = iter([100.0, RuntimeError("probe"), 110.0])

    def flaky_memory():
        value = next(readings)
        if isinstance(value, Exception):
            raise value
        return value

    collector, calls = make_collector(scheduler, memory=flaky_memory)
    collector.start_collection()
    scheduler.advance(40)

    assert collector.is_collecting
    assert [mem for _, mem in calls] == [100.0, 110.0]
    assert collector.get_collection_stats().total_data_points == 6


def test_raw_buffer_is_bounded(scheduler):
    collector, _ = make_collector(scheduler, max_raw_points=10)
    for _ in range(5):
        collector.collect_sample()
    assert len(collector.get_raw_data()) == 10
    assert len(collector.get_raw_data_sample(4)) == 4
    assert collector.get_raw_data_sample(0) == []
    assert collector.get_collection_stats().total_data_points == 15


def test_disabled_collection_never_starts(scheduler):
    collector, _ = make_collector(scheduler, enabled=False)
    collector.start_collection()
    assert not collector.is_collecting
    assert scheduler.pending_count == 0


def test_clear_data_resets_everything(scheduler):
    collector, _ = make_collector(scheduler, batch_size=3)
    collector.start_collection()
    scheduler.advance(60)
    collector.clear_data()

    stats = collector.get_collection_stats()
    assert stats.total_data_points == 0
    assert stats.cache_size == 0
    assert stats.queue_size == 0
    assert collector.get_raw_data() == []
    assert stats.is_collecting


def test_overhead_stats(scheduler):
    collector, _ = make_collector(scheduler)
    collector.collect_sample()
    stats = collector.get_collection_stats()
    assert stats.total_overhead >= 0
    assert stats.max_overhead >= stats.avg_overhead
    assert stats.to_dict()["total_data_points"] == 3


def test_process_memory_is_positive():
    assert process_memory_mb() > 0
