"""
Tests for the adaptive quality manager
"""

import asyncio

import pytest

from conftest import StaticProfiler, build_profile
from qualityloop.device.profile import DeviceClass
from qualityloop.quality.levels import QualityLevel
from qualityloop.quality.manager import AdaptiveQualityManager
from qualityloop.quality.strategies import BATTERY_SAVER
from qualityloop.utils.config import QualityConfig
from qualityloop.utils.scheduling import ManualScheduler
from qualityloop.utils.validation import ValidationError

STABILITY_MS = 5000.0


def make_manager(device_class=DeviceClass.MID_RANGE, scheduler=None, **profile_fields):
    scheduler = scheduler or ManualScheduler()
    profile = build_profile(device_class=device_class, **profile_fields)
    manager = AdaptiveQualityManager(scheduler, profiler=StaticProfiler(profile))
    asyncio.run(manager.initialize())
    return manager, scheduler


def feed(manager, count, fps, memory_mb, scheduler=None, step_ms=0.0):
    for _ in range(count):
        manager.update_performance_metrics(fps, memory_mb)
        if scheduler is not None and step_ms:
            scheduler.advance(step_ms)


@pytest.mark.parametrize("device_class, level", [
    (DeviceClass.LOW_END, QualityLevel.LOW),
    (DeviceClass.MID_RANGE, QualityLevel.MEDIUM),
    (DeviceClass.HIGH_END, QualityLevel.HIGH),
    (DeviceClass.PREMIUM, QualityLevel.HIGHEST),
])
def test_initial_level_follows_device_class(device_class, level):
    manager, _ = make_manager(device_class)
    assert manager.get_current_quality_level() == level
    state = manager.get_quality_state()
    assert state.target_level == level
    assert not state.is_transitioning


def test_initialize_failure_falls_back_to_medium():
    class BrokenProfiler:
        async def profile(self):
            raise RuntimeError("no sensors")

    manager = AdaptiveQualityManager(ManualScheduler(), profiler=BrokenProfiler())
    assert asyncio.run(manager.initialize()) is None
    assert manager.get_current_quality_level() == QualityLevel.MEDIUM
    assert manager.get_active_strategy() is None
    manager.update_performance_metrics(10, 900)
    assert manager.get_current_quality_level() == QualityLevel.MEDIUM


def test_degrade_then_recover_one_tier():
    manager, scheduler = make_manager(DeviceClass.MID_RANGE)
    applied, removed, changes = [], [], []
    manager.on_optimization_applied(applied.append)
    manager.on_optimization_removed(removed.append)
    manager.on_quality_change(changes.append)

    feed(manager, 10, fps=20, memory_mb=250)
    assert len(applied) >= 1
    scheduler.advance(2000)
    assert manager.get_current_quality_level().rank < QualityLevel.MEDIUM.rank
    degraded = manager.get_current_quality_level()

    scheduler.advance(STABILITY_MS)
    feed(manager, 10, fps=59, memory_mb=40)
    scheduler.advance(2000)

    assert len(removed) == 1
    assert removed[0].optimization.identifier == applied[0].optimization.identifier
    assert manager.get_current_quality_level().rank == degraded.rank + 1
    assert changes[-1].reason == "performance-improvement"
    assert changes[0].reason == "optimization:Mid-Range Balanced"


def test_level_stays_until_commit():
    manager, scheduler = make_manager(DeviceClass.MID_RANGE)
    steps = []
    manager.on_transition_step(steps.append)

    manager.update_performance_metrics(20, 250)
    state = manager.get_quality_state()
    assert state.is_transitioning
    assert state.current_level == QualityLevel.MEDIUM
    assert state.target_level == QualityLevel.LOW

    scheduler.advance(100)
    assert manager.get_current_quality_level() == QualityLevel.MEDIUM

    scheduler.advance(2000)
    state = manager.get_quality_state()
    assert state.current_level == state.target_level == QualityLevel.LOW
    assert not state.is_transitioning
    # Single-tier changes do not blend
    assert steps == []


def test_hysteresis_between_level_changes():
    manager, scheduler = make_manager(DeviceClass.HIGH_END)
    changes = []
    manager.on_quality_change(changes.append)

    phases = [(20, 300), (59, 30)] * 6
    for fps, memory_mb in phases:
        feed(manager, 40, fps, memory_mb, scheduler=scheduler, step_ms=100)

    assert len(changes) >= 2
    times = [c.timestamp for c in changes]
    for earlier, later in zip(times, times[1:]):
        assert later - earlier >= STABILITY_MS


def test_optimizations_applied_once():
    manager, scheduler = make_manager(DeviceClass.MID_RANGE)
    applied = []
    manager.on_optimization_applied(applied.append)

    manager.update_performance_metrics(20, 250)
    scheduler.advance(STABILITY_MS + 2000)
    manager.update_performance_metrics(20, 250)

    state = manager.get_quality_state()
    assert len(state.applied_optimizations) == len(set(state.applied_optimizations)) == 2
    assert len(applied) == 2
    assert [o.identifier for o in manager.get_applied_optimizations()] == state.applied_optimizations
    assert manager.degradation_events == 2


def test_updates_ignored_inside_stability_period():
    manager, scheduler = make_manager(DeviceClass.MID_RANGE)
    manager.update_performance_metrics(20, 250)
    scheduler.advance(1000)
    assert manager.get_current_quality_level() == QualityLevel.LOW

    feed(manager, 20, fps=59, memory_mb=40)
    assert manager.get_quality_state().applied_optimizations
    assert manager.get_current_quality_level() == QualityLevel.LOW


def test_force_quality_level_bypasses_stability():
    manager, scheduler = make_manager(DeviceClass.MID_RANGE)
    changes = []
    manager.on_quality_change(changes.append)

    assert manager.force_quality_level("highest")
    scheduler.advance(2000)
    assert manager.force_quality_level(QualityLevel.LOW, reason="user")
    scheduler.advance(2000)

    assert [c.new_level for c in changes] == [QualityLevel.HIGHEST, QualityLevel.LOW]
    assert changes[-1].reason == "user"
    assert not manager.force_quality_level("low")
    with pytest.raises(ValidationError):
        manager.force_quality_level("ultra")


def test_battery_crossing_reselects_strategy():
    manager, scheduler = make_manager(DeviceClass.PREMIUM, battery_level=80.0)
    assert manager.get_active_strategy().key == "high-end-performance"

    manager.update_performance_metrics(60, 50, battery_level=15)
    assert manager.get_quality_state().active_strategy == BATTERY_SAVER
    assert manager.get_device_profile().battery_level == 15

    scheduler.advance(STABILITY_MS + 3000)
    manager.update_performance_metrics(60, 50, battery_level=85)
    assert manager.get_active_strategy().key == "high-end-performance"


def test_quality_state_is_a_copy():
    manager, _ = make_manager()
    state = manager.get_quality_state()
    state.applied_optimizations.append("bogus")
    state.current_level = QualityLevel.LOW
    assert manager.get_quality_state().applied_optimizations == []
    assert manager.get_current_quality_level() == QualityLevel.MEDIUM


def test_history_is_trimmed():
    manager, _ = make_manager(DeviceClass.PREMIUM)
    config = QualityConfig()
    feed(manager, config.history_limit + 1, fps=60, memory_mb=20)
    assert len(manager.get_performance_history()) == config.history_trim_to


def test_unsubscribe_and_failing_listener():
    manager, scheduler = make_manager()
    received = []

    def broken(event):
        raise RuntimeError("listener bug")

    manager.on_quality_change(broken)
    unsubscribe = manager.on_quality_change(received.append)
    assert manager.events.listener_counts()["quality-changed"] == 2
    manager.force_quality_level("high")
    scheduler.advance(2000)
    assert len(received) == 1

    unsubscribe()
    manager.force_quality_level("medium")
    scheduler.advance(2000)
    assert len(received) == 1


def test_destroy_mid_transition_closes_state():
    manager, scheduler = make_manager(DeviceClass.PREMIUM)
    manager.force_quality_level("low")
    assert manager.get_quality_state().is_transitioning

    manager.destroy()
    state = manager.get_quality_state()
    assert not state.is_transitioning
    assert state.current_level == state.target_level
    assert manager.get_device_profile() is None
    assert scheduler.pending_count == 0

    manager.update_performance_metrics(10, 900)
    assert manager.get_performance_history() == []


def test_reset_clears_history_and_counters():
    manager, scheduler = make_manager()
    manager.update_performance_metrics(20, 250)
    scheduler.advance(2000)
    manager.reset()
    assert manager.get_performance_history() == []
    assert manager.quality_snapshot()["changes"] == 0
    assert manager.get_quality_state().applied_optimizations == []


def test_recovery_removes_irreversible_optimizations_too():
    manager, scheduler = make_manager(DeviceClass.HIGH_END)
    assert manager.get_active_strategy().key == "high-end-performance"
    removed = []
    manager.on_optimization_removed(removed.append)

    manager.update_performance_metrics(50, 40)
    scheduler.advance(3000)
    manager.update_performance_metrics(50, 40)
    scheduler.advance(1000)
    assert manager.get_current_quality_level() == QualityLevel.MEDIUM
    assert manager.get_quality_state().applied_optimizations == [
        "adjust-frequency:monitoring-frequency",
        "preload-content:next-sections",
    ]

    for _ in range(2):
        scheduler.advance(STABILITY_MS + 1000)
        feed(manager, 10, fps=59, memory_mb=40)
        scheduler.advance(1000)

    assert manager.get_current_quality_level() == QualityLevel.HIGHEST
    assert manager.get_quality_state().applied_optimizations == []
    assert [e.optimization.identifier for e in removed] == [
        "adjust-frequency:monitoring-frequency",
        "preload-content:next-sections",
    ]
    assert not removed[1].optimization.reversible


def test_condition_persistence_restarts_after_stability_period():
    manager, scheduler = make_manager(DeviceClass.HIGH_END)

    manager.update_performance_metrics(50, 150)
    scheduler.advance(3000)
    manager.update_performance_metrics(50, 150)
    scheduler.advance(1000)
    assert manager.get_current_quality_level() == QualityLevel.MEDIUM

    # Good samples inside the stability window
    feed(manager, 40, fps=59, memory_mb=150, scheduler=scheduler, step_ms=100)
    scheduler.advance(2000)

    manager.update_performance_metrics(50, 150)
    state = manager.get_quality_state()
    assert state.current_level == state.target_level == QualityLevel.MEDIUM
    assert not state.is_transitioning

    # The low fps condition still degrades once it has held for 3 s again
    scheduler.advance(3000)
    manager.update_performance_metrics(50, 150)
    assert manager.get_quality_state().target_level == QualityLevel.LOW
    assert manager.degradation_events == 2
