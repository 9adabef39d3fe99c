"""
Adaptive Quality Manager

The control loop. Every metrics update is checked against the active
strategy: a met condition applies optimizations and degrades the quality
level, sustained good performance removes one optimization and steps the
level back up. Both paths are suppressed while a transition runs and for a
stability period after it commits.
"""

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from qualityloop.device.profile import DeviceCapabilityProfile, DeviceClass
from qualityloop.device.profiler import DeviceCapabilityProfiler
from qualityloop.quality.events import (
    QualityChangedEvent,
    QualityEventBus,
    QualityOptimizationEvent,
    QualityTransitionStepEvent,
)
from qualityloop.quality.levels import DESCENDING_LEVELS, QualityLevel
from qualityloop.quality.strategies import (
    QualityOptimization,
    QualityStrategy,
    StrategyRegistry,
    load_strategies,
)
from qualityloop.quality.transitions import TransitionEngine, configure_transition
from qualityloop.utils.config import QualityConfig, TransitionConfig
from qualityloop.utils.logging_config import get_logger
from qualityloop.utils.scheduling import Scheduler

logger = get_logger(__name__)

INITIAL_LEVELS = {
    DeviceClass.LOW_END: QualityLevel.LOW,
    DeviceClass.MID_RANGE: QualityLevel.MEDIUM,
    DeviceClass.HIGH_END: QualityLevel.HIGH,
    DeviceClass.PREMIUM: QualityLevel.HIGHEST,
}

# Used when profiling itself fails
FALLBACK_LEVEL = QualityLevel.MEDIUM

IMPROVEMENT_REASON = "performance-improvement"


@dataclass
class QualityManagementState:
    """Mutable control-loop state. ``target_level`` equals ``current_level`` when idle."""
    current_level: QualityLevel = QualityLevel.HIGHEST
    target_level: QualityLevel = QualityLevel.HIGHEST
    is_transitioning: bool = False
    active_strategy: Optional[str] = None
    applied_optimizations: List[str] = field(default_factory=list)
    # None until the first transition; the stability window starts from it
    transition_start_time: Optional[float] = None
    transition_config: TransitionConfig = field(default_factory=TransitionConfig)
    stability_period_ms: float = 5000.0


@dataclass(frozen=True)
class PerformanceSample:
    timestamp: float
    fps: float
    memory_mb: float


def build_strategy_registry(config: QualityConfig) -> StrategyRegistry:
    """Built-in catalog plus any strategies from ``config.strategies_path``."""
    registry = StrategyRegistry(critical_battery_level=config.critical_battery_level)
    if config.strategies_path:
        for strategy in load_strategies(Path(config.strategies_path)):
            registry.register(strategy)
    return registry


class AdaptiveQualityManager:
    """Decides and applies the rendering quality level for this device."""

    def __init__(
        self,
        scheduler: Scheduler,
        config: Optional[QualityConfig] = None,
        profiler: Optional[DeviceCapabilityProfiler] = None,
        registry: Optional[StrategyRegistry] = None,
    ):
        """
        Initialize manager.

        Args:
            scheduler: Clock and timers for transitions and the stability window
            config: Control loop thresholds (default: ``QualityConfig()``)
            profiler: Device profiler used by ``initialize`` (default: a fresh one)
            registry: Strategy catalog (default: built-ins plus configured YAML)
        """
        self.config = config or QualityConfig()
        self.scheduler = scheduler
        self.profiler = profiler or DeviceCapabilityProfiler()
        self.registry = registry or build_strategy_registry(self.config)
        self.events = QualityEventBus()
        self.transitions = TransitionEngine(scheduler, self.events)

        self.state = self._initial_state()
        self.device_profile: Optional[DeviceCapabilityProfile] = None
        self.performance_history: List[PerformanceSample] = []

        self._applied: Dict[str, QualityOptimization] = {}
        self._stability_timer: Optional[int] = None
        self._destroyed = False

        self.level_changes = 0
        self.degradation_events = 0
        self.optimization_events = 0

    async def initialize(self) -> Optional[DeviceCapabilityProfile]:
        """
        Profile the device, select a strategy and set the initial level.

        Profiling failures are logged; the manager then stays at a
        medium level without an active strategy.
        """
        try:
            profile = await self.profiler.profile()
        except Exception as e:
            logger.error(f"Device profiling failed, using {FALLBACK_LEVEL}: {e}", exc_info=True)
            self._set_initial_level(FALLBACK_LEVEL)
            return None

        self.device_profile = profile
        self._select_strategy()
        self._set_initial_level(INITIAL_LEVELS.get(profile.device_class, FALLBACK_LEVEL))
        logger.info(
            f"Quality manager initialized: {profile.device_class} device, "
            f"strategy {self.state.active_strategy}, level {self.state.current_level}"
        )
        return profile

    def set_device_profile(self, profile: DeviceCapabilityProfile) -> None:
        """Adopt an already captured profile instead of probing the host."""
        self.device_profile = profile
        self._select_strategy()
        self._set_initial_level(INITIAL_LEVELS.get(profile.device_class, FALLBACK_LEVEL))

    def update_performance_metrics(
        self,
        fps: float,
        memory_mb: float,
        battery_level: Optional[float] = None,
    ) -> None:
        """Feed one sample into the control loop and evaluate it."""
        if self._destroyed:
            return

        self.performance_history.append(
            PerformanceSample(timestamp=self.scheduler.now(), fps=fps, memory_mb=memory_mb)
        )
        if len(self.performance_history) > self.config.history_limit:
            self.performance_history = self.performance_history[-self.config.history_trim_to:]

        if battery_level is not None:
            self.apply_power_state(battery_level)

        self._evaluate(fps, memory_mb)

    def apply_power_state(
        self,
        battery_level: Optional[float],
        is_low_power_mode: Optional[bool] = None,
        thermal_state: Optional[str] = None,
    ) -> None:
        """
        Update the profile's power fields.

        Crossing into or out of the power-critical state re-selects the
        active strategy.
        """
        profile = self.device_profile
        if profile is None:
            return
        low_power = profile.is_low_power_mode if is_low_power_mode is None else is_low_power_mode
        was_critical = self.registry.is_power_critical(profile.battery_level, profile.is_low_power_mode)
        self.device_profile = profile.with_power_state(battery_level, low_power, thermal_state)
        if was_critical != self.registry.is_power_critical(battery_level, low_power):
            self._select_strategy()

    def force_quality_level(self, level, reason: str = "manual-override") -> bool:
        """
        Move to ``level`` through the transition engine, ignoring strategies
        and the stability window.

        Returns:
            True if a transition was started
        """
        level = QualityLevel.parse(level)
        if level == self.state.current_level:
            return False
        return self._initiate_transition(level, reason)

    def get_current_quality_level(self) -> QualityLevel:
        return self.state.current_level

    def get_device_profile(self) -> Optional[DeviceCapabilityProfile]:
        return self.device_profile

    def get_active_strategy(self) -> Optional[QualityStrategy]:
        return self.registry.get(self.state.active_strategy)

    def get_quality_state(self) -> QualityManagementState:
        """Detached copy of the current state."""
        return copy.deepcopy(self.state)

    def get_applied_optimizations(self) -> List[QualityOptimization]:
        return list(self._applied.values())

    def get_performance_history(self) -> List[PerformanceSample]:
        return list(self.performance_history)

    def quality_snapshot(self) -> Dict[str, Any]:
        """Level and event counters for the aggregated quality section."""
        return {
            "level": self.state.current_level.value,
            "changes": self.level_changes,
            "degradation_events": self.degradation_events,
            "optimization_events": self.optimization_events,
        }

    # Listener registration; each returns an unsubscribe callable

    def on_quality_change(self, listener: Callable[[QualityChangedEvent], None]) -> Callable[[], None]:
        return self.events.quality_changed.subscribe(listener)

    def on_transition_step(self, listener: Callable[[QualityTransitionStepEvent], None]) -> Callable[[], None]:
        return self.events.transition_step.subscribe(listener)

    def on_optimization_applied(
        self, listener: Callable[[QualityOptimizationEvent], None]
    ) -> Callable[[], None]:
        return self.events.optimization_applied.subscribe(listener)

    def on_optimization_removed(
        self, listener: Callable[[QualityOptimizationEvent], None]
    ) -> Callable[[], None]:
        return self.events.optimization_removed.subscribe(listener)

    def reset(self) -> None:
        """Cancel timers and return to the initial state; history is cleared."""
        self.transitions.cancel()
        self._cancel_stability_timer()
        self.state = self._initial_state()
        self.performance_history = []
        self._applied = {}
        self.registry.tracker.clear()
        self.level_changes = 0
        self.degradation_events = 0
        self.optimization_events = 0
        logger.info("Quality manager reset")

    def destroy(self) -> None:
        """Reset, drop the profile and all listeners. Later updates are ignored."""
        self.reset()
        self.device_profile = None
        self.events.clear()
        self._destroyed = True
        logger.info("Quality manager destroyed")

    def _initial_state(self) -> QualityManagementState:
        return QualityManagementState(
            transition_config=copy.deepcopy(self.config.transition),
            stability_period_ms=self.config.stability_period_ms,
        )

    def _set_initial_level(self, level: QualityLevel) -> None:
        self.state.current_level = level
        self.state.target_level = level

    def _select_strategy(self) -> None:
        strategy = self.registry.select(self.device_profile)
        new_key = strategy.key if strategy is not None else None
        if new_key != self.state.active_strategy:
            logger.info(f"Active strategy: {self.state.active_strategy} -> {new_key}")
            self.state.active_strategy = new_key
            self.registry.tracker.clear()

    def _in_stability_period(self) -> bool:
        started = self.state.transition_start_time
        if started is None:
            return False
        return self.scheduler.now() - started < self.state.stability_period_ms

    def _evaluate(self, fps: float, memory_mb: float) -> None:
        if self.state.is_transitioning or self._in_stability_period():
            # Suppressed samples break condition persistence
            self.registry.tracker.clear()
            return

        strategy = self.get_active_strategy()
        if strategy is None:
            return

        battery = self.device_profile.battery_level if self.device_profile else None
        if self.registry.check_optimization_conditions(
            strategy, fps, memory_mb, battery, now=self.scheduler.now()
        ):
            self._trigger_optimization(strategy)
        else:
            self._check_improvement()

    def _trigger_optimization(self, strategy: QualityStrategy) -> None:
        self.degradation_events += 1
        for optimization in strategy.optimizations_by_priority():
            self._apply_optimization(optimization)

        new_level = self._degraded_level()
        if new_level != self.state.current_level:
            self._initiate_transition(new_level, f"optimization:{strategy.name}")

    def _apply_optimization(self, optimization: QualityOptimization) -> bool:
        identifier = optimization.identifier
        if identifier in self._applied:
            return False

        self._applied[identifier] = optimization
        self.state.applied_optimizations.append(identifier)
        self.optimization_events += 1
        logger.info(f"Applied optimization {identifier} (priority {optimization.priority})")
        self.events.optimization_applied.emit(
            QualityOptimizationEvent(optimization=optimization, timestamp=self.scheduler.now())
        )
        return True

    def _degraded_level(self) -> QualityLevel:
        count = len(self.state.applied_optimizations)
        if count == 0:
            return self.state.current_level
        current_index = DESCENDING_LEVELS.index(self.state.current_level)
        new_index = min(len(DESCENDING_LEVELS) - 1, current_index + count // 2)
        return DESCENDING_LEVELS[new_index]

    def _check_improvement(self) -> None:
        recent = self.performance_history[-self.config.history_window:]
        if len(recent) < self.config.min_history_samples:
            return

        avg_fps = float(np.mean([s.fps for s in recent]))
        avg_memory = float(np.mean([s.memory_mb for s in recent]))
        if avg_fps <= self.config.good_fps or avg_memory >= self.config.good_memory_mb:
            return

        removed = self._remove_oldest_optimization()
        if removed is None:
            return

        new_level = self.state.current_level.step_up()
        if new_level != self.state.current_level:
            self._initiate_transition(new_level, IMPROVEMENT_REASON)

    def _remove_oldest_optimization(self) -> Optional[QualityOptimization]:
        if not self.state.applied_optimizations:
            return None
        identifier = self.state.applied_optimizations.pop(0)
        optimization = self._applied.pop(identifier)
        logger.info(f"Removed optimization {identifier}")
        self.events.optimization_removed.emit(
            QualityOptimizationEvent(optimization=optimization, timestamp=self.scheduler.now())
        )
        return optimization

    def _initiate_transition(self, new_level: QualityLevel, reason: str) -> bool:
        if self.state.is_transitioning or new_level == self.state.current_level:
            return False

        old_level = self.state.current_level
        config = configure_transition(old_level, new_level)
        self.state.target_level = new_level
        self.state.is_transitioning = True
        self.state.transition_start_time = self.scheduler.now()
        self.state.transition_config = config

        logger.info(f"Quality transition {old_level} -> {new_level} ({reason})")
        return self.transitions.start(
            old_level,
            new_level,
            config,
            on_complete=lambda: self._complete_transition(old_level, new_level, reason),
        )

    def _complete_transition(self, old_level: QualityLevel, new_level: QualityLevel, reason: str) -> None:
        now = self.scheduler.now()
        self.state.current_level = new_level
        self.state.target_level = new_level
        self.state.is_transitioning = False
        self.state.transition_start_time = now
        self.level_changes += 1

        self.events.quality_changed.emit(
            QualityChangedEvent(old_level=old_level, new_level=new_level, reason=reason, timestamp=now)
        )
        self._start_stability_timer()

    def _start_stability_timer(self) -> None:
        self._cancel_stability_timer()
        self._stability_timer = self.scheduler.call_later(
            self.state.stability_period_ms, self._on_stability_elapsed
        )

    def _cancel_stability_timer(self) -> None:
        if self._stability_timer is not None:
            self.scheduler.cancel(self._stability_timer)
            self._stability_timer = None

    def _on_stability_elapsed(self) -> None:
        self._stability_timer = None
        logger.debug(f"Stability period ended at level {self.state.current_level}")


__all__ = [
    'AdaptiveQualityManager',
    'QualityManagementState',
    'PerformanceSample',
    'build_strategy_registry',
    'INITIAL_LEVELS',
]
