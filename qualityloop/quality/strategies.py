"""
Quality Strategy Registry

Static catalog of named strategies. Each strategy targets a set of device
classes, lists the conditions that trigger optimization, and the
optimizations to apply, highest priority first.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from qualityloop.device.profile import DeviceCapabilityProfile, DeviceClass
from qualityloop.utils.config import load_config_data
from qualityloop.utils.logging_config import get_logger
from qualityloop.utils.validation import ValidationError, validate_choice, validate_priority

logger = get_logger(__name__)

BATTERY_SAVER = "battery-saver"
UNKNOWN_BATTERY_LEVEL = 100.0


class Metric(str, Enum):
    FPS = "fps"
    MEMORY = "memory"
    BATTERY = "battery"
    THERMAL = "thermal"
    NETWORK = "network"


class Operator(str, Enum):
    LT = "<"
    GT = ">"
    LE = "<="
    GE = ">="
    EQ = "=="
    NE = "!="

    def compare(self, value: float, threshold: float) -> bool:
        if self is Operator.LT:
            return value < threshold
        if self is Operator.GT:
            return value > threshold
        if self is Operator.LE:
            return value <= threshold
        if self is Operator.GE:
            return value >= threshold
        if self is Operator.EQ:
            return value == threshold
        if self is Operator.NE:
            return value != threshold
        raise ValueError(f"Unhandled operator: {self!r}")


OPTIMIZATION_TYPES = (
    "reduce-quality",
    "disable-feature",
    "adjust-frequency",
    "batch-operations",
    "preload-content",
)


@dataclass(frozen=True)
class QualityCondition:
    """Trigger: ``metric operator value``, optionally held for ``duration_ms``."""
    metric: Metric
    operator: Operator
    value: float
    duration_ms: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QualityCondition":
        try:
            metric = Metric(data["metric"])
            operator = Operator(data["operator"])
        except (KeyError, ValueError) as e:
            raise ValidationError(f"Invalid condition {dict(data)}: {e}") from e
        return cls(
            metric=metric,
            operator=operator,
            value=float(data["value"]),
            duration_ms=data.get("duration_ms"),
        )


@dataclass(frozen=True)
class QualityOptimization:
    """An action applied to relieve a detected performance condition."""
    type: str
    target: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    reversible: bool = True
    priority: int = 5

    def __post_init__(self) -> None:
        validate_choice(self.type, OPTIMIZATION_TYPES, "optimization type")
        validate_priority(self.priority)

    @property
    def identifier(self) -> str:
        return f"{self.type}:{self.target}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "target": self.target,
            "parameters": dict(self.parameters),
            "reversible": self.reversible,
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QualityOptimization":
        return cls(
            type=data["type"],
            target=data["target"],
            parameters=dict(data.get("parameters", {})),
            reversible=bool(data.get("reversible", True)),
            priority=int(data.get("priority", 5)),
        )


@dataclass(frozen=True)
class QualityStrategy:
    """Named bundle of trigger conditions and optimizations."""
    key: str
    name: str
    description: str
    target_device_classes: Tuple[str, ...]
    conditions: Tuple[QualityCondition, ...]
    optimizations: Tuple[QualityOptimization, ...]
    version: str = "1.0.0"
    fallback_strategy: Optional[str] = None

    def __post_init__(self) -> None:
        for device_class in self.target_device_classes:
            validate_choice(device_class, DeviceClass.ALL, "device class")

    def optimizations_by_priority(self) -> List[QualityOptimization]:
        """Optimizations, highest priority first; ties keep catalog order."""
        return sorted(self.optimizations, key=lambda o: -o.priority)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QualityStrategy":
        try:
            key = data["key"]
            return cls(
                key=key,
                name=data.get("name", key),
                description=data.get("description", ""),
                target_device_classes=tuple(data["target_device_classes"]),
                conditions=tuple(QualityCondition.from_dict(c) for c in data.get("conditions", [])),
                optimizations=tuple(QualityOptimization.from_dict(o) for o in data.get("optimizations", [])),
                version=str(data.get("version", "1.0.0")),
                fallback_strategy=data.get("fallback_strategy"),
            )
        except KeyError as e:
            raise ValidationError(f"Strategy definition missing field {e}") from e


def builtin_strategies() -> List[QualityStrategy]:
    """The default catalog, in selection order."""
    return [
        QualityStrategy(
            key="low-end-conservative",
            name="Low-End Conservative",
            description="Conservative quality settings for low-end devices",
            target_device_classes=(DeviceClass.LOW_END,),
            conditions=(
                QualityCondition(Metric.FPS, Operator.LT, 30, duration_ms=1000),
                QualityCondition(Metric.MEMORY, Operator.GT, 150),
            ),
            optimizations=(
                QualityOptimization("reduce-quality", "canvas-rendering",
                                    {"maxQuality": "low", "reducedEffects": True}, True, 8),
                QualityOptimization("disable-feature", "gpu-acceleration",
                                    {"fallbackToSoftware": True}, True, 7),
                QualityOptimization("adjust-frequency", "animation-updates",
                                    {"maxFPS": 30}, True, 6),
            ),
        ),
        QualityStrategy(
            key="mid-range-balanced",
            name="Mid-Range Balanced",
            description="Balanced quality settings for mid-range devices",
            target_device_classes=(DeviceClass.MID_RANGE,),
            conditions=(
                QualityCondition(Metric.FPS, Operator.LT, 45, duration_ms=2000),
                QualityCondition(Metric.MEMORY, Operator.GT, 200),
            ),
            optimizations=(
                QualityOptimization("reduce-quality", "visual-effects",
                                    {"reducedComplexity": True}, True, 6),
                QualityOptimization("batch-operations", "rendering-operations",
                                    {"batchSize": 5}, True, 5),
            ),
        ),
        QualityStrategy(
            key="high-end-performance",
            name="High-End Performance",
            description="Performance-focused settings for high-end devices",
            target_device_classes=(DeviceClass.HIGH_END, DeviceClass.PREMIUM),
            conditions=(
                QualityCondition(Metric.FPS, Operator.LT, 55, duration_ms=3000),
            ),
            optimizations=(
                QualityOptimization("adjust-frequency", "monitoring-frequency",
                                    {"reducedSampling": True}, True, 4),
                QualityOptimization("preload-content", "next-sections",
                                    {"aggressivePreload": True}, False, 3),
            ),
        ),
        QualityStrategy(
            key=BATTERY_SAVER,
            name="Battery Saver",
            description="Power-efficient settings for low battery situations",
            target_device_classes=DeviceClass.ALL,
            conditions=(
                QualityCondition(Metric.BATTERY, Operator.LT, 20),
            ),
            optimizations=(
                QualityOptimization("reduce-quality", "all-animations",
                                    {"reducedMotion": True}, True, 9),
                QualityOptimization("adjust-frequency", "update-frequency",
                                    {"powerSaveMode": True, "maxFPS": 24}, True, 8),
                QualityOptimization("disable-feature", "background-processing",
                                    {"suspendNonEssential": True}, True, 7),
            ),
        ),
    ]


def load_strategies(path: Path) -> List[QualityStrategy]:
    """
    Load strategy definitions from a YAML or JSON file.

    The document holds a ``strategies`` list; each entry mirrors
    ``QualityStrategy`` with nested condition and optimization mappings.
    """
    data = load_config_data(Path(path))
    entries = data.get("strategies", [])
    if not isinstance(entries, list):
        raise ValidationError(f"'strategies' must be a list in {path}")
    strategies = [QualityStrategy.from_dict(entry) for entry in entries]
    logger.info(f"Loaded {len(strategies)} strategies from {path}")
    return strategies


class ConditionTracker:
    """Tracks how long each condition has continuously held."""

    def __init__(self):
        self._since: Dict[Tuple[str, int], float] = {}

    def observe(self, strategy_key: str, index: int, holds: bool, now: float) -> float:
        """
        Record an evaluation.

        Returns:
            Milliseconds the condition has held, or -1 if it does not hold
        """
        key = (strategy_key, index)
        if not holds:
            self._since.pop(key, None)
            return -1.0
        since = self._since.setdefault(key, now)
        return now - since

    def clear(self) -> None:
        self._since.clear()


class StrategyRegistry:
    """Read-only catalog of strategies plus selection and condition checks."""

    def __init__(
        self,
        strategies: Optional[Iterable[QualityStrategy]] = None,
        critical_battery_level: float = 20.0,
    ):
        self._strategies: Dict[str, QualityStrategy] = {}
        self.critical_battery_level = critical_battery_level
        self.tracker = ConditionTracker()
        for strategy in (builtin_strategies() if strategies is None else strategies):
            self.register(strategy)

    def register(self, strategy: QualityStrategy) -> None:
        """Add a strategy at load time; keys must be unique."""
        if strategy.key in self._strategies:
            raise ValidationError(f"Duplicate strategy key: {strategy.key}")
        self._strategies[strategy.key] = strategy

    def get(self, key: Optional[str]) -> Optional[QualityStrategy]:
        if key is None:
            return None
        return self._strategies.get(key)

    def keys(self) -> List[str]:
        return list(self._strategies)

    def __len__(self) -> int:
        return len(self._strategies)

    def __contains__(self, key: str) -> bool:
        return key in self._strategies

    def is_power_critical(self, battery_level: Optional[float], is_low_power_mode: bool) -> bool:
        """Universal override: battery critically low or OS power saving."""
        if battery_level is not None and battery_level < self.critical_battery_level:
            return True
        return is_low_power_mode

    def select(self, profile: DeviceCapabilityProfile) -> Optional[QualityStrategy]:
        """
        Choose the single active strategy for a device.

        Power overrides win regardless of device class; otherwise the first
        registered strategy targeting the device class is used.
        """
        if self.is_power_critical(profile.battery_level, profile.is_low_power_mode):
            saver = self._strategies.get(BATTERY_SAVER)
            if saver is not None:
                return saver

        for strategy in self._strategies.values():
            if strategy.key == BATTERY_SAVER:
                continue
            if profile.device_class in strategy.target_device_classes:
                return strategy

        logger.warning(f"No strategy targets device class {profile.device_class}")
        return None

    def check_optimization_conditions(
        self,
        strategy: QualityStrategy,
        fps: float,
        memory_mb: float,
        battery_level: Optional[float] = None,
        now: Optional[float] = None,
    ) -> bool:
        """
        True when any condition of the strategy is met.

        Conditions with ``duration_ms`` count only after holding continuously
        for that long; this needs ``now``. Without ``now`` durations are
        ignored. ``thermal`` and ``network`` metrics are not fed into the
        loop and never trigger.
        """
        triggered = False
        for index, condition in enumerate(strategy.conditions):
            value = self._metric_value(condition.metric, fps, memory_mb, battery_level)
            holds = value is not None and condition.operator.compare(value, condition.value)

            if now is None or not condition.duration_ms:
                met = holds
                if now is not None:
                    self.tracker.observe(strategy.key, index, holds, now)
            else:
                held_for = self.tracker.observe(strategy.key, index, holds, now)
                met = held_for >= condition.duration_ms

            # Every condition is observed so persistence tracking stays current
            triggered = triggered or met
        return triggered

    @staticmethod
    def _metric_value(
        metric: Metric,
        fps: float,
        memory_mb: float,
        battery_level: Optional[float],
    ) -> Optional[float]:
        if metric is Metric.FPS:
            return fps
        if metric is Metric.MEMORY:
            return memory_mb
        if metric is Metric.BATTERY:
            return UNKNOWN_BATTERY_LEVEL if battery_level is None else battery_level
        if metric is Metric.THERMAL or metric is Metric.NETWORK:
            return None
        raise ValueError(f"Unhandled metric: {metric!r}")


__all__ = [
    'Metric',
    'Operator',
    'OPTIMIZATION_TYPES',
    'BATTERY_SAVER',
    'QualityCondition',
    'QualityOptimization',
    'QualityStrategy',
    'ConditionTracker',
    'StrategyRegistry',
    'builtin_strategies',
    'load_strategies',
]
