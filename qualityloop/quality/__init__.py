"""Quality levels, strategies, transitions and the adaptive control loop."""

from .levels import QualityLevel
from .strategies import (
    QualityCondition,
    QualityOptimization,
    QualityStrategy,
    StrategyRegistry,
    builtin_strategies,
    load_strategies,
)
from .events import (
    QualityChangedEvent,
    QualityOptimizationEvent,
    QualityTransitionStepEvent,
)
from .transitions import Easing, TransitionEngine, apply_easing, configure_transition
from .manager import AdaptiveQualityManager, QualityManagementState

__all__ = [
    "QualityLevel",
    "QualityCondition",
    "QualityOptimization",
    "QualityStrategy",
    "StrategyRegistry",
    "builtin_strategies",
    "load_strategies",
    "QualityChangedEvent",
    "QualityOptimizationEvent",
    "QualityTransitionStepEvent",
    "Easing",
    "TransitionEngine",
    "apply_easing",
    "configure_transition",
    "AdaptiveQualityManager",
    "QualityManagementState",
]
