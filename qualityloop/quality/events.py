"""
Quality Events

Payloads published by the quality manager and a small listener registry.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, TypeVar

from qualityloop.quality.levels import QualityLevel
from qualityloop.quality.strategies import QualityOptimization
from qualityloop.utils.logging_config import get_logger

logger = get_logger(__name__)

E = TypeVar("E")


@dataclass(frozen=True)
class QualityChangedEvent:
    old_level: QualityLevel
    new_level: QualityLevel
    reason: str
    timestamp: float


@dataclass(frozen=True)
class QualityTransitionStepEvent:
    """Intermediate blend point between two levels; ``progress`` is eased, in [0, 1]."""
    old_level: QualityLevel
    new_level: QualityLevel
    progress: float
    timestamp: float


@dataclass(frozen=True)
class QualityOptimizationEvent:
    optimization: QualityOptimization
    timestamp: float


class ListenerRegistry(Generic[E]):
    """
    Ordered set of callbacks for one event channel.

    A listener that raises is logged and skipped; the remaining listeners
    still receive the event.
    """

    def __init__(self, channel: str):
        self.channel = channel
        self._listeners: List[Callable[[E], None]] = []

    def subscribe(self, listener: Callable[[E], None]) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: E) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"{self.channel} listener failed: {e}", exc_info=True)

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)


class QualityEventBus:
    """The four channels consumers subscribe to."""

    def __init__(self):
        self.quality_changed: ListenerRegistry[QualityChangedEvent] = ListenerRegistry("quality-changed")
        self.transition_step: ListenerRegistry[QualityTransitionStepEvent] = ListenerRegistry(
            "quality-transition-step"
        )
        self.optimization_applied: ListenerRegistry[QualityOptimizationEvent] = ListenerRegistry(
            "quality-optimization-applied"
        )
        self.optimization_removed: ListenerRegistry[QualityOptimizationEvent] = ListenerRegistry(
            "quality-optimization-removed"
        )

    def listener_counts(self) -> Dict[str, int]:
        return {
            registry.channel: len(registry)
            for registry in (
                self.quality_changed,
                self.transition_step,
                self.optimization_applied,
                self.optimization_removed,
            )
        }

    def clear(self) -> None:
        self.quality_changed.clear()
        self.transition_step.clear()
        self.optimization_applied.clear()
        self.optimization_removed.clear()


__all__ = [
    'QualityChangedEvent',
    'QualityTransitionStepEvent',
    'QualityOptimizationEvent',
    'ListenerRegistry',
    'QualityEventBus',
]
