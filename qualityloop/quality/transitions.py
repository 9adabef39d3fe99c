"""
Transition Engine

Executes a quality change as a timed sequence of eased steps. The engine
only drives the clock; committing the new level is left to the caller's
completion callback.
"""

from enum import Enum
from typing import Callable, Optional

from qualityloop.quality.events import QualityEventBus, QualityTransitionStepEvent
from qualityloop.quality.levels import QualityLevel
from qualityloop.utils.config import TransitionConfig
from qualityloop.utils.logging_config import get_logger
from qualityloop.utils.scheduling import Scheduler

logger = get_logger(__name__)

MAX_DURATION_MS = 2000.0
BASE_DURATION_MS = 500.0
DURATION_PER_LEVEL_MS = 300.0
MIN_STEPS = 5
STEPS_PER_LEVEL = 3


class Easing(str, Enum):
    LINEAR = "linear"
    EASE_IN = "ease-in"
    EASE_OUT = "ease-out"
    EASE_IN_OUT = "ease-in-out"
    SMOOTH = "smooth"


def apply_easing(easing: Easing, progress: float) -> float:
    """
    Map linear progress in [0, 1] through an easing curve.

    Every curve maps 0 to 0 and 1 to 1 and is non-decreasing in between.
    """
    p = min(1.0, max(0.0, progress))
    easing = Easing(easing)
    if easing is Easing.LINEAR:
        return p
    if easing is Easing.EASE_IN:
        return p * p
    if easing is Easing.EASE_OUT:
        return 1 - (1 - p) * (1 - p)
    if easing is Easing.EASE_IN_OUT:
        return 2 * p * p if p < 0.5 else 1 - 2 * (1 - p) * (1 - p)
    if easing is Easing.SMOOTH:
        return p * p * (3 - 2 * p)
    raise ValueError(f"Unhandled easing: {easing!r}")


def configure_transition(old_level: QualityLevel, new_level: QualityLevel) -> TransitionConfig:
    """
    Size a transition by how far apart the two levels are.

    Wider jumps take longer, use more steps and blend with ease-in-out;
    a single-tier change is a short ease-out without intermediate events.
    """
    distance = old_level.distance_to(new_level)
    return TransitionConfig(
        duration_ms=min(MAX_DURATION_MS, BASE_DURATION_MS + DURATION_PER_LEVEL_MS * distance),
        easing=Easing.EASE_IN_OUT.value if distance > 1 else Easing.EASE_OUT.value,
        steps=max(MIN_STEPS, STEPS_PER_LEVEL * distance),
        smoothing=distance > 1,
    )


class TransitionEngine:
    """Drives one transition at a time on a ``Scheduler``."""

    def __init__(self, scheduler: Scheduler, events: QualityEventBus):
        self.scheduler = scheduler
        self.events = events

        self._timer: Optional[int] = None
        self._active = False
        self._step = 0
        self._old_level: Optional[QualityLevel] = None
        self._new_level: Optional[QualityLevel] = None
        self._config: Optional[TransitionConfig] = None
        self._on_complete: Optional[Callable[[], None]] = None
        self.last_progress = 0.0

    @property
    def is_active(self) -> bool:
        return self._active

    def start(
        self,
        old_level: QualityLevel,
        new_level: QualityLevel,
        config: TransitionConfig,
        on_complete: Callable[[], None],
    ) -> bool:
        """
        Begin a transition. The first step runs synchronously.

        Returns:
            False if a transition is already running (ignored)
        """
        if self._active:
            return False

        self._active = True
        self._step = 0
        self._old_level = old_level
        self._new_level = new_level
        self._config = config
        self._on_complete = on_complete
        self.last_progress = 0.0

        logger.debug(
            f"Transition {old_level} -> {new_level}: {config.duration_ms:.0f}ms, "
            f"{config.steps} steps, {config.easing}"
        )
        self._execute_step()
        return True

    def cancel(self) -> bool:
        """
        Stop the running transition without committing it.

        Returns:
            True if a transition was interrupted
        """
        if self._timer is not None:
            self.scheduler.cancel(self._timer)
            self._timer = None
        was_active = self._active
        self._active = False
        self._on_complete = None
        if was_active:
            logger.info(f"Transition {self._old_level} -> {self._new_level} cancelled at step {self._step}")
        return was_active

    def _execute_step(self) -> None:
        self._timer = None
        if not self._active:
            return

        config = self._config
        self._step += 1
        progress = apply_easing(Easing(config.easing), self._step / config.steps)
        self.last_progress = progress

        if config.smoothing and self._step < config.steps:
            self.events.transition_step.emit(
                QualityTransitionStepEvent(
                    old_level=self._old_level,
                    new_level=self._new_level,
                    progress=progress,
                    timestamp=self.scheduler.now(),
                )
            )

        if self._step >= config.steps:
            on_complete = self._on_complete
            self._active = False
            self._on_complete = None
            if on_complete is not None:
                on_complete()
            return

        self._timer = self.scheduler.call_later(config.duration_ms / config.steps, self._execute_step)


__all__ = [
    'Easing',
    'apply_easing',
    'configure_transition',
    'TransitionEngine',
]
