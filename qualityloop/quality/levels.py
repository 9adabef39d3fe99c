"""Ordered rendering quality levels."""

from enum import Enum
from typing import Union

from qualityloop.utils.validation import validate_quality_level


class QualityLevel(str, Enum):
    """Rendering fidelity, ordered ``LOW < MEDIUM < HIGH < HIGHEST``."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    HIGHEST = "highest"

    @property
    def rank(self) -> int:
        """Position in ascending order (``LOW`` is 0)."""
        return ASCENDING_LEVELS.index(self)

    @classmethod
    def parse(cls, value: Union[str, "QualityLevel"]) -> "QualityLevel":
        """Accept either a member or its string value."""
        if isinstance(value, cls):
            return value
        return cls(validate_quality_level(value))

    def step_up(self) -> "QualityLevel":
        """Next higher level, saturating at ``HIGHEST``."""
        return ASCENDING_LEVELS[min(self.rank + 1, len(ASCENDING_LEVELS) - 1)]

    def distance_to(self, other: "QualityLevel") -> int:
        return abs(self.rank - other.rank)

    def __str__(self) -> str:
        return self.value


ASCENDING_LEVELS = (
    QualityLevel.LOW,
    QualityLevel.MEDIUM,
    QualityLevel.HIGH,
    QualityLevel.HIGHEST,
)

# Degradation walks this list: a larger index means a lower level
DESCENDING_LEVELS = tuple(reversed(ASCENDING_LEVELS))


__all__ = ['QualityLevel', 'ASCENDING_LEVELS', 'DESCENDING_LEVELS']
