"""
Input Validation

Validation helpers for configuration values and control-surface arguments.
"""

from typing import Iterable, Union

from qualityloop.utils.logging_config import get_logger

logger = get_logger(__name__)


class ValidationError(ValueError):
    """Validation error."""
    pass


QUALITY_LEVEL_NAMES = ('low', 'medium', 'high', 'highest')
EXPORT_FORMAT_NAMES = ('json', 'csv', 'metrics', 'summary')
COMPRESSION_LEVEL_NAMES = ('none', 'low', 'high')


def validate_choice(value: str, choices: Iterable[str], label: str) -> str:
    """
    Validate that a string is one of a fixed set of choices.

    Args:
        value: Value to validate
        choices: Allowed values
        label: Human readable name used in the error message

    Returns:
        The value unchanged

    Raises:
        ValidationError: If the value is not allowed
    """
    allowed = tuple(choices)
    if value not in allowed:
        raise ValidationError(f"Invalid {label}: {value!r}. Must be one of {list(allowed)}")
    return value


def validate_quality_level(level: str) -> str:
    """
    Validate quality level name.

    Raises:
        ValidationError: If validation fails
    """
    return validate_choice(level, QUALITY_LEVEL_NAMES, "quality level")


def validate_export_format(export_format: str) -> str:
    """
    Validate export format name.

    Raises:
        ValidationError: If validation fails
    """
    return validate_choice(export_format, EXPORT_FORMAT_NAMES, "export format")


def validate_compression_level(level: str) -> str:
    """Validate compression level name."""
    return validate_choice(level, COMPRESSION_LEVEL_NAMES, "compression level")


def validate_priority(priority: int) -> int:
    """
    Validate optimization priority.

    Args:
        priority: Priority value, higher is more important

    Returns:
        Validated priority

    Raises:
        ValidationError: If priority is outside 1-10
    """
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValidationError(f"Priority must be an integer, got {type(priority).__name__}")
    if priority < 1 or priority > 10:
        raise ValidationError(f"Priority must be between 1 and 10, got {priority}")
    return priority


def validate_positive(value: Union[int, float], label: str) -> Union[int, float]:
    """
    Validate that a numeric value is strictly positive.

    Raises:
        ValidationError: If validation fails
    """
    if value <= 0:
        raise ValidationError(f"{label} must be positive, got {value}")
    return value


def validate_non_negative(value: Union[int, float], label: str) -> Union[int, float]:
    """Validate that a numeric value is zero or positive."""
    if value < 0:
        raise ValidationError(f"{label} must be non-negative, got {value}")
    return value


__all__ = [
    'ValidationError',
    'QUALITY_LEVEL_NAMES',
    'EXPORT_FORMAT_NAMES',
    'COMPRESSION_LEVEL_NAMES',
    'validate_choice',
    'validate_quality_level',
    'validate_export_format',
    'validate_compression_level',
    'validate_priority',
    'validate_positive',
    'validate_non_negative',
]
