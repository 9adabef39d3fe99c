"""
Configuration Management

Centralized configuration management with validation and defaults.
"""

import json
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict, field

from qualityloop.utils.logging_config import get_logger
from qualityloop.utils.validation import (
    ValidationError,
    validate_choice,
    validate_compression_level,
    validate_export_format,
    validate_positive,
    validate_non_negative,
)

logger = get_logger(__name__)

CONFIG_ENV_VAR = "QUALITYLOOP_CONFIG"

EASING_NAMES = ('linear', 'ease-in', 'ease-out', 'ease-in-out', 'smooth')


@dataclass
class CollectionConfig:
    """Performance data collection configuration."""
    enabled: bool = True
    sampling_interval_ms: float = 16.67  # 60 Hz
    batch_size: int = 10
    aggregation_window_ms: float = 5000.0
    max_cache_size: int = 1000
    max_raw_points: int = 10000
    realtime_processing: bool = False
    idle_timeout_ms: float = 1000.0
    use_worker: bool = False
    forward_to_quality_manager: bool = True

    def __post_init__(self) -> None:
        validate_positive(self.sampling_interval_ms, "sampling_interval_ms")
        validate_positive(self.batch_size, "batch_size")
        validate_positive(self.aggregation_window_ms, "aggregation_window_ms")
        validate_positive(self.max_cache_size, "max_cache_size")
        validate_positive(self.max_raw_points, "max_raw_points")
        validate_non_negative(self.idle_timeout_ms, "idle_timeout_ms")


@dataclass
class TransitionConfig:
    """Quality transition configuration."""
    duration_ms: float = 1000.0
    easing: str = 'ease-out'
    steps: int = 10
    smoothing: bool = True

    def __post_init__(self) -> None:
        validate_choice(self.easing, EASING_NAMES, "easing")
        validate_positive(self.steps, "steps")


@dataclass
class QualityConfig:
    """Quality control loop configuration."""
    stability_period_ms: float = 5000.0
    good_fps: float = 55.0
    good_memory_mb: float = 100.0
    min_history_samples: int = 5
    history_window: int = 10
    history_limit: int = 100
    history_trim_to: int = 50
    critical_battery_level: float = 20.0
    transition: TransitionConfig = field(default_factory=TransitionConfig)
    strategies_path: Optional[str] = None

    def __post_init__(self) -> None:
        if self.history_trim_to > self.history_limit:
            raise ValidationError(
                f"history_trim_to ({self.history_trim_to}) cannot exceed history_limit ({self.history_limit})"
            )


@dataclass
class DeviceConfig:
    """Device profiling configuration."""
    probe_timeout_ms: float = 1000.0
    # Fixed signal values (e.g. {"memory_gb": 8}) that bypass detection
    overrides: Dict[str, Any] = field(default_factory=dict)
    # Battery, power-saving and thermal re-probe cadence; 0 disables it
    power_refresh_interval_ms: float = 30000.0

    def __post_init__(self) -> None:
        validate_positive(self.probe_timeout_ms, "probe_timeout_ms")
        validate_non_negative(self.power_refresh_interval_ms, "power_refresh_interval_ms")


@dataclass
class ExportConfig:
    """Report export configuration."""
    default_format: str = 'json'
    compression_level: str = 'none'
    output_dir: Optional[str] = None
    include_raw_data: bool = True
    include_aggregated: bool = True
    include_metadata: bool = True

    def __post_init__(self) -> None:
        validate_export_format(self.default_format)
        validate_compression_level(self.compression_level)


@dataclass
class AppConfig:
    """Application configuration."""
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    enable_file_logging: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AppConfig':
        """Create from dictionary."""
        data = data or {}
        quality_data = dict(data.get('quality', {}))
        transition = TransitionConfig(**quality_data.pop('transition', {}))

        return cls(
            collection=CollectionConfig(**data.get('collection', {})),
            quality=QualityConfig(transition=transition, **quality_data),
            device=DeviceConfig(**data.get('device', {})),
            export=ExportConfig(**data.get('export', {})),
            log_level=data.get('log_level', 'INFO'),
            log_dir=data.get('log_dir'),
            enable_file_logging=data.get('enable_file_logging', False),
        )


def load_config_data(path: Path) -> Dict[str, Any]:
    """
    Read a JSON or YAML document.

    Args:
        path: File path; ``.yaml``/``.yml`` are parsed as YAML, everything else as JSON

    Returns:
        Parsed mapping (empty when the file is empty)
    """
    with open(path, 'r', encoding='utf-8') as f:
        if path.suffix in ('.yaml', '.yml'):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(f"Config root must be a mapping, got {type(data).__name__}")
    return data


class ConfigManager:
    """Configuration manager with file persistence."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config file (default: $QUALITYLOOP_CONFIG or
                config.json in project root)
        """
        if config_path is None:
            env_path = os.getenv(CONFIG_ENV_VAR)
            if env_path:
                config_path = Path(env_path)
            else:
                config_path = Path(__file__).parent.parent.parent / "config.json"

        self.config_path = Path(config_path)
        self.config = AppConfig()

        if self.config_path.exists():
            try:
                self.load()
            except Exception as e:
                logger.warning(f"Failed to load config: {e}, using defaults")

    def load(self) -> None:
        """Load configuration from file."""
        if not self.config_path.exists():
            logger.info(f"Config file not found: {self.config_path}, using defaults")
            return

        try:
            data = load_config_data(self.config_path)
            self.config = AppConfig.from_dict(data)
            logger.info(f"Loaded configuration from {self.config_path}")
        except Exception as e:
            logger.error(f"Error loading config: {e}")
            raise

    def save(self) -> None:
        """Save configuration to file."""
        try:
            with open(self.config_path, 'w', encoding='utf-8') as f:
                if self.config_path.suffix in ('.yaml', '.yml'):
                    yaml.safe_dump(self.config.to_dict(), f, sort_keys=False)
                else:
                    json.dump(self.config.to_dict(), f, indent=2)
            logger.info(f"Saved configuration to {self.config_path}")
        except Exception as e:
            logger.error(f"Error saving config: {e}")
            raise

    def get(self) -> AppConfig:
        """Get current configuration."""
        return self.config

    def update(self, **kwargs) -> None:
        """Update top-level configuration values and persist them."""
        for key, value in kwargs.items():
            if hasattr(self.config, key):
                setattr(self.config, key, value)
            else:
                logger.warning(f"Unknown config key: {key}")

        self.save()


__all__ = [
    'AppConfig',
    'CollectionConfig',
    'TransitionConfig',
    'QualityConfig',
    'DeviceConfig',
    'ExportConfig',
    'ConfigManager',
    'EASING_NAMES',
    'load_config_data',
]
