"""
Tests for configuration loading
"""

import json

import pytest
import yaml

from qualityloop.utils.config import (
    CONFIG_ENV_VAR,
    AppConfig,
    CollectionConfig,
    ConfigManager,
    DeviceConfig,
    QualityConfig,
    TransitionConfig,
)
from qualityloop.utils.validation import ValidationError


def test_defaults():
    config = AppConfig()
    assert config.collection.sampling_interval_ms == pytest.approx(16.67)
    assert config.collection.aggregation_window_ms == 5000
    assert config.quality.stability_period_ms == 5000
    assert config.quality.transition.easing == "ease-out"
    assert config.export.default_format == "json"


def test_dict_round_trip():
    config = AppConfig.from_dict({
        "collection": {"batch_size": 20},
        "quality": {"good_fps": 50, "transition": {"easing": "linear", "steps": 4}},
        "device": {"overrides": {"memory_gb": 8}},
        "export": {"compression_level": "low"},
        "log_level": "DEBUG",
    })
    assert config.collection.batch_size == 20
    assert config.quality.transition.steps == 4
    assert config.device.overrides == {"memory_gb": 8}
    assert AppConfig.from_dict(config.to_dict()) == config


@pytest.mark.parametrize("build", [
    lambda: CollectionConfig(sampling_interval_ms=0),
    lambda: CollectionConfig(batch_size=-1),
    lambda: TransitionConfig(easing="bounce"),
    lambda: QualityConfig(history_limit=10, history_trim_to=20),
    lambda: CollectionConfig(idle_timeout_ms=-1),
    lambda: DeviceConfig(power_refresh_interval_ms=-5),
    lambda: AppConfig.from_dict({"export": {"default_format": "xml"}}),
])
def test_invalid_values_rejected(build):
    with pytest.raises(ValidationError):
        build()


def test_unknown_field_rejected():
    with pytest.raises(TypeError):
        AppConfig.from_dict({"collection": {"sample_rate": 60}})


def test_yaml_save_and_load(tmp_path):
    path = tmp_path / "config.yaml"
    manager = ConfigManager(path)
    manager.config.quality.good_fps = 50.0
    manager.save()

    assert yaml.safe_load(path.read_text())["quality"]["good_fps"] == 50.0
    assert ConfigManager(path).get().quality.good_fps == 50.0


def test_json_update_persists(tmp_path):
    path = tmp_path / "config.json"
    manager = ConfigManager(path)
    manager.update(log_level="WARNING", nonsense=1)
    assert json.loads(path.read_text())["log_level"] == "WARNING"
    assert not hasattr(manager.get(), "nonsense")


def test_invalid_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"collection": {"batch_size": 0}}))
    assert ConfigManager(path).get() == AppConfig()


def test_missing_file_uses_defaults(tmp_path):
    manager = ConfigManager(tmp_path / "absent.yaml")
    assert manager.get() == AppConfig()


def test_env_var_selects_file(tmp_path, monkeypatch):
    path = tmp_path / "env.yaml"
    path.write_text(yaml.safe_dump({"collection": {"max_cache_size": 7}}))
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
    manager = ConfigManager()
    assert manager.config_path == path
    assert manager.get().collection.max_cache_size == 7
