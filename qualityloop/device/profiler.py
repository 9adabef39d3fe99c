"""
Device Capability Profiler

Runs every detector once, substitutes defaults for missing signals, and
classifies the result.
"""

import dataclasses
from typing import Any, Dict, Optional

from qualityloop.device import detectors
from qualityloop.device.detectors import Detected
from qualityloop.device.profile import (
    ConnectionType,
    DeviceCapabilityProfile,
    ThermalState,
    classify_device,
)
from qualityloop.utils.gpu_detection import GPUCapability, GPUDetector
from qualityloop.utils.logging_config import get_logger
from qualityloop.utils.validation import ValidationError

logger = get_logger(__name__)

_PROFILE_FIELDS = {f.name for f in dataclasses.fields(DeviceCapabilityProfile)}


class DeviceCapabilityProfiler:
    """Builds a ``DeviceCapabilityProfile`` for the host."""

    def __init__(
        self,
        probe_timeout_ms: float = 1000.0,
        overrides: Optional[Dict[str, Any]] = None,
        gpu_detector: Optional[GPUDetector] = None,
    ):
        """
        Initialize profiler.

        Args:
            probe_timeout_ms: Upper bound for each asynchronous probe
            overrides: Fixed values for profile fields; detection is skipped
                for those fields. ``device_class`` may be overridden too.
            gpu_detector: Detector to rate the GPU with (default: a fresh one)
        """
        overrides = dict(overrides or {})
        unknown = set(overrides) - _PROFILE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown device override(s): {sorted(unknown)}")

        self.probe_timeout_ms = probe_timeout_ms
        self.overrides = overrides
        self.gpu_detector = gpu_detector
        self.sources: Dict[str, str] = {}

    async def profile(self) -> DeviceCapabilityProfile:
        """Probe the device and classify it."""
        self.sources = {}

        memory_gb = self._resolve("memory_gb", detectors.detect_memory_gb, detectors.DEFAULT_MEMORY_GB)
        cpu_cores = self._resolve("cpu_cores", detectors.detect_cpu_cores, detectors.DEFAULT_CPU_CORES)

        gpu = detectors.detect_gpu(self.gpu_detector) if not self._has_override("gpu_capability") else None
        gpu_info = gpu.value if gpu is not None else None
        if gpu is not None:
            self._note("gpu_capability", gpu)

        screen = detectors.detect_screen()
        self._note("screen", screen)
        width, height, density = detectors.DEFAULT_SCREEN
        refresh_rate = detectors.DEFAULT_REFRESH_RATE
        if screen.value is not None:
            width = screen.value.width
            height = screen.value.height
            density = screen.value.pixel_density
            refresh_rate = screen.value.refresh_rate

        supports_vrr = self._resolve("supports_vrr", detectors.detect_vrr_support, False)
        connection_type = self._resolve(
            "connection_type", detectors.detect_connection_type, ConnectionType.UNKNOWN
        )
        battery_level, low_power, thermal_state = await self._probe_power()

        fields: Dict[str, Any] = {
            "memory_gb": memory_gb,
            "cpu_cores": cpu_cores,
            "gpu_capability": gpu_info.capability if gpu_info else GPUCapability.BASIC,
            "screen_width": width,
            "screen_height": height,
            "pixel_density": density,
            "refresh_rate": refresh_rate,
            "supports_vrr": supports_vrr,
            "connection_type": connection_type,
            "battery_level": battery_level,
            "is_low_power_mode": low_power,
            "thermal_state": thermal_state,
            "platform_name": detectors.detect_platform_name().or_default("unknown"),
            "gpu_name": gpu_info.name if gpu_info else "unknown",
            "supports_gpu_compute": gpu_info.supports_compute if gpu_info else False,
        }
        fields.update({k: v for k, v in self.overrides.items() if k != "device_class"})

        profile = DeviceCapabilityProfile(**fields)
        device_class = self.overrides.get("device_class") or classify_device(profile)
        profile = dataclasses.replace(profile, device_class=device_class)

        logger.info(
            f"Device profiled as {profile.device_class}: {profile.memory_gb}GB, "
            f"{profile.cpu_cores} cores, GPU {profile.gpu_capability}, "
            f"{profile.screen_width}x{profile.screen_height}@{profile.pixel_density}x"
        )
        return profile

    async def refresh_power_state(self, profile: DeviceCapabilityProfile) -> DeviceCapabilityProfile:
        """Re-probe battery, power-saving and thermal state only."""
        battery_level, low_power, thermal_state = await self._probe_power()
        return profile.with_power_state(battery_level, low_power, thermal_state)

    async def _probe_power(self):
        battery = await detectors.detect_battery(self.probe_timeout_ms)
        self._note("battery_level", battery)
        battery_level = battery.value.percent if battery.value is not None else None
        if self._has_override("battery_level"):
            battery_level = self.overrides["battery_level"]

        if self._has_override("is_low_power_mode"):
            low_power = bool(self.overrides["is_low_power_mode"])
        else:
            low_power_probe = detectors.detect_low_power_mode(battery.value)
            self._note("is_low_power_mode", low_power_probe)
            low_power = low_power_probe.or_default(False)

        thermal_state = self._resolve("thermal_state", detectors.detect_thermal_state, ThermalState.NORMAL)
        return battery_level, low_power, thermal_state

    def _resolve(self, field: str, probe, default):
        if self._has_override(field):
            self.sources[field] = "override"
            return self.overrides[field]
        result = probe()
        self._note(field, result)
        return result.or_default(default)

    def _has_override(self, field: str) -> bool:
        return field in self.overrides

    def _note(self, field: str, result: Detected) -> None:
        self.sources[field] = result.source if result.available else f"default ({result.source})"


__all__ = ['DeviceCapabilityProfiler']
