"""Device capability detection and classification."""

from .profile import (
    ConnectionType,
    DeviceCapabilityProfile,
    DeviceClass,
    ThermalState,
    classify_device,
    score_device,
)
from .detectors import Detected
from .profiler import DeviceCapabilityProfiler

__all__ = [
    "DeviceCapabilityProfile",
    "DeviceCapabilityProfiler",
    "DeviceClass",
    "ConnectionType",
    "ThermalState",
    "Detected",
    "classify_device",
    "score_device",
]
