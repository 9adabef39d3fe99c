"""
Device Capability Profile

Immutable snapshot of the host's hardware, display, network and power
signals, plus the additive point system that turns it into a device class.
"""

from dataclasses import dataclass, replace, asdict
from typing import Any, Dict, Optional

from qualityloop.utils.gpu_detection import GPUCapability


class DeviceClass:
    """Device classes, weakest first."""
    LOW_END = "low-end"
    MID_RANGE = "mid-range"
    HIGH_END = "high-end"
    PREMIUM = "premium"

    ALL = (LOW_END, MID_RANGE, HIGH_END, PREMIUM)


class ConnectionType:
    SLOW = "slow"
    FAST = "fast"
    WIFI = "wifi"
    CELLULAR = "cellular"
    UNKNOWN = "unknown"


class ThermalState:
    NORMAL = "normal"
    FAIR = "fair"
    SERIOUS = "serious"
    CRITICAL = "critical"


# Score thresholds, highest first
PREMIUM_SCORE = 11
HIGH_END_SCORE = 8
MID_RANGE_SCORE = 5

FULL_HD_PIXELS = 1920 * 1080
HD_PIXELS = 1280 * 720


@dataclass(frozen=True)
class DeviceCapabilityProfile:
    """Capabilities of the device, captured once per session."""
    # Hardware
    memory_gb: float
    cpu_cores: int
    gpu_capability: str

    # Display
    screen_width: int
    screen_height: int
    pixel_density: float
    refresh_rate: float
    supports_vrr: bool

    # Network and power
    connection_type: str
    battery_level: Optional[float]
    is_low_power_mode: bool
    thermal_state: str

    device_class: str = DeviceClass.MID_RANGE

    # Software
    platform_name: str = "unknown"
    gpu_name: str = "unknown"
    supports_gpu_compute: bool = False

    @property
    def total_pixels(self) -> int:
        return self.screen_width * self.screen_height

    def with_power_state(
        self,
        battery_level: Optional[float],
        is_low_power_mode: bool,
        thermal_state: Optional[str] = None,
    ) -> "DeviceCapabilityProfile":
        """Copy with refreshed power fields; hardware fields never change."""
        return replace(
            self,
            battery_level=battery_level,
            is_low_power_mode=is_low_power_mode,
            thermal_state=thermal_state or self.thermal_state,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def score_device(profile: DeviceCapabilityProfile) -> int:
    """
    Sum capability points for a profile.

    Memory and CPU contribute up to 3 points each, the GPU up to 4 and the
    display (resolution plus pixel density) up to 3.
    """
    score = 0

    if profile.memory_gb >= 8:
        score += 3
    elif profile.memory_gb >= 4:
        score += 2
    elif profile.memory_gb >= 2:
        score += 1

    if profile.cpu_cores >= 8:
        score += 3
    elif profile.cpu_cores >= 4:
        score += 2
    elif profile.cpu_cores >= 2:
        score += 1

    if profile.gpu_capability == GPUCapability.HIGH_PERFORMANCE:
        score += 4
    elif profile.gpu_capability == GPUCapability.ADVANCED:
        score += 3
    elif profile.gpu_capability == GPUCapability.BASIC:
        score += 2

    if profile.total_pixels >= FULL_HD_PIXELS:
        score += 2
    elif profile.total_pixels >= HD_PIXELS:
        score += 1

    if profile.pixel_density >= 2:
        score += 1

    return score


def classify_device(profile: DeviceCapabilityProfile) -> str:
    """Map a profile to a ``DeviceClass`` value. Pure: same input, same class."""
    score = score_device(profile)
    if score >= PREMIUM_SCORE:
        return DeviceClass.PREMIUM
    if score >= HIGH_END_SCORE:
        return DeviceClass.HIGH_END
    if score >= MID_RANGE_SCORE:
        return DeviceClass.MID_RANGE
    return DeviceClass.LOW_END


__all__ = [
    'DeviceCapabilityProfile',
    'DeviceClass',
    'ConnectionType',
    'ThermalState',
    'score_device',
    'classify_device',
]
