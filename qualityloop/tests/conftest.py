"""
Shared fixtures
"""

import pytest

from qualityloop.device.profile import DeviceCapabilityProfile, DeviceClass
from qualityloop.utils.gpu_detection import GPUCapability
from qualityloop.utils.scheduling import ManualScheduler


def build_profile(**fields) -> DeviceCapabilityProfile:
    values = dict(
        memory_gb=4.0,
        cpu_cores=4,
        gpu_capability=GPUCapability.BASIC,
        screen_width=1280,
        screen_height=720,
        pixel_density=1.0,
        refresh_rate=60.0,
        supports_vrr=False,
        connection_type="wifi",
        battery_level=None,
        is_low_power_mode=False,
        thermal_state="normal",
        device_class=DeviceClass.MID_RANGE,
    )
    values.update(fields)
    return DeviceCapabilityProfile(**values)


class StaticProfiler:
    """Profiler stand-in returning a fixed profile."""

    def __init__(self, profile):
        self.profile_value = profile
        self.calls = 0

    async def profile(self):
        self.calls += 1
        return self.profile_value

    async def refresh_power_state(self, profile):
        return profile


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def make_profile():
    return build_profile
