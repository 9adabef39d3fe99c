"""
Capability Detectors

Each detector probes one signal and returns a ``Detected`` result. A probe
that is unsupported on this platform, or that fails, yields an empty result
and the caller substitutes the documented default, so profiling always
completes.
"""

import asyncio
import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Generic, List, Optional, Tuple, TypeVar

import psutil
from PySide6.QtGui import QGuiApplication

from qualityloop.device.profile import ConnectionType, ThermalState
from qualityloop.utils.gpu_detection import GPUDetector
from qualityloop.utils.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

PROBE_ERRORS = (OSError, RuntimeError, AttributeError, ValueError, TypeError, NotImplementedError)

# Conservative defaults used when a signal is unavailable
DEFAULT_MEMORY_GB = 4.0
DEFAULT_CPU_CORES = 4
DEFAULT_SCREEN = (1920, 1080, 1.0)
DEFAULT_REFRESH_RATE = 60.0
LOW_BATTERY_PERCENT = 20.0

PLATFORM_PROFILE_PATH = Path("/sys/firmware/acpi/platform_profile")
DRM_ROOT = Path("/sys/class/drm")

WIFI_PREFIXES = ("wl", "wlan", "wi-fi", "wifi", "airport")
CELLULAR_PREFIXES = ("wwan", "rmnet", "ppp", "ccmni")
LOOPBACK_NAMES = ("lo", "lo0", "loopback")


@dataclass(frozen=True)
class Detected(Generic[T]):
    """Outcome of a single probe: a value, or nothing plus the reason."""
    value: Optional[T]
    source: str

    @property
    def available(self) -> bool:
        return self.value is not None

    def or_default(self, default: T) -> T:
        return self.value if self.value is not None else default

    @classmethod
    def missing(cls, source: str) -> "Detected[T]":
        return cls(value=None, source=source)


@dataclass(frozen=True)
class ScreenInfo:
    width: int
    height: int
    pixel_density: float
    refresh_rate: float


@dataclass(frozen=True)
class BatteryInfo:
    percent: float
    power_plugged: Optional[bool]


@dataclass(frozen=True)
class GPUInfo:
    capability: str
    name: str
    supports_compute: bool


def detect_memory_gb() -> Detected[float]:
    """Total physical memory in GB."""
    try:
        total = psutil.virtual_memory().total
    except PROBE_ERRORS:
        logger.debug("memory probe failed", exc_info=True)
        return Detected.missing("psutil-error")
    return Detected(round(total / (1024 ** 3), 1), "psutil")


def detect_cpu_cores() -> Detected[int]:
    """Logical CPU count."""
    try:
        cores = psutil.cpu_count(logical=True)
    except PROBE_ERRORS:
        logger.debug("cpu probe failed", exc_info=True)
        return Detected.missing("psutil-error")
    if not cores:
        return Detected.missing("unreported")
    return Detected(int(cores), "psutil")


def detect_gpu(detector: Optional[GPUDetector] = None) -> Detected[GPUInfo]:
    """Rate the accelerator reported by PyTorch."""
    try:
        detector = detector or GPUDetector()
        info = GPUInfo(
            capability=detector.capability_tier(),
            name=detector.device_name or "unknown",
            supports_compute=detector.has_accelerator(),
        )
    except PROBE_ERRORS:
        logger.debug("gpu probe failed", exc_info=True)
        return Detected.missing("torch-error")
    return Detected(info, f"torch:{detector.get_backend()}")


def detect_screen() -> Detected[ScreenInfo]:
    """
    Primary screen geometry, pixel ratio and refresh rate.

    Only reads an existing ``QGuiApplication``; creating one here would grab
    a display connection the host never asked for.
    """
    try:
        app = QGuiApplication.instance()
        if app is None:
            return Detected.missing("no-qt-application")
        screen = app.primaryScreen()
        if screen is None:
            return Detected.missing("no-screen")
        size = screen.size()
        info = ScreenInfo(
            width=int(size.width()),
            height=int(size.height()),
            pixel_density=float(screen.devicePixelRatio()) or 1.0,
            refresh_rate=float(screen.refreshRate()) or DEFAULT_REFRESH_RATE,
        )
    except PROBE_ERRORS:
        logger.debug("screen probe failed", exc_info=True)
        return Detected.missing("qt-error")
    return Detected(info, "qt")


def detect_vrr_support(drm_root: Path = DRM_ROOT) -> Detected[bool]:
    """Variable refresh rate capability of any connected display (Linux DRM)."""
    try:
        flags = list(drm_root.glob("card*-*/vrr_capable"))
        if not flags:
            return Detected.missing("no-drm")
        capable = any(flag.read_text().strip() == "1" for flag in flags)
    except PROBE_ERRORS:
        logger.debug("vrr probe failed", exc_info=True)
        return Detected.missing("drm-error")
    return Detected(capable, "drm")


def classify_interfaces(interfaces: List[Tuple[str, bool, int]]) -> str:
    """
    Pick a connection class from ``(name, is_up, speed_mbps)`` tuples.

    A fast wired link wins over wifi, wifi over cellular, cellular over a
    slow wired link.
    """
    has_fast = has_wifi = has_cellular = has_slow = False
    for name, is_up, speed in interfaces:
        lowered = name.lower()
        if not is_up or lowered in LOOPBACK_NAMES:
            continue
        if lowered.startswith(WIFI_PREFIXES):
            has_wifi = True
        elif lowered.startswith(CELLULAR_PREFIXES):
            has_cellular = True
        elif speed >= 100:
            has_fast = True
        elif 0 < speed < 10:
            has_slow = True

    if has_fast:
        return ConnectionType.FAST
    if has_wifi:
        return ConnectionType.WIFI
    if has_cellular:
        return ConnectionType.CELLULAR
    if has_slow:
        return ConnectionType.SLOW
    return ConnectionType.UNKNOWN


def detect_connection_type() -> Detected[str]:
    """Connection class of the active network interfaces."""
    try:
        stats = psutil.net_if_stats()
    except PROBE_ERRORS:
        logger.debug("network probe failed", exc_info=True)
        return Detected.missing("psutil-error")
    interfaces = [(name, st.isup, st.speed) for name, st in stats.items()]
    return Detected(classify_interfaces(interfaces), "psutil")


def _read_battery() -> Optional[BatteryInfo]:
    sensors_battery = getattr(psutil, "sensors_battery", None)
    if sensors_battery is None:
        return None
    battery = sensors_battery()
    if battery is None:
        return None
    return BatteryInfo(percent=float(battery.percent), power_plugged=battery.power_plugged)


async def detect_battery(timeout_ms: float = 1000.0) -> Detected[BatteryInfo]:
    """
    Battery charge, read off the loop with a bounded wait.

    Sensor reads can block on slow ACPI firmware, so the probe runs in the
    default executor and is abandoned after ``timeout_ms``.
    """
    loop = asyncio.get_running_loop()
    try:
        info = await asyncio.wait_for(
            loop.run_in_executor(None, _read_battery),
            timeout=timeout_ms / 1000.0,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Battery probe timed out after {timeout_ms:.0f}ms")
        return Detected.missing("timeout")
    except PROBE_ERRORS:
        logger.debug("battery probe failed", exc_info=True)
        return Detected.missing("psutil-error")
    if info is None:
        return Detected.missing("no-battery")
    return Detected(info, "psutil")


def detect_low_power_mode(
    battery: Optional[BatteryInfo],
    profile_path: Path = PLATFORM_PROFILE_PATH,
) -> Detected[bool]:
    """
    OS power-saving state.

    A discharging battery under 20% counts as power saving, as does an ACPI
    platform profile of ``low-power``.
    """
    if battery is not None and battery.power_plugged is not True and battery.percent < LOW_BATTERY_PERCENT:
        return Detected(True, "battery")
    try:
        if profile_path.exists():
            return Detected(profile_path.read_text().strip() == "low-power", "platform-profile")
    except PROBE_ERRORS:
        logger.debug("platform profile probe failed", exc_info=True)
        return Detected.missing("platform-profile-error")
    return Detected.missing("unsupported")


def thermal_state_from_readings(readings: List[Tuple[float, Optional[float], Optional[float]]]) -> str:
    """
    Worst thermal state over ``(current, high, critical)`` sensor readings.

    A sensor within 10 degrees of its ``high`` mark counts as fair.
    """
    order = (ThermalState.NORMAL, ThermalState.FAIR, ThermalState.SERIOUS, ThermalState.CRITICAL)
    worst = 0
    for current, high, critical in readings:
        if critical and current >= critical:
            state = 3
        elif high and current >= high:
            state = 2
        elif high and current >= high - 10:
            state = 1
        else:
            state = 0
        worst = max(worst, state)
    return order[worst]


def detect_thermal_state() -> Detected[str]:
    """Thermal state from hardware temperature sensors."""
    sensors_temperatures = getattr(psutil, "sensors_temperatures", None)
    if sensors_temperatures is None:
        return Detected.missing("unsupported")
    try:
        sensors = sensors_temperatures()
    except PROBE_ERRORS:
        logger.debug("thermal probe failed", exc_info=True)
        return Detected.missing("psutil-error")
    readings = [
        (entry.current, entry.high, entry.critical)
        for entries in sensors.values()
        for entry in entries
        if entry.current is not None
    ]
    if not readings:
        return Detected.missing("no-sensors")
    return Detected(thermal_state_from_readings(readings), "psutil")


def detect_platform_name() -> Detected[str]:
    name = platform.system()
    if not name:
        return Detected.missing("unreported")
    return Detected(f"{name} {platform.machine()}".strip(), "platform")


__all__ = [
    'Detected',
    'ScreenInfo',
    'BatteryInfo',
    'GPUInfo',
    'DEFAULT_MEMORY_GB',
    'DEFAULT_CPU_CORES',
    'DEFAULT_SCREEN',
    'DEFAULT_REFRESH_RATE',
    'LOW_BATTERY_PERCENT',
    'detect_memory_gb',
    'detect_cpu_cores',
    'detect_gpu',
    'detect_screen',
    'detect_vrr_support',
    'classify_interfaces',
    'detect_connection_type',
    'detect_battery',
    'detect_low_power_mode',
    'thermal_state_from_readings',
    'detect_thermal_state',
    'detect_platform_name',
]
