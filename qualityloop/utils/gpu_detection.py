"""
GPU Detection Utility

Detects CUDA (NVIDIA) or MPS (Apple Silicon) accelerators through PyTorch and
rates them into the capability tiers used by device classification.
Supports environment overrides for deterministic behaviour in CI.
"""

import os
import platform
from typing import Any, Dict, List, Optional

import torch

from qualityloop.utils.logging_config import get_logger

logger = get_logger(__name__)

BACKEND_ENV_VAR = "QUALITYLOOP_GPU_BACKEND"

# Substrings of discrete, gaming-class adapters
HIGH_PERFORMANCE_MARKERS = ("RTX", "GTX", "Radeon RX", "Tesla", "A100", "H100", "Quadro")
HIGH_PERFORMANCE_MEMORY_GB = 8.0


class GPUBackend:
    """GPU backend types."""
    CUDA = "cuda"
    MPS = "mps"
    CPU = "cpu"


class GPUCapability:
    """GPU capability tiers, weakest first."""
    NONE = "none"
    BASIC = "basic"
    ADVANCED = "advanced"
    HIGH_PERFORMANCE = "high-performance"


class GPUDetector:
    """Detects the available GPU backend and its capability tier."""

    def __init__(self):
        self.backend: Optional[str] = None
        self.device_name: Optional[str] = None
        self.device_index: Optional[int] = None
        self.total_memory_gb: Optional[float] = None
        self._force_backend = (os.getenv(BACKEND_ENV_VAR) or "").strip().lower()
        self._detect_backend()

    def _detect_backend(self) -> None:
        """Detect available GPU backend."""
        if self._apply_forced_backend():
            return

        try:
            if torch.cuda.is_available():
                self._set_cuda()
                return
            if self._mps_available():
                self._set_mps()
                return
        except (RuntimeError, AssertionError) as exc:
            logger.warning(f"GPU probe failed, assuming CPU only: {exc}")

        self._set_cpu(reason="no-gpu")

    def _apply_forced_backend(self) -> bool:
        """Apply forced backend selection via environment variable."""
        if not self._force_backend:
            return False

        backend = self._force_backend
        if backend not in {GPUBackend.CUDA, GPUBackend.MPS, GPUBackend.CPU}:
            logger.warning(f"Unsupported {BACKEND_ENV_VAR}='{backend}'. Ignoring.")
            return False

        if backend == GPUBackend.CUDA:
            if torch.cuda.is_available():
                self._set_cuda(forced=True)
                return True
            logger.warning(f"{BACKEND_ENV_VAR}=cuda requested but CUDA is unavailable. Falling back to auto-detect.")
            return False
        if backend == GPUBackend.MPS:
            if self._mps_available():
                self._set_mps(forced=True)
                return True
            logger.warning(f"{BACKEND_ENV_VAR}=mps requested but MPS is unavailable. Falling back to auto-detect.")
            return False
        self._set_cpu(reason="forced")
        return True

    def _set_cuda(self, forced: bool = False) -> None:
        """Record CUDA backend details without changing the active device."""
        device_count = torch.cuda.device_count()
        if device_count == 0:
            raise RuntimeError("CUDA reported no devices")

        device_index = torch.cuda.current_device()
        properties = torch.cuda.get_device_properties(device_index)
        self.backend = GPUBackend.CUDA
        self.device_name = torch.cuda.get_device_name(device_index)
        self.device_index = device_index
        self.total_memory_gb = properties.total_memory / 1e9
        prefix = "CUDA backend forced" if forced else "CUDA backend detected"
        logger.info(f"{prefix}: {self.device_name} (device {device_index})")

    def _mps_available(self) -> bool:
        """Return True if PyTorch MPS backend is available and built."""
        mps = getattr(torch.backends, "mps", None)
        if mps is None:
            return False
        is_built_fn = getattr(mps, "is_built", None)
        is_built = is_built_fn() if callable(is_built_fn) else True
        return bool(mps.is_available() and is_built)

    def _set_mps(self, forced: bool = False) -> None:
        """Record MPS backend details."""
        self.backend = GPUBackend.MPS
        self.device_name = "Apple Silicon (MPS)"
        self.device_index = None
        self.total_memory_gb = None
        prefix = "MPS backend forced" if forced else "MPS backend detected"
        logger.info(f"{prefix}: {self.device_name}")

    def _set_cpu(self, reason: str = "") -> None:
        """Record CPU-only backend."""
        self.backend = GPUBackend.CPU
        self.device_name = "CPU"
        self.device_index = None
        self.total_memory_gb = None
        suffix = f" ({reason})" if reason else ""
        logger.info(f"CPU backend selected{suffix}.")

    def get_backend(self) -> str:
        """Get the backend type as string."""
        return self.backend or GPUBackend.CPU

    def get_available_backends(self) -> List[str]:
        """Return the list of detected, usable backends."""
        backends: List[str] = [GPUBackend.CPU]
        if torch.cuda.is_available():
            backends.append(GPUBackend.CUDA)
        if self._mps_available():
            backends.append(GPUBackend.MPS)
        return backends

    def has_accelerator(self) -> bool:
        """True when a CUDA or MPS device is in use."""
        return self.get_backend() != GPUBackend.CPU

    def capability_tier(self) -> str:
        """
        Rate the detected accelerator.

        Returns:
            One of the ``GPUCapability`` values. A CPU-only host still renders
            through an integrated adapter, so it rates ``basic`` rather than
            ``none``.
        """
        if self.backend == GPUBackend.CUDA:
            name = self.device_name or ""
            if any(marker in name for marker in HIGH_PERFORMANCE_MARKERS):
                return GPUCapability.HIGH_PERFORMANCE
            if (self.total_memory_gb or 0.0) >= HIGH_PERFORMANCE_MEMORY_GB:
                return GPUCapability.HIGH_PERFORMANCE
            return GPUCapability.ADVANCED
        if self.backend == GPUBackend.MPS:
            return GPUCapability.ADVANCED
        return GPUCapability.BASIC

    def get_device_info(self) -> Dict[str, Any]:
        """Get detailed device information."""
        info: Dict[str, Any] = {
            "backend": self.backend,
            "device_name": self.device_name,
            "capability": self.capability_tier(),
            "platform": platform.system(),
            "architecture": platform.machine(),
            "device_index": self.device_index,
        }
        if self.total_memory_gb is not None:
            info["gpu_memory"] = f"{self.total_memory_gb:.2f} GB"
        return info


# Hardware does not change under a running process, so detection is cached
_detector: Optional[GPUDetector] = None


def get_gpu_detector() -> GPUDetector:
    """Get or create the cached GPU detector instance."""
    global _detector
    if _detector is None:
        _detector = GPUDetector()
    return _detector


def reset_gpu_detector() -> None:
    """Reset the cached GPU detector (primarily for testing)."""
    global _detector
    _detector = None


__all__ = [
    'GPUBackend',
    'GPUCapability',
    'GPUDetector',
    'get_gpu_detector',
    'reset_gpu_detector',
    'BACKEND_ENV_VAR',
]
