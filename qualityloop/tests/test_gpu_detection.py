"""
Tests for GPU Detection
"""

from qualityloop.utils.gpu_detection import (
    BACKEND_ENV_VAR,
    GPUBackend,
    GPUCapability,
    GPUDetector,
    get_gpu_detector,
    reset_gpu_detector,
)


def test_gpu_detector_initialization():
    """Test GPU detector initialization."""
    detector = GPUDetector()
    assert detector.backend in ["cuda", "mps", "cpu"]
    assert detector.device_name is not None


def test_get_gpu_detector_is_cached():
    reset_gpu_detector()
    detector1 = get_gpu_detector()
    detector2 = get_gpu_detector()
    assert detector1 is detector2


def test_device_info():
    """Test device info retrieval."""
    info = GPUDetector().get_device_info()
    assert "backend" in info
    assert "device_name" in info
    assert "capability" in info
    assert "platform" in info


def test_available_backends_contains_cpu():
    assert GPUBackend.CPU in GPUDetector().get_available_backends()


def test_forced_cpu_backend_rates_basic(monkeypatch):
    monkeypatch.setenv(BACKEND_ENV_VAR, "cpu")
    detector = GPUDetector()
    assert detector.get_backend() == GPUBackend.CPU
    assert not detector.has_accelerator()
    assert detector.capability_tier() == GPUCapability.BASIC


def test_unknown_forced_backend_is_ignored(monkeypatch):
    monkeypatch.setenv(BACKEND_ENV_VAR, "tpu")
    detector = GPUDetector()
    assert detector.get_backend() in GPUDetector().get_available_backends()


def test_capability_tiers_for_cuda_adapters(monkeypatch):
    monkeypatch.setenv(BACKEND_ENV_VAR, "cpu")
    detector = GPUDetector()

    detector.backend = GPUBackend.CUDA
    detector.device_name = "NVIDIA GeForce RTX 4090"
    assert detector.capability_tier() == GPUCapability.HIGH_PERFORMANCE

    detector.device_name = "Some Laptop GPU"
    detector.total_memory_gb = 4.0
    assert detector.capability_tier() == GPUCapability.ADVANCED

    detector.total_memory_gb = 12.0
    assert detector.capability_tier() == GPUCapability.HIGH_PERFORMANCE

    detector.backend = GPUBackend.MPS
    assert detector.capability_tier() == GPUCapability.ADVANCED
