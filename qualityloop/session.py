"""
Quality Session

Composition root: builds the scheduler, profiler, collector, quality
manager and exporter from one ``AppConfig`` and wires the sampler's metrics
into the control loop.
"""

import asyncio
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import List, Optional

from qualityloop.collection.collector import PerformanceDataCollector
from qualityloop.device.profile import DeviceCapabilityProfile
from qualityloop.device.profiler import DeviceCapabilityProfiler
from qualityloop.export.analysis import PerformanceAnalysisReport
from qualityloop.export.exporter import ExportOptions, ExportResult, PerformanceDataExportManager
from qualityloop.quality.events import QualityChangedEvent
from qualityloop.quality.manager import AdaptiveQualityManager
from qualityloop.utils.config import AppConfig
from qualityloop.utils.logging_config import get_logger
from qualityloop.utils.scheduling import AsyncioScheduler, Scheduler

logger = get_logger(__name__)


class QualitySession:
    """One monitoring session on a single scheduler."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        scheduler: Optional[Scheduler] = None,
        profiler: Optional[DeviceCapabilityProfiler] = None,
        executor: Optional[Executor] = None,
    ):
        """
        Initialize session.

        Args:
            config: Application configuration
            scheduler: Scheduler to run on (default: ``AsyncioScheduler`` on
                the running loop, created by ``start``)
            profiler: Device profiler (default: built from ``config.device``)
            executor: Aggregation worker; one is created when
                ``collection.use_worker`` is set and none is given
        """
        self.config = config or AppConfig()
        self.scheduler = scheduler
        self.profiler = profiler or DeviceCapabilityProfiler(
            probe_timeout_ms=self.config.device.probe_timeout_ms,
            overrides=self.config.device.overrides,
        )

        self._owns_executor = executor is None and self.config.collection.use_worker
        if self._owns_executor:
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="qualityloop-aggregate")
        self.executor = executor

        self.manager: Optional[AdaptiveQualityManager] = None
        self.collector: Optional[PerformanceDataCollector] = None
        self.exporter = PerformanceDataExportManager(self.config.export)
        self.timeline: List[QualityChangedEvent] = []
        self._power_task: Optional["asyncio.Task[None]"] = None

    def build(self) -> None:
        """Create the components; ``start`` calls this when needed."""
        if self.manager is not None:
            return
        if self.scheduler is None:
            self.scheduler = AsyncioScheduler()

        self.manager = AdaptiveQualityManager(
            self.scheduler, config=self.config.quality, profiler=self.profiler
        )
        self.manager.on_quality_change(self.timeline.append)

        forward = None
        if self.config.collection.forward_to_quality_manager:
            forward = self.manager.update_performance_metrics
        self.collector = PerformanceDataCollector(
            self.scheduler,
            config=self.config.collection,
            quality_snapshot=self.manager.quality_snapshot,
            metrics_listener=forward,
            executor=self.executor,
        )

    async def start(self) -> Optional[DeviceCapabilityProfile]:
        """Profile the device, pick the initial level and begin sampling."""
        self.build()
        profile = await self.manager.initialize()
        self.exporter.device_profile = profile
        self.collector.start_collection()
        logger.info(f"Session started at quality level {self.manager.get_current_quality_level()}")

        interval = self.config.device.power_refresh_interval_ms
        if profile is not None and interval > 0 and isinstance(self.scheduler, AsyncioScheduler):
            self._power_task = asyncio.ensure_future(self._refresh_power_state(interval))
        return profile

    async def run(self, duration_s: float) -> None:
        """Start, keep sampling for ``duration_s`` seconds, then stop."""
        await self.start()
        try:
            await asyncio.sleep(duration_s)
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop sampling and aggregate anything still queued."""
        if self._power_task is not None:
            self._power_task.cancel()
            self._power_task = None
        if self.collector is not None:
            self.collector.stop_collection()

    def close(self) -> None:
        """Stop and tear down every component."""
        self.stop()
        if self.manager is not None:
            self.manager.destroy()
        if self._owns_executor and self.executor is not None:
            self.executor.shutdown(wait=False)
            self.executor = None

    def export(self, options: Optional[ExportOptions] = None) -> ExportResult:
        return self.exporter.export_data(
            self.collector.get_raw_data(),
            self.collector.get_aggregated_data(),
            options or ExportOptions.from_config(self.config.export),
        )

    def analyze(self) -> PerformanceAnalysisReport:
        return self.exporter.generate_detailed_analysis(
            self.collector.get_raw_data(),
            self.collector.get_aggregated_data(),
        )

    async def _refresh_power_state(self, interval_ms: float) -> None:
        while True:
            await asyncio.sleep(interval_ms / 1000.0)
            profile = self.manager.get_device_profile()
            if profile is None:
                return
            refreshed = await self.profiler.refresh_power_state(profile)
            self.manager.apply_power_state(
                refreshed.battery_level, refreshed.is_low_power_mode, refreshed.thermal_state
            )
            self.exporter.device_profile = self.manager.get_device_profile()


__all__ = ['QualitySession']
