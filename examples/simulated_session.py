"""
Simulated Session Demo

Replays a scripted frame-rate and memory trace through the quality manager
on virtual time and prints every decision it makes.
"""

import sys
import argparse
import asyncio
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from qualityloop.collection.collector import PerformanceDataCollector
from qualityloop.device.profiler import DeviceCapabilityProfiler
from qualityloop.export.exporter import ExportOptions, PerformanceDataExportManager
from qualityloop.quality.manager import AdaptiveQualityManager
from qualityloop.utils.config import CollectionConfig
from qualityloop.utils.scheduling import ManualScheduler


# (duration_ms, fps, memory_mb) phases of the trace
TRACE = [
    (3000, 58.0, 60.0),
    (4000, 22.0, 240.0),
    (8000, 59.0, 40.0),
    (8000, 59.0, 40.0),
]


def main():
    """Main demo function."""
    parser = argparse.ArgumentParser(description="qualityloop simulated session")
    parser.add_argument("--device-class", type=str, default="mid-range",
                        choices=["low-end", "mid-range", "high-end", "premium"])
    parser.add_argument("--battery", type=float, default=None, help="Battery percent")
    parser.add_argument("--format", type=str, default="summary",
                        choices=["json", "csv", "metrics", "summary"])
    args = parser.parse_args()

    print("qualityloop Simulated Session")
    print("=" * 60)

    scheduler = ManualScheduler(start_ms=1_000_000)
    profiler = DeviceCapabilityProfiler(overrides={
        "device_class": args.device_class,
        "battery_level": args.battery,
        "is_low_power_mode": False,
    })
    manager = AdaptiveQualityManager(scheduler, profiler=profiler)
    manager.on_quality_change(
        lambda e: print(f"  t={e.timestamp:.0f}ms  {e.old_level} -> {e.new_level} ({e.reason})")
    )
    manager.on_optimization_applied(lambda e: print(f"  + {e.optimization.identifier}"))
    manager.on_optimization_removed(lambda e: print(f"  - {e.optimization.identifier}"))

    profile = asyncio.run(manager.initialize())
    print(f"Device class: {profile.device_class}")
    print(f"Strategy: {manager.get_active_strategy().name}")
    print(f"Initial level: {manager.get_current_quality_level()}\n")

    # Memory comes from the trace rather than this process
    trace_memory = {"value": TRACE[0][2]}
    collector = PerformanceDataCollector(
        scheduler,
        config=CollectionConfig(sampling_interval_ms=100.0),
        quality_snapshot=manager.quality_snapshot,
        memory_probe=lambda: trace_memory["value"],
        gpu_present=False,
    )
    collector.start_collection()

    step_ms = 100.0
    for duration_ms, fps, memory_mb in TRACE:
        trace_memory["value"] = memory_mb
        elapsed = 0.0
        while elapsed < duration_ms:
            scheduler.advance(step_ms)
            manager.update_performance_metrics(fps, memory_mb)
            collector.collect_operation_data("render-frame", 1000.0 / fps)
            elapsed += step_ms

    collector.stop_collection()
    print(f"\nFinal level: {manager.get_current_quality_level()}")

    exporter = PerformanceDataExportManager(device_profile=profile)
    result = exporter.export_data(
        collector.get_raw_data(),
        collector.get_aggregated_data(),
        ExportOptions(format=args.format, include_raw_data=args.format != "json"),
    )
    print(f"Export: {result.file_name} ({result.size} bytes, success={result.success})\n")
    if args.format in ("summary", "metrics"):
        print(result.content.decode("utf-8"))


if __name__ == "__main__":
    main()
