"""
Command Line Entry Point

Runs a monitoring session on asyncio for a fixed duration, prints the
quality timeline and exports a report.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from qualityloop.export.exporter import ExportOptions
from qualityloop.session import QualitySession
from qualityloop.utils.config import AppConfig, ConfigManager, load_config_data
from qualityloop.utils.logging_config import setup_logging
from qualityloop.utils.validation import EXPORT_FORMAT_NAMES, ValidationError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qualityloop",
        description="Adaptive quality monitoring session",
    )
    parser.add_argument("--duration", type=float, default=10.0, help="Session length in seconds")
    parser.add_argument("--config", type=str, default=None, help="JSON or YAML config file")
    parser.add_argument("--format", choices=EXPORT_FORMAT_NAMES, default=None,
                        help="Report format (default: from config)")
    parser.add_argument("--output-dir", type=str, default=None, help="Directory for the exported report")
    parser.add_argument("--log-level", type=str, default=None,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level")
    return parser


async def run_session(config: AppConfig, duration_s: float, options: ExportOptions) -> int:
    session = QualitySession(config)
    try:
        await session.run(duration_s)

        print("\nQuality timeline")
        print("=" * 60)
        profile = session.manager.get_device_profile()
        if profile is not None:
            print(f"Device class: {profile.device_class} ({profile.platform_name})")
        strategy = session.manager.get_active_strategy()
        print(f"Strategy: {strategy.name if strategy else 'none'}")
        if not session.timeline:
            print(f"No level changes; stayed at {session.manager.get_current_quality_level()}")
        for event in session.timeline:
            print(f"  t={event.timestamp:10.1f}ms  {event.old_level} -> {event.new_level}  ({event.reason})")

        stats = session.collector.get_collection_stats()
        print(f"\nSamples: {stats.total_data_points}, windows: {stats.cache_size}, "
              f"avg overhead: {stats.avg_overhead:.3f}ms")

        result = session.export(options)
    finally:
        session.close()

    if not result.success:
        print(f"Export failed: {result.error}", file=sys.stderr)
        return 1
    print(f"Exported {result.format} report: {result.download_url or result.file_name} "
          f"({result.size} bytes, {result.data_points} data points)")
    if result.download_url is None and options.format == "summary" and options.compression_level == "none":
        print()
        print(result.content.decode("utf-8"))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, configure logging and run one session."""
    args = build_parser().parse_args(argv)

    try:
        if args.config:
            # An explicitly named file must load; the default location may be absent
            config = AppConfig.from_dict(load_config_data(Path(args.config)))
        else:
            config = ConfigManager().get()
        if args.log_level:
            config.log_level = args.log_level
        options = ExportOptions.from_config(
            config.export,
            format=args.format,
            output_dir=args.output_dir,
        )
    except (ValidationError, TypeError, ValueError, OSError, yaml.YAMLError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    logger = setup_logging(
        log_dir=Path(config.log_dir) if config.log_dir else None,
        log_level=getattr(logging, config.log_level.upper(), logging.INFO),
        enable_file_logging=config.enable_file_logging,
        enable_console_logging=True,
    )
    logger.info(f"Starting qualityloop session for {args.duration:.1f}s")

    try:
        return asyncio.run(run_session(config, args.duration, options))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


__all__ = ['main', 'build_parser', 'run_session']
