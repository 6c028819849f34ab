#!/usr/bin/env python3
"""TrackDrop - entry point

Runs the discovery scheduler as a service, or performs one-off generation and
configuration checks from the command line.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

from trackdrop import __version__
from trackdrop.app import TrackDropApp
from trackdrop.config import ENV_TEMPLATE, load_config
from trackdrop.errors import ConfigError, TrackDropError, category_of
from trackdrop.models.config_models import TrackDropConfig
from trackdrop.monitoring.metrics import setup_metrics
from trackdrop.scheduler.cron import next_runs
from trackdrop.utils.logging_config import setup_logging


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trackdrop",
        description="TrackDrop - collaborative playlist bot with weekly discovery playlists",
        epilog="Configure via environment variables - see --print-env-template",
    )
    parser.add_argument(
        "--generate-now",
        action="store_true",
        help="Generate the discovery playlist once and exit"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="With --generate-now, show the playlist without replacing it"
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate configuration, show upcoming runs and exit"
    )
    parser.add_argument(
        "--show-stats",
        action="store_true",
        help="Print statistics for both playlists and exit"
    )
    parser.add_argument(
        "--print-env-template",
        action="store_true",
        help="Print an environment variable template and exit"
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write logs to this file"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def print_config_summary(config: TrackDropConfig) -> None:
    print("✓ Configuration is valid")
    print(f"  Collaborative playlist: {config.playlists.collaborative_playlist_id}")
    print(f"  Discovery playlist:     {config.playlists.discovery_playlist_id}")
    print(f"  Target channel:         {config.chat.target_channel_id}")
    print(f"  Retry attempts:         {config.retry.max_attempts}")
    print(f"  Schedule:               {config.scheduling.cron_expression}"
          f"{'' if config.scheduling.enabled else ' (disabled)'}")
    print("  Next runs (UTC):")
    for run in next_runs(config.scheduling.cron_expression, 3):
        print(f"    {run.strftime('%Y-%m-%d %H:%M %a')}")


async def generate_once(config: TrackDropConfig, dry_run: bool) -> int:
    async with TrackDropApp(config) as app:
        try:
            result = await app.generate_now(dry_run=dry_run)
        except TrackDropError as e:
            logger.error("❌ Generation failed (%s): %s", category_of(e).value, e)
            return 1
    logger.info("✅ Discovery playlist %s: %d tracks, %s",
                "previewed" if dry_run else "published",
                result.track_count, result.stats.duration_display)
    return 0


async def show_stats(config: TrackDropConfig) -> int:
    async with TrackDropApp(config) as app:
        try:
            summary = await app.store.summary(
                config.playlists.collaborative_playlist_id,
                config.playlists.discovery_playlist_id,
            )
            generation = await app.pipeline.generation_stats()
        except TrackDropError as e:
            logger.error("❌ Could not read playlists (%s): %s", category_of(e).value, e)
            return 1
    print(summary.format_summary())
    print(generation.format_stats())
    return 0


async def serve(config: TrackDropConfig) -> int:
    """Run until SIGINT or SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            logger.debug("Signal handlers not supported on this platform")

    async with TrackDropApp(config) as app:
        handle = await app.start_scheduler()
        if handle is None:
            logger.info("No schedule active; waiting for shutdown signal")
        else:
            for line in handle.format_stats().splitlines():
                logger.info("%s", line)
        logger.info("TrackDrop running, watching channel %d", config.chat.target_channel_id)
        await stop.wait()
        logger.info("Shutdown requested")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.print_env_template:
        print(ENV_TEMPLATE, end="")
        return 0

    setup_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_format=os.getenv("LOG_FORMAT", "text"),
        log_file=args.log_file,
    )

    try:
        config = load_config()
    except ConfigError as e:
        logger.error("❌ %s", e)
        print(ENV_TEMPLATE, file=sys.stderr, end="")
        return 1

    setup_logging(config.logging.level, config.logging.format, args.log_file)

    if args.check_config:
        print_config_summary(config)
        return 0

    if args.show_stats:
        return asyncio.run(show_stats(config))

    if config.monitoring.metrics_enabled:
        setup_metrics(enabled=True, port=config.monitoring.metrics_port)

    if args.generate_now:
        return asyncio.run(generate_once(config, args.dry_run))

    if args.dry_run:
        logger.warning("--dry-run only applies with --generate-now")

    try:
        return asyncio.run(serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())
