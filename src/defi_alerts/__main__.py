"""Run one alert scan.

Usage:
    python -m defi_alerts
    python -m defi_alerts --dry-run
    python -m defi_alerts --init-schema --json

Configuration is read from the environment and ``.env``; see
:mod:`defi_alerts.config`.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys

from redis.asyncio import Redis

from defi_alerts.alerter.channels import build_channels
from defi_alerts.config import Settings, get_settings
from defi_alerts.engine import AlertEngine, EngineConfig
from defi_alerts.evaluator.models import SystemClock
from defi_alerts.lock import LeaseNotAcquiredError, RunLease
from defi_alerts.storage.database import DatabaseManager

logger = logging.getLogger("defi_alerts")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m defi_alerts",
        description="Evaluate DeFi alert conditions, deliver pending alerts and resolve stale ones.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Evaluate and reconcile without delivering (overrides DRY_RUN)",
    )
    parser.add_argument(
        "--init-schema",
        action="store_true",
        default=False,
        help="Create missing tables before running (local SQLite setups)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Print the run summary as JSON on stdout",
    )
    return parser.parse_args(argv)


async def run(settings: Settings, args: argparse.Namespace) -> int:
    config = EngineConfig.from_settings(settings)
    if args.dry_run:
        config = dataclasses.replace(config, dry_run=True)

    db = DatabaseManager(settings.database.url)
    clock = SystemClock()
    channels = build_channels(settings, clock=clock)
    redis = Redis.from_url(settings.redis.url) if settings.redis.url else None
    try:
        if args.init_schema:
            await db.init_schema_async()

        engine = AlertEngine(db.session_factory, channels, config=config, clock=clock)
        if redis is None:
            summary = await engine.run_once()
        else:
            try:
                async with RunLease(redis, ttl_seconds=settings.redis.run_lock_ttl_seconds):
                    summary = await engine.run_once()
            except LeaseNotAcquiredError:
                logger.warning("Another scan is running; exiting")
                return 0

        if args.json:
            print(json.dumps(summary.to_dict(), indent=2, sort_keys=True))
        return 0
    finally:
        for channel in channels:
            aclose = getattr(channel, "aclose", None)
            if aclose is not None:
                await aclose()
        if redis is not None:
            await redis.aclose()
        await db.dispose_async()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Starting with settings: %s", settings.redacted_summary())

    return asyncio.run(run(settings, args))


if __name__ == "__main__":
    sys.exit(main())
