#!/usr/bin/env python3
"""
Agro Market Data Service - Main Application Entry Point.

============================================================
USAGE
============================================================
Serve the API:
    python app.py

Cron trigger for the daily AI report (e.g. every 6 hours):
    python app.py --run-scheduled

Cron trigger for the commodity reports (e.g. weekly):
    python app.py --run-scheduled-commodities

Configuration comes from the environment / .env file
(see core.config.Settings).
============================================================
"""

import argparse
import asyncio
import logging
import sys

import uvicorn

from core.config import Settings
from core.exceptions import MarketDataError
from core.logging_setup import setup_logging
from dashboard.main import create_app
from dashboard.services import MarketServices


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Agro market data service")
    parser.add_argument(
        "--run-scheduled",
        action="store_true",
        help="Regenerate the daily AI report once and exit",
    )
    parser.add_argument(
        "--run-scheduled-commodities",
        action="store_true",
        help="Refresh the AI report of every active commodity and exit",
    )
    parser.add_argument("--host", default=None, help="Override API_HOST")
    parser.add_argument("--port", type=int, default=None, help="Override API_PORT")
    return parser


async def run_scheduled(settings: Settings) -> int:
    """Cron entry point: one forced daily report generation."""
    logger = logging.getLogger(__name__)
    services = MarketServices.build(settings)
    await services.start()
    try:
        report = await services.generator.run_scheduled()
        logger.info(f"Daily report {report.id} stored, valid until {report.valid_until.isoformat()}")
        return 0
    except MarketDataError as e:
        logger.error(f"Scheduled report failed: {e.code} {e.message}")
        return 1
    finally:
        await services.shutdown()


async def run_scheduled_commodities(settings: Settings) -> int:
    """Cron entry point: commodity report batch. Fails only if every commodity failed."""
    logger = logging.getLogger(__name__)
    services = MarketServices.build(settings)
    await services.start()
    try:
        summary = await services.generator.run_scheduled_commodities()
        logger.info(f"Commodity report batch: {summary.to_dict()['stats']}")
        return 1 if summary.items and summary.errors == len(summary.items) else 0
    finally:
        await services.shutdown()


def main() -> int:
    args = create_parser().parse_args()

    try:
        settings = Settings.from_env()
    except MarketDataError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 1

    setup_logging(settings.log_level, settings.log_format, service_name="agro-market")
    logger = logging.getLogger(__name__)
    logger.info(f"Settings: {settings.to_dict()}")

    if args.run_scheduled:
        return asyncio.run(run_scheduled(settings))
    if args.run_scheduled_commodities:
        return asyncio.run(run_scheduled_commodities(settings))

    host = args.host or settings.api_host
    port = args.port or settings.api_port
    logger.info(f"Starting market API on {host}:{port}")
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None, access_log=True)
    return 0


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
