#!/usr/bin/env python3
"""
Compute sales-manager compensation from KeyCRM orders and write the report.

Usage:
    python scripts/run_compensation.py
    python scripts/run_compensation.py --period last_month
    python scripts/run_compensation.py --period last_month --output reports/november.xlsx
    python scripts/run_compensation.py --dry-run        # compute, don't write
    python scripts/run_compensation.py --schedule       # daily job, runs until stopped
"""
import asyncio
import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from upsales.config import config
from upsales.exceptions import UpsalesError
from upsales.filters import PERIODS
from upsales.observability import get_logger, setup_logging
from upsales.runner import run_compensation
from upsales.scheduler import CompensationScheduler

logger = get_logger(__name__)


async def main(period: str = None, output: str = None, dry_run: bool = False) -> int:
    """Run one compensation batch."""
    try:
        result = await run_compensation(
            config,
            period=period,
            output=Path(output) if output else None,
            dry_run=dry_run,
        )
    except UpsalesError as e:
        logger.error(f"Compensation run failed: {e}", exc_info=True)
        return 1

    for month in result.report.months:
        logger.info(f"{month.key}: {len(month.summary)} managers")
        for row in month.summary:
            totals = " / ".join(f"{t:.2f}" for t in row.totals)
            logger.info(f"  {row.manager_name}: {totals}")

    if result.path:
        logger.info(f"Report saved to {result.path}")
    return 0


async def serve() -> int:
    """Run the daily job until interrupted."""
    scheduler = CompensationScheduler(config)
    scheduler.start()
    logger.info(f"Next run at {scheduler.next_run}")
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Compute manager compensation from KeyCRM orders")
    parser.add_argument(
        "--period",
        choices=PERIODS,
        default=None,
        help=f"Order period (default: {config.report.period})"
    )
    parser.add_argument("--output", help="Report path (default: stamped file in the report dir)")
    parser.add_argument("--dry-run", action="store_true", help="Compute without writing the report")
    parser.add_argument("--schedule", action="store_true", help="Run as a daily scheduled job")
    parser.add_argument("--log-level", default=config.log_level, help="Logging level")
    parser.add_argument("--json-logs", action="store_true", default=config.json_logs, help="JSON log output")
    args = parser.parse_args()

    setup_logging(level=args.log_level, json_format=args.json_logs)

    try:
        if args.schedule:
            exit_code = asyncio.run(serve())
        else:
            exit_code = asyncio.run(main(period=args.period, output=args.output, dry_run=args.dry_run))
    except KeyboardInterrupt:
        exit_code = 130
    sys.exit(exit_code)
