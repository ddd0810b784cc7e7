import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse
import logging

from casa_booking.config import REFRESH_HORIZON_MONTHS
from casa_booking.context import build_context
from casa_booking.logging_config import setup_logging
from casa_booking.services.refresh import run_scheduled_refresh

setup_logging()
logger = logging.getLogger(__name__)


def main() -> None:
    """
    Run the scheduled availability refresh once from the command line,
    without going through the cron endpoint.
    """
    parser = argparse.ArgumentParser(description="Refresh cached Guesty availability")
    parser.add_argument("--months", type=int, default=REFRESH_HORIZON_MONTHS)
    parser.add_argument("--property-id", default=None)
    args = parser.parse_args()

    ctx = build_context()
    logger.info("Starting availability refresh for %s months", args.months)

    try:
        report = run_scheduled_refresh(
            ctx.availability, args.months, property_id=args.property_id
        )
    except Exception:
        logger.exception("Availability refresh failed")
        raise

    for failure in report.failed_partitions:
        logger.warning("Partition %s failed: %s", failure.partition, failure.error)
    logger.info("Refresh completed: %s succeeded, %s failed", report.succeeded, report.failed)

    if not report.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
