"""Billing maintenance worker.

Usage:
    python -m snsshare.workers.billing_maintenance --once
    python -m snsshare.workers.billing_maintenance --once --fix
    python -m snsshare.workers.billing_maintenance --loop --sleep 3600

Runs the subscription integrity check and trial grace-period expiry.
"""
from __future__ import annotations

import argparse
import logging
import os
import time
from typing import Dict, Any

from snsshare.core.config import settings
from snsshare.core.database import create_all_tables
from snsshare.core.logging import configure_logging
from snsshare.features.billing.maintenance import expire_grace_periods, run_integrity_check


DEFAULT_LOOP_SECONDS = int(os.getenv("SNSSHARE_MAINTENANCE_LOOP_SECONDS", "3600") or 3600)

logger = logging.getLogger("snsshare")


def run_once(fix: bool = False, limit: int = 100) -> Dict[str, Any]:
    integrity = run_integrity_check(fix=fix, limit=limit)
    grace = expire_grace_periods()
    return {
        "issues_found": integrity["issues_found"],
        "corrections_applied": integrity["corrections_applied"],
        "grace_expired": grace["expired"],
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Billing maintenance worker")
    parser.add_argument("--once", action="store_true", help="Run all jobs once and exit")
    parser.add_argument("--loop", action="store_true", help="Run in continuous loop")
    parser.add_argument("--fix", action="store_true", help="Apply safe integrity repairs")
    parser.add_argument("--limit", type=int, default=100, help="Max repairs per run")
    parser.add_argument(
        "--sleep",
        type=int,
        default=DEFAULT_LOOP_SECONDS,
        help="Seconds to sleep between loops (when --loop)",
    )
    args = parser.parse_args()

    configure_logging(settings.ENV)
    create_all_tables()

    if args.once:
        stats = run_once(fix=args.fix, limit=args.limit)
        logger.info("maintenance.run", extra=stats)
        return

    # Default to loop mode when not explicitly once
    logger.info("maintenance.loop_started", extra={"sleep": args.sleep})
    try:
        while True:
            stats = run_once(fix=args.fix, limit=args.limit)
            logger.info("maintenance.run", extra=stats)
            time.sleep(args.sleep)
    except KeyboardInterrupt:
        logger.info("maintenance.stopped")


if __name__ == "__main__":
    main()
