#!/usr/bin/env python3
"""CLI entry point for a scheduled sync of every active connected app.

Usage:
    # Sync all users' apps
    PYTHONPATH=. python scripts/run_sync.py

    # Sync one user's apps
    PYTHONPATH=. python scripts/run_sync.py --user-id 7d1f...
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.statly_core.context import ServiceContext
from src.statly_core.metrics.store import MetricStore


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


async def main() -> int:
    """Main entry point; exit code 1 when any app failed."""
    parser = argparse.ArgumentParser(description="Statly provider sync")
    parser.add_argument(
        "--user-id",
        type=str,
        help="Only sync this user's apps. Defaults to every active app.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print per-app results as JSON",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)

    context = await ServiceContext().configure()
    conn = context.open_db()
    try:
        outcomes = await context.orchestrator(MetricStore(conn)).sync_all(args.user_id)
    finally:
        conn.close()
        await context.close()

    if args.json:
        print(json.dumps([outcome.to_dict() for outcome in outcomes], indent=2))
    else:
        for outcome in outcomes:
            status = "ok" if outcome.success else f"FAILED: {outcome.error}"
            print(f"{outcome.provider:<12} {outcome.app_id}  {status}")

    return 1 if any(not outcome.success for outcome in outcomes) else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
