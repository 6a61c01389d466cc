#!/usr/bin/env python3
"""Command-line interface for settlement maintenance.

Re-checks orders that have been pending for too long with their provider
and settles the ones whose webhook never arrived.

Usage:
    python -m payform_settlement.settlement.cli sweep --older-than 30
    python -m payform_settlement.settlement.cli sweep --older-than 60 --provider cashfree --limit 500
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import timedelta
from typing import Optional

from ..connectors import build_connectors
from ..database import (
    Base,
    create_async_engine,
    get_async_session_factory,
    get_database_url,
)
from ..notifications import get_email_sender
from ..settings import get_settings
from .service import ReconciliationService

logger = logging.getLogger(__name__)


async def run_sweep_async(
    older_than_minutes: int,
    provider: Optional[str] = None,
    limit: int = 100,
    database_url: Optional[str] = None,
) -> int:
    """Run the pending-order sweep.

    Args:
        older_than_minutes: Only orders pending for longer than this are checked.
        provider: Restrict the sweep to one provider.
        limit: Maximum number of orders to check.
        database_url: Override of the configured database URL.

    Returns:
        Exit code (0 when every order was processed, 1 otherwise).
    """
    settings = get_settings()
    engine = create_async_engine(database_url=database_url or get_database_url())

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = get_async_session_factory(engine)

    try:
        service = ReconciliationService.from_settings(
            session_factory,
            build_connectors(settings),
            get_email_sender(settings),
            settings,
        )
        summary = await service.sweep_pending(
            older_than=timedelta(minutes=older_than_minutes),
            provider=provider,
            limit=limit,
        )
        print(json.dumps(summary.model_dump(), indent=2))

        if summary.failed:
            logger.warning(f"Sweep completed with {len(summary.errors)} errors")
            return 1
        return 0
    finally:
        await engine.dispose()


def run_sweep(
    older_than_minutes: int,
    provider: Optional[str] = None,
    limit: int = 100,
    database_url: Optional[str] = None,
) -> int:
    """Run the sweep (sync wrapper)."""
    return asyncio.run(run_sweep_async(
        older_than_minutes=older_than_minutes,
        provider=provider,
        limit=limit,
        database_url=database_url,
    ))


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="settlement",
        description="Settlement maintenance tools.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sweep_parser = subparsers.add_parser(
        "sweep",
        help="Re-check stale pending orders with their provider",
    )
    sweep_parser.add_argument(
        "--older-than", "-m",
        type=int,
        default=30,
        help="Minutes an order must have been pending (default: 30)",
    )
    sweep_parser.add_argument(
        "--provider", "-p",
        help="Only sweep orders of this provider",
    )
    sweep_parser.add_argument(
        "--limit", "-l",
        type=int,
        default=100,
        help="Maximum number of orders to check (default: 100)",
    )
    sweep_parser.add_argument(
        "--database-url",
        help="Database URL (default: DATABASE_URL)",
    )

    return parser


def main(args: Optional[list] = None) -> int:
    """Run the settlement CLI and return its exit code.

    ``args`` defaults to ``sys.argv[1:]``; 1 means a usage error or at least
    one order that could not be settled.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    if parsed_args.command == "sweep":
        if parsed_args.older_than < 0 or parsed_args.limit <= 0:
            logger.error("--older-than must be >= 0 and --limit must be > 0")
            return 1
        return run_sweep(
            older_than_minutes=parsed_args.older_than,
            provider=parsed_args.provider,
            limit=parsed_args.limit,
            database_url=parsed_args.database_url,
        )

    return 0


if __name__ == "__main__":
    sys.exit(main())
