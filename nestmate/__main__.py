"""Nestmate command-line entry-point.

Usage:
    python -m nestmate init-db
    python -m nestmate feed --viewer USER_ID [--location TEXT]
                            [--min-price N] [--max-price N]

``init-db`` creates the SQLite database at ``DATABASE_PATH`` (idempotent).
``feed`` prints the viewer's feed as one JSON object per line, which is handy
for checking ranking and visibility against a real database.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from nestmate.core import configure_logging
from nestmate.core.exceptions import ConfigError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nestmate",
        description="Roommate and hostel listings marketplace core.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create the database schema if it does not exist.")

    feed = commands.add_parser("feed", help="Print a viewer's feed as JSON lines.")
    feed.add_argument("--viewer", required=True, metavar="USER_ID", help="Viewer profile id.")
    feed.add_argument("--location", default=None, help="Substring of the listing location.")
    feed.add_argument("--min-price", type=int, default=None, metavar="N")
    feed.add_argument("--max-price", type=int, default=None, metavar="N")
    return parser


async def _init_db() -> None:
    from nestmate.core.settings import Settings  # noqa: PLC0415
    from nestmate.storage.database import open_db  # noqa: PLC0415

    settings = Settings()
    conn = await open_db(settings.database_path)
    await conn.close()
    logging.getLogger(__name__).info("Database ready at %s", settings.database_path_resolved)


async def _feed(args: argparse.Namespace) -> int:
    from nestmate.core.criteria import FeedCriteria  # noqa: PLC0415
    from nestmate.core.settings import Settings  # noqa: PLC0415
    from nestmate.service.marketplace import Marketplace  # noqa: PLC0415

    criteria = FeedCriteria(
        location=args.location,
        price_min=args.min_price,
        price_max=args.max_price,
    )
    async with await Marketplace.open(Settings()) as market:
        result = await market.feed(args.viewer, criteria)
    if not result.ok:
        print(f"nestmate: {result.message}", file=sys.stderr)  # noqa: T201
        return 1
    for listing in result.unwrap():
        print(listing.model_dump_json())  # noqa: T201
    return 0


def main() -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    args = _build_parser().parse_args()

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"nestmate: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)

    try:
        if args.command == "init-db":
            asyncio.run(_init_db())
        elif args.command == "feed":
            sys.exit(asyncio.run(_feed(args)))
    except (ConfigError, ValidationError) as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting.")
        sys.exit(0)


if __name__ == "__main__":
    main()
