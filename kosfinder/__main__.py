"""KosFinder operator entry-point.

Usage:
    python -m kosfinder [--log-level LEVEL] [--log-format FORMAT] COMMAND ...

Commands:
    init-db                       Create the SQLite schema (idempotent).
    add-facility NAME [--icon I]  Register a facility type.
    markers [filters]             Print public map markers as JSON lines.
    show ID_OR_SLUG [--all]       Print one listing with details as JSON.
    set-active ID {on,off}        Show or hide a listing.
    delete ID                     Delete a listing and its images.
    promote EMAIL                 Grant the ADMIN role to an existing user.

The web boundary is a separate process; this module is a thin operator tool
over :class:`~kosfinder.registry.ListingRegistry` and the repositories.  It
calls ``configure_logging()`` before anything else so every module logs
through the configured handler.  Image cleanup after ``delete`` goes through
:func:`~kosfinder.blobs.build_blob_store`, and is skipped when no blob store
is configured.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence

from kosfinder.blobs import build_blob_store
from kosfinder.core import configure_logging, request_context
from kosfinder.core.criteria import KosFilters
from kosfinder.core.exceptions import ConfigError, KosFinderError
from kosfinder.core.models import Caller, Gender, UserRole
from kosfinder.core.settings import Settings
from kosfinder.registry import ListingRegistry
from kosfinder.storage import FacilityRepository, UserRepository, open_db

logger = logging.getLogger(__name__)

#: Identity the CLI acts under; the operator has shell access to the database.
_OPERATOR = Caller(id="cli-operator", role=UserRole.ADMIN)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kosfinder",
        description="Boarding-house (kos) listing registry near ITS Surabaya.",
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
    parser.add_argument(
        "--db",
        default=None,
        metavar="PATH",
        help="Override DATABASE_PATH env var.",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the database schema.")

    add_facility = sub.add_parser("add-facility", help="Register a facility type.")
    add_facility.add_argument("name")
    add_facility.add_argument("--icon", default=None)

    markers = sub.add_parser("markers", help="Print public map markers.")
    markers.add_argument("--gender", choices=[g.value for g in Gender], default=None)
    markers.add_argument("--min-price", type=int, default=None)
    markers.add_argument("--max-price", type=int, default=None)
    markers.add_argument("--max-distance", type=float, default=None)
    markers.add_argument(
        "--available-only",
        action="store_true",
        help="Only kos with at least one free room.",
    )

    show = sub.add_parser("show", help="Print one listing with details.")
    show.add_argument("ref", metavar="ID_OR_SLUG")
    show.add_argument(
        "--all",
        action="store_true",
        dest="allow_inactive",
        help="Include inactive listings.",
    )

    set_active = sub.add_parser("set-active", help="Show or hide a listing.")
    set_active.add_argument("listing_id", type=int)
    set_active.add_argument("state", choices=["on", "off"])

    delete = sub.add_parser("delete", help="Delete a listing and its images.")
    delete.add_argument("listing_id", type=int)

    promote = sub.add_parser("promote", help="Grant ADMIN to a user.")
    promote.add_argument("email")

    return parser


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    conn = await open_db(args.db or settings.database_path)
    blob_store = build_blob_store(settings)
    try:
        registry = ListingRegistry(conn, campus=settings.campus, blob_store=blob_store)

        if args.command == "init-db":
            logger.info("Schema ready at %s", args.db or settings.database_path)

        elif args.command == "add-facility":
            facility = await FacilityRepository(conn).create(args.name, icon=args.icon)
            print(facility.model_dump_json())  # noqa: T201

        elif args.command == "markers":
            filters = KosFilters(
                gender=args.gender,
                min_price=args.min_price,
                max_price=args.max_price,
                max_distance=args.max_distance,
                available_only=args.available_only,
            )
            for marker in await registry.list_public_markers(filters):
                print(marker.model_dump_json())  # noqa: T201

        elif args.command == "show":
            details = await registry.get_listing_details(
                args.ref, allow_inactive=args.allow_inactive
            )
            if details is None:
                print(f"kosfinder: kos not found: {args.ref}", file=sys.stderr)  # noqa: T201
                return 1
            print(json.dumps(details.model_dump(mode="json"), indent=2))  # noqa: T201

        elif args.command == "set-active":
            await registry.set_listing_active(args.listing_id, args.state == "on")

        elif args.command == "delete":
            await registry.delete_listing(args.listing_id, _OPERATOR)

        elif args.command == "promote":
            users = UserRepository(conn)
            user = await users.get_by_email(args.email.lower())
            if user is None:
                print(f"kosfinder: no user with email {args.email}", file=sys.stderr)  # noqa: T201
                return 1
            await users.update_role(user.id, UserRole.ADMIN)
            logger.info("Promoted %s to ADMIN", user.email)

        return 0
    finally:
        if blob_store is not None:
            await blob_store.close()
        await conn.close()


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry-point registered in ``pyproject.toml``."""
    args = _build_parser().parse_args(argv)

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"kosfinder: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        return 1

    try:
        settings = Settings()
        with request_context():
            return asyncio.run(_run(args, settings))
    except (ConfigError, ValueError) as exc:
        logger.critical("Configuration error: %s", exc)
        return 1
    except KosFinderError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
