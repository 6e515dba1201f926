"""
Workflow: Channel Sync Operations
=================================
One-off channel sync operations against Beds24, one invocation per call.

USAGE:
    # Initial import of a property (hotel, room types, 90-day calendar)
    uv run python -m workflows.channel_sync bootstrap --hotel-id <uuid> --property-id 12345

    # Pull bookings for a connection (default window comes from sync state)
    uv run python -m workflows.channel_sync pull --connection-id <uuid>
    uv run python -m workflows.channel_sync pull --connection-id <uuid> --from 2025-02-01 --to 2025-03-01

    # Push a rate and a minimum stay for a week
    uv run python -m workflows.channel_sync push --hotel-id <uuid> --room-type-id <uuid> \\
        --start 2025-04-01 --end 2025-04-07 --rate 120 --min-stay 2

    # Pause / resume scheduled pulls for a hotel
    uv run python -m workflows.channel_sync disable --hotel-id <uuid>
    uv run python -m workflows.channel_sync enable --hotel-id <uuid>

    # Link a token obtained from the Beds24 control panel
    uv run python -m workflows.channel_sync store-token --type read --value <token> --expires-at 2025-04-01T00:00:00+00:00

    # Token metadata (never prints token values)
    uv run python -m workflows.channel_sync diagnostics

    # API key for the HTTP API (printed once)
    uv run python -m workflows.channel_sync create-api-key --user ops@example.com --role admin
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import asyncio
import argparse
from datetime import date, datetime

from loguru import logger

from db.client import init_db, close_db
from lib.beds24.calendar import CalendarChanges
from services.channel.api_key_repo import ApiKeyRepo
from services.channel.errors import ChannelSyncError
from services.channel.logging import capture_sync_logs
from services.channel.service import Service


def _log_errors(errors, limit: int = 10):
    for error in errors[:limit]:
        logger.warning(f"  {error}")
    if len(errors) > limit:
        logger.warning(f"  ... and {len(errors) - limit} more")


async def bootstrap(service: Service, args) -> int:
    result = await service.bootstrap(args.hotel_id, args.property_id)

    logger.info("=" * 50)
    logger.info("BOOTSTRAP SUMMARY")
    logger.info("=" * 50)
    logger.info(f"Hotel: {result.hotel.created} created, {result.hotel.updated} updated")
    logger.info(f"Room types: {result.room_types.created} created, {result.room_types.updated} updated")
    logger.info(f"Calendar days: {result.calendar.created} created, {result.calendar.updated} updated")
    logger.info(f"Total imported: {result.total_imported}")
    logger.info(f"Credits used: {result.credits_used} (remaining: {result.credits_remaining})")
    if result.errors:
        logger.warning(f"{len(result.errors)} error(s):")
        _log_errors(result.errors)
        if args.strict:
            result.raise_for_errors()
    return 0


async def pull(service: Service, args) -> int:
    date_range = None
    if args.date_from or args.date_to:
        if not (args.date_from and args.date_to):
            logger.error("--from and --to must be given together")
            return 2
        date_range = (args.date_from, args.date_to)

    result = await service.pull(args.connection_id, date_range=date_range)

    logger.info("=" * 50)
    logger.info("PULL SUMMARY")
    logger.info("=" * 50)
    logger.info(f"Window: {result.window[0]} -> {result.window[1]}")
    logger.info(f"Found: {result.total_found}, imported: {result.total_imported}, skipped: {len(result.skipped)}")
    logger.info(f"Credits used: {result.credits_used} (remaining: {result.credits_remaining})")
    if result.room_type_fallbacks:
        logger.warning(f"Room type fallback used for: {', '.join(result.room_type_fallbacks)}")
    if result.unknown_statuses:
        logger.warning(f"Unknown provider statuses: {result.unknown_statuses}")
    if result.overbooked:
        logger.warning(f"Imported over capacity: {', '.join(result.overbooked)}")
    if result.errors:
        logger.warning(f"{len(result.errors)} error(s):")
        _log_errors(result.errors)
    return 0


async def push(service: Service, args) -> int:
    changes = CalendarChanges(
        rate=args.rate,
        availability=args.availability,
        min_stay=args.min_stay,
        max_stay=args.max_stay,
        stop_sell=args.stop_sell,
        closed_arrival=args.closed_arrival,
        closed_departure=args.closed_departure,
    )
    result = await service.push(args.hotel_id, args.room_type_id, args.start, args.end, changes)

    logger.info("=" * 50)
    logger.info("PUSH SUMMARY")
    logger.info("=" * 50)
    logger.info(f"Room {result.room_id}: {result.total_lines} day(s) sent as {result.merged_lines} line(s)")
    logger.info(f"Batches: {result.successful_batches}/{result.batches} accepted, {result.days_mirrored} day(s) mirrored")
    logger.info(f"Credits used: {result.credits_used} (remaining: {result.credits_remaining})")
    if result.deferred_lines:
        logger.warning(f"{result.deferred_lines} line(s) deferred, retry in {result.retry_after:.0f}s")
    if result.errors:
        logger.warning(f"{len(result.errors)} error(s):")
        _log_errors(result.errors)
    return 0 if result.success else 1


async def set_enabled(service: Service, args) -> int:
    enabled = args.command == "enable"
    await service.set_sync_enabled(args.hotel_id, enabled)
    logger.info(f"Scheduled pulls {'enabled' if enabled else 'disabled'} for hotel {args.hotel_id}")
    return 0


async def store_token(service: Service, args) -> int:
    token = await service.tokens.store(
        args.type,
        args.value,
        scopes=args.scopes,
        expires_at=args.expires_at,
        properties_access=args.properties,
    )
    logger.info(f"Stored {token.token_type.value} token (issued {token.issued_at}, expires {token.expires_at})")
    return 0


async def diagnostics(service: Service, args) -> int:
    rows = await service.token_diagnostics()
    if not rows:
        logger.warning("No tokens stored")
    for row in rows:
        logger.info(
            f"{row['type']:<6} state={row['state']:<10} expires={row['expires_at']} "
            f"last_used={row['last_used_at']} properties={row['properties_count']} scopes={','.join(row['scopes'])}"
        )
    return 0


async def create_api_key(service: Service, args) -> int:
    key = await ApiKeyRepo().create(args.user, args.role or [])
    logger.info(f"API key for {args.user} (roles: {', '.join(args.role or []) or 'none'}):")
    print(key)
    return 0


COMMANDS = {
    "bootstrap": bootstrap,
    "pull": pull,
    "push": push,
    "enable": set_enabled,
    "disable": set_enabled,
    "store-token": store_token,
    "diagnostics": diagnostics,
    "create-api-key": create_api_key,
}


async def run(args) -> int:
    await init_db()
    try:
        with capture_sync_logs(args.command.replace("-", "_"), local_backup_dir=args.log_dir):
            try:
                return await COMMANDS[args.command](Service(), args)
            except ChannelSyncError as e:
                logger.error(f"{args.command} failed: {e.to_dict()}")
                return 1
            except ValueError as e:
                logger.error(f"{args.command}: invalid input: {e}")
                return 2
    finally:
        await close_db()


def _flag(sub, name: str, help_text: str):
    """--name / --no-name; unset leaves the field unchanged on the provider."""
    sub.add_argument(f"--{name}", dest=name.replace("-", "_"), action=argparse.BooleanOptionalAction,
                     default=None, help=help_text)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Beds24 channel sync operations")
    parser.add_argument("--log-dir", default=None, help="Save a gzip copy of this run's log here")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sub = subparsers.add_parser("bootstrap", help="Initial import of a Beds24 property")
    sub.add_argument("--hotel-id", required=True)
    sub.add_argument("--property-id", required=True)
    sub.add_argument("--strict", action="store_true", help="Exit non-zero if any phase had errors")

    sub = subparsers.add_parser("pull", help="Import bookings for a connection")
    sub.add_argument("--connection-id", required=True)
    sub.add_argument("--from", dest="date_from", type=date.fromisoformat, help="Modified from (YYYY-MM-DD)")
    sub.add_argument("--to", dest="date_to", type=date.fromisoformat, help="Modified to (YYYY-MM-DD)")

    sub = subparsers.add_parser("push", help="Push rates/restrictions for a date range")
    sub.add_argument("--hotel-id", required=True)
    sub.add_argument("--room-type-id", required=True)
    sub.add_argument("--start", required=True, type=date.fromisoformat)
    sub.add_argument("--end", required=True, type=date.fromisoformat)
    sub.add_argument("--rate", type=float)
    sub.add_argument("--availability", type=int, help="Rooms to sell (numAvail)")
    sub.add_argument("--min-stay", type=int)
    sub.add_argument("--max-stay", type=int)
    _flag(sub, "stop-sell", "Block all sales")
    _flag(sub, "closed-arrival", "Closed to arrival")
    _flag(sub, "closed-departure", "Closed to departure")

    for name in ("enable", "disable"):
        sub = subparsers.add_parser(name, help=f"{name.capitalize()} scheduled pulls for a hotel")
        sub.add_argument("--hotel-id", required=True)

    sub = subparsers.add_parser("store-token", help="Store a token obtained out of band")
    sub.add_argument("--type", required=True, choices=["read", "write"])
    sub.add_argument("--value", required=True)
    sub.add_argument("--expires-at", type=datetime.fromisoformat)
    sub.add_argument("--scopes", nargs="*", default=[])
    sub.add_argument("--properties", nargs="*", default=[], help="Property ids the token can access")

    subparsers.add_parser("diagnostics", help="Show token metadata")

    sub = subparsers.add_parser("create-api-key", help="Create an API key for the HTTP API")
    sub.add_argument("--user", required=True)
    sub.add_argument("--role", action="append", help="Repeatable, e.g. --role admin")

    return parser


def main():
    args = build_parser().parse_args()

    logger.remove()
    logger.add(sys.stderr, level="INFO", format="<level>{level: <8}</level> | {message}")

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
