"""CLI entry point for docsync."""

import argparse
import asyncio
import inspect
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .errors import RecordNotFoundError, RemoteError
from .model import User
from .repository import Repository, SyncStatus
from .storage import LocalStore
from .sync import HttpRemoteClient
from .timestamps import TIMESTAMP_FORMAT, format_timestamp


class JSONFormatter(logging.Formatter):
    """One JSON object per log line, for shipping sync logs off the device."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": format_timestamp(datetime.fromtimestamp(record.created)),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines.
    """
    if log_level:
        level = getattr(logging, log_level.upper())
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt=TIMESTAMP_FORMAT,
            )
        )
    logging.basicConfig(level=level, handlers=[handler])

    # httpx logs every request at INFO; only show that when debugging
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _build_repository(config: Config) -> Repository:
    store = LocalStore(config.store.db_path)
    store.connect()
    remote = HttpRemoteClient(
        config.remote.base_url,
        timeout=config.remote.timeout,
        max_retries=config.remote.max_retries,
        backoff_seconds=config.remote.backoff_seconds,
    )
    return Repository(
        store,
        remote,
        record_types=config.sync.record_types,
        excluded_keys=config.history.excluded_keys,
        max_concurrency=config.sync.max_concurrency,
    )


async def _close(repository: Repository) -> None:
    await repository.remote.close()
    repository.store.close()


def cmd_status(args: argparse.Namespace) -> int:
    """Show local record and sync state."""
    config = load_config(args.config)
    store = LocalStore(config.store.db_path)
    store.connect()

    try:
        stats = store.get_stats()
        pending = {
            record_type: len(store.dirty(record_type))
            for record_type in config.sync.record_types
        }
    finally:
        store.close()

    status_data = {
        "timestamp": datetime.now().isoformat(),
        "user": {
            "user_name": config.user.user_name,
            "organisation": config.user.organisation,
        },
        "store": stats,
        "remote": {"base_url": config.remote.base_url or None},
        "pending_records": pending,
    }

    if args.json:
        print(json.dumps(status_data, indent=2))
    else:
        print("Docsync Status")
        print("==============")
        print(f"User: {config.user.user_name} ({config.user.organisation or 'no organisation'})")
        print(f"Store: {stats['db_path']}")
        print(f"  Total records: {stats['total_records']}")
        for record_type, count in stats["records_by_type"].items():
            print(f"    - {record_type}: {count}")
        print(f"Remote: {config.remote.base_url or 'not configured'}")
        print("Pending sync:")
        for record_type, count in pending.items():
            print(f"  - {record_type}: {count}")

    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Synchronize local records with the remote store."""
    config = load_config(args.config)

    if not config.remote.base_url:
        print("Error: no remote base_url configured", file=sys.stderr)
        return 1
    if not config.sync.enabled:
        print("Sync is disabled in configuration")
        return 0

    user = User(config.user.user_name, config.user.organisation)
    repository = _build_repository(config)

    try:
        if args.loop:
            await repository.sync_loop(
                user, interval_seconds=config.sync.sync_interval_minutes * 60
            )
            return 0

        report = await repository.synchronize(user)
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0
    finally:
        await _close(repository)

    print(f"Sync {report.status.value}: pushed={report.pushed}, pulled={report.pulled}, skipped={report.skipped}")
    for failure in report.failures:
        target = failure.unique_id or failure.record_type
        print(f"  ! {failure.operation} {target}: {failure.error}", file=sys.stderr)

    return 0 if report.status == SyncStatus.SUCCESS else 1


def cmd_history(args: argparse.Namespace) -> int:
    """Print the audit trail of one record."""
    config = load_config(args.config)
    store = LocalStore(config.store.db_path)
    store.connect()

    try:
        record = store.load(args.unique_id)
    finally:
        store.close()

    if record is None:
        print(f"Error: {RecordNotFoundError(args.unique_id)}", file=sys.stderr)
        return 1

    entries = record.history.entries()
    if args.json:
        print(json.dumps([entry.to_dict() for entry in entries], indent=2))
        return 0

    print(f"{record.record_type} {record.unique_id}: {len(entries)} history entries")
    for entry in entries:
        print(f"{entry.datetime} {entry.user_name} ({entry.user_organisation})")
        for key, change in entry.changes.items():
            print(f"  {key}: {change['from']!r} -> {change['to']!r}")

    return 0


async def cmd_purge_remote(args: argparse.Namespace) -> int:
    """Delete every remote record of a type."""
    config = load_config(args.config)

    if not config.remote.base_url:
        print("Error: no remote base_url configured", file=sys.stderr)
        return 1

    repository = _build_repository(config)
    try:
        await repository.purge_remote(args.record_type)
    except RemoteError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await _close(repository)

    print(f"Deleted all remote {args.record_type}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="docsync",
        description="Offline record editing with audit trail and remote sync",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Status command
    status_parser = subparsers.add_parser("status", help="Show local sync state")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Synchronize with the remote store")
    sync_parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep synchronizing at the configured interval",
    )
    sync_parser.set_defaults(func=cmd_sync)

    # History command
    history_parser = subparsers.add_parser("history", help="Show a record's audit trail")
    history_parser.add_argument("unique_id", help="unique_identifier of the record")
    history_parser.add_argument(
        "--json",
        action="store_true",
        help="Output histories as JSON",
    )
    history_parser.set_defaults(func=cmd_history)

    # Purge command
    purge_parser = subparsers.add_parser(
        "purge-remote", help="Delete all remote records of a type"
    )
    purge_parser.add_argument("record_type", help="Record type, e.g. children")
    purge_parser.set_defaults(func=cmd_purge_remote)

    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.log_level, args.log_json)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    if inspect.iscoroutinefunction(func):
        return asyncio.run(func(args))
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
