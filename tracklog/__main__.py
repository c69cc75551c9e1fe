"""CLI entry point for tracklog."""

import argparse
import asyncio
import inspect
import json
import logging
import sys
import traceback
from datetime import date, datetime
from pathlib import Path

from .config import Config, load_config, save_config
from .errors import TrackerError
from .models import EntryType
from .store import DataStore, LocalDatabase
from .sync import GistClient, SyncEngine, SyncResult

DEFAULT_CONFIG_PATH = Path("~/.tracklog/config.yaml")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            return json.dumps(log_data, default=str)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.WARNING)
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler])


def _open(config: Config) -> tuple[DataStore, SyncEngine]:
    store = DataStore(LocalDatabase(config.storage.db_path))
    engine = SyncEngine(
        store,
        GistClient(config.sync),
        error_display_seconds=None,
    )
    return store, engine


def _report(result: SyncResult) -> int:
    if result.skipped:
        print("Sync not configured, changes kept locally")
        return 0
    if not result.success:
        print(f"Sync failed: {result.error}", file=sys.stderr)
        return 1
    print(
        f"Synced: {result.entries_pushed} entries pushed, "
        f"{result.entities_pulled} pulled, "
        f"{result.deletions_confirmed} deletions confirmed"
    )
    return 0


async def _after_mutation(args: argparse.Namespace, engine: SyncEngine) -> int:
    if args.no_sync:
        return 0
    return _report(await engine.sync())


async def cmd_log(args: argparse.Namespace) -> int:
    """Log a food or activity entry."""
    config = load_config(args.config)
    store, engine = _open(config)
    try:
        entry = store.add_entry(
            args.type,
            args.item_id,
            args.date or date.today().isoformat(),
            args.time or datetime.now().strftime("%H:%M"),
            args.notes,
            args.category or None,
        )
        print(f"Logged {entry.type.value} entry {entry.id}")
        return await _after_mutation(args, engine)
    finally:
        store.close()


def cmd_entries(args: argparse.Namespace) -> int:
    """List logged entries."""
    config = load_config(args.config)
    store, _ = _open(config)
    try:
        data = store.snapshot()
        entries = sorted(
            data.entries.values(),
            key=lambda e: (e.date, e.time or ""),
            reverse=True,
        )
        if args.date:
            entries = [e for e in entries if e.date == args.date]
        if args.type:
            entries = [e for e in entries if e.type.value == args.type]

        if not entries:
            print("No entries.")
            return 0

        for entry in entries[: args.limit]:
            item = store.get_item(entry.type, entry.item_id)
            name = item.name if item else f"<missing {entry.item_id}>"
            when = f"{entry.date} {entry.time or '--:--'}"
            notes = f"  ({entry.notes})" if entry.notes else ""
            print(f"{when}  {entry.type.value:<8} {name}{notes}  [{entry.id}]")
        return 0
    finally:
        store.close()


async def cmd_delete_entry(args: argparse.Namespace) -> int:
    """Delete an entry."""
    config = load_config(args.config)
    store, engine = _open(config)
    try:
        if store.delete_entry(args.entry_id):
            print(f"Deleted entry {args.entry_id}")
        else:
            print(f"No entry {args.entry_id}")
        return await _after_mutation(args, engine)
    finally:
        store.close()


async def cmd_add_item(args: argparse.Namespace) -> int:
    """Add a food or activity item."""
    config = load_config(args.config)
    store, engine = _open(config)
    try:
        item = store.add_item(args.type, args.name, args.category)
        print(f"Added {args.type} item {item.name!r} [{item.id}]")
        return await _after_mutation(args, engine)
    finally:
        store.close()


async def cmd_add_category(args: argparse.Namespace) -> int:
    """Add a food or activity category."""
    config = load_config(args.config)
    store, engine = _open(config)
    try:
        category = store.add_category(args.type, args.name, args.sentiment)
        print(f"Added {args.type} category {category.name!r} [{category.id}]")
        return await _after_mutation(args, engine)
    finally:
        store.close()


async def cmd_favorite(args: argparse.Namespace) -> int:
    """Toggle an item's favorite flag."""
    config = load_config(args.config)
    store, engine = _open(config)
    try:
        state = store.toggle_favorite(args.item_id)
        print(f"{args.item_id} is {'now' if state else 'no longer'} a favorite")
        return await _after_mutation(args, engine)
    finally:
        store.close()


def cmd_export(args: argparse.Namespace) -> int:
    """Export the dataset as JSON."""
    config = load_config(args.config)
    store, _ = _open(config)
    try:
        output = args.output or Path(f"tracker-backup-{date.today().isoformat()}.json")
        if str(output) == "-":
            print(store.export_data())
        else:
            Path(output).write_text(store.export_data())
            print(f"Exported to {output}")
        return 0
    finally:
        store.close()


async def cmd_import(args: argparse.Namespace) -> int:
    """Replace the dataset with an exported JSON file."""
    config = load_config(args.config)
    store, engine = _open(config)
    try:
        data = store.import_data(Path(args.file).read_text())
        print(f"Imported {len(data.entries)} entries")
        return await _after_mutation(args, engine)
    finally:
        store.close()


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run one sync cycle."""
    config = load_config(args.config)
    store, engine = _open(config)
    try:
        return _report(await engine.sync())
    finally:
        store.close()


async def cmd_pull(args: argparse.Namespace) -> int:
    """Replace local data with the remote document."""
    config = load_config(args.config)
    store, engine = _open(config)
    try:
        return _report(await engine.load_remote())
    finally:
        store.close()


async def cmd_backup(args: argparse.Namespace) -> int:
    """Write the dataset to the backup gist."""
    config = load_config(args.config)
    store, engine = _open(config)
    try:
        await engine.backup()
        print(f"Backed up to gist {config.sync.backup_gist_id}")
        return 0
    finally:
        store.close()


async def cmd_restore(args: argparse.Namespace) -> int:
    """Restore the dataset from the backup gist."""
    config = load_config(args.config)
    store, engine = _open(config)
    try:
        task = await engine.restore_from_backup()
        print(f"Restored {len(store.snapshot().entries)} entries from backup")
        if task is not None:
            return _report(await task)
        return 0
    finally:
        store.close()


async def cmd_check_token(args: argparse.Namespace) -> int:
    """Check that the GitHub token is accepted."""
    config = load_config(args.config)
    client = GistClient(config.sync)
    if await client.validate_credentials(args.token):
        print("Token is valid")
        return 0
    print("Token is invalid or GitHub is unreachable", file=sys.stderr)
    return 1


async def cmd_create_gist(args: argparse.Namespace) -> int:
    """Create a new sync gist and store its id in the config file."""
    config = load_config(args.config)
    client = GistClient(config.sync)
    gist_id = await client.create_document()
    if args.backup:
        config.sync.backup_gist_id = gist_id
    else:
        config.sync.gist_id = gist_id
    path = save_config(config, args.config)
    print(f"Created gist {gist_id}, saved to {path}")
    return 0


async def cmd_list_gists(args: argparse.Namespace) -> int:
    """List the user's gists."""
    config = load_config(args.config)
    client = GistClient(config.sync)
    for gist in await client.list_documents():
        print(f"{gist['id']}  {gist['description']}  ({', '.join(gist['files'])})")
    return 0


def cmd_configure(args: argparse.Namespace) -> int:
    """Update sync settings in the config file."""
    config = load_config(args.config)
    if args.token is not None:
        config.sync.token = args.token
    if args.gist_id is not None:
        config.sync.gist_id = args.gist_id or None
    if args.backup_gist_id is not None:
        config.sync.backup_gist_id = args.backup_gist_id or None
    if args.db_path is not None:
        config.storage.db_path = args.db_path
    path = save_config(config, args.config)
    print(f"Configuration saved to {path}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show local data and sync status."""
    config = load_config(args.config)
    store, engine = _open(config)
    try:
        status = {
            "counts": store.snapshot().count(),
            "sync": engine.get_sync_status(),
            "storage": store.storage_stats(),
        }
        if args.json:
            print(json.dumps(status, indent=2))
            return 0

        print("Local data:")
        for kind, count in status["counts"].items():
            print(f"  {kind:<20} {count}")
        print(f"Pending deletions:     {status['sync']['pending_deletions']}")
        print(f"Sync configured:       {status['sync']['configured']}")
        print(f"Database:              {status['storage']['db_path']}")
        return 0
    finally:
        store.close()


def _add_type_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "type",
        choices=[t.value for t in EntryType],
        help="Entry type",
    )


def _add_no_sync(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--no-sync",
        action="store_true",
        help="Do not sync after the change",
    )


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="tracklog",
        description="Offline-first food and activity log with Gist sync",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to config file (default: ~/.tracklog/config.yaml)",
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
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    log_parser = subparsers.add_parser("log", help="Log an entry")
    _add_type_argument(log_parser)
    log_parser.add_argument("item_id", help="Id of the logged item")
    log_parser.add_argument("--date", help="YYYY-MM-DD (default: today)")
    log_parser.add_argument("--time", help="HH:MM (default: now)")
    log_parser.add_argument("--notes", help="Free-form notes")
    log_parser.add_argument(
        "--category",
        action="append",
        default=[],
        help="Category override id (repeatable)",
    )
    _add_no_sync(log_parser)
    log_parser.set_defaults(func=cmd_log)

    entries_parser = subparsers.add_parser("entries", help="List entries")
    entries_parser.add_argument("--date", help="Only entries on this date")
    entries_parser.add_argument("--type", choices=[t.value for t in EntryType])
    entries_parser.add_argument("-n", "--limit", type=int, default=50)
    entries_parser.set_defaults(func=cmd_entries)

    delete_parser = subparsers.add_parser("delete-entry", help="Delete an entry")
    delete_parser.add_argument("entry_id")
    _add_no_sync(delete_parser)
    delete_parser.set_defaults(func=cmd_delete_entry)

    item_parser = subparsers.add_parser("add-item", help="Add an item")
    _add_type_argument(item_parser)
    item_parser.add_argument("name")
    item_parser.add_argument(
        "--category",
        action="append",
        default=[],
        help="Category id (repeatable)",
    )
    _add_no_sync(item_parser)
    item_parser.set_defaults(func=cmd_add_item)

    category_parser = subparsers.add_parser("add-category", help="Add a category")
    _add_type_argument(category_parser)
    category_parser.add_argument("name")
    category_parser.add_argument(
        "--sentiment",
        choices=["positive", "neutral", "limit"],
        default="neutral",
    )
    _add_no_sync(category_parser)
    category_parser.set_defaults(func=cmd_add_category)

    favorite_parser = subparsers.add_parser("favorite", help="Toggle a favorite item")
    favorite_parser.add_argument("item_id")
    _add_no_sync(favorite_parser)
    favorite_parser.set_defaults(func=cmd_favorite)

    export_parser = subparsers.add_parser("export", help="Export data as JSON")
    export_parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output file, or - for stdout",
    )
    export_parser.set_defaults(func=cmd_export)

    import_parser = subparsers.add_parser("import", help="Import data from JSON")
    import_parser.add_argument("file", type=Path)
    _add_no_sync(import_parser)
    import_parser.set_defaults(func=cmd_import)

    sync_parser = subparsers.add_parser("sync", help="Sync with the remote gist")
    sync_parser.set_defaults(func=cmd_sync)

    pull_parser = subparsers.add_parser("pull", help="Replace local data with the remote gist")
    pull_parser.set_defaults(func=cmd_pull)

    backup_parser = subparsers.add_parser("backup", help="Write data to the backup gist")
    backup_parser.set_defaults(func=cmd_backup)

    restore_parser = subparsers.add_parser("restore", help="Restore data from the backup gist")
    restore_parser.set_defaults(func=cmd_restore)

    token_parser = subparsers.add_parser("check-token", help="Validate the GitHub token")
    token_parser.add_argument("--token", default=None, help="Token to check (default: configured)")
    token_parser.set_defaults(func=cmd_check_token)

    create_parser = subparsers.add_parser("create-gist", help="Create a new sync gist")
    create_parser.add_argument(
        "--backup",
        action="store_true",
        help="Use the new gist as the backup document",
    )
    create_parser.set_defaults(func=cmd_create_gist)

    list_parser = subparsers.add_parser("list-gists", help="List your gists")
    list_parser.set_defaults(func=cmd_list_gists)

    configure_parser = subparsers.add_parser("configure", help="Update sync settings")
    configure_parser.add_argument("--token")
    configure_parser.add_argument("--gist-id")
    configure_parser.add_argument("--backup-gist-id")
    configure_parser.add_argument("--db-path")
    configure_parser.set_defaults(func=cmd_configure)

    status_parser = subparsers.add_parser("status", help="Show local and sync status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    try:
        if inspect.iscoroutinefunction(func):
            return asyncio.run(func(args))
        return func(args)
    except TrackerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
