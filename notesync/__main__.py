"""CLI entry point for notesync."""

import argparse
import asyncio
import json
import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path

from .client import ChangeLog, SyncClient, SyncStatus
from .config import Config, load_config
from .notes import Note, get_codec
from .notes.models import format_timestamp, from_millis


LOG_LEVELS = {
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

# Per-request chatter from the HTTP stacks, quiet unless debugging
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    """Log records as JSON lines, stamped in the same UTC format as sync checkpoints."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": format_timestamp(from_millis(int(record.created * 1000))),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging for the CLI.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    default = logging.DEBUG if verbose else logging.INFO
    level = LOG_LEVELS.get(log_level, default) if log_level else default

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    logging.basicConfig(level=level, handlers=[handler], force=True)

    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def _open_change_log(config: Config) -> ChangeLog:
    change_log = ChangeLog(config.client.db_path)
    change_log.connect()
    return change_log


def _build_sync_client(config: Config, change_log: ChangeLog) -> SyncClient:
    return SyncClient(
        change_log,
        remote_url=config.client.server_url,
        token=config.client.token,
        batch_size=config.client.batch_size,
        max_retries=config.client.retry_max_attempts,
        timeout=config.client.timeout_seconds,
    )


async def cmd_serve(args: argparse.Namespace) -> int:
    """Start the sync server."""
    config = load_config(args.config)

    try:
        import uvicorn

        from .server import create_app
        from .store import SQLiteNoteStore
        from .sync import SyncCoordinator
    except ImportError as e:
        print(f"Server dependencies not installed: {e}", file=sys.stderr)
        return 1

    try:
        codec = get_codec(config.store.encoding)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    host = args.host or config.server.host
    port = args.port or config.server.port

    store = SQLiteNoteStore(config.store.db_path)
    store.connect()

    if not config.auth.tokens:
        print("Warning: no auth tokens configured, every sync will be rejected", file=sys.stderr)

    print("Starting notesync server")
    print(f"Store: {store.db_path} (encoding: {codec.name})")
    print(f"URL: http://{host}:{port}")

    app = create_app(config, SyncCoordinator(store, codec))

    try:
        verbose = getattr(args, "verbose", False)
        config_uvicorn = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="info" if verbose else "warning",
        )
        server = uvicorn.Server(config_uvicorn)
        await server.serve()
    finally:
        store.close()

    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Sync the local replica with the server."""
    config = load_config(args.config)
    change_log = _open_change_log(config)
    client = _build_sync_client(config, change_log)

    try:
        if args.loop:
            await client.sync_loop(config.client.sync_interval_minutes * 60)
            return 0

        result = await client.sync_once()
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0
    finally:
        change_log.close()

    if result.status != SyncStatus.SUCCESS:
        print(f"Sync {result.status.value}: {result.error}", file=sys.stderr)
        return 1

    print(f"Synced: pushed={result.events_pushed}, pulled={result.events_pulled}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show the local replica sync status."""
    config = load_config(args.config)
    change_log = _open_change_log(config)

    try:
        status = _build_sync_client(config, change_log).get_sync_status()
        status["timestamp"] = datetime.now().isoformat()
    finally:
        change_log.close()

    if args.json:
        print(json.dumps(status, indent=2))
        return 0

    print(f"Server: {status['remote_url']}")
    print(f"Checkpoint: {status['checkpoint']}")
    print(f"Notes: {status['total_notes']}")
    print(f"Pending changes: {status['pending_events']}")
    return 0


def cmd_note_add(args: argparse.Namespace) -> int:
    """Create or update a note in the local replica."""
    config = load_config(args.config)
    change_log = _open_change_log(config)

    note = Note(
        uuid=args.uuid or str(uuid.uuid4()),
        title=args.title,
        content=args.content,
    )

    try:
        event_type = change_log.save_note(note)
    finally:
        change_log.close()

    print(f"{note.uuid} ({event_type.value})")
    return 0


def cmd_note_delete(args: argparse.Namespace) -> int:
    """Delete a note from the local replica."""
    config = load_config(args.config)
    change_log = _open_change_log(config)

    try:
        change_log.delete_note(args.uuid)
    finally:
        change_log.close()

    print(f"{args.uuid} (Deleted)")
    return 0


def cmd_note_list(args: argparse.Namespace) -> int:
    """List notes in the local replica."""
    config = load_config(args.config)
    change_log = _open_change_log(config)

    try:
        notes = change_log.list_notes()
    finally:
        change_log.close()

    if args.json:
        print(json.dumps([note.to_dict() for note in notes], indent=2))
        return 0

    if not notes:
        print("No notes.")
    for note in notes:
        print(f"{note.uuid}  {note.title or '(untitled)'}")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="notesync",
        description="Two-way incremental note synchronization",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: config.yaml)",
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

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start the sync server")
    serve_parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Port to listen on (default: from config)",
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: from config)",
    )
    serve_parser.set_defaults(func=cmd_serve)

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Sync the local replica")
    sync_parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep syncing at the configured interval",
    )
    sync_parser.set_defaults(func=cmd_sync)

    # Status command
    status_parser = subparsers.add_parser("status", help="Show sync status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # Note commands
    note_parser = subparsers.add_parser("note", help="Edit the local replica")
    note_subparsers = note_parser.add_subparsers(dest="note_command", help="Note commands")

    note_add = note_subparsers.add_parser("add", help="Create or update a note")
    note_add.add_argument("--uuid", default=None, help="Note uuid (default: new uuid)")
    note_add.add_argument("--title", default=None, help="Note title")
    note_add.add_argument("--content", default=None, help="Note content")
    note_add.set_defaults(func=cmd_note_add)

    note_delete = note_subparsers.add_parser("delete", help="Delete a note")
    note_delete.add_argument("uuid", help="Note uuid")
    note_delete.set_defaults(func=cmd_note_delete)

    note_list = note_subparsers.add_parser("list", help="List notes")
    note_list.add_argument(
        "--json",
        action="store_true",
        help="Output notes as JSON",
    )
    note_list.set_defaults(func=cmd_note_list)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    # Handle note subcommand requiring its own subcommand
    if args.command == "note" and not args.note_command:
        note_parser.print_help()
        return 1

    func = args.func
    if asyncio.iscoroutinefunction(func):
        return asyncio.run(func(args))
    else:
        return func(args)


if __name__ == "__main__":
    sys.exit(main())
