#!/usr/bin/env python
"""Command line entry point for NotePocket storage maintenance."""
import argparse
import atexit
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path

from notepocket import __version__
from notepocket.config import config
from notepocket.exceptions import NotePocketError
from notepocket.observability import configure_logging
from notepocket.services.demo_data import seed_demo_data
from notepocket.services.legacy_kv import JsonFileKVStore
from notepocket.services.migration_service import MigrationService
from notepocket.services.transfer_service import dump_export, export_data, import_payload
from notepocket.storage.adapter import StorageAdapter
from notepocket.storage.file_selection import PathFileSelector


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="NotePocket storage tool")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--database-path",
        help="Database image file to open or create",
        type=str,
        default=os.environ.get("NOTEPOCKET_DATABASE_PATH")
    )
    parser.add_argument(
        "--legacy-kv",
        help="Legacy key-value JSON file to migrate from",
        type=str,
        default=os.environ.get("NOTEPOCKET_LEGACY_KV_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("NOTEPOCKET_LOG_LEVEL", "INFO")
    )
    parser.add_argument(
        "--log-dir",
        help="Directory for rotating log files",
        type=str,
        default=None
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("status", help="Show storage status and record counts")
    export_parser = subparsers.add_parser("export", help="Export notes and folders as JSON")
    export_parser.add_argument("file", help="Output file, or - for stdout")
    import_parser = subparsers.add_parser("import", help="Import notes and folders from JSON")
    import_parser.add_argument("file", help="Input file, or - for stdin")
    subparsers.add_parser("migrate", help="Migrate data from the legacy key-value store")
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.legacy_kv:
        config.legacy_kv_path = Path(args.legacy_kv)
    config.log_level = args.log_level


def _close_on_exit(adapter: StorageAdapter):
    """Flush and close the adapter if the command did not get to it."""
    try:
        adapter.close()
    except NotePocketError as e:
        logging.getLogger(__name__).warning(f"Failed to close storage on exit: {e}")


def open_storage(logger: logging.Logger) -> StorageAdapter:
    """Initialize the adapter and move it onto the configured database file."""
    # Seed after the upgrade so demo data lands in the file only when it is empty
    adapter = StorageAdapter(
        config=config.model_copy(update={"seed_demo_data": False}),
        file_selector=PathFileSelector(config.get_database_path()),
    )
    adapter.initialize()
    atexit.register(_close_on_exit, adapter)

    result = adapter.upgrade()
    if not result.success:
        logger.error(f"Could not open {config.get_database_path()}: {result.error}")
        sys.exit(1)
    if config.seed_demo_data:
        seed_demo_data(adapter)
    return adapter


def run_migration(adapter: StorageAdapter, logger: logging.Logger):
    legacy_path = config.get_legacy_kv_path()
    if legacy_path is None:
        return None
    result = MigrationService(adapter, JsonFileKVStore(legacy_path)).migrate()
    if not result.success:
        logger.error("Legacy migration failed; legacy data was kept")
    return result


def main(argv=None):
    """Run a NotePocket storage command."""
    args = parse_args(argv)
    update_config(args)

    # Configure logging (console + persistent file logging with rotation)
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(log_dir=args.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.debug(f"Persistent logging enabled: {log_dir}")

    adapter = open_storage(logger)
    try:
        migration = run_migration(adapter, logger)

        if args.command == "status":
            counts = adapter.backend.count()
            print(json.dumps({**adapter.status().to_dict(), **counts}, indent=2))
        elif args.command == "migrate":
            if migration is None:
                logger.error("No legacy store configured (use --legacy-kv)")
                sys.exit(1)
            print(json.dumps(asdict(migration), indent=2))
            if not migration.success:
                sys.exit(1)
        elif args.command == "export":
            text = dump_export(export_data(adapter))
            if args.file == "-":
                print(text)
            else:
                Path(args.file).write_text(text, encoding="utf-8")
                logger.info(f"Exported to {args.file}")
        elif args.command == "import":
            if args.file == "-":
                text = sys.stdin.read()
            else:
                text = Path(args.file).read_text(encoding="utf-8")
            result = import_payload(adapter, text)
            print(json.dumps(result.to_dict(), indent=2))
    except NotePocketError as e:
        logger.error(f"{args.command} failed: {e}")
        sys.exit(1)
    except OSError as e:
        logger.error(f"{args.command} failed: {e}")
        sys.exit(1)
    finally:
        _close_on_exit(adapter)


if __name__ == "__main__":
    main()
