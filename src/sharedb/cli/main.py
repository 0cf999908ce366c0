"""CLI entry point for sharedb."""

import argparse
import sys
from pathlib import Path
from typing import NoReturn

from loguru import logger

from ..core.config import Config
from . import commands


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="sharedb",
        description="Apply per-component SQL migrations to a shared SQLite database",
    )
    parser.add_argument("--version", action="version", version="%(prog)s 1.0.0")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show debug logging"
    )
    parser.add_argument(
        "-d",
        "--database",
        type=Path,
        help="SQLite database file (default: $DATABASE_FILE)",
    )
    parser.add_argument(
        "-s",
        "--source",
        dest="sources",
        action="append",
        default=[],
        metavar="NAME=DIR[:PREFIX]",
        help="Register a migration source; repeat for several (applied in order)",
    )

    subparsers = parser.add_subparsers(dest="command", required=False)

    subparsers.add_parser("up", help="Apply all pending migrations")
    subparsers.add_parser("status", help="Show migration status per source")

    version_parser = subparsers.add_parser("version", help="Show a source's version")
    version_parser.add_argument("name", help="Source name")

    rollback_parser = subparsers.add_parser(
        "rollback", help="Revert a source down to a target version"
    )
    rollback_parser.add_argument("name", help="Source name")
    rollback_parser.add_argument("target", type=int, help="Version to end at")

    force_parser = subparsers.add_parser(
        "force", help="Mark a source as migrated up to a version without running SQL"
    )
    force_parser.add_argument("name", help="Source name")
    force_parser.add_argument("version", type=int, help="Version to record")

    return parser


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    config = Config.from_env()
    if args.database is not None:
        config.database_file = args.database

    try:
        if args.command == "up":
            commands.handle_up(args, config)
        elif args.command == "status":
            commands.handle_status(args, config)
        elif args.command == "version":
            commands.handle_version(args, config)
        elif args.command == "rollback":
            commands.handle_rollback(args, config)
        elif args.command == "force":
            commands.handle_force(args, config)
        else:
            parser.print_help()

        sys.exit(0)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
