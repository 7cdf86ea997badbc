"""Command-line interface for the Guardian API service."""

import argparse
import asyncio
import logging
import sys

from guardian_api import __version__
from guardian_api.config import get_settings
from guardian_api.database.connection import Database
from guardian_api.log_config import configure_logging

logger = logging.getLogger(__name__)


async def _init_db(url: str) -> None:
    database = Database(url)
    await database.init()
    try:
        await database.create_tables()
    finally:
        await database.close()


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Guardian API - Bungie.net sign-in and session service"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port")
    serve_parser.add_argument(
        "--reload", action="store_true", help="Reload on code changes (development)"
    )

    # Init-db command
    subparsers.add_parser("init-db", help="Create the sessions table")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    settings = get_settings()
    configure_logging(settings.log_level)

    if args.command == "serve":
        import uvicorn

        uvicorn.run(
            "guardian_api.api.app:create_app",
            factory=True,
            host=args.host or settings.host,
            port=args.port or settings.port,
            reload=args.reload,
        )
        return 0

    if args.command == "init-db":
        asyncio.run(_init_db(settings.database_url))
        logger.info("Sessions table ready")
        return 0

    return 1


if __name__ == "__main__":
    sys.exit(main())
