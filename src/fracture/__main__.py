"""Entry point for the Fracture MCP server."""

import argparse
import logging

from importlib.metadata import PackageNotFoundError, version

from fracture.constants import DEFAULT_DATABASE_PATH
from fracture.database.session import init_database
from fracture.logging_config import setup_logging
from fracture.server import server, shutdown_engine

logger = logging.getLogger("fracture")


def main() -> int:
    """Main entry point for the Fracture server."""
    setup_logging()

    parser = argparse.ArgumentParser(
        description="Fracture: MCP server for streaming early-warning scoring"
    )
    parser.add_argument(
        "--database",
        default=DEFAULT_DATABASE_PATH,
        help=f"Path to database file (default: {DEFAULT_DATABASE_PATH})",
    )
    args = parser.parse_args()

    try:
        current = version("fracture")
    except PackageNotFoundError:
        current = "dev"
    logger.info(f"Starting Fracture v{current}...")
    logger.info(f"Using database: {args.database}")

    try:
        init_database(args.database)
        logger.info("Database initialized successfully")

        logger.info("Starting MCP server...")
        server.run()
        return 0

    except Exception as e:
        logger.error(f"Server failed to start: {e}", exc_info=True)
        return 1

    finally:
        shutdown_engine()


if __name__ == "__main__":
    exit(main())
