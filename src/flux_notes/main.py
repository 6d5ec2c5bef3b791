#!/usr/bin/env python
"""Main entry point for the Flux Notes MCP server."""
import argparse
import atexit
import logging
import sys
from pathlib import Path

from flux_notes import __version__
from flux_notes.config import config
from flux_notes.exceptions import StorageError
from flux_notes.models.db_models import init_db
from flux_notes.observability import configure_logging, metrics
from flux_notes.server.mcp_server import FluxNotesMcpServer


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Flux Notes MCP Server")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=None,
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=config.log_level,
    )
    parser.add_argument(
        "--log-dir",
        help="Directory for rotating log files",
        type=str,
        default=None,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.log_dir:
        config.log_dir = Path(args.log_dir)
    config.log_level = args.log_level


def _save_metrics_on_exit():
    """Save metrics to disk on server shutdown."""
    if metrics.save_metrics():
        logging.getLogger(__name__).info("Metrics saved to disk on shutdown")


def main(argv=None):
    """Run the Flux Notes MCP server."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, config.log_level, logging.INFO)
    try:
        log_file = configure_logging(config.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_file = None

    logger = logging.getLogger(__name__)
    if log_file:
        logger.info(f"Persistent logging enabled: {log_file}")

    atexit.register(_save_metrics_on_exit)

    try:
        logger.info(f"Using SQLite database: {config.get_database_path()}")
        engine = init_db()
    except StorageError as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    logger.info(f"Starting {config.server_name} MCP server {config.server_version}")
    server = FluxNotesMcpServer(engine)
    server.run()


if __name__ == "__main__":
    main()
