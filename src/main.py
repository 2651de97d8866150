"""
Main entry point for the BigQuery MCP server.

Loads configuration, builds the BigQuery adapter and serves the MCP
capabilities over stdio until the client disconnects or the process is
interrupted.

Exit codes:
    0  clean shutdown (stdin closed, SIGINT or SIGTERM)
    1  startup or transport failure
    2  configuration error (e.g. GOOGLE_APPLICATION_CREDENTIALS not set)
"""

import argparse
import logging
import sys
from typing import List, Optional

import anyio
from dotenv import load_dotenv

from src.bridge.mcp_server import create_server, serve_stdio
from src.config import CREDENTIALS_ENV, SERVER_NAME, Settings
from src.warehouse.client import WarehouseClient
from src.warehouse.errors import StartupConfigurationError

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1
EXIT_CONFIG_ERROR = 2

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stderr; stdout carries the MCP transport."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
        force=True,
    )


def check_environment() -> Settings:
    """
    Check that required environment variables are set.

    Raises:
        StartupConfigurationError: If the credential reference is missing
    """
    return Settings.from_env()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=SERVER_NAME,
        description="MCP server exposing BigQuery table listing and SQL execution over stdio",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Environment:
  {CREDENTIALS_ENV}  path to the credential file (required)
  BIGQUERY_PROJECT_ID             default project
  BIGQUERY_LOCATION               default job location
  LOG_LEVEL                       logging level (default: INFO)

Examples:
  # Serve with the project from the credential file
  python -m src.main

  # Serve a specific project with verbose logs
  python -m src.main --project my-project --log-level DEBUG
"""
    )
    parser.add_argument("--project", help="Default BigQuery project (overrides BIGQUERY_PROJECT_ID)")
    parser.add_argument("--location", help="Default job location (overrides BIGQUERY_LOCATION)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Logging level (overrides LOG_LEVEL)",
    )
    return parser


def run(settings: Settings) -> int:
    """
    Build the server and serve it over stdio.

    Returns:
        Process exit code
    """
    try:
        client = WarehouseClient.from_config(settings.client_config())
        server = create_server(client)
    except StartupConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR
    except Exception as e:
        logger.exception(f"Server startup failed: {e}")
        return EXIT_STARTUP_FAILURE

    try:
        anyio.run(serve_stdio, server)
    except KeyboardInterrupt:
        # SIGINT while no signal receiver is installed: loop startup, a second
        # interrupt during teardown, or Ctrl-C on Windows
        logger.info("Interrupted, shutting down")
    except Exception as e:
        logger.exception(f"Server error: {e}")
        return EXIT_STARTUP_FAILURE

    logger.info("Server stopped")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with CLI argument parsing."""
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        settings = check_environment()
    except StartupConfigurationError as e:
        configure_logging(args.log_level or "INFO")
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    if args.project:
        settings.project_id = args.project
    if args.location:
        settings.location = args.location
    if args.log_level:
        settings.log_level = args.log_level

    configure_logging(settings.log_level)
    return run(settings)


if __name__ == "__main__":
    sys.exit(main())
