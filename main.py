#!/usr/bin/env python3
"""Entry point for the root propagator service.

Loads configuration from the environment (and a ``.env`` file if present),
then runs the relay until interrupted, or a single pass with ``--once``.
"""

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler

from dotenv import load_dotenv

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO", log_to_file: bool = False) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_file: Also write combined.log and error.log rotating files
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_to_file:
        combined = RotatingFileHandler(
            "combined.log", maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
        )
        errors = RotatingFileHandler(
            "error.log", maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
        )
        errors.setLevel(logging.ERROR)
        handlers.extend([combined, errors])

    logging.basicConfig(level=log_level, format=LOG_FORMAT, handlers=handlers, force=True)


# Get logger for this module
logger = logging.getLogger(__name__)

from root_propagator.config import RelayerConfig
from root_propagator.exceptions import PersistenceError
from root_propagator.relayer import RootRelayer


def _install_signal_handlers(relayer: RootRelayer) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, relayer.stop)


def _log_config_error(error: Exception) -> None:
    logger.error(f"Configuration Error: {error}")
    logger.error("Please check your environment variables:")
    logger.error("  - L1_RPC_URLS, L2_RPC_URLS: RPC endpoints")
    logger.error("  - L1_MESSAGE_SERVICE_ADDRESS, LINEA_STATE_BRIDGE_ADDRESS,")
    logger.error("    WORLD_ID_IDENTITY_MANAGER_ADDRESS, L2_MESSAGE_SERVICE_ADDRESS,")
    logger.error("    L2_WORLD_ID_BRIDGE_ADDRESS: contract addresses")
    logger.error("  - PRIVATE_KEY: required when KEY_SOURCE=env")


async def main() -> None:
    """Main entry point for the root propagator service.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    load_dotenv()

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Root Propagator - propagate identity roots from L1 to L2 and claim bridge messages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  L1_RPC_URLS / L2_RPC_URLS   - Comma-separated RPC endpoints per chain
  L1_MESSAGE_SERVICE_ADDRESS  - L1 message service emitting MessageSent
  LINEA_STATE_BRIDGE_ADDRESS  - L1 state bridge exposing propagateRoot
  WORLD_ID_IDENTITY_MANAGER_ADDRESS - L1 identity manager emitting TreeChanged
  L2_MESSAGE_SERVICE_ADDRESS  - L2 message service holding the inbox
  L2_WORLD_ID_BRIDGE_ADDRESS  - L2 bridge holding the propagated root
  KEY_SOURCE                  - env (PRIVATE_KEY) or appd (default: env)
  APPD_URL / APPD_KEY_ID      - appd endpoint and key id for KEY_SOURCE=appd
  DATABASE_PATH               - SQLite ledger file (default: messages.db)
  LOG_LEVEL / LOG_TO_FILE     - Logging settings
  STATUS_LOG_INTERVAL         - Seconds between status lines (default: 60)
        """
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Set the logging level (default: LOG_LEVEL or INFO)"
    )
    parser.add_argument(
        "--database",
        default=None,
        help="Path of the SQLite message ledger (overrides DATABASE_PATH)"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        default=False,
        help="Run one propagation check and one claim pass, then exit"
    )
    args: argparse.Namespace = parser.parse_args()

    try:
        config = RelayerConfig.from_env()
    except ValueError as e:
        setup_logging(args.log_level or "INFO")
        _log_config_error(e)
        sys.exit(1)

    if args.database:
        config = dataclasses.replace(config, database_path=args.database)

    setup_logging(args.log_level or config.log_level, config.log_to_file)
    logger.info("=== Root Propagator Starting ===")

    try:
        relayer = await RootRelayer.from_config(config)

        if args.once:
            await relayer.run_once()
            return

        _install_signal_handlers(relayer)
        await relayer.run()

    except ValueError as e:
        _log_config_error(e)
        sys.exit(1)

    except PersistenceError as e:
        logger.error(f"Message ledger unavailable: {e}")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
        sys.exit(0)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
