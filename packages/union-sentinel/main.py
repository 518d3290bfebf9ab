#!/usr/bin/env python3
"""Entry point for the Union Sentinel service.

Loads the configuration document and the monitoring environment, then runs
the sentinel until interrupted (or, in single-interaction mode, until the one
transfer reaches a terminal state).
"""

import argparse
import asyncio
import logging
import os
import sys


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


logger = logging.getLogger(__name__)

from union_sentinel.errors import ConfigError  # noqa: E402
from union_sentinel.models import TransferState  # noqa: E402
from union_sentinel.sentinel import Sentinel  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Union Sentinel - cross-chain transfer liveness monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  INDEXER_URL            - GraphQL endpoint of the transfer indexer (required)
  HASURA_ADMIN_SECRET    - Admin secret header for the indexer
  TRACE_POLL_INTERVAL    - Seconds between correlation passes (default: 5)
  MAX_CONCURRENT_QUERIES - Concurrent indexer queries (default: 8)
  TRANSFER_TIMEOUT       - Packet timeout in seconds after dispatch (default: 3600)
  DELIVERY_EVENT_TYPES   - Comma-separated delivery event types (default: WRITE_ACK)
  ROFL_APPD_URL          - ROFL daemon URL (default: unix socket)
  LOG_LEVEL              - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--config",
        default=os.environ.get("SENTINEL_CONFIG", "config.json"),
        help="Path to the JSON configuration document (default: config.json)"
    )
    parser.add_argument(
        "--local",
        action="store_true",
        default=False,
        help="Run in local mode without ROFL utilities (signers need local keys)"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    return parser


async def main() -> None:
    """Main entry point for the Union Sentinel.

    Raises:
        SystemExit: On configuration errors, fatal runtime errors, or a
            single-interaction run that did not complete
    """
    args = build_parser().parse_args()
    setup_logging(args.log_level)

    logger.info(f"=== Union Sentinel Starting {'(LOCAL MODE)' if args.local else ''}===")

    try:
        sentinel = Sentinel.from_files(args.config, local_mode=args.local)
        await sentinel.run()
    except ConfigError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check the configuration document and INDEXER_URL")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
        if 'sentinel' in locals():
            sentinel.stop()
        return
    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)

    if sentinel.config.single_mode:
        result = sentinel.result
        if result is None or result.state is not TransferState.COMPLETED:
            logger.error(f"Single interaction did not complete: {result}")
            sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
