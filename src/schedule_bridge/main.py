#!/usr/bin/env python3

import argparse
import asyncio
import logging
import os
import signal
import sys

from .relay.relayer import ScheduleRelayer

logger = logging.getLogger(__name__)

ENV_HELP = """\
environment variables:
  ORIGIN_RPC_URL             Origin chain RPC endpoint (required)
  ORIGIN_CONTRACT_ADDRESS    ScheduleEmitter contract address (required)
  RELAY_PRIVATE_KEY          Relay key for markBridged (required unless --dry-run)
  FLOW_NETWORK               emulator | testnet | mainnet | previewnet (default: emulator)
  FLOW_SIGNER                flow.json signer account (default: emulator-account)
  FLOW_SCHEDULE_TRANSACTION  Cadence transaction path
  FLOW_LOOKUP_SCRIPT         Cadence script path for origin key lookups
  FLOW_CONFIG_PATH           Path to flow.json
  POLLING_INTERVAL, RESCAN_INTERVAL, RESCAN_WINDOW, LOOKBACK_BLOCKS,
  MAX_IN_FLIGHT, RETRY_COUNT, RETRY_BASE_DELAY, RETRY_MAX_DELAY, SUBMIT_TIMEOUT,
  SHUTDOWN_TIMEOUT, CURSOR_PATH, ALERT_WEBHOOK_URL, LOG_LEVEL
"""


def setup_logging(level: str) -> None:
    """Configure root logging for the relay process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Schedule Relay: relays ScheduleRequested events into the Flow payment ledger",
        epilog=ENV_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Schedule into an in-memory payment ledger and skip markBridged",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Logging level (default: LOG_LEVEL or INFO)",
    )
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> None:
    """Main entry point for the schedule relay."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    logger.info(f"Starting in {'DRY RUN' if args.dry_run else 'PRODUCTION'} mode")

    try:
        relayer = ScheduleRelayer.from_env(dry_run=args.dry_run)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Required environment variables:")
        logger.error("  - ORIGIN_RPC_URL: Origin chain RPC endpoint (e.g., Flow EVM)")
        logger.error("  - ORIGIN_CONTRACT_ADDRESS: ScheduleEmitter contract address")
        if not args.dry_run:
            logger.error("  - RELAY_PRIVATE_KEY: Private key of the relay identity")
        sys.exit(1)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, relayer.stop)
        except NotImplementedError:
            pass  # Windows: KeyboardInterrupt still stops the loop

    try:
        await relayer.run()
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)


def cli() -> None:
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")


if __name__ == "__main__":
    cli()
