"""Entry point: discover new listings, buy them, and guard them with a trailing stop-loss."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler

import config
from trading.runtime import build_runtime

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    os.makedirs(config.LOG_DIR, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = RotatingFileHandler(config.APP_LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level or config.LOG_LEVEL).upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    # Transport debug lines would echo the x-api-key header.
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="New-listing sniper with trailing stop-loss liquidation.")
    parser.add_argument("--once", action="store_true", help="Run a single discovery cycle and wait for its batch.")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL (DEBUG, INFO, ...).")
    return parser.parse_args()


async def run(once: bool = False) -> None:
    runtime = build_runtime()
    try:
        if once:
            await runtime.loop.run(max_cycles=1)
            await runtime.loop.drain()
        else:
            await runtime.loop.run()
    finally:
        await runtime.close()


def main() -> None:
    args = _parse_args()
    configure_logging(args.log_level)
    logger.info(
        "STARTUP run_tag=%s stop_loss=%s poll=%.1fs discovery_interval=%.0fs buy_amount=%s",
        config.RUN_TAG or "-",
        config.STOP_LOSS_FRACTION,
        config.POLL_INTERVAL_SECONDS,
        config.DISCOVERY_INTERVAL_SECONDS,
        config.BUY_AMOUNT_IN,
    )
    try:
        asyncio.run(run(once=args.once))
    except KeyboardInterrupt:
        logger.info("SHUTDOWN reason=keyboard_interrupt")


if __name__ == "__main__":
    main()
