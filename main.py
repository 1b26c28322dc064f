"""
Terminal Strategy Bot — Entry point.
Builds the trading API (paper or live gateway), runs one coordinator, reports.

    python main.py breakout
    python main.py hedge --sell
    python main.py trend --symbol GBPUSD --live
    python main.py martingale
"""

from __future__ import annotations
import argparse
import asyncio
import os
import signal
import sys
import logging

from dotenv import load_dotenv

from config import BotConfig
from exchange.errors import TradingApiError
from exchange.models import Side
from exchange.paper import PaperTradingApi, forex_spec
from exchange.terminal_rest import TerminalRestClient
from notifications.telegram import TelegramNotifier
from trading.breakout import BreakoutCoordinator
from trading.hedge import HedgeController
from trading.martingale import MartingaleSequencer
from trading.trailing_stop import TrailingStopController

logger = logging.getLogger(__name__)

COORDINATORS = ("breakout", "hedge", "trend", "martingale")


def setup_logging(config: BotConfig):
    # Create the log dir before FileHandler
    os.makedirs(os.path.dirname(config.log_file) or ".", exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(config.log_file),
        ],
    )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one trading strategy session against the terminal.")
    parser.add_argument("coordinator", choices=COORDINATORS)
    parser.add_argument("--symbol", default=None, help="Override SYMBOL from the environment")
    parser.add_argument("--sell", action="store_true", help="Open the primary position short (hedge/trend/martingale)")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", dest="dry_run", action="store_true", default=None,
                      help="Use the in-memory paper terminal")
    mode.add_argument("--live", dest="dry_run", action="store_false",
                      help="Send orders through the terminal gateway")
    return parser.parse_args(argv)


def build_api(config: BotConfig):
    """Returns (api, sleep). Paper mode moves its simulated market on every sleep."""
    if config.paper.dry_run:
        paper = config.paper
        spec = forex_spec(config.symbol, paper.digits)
        api = PaperTradingApi(
            balance=paper.balance,
            random_walk_points=paper.random_walk_points,
            realtime=True,
            seed=paper.seed,
        )
        ask = paper.bid + spec.point * paper.spread_points
        api.add_symbol(spec, paper.bid, ask)
        logger.info(f"[BOOT] PAPER mode: {config.symbol} @ {paper.bid}/{ask}, balance=${paper.balance}")
        return api, api.sleep

    gw = config.gateway
    api = TerminalRestClient(
        api_key=gw.api_key,
        api_secret=gw.api_secret,
        base_url=gw.base_url,
        max_retries=gw.max_retries,
        retry_backoff_sec=gw.retry_backoff_sec,
        timeout_sec=gw.timeout_sec,
    )
    logger.info(f"[BOOT] LIVE mode via {gw.base_url}")
    return api, asyncio.sleep


def build_coordinator(name: str, config: BotConfig, api, sleep, cancel_event: asyncio.Event):
    kwargs = dict(symbol=config.symbol, cancel_event=cancel_event, sleep=sleep)
    if name == "breakout":
        return BreakoutCoordinator(api, config.breakout, **kwargs)
    if name == "hedge":
        return HedgeController(api, config.hedge, **kwargs)
    if name == "trend":
        return TrailingStopController(api, config.trailing, **kwargs)
    return MartingaleSequencer(api, config.martingale, **kwargs)


async def run(args: argparse.Namespace, config: BotConfig) -> int:
    api, sleep = build_api(config)
    notifier = TelegramNotifier(
        bot_token=config.notifications.telegram_bot_token,
        chat_id=config.notifications.telegram_chat_id,
        enabled=config.notifications.enabled,
    )
    cancel_event = asyncio.Event()

    # Graceful shutdown: coordinators stop at the next poll boundary and clean up
    if sys.platform != "win32":
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}. Cancelling session...")
            cancel_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    coordinator = build_coordinator(args.coordinator, config, api, sleep, cancel_event)
    run_kwargs = {}
    if args.coordinator != "breakout":
        run_kwargs["side"] = Side.SELL if args.sell else Side.BUY

    logger.info("=" * 60)
    logger.info(f"   {args.coordinator.upper()} — {config.symbol}")
    logger.info("=" * 60)

    exit_code = 0
    try:
        await notifier.send_bot_status(f"Started {args.coordinator} on {config.symbol}")
        outcome = await coordinator.run(**run_kwargs)
        for line in outcome.summary_lines():
            logger.info(f"[SUMMARY] {line}")
        await notifier.send_session_report(outcome)
    except TradingApiError as e:
        logger.critical(f"Session aborted: {e}", exc_info=True)
        await notifier.send_bot_status(f"Aborted 🔴 {e}")
        exit_code = 1
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        exit_code = 1
    finally:
        if isinstance(api, TerminalRestClient):
            await api.close()
        await notifier.close()

    return exit_code


def main(argv=None) -> int:
    load_dotenv()
    args = parse_args(argv)
    config = BotConfig.from_env()
    if args.symbol:
        config.symbol = args.symbol.upper()
    if args.dry_run is not None:
        config.paper.dry_run = args.dry_run
    setup_logging(config)

    if not config.paper.dry_run and (not config.gateway.api_key or not config.gateway.api_secret):
        logger.critical("GATEWAY_API_KEY and GATEWAY_API_SECRET must be set for live trading!")
        return 1

    return asyncio.run(run(args, config))


if __name__ == "__main__":
    sys.exit(main())
