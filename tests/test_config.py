"""
Tests for environment-driven configuration and the CLI wiring.
"""

import asyncio
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock

from config import BotConfig
from exchange.models import Side
from exchange.paper import PaperTradingApi
from exchange.terminal_rest import TerminalRestClient
from main import build_api, build_coordinator, parse_args
from notifications.telegram import TelegramNotifier
from trading.hedge import HedgeController, HedgeOutcome
from trading.martingale import MartingaleSequencer


class TestBotConfig:

    def test_defaults(self):
        config = BotConfig()
        assert config.symbol == "EURUSD"
        assert config.breakout.breakout_distance_points == 30
        assert config.martingale.safety_multiplier == 16
        assert config.paper.dry_run

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SYMBOL", "GBPUSD")
        monkeypatch.setenv("DRY_RUN", "false")
        monkeypatch.setenv("GATEWAY_URL", "http://10.0.0.5:9000")
        monkeypatch.setenv("MARTINGALE_SAFETY_MULTIPLIER", "8")
        monkeypatch.setenv("MARTINGALE_MAX_TRADES", "4")
        config = BotConfig.from_env()

        assert config.symbol == "GBPUSD"
        assert not config.paper.dry_run
        assert config.gateway.base_url == "http://10.0.0.5:9000"
        assert config.martingale.safety_multiplier == 8
        assert config.martingale.max_trades == 4

    def test_instances_do_not_share_nested_configs(self):
        a, b = BotConfig(), BotConfig()
        a.martingale.max_trades = 1
        assert b.martingale.max_trades == 5


class TestCli:

    def test_parse_args(self):
        args = parse_args(["hedge", "--sell", "--symbol", "usdjpy", "--live"])
        assert args.coordinator == "hedge"
        assert args.sell
        assert args.symbol == "usdjpy"
        assert args.dry_run is False

    def test_dry_run_defaults_to_config(self):
        assert parse_args(["trend"]).dry_run is None

    def test_unknown_coordinator_exits(self):
        with pytest.raises(SystemExit):
            parse_args(["scalper"])

    @pytest.mark.asyncio
    async def test_build_paper_api(self):
        config = BotConfig()
        api, sleep = build_api(config)

        assert isinstance(api, PaperTradingApi)
        assert sleep == api.sleep
        assert await api.get_spread("EURUSD") == config.paper.spread_points

    def test_build_live_api(self):
        config = BotConfig()
        config.paper.dry_run = False
        api, sleep = build_api(config)

        assert isinstance(api, TerminalRestClient)
        assert sleep is asyncio.sleep

    def test_build_coordinator(self):
        config = BotConfig()
        cancel = asyncio.Event()
        api, sleep = build_api(config)

        hedge = build_coordinator("hedge", config, api, sleep, cancel)
        martingale = build_coordinator("martingale", config, api, sleep, cancel)
        assert isinstance(hedge, HedgeController)
        assert isinstance(martingale, MartingaleSequencer)
        assert hedge.cancel_event is cancel


class TestTelegramNotifier:

    def test_disabled_without_token(self):
        assert not TelegramNotifier(bot_token="", chat_id="123").enabled

    @pytest.mark.asyncio
    async def test_session_report_is_escaped(self):
        notifier = TelegramNotifier(bot_token="t", chat_id="c")
        notifier.send = AsyncMock()
        outcome = HedgeOutcome(
            coordinator="hedge", symbol="EURUSD", direction=Side.BUY,
            volume=Decimal("0.30"), primary_entry=Decimal("1.10010"),
            final_balance=Decimal("9982"), errors=["close <#1> failed"],
        )
        await notifier.send_session_report(outcome)

        message = notifier.send.await_args.args[0]
        assert message.startswith("⚠️ <b>HEDGE EURUSD</b>")
        assert "Primary Buy 0.30 @ 1.10010" in message
        assert "close &lt;#1&gt; failed" in message
