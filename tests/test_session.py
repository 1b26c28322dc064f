"""
Tests for the coordinator runtime: bounded polling, cancellation, symbol locks.
"""

import asyncio
import pytest
from decimal import Decimal

from exchange.errors import ConnectionLostError
from trading.session import Coordinator, RiskProfile, StrategySession, SymbolLocks, best_effort


def make_session(sleep, cancel=None):
    return StrategySession(
        coordinator="test", symbol="EURUSD",
        cancel_event=cancel or asyncio.Event(), sleep=sleep,
    )


class TestPolls:

    @pytest.mark.asyncio
    async def test_yields_one_based_poll_numbers(self):
        slept = []

        async def sleep(seconds):
            slept.append(seconds)

        session = make_session(sleep)
        polls = [i async for i in session.polls(1.5, 4)]

        assert polls == [1, 2, 3, 4]
        assert slept == [1.5] * 4

    @pytest.mark.asyncio
    async def test_cancel_during_sleep_stops_at_boundary(self):
        cancel = asyncio.Event()
        slept = []

        async def sleep(seconds):
            slept.append(seconds)
            if len(slept) == 2:
                cancel.set()

        session = make_session(sleep, cancel)
        polls = [i async for i in session.polls(1, 10)]

        assert polls == [1]
        assert len(slept) == 2
        assert session.cancelled

    @pytest.mark.asyncio
    async def test_cancelled_before_start_never_sleeps(self):
        cancel = asyncio.Event()
        cancel.set()
        slept = []

        async def sleep(seconds):
            slept.append(seconds)

        polls = [i async for i in make_session(sleep, cancel).polls(1, 10)]
        assert polls == []
        assert slept == []


class TestSymbolLocks:

    def test_same_lock_per_symbol(self):
        locks = SymbolLocks()
        assert locks.get("EURUSD") is locks.get("eurusd")
        assert locks.get("EURUSD") is not locks.get("GBPUSD")

    @pytest.mark.asyncio
    async def test_sessions_on_one_symbol_are_serialized(self):
        locks = SymbolLocks()
        order = []

        async def worker(tag, symbol):
            async with locks.hold(symbol):
                order.append(f"{tag}-in")
                await asyncio.sleep(0)
                order.append(f"{tag}-out")

        await asyncio.gather(worker("a", "EURUSD"), worker("b", "EURUSD"))
        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_different_symbols_interleave(self):
        locks = SymbolLocks()
        order = []

        async def worker(tag, symbol):
            async with locks.hold(symbol):
                order.append(f"{tag}-in")
                await asyncio.sleep(0)
                order.append(f"{tag}-out")

        await asyncio.gather(worker("a", "EURUSD"), worker("b", "GBPUSD"))
        assert order == ["a-in", "b-in", "a-out", "b-out"]


class TestCoordinatorRun:

    @pytest.mark.asyncio
    async def test_run_passes_fresh_session_and_records_finish(self, locks):
        seen = []

        class Doubler(Coordinator):
            name = "doubler"

            async def _execute(self, session, value):
                seen.append(session)
                return value * 2

        result = await Doubler(api=None, symbol="EURUSD", locks=locks).run(21)

        assert result == 42
        assert seen[0].coordinator == "doubler"
        assert seen[0].finished_at is not None
        assert seen[0].started_at.tzinfo is not None
        assert seen[0].finished_at >= seen[0].started_at
        assert not locks.get("EURUSD").locked()


class TestBestEffort:

    @pytest.mark.asyncio
    async def test_returns_value(self):
        async def ok():
            return 3
        assert await best_effort("ok", ok()) == 3

    @pytest.mark.asyncio
    async def test_swallows_trading_api_errors(self):
        async def down():
            raise ConnectionLostError("gateway down")
        assert await best_effort("down", down()) is None

    @pytest.mark.asyncio
    async def test_programming_errors_propagate(self):
        async def broken():
            raise KeyError("ticket")
        with pytest.raises(KeyError):
            await best_effort("broken", broken())


class TestRiskProfile:

    def test_converts_to_decimal(self):
        profile = RiskProfile(risk_amount=40, stop_loss_points=50, take_profit_points=100)
        assert profile.risk_amount == Decimal("40")
        assert profile.take_profit_points == Decimal("100")

    @pytest.mark.parametrize("kwargs", [
        dict(risk_amount=0, stop_loss_points=50),
        dict(risk_amount=40, stop_loss_points=0),
        dict(risk_amount=40, stop_loss_points=50, trigger_points=-1),
    ])
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ValueError):
            RiskProfile(**kwargs)
