"""
Tests for the breakout coordinator against the paper terminal.

Default trap: risk $40, SL 50 pts, distance 30 pts at 1.10000 / 1.10010,
so BUY STOP @ 1.10040 and SELL STOP @ 1.09970, 0.80 lots each.
"""

import asyncio
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from config import BreakoutConfig
from exchange.errors import ConnectionLostError, OrderRejectedError
from trading.breakout import BreakoutCoordinator, BreakoutState


def make(paper, locks, **overrides):
    config = BreakoutConfig(poll_interval_sec=0, **overrides)
    return BreakoutCoordinator(paper, config, "EURUSD", sleep=paper.sleep, locks=locks)


class TestBreakoutTriggered:

    @pytest.mark.asyncio
    async def test_buy_side_breakout_cancels_sell_stop(self, paper, locks):
        paper.feed("EURUSD", [
            ("1.10020", "1.10030"),
            ("1.10035", "1.10045"),   # ask crosses the BUY STOP
        ])
        outcome = await make(paper, locks).run()

        assert outcome.triggered
        assert outcome.state == BreakoutState.RESOLVED
        assert outcome.polls_used == 2
        assert outcome.volume == Decimal("0.80")
        assert outcome.buy_stop_price == Decimal("1.10040")
        assert outcome.sell_stop_price == Decimal("1.09970")
        assert outcome.cancelled_orders == 1
        assert outcome.closed_positions == 1

        # Exactly the BUY STOP became a position; nothing is left behind
        assert [t for t, _ in paper.closed_deals] == [outcome.buy_stop_ticket]
        assert await paper.get_pending_orders() == []
        assert await paper.get_positions() == []

    @pytest.mark.asyncio
    async def test_sell_side_breakout(self, paper, locks):
        paper.feed("EURUSD", [("1.09965", "1.09975")])
        outcome = await make(paper, locks).run()

        assert outcome.triggered
        assert outcome.polls_used == 1
        assert [t for t, _ in paper.closed_deals] == [outcome.sell_stop_ticket]
        assert await paper.get_pending_orders() == []

    @pytest.mark.asyncio
    async def test_realized_pnl_lands_in_final_balance(self, paper, locks):
        paper.feed("EURUSD", [("1.10035", "1.10045")])
        outcome = await make(paper, locks).run()

        # Filled at ask 1.10045, closed at bid 1.10035: -10 pts × 0.80 lots
        assert outcome.final_balance == Decimal("9992.00")

    @pytest.mark.asyncio
    async def test_whipsaw_fills_both_sides_and_closes_both(self, paper, locks):
        # Both quotes land inside one poll interval, so both stops fill before the first check
        paper.feed("EURUSD", [
            ("1.10035", "1.10045"),   # BUY STOP @ 1.10040 fills
            ("1.09965", "1.09975"),   # SELL STOP @ 1.09970 fills
        ])

        async def fast_market(seconds):
            paper.advance()
            paper.advance()

        coordinator = BreakoutCoordinator(
            paper, BreakoutConfig(poll_interval_sec=0, stop_loss_points=100), "EURUSD",
            sleep=fast_market, locks=locks,
        )
        outcome = await coordinator.run()

        assert outcome.triggered
        assert outcome.volume == Decimal("0.40")
        assert outcome.polls_used == 1
        assert outcome.cancelled_orders == 0
        assert outcome.closed_positions == 2
        assert sorted(t for t, _ in paper.closed_deals) == sorted(
            [outcome.buy_stop_ticket, outcome.sell_stop_ticket]
        )
        assert await paper.get_pending_orders() == []
        assert await paper.get_positions() == []


class TestBreakoutExpired:

    @pytest.mark.asyncio
    async def test_no_fill_cancels_both_orders(self, paper, locks):
        outcome = await make(paper, locks, max_polls=3).run()

        assert not outcome.triggered
        assert outcome.state == BreakoutState.EXPIRED
        assert outcome.polls_used == 3
        assert outcome.cancelled_orders == 2
        assert outcome.closed_positions == 0
        assert await paper.get_pending_orders() == []
        assert outcome.final_balance == Decimal("10000")

    @pytest.mark.asyncio
    async def test_cancelled_session_still_cleans_up(self, paper, locks):
        cancel = asyncio.Event()
        cancel.set()
        coordinator = BreakoutCoordinator(
            paper, BreakoutConfig(poll_interval_sec=0), "EURUSD",
            cancel_event=cancel, sleep=paper.sleep, locks=locks,
        )
        outcome = await coordinator.run()

        assert outcome.cancelled
        assert outcome.polls_used == 0
        assert outcome.state == BreakoutState.EXPIRED
        assert await paper.get_pending_orders() == []

    @pytest.mark.asyncio
    async def test_bulk_cancel_failure_falls_back_to_own_tickets(self, paper, locks):
        with patch.object(paper, "cancel_all", AsyncMock(side_effect=ConnectionLostError("gateway down"))):
            outcome = await make(paper, locks, max_polls=2).run()

        assert outcome.cancelled_orders == 2
        assert await paper.get_pending_orders() == []


class TestBreakoutArming:

    @pytest.mark.asyncio
    async def test_rejected_sell_stop_removes_buy_stop(self, paper, locks):
        real_place = paper._place_pending
        calls = []

        async def reject_second(*args):
            calls.append(args)
            if len(calls) == 2:
                raise OrderRejectedError("not enough margin", 10019)
            return await real_place(*args)

        paper._place_pending = reject_second
        with pytest.raises(OrderRejectedError):
            await make(paper, locks).run()

        assert len(calls) == 2
        assert await paper.get_pending_orders() == []

    @pytest.mark.asyncio
    async def test_existing_positions_do_not_count_as_a_fill(self, paper, locks):
        await paper.buy_market("EURUSD", Decimal("0.10"))
        outcome = await make(paper, locks, max_polls=2).run()

        assert not outcome.triggered
        assert outcome.state == BreakoutState.EXPIRED
