"""
Tests for the in-memory paper terminal used by dry runs.
"""

import pytest
from decimal import Decimal

from exchange.errors import DataUnavailableError, OrderRejectedError
from exchange.models import Side


class TestPaperTradingApi:

    @pytest.mark.asyncio
    async def test_market_data(self, paper):
        assert await paper.get_bid("EURUSD") == Decimal("1.10000")
        assert await paper.get_ask("EURUSD") == Decimal("1.10010")
        assert await paper.get_spread("EURUSD") == 10
        assert await paper.get_digits("EURUSD") == 5

    @pytest.mark.asyncio
    async def test_unknown_symbol(self, paper):
        with pytest.raises(DataUnavailableError):
            await paper.get_quote("XAUUSD")

    @pytest.mark.asyncio
    async def test_stop_order_on_wrong_side_of_market_is_rejected(self, paper):
        with pytest.raises(OrderRejectedError):
            await paper.sell_stop_points("EURUSD", Decimal("0.10"), -30, 0, 0)

    @pytest.mark.asyncio
    async def test_pending_order_fills_on_quote_and_keeps_ticket(self, paper):
        ticket = await paper.buy_stop_points("EURUSD", Decimal("0.10"), 20, 0, 0)
        paper.set_quote("EURUSD", "1.10025", "1.10035")

        assert await paper.get_pending_orders() == []
        [position] = await paper.get_positions("EURUSD")
        assert position.ticket == ticket
        assert position.open_price == Decimal("1.10035")

    @pytest.mark.asyncio
    async def test_take_profit_realizes_into_balance(self, paper):
        await paper.buy_market("EURUSD", Decimal("1"), tp=Decimal("1.10060"))
        paper.feed("EURUSD", [("1.10060", "1.10070")])
        await paper.sleep(0)

        assert await paper.get_position_count() == 0
        assert await paper.get_balance() == Decimal("10050.00")

    @pytest.mark.asyncio
    async def test_floating_profit_and_equity(self, paper):
        await paper.sell_market("EURUSD", Decimal("0.50"))
        paper.set_quote("EURUSD", "1.09980", "1.09990")

        assert await paper.get_profit() == Decimal("5.00")
        assert await paper.get_equity() == Decimal("10005.00")

    @pytest.mark.asyncio
    async def test_partial_close(self, paper):
        ticket = await paper.buy_market("EURUSD", Decimal("1.00"))
        await paper.close_position(ticket, Decimal("0.40"))

        [position] = await paper.get_positions()
        assert position.volume == Decimal("0.60")

    @pytest.mark.asyncio
    async def test_off_grid_volume_is_normalized_by_the_facade(self, paper):
        ticket = await paper.buy_market("EURUSD", Decimal("0.123"))
        [position] = await paper.get_positions()
        assert position.ticket == ticket
        assert position.volume == Decimal("0.12")

    @pytest.mark.asyncio
    async def test_close_unknown_ticket_is_rejected(self, paper):
        with pytest.raises(OrderRejectedError):
            await paper.close_position(999)

    @pytest.mark.asyncio
    async def test_close_all_and_cancel_all_filter_by_side(self, paper):
        await paper.buy_market("EURUSD", Decimal("0.10"))
        await paper.sell_market("EURUSD", Decimal("0.10"))
        await paper.buy_stop_points("EURUSD", Decimal("0.10"), 50, 0, 0)
        await paper.sell_stop_points("EURUSD", Decimal("0.10"), 50, 0, 0)

        assert await paper.close_all("EURUSD", Side.BUY) == 1
        assert await paper.cancel_all("EURUSD", Side.SELL) == 1
        [position] = await paper.get_positions()
        [order] = await paper.get_pending_orders()
        assert position.side == Side.SELL
        assert order.order_type.side == Side.BUY
