"""
Trading API facade — the capability surface the coordinators consume.

Implementations (TerminalRestClient, PaperTradingApi) only provide the
primitive calls. SymbolMathMixin derives everything else from them so every
implementation shares the same normalization and bulk-cleanup rules.
"""

from __future__ import annotations
from decimal import Decimal
from typing import List, Optional, Protocol
from exchange.errors import TradingApiError
from exchange.models import (
    AccountInfo, OrderType, PendingOrderInfo, PositionInfo, Quote, Side, SymbolSpec,
)
from trading import normalizer, risk_sizer
import logging

logger = logging.getLogger(__name__)


class TradingApi(Protocol):
    # ==================== Market data ====================
    async def get_symbol_spec(self, symbol: str) -> SymbolSpec: ...
    async def get_quote(self, symbol: str) -> Quote: ...
    async def get_bid(self, symbol: str) -> Decimal: ...
    async def get_ask(self, symbol: str) -> Decimal: ...
    async def get_point(self, symbol: str) -> Decimal: ...
    async def get_digits(self, symbol: str) -> int: ...
    async def get_spread(self, symbol: str) -> int: ...

    # ==================== Normalization / sizing ====================
    async def normalize_volume(self, symbol: str, volume: Decimal) -> Decimal: ...
    async def normalize_price(self, symbol: str, price: Decimal) -> Decimal: ...
    async def calculate_volume(self, symbol: str, stop_loss_points, risk_amount) -> Decimal: ...

    # ==================== Trading ====================
    async def buy_market(self, symbol: str, volume: Decimal, sl: Optional[Decimal] = None,
                         tp: Optional[Decimal] = None, comment: str = "") -> int: ...
    async def sell_market(self, symbol: str, volume: Decimal, sl: Optional[Decimal] = None,
                          tp: Optional[Decimal] = None, comment: str = "") -> int: ...
    async def buy_stop_points(self, symbol: str, volume: Decimal, offset_points, sl_points,
                              tp_points, comment: str = "") -> int: ...
    async def sell_stop_points(self, symbol: str, volume: Decimal, offset_points, sl_points,
                               tp_points, comment: str = "") -> int: ...
    async def modify_position(self, ticket: int, sl: Optional[Decimal], tp: Optional[Decimal]) -> None: ...
    async def close_position(self, ticket: int, volume: Optional[Decimal] = None) -> None: ...
    async def close_all(self, symbol: Optional[str], side: Optional[Side] = None) -> int: ...
    async def cancel_order(self, ticket: int) -> None: ...
    async def cancel_all(self, symbol: Optional[str], side: Optional[Side] = None) -> int: ...

    # ==================== Account ====================
    async def get_positions(self, symbol: Optional[str] = None) -> List[PositionInfo]: ...
    async def get_pending_orders(self, symbol: Optional[str] = None) -> List[PendingOrderInfo]: ...
    async def get_position_count(self) -> int: ...
    async def get_profit(self) -> Decimal: ...
    async def get_balance(self) -> Decimal: ...
    async def get_equity(self) -> Decimal: ...


class SymbolMathMixin:
    """
    Derived facade calls. Subclasses implement:
      get_symbol_spec, get_quote, get_account, get_positions, get_pending_orders,
      _open_market, _place_pending, modify_position, close_position, cancel_order
    """

    async def get_bid(self, symbol: str) -> Decimal:
        return (await self.get_quote(symbol)).bid

    async def get_ask(self, symbol: str) -> Decimal:
        return (await self.get_quote(symbol)).ask

    async def get_point(self, symbol: str) -> Decimal:
        return (await self.get_symbol_spec(symbol)).point

    async def get_digits(self, symbol: str) -> int:
        return (await self.get_symbol_spec(symbol)).digits

    async def get_spread(self, symbol: str) -> int:
        """Current spread in whole points."""
        spec = await self.get_symbol_spec(symbol)
        quote = await self.get_quote(symbol)
        return int(((quote.ask - quote.bid) / spec.point).to_integral_value())

    async def normalize_volume(self, symbol: str, volume: Decimal) -> Decimal:
        return normalizer.normalize_volume(await self.get_symbol_spec(symbol), volume)

    async def normalize_price(self, symbol: str, price: Decimal) -> Decimal:
        return normalizer.normalize_price(await self.get_symbol_spec(symbol), price)

    async def calculate_volume(self, symbol: str, stop_loss_points, risk_amount) -> Decimal:
        return risk_sizer.calculate_volume(
            await self.get_symbol_spec(symbol), stop_loss_points, risk_amount
        )

    # ==================== Market orders ====================

    async def buy_market(self, symbol, volume, sl=None, tp=None, comment="") -> int:
        return await self._market(symbol, Side.BUY, volume, sl, tp, comment)

    async def sell_market(self, symbol, volume, sl=None, tp=None, comment="") -> int:
        return await self._market(symbol, Side.SELL, volume, sl, tp, comment)

    async def _market(self, symbol, side, volume, sl, tp, comment) -> int:
        spec = await self.get_symbol_spec(symbol)
        volume = normalizer.normalize_volume(spec, volume)
        sl = normalizer.normalize_price(spec, sl) if sl else None
        tp = normalizer.normalize_price(spec, tp) if tp else None
        return await self._open_market(symbol, side, volume, sl, tp, comment)

    # ==================== Pending orders with points offset ====================

    async def buy_stop_points(self, symbol, volume, offset_points, sl_points, tp_points, comment="") -> int:
        """BUY STOP at ask + offset; SL/TP measured from the order price (0 = none)."""
        spec = await self.get_symbol_spec(symbol)
        quote = await self.get_quote(symbol)
        price = quote.ask + normalizer.points_to_price(spec, offset_points)
        return await self._pending(spec, OrderType.BUY_STOP, volume, price, sl_points, tp_points, comment)

    async def sell_stop_points(self, symbol, volume, offset_points, sl_points, tp_points, comment="") -> int:
        """SELL STOP at bid - offset; SL/TP measured from the order price (0 = none)."""
        spec = await self.get_symbol_spec(symbol)
        quote = await self.get_quote(symbol)
        price = quote.bid - normalizer.points_to_price(spec, offset_points)
        return await self._pending(spec, OrderType.SELL_STOP, volume, price, sl_points, tp_points, comment)

    async def _pending(self, spec, order_type, volume, price, sl_points, tp_points, comment) -> int:
        sign = order_type.side.sign
        sl = price - sign * normalizer.points_to_price(spec, sl_points) if sl_points else None
        tp = price + sign * normalizer.points_to_price(spec, tp_points) if tp_points else None
        return await self._place_pending(
            spec.symbol,
            order_type,
            normalizer.normalize_volume(spec, volume),
            normalizer.normalize_price(spec, price),
            normalizer.normalize_price(spec, sl) if sl is not None else None,
            normalizer.normalize_price(spec, tp) if tp is not None else None,
            comment,
        )

    # ==================== Bulk cleanup ====================

    async def close_all(self, symbol: Optional[str], side: Optional[Side] = None) -> int:
        """Close every matching position. Continues past individual failures."""
        closed = 0
        for pos in await self.get_positions(symbol):
            if side is not None and pos.side != side:
                continue
            try:
                await self.close_position(pos.ticket)
                closed += 1
            except TradingApiError as e:
                logger.error(f"[API] Failed to close position {pos.ticket}: {e}")
        return closed

    async def cancel_all(self, symbol: Optional[str], side: Optional[Side] = None) -> int:
        """Cancel every matching pending order. Continues past individual failures."""
        cancelled = 0
        for order in await self.get_pending_orders(symbol):
            if side is not None and order.order_type.side != side:
                continue
            try:
                await self.cancel_order(order.ticket)
                cancelled += 1
            except TradingApiError as e:
                logger.error(f"[API] Failed to cancel order {order.ticket}: {e}")
        return cancelled

    # ==================== Account ====================

    async def get_position_count(self) -> int:
        return len(await self.get_positions())

    async def get_balance(self) -> Decimal:
        return (await self.get_account()).balance

    async def get_equity(self) -> Decimal:
        return (await self.get_account()).equity

    async def get_profit(self) -> Decimal:
        return (await self.get_account()).profit
