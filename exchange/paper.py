"""
Paper Trading API — in-memory terminal for dry runs and tests.

Quotes move only when advance() runs (called from sleep()), either from a
scripted feed per symbol or, when none is queued, as a seeded random walk.
Stop orders trigger and SL/TP levels execute on every quote update; realized
P/L goes straight into the balance.
"""

from __future__ import annotations
import asyncio
import itertools
import random
from collections import deque
from decimal import Decimal
from typing import Deque, Dict, Iterable, List, Optional, Tuple
from exchange.errors import DataUnavailableError, OrderRejectedError
from exchange.models import (
    AccountInfo, OrderType, PendingOrderInfo, PositionInfo, Quote, Side, SymbolSpec,
)
from exchange.trading_api import SymbolMathMixin
from trading.normalizer import normalize_price
import logging

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def forex_spec(symbol: str = "EURUSD", digits: int = 5) -> SymbolSpec:
    """Standard 100k-contract FX symbol: one point is worth $1 per lot."""
    point = Decimal(1).scaleb(-digits)
    return SymbolSpec(
        symbol=symbol,
        point=point,
        digits=digits,
        volume_min=Decimal("0.01"),
        volume_max=Decimal("100"),
        volume_step=Decimal("0.01"),
        tick_value=Decimal("1"),
        tick_size=point,
    )


class PaperTradingApi(SymbolMathMixin):
    """Simulated terminal implementing the TradingApi facade."""

    def __init__(
        self,
        balance: Decimal = Decimal("10000"),
        random_walk_points: int = 0,
        realtime: bool = False,
        seed: Optional[int] = None,
    ):
        self.balance = Decimal(balance)
        self.random_walk_points = random_walk_points
        self.realtime = realtime
        self._rng = random.Random(seed)
        self._specs: Dict[str, SymbolSpec] = {}
        self._quotes: Dict[str, Quote] = {}
        self._feeds: Dict[str, Deque[Tuple[Decimal, Decimal]]] = {}
        self._positions: Dict[int, PositionInfo] = {}
        self._orders: Dict[int, PendingOrderInfo] = {}
        self._tickets = itertools.count(100001)
        # ticket -> realized P/L, for inspection after the fact
        self.closed_deals: List[Tuple[int, Decimal]] = []

    # ==================== Market simulation ====================

    def add_symbol(self, spec: SymbolSpec, bid, ask):
        self._specs[spec.symbol] = spec
        self._quotes[spec.symbol] = Quote(spec.symbol, Decimal(str(bid)), Decimal(str(ask)))

    def feed(self, symbol: str, quotes: Iterable[Tuple]):
        """Queue (bid, ask) pairs; one is applied per advance()."""
        queue = self._feeds.setdefault(symbol, deque())
        for bid, ask in quotes:
            queue.append((Decimal(str(bid)), Decimal(str(ask))))

    def set_quote(self, symbol: str, bid, ask):
        self._quotes[symbol] = Quote(symbol, Decimal(str(bid)), Decimal(str(ask)))
        self._trigger_pending(symbol)
        self._check_stops(symbol)

    def advance(self):
        for symbol in list(self._quotes):
            queue = self._feeds.get(symbol)
            if queue:
                bid, ask = queue.popleft()
                self.set_quote(symbol, bid, ask)
            elif self.random_walk_points:
                spec = self._specs[symbol]
                quote = self._quotes[symbol]
                step = int(self._rng.gauss(0, self.random_walk_points)) * spec.point
                self.set_quote(symbol, quote.bid + step, quote.ask + step)

    async def sleep(self, seconds: float):
        """Poll-interval sleep that also moves the simulated market."""
        await asyncio.sleep(seconds if self.realtime else 0)
        self.advance()

    # ==================== Primitives ====================

    async def get_symbol_spec(self, symbol: str) -> SymbolSpec:
        spec = self._specs.get(symbol)
        if spec is None:
            raise DataUnavailableError(f"Unknown symbol {symbol}")
        return spec

    async def get_quote(self, symbol: str) -> Quote:
        quote = self._quotes.get(symbol)
        if quote is None:
            raise DataUnavailableError(f"No quote for {symbol}")
        return quote

    async def get_account(self) -> AccountInfo:
        floating = sum((self._floating(p) for p in self._positions.values()), Decimal("0"))
        return AccountInfo(balance=self.balance, equity=self.balance + floating, profit=floating)

    async def get_positions(self, symbol: Optional[str] = None) -> List[PositionInfo]:
        result = []
        for pos in self._positions.values():
            if symbol is None or pos.symbol == symbol:
                pos.profit = self._floating(pos)
                result.append(pos)
        return result

    async def get_pending_orders(self, symbol: Optional[str] = None) -> List[PendingOrderInfo]:
        return [o for o in self._orders.values() if symbol is None or o.symbol == symbol]

    async def _open_market(self, symbol, side, volume, sl, tp, comment) -> int:
        spec = await self.get_symbol_spec(symbol)
        self._validate_volume(spec, volume)
        quote = await self.get_quote(symbol)
        price = quote.ask if side == Side.BUY else quote.bid
        ticket = next(self._tickets)
        self._positions[ticket] = PositionInfo(
            ticket=ticket, symbol=symbol, side=side, volume=volume,
            open_price=price, sl=sl, tp=tp, comment=comment,
        )
        logger.info(f"[PAPER] #{ticket} {side.value} {volume} {symbol} @ {price} SL={sl} TP={tp}")
        return ticket

    async def _place_pending(self, symbol, order_type, volume, price, sl, tp, comment) -> int:
        spec = await self.get_symbol_spec(symbol)
        self._validate_volume(spec, volume)
        quote = await self.get_quote(symbol)
        if order_type == OrderType.BUY_STOP and price <= quote.ask:
            raise OrderRejectedError(f"Invalid BUY STOP price {price} (ask {quote.ask})")
        if order_type == OrderType.SELL_STOP and price >= quote.bid:
            raise OrderRejectedError(f"Invalid SELL STOP price {price} (bid {quote.bid})")
        ticket = next(self._tickets)
        self._orders[ticket] = PendingOrderInfo(
            ticket=ticket, symbol=symbol, order_type=order_type, volume=volume,
            price=price, sl=sl, tp=tp, comment=comment,
        )
        logger.info(f"[PAPER] #{ticket} {order_type.value} {volume} {symbol} @ {price}")
        return ticket

    async def modify_position(self, ticket, sl, tp) -> None:
        pos = self._positions.get(ticket)
        if pos is None:
            raise OrderRejectedError(f"Position {ticket} not found")
        spec = await self.get_symbol_spec(pos.symbol)
        pos.sl = normalize_price(spec, sl) if sl else None
        pos.tp = normalize_price(spec, tp) if tp else None
        logger.info(f"[PAPER] #{ticket} modified SL={pos.sl} TP={pos.tp}")

    async def close_position(self, ticket, volume=None) -> None:
        pos = self._positions.get(ticket)
        if pos is None:
            raise OrderRejectedError(f"Position {ticket} not found")
        self._close(pos, volume)

    async def cancel_order(self, ticket) -> None:
        if self._orders.pop(ticket, None) is None:
            logger.debug(f"[PAPER] Cancel of unknown order {ticket} ignored")
            return
        logger.info(f"[PAPER] #{ticket} cancelled")

    # ==================== Internals ====================

    def _validate_volume(self, spec: SymbolSpec, volume: Decimal):
        off_grid = spec.volume_step > 0 and volume % spec.volume_step != 0
        if volume < spec.volume_min or volume > spec.volume_max or off_grid:
            raise OrderRejectedError(f"Invalid volume {volume} for {spec.symbol}")

    def _floating(self, pos: PositionInfo) -> Decimal:
        spec = self._specs[pos.symbol]
        quote = self._quotes[pos.symbol]
        exit_price = quote.bid if pos.side == Side.BUY else quote.ask
        return self._pnl(spec, pos, exit_price, pos.volume)

    @staticmethod
    def _pnl(spec: SymbolSpec, pos: PositionInfo, exit_price: Decimal, volume: Decimal) -> Decimal:
        if not spec.tick_value or not spec.tick_size:
            raise DataUnavailableError(f"Tick value/size unavailable for {spec.symbol}")
        delta = (exit_price - pos.open_price) * pos.side.sign
        return (delta / spec.tick_size * spec.tick_value * volume).quantize(CENT)

    def _close(self, pos: PositionInfo, volume: Optional[Decimal] = None):
        quote = self._quotes[pos.symbol]
        exit_price = quote.bid if pos.side == Side.BUY else quote.ask
        volume = pos.volume if volume is None else min(Decimal(volume), pos.volume)
        pnl = self._pnl(self._specs[pos.symbol], pos, exit_price, volume)
        self.balance += pnl
        self.closed_deals.append((pos.ticket, pnl))
        pos.volume -= volume
        if pos.volume <= 0:
            del self._positions[pos.ticket]
        logger.info(f"[PAPER] #{pos.ticket} closed {volume} @ {exit_price}, P/L={pnl}")

    def _trigger_pending(self, symbol: str):
        quote = self._quotes[symbol]
        for order in list(self._orders.values()):
            if order.symbol != symbol:
                continue
            if order.order_type == OrderType.BUY_STOP and quote.ask >= order.price:
                side, price = Side.BUY, quote.ask
            elif order.order_type == OrderType.SELL_STOP and quote.bid <= order.price:
                side, price = Side.SELL, quote.bid
            elif order.order_type == OrderType.BUY_LIMIT and quote.ask <= order.price:
                side, price = Side.BUY, quote.ask
            elif order.order_type == OrderType.SELL_LIMIT and quote.bid >= order.price:
                side, price = Side.SELL, quote.bid
            else:
                continue
            del self._orders[order.ticket]
            self._positions[order.ticket] = PositionInfo(
                ticket=order.ticket, symbol=symbol, side=side, volume=order.volume,
                open_price=price, sl=order.sl, tp=order.tp, comment=order.comment,
            )
            logger.info(f"[PAPER] #{order.ticket} {order.order_type.value} filled @ {price}")

    def _check_stops(self, symbol: str):
        quote = self._quotes[symbol]
        for pos in list(self._positions.values()):
            if pos.symbol != symbol:
                continue
            if pos.side == Side.BUY:
                hit_sl = pos.sl is not None and quote.bid <= pos.sl
                hit_tp = pos.tp is not None and quote.bid >= pos.tp
            else:
                hit_sl = pos.sl is not None and quote.ask >= pos.sl
                hit_tp = pos.tp is not None and quote.ask <= pos.tp
            if hit_sl or hit_tp:
                logger.info(f"[PAPER] #{pos.ticket} {'SL' if hit_sl else 'TP'} hit")
                self._close(pos)
