"""
Data models for the terminal strategy bot.
Uses Decimal for all monetary/price/volume calculations — no floating point errors.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional


class Side(Enum):
    BUY = "Buy"
    SELL = "Sell"

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY

    @property
    def sign(self) -> int:
        """+1 for BUY, -1 for SELL. Multiply a price delta by this to get favorable movement."""
        return 1 if self is Side.BUY else -1


class OrderType(Enum):
    BUY_LIMIT = "BUY_LIMIT"
    SELL_LIMIT = "SELL_LIMIT"
    BUY_STOP = "BUY_STOP"
    SELL_STOP = "SELL_STOP"

    @property
    def side(self) -> Side:
        return Side.BUY if self in (OrderType.BUY_LIMIT, OrderType.BUY_STOP) else Side.SELL


@dataclass(frozen=True)
class SymbolSpec:
    """Broker-side precision and tick economics for one symbol."""
    symbol: str
    point: Decimal              # Smallest price increment used for distances
    digits: int                 # Price decimals
    volume_min: Decimal
    volume_max: Decimal
    volume_step: Decimal
    tick_value: Optional[Decimal] = None    # Account currency per tick per lot
    tick_size: Optional[Decimal] = None


@dataclass(frozen=True)
class Quote:
    symbol: str
    bid: Decimal
    ask: Decimal


@dataclass
class PositionInfo:
    """An open (filled) position."""
    ticket: int
    symbol: str
    side: Side
    volume: Decimal
    open_price: Decimal
    sl: Optional[Decimal] = None
    tp: Optional[Decimal] = None
    profit: Decimal = Decimal("0")
    comment: str = ""


@dataclass
class PendingOrderInfo:
    """A placed-but-unfilled order."""
    ticket: int
    symbol: str
    order_type: OrderType
    volume: Decimal
    price: Decimal
    sl: Optional[Decimal] = None
    tp: Optional[Decimal] = None
    comment: str = ""


@dataclass(frozen=True)
class AccountInfo:
    balance: Decimal
    equity: Decimal
    profit: Decimal
