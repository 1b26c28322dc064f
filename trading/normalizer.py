"""
Price/volume normalization to broker constraints.

Every volume that reaches the trading API passes through normalize_volume,
so it always lies on the symbol's step grid inside [volume_min, volume_max].
"""

from __future__ import annotations
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from exchange.models import Side, SymbolSpec


def normalize_price(spec: SymbolSpec, price: Decimal) -> Decimal:
    """Round a price to the symbol's digits (half-up)."""
    quantum = Decimal(1).scaleb(-spec.digits)
    return Decimal(price).quantize(quantum, rounding=ROUND_HALF_UP)


def normalize_volume(spec: SymbolSpec, volume: Decimal) -> Decimal:
    """Clamp to [min, max] and round to the nearest volume step."""
    step = spec.volume_step
    clamped = max(spec.volume_min, min(spec.volume_max, Decimal(volume)))
    if step <= 0:
        return clamped

    steps = (clamped / step).to_integral_value(rounding=ROUND_HALF_UP)
    result = steps * step

    # Rounding can push us off the allowed range when min/max are not on the grid
    if result < spec.volume_min:
        result = (spec.volume_min / step).to_integral_value(rounding=ROUND_CEILING) * step
    if result > spec.volume_max:
        result = (spec.volume_max / step).to_integral_value(rounding=ROUND_FLOOR) * step

    return result


def points_to_price(spec: SymbolSpec, points) -> Decimal:
    """Convert a distance in points to a price delta."""
    return Decimal(str(points)) * spec.point


def price_to_points(spec: SymbolSpec, delta: Decimal) -> Decimal:
    """Convert a price delta to points."""
    return delta / spec.point


def movement_points(side: Side, entry: Decimal, bid: Decimal, ask: Decimal, point: Decimal) -> Decimal:
    """
    Signed movement of a position in points: positive in its favor, negative against.
    BUY is valued at the bid, SELL at the ask (the prices each would close at).
    """
    exit_price = bid if side == Side.BUY else ask
    return (exit_price - entry) * side.sign / point
