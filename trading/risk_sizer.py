"""
Risk Sizer — Converts a fixed monetary risk into a broker-valid volume.

  point value per lot = tick_value / tick_size × point
  volume              = risk_amount / (stop_loss_points × point value per lot)

The result is normalized to the symbol's volume step and clamped to
[volume_min, volume_max]. If the stop loss is hit, the realized loss equals
risk_amount within one volume step of rounding.
"""

from __future__ import annotations
from decimal import Decimal
from exchange.errors import DataUnavailableError
from exchange.models import SymbolSpec
from trading.normalizer import normalize_volume
import logging

logger = logging.getLogger(__name__)


def point_value_per_lot(spec: SymbolSpec) -> Decimal:
    """Account-currency value of a one-point move for one lot."""
    if not spec.tick_value or not spec.tick_size or spec.tick_value <= 0 or spec.tick_size <= 0:
        raise DataUnavailableError(f"Tick value/size unavailable for {spec.symbol}")
    return spec.tick_value / spec.tick_size * spec.point


def calculate_volume(spec: SymbolSpec, stop_loss_points, risk_amount) -> Decimal:
    sl_points = Decimal(str(stop_loss_points))
    risk = Decimal(str(risk_amount))
    if sl_points <= 0:
        raise ValueError(f"stop_loss_points must be > 0, got {stop_loss_points}")
    if risk <= 0:
        raise ValueError(f"risk_amount must be > 0, got {risk_amount}")

    raw = risk / (sl_points * point_value_per_lot(spec))
    volume = normalize_volume(spec, raw)

    logger.debug(
        f"[RISK] {spec.symbol}: risk=${risk} over {sl_points} pts → raw={raw:.6f}, volume={volume}"
    )
    return volume


def risk_for_volume(spec: SymbolSpec, volume: Decimal, stop_loss_points) -> Decimal:
    """Monetary loss if a position of `volume` is stopped out after `stop_loss_points`."""
    return Decimal(volume) * Decimal(str(stop_loss_points)) * point_value_per_lot(spec)
