"""
Hedge Controller — Locks a losing position with an equal-and-opposite one.

  PRIMARY_OPEN → risk-sized position with full SL/TP
  MONITORING   → adverse movement (points) checked every poll
  HEDGED       → first time movement <= -trigger: opposite side, same volume, no SL/TP
  UNHEDGED     → trigger never reached, the hedge order was rejected, or the
                 primary was already closed server-side when the trigger fired
  CLOSED       → primary always closed, hedge closed only if it was opened

INVARIANT: once HEDGED, hedge volume == primary volume and sides are opposite,
so net exposure on the symbol is zero. The hedge is attempted at most once,
and a rejected hedge ends monitoring.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from config import HedgeConfig
from exchange.errors import TradingApiError
from exchange.models import Side
from trading.normalizer import movement_points, normalize_price, points_to_price
from trading.session import Coordinator, RiskProfile, SessionOutcome, StrategySession, best_effort
import logging

logger = logging.getLogger(__name__)


class HedgeState(Enum):
    PRIMARY_OPEN = "PRIMARY_OPEN"
    MONITORING = "MONITORING"
    HEDGED = "HEDGED"
    UNHEDGED = "UNHEDGED"
    CLOSED = "CLOSED"


@dataclass
class HedgeOutcome(SessionOutcome):
    state: HedgeState = HedgeState.PRIMARY_OPEN
    direction: Side = Side.BUY
    volume: Decimal = Decimal("0")
    primary_ticket: Optional[int] = None
    primary_entry: Optional[Decimal] = None
    hedged: bool = False
    hedge_ticket: Optional[int] = None
    hedge_side: Optional[Side] = None
    hedge_volume: Optional[Decimal] = None
    hedge_error: Optional[str] = None
    primary_closed_early: bool = False
    worst_movement_points: Decimal = Decimal("0")
    remaining_positions: Optional[int] = None

    def summary_lines(self) -> List[str]:
        lines = super().summary_lines()
        lines.insert(1, f"Primary {self.direction.value} {self.volume} @ {self.primary_entry}")
        lines.insert(2, f"Hedge was {'ACTIVATED' if self.hedged else 'NOT NEEDED'}")
        if self.hedge_error:
            lines.insert(3, f"Hedge FAILED: {self.hedge_error}")
        return lines


def should_hedge(hedged: bool, movement: Decimal, trigger_points) -> bool:
    """One-shot trigger: adverse movement magnitude reached and not hedged yet."""
    return not hedged and movement <= -Decimal(str(trigger_points))


class HedgeController(Coordinator):
    """Opens a primary position and hedges it once if it moves too far against us."""

    name = "hedge"

    def __init__(self, api, config: HedgeConfig, symbol: str, **kwargs):
        super().__init__(api, symbol, **kwargs)
        self.config = config

    async def _execute(self, session: StrategySession, side: Side = Side.BUY) -> HedgeOutcome:
        cfg = self.config
        symbol = self.symbol
        outcome = HedgeOutcome(coordinator=self.name, symbol=symbol, direction=side)

        spec = await self.api.get_symbol_spec(symbol)
        bid = await self.api.get_bid(symbol)
        ask = await self.api.get_ask(symbol)
        spread = await self.api.get_spread(symbol)
        logger.info(
            f"[HEDGE] {symbol}: Bid/Ask {bid}/{ask} (spread {spread} pts). "
            f"Primary {side.value}, risk=${cfg.risk_amount}, SL/TP={cfg.stop_loss_points}/"
            f"{cfg.take_profit_points} pts, trigger={cfg.hedge_trigger_points} pts"
        )

        # Primary action: failures propagate and abort the session
        profile = RiskProfile(cfg.risk_amount, cfg.stop_loss_points, cfg.take_profit_points, cfg.hedge_trigger_points)
        volume = await self.api.calculate_volume(symbol, profile.stop_loss_points, profile.risk_amount)
        entry = ask if side == Side.BUY else bid
        sl = normalize_price(spec, entry - side.sign * points_to_price(spec, cfg.stop_loss_points))
        tp = normalize_price(spec, entry + side.sign * points_to_price(spec, cfg.take_profit_points))
        ticket = await self._open(side, volume, sl, tp, f"{cfg.comment}-Primary")
        session.position_tickets.append(ticket)
        entry = await self._fill_price(ticket, entry)

        outcome.volume = volume
        outcome.primary_ticket = ticket
        outcome.primary_entry = entry
        outcome.state = HedgeState.MONITORING
        logger.info(f"[HEDGE] {symbol}: Primary #{ticket} opened {side.value} {volume} @ {entry} SL={sl} TP={tp}")

        hedge_attempted = False
        try:
            async for i in session.polls(cfg.poll_interval_sec, cfg.max_polls):
                quote = await self.api.get_quote(symbol)
                movement = movement_points(side, entry, quote.bid, quote.ask, spec.point)
                outcome.worst_movement_points = min(outcome.worst_movement_points, movement)
                profit = await self.api.get_profit()
                logger.info(
                    f"[HEDGE] [{i}/{cfg.max_polls}] Bid/Ask: {quote.bid}/{quote.ask} | "
                    f"Movement: {movement:.0f} pts | P/L: ${profit}"
                )

                if not hedge_attempted and should_hedge(outcome.hedged, movement, cfg.hedge_trigger_points):
                    hedge_attempted = True
                    if not await self._primary_open(ticket):
                        logger.warning(f"[HEDGE] {symbol}: primary #{ticket} already closed, nothing to hedge")
                        outcome.primary_closed_early = True
                        break
                    if not await self._open_hedge(session, outcome, side, volume):
                        break
        except TradingApiError as e:
            logger.error(f"[HEDGE] {symbol}: monitoring failed ({e}), closing positions")
            outcome.errors.append(f"monitoring: {e}")

        outcome.state = HedgeState.HEDGED if outcome.hedged else HedgeState.UNHEDGED

        # Cleanup: attempt every close even if one fails
        await self._close(outcome, ticket, "primary")
        if outcome.hedged:
            await self._close(outcome, outcome.hedge_ticket, "hedge")

        outcome.state = HedgeState.CLOSED
        outcome.remaining_positions = await best_effort("position count", self.api.get_position_count())
        outcome.final_balance = await best_effort("balance", self.api.get_balance())
        outcome.cancelled = session.cancelled

        logger.info(
            f"[HEDGE] {symbol}: done. hedged={outcome.hedged}, remaining={outcome.remaining_positions}, "
            f"balance={outcome.final_balance}"
        )
        return outcome

    async def _open(self, side: Side, volume, sl, tp, comment) -> int:
        if side == Side.BUY:
            return await self.api.buy_market(self.symbol, volume, sl, tp, comment)
        return await self.api.sell_market(self.symbol, volume, sl, tp, comment)

    async def _primary_open(self, ticket: int) -> bool:
        positions = await self.api.get_positions(self.symbol)
        return any(p.ticket == ticket for p in positions)

    async def _open_hedge(self, session: StrategySession, outcome: HedgeOutcome, side: Side, volume) -> bool:
        hedge_side = side.opposite
        logger.info(
            f"[HEDGE] {self.symbol}: >> Hedge trigger activated. Opening {hedge_side.value} {volume} (no SL/TP)"
        )
        try:
            ticket = await self._open(hedge_side, volume, None, None, f"{self.config.comment}-Hedge")
        except TradingApiError as e:
            # Not retried; monitoring stops and the primary goes to cleanup
            outcome.hedge_error = str(e)
            outcome.errors.append(f"hedge: {e}")
            logger.error(f"[HEDGE] {self.symbol}: hedge order rejected: {e}")
            return False

        session.position_tickets.append(ticket)
        outcome.hedged = True
        outcome.hedge_ticket = ticket
        outcome.hedge_side = hedge_side
        outcome.hedge_volume = volume
        logger.info(f"[HEDGE] {self.symbol}: >> Positions now hedged (#{outcome.primary_ticket} / #{ticket})")
        return True

    async def _close(self, outcome: HedgeOutcome, ticket: int, label: str):
        try:
            await self.api.close_position(ticket)
            logger.info(f"[HEDGE] {self.symbol}: >> {label} #{ticket} closed")
            return
        except TradingApiError as e:
            logger.error(f"[HEDGE] {self.symbol}: close {label} #{ticket} failed: {e}")

        # The server may already have closed it (SL/TP); check the book
        positions = await best_effort("positions", self.api.get_positions(self.symbol))
        if positions is not None and all(p.ticket != ticket for p in positions):
            logger.info(f"[HEDGE] {self.symbol}: {label} #{ticket} was already closed server-side")
            return
        outcome.errors.append(f"{label} #{ticket} not closed")
