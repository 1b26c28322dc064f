"""
Trailing Stop Controller — Moves the stop to breakeven + buffer once in profit.

  OPEN      → directional position, SL:TP biased to the target (80:160 by default)
  PROTECTED → first time profit >= threshold: SL → entry ± buffer, TP unchanged
  CLOSED    → position closed at session end regardless of state

INVARIANT: SL can only move in the profitable direction, NEVER regress.
PROTECTED never reverts to OPEN.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from config import TrailingConfig
from exchange.errors import TradingApiError
from exchange.models import Side
from trading.normalizer import movement_points, normalize_price, points_to_price
from trading.session import Coordinator, RiskProfile, SessionOutcome, StrategySession, best_effort
import logging

logger = logging.getLogger(__name__)


class TrailingPhase(Enum):
    OPEN = "OPEN"
    PROTECTED = "PROTECTED"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class TrailingState:
    side: Side
    entry_price: Decimal
    stop_loss: Decimal
    activated: bool = False


def is_more_favorable(side: Side, candidate: Decimal, current: Optional[Decimal]) -> bool:
    """True if `candidate` locks in more than `current` for a position on `side`."""
    if current is None:
        return True
    return candidate > current if side == Side.BUY else candidate < current


def observe(state: TrailingState, profit_points: Decimal, threshold_points, protective_stop: Decimal) -> TrailingState:
    """
    One poll tick. Returns the same state unless the threshold is crossed for the
    first time; the stop only ever moves toward profit.
    """
    if state.activated or profit_points < Decimal(str(threshold_points)):
        return state
    stop = protective_stop if is_more_favorable(state.side, protective_stop, state.stop_loss) else state.stop_loss
    return replace(state, stop_loss=stop, activated=True)


@dataclass
class TrailingOutcome(SessionOutcome):
    phase: TrailingPhase = TrailingPhase.OPEN
    direction: Side = Side.BUY
    ticket: Optional[int] = None
    volume: Decimal = Decimal("0")
    entry_price: Optional[Decimal] = None
    initial_stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    protected: bool = False
    protected_stop_loss: Optional[Decimal] = None
    protect_error: Optional[str] = None
    best_profit_points: Decimal = Decimal("0")

    def summary_lines(self) -> List[str]:
        lines = super().summary_lines()
        lines.insert(1, f"{self.direction.value} {self.volume} @ {self.entry_price}")
        if self.protected:
            lines.insert(2, f"PROTECTED: SL {self.initial_stop_loss} → {self.protected_stop_loss}")
        else:
            lines.insert(2, f"Not protected (best {self.best_profit_points:.0f} pts)")
        return lines


class TrailingStopController(Coordinator):
    """Opens a trend position and protects it at breakeven + buffer."""

    name = "trend"

    def __init__(self, api, config: TrailingConfig, symbol: str, **kwargs):
        super().__init__(api, symbol, **kwargs)
        self.config = config

    async def _execute(self, session: StrategySession, side: Side = Side.BUY) -> TrailingOutcome:
        cfg = self.config
        symbol = self.symbol
        outcome = TrailingOutcome(coordinator=self.name, symbol=symbol, direction=side)

        spec = await self.api.get_symbol_spec(symbol)
        bid = await self.api.get_bid(symbol)
        ask = await self.api.get_ask(symbol)
        logger.info(
            f"[TRAIL] {symbol}: Bid/Ask {bid}/{ask}. {side.value}, risk=${cfg.risk_amount}, "
            f"SL/TP={cfg.stop_loss_points}/{cfg.take_profit_points} pts, "
            f"trailing at {cfg.trailing_threshold_points} pts (+{cfg.breakeven_buffer_points} buffer)"
        )

        profile = RiskProfile(
            cfg.risk_amount, cfg.stop_loss_points, cfg.take_profit_points, cfg.trailing_threshold_points
        )
        volume = await self.api.calculate_volume(symbol, profile.stop_loss_points, profile.risk_amount)
        entry = ask if side == Side.BUY else bid
        sl = normalize_price(spec, entry - side.sign * points_to_price(spec, cfg.stop_loss_points))
        tp = normalize_price(spec, entry + side.sign * points_to_price(spec, cfg.take_profit_points))
        if side == Side.BUY:
            ticket = await self.api.buy_market(symbol, volume, sl, tp, cfg.comment)
        else:
            ticket = await self.api.sell_market(symbol, volume, sl, tp, cfg.comment)
        session.position_tickets.append(ticket)
        entry = await self._fill_price(ticket, entry)

        outcome.ticket = ticket
        outcome.volume = volume
        outcome.entry_price = entry
        outcome.initial_stop_loss = sl
        outcome.take_profit = tp
        logger.info(f"[TRAIL] {symbol}: #{ticket} opened {side.value} {volume} @ {entry} SL={sl} TP={tp}")

        protective = normalize_price(
            spec, entry + side.sign * points_to_price(spec, cfg.breakeven_buffer_points)
        )
        state = TrailingState(side=side, entry_price=entry, stop_loss=sl)
        protect_attempted = False

        try:
            async for i in session.polls(cfg.poll_interval_sec, cfg.max_polls):
                quote = await self.api.get_quote(symbol)
                profit_points = movement_points(side, entry, quote.bid, quote.ask, spec.point)
                outcome.best_profit_points = max(outcome.best_profit_points, profit_points)
                profit = await self.api.get_profit()
                logger.info(
                    f"[TRAIL] [{i}/{cfg.max_polls}] Bid/Ask: {quote.bid}/{quote.ask} | "
                    f"P/L: ${profit} ({profit_points:.0f} pts)"
                )

                if protect_attempted:
                    continue
                proposed = observe(state, profit_points, cfg.trailing_threshold_points, protective)
                if proposed is state:
                    continue

                protect_attempted = True
                state = await self._protect(outcome, state, proposed)
        except TradingApiError as e:
            logger.error(f"[TRAIL] {symbol}: monitoring failed ({e}), closing position")
            outcome.errors.append(f"monitoring: {e}")

        try:
            await self.api.close_position(ticket)
            logger.info(f"[TRAIL] {symbol}: >> #{ticket} closed")
        except TradingApiError as e:
            remaining = await best_effort("positions", self.api.get_positions(symbol))
            if remaining is None or any(p.ticket == ticket for p in remaining):
                logger.error(f"[TRAIL] {symbol}: close #{ticket} failed: {e}")
                outcome.errors.append(f"close #{ticket}: {e}")
            else:
                logger.info(f"[TRAIL] {symbol}: #{ticket} was already closed server-side")

        outcome.phase = TrailingPhase.CLOSED
        outcome.final_balance = await best_effort("balance", self.api.get_balance())
        outcome.cancelled = session.cancelled
        logger.info(
            f"[TRAIL] {symbol}: done. protected={outcome.protected}, balance={outcome.final_balance}"
        )
        return outcome

    async def _protect(self, outcome: TrailingOutcome, state: TrailingState, proposed: TrailingState) -> TrailingState:
        """Push the new stop to the terminal. Attempted once; on failure the original SL stays."""
        logger.info(f"[TRAIL] {self.symbol}: >> Trailing activated. Moving SL {state.stop_loss} → {proposed.stop_loss}")
        try:
            await self.api.modify_position(outcome.ticket, proposed.stop_loss, outcome.take_profit)
        except TradingApiError as e:
            outcome.protect_error = str(e)
            outcome.errors.append(f"protect: {e}")
            logger.error(f"[TRAIL] {self.symbol}: failed to move SL: {e}")
            return state

        outcome.protected = True
        outcome.phase = TrailingPhase.PROTECTED
        outcome.protected_stop_loss = proposed.stop_loss
        logger.info(f"[TRAIL] {self.symbol}: SL TRAILED to {proposed.stop_loss}")
        return proposed
