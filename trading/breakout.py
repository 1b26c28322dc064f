"""
Breakout Coordinator — Races a BUY STOP against a SELL STOP.

  ARMED     → BUY STOP @ ask + d and SELL STOP @ bid - d, same risk-sized volume
  TRIGGERED → position count rises above the pre-arm baseline during polling
  RESOLVED  → remaining pending orders cancelled
  EXPIRED   → poll budget exhausted with no fill; pending orders cancelled

Both paths finish by closing any positions left on the symbol.

Known limitation: if price gaps through both levels between two polls, both
orders fill. That looks the same as a single fill here; nothing is left to
cancel and both positions are closed in cleanup.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from config import BreakoutConfig
from exchange.errors import TradingApiError
from trading.normalizer import normalize_price, points_to_price
from trading.session import Coordinator, RiskProfile, SessionOutcome, StrategySession, best_effort
import logging

logger = logging.getLogger(__name__)


class BreakoutState(Enum):
    ARMED = "ARMED"
    TRIGGERED = "TRIGGERED"
    RESOLVED = "RESOLVED"
    EXPIRED = "EXPIRED"


@dataclass
class BreakoutOutcome(SessionOutcome):
    state: BreakoutState = BreakoutState.ARMED
    triggered: bool = False
    volume: Decimal = Decimal("0")
    buy_stop_price: Optional[Decimal] = None
    sell_stop_price: Optional[Decimal] = None
    buy_stop_ticket: Optional[int] = None
    sell_stop_ticket: Optional[int] = None
    polls_used: int = 0
    cancelled_orders: int = 0
    closed_positions: int = 0

    def summary_lines(self) -> List[str]:
        lines = super().summary_lines()
        if self.triggered:
            lines.insert(1, f"Breakout TRIGGERED after {self.polls_used} polls")
        else:
            lines.insert(1, "Breakout EXPIRED (no trigger)")
        lines.insert(2, f"Volume: {self.volume} | Cancelled: {self.cancelled_orders} | Closed: {self.closed_positions}")
        return lines


class BreakoutCoordinator(Coordinator):
    """Places the breakout trap and resolves whichever side fills first."""

    name = "breakout"

    def __init__(self, api, config: BreakoutConfig, symbol: str, **kwargs):
        super().__init__(api, symbol, **kwargs)
        self.config = config

    async def _execute(self, session: StrategySession) -> BreakoutOutcome:
        cfg = self.config
        symbol = self.symbol
        outcome = BreakoutOutcome(coordinator=self.name, symbol=symbol)

        spec = await self.api.get_symbol_spec(symbol)
        bid = await self.api.get_bid(symbol)
        ask = await self.api.get_ask(symbol)
        distance = points_to_price(spec, cfg.breakout_distance_points)

        logger.info(
            f"[BREAKOUT] {symbol}: Bid/Ask {bid}/{ask}, distance={cfg.breakout_distance_points} pts, "
            f"risk=${cfg.risk_amount}, SL/TP={cfg.stop_loss_points}/{cfg.take_profit_points} pts"
        )

        # Primary action: any failure here aborts the session
        profile = RiskProfile(
            cfg.risk_amount, cfg.stop_loss_points, cfg.take_profit_points, cfg.breakout_distance_points
        )
        volume = await self.api.calculate_volume(symbol, profile.stop_loss_points, profile.risk_amount)
        baseline = await self.api.get_position_count()
        outcome.volume = volume

        outcome.buy_stop_ticket = await self.api.buy_stop_points(
            symbol, volume, cfg.breakout_distance_points,
            cfg.stop_loss_points, cfg.take_profit_points, cfg.comment,
        )
        session.pending_tickets.append(outcome.buy_stop_ticket)
        outcome.buy_stop_price = normalize_price(spec, ask + distance)

        try:
            outcome.sell_stop_ticket = await self.api.sell_stop_points(
                symbol, volume, cfg.breakout_distance_points,
                cfg.stop_loss_points, cfg.take_profit_points, cfg.comment,
            )
        except TradingApiError:
            # Never leave half a trap behind
            await best_effort(f"cancel #{outcome.buy_stop_ticket}", self.api.cancel_order(outcome.buy_stop_ticket))
            raise
        session.pending_tickets.append(outcome.sell_stop_ticket)
        outcome.sell_stop_price = normalize_price(spec, bid - distance)

        logger.info(
            f"[BREAKOUT] {symbol}: ARMED — BUY STOP #{outcome.buy_stop_ticket} @ {outcome.buy_stop_price}, "
            f"SELL STOP #{outcome.sell_stop_ticket} @ {outcome.sell_stop_price}, volume={volume}"
        )

        try:
            outcome.state = await self._wait_for_trigger(session, outcome, baseline)
        except TradingApiError as e:
            logger.error(f"[BREAKOUT] {symbol}: polling failed ({e}), cleaning up")
            outcome.errors.append(f"polling: {e}")
            outcome.state = BreakoutState.EXPIRED
        outcome.triggered = outcome.state == BreakoutState.TRIGGERED

        outcome.cancelled_orders = await self._cancel_pending(session)

        if outcome.triggered:
            outcome.state = BreakoutState.RESOLVED
            logger.info(f"[BREAKOUT] {symbol}: RESOLVED — cancelled {outcome.cancelled_orders} pending orders")
            await self._monitor(session)
        else:
            logger.info(f"[BREAKOUT] {symbol}: EXPIRED — no breakout within {cfg.max_polls} polls")

        closed = await best_effort(f"close all {symbol}", self.api.close_all(symbol))
        outcome.closed_positions = closed or 0
        outcome.final_balance = await best_effort("balance", self.api.get_balance())
        outcome.cancelled = session.cancelled

        logger.info(
            f"[BREAKOUT] {symbol}: done. triggered={outcome.triggered}, "
            f"closed={outcome.closed_positions}, balance={outcome.final_balance}"
        )
        return outcome

    async def _wait_for_trigger(self, session, outcome: BreakoutOutcome, baseline: int) -> BreakoutState:
        cfg = self.config
        async for i in session.polls(cfg.poll_interval_sec, cfg.max_polls):
            outcome.polls_used = i
            count = await self.api.get_position_count()
            price = await self.api.get_bid(self.symbol)
            logger.info(f"[BREAKOUT] [{i}/{cfg.max_polls}] Price: {price} | Positions: {count}")
            if count > baseline:
                logger.info(f"[BREAKOUT] {self.symbol}: >> BREAKOUT DETECTED")
                return BreakoutState.TRIGGERED
        return BreakoutState.EXPIRED

    async def _cancel_pending(self, session: StrategySession) -> int:
        """
        Cancel every pending order on the symbol. If the bulk call fails, fall
        back to this session's own tickets one by one (unknown tickets are no-ops).
        """
        cancelled = await best_effort(f"cancel all {self.symbol}", self.api.cancel_all(self.symbol))
        if cancelled is not None:
            return cancelled

        cancelled = 0
        for ticket in session.pending_tickets:
            try:
                await self.api.cancel_order(ticket)
                cancelled += 1
            except TradingApiError as e:
                logger.error(f"[BREAKOUT] {self.symbol}: cancel #{ticket} failed: {e}")

        remaining = await best_effort("pending orders", self.api.get_pending_orders(self.symbol)) or []
        ours = [o.ticket for o in remaining if o.ticket in session.pending_tickets]
        if ours:
            logger.error(f"[BREAKOUT] {self.symbol}: orders still pending after cleanup: {ours}")
        return cancelled

    async def _monitor(self, session: StrategySession):
        cfg = self.config
        async for i in session.polls(cfg.poll_interval_sec, cfg.monitor_polls):
            profit = await best_effort("profit", self.api.get_profit())
            logger.info(f"[BREAKOUT] [{i}/{cfg.monitor_polls}] P/L: ${profit}")
