"""
Martingale Sequencer — Progressive doubling with a hard safety cap.

Each round: open at current volume (SL == TP, 1:1), hold for a fixed window,
close unconditionally, and read P/L as the balance delta across the round.

  P/L >= 0 → volume back to base, loss streak reset; stop if cumulative P/L > 0
  P/L <  0 → volume = normalize(volume × 2), loss streak + 1
  volume > base × safety_multiplier → stop before placing another trade
  max_trades rounds executed → stop

After k straight losses, volume == normalize(base × 2^k) until the cap trips.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Callable, List, Optional
from config import MartingaleConfig
from exchange.errors import TradingApiError
from exchange.models import Side
from trading.normalizer import normalize_price, normalize_volume, points_to_price
from trading.session import Coordinator, SessionOutcome, StrategySession, best_effort
import logging

logger = logging.getLogger(__name__)


class StopReason(Enum):
    PROFIT_TARGET = "PROFIT_TARGET"     # Win brought cumulative P/L above zero
    SAFETY_CAP = "SAFETY_CAP"
    MAX_TRADES = "MAX_TRADES"
    TRADE_FAILED = "TRADE_FAILED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class VolumeProgression:
    base_volume: Decimal
    current_volume: Decimal
    consecutive_losses: int = 0
    cumulative_profit: Decimal = Decimal("0")
    trades_executed: int = 0
    peak_volume: Decimal = Decimal("0")

    @classmethod
    def start(cls, base_volume: Decimal) -> "VolumeProgression":
        return cls(base_volume=base_volume, current_volume=base_volume, peak_volume=base_volume)

    def exceeds_cap(self, safety_multiplier: int) -> bool:
        return self.current_volume > self.base_volume * safety_multiplier


def record_round(
    progression: VolumeProgression,
    pnl: Decimal,
    normalize: Callable[[Decimal], Decimal],
) -> VolumeProgression:
    """Fold one round's realized P/L into the progression."""
    traded = progression.current_volume
    common = dict(
        trades_executed=progression.trades_executed + 1,
        cumulative_profit=progression.cumulative_profit + pnl,
        peak_volume=max(progression.peak_volume, traded),
    )
    if pnl >= 0:
        return replace(progression, current_volume=progression.base_volume, consecutive_losses=0, **common)
    return replace(
        progression,
        current_volume=normalize(traded * 2),
        consecutive_losses=progression.consecutive_losses + 1,
        **common,
    )


@dataclass
class MartingaleReport(SessionOutcome):
    direction: Side = Side.BUY
    stop_reason: Optional[StopReason] = None
    trades_executed: int = 0
    consecutive_losses: int = 0
    base_volume: Decimal = Decimal("0")
    peak_volume: Decimal = Decimal("0")
    next_volume: Decimal = Decimal("0")     # Volume the following round would have used
    volumes: List[Decimal] = field(default_factory=list)
    round_pnls: List[Decimal] = field(default_factory=list)
    starting_balance: Optional[Decimal] = None
    cumulative_profit: Decimal = Decimal("0")

    @property
    def successful(self) -> bool:
        return self.stop_reason == StopReason.PROFIT_TARGET

    def summary_lines(self) -> List[str]:
        lines = super().summary_lines()
        lines[1:1] = [
            f"Stopped: {self.stop_reason.value if self.stop_reason else '-'}",
            f"Trades: {self.trades_executed} | Loss streak: {self.consecutive_losses}",
            f"Peak volume: {self.peak_volume} (base {self.base_volume})",
            f"Start balance: ${self.starting_balance} | P/L: ${self.cumulative_profit:+.2f}",
        ]
        return lines


class MartingaleSequencer(Coordinator):
    """Runs the bounded doubling sequence."""

    name = "martingale"

    def __init__(self, api, config: MartingaleConfig, symbol: str, **kwargs):
        super().__init__(api, symbol, **kwargs)
        self.config = config

    async def _execute(self, session: StrategySession, side: Side = Side.BUY) -> MartingaleReport:
        cfg = self.config
        symbol = self.symbol
        spec = await self.api.get_symbol_spec(symbol)
        base = await self.api.normalize_volume(symbol, cfg.base_volume)
        progression = VolumeProgression.start(base)
        report = MartingaleReport(
            coordinator=self.name, symbol=symbol, direction=side, base_volume=base, peak_volume=base,
        )
        report.starting_balance = await self.api.get_balance()

        logger.info(
            f"[MARTINGALE] {symbol}: base={base}, SL/TP={cfg.stop_loss_points}/{cfg.take_profit_points} pts, "
            f"max_trades={cfg.max_trades}, cap=base×{cfg.safety_multiplier}, "
            f"balance=${report.starting_balance}"
        )

        def normalize(volume: Decimal) -> Decimal:
            return normalize_volume(spec, volume)

        while True:
            if progression.trades_executed >= cfg.max_trades:
                report.stop_reason = StopReason.MAX_TRADES
                break
            if progression.exceeds_cap(cfg.safety_multiplier):
                logger.warning(
                    f"[MARTINGALE] {symbol}: volume {progression.current_volume} > "
                    f"{base} × {cfg.safety_multiplier}. Stopping for safety."
                )
                report.stop_reason = StopReason.SAFETY_CAP
                break
            if session.cancelled:
                report.stop_reason = StopReason.CANCELLED
                break

            n = progression.trades_executed + 1
            volume = progression.current_volume
            logger.info(f"[MARTINGALE] Trade {n}/{cfg.max_trades} | Volume: {volume} lots")

            try:
                balance_before = await self.api.get_balance()
                await self._round(session, spec, side, volume)
                pnl = await self.api.get_balance() - balance_before
            except TradingApiError as e:
                logger.error(f"[MARTINGALE] {symbol}: trade {n} failed: {e}")
                report.errors.append(f"trade {n}: {e}")
                report.stop_reason = StopReason.TRADE_FAILED
                break

            report.volumes.append(volume)
            report.round_pnls.append(pnl)
            progression = record_round(progression, pnl, normalize)

            logger.info(
                f"[MARTINGALE] Trade result: {pnl:+.2f} | Running total: {progression.cumulative_profit:+.2f}"
            )
            if pnl >= 0:
                logger.info(f"[MARTINGALE] >> WIN. Volume reset to {progression.current_volume}")
                if progression.cumulative_profit > 0:
                    logger.info("[MARTINGALE] >> Total profit positive. Ending session.")
                    report.stop_reason = StopReason.PROFIT_TARGET
                    break
            else:
                logger.info(
                    f"[MARTINGALE] >> LOSS. Volume doubled to {progression.current_volume} "
                    f"(streak {progression.consecutive_losses})"
                )

            if progression.trades_executed < cfg.max_trades and not progression.exceeds_cap(cfg.safety_multiplier):
                await session.sleep(cfg.pause_between_trades_sec)

        report.trades_executed = progression.trades_executed
        report.consecutive_losses = progression.consecutive_losses
        report.peak_volume = progression.peak_volume
        report.next_volume = progression.current_volume
        report.cumulative_profit = progression.cumulative_profit
        report.final_balance = await best_effort("balance", self.api.get_balance())
        report.cancelled = session.cancelled

        logger.info(
            f"[MARTINGALE] {symbol}: done. reason={report.stop_reason.value}, trades={report.trades_executed}, "
            f"peak={report.peak_volume}, P/L={report.cumulative_profit:+.2f}"
        )
        return report

    async def _round(self, session: StrategySession, spec, side: Side, volume: Decimal):
        """Open, hold for the observation window, close unconditionally."""
        cfg = self.config
        symbol = self.symbol
        quote = await self.api.get_quote(symbol)
        entry = quote.ask if side == Side.BUY else quote.bid
        sl = normalize_price(spec, entry - side.sign * points_to_price(spec, cfg.stop_loss_points))
        tp = normalize_price(spec, entry + side.sign * points_to_price(spec, cfg.take_profit_points))

        if side == Side.BUY:
            ticket = await self.api.buy_market(symbol, volume, sl, tp, cfg.comment)
        else:
            ticket = await self.api.sell_market(symbol, volume, sl, tp, cfg.comment)
        session.position_tickets.append(ticket)
        logger.info(f"[MARTINGALE] #{ticket} opened {side.value} {volume} @ {entry} SL={sl} TP={tp}")

        try:
            async for i in session.polls(cfg.hold_interval_sec, cfg.hold_polls):
                profit = await self.api.get_profit()
                logger.info(f"[MARTINGALE]   [{i}/{cfg.hold_polls}] P/L: ${profit}")
        finally:
            await self._close(ticket)

    async def _close(self, ticket: int):
        try:
            await self.api.close_position(ticket)
            logger.info(f"[MARTINGALE] #{ticket} closed")
        except TradingApiError as e:
            positions = await best_effort("positions", self.api.get_positions(self.symbol))
            if positions is not None and all(p.ticket != ticket for p in positions):
                # SL or TP already took it out during the hold
                logger.info(f"[MARTINGALE] #{ticket} already closed server-side")
                return
            logger.error(f"[MARTINGALE] #{ticket} close failed: {e}")
            raise
