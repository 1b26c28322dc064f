"""
Coordinator runtime shared by all strategies.

- RiskProfile: immutable sizing inputs.
- StrategySession: per-run state (tickets created, cancellation, bounded polling).
- SymbolLocks: one session per symbol at a time.
- best_effort: cleanup wrapper that logs and continues on API failure.
"""

from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, TypeVar
from exchange.errors import TradingApiError
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")
SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RiskProfile:
    risk_amount: Decimal
    stop_loss_points: Decimal
    take_profit_points: Decimal = Decimal("0")
    trigger_points: Decimal = Decimal("0")

    def __post_init__(self):
        for name in ("risk_amount", "stop_loss_points", "take_profit_points", "trigger_points"):
            object.__setattr__(self, name, Decimal(str(getattr(self, name))))
        if self.risk_amount <= 0:
            raise ValueError(f"risk_amount must be > 0, got {self.risk_amount}")
        if self.stop_loss_points <= 0:
            raise ValueError(f"stop_loss_points must be > 0, got {self.stop_loss_points}")
        if self.take_profit_points < 0 or self.trigger_points < 0:
            raise ValueError("take_profit_points and trigger_points must be >= 0")


@dataclass
class SessionOutcome:
    """Fields every coordinator reports."""
    coordinator: str = ""
    symbol: str = ""
    cancelled: bool = False
    final_balance: Optional[Decimal] = None
    errors: List[str] = field(default_factory=list)

    def summary_lines(self) -> List[str]:
        lines = [f"{self.coordinator.upper()} {self.symbol}"]
        if self.cancelled:
            lines.append("Stopped early (cancelled)")
        if self.final_balance is not None:
            lines.append(f"Final balance: ${self.final_balance:.2f}")
        for err in self.errors:
            lines.append(f"Error: {err}")
        return lines


@dataclass
class StrategySession:
    """Ephemeral state for one coordinator invocation."""
    coordinator: str
    symbol: str
    cancel_event: asyncio.Event
    sleep: SleepFn
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    pending_tickets: List[int] = field(default_factory=list)
    position_tickets: List[int] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    async def polls(self, interval_sec: float, max_polls: int) -> AsyncIterator[int]:
        """
        Bounded poll loop: sleep, then yield the 1-based poll number.
        Stops early when the cancellation event is set (checked at every boundary).
        """
        for i in range(1, max_polls + 1):
            if self.cancelled:
                logger.info(f"[SESSION] {self.coordinator} {self.symbol}: cancelled before poll {i}")
                return
            await self.sleep(interval_sec)
            if self.cancelled:
                logger.info(f"[SESSION] {self.coordinator} {self.symbol}: cancelled during poll {i}")
                return
            yield i

    def finish(self):
        self.finished_at = datetime.now(timezone.utc)


async def best_effort(description: str, call: Awaitable[T]) -> Optional[T]:
    """Await a cleanup call; log and return None instead of raising on API failure."""
    try:
        return await call
    except TradingApiError as e:
        logger.error(f"[CLEANUP] {description} failed: {e}")
        return None


class SymbolLocks:
    """Per-symbol mutual exclusion for coordinators sharing one account."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, symbol: str) -> asyncio.Lock:
        return self._locks.setdefault(symbol.upper(), asyncio.Lock())

    @asynccontextmanager
    async def hold(self, symbol: str):
        lock = self.get(symbol)
        if lock.locked():
            logger.info(f"[SESSION] {symbol}: another session is running, waiting...")
        async with lock:
            yield


symbol_locks = SymbolLocks()


class Coordinator:
    """
    Base for strategy coordinators. run() holds the symbol lock for the whole
    session and hands a fresh StrategySession to _execute().
    """

    name = "coordinator"

    def __init__(
        self,
        api,
        symbol: str,
        cancel_event: Optional[asyncio.Event] = None,
        sleep: Optional[SleepFn] = None,
        locks: Optional[SymbolLocks] = None,
    ):
        self.api = api
        self.symbol = symbol
        self.cancel_event = cancel_event or asyncio.Event()
        self.sleep = sleep or asyncio.sleep
        self.locks = locks or symbol_locks

    async def run(self, *args, **kwargs):
        async with self.locks.hold(self.symbol):
            session = StrategySession(
                coordinator=self.name,
                symbol=self.symbol,
                cancel_event=self.cancel_event,
                sleep=self.sleep,
            )
            try:
                return await self._execute(session, *args, **kwargs)
            finally:
                session.finish()
                elapsed = (session.finished_at - session.started_at).total_seconds()
                logger.info(f"[SESSION] {self.name} {self.symbol}: finished in {elapsed:.1f}s")

    async def _fill_price(self, ticket: int, fallback: Decimal) -> Decimal:
        """Open price the terminal actually filled at, or the pre-order quote if it cannot be read."""
        positions = await best_effort("positions", self.api.get_positions(self.symbol))
        for p in positions or []:
            if p.ticket == ticket:
                return p.open_price
        logger.warning(f"[SESSION] {self.symbol} #{ticket}: fill price unavailable, using quote {fallback}")
        return fallback

    async def _execute(self, session: StrategySession, *args, **kwargs):
        raise NotImplementedError
