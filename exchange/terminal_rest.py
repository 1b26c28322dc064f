"""
Terminal Gateway REST Client.
Handles authentication, bounded retry on connectivity loss, and all needed endpoints.

Every response uses the envelope {"retCode": int, "retMsg": str, "result": ...}.
retCode 0 is success; anything else is surfaced as a typed TradingApiError.
"""

from __future__ import annotations
import asyncio
import hashlib
import hmac
import json
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional
from exchange.errors import (
    ConnectionLostError, DataUnavailableError, OrderRejectedError, TradingApiError,
)
from exchange.models import (
    AccountInfo, OrderType, PendingOrderInfo, PositionInfo, Quote, Side, SymbolSpec,
)
from exchange.trading_api import SymbolMathMixin
import aiohttp
import logging

logger = logging.getLogger(__name__)

RETCODE_OK = 0
RETCODE_NO_DATA = 10404
RETCODE_NOT_FOUND = 10405


def _dec(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


class TerminalRestClient(SymbolMathMixin):
    """Async REST wrapper around the terminal gateway."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str,
        max_retries: int = 3,
        retry_backoff_sec: float = 1.0,
        timeout_sec: float = 10.0,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_backoff_sec = retry_backoff_sec
        self.timeout_sec = timeout_sec
        self._session: Optional[aiohttp.ClientSession] = None
        self._specs: Dict[str, SymbolSpec] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_sec)
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    def _sign(self, timestamp: str, payload: str) -> str:
        """Generate HMAC-SHA256 signature."""
        message = f"{timestamp}{self.api_key}{payload}"
        return hmac.new(
            self.api_secret.encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _headers(self, payload: str) -> Dict[str, str]:
        timestamp = str(int(time.time() * 1000))
        return {
            "X-GW-API-KEY": self.api_key,
            "X-GW-SIGN": self._sign(timestamp, payload),
            "X-GW-TIMESTAMP": timestamp,
            "Content-Type": "application/json",
        }

    async def _send(self, method: str, endpoint: str, params: Optional[Dict]) -> Dict[str, Any]:
        """One HTTP round-trip. Transport, 5xx and payload errors propagate to _request."""
        session = await self._get_session()
        url = f"{self.base_url}{endpoint}"

        if method == "GET":
            query = "&".join(f"{k}={v}" for k, v in sorted((params or {}).items()))
            url = f"{url}?{query}" if query else url
            async with session.get(url, headers=self._headers(query)) as resp:
                return await self._read(resp)

        body = json.dumps(params or {})
        async with session.post(url, headers=self._headers(body), data=body) as resp:
            return await self._read(resp)

    @staticmethod
    async def _read(resp: aiohttp.ClientResponse) -> Dict[str, Any]:
        # 4xx replies still carry the retCode envelope; 5xx come from the proxy in front
        if resp.status >= 500:
            resp.raise_for_status()
        data = await resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected payload: {str(data)[:100]}")
        return data

    async def _request(self, method: str, endpoint: str, params: Optional[Dict] = None) -> Any:
        """
        Make an API request. Connection errors, timeouts, 5xx replies and unreadable
        payloads are retried with backoff, then surface as ConnectionLostError.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                data = await self._send(method, endpoint, params)
                break
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                if attempt > self.max_retries:
                    logger.error(f"[REST] {method} {endpoint} gave up after {attempt} attempts: {e}")
                    raise ConnectionLostError(f"{method} {endpoint}: {e}") from e
                delay = self.retry_backoff_sec * (2 ** (attempt - 1))
                logger.warning(
                    f"[REST] {method} {endpoint} transport error ({e!r}). "
                    f"Retry {attempt}/{self.max_retries} in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

        code = data.get("retCode", -1)
        if code == RETCODE_OK:
            return data.get("result")

        msg = data.get("retMsg", "unknown error")
        logger.error(f"[REST] {method} {endpoint} Error: code={code}, msg={msg}")
        if code == RETCODE_NO_DATA:
            raise DataUnavailableError(msg, code)
        if code > 0:
            raise OrderRejectedError(msg, code)
        raise TradingApiError(msg, code)

    # ==================== Market Endpoints ====================

    async def get_symbol_spec(self, symbol: str) -> SymbolSpec:
        """Symbol precision and tick economics (cached per session)."""
        if symbol in self._specs:
            return self._specs[symbol]
        r = await self._request("GET", "/v1/market/symbol", {"symbol": symbol})
        spec = SymbolSpec(
            symbol=symbol,
            point=Decimal(str(r["point"])),
            digits=int(r["digits"]),
            volume_min=Decimal(str(r["volumeMin"])),
            volume_max=Decimal(str(r["volumeMax"])),
            volume_step=Decimal(str(r["volumeStep"])),
            tick_value=_dec(r.get("tickValue")),
            tick_size=_dec(r.get("tickSize")),
        )
        self._specs[symbol] = spec
        return spec

    async def get_quote(self, symbol: str) -> Quote:
        r = await self._request("GET", "/v1/market/tick", {"symbol": symbol})
        return Quote(symbol, Decimal(str(r["bid"])), Decimal(str(r["ask"])))

    # ==================== Account Endpoints ====================

    async def get_account(self) -> AccountInfo:
        r = await self._request("GET", "/v1/account/summary")
        return AccountInfo(
            balance=Decimal(str(r["balance"])),
            equity=Decimal(str(r["equity"])),
            profit=Decimal(str(r["profit"])),
        )

    async def get_positions(self, symbol: Optional[str] = None) -> List[PositionInfo]:
        params = {"symbol": symbol} if symbol else None
        rows = await self._request("GET", "/v1/position/list", params) or []
        return [
            PositionInfo(
                ticket=int(p["ticket"]),
                symbol=p["symbol"],
                side=Side(p["side"]),
                volume=Decimal(str(p["volume"])),
                open_price=Decimal(str(p["openPrice"])),
                sl=_dec(p.get("sl")),
                tp=_dec(p.get("tp")),
                profit=_dec(p.get("profit")) or Decimal("0"),
                comment=p.get("comment", ""),
            )
            for p in rows
        ]

    async def get_pending_orders(self, symbol: Optional[str] = None) -> List[PendingOrderInfo]:
        params = {"symbol": symbol} if symbol else None
        rows = await self._request("GET", "/v1/order/list", params) or []
        return [
            PendingOrderInfo(
                ticket=int(o["ticket"]),
                symbol=o["symbol"],
                order_type=OrderType(o["type"]),
                volume=Decimal(str(o["volume"])),
                price=Decimal(str(o["price"])),
                sl=_dec(o.get("sl")),
                tp=_dec(o.get("tp")),
                comment=o.get("comment", ""),
            )
            for o in rows
        ]

    # ==================== Trading Endpoints ====================

    async def _open_market(self, symbol, side, volume, sl, tp, comment) -> int:
        params = {"symbol": symbol, "side": side.value, "volume": str(volume), "comment": comment}
        if sl:
            params["sl"] = str(sl)
        if tp:
            params["tp"] = str(tp)
        logger.info(f"[ORDER] Market: {side.value} {volume} {symbol} SL={sl} TP={tp}")
        r = await self._request("POST", "/v1/order/market", params)
        return int(r["ticket"])

    async def _place_pending(self, symbol, order_type, volume, price, sl, tp, comment) -> int:
        params = {
            "symbol": symbol,
            "type": order_type.value,
            "volume": str(volume),
            "price": str(price),
            "comment": comment,
        }
        if sl:
            params["sl"] = str(sl)
        if tp:
            params["tp"] = str(tp)
        logger.info(f"[ORDER] Pending: {order_type.value} {volume} {symbol} @ {price}")
        r = await self._request("POST", "/v1/order/pending", params)
        return int(r["ticket"])

    async def modify_position(self, ticket, sl, tp) -> None:
        params = {"ticket": ticket, "sl": str(sl) if sl else "", "tp": str(tp) if tp else ""}
        logger.info(f"[ORDER] Modify #{ticket}: SL={sl} TP={tp}")
        await self._request("POST", "/v1/position/modify", params)

    async def close_position(self, ticket, volume=None) -> None:
        params: Dict[str, Any] = {"ticket": ticket}
        if volume is not None:
            params["volume"] = str(volume)
        logger.info(f"[ORDER] Close #{ticket}" + (f" ({volume})" if volume is not None else ""))
        await self._request("POST", "/v1/position/close", params)

    async def cancel_order(self, ticket) -> None:
        """Cancel a pending order. An order that no longer exists is not an error."""
        logger.info(f"[ORDER] Cancelling: #{ticket}")
        try:
            await self._request("POST", "/v1/order/cancel", {"ticket": ticket})
        except OrderRejectedError as e:
            if e.code != RETCODE_NOT_FOUND:
                raise
            logger.info(f"[ORDER] #{ticket} already gone (filled or expired)")
