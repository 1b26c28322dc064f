"""
Typed failures raised by every trading API implementation.

ConnectionLostError  — transport failed and bounded retries are exhausted.
OrderRejectedError   — the terminal refused the request (margin, volume, closed market...).
DataUnavailableError — the terminal has no data for the request (e.g. tick economics).
"""

from __future__ import annotations
from typing import Optional


class TradingApiError(Exception):
    """Base class for trading API failures."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        if self.code is None:
            return self.message
        return f"[{self.code}] {self.message}"


class ConnectionLostError(TradingApiError):
    pass


class OrderRejectedError(TradingApiError):
    pass


class DataUnavailableError(TradingApiError):
    pass
