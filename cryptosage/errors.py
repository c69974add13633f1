"""Error taxonomy shared by the fetchers, the ledger and persistence."""

from __future__ import annotations

from typing import Any, Optional


class CryptoSageError(Exception):
    """Base class for all errors raised by this package."""


class OfflineError(CryptoSageError):
    """No network connectivity and no usable cache entry."""


class TransientNetworkError(CryptoSageError):
    """Timeout or lost connection that survived every retry."""


class BadResponseError(CryptoSageError):
    """Non-2xx status or a payload that could not be decoded.

    Never retried.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, payload: Any | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class InvalidSellError(CryptoSageError):
    """Sell of a coin that is not held, or of more than is held."""

    def __init__(self, symbol: str, quantity: Any, held: Any = None) -> None:
        if held is None:
            message = f"Cannot sell {quantity} {symbol}: no holding"
        else:
            message = f"Cannot sell {quantity} {symbol}: only {held} held"
        super().__init__(message)
        self.symbol = symbol
        self.quantity = quantity
        self.held = held


class InvalidEditError(CryptoSageError):
    """Edit or delete of a transaction that is not a known manual one."""

    def __init__(self, transaction_id: str, reason: str = "not a manual transaction") -> None:
        super().__init__(f"Cannot modify transaction {transaction_id}: {reason}")
        self.transaction_id = transaction_id
        self.reason = reason


class PersistenceError(CryptoSageError):
    """Local read or write failure."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(f"{key}: {message}")
        self.key = key
