"""Top-of-book polling with venue fallback.

Prices and quantities stay strings end to end so that rendering never shows
float artifacts; they are only parsed to ``Decimal`` for sorting.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional, Sequence, Tuple

import httpx
from PySide6.QtCore import QObject, QThread, QTimer, Signal, Slot

from cryptosage.data.fetcher import DECODE_ERRORS
from cryptosage.errors import BadResponseError, PersistenceError
from cryptosage.storage import IStorageService

logger = logging.getLogger(__name__)

VENUE_ERRORS = (httpx.HTTPError, BadResponseError) + DECODE_ERRORS


@dataclass(frozen=True)
class OrderBookEntry:
    price: str
    qty: str

    def to_dict(self) -> dict:
        return {"price": self.price, "qty": self.qty}

    @classmethod
    def from_dict(cls, data: dict) -> "OrderBookEntry":
        return cls(price=str(data["price"]), qty=str(data["qty"]))


@dataclass(frozen=True)
class OrderBookSnapshot:
    """Both sides of a book, always replaced together.

    Attributes:
        bids: Levels sorted by price, best (highest) first
        asks: Levels sorted by price, best (lowest) first
        venue: Name of the venue the levels came from
    """
    bids: Tuple[OrderBookEntry, ...] = ()
    asks: Tuple[OrderBookEntry, ...] = ()
    venue: str = ""

    @classmethod
    def from_levels(cls, bids: Sequence[Sequence[Any]], asks: Sequence[Sequence[Any]], depth: int, venue: str = "") -> "OrderBookSnapshot":
        return cls(
            bids=_parse_levels(bids, depth, descending=True),
            asks=_parse_levels(asks, depth, descending=False),
            venue=venue,
        )

    @property
    def best_bid(self) -> Optional[OrderBookEntry]:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> Optional[OrderBookEntry]:
        return self.asks[0] if self.asks else None

    @property
    def spread(self) -> Optional[Decimal]:
        if not self.bids or not self.asks:
            return None
        return Decimal(self.asks[0].price) - Decimal(self.bids[0].price)

    def to_dict(self) -> dict:
        return {
            "venue": self.venue,
            "bids": [e.to_dict() for e in self.bids],
            "asks": [e.to_dict() for e in self.asks],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OrderBookSnapshot":
        return cls(
            bids=tuple(OrderBookEntry.from_dict(e) for e in data.get("bids", [])),
            asks=tuple(OrderBookEntry.from_dict(e) for e in data.get("asks", [])),
            venue=str(data.get("venue", "")),
        )


def _parse_levels(rows: Sequence[Sequence[Any]], depth: int, descending: bool) -> Tuple[OrderBookEntry, ...]:
    entries = [OrderBookEntry(price=str(row[0]), qty=str(row[1])) for row in rows]
    entries.sort(key=lambda e: Decimal(e.price), reverse=descending)
    return tuple(entries[:depth])


class IOrderBookVenue(ABC):
    """A source of complete order-book snapshots for one symbol."""

    name: str = ""

    @abstractmethod
    def fetch(self, symbol: str, depth: int) -> OrderBookSnapshot:
        """Fetch a full snapshot for a coin symbol such as ``"BTC"``."""
        ...


class CoinbaseBookVenue(IOrderBookVenue):
    name = "coinbase"

    def __init__(self, client: httpx.Client, base_url: str = "https://api.exchange.coinbase.com") -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    def fetch(self, symbol: str, depth: int) -> OrderBookSnapshot:
        pair = f"{symbol.upper()}-USD"
        r = self._client.get(f"{self._base_url}/products/{pair}/book", params={"level": 2})
        r.raise_for_status()
        data = r.json()
        # rows are [price, size, num_orders]
        return OrderBookSnapshot.from_levels(data["bids"], data["asks"], depth, venue=self.name)


class BinanceBookVenue(IOrderBookVenue):
    name = "binance"

    def __init__(self, client: httpx.Client, base_url: str = "https://api.binance.com") -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    def fetch(self, symbol: str, depth: int) -> OrderBookSnapshot:
        r = self._client.get(
            f"{self._base_url}/api/v3/depth",
            params={"symbol": f"{symbol.upper()}USDT", "limit": int(depth)},
        )
        r.raise_for_status()
        data = r.json()
        return OrderBookSnapshot.from_levels(data["bids"], data["asks"], depth, venue=self.name)


def fetch_order_book(venues: Sequence[IOrderBookVenue], symbol: str, depth: int) -> OrderBookSnapshot:
    """Try each venue in order and return the first complete snapshot.

    Raises:
        BadResponseError: Every venue failed; chained to the last failure
    """
    last_error: Optional[Exception] = None
    for venue in venues:
        try:
            return venue.fetch(symbol, depth)
        except VENUE_ERRORS as e:
            logger.warning(f"{venue.name} order book for {symbol} failed: {e!r}")
            last_error = e
    raise BadResponseError(f"Error loading order book for {symbol}") from last_error


class OrderBookWorker(QObject):
    resultReady = Signal(str, object)  # symbol, OrderBookSnapshot
    failed = Signal(str, str)  # symbol, message

    def __init__(self, venues: Sequence[IOrderBookVenue], depth: int = 20) -> None:
        super().__init__()
        self._venues = list(venues)
        self._depth = depth

    @Slot(str)
    def fetch(self, symbol: str) -> None:
        try:
            snapshot = fetch_order_book(self._venues, symbol, self._depth)
        except BadResponseError as e:
            self.failed.emit(symbol, str(e))
            return
        self.resultReady.emit(symbol, snapshot)


class OrderBookPoller(QObject):
    """Keeps a near-real-time book for one symbol.

    ``start(symbol)`` publishes cached levels right away, fetches immediately,
    then every ``interval_ms`` until ``stop()``. A tick that fires while a
    fetch is still in flight is skipped. A failed tick leaves the current
    levels in place and only sets the error message.
    """

    bookChanged = Signal(object)  # OrderBookSnapshot
    errorChanged = Signal(str)
    loadingChanged = Signal(bool)
    requestFetch = Signal(str)

    def __init__(
        self,
        venues: Sequence[IOrderBookVenue],
        storage: IStorageService,
        interval_ms: int = 5000,
        depth: int = 20,
        thread: Optional[QThread] = None,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._storage = storage
        self._symbol = ""
        self._polling = False
        self._book = OrderBookSnapshot()
        self._error: Optional[str] = None
        self._loading = False
        self._busy = False

        self._worker = OrderBookWorker(venues, depth)
        if thread is not None:
            self._worker.moveToThread(thread)
        self.requestFetch.connect(self._worker.fetch)
        self._worker.resultReady.connect(self._on_result)
        self._worker.failed.connect(self._on_failed)

        self._timer = QTimer(self)
        self._timer.setInterval(interval_ms)
        self._timer.timeout.connect(self._tick)

    # ----- state -----
    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def is_polling(self) -> bool:
        return self._polling

    @property
    def book(self) -> OrderBookSnapshot:
        return self._book

    @property
    def bids(self) -> List[OrderBookEntry]:
        return list(self._book.bids)

    @property
    def asks(self) -> List[OrderBookEntry]:
        return list(self._book.asks)

    @property
    def error_message(self) -> Optional[str]:
        return self._error

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def base_currency(self) -> str:
        return self._symbol.upper()

    @property
    def quote_currency(self) -> str:
        return "USD"

    # ----- control -----
    def start(self, symbol: str) -> None:
        self.stop()
        self._symbol = symbol.upper()
        self._polling = True
        self._set_error(None)
        self._load_cache(self._symbol)
        self._tick()
        self._timer.start()

    def stop(self) -> None:
        self._timer.stop()
        self._polling = False
        self._set_loading(False)

    def refresh(self) -> None:
        """Fetch now without waiting for the next tick."""
        self._tick()

    @Slot()
    def _tick(self) -> None:
        # one fetch in flight at a time
        if not self._polling or not self._symbol or self._busy:
            return
        self._busy = True
        self._set_loading(True)
        self.requestFetch.emit(self._symbol)

    # ----- results -----
    @Slot(str, object)
    def _on_result(self, symbol: str, snapshot: OrderBookSnapshot) -> None:
        if not self._finish(symbol):
            return
        self._set_loading(False)
        self._set_error(None)
        self._book = snapshot
        self.bookChanged.emit(snapshot)
        self._save_cache(symbol, snapshot)

    @Slot(str, str)
    def _on_failed(self, symbol: str, message: str) -> None:
        if not self._finish(symbol):
            return
        self._set_loading(False)
        self._set_error(message)

    def _finish(self, symbol: str) -> bool:
        """Release the in-flight slot; True when the result is for the current symbol."""
        was_busy = self._busy
        self._busy = False
        if self._accepts(symbol):
            return True
        if was_busy:
            # a tick skipped while the stale fetch ran is owed to the current symbol
            self._tick()
        return False

    def _accepts(self, symbol: str) -> bool:
        if self._polling and symbol == self._symbol:
            return True
        logger.debug(f"Discarding stale order book result for {symbol}")
        return False

    def _set_error(self, message: Optional[str]) -> None:
        if message == self._error:
            return
        self._error = message
        self.errorChanged.emit(message or "")

    def _set_loading(self, loading: bool) -> None:
        if loading == self._loading:
            return
        self._loading = loading
        self.loadingChanged.emit(loading)

    # ----- cache -----
    @staticmethod
    def cache_key(symbol: str) -> str:
        return f"orderbook_{symbol.upper()}"

    def _load_cache(self, symbol: str) -> None:
        data = self._storage.load(self.cache_key(symbol))
        snapshot = OrderBookSnapshot()
        if data is not None:
            try:
                snapshot = OrderBookSnapshot.from_dict(data)
            except DECODE_ERRORS as e:
                logger.error(f"Cached order book for {symbol} is unreadable: {e}")
        self._book = snapshot
        self.bookChanged.emit(snapshot)

    def _save_cache(self, symbol: str, snapshot: OrderBookSnapshot) -> None:
        try:
            self._storage.save(self.cache_key(symbol), snapshot.to_dict())
        except PersistenceError as e:
            logger.error(f"Failed to cache order book for {symbol}: {e}")
