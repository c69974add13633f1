from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

from PySide6.QtCore import QObject, Signal


@dataclass(frozen=True)
class PriceQuote:
    price: Decimal
    change_pct: Decimal = Decimal("0")


class PriceFeed(QObject):
    """Latest known price per coin symbol.

    Fed by the ticker stream (or a REST poll); the ledger reads snapshots.
    """

    priceUpdated = Signal(str, object)  # symbol, PriceQuote
    connectedChanged = Signal(bool)

    def __init__(self) -> None:
        super().__init__()
        self._quotes: Dict[str, PriceQuote] = {}
        self._connected = False

    def update_price(self, symbol: str, price: float | str | Decimal, change_pct: float | str | Decimal = 0) -> None:
        """Record a new price.

        Args:
            symbol: Coin symbol, e.g. "BTC"
            price: Last traded price
            change_pct: 24h change in percent
        """
        quote = PriceQuote(Decimal(str(price)), Decimal(str(change_pct)))
        sym = symbol.upper()
        self._quotes[sym] = quote
        self.priceUpdated.emit(sym, quote)

    def set_connected(self, connected: bool) -> None:
        if connected != self._connected:
            self._connected = connected
            self.connectedChanged.emit(connected)

    def is_connected(self) -> bool:
        return self._connected

    def get_current_price(self, symbol: str) -> Optional[Decimal]:
        quote = self._quotes.get(symbol.upper())
        return quote.price if quote else None

    def get_quote(self, symbol: str) -> Optional[PriceQuote]:
        return self._quotes.get(symbol.upper())

    def get_prices_snapshot(self) -> Dict[str, PriceQuote]:
        """Get a shallow copy of the current quotes."""
        return dict(self._quotes)
