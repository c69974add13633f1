from __future__ import annotations

import json
import logging
from typing import List

from PySide6.QtCore import QObject, QUrl, Signal
from PySide6.QtWebSockets import QWebSocket

from cryptosage.data.prices import PriceFeed

logger = logging.getLogger(__name__)

QUOTE_ASSET = "USDT"


class BinanceTickerStream(QObject):
    """24h ticker stream for held coins, pushed into a ``PriceFeed``."""

    tick = Signal(str, float, float)  # coin symbol, last, change_pct
    error = Signal(str)
    connectedChanged = Signal(bool)

    def __init__(self, feed: PriceFeed) -> None:
        super().__init__()
        self._feed = feed
        self._ws = QWebSocket()
        self._coins: List[str] = []
        self._wire()

    def _wire(self) -> None:
        self._ws.connected.connect(lambda: self._on_connected(True))
        self._ws.disconnected.connect(lambda: self._on_connected(False))
        self._ws.textMessageReceived.connect(self._on_msg)
        self._ws.errorOccurred.connect(lambda e: self.error.emit(str(e)))

    @property
    def coins(self) -> List[str]:
        return list(self._coins)

    @staticmethod
    def stream_url(coins: List[str]) -> str:
        streams = "/".join(f"{c.lower()}{QUOTE_ASSET.lower()}@ticker" for c in coins)
        return f"wss://stream.binance.com:9443/stream?streams={streams}"

    def start(self, coins: List[str]) -> None:
        self._coins = sorted({c.upper() for c in coins})
        self._ws.close()
        if not self._coins:
            return
        self._ws.open(QUrl(self.stream_url(self._coins)))

    def stop(self) -> None:
        self._ws.close()

    def set_coins(self, coins: List[str]) -> None:
        if sorted({c.upper() for c in coins}) != self._coins:
            self.start(coins)

    def _on_connected(self, connected: bool) -> None:
        self._feed.set_connected(connected)
        self.connectedChanged.emit(connected)

    def _on_msg(self, msg: str) -> None:
        try:
            obj = json.loads(msg)
            data = obj.get("data") or obj
            pair = (data.get("s") or "").upper()
            last = float(data.get("c") or 0.0)
            chg = float(data.get("P") or 0.0)
        except (ValueError, TypeError, AttributeError) as e:
            self.error.emit(str(e))
            return
        if not pair.endswith(QUOTE_ASSET) or last <= 0:
            return
        coin = pair[: -len(QUOTE_ASSET)]
        self._feed.update_price(coin, data["c"], data.get("P") or 0)
        self.tick.emit(coin, last, chg)
