from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from PySide6.QtCore import QObject, Signal, Slot

from cryptosage.data.fetcher import RemoteDataFetcher
from cryptosage.data.news import NewsClient
from cryptosage.errors import CryptoSageError

logger = logging.getLogger(__name__)

GLOBAL_CACHE_KEY = "global_cache"
COINS_CACHE_KEY = "coins_cache"
WATCHLIST_CACHE_KEY = "watchlist_cache"


def _opt_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


@dataclass
class GlobalMarketData:
    active_cryptocurrencies: int
    markets: int
    total_market_cap: Dict[str, float]
    total_volume: Dict[str, float]
    market_cap_percentage: Dict[str, float]
    market_cap_change_percentage_24h_usd: float = 0.0
    updated_at: int = 0

    @classmethod
    def from_payload(cls, payload: dict) -> "GlobalMarketData":
        data = payload["data"]
        return cls(
            active_cryptocurrencies=int(data.get("active_cryptocurrencies", 0)),
            markets=int(data.get("markets", 0)),
            total_market_cap={k: float(v) for k, v in data["total_market_cap"].items()},
            total_volume={k: float(v) for k, v in data["total_volume"].items()},
            market_cap_percentage={k: float(v) for k, v in data.get("market_cap_percentage", {}).items()},
            market_cap_change_percentage_24h_usd=float(data.get("market_cap_change_percentage_24h_usd") or 0.0),
            updated_at=int(data.get("updated_at") or 0),
        )

    def market_cap(self, currency: str = "usd") -> float:
        return self.total_market_cap.get(currency.lower(), 0.0)

    def volume(self, currency: str = "usd") -> float:
        return self.total_volume.get(currency.lower(), 0.0)

    @property
    def btc_dominance(self) -> float:
        return self.market_cap_percentage.get("btc", 0.0)


@dataclass
class MarketCoin:
    """One row of CoinGecko's ``/coins/markets`` list."""

    id: str
    symbol: str
    name: str
    image: Optional[str] = None
    current_price: Optional[float] = None
    market_cap: Optional[float] = None
    total_volume: Optional[float] = None
    price_change_percentage_1h: Optional[float] = None
    price_change_percentage_24h: Optional[float] = None
    sparkline_7d: List[float] = field(default_factory=list)
    market_cap_rank: Optional[int] = None
    max_supply: Optional[float] = None

    @classmethod
    def from_dict(cls, item: dict) -> "MarketCoin":
        sparkline = (item.get("sparkline_in_7d") or {}).get("price") or []
        rank = item.get("market_cap_rank")
        return cls(
            id=str(item["id"]),
            symbol=str(item["symbol"]).upper(),
            name=str(item["name"]),
            image=item.get("image"),
            current_price=_opt_float(item.get("current_price")),
            market_cap=_opt_float(item.get("market_cap")),
            total_volume=_opt_float(item.get("total_volume")),
            price_change_percentage_1h=_opt_float(item.get("price_change_percentage_1h_in_currency")),
            price_change_percentage_24h=_opt_float(item.get("price_change_percentage_24h_in_currency")),
            sparkline_7d=[float(p) for p in sparkline],
            market_cap_rank=int(rank) if rank is not None else None,
            max_supply=_opt_float(item.get("max_supply")),
        )

    @property
    def hourly_change(self) -> float:
        return self.price_change_percentage_1h or 0.0

    @property
    def daily_change(self) -> float:
        return self.price_change_percentage_24h or 0.0


def decode_coin_list(payload: Any) -> List[MarketCoin]:
    if not isinstance(payload, list):
        raise TypeError(f"expected a list of coins, got {type(payload).__name__}")
    return [MarketCoin.from_dict(item) for item in payload]


class CoinGeckoClient:
    """Market-data endpoints used by the market and watchlist screens."""

    def __init__(self, fetcher: RemoteDataFetcher, vs_currency: str = "usd") -> None:
        self._fetcher = fetcher
        self._vs_currency = vs_currency

    def fetch_global_data(self) -> GlobalMarketData:
        return self._fetcher.fetch(
            "/global",
            decode=GlobalMarketData.from_payload,
            cache_key=GLOBAL_CACHE_KEY,
        )

    def fetch_coin_markets(self, page: int = 1, per_page: int = 20) -> List[MarketCoin]:
        params = {
            "vs_currency": self._vs_currency,
            "order": "market_cap_desc",
            "per_page": int(per_page),
            "page": int(page),
            "sparkline": "true",
            "price_change_percentage": "1h,24h",
        }
        return self._fetcher.fetch(
            "/coins/markets",
            decode=decode_coin_list,
            cache_key=COINS_CACHE_KEY,
            params=params,
        )

    def fetch_watchlist_markets(self, ids: List[str]) -> List[MarketCoin]:
        if not ids:
            return []
        wanted = set(ids)
        params = {
            "vs_currency": self._vs_currency,
            "ids": ",".join(ids),
            "order": "market_cap_desc",
            "sparkline": "true",
            "price_change_percentage": "1h,24h",
        }
        # The cache may hold a wider watchlist than the one asked for now.
        return self._fetcher.fetch(
            "/coins/markets",
            decode=lambda payload: [c for c in decode_coin_list(payload) if c.id in wanted],
            cache_key=WATCHLIST_CACHE_KEY,
            params=params,
        )


class MarketWorker(QObject):
    """Runs market and news requests off the UI thread.

    Move it to a ``QThread`` and drive it through queued signal connections;
    results come back through the ``*Ready`` signals.
    """

    globalReady = Signal(object)  # GlobalMarketData
    coinsReady = Signal(object)  # list[MarketCoin]
    watchlistReady = Signal(object)  # list[MarketCoin]
    newsReady = Signal(object)  # list[NewsArticle]
    error = Signal(str)

    def __init__(self, market: CoinGeckoClient, news: Optional[NewsClient] = None) -> None:
        super().__init__()
        self._market = market
        self._news = news

    @Slot()
    def fetch_global(self) -> None:
        try:
            self.globalReady.emit(self._market.fetch_global_data())
        except CryptoSageError as e:
            logger.warning(f"Global market data unavailable: {e}")
            self.error.emit(str(e))

    @Slot(int, int)
    def fetch_coins(self, page: int = 1, per_page: int = 20) -> None:
        try:
            self.coinsReady.emit(self._market.fetch_coin_markets(page=page, per_page=per_page))
        except CryptoSageError as e:
            logger.warning(f"Coin markets unavailable: {e}")
            self.error.emit(str(e))

    @Slot(list)
    def fetch_watchlist(self, ids: List[str]) -> None:
        try:
            self.watchlistReady.emit(self._market.fetch_watchlist_markets(ids))
        except CryptoSageError as e:
            logger.warning(f"Watchlist fetch failed: {e}")
            self.error.emit(str(e))

    @Slot()
    def fetch_news(self) -> None:
        if self._news is None:
            return
        try:
            articles = self._news.fetch_headlines()
        except CryptoSageError as e:
            logger.warning(f"News unavailable: {e}")
            self.error.emit(str(e))
            return
        if not articles:
            self.error.emit("No news available")
        self.newsReady.emit(articles)
