# Data module
"""Remote market data, news, live prices and order books."""

from .fetcher import IConnectivity, NetworkMonitor, RemoteDataFetcher, make_http_client
from .market import CoinGeckoClient, GlobalMarketData, MarketCoin, MarketWorker
from .news import NewsArticle, NewsClient
from .orderbook import (
    BinanceBookVenue,
    CoinbaseBookVenue,
    IOrderBookVenue,
    OrderBookEntry,
    OrderBookPoller,
    OrderBookSnapshot,
    fetch_order_book,
)
from .prices import PriceFeed, PriceQuote

__all__ = [
    "IConnectivity",
    "NetworkMonitor",
    "RemoteDataFetcher",
    "make_http_client",
    "CoinGeckoClient",
    "GlobalMarketData",
    "MarketCoin",
    "MarketWorker",
    "NewsArticle",
    "NewsClient",
    "BinanceBookVenue",
    "CoinbaseBookVenue",
    "IOrderBookVenue",
    "OrderBookEntry",
    "OrderBookPoller",
    "OrderBookSnapshot",
    "fetch_order_book",
    "PriceFeed",
    "PriceQuote",
]
