"""Composition root: builds every service from settings and owns their lifecycle."""

from __future__ import annotations

import logging
from typing import List, Optional

import httpx
from PySide6.QtCore import QObject, QThread, Signal, Slot

from cryptosage.config import AppSettings
from cryptosage.data import (
    BinanceBookVenue,
    CoinbaseBookVenue,
    CoinGeckoClient,
    IConnectivity,
    MarketWorker,
    NetworkMonitor,
    NewsClient,
    OrderBookPoller,
    PriceFeed,
    PriceQuote,
    RemoteDataFetcher,
    make_http_client,
)
from cryptosage.exchange import ThreeCommasClient
from cryptosage.portfolio import Holding, HoldingsLedger, InsightService, PortfolioViewModel
from cryptosage.storage import IStorageService, JsonFileStorage
from cryptosage.ws.binance import BinanceTickerStream

logger = logging.getLogger(__name__)


class AppServices(QObject):
    """Explicitly constructed services shared by the screens.

    Market fetches and order-book polls each run on their own worker thread;
    ledger and order-book state are only touched on the thread that owns
    this object.
    """

    requestGlobal = Signal()
    requestCoins = Signal(int, int)
    requestWatchlist = Signal(list)
    requestNews = Signal()

    def __init__(
        self,
        settings: AppSettings,
        connectivity: Optional[IConnectivity] = None,
        storage: Optional[IStorageService] = None,
    ) -> None:
        super().__init__()
        self._settings = settings
        self.storage = storage or JsonFileStorage(settings.data_dir)
        self.connectivity = connectivity or NetworkMonitor()

        timeouts = (settings.request_timeout_s, settings.resource_timeout_s)
        gecko_http = make_http_client(settings.coingecko_base_url, *timeouts)
        news_http = make_http_client(settings.news_base_url, *timeouts)
        exchange_http = make_http_client("", *timeouts)
        self._http_clients: List[httpx.Client] = [gecko_http, news_http, exchange_http]

        self.market = CoinGeckoClient(
            RemoteDataFetcher(gecko_http, self.storage, self.connectivity),
            vs_currency=settings.vs_currency,
        )
        self.news = NewsClient(
            RemoteDataFetcher(news_http, self.storage, self.connectivity),
            api_key=settings.news_api_key,
        )
        self.three_commas = ThreeCommasClient(
            exchange_http,
            api_key=settings.three_commas_api_key,
            api_secret=settings.three_commas_api_secret,
            account_id=settings.three_commas_account_id,
            base_url=settings.three_commas_base_url,
        )

        self.ledger = HoldingsLedger(self.storage)
        self.portfolio = PortfolioViewModel(self.ledger)
        self.insights = InsightService(self.storage)
        self.prices = PriceFeed()
        self.ticker_stream = BinanceTickerStream(self.prices)

        # market retries and order-book polls must not wait on each other
        self._market_thread = QThread()
        self._order_book_thread = QThread()
        self.market_worker = MarketWorker(self.market, self.news)
        self.market_worker.moveToThread(self._market_thread)
        self.requestGlobal.connect(self.market_worker.fetch_global)
        self.requestCoins.connect(self.market_worker.fetch_coins)
        self.requestWatchlist.connect(self.market_worker.fetch_watchlist)
        self.requestNews.connect(self.market_worker.fetch_news)

        self.order_book = OrderBookPoller(
            [
                CoinbaseBookVenue(exchange_http, settings.coinbase_exchange_url),
                BinanceBookVenue(exchange_http, settings.binance_base_url),
            ],
            self.storage,
            interval_ms=settings.order_book_interval_ms,
            depth=settings.order_book_depth,
            thread=self._order_book_thread,
        )

        self.prices.priceUpdated.connect(self._on_price)
        self.ledger.holdingsChanged.connect(self._on_holdings_changed)
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._market_thread.start()
        self._order_book_thread.start()
        self.ledger.load()
        self.order_book.start(self._settings.default_symbol)
        self.requestGlobal.emit()
        self.requestCoins.emit(1, 20)
        if self._settings.news_api_key:
            self.requestNews.emit()
        logger.info("Services started")

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self.order_book.stop()
        self.ticker_stream.stop()
        for thread in (self._market_thread, self._order_book_thread):
            thread.quit()
        for thread in (self._market_thread, self._order_book_thread):
            thread.wait()
        for client in self._http_clients:
            client.close()
        logger.info("Services stopped")

    @Slot(str, object)
    def _on_price(self, symbol: str, quote: PriceQuote) -> None:
        self.ledger.set_prices({symbol: quote})

    @Slot(object)
    def _on_holdings_changed(self, holdings: List[Holding]) -> None:
        self.ticker_stream.set_coins([h.coin_symbol for h in holdings])
