from __future__ import annotations

from functools import cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    data_dir: Path = Path.home() / ".cryptosage" / "data"
    log_level: str = "INFO"

    vs_currency: str = "usd"
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    news_base_url: str = "https://newsapi.org/v2"
    news_api_key: str = ""
    coinbase_exchange_url: str = "https://api.exchange.coinbase.com"
    binance_base_url: str = "https://api.binance.com"

    three_commas_base_url: str = "https://api.3commas.io"
    three_commas_api_key: str = ""
    three_commas_api_secret: str = ""
    three_commas_account_id: int = 0

    request_timeout_s: float = 30.0
    resource_timeout_s: float = 60.0

    order_book_interval_ms: int = 5000
    order_book_depth: int = 20
    default_symbol: str = "BTC"

    model_config = SettingsConfigDict(
        env_prefix="CRYPTOSAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@cache
def config() -> AppSettings:
    return AppSettings()
