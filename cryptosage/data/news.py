from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from cryptosage.data.fetcher import RemoteDataFetcher

NEWS_CACHE_KEY = "news_cache"


@dataclass
class NewsArticle:
    title: str
    url: str
    url_to_image: Optional[str] = None
    published_at: Optional[datetime] = None
    source: str = ""
    description: str = ""

    @classmethod
    def from_dict(cls, item: dict) -> "NewsArticle":
        published = item.get("publishedAt")
        return cls(
            title=str(item["title"]),
            url=str(item["url"]),
            url_to_image=item.get("urlToImage"),
            # NewsAPI uses a trailing "Z"
            published_at=datetime.fromisoformat(published.replace("Z", "+00:00")) if published else None,
            source=str((item.get("source") or {}).get("name") or ""),
            description=str(item.get("description") or ""),
        )


def decode_news(payload: Any) -> List[NewsArticle]:
    """Unwrap the ``{status, totalResults, articles}`` envelope."""
    if not isinstance(payload, dict):
        raise TypeError(f"expected a news envelope, got {type(payload).__name__}")
    if payload.get("status") != "ok":
        raise ValueError(f"news status {payload.get('status')!r}: {payload.get('message', '')}")
    return [NewsArticle.from_dict(a) for a in payload["articles"]]


class NewsClient:
    def __init__(self, fetcher: RemoteDataFetcher, api_key: str) -> None:
        self._fetcher = fetcher
        self._api_key = api_key

    def fetch_headlines(self, query: str = "crypto", language: str = "en", page_size: int = 20) -> List[NewsArticle]:
        return self._fetcher.fetch(
            "/top-headlines",
            decode=decode_news,
            cache_key=NEWS_CACHE_KEY,
            params={"q": query, "language": language, "pageSize": int(page_size)},
            headers={"X-Api-Key": self._api_key},
        )
