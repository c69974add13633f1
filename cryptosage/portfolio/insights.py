"""Canned portfolio insights with a daily refresh allowance."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

from cryptosage.errors import PersistenceError
from cryptosage.storage import IStorageService

from .models import Portfolio

logger = logging.getLogger(__name__)

USAGE_KEY = "insight_usage"
MAX_FREE_REFRESHES = 3

INSIGHTS = [
    "Your largest position dominates the portfolio. Moving 5-10% into other large caps would improve diversification.",
    "Your portfolio outpaced the broader crypto market this week on the back of recent bullish momentum.",
    "Network fees spiked recently and can eat into trading profits. Consider scheduling transactions off-peak.",
    "Your holdings swung noticeably over the last 24 hours. Dynamic stop-loss orders could help protect gains.",
    "One of your smaller positions outperformed this month. Rebalancing could lock in some of that profit.",
    "Your top three holdings drove most of this month's gains. Mid-cap coins may offer new opportunities.",
]


@dataclass(frozen=True)
class Insight:
    text: str
    timestamp: datetime


class InsightService:
    """Hands out one insight per refresh, ``MAX_FREE_REFRESHES`` times a day."""

    def __init__(
        self,
        storage: IStorageService,
        rng: Optional[random.Random] = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._storage = storage
        self._rng = rng or random.Random()
        self._today = today
        self._current: Optional[Insight] = None

    @property
    def current(self) -> Optional[Insight]:
        return self._current

    def _uses_today(self) -> int:
        data = self._storage.load(USAGE_KEY)
        if not isinstance(data, dict) or data.get("date") != self._today().isoformat():
            return 0
        return int(data.get("uses", 0))

    @property
    def remaining_refreshes(self) -> int:
        return max(MAX_FREE_REFRESHES - self._uses_today(), 0)

    def refresh(self, portfolio: Portfolio) -> Optional[Insight]:
        """Pick a new insight for ``portfolio``.

        Returns:
            The new insight, or None once today's allowance is used up
        """
        uses = self._uses_today()
        if uses >= MAX_FREE_REFRESHES:
            logger.info("Insight refresh limit reached for today")
            return None

        # avoid repeating the insight already shown
        choices = [text for text in INSIGHTS if self._current is None or text != self._current.text]
        text = self._rng.choice(choices)
        logger.debug(f"Insight for {len(portfolio.holdings)} holdings: {text[:40]}")
        self._current = Insight(text=text, timestamp=datetime.now())

        try:
            self._storage.save(USAGE_KEY, {"date": self._today().isoformat(), "uses": uses + 1})
        except PersistenceError as e:
            logger.error(f"Failed to record insight usage: {e}")
        return self._current
