"""View-ready portfolio state built on top of the ledger."""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional

from PySide6.QtCore import QObject, Signal, Slot

from . import analytics
from .ledger import HoldingsLedger
from .models import ChartPoint, Holding

CHART_RANGES = {"1D": 1, "1W": 7, "1M": 30}


class PortfolioViewModel(QObject):
    """Recomputes history and summary metrics whenever holdings change."""

    summaryChanged = Signal(object)  # dict
    historyChanged = Signal(object)  # list[ChartPoint] for the selected range
    allocationChanged = Signal(object)  # list[AllocationSlice]

    def __init__(
        self,
        ledger: HoldingsLedger,
        clock: Callable[[], datetime] = datetime.now,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._ledger = ledger
        self._clock = clock
        self._holdings: List[Holding] = ledger.holdings
        self._history: List[ChartPoint] = []
        self._range = "1M"
        ledger.holdingsChanged.connect(self._on_holdings_changed)
        self._recompute()

    @property
    def holdings(self) -> List[Holding]:
        return list(self._holdings)

    @property
    def history(self) -> List[ChartPoint]:
        return list(self._history)

    @property
    def selected_range(self) -> str:
        return self._range

    @property
    def total_value(self) -> Decimal:
        return analytics.total_value(self._holdings)

    @property
    def unrealized_pl(self) -> Decimal:
        return analytics.unrealized_pl(self._holdings)

    @property
    def daily_change_percent(self) -> Decimal:
        return analytics.daily_change_percent(self.total_value, self._history, self._clock())

    def allocation_data(self) -> List[analytics.AllocationSlice]:
        return analytics.allocation_data(self._holdings)

    def set_range(self, key: str) -> None:
        if key not in CHART_RANGES:
            raise ValueError(f"Unknown chart range {key!r}; expected one of {sorted(CHART_RANGES)}")
        self._range = key
        self.historyChanged.emit(self.chart_series())

    def chart_series(self) -> List[ChartPoint]:
        """History points inside the selected range, oldest first."""
        cutoff = self._clock() - timedelta(days=CHART_RANGES[self._range])
        return [p for p in self._history if p.date >= cutoff]

    def summary(self) -> dict:
        total = self.total_value
        pl = self.unrealized_pl
        change = self.daily_change_percent
        return {
            "total_value": total,
            "total_value_string": analytics.format_currency(total),
            "unrealized_pl": pl,
            "unrealized_pl_string": analytics.format_signed_currency(pl),
            "daily_change_percent": change,
            "daily_change_percent_string": analytics.format_signed_percent(change),
            "top_performer": analytics.top_performer(self._holdings),
            "worst_performer": analytics.worst_performer(self._holdings),
        }

    @Slot(object)
    def _on_holdings_changed(self, holdings: List[Holding]) -> None:
        self._holdings = list(holdings)
        self._recompute()

    def _recompute(self) -> None:
        self._history = analytics.build_history(self._ledger.transactions, self._clock())
        self.historyChanged.emit(self.chart_series())
        self.allocationChanged.emit(self.allocation_data())
        self.summaryChanged.emit(self.summary())
