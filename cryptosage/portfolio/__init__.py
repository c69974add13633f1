# Portfolio module
"""Holdings ledger, portfolio metrics and presentation state."""

from .models import ChartPoint, Holding, Portfolio, Transaction, TransactionSerializer
from .ledger import HoldingsLedger, apply_transaction, find_holding, replay
from .analytics import AllocationSlice, PerformanceMetrics
from .presentation import CHART_RANGES, PortfolioViewModel
from .insights import Insight, InsightService

__all__ = [
    "ChartPoint",
    "Holding",
    "Portfolio",
    "Transaction",
    "TransactionSerializer",
    "HoldingsLedger",
    "apply_transaction",
    "find_holding",
    "replay",
    "AllocationSlice",
    "PerformanceMetrics",
    "CHART_RANGES",
    "PortfolioViewModel",
    "Insight",
    "InsightService",
]
