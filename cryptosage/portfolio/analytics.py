"""Portfolio metrics and chart series."""

import csv
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Sequence, Tuple

from .ledger import replay
from .models import ChartPoint, Holding, Transaction

MINUS_SIGN = "−"
HISTORY_DAYS = 30


@dataclass(frozen=True)
class AllocationSlice:
    symbol: str
    percent: Decimal


@dataclass
class PerformanceMetrics:
    """Realized trading performance over the transaction log.

    Attributes:
        total_trades: Number of sells
        profitable_trades: Sells above the cost basis at the time
        win_rate: Percentage of profitable sells (0-100)
        realized_pnl: Sum of (sell price - cost basis) * sold quantity
        total_volume: Sum of all transaction values
    """
    total_trades: int
    profitable_trades: int
    win_rate: Decimal
    realized_pnl: Decimal
    total_volume: Decimal


def total_value(holdings: Sequence[Holding]) -> Decimal:
    return sum((h.current_value for h in holdings), Decimal("0"))


def unrealized_pl(holdings: Sequence[Holding]) -> Decimal:
    return sum((h.current_value - h.total_cost for h in holdings), Decimal("0"))


def daily_change_percent(current_total: Decimal, history: Sequence[ChartPoint], now: datetime) -> Decimal:
    """Change versus the history point that falls on yesterday's calendar day.

    No such point means no change. A zero value yesterday also reports 0.
    """
    yesterday = (now - timedelta(days=1)).date()
    previous = next((p.value for p in history if p.date.date() == yesterday), current_total)
    if previous == 0:
        return Decimal("0")
    return (current_total - previous) / previous * 100


def allocation_data(holdings: Sequence[Holding]) -> List[AllocationSlice]:
    total = total_value(holdings)
    return [
        AllocationSlice(
            symbol=h.coin_symbol,
            percent=(h.current_value / total * 100) if total > 0 else Decimal("0"),
        )
        for h in holdings
    ]


def build_history(transactions: Sequence[Transaction], now: datetime, days: int = HISTORY_DAYS) -> List[ChartPoint]:
    """Portfolio value for each of the past ``days`` days plus today, oldest first.

    Each point replays the transactions up to that moment and values the
    holdings at their cost basis, since no historical market price is at hand.
    """
    points = []
    for days_ago in range(days, -1, -1):
        target = now - timedelta(days=days_ago)
        holdings = replay((t for t in transactions if t.date <= target), strict=False)
        points.append(ChartPoint(date=target, value=sum((h.total_cost for h in holdings), Decimal("0"))))
    return points


def _performer(holdings: Sequence[Holding], best: bool) -> str:
    if not holdings:
        return "--"
    pick = max if best else min
    holding = pick(holdings, key=lambda h: h.daily_change)
    sign = "+" if holding.daily_change >= 0 else ""
    return f"{holding.coin_symbol} {sign}{holding.daily_change:.1f}%"


def top_performer(holdings: Sequence[Holding]) -> str:
    """E.g. ``"BTC +4.2%"``, or ``"--"`` without holdings."""
    return _performer(holdings, best=True)


def worst_performer(holdings: Sequence[Holding]) -> str:
    return _performer(holdings, best=False)


def format_currency(value: Decimal) -> str:
    return f"${value:,.2f}"


def format_signed_currency(value: Decimal) -> str:
    """``"+$1,234.56"`` / ``"−$987.65"``."""
    sign = MINUS_SIGN if value < 0 else "+"
    return f"{sign}${abs(value):,.2f}"


def format_signed_percent(value: Decimal) -> str:
    """``"+1.23%"`` / ``"−0.45%"`` for a value already in percent."""
    sign = MINUS_SIGN if value < 0 else "+"
    return f"{sign}{abs(value):.2f}%"


def per_trade_pnl(transactions: Sequence[Transaction]) -> List[Decimal]:
    """Realized P/L of each sell against the running average cost basis."""
    basis: Dict[str, Tuple[Decimal, Decimal]] = {}  # symbol -> (quantity, total cost)
    pnls: List[Decimal] = []
    for txn in sorted(transactions, key=lambda t: t.date):
        qty, cost = basis.get(txn.symbol, (Decimal("0"), Decimal("0")))
        if txn.is_buy:
            basis[txn.symbol] = (qty + txn.quantity, cost + txn.total_value)
            continue
        if qty <= 0:
            pnls.append(Decimal("0"))
            continue
        avg_cost = cost / qty
        sold = min(txn.quantity, qty)
        pnls.append((txn.price_per_unit - avg_cost) * sold)
        remaining = qty - sold
        basis[txn.symbol] = (remaining, avg_cost * remaining)
    return pnls


def realized_pnl(transactions: Sequence[Transaction]) -> Decimal:
    return sum(per_trade_pnl(transactions), Decimal("0"))


def performance_metrics(transactions: Sequence[Transaction]) -> PerformanceMetrics:
    pnls = per_trade_pnl(transactions)
    profitable = sum(1 for p in pnls if p > 0)
    win_rate = Decimal(profitable) / Decimal(len(pnls)) * 100 if pnls else Decimal("0")
    return PerformanceMetrics(
        total_trades=len(pnls),
        profitable_trades=profitable,
        win_rate=win_rate,
        realized_pnl=sum(pnls, Decimal("0")),
        total_volume=sum((t.total_value for t in transactions), Decimal("0")),
    )


def export_to_csv(transactions: Sequence[Transaction], filepath: str) -> None:
    """Write the transaction log to a CSV file, oldest first."""
    fieldnames = ["id", "coin_symbol", "side", "quantity", "price_per_unit", "total_value", "date", "is_manual"]
    with open(filepath, "w", newline="", encoding="utf-8") as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=fieldnames)
        writer.writeheader()
        for txn in sorted(transactions, key=lambda t: t.date):
            writer.writerow({
                "id": txn.id,
                "coin_symbol": txn.symbol,
                "side": "BUY" if txn.is_buy else "SELL",
                "quantity": str(txn.quantity),
                "price_per_unit": str(txn.price_per_unit),
                "total_value": str(txn.total_value),
                "date": txn.date.isoformat(),
                "is_manual": txn.is_manual,
            })
