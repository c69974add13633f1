"""Data models for the holdings ledger."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import List, Optional


@dataclass(frozen=True)
class Transaction:
    """A buy or sell of one coin. Never mutated; edits replace the record.

    Attributes:
        coin_symbol: Coin symbol (e.g., "BTC"), matched case-insensitively
        quantity: Amount traded, strictly positive
        price_per_unit: Execution price per unit, strictly positive
        is_buy: True for a buy, False for a sell
        date: Time of execution
        is_manual: True when entered by the user; synced records are read-only
        id: Unique transaction identifier (UUID)
    """
    coin_symbol: str
    quantity: Decimal
    price_per_unit: Decimal
    is_buy: bool
    date: datetime = field(default_factory=datetime.now)
    is_manual: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        if not self.coin_symbol.strip():
            raise ValueError("coin_symbol must not be empty")
        if self.quantity <= 0:
            raise ValueError(f"quantity must be > 0, got {self.quantity}")
        if self.price_per_unit <= 0:
            raise ValueError(f"price_per_unit must be > 0, got {self.price_per_unit}")

    @property
    def symbol(self) -> str:
        return self.coin_symbol.upper()

    @property
    def total_value(self) -> Decimal:
        """Calculate total value of this transaction."""
        return self.quantity * self.price_per_unit

    def edited(self, **changes) -> "Transaction":
        """Return a replacement record with the same id."""
        return replace(self, **changes)


@dataclass
class Holding:
    """Aggregated position in one coin, derived from transactions.

    Attributes:
        coin_symbol: Upper-case coin symbol
        quantity: Amount currently held
        cost_basis: Quantity-weighted average purchase price of held units
        current_price: Latest known market price
        daily_change: 24h price change in percent
        is_favorite: User flag, kept across rebuilds
    """
    coin_symbol: str
    quantity: Decimal
    cost_basis: Decimal
    coin_name: str = ""
    current_price: Decimal = Decimal("0")
    daily_change: Decimal = Decimal("0")
    is_favorite: bool = False
    image_url: Optional[str] = None
    purchase_date: Optional[datetime] = None

    @property
    def current_value(self) -> Decimal:
        return self.quantity * self.current_price

    @property
    def total_cost(self) -> Decimal:
        """Calculate total cost basis for this position."""
        return self.quantity * self.cost_basis

    @property
    def profit_loss(self) -> Decimal:
        return self.current_value - self.total_cost


@dataclass(frozen=True)
class ChartPoint:
    date: datetime
    value: Decimal


@dataclass
class Portfolio:
    """Holdings plus the transaction log they were built from."""
    holdings: List[Holding]
    transactions: List[Transaction]

    def to_dict(self) -> dict:
        return {
            "holdings": [
                {
                    "coin_symbol": h.coin_symbol,
                    "quantity": str(h.quantity),
                    "cost_basis": str(h.cost_basis),
                    "current_price": str(h.current_price),
                    "daily_change": str(h.daily_change),
                }
                for h in self.holdings
            ],
            "transactions": [TransactionSerializer.serialize(t) for t in self.transactions],
        }


class TransactionSerializer:
    """Serializer for transactions to/from JSON-compatible dictionaries."""

    @staticmethod
    def serialize(txn: Transaction) -> dict:
        return {
            "id": txn.id,
            "coin_symbol": txn.coin_symbol,
            "quantity": str(txn.quantity),
            "price_per_unit": str(txn.price_per_unit),
            "date": txn.date.isoformat(),
            "is_buy": txn.is_buy,
            "is_manual": txn.is_manual,
        }

    @staticmethod
    def deserialize(data: dict) -> Transaction:
        return Transaction(
            id=data["id"],
            coin_symbol=data["coin_symbol"],
            quantity=Decimal(data["quantity"]),
            price_per_unit=Decimal(data["price_per_unit"]),
            date=datetime.fromisoformat(data["date"]),
            is_buy=bool(data["is_buy"]),
            is_manual=bool(data.get("is_manual", True)),
        )

    @classmethod
    def serialize_many(cls, transactions: List[Transaction]) -> list:
        return [cls.serialize(t) for t in transactions]

    @classmethod
    def deserialize_many(cls, data: list) -> List[Transaction]:
        return [cls.deserialize(item) for item in data]
