"""Holdings ledger: the transaction log and the rule that derives holdings.

Holdings are never edited directly. Every mutation goes through the log and
either applies one transaction incrementally or replays the whole log in
date order, so the holdings are always a pure function of the log.
"""

import logging
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Mapping, Optional, Set

from PySide6.QtCore import QObject, Signal

from cryptosage.data.prices import PriceQuote
from cryptosage.errors import InvalidEditError, InvalidSellError, PersistenceError
from cryptosage.storage import IStorageService

from .models import Holding, Portfolio, Transaction, TransactionSerializer

logger = logging.getLogger(__name__)

TRANSACTIONS_KEY = "transactions"
FAVORITES_KEY = "favorites"


def find_holding(holdings: List[Holding], symbol: str) -> Optional[int]:
    """Index of the holding for ``symbol`` (case-insensitive), or None."""
    wanted = symbol.upper()
    for i, holding in enumerate(holdings):
        if holding.coin_symbol.upper() == wanted:
            return i
    return None


def apply_transaction(txn: Transaction, holdings: List[Holding]) -> None:
    """Apply one transaction to ``holdings`` in place.

    Buys re-weight the average cost basis; sells only reduce quantity and
    drop the holding when it reaches zero.

    Raises:
        InvalidSellError: Sell of a coin not held or of more than is held.
            ``holdings`` is left untouched.
    """
    index = find_holding(holdings, txn.coin_symbol)

    if txn.is_buy:
        if index is None:
            holdings.append(Holding(
                coin_symbol=txn.symbol,
                coin_name=txn.symbol,
                quantity=txn.quantity,
                cost_basis=txn.price_per_unit,
                current_price=txn.price_per_unit,
                purchase_date=txn.date,
            ))
            return
        holding = holdings[index]
        new_quantity = holding.quantity + txn.quantity
        if new_quantity > 0:
            new_cost_basis = (holding.total_cost + txn.total_value) / new_quantity
        else:
            new_cost_basis = Decimal("0")
        holdings[index] = replace(holding, quantity=new_quantity, cost_basis=new_cost_basis)
        return

    if index is None:
        raise InvalidSellError(txn.symbol, txn.quantity)
    holding = holdings[index]
    if txn.quantity > holding.quantity:
        raise InvalidSellError(txn.symbol, txn.quantity, holding.quantity)
    remaining = holding.quantity - txn.quantity
    if remaining == 0:
        del holdings[index]
    else:
        holdings[index] = replace(holding, quantity=remaining)


def replay(
    transactions: Iterable[Transaction],
    strict: bool = True,
    skipped: Optional[List[Transaction]] = None,
) -> List[Holding]:
    """Build holdings from scratch by applying transactions in date order.

    Args:
        transactions: The log, in any order; ties keep their log order
        strict: Raise on an invalid sell instead of skipping it
        skipped: Collects the transactions skipped when not strict

    Raises:
        InvalidSellError: Only when ``strict`` is True
    """
    holdings: List[Holding] = []
    for txn in sorted(transactions, key=lambda t: t.date):
        try:
            apply_transaction(txn, holdings)
        except InvalidSellError as e:
            if strict:
                raise
            logger.warning(f"Skipping transaction {txn.id}: {e}")
            if skipped is not None:
                skipped.append(txn)
    return holdings


class HoldingsLedger(QObject):
    """Owns the transaction log and the holdings derived from it.

    Both signals fire exactly once per mutating operation, after the
    mutation is complete. Live prices and favourites are overlays that are
    re-applied after every rebuild.
    """

    holdingsChanged = Signal(object)  # list[Holding]
    transactionsChanged = Signal(object)  # list[Transaction]
    errorOccurred = Signal(str)

    def __init__(self, storage: IStorageService, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self._storage = storage
        self._transactions: List[Transaction] = []
        self._holdings: List[Holding] = []
        self._quotes: Dict[str, PriceQuote] = {}
        self._favorites: Set[str] = set()

    # ----- read access -----
    @property
    def holdings(self) -> List[Holding]:
        return [replace(h) for h in self._holdings]

    @property
    def transactions(self) -> List[Transaction]:
        return list(self._transactions)

    def get_holding(self, symbol: str) -> Optional[Holding]:
        index = find_holding(self._holdings, symbol)
        return replace(self._holdings[index]) if index is not None else None

    def snapshot(self) -> Portfolio:
        return Portfolio(holdings=self.holdings, transactions=self.transactions)

    # ----- persistence -----
    def load(self) -> None:
        """Restore the persisted log and favourites, then rebuild.

        A log that no longer replays cleanly is still loaded; offending sells
        are skipped, logged and reported through ``errorOccurred``. They stay
        in the log, so later edits, deletes and back-dated adds keep failing
        with ``InvalidSellError`` until the offending sell is fixed or deleted.
        """
        data = self._storage.load(TRANSACTIONS_KEY)
        if data is not None:
            try:
                self._transactions = TransactionSerializer.deserialize_many(data)
            except (KeyError, TypeError, ValueError, InvalidOperation) as e:
                logger.error(f"Failed to load transactions: {e}")
                self._transactions = []
        favorites = self._storage.load(FAVORITES_KEY)
        if isinstance(favorites, list):
            self._favorites = {str(s).upper() for s in favorites}
        skipped: List[Transaction] = []
        self._holdings = self._decorate(replay(self._transactions, strict=False, skipped=skipped))
        logger.info(f"Ledger restored with {len(self._transactions)} transactions")
        if skipped:
            ids = ", ".join(t.id for t in skipped)
            self.errorOccurred.emit(f"Skipped {len(skipped)} transaction(s) that no longer replay: {ids}")
        self._publish()

    def _save_transactions(self) -> None:
        try:
            self._storage.save(TRANSACTIONS_KEY, TransactionSerializer.serialize_many(self._transactions))
        except PersistenceError as e:
            logger.error(f"Failed to save transactions: {e}")

    def _save_favorites(self) -> None:
        try:
            self._storage.save(FAVORITES_KEY, sorted(self._favorites))
        except PersistenceError as e:
            logger.error(f"Failed to save favorites: {e}")

    # ----- mutations -----
    def add_transaction(self, txn: Transaction) -> None:
        """Append a transaction and update holdings.

        A transaction dated after everything in the log is applied
        incrementally; a back-dated one triggers a full replay.

        Raises:
            InvalidSellError: The sell is not covered by holdings at its date.
                Nothing is changed.
        """
        latest = max((t.date for t in self._transactions), default=None)
        if latest is None or txn.date >= latest:
            holdings = [replace(h) for h in self._holdings]
            try:
                apply_transaction(txn, holdings)
            except InvalidSellError as e:
                raise self._reject(e)
            self._transactions.append(txn)
            self._holdings = self._decorate(holdings)
        else:
            self._rebuild_with(self._transactions + [txn])
        self._save_transactions()
        self._publish()

    def update_transaction(self, old: Transaction, new: Transaction) -> None:
        """Replace a manual transaction and rebuild holdings from the log.

        Raises:
            InvalidEditError: ``old`` is not manual or not in the log
            InvalidSellError: The edited log no longer replays; nothing is changed
        """
        index = self._editable_index(old)
        candidate = list(self._transactions)
        candidate[index] = new
        self._rebuild_with(candidate)
        self._save_transactions()
        self._publish()

    def delete_transaction(self, txn: Transaction) -> None:
        """Remove a manual transaction and rebuild holdings from the log.

        Raises:
            InvalidEditError: ``txn`` is not manual or not in the log
            InvalidSellError: A later sell would no longer be covered; nothing is changed
        """
        index = self._editable_index(txn)
        candidate = list(self._transactions)
        del candidate[index]
        self._rebuild_with(candidate)
        self._save_transactions()
        self._publish()

    def rebuild(self) -> None:
        """Clear holdings and replay the whole log."""
        self._rebuild_with(list(self._transactions))
        self._publish()

    def set_prices(self, quotes: Mapping[str, PriceQuote]) -> None:
        """Merge live prices into the holdings overlay."""
        for symbol, quote in quotes.items():
            self._quotes[symbol.upper()] = quote
        self._holdings = self._decorate(self._holdings)
        self.holdingsChanged.emit(self.holdings)

    def toggle_favorite(self, symbol: str) -> None:
        sym = symbol.upper()
        if sym in self._favorites:
            self._favorites.discard(sym)
        else:
            self._favorites.add(sym)
        self._save_favorites()
        self._holdings = self._decorate(self._holdings)
        self.holdingsChanged.emit(self.holdings)

    # ----- internals -----
    def _editable_index(self, txn: Transaction) -> int:
        if not txn.is_manual:
            raise self._reject(InvalidEditError(txn.id))
        for i, existing in enumerate(self._transactions):
            if existing.id == txn.id:
                if not existing.is_manual:
                    raise self._reject(InvalidEditError(txn.id))
                return i
        raise self._reject(InvalidEditError(txn.id, "transaction not found"))

    def _reject(self, error: Exception) -> Exception:
        logger.error(f"Rejected ledger change: {error}")
        self.errorOccurred.emit(str(error))
        return error

    def _rebuild_with(self, transactions: List[Transaction]) -> None:
        try:
            holdings = replay(transactions)
        except InvalidSellError as e:
            raise self._reject(e)
        self._transactions = transactions
        self._holdings = self._decorate(holdings)

    def _decorate(self, holdings: List[Holding]) -> List[Holding]:
        out = []
        for holding in holdings:
            quote = self._quotes.get(holding.coin_symbol)
            changes = {"is_favorite": holding.coin_symbol in self._favorites}
            if quote is not None:
                changes["current_price"] = quote.price
                changes["daily_change"] = quote.change_pct
            out.append(replace(holding, **changes))
        return out

    def _publish(self) -> None:
        self.holdingsChanged.emit(self.holdings)
        self.transactionsChanged.emit(self.transactions)
