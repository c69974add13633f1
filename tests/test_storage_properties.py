"""Property-based tests for the storage module.

Covers the JSON file storage used for endpoint caches, order book caches
and the transaction log.
"""

from __future__ import annotations

import tempfile
from decimal import Decimal
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict

import pytest
from hypothesis import given, settings, strategies as st

from cryptosage.errors import PersistenceError
from cryptosage.storage import JsonFileStorage


@st.composite
def transaction_log_strategy(draw):
    """Generate a transaction log payload as the ledger persists it."""
    count = draw(st.integers(min_value=0, max_value=15))
    start = datetime(2024, 1, 1)
    return [
        {
            "id": str(draw(st.uuids())),
            "coin_symbol": draw(st.sampled_from(["BTC", "ETH", "SOL", "ADA"])),
            "quantity": str(draw(st.decimals(min_value=Decimal("0.001"), max_value=Decimal("100"), places=8))),
            "price_per_unit": str(draw(st.decimals(min_value=Decimal("0.01"), max_value=Decimal("100000"), places=2))),
            "is_buy": draw(st.booleans()),
            "date": (start + timedelta(hours=i)).isoformat(),
            "is_manual": draw(st.booleans()),
        }
        for i in range(count)
    ]


@st.composite
def order_book_strategy(draw):
    level = st.tuples(
        st.decimals(min_value=Decimal("1"), max_value=Decimal("100000"), places=2).map(str),
        st.decimals(min_value=Decimal("0.0001"), max_value=Decimal("50"), places=4).map(str),
    )
    return {
        "venue": draw(st.sampled_from(["coinbase", "binance"])),
        "bids": [{"price": p, "qty": q} for p, q in draw(st.lists(level, max_size=20))],
        "asks": [{"price": p, "qty": q} for p, q in draw(st.lists(level, max_size=20))],
    }


@given(log=transaction_log_strategy())
@settings(max_examples=50)
def test_transaction_log_round_trip(log):
    """Saving a transaction log and loading it back yields the same list."""
    with tempfile.TemporaryDirectory() as tmpdir:
        storage = JsonFileStorage(tmpdir)
        storage.save("transactions", log)
        assert storage.load("transactions") == log


@given(book=order_book_strategy())
@settings(max_examples=50)
def test_order_book_cache_round_trip(book: Dict[str, Any]):
    with tempfile.TemporaryDirectory() as tmpdir:
        storage = JsonFileStorage(tmpdir)
        storage.save("orderbook_BTC", book)
        loaded = storage.load("orderbook_BTC")
        assert loaded == book
        assert storage.exists("orderbook_BTC")


@given(key=st.text(min_size=1, max_size=50, alphabet=st.characters(whitelist_categories=('L', 'N'))))
@settings(max_examples=50)
def test_storage_delete_removes_data(key: str):
    with tempfile.TemporaryDirectory() as tmpdir:
        storage = JsonFileStorage(tmpdir)
        storage.save(key, {"test": "value"})
        assert storage.load(key) == {"test": "value"}

        storage.delete(key)

        assert storage.load(key) is None
        assert not storage.exists(key)


def test_overwrite_leaves_no_temporary_files(tmp_path: Path):
    storage = JsonFileStorage(tmp_path)
    for i in range(5):
        storage.save("coins_cache", [{"id": "bitcoin", "rank": i}])

    assert storage.load("coins_cache") == [{"id": "bitcoin", "rank": 4}]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["coins_cache.json"]


def test_storage_load_nonexistent_returns_none(tmp_path: Path):
    storage = JsonFileStorage(tmp_path)
    assert storage.load("nonexistent_key") is None
    assert not storage.exists("nonexistent_key")


def test_corrupted_file_loads_as_none(tmp_path: Path):
    storage = JsonFileStorage(tmp_path)
    (tmp_path / "global_cache.json").write_text("{not json", encoding="utf-8")
    assert storage.load("global_cache") is None


def test_unserializable_data_raises_persistence_error(tmp_path: Path):
    storage = JsonFileStorage(tmp_path)
    storage.save("favorites", ["BTC"])

    with pytest.raises(PersistenceError):
        storage.save("favorites", {"bad": object()})

    # The previous value survives a failed write
    assert storage.load("favorites") == ["BTC"]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["favorites.json"]


def test_keys_with_separators_stay_inside_base_path(tmp_path: Path):
    storage = JsonFileStorage(tmp_path / "cache")
    storage.save("a/b", {"x": 1})
    assert storage.load("a/b") == {"x": 1}
    assert (tmp_path / "cache" / "a_b.json").exists()
