"""3Commas account, balance and bot endpoints."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx

from cryptosage.errors import BadResponseError, TransientNetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

API_PREFIX = "/public/api/ver1"


@dataclass
class Account:
    id: int
    name: Optional[str] = None
    currency: Optional[str] = None

    @classmethod
    def from_dict(cls, item: dict) -> "Account":
        return cls(id=int(item["id"]), name=item.get("name"), currency=item.get("currency"))


@dataclass
class AccountBalance:
    currency: str
    balance: float

    @classmethod
    def from_dict(cls, item: dict) -> "AccountBalance":
        return cls(currency=str(item["currency"]), balance=float(item["balance"]))


def _parse(path: str, build: Callable[[], T]) -> T:
    try:
        return build()
    except (KeyError, TypeError, ValueError) as e:
        raise BadResponseError(f"3Commas {path}: unexpected payload: {e}") from e


def sign_body(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of a request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class ThreeCommasClient:
    """Thin client; credentials are supplied by the caller, never stored here."""

    def __init__(
        self,
        client: httpx.Client,
        api_key: str,
        api_secret: str,
        account_id: int = 0,
        base_url: str = "https://api.3commas.io",
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._api_secret = api_secret
        self._account_id = account_id
        self._base_url = base_url.rstrip("/")
        self._lock = threading.Lock()

    @property
    def has_credentials(self) -> bool:
        return bool(self._api_key and self._api_secret)

    def connect(self) -> bool:
        """Validate that a key/secret pair is configured."""
        if not self.has_credentials:
            raise ValueError("Invalid API credentials")
        return True

    def list_accounts(self) -> List[Account]:
        data = self._get("/accounts")
        return _parse("/accounts", lambda: [Account.from_dict(item) for item in data])

    def load_account_balances(self, account_id: int) -> List[AccountBalance]:
        path = f"/accounts/{int(account_id)}/balances"
        data = self._get(path)
        return _parse(path, lambda: [AccountBalance.from_dict(item) for item in data])

    def fetch_balance(self, symbol: str) -> float:
        """Balance of ``symbol`` in the first account, 0.0 when absent."""
        accounts = self.list_accounts()
        if not accounts:
            return 0.0
        for entry in self.load_account_balances(accounts[0].id):
            if entry.currency.upper() == symbol.upper():
                return entry.balance
        return 0.0

    def get_prices(self, symbols: List[str]) -> Dict[str, float]:
        """Current prices keyed by pair, e.g. ``{"BTC_USDT": 64000.0}``."""
        if not symbols:
            return {}
        pairs = ",".join(f"{s.upper()}_USDT" for s in symbols)
        data = self._get("/market_data", params={"pairs": pairs})
        return _parse("/market_data", lambda: {str(item["symbol"]): float(item["price"]) for item in data["data"]})

    def create_bot(self, pair: str, quantity: float, slippage: float, side: str = "buy", order_type: str = "market") -> Any:
        payload = {
            "pair": pair,
            "account_id": self._account_id,
            "side": side,
            "order_type": order_type,
            "quantity": quantity,
            "slippage": slippage,
        }
        return self._post("/bots/create_trading_bot", payload)

    def cancel_bot(self, bot_id: int) -> Any:
        return self._post("/bots/cancel_trading_bot", {"id": int(bot_id)})

    # ----- transport -----
    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        r = self._send("GET", path, params=params, headers={"APIKEY": self._api_key})
        return self._decode(path, r)

    def _post(self, path: str, payload: Dict[str, Any]) -> Any:
        self.connect()
        body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        headers = {
            "APIKEY": self._api_key,
            "Signature": sign_body(self._api_secret, body),
            "Content-Type": "application/json",
        }
        r = self._send("POST", path, content=body, headers=headers)
        return self._decode(path, r)

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            with self._lock:
                return self._client.request(method, f"{self._base_url}{API_PREFIX}{path}", **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"3Commas {path}: transport error: {e!r}")
            raise TransientNetworkError(f"3Commas {path}: {e}") from e

    @staticmethod
    def _decode(path: str, response: httpx.Response) -> Any:
        if not 200 <= response.status_code < 300:
            logger.warning(f"3Commas {path} returned HTTP {response.status_code}")
            raise BadResponseError(
                f"3Commas {path}: HTTP {response.status_code}",
                status_code=response.status_code,
                payload=response.text,
            )
        try:
            return response.json()
        except ValueError as e:
            raise BadResponseError(f"3Commas {path}: invalid JSON", payload=response.text) from e
