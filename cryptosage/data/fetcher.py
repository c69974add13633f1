"""Resilient JSON fetcher with bounded retries and a last-known-good cache.

Every provider client in this package goes through ``RemoteDataFetcher``:

* offline  -> cached payload or ``OfflineError``, no HTTP call
* 2xx      -> decode, overwrite the cache entry, return
* timeout / lost connection -> retry twice (0.5s, 1.0s), then cache,
  then ``TransientNetworkError``
* non-2xx or undecodable payload -> ``BadResponseError`` right away
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from abc import ABC, abstractmethod
from decimal import InvalidOperation
from typing import Any, Callable, Dict, Optional, TypeVar

import httpx

from cryptosage.errors import BadResponseError, OfflineError, PersistenceError, TransientNetworkError
from cryptosage.storage import IStorageService
from cryptosage.util.env import make_ssl_context

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)
DECODE_ERRORS = (KeyError, IndexError, TypeError, ValueError, InvalidOperation)

_MISSING = object()


class IConnectivity(ABC):
    """Reports whether the network is reachable."""

    @abstractmethod
    def is_online(self) -> bool:
        ...


class NetworkMonitor(IConnectivity):
    """Connectivity check by opening a TCP connection to a well-known host.

    ``set_online`` pins the answer, which is what the app does when the OS
    reports a network change, and what tests use.
    """

    def __init__(self, host: str = "1.1.1.1", port: int = 443, timeout_s: float = 1.5) -> None:
        self._host = host
        self._port = port
        self._timeout_s = timeout_s
        self._override: Optional[bool] = None

    def set_online(self, online: Optional[bool]) -> None:
        self._override = online

    def is_online(self) -> bool:
        if self._override is not None:
            return self._override
        try:
            with socket.create_connection((self._host, self._port), timeout=self._timeout_s):
                return True
        except OSError:
            return False


def make_http_client(
    base_url: str = "",
    request_timeout_s: float = 30.0,
    resource_timeout_s: float = 60.0,
) -> httpx.Client:
    """Shared transport settings: 30s per request phase, 60s to get a connection."""
    timeout = httpx.Timeout(request_timeout_s, pool=resource_timeout_s)
    return httpx.Client(base_url=base_url, timeout=timeout, verify=make_ssl_context())


class RemoteDataFetcher:
    """GET a JSON resource, decode it, and keep the last good payload on disk."""

    def __init__(
        self,
        client: httpx.Client,
        cache: IStorageService,
        connectivity: IConnectivity,
        *,
        max_retries: int = 2,
        backoff_base_s: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._cache = cache
        self._connectivity = connectivity
        self._max_retries = max_retries
        self._backoff_base_s = backoff_base_s
        self._sleep = sleep
        self._lock = threading.Lock()

    def backoff_delays(self) -> list[float]:
        return [self._backoff_base_s * (2 ** n) for n in range(self._max_retries)]

    def fetch(
        self,
        endpoint: str,
        *,
        decode: Callable[[Any], T],
        cache_key: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> T:
        """Fetch ``endpoint`` and return ``decode(payload)``.

        Args:
            endpoint: Path relative to the client's base URL, or an absolute URL
            decode: Converts the JSON payload into the result type
            cache_key: Storage key holding the last good payload
            params: Query parameters
            headers: Extra request headers

        Raises:
            OfflineError: No connectivity and nothing cached
            BadResponseError: Non-2xx status or undecodable payload
            TransientNetworkError: Retries exhausted and nothing cached
        """
        if not self._connectivity.is_online():
            cached = self._load_cached(cache_key, decode)
            if cached is not _MISSING:
                logger.info(f"{endpoint}: offline, loaded from cache '{cache_key}'")
                return cached
            raise OfflineError(f"{endpoint}: no network connection and no cached data")

        delays = self.backoff_delays()
        last_error: Optional[Exception] = None
        for attempt in range(self._max_retries + 1):
            if attempt:
                delay = delays[attempt - 1]
                logger.info(f"{endpoint}: retry {attempt}/{self._max_retries} in {delay:.1f}s")
                self._sleep(delay)
            try:
                with self._lock:
                    response = self._client.get(endpoint, params=params, headers=headers)
            except TRANSIENT_ERRORS as e:
                last_error = e
                logger.warning(f"{endpoint}: transient network error: {e!r}")
                continue
            except httpx.HTTPError as e:
                raise BadResponseError(f"{endpoint}: request failed: {e}") from e
            return self._handle_response(endpoint, response, decode, cache_key)

        cached = self._load_cached(cache_key, decode)
        if cached is not _MISSING:
            logger.info(f"{endpoint}: network error, loaded from cache '{cache_key}'")
            return cached
        raise TransientNetworkError(f"{endpoint}: {last_error}") from last_error

    def _handle_response(
        self,
        endpoint: str,
        response: httpx.Response,
        decode: Callable[[Any], T],
        cache_key: str,
    ) -> T:
        status = response.status_code
        if status == 401:
            raise BadResponseError(
                f"{endpoint}: Unauthorized - please check API key", status_code=status, payload=response.text
            )
        if not 200 <= status < 300:
            raise BadResponseError(f"{endpoint}: HTTP {status}", status_code=status, payload=response.text)
        try:
            payload = response.json()
        except ValueError as e:
            raise BadResponseError(f"{endpoint}: invalid JSON", status_code=status, payload=response.text) from e
        try:
            result = decode(payload)
        except DECODE_ERRORS as e:
            raise BadResponseError(f"{endpoint}: unexpected payload: {e}", status_code=status, payload=payload) from e

        try:
            self._cache.save(cache_key, payload)
        except PersistenceError as e:
            logger.error(f"{endpoint}: cache write failed: {e}")
        return result

    def _load_cached(self, cache_key: str, decode: Callable[[Any], T]) -> Any:
        payload = self._cache.load(cache_key)
        if payload is None:
            return _MISSING
        try:
            return decode(payload)
        except DECODE_ERRORS as e:
            logger.error(f"Cached payload '{cache_key}' could not be decoded: {e}")
            return _MISSING
