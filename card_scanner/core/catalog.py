"""
Catalog client for the card scanner.

Talks to the Scryfall REST API. Every request goes through one FIFO queue
that keeps at least MIN_REQUEST_INTERVAL_S between consecutive requests,
shared by all request kinds.
"""

import queue
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional

import requests

from .config import (
    SCRYFALL_API_BASE, SCRYFALL_TIMEOUT, USER_AGENT,
    MIN_REQUEST_INTERVAL_S, RATE_LIMIT_BACKOFF_S,
)


class CatalogError(Exception):
    """Raised when the catalog returns an error other than not-found."""

    def __init__(self, message: str, status: Optional[int] = None, details: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.details = details


class RateLimitError(CatalogError):
    """Raised when the catalog still rate-limits after the back-off retry."""
    pass


class RequestQueue:
    """
    FIFO queue executing one request at a time with a minimum spacing.

    Spacing is measured from the start of the previous request. A single
    worker thread drains the queue; callers block on the returned future.
    """

    def __init__(
        self,
        min_interval_s: float = MIN_REQUEST_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.min_interval_s = min_interval_s
        self.clock = clock
        self.sleep = sleep
        self._queue: "queue.Queue" = queue.Queue()
        self._last_request_time: Optional[float] = None
        self._worker: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def submit(self, fn: Callable[[], Any]) -> Future:
        future: Future = Future()
        self._queue.put((fn, future))
        self._ensure_worker()
        return future

    def call(self, fn: Callable[[], Any]) -> Any:
        """Run ``fn`` in its turn and return its result (or raise its error)."""
        return self.submit(fn).result()

    def mark_sent(self) -> None:
        """
        Wait out the spacing since the previous send, then record this one.

        Called by the worker before each queued request, and by a request
        that sends again from inside its slot (a rate-limit retry).
        """
        if self._last_request_time is not None:
            wait = self.min_interval_s - (self.clock() - self._last_request_time)
            if wait > 0:
                self.sleep(wait)
        self._last_request_time = self.clock()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        with self._lock:
            worker = self._worker
            self._worker = None
        if worker is not None:
            self._queue.put(None)
            worker.join()

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(target=self._drain, name="catalog-queue", daemon=True)
                self._worker.start()

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                return

            fn, future = item
            if not future.set_running_or_notify_cancel():
                continue

            self.mark_sent()
            try:
                future.set_result(fn())
            except BaseException as e:
                future.set_exception(e)


class ScryfallClient:
    """
    Rate-limited client for the four catalog operations the scanner needs
    (exact name, fuzzy name, autocomplete, by id) plus search and printings.

    Not-found responses come back as None or an empty list.
    """

    def __init__(
        self,
        base_url: str = SCRYFALL_API_BASE,
        session: requests.Session = None,
        request_queue: RequestQueue = None,
        timeout: float = SCRYFALL_TIMEOUT,
        backoff_s: float = RATE_LIMIT_BACKOFF_S,
        sleep: Callable[[float], None] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json", "User-Agent": USER_AGENT})
        self.request_queue = request_queue or RequestQueue()
        self.timeout = timeout
        self.backoff_s = backoff_s
        self.sleep = sleep or self.request_queue.sleep

    # -------------------------------------------------------------------------
    # Catalog operations
    # -------------------------------------------------------------------------

    def named_exact(self, name: str) -> Optional[Dict[str, Any]]:
        return self._get_or_none("/cards/named", {"exact": name})

    def named_fuzzy(self, name: str) -> Optional[Dict[str, Any]]:
        return self._get_or_none("/cards/named", {"fuzzy": name})

    def autocomplete(self, query: str) -> List[str]:
        if len(query) < 2:
            return []
        data = self._get_or_none("/cards/autocomplete", {"q": query})
        return list(data.get("data", [])) if data else []

    def card_by_id(self, card_id: str) -> Optional[Dict[str, Any]]:
        return self._get_or_none(f"/cards/{card_id}")

    def search(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        data = self._get_or_none("/cards/search", {"q": query, "unique": "cards"})
        return list(data.get("data", []))[:limit] if data else []

    def printings(self, oracle_id: str) -> List[Dict[str, Any]]:
        data = self._get_or_none("/cards/search", {"q": f"oracleid:{oracle_id}", "unique": "prints"})
        return list(data.get("data", [])) if data else []

    def close(self) -> None:
        self.request_queue.close()
        self.session.close()

    # -------------------------------------------------------------------------
    # Request handling
    # -------------------------------------------------------------------------

    def _get_or_none(self, endpoint: str, params: Dict[str, str] = None) -> Optional[Dict[str, Any]]:
        return self.request_queue.call(lambda: self._execute(endpoint, params))

    def _execute(self, endpoint: str, params: Dict[str, str] = None) -> Optional[Dict[str, Any]]:
        """Perform one request in the queue slot; 429 gets one retry after a back-off."""
        response = self._send(endpoint, params)

        if response.status_code == 429:
            print(f"[Catalog] Rate limited on {endpoint}, retrying in {self.backoff_s:.1f}s")
            self.sleep(self.backoff_s)
            self.request_queue.mark_sent()
            response = self._send(endpoint, params)
            if response.status_code == 429:
                raise RateLimitError("Scryfall rate limit exceeded", status=429)

        if response.status_code == 404:
            return None

        if response.status_code >= 400:
            details = self._error_details(response)
            raise CatalogError(details or "Scryfall API error", status=response.status_code, details=details)

        try:
            return response.json()
        except ValueError as e:
            raise CatalogError(f"Invalid JSON from Scryfall: {e}", status=response.status_code)

    def _send(self, endpoint: str, params: Dict[str, str] = None):
        try:
            return self.session.get(f"{self.base_url}{endpoint}", params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise CatalogError(f"Scryfall request failed: {e}") from e

    @staticmethod
    def _error_details(response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            return body.get("details")
        return None
