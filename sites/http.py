from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class RateGate:
    """Process-wide minimum interval between the starts of outbound calls.

    Built once at startup and shared by every caller, so concurrent
    downloads interleave their requests but never go faster than one call
    per ``interval`` seconds in total.
    """

    def __init__(
        self,
        interval: float,
        *,
        time_fn: Optional[Callable[[], float]] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ):
        interval = float(interval)
        if interval < 0:
            raise ValueError(f"Rate interval must be >= 0, got {interval}")
        self.interval = interval
        self.time_fn = time_fn or time.monotonic
        self.sleep_fn = sleep_fn or time.sleep
        self._lock = threading.Lock()
        self._last: Optional[float] = None

    @property
    def last_call(self) -> Optional[float]:
        return self._last

    def acquire(self) -> float:
        """Wait for the next free slot and record it. Returns the call start time."""
        with self._lock:
            now = self.time_fn()
            if self._last is not None:
                ready = self._last + self.interval
                # sleep may return early; keep waiting until the slot is really free
                while now < ready:
                    self.sleep_fn(ready - now)
                    now = self.time_fn()
            self._last = now
            return now


class CatalogClient:
    """``requests.Session`` wrapper that routes every GET through a RateGate."""

    def __init__(
        self,
        gate: RateGate,
        *,
        bearer_token: Optional[str] = None,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        self.gate = gate
        self.timeout = timeout
        self.session = session or requests.Session()
        if bearer_token:
            self.session.headers["Authorization"] = f"Bearer {bearer_token}"

    def get(
        self,
        url: str,
        *,
        params=None,
        binary: bool = False,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        merged = dict(headers or {})
        merged.setdefault("Accept", "image/*,*/*;q=0.8" if binary else "application/json")
        self.gate.acquire()
        logger.debug("GET %s", url)
        r = self.session.get(url, params=params, headers=merged, timeout=self.timeout)
        r.raise_for_status()
        return r

    def get_json(self, url: str, *, params=None) -> dict:
        return self.get(url, params=params).json()

    def close(self) -> None:
        self.session.close()


__all__ = ["RateGate", "CatalogClient"]
