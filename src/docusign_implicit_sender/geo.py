from __future__ import annotations

import logging
import threading
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


def lookup_country_calling_code(http: httpx.Client, url: str) -> Optional[str]:
    try:
        resp = http.get(url)
        resp.raise_for_status()
        phone = str(resp.json().get("country_phone") or "")
    except (httpx.HTTPError, ValueError, AttributeError) as e:
        logger.debug("Country code lookup failed: %s", e)
        return None
    digits = phone.lstrip("+").strip()
    return digits if digits.isdigit() else None


class CountryCodeLookup:
    """Runs the lookup on a daemon thread; ``result`` never waits past its timeout."""

    def __init__(self, url: str, timeout_s: float = 3.0):
        self._url = url
        self._timeout_s = timeout_s
        self._value: Optional[str] = None
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "CountryCodeLookup":
        if not self._url:
            self._done.set()
            return self
        self._thread = threading.Thread(target=self._run, name="country-code-lookup", daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        try:
            with httpx.Client(timeout=httpx.Timeout(self._timeout_s)) as http:
                self._value = lookup_country_calling_code(http, self._url)
        finally:
            self._done.set()

    def result(self, timeout: Optional[float] = None) -> Optional[str]:
        self._done.wait(self._timeout_s if timeout is None else timeout)
        return self._value
