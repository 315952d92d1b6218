"""
Rate limiting.

Two layers:

    - ``SlidingWindowRateLimiter``: admission control for the OCR ingestion
      endpoint. One instance per application, built in ``create_app`` from
      ``OCR_RATE_LIMIT_MAX_REQUESTS`` / ``OCR_RATE_LIMIT_WINDOW_MS`` and kept
      in ``app.extensions["ocr_rate_limiter"]``. In-process and in-memory.
    - ``init_rate_limits``: per-blueprint Flask-Limiter limits for the REST API.

Usage:
    from sitebooks.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging
import time
from typing import Callable

from sitebooks.core.exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Sliding-window request counter keyed by caller identifier.

    ``is_allowed`` first drops timestamps that fell out of the window, then
    records the new attempt only when the caller is still under the limit.
    A rejected call leaves the stored history exactly as it was: the pruned
    list is written back only on acceptance.

    Args:
        max_requests: Accepted requests per window.
        window_ms: Window length in milliseconds.
        clock: Monotonic clock returning seconds; injectable for tests.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_ms: int = 60_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_ms < 1:
            raise ValueError("window_ms must be positive")
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._clock = clock
        self._requests: dict[str, list[float]] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def check(self, identifier: str) -> None:
        """Admit one request for ``identifier`` or raise ``RateLimitExceeded``."""
        if not self.is_allowed(identifier):
            raise RateLimitExceeded(identifier, self.max_requests, self.window_ms)

    def is_allowed(self, identifier: str) -> bool:
        now = self._now_ms()
        timestamps = self._requests.get(identifier, [])
        recent = [t for t in timestamps if now - t < self.window_ms]

        if len(recent) >= self.max_requests:
            return False

        recent.append(now)
        self._requests[identifier] = recent
        return True

    def reset(self, identifier: str) -> None:
        self._requests.pop(identifier, None)

    def tracked(self, identifier: str) -> int:
        """Number of stored timestamps for ``identifier`` (stale ones included)."""
        return len(self._requests.get(identifier, []))


def init_rate_limits(app, limiter):
    """
    Apply Flask-Limiter limits to API blueprints.

    Limits (per remote IP):
        - Workflow mutation blueprints: 120/minute
        - Reporting reads (audit):       300/minute
        - Health check:                  exempt

    The OCR endpoint is exempt here; it has its own sliding window.
    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("expenses", "certificates", "subcontracts",
                    "cost_codes", "holdbacks", "incomes", "projects"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("120/minute")(bp)

    bp = app.blueprints.get("audit")
    if bp:
        limiter.limit("300/minute")(bp)

    for bp_name in ("health", "ocr"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.exempt(bp)

    app.logger.info("Rate limiter configured — write: 120/min, audit: 300/min")
