"""
Coordinated Overpass API HTTP layer.

All map-feature queries in the application go through this module.
It provides:
- Process-local rate limiting: 1 request/second minimum spacing
- Thread-safe request execution (no shared requests.Session)
- Retry with exponential backoff on 429/5xx (2 retries, 2s/4s)
- scout_trace integration for observability

Responses are not cached here.  Facility data lives in memory for one
session only (see facility_source.FacilityStore), so a failed fetch is
surfaced to the caller and retried on the next request.

Rate limiting is per-process. When self-hosting Overpass, set the
OVERPASS_BASE_URL env var and lower MIN_SPACING.
"""

import logging
import threading
import time
from typing import Any, Dict, Optional

import requests

from scout_trace import get_trace
from scouting_config import env_setting

logger = logging.getLogger(__name__)


class OverpassRateLimitError(Exception):
    """Raised when Overpass returns 429 or rate-limit indicators after all retries are exhausted."""

    pass


class OverpassQueryError(Exception):
    """Raised when Overpass returns a non-retryable error after all retries are exhausted."""

    pass


class OverpassHTTPClient:
    DEFAULT_TIMEOUT = 90  # seconds; city-wide queries ask the server for 60
    MIN_SPACING = 1.0  # seconds between HTTP requests
    MAX_RETRIES = 2
    RETRY_BACKOFF = [2, 4]  # seconds

    def __init__(self, base_url: Optional[str] = None):
        self._lock = threading.Lock()
        self._last_request_time = 0.0
        self.base_url = base_url or env_setting(
            "OVERPASS_BASE_URL",
            "https://overpass-api.de/api/interpreter",
        )

    def query(
        self,
        overpass_ql: str,
        caller: str = "unknown",
        timeout: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Execute an Overpass QL query with rate-limited, retried HTTP.

        Args:
            overpass_ql: The Overpass QL query string.
            caller: Identifier for trace attribution (e.g. "city_facilities").
            timeout: HTTP timeout in seconds. Defaults to DEFAULT_TIMEOUT.

        Returns:
            Parsed JSON response dict from Overpass.

        Raises:
            OverpassRateLimitError: If Overpass returns 429 or rate-limit
                indicators after MAX_RETRIES attempts.
            OverpassQueryError: If Overpass returns an error after
                MAX_RETRIES attempts (or a non-retryable one at once).
        """
        if timeout is None:
            timeout = self.DEFAULT_TIMEOUT

        for attempt in range(1 + self.MAX_RETRIES):
            try:
                return self._do_request(overpass_ql, caller, timeout)
            except OverpassRateLimitError:
                if attempt >= self.MAX_RETRIES:
                    raise
                self._backoff(attempt, caller, "rate limited")
            except OverpassQueryError as e:
                if attempt >= self.MAX_RETRIES or not self._is_retryable_error(e):
                    raise
                self._backoff(attempt, caller, "query error")

        # Only reachable with a negative MAX_RETRIES
        raise OverpassQueryError(f"Overpass query failed after all retries [caller={caller}]")

    def _backoff(self, attempt: int, caller: str, reason: str) -> None:
        sleep_time = self.RETRY_BACKOFF[min(attempt, len(self.RETRY_BACKOFF) - 1)]
        logger.info(
            "Overpass %s (attempt %d/%d), sleeping %ds before retry [caller=%s]",
            reason,
            attempt + 1,
            1 + self.MAX_RETRIES,
            sleep_time,
            caller,
        )
        time.sleep(sleep_time)

    def _record(self, caller: str, elapsed_ms: int, status_code: int, provider_status: str = "") -> None:
        trace = get_trace()
        if trace:
            trace.record_api_call(
                service="overpass",
                endpoint=caller,
                elapsed_ms=elapsed_ms,
                status_code=status_code,
                provider_status=provider_status,
            )

    def _do_request(
        self, overpass_ql: str, caller: str, timeout: int
    ) -> Dict[str, Any]:
        """Make a single rate-limited HTTP request to Overpass."""
        # Enforce minimum spacing
        with self._lock:
            now = time.monotonic()
            elapsed_since_last = now - self._last_request_time
            if elapsed_since_last < self.MIN_SPACING:
                time.sleep(self.MIN_SPACING - elapsed_since_last)
            self._last_request_time = time.monotonic()

        # Fresh session per request (thread-safe, no shared state)
        start = time.monotonic()
        try:
            session = requests.Session()
            session.trust_env = False
            resp = session.post(
                self.base_url,
                data={"data": overpass_ql},
                timeout=timeout,
            )
        except requests.exceptions.Timeout:
            self._record(caller, int((time.monotonic() - start) * 1000), 0, "timeout")
            raise OverpassQueryError(
                f"Overpass request timeout after {timeout}s [caller={caller}]"
            )
        except requests.exceptions.RequestException as e:
            self._record(caller, int((time.monotonic() - start) * 1000), 0, "exception")
            raise OverpassQueryError(
                f"Overpass request failed: {e} [caller={caller}]"
            ) from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        status_code = resp.status_code

        if status_code == 429:
            self._record(caller, elapsed_ms, 429, "rate_limit")
            raise OverpassRateLimitError(
                f"Overpass 429 Too Many Requests [caller={caller}]"
            )
        if status_code == 504:
            self._record(caller, elapsed_ms, 504, "timeout")
            raise OverpassQueryError(
                f"Overpass 504 Gateway Timeout [caller={caller}]"
            )
        if status_code >= 400:
            self._record(caller, elapsed_ms, status_code, "http_error")
            raise OverpassQueryError(
                f"Overpass HTTP {status_code} [caller={caller}]"
            )

        try:
            data = resp.json()
        except ValueError:
            self._record(caller, elapsed_ms, status_code, "parse_error")
            raise OverpassQueryError(
                f"Overpass returned non-JSON response (HTTP {status_code}) [caller={caller}]"
            )

        # Overpass may put errors in osm3s.remark or top-level remark
        remark = ""
        if isinstance(data, dict):
            osm3s = data.get("osm3s", {}) or {}
            remark = str(osm3s.get("remark") or data.get("remark") or "")

        remark_lower = remark.lower()
        if "too many requests" in remark_lower:
            self._record(caller, elapsed_ms, status_code, "rate_limit")
            raise OverpassRateLimitError(
                f"Overpass rate limit in response body [caller={caller}]"
            )
        if any(
            indicator in remark_lower
            for indicator in ("runtime error", "timed out", "out of memory")
        ):
            self._record(caller, elapsed_ms, status_code, "body_error")
            raise OverpassQueryError(
                f"Overpass server error in response body: {remark[:100]} [caller={caller}]"
            )

        self._record(caller, elapsed_ms, status_code)
        return data

    @staticmethod
    def _is_retryable_error(e: OverpassQueryError) -> bool:
        """5xx errors, timeouts, and server body errors are retryable. 4xx are not."""
        msg = str(e).lower()
        if "timeout" in msg or "server error" in msg or "request failed" in msg:
            return True
        for code in ("500", "502", "503", "504"):
            if code in msg:
                return True
        return False


# Module-level singleton: all callers in this process share one instance
_client = OverpassHTTPClient()


def overpass_query(
    overpass_ql: str,
    caller: str = "unknown",
    timeout: Optional[int] = None,
) -> Dict[str, Any]:
    """Module-level convenience function. All Overpass calls should use this."""
    return _client.query(overpass_ql, caller=caller, timeout=timeout)
