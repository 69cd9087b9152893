"""Shared HTTP and geometry helpers for the geocoding providers.

Provider clients call `fetch_json` from a worker thread; it owns the pooled
requests session, the per-host minimum request interval and the mapping of
transport failures onto the domain error taxonomy.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlsplit

import requests

from domain.errors import ProviderUnavailable, RateLimitExceeded
from services.cache_store import CacheStore, MemoryCacheStore
from services.rate_limiter import RateLimiter, get_default_rate_limiter

logger = logging.getLogger(__name__)
_session = requests.Session()
_last_request_ts: Dict[str, float] = {}
_lock = threading.Lock()

EARTH_RADIUS_KM = 6371.0
THROTTLE_STATUS_CODES = (429, 509)

FALLBACK_UA = "trip-location-resolver/0.1 (contact: example@example.com)"


def _redact_secret(value: str) -> str:
    """Keep the first few characters of an API key for log correlation."""
    if not value:
        return "NOT_SET"
    return f"{value[:4]}..." if len(value) > 4 else "***"


def _redact_email(ua: str) -> str:
    if "@" not in ua:
        return ua
    return re.sub(r"\S+@\S+", "<redacted>", ua)


def redact_params(params: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (_redact_secret(str(v)) if k in ("api_key", "key") else v) for k, v in params.items()}


def _throttled_get(
    url: str,
    *,
    params: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
    min_interval: float = 0.0,
) -> requests.Response:
    """Perform a GET request, spacing calls to the same host by `min_interval`."""
    if min_interval > 0:
        host = urlsplit(url).netloc
        with _lock:
            now = time.time()
            delta = now - _last_request_ts.get(host, 0.0)
            if delta < min_interval:
                time.sleep(min_interval - delta)
            _last_request_ts[host] = time.time()
    return _session.get(url, params=params, headers=headers, timeout=timeout)


def fetch_json(
    service: str,
    url: str,
    *,
    params: dict[str, Any],
    headers: Optional[dict[str, str]] = None,
    timeout: float = 5.0,
    min_interval: float = 0.0,
) -> Any:
    """GET `url` and decode the JSON body.

    Raises RateLimitExceeded for upstream throttling and ProviderUnavailable for
    transport errors, timeouts, 5xx / 4xx responses and non-JSON bodies.
    """
    try:
        resp = _throttled_get(
            url, params=params, headers=headers or {}, timeout=timeout, min_interval=min_interval
        )
    except requests.Timeout as exc:
        raise ProviderUnavailable(service, f"{service} request timed out after {timeout}s") from exc
    except requests.RequestException as exc:
        raise ProviderUnavailable(service, f"{service} request failed: {exc}") from exc

    status = getattr(resp, "status_code", 200)
    if status in THROTTLE_STATUS_CODES:
        retry_after = _parse_retry_after(resp)
        raise RateLimitExceeded(service, retry_after, f"{service} upstream throttled the request (HTTP {status})")
    if status >= 400:
        raise ProviderUnavailable(
            service,
            f"{service} responded with HTTP {status}",
            status_code=status,
            retryable=status >= 500,
        )

    try:
        return resp.json()
    except (ValueError, json.JSONDecodeError) as exc:
        raise ProviderUnavailable(service, f"{service} returned a non-JSON body", status_code=status) from exc


def _parse_retry_after(resp: requests.Response) -> Optional[float]:
    headers = getattr(resp, "headers", None) or {}
    value = headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def bounding_box_around(lat: float, lng: float, radius_km: float) -> Tuple[float, float, float, float]:
    """Return (min_lat, min_lng, max_lat, max_lng) of a square around a point."""
    lat_delta = math.degrees(radius_km / EARTH_RADIUS_KM)
    lng_delta = lat_delta / max(math.cos(math.radians(lat)), 1e-6)
    return (
        max(-90.0, lat - lat_delta),
        max(-180.0, lng - lng_delta),
        min(90.0, lat + lat_delta),
        min(180.0, lng + lng_delta),
    )




class ProviderClient:
    """Budget, response cache and worker-thread I/O shared by the provider adapters.

    Rate-limit accounting and cache access stay on the calling (event loop)
    thread; only the blocking HTTP call is offloaded.
    """

    service = "provider"

    def __init__(
        self,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[CacheStore] = None,
        fetch: Optional[Callable[..., Any]] = None,
    ):
        self.rate_limiter = rate_limiter or get_default_rate_limiter()
        self.cache = cache if cache is not None else MemoryCacheStore()
        self._fetch = fetch
        self.logger = logging.getLogger(type(self).__module__)

    def _consume_budget(self) -> None:
        if not self.rate_limiter.check_and_log(self.service):
            retry_after = self.rate_limiter.retry_after(self.service)
            self.logger.warning("%s API rate limit exceeded (retry in %ss)", self.service, retry_after)
            raise RateLimitExceeded(self.service, retry_after)

    async def _get_json(self, url: str, params: Dict[str, Any], **kwargs: Any) -> Any:
        # Resolve at call time so tests can monkeypatch the module-level fetch_json
        fetch = self._fetch or fetch_json
        self.logger.debug("%s GET %s params=%s", self.service, url, redact_params(params))
        return await asyncio.to_thread(fetch, self.service, url, params=params, **kwargs)

    def get_usage_stats(self) -> dict:
        return self.rate_limiter.get_usage_stats(self.service)
