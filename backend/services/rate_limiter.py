"""
Windowed API budgets per (service, user).

Each (service, user) pair keeps hourly / daily / monthly counters with their own
window start. `check_and_log` either consumes one unit from every window or
refuses without consuming anything. State is in-process; a multi-process
deployment needs an external atomic counter store behind the same interface.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from settings import settings

logger = logging.getLogger(__name__)

WINDOW_SECONDS: Dict[str, int] = {
    "hourly": 3600,
    "daily": 24 * 3600,
    "monthly": 30 * 24 * 3600,
}
WARNING_THRESHOLDS = (0.8, 0.9, 0.95)
GLOBAL_USER = "global"


@dataclass(frozen=True)
class ServiceLimits:
    hourly: Optional[int] = None
    daily: Optional[int] = None
    monthly: Optional[int] = None

    def get(self, window: str) -> Optional[int]:
        return getattr(self, window)


@dataclass
class _Window:
    started_at: float
    count: int = 0


@dataclass
class _UsageCounters:
    windows: Dict[str, _Window] = field(default_factory=dict)


def default_limits() -> Dict[str, ServiceLimits]:
    return {
        "goong": ServiceLimits(hourly=settings.GOONG_HOURLY_LIMIT, daily=settings.GOONG_DAILY_LIMIT),
        "nominatim": ServiceLimits(hourly=settings.NOMINATIM_HOURLY_LIMIT, daily=settings.NOMINATIM_DAILY_LIMIT),
    }


class RateLimiter:
    def __init__(
        self,
        limits: Optional[Dict[str, ServiceLimits]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.limits = limits if limits is not None else default_limits()
        self._clock = clock
        self._usage: Dict[Tuple[str, str], _UsageCounters] = {}
        self._lock = threading.Lock()

    def check_and_log(self, service: str, user_id: Optional[str] = None) -> bool:
        """Return True and consume one unit if every window has budget left."""
        limits = self.limits.get(service)
        if limits is None:
            logger.warning("Unknown rate-limited service %s; allowing call", service)
            return True

        with self._lock:
            now = self._clock()
            counters = self._counters(service, user_id, now)
            for window, state in counters.windows.items():
                limit = limits.get(window)
                if limit is not None and state.count >= limit:
                    logger.warning(
                        "API limit exceeded for %s (user=%s): %s usage %d/%d",
                        service,
                        user_id or GLOBAL_USER,
                        window,
                        state.count,
                        limit,
                    )
                    return False
            for state in counters.windows.values():
                state.count += 1
            self._log_usage_warnings(service, counters, limits)
            return True

    def get_usage_stats(self, service: str, user_id: Optional[str] = None) -> dict:
        limits = self.limits.get(service)
        with self._lock:
            now = self._clock()
            counters = self._counters(service, user_id, now)
            usage = {window: state.count for window, state in counters.windows.items()}
        percentage = None
        if limits is not None:
            percentage = {
                window: (usage[window] / limits.get(window) * 100) if limits.get(window) else 0.0
                for window in WINDOW_SECONDS
            }
        return {
            "service": service,
            "user_id": user_id,
            "usage": usage,
            "limits": (
                {window: limits.get(window) for window in WINDOW_SECONDS} if limits is not None else None
            ),
            "percentage_used": percentage,
        }

    def get_time_until_reset(self, service: str, user_id: Optional[str] = None) -> Dict[str, float]:
        """Seconds until each window for this (service, user) rolls over."""
        with self._lock:
            now = self._clock()
            counters = self._counters(service, user_id, now)
            return {
                window: max(0.0, state.started_at + WINDOW_SECONDS[window] - now)
                for window, state in counters.windows.items()
            }

    def retry_after(self, service: str, user_id: Optional[str] = None) -> Optional[float]:
        """Seconds until the tightest exhausted window frees up, None if nothing is exhausted."""
        limits = self.limits.get(service)
        if limits is None:
            return None
        resets = self.get_time_until_reset(service, user_id)
        usage = self.get_usage_stats(service, user_id)["usage"]
        blocked = [
            resets[window]
            for window in WINDOW_SECONDS
            if limits.get(window) is not None and usage[window] >= limits.get(window)
        ]
        return max(blocked) if blocked else None

    def reset(self, service: Optional[str] = None) -> None:
        with self._lock:
            if service is None:
                self._usage.clear()
                return
            for key in [k for k in self._usage if k[0] == service]:
                del self._usage[key]

    def _counters(self, service: str, user_id: Optional[str], now: float) -> _UsageCounters:
        key = (service, user_id or GLOBAL_USER)
        counters = self._usage.get(key)
        if counters is None:
            counters = _UsageCounters(windows={w: _Window(started_at=now) for w in WINDOW_SECONDS})
            self._usage[key] = counters
            return counters
        for window, state in counters.windows.items():
            if now - state.started_at >= WINDOW_SECONDS[window]:
                state.started_at = now
                state.count = 0
        return counters

    def _log_usage_warnings(self, service: str, counters: _UsageCounters, limits: ServiceLimits) -> None:
        for window, state in counters.windows.items():
            limit = limits.get(window)
            if not limit:
                continue
            for threshold in WARNING_THRESHOLDS:
                # Only warn on the call that crosses the threshold
                if state.count - 1 < limit * threshold <= state.count:
                    logger.warning(
                        "%s API %s usage at %d%%: %d/%d",
                        service,
                        window,
                        int(threshold * 100),
                        state.count,
                        limit,
                    )


_default_rate_limiter: Optional[RateLimiter] = None


def get_default_rate_limiter() -> RateLimiter:
    global _default_rate_limiter
    if _default_rate_limiter is None:
        _default_rate_limiter = RateLimiter()
    return _default_rate_limiter
