import asyncio
import logging
import time
from collections import defaultdict, deque
from ipaddress import ip_address, ip_network
from typing import Deque, Dict, Protocol

from starlette.requests import Request

logger = logging.getLogger("payments_api.rate_limit")

_MAX_HEADER_LEN = 2048
_MAX_FORWARDED_HOPS = 20


class RateLimiter(Protocol):
    async def allow(self, key: str) -> bool: ...

    async def reset(self) -> None: ...

    async def close(self) -> None: ...


class InMemoryRateLimiter:
    """Sliding-window limiter keyed by client; state lives in this process only."""

    def __init__(self, limit: int, window_seconds: int, *, cleanup_seconds: int | None = None) -> None:
        self.limit = max(1, int(limit))
        self.window_seconds = max(1, int(window_seconds))
        self.cleanup_seconds = cleanup_seconds or self.window_seconds * 2
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._last_seen: Dict[str, float] = {}
        self._last_prune: float = 0.0
        self._lock = asyncio.Lock()

    async def allow(self, key: str) -> bool:
        async with self._lock:
            now = time.monotonic()
            self._maybe_prune(now)
            window_start = now - self.window_seconds
            timestamps = self._requests[key]
            while timestamps and timestamps[0] <= window_start:
                timestamps.popleft()
            self._last_seen[key] = now
            if len(timestamps) >= self.limit:
                return False
            timestamps.append(now)
            return True

    async def reset(self) -> None:
        async with self._lock:
            self._requests.clear()
            self._last_seen.clear()
            self._last_prune = 0.0

    async def close(self) -> None:
        return None

    def _maybe_prune(self, now: float) -> None:
        if now - self._last_prune < 60:
            return
        expire_before = now - self.cleanup_seconds
        for key in list(self._requests.keys()):
            if not self._requests[key] or self._last_seen.get(key, 0.0) < expire_before:
                self._requests.pop(key, None)
                self._last_seen.pop(key, None)
        self._last_prune = now


def create_rate_limiter(app_settings) -> RateLimiter:
    return InMemoryRateLimiter(
        app_settings.rate_limit_requests,
        app_settings.rate_limit_window_seconds,
    )


def resolve_client_key(request: Request, trust_proxy_headers: bool, trusted_proxy_cidrs: list[str]) -> str:
    """Return the client IP used as the rate-limit key.

    ``X-Forwarded-For`` is honoured only when proxy headers are trusted and the
    direct peer sits inside one of *trusted_proxy_cidrs*.
    """
    source_ip = request.client.host if request.client else "unknown"
    if not trust_proxy_headers or not _is_in_cidrs(source_ip, trusted_proxy_cidrs):
        return source_ip
    xff = request.headers.get("x-forwarded-for")
    if xff and len(xff) <= _MAX_HEADER_LEN:
        extracted = _extract_xff(xff)
        if extracted:
            return extracted
    return source_ip


def _is_in_cidrs(client_host: str, cidrs: list[str]) -> bool:
    try:
        client_ip = ip_address(client_host)
    except ValueError:
        return False
    for cidr in cidrs:
        try:
            if client_ip in ip_network(cidr, strict=False):
                return True
        except ValueError:
            continue
    return False


def _extract_xff(header: str) -> str | None:
    ips = [ip.strip() for ip in header.split(",")]
    if not ips or len(ips) > _MAX_FORWARDED_HOPS:
        return None
    try:
        ip_address(ips[0])
        return ips[0]
    except ValueError:
        return None
