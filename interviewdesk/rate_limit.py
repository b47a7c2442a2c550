"""
In-memory fixed-window rate limiting
"""
import asyncio
import logging
import math
import time
from typing import Dict

from fastapi import Request

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 5 * 60
LOOPBACK_ADDRESSES = {"::1", "127.0.0.1", "unknown"}


class RateLimiter:
    """Counts hits per identifier inside a window that starts on the first hit"""

    def __init__(self, window_seconds: int, max_requests: int):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._store: Dict[str, dict] = {}

    def check(self, identifier: str) -> dict:
        now = time.time()

        entry = self._store.get(identifier)
        if entry and now > entry["reset_time"]:
            del self._store[identifier]
            entry = None

        if entry is None:
            entry = {"count": 0, "reset_time": now + self.window_seconds}
            self._store[identifier] = entry

        entry["count"] += 1

        return {
            "allowed": entry["count"] <= self.max_requests,
            "remaining": max(0, self.max_requests - entry["count"]),
            "reset_time": entry["reset_time"]
        }

    def cleanup(self) -> int:
        now = time.time()
        expired = [key for key, entry in self._store.items() if now > entry["reset_time"]]
        for key in expired:
            del self._store[key]
        return len(expired)

    def reset(self):
        self._store.clear()


embed_token_limiter = RateLimiter(15 * 60, 5)
embed_config_limiter = RateLimiter(60, 30)
admin_api_limiter = RateLimiter(60, 60)
admin_bulk_limiter = RateLimiter(60, 10)

ALL_LIMITERS = [embed_token_limiter, embed_config_limiter, admin_api_limiter, admin_bulk_limiter]


def get_client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    real_ip = request.headers.get("x-real-ip")

    if forwarded:
        ip = forwarded.split(",")[0].strip()
    elif real_ip:
        ip = real_ip
    elif request.client:
        ip = request.client.host
    else:
        ip = "unknown"

    # Local development: every request comes from loopback, so key on the browser instead
    if ip in LOOPBACK_ADDRESSES:
        user_agent = request.headers.get("user-agent") or "unknown"
        ip = f"dev-{user_agent[:50]}"

    return ip


def rate_limit_headers(limiter: RateLimiter, result: dict) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limiter.max_requests),
        "X-RateLimit-Remaining": str(result["remaining"]),
        "X-RateLimit-Reset": str(math.ceil(result["reset_time"]))
    }


def check_rate_limit(limiter: RateLimiter, request: Request) -> dict:
    """Run a limiter against the calling client and attach the response headers"""
    result = limiter.check(get_client_identifier(request))
    result["headers"] = rate_limit_headers(limiter, result)
    return result


async def cleanup_limiters_periodically():
    while True:
        await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
        removed = sum(limiter.cleanup() for limiter in ALL_LIMITERS)
        if removed:
            logger.info(f"Rate limit cleanup removed {removed} expired entries")
