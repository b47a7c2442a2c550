"""
Fixed-window rate limiter and client identification
"""
import asyncio
from unittest.mock import patch

import pytest
from starlette.requests import Request

from interviewdesk import rate_limit
from interviewdesk.rate_limit import RateLimiter, check_rate_limit, get_client_identifier


def make_request(headers=None, client=("203.0.113.9", 4321)):
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw, "client": client})


class TestRateLimiter:
    def test_allows_up_to_max_then_blocks(self):
        limiter = RateLimiter(60, 3)
        results = [limiter.check("a") for _ in range(4)]
        assert [r["allowed"] for r in results] == [True, True, True, False]
        assert [r["remaining"] for r in results] == [2, 1, 0, 0]

    def test_identifiers_are_independent(self):
        limiter = RateLimiter(60, 1)
        assert limiter.check("a")["allowed"]
        assert limiter.check("b")["allowed"]
        assert not limiter.check("a")["allowed"]

    def test_window_restarts_after_reset_time(self):
        limiter = RateLimiter(10, 1)
        with patch("interviewdesk.rate_limit.time.time", return_value=1000.0):
            assert limiter.check("a")["allowed"]
            assert not limiter.check("a")["allowed"]
        with patch("interviewdesk.rate_limit.time.time", return_value=1011.0):
            result = limiter.check("a")
        assert result["allowed"]
        assert result["reset_time"] == 1021.0

    def test_cleanup_removes_only_expired_entries(self):
        limiter = RateLimiter(10, 5)
        with patch("interviewdesk.rate_limit.time.time", return_value=1000.0):
            limiter.check("old")
        with patch("interviewdesk.rate_limit.time.time", return_value=1008.0):
            limiter.check("new")
        with patch("interviewdesk.rate_limit.time.time", return_value=1012.0):
            assert limiter.cleanup() == 1
        assert limiter.check("new")["remaining"] == 3


class TestClientIdentifier:
    def test_forwarded_for_first_entry_wins(self):
        request = make_request({"X-Forwarded-For": "198.51.100.1, 10.0.0.2", "X-Real-IP": "10.9.9.9"})
        assert get_client_identifier(request) == "198.51.100.1"

    def test_real_ip_then_peer(self):
        assert get_client_identifier(make_request({"X-Real-IP": "198.51.100.7"})) == "198.51.100.7"
        assert get_client_identifier(make_request()) == "203.0.113.9"

    def test_loopback_keys_on_user_agent(self):
        request = make_request({"User-Agent": "x" * 80}, client=("127.0.0.1", 1))
        assert get_client_identifier(request) == "dev-" + "x" * 50

    def test_missing_client_is_treated_as_local(self):
        assert get_client_identifier(make_request(client=None)) == "dev-unknown"


class TestRateLimitHeaders:
    def test_headers_attached(self):
        limiter = RateLimiter(60, 2)
        result = check_rate_limit(limiter, make_request())
        assert result["headers"]["X-RateLimit-Limit"] == "2"
        assert result["headers"]["X-RateLimit-Remaining"] == "1"
        assert int(result["headers"]["X-RateLimit-Reset"]) >= int(result["reset_time"])

    def test_embed_config_is_limited_per_client(self, client):
        for _ in range(rate_limit.embed_config_limiter.max_requests):
            assert client.get("/api/embed/config").status_code == 200
        response = client.get("/api/embed/config")
        assert response.status_code == 429
        assert response.headers["X-RateLimit-Remaining"] == "0"


class StopLoop(Exception):
    pass


class TestPeriodicCleanup:
    def test_loop_sleeps_then_cleans(self):
        calls = []
        limiter = rate_limit.admin_api_limiter

        async def fake_sleep(seconds):
            calls.append(seconds)
            if len(calls) > 1:
                raise StopLoop

        with patch("interviewdesk.rate_limit.time.time", return_value=0.0):
            limiter.check("stale")
        with patch("interviewdesk.rate_limit.asyncio.sleep", fake_sleep):
            with pytest.raises(StopLoop):
                asyncio.run(rate_limit.cleanup_limiters_periodically())

        assert calls == [300, 300]
        assert "stale" not in limiter._store
