"""Tests for the header-aware token bucket limiter."""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from pydantic import ValidationError

from leadsync.app.ratelimit import (
    API_LIMITS,
    BackoffController,
    RateLimiterRegistry,
    RateState,
    ServiceLimits,
    TokenLimiter,
    get_service_limits,
    parse_http_date,
)


class TestRateState:
    """Test token bucket bookkeeping."""

    def test_starts_full(self):
        state = RateState(max_requests=5)

        assert state.tokens == 5
        assert state.server_retry_after is None

    def test_rejects_invalid_limits(self):
        with pytest.raises(ValueError):
            RateState(max_requests=0)
        with pytest.raises(ValueError):
            RateState(max_requests=1, window_duration_ms=0)

    def test_try_consume(self):
        state = RateState(max_requests=2)

        assert state.try_consume() is True
        assert state.try_consume() is True
        assert state.try_consume() is False
        assert state.tokens == 0

    def test_refill_after_window(self):
        """Whole elapsed windows refill up to max_requests."""
        state = RateState(max_requests=5, window_duration_ms=1000, window_started_at=100.0)
        for _ in range(5):
            state.try_consume()

        added = state.refill(now=101.5, wall_now=0.0)

        assert added == 5
        assert state.tokens == 5
        assert state.window_started_at == 101.0

    def test_no_refill_within_window(self):
        state = RateState(max_requests=5, window_duration_ms=1000, window_started_at=100.0)
        state.try_consume()

        assert state.refill(now=100.9, wall_now=0.0) == 0
        assert state.tokens == 4

    def test_refill_at_server_reset(self):
        """A passed X-RateLimit-Reset restores the full bucket."""
        state = RateState(max_requests=5, window_started_at=100.0, server_reset_at=50.0)
        state.tokens = 0

        state.refill(now=100.2, wall_now=60.0)

        assert state.tokens == 5
        assert state.server_reset_at is None
        assert state.window_started_at == 100.2

    def test_seconds_until_refill(self):
        state = RateState(max_requests=5, window_duration_ms=1000, window_started_at=100.0)

        assert state.seconds_until_refill(now=100.25, wall_now=0.0) == pytest.approx(0.75)

        state.server_reset_at = 70.0
        assert state.seconds_until_refill(now=100.25, wall_now=60.0) == pytest.approx(10.0)

    def test_clamp_limit_never_raises(self):
        state = RateState(max_requests=10)

        state.clamp_limit(20)
        assert state.max_requests == 10

        state.clamp_limit(3)
        assert state.max_requests == 3
        assert state.tokens == 3

        state.clamp_limit(0)
        assert state.max_requests == 1

    def test_clamp_remaining(self):
        state = RateState(max_requests=10)

        state.clamp_remaining(2)
        assert state.tokens == 2
        assert state.server_remaining == 2

        state.clamp_remaining(-5)
        assert state.tokens == 0
        assert state.server_remaining == 0


class TestServiceLimits:
    """Test per-service presets and overrides."""

    def test_presets_present(self):
        for name in ("smartlead", "lemlist", "attio", "mixpanel", "database"):
            assert name in API_LIMITS

    def test_max_requests_from_rate(self):
        limits = ServiceLimits(requests_per_second=10, window_duration_ms=1000)
        assert limits.max_requests == 10

        limits = ServiceLimits(requests_per_second=10, window_duration_ms=200)
        assert limits.max_requests == 2

    def test_fractional_rate_keeps_one_token(self):
        limits = ServiceLimits(requests_per_second=0.5, window_duration_ms=1000)

        assert limits.max_requests == 1

    def test_min_above_max_rejected(self):
        with pytest.raises(ValidationError):
            ServiceLimits(min_batch_size=20, max_batch_size=10)

    def test_multiplier_must_exceed_one(self):
        with pytest.raises(ValidationError):
            ServiceLimits(backoff_multiplier=1.0)

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            ServiceLimits(requests_per_hour=10)

    def test_get_known_service(self):
        limits = get_service_limits("lemlist")

        assert limits.requests_per_second == 10
        assert limits.max_batch_size == 50
        assert limits.backoff_multiplier == 2.0

    def test_service_name_case_insensitive(self):
        assert get_service_limits("LemList") == get_service_limits("lemlist")

    def test_unknown_service_uses_default_profile(self):
        limits = get_service_limits("no-such-service")

        assert limits.max_batch_size == API_LIMITS["database"].max_batch_size
        assert limits.requests_per_second == API_LIMITS["database"].requests_per_second

    def test_explicit_overrides(self):
        limits = get_service_limits("attio", {"requests_per_second": 2, "max_batch_size": 10})

        assert limits.requests_per_second == 2
        assert limits.max_batch_size == 10
        assert limits.backoff_multiplier == 2.0

    def test_invalid_override_rejected(self):
        with pytest.raises(ValidationError):
            get_service_limits("attio", {"requests_per_second": 0})

    def test_small_profile_stays_valid(self):
        limits = get_service_limits("slack")

        assert limits.min_batch_size <= limits.max_batch_size

    def test_env_overrides_apply_before_explicit(self):
        mock_settings = MagicMock()
        mock_settings.rate_limit_window_ms = 1000
        mock_settings.rate_limit_min_batch_size = 5
        mock_settings.rate_limit_default_service = "database"
        mock_settings.rate_limit_overrides = {"attio": {"max_batch_size": 10, "requests_per_second": 3}}

        with patch("leadsync.app.ratelimit.presets.settings", mock_settings):
            limits = get_service_limits("attio", {"requests_per_second": 4})

        assert limits.max_batch_size == 10
        assert limits.requests_per_second == 4


class TestTokenLimiter:
    """Test acquisition and header feedback."""

    @pytest.mark.asyncio
    async def test_acquire_consumes_token(self):
        limiter = TokenLimiter("test", limits=ServiceLimits(requests_per_second=10))

        await limiter.acquire()

        assert limiter.tokens == 9
        assert limiter.max_requests == 10

    @pytest.mark.asyncio
    async def test_acquire_within_budget_is_immediate(self):
        limiter = TokenLimiter("test", limits=ServiceLimits(requests_per_second=10))

        start = time.monotonic()
        await limiter.acquire()
        await limiter.acquire()

        assert time.monotonic() - start < 0.05

    @pytest.mark.asyncio
    async def test_acquire_waits_for_next_window(self):
        """Two tokens per 200ms window: the third caller waits for the refill."""
        limiter = TokenLimiter(
            "test", limits=ServiceLimits(requests_per_second=10, window_duration_ms=200)
        )
        assert limiter.max_requests == 2

        start = time.monotonic()
        await asyncio.gather(*(limiter.acquire() for _ in range(3)))

        assert time.monotonic() - start >= 0.15

    @pytest.mark.asyncio
    async def test_retry_after_seconds_honoured(self):
        limiter = TokenLimiter("test", limits=ServiceLimits(requests_per_second=10))
        limiter.observe({"Retry-After": "2"})

        assert limiter.is_rate_limited() is True

        async def expire_deadline(seconds):
            limiter.state.server_retry_after = time.time() - 1

        with patch(
            "leadsync.app.ratelimit.limiter.asyncio.sleep",
            new_callable=AsyncMock,
            side_effect=expire_deadline,
        ) as mock_sleep:
            await limiter.acquire()

        mock_sleep.assert_awaited_once()
        assert mock_sleep.await_args.args[0] == pytest.approx(2.0, abs=0.1)
        assert limiter.state.server_retry_after is None
        assert limiter.is_rate_limited() is False

    @pytest.mark.asyncio
    async def test_retry_after_extended_during_wait(self):
        """A Retry-After observed while waiting pushes the wait out."""
        limiter = TokenLimiter("test", limits=ServiceLimits(requests_per_second=10))
        limiter.state.server_retry_after = time.time() + 0.2

        async def throttled_again():
            await asyncio.sleep(0.1)
            limiter.observe({"Retry-After": "1"})

        start = time.monotonic()
        await asyncio.gather(limiter.acquire(), throttled_again())

        assert time.monotonic() - start >= 0.9
        assert limiter.state.server_retry_after is None

    @pytest.mark.asyncio
    async def test_backoff_delay_applied(self):
        backoff = BackoffController(multiplier=2.0, base_delay_ms=50)
        backoff.on_failure()
        limiter = TokenLimiter("test", limits=ServiceLimits(requests_per_second=10), backoff=backoff)

        with patch("leadsync.app.ratelimit.limiter.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await limiter.acquire()

        mock_sleep.assert_awaited_once_with(0.05)

    def test_retry_after_http_date(self):
        limiter = TokenLimiter("test", limits=ServiceLimits(requests_per_second=10))
        deadline = datetime.now(timezone.utc) + timedelta(seconds=30)

        limiter.observe({"retry-after": format_datetime(deadline, usegmt=True)})

        assert limiter.is_rate_limited() is True
        assert 25 <= limiter.state.retry_after_remaining() <= 31

    def test_malformed_retry_after_ignored(self):
        limiter = TokenLimiter("test", limits=ServiceLimits(requests_per_second=10))

        limiter.observe({"Retry-After": "soon"})

        assert limiter.state.server_retry_after is None

    def test_limit_header_lowers_bucket(self):
        limiter = TokenLimiter("test", limits=ServiceLimits(requests_per_second=10))

        limiter.observe({"X-RateLimit-Limit": "4"})
        assert limiter.max_requests == 4
        assert limiter.tokens == 4

        limiter.observe({"X-RateLimit-Limit": "100"})
        assert limiter.max_requests == 4

    def test_remaining_header_lowers_tokens(self):
        limiter = TokenLimiter("test", limits=ServiceLimits(requests_per_second=10))

        limiter.observe(httpx.Headers({"X-RateLimit-Remaining": "3"}))

        assert limiter.tokens == 3
        assert limiter.state.server_remaining == 3

    def test_reset_header_epoch_and_date(self):
        limiter = TokenLimiter("test", limits=ServiceLimits(requests_per_second=10))

        limiter.observe({"X-RateLimit-Reset": "1900000000"})
        assert limiter.state.server_reset_at == 1900000000.0

        limiter.observe({"X-RateLimit-Reset": "Thu, 01 Jan 2026 00:00:00 GMT"})
        assert limiter.state.server_reset_at == datetime(2026, 1, 1, tzinfo=timezone.utc).timestamp()

    @pytest.mark.asyncio
    async def test_passed_reset_refills_exhausted_bucket(self):
        limiter = TokenLimiter("test", limits=ServiceLimits(requests_per_second=10))
        limiter.observe({
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(time.time() - 1),
        })
        assert limiter.tokens == 0

        start = time.monotonic()
        await limiter.acquire()

        assert time.monotonic() - start < 0.05
        assert limiter.tokens == 9

    def test_empty_headers_are_noop(self):
        limiter = TokenLimiter("test", limits=ServiceLimits(requests_per_second=10))

        limiter.observe(None)
        limiter.observe({})
        limiter.observe({"X-RateLimit-Remaining": "many"})

        assert limiter.tokens == 10
        assert limiter.state.server_remaining is None

    def test_status_snapshot(self):
        limiter = TokenLimiter("lemlist")
        limiter.backoff.on_failure()

        status = limiter.status().to_dict()

        assert status["service_name"] == "lemlist"
        assert status["max_requests"] == 10
        assert status["consecutive_errors"] == 1
        assert status["backoff_delay_ms"] > 0
        assert status["retry_after_seconds"] == 0.0


class TestParseHttpDate:
    """Test date header parsing."""

    def test_iso_and_rfc_formats(self):
        expected = datetime(2026, 1, 1, tzinfo=timezone.utc).timestamp()

        assert parse_http_date("2026-01-01T00:00:00+00:00") == expected
        assert parse_http_date("2026-01-01T00:00:00") == expected
        assert parse_http_date("Thu, 01 Jan 2026 00:00:00 GMT") == expected

    def test_invalid_date(self):
        assert parse_http_date("not a date") is None


class TestRateLimiterRegistry:
    """Test shared per-service limiters."""

    def test_same_limiter_per_service(self):
        registry = RateLimiterRegistry()

        first = registry.get("lemlist")

        assert registry.get("LEMLIST") is first
        assert registry.get("attio") is not first
        assert "Lemlist" in registry
        assert registry.services() == ["lemlist", "attio"]

    def test_limiters_have_independent_backoff(self):
        registry = RateLimiterRegistry()

        registry.get("lemlist").backoff.on_failure()

        assert registry.get("attio").backoff.consecutive_errors == 0

    def test_overrides_applied(self):
        registry = RateLimiterRegistry(overrides={"Attio": {"requests_per_second": 2}})

        assert registry.get("attio").limits.requests_per_second == 2

    def test_get_all_status(self):
        registry = RateLimiterRegistry()
        registry.get("smartlead")
        registry.get("mixpanel")

        status = registry.get_all_status()

        assert set(status) == {"smartlead", "mixpanel"}
        assert status["mixpanel"]["max_requests"] == 50

    def test_reset(self):
        registry = RateLimiterRegistry()
        limiter = registry.get("smartlead")
        registry.get("attio")

        registry.reset("smartlead")
        assert "smartlead" not in registry
        assert registry.get("smartlead") is not limiter

        registry.reset()
        assert registry.services() == []
