"""Tests for the rate limit algorithms."""

from typing import Optional

import pytest
from pydantic import BaseModel

from bantai.errors import InvalidRateLimitConfig
from bantai.ratelimit import (
    FixedWindowData,
    RateLimitConfig,
    RateLimiter,
    RateLimitType,
    TokenBucketData,
    check_rate_limit,
    increment_rate_limit,
    load_store_data,
)
from bantai.storage import InMemoryStorage, StorageAdapter


HOUR = 3_600_000
T0 = 1_700_000_000_000


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now


class SerialisingStorage(StorageAdapter):
    """Stores plain dicts and has no atomic update, like a JSON backend."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def get(self, key: str):
        return self.data.get(key)

    async def set(self, key: str, value, ttl_ms: Optional[int] = None) -> None:
        self.data[key] = value.model_dump() if isinstance(value, BaseModel) else value
        self.ttls[key] = ttl_ms

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


class TestFixedWindow:
    """Test the fixed window algorithm."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = FakeClock()
        self.storage = InMemoryStorage(clock=self.clock)
        self.config = {"type": "fixed-window", "key": "user-1", "limit": 5, "period": "1h"}

    @pytest.mark.asyncio
    async def test_fresh_key(self):
        result = await check_rate_limit(self.storage, self.config, self.clock)

        window_start = T0 // HOUR * HOUR
        assert result.allowed
        assert result.remaining == 4
        assert result.reset_at == window_start + HOUR
        assert result.reason.startswith("rate_limit_passed")

    @pytest.mark.asyncio
    async def test_limit_reached_then_reset(self):
        """Five requests exhaust the window; the next window starts fresh."""
        for _ in range(5):
            await increment_rate_limit(self.storage, self.config, self.clock)

        denied = await check_rate_limit(self.storage, self.config, self.clock)
        assert not denied.allowed
        assert denied.remaining == 0
        assert denied.reason.startswith("rate_limit_exceeded: limit of 5 reached")

        self.clock.now += HOUR
        allowed = await check_rate_limit(self.storage, self.config, self.clock)
        assert allowed.allowed
        assert allowed.remaining == 4

    @pytest.mark.asyncio
    async def test_check_is_idempotent(self):
        first = await check_rate_limit(self.storage, self.config, self.clock)
        second = await check_rate_limit(self.storage, self.config, self.clock)

        assert first == second
        assert len(self.storage) == 0

    @pytest.mark.asyncio
    async def test_increment_reduces_remaining_by_one(self):
        before = await check_rate_limit(self.storage, self.config, self.clock)
        await increment_rate_limit(self.storage, self.config, self.clock)
        after = await check_rate_limit(self.storage, self.config, self.clock)

        assert after.remaining == before.remaining - 1

    @pytest.mark.asyncio
    async def test_window_key(self):
        await increment_rate_limit(self.storage, self.config, self.clock)

        stored = await self.storage.get(f"user-1:{T0 // HOUR * HOUR}")
        assert stored == FixedWindowData(count=1)

    @pytest.mark.asyncio
    async def test_zero_limit_always_denies(self):
        config = {**self.config, "limit": 0}

        result = await check_rate_limit(self.storage, config, self.clock)

        assert not result.allowed


class TestSlidingWindow:
    """Test the sliding window algorithm."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = FakeClock()
        self.storage = InMemoryStorage(clock=self.clock)
        self.config = RateLimitConfig(type=RateLimitType.SLIDING_WINDOW, key="user-1", limit=3, period="1h")

    async def _increment_at(self, now: int) -> None:
        self.clock.now = now
        await increment_rate_limit(self.storage, self.config, self.clock)

    @pytest.mark.asyncio
    async def test_limit_reached(self):
        await self._increment_at(T0)
        await self._increment_at(T0 + 1000)
        await self._increment_at(T0 + 2000)

        self.clock.now = T0 + 3000
        result = await check_rate_limit(self.storage, self.config, self.clock)

        assert not result.allowed
        assert result.remaining == 0
        assert result.reset_at == T0 + HOUR

    @pytest.mark.asyncio
    async def test_old_requests_slide_out(self):
        """Requests older than the window no longer count."""
        await self._increment_at(T0)
        await self._increment_at(T0 + 1000)
        await self._increment_at(T0 + 2000)

        self.clock.now = T0 + HOUR + 1500
        result = await check_rate_limit(self.storage, self.config, self.clock)

        assert result.allowed
        assert result.remaining == 1
        assert result.reset_at == T0 + 2000 + HOUR

    @pytest.mark.asyncio
    async def test_empty_window_reset(self):
        result = await check_rate_limit(self.storage, self.config, self.clock)

        assert result.allowed
        assert result.remaining == 2
        assert result.reset_at == T0 + HOUR

    @pytest.mark.asyncio
    async def test_increment_prunes_timestamps(self):
        await self._increment_at(T0)
        await self._increment_at(T0 + HOUR + 1)

        stored = await self.storage.get("user-1")
        assert stored.timestamps == [T0 + HOUR + 1]


class TestTokenBucket:
    """Test the token bucket algorithm."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = FakeClock()
        self.storage = InMemoryStorage(clock=self.clock)
        self.config = {"type": "token-bucket", "key": "user-1", "limit": 10, "period": "1s"}

    @pytest.mark.asyncio
    async def test_full_bucket(self):
        result = await check_rate_limit(self.storage, self.config, self.clock)

        assert result.allowed
        assert result.remaining == 9
        assert result.reset_at == T0

    @pytest.mark.asyncio
    async def test_consume_whole_bucket_and_refill(self):
        """Draining 10 tokens leaves none; half a period later about 5 are back."""
        drain = {**self.config, "cost": 10}

        check = await check_rate_limit(self.storage, drain, self.clock)
        assert check.allowed
        assert check.remaining == 0

        await increment_rate_limit(self.storage, drain, self.clock)

        empty = await check_rate_limit(self.storage, self.config, self.clock)
        assert not empty.allowed
        assert empty.remaining == 0
        assert empty.reset_at == T0 + 1000

        self.clock.now = T0 + 500
        refilled = await check_rate_limit(self.storage, self.config, self.clock)
        assert refilled.allowed
        assert refilled.remaining == 4

        too_costly = await check_rate_limit(self.storage, {**self.config, "cost": 6}, self.clock)
        assert not too_costly.allowed
        assert too_costly.remaining == 5

    @pytest.mark.asyncio
    async def test_refill_capped_at_limit(self):
        await increment_rate_limit(self.storage, self.config, self.clock)

        self.clock.now = T0 + 60_000
        result = await check_rate_limit(self.storage, self.config, self.clock)

        assert result.remaining == 9

    @pytest.mark.asyncio
    async def test_increment_reduces_remaining_by_one(self):
        before = await check_rate_limit(self.storage, self.config, self.clock)
        await increment_rate_limit(self.storage, self.config, self.clock)
        after = await check_rate_limit(self.storage, self.config, self.clock)

        assert after.remaining == before.remaining - 1

    @pytest.mark.asyncio
    async def test_check_is_idempotent(self):
        await increment_rate_limit(self.storage, self.config, self.clock)
        self.clock.now = T0 + 100

        first = await check_rate_limit(self.storage, self.config, self.clock)
        second = await check_rate_limit(self.storage, self.config, self.clock)

        assert first == second
        stored = await self.storage.get("user-1")
        assert stored.last_refill_at == T0

    @pytest.mark.asyncio
    async def test_stored_tokens(self):
        await increment_rate_limit(self.storage, {**self.config, "cost": 3}, self.clock)

        stored = await self.storage.get("user-1")
        assert stored == TokenBucketData(remaining_tokens=7.0, last_refill_at=T0)


class TestConfigValidation:
    """Test rate limit configuration errors."""

    def setup_method(self):
        """Set up test fixtures."""
        self.storage = InMemoryStorage()

    @pytest.mark.asyncio
    async def test_missing_key(self):
        with pytest.raises(InvalidRateLimitConfig) as exc_info:
            await check_rate_limit(self.storage, {"type": "fixed-window", "limit": 1, "period": "1h"})

        assert "key" in [e["field"] for e in exc_info.value.errors]

    @pytest.mark.asyncio
    async def test_bad_period(self):
        with pytest.raises(InvalidRateLimitConfig):
            await check_rate_limit(
                self.storage, {"type": "fixed-window", "key": "k", "limit": 1, "period": "soon"}
            )

    @pytest.mark.asyncio
    async def test_unknown_type(self):
        with pytest.raises(InvalidRateLimitConfig):
            await increment_rate_limit(
                self.storage, {"type": "leaky-bucket", "key": "k", "limit": 1, "period": "1h"}
            )

    @pytest.mark.asyncio
    async def test_negative_limit(self):
        with pytest.raises(InvalidRateLimitConfig):
            await check_rate_limit(
                self.storage, {"type": "fixed-window", "key": "k", "limit": -1, "period": "1h"}
            )

    def test_period_ms(self):
        config = RateLimitConfig(type="token-bucket", key="k", limit=1, period="2m")
        assert config.period_ms == 120_000


class TestGetThenSetFallback:
    """Test adapters without atomic update that serialise values."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = FakeClock()
        self.storage = SerialisingStorage()

    @pytest.mark.asyncio
    async def test_fixed_window(self):
        config = {"type": "fixed-window", "key": "k", "limit": 2, "period": "1m"}

        await increment_rate_limit(self.storage, config, self.clock)
        await increment_rate_limit(self.storage, config, self.clock)
        result = await check_rate_limit(self.storage, config, self.clock)

        window_key = f"k:{T0 // 60_000 * 60_000}"
        assert self.storage.data[window_key] == {"type": "fixed-window", "count": 2}
        assert self.storage.ttls[window_key] == 60_000
        assert not result.allowed

    @pytest.mark.asyncio
    async def test_token_bucket(self):
        config = {"type": "token-bucket", "key": "k", "limit": 4, "period": "1m"}

        await increment_rate_limit(self.storage, config, self.clock)
        result = await check_rate_limit(self.storage, config, self.clock)

        assert result.remaining == 2

    def test_load_store_data(self):
        """Unrecognised payloads read as missing."""
        assert load_store_data({"type": "sliding-window", "timestamps": [1]}).timestamps == [1]
        assert load_store_data({"type": "unknown"}) is None
        assert load_store_data(None) is None


class TestRateLimiter:
    """Test the rate limit tool."""

    @pytest.mark.asyncio
    async def test_bound_storage_and_clock(self):
        clock = FakeClock()
        storage = InMemoryStorage(clock=clock)
        limiter = RateLimiter(storage, clock=clock)
        config = {"type": "fixed-window", "key": "k", "limit": 1, "period": "1m"}

        assert (await limiter.check(config)).allowed
        await limiter.increment(config)
        assert not (await limiter.check(config)).allowed
        assert limiter.storage is storage
