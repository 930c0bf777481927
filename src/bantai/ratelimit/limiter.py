"""Rate limit algorithms over a StorageAdapter.

Quota consumption is two-phase: ``check_rate_limit`` never writes and is safe
to call from a rule's evaluate function, ``increment_rate_limit`` consumes
quota and belongs in an ``on_allow`` hook so that requests denied by another
rule of the same policy never use up the caller's allowance.
"""

import logging
import math
import time
from datetime import datetime, UTC
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from bantai.errors import InvalidRateLimitConfig, extract_field_errors
from bantai.ratelimit.models import (
    FixedWindowData,
    RateLimitCheckResult,
    RateLimitConfig,
    RateLimitType,
    SlidingWindowData,
    TokenBucketData,
    load_store_data,
)
from bantai.storage.base import StorageAdapter, StorageUpdate


logger = logging.getLogger(__name__)

Clock = Callable[[], int]
ConfigLike = Union[RateLimitConfig, Dict[str, Any]]


def system_clock() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def validate_config(config: ConfigLike) -> RateLimitConfig:
    """
    Coerce a dict (or config) into a validated ``RateLimitConfig``.

    Raises:
        InvalidRateLimitConfig: If required fields are missing or malformed
    """
    if isinstance(config, RateLimitConfig):
        return config
    try:
        return RateLimitConfig.model_validate(config)
    except PydanticValidationError as e:
        errors = extract_field_errors(e)
        logger.error(f"Invalid rate limit config: {errors}")
        raise InvalidRateLimitConfig("Invalid rate limit configuration", errors) from e


def _iso(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, UTC).isoformat()


def _exceeded(limit: int, reset_at: int) -> str:
    return f"rate_limit_exceeded: limit of {limit} reached, resets at {_iso(reset_at)}"


async def _apply(
    storage: StorageAdapter,
    key: str,
    updater: Callable[[Any], StorageUpdate],
) -> None:
    """Run ``updater`` atomically when the backend can, else get-then-set."""
    if storage.supports_update:
        await storage.update(key, updater)
        return
    change = updater(await storage.get(key))
    if change is not None:
        await storage.set(key, change.value, change.ttl_ms)


# Fixed window

def _window_start(now: int, window_ms: int) -> int:
    return (now // window_ms) * window_ms


def _fixed_count(data: Any) -> int:
    data = load_store_data(data)
    return data.count if isinstance(data, FixedWindowData) else 0


async def _check_fixed_window(storage, config: RateLimitConfig, now: int) -> RateLimitCheckResult:
    window_ms = config.period_ms
    window_start = _window_start(now, window_ms)
    reset_at = window_start + window_ms

    count = _fixed_count(await storage.get(f"{config.key}:{window_start}"))

    if count >= config.limit:
        return RateLimitCheckResult(
            allowed=False,
            remaining=0,
            reset_at=reset_at,
            reason=_exceeded(config.limit, reset_at),
        )

    remaining = max(0, config.limit - count - 1)
    return RateLimitCheckResult(
        allowed=True,
        remaining=remaining,
        reset_at=reset_at,
        reason=f"rate_limit_passed: {remaining} remaining",
    )


async def _increment_fixed_window(storage, config: RateLimitConfig, now: int) -> None:
    window_ms = config.period_ms
    window_key = f"{config.key}:{_window_start(now, window_ms)}"

    def bump(data):
        return StorageUpdate(FixedWindowData(count=_fixed_count(data) + 1), window_ms)

    await _apply(storage, window_key, bump)


# Sliding window

def _live_timestamps(data: Any, now: int, window_ms: int) -> List[int]:
    data = load_store_data(data)
    if not isinstance(data, SlidingWindowData):
        return []
    cutoff = now - window_ms
    return [ts for ts in data.timestamps if ts > cutoff]


async def _check_sliding_window(storage, config: RateLimitConfig, now: int) -> RateLimitCheckResult:
    window_ms = config.period_ms
    timestamps = _live_timestamps(await storage.get(config.key), now, window_ms)

    reset_at = min(timestamps) + window_ms if timestamps else now + window_ms

    if len(timestamps) >= config.limit:
        return RateLimitCheckResult(
            allowed=False,
            remaining=0,
            reset_at=reset_at,
            reason=_exceeded(config.limit, reset_at),
        )

    remaining = max(0, config.limit - len(timestamps) - 1)
    return RateLimitCheckResult(
        allowed=True,
        remaining=remaining,
        reset_at=reset_at,
        reason=f"rate_limit_passed: {remaining} remaining",
    )


async def _increment_sliding_window(storage, config: RateLimitConfig, now: int) -> None:
    window_ms = config.period_ms

    def append(data):
        timestamps = _live_timestamps(data, now, window_ms)
        timestamps.append(now)
        return StorageUpdate(SlidingWindowData(timestamps=timestamps), window_ms)

    await _apply(storage, config.key, append)


# Token bucket

def refill_rate(limit: int, period_ms: int) -> float:
    """Tokens per millisecond so that an empty bucket fills in one period."""
    return limit / period_ms


def _refilled_tokens(data: Any, config: RateLimitConfig, now: int, rate: float) -> float:
    data = load_store_data(data)
    if not isinstance(data, TokenBucketData):
        return float(config.limit)
    tokens = data.remaining_tokens
    elapsed = now - data.last_refill_at
    if elapsed > 0:
        tokens = min(config.limit, tokens + elapsed * rate)
    return tokens


async def _check_token_bucket(storage, config: RateLimitConfig, now: int) -> RateLimitCheckResult:
    period_ms = config.period_ms
    rate = refill_rate(config.limit, period_ms)
    cost = config.cost or 1

    tokens = _refilled_tokens(await storage.get(config.key), config, now, rate)

    # Time until the bucket is full again, not until the next token
    missing = config.limit - tokens
    reset_at = now + (math.ceil(missing / rate) if missing > 0 and rate > 0 else 0)

    if tokens < cost:
        return RateLimitCheckResult(
            allowed=False,
            remaining=max(0, math.floor(tokens)),
            reset_at=reset_at,
            reason=(
                f"rate_limit_exceeded: need {cost} tokens but only {math.floor(tokens)} "
                f"available, resets at {_iso(reset_at)}"
            ),
        )

    remaining = max(0, math.floor(tokens - cost))
    return RateLimitCheckResult(
        allowed=True,
        remaining=remaining,
        reset_at=reset_at,
        reason=f"rate_limit_passed: {remaining} tokens remaining after consuming {cost}",
    )


async def _increment_token_bucket(storage, config: RateLimitConfig, now: int) -> None:
    period_ms = config.period_ms
    rate = refill_rate(config.limit, period_ms)
    cost = config.cost or 1

    def consume(data):
        tokens = _refilled_tokens(data, config, now, rate)
        return StorageUpdate(
            TokenBucketData(remaining_tokens=max(0.0, tokens - cost), last_refill_at=now),
            period_ms,
        )

    await _apply(storage, config.key, consume)


_CHECKS = {
    RateLimitType.FIXED_WINDOW: _check_fixed_window,
    RateLimitType.SLIDING_WINDOW: _check_sliding_window,
    RateLimitType.TOKEN_BUCKET: _check_token_bucket,
}

_INCREMENTS = {
    RateLimitType.FIXED_WINDOW: _increment_fixed_window,
    RateLimitType.SLIDING_WINDOW: _increment_sliding_window,
    RateLimitType.TOKEN_BUCKET: _increment_token_bucket,
}


async def check_rate_limit(
    storage: StorageAdapter,
    config: ConfigLike,
    clock: Optional[Clock] = None,
) -> RateLimitCheckResult:
    """
    Check a quota without consuming it.

    Args:
        storage: Adapter holding rate limit payloads
        config: Rate limit configuration (model or dict)
        clock: Millisecond clock, defaults to the system clock

    Returns:
        RateLimitCheckResult for a request made now
    """
    validated = validate_config(config)
    now = (clock or system_clock)()
    result = await _CHECKS[validated.type](storage, validated, now)
    logger.debug(f"Rate limit check [{validated.type.value}] {validated.key}: {result.reason}")
    return result


async def increment_rate_limit(
    storage: StorageAdapter,
    config: ConfigLike,
    clock: Optional[Clock] = None,
) -> None:
    """Consume one request (or ``cost`` tokens) from a quota."""
    validated = validate_config(config)
    now = (clock or system_clock)()
    await _INCREMENTS[validated.type](storage, validated, now)
    logger.debug(f"Rate limit increment [{validated.type.value}] {validated.key}")


class RateLimiter:
    """
    Rate limit tool registered on a context.

    Binds the check/increment operations to one storage adapter and clock so
    that rules only need to supply a configuration.
    """

    def __init__(self, storage: StorageAdapter, clock: Optional[Clock] = None):
        self.storage = storage
        self.clock = clock or system_clock

    async def check(self, config: ConfigLike) -> RateLimitCheckResult:
        return await check_rate_limit(self.storage, config, self.clock)

    async def increment(self, config: ConfigLike) -> None:
        await increment_rate_limit(self.storage, config, self.clock)
