"""Rate limiting: fixed window, sliding window and token bucket."""

from bantai.ratelimit.duration import parse_duration
from bantai.ratelimit.models import (
    FixedWindowData,
    RateLimitCheckResult,
    RateLimitConfig,
    RateLimitInput,
    RateLimitStoreData,
    RateLimitType,
    SlidingWindowData,
    TokenBucketData,
    load_store_data,
)
from bantai.ratelimit.limiter import (
    RateLimiter,
    check_rate_limit,
    increment_rate_limit,
    refill_rate,
    system_clock,
    validate_config,
)
from bantai.ratelimit.context import define_rate_limit_rule, with_rate_limit

__all__ = [
    "parse_duration",
    "FixedWindowData",
    "RateLimitCheckResult",
    "RateLimitConfig",
    "RateLimitInput",
    "RateLimitStoreData",
    "RateLimitType",
    "SlidingWindowData",
    "TokenBucketData",
    "load_store_data",
    "RateLimiter",
    "check_rate_limit",
    "increment_rate_limit",
    "refill_rate",
    "system_clock",
    "validate_config",
    "define_rate_limit_rule",
    "with_rate_limit",
]
