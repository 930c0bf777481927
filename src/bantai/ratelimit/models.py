"""Rate limit configuration, storage payloads and check results."""

from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from bantai.ratelimit.duration import parse_duration


class RateLimitType(str, Enum):
    """Windowing algorithm used for a limit."""
    
    FIXED_WINDOW = "fixed-window"
    SLIDING_WINDOW = "sliding-window"
    TOKEN_BUCKET = "token-bucket"


def _check_period(value: Optional[str]) -> Optional[str]:
    if value is not None:
        parse_duration(value)
    return value


class RateLimitConfig(BaseModel):
    """A complete rate limit: which algorithm, whose quota, how much."""
    
    model_config = ConfigDict(frozen=True)
    
    type: RateLimitType = Field(description="Windowing algorithm")
    key: str = Field(description="Caller-supplied quota key")
    limit: int = Field(ge=0, description="Requests (or tokens) per period")
    period: str = Field(description="Duration string, e.g. '1h'")
    cost: Optional[int] = Field(default=None, ge=1, description="Tokens consumed per request (token-bucket)")
    
    @field_validator("period")
    @classmethod
    def validate_period(cls, value):
        return _check_period(value)
    
    @property
    def period_ms(self) -> int:
        return parse_duration(self.period)


class RateLimitInput(BaseModel):
    """Partial rate limit carried on an input record; merged with rule defaults."""
    
    key: Optional[str] = None
    type: Optional[RateLimitType] = None
    limit: Optional[int] = Field(default=None, ge=0)
    period: Optional[str] = None
    cost: Optional[int] = Field(default=None, ge=1)
    
    @field_validator("period")
    @classmethod
    def validate_period(cls, value):
        return _check_period(value)


# Storage payloads, one variant per algorithm sharing a key namespace

class FixedWindowData(BaseModel):
    """Request count for one fixed window."""
    
    type: Literal["fixed-window"] = "fixed-window"
    count: int = Field(ge=0)


class SlidingWindowData(BaseModel):
    """Timestamps (epoch ms) of requests inside the sliding window."""
    
    type: Literal["sliding-window"] = "sliding-window"
    timestamps: List[int] = Field(default_factory=list)


class TokenBucketData(BaseModel):
    """Tokens left in the bucket and when they were last topped up."""
    
    type: Literal["token-bucket"] = "token-bucket"
    remaining_tokens: float = Field(ge=0)
    last_refill_at: int = Field(ge=0)


RateLimitStoreData = Annotated[
    Union[FixedWindowData, SlidingWindowData, TokenBucketData],
    Field(discriminator="type"),
]


class RateLimitCheckResult(BaseModel):
    """Outcome of a quota check. Never persisted."""
    
    model_config = ConfigDict(frozen=True)
    
    allowed: bool = Field(description="Whether the request fits in the quota")
    remaining: int = Field(ge=0, description="Requests left after this one")
    reset_at: int = Field(ge=0, description="Epoch ms when the quota resets")
    reason: Optional[str] = Field(default=None, description="Human-readable explanation")


_store_data_adapter = TypeAdapter(RateLimitStoreData)


def load_store_data(raw: Any) -> Optional[Union[FixedWindowData, SlidingWindowData, TokenBucketData]]:
    """
    Read a stored payload back into its variant.
    
    Backends that serialise values (JSON, Redis) hand back plain dicts;
    anything that is not a recognisable payload is treated as missing.
    """
    if raw is None or isinstance(raw, (FixedWindowData, SlidingWindowData, TokenBucketData)):
        return raw
    try:
        return _store_data_adapter.validate_python(raw)
    except PydanticValidationError:
        return None
