"""Rule result model and constructors."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class RuleResult(BaseModel):
    """Outcome of a single rule evaluation."""
    
    model_config = ConfigDict(frozen=True)
    
    allowed: bool = Field(description="Whether the rule lets the input through")
    skipped: bool = Field(default=False, description="Rule does not apply to this input")
    reason: Optional[str] = Field(default=None, description="Machine-readable reason")
    meta: Optional[Dict[str, Any]] = Field(default=None, description="Rule-owned details")
    
    @property
    def is_violation(self) -> bool:
        """A denial that counts against the policy. Skipped results never do."""
        return not self.allowed and not self.skipped
    
    @property
    def outcome(self) -> str:
        """``allow``, ``deny`` or ``skip`` as reported in audit events."""
        if not self.allowed:
            return "deny"
        return "skip" if self.skipped else "allow"


def allow(reason: Optional[str] = None, meta: Optional[Dict[str, Any]] = None) -> RuleResult:
    """Let the input through."""
    return RuleResult(allowed=True, reason=reason, meta=meta)


def deny(reason: Optional[str] = None, meta: Optional[Dict[str, Any]] = None) -> RuleResult:
    """Reject the input."""
    return RuleResult(allowed=False, reason=reason, meta=meta)


def skip(reason: Optional[str] = "skipped", meta: Optional[Dict[str, Any]] = None) -> RuleResult:
    """Mark the rule as not applicable to the input."""
    return RuleResult(allowed=True, skipped=True, reason=reason, meta=meta)
