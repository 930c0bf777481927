"""Audit event models."""

from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AuditEventType(str, Enum):
    """Types of events emitted during a policy evaluation."""
    
    POLICY_START = "policy.start"        # Evaluation began (tree root)
    RULE_START = "rule.start"            # A rule is about to run
    RULE_DECISION = "rule.decision"      # A rule returned a result
    RULE_END = "rule.end"                # A rule finished, with duration
    POLICY_DECISION = "policy.decision"  # Final allow/deny
    POLICY_END = "policy.end"            # Evaluation closed, no more events
    EXTENSION = "extension.event"        # Emitted by rules, hooks and tools


class PolicyRef(BaseModel):
    """Identity of the evaluated policy."""
    
    name: str
    id: str
    version: str


class RuleRef(BaseModel):
    """Identity of a rule."""
    
    name: str
    id: str
    version: str


class AuditDecision(BaseModel):
    """Outcome carried by decision events."""
    
    outcome: Literal["allow", "deny", "skip"]
    reason: Optional[str] = None


class AuditTrace(BaseModel):
    """Correlation ids across systems."""
    
    trace_id: Optional[str] = None
    request_id: Optional[str] = None


class AuditInput(BaseModel):
    """Audit fields a caller may attach to an evaluation input."""
    
    trace: Optional[AuditTrace] = None


class AuditEvent(BaseModel):
    """
    One structured audit record.
    
    Events of a single evaluation share ``evaluation_id`` and link to their
    parent through ``parent_id``, forming a tree rooted at ``policy.start``.
    """
    
    model_config = ConfigDict(frozen=True)
    
    id: str = Field(description="Unique event id, 'event:' prefixed")
    type: AuditEventType = Field(description="Event type")
    timestamp: int = Field(description="Epoch milliseconds")
    evaluation_id: str = Field(description="Evaluation this event belongs to")
    policy: PolicyRef
    rule: Optional[RuleRef] = None
    decision: Optional[AuditDecision] = None
    trace: Optional[AuditTrace] = None
    meta: Optional[Dict[str, Any]] = None
    duration_ms: Optional[float] = None
    parent_id: Optional[str] = None
    audit_version: str = "1"
    
    @field_validator("id")
    @classmethod
    def validate_id(cls, value: str) -> str:
        if not value.startswith("event:"):
            raise ValueError('ID must start with "event:"')
        return value
