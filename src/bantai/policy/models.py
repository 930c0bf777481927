"""Policy decision models."""

from enum import Enum
from typing import Any, Dict, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from bantai.audit.models import RuleRef
from bantai.rules.models import RuleResult
from bantai.rules.rule import Rule


class Strategy(str, Enum):
    """How a policy walks its rules."""
    
    PREEMPTIVE = "preemptive"  # Stop at the first violation
    EXHAUSTIVE = "exhaustive"  # Run every rule, collect every violation


class PolicyDecision(str, Enum):
    """Final decision of an evaluation."""
    
    ALLOW = "allow"
    DENY = "deny"


class PolicyReason(str, Enum):
    """Why the decision was reached."""
    
    POLICY_ENFORCED = "policy_enforced"  # No violations
    POLICY_VIOLATED = "policy_violated"  # At least one violation


class ViolatedRule(BaseModel):
    """A rule whose denial counted against the policy."""
    
    model_config = ConfigDict(frozen=True)
    
    name: str = Field(description="Name of the violated rule")
    result: RuleResult = Field(description="The rule's result")


class EvaluatedRule(BaseModel):
    """A rule that ran, with its result."""
    
    model_config = ConfigDict(frozen=True)
    
    # Held as-is: a Rule carries callables and its context
    rule: Any = Field(description="The Rule instance that ran")
    result: RuleResult = Field(description="The rule's result")
    
    @field_validator("rule")
    @classmethod
    def validate_rule(cls, value: Any) -> Rule:
        if not isinstance(value, Rule):
            raise ValueError("rule must be a Rule")
        return value
    
    @field_serializer("rule")
    def serialize_rule(self, rule: Rule) -> Dict[str, str]:
        return RuleRef(name=rule.name, id=rule.id, version=rule.version).model_dump()


class PolicyResult(BaseModel):
    """Complete result of a policy evaluation."""
    
    model_config = ConfigDict(frozen=True)
    
    decision: PolicyDecision = Field(description="Final policy decision")
    is_allowed: bool = Field(description="decision == allow")
    reason: PolicyReason = Field(description="policy_enforced or policy_violated")
    violated_rules: Tuple[ViolatedRule, ...] = Field(default=(), description="Violations in rule order")
    evaluated_rules: Tuple[EvaluatedRule, ...] = Field(default=(), description="Every rule that ran, in order")
    strategy: Strategy = Field(description="Strategy used")
    evaluation_id: str = Field(description="Unique id of this evaluation")
    
    @property
    def violated_rule_names(self) -> Tuple[str, ...]:
        return tuple(v.name for v in self.violated_rules)
    
    @property
    def evaluated_rule_names(self) -> Tuple[str, ...]:
        return tuple(e.rule.name for e in self.evaluated_rules)
