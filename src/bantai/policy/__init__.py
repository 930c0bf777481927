"""Policies: ordered rule sets and their evaluation."""

from bantai.policy.models import (
    EvaluatedRule,
    PolicyDecision,
    PolicyReason,
    PolicyResult,
    Strategy,
    ViolatedRule,
)
from bantai.policy.policy import Policy, define_policy, raise_on_deny
from bantai.policy.evaluator import (
    EvaluationState,
    PolicyEvaluator,
    evaluate_policy,
    evaluate_policy_sync,
)

__all__ = [
    "EvaluatedRule",
    "PolicyDecision",
    "PolicyReason",
    "PolicyResult",
    "Strategy",
    "ViolatedRule",
    "Policy",
    "define_policy",
    "raise_on_deny",
    "EvaluationState",
    "PolicyEvaluator",
    "evaluate_policy",
    "evaluate_policy_sync",
]
