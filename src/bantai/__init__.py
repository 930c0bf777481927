"""bantai: a policy and rule evaluation engine.

Typical use::

    context = define_context(User)
    is_adult = define_rule(context, "is-adult",
                           lambda user, ctx: allow() if user.age >= 18 else deny(reason="underage"))
    policy = define_policy(context, "adults-only", [is_adult])
    result = await evaluate_policy(policy, {"age": 20})
"""

from bantai.errors import (
    AuditClosedError,
    BantaiError,
    InvalidRateLimitConfig,
    PolicyDefinitionError,
    PolicyViolationError,
    RuleDefinitionError,
    RuleEvaluationError,
    SchemaValidationError,
)
from bantai.context import (
    Context,
    Tools,
    compose_context,
    define_context,
    extend_context,
    with_storage,
)
from bantai.rules import Rule, RuleContext, RuleResult, allow, define_rule, deny, skip
from bantai.audit import (
    AuditEvent,
    AuditEventType,
    AuditLog,
    AuditNode,
    LoggingAuditSink,
    MemoryAuditSink,
    build_explain_tree,
    with_audit,
)
from bantai.policy import (
    Policy,
    PolicyDecision,
    PolicyEvaluator,
    PolicyReason,
    PolicyResult,
    Strategy,
    define_policy,
    evaluate_policy,
    evaluate_policy_sync,
    raise_on_deny,
)
from bantai.ratelimit import (
    RateLimitCheckResult,
    RateLimitConfig,
    RateLimiter,
    RateLimitType,
    check_rate_limit,
    define_rate_limit_rule,
    increment_rate_limit,
    parse_duration,
    with_rate_limit,
)
from bantai.storage import InMemoryStorage, StorageAdapter, StorageUpdate

__version__ = "0.1.0"

__all__ = [
    "AuditClosedError",
    "BantaiError",
    "InvalidRateLimitConfig",
    "PolicyDefinitionError",
    "PolicyViolationError",
    "RuleDefinitionError",
    "RuleEvaluationError",
    "SchemaValidationError",
    "Context",
    "Tools",
    "compose_context",
    "define_context",
    "extend_context",
    "with_storage",
    "Rule",
    "RuleContext",
    "RuleResult",
    "allow",
    "define_rule",
    "deny",
    "skip",
    "AuditEvent",
    "AuditEventType",
    "AuditLog",
    "AuditNode",
    "LoggingAuditSink",
    "MemoryAuditSink",
    "build_explain_tree",
    "with_audit",
    "Policy",
    "PolicyDecision",
    "PolicyEvaluator",
    "PolicyReason",
    "PolicyResult",
    "Strategy",
    "define_policy",
    "evaluate_policy",
    "evaluate_policy_sync",
    "raise_on_deny",
    "RateLimitCheckResult",
    "RateLimitConfig",
    "RateLimiter",
    "RateLimitType",
    "check_rate_limit",
    "define_rate_limit_rule",
    "increment_rate_limit",
    "parse_duration",
    "with_rate_limit",
    "InMemoryStorage",
    "StorageAdapter",
    "StorageUpdate",
]
