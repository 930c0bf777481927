"""Audit trail: event emission, sinks and causal tree reconstruction."""

from bantai.audit.models import (
    AuditDecision,
    AuditEvent,
    AuditEventType,
    AuditInput,
    AuditTrace,
    PolicyRef,
    RuleRef,
)
from bantai.audit.handler import AuditHandler, AuditSink, AuditTool, policy_ref, with_audit
from bantai.audit.explain import AuditNode, build_explain_tree
from bantai.audit.log import AuditLog, LoggingAuditSink, MemoryAuditSink

__all__ = [
    "AuditDecision",
    "AuditEvent",
    "AuditEventType",
    "AuditInput",
    "AuditTrace",
    "PolicyRef",
    "RuleRef",
    "AuditHandler",
    "AuditSink",
    "AuditTool",
    "policy_ref",
    "with_audit",
    "AuditNode",
    "build_explain_tree",
    "AuditLog",
    "LoggingAuditSink",
    "MemoryAuditSink",
]
