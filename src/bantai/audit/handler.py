"""Audit emission: per-evaluation handlers and the ``audit`` context tool."""

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from bantai.audit.models import (
    AuditDecision,
    AuditEvent,
    AuditEventType,
    AuditInput,
    AuditTrace,
    PolicyRef,
    RuleRef,
)
from bantai.config import settings
from bantai.context.compose import extend_context
from bantai.context.models import Context
from bantai.errors import AuditClosedError
from bantai.ids import generate_id


logger = logging.getLogger(__name__)

AuditSink = Callable[[AuditEvent], Any]


def _system_clock() -> int:
    return int(time.time() * 1000)


class AuditHandler:
    """
    Emits the events of exactly one policy evaluation.

    Every event is stamped with the evaluation id, the policy identity, a
    fresh ``event:`` id and a timestamp, validated, then handed to each
    sink. Once ``policy.end`` has been emitted the handler is closed and any
    further ``emit`` raises ``AuditClosedError``.
    """

    def __init__(
        self,
        policy: PolicyRef,
        evaluation_id: str,
        sinks: Iterable[AuditSink],
        clock: Optional[Callable[[], int]] = None,
    ):
        self.policy = policy
        self.evaluation_id = evaluation_id
        self._sinks = list(sinks)
        self._clock = clock or _system_clock
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(
        self,
        type: AuditEventType,
        rule: Optional[Any] = None,
        decision: Optional[AuditDecision] = None,
        trace: Optional[AuditTrace] = None,
        meta: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
        parent_id: Optional[str] = None,
    ) -> str:
        """
        Emit one event.

        Args:
            type: Event type
            rule: Rule (or RuleRef) the event is about
            decision: Decision outcome, for decision events
            trace: Caller correlation ids
            meta: Extension-owned data
            duration_ms: Elapsed time, for end events
            parent_id: Id of the causal parent event

        Returns:
            The new event's id

        Raises:
            AuditClosedError: If ``policy.end`` was already emitted
        """
        if self._closed:
            raise AuditClosedError(
                "Cannot emit events after policy.end",
                {"evaluation_id": self.evaluation_id, "event_type": AuditEventType(type).value},
            )

        event = AuditEvent(
            id=generate_id("event"),
            type=type,
            timestamp=self._clock(),
            evaluation_id=self.evaluation_id,
            policy=self.policy,
            rule=_rule_ref(rule),
            decision=decision,
            trace=trace,
            meta=meta,
            duration_ms=duration_ms,
            parent_id=parent_id,
            audit_version=settings.audit_version,
        )

        for sink in self._sinks:
            try:
                sink(event)
            except Exception:
                # One broken sink must not starve the others
                logger.exception(f"Audit sink {sink!r} failed on {event.type.value} [{event.id}]")

        if event.type == AuditEventType.POLICY_END:
            self._closed = True

        logger.debug(f"Audit emit: {event.type.value} [{event.id}]")
        return event.id

    def emit_extension(
        self,
        meta: Dict[str, Any],
        rule: Optional[Any] = None,
        parent_id: Optional[str] = None,
    ) -> str:
        """Emit an ``extension.event`` carrying ``meta``."""
        return self.emit(AuditEventType.EXTENSION, rule=rule, meta=meta, parent_id=parent_id)


def _rule_ref(rule: Any) -> Optional[RuleRef]:
    if rule is None or isinstance(rule, RuleRef):
        return rule
    return RuleRef(name=rule.name, id=rule.id, version=rule.version)


def policy_ref(policy: Any) -> PolicyRef:
    """Identity of a policy as recorded in events."""
    return PolicyRef(name=policy.name, id=policy.id, version=policy.version)


class AuditTool:
    """
    The ``audit`` capability of a context.

    Holds the registered sinks and opens a new ``AuditHandler`` for every
    evaluation, so concurrent evaluations never share closing state.
    """

    def __init__(self, sinks: Iterable[AuditSink], clock: Optional[Callable[[], int]] = None):
        self.sinks: List[AuditSink] = list(sinks)
        self.clock = clock

    def create_handler(self, policy: Any, evaluation_id: str) -> AuditHandler:
        """Open a handler bound to ``(policy, evaluation_id)``."""
        ref = policy if isinstance(policy, PolicyRef) else policy_ref(policy)
        return AuditHandler(ref, evaluation_id, self.sinks, clock=self.clock)


def with_audit(
    context: Context,
    sinks: Iterable[AuditSink],
    clock: Optional[Callable[[], int]] = None,
) -> Context:
    """
    Extend a context with audit emission.

    Adds an optional ``audit`` input field (caller trace ids) and registers an
    ``AuditTool`` under the ``audit`` tool name.

    Args:
        context: Context to extend
        sinks: Functions receiving each validated event
        clock: Millisecond clock for event timestamps
    """
    sinks = list(sinks)
    if not sinks:
        raise ValueError("with_audit requires at least one sink")
    return extend_context(
        context,
        fields={"audit": (Optional[AuditInput], None)},
        tools={"audit": AuditTool(sinks, clock=clock)},
    )
