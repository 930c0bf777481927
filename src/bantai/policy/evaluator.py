"""
Policy evaluator.

Drives one evaluation through explicit states:

    VALIDATING -> RUNNING -> DECIDING -> DISPATCHING_HOOKS -> EMITTING -> DONE

The preemptive strategy fires hooks as each rule returns and stops at the
first violation; the exhaustive strategy runs every rule and defers hooks
until the final decision is known. Rules that raise are recorded as denials.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel

from bantai.audit.handler import AuditHandler
from bantai.audit.models import AuditDecision, AuditEventType, AuditTrace
from bantai.errors import AuditClosedError, RuleEvaluationError
from bantai.ids import generate_id
from bantai.policy.models import (
    EvaluatedRule,
    PolicyDecision,
    PolicyReason,
    PolicyResult,
    Strategy,
    ViolatedRule,
)
from bantai.policy.policy import Policy
from bantai.rules.models import RuleResult, deny
from bantai.rules.rule import Rule, RuleContext, invoke


logger = logging.getLogger(__name__)

RULE_EVALUATION_ERROR = "rule_evaluation_error"


class EvaluationState(str, Enum):
    """Stages of one evaluation."""

    VALIDATING = "validating"
    RUNNING = "running"
    DECIDING = "deciding"
    DISPATCHING_HOOKS = "dispatching_hooks"
    EMITTING = "emitting"
    DONE = "done"


class PolicyEvaluator:
    """
    Runs a policy against one input.

    An instance is single-use; ``transitions`` records the states it went
    through, in order.
    """

    def __init__(self, policy: Policy, strategy: Optional[Union[Strategy, str]] = None):
        """
        Args:
            policy: Policy to evaluate
            strategy: Overrides the policy's default strategy
        """
        self.policy = policy
        self.strategy = Strategy(strategy or policy.default_strategy)
        self.state: Optional[EvaluationState] = None
        self.transitions: List[EvaluationState] = []
        self.evaluation_id: Optional[str] = None

        self._input: Any = None
        self._audit: Optional[AuditHandler] = None
        self._root_id: Optional[str] = None
        self._trace: Optional[AuditTrace] = None
        self._evaluated: List[Tuple[Rule, RuleResult, RuleContext]] = []
        self._violations: List[ViolatedRule] = []

        after_rule: Dict[Strategy, Callable] = {
            Strategy.PREEMPTIVE: self._after_rule_preemptive,
            Strategy.EXHAUSTIVE: self._after_rule_exhaustive,
        }
        self._after_rule = after_rule[self.strategy]

    def _enter(self, state: EvaluationState) -> None:
        self.state = state
        self.transitions.append(state)

    async def run(self, data: Union[BaseModel, Dict[str, Any]]) -> PolicyResult:
        """
        Evaluate the policy.

        Args:
            data: Raw input, merged over the context's default values

        Returns:
            PolicyResult

        Raises:
            SchemaValidationError: If the input does not match the schema
            AuditClosedError: If a rule or hook emits on a closed evaluation
        """
        if self.state is not None:
            raise RuntimeError("PolicyEvaluator instances evaluate exactly once")

        self._enter(EvaluationState.VALIDATING)
        self._input = self.policy.context.validate(data)

        self.evaluation_id = generate_id("eval")
        started = time.perf_counter()
        self._open_audit()

        self._enter(EvaluationState.RUNNING)
        for rule in self.policy.rules.values():
            rule_ctx, result = await self._run_rule(rule)
            self._evaluated.append((rule, result, rule_ctx))
            if not await self._after_rule(rule, result, rule_ctx):
                break

        self._enter(EvaluationState.DECIDING)
        decision = PolicyDecision.DENY if self._violations else PolicyDecision.ALLOW

        if self.strategy == Strategy.EXHAUSTIVE:
            self._enter(EvaluationState.DISPATCHING_HOOKS)
            await self._dispatch_deferred_hooks(decision)

        self._enter(EvaluationState.EMITTING)
        result = PolicyResult(
            decision=decision,
            is_allowed=decision == PolicyDecision.ALLOW,
            reason=(
                PolicyReason.POLICY_ENFORCED
                if decision == PolicyDecision.ALLOW
                else PolicyReason.POLICY_VIOLATED
            ),
            violated_rules=tuple(self._violations),
            evaluated_rules=tuple(
                EvaluatedRule(rule=rule, result=res) for rule, res, _ in self._evaluated
            ),
            strategy=self.strategy,
            evaluation_id=self.evaluation_id,
        )
        self._emit(
            AuditEventType.POLICY_DECISION,
            decision=AuditDecision(outcome=decision.value, reason=result.reason.value),
            parent_id=self._root_id,
        )
        self._emit(
            AuditEventType.POLICY_END,
            duration_ms=(time.perf_counter() - started) * 1000,
            parent_id=self._root_id,
        )

        if result.is_allowed:
            logger.info(f"Policy {self.policy.name}: allow ({len(self._evaluated)} rules) [{self.evaluation_id}]")
        else:
            logger.warning(
                f"Policy {self.policy.name}: deny, violated "
                f"{list(result.violated_rule_names)} [{self.evaluation_id}]"
            )

        self._enter(EvaluationState.DONE)
        return result

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def _open_audit(self) -> None:
        tool = self.policy.context.tools.get("audit")
        create_handler = getattr(tool, "create_handler", None)
        if create_handler is None:
            return

        self._audit = create_handler(self.policy, self.evaluation_id)
        audit_input = getattr(self._input, "audit", None)
        self._trace = getattr(audit_input, "trace", None)
        self._root_id = self._emit(AuditEventType.POLICY_START)

    def _emit(self, event_type: AuditEventType, **kwargs: Any) -> Optional[str]:
        if self._audit is None:
            return None
        return self._audit.emit(event_type, trace=self._trace, **kwargs)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    async def _run_rule(self, rule: Rule) -> Tuple[RuleContext, RuleResult]:
        started = time.perf_counter()
        start_id = self._emit(AuditEventType.RULE_START, rule=rule, parent_id=self._root_id)

        rule_ctx = RuleContext(
            tools=self.policy.context.tools,
            rule=rule,
            evaluation_id=self.evaluation_id,
            audit=self._audit,
            parent_id=start_id,
        )

        try:
            result = await invoke(rule.evaluate, self._input, rule_ctx)
            if not isinstance(result, RuleResult):
                raise TypeError(f"evaluate returned {type(result).__name__}, expected RuleResult")
        except (AuditClosedError, asyncio.CancelledError):
            raise
        except Exception as e:
            error = RuleEvaluationError(rule.name, e)
            logger.warning(f"{error.message} [{self.evaluation_id}]", exc_info=True)
            result = deny(reason=RULE_EVALUATION_ERROR, meta={"error": type(e).__name__})

        self._emit(
            AuditEventType.RULE_DECISION,
            rule=rule,
            decision=AuditDecision(outcome=result.outcome, reason=result.reason),
            parent_id=start_id,
        )
        self._emit(
            AuditEventType.RULE_END,
            rule=rule,
            duration_ms=(time.perf_counter() - started) * 1000,
            parent_id=start_id,
        )
        return rule_ctx, result

    async def _after_rule_preemptive(self, rule: Rule, result: RuleResult, rule_ctx: RuleContext) -> bool:
        if not result.skipped:
            hook = "on_allow" if result.allowed else "on_deny"
            await self._fire_hook(rule, hook, result, rule_ctx)
        if result.is_violation:
            self._violations.append(ViolatedRule(name=rule.name, result=result))
            return False
        return True

    async def _after_rule_exhaustive(self, rule: Rule, result: RuleResult, rule_ctx: RuleContext) -> bool:
        if result.is_violation:
            self._violations.append(ViolatedRule(name=rule.name, result=result))
        return True

    async def _dispatch_deferred_hooks(self, decision: PolicyDecision) -> None:
        for rule, result, rule_ctx in self._evaluated:
            if result.skipped:
                continue
            if result.allowed and decision == PolicyDecision.ALLOW:
                await self._fire_hook(rule, "on_allow", result, rule_ctx)
            elif not result.allowed and decision == PolicyDecision.DENY:
                await self._fire_hook(rule, "on_deny", result, rule_ctx)

    async def _fire_hook(self, rule: Rule, hook_name: str, result: RuleResult, rule_ctx: RuleContext) -> None:
        hook = getattr(rule.hooks, hook_name)
        if hook is None:
            return
        try:
            await invoke(hook, result, self._input, rule_ctx)
        except (AuditClosedError, asyncio.CancelledError):
            raise
        except Exception:
            # Hooks cannot change the decision
            logger.exception(f"Rule '{rule.name}' {hook_name} hook failed [{self.evaluation_id}]")


async def evaluate_policy(
    policy: Policy,
    input: Union[BaseModel, Dict[str, Any]],
    strategy: Optional[Union[Strategy, str]] = None,
) -> PolicyResult:
    """
    Evaluate ``policy`` against ``input``.

    Args:
        policy: Policy to run
        input: Raw input record
        strategy: ``preemptive`` or ``exhaustive``; defaults to the policy's

    Returns:
        PolicyResult

    Raises:
        SchemaValidationError: If the input does not match the context schema
    """
    return await PolicyEvaluator(policy, strategy).run(input)


def evaluate_policy_sync(
    policy: Policy,
    input: Union[BaseModel, Dict[str, Any]],
    strategy: Optional[Union[Strategy, str]] = None,
) -> PolicyResult:
    """Synchronous version of evaluate_policy (for scripts and CLIs)."""
    return asyncio.run(evaluate_policy(policy, input, strategy))
