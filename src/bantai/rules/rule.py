"""Rule definition.

A rule is a named predicate bound to a context. ``evaluate(input, ctx)``
returns a ``RuleResult``; optional hooks run after the policy decision and
can only cause side effects (for example consuming rate limit quota).
"""

import inspect
import logging
import typing
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Union

from pydantic import BaseModel

from bantai.config import settings
from bantai.context.models import Context, Tools
from bantai.errors import RuleDefinitionError
from bantai.ids import normalize_id
from bantai.rules.models import RuleResult

if TYPE_CHECKING:
    from bantai.audit.handler import AuditHandler


logger = logging.getLogger(__name__)

EvaluateFn = Callable[[Any, "RuleContext"], Union[RuleResult, Awaitable[RuleResult]]]
HookFn = Callable[[RuleResult, Any, "RuleContext"], Union[None, Awaitable[None]]]


async def invoke(fn: Callable[..., Any], *args: Any) -> Any:
    """Call a plain or coroutine function and return its result."""
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


@dataclass(frozen=True)
class RuleHooks:
    """Callbacks fired after a decision. They cannot change it."""

    on_allow: Optional[HookFn] = None
    on_deny: Optional[HookFn] = None


@dataclass(frozen=True, eq=False)
class Rule:
    """A named predicate over a context's input. Compared and hashed by identity."""

    name: str
    id: str
    context: Context
    evaluate: EvaluateFn
    hooks: RuleHooks = field(default_factory=RuleHooks)
    version: str = "v1"


@dataclass(frozen=True)
class RuleContext:
    """
    Second argument handed to ``evaluate`` and hooks.

    Attributes:
        tools: Capabilities of the policy's context
        rule: The rule being run
        evaluation_id: Id of the enclosing policy evaluation
        audit: Audit handler of this evaluation, None when not audited
        parent_id: Id of this rule's ``rule.start`` event
    """

    tools: Tools
    rule: Rule
    evaluation_id: str
    audit: Optional["AuditHandler"] = None
    parent_id: Optional[str] = None

    def emit(self, meta: Dict[str, Any]) -> Optional[str]:
        """
        Record an ``extension.event`` under this rule's audit subtree.

        Returns:
            The event id, or None when the evaluation is not audited

        Raises:
            AuditClosedError: If the evaluation already emitted ``policy.end``
        """
        if self.audit is None:
            return None
        return self.audit.emit_extension(meta, rule=self.rule, parent_id=self.parent_id)


def _type_hints(fn: Callable[..., Any]) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(fn)
    except (NameError, TypeError):
        return {}


def check_callable(name: str, role: str, fn: Any, arity: int) -> Optional[inspect.Signature]:
    if not callable(fn):
        raise RuleDefinitionError(f"Rule '{name}': {role} must be callable", {"rule_name": name})
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError):
        # Builtins and some C callables carry no signature
        return None
    try:
        signature.bind(*([None] * arity))
    except TypeError as e:
        raise RuleDefinitionError(
            f"Rule '{name}': {role} must accept {arity} positional arguments ({e})",
            {"rule_name": name},
        ) from e
    return signature


def check_input_contract(context: Context, name: str, fn: Callable[..., Any]) -> None:
    """
    Ensure the input type ``fn`` declares is covered by ``context.schema``.

    Only enforced when the first parameter is annotated with a pydantic
    model; every field of that model must exist on the context schema.
    """
    signature = check_callable(name, "evaluate", fn, 2)
    if signature is None or not signature.parameters:
        return

    first = next(iter(signature.parameters))
    hint = _type_hints(fn).get(first)
    if not (isinstance(hint, type) and issubclass(hint, BaseModel)):
        return

    missing = sorted(set(hint.model_fields) - set(context.schema.model_fields))
    if missing:
        raise RuleDefinitionError(
            f"Rule '{name}' expects fields {missing} that {context.schema.__name__} does not define",
            {"rule_name": name, "missing_fields": missing},
        )


def define_rule(
    context: Context,
    name: str,
    evaluate: EvaluateFn,
    on_allow: Optional[HookFn] = None,
    on_deny: Optional[HookFn] = None,
    version: Optional[str] = None,
) -> Rule:
    """
    Define a rule on a context.

    Args:
        context: Context whose input and tools the rule uses
        name: Unique rule name within a policy
        evaluate: ``(input, ctx) -> RuleResult``, sync or async
        on_allow: ``(result, input, ctx)`` fired when the rule's allow stands
        on_deny: ``(result, input, ctx)`` fired when the rule's deny stands
        version: Rule version recorded in audit events

    Raises:
        RuleDefinitionError: If the callables do not fit the context
    """
    if not name or not isinstance(name, str):
        raise RuleDefinitionError("Rule name must be a non-empty string")

    check_input_contract(context, name, evaluate)
    for role, hook in (("on_allow", on_allow), ("on_deny", on_deny)):
        if hook is not None:
            check_callable(name, role, hook, 3)

    rule = Rule(
        name=name,
        id=f"rule:{normalize_id(name)}",
        context=context,
        evaluate=evaluate,
        hooks=RuleHooks(on_allow=on_allow, on_deny=on_deny),
        version=version or settings.default_version,
    )
    logger.debug(f"Rule defined: {rule.id}")
    return rule
