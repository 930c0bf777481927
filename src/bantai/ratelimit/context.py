"""Rate limiting as a context capability, and the rule wrapper built on it."""

import logging
from typing import Any, Callable, Dict, Mapping, Optional, Union

from pydantic import BaseModel

from bantai.context.compose import extend_context, with_storage
from bantai.context.models import Context
from bantai.errors import RuleDefinitionError
from bantai.ratelimit.limiter import Clock, RateLimiter, check_rate_limit, increment_rate_limit
from bantai.ratelimit.models import RateLimitCheckResult, RateLimitInput
from bantai.rules.models import RuleResult, allow, deny
from bantai.rules.rule import HookFn, Rule, RuleContext, check_callable, define_rule, invoke
from bantai.storage.base import StorageAdapter


logger = logging.getLogger(__name__)

PartialConfig = Union[RateLimitInput, Mapping[str, Any]]
KeyFn = Callable[[Any], Optional[str]]


def with_rate_limit(
    context: Context,
    storage: StorageAdapter,
    default_values: Optional[PartialConfig] = None,
    clock: Optional[Clock] = None,
) -> Context:
    """
    Extend a context with rate limiting.

    Adds an optional ``rate_limit`` input field carrying a partial config,
    and registers the ``rate_limit`` (``RateLimiter``) and ``storage`` tools.

    Args:
        context: Context to extend
        storage: Adapter holding rate limit payloads
        default_values: Partial config used when an input carries none
        clock: Millisecond clock, defaults to the system clock
    """
    defaults = {}
    if default_values:
        defaults["rate_limit"] = RateLimitInput.model_validate(_partial(default_values))

    extended = extend_context(
        context,
        fields={"rate_limit": (Optional[RateLimitInput], None)},
        tools={"rate_limit": RateLimiter(storage, clock=clock)},
        default_values=defaults,
    )
    return with_storage(extended, storage)


def _partial(config: Any) -> Dict[str, Any]:
    """Non-empty entries of a partial config."""
    if config is None:
        return {}
    if isinstance(config, BaseModel):
        config = config.model_dump()
    return {k: v for k, v in dict(config).items() if v is not None}


def define_rate_limit_rule(
    context: Context,
    name: str,
    evaluate: Optional[Callable[[Any, RuleContext, RateLimitCheckResult], Any]] = None,
    config: Optional[PartialConfig] = None,
    on_allow: Optional[HookFn] = None,
    on_deny: Optional[HookFn] = None,
    key_fn: Optional[KeyFn] = None,
    version: Optional[str] = None,
) -> Rule:
    """
    Define a rule that enforces a quota before running its own logic.

    The rule checks the quota and denies with the limiter's reason when it is
    exhausted. Otherwise it calls ``evaluate(input, ctx, current_limit)``, or
    allows when no ``evaluate`` is given. Quota is only consumed from the
    ``on_allow`` hook. Under the exhaustive strategy that hook runs once the
    whole policy has allowed the request. Under the preemptive strategy it runs
    as soon as this rule allows, so a later rule's denial does not refund the
    quota.

    The quota key is ``rules:<name>:<key>`` where ``<key>`` comes from
    ``input.rate_limit.key``, then ``key_fn(input)``, then ``unknown-key``.
    The effective config layers the context defaults, the input's
    ``rate_limit`` and finally ``config``.

    Args:
        context: Context extended with ``with_rate_limit``
        name: Rule name
        evaluate: Optional ``(input, ctx, current_limit) -> RuleResult``
        config: Static partial config, overriding the input
        on_allow: Called after the counter is incremented
        on_deny: Called when the rule's deny stands
        key_fn: Derives a quota key from the input
        version: Rule version recorded in audit events

    Raises:
        RuleDefinitionError: If the context lacks the rate limit tools
    """
    if "rate_limit" not in context.tools or "storage" not in context.tools:
        raise RuleDefinitionError(
            f"Rule '{name}': rate limit and storage tools are required, extend the context with with_rate_limit",
            {"rule_name": name},
        )
    if evaluate is not None:
        check_callable(name, "evaluate", evaluate, 3)
    if key_fn is not None:
        check_callable(name, "key_fn", key_fn, 1)

    context_defaults = context.default_values.get("rate_limit")
    static_config = _partial(config)

    def effective_config(data: Any) -> Dict[str, Any]:
        from_input = _partial(getattr(data, "rate_limit", None))
        key = from_input.get("key") or (key_fn(data) if key_fn else None) or "unknown-key"
        return {
            **_partial(context_defaults),
            **from_input,
            **static_config,
            "key": f"rules:{name}:{key}",
        }

    async def evaluate_with_limit(data: Any, ctx: RuleContext) -> RuleResult:
        limiter = ctx.tools["rate_limit"]
        current = await check_rate_limit(ctx.tools["storage"], effective_config(data), limiter.clock)
        if not current.allowed:
            logger.warning(f"Rule '{name}' rate limited: {current.reason}")
            return deny(reason=current.reason or "rate_limit_exceeded")
        if evaluate is None:
            return allow(reason=current.reason)
        return await invoke(evaluate, data, ctx, current)

    async def increment_on_allow(result: RuleResult, data: Any, ctx: RuleContext) -> None:
        limiter = ctx.tools["rate_limit"]
        await increment_rate_limit(ctx.tools["storage"], effective_config(data), limiter.clock)
        if on_allow is not None:
            await invoke(on_allow, result, data, ctx)

    return define_rule(
        context,
        name,
        evaluate_with_limit,
        on_allow=increment_on_allow,
        on_deny=on_deny,
        version=version,
    )
