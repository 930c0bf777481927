"""Policy definition."""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Union

from bantai.config import settings
from bantai.context.models import Context
from bantai.errors import PolicyDefinitionError, PolicyViolationError
from bantai.ids import normalize_id
from bantai.policy.models import PolicyDecision, PolicyResult, Strategy
from bantai.rules.rule import Rule


logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Policy:
    """A named, ordered rule set evaluated against one context. Compared and hashed by identity."""

    name: str
    id: str
    context: Context
    rules: Mapping[str, Rule]
    default_strategy: Strategy = Strategy.PREEMPTIVE
    version: str = "v1"


def define_policy(
    context: Context,
    name: str,
    rules: Iterable[Rule],
    default_strategy: Optional[Union[Strategy, str]] = None,
    version: Optional[str] = None,
) -> Policy:
    """
    Define a policy.

    Rules run in the order given; in exhaustive mode violations are listed
    in that same order.

    Args:
        context: Context inputs are validated against
        name: Policy name
        rules: Rules defined on this context (or on a context it extends)
        default_strategy: Strategy when the caller does not pass one
        version: Policy version recorded in audit events

    Raises:
        PolicyDefinitionError: On duplicate rule names or rules that need
            fields the policy context lacks
    """
    rules_by_name = {}
    context_fields = set(context.schema.model_fields)

    for rule in rules:
        if not isinstance(rule, Rule):
            raise PolicyDefinitionError(
                f"Policy '{name}' received a non-rule: {rule!r}", {"policy_name": name}
            )
        if rule.name in rules_by_name:
            raise PolicyDefinitionError(
                f"Policy '{name}' has more than one rule named '{rule.name}'",
                {"policy_name": name, "rule_name": rule.name},
            )
        missing = sorted(set(rule.context.schema.model_fields) - context_fields)
        if missing:
            raise PolicyDefinitionError(
                f"Rule '{rule.name}' needs fields {missing} missing from policy '{name}' context",
                {"policy_name": name, "rule_name": rule.name, "missing_fields": missing},
            )
        rules_by_name[rule.name] = rule

    strategy = Strategy(default_strategy or settings.default_strategy)

    policy = Policy(
        name=name,
        id=f"policy:{normalize_id(name)}",
        context=context,
        rules=MappingProxyType(rules_by_name),
        default_strategy=strategy,
        version=version or settings.default_version,
    )
    logger.info(f"Policy defined: {policy.id} with {len(rules_by_name)} rules ({strategy.value})")
    return policy


def raise_on_deny(
    result: PolicyResult,
    policy: Policy,
    message: str = "Policy violated error",
) -> None:
    """
    Turn a deny into an exception.

    Raises:
        PolicyViolationError: If ``result`` is a deny
    """
    if result.decision == PolicyDecision.ALLOW:
        return
    raise PolicyViolationError(policy, result, message)
