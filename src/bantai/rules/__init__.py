"""Rules: named predicates over a context's input."""

from bantai.rules.models import RuleResult, allow, deny, skip
from bantai.rules.rule import (
    Rule,
    RuleContext,
    RuleHooks,
    check_callable,
    check_input_contract,
    define_rule,
    invoke,
)

__all__ = [
    "RuleResult",
    "allow",
    "deny",
    "skip",
    "Rule",
    "RuleContext",
    "RuleHooks",
    "check_callable",
    "check_input_contract",
    "define_rule",
    "invoke",
]
