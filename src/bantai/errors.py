"""Error taxonomy for the policy engine.

Only schema and configuration errors are meant to reach callers of
``evaluate_policy``. Faults raised inside rules are converted into denials by
the evaluator and surface only through logging.
"""

import time
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError


class BantaiError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = {"timestamp": int(time.time() * 1000), **(context or {})}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view of the error."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "context": self.context,
        }


def extract_field_errors(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    """Flatten pydantic errors into ``{"field", "type", "msg"}`` records."""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "type": error["type"],
            "msg": error["msg"],
        })
    return errors


class SchemaValidationError(BantaiError):
    """Input did not match the context schema. Fatal for an evaluation."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        self.errors = errors or []
        super().__init__(message, {"errors": self.errors})

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError, message: str = "VALIDATION_ERROR: Schema validation failed"):
        return cls(message, extract_field_errors(exc))


class RuleDefinitionError(BantaiError):
    """A rule was defined against a context it cannot run on."""


class PolicyDefinitionError(BantaiError):
    """A policy was assembled from an invalid set of rules."""


class RuleEvaluationError(BantaiError):
    """A rule raised while evaluating. Recovered as a deny by the evaluator."""

    def __init__(self, rule_name: str, cause: BaseException):
        self.rule_name = rule_name
        self.cause = cause
        super().__init__(
            f"Rule '{rule_name}' raised {type(cause).__name__}: {cause}",
            {"rule_name": rule_name},
        )


class AuditClosedError(BantaiError):
    """An audit event was emitted after ``policy.end``."""


class InvalidRateLimitConfig(BantaiError):
    """Rate limit configuration is incomplete or malformed."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        self.errors = errors or []
        super().__init__(message, {"errors": self.errors})


class PolicyViolationError(BantaiError):
    """Raised on demand when a policy evaluation ends in a deny."""

    def __init__(self, policy, result, message: str = "Policy violated error"):
        self.policy = policy
        self.result = result
        super().__init__(message, {
            "policy_name": policy.name,
            "evaluation_id": result.evaluation_id,
        })

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["result"] = {
            "decision": self.result.decision,
            "reason": self.result.reason,
            "violated_rules": [
                {"name": v.name, "reason": v.result.reason}
                for v in self.result.violated_rules
            ],
        }
        return data

    def prettify(self) -> str:
        """Human-readable summary listing each violated rule."""
        lines = [f"[Policy] {self.policy.name} violated: {self.result.reason}"]
        for violation in self.result.violated_rules:
            lines.append(f"- {violation.name}: {violation.result.reason}")
        return "\n".join(lines)
