"""Contexts: input schema, default values and shared tools."""

from bantai.context.models import Context, Tools, validate_default_values
from bantai.context.compose import (
    compose_context,
    define_context,
    extend_context,
    extend_schema,
    with_storage,
)

__all__ = [
    "Context",
    "Tools",
    "validate_default_values",
    "compose_context",
    "define_context",
    "extend_context",
    "extend_schema",
    "with_storage",
]
