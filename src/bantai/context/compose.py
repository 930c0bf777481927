"""Context factories and capability composers.

Every function here is pure: it returns a new ``Context`` and leaves its
arguments untouched. Capability composers (``with_storage``, ``with_audit``,
``with_rate_limit``) are all thin wrappers over ``extend_context``.
"""

import logging
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, create_model

from bantai.context.models import Context, Tools, validate_default_values
from bantai.storage.base import StorageAdapter


logger = logging.getLogger(__name__)

FieldSpec = Tuple[Any, Any]


def define_context(
    schema: Type[BaseModel],
    default_values: Optional[Mapping[str, Any]] = None,
    tools: Optional[Mapping[str, Any]] = None,
) -> Context:
    """
    Create a context.

    Args:
        schema: Pydantic model every evaluation input is validated with
        default_values: Partial record merged under each input
        tools: Named capabilities exposed to rules and hooks

    Raises:
        SchemaValidationError: If a default value does not fit the schema
    """
    if not (isinstance(schema, type) and issubclass(schema, BaseModel)):
        raise TypeError(f"Context schema must be a pydantic model class, got {schema!r}")

    defaults = validate_default_values(schema, default_values or {})
    registry = tools if isinstance(tools, Tools) else Tools(tools)

    logger.debug(f"Context defined: {schema.__name__} tools=[{', '.join(registry)}]")
    return Context(schema=schema, default_values=MappingProxyType(defaults), tools=registry)


def extend_schema(schema: Type[BaseModel], fields: Mapping[str, FieldSpec]) -> Type[BaseModel]:
    """Subclass ``schema`` with extra ``name=(type, default)`` fields."""
    if not fields:
        return schema
    return create_model(schema.__name__, __base__=schema, **dict(fields))


def extend_context(
    context: Context,
    fields: Optional[Mapping[str, FieldSpec]] = None,
    tools: Optional[Mapping[str, Any]] = None,
    default_values: Optional[Mapping[str, Any]] = None,
) -> Context:
    """
    Derive a context with extra input fields, tools and defaults.

    New tools are registered over the existing registry (new names win),
    new defaults are merged over the existing ones.
    """
    schema = extend_schema(context.schema, fields or {})
    registry = context.tools.merge(tools or {})
    defaults = {**context.default_values, **(default_values or {})}
    return define_context(schema, default_values=defaults, tools=registry)


def with_storage(context: Context, storage: StorageAdapter) -> Context:
    """Register ``storage`` as a tool. The schema is unchanged."""
    return define_context(
        context.schema,
        default_values=context.default_values,
        tools=context.tools.register("storage", storage, StorageAdapter),
    )


def _deep_merge(target: Dict[str, Any], source: Mapping[str, Any]) -> Dict[str, Any]:
    result = dict(target)
    for key, value in source.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = _deep_merge(dict(current), value)
        else:
            result[key] = value
    return result


def compose_context(*contexts: Context) -> Context:
    """
    Merge several contexts into one.

    Schema fields, default values and tools of later contexts take
    precedence. Default values are merged recursively for nested dicts.

    Raises:
        ValueError: If no context is given
    """
    if not contexts:
        raise ValueError("compose_context requires at least one context")
    if len(contexts) == 1:
        return contexts[0]

    # Later contexts first in the MRO so their fields override
    bases = []
    for ctx in reversed(contexts):
        if ctx.schema not in bases:
            bases.append(ctx.schema)
    # A schema already inherited by another base would break the MRO
    bases = [b for b in bases if not any(o is not b and issubclass(o, b) for o in bases)]
    name = "".join(ctx.schema.__name__ for ctx in contexts)
    schema = create_model(name, __base__=tuple(bases))

    defaults: Dict[str, Any] = {}
    registry = Tools()
    for ctx in contexts:
        defaults = _deep_merge(defaults, ctx.default_values)
        registry = registry.merge(ctx.tools)

    return define_context(schema, default_values=defaults, tools=registry)
