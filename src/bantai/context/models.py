"""Context data model: schema, default values and the tools registry."""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Annotated, Any, Dict, Iterator, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, TypeAdapter
from pydantic.fields import FieldInfo
from pydantic import ValidationError as PydanticValidationError

from bantai.errors import SchemaValidationError, extract_field_errors


logger = logging.getLogger(__name__)


class Tools(Mapping[str, Any]):
    """
    Immutable registry of named capabilities shared by rules.

    ``register`` never mutates; it returns a new registry where the new
    name wins over an existing one and every other entry is kept, so
    registering unrelated names commutes.

    Capabilities are reachable by item or attribute access:
    ``tools["audit"]`` and ``tools.audit`` are the same object.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Optional[Mapping[str, Any]] = None):
        registered: Dict[str, Any] = {}
        for name, capability in (entries or {}).items():
            self._check(name, capability)
            registered[name] = capability
        object.__setattr__(self, "_entries", MappingProxyType(registered))

    @staticmethod
    def _check(name: str, capability: Any) -> None:
        if not isinstance(name, str) or not name.isidentifier():
            raise ValueError(f"Tool name must be a valid identifier, got {name!r}")
        if capability is None:
            raise ValueError(f"Tool '{name}' cannot be None")

    def register(self, name: str, capability: Any, expected_type: Optional[type] = None) -> "Tools":
        """
        Return a new registry with ``capability`` registered under ``name``.

        Args:
            name: Identifier the capability is looked up by
            capability: The tool object
            expected_type: Checked with isinstance at registration time
        """
        if expected_type is not None and not isinstance(capability, expected_type):
            raise TypeError(
                f"Tool '{name}' must be {expected_type.__name__}, got {type(capability).__name__}"
            )
        return self.merge({name: capability})

    def merge(self, other: Mapping[str, Any]) -> "Tools":
        """Shallow merge; entries of ``other`` win on name collision."""
        return Tools({**self._entries, **dict(other)})

    def __getitem__(self, name: str) -> Any:
        return self._entries[name]

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._entries[name]
        except KeyError:
            raise AttributeError(f"No tool registered under '{name}'") from None

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Tools is immutable; use register()")

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"Tools({', '.join(self._entries)})"


def _field_type(field_info: FieldInfo) -> Any:
    """Field annotation with its constraints (ge, max_length, ...) reattached."""
    if field_info.metadata:
        return Annotated[(field_info.annotation, *field_info.metadata)]
    return field_info.annotation


def validate_default_values(schema: Type[BaseModel], values: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate a partial record against ``schema``, field by field.

    Raises:
        SchemaValidationError: On unknown fields or values of the wrong type
    """
    validated: Dict[str, Any] = {}
    errors = []
    for name, value in values.items():
        field_info = schema.model_fields.get(name)
        if field_info is None:
            errors.append({"field": name, "type": "extra_forbidden", "msg": "Unknown field"})
            continue
        try:
            validated[name] = TypeAdapter(_field_type(field_info)).validate_python(value)
        except PydanticValidationError as e:
            for error in extract_field_errors(e):
                error["field"] = ".".join(filter(None, [name, error["field"]]))
                errors.append(error)

    if errors:
        logger.error(f"Default values rejected by {schema.__name__}: {errors}")
        raise SchemaValidationError("VALIDATION_ERROR: Invalid default values", errors)
    return validated


@dataclass(frozen=True, eq=False)
class Context:
    """
    Input schema plus the shared capabilities rules operate over.

    Built once at startup and shared by every rule and policy defined on it.
    Compared and hashed by identity.
    """

    schema: Type[BaseModel]
    default_values: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    tools: Tools = field(default_factory=Tools)

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(self.schema.model_fields)

    def validate(self, data: Any) -> BaseModel:
        """
        Merge ``data`` over the default values and validate it.

        Args:
            data: Mapping or pydantic model with the caller's input

        Returns:
            A validated instance of ``schema``

        Raises:
            SchemaValidationError: If the merged record fails validation
        """
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        merged = {**self.default_values, **dict(data or {})}
        try:
            return self.schema.model_validate(merged)
        except PydanticValidationError as e:
            error = SchemaValidationError.from_pydantic(e)
            logger.error(f"Schema validation failed for {self.schema.__name__}: {error.errors}")
            raise error from e
