"""
Typed descriptors for invocable operations and their parameters.

Adapters declare operations with the :func:`operation` decorator; the adapter
base class turns every decorated coroutine method into an
:class:`OperationDescriptor` bound to the adapter instance. The same
descriptors drive introspection (``db_help``, MCP ``tools/list``) and dispatch.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar

from .errors import RegistryLoadError

NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")
OPERATION_SPEC_ATTR = "__operation_spec__"

Handler = Callable[[Mapping[str, Any]], Awaitable[Any]]
F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


class ParamKind(str, Enum):
    """Closed set of parameter kinds, matching JSON Schema primitive type names."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"


@dataclass(frozen=True, slots=True)
class ParameterDescriptor:
    """
    One named input of an operation.

    Parameters
    ----------
    kind:
        Semantic type of the value. Plain strings are coerced into :class:`ParamKind`.
    description:
        Human-readable description shown to callers.
    required:
        Informational flag surfaced in catalogues and JSON Schema. Handlers
        enforce their own required arguments.
    """

    kind: ParamKind
    description: str
    required: bool = False

    def __post_init__(self) -> None:
        try:
            kind = ParamKind(self.kind)
        except ValueError as exc:
            allowed = ", ".join(item.value for item in ParamKind)
            raise RegistryLoadError(f"Unsupported parameter kind '{self.kind}'. Expected one of: {allowed}.") from exc
        object.__setattr__(self, "kind", kind)
        if not self.description or not self.description.strip():
            raise RegistryLoadError("Parameter descriptions must not be empty.")

    def to_schema(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "description": self.description}

    def to_dict(self, name: str) -> Dict[str, Any]:
        return {
            "name": name,
            "type": self.kind.value,
            "description": self.description,
            "required": self.required,
        }


@dataclass(frozen=True, slots=True)
class OperationDescriptor:
    """
    One invocable unit of work.

    Parameters
    ----------
    name:
        Operation name, unique across the whole registry.
    description:
        Human-readable summary.
    handler:
        Coroutine function accepting the argument mapping.
    parameters:
        Parameter name to descriptor mapping. Frozen on construction.
    adapter:
        Name of the owning adapter; ``None`` for gateway meta-operations.
    """

    name: str
    description: str
    handler: Handler = field(repr=False, compare=False)
    parameters: Mapping[str, ParameterDescriptor] = field(default_factory=dict)
    adapter: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    def validate(self) -> None:
        """Check the naming convention and descriptive fields."""

        if not NAME_PATTERN.match(self.name or ""):
            raise RegistryLoadError(f"Operation name '{self.name}' must start with a lowercase letter and contain only lowercase letters, digits or underscores.")
        if not self.description or not self.description.strip():
            raise RegistryLoadError(f"Operation '{self.name}' is missing a description.")
        for param_name, descriptor in self.parameters.items():
            if not param_name.isidentifier():
                raise RegistryLoadError(f"Operation '{self.name}' declares an invalid parameter name '{param_name}'.")
            if not isinstance(descriptor, ParameterDescriptor):
                raise RegistryLoadError(f"Parameter '{param_name}' of '{self.name}' is not a ParameterDescriptor.")

    def required_parameters(self) -> List[str]:
        return [name for name, descriptor in self.parameters.items() if descriptor.required]

    def input_schema(self) -> Dict[str, Any]:
        """Return the JSON Schema advertised to MCP clients."""

        schema: Dict[str, Any] = {
            "type": "object",
            "properties": {name: descriptor.to_schema() for name, descriptor in self.parameters.items()},
        }
        required = self.required_parameters()
        if required:
            schema["required"] = required
        return schema

    def catalogue_entry(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "params": [descriptor.to_dict(name) for name, descriptor in self.parameters.items()],
        }


@dataclass(frozen=True, slots=True)
class OperationSpec:
    """Declaration attached to a handler method by :func:`operation`."""

    description: str
    parameters: Mapping[str, ParameterDescriptor]


def operation(description: str, **parameters: ParameterDescriptor) -> Callable[[F], F]:
    """
    Mark an adapter coroutine method as a published operation.

    The method name becomes the operation name and keyword arguments declare its
    parameters in display order::

        @operation("Run a read-only SQL query", sql=string_param("SQL text", required=True))
        async def sqlite_query(self, args): ...
    """

    def decorator(func: F) -> F:
        setattr(func, OPERATION_SPEC_ATTR, OperationSpec(description=description, parameters=dict(parameters)))
        return func

    return decorator


def string_param(description: str, *, required: bool = False) -> ParameterDescriptor:
    return ParameterDescriptor(ParamKind.STRING, description, required)


def number_param(description: str, *, required: bool = False) -> ParameterDescriptor:
    return ParameterDescriptor(ParamKind.NUMBER, description, required)


def boolean_param(description: str, *, required: bool = False) -> ParameterDescriptor:
    return ParameterDescriptor(ParamKind.BOOLEAN, description, required)


def object_param(description: str, *, required: bool = False) -> ParameterDescriptor:
    return ParameterDescriptor(ParamKind.OBJECT, description, required)


def array_param(description: str, *, required: bool = False) -> ParameterDescriptor:
    return ParameterDescriptor(ParamKind.ARRAY, description, required)
