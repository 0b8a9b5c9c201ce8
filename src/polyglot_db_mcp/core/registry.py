"""
Adapter registry.

The registry is the authoritative catalogue of backend adapters compiled into
the gateway. It is assembled once at start-up and frozen; construction fails
fast when two adapters share a name or when two operations (across all
adapters) share a name, so a collision can never surface at call time.

Alongside the ordered adapter mapping, the registry keeps the flattened
operation table used for constant-time dispatch. Both are plain dictionaries
that are never mutated after :meth:`AdapterRegistry.freeze`, which makes
concurrent lookups safe without locking.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Mapping, MutableMapping, Optional

from .descriptors import NAME_PATTERN, OperationDescriptor
from .errors import AdapterNotFoundError, RegistryLoadError
from .logging import get_logger

if TYPE_CHECKING:
    from ..adapters.base import BackendAdapter

LOGGER = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class OperationBinding:
    """Entry of the flattened operation table."""

    adapter: "BackendAdapter"
    operation: OperationDescriptor


class AdapterRegistry:
    """Ordered, validated catalogue of :class:`BackendAdapter` instances."""

    def __init__(self, *, reserved: Iterable[str] = ()) -> None:
        self._adapters: MutableMapping[str, "BackendAdapter"] = {}
        self._operations: MutableMapping[str, OperationBinding] = {}
        self._reserved = frozenset(reserved)
        self._frozen = False

    @classmethod
    def build(cls, adapters: Iterable["BackendAdapter"], *, reserved: Iterable[str] = ()) -> "AdapterRegistry":
        """
        Register every adapter in order and freeze the result.

        Parameters
        ----------
        adapters:
            Adapter instances in registration (listing) order.
        reserved:
            Operation names owned by the gateway itself (``db_list`` and friends).
            Adapters may not publish them.

        Raises
        ------
        RegistryLoadError
            On the first invariant violation.
        """

        registry = cls(reserved=reserved)
        for adapter in adapters:
            registry.register(adapter)
        registry.freeze()
        LOGGER.debug(
            "Adapter registry built",
            extra={"adapters": len(registry), "operations": len(registry._operations)},
        )
        return registry

    def register(self, adapter: "BackendAdapter") -> None:
        """Validate and add one adapter together with its operations."""

        if self._frozen:
            raise RegistryLoadError(f"Registry is frozen; cannot register adapter '{adapter.name}'.")
        self._validate_adapter(adapter)
        if adapter.name in self._adapters:
            raise RegistryLoadError(f"Duplicate adapter name '{adapter.name}'.")

        staged: Dict[str, OperationBinding] = {}
        for op_name, descriptor in adapter.operations.items():
            if op_name in self._reserved:
                raise RegistryLoadError(f"Adapter '{adapter.name}' publishes reserved operation name '{op_name}'.")
            existing = self._operations.get(op_name)
            if existing is not None:
                raise RegistryLoadError(f"Duplicate operation name '{op_name}' published by adapters '{existing.adapter.name}' and '{adapter.name}'.")
            staged[op_name] = OperationBinding(adapter=adapter, operation=descriptor)

        self._adapters[adapter.name] = adapter
        self._operations.update(staged)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Optional["BackendAdapter"]:
        """Retrieve an adapter if present."""

        return self._adapters.get(name)

    def require(self, name: str) -> "BackendAdapter":
        """Retrieve an adapter or raise :class:`AdapterNotFoundError`."""

        adapter = self.get(name)
        if adapter is None:
            raise AdapterNotFoundError(f"Unknown database: {name}. Use db_list to see available databases.")
        return adapter

    def resolve(self, operation: str) -> Optional[OperationBinding]:
        """Look up the owning adapter and descriptor of an operation."""

        return self._operations.get(operation)

    def adapters(self) -> List["BackendAdapter"]:
        """Return adapters in registration order."""

        return list(self._adapters.values())

    def names(self) -> List[str]:
        return list(self._adapters)

    def operations(self) -> List[OperationBinding]:
        """Return the flattened operation table in registration order."""

        return list(self._operations.values())

    @property
    def operation_table(self) -> Mapping[str, OperationBinding]:
        return MappingProxyType(self._operations)

    def __len__(self) -> int:
        return len(self._adapters)

    def __contains__(self, name: object) -> bool:
        return name in self._adapters

    def __iter__(self) -> Iterator["BackendAdapter"]:
        return iter(list(self._adapters.values()))

    @staticmethod
    def _validate_adapter(adapter: "BackendAdapter") -> None:
        name = getattr(adapter, "name", None)
        if not isinstance(name, str) or not NAME_PATTERN.match(name):
            raise RegistryLoadError(f"Adapter name '{name}' must start with a lowercase letter and contain only lowercase letters, digits or underscores.")
        if not adapter.description or not adapter.description.strip():
            raise RegistryLoadError(f"Adapter '{name}' is missing a description.")
        if not adapter.operations:
            raise RegistryLoadError(f"Adapter '{name}' does not publish any operations.")

        prefixes = tuple(f"{prefix}_" for prefix in adapter.prefixes)
        for op_name, descriptor in adapter.operations.items():
            if op_name != descriptor.name:
                raise RegistryLoadError(f"Adapter '{name}' maps '{op_name}' to a descriptor named '{descriptor.name}'.")
            descriptor.validate()
            if not op_name.startswith(prefixes):
                raise RegistryLoadError(f"Operation '{op_name}' of adapter '{name}' must be prefixed with one of: {', '.join(prefixes)}")
