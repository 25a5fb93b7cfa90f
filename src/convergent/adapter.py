"""Remote adapter ABC and resource kind registration."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, ClassVar

from .schema import AttributeSet, Schema

logger = logging.getLogger(__name__)

# -- Adapter Registry --

_adapter_registry: dict[str, type[ResourceAdapter[Any]]] = {}


def resource(kind: str):
    """Register a ResourceAdapter class under a resource kind."""

    def decorator(cls):
        cls.kind = kind
        _adapter_registry[kind] = cls
        return cls

    return decorator


def adapter_class(kind: str) -> type[ResourceAdapter[Any]]:
    if kind not in _adapter_registry:
        raise ValueError(f"Unknown resource kind: '{kind}'")
    return _adapter_registry[kind]


def get_schema(kind: str) -> Schema:
    """Return the schema declared by the adapter registered for kind."""
    return adapter_class(kind).schema


def registered_kinds() -> list[str]:
    return sorted(_adapter_registry)


def build_adapters[T](transport: T, kinds: list[str] | None = None) -> dict[str, ResourceAdapter[T]]:
    """Instantiate the registered adapters for kinds, sharing one transport."""
    names = kinds if kinds is not None else registered_kinds()
    return {kind: adapter_class(kind)(transport) for kind in names}


# -- ResourceAdapter ABC --


class ResourceAdapter[T](ABC):
    """Translates attribute sets to remote calls for one resource kind.

    The transport handle is passed in at construction; adapters never reach
    for process-wide client state.
    """

    kind: ClassVar[str]
    schema: ClassVar[Schema]

    def __init__(self, transport: T) -> None:
        self.transport = transport

    @abstractmethod
    def create(self, desired: AttributeSet) -> str:
        """Create the remote object and return its identifier."""

    @abstractmethod
    def read(self, ident: str) -> AttributeSet | None:
        """Fetch current remote attributes, or None if the object is gone."""

    @abstractmethod
    def update(self, ident: str, changes: Mapping[str, Any]) -> None:
        """Send a partial update of mutable attributes."""

    @abstractmethod
    def delete(self, ident: str) -> None:
        """Delete the remote object; an already missing object is not an error."""

    def import_state(self, external_id: str) -> AttributeSet | None:
        """Adopt an existing remote object using its identifier as-is."""
        logger.debug("Importing %s '%s'", self.kind, external_id)
        return self.read(external_id)

    def _check_mutable(self, changes: Mapping[str, Any]) -> None:
        forced = set(self.schema.immutable) & set(changes)
        if forced:
            names = ", ".join(sorted(forced))
            raise ValueError(f"Cannot update immutable attribute(s) of {self.kind}: {names}")
