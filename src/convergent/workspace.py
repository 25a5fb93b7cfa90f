"""Workspace — desired resources and engine settings gathered from configuration."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any, overload

from pydantic import BaseModel, Field

from .adapter import get_schema
from .resolve import Resolver
from .schema import AttributeSet

logger = logging.getLogger(__name__)


class DesiredResource(BaseModel):
    """One resource instance as declared in configuration."""

    kind: str
    name: str
    attributes: dict[str, Any] = Field(default_factory=dict)

    @property
    def address(self) -> str:
        return f"{self.kind}.{self.name}"

    def validate_attributes(self) -> AttributeSet:
        return get_schema(self.kind).validate(self.attributes)


class Settings(BaseModel):
    """Engine settings from an optional `settings` block."""

    model_config = {"extra": "forbid"}

    parallelism: int = Field(default=4, ge=1)
    state: str | None = None


class Workspace(Mapping[str, DesiredResource]):
    """Desired resources keyed by address, accumulated from parsed configuration."""

    def __init__(self, context: dict[str, Any] | None = None) -> None:
        self._context = context or {}
        self._resolver = Resolver(self._context)
        self._resources: dict[str, DesiredResource] = {}
        self._settings: Settings | None = None

    @property
    def settings(self) -> Settings:
        return self._settings or Settings()

    def add(self, resource: DesiredResource) -> None:
        """Register a desired resource; raises ValueError on a duplicate address."""
        if resource.address in self._resources:
            raise ValueError(f"Duplicate resource: '{resource.address}'")
        logger.debug("Found resource '%s'", resource.address)
        self._resources[resource.address] = resource

    def load(self, data: dict[str, Any]) -> None:
        """Extract resource and settings blocks from a parsed data dict.

        HCL2 structure for resource blocks:
            {"resource": [{"kind": {"name": {attrs}}}, ...]}
        """
        for block in data.get("resource", []):
            for kind, named in block.items():
                get_schema(kind)
                for name, attrs in named.items():
                    resolved = self._resolver.resolve(dict(attrs))
                    self.add(DesiredResource(kind=kind, name=name, attributes=resolved))

        for block in data.get("settings", []):
            if self._settings is not None:
                raise ValueError("Duplicate settings block")
            self._settings = Settings(**self._resolver.resolve(dict(block)))
            logger.debug("Loaded settings: %s", self._settings)

    def scan(self, path: str | Path, *, recurse: bool = True) -> None:
        """Load every .hcl file under path, in sorted order."""
        from .hcl import load

        root = Path(path)
        pattern = "**/*.hcl" if recurse else "*.hcl"
        files = sorted(root.glob(pattern))
        logger.debug("Scanning %s: %d file(s)", root, len(files))
        for file in files:
            self.load(load(file, context=self._context))

    def __getitem__(self, address: str) -> DesiredResource:
        return self._resources[address]

    def __contains__(self, address: object) -> bool:
        return address in self._resources

    def __iter__(self) -> Iterator[str]:
        return iter(self._resources)

    def __len__(self) -> int:
        return len(self._resources)

    @overload
    def get(self, address: str) -> DesiredResource | None: ...
    @overload
    def get(self, address: str, default: DesiredResource) -> DesiredResource: ...
    def get(self, address: str, default: Any = None) -> DesiredResource | None:
        return self._resources.get(address, default)

    def filter(self, addresses: Iterable[str]) -> list[DesiredResource]:
        """Return resources matching the given addresses, preserving input order."""
        return [r for a in addresses if (r := self._resources.get(a)) is not None]

    def of_kind(self, kind: str) -> list[DesiredResource]:
        return [r for r in self._resources.values() if r.kind == kind]

    def __repr__(self) -> str:
        return f"Workspace(resources={len(self._resources)}, settings={self._settings is not None})"
