"""Resolver — expand ${...} references in parsed configuration values."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable, Mapping
from typing import Any

logger = logging.getLogger(__name__)

_INTERP_PATTERN = re.compile(r"\$\$\{|(\$\{([^{}]+)\})")
_FULL_PATTERN = re.compile(r"\$\{([^{}]+)\}")


def builtin_context() -> dict[str, Any]:
    """Names always available to interpolation: env.* and cwd."""
    return {"env": dict(os.environ), "cwd": os.getcwd}


class Resolver:
    """Resolve ${...} references against a context mapping.

    A value that is exactly one ${ref} keeps the referenced object's type;
    references embedded in longer strings are stringified. $${ is a literal ${.
    """

    def __init__(self, context: Mapping[str, Any] | None = None) -> None:
        self._context: dict[str, Any] = builtin_context()
        self._context.update(context or {})

    def lookup(self, ref: str) -> Any:
        """Follow a dotted reference through mappings and attributes."""
        current: Any = self._context
        for part in ref.split("."):
            if isinstance(current, Mapping) and part in current:
                current = current[part]
            elif hasattr(current, part):
                current = getattr(current, part)
            else:
                raise ValueError(f"undefined variable '{ref}'")

        if callable(current) and not isinstance(current, type):
            current = current()
        return current

    def _expand(self, value: str) -> Any:
        if "${" not in value:
            return value
        if match := _FULL_PATTERN.fullmatch(value):
            return self.lookup(match.group(1).strip())

        def _replace(m: re.Match[str]) -> str:
            if m.group(0) == "$${":
                return "${"
            return str(self.lookup(m.group(2).strip()))

        return _INTERP_PATTERN.sub(_replace, value)

    def resolve(self, obj: Any) -> Any:
        """Recursively expand references in dicts, lists and strings."""
        return _walk(obj, self._expand)


def _walk(obj: Any, expand: Callable[[str], Any]) -> Any:
    if isinstance(obj, dict):
        return {k: _walk(v, expand) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk(item, expand) for item in obj]
    if isinstance(obj, str):
        return expand(obj)
    return obj
