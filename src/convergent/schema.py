"""Resource schema descriptors and typed attribute sets."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .errors import ValidationError

logger = logging.getLogger(__name__)

type Validator = Callable[[Any], str | None]


class AttrType(StrEnum):
    STRING = "string"
    BOOL = "bool"
    INT = "int"
    ENUM = "enum"


_PY_TYPES: dict[AttrType, type] = {
    AttrType.STRING: str,
    AttrType.BOOL: bool,
    AttrType.INT: int,
    AttrType.ENUM: str,
}


# -- Validators --


def string_in_slice(values: Iterable[str], *, ignore_case: bool = True) -> Validator:
    """Accept strings matching one of the given tokens."""
    allowed = tuple(values)
    folded = {v.casefold() for v in allowed} if ignore_case else set(allowed)

    def validate(value: Any) -> str | None:
        key = value.casefold() if ignore_case else value
        if key in folded:
            return None
        return f"expected one of {', '.join(allowed)}, got '{value}'"

    return validate


def int_between(low: int, high: int) -> Validator:
    """Accept integers in the closed range [low, high]."""

    def validate(value: Any) -> str | None:
        if low <= value <= high:
            return None
        return f"expected to be in the range ({low} - {high}), got {value}"

    return validate


# -- Attribute definitions --


@dataclass(frozen=True)
class Attribute:
    """A single typed attribute of a resource kind."""

    name: str
    type: AttrType
    required: bool = False
    immutable: bool = False
    default: Any = None
    choices: tuple[str, ...] = ()
    validators: tuple[Validator, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        if self.type is AttrType.ENUM and not self.choices:
            raise ValueError(f"Enum attribute '{self.name}' needs choices")

    def _type_error(self, value: Any) -> str | None:
        expected = _PY_TYPES[self.type]
        # bool is an int subclass; keep the two apart
        if isinstance(value, bool) and expected is not bool:
            return f"expected {self.type}, got bool"
        if not isinstance(value, expected):
            return f"expected {self.type}, got {type(value).__name__}"
        return None

    def validate(self, value: Any) -> str | None:
        """Return None if the value is acceptable, otherwise the reason it is not."""
        if reason := self._type_error(value):
            return reason
        if self.required and self.type in (AttrType.STRING, AttrType.ENUM) and not value:
            return "must not be empty"
        if self.choices and (reason := string_in_slice(self.choices)(value)):
            return reason
        for check in self.validators:
            if reason := check(value):
                return reason
        return None

    def normalize(self, value: Any) -> Any:
        """Map an enum value onto its canonical token."""
        if self.type is AttrType.ENUM:
            for choice in self.choices:
                if choice.casefold() == value.casefold():
                    return choice
        return value


@dataclass(frozen=True)
class Schema:
    """Immutable, ordered attribute set for one resource kind."""

    kind: str
    attributes: tuple[Attribute, ...]
    identity: str | None = None
    _by_name: dict[str, Attribute] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_name = {a.name: a for a in self.attributes}
        if len(by_name) != len(self.attributes):
            raise ValueError(f"Duplicate attribute in schema '{self.kind}'")
        if self.identity is not None and self.identity not in by_name:
            raise ValueError(f"Identity attribute '{self.identity}' not in schema '{self.kind}'")
        object.__setattr__(self, "_by_name", by_name)

    def __getitem__(self, name: str) -> Attribute:
        return self._by_name[name]

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[Attribute]:
        return iter(self.attributes)

    @property
    def names(self) -> list[str]:
        return [a.name for a in self.attributes]

    @property
    def required(self) -> list[str]:
        return [a.name for a in self.attributes if a.required]

    @property
    def immutable(self) -> list[str]:
        """Attributes whose change forces replacement."""
        return [a.name for a in self.attributes if a.immutable or a.name == self.identity]

    @property
    def mutable(self) -> list[str]:
        forced = set(self.immutable)
        return [a.name for a in self.attributes if a.name not in forced]

    def validate(self, values: Mapping[str, Any]) -> AttributeSet:
        """Check raw values against this schema and return a typed attribute set.

        All problems are collected and raised together as a ValidationError.
        """
        problems: list[str] = []
        clean: dict[str, Any] = {}

        for name in values:
            if name not in self._by_name:
                problems.append(f"{name}: unknown attribute")

        for attr in self.attributes:
            value = values.get(attr.name)
            if value is None:
                if attr.required:
                    problems.append(f"{attr.name}: required attribute is missing")
                continue
            if reason := attr.validate(value):
                problems.append(f"{attr.name}: {reason}")
                continue
            clean[attr.name] = attr.normalize(value)

        if problems:
            logger.debug("Validation of %s failed: %s", self.kind, problems)
            raise ValidationError(self.kind, problems)
        return AttributeSet(self, clean)


class AttributeSet(Mapping[str, Any]):
    """Validated attribute values; unset optionals read as their schema default."""

    def __init__(self, schema: Schema, values: dict[str, Any]) -> None:
        self._schema = schema
        self._values = dict(values)

    @property
    def schema(self) -> Schema:
        return self._schema

    @property
    def explicit(self) -> frozenset[str]:
        """Names of attributes that were actually supplied."""
        return frozenset(self._values)

    @property
    def ident(self) -> str | None:
        """Identifier inherited from the identity attribute, if the kind has one."""
        if self._schema.identity is None:
            return None
        return self._values.get(self._schema.identity)

    def __getitem__(self, name: str) -> Any:
        if name in self._values:
            return self._values[name]
        attr = self._schema[name]
        if attr.default is None:
            raise KeyError(name)
        return attr.default

    def __iter__(self) -> Iterator[str]:
        for attr in self._schema:
            if attr.name in self._values or attr.default is not None:
                yield attr.name

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def changed(self, other: Mapping[str, Any]) -> list[str]:
        """Names (in schema order) whose effective values differ from other.

        Optional attributes that are unset and have no default are left out.
        """
        return [n for n in self if self[n] != other.get(n)]

    def to_dict(self) -> dict[str, Any]:
        return dict(self)

    def __repr__(self) -> str:
        return f"AttributeSet({self._schema.kind}, {self.to_dict()!r})"
