"""Diff desired attribute sets against stored state into planned changes."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .schema import AttributeSet
from .state import StateRecord

logger = logging.getLogger(__name__)


class Action(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NOOP = "noop"


@dataclass(frozen=True)
class Change:
    """The action needed to converge one resource instance."""

    address: str
    kind: str
    action: Action
    desired: AttributeSet | None = None
    prior: StateRecord | None = None
    changes: dict[str, Any] = field(default_factory=dict)
    forced: tuple[str, ...] = ()

    @property
    def ident(self) -> str | None:
        if self.prior is not None:
            return self.prior.id
        if self.desired is not None:
            return self.desired.ident
        return None

    def describe(self) -> str:
        if self.action is Action.UPDATE:
            return f"{self.action} {self.address} ({', '.join(self.changes)})"
        if self.action is Action.REPLACE:
            return f"{self.action} {self.address} (forced by {', '.join(self.forced)})"
        return f"{self.action} {self.address}"


def diff(
    address: str,
    kind: str,
    desired: AttributeSet | None,
    prior: StateRecord | None,
) -> Change:
    """Compute the change that takes prior to desired."""
    if desired is None and prior is None:
        return Change(address, kind, Action.NOOP)
    if prior is None:
        return Change(address, kind, Action.CREATE, desired=desired)
    if desired is None:
        return Change(address, kind, Action.DELETE, prior=prior)

    changed = desired.changed(prior.attributes)
    immutable = set(desired.schema.immutable)
    forced = tuple(n for n in changed if n in immutable)
    if forced:
        action = Action.REPLACE
    elif changed:
        action = Action.UPDATE
    else:
        action = Action.NOOP

    logger.debug("%s: %s %s", address, action, changed)
    return Change(
        address,
        kind,
        action,
        desired=desired,
        prior=prior,
        changes={n: desired[n] for n in changed if n not in immutable},
        forced=forced,
    )


@dataclass
class Plan:
    """Ordered set of changes for one reconciliation pass."""

    changes: list[Change] = field(default_factory=list)

    def __iter__(self) -> Iterator[Change]:
        return iter(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    def __getitem__(self, address: str) -> Change:
        for change in self.changes:
            if change.address == address:
                return change
        raise KeyError(address)

    @property
    def pending(self) -> list[Change]:
        """Changes that require remote calls."""
        return [c for c in self.changes if c.action is not Action.NOOP]

    @property
    def empty(self) -> bool:
        return not self.pending

    def summary(self) -> dict[Action, int]:
        counts = Counter(c.action for c in self.changes)
        return {action: counts.get(action, 0) for action in Action}
