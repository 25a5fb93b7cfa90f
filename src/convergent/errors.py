"""Error taxonomy for validation, remote calls, and reconciliation."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .engine import Report


class ConvergentError(Exception):
    """Base class for all convergent errors."""


class ValidationError(ConvergentError):
    """One or more attribute values failed schema validation."""

    def __init__(self, kind: str, problems: Sequence[str]) -> None:
        self.kind = kind
        self.problems = list(problems)
        super().__init__(f"invalid {kind}: " + "; ".join(self.problems))


# -- Remote errors (raised by transports) --


class RemoteError(ConvergentError):
    """A remote control-plane call failed."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        self.code = code
        super().__init__(message)


class RemoteNotFound(RemoteError):
    """The remote side reports the object does not exist."""


class RemoteTransientError(RemoteError):
    """Network or throttling failure; eligible for retry."""


class RemoteFatalError(RemoteError):
    """Permission, quota or malformed request; never retried."""


# -- Engine errors --


class ResourceError(ConvergentError):
    """A remote failure wrapped with resource kind and identifier."""

    def __init__(self, kind: str, ident: str | None, action: str, cause: Exception) -> None:
        self.kind = kind
        self.ident = ident
        self.action = action
        self.cause = cause
        target = f"{kind} '{ident}'" if ident else kind
        super().__init__(f"error {action} {target}: {cause}")

    @property
    def transient(self) -> bool:
        return isinstance(self.cause, RemoteTransientError)


class ReconcileError(ConvergentError):
    """One or more resource instances failed to reconcile."""

    def __init__(self, report: Report) -> None:
        self.report = report
        failed = report.failed
        lines = [f"{r.address}: {r.error}" for r in failed]
        super().__init__(f"{len(failed)} resource(s) failed\n" + "\n".join(lines))
