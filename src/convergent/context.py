"""Runtime context for a reconciliation pass."""

from __future__ import annotations

import threading


class Context:
    """Runtime state passed through a reconciliation pass."""

    def __init__(self, *, dry_run: bool = False) -> None:
        self.dry_run = dry_run
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop scheduling further instances; in-flight calls finish."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()
