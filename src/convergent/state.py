"""State store holding the last observed attributes per resource instance."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Hashable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class StateRecord(BaseModel):
    """Last attribute set observed from the remote side for one instance."""

    model_config = {"frozen": True}

    address: str
    kind: str
    id: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class StateFile(BaseModel):
    version: int = STATE_VERSION
    resources: list[StateRecord] = Field(default_factory=list)


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class StateStore:
    """Thread-safe record store, optionally persisted to a JSON file.

    Records are immutable and swapped whole, so readers always see the last
    fully committed record for an address.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._records: dict[str, StateRecord] = {}
        self._mutex = threading.Lock()
        self._locks: dict[Hashable, _LockEntry] = {}
        if self._path is not None and self._path.exists():
            self._load()

    @property
    def path(self) -> Path | None:
        return self._path

    def _load(self) -> None:
        assert self._path is not None
        data = StateFile.model_validate_json(self._path.read_text())
        if data.version != STATE_VERSION:
            raise ValueError(f"{self._path}: unsupported state version {data.version}")
        self._records = {r.address: r for r in data.resources}
        logger.debug("Loaded %d record(s) from %s", len(self._records), self._path)

    def _save(self) -> None:
        if self._path is None:
            return
        data = StateFile(resources=sorted(self._records.values(), key=lambda r: r.address))
        tmp = self._path.with_name(self._path.name + ".tmp")
        tmp.write_text(data.model_dump_json(indent=2))
        os.replace(tmp, self._path)
        logger.debug("Saved %d record(s) to %s", len(self._records), self._path)

    @contextmanager
    def lock(self, *keys: Hashable) -> Iterator[None]:
        """Hold the locks for every key (addresses or identities) for the block.

        Keys are acquired in a fixed order; entries nobody holds or waits on
        are dropped on release.
        """
        ordered = sorted(set(keys), key=str)
        with self._mutex:
            entries = [self._locks.setdefault(k, _LockEntry()) for k in ordered]
            for entry in entries:
                entry.users += 1
        try:
            with ExitStack() as stack:
                for entry in entries:
                    stack.enter_context(entry.lock)
                yield
        finally:
            with self._mutex:
                for key, entry in zip(ordered, entries, strict=True):
                    entry.users -= 1
                    if entry.users == 0:
                        del self._locks[key]

    def get(self, address: str) -> StateRecord | None:
        with self._mutex:
            return self._records.get(address)

    def find(self, kind: str, ident: str) -> StateRecord | None:
        """Return the record tracking the given kind and identifier, if any."""
        with self._mutex:
            for record in self._records.values():
                if record.kind == kind and record.id == ident:
                    return record
        return None

    def put(self, record: StateRecord) -> None:
        with self._mutex:
            self._records[record.address] = record
            self._save()

    def remove(self, address: str) -> StateRecord | None:
        with self._mutex:
            record = self._records.pop(address, None)
            if record is not None:
                self._save()
            return record

    def addresses(self) -> list[str]:
        with self._mutex:
            return sorted(self._records)

    def __contains__(self, address: object) -> bool:
        with self._mutex:
            return address in self._records

    def __len__(self) -> int:
        with self._mutex:
            return len(self._records)

    def __repr__(self) -> str:
        return f"StateStore(path={self._path}, records={len(self)})"
