"""Shared fixtures: an in-memory API cache transport."""

from __future__ import annotations

import dataclasses
from typing import Any

import pytest

from convergent.errors import RemoteError, RemoteFatalError, RemoteNotFound
from convergent.resources.api_cache import ApiCacheAdapter
from convergent.state import StateStore
from convergent.transport import ApiCache


class FakeTransport:
    """Keeps caches in a dict and records every call."""

    def __init__(self) -> None:
        self.caches: dict[str, ApiCache] = {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.failures: dict[str, RemoteError] = {}

    def fail(self, op: str, error: RemoteError) -> None:
        """Make the next call to op raise error."""
        self.failures[op] = error

    @property
    def ops(self) -> list[str]:
        return [op for op, _, _ in self.calls]

    def _call(self, op: str, api_id: str, **params: Any) -> None:
        self.calls.append((op, api_id, params))
        if (error := self.failures.pop(op, None)) is not None:
            raise error

    def _existing(self, api_id: str) -> ApiCache:
        if api_id not in self.caches:
            raise RemoteNotFound(f"no cache for {api_id}", code="NotFoundException")
        return self.caches[api_id]

    def create_api_cache(self, api_id: str, **params: Any) -> ApiCache:
        self._call("create", api_id, **params)
        if api_id in self.caches:
            raise RemoteFatalError("cache already exists", code="BadRequestException")
        cache = ApiCache(
            api_caching_behavior=params["api_caching_behavior"],
            ttl=params["ttl"],
            type=params["type"],
            at_rest_encryption_enabled=bool(params.get("at_rest_encryption_enabled")),
            transit_encryption_enabled=bool(params.get("transit_encryption_enabled")),
            status="AVAILABLE",
        )
        self.caches[api_id] = cache
        return cache

    def get_api_cache(self, api_id: str) -> ApiCache:
        self._call("get", api_id)
        return self._existing(api_id)

    def update_api_cache(self, api_id: str, **params: Any) -> ApiCache:
        self._call("update", api_id, **params)
        cache = dataclasses.replace(
            self._existing(api_id),
            **{k: v for k, v in params.items() if v is not None},
        )
        self.caches[api_id] = cache
        return cache

    def delete_api_cache(self, api_id: str) -> None:
        self._call("delete", api_id)
        self._existing(api_id)
        del self.caches[api_id]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def adapter(transport: FakeTransport) -> ApiCacheAdapter:
    return ApiCacheAdapter(transport)


@pytest.fixture
def store() -> StateStore:
    return StateStore()
