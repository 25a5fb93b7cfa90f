"""Transport layer for the API cache control-plane calls."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .errors import RemoteError, RemoteFatalError, RemoteNotFound, RemoteTransientError

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = frozenset({"NotFoundException"})

TRANSIENT_CODES = frozenset(
    {
        "ConcurrentModificationException",
        "InternalFailureException",
        "RequestTimeout",
        "ServiceUnavailable",
        "ThrottlingException",
        "TooManyRequestsException",
    }
)

DEFAULT_CONFIG = Config(retries={"mode": "standard", "max_attempts": 5})

_CONNECTION_ERRORS = (
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)


@dataclass(frozen=True)
class ApiCache:
    """Remote view of an API cache."""

    api_caching_behavior: str
    ttl: int
    type: str
    at_rest_encryption_enabled: bool = False
    transit_encryption_enabled: bool = False
    status: str | None = None

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> ApiCache:
        return cls(
            api_caching_behavior=data["apiCachingBehavior"],
            ttl=int(data["ttl"]),
            type=data["type"],
            at_rest_encryption_enabled=bool(data.get("atRestEncryptionEnabled", False)),
            transit_encryption_enabled=bool(data.get("transitEncryptionEnabled", False)),
            status=data.get("status"),
        )


class ApiCacheTransport(Protocol):
    """Control-plane calls consumed by the API cache adapter.

    Implementations raise RemoteNotFound, RemoteTransientError or
    RemoteFatalError rather than provider-specific exceptions.
    """

    def create_api_cache(
        self,
        api_id: str,
        *,
        api_caching_behavior: str,
        ttl: int,
        type: str,
        at_rest_encryption_enabled: bool | None = None,
        transit_encryption_enabled: bool | None = None,
    ) -> ApiCache: ...

    def get_api_cache(self, api_id: str) -> ApiCache: ...

    def update_api_cache(
        self,
        api_id: str,
        *,
        api_caching_behavior: str | None = None,
        ttl: int | None = None,
        type: str | None = None,
    ) -> ApiCache: ...

    def delete_api_cache(self, api_id: str) -> None: ...


def classify_error(exc: Exception) -> RemoteError:
    """Map a botocore exception onto the remote error taxonomy."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = error.get("Code", "")
        message = error.get("Message") or str(exc)
        if code in NOT_FOUND_CODES:
            return RemoteNotFound(message, code=code)
        if code in TRANSIENT_CODES:
            return RemoteTransientError(message, code=code)
        return RemoteFatalError(message, code=code)
    if isinstance(exc, _CONNECTION_ERRORS):
        return RemoteTransientError(str(exc))
    return RemoteFatalError(str(exc))


@contextmanager
def _remote_call(operation: str, api_id: str) -> Iterator[None]:
    try:
        yield
    except (ClientError, *_CONNECTION_ERRORS) as exc:
        logger.debug("%s failed for API '%s': %s", operation, api_id, exc)
        raise classify_error(exc) from exc


class AppSyncTransport:
    """ApiCacheTransport backed by a boto3 AppSync client.

    The client is injected by the caller; when omitted, one is built from a
    fresh boto3 session with standard-mode retries for throttling.
    """

    def __init__(
        self,
        client: Any = None,
        *,
        region_name: str | None = None,
        session_factory: Callable[[], boto3.Session] = boto3.Session,
    ) -> None:
        if client is None:
            session = session_factory()
            client = session.client("appsync", region_name=region_name, config=DEFAULT_CONFIG)
        self._client = client

    def create_api_cache(
        self,
        api_id: str,
        *,
        api_caching_behavior: str,
        ttl: int,
        type: str,
        at_rest_encryption_enabled: bool | None = None,
        transit_encryption_enabled: bool | None = None,
    ) -> ApiCache:
        params: dict[str, Any] = {
            "apiId": api_id,
            "apiCachingBehavior": api_caching_behavior,
            "ttl": ttl,
            "type": type,
        }
        if at_rest_encryption_enabled is not None:
            params["atRestEncryptionEnabled"] = at_rest_encryption_enabled
        if transit_encryption_enabled is not None:
            params["transitEncryptionEnabled"] = transit_encryption_enabled

        with _remote_call("CreateApiCache", api_id):
            resp = self._client.create_api_cache(**params)
        return ApiCache.from_response(resp["apiCache"])

    def get_api_cache(self, api_id: str) -> ApiCache:
        with _remote_call("GetApiCache", api_id):
            resp = self._client.get_api_cache(apiId=api_id)
        if not resp.get("apiCache"):
            raise RemoteNotFound(f"no API cache for API '{api_id}'")
        return ApiCache.from_response(resp["apiCache"])

    def update_api_cache(
        self,
        api_id: str,
        *,
        api_caching_behavior: str | None = None,
        ttl: int | None = None,
        type: str | None = None,
    ) -> ApiCache:
        # AppSync requires the full mutable triple on every update
        if api_caching_behavior is None or ttl is None or type is None:
            current = self.get_api_cache(api_id)
            api_caching_behavior = api_caching_behavior or current.api_caching_behavior
            ttl = ttl if ttl is not None else current.ttl
            type = type or current.type

        with _remote_call("UpdateApiCache", api_id):
            resp = self._client.update_api_cache(
                apiId=api_id,
                apiCachingBehavior=api_caching_behavior,
                ttl=ttl,
                type=type,
            )
        return ApiCache.from_response(resp["apiCache"])

    def delete_api_cache(self, api_id: str) -> None:
        with _remote_call("DeleteApiCache", api_id):
            self._client.delete_api_cache(apiId=api_id)
