"""Managed response cache attached to a GraphQL API."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..adapter import ResourceAdapter, resource
from ..errors import RemoteError, RemoteNotFound, ResourceError
from ..schema import Attribute, AttributeSet, AttrType, Schema, int_between
from ..transport import ApiCache, ApiCacheTransport

logger = logging.getLogger(__name__)

KIND = "appsync_api_cache"

CACHING_BEHAVIORS = ("FULL_REQUEST_CACHING", "PER_RESOLVER_CACHING")

CACHE_TYPES = (
    "SMALL",
    "MEDIUM",
    "LARGE",
    "XLARGE",
    "LARGE_2X",
    "LARGE_4X",
    "LARGE_8X",
    "LARGE_12X",
)

TTL_MIN = 1
TTL_MAX = 3600

SCHEMA = Schema(
    kind=KIND,
    identity="api_id",
    attributes=(
        Attribute(
            "api_id",
            AttrType.STRING,
            required=True,
            description="GraphQL API that owns the cache; also the cache identifier.",
        ),
        Attribute(
            "api_caching_behavior",
            AttrType.ENUM,
            required=True,
            choices=CACHING_BEHAVIORS,
        ),
        Attribute(
            "at_rest_encryption_enabled",
            AttrType.BOOL,
            immutable=True,
            default=False,
        ),
        Attribute(
            "transit_encryption_enabled",
            AttrType.BOOL,
            immutable=True,
            default=False,
        ),
        Attribute(
            "ttl",
            AttrType.INT,
            required=True,
            validators=(int_between(TTL_MIN, TTL_MAX),),
            description="Seconds a cached response is kept.",
        ),
        Attribute(
            "type",
            AttrType.ENUM,
            required=True,
            choices=CACHE_TYPES,
            description="Cache instance size class.",
        ),
    ),
)


@resource(KIND)
class ApiCacheAdapter(ResourceAdapter[ApiCacheTransport]):
    """One cache per API, so the cache inherits the API's identifier."""

    schema = SCHEMA

    def _to_attributes(self, api_id: str, cache: ApiCache) -> AttributeSet:
        # remote values are authoritative; they are not re-validated
        return AttributeSet(
            self.schema,
            {
                "api_id": api_id,
                "api_caching_behavior": cache.api_caching_behavior,
                "at_rest_encryption_enabled": cache.at_rest_encryption_enabled,
                "transit_encryption_enabled": cache.transit_encryption_enabled,
                "ttl": cache.ttl,
                "type": cache.type,
            },
        )

    def create(self, desired: AttributeSet) -> str:
        api_id = desired["api_id"]
        params: dict[str, Any] = {
            "api_caching_behavior": desired["api_caching_behavior"],
            "ttl": desired["ttl"],
            "type": desired["type"],
        }
        for name in ("at_rest_encryption_enabled", "transit_encryption_enabled"):
            if name in desired.explicit:
                params[name] = desired[name]

        logger.debug("Creating API cache for API '%s'", api_id)
        try:
            self.transport.create_api_cache(api_id, **params)
        except RemoteError as exc:
            raise ResourceError(self.kind, api_id, "creating", exc) from exc
        return api_id

    def read(self, ident: str) -> AttributeSet | None:
        try:
            cache = self.transport.get_api_cache(ident)
        except RemoteNotFound:
            logger.warning("API cache for API '%s' not found", ident)
            return None
        except RemoteError as exc:
            raise ResourceError(self.kind, ident, "reading", exc) from exc
        return self._to_attributes(ident, cache)

    def update(self, ident: str, changes: Mapping[str, Any]) -> None:
        self._check_mutable(changes)
        params = {name: changes[name] for name in self.schema.mutable if name in changes}
        if not params:
            logger.debug("No changes for API cache '%s'", ident)
            return

        logger.debug("Updating API cache '%s': %s", ident, sorted(params))
        try:
            self.transport.update_api_cache(ident, **params)
        except RemoteError as exc:
            raise ResourceError(self.kind, ident, "updating", exc) from exc

    def delete(self, ident: str) -> None:
        try:
            self.transport.delete_api_cache(ident)
        except RemoteNotFound:
            logger.debug("API cache '%s' already deleted", ident)
        except RemoteError as exc:
            raise ResourceError(self.kind, ident, "deleting", exc) from exc
