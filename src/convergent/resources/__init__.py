"""Built-in resource adapters; importing this package registers them."""

from .api_cache import ApiCacheAdapter as ApiCacheAdapter
