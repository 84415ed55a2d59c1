"""
Tag Lookup Backend

A long-lived data-lookup backend (Hiera style) that answers keys such as
``nd:auth`` with the values of every matching inventory tag:

    nd:auth  ->  ["eng", "prod"]

One ``LookupContext`` is built per process and handed to the backend. It
holds the shared query client (and therefore the memoized, authenticated
account sessions) and the shared result cache, so repeated lookups neither
re-authenticate nor hit the API again within the cache timeout.
"""

from dataclasses import dataclass
from typing import Any, List, Optional

from .config import AutosignConfig
from .inventory.cache import CachedTagQuery, TTLCache
from .inventory.client import TagQueryClient
from .inventory.tags import tag_value
from .logging import get_logger
from .utils.config import settings

logger = get_logger(__name__)


@dataclass
class LookupContext:
    """Shared state for every lookup made by one backend instance."""
    client: TagQueryClient
    cache: TTLCache
    prefix: str

    @classmethod
    def from_config(
        cls,
        config: AutosignConfig,
        prefix: Optional[str] = None,
        cache_timeout: Optional[float] = None,
    ) -> "LookupContext":
        return cls(
            client=TagQueryClient.from_config(config),
            cache=TTLCache(settings.CACHE_TIMEOUT if cache_timeout is None else cache_timeout),
            prefix=settings.TAG_PREFIX if prefix is None else prefix,
        )

    @property
    def query(self) -> CachedTagQuery:
        return CachedTagQuery(self.client, self.cache)


class TagLookupBackend:
    """Resolves lookup keys to lists of tag values."""

    def __init__(self, context: LookupContext):
        self.context = context
        logger.debug("Tag lookup backend initialized")

    def lookup(
        self,
        key: Optional[str],
        scope: Any = None,
        order_override: Any = None,
        resolution_type: Any = None,
    ) -> Optional[List[str]]:
        """
        Look up ``key``.

        Returns None (without any API call) for an empty key or one that does
        not start with the configured prefix. ``scope`` and ``order_override``
        are accepted for interface compatibility; the backend searches every
        account in one go rather than walking a hierarchy.
        """
        if not key:
            return None
        if not key.startswith(self.context.prefix):
            return None

        logger.debug(f"Looking up '{key}', resolution type is '{resolution_type}'")
        answer = self.search(key)
        logger.debug(f"Returning {len(answer)} value(s) for '{key}'")
        return answer

    def search(self, key: str) -> List[str]:
        """Return the value part of every unique tag matching ``key``."""
        results = self.context.query.get_tags_by_tag(key)
        return [value for value in (tag_value(tag) for tag in results) if value is not None]
