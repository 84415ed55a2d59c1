"""
tagsign Inventory Module

Tag expressions, multi-account tag search and result caching.
"""

from .tags import TagExpression, split_tag, tag_value
from .client import AccountSession, InventoryAccount, TagQueryClient, get_access_token
from .cache import CacheEntry, CachedTagQuery, LayeredTTLCache, TTLCache

__all__ = [
    "TagExpression",
    "split_tag",
    "tag_value",
    "AccountSession",
    "InventoryAccount",
    "TagQueryClient",
    "get_access_token",
    "CacheEntry",
    "CachedTagQuery",
    "LayeredTTLCache",
    "TTLCache",
]
