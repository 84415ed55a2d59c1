"""
tagsign: Inventory Tag Backed Certificate Autosigning

Policy-based autosigning for Puppet certificate signing requests:
- Extracts the challenge password and pp_preshared_key from the CSR
- Validates the challenge password against a static secret
- Confirms exactly one inventory instance carries the matching tag
- Fails closed on any error or ambiguity

Also provides the tag-query layer used by the lookup backend:
multi-account tag search, merge/dedup, and TTL result caching.
"""

__version__ = "1.0.0"

from .errors import TagSignError
from .identity.autosign import AuthorizationResult, AutosignEngine, AutosignState
from .identity.csr import CertificateRequest, decode_request
from .inventory.cache import CachedTagQuery, LayeredTTLCache, TTLCache
from .inventory.client import InventoryAccount, TagQueryClient
from .inventory.tags import TagExpression, split_tag
from .lookup import LookupContext, TagLookupBackend

__all__ = [
    "__version__",
    "TagSignError",
    "AuthorizationResult",
    "AutosignEngine",
    "AutosignState",
    "CertificateRequest",
    "decode_request",
    "CachedTagQuery",
    "LayeredTTLCache",
    "TTLCache",
    "InventoryAccount",
    "TagQueryClient",
    "TagExpression",
    "split_tag",
    "LookupContext",
    "TagLookupBackend",
]
