"""
tagsign Identity Module

CSR decoding and the autosign decision engine.
"""

from .csr import CertificateRequest, decode_request
from .autosign import AuthorizationResult, AutosignEngine, AutosignState

__all__ = [
    "CertificateRequest",
    "decode_request",
    "AuthorizationResult",
    "AutosignEngine",
    "AutosignState",
]
