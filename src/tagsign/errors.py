"""
tagsign Unified Error Taxonomy.

This module provides a centralized error hierarchy for all tagsign components.
All errors include:
- Machine-readable error codes
- Structured details (never sensitive data)

Error Code Naming Convention:
- TS_<COMPONENT>_<SPECIFIC>
- Components: CSR, AUTH, INVENTORY, CONFIG

Security:
- NEVER include challenge passwords, preshared keys or tokens in messages
- Errors should be safe to log and to report as a denial reason
"""

from typing import Any, Dict, Optional


class TagSignError(Exception):
    """Base exception for all tagsign errors.

    All tagsign errors include:
    - code: Machine-readable error code (e.g., TS_CSR_MALFORMED)
    - message: Human-readable description
    - details: Structured metadata (NEVER include sensitive data)
    """

    def __init__(
        self,
        message: str,
        code: str = "TS_INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Certificate Request Errors (TS_CSR_*)
# =============================================================================


class RequestError(TagSignError):
    """Base class for certificate signing request decode errors."""

    pass


class MalformedRequestError(RequestError):
    """Raised when the raw bytes cannot be decoded as a CSR."""

    def __init__(self, reason: str):
        super().__init__(
            message=f"malformed certificate request: {reason}",
            code="TS_CSR_MALFORMED",
        )


class MissingAttributesError(RequestError):
    """Raised when the CSR does not carry exactly two attributes."""

    def __init__(self, found: int, expected: int = 2):
        super().__init__(
            message=f"the CSR is missing attributes (found {found}, expected {expected})",
            code="TS_CSR_MISSING_ATTRIBUTES",
            details={"found": found, "expected": expected},
        )


class InvalidExtensionStructureError(RequestError):
    """Raised when an attribute does not match the expected ASN.1 shape."""

    def __init__(self, reason: str, attribute: Optional[str] = None):
        super().__init__(
            message=f"invalid extension structure: {reason}",
            code="TS_CSR_INVALID_EXTENSION",
            details={"attribute": attribute} if attribute else {},
        )


# =============================================================================
# Authorization Errors (TS_AUTH_*)
# =============================================================================


class AuthorizationError(TagSignError):
    """Base class for autosign policy failures."""

    pass


class ChallengePasswordMismatchError(AuthorizationError):
    """Raised when the CSR challenge password differs from the configured one."""

    def __init__(self):
        super().__init__(
            message="invalid challenge_password",
            code="TS_AUTH_CHALLENGE_MISMATCH",
        )


class NoOrAmbiguousMatchError(AuthorizationError):
    """Raised when the inventory returns zero or more than one matching tag."""

    def __init__(self, count: int):
        if count == 0:
            message = "no matching instance found in inventory"
        else:
            message = f"too many matching instances found in inventory ({count})"
        super().__init__(
            message=message,
            code="TS_AUTH_MATCH_COUNT",
            details={"count": count},
        )
        self.count = count


class TagMismatchError(AuthorizationError):
    """Raised when the single returned tag is not the expected tag."""

    def __init__(self):
        super().__init__(
            message="returned tag does not match the expected tag",
            code="TS_AUTH_TAG_MISMATCH",
        )


# =============================================================================
# Inventory Errors (TS_INVENTORY_*)
# =============================================================================


class InventoryError(TagSignError):
    """Base class for inventory API errors."""

    pass


class TokenExchangeFailedError(InventoryError):
    """Raised when a refresh token cannot be exchanged for an access token."""

    def __init__(self, account_id: str, status_code: Optional[int] = None, reason: Optional[str] = None):
        message = f"failed to get access token for account {account_id}"
        if status_code is not None:
            message += f" (HTTP {status_code})"
        elif reason:
            message += f": {reason}"
        super().__init__(
            message=message,
            code="TS_INVENTORY_TOKEN_EXCHANGE_FAILED",
            details={"account_id": account_id, "status_code": status_code},
        )


class MissingCredentialsError(InventoryError):
    """Raised when an account has neither an email/password pair nor a token."""

    def __init__(self, account_id: str):
        super().__init__(
            message=f"account {account_id} missing either email, password or oath2_token",
            code="TS_INVENTORY_MISSING_CREDENTIALS",
            details={"account_id": account_id},
        )


class InventoryQueryError(InventoryError):
    """Raised when a tag search against an account fails."""

    def __init__(self, account_id: str, reason: str):
        super().__init__(
            message=f"tag search failed for account {account_id}: {reason}",
            code="TS_INVENTORY_QUERY_FAILED",
            details={"account_id": account_id},
        )


# =============================================================================
# Configuration Errors (TS_CONFIG_*)
# =============================================================================


class ConfigurationInvalidError(TagSignError):
    """Raised when the autosign configuration file is missing or invalid."""

    def __init__(self, reason: str, section: Optional[str] = None):
        super().__init__(
            message=f"invalid configuration: {reason}",
            code="TS_CONFIG_INVALID",
            details={"section": section} if section else {},
        )


# =============================================================================
# Error Code Registry (for documentation and validation)
# =============================================================================

ERROR_CODES = {
    # CSR errors
    "TS_CSR_MALFORMED": "Certificate request could not be decoded",
    "TS_CSR_MISSING_ATTRIBUTES": "Certificate request attribute count is wrong",
    "TS_CSR_INVALID_EXTENSION": "Certificate request attribute shape is invalid",
    # Authorization errors
    "TS_AUTH_CHALLENGE_MISMATCH": "Challenge password mismatch",
    "TS_AUTH_MATCH_COUNT": "No or too many matching inventory records",
    "TS_AUTH_TAG_MISMATCH": "Inventory returned an unexpected tag",
    # Inventory errors
    "TS_INVENTORY_TOKEN_EXCHANGE_FAILED": "OAuth2 refresh token exchange failed",
    "TS_INVENTORY_MISSING_CREDENTIALS": "Account has no usable credentials",
    "TS_INVENTORY_QUERY_FAILED": "Inventory tag search failed",
    # Config errors
    "TS_CONFIG_INVALID": "Configuration invalid",
    # Internal
    "TS_INTERNAL_ERROR": "Internal error",
}


def validate_error_code(code: str) -> bool:
    """Validate that an error code is registered."""
    return code in ERROR_CODES


__all__ = [
    # Base
    "TagSignError",
    # CSR
    "RequestError",
    "MalformedRequestError",
    "MissingAttributesError",
    "InvalidExtensionStructureError",
    # Authorization
    "AuthorizationError",
    "ChallengePasswordMismatchError",
    "NoOrAmbiguousMatchError",
    "TagMismatchError",
    # Inventory
    "InventoryError",
    "TokenExchangeFailedError",
    "MissingCredentialsError",
    "InventoryQueryError",
    # Config
    "ConfigurationInvalidError",
    # Registry
    "ERROR_CODES",
    "validate_error_code",
]
