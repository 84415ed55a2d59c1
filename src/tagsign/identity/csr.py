"""
CSR Attribute Extractor - Challenge Password and Preshared Key

Puppet agents embed two secrets in their certificate signing requests:

- the PKCS#9 challengePassword attribute, shared by every host
- the ``pp_preshared_key`` extension (1.3.6.1.4.1.34380.1.1.4), carried in
  the PKCS#9 extensionRequest attribute, unique per host

The request is parsed with ``cryptography`` and the attribute structure is
then walked with the explicit ASN.1 schema classes from ``asn1crypto``:

    CertificationRequestInfo.attributes      SET OF
      CRIAttribute(challenge_password)       SET OF DirectoryString
      CRIAttribute(extension_request)        SET OF Extensions
        Extensions                           SEQUENCE OF
          Extension(extn_id, extn_value)

Anything that does not fit that shape is rejected.
"""

from dataclasses import dataclass, field
from typing import Optional

from asn1crypto import core
from asn1crypto import csr as asn1_csr
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID

from ..errors import (
    InvalidExtensionStructureError,
    MalformedRequestError,
    MissingAttributesError,
)
from ..logging import get_logger

logger = get_logger(__name__)

CHALLENGE_PASSWORD = "challenge_password"
EXTENSION_REQUEST = "extension_request"

PP_PRESHARED_KEY_OID = "1.3.6.1.4.1.34380.1.1.4"
# Compatibility shim: some toolchains report the extension by its short name
PP_PRESHARED_KEY_NAME = "pp_preshared_key"

EXPECTED_ATTRIBUTE_COUNT = 2


@dataclass(frozen=True)
class CertificateRequest:
    """The secrets decoded from a CSR."""
    challenge_password: str = field(repr=False)
    preshared_key: str = field(repr=False)
    common_name: Optional[str] = None


def load_csr(raw: bytes) -> x509.CertificateSigningRequest:
    """Parse PEM or DER bytes into a CSR object."""
    if not raw:
        raise MalformedRequestError("empty request")
    try:
        if raw.lstrip().startswith(b"-----BEGIN"):
            return x509.load_pem_x509_csr(raw.strip())
        return x509.load_der_x509_csr(raw)
    except ValueError as e:
        raise MalformedRequestError(str(e) or "unparseable request") from None


def _common_name(request: x509.CertificateSigningRequest) -> Optional[str]:
    try:
        names = request.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    except ValueError:
        return None
    if not names:
        return None
    value = names[0].value
    return value if isinstance(value, str) else None


def decode_request(raw: bytes) -> CertificateRequest:
    """
    Decode a CSR and extract its challenge password and preshared key.

    Args:
        raw: PEM or DER encoded certificate signing request

    Returns:
        CertificateRequest with both secrets

    Raises:
        MalformedRequestError: the bytes are not a CSR
        MissingAttributesError: the CSR does not carry exactly two attributes
        InvalidExtensionStructureError: an attribute does not fit the schema,
            or no preshared key is present
    """
    request = load_csr(raw)
    der = request.public_bytes(serialization.Encoding.DER)

    try:
        info = asn1_csr.CertificationRequest.load(der)["certification_request_info"]
        attributes = info["attributes"]
        count = 0 if isinstance(attributes, core.Void) else len(attributes)
    except (ValueError, TypeError) as e:
        raise MalformedRequestError(f"undecodable attribute set: {e}") from None

    if count != EXPECTED_ATTRIBUTE_COUNT:
        raise MissingAttributesError(count)

    by_type = {}
    for attribute in attributes:
        try:
            attr_type = attribute["type"].native
        except (ValueError, TypeError) as e:
            raise InvalidExtensionStructureError(f"undecodable attribute type: {e}") from None
        if attr_type in by_type:
            raise InvalidExtensionStructureError(f"duplicate attribute {attr_type}", attribute=attr_type)
        by_type[attr_type] = attribute

    for required in (CHALLENGE_PASSWORD, EXTENSION_REQUEST):
        if required not in by_type:
            raise InvalidExtensionStructureError(f"missing {required} attribute", attribute=required)

    challenge_password = _challenge_password(by_type[CHALLENGE_PASSWORD])
    preshared_key = _preshared_key(by_type[EXTENSION_REQUEST])

    decoded = CertificateRequest(
        challenge_password=challenge_password,
        preshared_key=preshared_key,
        common_name=_common_name(request),
    )
    logger.debug(f"Decoded CSR for {decoded.common_name}")
    return decoded


def _challenge_password(attribute: asn1_csr.CRIAttribute) -> str:
    try:
        values = attribute["values"]
        if not isinstance(values, asn1_csr.SetOfDirectoryString) or len(values) == 0:
            raise InvalidExtensionStructureError("challenge_password has no value", attribute=CHALLENGE_PASSWORD)
        password = values[0].native
    except (ValueError, TypeError) as e:
        raise InvalidExtensionStructureError(
            f"undecodable challenge_password: {e.__class__.__name__}", attribute=CHALLENGE_PASSWORD
        ) from None

    if not isinstance(password, str) or not password:
        raise InvalidExtensionStructureError("challenge_password is empty", attribute=CHALLENGE_PASSWORD)
    return password


def _preshared_key(attribute: asn1_csr.CRIAttribute) -> str:
    try:
        values = attribute["values"]
        if not isinstance(values, asn1_csr.SetOfExtensions) or len(values) == 0:
            raise InvalidExtensionStructureError("extension_request has no value", attribute=EXTENSION_REQUEST)

        # Loop through the requested extensions looking for ours
        for extensions in values:
            for extension in extensions:
                extn_id = extension["extn_id"]
                if extn_id.dotted == PP_PRESHARED_KEY_OID or extn_id.native == PP_PRESHARED_KEY_NAME:
                    return _extension_text(extension["extn_value"].contents)
    except (ValueError, TypeError, KeyError) as e:
        raise InvalidExtensionStructureError(
            f"undecodable extension_request: {e.__class__.__name__}", attribute=EXTENSION_REQUEST
        ) from None

    raise InvalidExtensionStructureError("no pp_preshared_key extension found", attribute=EXTENSION_REQUEST)


def _extension_text(payload: Optional[bytes]) -> str:
    """
    Turn an extension's octet string payload into text.

    Puppet wraps extension values in a DER UTF8String; bare UTF-8 is accepted
    as well. A bare value can coincidentally parse as some other DER type, so
    only string types are unwrapped.
    """
    if not payload:
        raise InvalidExtensionStructureError("pp_preshared_key is empty", attribute=EXTENSION_REQUEST)

    try:
        wrapped = core.load(payload, strict=True)
    except (ValueError, TypeError):
        wrapped = None

    if isinstance(wrapped, core.AbstractString):
        text = wrapped.native
    else:
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidExtensionStructureError(
                "pp_preshared_key is not text", attribute=EXTENSION_REQUEST
            ) from None

    if not text:
        raise InvalidExtensionStructureError("pp_preshared_key is empty", attribute=EXTENSION_REQUEST)
    # Rejects other DER structures that happened to decode as UTF-8
    if not text.isprintable():
        raise InvalidExtensionStructureError("pp_preshared_key is not printable text", attribute=EXTENSION_REQUEST)
    return text
