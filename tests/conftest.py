"""
Pytest configuration and fixtures.

This file ensures proper path setup for imports and provides builders for
certificate signing requests and fake inventory sessions.
"""

import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

# Add src directory to Python path
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from asn1crypto import core  # noqa: E402
from asn1crypto import csr as asn1_csr  # noqa: E402
from cryptography import x509  # noqa: E402
from cryptography.hazmat.primitives import hashes, serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import ec  # noqa: E402
from cryptography.x509.oid import AttributeOID, NameOID  # noqa: E402


PP_PRESHARED_KEY = x509.ObjectIdentifier("1.3.6.1.4.1.34380.1.1.4")
CHALLENGE_PASSWORD_OID = "1.2.840.113549.1.9.7"
EXTENSION_REQUEST_OID = "1.2.840.113549.1.9.14"


# === CSR builders ===

@pytest.fixture(scope="session")
def signing_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def make_csr(signing_key):
    """
    Build a Puppet style CSR.

    By default it carries a challenge password and a pp_preshared_key
    extension wrapped in a DER UTF8String, exactly like `puppet agent` does.
    """

    def _make(
        common_name: str = "web1.example.com",
        challenge_password: Optional[str] = "s3cret",
        preshared_key: Optional[str] = "abc123",
        wrap: bool = True,
        extra_attributes: Sequence[Tuple[x509.ObjectIdentifier, bytes]] = (),
        extensions: Sequence[x509.ExtensionType] = (),
        encoding: serialization.Encoding = serialization.Encoding.PEM,
    ) -> bytes:
        builder = x509.CertificateSigningRequestBuilder().subject_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        )
        if preshared_key is not None:
            value = core.UTF8String(preshared_key).dump() if wrap else preshared_key.encode("utf-8")
            builder = builder.add_extension(x509.UnrecognizedExtension(PP_PRESHARED_KEY, value), critical=False)
        for extension in extensions:
            builder = builder.add_extension(extension, critical=False)
        if challenge_password is not None:
            builder = builder.add_attribute(AttributeOID.CHALLENGE_PASSWORD, challenge_password.encode("utf-8"))
        for oid, value in extra_attributes:
            builder = builder.add_attribute(oid, value)

        csr = builder.sign(signing_key, hashes.SHA256())
        return csr.public_bytes(encoding)

    return _make


def der_tlv(tag: int, content: bytes) -> bytes:
    """Encode one DER tag/length/value."""
    length = len(content)
    if length < 0x80:
        header = bytes([tag, length])
    else:
        length_bytes = length.to_bytes((length.bit_length() + 7) // 8, "big")
        header = bytes([tag, 0x80 | len(length_bytes)]) + length_bytes
    return header + content


def der_set(*elements: bytes) -> bytes:
    # DER orders SET OF members by their encodings
    return der_tlv(0x31, b"".join(sorted(elements)))


def der_attribute(oid: str, *values: bytes) -> bytes:
    return der_tlv(0x30, core.ObjectIdentifier(oid).dump() + der_set(*values))


def der_extension(oid: str, value: bytes) -> bytes:
    return der_tlv(0x30, core.ObjectIdentifier(oid).dump() + der_tlv(0x04, value))


def der_extensions(*extensions: bytes) -> bytes:
    return der_tlv(0x30, b"".join(extensions))


@pytest.fixture
def make_raw_csr(make_csr):
    """
    Build a DER CSR whose attribute set is supplied verbatim.

    Subject, key and signature algorithm are borrowed from a real CSR; the
    signature no longer matches, which decoding does not care about.
    """
    template = asn1_csr.CertificationRequest.load(make_csr(encoding=serialization.Encoding.DER))
    info = template["certification_request_info"]

    def _make(*attributes: bytes) -> bytes:
        body = (
            core.Integer(0).dump()
            + info["subject"].dump()
            + info["subject_pk_info"].dump()
            + der_tlv(0xA0, b"".join(sorted(attributes)))
        )
        return der_tlv(
            0x30,
            der_tlv(0x30, body)
            + template["signature_algorithm"].dump()
            + template["signature"].dump(),
        )

    return _make


# === Inventory fakes ===

class FakeSession:
    """Stands in for an authenticated AccountSession."""

    def __init__(self, account, tags: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.account = account
        self.tags = list(tags or [])
        self.error = error
        self.calls: List[Tuple[List[str], str]] = []
        self.closed = False

    def tag_names(self, tags, tag_prefix):
        self.calls.append((list(tags), tag_prefix))
        if self.error is not None:
            raise self.error
        return list(self.tags)

    def close(self):
        self.closed = True


class FakeSessionFactory:
    """Session factory serving canned tags per account id."""

    def __init__(self, tags_by_account: Dict[str, List[str]], errors: Optional[Dict[str, Exception]] = None):
        self.tags_by_account = tags_by_account
        self.errors = errors or {}
        self.logins: List[str] = []
        self.sessions: Dict[str, FakeSession] = {}

    def __call__(self, account):
        self.logins.append(account.account_id)
        session = FakeSession(
            account,
            tags=self.tags_by_account.get(account.account_id, []),
            error=self.errors.get(account.account_id),
        )
        self.sessions[account.account_id] = session
        return session

    @property
    def search_count(self) -> int:
        return sum(len(s.calls) for s in self.sessions.values())


class FakeClock:
    """Manually advanced clock for cache tests."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


CONFIG_TEXT = """\
[global]
challenge_password = 's3cret'
tag = 'mytag:key'

[1234]
email = 'ops@example.com'
password = 'hunter2'

[5678]
oath2_token = 'refresh-abc'
api_url = https://us-4.rightscale.com
"""


@pytest.fixture
def config_text():
    return CONFIG_TEXT


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "rightscale.conf"
    path.write_text(CONFIG_TEXT)
    return path


@pytest.fixture
def autosign_config():
    from tagsign.config import parse_config
    return parse_config(CONFIG_TEXT, source="test")


@pytest.fixture
def der():
    """DER building helpers for hand-assembled attributes."""
    return SimpleNamespace(
        tlv=der_tlv,
        set=der_set,
        attribute=der_attribute,
        extension=der_extension,
        extensions=der_extensions,
        CHALLENGE_PASSWORD=CHALLENGE_PASSWORD_OID,
        EXTENSION_REQUEST=EXTENSION_REQUEST_OID,
        PP_PRESHARED_KEY=PP_PRESHARED_KEY.dotted_string,
    )


@pytest.fixture
def fake_sessions():
    """Build a FakeSessionFactory from ``{account_id: [tag, ...]}``."""
    return FakeSessionFactory
