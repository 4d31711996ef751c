"""Shared fixtures for the BankID RP client tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, Encoding, pkcs12
from cryptography.x509.oid import NameOID

from bankid_rp import poller as poller_module
from bankid_rp.credentials import CredentialStore
from bankid_rp.models import CompletionData, OrderStatus, PollOutcome, Protocol
from bankid_rp.protocols import BankIdProtocol

PASSPHRASE = "qwerty123"


@pytest.fixture(scope="session")
def test_certificate():
    """Generate a self-signed RP certificate and its key."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "SE"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test RP"),
        x509.NameAttribute(NameOID.COMMON_NAME, "FP Testcert 4"),
    ])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return key, cert


@pytest.fixture(scope="session")
def pfx_bytes(test_certificate) -> bytes:
    key, cert = test_certificate
    return pkcs12.serialize_key_and_certificates(
        b"test-rp", key, cert, None, BestAvailableEncryption(PASSPHRASE.encode())
    )


@pytest.fixture(scope="session")
def ca_bytes(test_certificate) -> bytes:
    _, cert = test_certificate
    return cert.public_bytes(Encoding.PEM)


@pytest.fixture
def cert_files(tmp_path: Path, pfx_bytes: bytes, ca_bytes: bytes) -> tuple[Path, Path]:
    """Write the bundle and trust anchor to disk."""
    pfx_path = tmp_path / "rp-test.p12"
    ca_path = tmp_path / "bankid-test.crt"
    pfx_path.write_bytes(pfx_bytes)
    ca_path.write_bytes(ca_bytes)
    return pfx_path, ca_path


@pytest.fixture
def credential_store(pfx_bytes: bytes, ca_bytes: bytes) -> CredentialStore:
    return CredentialStore(pfx_bytes, ca_bytes, PASSPHRASE)


@pytest.fixture
def fast_intervals(monkeypatch):
    """Lower the interval floor so poll loops run in milliseconds."""
    monkeypatch.setattr(poller_module, "MIN_INTERVAL_MS", 10)


COMPLETION = {
    "user": {
        "personalNumber": "190000000000",
        "name": "Karl Karlsson",
        "givenName": "Karl",
        "surname": "Karlsson",
    },
    "device": {"ipAddress": "192.0.2.10"},
    "cert": {"notBefore": "1502983274000", "notAfter": "1563549674000"},
    "signature": "PD94bWwgdmVyc2lvbj0iMS4wIj8+",
    "ocspResponse": "MIIHfgoBAKCCB3cwggdzBgkrBgEFBQcwAQEE",
}


def pending(order_ref: str = "order-1", hint_code: Optional[str] = "outstandingTransaction") -> PollOutcome:
    return PollOutcome(order_ref=order_ref, status=OrderStatus.PENDING, hint_code=hint_code)


def complete(order_ref: str = "order-1", data: Optional[dict] = None) -> PollOutcome:
    return PollOutcome(
        order_ref=order_ref,
        status=OrderStatus.COMPLETE,
        completion_data=CompletionData.from_dict(data or COMPLETION),
    )


def failed(order_ref: str = "order-1", hint_code: str = "userCancel") -> PollOutcome:
    return PollOutcome(order_ref=order_ref, status=OrderStatus.FAILED, hint_code=hint_code)


class ScriptedProtocol(BankIdProtocol):
    """
    Protocol stub that replays scripted poll outcomes per order reference.

    The last scripted item repeats once the script runs out. Items that are
    exceptions are raised instead of returned.
    """

    protocol = Protocol.JSON

    def __init__(self, scripts: dict, delay: float = 0.0):
        super().__init__(transport=None)
        self.scripts = {ref: list(items) for ref, items in scripts.items()}
        self.delay = delay
        self.calls: dict[str, int] = {ref: 0 for ref in scripts}
        self.in_flight: dict[str, int] = {ref: 0 for ref in scripts}
        self.max_in_flight: dict[str, int] = {ref: 0 for ref in scripts}

    def operation_for(self, kind):
        return kind.value

    async def poll_status(self, order_ref: str) -> PollOutcome:
        self.calls[order_ref] += 1
        self.in_flight[order_ref] += 1
        self.max_in_flight[order_ref] = max(self.max_in_flight[order_ref], self.in_flight[order_ref])
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            script = self.scripts[order_ref]
            item = script[min(self.calls[order_ref], len(script)) - 1]
            if isinstance(item, BaseException):
                raise item
            return item
        finally:
            self.in_flight[order_ref] -= 1

    async def aclose(self) -> None:
        pass
