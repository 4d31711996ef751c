"""
BankID RP Client - Credential Store

Loads the PKCS#12 client bundle and the trust anchor once per client and
turns them into an SSL context for mutual TLS.
"""

import asyncio
import os
import ssl
import tempfile
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import aiofiles
import structlog
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
    pkcs12,
)

from .exceptions import InitializationError
from .models import CredentialBundle

logger = structlog.get_logger(__name__)

Source = Union[Path, bytes]


class CredentialState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


def create_ssl_context(pkcs12_data: bytes, passphrase: str, ca_data: bytes) -> ssl.SSLContext:
    """
    Build a client SSL context from a PKCS#12 bundle.

    Only ca_data is trusted; the system trust store is never loaded.
    """
    password = passphrase.encode() if passphrase else None
    private_key, certificate, chain = pkcs12.load_key_and_certificates(pkcs12_data, password)
    if private_key is None or certificate is None:
        raise ValueError("PKCS#12 bundle does not contain both a certificate and a private key")

    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.verify_mode = ssl.CERT_REQUIRED
    ctx.check_hostname = True

    if b"-----BEGIN" in ca_data:
        ctx.load_verify_locations(cadata=ca_data.decode("ascii"))
    else:
        ctx.load_verify_locations(cadata=ca_data)

    # load_cert_chain only takes file paths
    encryption = BestAvailableEncryption(password) if password else NoEncryption()
    cert_pem = certificate.public_bytes(Encoding.PEM) + b"".join(
        c.public_bytes(Encoding.PEM) for c in (chain or [])
    )
    key_pem = private_key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, encryption)

    cert_files = []
    try:
        for content, suffix in ((cert_pem, ".crt"), (key_pem, ".key")):
            handle = tempfile.NamedTemporaryFile(delete=False, suffix=suffix)
            cert_files.append(handle.name)
            handle.write(content)
            handle.close()
        ctx.load_cert_chain(cert_files[0], cert_files[1], password=passphrase or None)
    finally:
        for name in cert_files:
            try:
                os.unlink(name)
            except OSError:
                logger.warning("temp_cert_cleanup_failed", path=name)

    return ctx


class CredentialStore:
    """
    Lazily loaded, cached credential bundle.

    The first load() reads both sources; callers arriving while that load is
    in progress share its future, so every source is read exactly once.
    """

    def __init__(self, pkcs12_source: Source, ca_source: Source, passphrase: str):
        self._pkcs12_source = pkcs12_source
        self._ca_source = ca_source
        self._passphrase = passphrase

        self._bundle: Optional[CredentialBundle] = None
        self._loading: Optional[asyncio.Future] = None

    @classmethod
    def from_config(cls, config) -> "CredentialStore":
        return cls(
            pkcs12_source=config.pfx_data if config.pfx_data is not None else config.pfx_path,
            ca_source=config.ca_data if config.ca_data is not None else config.ca_path,
            passphrase=config.passphrase,
        )

    @property
    def state(self) -> CredentialState:
        if self._bundle is not None:
            return CredentialState.READY
        if self._loading is not None:
            return CredentialState.LOADING
        return CredentialState.UNINITIALIZED

    async def load(self) -> CredentialBundle:
        """Return the credential bundle, loading it on first use."""
        if self._bundle is not None:
            return self._bundle

        if self._loading is None:
            self._loading = asyncio.ensure_future(self._load())

        # shield: a cancelled caller must not abort the load other callers share
        return await asyncio.shield(self._loading)

    async def _load(self) -> CredentialBundle:
        try:
            pkcs12_data = await self._read_source(self._pkcs12_source)
            ca_data = await self._read_source(self._ca_source)
            ssl_context = create_ssl_context(pkcs12_data, self._passphrase, ca_data)
        except Exception as e:
            self._loading = None
            logger.error("credential_load_failed", error=str(e), error_type=type(e).__name__)
            raise InitializationError(f"Initialization failed: {e}", "INITIALIZATION_FAILED") from e

        self._bundle = CredentialBundle(
            pkcs12=pkcs12_data,
            ca_certificate=ca_data,
            passphrase=self._passphrase,
            ssl_context=ssl_context,
        )
        logger.info("credentials_loaded")
        return self._bundle

    async def _read_source(self, source: Source) -> bytes:
        if isinstance(source, (bytes, bytearray)):
            return bytes(source)
        if source is None:
            raise FileNotFoundError("No credential source configured")
        async with aiofiles.open(source, "rb") as f:
            return await f.read()
