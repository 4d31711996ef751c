"""
BankID RP Client - Configuration
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .exceptions import ConfigurationError
from .models import Protocol

JSON_URLS = {
    True: "https://appapi2.bankid.com/rp",
    False: "https://appapi2.test.bankid.com/rp",
}

WSDL_URLS = {
    True: "https://appapi2.bankid.com/rp/v4?wsdl",
    False: "https://appapi2.test.bankid.com/rp/v4?wsdl",
}

SUPPORTED_API_VERSIONS = ("v5", "v5.1")


@dataclass
class BankIdConfig:
    """Configuration for a BankIdClient."""

    # Client certificate bundle (PKCS#12), given as a path or as raw bytes
    pfx_path: Optional[Path] = None
    passphrase: str = field(default="", repr=False)
    pfx_data: Optional[bytes] = field(default=None, repr=False)

    # Trust anchor for the BankID server certificate
    ca_path: Optional[Path] = None
    ca_data: Optional[bytes] = field(default=None, repr=False)

    # Endpoint selection
    production: bool = False
    protocol: Protocol = Protocol.JSON
    api_version: str = "v5"

    # Timing
    timeout_seconds: float = 30.0
    poll_interval_ms: int = 2000
    order_lifetime_seconds: Optional[float] = None

    def __post_init__(self):
        if isinstance(self.pfx_path, str):
            self.pfx_path = Path(self.pfx_path)
        if isinstance(self.ca_path, str):
            self.ca_path = Path(self.ca_path)
        if isinstance(self.protocol, str):
            self.protocol = Protocol(self.protocol.lower())
        if isinstance(self.ca_data, str):
            self.ca_data = self.ca_data.encode()

    @property
    def base_url(self) -> str:
        """Versioned base URL of the JSON API."""
        return f"{JSON_URLS[self.production]}/{self.api_version}"

    @property
    def wsdl_url(self) -> str:
        return WSDL_URLS[self.production]

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.pfx_path is None and self.pfx_data is None:
            errors.append("pfx_path or pfx_data is required")
        if self.ca_path is None and self.ca_data is None:
            errors.append("ca_path or ca_data is required")

        if self.pfx_data is None and self.pfx_path is not None and not self.pfx_path.exists():
            errors.append(f"Client certificate bundle not found: {self.pfx_path}")
        if self.ca_data is None and self.ca_path is not None and not self.ca_path.exists():
            errors.append(f"CA certificate not found: {self.ca_path}")

        if self.protocol is Protocol.JSON and self.api_version not in SUPPORTED_API_VERSIONS:
            errors.append(f"Unsupported api_version: {self.api_version}")
        if self.timeout_seconds <= 0:
            errors.append("timeout_seconds must be positive")
        if self.order_lifetime_seconds is not None and self.order_lifetime_seconds <= 0:
            errors.append("order_lifetime_seconds must be positive")

        return errors

    def ensure_valid(self) -> None:
        errors = self.validate()
        if errors:
            raise ConfigurationError(f"Invalid BankID configuration: {'; '.join(errors)}")

    @classmethod
    def from_env(cls, prefix: str = "BANKID_") -> "BankIdConfig":
        """Load configuration from environment variables"""
        lifetime = os.getenv(f"{prefix}ORDER_LIFETIME_SECONDS")
        return cls(
            pfx_path=os.getenv(f"{prefix}PFX_PATH"),
            passphrase=os.getenv(f"{prefix}PASSPHRASE", ""),
            ca_path=os.getenv(f"{prefix}CA_PATH"),
            production=os.getenv(f"{prefix}PRODUCTION", "false").lower() == "true",
            protocol=os.getenv(f"{prefix}PROTOCOL", Protocol.JSON.value),
            api_version=os.getenv(f"{prefix}API_VERSION", "v5"),
            timeout_seconds=float(os.getenv(f"{prefix}TIMEOUT_SECONDS", "30")),
            poll_interval_ms=int(os.getenv(f"{prefix}POLL_INTERVAL_MS", "2000")),
            order_lifetime_seconds=float(lifetime) if lifetime else None,
        )
