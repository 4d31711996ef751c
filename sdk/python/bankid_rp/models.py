"""
BankID RP Client - Data Models
Data classes for orders, poll outcomes and credentials
"""

import ssl
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Any


class Protocol(str, Enum):
    """Wire protocol spoken with the BankID RP API"""
    JSON = "json"
    SOAP = "soap"


class OrderStatus(str, Enum):
    """Normalized status of an order, shared by both protocols"""
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


class PollState(str, Enum):
    """Lifecycle of a single collect() call"""
    IDLE = "idle"
    POLLING = "polling"
    RESOLVED_SUCCESS = "resolved_success"
    RESOLVED_FAILURE = "resolved_failure"
    RESOLVED_ERROR = "resolved_error"
    RESOLVED_CANCELLED = "resolved_cancelled"

    @property
    def is_resolved(self) -> bool:
        return self.value.startswith("resolved_")


@dataclass(frozen=True)
class CredentialBundle:
    """
    Client certificate material loaded by the CredentialStore.
    The ssl_context is derived from the other three fields at load time.
    """
    pkcs12: bytes
    ca_certificate: bytes
    passphrase: str = field(repr=False)
    ssl_context: Optional[ssl.SSLContext] = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class OrderHandle:
    """Reference to an order started with authenticate() or sign()"""
    order_ref: str
    auto_start_token: Optional[str] = None
    qr_start_token: Optional[str] = None
    qr_start_secret: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_dict(cls, data: dict) -> "OrderHandle":
        """Create an order handle from an initiation response"""
        return cls(
            order_ref=data["orderRef"],
            auto_start_token=data.get("autoStartToken"),
            qr_start_token=data.get("qrStartToken"),
            qr_start_secret=data.get("qrStartSecret"),
        )


@dataclass(frozen=True)
class UserInfo:
    personal_number: str
    name: str = ""
    given_name: str = ""
    surname: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "UserInfo":
        return cls(
            personal_number=data.get("personalNumber", ""),
            name=data.get("name", ""),
            given_name=data.get("givenName", ""),
            surname=data.get("surname", ""),
        )


@dataclass(frozen=True)
class CompletionData:
    """
    Identity and cryptographic proof returned when an order completes.
    """
    user: UserInfo
    device_ip: Optional[str] = None
    cert_not_before: Optional[str] = None
    cert_not_after: Optional[str] = None
    signature: Optional[str] = None
    ocsp_response: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "CompletionData":
        """Create from a v5 completionData block"""
        device = data.get("device") or {}
        cert = data.get("cert") or {}
        return cls(
            user=UserInfo.from_dict(data.get("user") or {}),
            device_ip=device.get("ipAddress"),
            cert_not_before=cert.get("notBefore"),
            cert_not_after=cert.get("notAfter"),
            signature=data.get("signature"),
            ocsp_response=data.get("ocspResponse"),
        )

    @classmethod
    def from_collect_response(cls, data: dict) -> "CompletionData":
        """Create from a v4 CollectResponse (userInfo, signature, ocspResponse)"""
        user_info = data.get("userInfo") or {}
        return cls(
            user=UserInfo.from_dict(user_info),
            device_ip=user_info.get("ipAddress"),
            cert_not_before=user_info.get("notBefore"),
            cert_not_after=user_info.get("notAfter"),
            signature=data.get("signature"),
            ocsp_response=data.get("ocspResponse"),
        )


@dataclass(frozen=True)
class PollOutcome:
    """
    Result of one status check. completion_data is populated if and only if
    the status is COMPLETE.
    """
    order_ref: str
    status: OrderStatus
    hint_code: Optional[str] = None
    completion_data: Optional[CompletionData] = None
    raw: dict = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self):
        if (self.status is OrderStatus.COMPLETE) != (self.completion_data is not None):
            raise ValueError(
                f"completion_data must be present exactly when status is complete "
                f"(status={self.status.value})"
            )


@dataclass(frozen=True)
class NormalizedError:
    """Protocol-independent description of a fault"""
    status: str
    description: str = ""
    raw: Any = field(default=None, repr=False, compare=False)
