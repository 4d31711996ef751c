"""
BankID RP Client
Async client for the BankID relying-party API (v5 JSON and legacy v4 SOAP)
"""

from .client import BankIdClient, create_protocol
from .config import BankIdConfig
from .credentials import CredentialStore
from .logging_config import configure_logging
from .models import (
    CompletionData,
    CredentialBundle,
    NormalizedError,
    OrderHandle,
    OrderStatus,
    PollOutcome,
    PollState,
    Protocol,
    UserInfo,
)
from .exceptions import (
    BankIdError,
    ConfigurationError,
    ValidationError,
    InitializationError,
    TransportError,
    RemoteFault,
    OrderFailed,
    OrderCancelled,
)

__version__ = "1.0.0"
__all__ = [
    "BankIdClient",
    "BankIdConfig",
    "CredentialStore",
    "create_protocol",
    "configure_logging",
    "CompletionData",
    "CredentialBundle",
    "NormalizedError",
    "OrderHandle",
    "OrderStatus",
    "PollOutcome",
    "PollState",
    "Protocol",
    "UserInfo",
    "BankIdError",
    "ConfigurationError",
    "ValidationError",
    "InitializationError",
    "TransportError",
    "RemoteFault",
    "OrderFailed",
    "OrderCancelled",
]
