"""
BankID RP Client - Exception Classes
Error taxonomy shared by the initiator, transports and order poller
"""

from typing import Optional


class BankIdError(Exception):
    """Base exception for all BankID client errors"""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.error_code = error_code

    @property
    def description(self) -> str:
        return str(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r}, error_code={self.error_code!r})"


class ConfigurationError(BankIdError):
    """Raised when the client configuration is incomplete or inconsistent"""
    pass


class ValidationError(BankIdError):
    """Raised when a request payload is rejected before any network call"""
    pass


class InitializationError(BankIdError):
    """Raised when the credential bundle cannot be read or parsed"""
    pass


class TransportError(BankIdError):
    """Raised on network, TLS or timeout failures"""
    pass


class RemoteFault(BankIdError):
    """Raised when the service answers with a protocol-level error or SOAP fault"""

    def __init__(self, message: str, error_code: Optional[str] = None, fault=None):
        super().__init__(message, error_code)
        # NormalizedError from the classifier
        self.fault = fault


class OrderFailed(BankIdError):
    """Raised when an order reaches the terminal FAILED status"""

    def __init__(self, order_ref: str, hint_code: Optional[str] = None):
        message = f"Order {order_ref} failed"
        if hint_code:
            message = f"{message}: {hint_code}"
        super().__init__(message, "failed")
        self.order_ref = order_ref
        self.hint_code = hint_code


class OrderCancelled(BankIdError):
    """Raised when collection of an order is cancelled by the caller"""

    def __init__(self, order_ref: str):
        super().__init__(f"Collection of order {order_ref} was cancelled", "cancelled")
        self.order_ref = order_ref
