"""
BankID RP Client - Main Client
Primary client class for relying parties talking to the BankID RP API
"""

import asyncio
from collections.abc import Mapping
from typing import Optional, Union

import httpx
import structlog

from .config import BankIdConfig
from .credentials import CredentialStore
from .initiator import OrderInitiator
from .models import OrderHandle, PollOutcome, Protocol
from .poller import OrderPoller, StatusObserver
from .protocols import BankIdProtocol, RestProtocol, SoapProtocol
from .transport import JsonTransport, SoapTransport

logger = structlog.get_logger(__name__)


def create_protocol(
    config: BankIdConfig,
    credentials: CredentialStore,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BankIdProtocol:
    """Select the protocol implementation named by the configuration."""
    if config.protocol is Protocol.SOAP:
        transport = SoapTransport(credentials, config.wsdl_url, timeout_seconds=config.timeout_seconds)
        return SoapProtocol(transport)

    transport = JsonTransport(
        credentials,
        config.base_url,
        timeout_seconds=config.timeout_seconds,
        http_transport=http_transport,
    )
    return RestProtocol(transport)


class BankIdClient:
    """
    Main client for the BankID RP API.

    Usage:
        config = BankIdConfig(
            pfx_path="certs/FPTestcert.p12",
            passphrase="qwerty123",
            ca_path="certs/test.ca",
        )

        async with BankIdClient(config) as client:
            order = await client.authenticate("192.0.2.10")

            result = await client.collect(
                order,
                interval_ms=2000,
                on_status_change=lambda status, hint: print(status, hint),
            )
            print(result.completion_data.user.name)
    """

    def __init__(
        self,
        config: BankIdConfig,
        protocol: Optional[BankIdProtocol] = None,
        credentials: Optional[CredentialStore] = None,
    ):
        """
        Initialize the BankID client. Nothing is read or fetched until the
        first request.

        Args:
            config: Client configuration
            protocol: Protocol implementation override (tests, custom transports)
            credentials: Credential store override
        """
        if protocol is None:
            config.ensure_valid()

        self.config = config
        self.credentials = credentials or CredentialStore.from_config(config)
        self.protocol = protocol or create_protocol(config, self.credentials)

        self._initiator = OrderInitiator(self.protocol)
        self._poller = OrderPoller(
            self.protocol,
            default_interval_ms=config.poll_interval_ms,
            order_lifetime_seconds=config.order_lifetime_seconds,
        )

    @classmethod
    def from_env(cls, prefix: str = "BANKID_") -> "BankIdClient":
        return cls(BankIdConfig.from_env(prefix))

    async def init(self) -> None:
        """Load credentials eagerly instead of on the first request."""
        await self.credentials.load()

    # =========================================================================
    # Orders
    # =========================================================================

    async def authenticate(
        self,
        end_user_identifier: Optional[str] = None,
        options: Optional[Mapping] = None,
    ) -> OrderHandle:
        """Start an authentication order."""
        return await self._initiator.authenticate(end_user_identifier, options)

    async def sign(
        self,
        end_user_identifier: Optional[str],
        user_visible_data: str,
        user_non_visible_data: Optional[str] = None,
        options: Optional[Mapping] = None,
    ) -> OrderHandle:
        """Start a signing order."""
        return await self._initiator.sign(end_user_identifier, user_visible_data, user_non_visible_data, options)

    async def collect(
        self,
        order: Union[OrderHandle, str],
        interval_ms: Optional[int] = None,
        on_status_change: Optional[StatusObserver] = None,
        cancel: Optional[asyncio.Event] = None,
        lifetime_seconds: Optional[float] = None,
        notify_hint_changes: bool = False,
    ) -> PollOutcome:
        """Poll an order until it completes, fails or errors. See OrderPoller.collect."""
        return await self._poller.collect(
            order,
            interval_ms=interval_ms,
            on_status_change=on_status_change,
            cancel=cancel,
            lifetime_seconds=lifetime_seconds,
            notify_hint_changes=notify_hint_changes,
        )

    async def cancel(self, order: Union[OrderHandle, str]) -> dict:
        """Cancel an order on the server (JSON protocol only)."""
        order_ref = order.order_ref if isinstance(order, OrderHandle) else order
        return await self.protocol.cancel(order_ref)

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def aclose(self) -> None:
        """Close the client and release transport resources."""
        await self.protocol.aclose()
        logger.debug("bankid_client_closed")

    async def __aenter__(self) -> "BankIdClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False
