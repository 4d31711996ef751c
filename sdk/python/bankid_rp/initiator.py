"""
BankID RP Client - Order Initiator
"""

from collections.abc import Mapping
from typing import Optional

import structlog

from .exceptions import ValidationError
from .models import OrderHandle
from .protocols import BankIdProtocol, OrderKind

logger = structlog.get_logger(__name__)

MAX_VISIBLE_DATA_LENGTH = 40_000
MAX_NON_VISIBLE_DATA_LENGTH = 200_000

KNOWN_OPTIONS = frozenset({
    "personalNumber",
    "requirement",
    "requirementAlternatives",
    "endUserInfo",
    "userVisibleDataFormat",
})


class OrderInitiator:
    """
    Builds auth and sign payloads and starts orders.

    Payload limits are checked before anything touches the network or the
    credential store.
    """

    def __init__(self, protocol: BankIdProtocol):
        self.protocol = protocol

    async def authenticate(
        self,
        end_user_identifier: Optional[str] = None,
        options: Optional[Mapping] = None,
    ) -> OrderHandle:
        """
        Start an authentication order.

        Args:
            end_user_identifier: End user IP address (JSON) or personal number (SOAP)
            options: Extra request fields such as personalNumber or requirement

        Returns:
            OrderHandle for collect()
        """
        payload = self._base_payload(end_user_identifier)
        payload = self._merge_options(payload, options)
        return await self.protocol.initiate(OrderKind.AUTH, payload)

    async def sign(
        self,
        end_user_identifier: Optional[str],
        user_visible_data: str,
        user_non_visible_data: Optional[str] = None,
        options: Optional[Mapping] = None,
    ) -> OrderHandle:
        """
        Start a signing order.

        Args:
            end_user_identifier: End user IP address (JSON) or personal number (SOAP)
            user_visible_data: Text shown to the user in the BankID app
            user_non_visible_data: Data signed but not shown
            options: Extra request fields such as personalNumber or requirement

        Returns:
            OrderHandle for collect()
        """
        if not user_visible_data:
            raise ValidationError("userVisibleData is required", "INVALID_PARAMETERS")

        visible = self.protocol.encode_visible_text(user_visible_data)
        if len(visible) > MAX_VISIBLE_DATA_LENGTH:
            raise ValidationError(
                f"User visible data exceeds {MAX_VISIBLE_DATA_LENGTH} chars ({len(visible)})",
                "INVALID_PARAMETERS",
            )

        non_visible = None
        if user_non_visible_data:
            non_visible = self.protocol.encode_hidden_text(user_non_visible_data)
            if len(non_visible) > MAX_NON_VISIBLE_DATA_LENGTH:
                raise ValidationError(
                    f"User non-visible data exceeds {MAX_NON_VISIBLE_DATA_LENGTH} chars ({len(non_visible)})",
                    "INVALID_PARAMETERS",
                )

        payload = self._base_payload(end_user_identifier)
        payload["userVisibleData"] = visible
        if non_visible is not None:
            payload["userNonVisibleData"] = non_visible

        payload = self._merge_options(payload, options)
        return await self.protocol.initiate(OrderKind.SIGN, payload)

    def _base_payload(self, end_user_identifier: Optional[str]) -> dict:
        field = self.protocol.end_user_field
        if not end_user_identifier:
            if self.protocol.requires_end_user:
                raise ValidationError(f"{field} is required", "INVALID_PARAMETERS")
            return {}
        return {field: end_user_identifier}

    def _merge_options(self, payload: dict, options: Optional[Mapping]) -> dict:
        if not options:
            return payload

        merged = dict(payload)
        for key, value in options.items():
            if key in payload:
                logger.warning("option_ignored", option=key, reason="computed field")
                continue
            if key not in KNOWN_OPTIONS:
                logger.warning("unknown_option", option=key)
            if value is not None:
                merged[key] = value
        return merged
