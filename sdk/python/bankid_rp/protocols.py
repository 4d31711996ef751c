"""
BankID RP Client - Protocol variants

RestProtocol (v5, JSON) and SoapProtocol (v4, SOAP) implement the same
capability interface, so the initiator and poller are written once.
"""

import base64
from abc import ABC, abstractmethod
from enum import Enum

import structlog

from .classifier import normalize_status, remote_fault
from .exceptions import ConfigurationError
from .models import CompletionData, OrderHandle, OrderStatus, PollOutcome, Protocol
from .transport import Transport

logger = structlog.get_logger(__name__)


class OrderKind(str, Enum):
    AUTH = "auth"
    SIGN = "sign"


def b64encode_text(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


class BankIdProtocol(ABC):
    """Capability interface over one wire protocol."""

    protocol: Protocol
    # Whether userVisibleData travels base64 encoded
    encodes_visible_text: bool = True
    # Request field carrying the end-user identifier, and whether it is mandatory
    end_user_field: str = "endUserIp"
    requires_end_user: bool = True
    supports_cancel: bool = False

    def __init__(self, transport: Transport):
        self.transport = transport

    def encode_visible_text(self, text: str) -> str:
        return b64encode_text(text) if self.encodes_visible_text else text

    def encode_hidden_text(self, text: str) -> str:
        return b64encode_text(text)

    async def initiate(self, kind: OrderKind, payload: dict) -> OrderHandle:
        data = await self.transport.invoke(self.operation_for(kind), payload)
        if not data.get("orderRef"):
            raise remote_fault({
                "errorCode": "INVALID_RESPONSE",
                "details": f"{kind.value} response did not contain an orderRef",
            })
        handle = OrderHandle.from_dict(data)
        logger.info("order_started", kind=kind.value, order_ref=handle.order_ref)
        return handle

    @abstractmethod
    def operation_for(self, kind: OrderKind) -> str:
        ...

    @abstractmethod
    async def poll_status(self, order_ref: str) -> PollOutcome:
        ...

    async def cancel(self, order_ref: str) -> dict:
        raise ConfigurationError(
            f"cancel is not supported by the {self.protocol.value} protocol", "UNSUPPORTED_OPERATION"
        )

    async def aclose(self) -> None:
        await self.transport.aclose()


class RestProtocol(BankIdProtocol):
    """BankID RP v5 JSON API."""

    protocol = Protocol.JSON
    encodes_visible_text = True
    end_user_field = "endUserIp"
    requires_end_user = True
    supports_cancel = True

    def operation_for(self, kind: OrderKind) -> str:
        return kind.value

    async def poll_status(self, order_ref: str) -> PollOutcome:
        data = await self.transport.invoke("collect", {"orderRef": order_ref})
        status = normalize_status(data.get("status"), self.protocol)

        completion_data = None
        if status is OrderStatus.COMPLETE:
            if not data.get("completionData"):
                raise remote_fault({
                    "errorCode": "INVALID_RESPONSE",
                    "details": f"order {order_ref} completed without completionData",
                })
            completion_data = CompletionData.from_dict(data["completionData"])

        return PollOutcome(
            order_ref=data.get("orderRef", order_ref),
            status=status,
            hint_code=data.get("hintCode"),
            completion_data=completion_data,
            raw=data,
        )

    async def cancel(self, order_ref: str) -> dict:
        result = await self.transport.invoke("cancel", {"orderRef": order_ref})
        logger.info("order_cancelled", order_ref=order_ref)
        return result


class SoapProtocol(BankIdProtocol):
    """
    BankID RP v4 SOAP API.

    The v4 schema takes userVisibleData as plain text; only the non-visible
    data is base64 encoded. Orders are addressed by personalNumber instead of
    endUserIp, and there is no cancel operation.
    """

    protocol = Protocol.SOAP
    encodes_visible_text = False
    end_user_field = "personalNumber"
    requires_end_user = False
    supports_cancel = False

    def operation_for(self, kind: OrderKind) -> str:
        return "authenticate" if kind is OrderKind.AUTH else "sign"

    async def poll_status(self, order_ref: str) -> PollOutcome:
        data = await self.transport.invoke("collect", {"orderRef": order_ref})
        progress_status = data.get("progressStatus")
        status = normalize_status(progress_status, self.protocol)

        completion_data = None
        hint_code = progress_status
        if status is OrderStatus.COMPLETE:
            completion_data = CompletionData.from_collect_response(data)
            hint_code = None

        return PollOutcome(
            order_ref=order_ref,
            status=status,
            hint_code=hint_code,
            completion_data=completion_data,
            raw=data,
        )
