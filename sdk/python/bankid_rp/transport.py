"""
BankID RP Client - Secure Transport

Single-call adapters over mutual TLS. Both variants expose
invoke(operation, payload) -> dict and never retry.
"""

import asyncio
import re
from abc import ABC, abstractmethod
from typing import Optional, Any, Callable

import httpx
import structlog
import zeep
from lxml import etree
from zeep.exceptions import Error as ZeepError
from zeep.exceptions import Fault
from zeep.exceptions import TransportError as ZeepTransportError
from zeep.helpers import serialize_object
from zeep.transports import AsyncTransport

from .classifier import remote_fault
from .credentials import CredentialStore
from .exceptions import InitializationError, TransportError
from .models import CredentialBundle

logger = structlog.get_logger(__name__)

USER_AGENT = "bankid-rp-client/1.0"


class Transport(ABC):
    """One outbound call, request in, decoded response out."""

    def __init__(self, credentials: CredentialStore, timeout_seconds: float = 30.0):
        self.credentials = credentials
        self.timeout_seconds = timeout_seconds

    @abstractmethod
    async def invoke(self, operation: str, payload: dict) -> dict:
        ...

    async def aclose(self) -> None:
        pass


class JsonTransport(Transport):
    """
    JSON-over-HTTPS transport for the v5 API.

    Opens one connection per call. A body carrying errorCode is a fault even
    when the HTTP status is 2xx.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        base_url: str,
        timeout_seconds: float = 30.0,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(credentials, timeout_seconds)
        self.base_url = base_url.rstrip("/")
        self._http_transport = http_transport

    async def invoke(self, operation: str, payload: dict) -> dict:
        bundle = await self.credentials.load()
        url = f"{self.base_url}/{operation.lstrip('/')}"
        log = logger.bind(operation=operation)

        try:
            async with httpx.AsyncClient(
                verify=bundle.ssl_context,
                timeout=httpx.Timeout(self.timeout_seconds),
                transport=self._http_transport,
                headers={
                    "Content-Type": "application/json",
                    "User-Agent": USER_AGENT,
                },
            ) as client:
                response = await client.post(url, json=payload)
        except httpx.TimeoutException as e:
            log.warning("bankid_request_timeout", error=str(e))
            raise TransportError(f"Request timed out: {e}", "TIMEOUT") from e
        except httpx.TransportError as e:
            log.warning("bankid_connection_error", error=str(e))
            raise TransportError(f"Connection failed: {e}", "CONNECTION_FAILED") from e

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = None

        if isinstance(body, dict) and body.get("errorCode"):
            log.warning("bankid_error_response", status_code=response.status_code, error_code=body["errorCode"])
            raise remote_fault(body)

        if response.status_code >= 400 or not isinstance(body, dict):
            log.warning("bankid_unexpected_response", status_code=response.status_code)
            raise remote_fault({
                "errorCode": f"HTTP_{response.status_code}",
                "details": response.text[:500],
            })

        log.debug("bankid_response", status_code=response.status_code)
        return body


def pascal_case(operation: str) -> str:
    """collect -> Collect, get_status -> GetStatus"""
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[_\-\s]+", operation) if part)


def element_to_dict(element) -> Any:
    """Convert an lxml element into nested dicts keyed by local name."""
    if element is None:
        return None
    children = [child for child in element if isinstance(child.tag, str)]
    if not children:
        return element.text
    result = {}
    for child in children:
        result[etree.QName(child).localname] = element_to_dict(child)
    return result


def fault_to_tree(fault: Fault) -> dict:
    """Rebuild the Envelope/Body/Fault structure of a zeep Fault."""
    return {
        "Envelope": {
            "Body": {
                "Fault": {
                    "faultcode": fault.code,
                    "faultstring": fault.message,
                    "detail": element_to_dict(fault.detail),
                },
            },
        },
    }


ClientFactory = Callable[[CredentialBundle], Any]


class SoapTransport(Transport):
    """
    SOAP transport for the legacy v4 API.

    The zeep client is built once from the WSDL, on first use, and reuses
    httpx clients that carry the credential bundle's SSL context.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        wsdl_url: str,
        timeout_seconds: float = 30.0,
        client_factory: Optional[ClientFactory] = None,
    ):
        super().__init__(credentials, timeout_seconds)
        self.wsdl_url = wsdl_url
        self._client_factory = client_factory or self._create_client
        self._client = None
        self._client_lock = asyncio.Lock()
        self._http_clients: list = []

    def _create_client(self, bundle: CredentialBundle):
        wsdl_client = httpx.Client(verify=bundle.ssl_context, timeout=self.timeout_seconds)
        client = httpx.AsyncClient(verify=bundle.ssl_context, timeout=self.timeout_seconds)
        self._http_clients = [client, wsdl_client]

        transport = AsyncTransport(
            client=client,
            wsdl_client=wsdl_client,
            timeout=self.timeout_seconds,
            operation_timeout=self.timeout_seconds,
        )
        return zeep.AsyncClient(self.wsdl_url, transport=transport)

    async def _get_client(self):
        if self._client is not None:
            return self._client

        async with self._client_lock:
            if self._client is None:
                bundle = await self.credentials.load()
                try:
                    # WSDL fetch and parse are blocking
                    self._client = await asyncio.to_thread(self._client_factory, bundle)
                except httpx.TransportError as e:
                    await self._close_http_clients()
                    raise TransportError(f"Failed to fetch WSDL: {e}", "CONNECTION_FAILED") from e
                except Exception as e:
                    await self._close_http_clients()
                    raise InitializationError(f"Failed to load WSDL {self.wsdl_url}: {e}", "INITIALIZATION_FAILED") from e
                logger.info("soap_client_ready", wsdl_url=self.wsdl_url)
        return self._client

    async def invoke(self, operation: str, payload: dict) -> dict:
        client = await self._get_client()
        method_name = pascal_case(operation)
        log = logger.bind(operation=method_name)

        try:
            method = getattr(client.service, method_name)
            result = await method(**payload)
        except Fault as e:
            log.warning("soap_fault", fault_code=e.code, error=e.message)
            raise remote_fault(fault_to_tree(e)) from e
        except ZeepTransportError as e:
            log.warning("soap_http_error", status_code=e.status_code)
            raise remote_fault({"errorCode": f"HTTP_{e.status_code}", "details": e.message}) from e
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {e}", "TIMEOUT") from e
        except httpx.TransportError as e:
            raise TransportError(f"Connection failed: {e}", "CONNECTION_FAILED") from e
        except ZeepError as e:
            raise remote_fault(str(e)) from e

        data = result if isinstance(result, dict) else serialize_object(result, dict)
        if not isinstance(data, dict):
            data = {"result": data}
        return data

    async def _close_http_clients(self) -> None:
        http_clients, self._http_clients = self._http_clients, []
        for http_client in http_clients:
            if isinstance(http_client, httpx.AsyncClient):
                await http_client.aclose()
            else:
                http_client.close()

    async def aclose(self) -> None:
        await self._close_http_clients()
        self._client = None
