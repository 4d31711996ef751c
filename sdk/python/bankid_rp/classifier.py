"""
BankID RP Client - Error Classifier

Normalizes SOAP fault trees, JSON error envelopes and plain strings into a
single NormalizedError, and protocol status strings into OrderStatus.
"""

from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from .exceptions import BankIdError, RemoteFault
from .models import NormalizedError, OrderStatus, Protocol

logger = structlog.get_logger(__name__)

RP_FAULT_PATH = "Envelope.Body.Fault.detail.RpFault"

SOAP_FAILED_STATUSES = frozenset({"NO_CLIENT", "EXPIRED_TRANSACTION"})


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def lookup(root: Any, path: str) -> Any:
    """
    Walk a dotted path through mappings, sequences and attributes.

    Returns MISSING at the first segment that cannot be resolved.
    """
    node = root
    for segment in path.split("."):
        if node is None or node is MISSING:
            return MISSING
        if isinstance(node, Mapping):
            node = node.get(segment, MISSING)
        elif isinstance(node, Sequence) and not isinstance(node, (str, bytes)):
            try:
                node = node[int(segment)]
            except (ValueError, IndexError):
                return MISSING
        else:
            node = getattr(node, segment, MISSING)
    return node


def _text(value: Any) -> str:
    return "" if value is None or value is MISSING else str(value)


def _classify_soap_fault(tree: Mapping) -> NormalizedError:
    root = tree["root"] if "root" in tree else tree
    rp_fault = lookup(root, RP_FAULT_PATH)
    if rp_fault is MISSING or rp_fault is None:
        return NormalizedError(
            status="UNKNOWN_FAULT",
            description=_text(lookup(root, "Envelope.Body.Fault.faultstring")),
            raw=tree,
        )
    return NormalizedError(
        status=_text(lookup(rp_fault, "faultStatus")) or "UNKNOWN_FAULT",
        description=_text(lookup(rp_fault, "detailedDescription")),
        raw=tree,
    )


def classify(raw: Any) -> NormalizedError:
    """Classify any fault shape into a NormalizedError. Never raises."""
    if isinstance(raw, NormalizedError):
        return raw

    if isinstance(raw, str):
        return NormalizedError(status="ERROR", description=raw, raw=raw)

    if isinstance(raw, RemoteFault) and raw.fault is not None:
        return raw.fault

    if isinstance(raw, BankIdError):
        return NormalizedError(status=raw.error_code or "ERROR", description=str(raw), raw=raw)

    if isinstance(raw, BaseException):
        return NormalizedError(status="ERROR", description=str(raw) or type(raw).__name__, raw=raw)

    if isinstance(raw, Mapping):
        if "errorCode" in raw:
            return NormalizedError(
                status=_text(raw.get("errorCode")),
                description=_text(raw.get("details")),
                raw=raw,
            )
        if "Envelope" in raw or "root" in raw:
            return _classify_soap_fault(raw)

    return NormalizedError(status="UNKNOWN", description=repr(raw), raw=raw)


def remote_fault(raw: Any) -> RemoteFault:
    """Build a RemoteFault carrying the classification of raw."""
    fault = classify(raw)
    message = fault.description or fault.status
    return RemoteFault(message, fault.status, fault=fault)


def normalize_status(raw_status: Any, protocol: Protocol) -> OrderStatus:
    """Map a protocol-specific status string onto OrderStatus."""
    value = _text(raw_status)

    if protocol is Protocol.SOAP:
        if value == "COMPLETE":
            return OrderStatus.COMPLETE
        if value in SOAP_FAILED_STATUSES:
            return OrderStatus.FAILED
        return OrderStatus.PENDING

    try:
        return OrderStatus(value)
    except ValueError:
        logger.warning("unknown_order_status", status=value)
        return OrderStatus.PENDING
