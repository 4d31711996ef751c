"""Tests for the order initiator and the protocol variants behind it."""

import base64
from unittest.mock import AsyncMock

import pytest

from bankid_rp.exceptions import ConfigurationError, RemoteFault, ValidationError
from bankid_rp.initiator import MAX_NON_VISIBLE_DATA_LENGTH, MAX_VISIBLE_DATA_LENGTH, OrderInitiator
from bankid_rp.models import OrderHandle, OrderStatus
from bankid_rp.protocols import RestProtocol, SoapProtocol

from conftest import COMPLETION

ORDER_RESPONSE = {
    "orderRef": "131daac9-16c6-4618-beb0-365768f37288",
    "autoStartToken": "7c40b5c9-fa74-49cf-b98c-bfe651f9a7c6",
}


def mock_transport(return_value=None):
    transport = AsyncMock()
    transport.invoke.return_value = ORDER_RESPONSE if return_value is None else return_value
    return transport


class TestRestInitiator:
    """JSON (v5) payloads."""

    @pytest.mark.asyncio
    async def test_authenticate(self):
        transport = mock_transport()
        initiator = OrderInitiator(RestProtocol(transport))

        handle = await initiator.authenticate("192.0.2.10", {"personalNumber": "190000000000"})

        assert handle == OrderHandle(
            order_ref=ORDER_RESPONSE["orderRef"],
            auto_start_token=ORDER_RESPONSE["autoStartToken"],
        )
        transport.invoke.assert_awaited_once_with(
            "auth", {"endUserIp": "192.0.2.10", "personalNumber": "190000000000"}
        )

    @pytest.mark.asyncio
    async def test_authenticate_requires_end_user_ip(self):
        transport = mock_transport()

        with pytest.raises(ValidationError):
            await OrderInitiator(RestProtocol(transport)).authenticate(None)

        transport.invoke.assert_not_called()

    @pytest.mark.asyncio
    async def test_sign_base64_encodes_texts(self):
        transport = mock_transport()
        initiator = OrderInitiator(RestProtocol(transport))

        await initiator.sign("192.0.2.10", "Pay 100 SEK to Åsa", "invoice-4711")

        operation, payload = transport.invoke.call_args.args
        assert operation == "sign"
        assert base64.b64decode(payload["userVisibleData"]).decode("utf-8") == "Pay 100 SEK to Åsa"
        assert base64.b64decode(payload["userNonVisibleData"]).decode("utf-8") == "invoice-4711"

    @pytest.mark.asyncio
    async def test_sign_omits_empty_non_visible_data(self):
        transport = mock_transport()

        await OrderInitiator(RestProtocol(transport)).sign("192.0.2.10", "hello")

        _, payload = transport.invoke.call_args.args
        assert "userNonVisibleData" not in payload

    @pytest.mark.asyncio
    async def test_visible_data_limit_applies_to_encoded_form(self):
        """30,001 bytes encode to 40,004 base64 chars, over the limit."""
        transport = mock_transport()

        with pytest.raises(ValidationError):
            await OrderInitiator(RestProtocol(transport)).sign("192.0.2.10", "a" * 30_001)

        transport.invoke.assert_not_called()

    @pytest.mark.asyncio
    async def test_visible_data_at_limit_is_accepted(self):
        transport = mock_transport()

        await OrderInitiator(RestProtocol(transport)).sign("192.0.2.10", "a" * 30_000)

        _, payload = transport.invoke.call_args.args
        assert len(payload["userVisibleData"]) == MAX_VISIBLE_DATA_LENGTH

    @pytest.mark.asyncio
    async def test_non_visible_data_limit(self):
        transport = mock_transport()

        with pytest.raises(ValidationError):
            await OrderInitiator(RestProtocol(transport)).sign("192.0.2.10", "hello", "b" * 150_001)

        transport.invoke.assert_not_called()

    @pytest.mark.asyncio
    async def test_options_do_not_overwrite_computed_fields(self):
        transport = mock_transport()

        await OrderInitiator(RestProtocol(transport)).sign(
            "192.0.2.10",
            "hello",
            options={
                "endUserIp": "203.0.113.99",
                "userVisibleData": "forged",
                "requirement": {"allowFingerprint": False},
            },
        )

        _, payload = transport.invoke.call_args.args
        assert payload["endUserIp"] == "192.0.2.10"
        assert payload["userVisibleData"] == base64.b64encode(b"hello").decode()
        assert payload["requirement"] == {"allowFingerprint": False}

    @pytest.mark.asyncio
    async def test_response_without_order_ref(self):
        transport = mock_transport({"autoStartToken": "x"})

        with pytest.raises(RemoteFault) as exc_info:
            await OrderInitiator(RestProtocol(transport)).authenticate("192.0.2.10")

        assert exc_info.value.error_code == "INVALID_RESPONSE"


class TestSoapInitiator:
    """SOAP (v4) payloads."""

    @pytest.mark.asyncio
    async def test_authenticate_sends_personal_number(self):
        transport = mock_transport()

        await OrderInitiator(SoapProtocol(transport)).authenticate("190101014801")

        transport.invoke.assert_awaited_once_with("authenticate", {"personalNumber": "190101014801"})

    @pytest.mark.asyncio
    async def test_authenticate_without_personal_number(self):
        transport = mock_transport()

        await OrderInitiator(SoapProtocol(transport)).authenticate(None)

        transport.invoke.assert_awaited_once_with("authenticate", {})

    @pytest.mark.asyncio
    async def test_personal_number_option_does_not_overwrite_argument(self):
        transport = mock_transport()

        await OrderInitiator(SoapProtocol(transport)).authenticate(
            "190101014801", {"personalNumber": "190000000000"}
        )

        transport.invoke.assert_awaited_once_with("authenticate", {"personalNumber": "190101014801"})

    @pytest.mark.asyncio
    async def test_sign_sends_visible_text_raw(self):
        transport = mock_transport()

        await OrderInitiator(SoapProtocol(transport)).sign("190101014801", "hello", "secret")

        operation, payload = transport.invoke.call_args.args
        assert operation == "sign"
        assert payload["personalNumber"] == "190101014801"
        assert payload["userVisibleData"] == "hello"
        assert payload["userNonVisibleData"] == base64.b64encode(b"secret").decode()

    @pytest.mark.asyncio
    async def test_visible_text_of_40001_chars_is_rejected(self):
        transport = mock_transport()

        with pytest.raises(ValidationError):
            await OrderInitiator(SoapProtocol(transport)).sign(None, "a" * (MAX_VISIBLE_DATA_LENGTH + 1))

        transport.invoke.assert_not_called()

    @pytest.mark.asyncio
    async def test_visible_text_of_40000_chars_is_accepted(self):
        transport = mock_transport()

        await OrderInitiator(SoapProtocol(transport)).sign(None, "a" * MAX_VISIBLE_DATA_LENGTH)

        transport.invoke.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_non_visible_limit(self):
        transport = mock_transport()
        # 150,000 bytes -> exactly 200,000 base64 chars
        await OrderInitiator(SoapProtocol(transport)).sign(None, "hello", "b" * 150_000)

        _, payload = transport.invoke.call_args.args
        assert len(payload["userNonVisibleData"]) == MAX_NON_VISIBLE_DATA_LENGTH


class TestRestProtocolCollect:

    @pytest.mark.asyncio
    async def test_complete_parses_completion_data(self):
        transport = mock_transport({
            "orderRef": "abc",
            "status": "complete",
            "completionData": COMPLETION,
        })

        outcome = await RestProtocol(transport).poll_status("abc")

        assert outcome.status is OrderStatus.COMPLETE
        assert outcome.completion_data.user.name == "Karl Karlsson"
        assert outcome.completion_data.device_ip == "192.0.2.10"
        assert outcome.completion_data.cert_not_after == "1563549674000"
        transport.invoke.assert_awaited_once_with("collect", {"orderRef": "abc"})

    @pytest.mark.asyncio
    async def test_pending_has_no_completion_data(self):
        transport = mock_transport({"orderRef": "abc", "status": "pending", "hintCode": "userSign"})

        outcome = await RestProtocol(transport).poll_status("abc")

        assert outcome.status is OrderStatus.PENDING
        assert outcome.hint_code == "userSign"
        assert outcome.completion_data is None

    @pytest.mark.asyncio
    async def test_complete_without_completion_data_is_fault(self):
        transport = mock_transport({"orderRef": "abc", "status": "complete"})

        with pytest.raises(RemoteFault):
            await RestProtocol(transport).poll_status("abc")

    @pytest.mark.asyncio
    async def test_cancel(self):
        transport = mock_transport({})

        assert await RestProtocol(transport).cancel("abc") == {}
        transport.invoke.assert_awaited_once_with("cancel", {"orderRef": "abc"})


class TestSoapProtocolCollect:

    @pytest.mark.asyncio
    async def test_complete_reads_user_info(self):
        transport = mock_transport({
            "progressStatus": "COMPLETE",
            "signature": "PD94bWw=",
            "ocspResponse": "MIIH",
            "userInfo": {
                "givenName": "Karl",
                "surname": "Karlsson",
                "name": "Karl Karlsson",
                "personalNumber": "190000000000",
                "notBefore": "2017-08-17",
                "notAfter": "2019-07-19",
                "ipAddress": "192.0.2.10",
            },
        })

        outcome = await SoapProtocol(transport).poll_status("abc")

        assert outcome.status is OrderStatus.COMPLETE
        assert outcome.hint_code is None
        assert outcome.completion_data.user.personal_number == "190000000000"
        assert outcome.completion_data.device_ip == "192.0.2.10"
        assert outcome.completion_data.signature == "PD94bWw="

    @pytest.mark.asyncio
    async def test_expired_transaction_is_failed_with_hint(self):
        transport = mock_transport({"progressStatus": "EXPIRED_TRANSACTION"})

        outcome = await SoapProtocol(transport).poll_status("abc")

        assert outcome.status is OrderStatus.FAILED
        assert outcome.hint_code == "EXPIRED_TRANSACTION"

    @pytest.mark.asyncio
    async def test_cancel_is_not_supported(self):
        transport = mock_transport()

        with pytest.raises(ConfigurationError):
            await SoapProtocol(transport).cancel("abc")

        transport.invoke.assert_not_called()
