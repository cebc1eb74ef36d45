"""
Tests for the attestation and order service HTTP clients.
"""
import asyncio
import logging

import pytest
import requests
import requests_mock

from crosspay_sdk.api import AttestationClient, OrderServiceClient, _sanitize_payload
from crosspay_sdk.exceptions import ApiError, NotFoundError, RateLimitError
from conftest import BURN_TX, TEST_API_URL, TEST_ATTESTATION_URL, complete_attestation

MESSAGES_URL = f"{TEST_ATTESTATION_URL}/v2/messages/0"


@pytest.fixture
def attestations():
    return AttestationClient(TEST_ATTESTATION_URL)


@pytest.fixture
def orders():
    return OrderServiceClient(TEST_API_URL)


class TestSanitizePayload:
    def test_redacts_sensitive_keys(self):
        sanitized = _sanitize_payload({"signature": "0x" + "11" * 65, "orderHash": "0xabc"})
        assert sanitized["signature"] == "[REDACTED - 132 chars]"
        assert sanitized["orderHash"] == "0xabc"

    def test_non_dict_payload(self):
        assert _sanitize_payload(None) is None
        assert _sanitize_payload([1, 2]) == {"type": "<class 'list'>"}


class TestAttestationClient:
    def test_complete_attestation(self, attestations):
        with requests_mock.Mocker() as m:
            m.get(MESSAGES_URL, json=complete_attestation())
            attestation = asyncio.run(attestations.get_attestation(0, BURN_TX))

            assert m.last_request.qs == {"transactionhash": [BURN_TX]}

        assert attestation.status == "complete"
        assert attestation.message == "0x" + "aa" * 40
        assert attestation.event_nonce == "7"

    def test_not_indexed_yet(self, attestations):
        with requests_mock.Mocker() as m:
            m.get(MESSAGES_URL, status_code=404, json={"error": "Message hash not found"})
            assert asyncio.run(attestations.get_attestation(0, BURN_TX)) is None

    @pytest.mark.parametrize("body", [
        {"messages": []},
        {"messages": [{"status": "pending_confirmations", "message": "0x", "attestation": "PENDING"}]},
        {"messages": complete_attestation()["messages"] * 2},
    ])
    def test_not_ready(self, attestations, body):
        with requests_mock.Mocker() as m:
            m.get(MESSAGES_URL, json=body)
            assert asyncio.run(attestations.get_attestation(0, BURN_TX)) is None

    def test_rate_limited(self, attestations):
        with requests_mock.Mocker() as m:
            m.get(MESSAGES_URL, status_code=429, json={"error": "Too Many Requests"})
            with pytest.raises(RateLimitError) as exc_info:
                asyncio.run(attestations.get_attestation(0, BURN_TX))
        assert exc_info.value.status_code == 429

    def test_unexpected_body(self, attestations):
        with requests_mock.Mocker() as m:
            m.get(MESSAGES_URL, json=["not", "a", "dict"])
            with pytest.raises(ApiError):
                asyncio.run(attestations.fetch_messages(0, BURN_TX))


class TestOrderServiceClient:
    def test_get_route(self, orders):
        with requests_mock.Mocker() as m:
            m.post(f"{TEST_API_URL}/payment/route", json={"routeType": "circle_cctp"})
            result = asyncio.run(orders.get_route({"amount": "10"}))

            assert m.last_request.json() == {"amount": "10"}
        assert result == {"routeType": "circle_cctp"}

    def test_order_status(self, orders):
        with requests_mock.Mocker() as m:
            m.get(f"{TEST_API_URL}/payment/inch/status", json={"status": "pending"})
            assert asyncio.run(orders.order_status("0xhash")) == {"status": "pending"}
            assert m.last_request.qs == {"orderhash": ["0xhash"]}

    def test_not_found(self, orders):
        with requests_mock.Mocker() as m:
            m.post(f"{TEST_API_URL}/payment/inch/finalize", status_code=404, json={"message": "unknown order"})
            with pytest.raises(NotFoundError) as exc_info:
                asyncio.run(orders.finalize({"orderHash": "0xhash"}))
        assert "unknown order" in str(exc_info.value)

    def test_rate_limit_marker_in_body(self, orders):
        with requests_mock.Mocker() as m:
            m.post(f"{TEST_API_URL}/payment/process", status_code=400,
                   json={"error": "You have reached the limit of requests"})
            with pytest.raises(RateLimitError):
                asyncio.run(orders.process({}))

    def test_server_error(self, orders):
        with requests_mock.Mocker() as m:
            m.post(f"{TEST_API_URL}/payment/process", status_code=500, text="Internal Server Error")
            with pytest.raises(ApiError) as exc_info:
                asyncio.run(orders.process({}))
        assert exc_info.value.status_code == 500
        assert not isinstance(exc_info.value, RateLimitError)

    def test_connection_error(self, orders):
        with requests_mock.Mocker() as m:
            m.post(f"{TEST_API_URL}/payment/process", exc=requests.exceptions.ConnectionError("refused"))
            with pytest.raises(ApiError) as exc_info:
                asyncio.run(orders.process({}))
        assert "refused" in str(exc_info.value)

    def test_invalid_json(self, orders):
        with requests_mock.Mocker() as m:
            m.post(f"{TEST_API_URL}/payment/process", text="<html>", headers={"Content-Type": "text/html"})
            with pytest.raises(ApiError):
                asyncio.run(orders.process({}))

    def test_content_type_warning(self, orders, caplog):
        with requests_mock.Mocker() as m:
            m.post(f"{TEST_API_URL}/payment/route", text='{"routeType": "inch_fusion"}',
                   headers={"Content-Type": "text/plain"})
            with caplog.at_level(logging.WARNING):
                result = asyncio.run(orders.get_route({}))
        assert result == {"routeType": "inch_fusion"}
        assert "Unexpected Content-Type" in caplog.text

    def test_signature_not_logged(self, orders, caplog):
        with requests_mock.Mocker() as m:
            m.post(f"{TEST_API_URL}/payment/inch/finalize", json={"success": True})
            with caplog.at_level(logging.DEBUG):
                asyncio.run(orders.finalize({"signature": "0x" + "11" * 65}))
        assert "11" * 65 not in caplog.text

    def test_insecure_url_rejected(self, monkeypatch):
        monkeypatch.delenv("CROSSPAY_INSECURE_HTTP", raising=False)
        with pytest.raises(ValueError):
            OrderServiceClient("http://pay.example.com")
