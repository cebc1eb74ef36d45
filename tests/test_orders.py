"""
Tests for the signed-order state machine.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import requests_mock
from web3 import Web3

from crosspay_sdk.api import OrderServiceClient
from crosspay_sdk.exceptions import (
    ApiError,
    InvalidTransitionError,
    MalformedOrderError,
    NotFoundError,
    OperationCancelledError,
    OrderFailedError,
    PollingTimeoutError,
    RateLimitError,
    UserRejectedError,
)
from crosspay_sdk.models import PreparedOrder, TransferIntent
from crosspay_sdk.orders import SignedOrderFlow
from crosspay_sdk.state import OrderPhase
from conftest import RECIPIENT, SEPOLIA, TEST_API_URL, WETH_SEPOLIA, FakeSigner

BSC = 56
BSC_USDT = Web3.to_checksum_address("0x55d398326f99059ff775485246999027b3197955")
ORDER_HASH = "0x" + "0f" * 32

TYPED_DATA = {
    "domain": {"name": "1inch Aggregation Router", "version": "6", "chainId": SEPOLIA,
               "verifyingContract": "0x111111125421cA6dc452d289314280a0f8842A65"},
    "types": {
        "EIP712Domain": [{"name": "name", "type": "string"}],
        "Order": [{"name": "salt", "type": "uint256"}, {"name": "maker", "type": "address"}],
    },
    "message": {"salt": "1", "maker": RECIPIENT},
}


def process_response(data_to_sign=TYPED_DATA, order_hash=ORDER_HASH):
    return {
        "orderData": {
            "srcChainId": SEPOLIA,
            "orderStruct": {"maker": RECIPIENT, "salt": "1"},
            "quoteId": "quote-1",
            "secretHashes": ["0x" + "01" * 32],
            "extension": "0x",
            "orderHash": order_hash,
            "dataToSign": data_to_sign,
        },
        "orderHash": order_hash,
    }


def make_intent():
    return TransferIntent(
        source_chain_id=SEPOLIA,
        destination_chain_id=BSC,
        source_token=WETH_SEPOLIA,
        destination_token=BSC_USDT,
        amount=10 ** 15,
        recipient=RECIPIENT,
        note="invoice 42",
    )


def order_service(statuses=("executed",), process=None, finalize=None):
    service = MagicMock(spec=OrderServiceClient)
    service.process = AsyncMock(return_value=process_response()) if process is None else process
    service.finalize = AsyncMock(return_value={"success": True}) if finalize is None else finalize
    service.order_status = AsyncMock(side_effect=[{"status": s} for s in statuses])
    return service


def run_flow(flow, intent=None):
    async def scenario():
        order = await flow.prepare(intent or make_intent())
        return await flow.sign_and_submit(order)
    return asyncio.run(scenario())


class TestPrepare:
    def test_payload_sent_to_order_service(self, settings, fake_signer):
        service = order_service()
        flow = SignedOrderFlow(service, fake_signer, settings=settings)

        order = asyncio.run(flow.prepare(make_intent()))

        payload = service.process.await_args.args[0]
        assert payload == {
            "senderAddress": fake_signer.address,
            "recipientAddress": RECIPIENT,
            "sourceChainId": SEPOLIA,
            "sourceToken": WETH_SEPOLIA,
            "amount": str(10 ** 15),
            "targetChainId": BSC,
            "targetToken": BSC_USDT,
            "routeType": "inch_fusion",
            "note": "invoice 42",
        }
        assert order.order_hash == ORDER_HASH
        assert flow.state.phase == OrderPhase.PREPARING
        assert flow.state.order_hash == ORDER_HASH

    def test_missing_order_data(self, settings, fake_signer):
        service = order_service(process=AsyncMock(return_value={"success": False}))
        flow = SignedOrderFlow(service, fake_signer, settings=settings)

        with pytest.raises(MalformedOrderError):
            asyncio.run(flow.prepare(make_intent()))
        assert flow.state.phase == OrderPhase.ERROR

    def test_rate_limited_process_is_retried(self, settings, fake_signer, sleeps):
        process = AsyncMock(side_effect=[RateLimitError("Too Many Requests", status_code=429), process_response()])
        flow = SignedOrderFlow(order_service(process=process), fake_signer, settings=settings)

        order = asyncio.run(flow.prepare(make_intent()))

        assert order.order_hash == ORDER_HASH
        assert process.await_count == 2
        assert sleeps.delays == [1.0]

    def test_other_api_errors_are_not_retried(self, settings, fake_signer):
        process = AsyncMock(side_effect=ApiError("POST /payment/process returned 400: bad amount", status_code=400))
        flow = SignedOrderFlow(order_service(process=process), fake_signer, settings=settings)

        with pytest.raises(ApiError):
            asyncio.run(flow.prepare(make_intent()))
        assert process.await_count == 1
        assert "bad amount" in flow.state.error_message


class TestSignAndSubmit:
    def test_executed_order(self, settings, fake_signer, sleeps):
        service = order_service(statuses=("pending", "ready", "executed"))
        flow = SignedOrderFlow(service, fake_signer, settings=settings)

        state = run_flow(flow)

        assert state.phase == OrderPhase.EXECUTED
        assert state.signature == "0x" + "11" * 65
        assert state.poll_status == "executed"
        assert state.poll_attempts == 3
        assert sleeps.delays == [10.0, 10.0]
        state.raise_for_status()

        domain, types, message = fake_signer.typed_data[0]
        assert "EIP712Domain" not in types
        assert types["Order"] == TYPED_DATA["types"]["Order"]
        assert domain == TYPED_DATA["domain"]

        finalize_payload = service.finalize.await_args.args[0]
        assert finalize_payload["signature"] == "0x" + "11" * 65
        assert finalize_payload["orderHash"] == ORDER_HASH
        assert finalize_payload["quoteId"] == "quote-1"
        service.order_status.assert_awaited_with(ORDER_HASH)

    def test_failed_on_third_poll(self, settings, fake_signer):
        """Failed orders are returned as state, not raised."""
        service = order_service(statuses=("pending", "pending", "failed"))
        flow = SignedOrderFlow(service, fake_signer, settings=settings)

        state = run_flow(flow)

        assert state.phase == OrderPhase.FAILED
        assert state.poll_attempts == 3
        assert state.error_message == "Order failed"
        with pytest.raises(OrderFailedError) as exc_info:
            state.raise_for_status()
        assert exc_info.value.status == "failed"
        with pytest.raises(InvalidTransitionError):
            state.poll_status = "executed"

    def test_cancelled_order(self, settings, fake_signer):
        flow = SignedOrderFlow(order_service(statuses=("cancelled",)), fake_signer, settings=settings)

        state = run_flow(flow)

        assert state.phase == OrderPhase.CANCELLED
        assert state.poll_attempts == 1

    def test_malformed_typed_data_fails_before_signing(self, settings):
        signer = FakeSigner()
        signer.sign_typed_data = MagicMock()
        incomplete = {"domain": TYPED_DATA["domain"], "types": TYPED_DATA["types"]}
        service = order_service(process=AsyncMock(return_value=process_response(data_to_sign=incomplete)))
        flow = SignedOrderFlow(service, signer, settings=settings)

        with pytest.raises(MalformedOrderError) as exc_info:
            run_flow(flow)

        assert "message" in str(exc_info.value)
        signer.sign_typed_data.assert_not_called()
        service.finalize.assert_not_awaited()
        assert flow.state.phase == OrderPhase.ERROR

    def test_signer_rejects(self, settings):
        flow = SignedOrderFlow(order_service(), FakeSigner(reject=True), settings=settings)

        with pytest.raises(UserRejectedError):
            run_flow(flow)
        assert flow.state.phase == OrderPhase.ERROR
        assert flow.state.signature is None

    def test_no_signer(self, settings):
        service = order_service()
        flow = SignedOrderFlow(service, settings=settings)
        order = PreparedOrder.from_response(process_response())

        with pytest.raises(UserRejectedError):
            asyncio.run(flow.sign_and_submit(order))
        service.finalize.assert_not_awaited()

    def test_signer_passed_at_submit_time(self, settings, fake_signer):
        flow = SignedOrderFlow(order_service(), settings=settings)
        order = PreparedOrder.from_response(process_response())

        state = asyncio.run(flow.sign_and_submit(order, signer=fake_signer))

        assert state.phase == OrderPhase.EXECUTED
        assert state.order_hash == ORDER_HASH

    def test_finalize_not_found_continues_polling(self, settings, fake_signer):
        finalize = AsyncMock(side_effect=NotFoundError("POST /payment/inch/finalize returned 404", status_code=404))
        flow = SignedOrderFlow(order_service(finalize=finalize), fake_signer, settings=settings)

        state = run_flow(flow)

        assert state.phase == OrderPhase.EXECUTED
        assert any("404" in entry.message for entry in state.logs)

    def test_finalize_rate_limit_retried(self, settings, fake_signer, sleeps):
        finalize = AsyncMock(side_effect=[RateLimitError("limit of requests"), {"success": True}])
        flow = SignedOrderFlow(order_service(finalize=finalize), fake_signer, settings=settings)

        state = run_flow(flow)

        assert state.phase == OrderPhase.EXECUTED
        assert finalize.await_count == 2

    def test_finalize_error_fails_order(self, settings, fake_signer):
        finalize = AsyncMock(side_effect=ApiError("relayer down", status_code=500))
        service = order_service(finalize=finalize)
        flow = SignedOrderFlow(service, fake_signer, settings=settings)

        with pytest.raises(ApiError):
            run_flow(flow)
        assert flow.state.phase == OrderPhase.ERROR
        service.order_status.assert_not_awaited()

    def test_cannot_submit_twice(self, settings, fake_signer):
        flow = SignedOrderFlow(order_service(), fake_signer, settings=settings)
        state = run_flow(flow)
        assert state.phase == OrderPhase.EXECUTED

        with pytest.raises(InvalidTransitionError):
            asyncio.run(flow.sign_and_submit(PreparedOrder.from_response(process_response())))


class TestPolling:
    def test_times_out_after_attempt_limit(self, settings, fake_signer, sleeps):
        service = order_service()
        service.order_status = AsyncMock(return_value={"status": "pending"})
        flow = SignedOrderFlow(service, fake_signer, settings=settings)

        with pytest.raises(PollingTimeoutError) as exc_info:
            run_flow(flow)

        assert exc_info.value.attempts == 30
        assert service.order_status.await_count == 30
        assert flow.state.phase == OrderPhase.TIMED_OUT
        assert flow.state.poll_attempts == 30
        assert sum(sleeps.delays) == 29 * 10.0

    def test_transient_errors_count_as_attempts(self, settings, fake_signer):
        service = order_service()
        service.order_status = AsyncMock(side_effect=[
            ApiError("GET /payment/inch/status returned 502: bad gateway", status_code=502),
            {"status": "pending"},
            {"status": "executed"},
        ])
        flow = SignedOrderFlow(service, fake_signer, settings=settings)

        state = run_flow(flow)

        assert state.phase == OrderPhase.EXECUTED
        assert state.poll_attempts == 3

    def test_cancel_stops_polling(self, settings, fake_signer):
        service = order_service()
        flow = SignedOrderFlow(service, fake_signer, settings=settings)

        async def status(order_hash):
            flow.cancel()
            return {"status": "pending"}

        service.order_status = AsyncMock(side_effect=status)

        with pytest.raises(OperationCancelledError):
            run_flow(flow)

        assert service.order_status.await_count == 1
        assert flow.state.phase == OrderPhase.PENDING
        assert not flow.state.is_terminal


class TestAgainstHttpService:
    def test_full_round_trip(self, settings, fake_signer):
        service = OrderServiceClient(TEST_API_URL)
        flow = SignedOrderFlow(service, fake_signer, settings=settings)

        with requests_mock.Mocker() as m:
            m.post(f"{TEST_API_URL}/payment/process", json=process_response())
            m.post(f"{TEST_API_URL}/payment/inch/finalize", status_code=404, json={"error": "Not Found"})
            m.get(f"{TEST_API_URL}/payment/inch/status", [
                {"json": {"status": "pending"}},
                {"json": {"status": "executed", "txHash": "0x" + "99" * 32}},
            ])
            state = run_flow(flow)

            status_calls = [r for r in m.request_history if r.path == "/payment/inch/status"]
            assert len(status_calls) == 2
            assert status_calls[0].qs == {"orderhash": [ORDER_HASH]}
            finalize_body = [r for r in m.request_history if r.path == "/payment/inch/finalize"][0].json()
            assert finalize_body["signature"] == "0x" + "11" * 65

        assert state.phase == OrderPhase.EXECUTED
        assert state.poll_attempts == 2
