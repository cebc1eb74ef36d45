"""
Signed-order settlement through the relayer backend.

    idle -> preparing -> signing -> submitting -> pending
         -> executed | failed | cancelled | timed-out

``error`` is entered for malformed orders, signer rejections and any
other failure before the relayer reports an outcome.
"""
import logging
from typing import Any, Dict, Optional

from .api import OrderServiceClient
from .config import Settings
from .events import EventLog, TransferObserver
from .exceptions import (
    ApiError,
    InvalidTransitionError,
    MalformedOrderError,
    NotFoundError,
    OperationCancelledError,
    PollingTimeoutError,
    UserRejectedError,
)
from .models import PreparedOrder, SettlementProtocol, TransferIntent
from .poller import PollOutcome, StatusPoller
from .retry import with_retry
from .signer import Signer, signing_gate
from .state import OrderPhase, OrderState

TERMINAL_STATUSES = {
    "executed": OrderPhase.EXECUTED,
    "failed": OrderPhase.FAILED,
    "cancelled": OrderPhase.CANCELLED,
}


def _status_of(response: Optional[Dict[str, Any]]) -> Optional[str]:
    if not isinstance(response, dict):
        return None
    return response.get("status")


class SignedOrderFlow:
    """
    Drives one signed order from preparation to a relayer outcome.

    Failed and cancelled orders are outcomes, not exceptions: inspect the
    returned state or call ``OrderState.raise_for_status``.
    """

    def __init__(
        self,
        order_service: OrderServiceClient,
        signer: Optional[Signer] = None,
        observer: Optional[TransferObserver] = None,
        settings: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.order_service = order_service
        self.signer = signer
        self.settings = settings or Settings()
        self.logger = logger or logging.getLogger(__name__)
        self.events = EventLog(observer, logger=self.logger)
        self.state = OrderState()
        self._cancelled = False
        self._poller: Optional[StatusPoller] = None

    def cancel(self) -> None:
        """Stop polling the order status."""
        self._cancelled = True
        if self._poller is not None:
            self._poller.stop()

    def _emit(self, step: str, message: str, level: int = logging.INFO) -> None:
        entry = self.state.log(step, message, level)
        self.events.publish(entry, self.state)

    def _advance(self, phase: OrderPhase, message: str) -> None:
        self.state.transition_to(phase)
        self._emit(phase.value, message)

    def _record_failure(self, error: Exception) -> None:
        message = str(error) or error.__class__.__name__
        if not self.state.is_terminal:
            self.state.fail(message)
        self._emit(OrderPhase.ERROR.value, f"Error: {message}", logging.ERROR)

    async def _with_retry(self, operation):
        return await with_retry(
            operation,
            max_attempts=self.settings.retry_max_attempts,
            initial_delay=self.settings.retry_initial_delay,
            backoff_factor=self.settings.retry_backoff_factor,
            max_elapsed=self.settings.retry_max_elapsed,
            logger=self.logger,
        )

    async def prepare(self, intent: TransferIntent) -> PreparedOrder:
        """
        Ask the order service to build an unsigned order.

        Args:
            intent: Transfer to settle; ``intent.sender`` defaults to the signer's address

        Returns:
            PreparedOrder carrying the typed data to sign

        Raises:
            ApiError: If the order service fails (rate limits are retried first)
        """
        self._advance(OrderPhase.PREPARING, "Preparing order...")
        sender = intent.sender or (self.signer.address if self.signer is not None else None)
        payload = {
            "senderAddress": sender,
            "recipientAddress": intent.recipient,
            "sourceChainId": intent.source_chain_id,
            "sourceToken": intent.source_token,
            "amount": str(intent.amount),
            "targetChainId": intent.destination_chain_id,
            "targetToken": intent.destination_token,
            "routeType": SettlementProtocol.SIGNED_ORDER.route_type,
            "note": intent.note,
        }
        try:
            response = await self._with_retry(lambda: self.order_service.process(payload))
            if not isinstance(response, dict) or not response.get("orderData"):
                raise MalformedOrderError(f"No order data in process response: {response!r}")
            order = PreparedOrder.from_response(response)
        except Exception as e:
            self._record_failure(e)
            raise
        self.state.order_hash = order.order_hash
        self._emit(OrderPhase.PREPARING.value, f"Order prepared: {order.order_hash}")
        return order

    async def sign_and_submit(self, order: PreparedOrder, signer: Optional[Signer] = None) -> OrderState:
        """
        Sign the order, hand it to the relayer and poll until it settles.

        Args:
            order: Order returned by ``prepare``
            signer: Signer to use instead of the one given at construction

        Returns:
            OrderState in executed, failed or cancelled phase

        Raises:
            MalformedOrderError: If the typed data is incomplete (raised before signing)
            UserRejectedError: If no signer is available or it declines
            ApiError: If finalization fails with anything but 404
            PollingTimeoutError: If the order does not settle within the attempt limit
            OperationCancelledError: If cancel() was called while polling
        """
        if self.state.phase not in (OrderPhase.IDLE, OrderPhase.PREPARING):
            raise InvalidTransitionError(f"Order already {self.state.phase.value}")
        signer = signer or self.signer
        try:
            self._advance(OrderPhase.SIGNING, "Signing order...")
            if self.state.order_hash is None:
                self.state.order_hash = order.order_hash
            signature = await self._sign(order, signer)
            self.state.signature = signature

            self._advance(OrderPhase.SUBMITTING, "Submitting signed order...")
            await self._finalize(order, signature)
        except Exception as e:
            self._record_failure(e)
            raise

        self._advance(OrderPhase.PENDING, f"Waiting for order {order.order_hash} to execute...")
        self.state.poll_status = "pending"
        return await self._poll(order.order_hash)

    async def _sign(self, order: PreparedOrder, signer: Optional[Signer]) -> str:
        typed = order.data_to_sign
        missing = [name for name in ("domain", "types", "message") if not getattr(typed, name)]
        if missing:
            raise MalformedOrderError(f"Order {order.order_hash} is missing typed data: {', '.join(missing)}")
        if signer is None:
            raise UserRejectedError("No signer available to sign the order")

        # the domain type is derived from the domain itself
        types = {name: fields for name, fields in typed.types.items() if name != "EIP712Domain"}
        signature = await signing_gate(signer).sign_typed_data(typed.domain, types, typed.message)
        self._emit(OrderPhase.SIGNING.value, "Order signed")
        return signature

    async def _finalize(self, order: PreparedOrder, signature: str) -> None:
        payload = order.finalize_payload(signature)
        try:
            await self._with_retry(lambda: self.order_service.finalize(payload))
        except NotFoundError as e:
            self._emit(
                OrderPhase.SUBMITTING.value,
                f"Finalize endpoint returned 404, polling for status anyway: {e}",
                logging.WARNING,
            )
            return
        self._emit(OrderPhase.SUBMITTING.value, "Order submitted to relayer")

    async def _poll(self, order_hash: str) -> OrderState:
        def record(response, attempt):
            status = _status_of(response)
            self.state.poll_attempts = attempt
            if status is not None and status != self.state.poll_status:
                self.state.poll_status = status
                self._emit(OrderPhase.PENDING.value, f"Order status: {status}")

        def transient(error):
            self.state.poll_attempts = self._poller.attempts
            return isinstance(error, ApiError)

        self._poller = StatusPoller(
            fetch=lambda: self.order_service.order_status(order_hash),
            is_terminal=lambda response: _status_of(response) in TERMINAL_STATUSES,
            interval=self.settings.order_poll_interval,
            max_attempts=self.settings.order_poll_max_attempts,
            on_result=record,
            treat_as_pending=transient,
            name="order status",
            logger=self.logger,
        )
        if self._cancelled:
            self._poller.stop()
        try:
            result = await self._poller.run()
        except Exception as e:
            self._record_failure(e)
            raise

        if result.outcome == PollOutcome.STOPPED:
            self._emit(OrderPhase.PENDING.value, "Stopped polling order status", logging.WARNING)
            raise OperationCancelledError(
                f"Stopped polling order {order_hash} after {result.attempts} attempts"
            )
        if result.outcome != PollOutcome.TERMINAL:
            message = f"Order {order_hash} still {self.state.poll_status} after {result.attempts} status checks"
            self._emit(OrderPhase.PENDING.value, message, logging.WARNING)
            self.state.finish(OrderPhase.TIMED_OUT, message)
            raise PollingTimeoutError(message, attempts=result.attempts)

        status = _status_of(result.value)
        phase = TERMINAL_STATUSES[status]
        if phase == OrderPhase.EXECUTED:
            self._emit(OrderPhase.PENDING.value, f"Order {order_hash} executed")
            self.state.finish(phase)
        else:
            self._emit(OrderPhase.PENDING.value, f"Order {order_hash} {status}", logging.ERROR)
            self.state.finish(phase, f"Order {status}")
        return self.state
