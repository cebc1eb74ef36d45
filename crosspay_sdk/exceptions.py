"""
Exceptions for the CrossPay SDK.

The hierarchy follows how a caller is expected to react:

- ConfigurationError: unsupported chain or route, never retried
- ApiError / RateLimitError: HTTP failures, only rate limits are transient
- UserRejectedError: the wallet declined, surfaced verbatim
- ContractExecutionError: reverted or unaffordable transactions
- ProtocolTimeoutError: polling gave up, "check again later"
"""
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Stable error codes attached to every CrossPayError."""
    UNKNOWN = "UNKNOWN"
    UNSUPPORTED_CHAIN = "UNSUPPORTED_CHAIN"
    UNSUPPORTED_ROUTE = "UNSUPPORTED_ROUTE"
    API_ERROR = "API_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    NOT_FOUND = "NOT_FOUND"
    USER_REJECTED = "USER_REJECTED"
    CONTRACT_EXECUTION = "CONTRACT_EXECUTION"
    TRANSACTION_REVERTED = "TRANSACTION_REVERTED"
    INSUFFICIENT_GAS = "INSUFFICIENT_GAS"
    POLLING_TIMEOUT = "POLLING_TIMEOUT"
    ATTESTATION_TIMEOUT = "ATTESTATION_TIMEOUT"
    MALFORMED_ORDER = "MALFORMED_ORDER"
    ORDER_FAILED = "ORDER_FAILED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    CANCELLED = "CANCELLED"


class CrossPayError(Exception):
    """Base exception for all CrossPay SDK errors."""
    code = ErrorCode.UNKNOWN

    def __init__(self, message: str, error_code: Optional[ErrorCode] = None):
        self.error_code = error_code or self.code
        super().__init__(message)


class ConfigurationError(CrossPayError):
    """Raised for permanent configuration problems."""
    pass


class UnsupportedChainError(ConfigurationError):
    """Raised when a chain is missing from the registry or lacks a field."""
    code = ErrorCode.UNSUPPORTED_CHAIN

    def __init__(self, chain_id: int, detail: Optional[str] = None):
        self.chain_id = chain_id
        message = f"Chain {chain_id} is not supported"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class UnsupportedRouteError(ConfigurationError):
    """Raised when no settlement protocol serves a source/destination pair."""
    code = ErrorCode.UNSUPPORTED_ROUTE


class ApiError(CrossPayError):
    """Raised when an HTTP service returns an error response."""
    code = ErrorCode.API_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None,
                 error_code: Optional[ErrorCode] = None):
        self.status_code = status_code
        super().__init__(message, error_code)


class RateLimitError(ApiError):
    """Raised on HTTP 429 or an equivalent rate-limit marker."""
    code = ErrorCode.RATE_LIMITED


class NotFoundError(ApiError):
    """Raised on HTTP 404."""
    code = ErrorCode.NOT_FOUND


class UserRejectedError(CrossPayError):
    """Raised when the signer declines or the wallet is unavailable."""
    code = ErrorCode.USER_REJECTED


class ContractExecutionError(CrossPayError):
    """Raised when a transaction cannot be built, sent or confirmed."""
    code = ErrorCode.CONTRACT_EXECUTION


class TransactionRevertedError(ContractExecutionError):
    """Raised when a mined transaction has status 0."""
    code = ErrorCode.TRANSACTION_REVERTED

    def __init__(self, tx_hash: str, detail: Optional[str] = None):
        self.tx_hash = tx_hash
        message = f"Transaction {tx_hash} reverted"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class InsufficientGasError(ContractExecutionError):
    """Raised when the recipient cannot pay for the mint transaction."""
    code = ErrorCode.INSUFFICIENT_GAS


class ProtocolTimeoutError(CrossPayError):
    """Raised when an external protocol did not reach a terminal state in time."""
    pass


class PollingTimeoutError(ProtocolTimeoutError):
    """Raised when order status polling exhausts its attempts."""
    code = ErrorCode.POLLING_TIMEOUT

    def __init__(self, message: str, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class AttestationTimeoutError(ProtocolTimeoutError):
    """Raised when the attestation service does not certify a burn in time."""
    code = ErrorCode.ATTESTATION_TIMEOUT


class OperationCancelledError(CrossPayError):
    """Raised when the caller stops a flow before it reached a terminal phase."""
    code = ErrorCode.CANCELLED


class MalformedOrderError(CrossPayError):
    """Raised when a prepared order lacks the data needed for signing."""
    code = ErrorCode.MALFORMED_ORDER


class OrderFailedError(CrossPayError):
    """Raised when the relayer reports an order as failed or cancelled."""
    code = ErrorCode.ORDER_FAILED

    def __init__(self, message: str, status: Optional[str] = None):
        self.status = status
        super().__init__(message)


class InvalidTransitionError(CrossPayError):
    """Raised when a state record is asked to move backward or out of a terminal phase."""
    code = ErrorCode.INVALID_TRANSITION
