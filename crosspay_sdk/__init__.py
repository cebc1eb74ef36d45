"""
CrossPay SDK - cross-chain stablecoin payment execution.
"""
from .version import __version__
from .client import PaymentClient
from .config import NetworkConfig, Settings
from .registry import ChainRegistry
from .router import RouteSelector
from .bridge import BurnMintTransfer
from .orders import SignedOrderFlow
from .poller import PollOutcome, PollResult, StatusPoller
from .retry import is_rate_limited, with_retry
from .signer import LocalSigner, Signer, signing_gate
from .api import AttestationClient, OrderServiceClient
from .chain import ChainClient, ChainPool
from .events import EventLog, LogEntry
from .state import OrderPhase, OrderState, TransferPhase, TransferState
from .models import (
    Attestation,
    ChainDescriptor,
    PreferenceCondition,
    PreparedOrder,
    RouteDecision,
    RoutingPreference,
    SettlementProtocol,
    TransferIntent,
)
from .exceptions import (
    ApiError,
    AttestationTimeoutError,
    ConfigurationError,
    ContractExecutionError,
    CrossPayError,
    ErrorCode,
    InsufficientGasError,
    InvalidTransitionError,
    MalformedOrderError,
    NotFoundError,
    OperationCancelledError,
    OrderFailedError,
    PollingTimeoutError,
    ProtocolTimeoutError,
    RateLimitError,
    TransactionRevertedError,
    UnsupportedChainError,
    UnsupportedRouteError,
    UserRejectedError,
)

__all__ = [
    "__version__",
    "PaymentClient",
    "NetworkConfig",
    "Settings",
    "ChainRegistry",
    "RouteSelector",
    "BurnMintTransfer",
    "SignedOrderFlow",
    "PollOutcome",
    "PollResult",
    "StatusPoller",
    "is_rate_limited",
    "with_retry",
    "LocalSigner",
    "Signer",
    "signing_gate",
    "AttestationClient",
    "OrderServiceClient",
    "ChainClient",
    "ChainPool",
    "EventLog",
    "LogEntry",
    "OrderPhase",
    "OrderState",
    "TransferPhase",
    "TransferState",
    "Attestation",
    "ChainDescriptor",
    "PreferenceCondition",
    "PreparedOrder",
    "RouteDecision",
    "RoutingPreference",
    "SettlementProtocol",
    "TransferIntent",
    "ApiError",
    "AttestationTimeoutError",
    "ConfigurationError",
    "ContractExecutionError",
    "CrossPayError",
    "ErrorCode",
    "InsufficientGasError",
    "InvalidTransitionError",
    "MalformedOrderError",
    "NotFoundError",
    "OperationCancelledError",
    "OrderFailedError",
    "PollingTimeoutError",
    "ProtocolTimeoutError",
    "RateLimitError",
    "TransactionRevertedError",
    "UnsupportedChainError",
    "UnsupportedRouteError",
    "UserRejectedError",
]
