"""
High-level client tying route selection to the two settlement flows.
"""
import logging
from decimal import Decimal
from typing import Mapping, Optional, Sequence, Union

from .api import AttestationClient, OrderServiceClient
from .bridge import BurnMintTransfer
from .chain import ChainClient, ChainPool
from .config import Settings
from .events import TransferObserver
from .exceptions import UserRejectedError
from .models import Attestation, RouteDecision, RoutingPreference, SettlementProtocol, TransferIntent
from .orders import SignedOrderFlow
from .registry import ChainRegistry
from .router import RouteSelector
from .signer import Signer
from .state import OrderState, TransferState

STABLECOIN_DECIMALS = 6


class PaymentClient:
    """
    Client for cross-chain stablecoin payments.

    This client handles:
    1. Choosing between burn-and-mint bridging and signed-order settlement
    2. Running the chosen flow to a terminal state
    3. One-off checks of balances, attestations and order status

    Example:
        >>> client = PaymentClient(signer=LocalSigner(private_key))
        >>> state = await client.pay(intent)
    """

    def __init__(
        self,
        signer: Optional[Signer] = None,
        settings: Optional[Settings] = None,
        registry: Optional[ChainRegistry] = None,
        chains: Optional[Mapping[int, ChainClient]] = None,
        attestation_client: Optional[AttestationClient] = None,
        order_service: Optional[OrderServiceClient] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the payment client.

        Args:
            signer: Signer used for transactions and order signatures
            settings: Runtime settings (defaults to Settings.from_env())
            registry: Chain registry (defaults to the settings' environment)
            chains: Chain clients by chain id (defaults to a lazy ChainPool)
            attestation_client: Attestation service client
            order_service: Order service client
            logger: Optional logger instance to use for debug/info logging
        """
        self.settings = settings or Settings.from_env()
        self.logger = logger or logging.getLogger(__name__)
        self.signer = signer
        self.registry = registry or ChainRegistry(self.settings.environment)
        self.chains = chains if chains is not None else ChainPool(self.registry, self.settings, logger=logger)
        self.attestation_client = attestation_client or AttestationClient(
            self.settings.resolved_attestation_url(),
            timeout=self.settings.http_timeout,
            retry_count=self.settings.http_retries,
            logger=logger,
        )
        self.order_service = order_service or OrderServiceClient(
            self.settings.api_url,
            timeout=self.settings.http_timeout,
            retry_count=self.settings.http_retries,
            logger=logger,
        )
        self.router = RouteSelector(
            self.registry, self.order_service, settings=self.settings, logger=logger
        )

    def select_route(self, intent: TransferIntent,
                     preferences: Optional[Sequence[RoutingPreference]] = None) -> RouteDecision:
        """Pick a protocol without contacting any service."""
        return self.router.select(intent, preferences)

    async def quote(self, intent: TransferIntent,
                    preferences: Optional[Sequence[RoutingPreference]] = None) -> RouteDecision:
        """Pick a protocol and fetch fee and duration estimates."""
        return await self.router.quote(intent, preferences)

    def bridge_transfer(self, observer: Optional[TransferObserver] = None) -> BurnMintTransfer:
        if self.signer is None:
            raise UserRejectedError("A signer is required to bridge funds")
        return BurnMintTransfer(
            self.registry,
            self.chains,
            self.attestation_client,
            self.signer,
            observer=observer,
            settings=self.settings,
            logger=self.logger,
        )

    def order_flow(self, observer: Optional[TransferObserver] = None) -> SignedOrderFlow:
        return SignedOrderFlow(
            self.order_service,
            signer=self.signer,
            observer=observer,
            settings=self.settings,
            logger=self.logger,
        )

    async def pay(
        self,
        intent: TransferIntent,
        preferences: Optional[Sequence[RoutingPreference]] = None,
        observer: Optional[TransferObserver] = None,
        quote: bool = True,
    ) -> Union[TransferState, OrderState]:
        """
        Route and execute a payment.

        Args:
            intent: Payment to make
            preferences: Recipient preferences, in priority order
            observer: Called with every log entry and the current state
            quote: Ask the order service for estimates before executing

        Returns:
            TransferState for bridged payments, OrderState for signed orders
        """
        if quote:
            decision = await self.quote(intent, preferences)
        else:
            decision = self.select_route(intent, preferences)
        if decision.estimated_fee is not None:
            self.logger.info(f"Estimated fee: {decision.estimated_fee}")

        routed = TransferIntent.model_validate({
            **intent.model_dump(),
            "source_chain_id": decision.source_chain_id,
            "destination_chain_id": decision.destination_chain_id,
            "destination_token": decision.destination_token,
            "recipient": decision.recipient,
        })

        if decision.protocol == SettlementProtocol.BRIDGE:
            return await self.bridge_transfer(observer).execute(routed)

        flow = self.order_flow(observer)
        order = await flow.prepare(routed)
        return await flow.sign_and_submit(order)

    async def complete_mint(self, intent: TransferIntent, burn_tx_hash: str,
                            observer: Optional[TransferObserver] = None) -> TransferState:
        """
        Mint a bridged payment whose burn is already on-chain.

        Args:
            intent: The payment that was being bridged
            burn_tx_hash: Hash of the mined burn transaction
            observer: Called with every log entry and the current state

        Returns:
            The completed TransferState
        """
        return await self.bridge_transfer(observer).resume(intent, burn_tx_hash)

    async def get_balance(self, chain_id: int, address: str) -> Decimal:
        """
        Stablecoin balance of ``address`` on ``chain_id``, in whole units.

        Raises:
            UnsupportedChainError: If the chain has no stablecoin configured
        """
        token = self.registry.stablecoin_address(chain_id)
        raw = await self.chains[self.registry.resolve_chain_id(chain_id)].token_balance(token, address)
        return (Decimal(raw) / Decimal(10 ** STABLECOIN_DECIMALS)).quantize(Decimal("0.000001"))

    async def check_attestation(self, chain_id: int, tx_hash: str) -> Optional[Attestation]:
        """One-off attestation lookup for a burn on ``chain_id``."""
        return await self.attestation_client.get_attestation(self.registry.domain_of(chain_id), tx_hash)

    async def check_order_status(self, order_hash: str) -> Optional[str]:
        """One-off relayer status lookup."""
        response = await self.order_service.order_status(order_hash)
        return response.get("status")

    def tx_url(self, chain_id: int, tx_hash: str) -> Optional[str]:
        return self.registry.tx_url(chain_id, tx_hash)

    def close(self) -> None:
        self.attestation_client.close()
        self.order_service.close()
