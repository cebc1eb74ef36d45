"""
Route selection: pick the settlement protocol for a transfer.
"""
import logging
from typing import Any, Dict, Optional, Protocol, Sequence

from .config import Settings
from .exceptions import ApiError, UnsupportedRouteError
from .models import RouteDecision, RoutingPreference, SettlementProtocol, TransferIntent
from .registry import ChainRegistry
from .retry import with_retry


class QuoteProvider(Protocol):
    async def get_route(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...


def _parse_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value))
    except ValueError:
        return None


class RouteSelector:
    """
    Decides between the bridge and signed-order protocols.

    ``select`` is pure and only consults the registry. ``quote`` runs the
    same selection and then asks the order service for fee and duration
    estimates.
    """

    def __init__(self, registry: ChainRegistry, quote_provider: Optional[QuoteProvider] = None,
                 settings: Optional[Settings] = None, logger: Optional[logging.Logger] = None):
        self.registry = registry
        self.quote_provider = quote_provider
        self.settings = settings or Settings()
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def matching_preference(
        intent: TransferIntent,
        preferences: Optional[Sequence[RoutingPreference]],
    ) -> Optional[RoutingPreference]:
        """First preference whose conditions hold for this intent, if any."""
        for preference in preferences or ():
            if preference.applies_to(intent.amount, intent.source_token):
                return preference
        return None

    def select(self, intent: TransferIntent,
               preferences: Optional[Sequence[RoutingPreference]] = None) -> RouteDecision:
        """
        Choose a settlement protocol.

        Args:
            intent: Transfer to route
            preferences: Recipient preferences, in priority order

        Returns:
            RouteDecision

        Raises:
            UnsupportedRouteError: If neither protocol serves the chain pair
        """
        destination_chain = intent.destination_chain_id
        destination_token = intent.destination_token
        recipient = intent.recipient

        preference = self.matching_preference(intent, preferences)
        if preference is not None:
            destination_chain = preference.chain_id
            destination_token = preference.token
            if preference.wallet_address:
                recipient = preference.wallet_address

        source_chain = self.registry.resolve_chain_id(intent.source_chain_id)
        destination_chain = self.registry.resolve_chain_id(destination_chain)

        bridge_ok = (
            self.registry.supports_bridge(source_chain)
            and self.registry.supports_bridge(destination_chain)
            and self.registry.is_stablecoin(source_chain, intent.source_token)
            and self.registry.is_stablecoin(destination_chain, destination_token)
        )
        if bridge_ok:
            protocol = SettlementProtocol.BRIDGE
        elif (self.registry.supports_signed_orders(source_chain)
              and self.registry.supports_signed_orders(destination_chain)):
            protocol = SettlementProtocol.SIGNED_ORDER
        else:
            raise UnsupportedRouteError(
                f"No settlement protocol supports chain {source_chain} -> {destination_chain}"
            )

        decision = RouteDecision(
            protocol=protocol,
            source_chain_id=source_chain,
            destination_chain_id=destination_chain,
            source_token=intent.source_token,
            destination_token=destination_token,
            recipient=recipient,
        )
        self.logger.debug(f"Selected {protocol.value} for {source_chain} -> {destination_chain}")
        return decision

    async def quote(self, intent: TransferIntent,
                    preferences: Optional[Sequence[RoutingPreference]] = None) -> RouteDecision:
        """
        Select a route and enrich it with the order service's estimates.

        The protocol chosen locally always wins; a disagreeing backend is
        only logged.
        """
        decision = self.select(intent, preferences)
        if self.quote_provider is None:
            return decision

        payload = {
            "sourceChainId": decision.source_chain_id,
            "sourceToken": decision.source_token,
            "amount": str(intent.amount),
            "targetChainId": decision.destination_chain_id,
            "targetToken": decision.destination_token,
            "recipientPreferences": [{
                "id": "default",
                "walletAddress": decision.recipient,
                "chainId": decision.destination_chain_id,
                "tokenAddress": decision.destination_token,
                "name": "Default Preference",
            }],
        }
        response = await with_retry(
            lambda: self.quote_provider.get_route(payload),
            max_attempts=self.settings.retry_max_attempts,
            initial_delay=self.settings.retry_initial_delay,
            backoff_factor=self.settings.retry_backoff_factor,
            max_elapsed=self.settings.retry_max_elapsed,
            logger=self.logger,
        )
        if not isinstance(response, dict):
            raise ApiError(f"Unexpected route response: {response!r}")

        backend_protocol = SettlementProtocol.from_route_type(response.get("routeType", ""))
        if backend_protocol is not None and backend_protocol != decision.protocol:
            self.logger.warning(
                f"Order service suggested {backend_protocol.value}, keeping {decision.protocol.value}"
            )

        estimate = response.get("estimate") or {}
        return decision.model_copy(update={
            "estimated_fee": _parse_int(estimate.get("estimatedFee")),
            "estimated_duration_seconds": _parse_int(estimate.get("estimatedDuration")),
        })
