"""
Chain and asset registry.

A registry is built once per environment and never mutated afterwards, so
it can be shared freely between concurrent payment flows.
"""
import logging
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .config import NetworkConfig
from .exceptions import UnsupportedChainError
from .models import ChainDescriptor

logger = logging.getLogger(__name__)


class ChainRegistry:
    """
    Lookup of chain descriptors for one environment.

    In the testnet environment, mainnet chain ids are transparently mapped
    to their testnet counterparts by ``resolve_chain_id``.
    """

    def __init__(self, environment: str = "testnet",
                 chains: Optional[Iterable[Mapping[str, Any]]] = None,
                 remap: Optional[Mapping[int, int]] = None):
        """
        Args:
            environment: Environment name from networks.json
            chains: Explicit chain entries (camelCase keys as in networks.json);
                defaults to the shipped data for ``environment``
            remap: Explicit mainnet-to-testnet id mapping; defaults to the
                ``testnetOf`` links of the chain entries
        """
        self.environment = environment
        entries = NetworkConfig.get_chains(environment) if chains is None else list(chains)
        descriptors: Dict[int, ChainDescriptor] = {}
        for entry in entries:
            descriptor = entry if isinstance(entry, ChainDescriptor) else ChainDescriptor.model_validate(entry)
            descriptors[descriptor.chain_id] = descriptor
        self._chains = MappingProxyType(descriptors)

        if remap is None:
            remap = {d.testnet_of: d.chain_id for d in descriptors.values() if d.testnet_of is not None}
        self._remap = MappingProxyType(dict(remap))
        logger.debug(f"Loaded {len(descriptors)} chains for {environment}")

    @property
    def chain_ids(self) -> List[int]:
        return sorted(self._chains)

    def resolve_chain_id(self, chain_id: int) -> int:
        """Map a mainnet chain id to the environment's equivalent, if any."""
        return self._remap.get(chain_id, chain_id)

    def descriptor(self, chain_id: int) -> ChainDescriptor:
        """
        Get the descriptor of a chain.

        Raises:
            UnsupportedChainError: If the chain is not in the registry
        """
        try:
            return self._chains[self.resolve_chain_id(chain_id)]
        except KeyError:
            raise UnsupportedChainError(chain_id, f"not configured for {self.environment}")

    def _require(self, chain_id: int, field_name: str) -> Any:
        value = getattr(self.descriptor(chain_id), field_name)
        if value is None:
            raise UnsupportedChainError(chain_id, f"no {field_name.replace('_', ' ')} configured")
        return value

    def domain_of(self, chain_id: int) -> int:
        return self._require(chain_id, "domain")

    def stablecoin_address(self, chain_id: int) -> str:
        return self._require(chain_id, "stablecoin")

    def bridge_address(self, chain_id: int) -> str:
        return self._require(chain_id, "token_messenger")

    def verifier_address(self, chain_id: int) -> str:
        return self._require(chain_id, "message_transmitter")

    def supports_bridge(self, chain_id: int) -> bool:
        chain = self._chains.get(self.resolve_chain_id(chain_id))
        return chain is not None and chain.is_bridge_chain

    def supports_signed_orders(self, chain_id: int) -> bool:
        chain = self._chains.get(self.resolve_chain_id(chain_id))
        return chain is not None and chain.signed_orders

    def is_stablecoin(self, chain_id: int, token: str) -> bool:
        chain = self._chains.get(self.resolve_chain_id(chain_id))
        if chain is None or not chain.stablecoin or not token:
            return False
        return chain.stablecoin.lower() == token.lower()

    def tx_url(self, chain_id: int, tx_hash: str) -> Optional[str]:
        """Explorer link for a transaction, or None if the chain has no explorer."""
        chain = self._chains.get(self.resolve_chain_id(chain_id))
        if chain is None or not chain.explorer:
            return None
        if not tx_hash.startswith("0x"):
            tx_hash = f"0x{tx_hash}"
        return f"{chain.explorer.rstrip('/')}/tx/{tx_hash}"
