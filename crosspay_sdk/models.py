"""
Data models for the CrossPay SDK.
"""
from enum import Enum
from typing import Dict, Any, Optional, List

from pydantic import BaseModel, Field, field_validator
from web3 import Web3


def _checksum(value: str, field_name: str) -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError(f"{field_name} must be a valid EVM address, got: {value!r}")
    return Web3.to_checksum_address(value)


class SettlementProtocol(str, Enum):
    """Settlement protocols a transfer can be routed through."""
    BRIDGE = "bridge"
    SIGNED_ORDER = "signed-order"

    @property
    def route_type(self) -> str:
        """Name the order service uses for this protocol"""
        return _ROUTE_TYPES[self]

    @classmethod
    def from_route_type(cls, route_type: str) -> Optional["SettlementProtocol"]:
        for protocol, name in _ROUTE_TYPES.items():
            if name == route_type:
                return protocol
        return None


_ROUTE_TYPES = {
    SettlementProtocol.BRIDGE: "circle_cctp",
    SettlementProtocol.SIGNED_ORDER: "inch_fusion",
}


class ChainDescriptor(BaseModel):
    """Static description of a chain, as shipped in networks.json"""
    chain_id: int = Field(..., alias="chainId")
    name: str
    domain: Optional[int] = None
    stablecoin: Optional[str] = None
    token_messenger: Optional[str] = Field(None, alias="tokenMessenger")
    message_transmitter: Optional[str] = Field(None, alias="messageTransmitter")
    explorer: Optional[str] = None
    rpc: Optional[str] = None
    signed_orders: bool = Field(False, alias="signedOrders")
    testnet_of: Optional[int] = Field(None, alias="testnetOf")

    class Config:
        populate_by_name = True
        frozen = True

    @property
    def is_bridge_chain(self) -> bool:
        return None not in (self.domain, self.stablecoin, self.token_messenger, self.message_transmitter)


class TransferIntent(BaseModel):
    """
    A single payment request.

    ``amount`` is expressed in the smallest unit of the source token.
    ``hook_data`` accepts raw bytes or a 0x-prefixed hex string.
    """
    source_chain_id: int
    destination_chain_id: int
    source_token: str
    destination_token: str
    amount: int
    recipient: str
    hook_data: bytes = b""
    sender: Optional[str] = None
    note: Optional[str] = None

    class Config:
        frozen = True

    @field_validator("amount", mode="before")
    @classmethod
    def _positive_amount(cls, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"amount must be an integer in smallest units, got {type(value).__name__}")
        if value <= 0:
            raise ValueError("amount must be greater than zero")
        return value

    @field_validator("source_token", "destination_token", "recipient")
    @classmethod
    def _address(cls, value: str, info) -> str:
        return _checksum(value, info.field_name)

    @field_validator("sender")
    @classmethod
    def _sender(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _checksum(value, "sender")

    @field_validator("hook_data", mode="before")
    @classmethod
    def _hook_data(cls, value: Any) -> bytes:
        if value is None:
            return b""
        if isinstance(value, str):
            cleaned = value[2:] if value.startswith(("0x", "0X")) else value
            try:
                return bytes.fromhex(cleaned)
            except ValueError as e:
                raise ValueError(f"hook_data is not valid hex: {e}")
        return value


class ConditionType(str, Enum):
    AMOUNT = "AMOUNT"
    TOKEN = "TOKEN"


class PreferenceCondition(BaseModel):
    """
    A condition attached to a recipient preference.

    AMOUNT conditions compare the transfer amount (smallest units) with
    ``value`` using ``operator``; TOKEN conditions match the source token.
    """
    type: ConditionType
    operator: Optional[str] = None
    value: Optional[int] = None
    token: Optional[str] = None

    def matches(self, amount: int, source_token: str) -> bool:
        if self.type == ConditionType.TOKEN:
            return bool(self.token) and self.token.lower() == source_token.lower()
        if self.value is None:
            return False
        comparisons = {
            "GT": amount > self.value,
            "LT": amount < self.value,
            "EQ": amount == self.value,
            "GTE": amount >= self.value,
            "LTE": amount <= self.value,
        }
        return comparisons.get((self.operator or "").upper(), False)


class RoutingPreference(BaseModel):
    """A destination the recipient has declared they can use."""
    chain_id: int = Field(..., alias="chainId")
    token: str = Field(..., alias="tokenAddress")
    wallet_address: Optional[str] = Field(None, alias="walletAddress")
    name: Optional[str] = None
    is_default: bool = Field(False, alias="isDefault")
    conditions: List[PreferenceCondition] = Field(default_factory=list)

    class Config:
        populate_by_name = True
        frozen = True

    def applies_to(self, amount: int, source_token: str) -> bool:
        return all(c.matches(amount, source_token) for c in self.conditions)


class RouteDecision(BaseModel):
    """Outcome of route selection, optionally enriched by a quote"""
    protocol: SettlementProtocol
    source_chain_id: int
    destination_chain_id: int
    source_token: str
    destination_token: str
    recipient: str
    estimated_fee: Optional[int] = None
    estimated_duration_seconds: Optional[int] = None

    class Config:
        frozen = True


class Attestation(BaseModel):
    """A message certified by the attestation service"""
    status: str
    message: str
    attestation: str
    event_nonce: Optional[str] = Field(None, alias="eventNonce")

    class Config:
        populate_by_name = True
        frozen = True


class TypedData(BaseModel):
    """EIP-712 payload returned by the order service"""
    domain: Optional[Dict[str, Any]] = None
    types: Optional[Dict[str, Any]] = None
    message: Optional[Dict[str, Any]] = None


class PreparedOrder(BaseModel):
    """Unsigned order as returned by POST /payment/process"""
    src_chain_id: Optional[int] = Field(None, alias="srcChainId")
    order_struct: Optional[Dict[str, Any]] = Field(None, alias="orderStruct")
    quote_id: Optional[str] = Field(None, alias="quoteId")
    secret_hashes: List[str] = Field(default_factory=list, alias="secretHashes")
    extension: Optional[str] = None
    order_hash: str = Field(..., alias="orderHash")
    data_to_sign: TypedData = Field(default_factory=TypedData, alias="dataToSign")

    class Config:
        populate_by_name = True

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "PreparedOrder":
        """
        Build a PreparedOrder from a /payment/process response.

        The order hash may sit at the top level or inside ``orderData``.
        """
        order_data = dict(data.get("orderData") or {})
        if "orderHash" not in order_data and data.get("orderHash"):
            order_data["orderHash"] = data["orderHash"]
        return cls.model_validate(order_data)

    def finalize_payload(self, signature: str) -> Dict[str, Any]:
        return {
            "srcChainId": self.src_chain_id,
            "orderStruct": self.order_struct,
            "quoteId": self.quote_id,
            "secretHashes": self.secret_hashes,
            "signature": signature,
            "extension": self.extension,
            "orderHash": self.order_hash,
        }
