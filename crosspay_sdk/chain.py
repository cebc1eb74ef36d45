"""
Per-chain contract access over AsyncWeb3.

Web3 failures are translated to ContractExecutionError here so the state
machines only deal with the SDK's own exception types.
"""
import base64
import binascii
import logging
from typing import Any, Dict, Optional

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from .config import Settings, validate_service_url
from .exceptions import ContractExecutionError, TransactionRevertedError, UnsupportedChainError
from .models import ChainDescriptor
from .registry import ChainRegistry
from .signer import Signer, signing_gate

ZERO_BYTES32 = b"\x00" * 32
DEFAULT_GAS = 300000

ERC20_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "owner", "type": "address"},
            {"internalType": "address", "name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "spender", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

TOKEN_MESSENGER_ABI = [
    {
        "inputs": [
            {"internalType": "uint256", "name": "amount", "type": "uint256"},
            {"internalType": "uint32", "name": "destinationDomain", "type": "uint32"},
            {"internalType": "bytes32", "name": "mintRecipient", "type": "bytes32"},
            {"internalType": "address", "name": "burnToken", "type": "address"},
            {"internalType": "bytes32", "name": "destinationCaller", "type": "bytes32"},
            {"internalType": "uint256", "name": "maxFee", "type": "uint256"},
            {"internalType": "uint32", "name": "minFinalityThreshold", "type": "uint32"},
            {"internalType": "bytes", "name": "hookData", "type": "bytes"},
        ],
        "name": "depositForBurnWithHook",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

MESSAGE_TRANSMITTER_ABI = [
    {
        "inputs": [
            {"internalType": "bytes", "name": "message", "type": "bytes"},
            {"internalType": "bytes", "name": "attestation", "type": "bytes"},
        ],
        "name": "receiveMessage",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    }
]


def address_to_bytes32(value: str) -> bytes:
    """Left-pad a 20-byte address to the 32-byte form the bridge expects."""
    checksum = Web3.to_checksum_address(value)
    return int(checksum, 16).to_bytes(32, "big")


def to_message_bytes(value: Any, label: str) -> bytes:
    """Decode attestation payloads, which arrive as 0x-hex or base64."""
    if isinstance(value, bytes):
        return value
    cleaned = str(value).strip()
    if cleaned.startswith(("0x", "0X")):
        try:
            return bytes.fromhex(cleaned[2:])
        except ValueError as e:
            raise ContractExecutionError(f"{label} is not valid hex: {e}") from e
    try:
        decoded = base64.b64decode(cleaned, validate=True)
    except binascii.Error as e:
        raise ContractExecutionError(f"{label} is not valid hex or base64 data") from e
    if not decoded:
        raise ContractExecutionError(f"{label} is empty after decoding")
    return decoded


class ChainClient:
    """
    Contract calls against one chain.

    Write methods take the signer explicitly and reach it through the shared
    signing gate.
    """

    def __init__(
        self,
        descriptor: ChainDescriptor,
        rpc_url: Optional[str] = None,
        receipt_timeout: float = 120.0,
        w3: Optional[AsyncWeb3] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if w3 is None:
            if not rpc_url:
                raise UnsupportedChainError(descriptor.chain_id, "no RPC URL configured")
            w3 = AsyncWeb3(AsyncHTTPProvider(validate_service_url(rpc_url, "rpc_url")))
        self.descriptor = descriptor
        self.w3 = w3
        self.receipt_timeout = receipt_timeout
        self.logger = logger or logging.getLogger(__name__)

    @property
    def chain_id(self) -> int:
        return self.descriptor.chain_id

    def _contract(self, address: str, abi: list) -> Any:
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def _read(self, call: Any, what: str) -> Any:
        try:
            return await call
        except Exception as e:
            self.logger.error(f"Failed to read {what} on chain {self.chain_id}: {e}")
            raise ContractExecutionError(f"Failed to read {what} on chain {self.chain_id}: {e}") from e

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        token_contract = self._contract(token, ERC20_ABI)
        call = token_contract.functions.allowance(
            Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)
        ).call()
        return await self._read(call, "allowance")

    async def token_balance(self, token: str, owner: str) -> int:
        token_contract = self._contract(token, ERC20_ABI)
        call = token_contract.functions.balanceOf(Web3.to_checksum_address(owner)).call()
        return await self._read(call, "token balance")

    async def native_balance(self, address: str) -> int:
        return await self._read(self.w3.eth.get_balance(Web3.to_checksum_address(address)), "native balance")

    async def approve(self, token: str, spender: str, amount: int, signer: Signer) -> str:
        """
        Send an ERC-20 approve and wait for it to be mined.

        Returns:
            Transaction hash (0x-prefixed)
        """
        token_contract = self._contract(token, ERC20_ABI)
        fn = token_contract.functions.approve(Web3.to_checksum_address(spender), amount)
        return await self._send(fn, signer)

    async def deposit_for_burn_with_hook(
        self,
        amount: int,
        destination_domain: int,
        mint_recipient: str,
        burn_token: str,
        max_fee: int,
        min_finality_threshold: int,
        hook_data: bytes,
        signer: Signer,
    ) -> str:
        """
        Burn ``amount`` of ``burn_token`` for minting on ``destination_domain``.

        Any relayer may complete the mint (destination caller is zero).

        Returns:
            Burn transaction hash (0x-prefixed)
        """
        messenger = self._contract(self.descriptor.token_messenger, TOKEN_MESSENGER_ABI)
        fn = messenger.functions.depositForBurnWithHook(
            amount,
            destination_domain,
            address_to_bytes32(mint_recipient),
            Web3.to_checksum_address(burn_token),
            ZERO_BYTES32,
            max_fee,
            min_finality_threshold,
            hook_data,
        )
        return await self._send(fn, signer)

    def _receive_message_fn(self, message: Any, attestation: Any) -> Any:
        transmitter = self._contract(self.descriptor.message_transmitter, MESSAGE_TRANSMITTER_ABI)
        return transmitter.functions.receiveMessage(
            to_message_bytes(message, "message"),
            to_message_bytes(attestation, "attestation"),
        )

    async def estimate_receive_message_gas(self, message: Any, attestation: Any, sender: str) -> int:
        fn = self._receive_message_fn(message, attestation)
        return await self._read(fn.estimate_gas({"from": Web3.to_checksum_address(sender)}), "mint gas estimate")

    async def receive_message(self, message: Any, attestation: Any, signer: Signer,
                              gas: Optional[int] = None) -> str:
        """
        Submit an attested message to the verifier, minting on this chain.

        Returns:
            Mint transaction hash (0x-prefixed)
        """
        fn = self._receive_message_fn(message, attestation)
        return await self._send(fn, signer, gas=gas)

    async def _send(self, fn: Any, signer: Signer, gas: Optional[int] = None) -> str:
        sender = Web3.to_checksum_address(signer.address)
        try:
            nonce = await self.w3.eth.get_transaction_count(sender)
            tx_params: Dict[str, Any] = {
                "from": sender,
                "nonce": nonce,
                "chainId": self.chain_id,
                "gasPrice": await self.w3.eth.gas_price,
            }
            if gas is None:
                try:
                    # Add 10% buffer to gas estimate
                    gas = int(await fn.estimate_gas({"from": sender}) * 1.1)
                except Exception as e:
                    gas = DEFAULT_GAS
                    self.logger.warning(f"Gas estimation failed, using default: {gas}. Error: {e}")
            tx_params["gas"] = gas
            tx = await fn.build_transaction(tx_params)
        except Exception as e:
            self.logger.error(f"Failed to build transaction on chain {self.chain_id}: {e}")
            raise ContractExecutionError(f"Failed to build transaction: {e}") from e

        signed = await signing_gate(signer).sign_transaction(tx)

        try:
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            self.logger.error(f"Failed to send transaction: {e}")
            raise ContractExecutionError(f"Failed to send transaction: {e}") from e
        hex_hash = Web3.to_hex(tx_hash)
        self.logger.info(f"Transaction sent on chain {self.chain_id}: {hex_hash}")

        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except Exception as e:
            raise ContractExecutionError(f"No receipt for {hex_hash}: {e}") from e
        if receipt["status"] == 0:
            raise TransactionRevertedError(hex_hash, f"gasUsed={receipt.get('gasUsed')}")
        return hex_hash


class ChainPool:
    """Lazily built ChainClient per chain, looked up by chain id."""

    def __init__(self, registry: ChainRegistry, settings: Settings,
                 logger: Optional[logging.Logger] = None):
        self.registry = registry
        self.settings = settings
        self.logger = logger
        self._clients: Dict[int, ChainClient] = {}

    def __getitem__(self, chain_id: int) -> ChainClient:
        resolved = self.registry.resolve_chain_id(chain_id)
        client = self._clients.get(resolved)
        if client is None:
            descriptor = self.registry.descriptor(resolved)
            client = ChainClient(
                descriptor,
                rpc_url=self.settings.rpc_url_for(resolved),
                receipt_timeout=self.settings.receipt_timeout,
                logger=self.logger,
            )
            self._clients[resolved] = client
        return client

    def __contains__(self, chain_id: int) -> bool:
        return self.registry.resolve_chain_id(chain_id) in self._clients
