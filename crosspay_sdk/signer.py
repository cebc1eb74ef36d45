"""
Signing capability and serialized access to it.

Wallet prompts must never overlap: every flow reaches the signer through
``signing_gate(signer)``, which hands out one lock per signer object.
"""
import asyncio
import inspect
import logging
import weakref
from typing import Any, Dict, Protocol

from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from .exceptions import UserRejectedError

logger = logging.getLogger(__name__)


class Signer(Protocol):
    """Protocol for custom signers"""
    address: str

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        """Sign transaction and return signed tx object"""
        ...

    def sign_typed_data(self, domain: Dict[str, Any], types: Dict[str, Any],
                        message: Dict[str, Any]) -> str:
        """Sign EIP-712 typed data and return the 0x-prefixed signature"""
        ...


class LocalSigner:
    """Signer backed by a private key held in memory."""

    def __init__(self, private_key: str):
        self.account = Account.from_key(private_key)
        self.address = self.account.address

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        return self.account.sign_transaction(transaction_dict)

    def sign_typed_data(self, domain: Dict[str, Any], types: Dict[str, Any],
                        message: Dict[str, Any]) -> str:
        signable = encode_typed_data(domain_data=domain, message_types=types, message_data=message)
        signed = self.account.sign_message(signable)
        return Web3.to_hex(signed.signature)


async def _invoke(method, *args):
    if inspect.iscoroutinefunction(method):
        return await method(*args)
    return await asyncio.to_thread(method, *args)


class SigningGate:
    """Serializes every request that reaches one signer."""

    def __init__(self, signer: Signer):
        self.signer = signer

    @property
    def lock(self) -> asyncio.Lock:
        locks = _locks_for(self.signer)
        loop = asyncio.get_running_loop()
        lock = locks.get(loop)
        if lock is None:
            lock = asyncio.Lock()
            locks[loop] = lock
        return lock

    @property
    def address(self) -> str:
        return self.signer.address

    async def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        """
        Sign a transaction through the gate.

        Raises:
            UserRejectedError: If the signer declines or fails
        """
        async with self.lock:
            try:
                return await _invoke(self.signer.sign_transaction, transaction_dict)
            except Exception as e:
                logger.error(f"Transaction signing failed: {e}")
                raise UserRejectedError(f"Failed to sign transaction: {e}") from e

    async def sign_typed_data(self, domain: Dict[str, Any], types: Dict[str, Any],
                              message: Dict[str, Any]) -> str:
        """
        Sign EIP-712 typed data through the gate.

        Raises:
            UserRejectedError: If the signer declines, fails or cannot sign typed data
        """
        method = getattr(self.signer, "sign_typed_data", None)
        if method is None:
            raise UserRejectedError("Signer does not support typed-data signing")
        async with self.lock:
            try:
                signature = await _invoke(method, domain, types, message)
            except Exception as e:
                logger.error(f"Typed-data signing failed: {e}")
                raise UserRejectedError(f"Failed to sign order: {e}") from e
        if isinstance(signature, bytes):
            signature = Web3.to_hex(signature)
        return signature

    async def switch_chain(self, chain_id: int) -> bool:
        """
        Ask the signer to switch to ``chain_id``.

        Returns:
            False when the signer has no chain-switch capability

        Raises:
            Whatever the signer raises; callers treat a switch as best effort
        """
        method = getattr(self.signer, "switch_chain", None)
        if method is None:
            return False
        async with self.lock:
            await _invoke(method, chain_id)
        return True


# signer -> {event loop -> lock}; asyncio locks are bound to the loop they first wait on
_locks: "weakref.WeakKeyDictionary[Any, weakref.WeakKeyDictionary]" = weakref.WeakKeyDictionary()


def _locks_for(signer: Any) -> "weakref.WeakKeyDictionary":
    try:
        return _locks.setdefault(signer, weakref.WeakKeyDictionary())
    except TypeError as e:
        raise TypeError(
            f"Signers must be hashable and weak-referenceable, got {type(signer).__name__}"
        ) from e


def signing_gate(signer: Signer) -> SigningGate:
    """
    Return a gate sharing the per-signer lock with every other gate of ``signer``.

    Locks live only as long as their signer, so signers must be hashable and
    weak-referenceable (any ordinary class instance is).
    """
    return SigningGate(signer)
