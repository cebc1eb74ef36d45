"""
Burn-and-mint transfer of the native stablecoin between two bridge chains.

    idle -> approving -> burning -> awaiting-attestation -> minting -> completed

Any failure moves the transfer to ``error`` and re-raises the typed
exception. Once the burn is mined the funds are in flight: a timeout or a
cancellation while waiting for the attestation leaves ``burn_tx_hash`` on
the state so the mint can be completed later with ``BurnMintTransfer.resume``.
"""
import asyncio
import logging
from typing import Mapping, Optional

from web3 import Web3

from ._rate_limited_log import rate_limited_log
from .api import AttestationClient
from .chain import ChainClient
from .config import Settings
from .events import EventLog, TransferObserver
from .exceptions import (
    AttestationTimeoutError,
    ContractExecutionError,
    InsufficientGasError,
    InvalidTransitionError,
    OperationCancelledError,
    RateLimitError,
    UnsupportedChainError,
    UnsupportedRouteError,
)
from .models import Attestation, TransferIntent
from .poller import PollOutcome, StatusPoller
from .registry import ChainRegistry
from .signer import Signer, signing_gate
from .state import TransferPhase, TransferState


class BurnMintTransfer:
    """
    Drives one burn-and-mint transfer to a terminal phase.

    A BurnMintTransfer runs once; create a new one per transfer.
    """

    def __init__(
        self,
        registry: ChainRegistry,
        chains: Mapping[int, ChainClient],
        attestation_client: AttestationClient,
        signer: Signer,
        observer: Optional[TransferObserver] = None,
        settings: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.registry = registry
        self.chains = chains
        self.attestation_client = attestation_client
        self.signer = signer
        self.settings = settings or Settings()
        self.logger = logger or logging.getLogger(__name__)
        self.events = EventLog(observer, logger=self.logger)
        self.state = TransferState()
        self._started = False
        self._cancelled = False
        self._poller: Optional[StatusPoller] = None

    def cancel(self) -> None:
        """Stop observing the transfer; polling ends before its next attempt."""
        self._cancelled = True
        if self._poller is not None:
            self._poller.stop()

    def _emit(self, step: str, message: str, level: int = logging.INFO) -> None:
        entry = self.state.log(step, message, level)
        self.events.publish(entry, self.state)

    def _advance(self, phase: TransferPhase, message: str) -> None:
        self.state.transition_to(phase)
        self._emit(phase.value, message)

    def _warn(self, message: str) -> None:
        self.state.warnings.append(message)
        self._emit(self.state.phase.value, message, logging.WARNING)

    def _chain(self, chain_id: int) -> ChainClient:
        try:
            return self.chains[chain_id]
        except KeyError:
            raise UnsupportedChainError(chain_id, "no chain client available")

    def _check_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelledError(f"Transfer cancelled during {self.state.phase.value}")

    def _explorer_suffix(self, chain_id: int, tx_hash: str) -> str:
        url = self.registry.tx_url(chain_id, tx_hash)
        return f" ({url})" if url else ""

    async def execute(self, intent: TransferIntent) -> TransferState:
        """
        Run the transfer.

        Args:
            intent: Transfer to execute; both tokens must be the bridge stablecoin

        Returns:
            The completed TransferState

        Raises:
            UnsupportedChainError: If either chain is not a bridge chain
            UnsupportedRouteError: If either token is not the bridge stablecoin
            UserRejectedError: If the signer declines a transaction
            ContractExecutionError: If a transaction fails (including InsufficientGasError)
            AttestationTimeoutError: If the attestation does not arrive in time
            OperationCancelledError: If cancel() was called before completion
        """
        return await self._run(intent)

    async def resume(self, intent: TransferIntent, burn_tx_hash: str) -> TransferState:
        """
        Finish a transfer whose burn is already mined.

        Waits for the attestation of ``burn_tx_hash`` and mints on the
        destination chain, skipping approval and burn. Use it after an
        AttestationTimeoutError or a cancellation left funds in flight.

        Raises:
            The same errors as execute()
        """
        if not burn_tx_hash:
            raise InvalidTransitionError("A burn transaction hash is required to resume")
        return await self._run(intent, burn_tx_hash)

    async def _run(self, intent: TransferIntent, burn_tx_hash: Optional[str] = None) -> TransferState:
        if self._started:
            raise InvalidTransitionError("This transfer has already been executed")
        self._started = True

        try:
            source_id = self.registry.resolve_chain_id(intent.source_chain_id)
            destination_id = self.registry.resolve_chain_id(intent.destination_chain_id)
            source_domain = self.registry.domain_of(source_id)
            destination_domain = self.registry.domain_of(destination_id)
            token = self.registry.stablecoin_address(source_id)
            messenger = self.registry.bridge_address(source_id)
            self.registry.verifier_address(destination_id)
            self._check_tokens(intent, source_id, destination_id)
            source = self._chain(source_id)
            destination = self._chain(destination_id)

            if burn_tx_hash is None:
                await self._approve(source, token, messenger, intent.amount)
                self._check_cancelled()
                await self._burn(source, intent, destination_domain, token)
                self._check_cancelled()
            else:
                self.state.burn_tx_hash = burn_tx_hash
                self._emit(TransferPhase.IDLE.value, f"Resuming transfer of burn {burn_tx_hash}")
            attestation = await self._await_attestation(source_domain)
            await self._mint(destination, intent, attestation)

            self._advance(
                TransferPhase.COMPLETED,
                f"Transfer completed{self._explorer_suffix(destination_id, self.state.mint_tx_hash)}",
            )
            return self.state
        except OperationCancelledError as e:
            self._emit(self.state.phase.value, str(e), logging.WARNING)
            raise
        except Exception as e:
            self._record_failure(e)
            raise

    def _check_tokens(self, intent: TransferIntent, source_id: int, destination_id: int) -> None:
        if not self.registry.is_stablecoin(source_id, intent.source_token):
            raise UnsupportedRouteError(
                f"Token {intent.source_token} is not the bridge stablecoin on chain {source_id}"
            )
        if not self.registry.is_stablecoin(destination_id, intent.destination_token):
            raise UnsupportedRouteError(
                f"Token {intent.destination_token} is not the bridge stablecoin on chain {destination_id}"
            )

    def _record_failure(self, error: Exception) -> None:
        message = str(error) or error.__class__.__name__
        if not self.state.is_terminal:
            self.state.fail(message)
        self._emit(TransferPhase.ERROR.value, f"Error: {message}", logging.ERROR)

    async def _approve(self, source: ChainClient, token: str, spender: str, amount: int) -> None:
        self._advance(TransferPhase.APPROVING, "Checking USDC allowance...")
        owner = self.signer.address
        allowance = await source.allowance(token, owner, spender)
        if allowance >= amount:
            self._emit(TransferPhase.APPROVING.value, f"Allowance of {allowance} already covers the transfer")
            return

        self._emit(TransferPhase.APPROVING.value, "Approving USDC transfer...")
        tx_hash = await source.approve(token, spender, amount, self.signer)
        self.state.approve_tx_hash = tx_hash
        self._emit(
            TransferPhase.APPROVING.value,
            f"Approval confirmed: {tx_hash}{self._explorer_suffix(source.chain_id, tx_hash)}",
        )

        allowance = await source.allowance(token, owner, spender)
        if allowance < amount:
            raise ContractExecutionError(
                f"Allowance is {allowance} after approval, expected at least {amount}"
            )

    async def _burn(self, source: ChainClient, intent: TransferIntent,
                    destination_domain: int, token: str) -> None:
        self._advance(TransferPhase.BURNING, "Burning USDC on source chain...")
        tx_hash = await source.deposit_for_burn_with_hook(
            amount=intent.amount,
            destination_domain=destination_domain,
            mint_recipient=intent.recipient,
            burn_token=token,
            max_fee=intent.amount - 1,
            min_finality_threshold=self.settings.min_finality_threshold,
            hook_data=intent.hook_data,
            signer=self.signer,
        )
        self.state.burn_tx_hash = tx_hash
        self._emit(
            TransferPhase.BURNING.value,
            f"Burn transaction: {tx_hash}{self._explorer_suffix(source.chain_id, tx_hash)}",
        )

    async def _await_attestation(self, source_domain: int) -> Attestation:
        self._advance(TransferPhase.AWAITING_ATTESTATION, "Retrieving attestation...")
        burn_hash = self.state.burn_tx_hash

        def still_waiting(value, attempt):
            if value is None:
                rate_limited_log(
                    f"Waiting for attestation of {burn_hash} (attempt {attempt})",
                    level="info",
                    interval=60,
                    logger_instance=self.logger,
                    key=f"attestation:{burn_hash}",
                )

        self._poller = StatusPoller(
            fetch=lambda: self.attestation_client.get_attestation(source_domain, burn_hash),
            is_terminal=lambda value: value is not None,
            interval=self.settings.attestation_interval,
            timeout=self.settings.attestation_timeout,
            on_result=still_waiting,
            treat_as_pending=lambda e: isinstance(e, RateLimitError),
            name="attestation",
            logger=self.logger,
        )
        if self._cancelled:
            self._poller.stop()
        result = await self._poller.run()

        if result.outcome == PollOutcome.STOPPED:
            raise OperationCancelledError(
                f"Stopped waiting for the attestation of {burn_hash} after {result.attempts} attempts"
            )
        if result.outcome != PollOutcome.TERMINAL:
            raise AttestationTimeoutError(
                f"Attestation for {burn_hash} not complete after {result.elapsed:.0f}s "
                f"({result.attempts} attempts); finish it later with resume()"
            )
        self.state.attestation = result.value
        self._emit(TransferPhase.AWAITING_ATTESTATION.value, "Attestation retrieved")
        return result.value

    async def _switch_chain(self, chain_id: int) -> None:
        try:
            switched = await signing_gate(self.signer).switch_chain(chain_id)
        except Exception as e:
            self._warn(f"Error switching chain: {e}")
            return
        if not switched:
            self._warn(f"Manual chain switch required - please switch your wallet to chain ID {chain_id}")

    async def _mint(self, destination: ChainClient, intent: TransferIntent,
                    attestation: Attestation) -> None:
        self._advance(TransferPhase.MINTING, "Minting USDC on destination chain...")
        await self._switch_chain(destination.chain_id)

        balance = await destination.native_balance(intent.recipient)
        minimum = self.settings.min_native_balance_wei
        if balance < minimum:
            raise InsufficientGasError(
                f"Insufficient native balance for gas on chain {destination.chain_id}: "
                f"have {Web3.from_wei(balance, 'ether')}, need at least {Web3.from_wei(minimum, 'ether')}"
            )

        max_attempts = self.settings.mint_max_attempts
        for attempt in range(1, max_attempts + 1):
            self._check_cancelled()
            try:
                estimate = await destination.estimate_receive_message_gas(
                    attestation.message, attestation.attestation, self.signer.address
                )
                gas = estimate * (100 + self.settings.gas_buffer_percent) // 100
                tx_hash = await destination.receive_message(
                    attestation.message, attestation.attestation, self.signer, gas=gas
                )
            except ContractExecutionError as e:
                self._emit(
                    TransferPhase.MINTING.value,
                    f"Mint attempt {attempt}/{max_attempts} failed: {e}",
                    logging.WARNING,
                )
                if attempt >= max_attempts:
                    raise
                await asyncio.sleep(self.settings.mint_retry_delay)
                continue

            self.state.mint_tx_hash = tx_hash
            self._emit(
                TransferPhase.MINTING.value,
                f"Mint transaction: {tx_hash}{self._explorer_suffix(destination.chain_id, tx_hash)}",
            )
            return
