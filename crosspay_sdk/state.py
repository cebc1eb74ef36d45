"""
Mutable state records for the two payment state machines.

Phases only move forward. ``error`` can be entered from any non-terminal
phase, and a terminal phase has no outgoing transitions.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, FrozenSet, List, Optional, Tuple

from .events import LogEntry
from .exceptions import InvalidTransitionError, OrderFailedError
from .models import Attestation


class TransferPhase(str, Enum):
    IDLE = "idle"
    APPROVING = "approving"
    BURNING = "burning"
    AWAITING_ATTESTATION = "awaiting-attestation"
    MINTING = "minting"
    COMPLETED = "completed"
    ERROR = "error"


class OrderPhase(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    SIGNING = "signing"
    SUBMITTING = "submitting"
    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed-out"
    ERROR = "error"


class _PhaseRecord:
    """Shared transition rules; subclasses declare the phase ordering."""

    ORDER: ClassVar[Tuple[Enum, ...]] = ()
    TERMINAL: ClassVar[FrozenSet[Enum]] = frozenset()
    ERROR: ClassVar[Enum]

    @property
    def is_terminal(self) -> bool:
        return self.phase in self.TERMINAL

    def _rank(self, phase: Enum) -> int:
        if phase in self.TERMINAL:
            return len(self.ORDER)
        return self.ORDER.index(phase)

    def transition_to(self, phase: Enum) -> None:
        """
        Move to ``phase``.

        Raises:
            InvalidTransitionError: If the record is terminal or the move
                would go backward
        """
        if self.is_terminal:
            raise InvalidTransitionError(
                f"Cannot leave terminal phase {self.phase.value} for {phase.value}"
            )
        if phase != self.ERROR and self._rank(phase) <= self._rank(self.phase):
            raise InvalidTransitionError(
                f"Cannot move from {self.phase.value} back to {phase.value}"
            )
        object.__setattr__(self, "phase", phase)

    def fail(self, message: str) -> None:
        if self.is_terminal:
            raise InvalidTransitionError(f"Cannot fail from terminal phase {self.phase.value}")
        object.__setattr__(self, "error_message", message)
        self.transition_to(self.ERROR)

    def log(self, step: str, message: str, level: int = logging.INFO) -> LogEntry:
        entry = LogEntry(step=step, message=message, level=level)
        self.logs.append(entry)
        return entry


@dataclass
class TransferState(_PhaseRecord):
    """Progress of one burn-and-mint transfer."""

    ORDER: ClassVar[Tuple[Enum, ...]] = (
        TransferPhase.IDLE,
        TransferPhase.APPROVING,
        TransferPhase.BURNING,
        TransferPhase.AWAITING_ATTESTATION,
        TransferPhase.MINTING,
    )
    TERMINAL: ClassVar[FrozenSet[Enum]] = frozenset({TransferPhase.COMPLETED, TransferPhase.ERROR})
    ERROR: ClassVar[Enum] = TransferPhase.ERROR

    phase: TransferPhase = TransferPhase.IDLE
    logs: List[LogEntry] = field(default_factory=list)
    approve_tx_hash: Optional[str] = None
    burn_tx_hash: Optional[str] = None
    attestation: Optional[Attestation] = None
    mint_tx_hash: Optional[str] = None
    error_message: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class OrderState(_PhaseRecord):
    """Progress of one signed order. Fields are frozen once the phase is terminal."""

    ORDER: ClassVar[Tuple[Enum, ...]] = (
        OrderPhase.IDLE,
        OrderPhase.PREPARING,
        OrderPhase.SIGNING,
        OrderPhase.SUBMITTING,
        OrderPhase.PENDING,
    )
    TERMINAL: ClassVar[FrozenSet[Enum]] = frozenset({
        OrderPhase.EXECUTED,
        OrderPhase.FAILED,
        OrderPhase.CANCELLED,
        OrderPhase.TIMED_OUT,
        OrderPhase.ERROR,
    })
    ERROR: ClassVar[Enum] = OrderPhase.ERROR

    # phase is assigned last by __init__ so the terminal guard never trips during construction
    order_hash: Optional[str] = None
    signature: Optional[str] = None
    poll_status: Optional[str] = None
    poll_attempts: int = 0
    error_message: Optional[str] = None
    logs: List[LogEntry] = field(default_factory=list)
    phase: OrderPhase = OrderPhase.IDLE

    def __setattr__(self, name, value):
        if name != "phase" and self.__dict__.get("phase") in self.TERMINAL:
            raise InvalidTransitionError(
                f"Order state is final ({self.phase.value}); cannot update {name}"
            )
        object.__setattr__(self, name, value)

    def finish(self, phase: OrderPhase, error_message: Optional[str] = None) -> None:
        """Enter a terminal phase, recording the reason for non-success outcomes."""
        if phase not in self.TERMINAL:
            raise InvalidTransitionError(f"{phase.value} is not a terminal order phase")
        if error_message is not None:
            self.error_message = error_message
        self.transition_to(phase)

    def raise_for_status(self) -> None:
        """
        Raise if the relayer did not execute the order.

        Raises:
            OrderFailedError: If the order ended failed or cancelled
        """
        if self.phase in (OrderPhase.FAILED, OrderPhase.CANCELLED):
            raise OrderFailedError(
                self.error_message or f"Order {self.order_hash} {self.phase.value}",
                status=self.poll_status,
            )
