"""
Step log and observer plumbing shared by the payment state machines.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional


@dataclass(frozen=True)
class LogEntry:
    """One human-readable, step-tagged line of a payment's history."""
    step: str
    message: str
    level: int = logging.INFO
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __str__(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}] {self.message}"


# Observers are called as observer(entry, state)
TransferObserver = Callable[[LogEntry, Any], None]


class EventLog:
    """
    Fan-out of log entries to subscribed observers.

    Observer failures are logged and never interrupt the payment flow.
    """

    def __init__(self, observer: Optional[TransferObserver] = None,
                 logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._subscribers: List[TransferObserver] = []
        if observer is not None:
            self.subscribe(observer)

    def subscribe(self, observer: TransferObserver) -> Callable[[], None]:
        """
        Register an observer.

        Returns:
            A callable that removes the observer again
        """
        self._subscribers.append(observer)

        def unsubscribe() -> None:
            if observer in self._subscribers:
                self._subscribers.remove(observer)

        return unsubscribe

    def publish(self, entry: LogEntry, state: Any) -> None:
        self.logger.log(entry.level, "[%s] %s", entry.step, entry.message)
        for observer in list(self._subscribers):
            try:
                observer(entry, state)
            except Exception:
                self.logger.exception("Observer %r failed while handling step %s", observer, entry.step)
