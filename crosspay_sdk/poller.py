"""
Generic fixed-interval status poller.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class PollOutcome(str, Enum):
    TERMINAL = "terminal"
    EXHAUSTED = "exhausted"
    TIMED_OUT = "timed_out"
    STOPPED = "stopped"


@dataclass
class PollResult(Generic[T]):
    outcome: PollOutcome
    value: Optional[T]
    attempts: int
    elapsed: float


class StatusPoller(Generic[T]):
    """
    Call ``fetch`` every ``interval`` seconds until ``is_terminal`` accepts a
    result, the attempt or time limit runs out, or ``stop`` is called.

    The stop flag is checked before every poll. Exceptions accepted by
    ``treat_as_pending`` count as an attempt and polling continues; any
    other exception propagates out of ``run``.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        is_terminal: Callable[[T], bool],
        interval: float,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        on_result: Optional[Callable[[T, int], Any]] = None,
        treat_as_pending: Optional[Callable[[BaseException], bool]] = None,
        name: str = "status",
        logger: Optional[logging.Logger] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        if interval < 0:
            raise ValueError("interval must not be negative")
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.fetch = fetch
        self.is_terminal = is_terminal
        self.interval = interval
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.on_result = on_result
        self.treat_as_pending = treat_as_pending
        self.name = name
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock or time.monotonic
        self._stopped = False
        self._running = False
        self._attempts = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Ask the poller to stop before its next poll."""
        self._stopped = True

    def start(self) -> "asyncio.Task[PollResult[T]]":
        """Run the poller as a background task on the current loop."""
        if self._task is not None and not self._task.done():
            raise RuntimeError(f"{self.name} poller is already running")
        self._task = asyncio.ensure_future(self.run())
        return self._task

    async def run(self) -> PollResult[T]:
        self._running = True
        started = self._clock()
        last: Optional[T] = None
        try:
            while True:
                elapsed = self._clock() - started
                if self._stopped:
                    self.logger.info(f"{self.name} polling stopped after {self._attempts} attempts")
                    return PollResult(PollOutcome.STOPPED, last, self._attempts, elapsed)
                if self.timeout is not None and elapsed >= self.timeout:
                    return PollResult(PollOutcome.TIMED_OUT, last, self._attempts, elapsed)

                self._attempts += 1
                try:
                    value = await self.fetch()
                except Exception as e:
                    if self.treat_as_pending is None or not self.treat_as_pending(e):
                        raise
                    self.logger.warning(f"{self.name} poll {self._attempts} failed, still pending: {e}")
                else:
                    last = value
                    if self.on_result is not None:
                        self.on_result(value, self._attempts)
                    if self.is_terminal(value):
                        return PollResult(PollOutcome.TERMINAL, value, self._attempts, self._clock() - started)

                if self.max_attempts is not None and self._attempts >= self.max_attempts:
                    return PollResult(PollOutcome.EXHAUSTED, last, self._attempts, self._clock() - started)
                await asyncio.sleep(self.interval)
        finally:
            self._running = False
