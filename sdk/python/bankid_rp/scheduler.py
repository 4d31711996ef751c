"""
BankID RP Client - Recurring scheduler

Runs an async action now, then every interval, with at most one execution
in flight, until told to stop.
"""

import asyncio
from typing import Optional, Callable, Awaitable

import structlog

logger = structlog.get_logger(__name__)

Action = Callable[[], Awaitable[None]]


class RecurringTask:
    """
    Fixed-interval runner with an in-flight guard.

    A tick that fires while the previous run is still executing is skipped,
    not queued. Exceptions escaping the action are logged and stop the task;
    actions that need to report errors should handle them themselves.
    """

    def __init__(self, action: Action, interval_seconds: float, name: str = "recurring-task"):
        self._action = action
        self.interval = interval_seconds
        self.name = name

        self._running = False
        self._ticker: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Task] = None

        self.runs = 0
        self.skipped = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    def start(self) -> None:
        """Run the action immediately and arm the interval."""
        if self._running:
            return

        self._running = True
        self.fire()
        self._ticker = asyncio.create_task(self._tick_loop(), name=f"{self.name}:ticker")
        logger.debug("recurring_task_started", task=self.name, interval=self.interval)

    def fire(self) -> bool:
        """Run the action now unless it is already in flight. Returns True if started."""
        if not self._running:
            return False

        if self._in_flight is not None:
            self.skipped += 1
            logger.debug("tick_skipped", task=self.name, skipped=self.skipped)
            return False

        self.runs += 1
        self._in_flight = asyncio.create_task(self._action(), name=f"{self.name}:run-{self.runs}")
        self._in_flight.add_done_callback(self._on_done)
        return True

    def stop(self, cancel_in_flight: bool = False) -> None:
        """Stop scheduling further runs. Safe to call from inside the action."""
        self._running = False

        if self._ticker is not None and self._ticker is not asyncio.current_task():
            self._ticker.cancel()

        if cancel_in_flight and self._in_flight is not None and self._in_flight is not asyncio.current_task():
            self._in_flight.cancel()

    async def aclose(self, cancel_in_flight: bool = True) -> None:
        """Stop and wait for the ticker and any in-flight run to finish."""
        self.stop(cancel_in_flight=cancel_in_flight)

        pending = [t for t in (self._ticker, self._in_flight) if t is not None and t is not asyncio.current_task()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._ticker = None

    async def _tick_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            self.fire()

    def _on_done(self, task: asyncio.Task) -> None:
        if self._in_flight is task:
            self._in_flight = None

        if task.cancelled():
            return

        exc = task.exception()
        if exc is not None:
            logger.error("recurring_task_failed", task=self.name, error=str(exc), error_type=type(exc).__name__)
            self.stop()
