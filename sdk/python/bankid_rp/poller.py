"""
BankID RP Client - Order Poller

Turns an OrderHandle into one resolved outcome by checking the order status
at a bounded interval until it completes, fails or errors.
"""

import asyncio
import inspect
from typing import Optional, Callable, Awaitable, Union

import structlog

from .classifier import classify
from .exceptions import BankIdError, OrderCancelled, OrderFailed, TransportError
from .models import OrderHandle, OrderStatus, PollOutcome, PollState
from .protocols import BankIdProtocol
from .scheduler import RecurringTask

logger = structlog.get_logger(__name__)

MIN_INTERVAL_MS = 1000
MAX_INTERVAL_MS = 10000
DEFAULT_INTERVAL_MS = 2000

# Called with (status, hint_code) on every status change; may return an awaitable
StatusObserver = Callable[[OrderStatus, Optional[str]], Union[None, Awaitable[None]]]


def normalize_interval(interval_ms: Union[int, float]) -> int:
    """Clamp a poll interval into [MIN_INTERVAL_MS, MAX_INTERVAL_MS]."""
    return int(min(max(MIN_INTERVAL_MS, interval_ms), MAX_INTERVAL_MS))


class OrderCollection:
    """
    State machine for a single collect() call.

    IDLE -> POLLING -> RESOLVED_{SUCCESS,FAILURE,ERROR,CANCELLED}. resolve()
    takes effect once; later ticks and late signals are ignored.
    """

    def __init__(
        self,
        protocol: BankIdProtocol,
        order_ref: str,
        on_status_change: Optional[StatusObserver] = None,
        notify_hint_changes: bool = False,
    ):
        self.protocol = protocol
        self.order_ref = order_ref
        self.on_status_change = on_status_change
        self.notify_hint_changes = notify_hint_changes

        self.state = PollState.IDLE
        self.last_status: Optional[OrderStatus] = None
        self.last_hint_code: Optional[str] = None
        self.outcome: Optional[PollOutcome] = None
        self.error: Optional[BaseException] = None
        self.schedule: Optional[RecurringTask] = None

        self._resolved = asyncio.Event()
        self._log = logger.bind(order_ref=order_ref)

    @property
    def is_resolved(self) -> bool:
        return self.state.is_resolved

    def start(self, interval_seconds: float) -> None:
        self.state = PollState.POLLING
        self.schedule = RecurringTask(self.tick, interval_seconds, name=f"collect:{self.order_ref}")
        self.schedule.start()

    def resolve(self, state: PollState, error: Optional[BaseException] = None) -> bool:
        """Move to a terminal state. Returns False if already resolved."""
        if self.is_resolved:
            return False

        self.state = state
        self.error = error
        if self.schedule is not None:
            self.schedule.stop()
        self._resolved.set()

        self._log.info("order_resolved", state=state.value, error=str(error) if error else None)
        return True

    async def tick(self) -> None:
        if self.is_resolved:
            return

        try:
            outcome = await self.protocol.poll_status(self.order_ref)
            if self.is_resolved:
                return

            if self._is_change(outcome):
                self._log.info("order_status_changed", status=outcome.status.value, hint_code=outcome.hint_code)
                await self._notify(outcome)

            self.last_status = outcome.status
            self.last_hint_code = outcome.hint_code
            self.outcome = outcome

            if outcome.status is OrderStatus.COMPLETE:
                self.resolve(PollState.RESOLVED_SUCCESS)
            elif outcome.status is OrderStatus.FAILED:
                self.resolve(PollState.RESOLVED_FAILURE, OrderFailed(self.order_ref, outcome.hint_code))

        except asyncio.CancelledError:
            raise
        except BankIdError as e:
            self._log.warning("order_poll_failed", error=str(e), error_code=e.error_code)
            self.resolve(PollState.RESOLVED_ERROR, e)
        except Exception as e:
            fault = classify(e)
            self._log.error("order_poll_failed", error=fault.description, error_type=type(e).__name__)
            error = BankIdError(fault.description, fault.status)
            error.__cause__ = e
            self.resolve(PollState.RESOLVED_ERROR, error)

    def _is_change(self, outcome: PollOutcome) -> bool:
        if outcome.status is not self.last_status:
            return True
        return self.notify_hint_changes and outcome.hint_code != self.last_hint_code

    async def _notify(self, outcome: PollOutcome) -> None:
        # Observer errors are not isolated: they propagate and end the order
        if self.on_status_change is None:
            return
        result = self.on_status_change(outcome.status, outcome.hint_code)
        if inspect.isawaitable(result):
            await result

    async def wait(
        self,
        cancel: Optional[asyncio.Event] = None,
        lifetime_seconds: Optional[float] = None,
    ) -> None:
        """Wait for resolution, cancellation or the end of the order lifetime."""
        if self.is_resolved:
            return

        resolved_waiter = asyncio.ensure_future(self._resolved.wait())
        waiters = {resolved_waiter}
        cancel_waiter = None
        if cancel is not None:
            cancel_waiter = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(waiters, timeout=lifetime_seconds, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()

        if self.is_resolved:
            return

        if cancel_waiter is not None and cancel_waiter in done:
            self.resolve(PollState.RESOLVED_CANCELLED, OrderCancelled(self.order_ref))
        else:
            self.resolve(
                PollState.RESOLVED_ERROR,
                TransportError(f"Order {self.order_ref} did not resolve within {lifetime_seconds}s", "TIMEOUT"),
            )

    def result(self) -> PollOutcome:
        if self.error is not None:
            raise self.error
        return self.outcome


class OrderPoller:
    """
    Collects orders through a BankIdProtocol.

    Every collect() call gets its own OrderCollection and schedule, so
    several orders can be polled concurrently.
    """

    def __init__(
        self,
        protocol: BankIdProtocol,
        default_interval_ms: int = DEFAULT_INTERVAL_MS,
        order_lifetime_seconds: Optional[float] = None,
    ):
        self.protocol = protocol
        self.default_interval_ms = default_interval_ms
        self.order_lifetime_seconds = order_lifetime_seconds

    async def collect(
        self,
        order: Union[OrderHandle, str],
        interval_ms: Optional[int] = None,
        on_status_change: Optional[StatusObserver] = None,
        cancel: Optional[asyncio.Event] = None,
        lifetime_seconds: Optional[float] = None,
        notify_hint_changes: bool = False,
    ) -> PollOutcome:
        """
        Poll an order until it resolves.

        Args:
            order: OrderHandle or bare order reference
            interval_ms: Poll interval, clamped to [1000, 10000]
            on_status_change: Observer called with (status, hint_code) on change
            cancel: Event that aborts collection when set
            lifetime_seconds: Give up with a TIMEOUT TransportError after this long
            notify_hint_changes: Also call the observer when only the hint code changes

        Returns:
            The PollOutcome of the completing status check

        Raises:
            OrderFailed: The order reached FAILED
            OrderCancelled: cancel was set first
            TransportError, RemoteFault: A status check failed
        """
        order_ref = order.order_ref if isinstance(order, OrderHandle) else order
        interval = normalize_interval(self.default_interval_ms if interval_ms is None else interval_ms)
        lifetime = self.order_lifetime_seconds if lifetime_seconds is None else lifetime_seconds

        collection = OrderCollection(self.protocol, order_ref, on_status_change, notify_hint_changes)
        logger.info("order_collect_started", order_ref=order_ref, interval_ms=interval)

        collection.start(interval / 1000)
        try:
            await collection.wait(cancel, lifetime)
        finally:
            await collection.schedule.aclose(cancel_in_flight=True)

        return collection.result()
