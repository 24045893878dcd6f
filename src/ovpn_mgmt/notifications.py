"""Fan-out of asynchronous notifications to observers.

Each subscription owns a bounded queue and a delivery task. The read loop
only ever calls publish(), which never waits: a full queue drops according
to the overflow policy.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Iterable
from enum import Enum

import structlog

from ovpn_mgmt.protocol import Notification, NotificationCategory

log = structlog.get_logger()

Observer = Callable[[Notification], Awaitable[None] | None]


class OverflowPolicy(Enum):
    """What to do when an observer's queue is full."""

    DROP_NEWEST = "drop_newest"
    DROP_OLDEST = "drop_oldest"


class Subscription:
    """Handle returned by NotificationSink.subscribe().

    Calling the handle (or unsubscribe()) detaches the observer. Queued
    notifications that have not been delivered yet are discarded.
    """

    def __init__(
        self,
        sink: NotificationSink,
        observer: Observer,
        queue_size: int,
        categories: frozenset[NotificationCategory] | None,
    ) -> None:
        self._sink = sink
        self.observer = observer
        self.categories = categories
        self.dropped = 0
        self.delivered = 0
        self._queue: asyncio.Queue[Notification | None] = asyncio.Queue(maxsize=queue_size)
        self._task: asyncio.Task | None = asyncio.get_running_loop().create_task(self._deliver())

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def __call__(self) -> None:
        self.unsubscribe()

    def unsubscribe(self) -> None:
        """Detach from the sink. Idempotent."""
        self._sink._remove(self)
        task, self._task = self._task, None
        if task is None:
            return
        if task is asyncio.current_task():
            # Called by the observer itself: stop after the current delivery
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(None)
        else:
            task.cancel()

    def wants(self, notification: Notification) -> bool:
        return self.categories is None or notification.category in self.categories

    def offer(self, notification: Notification, policy: OverflowPolicy) -> bool:
        """Queue without waiting. Returns False if something was dropped."""
        try:
            self._queue.put_nowait(notification)
            return True
        except asyncio.QueueFull:
            pass

        self.dropped += 1
        if policy is OverflowPolicy.DROP_OLDEST:
            self._queue.get_nowait()
            self._queue.put_nowait(notification)
        return False

    async def drain(self, timeout: float) -> None:
        """Deliver what is queued, then stop."""
        task, self._task = self._task, None
        if task is None:
            return
        if task is asyncio.current_task():
            # The observer is closing the sink and cannot wait on its own task
            if self._queue.full():
                self._queue.get_nowait()
                self.dropped += 1
            self._queue.put_nowait(None)
            return

        async def stop() -> None:
            await self._queue.put(None)
            await task

        try:
            await asyncio.wait_for(stop(), timeout=timeout)
        except TimeoutError:
            log.warning("observer_drain_timeout", observer=_name(self.observer))
        finally:
            if not task.done():
                task.cancel()

    async def _deliver(self) -> None:
        while True:
            notification = await self._queue.get()
            if notification is None:
                return
            try:
                result = self.observer(notification)
                if inspect.isawaitable(result):
                    await result
                self.delivered += 1
            except Exception:
                log.exception(
                    "observer_failed",
                    observer=_name(self.observer),
                    category=notification.category.value,
                )


class NotificationSink:
    """Delivers notifications to every subscribed observer in receipt order."""

    def __init__(
        self,
        queue_size: int = 256,
        overflow: OverflowPolicy = OverflowPolicy.DROP_NEWEST,
    ) -> None:
        if queue_size < 1:
            raise ValueError(f"queue_size must be >= 1, got {queue_size}")
        self.queue_size = queue_size
        self.overflow = overflow
        self._subscriptions: list[Subscription] = []
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        observer: Observer,
        *,
        categories: Iterable[NotificationCategory] | None = None,
        queue_size: int | None = None,
    ) -> Subscription:
        """Register an observer (plain callable or coroutine function).

        Must be called from a running event loop.

        Args:
            observer: Called once per notification
            categories: Only deliver these categories (default: all)
            queue_size: Override the sink's per-observer queue size
        """
        if self._closed:
            raise RuntimeError("Notification sink is closed")
        subscription = Subscription(
            self,
            observer,
            queue_size or self.queue_size,
            frozenset(categories) if categories is not None else None,
        )
        self._subscriptions.append(subscription)
        return subscription

    def publish(self, notification: Notification) -> None:
        """Hand a notification to every interested observer. Never blocks."""
        for subscription in list(self._subscriptions):
            if not subscription.wants(notification):
                continue
            if not subscription.offer(notification, self.overflow):
                log.warning(
                    "notification_dropped",
                    observer=_name(subscription.observer),
                    category=notification.category.value,
                    policy=self.overflow.value,
                    dropped=subscription.dropped,
                )

    async def close(self, drain_timeout: float = 1.0) -> None:
        """Deliver queued notifications and stop all observers. Idempotent."""
        if self._closed:
            return
        self._closed = True
        subscriptions = list(self._subscriptions)
        self._subscriptions.clear()
        try:
            for subscription in subscriptions:
                await subscription.drain(drain_timeout)
        finally:
            # Interrupted drain: stop whatever is still running
            for subscription in subscriptions:
                subscription.unsubscribe()

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)


def _name(observer: Observer) -> str:
    return getattr(observer, "__qualname__", None) or repr(observer)
