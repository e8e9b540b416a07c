"""In-process publish/subscribe hub for new-request notifications."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque

from rishvan.schemas import NewRequestEvent

logger = logging.getLogger(__name__)

DEFAULT_MAILBOX_SIZE = 16


class Subscription:
    """Bounded FIFO mailbox for one UI observer.

    Readers either block a thread with get() or suspend a coroutine with
    receive(). The first receive() binds the mailbox to its event loop;
    producers on any thread wake that loop with call_soon_threadsafe.
    """

    def __init__(self, maxsize: int = DEFAULT_MAILBOX_SIZE):
        self.maxsize = maxsize
        self._messages: deque[str] = deque()
        self._cond = threading.Condition()
        self._closed = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._ready: asyncio.Event | None = None

    def _wake_loop(self) -> None:
        # Caller holds self._cond
        if self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._ready.set)
        except RuntimeError:
            logger.debug("Subscriber event loop already closed")

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def offer(self, message: str) -> bool:
        """Enqueue without blocking. Returns False if the message was dropped."""
        with self._cond:
            if self._closed or len(self._messages) >= self.maxsize:
                return False
            self._messages.append(message)
            self._cond.notify()
            self._wake_loop()
            return True

    def get(self, timeout: float | None = None) -> str | None:
        """Wait for the next message.

        Returns:
            The message, or None once the subscription is closed and drained

        Raises:
            TimeoutError: if nothing arrived within timeout on an open subscription
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._messages or self._closed, timeout):
                raise TimeoutError("no message within timeout")
            if self._messages:
                return self._messages.popleft()
            return None

    async def receive(self, timeout: float | None = None) -> str | None:
        """Await the next message without occupying a thread.

        Returns:
            The message, or None once the subscription is closed and drained

        Raises:
            TimeoutError: if nothing arrived within timeout on an open subscription
        """
        with self._cond:
            if self._loop is None:
                self._loop = asyncio.get_running_loop()
                self._ready = asyncio.Event()

        while True:
            with self._cond:
                if self._messages:
                    return self._messages.popleft()
                if self._closed:
                    return None
                self._ready.clear()
            await asyncio.wait_for(self._ready.wait(), timeout)

    def get_nowait(self) -> str | None:
        with self._cond:
            return self._messages.popleft() if self._messages else None

    def pending(self) -> int:
        with self._cond:
            return len(self._messages)

    def close(self) -> None:
        """Wake any blocked reader; undelivered messages can still be drained."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()
            self._wake_loop()


class NotificationBroker:
    """Fan-out of new-request notifications to every subscribed mailbox.

    Publishing never blocks: a full mailbox drops the message for that
    subscriber only. Observers recover missed notifications by re-listing
    requests from the store.
    """

    def __init__(self, mailbox_size: int = DEFAULT_MAILBOX_SIZE):
        self.mailbox_size = mailbox_size
        self._subscribers: set[Subscription] = set()
        self._lock = threading.Lock()

    def subscribe(self) -> Subscription:
        subscription = Subscription(maxsize=self.mailbox_size)
        with self._lock:
            self._subscribers.add(subscription)
        logger.debug(f"Subscriber added ({self.subscriber_count()} active)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)
        subscription.close()

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, request_id: int, source_name: str, app_name: str, question: str) -> int:
        """Broadcast a new-request event.

        Returns:
            Number of subscribers the message was delivered to
        """
        message = NewRequestEvent(
            id=request_id,
            source_name=source_name,
            app_name=app_name,
            question=question,
        ).model_dump_json()

        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for subscription in subscribers:
            if subscription.offer(message):
                delivered += 1
            else:
                logger.debug(f"Mailbox full, dropped notification for request {request_id}")
        return delivered

    def close(self) -> None:
        """End every subscription (producer shutdown)."""
        with self._lock:
            subscribers = list(self._subscribers)
            self._subscribers.clear()
        for subscription in subscribers:
            subscription.close()
