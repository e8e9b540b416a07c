"""Request manager: creates requests and correlates answers with waiting callers."""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future, InvalidStateError
from enum import Enum
from typing import Callable

from rishvan.store import RequestStore

logger = logging.getLogger(__name__)


class InvalidRequestError(ValueError):
    """Raised when a required field is missing or empty."""

    pass


class RequestNotFoundError(Exception):
    """Raised when responding to an unknown or already answered request."""

    def __init__(self, request_id: int):
        super().__init__(f"request {request_id} not found or already responded")
        self.request_id = request_id


class RequestAbandonedError(Exception):
    """Raised to a waiter whose handle was abandoned before an answer arrived."""

    pass


class Outcome(str, Enum):
    """How a wait handle was settled."""

    ANSWERED = "answered"
    CANCELLED = "cancelled"
    ABANDONED = "abandoned"


class WaitHandle:
    """Single-slot rendezvous between a blocked caller and the human's answer.

    Settles exactly once: answered by deliver(), cancelled by the caller, or
    abandoned when the manager shuts down.
    """

    def __init__(self, request_id: int, on_cancel: Callable[[WaitHandle], None] | None = None):
        self.request_id = request_id
        self._future: Future[str] = Future()
        self._on_cancel = on_cancel
        self._future.add_done_callback(self._settled)

    def _settled(self, future: Future[str]) -> None:
        if future.cancelled() and self._on_cancel is not None:
            self._on_cancel(self)

    @property
    def outcome(self) -> Outcome | None:
        """Outcome once settled, None while still waiting."""
        if not self._future.done():
            return None
        if self._future.cancelled():
            return Outcome.CANCELLED
        if self._future.exception() is not None:
            return Outcome.ABANDONED
        return Outcome.ANSWERED

    def done(self) -> bool:
        return self._future.done()

    def deliver(self, response: str) -> bool:
        """Hand the answer to the waiter. Returns False if already settled."""
        try:
            self._future.set_result(response)
            return True
        except InvalidStateError:
            return False

    def cancel(self) -> bool:
        """Give up waiting. Returns False if the answer already arrived."""
        return self._future.cancel()

    def abandon(self) -> bool:
        try:
            self._future.set_exception(
                RequestAbandonedError(f"request {self.request_id} abandoned before an answer arrived")
            )
            return True
        except InvalidStateError:
            return False

    def result(self, timeout: float | None = None) -> str:
        """Block the calling thread until settled.

        Raises:
            concurrent.futures.CancelledError: if the handle was cancelled
            RequestAbandonedError: if the handle was abandoned
            TimeoutError: if timeout elapsed first (the handle stays open)
        """
        return self._future.result(timeout=timeout)

    async def wait(self) -> str:
        """Await the answer. Cancelling the awaiting task cancels the handle."""
        return await asyncio.wrap_future(self._future)


class RequestManager:
    """Owns request creation and the correlation map on the primary process."""

    def __init__(self, store: RequestStore):
        self.store = store
        self._handles: dict[int, WaitHandle] = {}
        self._lock = threading.Lock()

    def create_request(
        self,
        source_name: str,
        app_name: str,
        question: str,
        register: bool = True,
    ) -> tuple[int, WaitHandle]:
        """Persist a pending request and register a wait handle for it.

        Pass register=False when the caller waits elsewhere (a secondary
        polling over HTTP); the handle is then never placed in the
        correlation map and nothing is left behind if that caller gives up.

        Raises:
            InvalidRequestError: if any field is empty
            StoreError: if persistence fails (no handle is registered)
        """
        if not source_name or not app_name or not question:
            raise InvalidRequestError("source_name, app_name and question are required")

        request = self.store.create(source_name, app_name, question)

        handle = WaitHandle(request.id, on_cancel=self._evict)
        if register:
            with self._lock:
                self._handles[request.id] = handle

        logger.info(f"Created request {request.id} for {source_name}/{app_name}")
        return request.id, handle

    def respond(self, request_id: int, response: str) -> bool:
        """Answer a pending request and wake its waiter, if any.

        Returns:
            True if a waiting caller received the answer, False if nobody
            was listening (the store is updated either way)

        Raises:
            InvalidRequestError: if response is empty
            RequestNotFoundError: if the request is unknown or already answered
            StoreError: if the update fails
        """
        if not response:
            raise InvalidRequestError("response cannot be empty")

        if not self.store.mark_responded(request_id, response):
            raise RequestNotFoundError(request_id)

        with self._lock:
            handle = self._handles.pop(request_id, None)

        delivered = handle.deliver(response) if handle is not None else False
        logger.info(f"Request {request_id} responded (delivered={delivered})")
        return delivered

    def _evict(self, handle: WaitHandle) -> None:
        with self._lock:
            if self._handles.get(handle.request_id) is handle:
                del self._handles[handle.request_id]
        logger.info(f"Caller for request {handle.request_id} stopped waiting")

    def waiting_count(self) -> int:
        """Number of callers currently registered in the correlation map."""
        with self._lock:
            return len(self._handles)

    def close(self) -> None:
        """Abandon every in-flight handle."""
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.abandon()
