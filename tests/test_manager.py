"""Tests for the request manager and wait handles."""

import asyncio
import concurrent.futures
import threading
import time
from unittest.mock import MagicMock

import pytest

from rishvan.manager import (
    InvalidRequestError,
    Outcome,
    RequestAbandonedError,
    RequestManager,
    RequestNotFoundError,
    WaitHandle,
)
from rishvan.schemas import RequestStatus
from rishvan.store import StoreError


class TestCreateRequest:
    """Test request creation."""

    def test_create_registers_handle(self, manager, store):
        request_id, handle = manager.create_request("test-ide", "my-app", "What should I do?")

        assert request_id > 0
        assert handle.request_id == request_id
        assert handle.outcome is None
        assert manager.waiting_count() == 1

        stored = store.get(request_id)
        assert stored.app_name == "my-app"
        assert stored.question == "What should I do?"
        assert stored.status == RequestStatus.PENDING

    def test_create_unique_ids(self, manager):
        ids = {manager.create_request("ide", "app", f"q{i}")[0] for i in range(10)}
        assert len(ids) == 10

    @pytest.mark.parametrize("fields", [
        ("", "app", "question"),
        ("ide", "", "question"),
        ("ide", "app", ""),
    ])
    def test_create_requires_all_fields(self, manager, store, fields):
        with pytest.raises(InvalidRequestError):
            manager.create_request(*fields)
        assert store.list_requests() == []
        assert manager.waiting_count() == 0

    def test_store_failure_registers_nothing(self):
        store = MagicMock()
        store.create.side_effect = StoreError("disk full")
        manager = RequestManager(store)

        with pytest.raises(StoreError):
            manager.create_request("ide", "app", "question")
        assert manager.waiting_count() == 0


class TestRespond:
    """Test the pending -> responded transition and delivery."""

    def test_respond_delivers_to_waiter(self, manager, store):
        request_id, handle = manager.create_request("test-ide", "app", "Pick a color")

        def respond_later():
            time.sleep(0.05)
            manager.respond(request_id, "blue")

        threading.Thread(target=respond_later).start()

        assert handle.result(timeout=2) == "blue"
        assert handle.outcome == Outcome.ANSWERED
        assert manager.waiting_count() == 0

        stored = store.get(request_id)
        assert stored.status == RequestStatus.RESPONDED
        assert stored.response == "blue"
        assert stored.responded_at is not None

    def test_respond_reports_delivery(self, manager):
        request_id, _ = manager.create_request("ide", "app", "q")
        assert manager.respond(request_id, "answer") is True

    def test_respond_twice_is_conflict(self, manager, store):
        request_id, _ = manager.create_request("ide", "app", "question")
        manager.respond(request_id, "first")
        after_first = store.get(request_id)

        with pytest.raises(RequestNotFoundError):
            manager.respond(request_id, "second")
        assert store.get(request_id) == after_first

    def test_respond_unknown_id(self, manager):
        with pytest.raises(RequestNotFoundError) as exc_info:
            manager.respond(404, "answer")
        assert exc_info.value.request_id == 404

    def test_respond_empty_answer_rejected(self, manager, store):
        request_id, handle = manager.create_request("ide", "app", "question")

        with pytest.raises(InvalidRequestError):
            manager.respond(request_id, "")
        assert store.get(request_id).status == RequestStatus.PENDING
        assert not handle.done()

    def test_only_matching_waiter_receives(self, manager):
        first_id, first = manager.create_request("ide", "app", "one")
        _, second = manager.create_request("ide", "app", "two")

        manager.respond(first_id, "for one")

        assert first.result(timeout=1) == "for one"
        assert not second.done()
        assert manager.waiting_count() == 1

    def test_respond_without_waiter_succeeds(self, manager, store):
        """Requests created elsewhere can be answered with nobody listening."""
        request = store.create("ide", "app", "created directly")
        assert manager.respond(request.id, "answer") is False
        assert store.get(request.id).status == RequestStatus.RESPONDED


class TestCancellation:
    """Cancelled callers leave the record pending and are evicted."""

    def test_cancel_evicts_handle(self, manager, store):
        request_id, handle = manager.create_request("ide", "app", "question")

        assert handle.cancel() is True
        assert handle.outcome == Outcome.CANCELLED
        assert manager.waiting_count() == 0
        assert store.get(request_id).status == RequestStatus.PENDING

    def test_respond_after_cancel_still_succeeds(self, manager, store):
        request_id, handle = manager.create_request("ide", "app", "question")
        handle.cancel()

        assert manager.respond(request_id, "too late") is False
        assert store.get(request_id).response == "too late"
        with pytest.raises(concurrent.futures.CancelledError):
            handle.result(timeout=0)

    def test_cancelling_awaiting_task_cancels_handle(self, manager):
        request_id, handle = manager.create_request("ide", "app", "question")

        async def scenario():
            task = asyncio.create_task(handle.wait())
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        assert handle.outcome == Outcome.CANCELLED
        assert manager.waiting_count() == 0

    def test_cancel_after_answer_is_noop(self, manager):
        request_id, handle = manager.create_request("ide", "app", "question")
        manager.respond(request_id, "answer")

        assert handle.cancel() is False
        assert handle.outcome == Outcome.ANSWERED


class TestAsyncWait:
    """Answers cross from the responding thread into the waiting event loop."""

    def test_wait_receives_answer_from_other_thread(self, manager):
        request_id, handle = manager.create_request("ide", "app", "question")

        async def scenario():
            threading.Timer(0.05, manager.respond, args=(request_id, "from thread")).start()
            return await asyncio.wait_for(handle.wait(), timeout=2)

        assert asyncio.run(scenario()) == "from thread"


class TestClose:
    """Test shutdown of the manager."""

    def test_close_abandons_waiters(self, manager):
        _, handle = manager.create_request("ide", "app", "question")

        manager.close()

        assert handle.outcome == Outcome.ABANDONED
        assert manager.waiting_count() == 0
        with pytest.raises(RequestAbandonedError):
            handle.result(timeout=0)


class TestWaitHandle:
    """Test the single-slot rendezvous on its own."""

    def test_settles_once(self):
        handle = WaitHandle(1)
        assert handle.deliver("first") is True
        assert handle.deliver("second") is False
        assert handle.abandon() is False
        assert handle.result(timeout=0) == "first"

    def test_result_timeout_leaves_handle_open(self):
        handle = WaitHandle(1)
        with pytest.raises(concurrent.futures.TimeoutError):
            handle.result(timeout=0.01)
        assert handle.outcome is None
        assert handle.deliver("later") is True

    def test_on_cancel_called_once(self):
        on_cancel = MagicMock()
        handle = WaitHandle(3, on_cancel=on_cancel)
        handle.cancel()
        handle.cancel()
        on_cancel.assert_called_once_with(handle)
