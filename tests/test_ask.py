"""Tests for the ask-a-human operation."""

import asyncio
import json
import threading
from unittest.mock import AsyncMock, MagicMock

import pytest

from rishvan.ask import AskService
from rishvan.coordinator import PortInUseError, Role
from rishvan.manager import InvalidRequestError
from rishvan.schemas import RequestStatus


def _coordinator(role=Role.PRIMARY):
    coordinator = MagicMock()
    coordinator.resolve_role.return_value = role
    return coordinator


class TestAskAsPrimary:
    """On the primary the caller waits on its local wait handle."""

    def test_ask_returns_answer(self, settings, manager, broker, store):
        subscription = broker.subscribe()
        service = AskService(settings, _coordinator(), manager, broker, open_url=MagicMock())

        def answer_when_asked():
            message = subscription.get(timeout=2)
            manager.respond(json.loads(message)["id"], "blue")

        threading.Thread(target=answer_when_asked).start()
        answer = asyncio.run(asyncio.wait_for(service.ask("app1", "pick a color"), timeout=5))

        assert answer == "blue"
        [request] = store.list_requests()
        assert request.source_name == "test-ide"
        assert request.status == RequestStatus.RESPONDED

    def test_cancelled_ask_leaves_request_pending(self, settings, manager, broker, store):
        service = AskService(settings, _coordinator(), manager, broker, open_url=MagicMock())

        async def scenario():
            task = asyncio.create_task(service.ask("app1", "never answered"))
            await asyncio.sleep(0.1)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        [request] = store.list_requests()
        assert request.status == RequestStatus.PENDING
        assert manager.waiting_count() == 0
        manager.respond(request.id, "late answer")
        assert store.get(request.id).response == "late answer"


class TestAskAsSecondary:
    """On a secondary the question is proxied to the primary."""

    def test_ask_uses_remote_client(self, settings, manager, broker, store):
        remote = MagicMock()
        remote.create_request = AsyncMock(return_value=17)
        remote.poll_response = AsyncMock(return_value="green")
        service = AskService(
            settings,
            _coordinator(Role.SECONDARY),
            manager,
            broker,
            remote=remote,
            open_url=MagicMock(),
        )

        assert asyncio.run(service.ask("app1", "pick a color")) == "green"
        remote.create_request.assert_awaited_once_with("test-ide", "app1", "pick a color")
        remote.poll_response.assert_awaited_once_with(17)
        assert store.list_requests() == []


class TestAskValidation:
    """Invalid input and fatal configuration errors."""

    @pytest.mark.parametrize("app_name,question", [("", "q"), ("app", "")])
    def test_empty_fields_rejected(self, settings, manager, broker, app_name, question):
        coordinator = _coordinator()
        service = AskService(settings, coordinator, manager, broker, open_url=MagicMock())

        with pytest.raises(InvalidRequestError):
            asyncio.run(service.ask(app_name, question))
        coordinator.resolve_role.assert_not_called()

    def test_missing_source_name_rejected(self, settings, manager, broker):
        settings.source_name = ""
        service = AskService(settings, _coordinator(), manager, broker, open_url=MagicMock())

        with pytest.raises(InvalidRequestError):
            asyncio.run(service.ask("app", "q"))

    def test_port_in_use_propagates(self, settings, manager, broker):
        coordinator = MagicMock()
        coordinator.resolve_role.side_effect = PortInUseError(settings.port)
        service = AskService(settings, coordinator, manager, broker, open_url=MagicMock())

        with pytest.raises(PortInUseError):
            asyncio.run(service.ask("app", "q"))


class TestBrowserLaunch:
    """The UI opens once per process."""

    def _answered_service(self, settings, manager, broker, open_url):
        remote = MagicMock()
        remote.create_request = AsyncMock(return_value=1)
        remote.poll_response = AsyncMock(return_value="ok")
        return AskService(
            settings,
            _coordinator(Role.SECONDARY),
            manager,
            broker,
            remote=remote,
            open_url=open_url,
        )

    def test_opens_browser_once(self, settings, manager, broker):
        settings.open_browser = True
        open_url = MagicMock()
        service = self._answered_service(settings, manager, broker, open_url)

        asyncio.run(service.ask("app", "first"))
        asyncio.run(service.ask("app", "second"))

        open_url.assert_called_once_with(settings.base_url)

    def test_browser_disabled(self, settings, manager, broker):
        open_url = MagicMock()
        service = self._answered_service(settings, manager, broker, open_url)

        asyncio.run(service.ask("app", "q"))

        open_url.assert_not_called()

    def test_browser_failure_does_not_fail_ask(self, settings, manager, broker):
        settings.open_browser = True
        open_url = MagicMock(side_effect=RuntimeError("no display"))
        service = self._answered_service(settings, manager, broker, open_url)

        assert asyncio.run(service.ask("app", "q")) == "ok"
