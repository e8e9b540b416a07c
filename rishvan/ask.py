"""The "ask a human" operation, routed locally or through the primary."""

from __future__ import annotations

import asyncio
import logging
import threading
import webbrowser
from typing import Callable

from rishvan.config import Settings
from rishvan.coordinator import InstanceCoordinator, Role
from rishvan.manager import InvalidRequestError, RequestManager
from rishvan.notifier import NotificationBroker
from rishvan.remote import PollPolicy, RemoteClient

logger = logging.getLogger(__name__)


class AskService:
    """Asks a question and waits for the human's answer.

    On the primary the question goes straight to the request manager and the
    caller awaits its wait handle. On a secondary it is created on the
    primary over HTTP and the answer is polled for.
    """

    def __init__(
        self,
        settings: Settings,
        coordinator: InstanceCoordinator,
        manager: RequestManager,
        broker: NotificationBroker,
        remote: RemoteClient | None = None,
        open_url: Callable[[str], object] = webbrowser.open,
    ):
        self.settings = settings
        self.coordinator = coordinator
        self.manager = manager
        self.broker = broker
        self.remote = remote or RemoteClient(
            settings.base_url,
            policy=PollPolicy(interval=settings.poll_interval, attempt_timeout=settings.poll_timeout),
        )
        self._open_url = open_url
        self._browser_opened = False
        self._browser_lock = threading.Lock()

    def _open_browser_once(self) -> None:
        if not self.settings.open_browser:
            return
        with self._browser_lock:
            if self._browser_opened:
                return
            self._browser_opened = True
        try:
            self._open_url(self.settings.base_url)
        except Exception as e:
            logger.warning(f"Could not open browser: {e}")

    async def ask(self, app_name: str, question: str) -> str:
        """Ask the human and return their answer.

        Raises:
            InvalidRequestError: if app_name or question is empty
            PortInUseError: if the shared port is held by an unrelated process
            RemoteError: if a secondary cannot create the request on the primary
            asyncio.CancelledError: if the awaiting task is cancelled
        """
        source_name = self.settings.source_name
        if not source_name or not app_name or not question:
            raise InvalidRequestError("source_name, app_name and question are required")

        role = await asyncio.to_thread(self.coordinator.resolve_role)
        self._open_browser_once()

        if role is Role.PRIMARY:
            request_id, handle = self.manager.create_request(source_name, app_name, question)
            self.broker.publish(request_id, source_name, app_name, question)
            return await handle.wait()

        request_id = await self.remote.create_request(source_name, app_name, question)
        return await self.remote.poll_response(request_id)
