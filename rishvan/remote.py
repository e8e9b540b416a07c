"""HTTP client used by secondary processes to proxy through the primary."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Iterator

import httpx

from rishvan.config import HEALTH_MARKER, POLL_INTERVAL, POLL_TIMEOUT, PROBE_TIMEOUT
from rishvan.schemas import CreateRequestResponse, HealthResponse, PollResponse, RequestStatus

logger = logging.getLogger(__name__)

CREATE_TIMEOUT = 10.0


class RemoteError(Exception):
    """Raised when the primary cannot be reached or rejects a call."""

    pass


@dataclass(frozen=True)
class PollPolicy:
    """Retry strategy for waiting on an answer held by the primary.

    Polling never gives up on its own: a human may take arbitrarily long to
    answer, so only cancellation of the waiting task ends the loop early.
    """

    interval: float = POLL_INTERVAL
    attempt_timeout: float = POLL_TIMEOUT

    def delays(self) -> Iterator[float]:
        """Sleep before each poll attempt, forever."""
        return itertools.repeat(self.interval)


def probe_health(base_url: str, timeout: float = PROBE_TIMEOUT, transport: httpx.BaseTransport | None = None) -> bool:
    """Check whether a Rishvan primary is answering at base_url."""
    try:
        # Coordination is local-only, so environment proxy settings are ignored
        with httpx.Client(base_url=base_url, timeout=timeout, transport=transport, trust_env=False) as client:
            r = client.get("/api/health")
            r.raise_for_status()
            health = HealthResponse.model_validate(r.json())
    except (httpx.HTTPError, ValueError) as e:
        logger.debug(f"Health probe against {base_url} failed: {e}")
        return False
    return health.status == HEALTH_MARKER


class RemoteClient:
    """Mirror of the primary's create/wait pair, carried over HTTP."""

    def __init__(
        self,
        base_url: str,
        policy: PollPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.policy = policy or PollPolicy()
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=self._transport,
            trust_env=False,
        )

    async def create_request(self, source_name: str, app_name: str, question: str) -> int:
        """Create a request on the primary. Not retried: creation is not idempotent.

        Raises:
            RemoteError: on transport failure, non-200 status or a malformed body
        """
        try:
            async with self._client(CREATE_TIMEOUT) as client:
                r = await client.post("/api/requests", json={
                    "source_name": source_name,
                    "app_name": app_name,
                    "question": question,
                })
        except httpx.HTTPError as e:
            raise RemoteError(f"failed to reach primary server: {e}") from e

        if r.status_code != 200:
            raise RemoteError(f"primary server returned status {r.status_code}")

        try:
            created = CreateRequestResponse.model_validate(r.json())
        except ValueError as e:
            raise RemoteError(f"failed to decode response: {e}") from e

        logger.info(f"Created request {created.id} on primary {self.base_url}")
        return created.id

    async def poll_once(self, client: httpx.AsyncClient, request_id: int) -> str | None:
        """Single status check. Returns the answer, or None if not (yet) available."""
        try:
            r = await client.get(f"/api/requests/{request_id}/poll")
            r.raise_for_status()
            result = PollResponse.model_validate(r.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Poll for request {request_id} failed, retrying: {e}")
            return None

        if result.status == RequestStatus.RESPONDED and result.response:
            return result.response
        return None

    async def poll_response(self, request_id: int) -> str:
        """Wait until the primary records an answer for request_id.

        Transient failures are swallowed and polling continues. Cancel the
        awaiting task to stop waiting; asyncio.CancelledError propagates.
        """
        async with self._client(self.policy.attempt_timeout) as client:
            for delay in self.policy.delays():
                await asyncio.sleep(delay)
                response = await self.poll_once(client, request_id)
                if response is not None:
                    logger.info(f"Request {request_id} answered via primary")
                    return response
        raise RemoteError(f"poll policy for request {request_id} ended without an answer")
