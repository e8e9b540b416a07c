"""HTTP endpoint served by the primary process: UI assets plus the request API."""

from __future__ import annotations

import logging
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request as HTTPRequest
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles

from rishvan import __version__
from rishvan.config import HEALTH_MARKER, Settings
from rishvan.manager import InvalidRequestError, RequestManager, RequestNotFoundError
from rishvan.notifier import NotificationBroker
from rishvan.schemas import (
    CreateRequestBody,
    CreateRequestResponse,
    ErrorResponse,
    HealthResponse,
    PollResponse,
    Request,
    RequestStatus,
    RespondBody,
    SourceResponse,
    StatusResponse,
)
from rishvan.store import RequestStore, StoreError

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0


async def event_stream(broker: NotificationBroker, keepalive: float = KEEPALIVE_SECONDS) -> AsyncIterator[str]:
    """Render new-request notifications as a server-sent event stream.

    The mailbox is released when the client disconnects or the broker closes.
    """
    subscription = broker.subscribe()
    try:
        yield ": keepalive\n\n"
        while True:
            try:
                message = await subscription.receive(keepalive)
            except TimeoutError:
                yield ": keepalive\n\n"
                continue
            if message is None:
                break
            yield f"event: new-request\ndata: {message}\n\n"
    finally:
        broker.unsubscribe(subscription)


def create_app(
    settings: Settings,
    manager: RequestManager,
    broker: NotificationBroker,
    store: RequestStore,
) -> FastAPI:
    """Build the shared endpoint around explicitly injected components."""
    app = FastAPI(
        title="Rishvan",
        description="Shared UI endpoint for answering agent questions",
        version=__version__,
    )
    app.state.settings = settings
    app.state.manager = manager
    app.state.broker = broker
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    # --- API Endpoints ---

    @app.get("/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Identify this process as a Rishvan primary."""
        return HealthResponse(status=HEALTH_MARKER)

    @app.get("/api/ide", response_model=SourceResponse)
    async def source() -> SourceResponse:
        """Source name of the process owning the UI."""
        return SourceResponse(source_name=settings.source_name)

    @app.post("/api/requests", response_model=CreateRequestResponse)
    async def create_request(body: CreateRequestBody) -> CreateRequestResponse:
        """Create a request on behalf of a secondary process."""
        try:
            request_id, _ = manager.create_request(
                body.source_name,
                body.app_name,
                body.question,
                register=False,
            )
        except InvalidRequestError as e:
            raise HTTPException(status_code=400, detail=str(e))

        broker.publish(request_id, body.source_name, body.app_name, body.question)
        return CreateRequestResponse(id=request_id)

    @app.get("/api/requests", response_model=list[Request])
    async def list_requests(
        source_name: str | None = None,
        app_name: str | None = None,
        status: RequestStatus | None = None,
    ) -> list[Request]:
        """List requests, newest first."""
        return store.list_requests(source_name=source_name, app_name=app_name, status=status)

    @app.get("/api/requests/{request_id}", response_model=Request)
    async def get_request(request_id: int) -> Request:
        request = store.get(request_id)
        if request is None:
            raise HTTPException(status_code=404, detail="not found")
        return request

    @app.get("/api/requests/{request_id}/poll", response_model=PollResponse)
    async def poll_request(request_id: int) -> PollResponse:
        """Lightweight status check used by secondaries."""
        request = store.get(request_id)
        if request is None:
            raise HTTPException(status_code=404, detail="not found")
        return PollResponse(id=request.id, status=request.status, response=request.response)

    @app.post("/api/requests/{request_id}/respond", response_model=StatusResponse)
    async def respond(request_id: int, body: RespondBody) -> StatusResponse:
        """Submit the human's answer."""
        try:
            manager.respond(request_id, body.response)
        except (InvalidRequestError, RequestNotFoundError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        return StatusResponse()

    @app.get("/api/events")
    async def events() -> StreamingResponse:
        """Server-sent stream of new-request notifications."""
        return StreamingResponse(
            event_stream(broker),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    # --- Error Handlers ---

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: HTTPRequest, exc: RequestValidationError) -> JSONResponse:
        """Malformed bodies and non-integer ids are client errors (400)."""
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(
                detail="invalid request",
                error_code="BAD_REQUEST",
            ).model_dump(),
        )

    @app.exception_handler(StoreError)
    async def store_exception_handler(request: HTTPRequest, exc: StoreError) -> JSONResponse:
        logger.error(f"Store error: {exc}")
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                detail=str(exc),
                error_code="STORE_ERROR",
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: HTTPRequest, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                detail=str(exc),
                error_code="INTERNAL_ERROR",
            ).model_dump(),
        )

    # UI assets last so the API routes take precedence
    static_dir = settings.static_dir
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="ui")
    else:
        logger.warning(f"UI directory {static_dir} not found, serving API only")

    return app
