"""Pydantic schemas for Rishvan request/response contracts."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class RequestStatus(str, Enum):
    """Lifecycle of a request. The only legal transition is PENDING -> RESPONDED."""

    PENDING = "pending"
    RESPONDED = "responded"


class Request(BaseModel):
    """A question asked by an agent and, once answered, the human's response."""

    id: int
    source_name: str
    app_name: str
    question: str
    response: str = ""
    status: RequestStatus = RequestStatus.PENDING
    created_at: datetime
    responded_at: datetime | None = None


# --- Request Schemas ---


class CreateRequestBody(BaseModel):
    """Body of POST /api/requests (sent by secondary processes)."""

    source_name: str = Field(default="", description="Agent integration asking the question")
    app_name: str = Field(default="", description="Application or project context")
    question: str = Field(default="", description="Question for the human")


class RespondBody(BaseModel):
    """Body of POST /api/requests/{id}/respond."""

    response: str = ""


# --- Response Schemas ---


class CreateRequestResponse(BaseModel):
    """Identifier of a newly created request."""

    id: int


class PollResponse(BaseModel):
    """Lightweight status check used by secondaries."""

    id: int
    status: RequestStatus
    response: str = ""


class HealthResponse(BaseModel):
    """Liveness and identity probe."""

    status: str


class StatusResponse(BaseModel):
    """Generic acknowledgement."""

    status: str = "ok"


class SourceResponse(BaseModel):
    """Source name of the primary process."""

    source_name: str


class ErrorResponse(BaseModel):
    """Error response for failed requests."""

    detail: str
    error_code: str | None = None


# --- Notifications ---


class NewRequestEvent(BaseModel):
    """Payload pushed to UI observers when a request is created."""

    id: int
    source_name: str
    app_name: str
    question: str
