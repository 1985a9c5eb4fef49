"""Pydantic request/response schemas for the FungiScan API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class IdentifyRequest(BaseModel):
    """Identification request from the capture/pick screen."""

    image_uri: str = Field(min_length=1, description="Path or file:// URI of the captured or picked image")


class PredictionItem(BaseModel):
    """One ranked species candidate."""

    id: int = Field(ge=0, description="Class id in the species catalog")
    probability: int = Field(ge=0, le=100, description="Rounded probability in percent")
    name: str = Field(description="Species name, 'unknown' if the catalog has no entry")
    is_edible: bool | None = None


class HistoryItem(BaseModel):
    """A stored identification."""

    id: int
    path: str
    predictions: list[PredictionItem]
    created_at: datetime


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    model: str
    model_loaded: bool
    species: int
    concurrent_requests: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    user_message: str | None = None
