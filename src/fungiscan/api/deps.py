"""Request dependencies: app-state accessors and API key authentication."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from fungiscan.catalog import SpeciesCatalog
    from fungiscan.config import Settings
    from fungiscan.ml.engine import InferenceEngine
    from fungiscan.ml.inference import InferencePool
    from fungiscan.pipeline import IdentificationPipeline
    from fungiscan.storage.history import HistoryStore

_bearer_scheme = HTTPBearer(auto_error=False)


def get_settings_state(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def get_pipeline(request: Request) -> IdentificationPipeline:
    pipeline: IdentificationPipeline = request.app.state.pipeline
    return pipeline


def get_history(request: Request) -> HistoryStore:
    history: HistoryStore = request.app.state.history
    return history


def get_catalog(request: Request) -> SpeciesCatalog:
    catalog: SpeciesCatalog = request.app.state.catalog
    return catalog


def get_engine(request: Request) -> InferenceEngine:
    engine: InferenceEngine = request.app.state.engine
    return engine


def get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Require ``Authorization: Bearer <key>`` when FUNGISCAN_API_KEY is set."""
    expected = get_settings_state(request).api_key
    if expected is None:
        return

    supplied = credentials.credentials if credentials is not None else ""
    if not secrets.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
