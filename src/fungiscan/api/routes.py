"""API route definitions for the recognizer and history screens."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from fungiscan.api.deps import (
    get_catalog,
    get_engine,
    get_history,
    get_inference_pool,
    get_pipeline,
    verify_api_key,
)
from fungiscan.api.schemas import (
    ErrorResponse,
    HealthResponse,
    HistoryItem,
    IdentifyRequest,
    PredictionItem,
)
from fungiscan.catalog import SpeciesCatalog  # noqa: TC001
from fungiscan.errors import (
    EngineUnavailableError,
    FungiScanError,
    InferenceError,
    PersistError,
    PreprocessError,
    RecordNotFoundError,
    StorageError,
)
from fungiscan.ml.engine import InferenceEngine  # noqa: TC001
from fungiscan.ml.inference import InferencePool  # noqa: TC001
from fungiscan.pipeline import IdentificationPipeline  # noqa: TC001
from fungiscan.storage.history import HistoryStore  # noqa: TC001

if TYPE_CHECKING:
    from fungiscan.storage.history import HistoryRecord

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

# Most specific classes first.
_ERROR_STATUS: list[tuple[type[FungiScanError], int]] = [
    (RecordNotFoundError, status.HTTP_404_NOT_FOUND),
    (PreprocessError, status.HTTP_422_UNPROCESSABLE_CONTENT),
    (EngineUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (InferenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (StorageError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (PersistError, status.HTTP_503_SERVICE_UNAVAILABLE),
]

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    code: {"model": ErrorResponse} for _, code in _ERROR_STATUS
}


async def fungiscan_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Translate FungiScanError subclasses into JSON error responses."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break
    user_message = exc.user_message if isinstance(exc, FungiScanError) else None
    body = ErrorResponse(detail=str(exc), user_message=user_message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _to_item(record: HistoryRecord, catalog: SpeciesCatalog) -> HistoryItem:
    predictions: list[PredictionItem] = []
    for prediction in record.ranking:
        species = catalog.lookup(prediction.class_id)
        predictions.append(
            PredictionItem(
                id=prediction.class_id,
                probability=prediction.probability,
                name=species.name,
                is_edible=species.is_edible,
            )
        )
    return HistoryItem(
        id=record.id,
        path=record.image_path,
        predictions=predictions,
        created_at=record.created_at,
    )


@router.post(
    "/identify",
    status_code=status.HTTP_201_CREATED,
    response_model=HistoryItem,
    responses=_ERROR_RESPONSES,
    summary="Identify the mushroom in an image",
)
async def identify(
    body: IdentifyRequest,
    pipeline: Annotated[IdentificationPipeline, Depends(get_pipeline)],
    catalog: Annotated[SpeciesCatalog, Depends(get_catalog)],
) -> HistoryItem:
    """Copy, classify, and store an image; return the new history record."""
    record = await pipeline.identify(body.image_uri)
    return _to_item(record, catalog)


@router.get(
    "/history",
    response_model=list[HistoryItem],
    responses=_ERROR_RESPONSES,
    summary="List stored identifications",
)
async def list_history(
    history: Annotated[HistoryStore, Depends(get_history)],
    catalog: Annotated[SpeciesCatalog, Depends(get_catalog)],
) -> list[HistoryItem]:
    """Return all stored identifications, oldest first."""
    records = await asyncio.to_thread(history.list_all)
    return [_to_item(record, catalog) for record in records]


@router.get(
    "/history/{record_id}",
    response_model=HistoryItem,
    responses=_ERROR_RESPONSES,
    summary="Open one stored identification",
)
async def get_history_item(
    record_id: int,
    history: Annotated[HistoryStore, Depends(get_history)],
    catalog: Annotated[SpeciesCatalog, Depends(get_catalog)],
) -> HistoryItem:
    record = await asyncio.to_thread(history.get_by_id, record_id)
    return _to_item(record, catalog)


@router.delete(
    "/history/{record_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=_ERROR_RESPONSES,
    summary="Delete one stored identification",
)
async def delete_history_item(
    record_id: int,
    history: Annotated[HistoryStore, Depends(get_history)],
) -> Response:
    """Delete the record; its image file stays on disk."""
    await asyncio.to_thread(history.delete, record_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(
    engine: Annotated[InferenceEngine, Depends(get_engine)],
    pool: Annotated[InferencePool, Depends(get_inference_pool)],
    catalog: Annotated[SpeciesCatalog, Depends(get_catalog)],
) -> HealthResponse:
    """Return service health status."""
    return HealthResponse(
        status="ok" if engine.is_loaded else "degraded",
        model=engine.model_name,
        model_loaded=engine.is_loaded,
        species=len(catalog),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )
