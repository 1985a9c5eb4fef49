"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fungiscan.config import Settings
    from fungiscan.ml.engine import InferenceEngine

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fungiscan.api.routes import fungiscan_error_handler, router
from fungiscan.catalog import SpeciesCatalog
from fungiscan.config import get_settings
from fungiscan.errors import FungiScanError
from fungiscan.ml.engine import OnnxInferenceEngine
from fungiscan.ml.inference import InferencePool
from fungiscan.ml.model_manager import OnnxModelManager
from fungiscan.ml.preprocessing import ImagePreprocessor, TensorSpec
from fungiscan.pipeline import IdentificationPipeline
from fungiscan.storage.history import HistoryStore
from fungiscan.storage.images import ImageStore

logger = logging.getLogger(__name__)


def init_app_state(app: FastAPI, settings: Settings, *, engine: InferenceEngine | None = None) -> None:
    """Build the services and attach them to ``app.state``.

    ``engine`` replaces the ONNX engine, which tests use to inject a fake.
    """
    model_manager: OnnxModelManager | None = None
    if engine is None:
        model_manager = OnnxModelManager(settings)
        engine = OnnxInferenceEngine(model_manager, TensorSpec.from_settings(settings), settings.num_classes)

    history = HistoryStore.from_url(settings.resolved_database_url, data_dir=settings.data_dir)
    history.init_schema()

    pool = InferencePool.from_settings(settings)
    preprocessor = ImagePreprocessor(
        engine.input_spec,
        max_image_pixels=settings.max_image_pixels,
        max_file_size=settings.max_file_size,
    )

    app.state.settings = settings
    app.state.model_manager = model_manager
    app.state.engine = engine
    app.state.inference_pool = pool
    app.state.history = history
    app.state.catalog = SpeciesCatalog.load(settings.resolved_catalog_path)
    app.state.pipeline = IdentificationPipeline(
        image_store=ImageStore(settings.resolved_images_dir),
        preprocessor=preprocessor,
        engine=engine,
        pool=pool,
        history=history,
        top_k=settings.top_k,
    )


def shutdown_app_state(app: FastAPI) -> None:
    """Release the inference threads, the model session and database connections."""
    app.state.inference_pool.shutdown()
    if app.state.model_manager is not None:
        app.state.model_manager.shutdown()
    app.state.history.dispose()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FungiScan (device=%s, input=%dx%dx%d, classes=%d, top_k=%d)",
        settings.device,
        settings.input_width,
        settings.input_height,
        settings.input_channels,
        settings.num_classes,
        settings.top_k,
    )

    init_app_state(app, settings)

    # A missing model is reported per identification; history still works.
    if app.state.model_manager is not None:
        app.state.model_manager.warm_up()

    logger.info("FungiScan ready")
    yield

    logger.info("Shutting down FungiScan")
    shutdown_app_state(app)
    logger.info("FungiScan shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FungiScan",
        description="On-device mushroom identification with a local history",
        version="0.1.0",
        lifespan=lifespan,
    )

    # The screens talk to a loopback server only.
    application.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )

    application.add_exception_handler(FungiScanError, fungiscan_error_handler)
    application.include_router(router)
    return application


app = create_app()
