"""Identification pipeline: one image in, one history record out.

Steps run strictly in order, each off the event loop:

    copy -> prepare -> infer -> rank -> append

Nothing is retried and errors propagate unchanged. A failure before the last
step never writes a record; the owned image copy is kept on disk.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import TYPE_CHECKING

from fungiscan.errors import FungiScanError
from fungiscan.ranking import rank, top_prediction

if TYPE_CHECKING:
    from pathlib import Path

    from fungiscan.ml.engine import InferenceEngine
    from fungiscan.ml.inference import InferencePool
    from fungiscan.ml.preprocessing import ImagePreprocessor
    from fungiscan.ranking import RankedResult
    from fungiscan.storage.history import HistoryRecord, HistoryStore
    from fungiscan.storage.images import ImageStore

logger = logging.getLogger(__name__)


class IdentificationPipeline:
    """Orchestrates one identification end to end.

    All collaborators are injected. The pipeline holds no per-call state,
    so concurrent ``identify`` calls are independent; access to the shared
    engine is serialized by the inference pool.
    """

    def __init__(
        self,
        *,
        image_store: ImageStore,
        preprocessor: ImagePreprocessor,
        engine: InferenceEngine,
        pool: InferencePool,
        history: HistoryStore,
        top_k: int = 3,
    ) -> None:
        self._image_store = image_store
        self._preprocessor = preprocessor
        self._engine = engine
        self._pool = pool
        self._history = history
        self._top_k = top_k

    async def identify(self, image_uri: str) -> HistoryRecord:
        """Identify the mushroom in ``image_uri`` and store the result.

        Raises:
            StorageError: The source could not be copied into owned storage.
            PreprocessError: The copy is not a usable image.
            InferenceError: The engine is unavailable or failed.
            PersistError: The record could not be written.
        """
        try:
            stored_path = await asyncio.to_thread(self._image_store.save_copy, image_uri)
            tensor = await asyncio.to_thread(self._preprocessor.prepare, stored_path)
            scores = await self._pool.run(self._engine.infer, tensor)
            ranking = rank(scores, self._top_k, num_classes=self._engine.num_classes)
            record = await self._persist(image_uri, stored_path, ranking)
        except FungiScanError as exc:
            logger.warning("Identification of %s failed: %s: %s", image_uri, type(exc).__name__, exc)
            raise

        best = top_prediction(record.ranking)
        logger.info(
            "Stored identification %d (top=%s, %s%%)",
            record.id,
            best.class_id if best else None,
            best.probability if best else 0,
        )
        return record

    async def _persist(self, image_uri: str, stored_path: Path, ranking: RankedResult) -> HistoryRecord:
        # Once the write starts it finishes, even if the caller goes away.
        write = asyncio.ensure_future(asyncio.to_thread(self._history.append, stored_path, ranking))
        try:
            return await asyncio.shield(write)
        except asyncio.CancelledError:
            write.add_done_callback(functools.partial(_report_detached_write, image_uri))
            raise


def _report_detached_write(image_uri: str, write: asyncio.Future[HistoryRecord]) -> None:
    """Collect the outcome of a write whose caller was cancelled."""
    if write.cancelled():
        return
    exc = write.exception()
    if exc is not None:
        logger.warning("Identification of %s failed after cancellation: %s: %s", image_uri, type(exc).__name__, exc)
    else:
        logger.info("Stored identification %d after its caller was cancelled", write.result().id)
