"""Shared fixtures: a scripted inference engine, stores, and sample images."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

from fungiscan.ml.inference import InferencePool
from fungiscan.ml.preprocessing import ImagePreprocessor, TensorSpec
from fungiscan.pipeline import IdentificationPipeline
from fungiscan.storage.history import HistoryStore
from fungiscan.storage.images import ImageStore

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from pathlib import Path

    from numpy.typing import NDArray

SMALL_SPEC = TensorSpec(width=8, height=8)
DEFAULT_SCORES = (0.01, 0.92, 0.07, 0.0, 0.0)


class FakeEngine:
    """Scripted engine: returns fixed scores or raises a configured error."""

    def __init__(
        self,
        scores: Sequence[float] = DEFAULT_SCORES,
        *,
        spec: TensorSpec = SMALL_SPEC,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self._scores = np.asarray(scores, dtype=np.float32)
        self._spec = spec
        self._error = error
        self._delay = delay
        self._lock = threading.Lock()
        self._running = 0
        self.calls = 0
        self.max_parallel = 0

    @property
    def model_name(self) -> str:
        return "fake"

    @property
    def input_spec(self) -> TensorSpec:
        return self._spec

    @property
    def num_classes(self) -> int:
        return len(DEFAULT_SCORES)

    @property
    def is_loaded(self) -> bool:
        return self._error is None

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        with self._lock:
            self.calls += 1
            self._running += 1
            self.max_parallel = max(self.max_parallel, self._running)
        try:
            assert tensor.shape == self._spec.shape
            if self._delay:
                time.sleep(self._delay)
            if self._error is not None:
                raise self._error
            return self._scores.copy()
        finally:
            with self._lock:
                self._running -= 1


def write_image(path: Path, size: tuple[int, int] = (32, 24), color: tuple[int, int, int] = (200, 120, 40)) -> Path:
    """Write a solid-color image; the format follows the file suffix."""
    Image.new("RGB", size, color).save(path)
    return path


@pytest.fixture()
def history() -> Iterator[HistoryStore]:
    store = HistoryStore.from_url("sqlite://")
    store.init_schema()
    yield store
    store.dispose()


@pytest.fixture()
def sample_image(tmp_path: Path) -> Path:
    source_dir = tmp_path / "camera"
    source_dir.mkdir()
    return write_image(source_dir / "photo.jpg")


@pytest.fixture()
def pool() -> Iterator[InferencePool]:
    inference_pool = InferencePool(max_concurrent=1, queue_timeout=5.0)
    yield inference_pool
    inference_pool.shutdown()


def make_pipeline(tmp_path: Path, engine: FakeEngine, pool: InferencePool, history: HistoryStore) -> IdentificationPipeline:
    return IdentificationPipeline(
        image_store=ImageStore(tmp_path / "owned"),
        preprocessor=ImagePreprocessor(engine.input_spec, max_image_pixels=10_000_000, max_file_size=10_000_000),
        engine=engine,
        pool=pool,
        history=history,
        top_k=3,
    )
