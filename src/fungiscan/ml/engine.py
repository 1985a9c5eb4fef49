"""Inference engine contract and the ONNX Runtime implementation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import numpy as np

from fungiscan.errors import InferenceError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from fungiscan.ml.model_manager import ModelManager
    from fungiscan.ml.preprocessing import TensorSpec

logger = logging.getLogger(__name__)


class InferenceEngine(Protocol):
    """Protocol for species classification engines."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    @property
    def input_spec(self) -> TensorSpec:
        """Return the input tensor contract the engine was configured with."""
        ...

    @property
    def num_classes(self) -> int:
        """Return the length of the score vector."""
        ...

    @property
    def is_loaded(self) -> bool:
        """Return True once the model weights are in memory."""
        ...

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Score a prepared tensor.

        Args:
            tensor: Batched tensor of shape ``input_spec.shape``.

        Returns:
            1-D float32 array of ``num_classes`` class scores.

        Raises:
            InferenceError: On shape mismatch or runtime failure.
        """
        ...


class OnnxInferenceEngine:
    """Runs the classifier through an ONNX Runtime session.

    The session is not created here; the first ``infer`` (or ``load``) asks
    the model manager for it, so a broken model surfaces as
    EngineUnavailableError to the caller instead of failing at import time.
    """

    def __init__(self, model_manager: ModelManager, spec: TensorSpec, num_classes: int) -> None:
        self._model_manager = model_manager
        self._spec = spec
        self._num_classes = num_classes

    @property
    def model_name(self) -> str:
        return self._model_manager.model_name

    @property
    def input_spec(self) -> TensorSpec:
        return self._spec

    @property
    def num_classes(self) -> int:
        return self._num_classes

    @property
    def is_loaded(self) -> bool:
        return self._model_manager.is_loaded

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        expected = self._spec.shape
        if tuple(tensor.shape) != expected:
            raise InferenceError(f"Expected input shape {expected}, got {tuple(tensor.shape)}")

        session = self._model_manager.get_session()
        input_name = session.get_inputs()[0].name
        try:
            outputs = session.run(None, {input_name: tensor.astype(np.float32, copy=False)})
        except Exception as exc:
            raise InferenceError(f"Model {self.model_name} failed: {exc}") from exc

        scores = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if scores.shape[0] != self._num_classes:
            raise InferenceError(f"Model returned {scores.shape[0]} scores, expected {self._num_classes}")
        logger.debug("Inference produced %d scores", scores.shape[0])
        return scores
