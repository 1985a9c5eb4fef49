"""Model manager: locate, download, and load the species classifier.

The model file is taken from ``FUNGISCAN_MODEL_PATH`` when set, otherwise it
is downloaded once from the Hugging Face Hub into ``models_dir``. The ONNX
InferenceSession is created on first use and shared afterwards.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import GraphOptimizationLevel, InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from fungiscan.errors import EngineUnavailableError

if TYPE_CHECKING:
    from fungiscan.config import Settings

logger = logging.getLogger(__name__)

Provider = str | tuple[str, dict[str, object]]

# Accelerated provider per device; CPU is always appended as the fallback.
_ACCELERATORS: dict[str, Provider] = {
    "cuda": ("CUDAExecutionProvider", {"device_id": 0}),
    "openvino": ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
}


def execution_providers(device: str) -> list[Provider]:
    accelerator = _ACCELERATORS.get(device)
    if accelerator is None:
        return ["CPUExecutionProvider"]
    return [accelerator, "CPUExecutionProvider"]


def session_options(settings: Settings) -> SessionOptions:
    """Thread counts from settings, sequential execution, memory reuse on."""
    opts = SessionOptions()
    opts.intra_op_num_threads = settings.intra_op_threads
    opts.inter_op_num_threads = settings.inter_op_threads
    opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    opts.enable_mem_pattern = True
    opts.enable_mem_reuse = True
    if settings.device == "openvino":
        # OpenVINO optimizes the graph itself
        opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return opts


class ModelManager(Protocol):
    """What the engine needs from whoever owns the model file and session."""

    @property
    def model_name(self) -> str: ...

    @property
    def is_loaded(self) -> bool: ...

    def ensure_downloaded(self) -> Path:
        """Make the model file available locally and return its path."""
        ...

    def get_session(self) -> InferenceSession: ...

    def shutdown(self) -> None: ...


class OnnxModelManager:
    """Resolves the classifier file and owns its single InferenceSession."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._providers = execution_providers(settings.device)
        self._options = session_options(settings)

        self._lock = threading.Lock()
        self._session: InferenceSession | None = None
        self._model_path: Path | None = None

    @property
    def model_name(self) -> str:
        source = self._settings.model_path or self._settings.model_filename
        return Path(source).stem

    @property
    def is_loaded(self) -> bool:
        with self._lock:
            return self._session is not None

    def ensure_downloaded(self) -> Path:
        """Return the local model file, fetching it from the Hub if needed.

        Raises:
            EngineUnavailableError: If the file is missing or the download fails.
        """
        if self._settings.model_path is not None:
            path = Path(self._settings.model_path)
            if not path.is_file():
                raise EngineUnavailableError(f"Model file not found: {path}")
            return path

        if self._model_path is not None and self._model_path.exists():
            return self._model_path

        repo_id, filename = self._settings.model_repo_id, self._settings.model_filename
        self._models_dir.mkdir(parents=True, exist_ok=True)
        try:
            fetched = hf_hub_download(repo_id=repo_id, filename=filename, local_dir=str(self._models_dir))
        except Exception as exc:
            raise EngineUnavailableError(f"Failed to download {repo_id}/{filename}: {exc}") from exc

        self._model_path = Path(fetched)
        logger.info("Downloaded %s to %s", self.model_name, self._model_path)
        return self._model_path

    def get_session(self) -> InferenceSession:
        """Return the shared InferenceSession, loading it on first call.

        Raises:
            EngineUnavailableError: If the model cannot be located or loaded.
        """
        with self._lock:
            if self._session is not None:
                return self._session

        model_path = self.ensure_downloaded()
        try:
            loaded = InferenceSession(str(model_path), sess_options=self._options, providers=self._providers)
        except Exception as exc:
            raise EngineUnavailableError(f"Failed to load model {model_path}: {exc}") from exc

        with self._lock:
            # a concurrent caller may have won the race
            if self._session is None:
                self._session = loaded
                logger.info("Loaded session for %s", self.model_name)
            return self._session

    def shutdown(self) -> None:
        with self._lock:
            self._session = None
        logger.info("Model session cleared")

    def warm_up(self) -> bool:
        """Load the session now; log and return False if the model is unusable."""
        try:
            self.get_session()
        except EngineUnavailableError as exc:
            logger.error("Model %s failed to load: %s", self.model_name, exc)
            return False
        return True
