"""Environment-based configuration for FungiScan."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from FUNGISCAN_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FUNGISCAN_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Authentication (None = disabled)
    api_key: str | None = None

    # Storage
    data_dir: Path = Path("data")
    images_dir: Path | None = None
    database_url: str | None = None
    catalog_path: Path | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model source: a local file wins over the Hub download
    model_path: Path | None = None
    model_repo_id: str = "fungiscan/fungi-classifier"
    model_filename: str = "fungi_mobilenet.onnx"
    models_dir: Path = Path("models")

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Model input/output contract
    input_width: int = Field(default=224, ge=1)
    input_height: int = Field(default=224, ge=1)
    input_channels: int = 3
    input_layout: Literal["nhwc", "nchw"] = "nhwc"
    pixel_scale: Literal["unit", "byte"] = "unit"
    num_classes: int = Field(default=20, ge=1)

    # Ranking
    top_k: int = Field(default=3, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=1, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)

    @field_validator("input_channels")
    @classmethod
    def _check_channels(cls, value: int) -> int:
        if value not in (1, 3):
            raise ValueError("input_channels must be 1 (grayscale) or 3 (RGB)")
        return value

    @property
    def resolved_images_dir(self) -> Path:
        """Directory holding the pipeline-owned image copies."""
        return self.images_dir if self.images_dir is not None else self.data_dir / "images"

    @property
    def resolved_database_url(self) -> str:
        """SQLAlchemy URL of the history database."""
        if self.database_url is not None:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'fungi.db'}"

    @property
    def resolved_catalog_path(self) -> Path:
        """JSON file with the species catalog."""
        return self.catalog_path if self.catalog_path is not None else self.data_dir / "species.json"


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
