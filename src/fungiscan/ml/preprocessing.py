"""Image preprocessing: decode an image file into the model's input tensor.

Steps: size check, decode, EXIF orientation, color conversion, bilinear
resize to the model's input size, scaling to the model's pixel range, and
conversion to a batched float32 array in the model's layout.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from fungiscan.errors import PreprocessError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from fungiscan.config import Settings

logger = logging.getLogger(__name__)

RESAMPLE_FILTER = Image.Resampling.BILINEAR


@dataclass(frozen=True)
class TensorSpec:
    """Input contract of an inference engine."""

    width: int
    height: int
    channels: Literal[1, 3] = 3
    layout: Literal["nhwc", "nchw"] = "nhwc"
    pixel_scale: Literal["unit", "byte"] = "unit"

    @property
    def shape(self) -> tuple[int, int, int, int]:
        """Batched tensor shape expected by the engine."""
        if self.layout == "nchw":
            return (1, self.channels, self.height, self.width)
        return (1, self.height, self.width, self.channels)

    @classmethod
    def from_settings(cls, settings: Settings) -> TensorSpec:
        return cls(
            width=settings.input_width,
            height=settings.input_height,
            channels=settings.input_channels,
            layout=settings.input_layout,
            pixel_scale=settings.pixel_scale,
        )


class ImagePreprocessor:
    """Turns image files into prepared tensors for a fixed TensorSpec."""

    def __init__(self, spec: TensorSpec, *, max_image_pixels: int, max_file_size: int) -> None:
        self._spec = spec
        self._max_image_pixels = max_image_pixels
        self._max_file_size = max_file_size

    def prepare(self, image_path: str | Path) -> NDArray[np.float32]:
        """Decode ``image_path`` and return a tensor matching the spec.

        Raises:
            PreprocessError: If the file is unreadable, too large, or not an image.
        """
        path = Path(image_path)
        image = self.decode_image(self._read_bytes(path), source=str(path))
        logger.debug("Decoded %s (%dx%d, mode=%s)", path, image.width, image.height, image.mode)
        return self.to_tensor(image)

    def decode_image(self, image_bytes: bytes, *, source: str = "<bytes>") -> Image.Image:
        """Decode raw bytes into an upright image in the tensor's color mode."""
        try:
            with Image.open(io.BytesIO(image_bytes)) as opened:
                width, height = opened.size
                if width * height > self._max_image_pixels:
                    raise PreprocessError(
                        f"{source}: {width}x{height} exceeds the limit of {self._max_image_pixels} pixels"
                    )
                upright = ImageOps.exif_transpose(opened)
                mode = "RGB" if self._spec.channels == 3 else "L"
                return upright.convert(mode)
        except UnidentifiedImageError as exc:
            raise PreprocessError(f"{source}: not a decodable image") from exc
        except Image.DecompressionBombError as exc:
            raise PreprocessError(f"{source}: image is too large to decode") from exc
        except (OSError, SyntaxError, ValueError) as exc:
            raise PreprocessError(f"{source}: failed to decode image: {exc}") from exc

    def to_tensor(self, image: Image.Image) -> NDArray[np.float32]:
        """Resize, scale and lay out a decoded image as a batched tensor."""
        spec = self._spec
        resized = image.resize((spec.width, spec.height), resample=RESAMPLE_FILTER)
        array = np.asarray(resized, dtype=np.float32)
        if array.ndim == 2:
            array = array[:, :, np.newaxis]
        if spec.pixel_scale == "unit":
            array = array / np.float32(255.0)
        if spec.layout == "nchw":
            array = np.transpose(array, (2, 0, 1))
        return np.ascontiguousarray(array[np.newaxis, ...], dtype=np.float32)

    def _read_bytes(self, path: Path) -> bytes:
        try:
            size = path.stat().st_size
            if size > self._max_file_size:
                raise PreprocessError(f"{path}: {size} bytes exceeds the limit of {self._max_file_size}")
            return path.read_bytes()
        except OSError as exc:
            raise PreprocessError(f"{path}: cannot read image file: {exc}") from exc
