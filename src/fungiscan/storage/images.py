"""Pipeline-owned copies of captured or picked images."""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path
from urllib.parse import unquote, urlparse

from fungiscan.errors import StorageError

logger = logging.getLogger(__name__)


def source_path(image_uri: str) -> Path:
    """Resolve a plain path or a ``file://`` URI to a local path."""
    parsed = urlparse(image_uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme and len(parsed.scheme) > 1:
        raise StorageError(f"Unsupported image URI scheme: {parsed.scheme!r}")
    return Path(image_uri)


class ImageStore:
    """Copies source images into a private directory under unique names."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def save_copy(self, image_uri: str) -> Path:
        """Copy ``image_uri`` into owned storage and return the new path.

        Every call creates a new file, so two identifications never share one.

        Raises:
            StorageError: If the source is unreadable or the copy cannot be written.
        """
        source = source_path(image_uri)
        if not source.is_file():
            raise StorageError(f"Source image not found: {source}")

        suffix = source.suffix.lower() or ".jpg"
        target = self._root / f"{uuid.uuid4().hex}{suffix}"
        tmp = target.with_suffix(target.suffix + ".tmp")
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, tmp)
            tmp.replace(target)
        except OSError as exc:
            if tmp.exists():
                tmp.unlink()
            raise StorageError(f"Failed to copy {source} into {self._root}: {exc}") from exc

        logger.debug("Copied %s to %s", source, target)
        return target
