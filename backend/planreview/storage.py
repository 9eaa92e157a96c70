from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath

from .config import settings
from .errors import UploadError

log = logging.getLogger(__name__)


class BlobStore:
    """Write-once file storage. Keys are relative POSIX paths under the storage root."""

    def __init__(self, root: Path | None = None, url_prefix: str = "/uploads") -> None:
        self._root = Path(root or settings.storage_path)
        self._url_prefix = url_prefix.rstrip("/")

    @property
    def root(self) -> Path:
        return self._root

    def _target(self, key: str) -> Path:
        relative = PurePosixPath(key)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise UploadError(f"Invalid storage key: {key!r}")
        return self._root.joinpath(*relative.parts)

    def put(self, key: str, payload: bytes) -> str:
        target = self._target(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("xb") as handle:
                handle.write(payload)
        except FileExistsError as exc:
            raise UploadError(f"Object already exists: {key}") from exc
        except OSError as exc:
            log.error("upload of %s failed: %s", key, exc)
            self.delete(key)
            raise UploadError(f"Could not store {key}: {exc}") from exc
        return f"{self._url_prefix}/{key}"

    def delete(self, key: str) -> None:
        try:
            self._target(key).unlink(missing_ok=True)
        except OSError:
            log.exception("could not remove %s", key)
