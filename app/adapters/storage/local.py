"""Local-disk storage laid out as ``<root>/<space_id>/<stored_name>``."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import BinaryIO

from app.adapters.storage.base import AbstractFileStorage
from app.core.errors import RejectionKind, StorageAppError

logger = logging.getLogger(__name__)


class LocalFileStorage(AbstractFileStorage):
    def __init__(self, root: str | os.PathLike[str]) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def save(self, space_id: int, stored_name: str, stream: BinaryIO) -> Path:
        if Path(stored_name).name != stored_name:
            raise ValueError("stored_name must be a bare file name")

        target = self._root / str(space_id) / stored_name
        created = False
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            stream.seek(0)
            # "x": stored names are unique, never overwrite.
            with target.open("xb") as out:
                created = True
                shutil.copyfileobj(stream, out)
                out.flush()
                os.fsync(out.fileno())
        except OSError as exc:
            if created:
                self._discard_partial(target)
            raise StorageAppError(
                code=RejectionKind.IO_FAILURE.value,
                message="Failed to write the uploaded file",
                details={"context": {"error": str(exc)}},
            ) from exc

        logger.info("storage.saved", extra={"storage_path": str(target)})
        return target

    def delete(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageAppError(
                code=RejectionKind.IO_FAILURE.value,
                message="Failed to remove a stored file",
                details={"context": {"error": str(exc)}},
            ) from exc
        logger.info("storage.deleted", extra={"storage_path": str(path)})

    def _discard_partial(self, target: Path) -> None:
        try:
            target.unlink(missing_ok=True)
        except OSError:
            logger.exception("storage.partial_cleanup_failed", extra={"storage_path": str(target)})
