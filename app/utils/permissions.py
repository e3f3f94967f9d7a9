"""Permission hardening for stored artifacts."""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path

from app.core.errors import RejectionKind, StorageAppError

logger = logging.getLogger(__name__)

# rw-r--r--: nobody may execute a stored upload.
STORED_FILE_MODE = stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP | stat.S_IROTH


def harden_permissions(path: str | os.PathLike[str]) -> None:
    """Set ``0o644`` on a stored file. Safe to call repeatedly.

    Raises:
        StorageAppError: If the mode cannot be changed.
    """
    target = Path(path)
    try:
        os.chmod(target, STORED_FILE_MODE)
    except OSError as exc:
        logger.error(
            "permissions.harden_failed",
            extra={"storage_path": str(target), "error": str(exc)},
        )
        raise StorageAppError(
            code=RejectionKind.IO_FAILURE.value,
            message="Failed to set permissions on the stored file",
            details={"context": {"error": str(exc)}},
        ) from exc

    logger.debug("permissions.hardened", extra={"storage_path": str(target), "mode": oct(STORED_FILE_MODE)})
