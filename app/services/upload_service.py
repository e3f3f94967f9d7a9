"""Upload orchestration: defense pipeline, durable write, and record keeping.

The service sequences the defense stages for one upload:

1. Extension gate (filename, declared size, workspace blocklist)
2. Bounded spooling of the stream (actual size re-checked)
3. Content signature gate (executables, disguised extensions)
4. Archive inspection, when the extension names an archive
5. Durable write, permission hardening, record persistence

Nothing is written before every check passes. Once bytes are on disk, any
failure deletes the artifact before the error propagates.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from pathlib import Path
from typing import BinaryIO

from app.adapters.blocklist.base import AbstractBlockSetProvider
from app.adapters.detection.base import AbstractContentDetector
from app.adapters.records.base import AbstractFileRecordSink
from app.adapters.storage.base import AbstractFileStorage
from app.core.config import UploadLimits
from app.core.errors import RejectionKind, StorageAppError, UploadRejectedError, reject
from app.core.file_validation import spool_upload_stream
from app.core.logging import bind_space_id
from app.schemas.files import StoredFileRecord
from app.utils.archive_inspector import ArchiveInspector, ScanContext
from app.utils.extensions import is_archive_extension, normalize_extension_token
from app.utils.file_validators import check_content_signature, check_extension
from app.utils.permissions import harden_permissions

logger = logging.getLogger(__name__)


def _new_stored_name(extension: str) -> str:
    return f"{uuid.uuid4().hex}.{extension}"


class UploadService:
    """Accept or reject uploads into a workspace."""

    def __init__(
        self,
        *,
        blocklist: AbstractBlockSetProvider,
        detector: AbstractContentDetector,
        storage: AbstractFileStorage,
        sink: AbstractFileRecordSink,
        limits: UploadLimits | None = None,
    ) -> None:
        self._blocklist = blocklist
        self._detector = detector
        self._storage = storage
        self._sink = sink
        self._limits = limits or UploadLimits()
        self._inspector = ArchiveInspector(detector, self._limits)

    @property
    def limits(self) -> UploadLimits:
        return self._limits

    def upload_file(
        self,
        space_id: int,
        filename: str | None,
        declared_size: int | None,
        stream: BinaryIO,
        *,
        actor_id: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> StoredFileRecord:
        """Run the defense pipeline and store the upload if it passes.

        Args:
            space_id: Target workspace.
            filename: Client-supplied filename (untrusted).
            declared_size: Client-supplied size, if known (untrusted).
            stream: Upload content.
            actor_id: Caller identity recorded as ``created_by``.
            cancel_event: Optional flag that aborts a running archive scan.

        Returns:
            The persisted record.

        Raises:
            UploadRejectedError: When a defense stage refuses the upload.
            ScanCancelledError: When the archive scan times out or is cancelled.
            StorageAppError: When reading, writing, or hardening fails.
        """
        with bind_space_id(space_id):
            started = time.perf_counter()
            try:
                record = self._run_pipeline(
                    space_id, filename, declared_size, stream, actor_id, cancel_event
                )
            except UploadRejectedError as exc:
                logger.warning(
                    "upload.rejected",
                    extra={
                        "file_name": filename,
                        "kind": exc.kind.value,
                        "offending_name": exc.rejection.offending_name,
                    },
                )
                raise

            logger.info(
                "upload.accepted",
                extra={
                    "file_id": record.file_id,
                    "extension": record.extension,
                    "byte_size": record.byte_size,
                    "mime_type": record.mime_type,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            return record

    def is_extension_blocked(self, space_id: int, extension: str | None) -> bool:
        """Whether an upload with ``extension`` would be refused by the extension gate."""

        token = normalize_extension_token(extension)
        if not token:
            return True
        return token in self._blocklist.get_blocked_extensions(space_id)

    def _run_pipeline(
        self,
        space_id: int,
        filename: str | None,
        declared_size: int | None,
        stream: BinaryIO,
        actor_id: str | None,
        cancel_event: threading.Event | None,
    ) -> StoredFileRecord:
        if filename is None or not filename.strip():
            raise reject(RejectionKind.EMPTY_FILE, "A filename is required")
        if declared_size == 0:
            raise reject(RejectionKind.EMPTY_FILE, "The uploaded file is empty")

        limits = self._limits
        blocked = self._blocklist.get_blocked_extensions(space_id)
        extension = check_extension(filename, declared_size, blocked, limits.max_file_size)

        spool, size = spool_upload_stream(
            stream,
            max_bytes=limits.max_file_size,
            max_memory=limits.spool_max_memory,
        )
        with spool:
            if size == 0:
                raise reject(RejectionKind.EMPTY_FILE, "The uploaded file is empty")

            detected = check_content_signature(
                spool,
                extension,
                blocked,
                self._detector,
                sample_size=limits.signature_sample_size,
                filename=filename,
            )

            if is_archive_extension(extension):
                context = ScanContext(
                    space_id=space_id,
                    blocked=blocked,
                    deadline=(
                        time.monotonic() + limits.scan_timeout_seconds
                        if limits.scan_timeout_seconds
                        else None
                    ),
                    cancel_event=cancel_event,
                )
                self._inspector.inspect(spool, size, context, archive_name=filename)

            stored_name = _new_stored_name(extension)
            path = self._storage.save(space_id, stored_name, spool)

        try:
            harden_permissions(path)
            record = StoredFileRecord(
                space_id=space_id,
                original_name=filename.strip(),
                stored_name=stored_name,
                extension=extension,
                byte_size=size,
                mime_type=detected.mime,
                storage_path=str(path),
                created_by=actor_id,
            )
            return self._sink.persist(record)
        except Exception:
            self._discard(path)
            raise

    def _discard(self, path: Path) -> None:
        try:
            self._storage.delete(path)
        except StorageAppError:
            logger.exception("upload.cleanup_failed", extra={"storage_path": str(path)})
            raise
