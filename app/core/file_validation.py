"""Bounded spooling of upload streams."""
from __future__ import annotations

import logging
import tempfile
from typing import BinaryIO

from app.core.errors import RejectionKind, StorageAppError, reject

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def spool_upload_stream(
    stream: BinaryIO,
    *,
    max_bytes: int,
    max_memory: int,
) -> tuple[tempfile.SpooledTemporaryFile, int]:
    """Copy an upload into a seekable temporary file, enforcing the size limit.

    The declared size of an upload is client-controlled, so the limit is
    enforced again while the bytes are consumed. Content past
    ``max_memory`` bytes is kept on disk instead of in memory.

    Args:
        stream: Readable upload content.
        max_bytes: Upload ceiling in bytes.
        max_memory: Threshold above which the spool rolls over to disk.

    Returns:
        The rewound spool (caller closes it) and the number of bytes copied.

    Raises:
        UploadRejectedError: ``SIZE_EXCEEDED`` if the stream is larger than ``max_bytes``.
        StorageAppError: If reading the stream or writing the spool fails.
    """
    spool = tempfile.SpooledTemporaryFile(max_size=max_memory)
    size = 0
    try:
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break

            size += len(chunk)
            if size > max_bytes:
                logger.warning(
                    "file_validation.rejected_by_chunked_read",
                    extra={"size": size, "max_bytes": max_bytes},
                )
                raise reject(
                    RejectionKind.SIZE_EXCEEDED,
                    f"File too large. Maximum size: {max_bytes} bytes",
                    limit=max_bytes,
                )
            spool.write(chunk)
        spool.seek(0)
    except OSError as exc:
        spool.close()
        raise StorageAppError(
            code=RejectionKind.IO_FAILURE.value,
            message="Failed to read the uploaded content",
            details={"context": {"error": str(exc)}},
        ) from exc
    except BaseException:
        spool.close()
        raise

    return spool, size
