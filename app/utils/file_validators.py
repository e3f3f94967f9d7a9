"""File validation utilities for upload security.

The first two defense stages live here:

- ``check_extension`` rejects by filename: missing extension, blocked
  extension, declared size over the ceiling.
- ``check_content_signature`` rejects by content: native executables are
  always refused, and content that looks like what one of the workspace's
  blocked extensions would produce is refused as a disguised file.

The zip-bomb ratio rule shared by every archive format is also defined here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import BinaryIO, Iterable

from app.adapters.detection.base import AbstractContentDetector
from app.core.errors import RejectionKind, StorageAppError, reject
from app.utils.extensions import extract_extension
from app.utils.mime_categories import (
    ContentCategory,
    categories_equivalent,
    category_for_mime,
    expected_category,
    is_native_executable,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectedContent:
    """Outcome of a successful signature check."""

    mime: str
    category: ContentCategory


def check_extension(
    filename: str | None,
    declared_size: int | None,
    blocked: Iterable[str],
    max_size: int,
) -> str:
    """Validate a filename and declared size against the workspace policy.

    Args:
        filename: Attacker-controlled original filename.
        declared_size: Size reported by the client, if any.
        blocked: Active blocked extensions of the workspace (lower-cased).
        max_size: Upload ceiling in bytes.

    Returns:
        The normalized extension (lower-cased, without the dot).

    Raises:
        UploadRejectedError: ``EXTENSION_BLOCKED`` or ``SIZE_EXCEEDED``.
    """
    extension = extract_extension(filename)
    if not extension:
        logger.warning("extension_gate.missing_extension", extra={"file_name": filename})
        raise reject(
            RejectionKind.EXTENSION_BLOCKED,
            "Files without an extension cannot be uploaded",
            offending_name="",
        )

    if extension in frozenset(blocked):
        logger.warning("extension_gate.blocked", extra={"extension": extension})
        raise reject(
            RejectionKind.EXTENSION_BLOCKED,
            f"Extension '.{extension}' is blocked in this space",
            offending_name=extension,
        )

    if declared_size is not None and declared_size > max_size:
        logger.warning(
            "extension_gate.size_exceeded",
            extra={"declared_size": declared_size, "max_size": max_size},
        )
        raise reject(
            RejectionKind.SIZE_EXCEEDED,
            f"File too large. Maximum size: {max_size} bytes",
            limit=max_size,
            actual_value=declared_size,
        )

    return extension


def read_sample(stream: BinaryIO, size: int) -> bytes:
    """Read up to ``size`` leading bytes and rewind the stream.

    Raises:
        StorageAppError: If the stream cannot be read or rewound.
    """
    try:
        stream.seek(0)
        sample = stream.read(size)
        stream.seek(0)
    except (OSError, ValueError) as exc:
        raise StorageAppError(
            code=RejectionKind.IO_FAILURE.value,
            message="Failed to read upload content",
            details={"context": {"error": str(exc)}},
        ) from exc
    return sample


def check_content_signature(
    stream: BinaryIO,
    declared_extension: str,
    blocked: Iterable[str],
    detector: AbstractContentDetector,
    *,
    sample_size: int = 8192,
    filename: str | None = None,
) -> DetectedContent:
    """Classify the upload by its bytes and apply the executable and disguise rules.

    Args:
        stream: Seekable upload content; rewound before returning.
        declared_extension: Extension accepted by ``check_extension``.
        blocked: Active blocked extensions of the workspace.
        detector: Signature backend.
        sample_size: Bytes read for detection.
        filename: Original filename, used only as a text-refinement hint.

    Returns:
        The detected MIME type and category.

    Raises:
        UploadRejectedError: ``EXECUTABLE_DETECTED`` or ``DISGUISED_EXTENSION``.
        StorageAppError: If the content cannot be read or classified.
    """
    sample = read_sample(stream, sample_size)
    try:
        mime = detector.detect(sample, filename)
    except Exception as exc:
        raise StorageAppError(
            code=RejectionKind.IO_FAILURE.value,
            message="Failed to detect upload content type",
            details={"context": {"error": str(exc)}},
        ) from exc

    detected = category_for_mime(mime)

    if is_native_executable(detected.mime):
        logger.warning(
            "signature_gate.executable_detected",
            extra={"extension": declared_extension, "detected_mime": detected.mime},
        )
        raise reject(
            RejectionKind.EXECUTABLE_DETECTED,
            f"Executable content is not allowed (detected {detected.mime})",
            offending_name=declared_extension,
        )

    # Sorted so the reported extension is stable for a given blocklist.
    for blocked_extension in sorted(frozenset(blocked)):
        expected = expected_category(blocked_extension, detector)
        if expected is None:
            continue
        if categories_equivalent(detected, expected):
            logger.warning(
                "signature_gate.disguised_extension",
                extra={
                    "extension": declared_extension,
                    "inferred_extension": blocked_extension,
                    "detected_mime": detected.mime,
                },
            )
            raise reject(
                RejectionKind.DISGUISED_EXTENSION,
                f"Content declared as '.{declared_extension}' looks like blocked "
                f"'.{blocked_extension}' content ({detected.mime})",
                offending_name=blocked_extension,
            )

    logger.debug(
        "signature_gate.passed",
        extra={"extension": declared_extension, "detected_mime": detected.mime},
    )
    return DetectedContent(mime=detected.mime or mime, category=detected)


def check_compression_ratio(uncompressed: int, compressed: int, max_ratio: float) -> None:
    """Reject archives whose expansion ratio is suspicious.

    The check is skipped when either size is zero, since there is nothing
    to compare. A ratio equal to ``max_ratio`` is accepted.

    Raises:
        UploadRejectedError: ``ZIP_BOMB_SUSPECTED``.
    """
    if compressed <= 0 or uncompressed <= 0:
        logger.debug(
            "zip_safety.ratio_skipped",
            extra={"compressed": compressed, "uncompressed": uncompressed},
        )
        return

    ratio = uncompressed / compressed
    if ratio > max_ratio:
        logger.warning(
            "zip_safety.suspicious_ratio",
            extra={
                "ratio": ratio,
                "max_ratio": max_ratio,
                "compressed": compressed,
                "uncompressed": uncompressed,
            },
        )
        raise reject(
            RejectionKind.ZIP_BOMB_SUSPECTED,
            f"Suspicious compression ratio: {ratio:.1f}x. Maximum allowed: {max_ratio}x",
            limit=max_ratio,
            actual_value=round(ratio, 2),
        )
