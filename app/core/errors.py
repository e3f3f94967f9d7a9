"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Policy outcomes of the upload pipeline (blocked extension, executable
content, archive limits...) are expected results, not failures: they are
raised as ``UploadRejectedError`` carrying a typed ``Rejection``. Genuine
I/O failures are raised as ``StorageAppError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Rejections carry ``kind`` and, where they apply, ``offending_name`` and
    the ``limit`` / ``actual_value`` pair of the rule that tripped. Internal
    failures carry ``context``, which is logged but never returned.
    """

    kind: str
    offending_name: str
    limit: int | float
    actual_value: int | float
    context: NotRequired[dict[str, Any]]


class RejectionKind(str, Enum):
    """Why the pipeline refused an upload."""

    EMPTY_FILE = "empty_file"
    EXTENSION_BLOCKED = "extension_blocked"
    SIZE_EXCEEDED = "size_exceeded"
    EXECUTABLE_DETECTED = "executable_detected"
    DISGUISED_EXTENSION = "disguised_extension"
    ARCHIVE_TOO_DEEP = "archive_too_deep"
    ARCHIVE_TOO_MANY_FILES = "archive_too_many_files"
    ARCHIVE_TOO_LARGE = "archive_too_large"
    ZIP_BOMB_SUSPECTED = "zip_bomb_suspected"
    ARCHIVE_ENCRYPTED = "archive_encrypted"
    ARCHIVE_MALFORMED = "archive_malformed"
    IO_FAILURE = "io_failure"


@dataclass(frozen=True)
class Rejection:
    """Typed, user-facing explanation of a pipeline decision.

    Attributes:
        kind: Machine-readable rejection category.
        detail: Human-readable explanation.
        offending_name: Extension or archive entry that triggered the decision.
        limit: Configured threshold, for limit rejections.
        actual_value: Observed value that crossed ``limit``.
    """

    kind: RejectionKind
    detail: str
    offending_name: str | None = None
    limit: int | float | None = None
    actual_value: int | float | None = None


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class UploadRejectedError(ValidationAppError):
    """Raised when a defense stage rejects an upload."""

    def __init__(self, rejection: Rejection) -> None:
        details: ErrorDetails = {"kind": rejection.kind.value}
        if rejection.offending_name is not None:
            details["offending_name"] = rejection.offending_name
        if rejection.limit is not None:
            details["limit"] = rejection.limit
        if rejection.actual_value is not None:
            details["actual_value"] = rejection.actual_value
        super().__init__(
            code=rejection.kind.value,
            message=rejection.detail,
            details=details,
        )
        self.rejection = rejection

    @property
    def kind(self) -> RejectionKind:
        return self.rejection.kind


def reject(
    kind: RejectionKind,
    detail: str,
    offending_name: str | None = None,
    *,
    limit: int | float | None = None,
    actual_value: int | float | None = None,
) -> UploadRejectedError:
    """Build an ``UploadRejectedError`` for ``raise reject(...)`` call sites."""

    return UploadRejectedError(
        Rejection(
            kind=kind,
            detail=detail,
            offending_name=offending_name,
            limit=limit,
            actual_value=actual_value,
        )
    )


class StorageAppError(AppError):
    """Raised when reading the upload or writing/hardening the stored file fails."""


class ScanCancelledError(AppError):
    """Raised when an archive scan passes its deadline or is cancelled."""
