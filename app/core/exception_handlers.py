"""Global exception handlers for consistent error responses.

Every error leaves the API in the same envelope::

    {"error": {"code": ..., "message": ..., "request_id": ..., "details": ...}}

Status codes:
- UploadRejectedError -> 400 (413 for SIZE_EXCEEDED)
- Other ValidationAppError -> 400
- ScanCancelledError -> 408
- StorageAppError -> 500
- Unexpected Exception -> generic 500 with no internals leaked
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.errors import (
    AppError,
    RejectionKind,
    ScanCancelledError,
    StorageAppError,
    UploadRejectedError,
)
from app.core.logging import get_request_id

logger = logging.getLogger(__name__)


def _status_for(exc: AppError) -> int:
    if isinstance(exc, UploadRejectedError):
        return 413 if exc.kind is RejectionKind.SIZE_EXCEEDED else 400
    if isinstance(exc, ScanCancelledError):
        return 408
    if isinstance(exc, StorageAppError):
        return 500
    return 400


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render domain errors with the status code of their category.

    Policy rejections are logged at warning level; storage failures are
    server faults and logged at error level.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with the error envelope.
    """
    status_code = _status_for(exc)

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_path": request.url.path,
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }

    # Storage details may carry filesystem paths; keep them out of responses.
    if exc.details and not isinstance(exc, StorageAppError):
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors.

    Logs the failure with its traceback and returns a generic message, so
    no stack trace or exception text reaches the client.
    """
    logger.error(
        "unhandled_exception",
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={
            "error_type": type(exc).__name__,
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
