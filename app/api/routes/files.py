from __future__ import annotations

from fastapi import APIRouter, Depends, File, Header, Path, UploadFile, status
from starlette.concurrency import run_in_threadpool

from app.api.dependencies import get_upload_service
from app.schemas.files import ExtensionCheckResponse, StoredFileRecord
from app.services.upload_service import UploadService
from app.utils.extensions import normalize_extension_token

router = APIRouter(tags=["Files"])


@router.post(
    "/spaces/{space_id}/files",
    response_model=StoredFileRecord,
    status_code=status.HTTP_201_CREATED,
)
async def upload_file(
    space_id: int = Path(..., ge=1, description="Target workspace"),
    file: UploadFile = File(..., description="File to store"),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
    service: UploadService = Depends(get_upload_service),
) -> StoredFileRecord:
    """Upload a file into a workspace.

    The file passes the extension gate, the content signature gate, and,
    for zip/tar/gz/tgz/7z uploads, recursive archive inspection before it
    is written. Rejections are returned by the global exception handlers
    with the rejection kind as ``error.code``.

    Returns:
        StoredFileRecord: The accepted file's record.
    """
    try:
        return await run_in_threadpool(
            service.upload_file,
            space_id,
            file.filename,
            file.size,
            file.file,
            actor_id=actor_id,
        )
    finally:
        await file.close()


@router.get(
    "/spaces/{space_id}/extensions/{extension}/blocked",
    response_model=ExtensionCheckResponse,
)
def check_extension_blocked(
    space_id: int = Path(..., ge=1),
    extension: str = Path(..., max_length=64),
    service: UploadService = Depends(get_upload_service),
) -> ExtensionCheckResponse:
    """Tell whether uploads with ``extension`` are currently refused in the space."""

    return ExtensionCheckResponse(
        space_id=space_id,
        extension=normalize_extension_token(extension),
        blocked=service.is_extension_blocked(space_id, extension),
    )
