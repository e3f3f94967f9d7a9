"""Process-wide service instances handed to routes through ``Depends``.

The upload service and the blocklist admin routes share one repository,
so a rule changed over HTTP applies to the next upload.
"""

from __future__ import annotations

from app.adapters.blocklist.in_memory import InMemoryBlockedExtensionRepository
from app.adapters.factory import create_blocklist_repository, create_upload_service
from app.services.upload_service import UploadService

_blocklist = create_blocklist_repository()
_upload_service = create_upload_service(blocklist=_blocklist)


def get_blocklist_repository() -> InMemoryBlockedExtensionRepository:
    return _blocklist


def get_upload_service() -> UploadService:
    """Dependency returning the process-wide upload service (overridable in tests)."""

    return _upload_service
