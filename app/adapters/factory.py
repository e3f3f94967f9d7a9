"""Factory functions wiring adapters into the upload service."""

from __future__ import annotations

from app.adapters.blocklist.in_memory import InMemoryBlockedExtensionRepository
from app.adapters.detection.filetype_detector import FiletypeContentDetector
from app.adapters.records.in_memory import InMemoryFileRecordSink
from app.adapters.storage.local import LocalFileStorage
from app.core.config import Settings, UploadLimits, settings
from app.services.upload_service import UploadService


def create_blocklist_repository() -> InMemoryBlockedExtensionRepository:
    return InMemoryBlockedExtensionRepository()


def create_upload_service(
    *,
    blocklist: InMemoryBlockedExtensionRepository | None = None,
    app_settings: Settings | None = None,
) -> UploadService:
    """Build an ``UploadService`` from configuration.

    Reads limits and the storage root from ``app.core.config.settings``
    unless ``app_settings`` is given.

    Args:
        blocklist: Repository to share with other components; a new one is
            created when omitted.
        app_settings: Settings override, mainly for tests.

    Returns:
        UploadService: Service backed by local-disk storage, the ``filetype``
        detector, and in-memory blocklist and record stores.
    """
    cfg = app_settings or settings
    return UploadService(
        blocklist=blocklist or create_blocklist_repository(),
        detector=FiletypeContentDetector(),
        storage=LocalFileStorage(cfg.upload.upload_directory),
        sink=InMemoryFileRecordSink(),
        limits=UploadLimits.from_settings(cfg.upload),
    )
