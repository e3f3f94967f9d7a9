"""Pydantic schemas for stored files and extension checks."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredFileRecord(BaseModel):
    """An upload that passed every defense stage and was written to storage."""

    file_id: int | None = Field(
        default=None,
        description="Identifier assigned by the record sink on persist.",
    )
    space_id: int = Field(..., description="Workspace the file belongs to.")
    original_name: str = Field(
        ..., description="Filename as supplied by the client (never used on disk)."
    )
    stored_name: str = Field(
        ..., description="Random unique token plus the original extension."
    )
    extension: str = Field(
        ..., description="Normalized extension, lower-cased, without the dot."
    )
    byte_size: int = Field(..., ge=1, description="Number of bytes stored.")
    mime_type: str = Field(
        ..., description="Content type detected from the file's bytes."
    )
    storage_path: str = Field(..., description="Location of the stored artifact.")
    created_by: str | None = Field(
        default=None, description="Actor that uploaded the file, when known."
    )
    created_at: datetime = Field(
        default_factory=_utcnow, description="UTC timestamp of acceptance."
    )


class ExtensionCheckResponse(BaseModel):
    """Result of the blocked-extension pre-check."""

    space_id: int
    extension: str = Field(..., description="Normalized extension that was checked.")
    blocked: bool = Field(
        ..., description="True when an upload with this extension would be refused."
    )
