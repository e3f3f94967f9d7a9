"""Pydantic schemas for the blocked-extension admin routes."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.adapters.blocklist.in_memory import RuleOrigin


class BlockedExtensionRuleResponse(BaseModel):
    """One fixed or custom rule of a workspace blocklist."""

    model_config = ConfigDict(from_attributes=True)

    space_id: int
    extension: str = Field(..., description="Lower-cased extension without the dot.")
    origin: RuleOrigin
    active: bool = Field(..., description="True when uploads with this extension are refused.")
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime
    updated_at: datetime


class FixedExtensionToggleRequest(BaseModel):
    active: bool = Field(..., description="Check (true) or uncheck (false) the fixed extension.")


class CustomExtensionRequest(BaseModel):
    extension: str = Field(
        ...,
        max_length=64,
        description="Extension to block; surrounding whitespace and a leading dot are ignored.",
    )
