"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


MIB = 1024 * 1024

# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ up front.
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=False)


class UploadSettings(BaseSettings):
    """Limits and storage options for the upload defense pipeline."""

    max_file_size: int = Field(
        10 * MIB,
        description="Maximum upload size in bytes",
        ge=1,
    )
    max_archive_nesting_depth: int = Field(
        1,
        description="Deepest permitted archive-inside-archive level",
        ge=0,
    )
    max_archive_file_count: int = Field(
        1000,
        description="Maximum number of non-directory entries scanned per upload",
        ge=1,
    )
    max_archive_uncompressed_size: int = Field(
        10 * MIB,
        description="Maximum cumulative uncompressed bytes across archive entries",
        ge=1,
    )
    max_archive_compression_ratio: float = Field(
        100.0,
        description="Uncompressed/compressed ratio above which an archive is a suspected zip bomb",
        gt=0,
    )
    archive_entry_sample_size: int = Field(
        1 * MIB,
        description="Bytes of each archive entry sampled for signature detection",
        ge=512,
    )
    signature_sample_size: int = Field(
        8192,
        description="Bytes of the top-level upload read for signature detection",
        ge=512,
    )
    scan_timeout_seconds: float | None = Field(
        30.0,
        description="Deadline for a single upload's archive scan (None disables it)",
    )
    upload_directory: str = Field(
        "./uploads",
        description="Root directory for stored files, one sub-directory per space",
    )
    spool_max_memory: int = Field(
        1 * MIB,
        description="Uploads larger than this are spooled to a temporary file",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="UPLOAD_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log destination: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * MIB,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated log files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to accept and return the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if a setting is malformed.
    """

    app_env: str = APP_ENV
    upload: UploadSettings = Field(default_factory=UploadSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    app: AppSettings = Field(default_factory=AppSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


@dataclass(frozen=True)
class UploadLimits:
    """Immutable snapshot of the upload limits handed to the pipeline.

    The pipeline never reads the global settings while scanning, so a single
    upload sees one consistent set of limits.
    """

    max_file_size: int = 10 * MIB
    max_nesting_depth: int = 1
    max_file_count: int = 1000
    max_uncompressed_size: int = 10 * MIB
    max_compression_ratio: float = 100.0
    entry_sample_size: int = 1 * MIB
    signature_sample_size: int = 8192
    scan_timeout_seconds: float | None = 30.0
    spool_max_memory: int = 1 * MIB

    @classmethod
    def from_settings(cls, upload: UploadSettings) -> "UploadLimits":
        return cls(
            max_file_size=upload.max_file_size,
            max_nesting_depth=upload.max_archive_nesting_depth,
            max_file_count=upload.max_archive_file_count,
            max_uncompressed_size=upload.max_archive_uncompressed_size,
            max_compression_ratio=upload.max_archive_compression_ratio,
            entry_sample_size=upload.archive_entry_sample_size,
            signature_sample_size=upload.signature_sample_size,
            scan_timeout_seconds=upload.scan_timeout_seconds,
            spool_max_memory=upload.spool_max_memory,
        )


# Global settings instance - composed from domain-specific settings
settings = Settings()
