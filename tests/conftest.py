"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It pins the environment before anything imports ``app.core.config`` so a
developer's local .env files never leak into the test run.
"""

import gzip
import io
import os
import struct
import tarfile
import tempfile
import zipfile
from typing import Iterable

import pytest

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault(
    "UPLOAD_UPLOAD_DIRECTORY",
    os.path.join(tempfile.gettempdir(), "space-file-guard-tests"),
)

from app.adapters.blocklist.in_memory import InMemoryBlockedExtensionRepository  # noqa: E402
from app.adapters.detection.filetype_detector import FiletypeContentDetector  # noqa: E402
from app.adapters.records.in_memory import InMemoryFileRecordSink  # noqa: E402
from app.adapters.storage.local import LocalFileStorage  # noqa: E402
from app.core.config import UploadLimits  # noqa: E402
from app.services.upload_service import UploadService  # noqa: E402


# Minimal signatures recognised by the detector
PE_BYTES = b"MZ\x90\x00\x03\x00\x00\x00\x04\x00\x00\x00\xff\xff\x00\x00" + b"\x00" * 112
ELF_BYTES = b"\x7fELF\x02\x01\x01\x00" + b"\x00" * 120
MACHO_BYTES = b"\xcf\xfa\xed\xfe\x07\x00\x00\x01" + b"\x00" * 56
SHELL_SCRIPT = b"#!/bin/sh\necho 'hello'\nrm -rf /tmp/cache\n"
BATCH_SCRIPT = b"@echo off\r\ndel /q C:\\temp\\*\r\n"
PLAIN_TEXT = b"Quarterly report\nAll numbers are final.\n"

Entries = Iterable[tuple[str, bytes]]


def make_zip(entries: Entries, *, compression: int = zipfile.ZIP_STORED) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=compression) as zf:
        for name, data in entries:
            zf.writestr(name, data)
    return buf.getvalue()


def make_tar(entries: Entries, *, mode: str = "w") -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=mode) as tf:
        for name, data in entries:
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def make_tgz(entries: Entries) -> bytes:
    return make_tar(entries, mode="w:gz")


def make_gzip(data: bytes) -> bytes:
    return gzip.compress(data)


def make_7z(entries: Entries, *, password: str | None = None) -> bytes:
    import py7zr

    buf = io.BytesIO()
    with py7zr.SevenZipFile(buf, "w", password=password) as archive:
        for name, data in entries:
            archive.writestr(data, name)
    return buf.getvalue()


def mark_zip_encrypted(data: bytes) -> bytes:
    """Set the "encrypted" general-purpose flag on every zip header."""

    patched = bytearray(data)
    for signature, flag_offset in ((b"PK\x01\x02", 8), (b"PK\x03\x04", 6)):
        index = patched.find(signature)
        while index != -1:
            patched[index + flag_offset] |= 0x01
            index = patched.find(signature, index + 4)
    return bytes(patched)


def rewrite_zip_headers(data: bytes, *, file_size: int | None = None, crc: int | None = None) -> bytes:
    """Overwrite the declared uncompressed size and/or CRC in every zip header."""

    patched = bytearray(data)
    for signature, crc_offset, size_offset in ((b"PK\x03\x04", 14, 22), (b"PK\x01\x02", 16, 24)):
        index = patched.find(signature)
        while index != -1:
            if crc is not None:
                struct.pack_into("<I", patched, index + crc_offset, crc)
            if file_size is not None:
                struct.pack_into("<I", patched, index + size_offset, file_size)
            index = patched.find(signature, index + 4)
    return bytes(patched)


def corrupt_zip_directory_offset(data: bytes) -> bytes:
    """Point the end-of-central-directory record at an offset far past the archive."""

    patched = bytearray(data)
    index = patched.rfind(b"PK\x05\x06")
    struct.pack_into("<I", patched, index + 16, 0xFFFFFF00)
    return bytes(patched)


@pytest.fixture
def detector() -> FiletypeContentDetector:
    return FiletypeContentDetector()


@pytest.fixture
def limits() -> UploadLimits:
    return UploadLimits()


@pytest.fixture
def blocklist() -> InMemoryBlockedExtensionRepository:
    """Space 1 blocks bat and exe; space 2 is provisioned with nothing active."""

    repo = InMemoryBlockedExtensionRepository()
    repo.provision_space(1, actor_id="admin")
    repo.set_fixed_active(1, "bat", True, actor_id="admin")
    repo.set_fixed_active(1, "exe", True, actor_id="admin")
    repo.provision_space(2, actor_id="admin")
    return repo


@pytest.fixture
def sink() -> InMemoryFileRecordSink:
    return InMemoryFileRecordSink()


@pytest.fixture
def storage(tmp_path) -> LocalFileStorage:
    return LocalFileStorage(tmp_path / "uploads")


@pytest.fixture
def upload_service(blocklist, detector, storage, sink, limits) -> UploadService:
    return UploadService(
        blocklist=blocklist,
        detector=detector,
        storage=storage,
        sink=sink,
        limits=limits,
    )
