"""Tests for recursive archive inspection."""

from __future__ import annotations

import io
import math
import random
import threading
import time
import zipfile

import pytest

from conftest import (
    ELF_BYTES,
    PE_BYTES,
    PLAIN_TEXT,
    corrupt_zip_directory_offset,
    make_7z,
    make_gzip,
    make_tar,
    make_tgz,
    make_zip,
    mark_zip_encrypted,
    rewrite_zip_headers,
)
from app.adapters.detection.filetype_detector import FiletypeContentDetector
from app.core.config import UploadLimits
from app.core.errors import RejectionKind, ScanCancelledError, UploadRejectedError
from app.utils.archive_inspector import ArchiveFormat, ArchiveInspector, ScanContext
from app.utils.file_validators import check_compression_ratio


class CountingDetector(FiletypeContentDetector):
    """Counts entry samples (calls that carry an entry name)."""

    def __init__(self) -> None:
        super().__init__()
        self.entry_calls = 0

    def detect(self, sample, filename=None):
        if filename is not None:
            self.entry_calls += 1
        return super().detect(sample, filename)


def _inspect(data: bytes, *, detector=None, limits=None, blocked=(), name="upload.zip", context=None):
    inspector = ArchiveInspector(detector or FiletypeContentDetector(), limits or UploadLimits())
    ctx = context or ScanContext(space_id=1, blocked=frozenset(blocked))
    inspector.inspect(io.BytesIO(data), len(data), ctx, archive_name=name)
    return ctx


def _rejection_kind(data: bytes, **kwargs) -> RejectionKind:
    with pytest.raises(UploadRejectedError) as exc_info:
        _inspect(data, **kwargs)
    return exc_info.value.kind


class TestEntryLimits:
    def test_clean_zip_is_accepted(self):
        data = make_zip([("a.txt", PLAIN_TEXT), ("docs/b.md", b"# notes\n")])

        ctx = _inspect(data)

        assert ctx.file_count == 2
        assert ctx.depth == 0

    def test_directories_are_not_counted(self):
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            zf.writestr("docs/", b"")
            zf.writestr("docs/a.txt", PLAIN_TEXT)

        ctx = _inspect(buf.getvalue())

        assert ctx.file_count == 1

    def test_1001_files_rejected_and_scan_stops_at_the_limit(self):
        data = make_zip((f"file{i:04d}.txt", b"hello") for i in range(1001))
        detector = CountingDetector()

        with pytest.raises(UploadRejectedError) as exc_info:
            _inspect(data, detector=detector)

        assert exc_info.value.kind is RejectionKind.ARCHIVE_TOO_MANY_FILES
        assert exc_info.value.rejection.offending_name == "file1000.txt"
        assert detector.entry_calls == 1000

    def test_1000_files_accepted(self):
        data = make_zip((f"file{i:04d}.txt", b"hello") for i in range(1000))

        assert _inspect(data).file_count == 1000

    def test_cumulative_uncompressed_size_limit(self):
        limits = UploadLimits(max_uncompressed_size=1000)
        data = make_zip([("a.txt", b"a" * 600), ("b.txt", b"b" * 600)])

        with pytest.raises(UploadRejectedError) as exc_info:
            _inspect(data, limits=limits)

        assert exc_info.value.kind is RejectionKind.ARCHIVE_TOO_LARGE
        assert exc_info.value.rejection.offending_name == "b.txt"

    def test_blocked_entry_extension(self):
        data = make_zip([("readme.txt", PLAIN_TEXT), ("tools/install.BAT", b"@echo off\r\n")])

        with pytest.raises(UploadRejectedError) as exc_info:
            _inspect(data, blocked={"bat"})

        assert exc_info.value.kind is RejectionKind.EXTENSION_BLOCKED
        assert exc_info.value.rejection.offending_name == "tools/install.BAT"

    def test_entries_without_extension_are_allowed(self):
        data = make_zip([("Makefile", b"all:\n\techo ok\n")])

        assert _inspect(data, blocked={"bat"}).file_count == 1

    @pytest.mark.parametrize("payload", [PE_BYTES, ELF_BYTES], ids=["pe", "elf"])
    def test_executable_entry_is_rejected(self, payload):
        data = make_zip([("photo.jpg", payload)])

        with pytest.raises(UploadRejectedError) as exc_info:
            _inspect(data)

        assert exc_info.value.kind is RejectionKind.EXECUTABLE_DETECTED
        assert exc_info.value.rejection.offending_name == "photo.jpg"


class TestNesting:
    def test_depth_one_is_accepted(self):
        inner = make_zip([("a.txt", PLAIN_TEXT)])
        outer = make_zip([("inner.zip", inner), ("b.txt", PLAIN_TEXT)])

        ctx = _inspect(outer)

        assert ctx.file_count == 3
        assert ctx.depth == 0

    def test_depth_two_is_rejected(self):
        innermost = make_zip([("a.txt", PLAIN_TEXT)])
        middle = make_zip([("innermost.zip", innermost)])
        outer = make_zip([("middle.zip", middle)])

        with pytest.raises(UploadRejectedError) as exc_info:
            _inspect(outer)

        assert exc_info.value.kind is RejectionKind.ARCHIVE_TOO_DEEP
        assert exc_info.value.rejection.offending_name == "innermost.zip"

    def test_nesting_disabled(self):
        outer = make_zip([("inner.zip", make_zip([("a.txt", PLAIN_TEXT)]))])

        assert _rejection_kind(outer, limits=UploadLimits(max_nesting_depth=0)) is RejectionKind.ARCHIVE_TOO_DEEP

    def test_nested_executable_is_found(self):
        outer = make_zip([("inner.tar", make_tar([("run.dat", ELF_BYTES)]))])

        assert _rejection_kind(outer) is RejectionKind.EXECUTABLE_DETECTED

    def test_nested_entries_share_the_file_budget(self):
        inner = make_zip([("a.txt", b"a"), ("b.txt", b"b")])
        outer = make_zip([("inner.zip", inner), ("c.txt", b"c")])

        kind = _rejection_kind(outer, limits=UploadLimits(max_file_count=3))

        assert kind is RejectionKind.ARCHIVE_TOO_MANY_FILES


class TestZipBomb:
    def test_highly_compressible_entry_is_rejected(self):
        data = make_zip([("zeros.bin", b"\x00" * (2 * 1024 * 1024))], compression=zipfile.ZIP_DEFLATED)

        assert _rejection_kind(data) is RejectionKind.ZIP_BOMB_SUSPECTED

    def test_ratio_exactly_at_limit_is_accepted(self):
        check_compression_ratio(10_000, 100, 100.0)

    def test_ratio_above_limit_is_rejected(self):
        with pytest.raises(UploadRejectedError) as exc_info:
            check_compression_ratio(10_001, 100, 100.0)

        assert exc_info.value.kind is RejectionKind.ZIP_BOMB_SUSPECTED

    @pytest.mark.parametrize(("uncompressed", "compressed"), [(0, 100), (10_000_000, 0), (0, 0)])
    def test_ratio_skipped_without_signal(self, uncompressed, compressed):
        check_compression_ratio(uncompressed, compressed, 100.0)

    def test_archive_exactly_at_the_ratio_limit_is_accepted(self):
        data = make_zip([("zeros.txt", b"\x00" * 100_000)], compression=zipfile.ZIP_DEFLATED)
        ratio = 100_000 / len(data)

        ctx = _inspect(data, limits=UploadLimits(max_compression_ratio=ratio))

        assert ctx.uncompressed_total == 100_000

    def test_archive_just_above_the_ratio_limit_is_rejected(self):
        data = make_zip([("zeros.txt", b"\x00" * 100_000)], compression=zipfile.ZIP_DEFLATED)
        limit = math.nextafter(100_000 / len(data), 0)

        with pytest.raises(UploadRejectedError) as exc_info:
            _inspect(data, limits=UploadLimits(max_compression_ratio=limit))

        assert exc_info.value.kind is RejectionKind.ZIP_BOMB_SUSPECTED
        assert exc_info.value.details["limit"] == limit

    def test_zip_bomb_reports_limit_and_ratio(self):
        data = make_zip([("zeros.bin", b"\x00" * (2 * 1024 * 1024))], compression=zipfile.ZIP_DEFLATED)

        with pytest.raises(UploadRejectedError) as exc_info:
            _inspect(data)

        assert exc_info.value.details["limit"] == 100.0
        assert exc_info.value.details["actual_value"] > 100.0


class TestEntryHeaders:
    def test_entry_larger_than_its_declared_size_is_malformed(self):
        data = rewrite_zip_headers(
            make_zip([("photo.jpg", PE_BYTES * 50)], compression=zipfile.ZIP_DEFLATED),
            file_size=16,
        )

        with pytest.raises(UploadRejectedError) as exc_info:
            _inspect(data)

        rejection = exc_info.value.rejection
        assert rejection.kind is RejectionKind.ARCHIVE_MALFORMED
        assert rejection.offending_name == "photo.jpg"
        assert rejection.limit == 16

    def test_entry_smaller_than_its_declared_size_is_malformed(self):
        data = rewrite_zip_headers(make_zip([("a.txt", PLAIN_TEXT)]), file_size=len(PLAIN_TEXT) + 100)

        assert _rejection_kind(data) is RejectionKind.ARCHIVE_MALFORMED

    def test_corrupted_entry_data_fails_the_crc(self):
        data = bytearray(make_zip([("a.txt", PLAIN_TEXT)]))
        data[data.find(PLAIN_TEXT)] ^= 0xFF

        assert _rejection_kind(bytes(data)) is RejectionKind.ARCHIVE_MALFORMED

    def test_wrong_declared_crc_is_malformed(self):
        data = rewrite_zip_headers(make_zip([("a.txt", PLAIN_TEXT)]), crc=0)

        assert _rejection_kind(data) is RejectionKind.ARCHIVE_MALFORMED

    def test_bzip2_entries_are_decoded(self):
        data = make_zip([("a.txt", PLAIN_TEXT), ("b.txt", PLAIN_TEXT * 3)], compression=zipfile.ZIP_BZIP2)

        ctx = _inspect(data)

        assert ctx.file_count == 2
        assert ctx.uncompressed_total == len(PLAIN_TEXT) * 4

    def test_deflated_entry_spanning_many_chunks_is_decoded(self):
        payload = random.Random(7).randbytes(300_000)
        data = make_zip([("noise.bin", payload)], compression=zipfile.ZIP_DEFLATED)

        ctx = _inspect(data, limits=UploadLimits(entry_sample_size=1024))

        assert ctx.uncompressed_total == len(payload)

    def test_corrupt_directory_offset_is_malformed(self):
        data = corrupt_zip_directory_offset(make_zip([("a.txt", PLAIN_TEXT)]))

        assert _rejection_kind(data) is RejectionKind.ARCHIVE_MALFORMED

    def test_corrupt_directory_offset_on_a_file_is_malformed(self, tmp_path):
        path = tmp_path / "upload.zip"
        path.write_bytes(corrupt_zip_directory_offset(make_zip([("a.txt", PLAIN_TEXT)])))
        inspector = ArchiveInspector(FiletypeContentDetector(), UploadLimits())

        with path.open("rb") as stream, pytest.raises(UploadRejectedError) as exc_info:
            inspector.inspect(stream, path.stat().st_size, ScanContext(space_id=1, blocked=frozenset()))

        assert exc_info.value.kind is RejectionKind.ARCHIVE_MALFORMED


class TestRejectionDetails:
    def test_too_many_files_reports_limit(self):
        data = make_zip((f"f{i}.txt", b"x") for i in range(3))

        with pytest.raises(UploadRejectedError) as exc_info:
            _inspect(data, limits=UploadLimits(max_file_count=2))

        assert exc_info.value.details["limit"] == 2
        assert exc_info.value.details["actual_value"] == 3

    def test_too_deep_reports_limit(self):
        outer = make_zip([("inner.zip", make_zip([("a.txt", PLAIN_TEXT)]))])

        with pytest.raises(UploadRejectedError) as exc_info:
            _inspect(outer, limits=UploadLimits(max_nesting_depth=0))

        assert exc_info.value.details["limit"] == 0
        assert exc_info.value.details["actual_value"] == 1

    def test_too_large_reports_running_total(self):
        data = make_zip([("a.txt", b"a" * 600), ("b.txt", b"b" * 600)])

        with pytest.raises(UploadRejectedError) as exc_info:
            _inspect(data, limits=UploadLimits(max_uncompressed_size=1000))

        assert exc_info.value.details["limit"] == 1000
        assert exc_info.value.details["actual_value"] == 1200


class TestContainers:
    def test_encrypted_zip_entry_is_rejected(self):
        data = mark_zip_encrypted(make_zip([("secret.txt", PLAIN_TEXT)]))

        assert _rejection_kind(data) is RejectionKind.ARCHIVE_ENCRYPTED

    def test_truncated_zip_is_malformed(self):
        data = make_zip([("a.txt", PLAIN_TEXT)])[:40]

        assert _rejection_kind(data) is RejectionKind.ARCHIVE_MALFORMED

    def test_non_archive_content_is_malformed(self):
        assert _rejection_kind(PLAIN_TEXT, name="notes.zip") is RejectionKind.ARCHIVE_MALFORMED

    def test_tar_is_scanned(self):
        data = make_tar([("a.txt", PLAIN_TEXT), ("b.txt", PLAIN_TEXT)])

        assert _inspect(data, name="bundle.tar").file_count == 2

    def test_tar_blocked_entry(self):
        data = make_tar([("a.txt", PLAIN_TEXT), ("run.exe", b"not really")])

        assert _rejection_kind(data, blocked={"exe"}, name="bundle.tar") is RejectionKind.EXTENSION_BLOCKED

    def test_tgz_is_scanned_as_tar(self):
        data = make_tgz([("a.txt", PLAIN_TEXT), ("b.txt", PLAIN_TEXT)])

        assert _inspect(data, name="bundle.tgz").file_count == 2

    def test_tgz_executable_entry(self):
        data = make_tgz([("tool", ELF_BYTES)])

        assert _rejection_kind(data, name="bundle.tar.gz") is RejectionKind.EXECUTABLE_DETECTED

    def test_single_file_gzip(self):
        data = make_gzip(PLAIN_TEXT * 10)

        ctx = _inspect(data, name="notes.txt.gz")

        assert ctx.file_count == 1
        assert ctx.uncompressed_total == len(PLAIN_TEXT) * 10

    def test_single_file_gzip_member_name_is_checked(self):
        data = make_gzip(b"@echo off\r\n")

        with pytest.raises(UploadRejectedError) as exc_info:
            _inspect(data, blocked={"bat"}, name="setup.bat.gz")

        assert exc_info.value.rejection.offending_name == "setup.bat"

    def test_single_file_gzip_executable(self):
        assert _rejection_kind(make_gzip(PE_BYTES), name="tool.gz") is RejectionKind.EXECUTABLE_DETECTED

    def test_single_file_gzip_size_is_charged_while_reading(self):
        data = make_gzip(b"abcdefgh" * 1000)

        kind = _rejection_kind(data, name="big.txt.gz", limits=UploadLimits(max_uncompressed_size=4096))

        assert kind is RejectionKind.ARCHIVE_TOO_LARGE

    def test_truncated_gzip_is_malformed(self):
        data = make_gzip(PLAIN_TEXT * 50)

        assert _rejection_kind(data[:-12], name="notes.txt.gz") is RejectionKind.ARCHIVE_MALFORMED

    def test_seven_zip_is_scanned(self):
        data = make_7z([("a.txt", PLAIN_TEXT), ("b.txt", PLAIN_TEXT)])

        assert _inspect(data, name="bundle.7z").file_count == 2

    def test_seven_zip_executable_entry(self):
        data = make_7z([("a.txt", PLAIN_TEXT), ("setup.jpg", PE_BYTES)])

        assert _rejection_kind(data, name="bundle.7z") is RejectionKind.EXECUTABLE_DETECTED

    def test_seven_zip_too_many_files_before_extraction(self):
        data = make_7z([(f"f{i}.txt", b"x") for i in range(5)])

        kind = _rejection_kind(data, name="bundle.7z", limits=UploadLimits(max_file_count=4))

        assert kind is RejectionKind.ARCHIVE_TOO_MANY_FILES

    def test_password_protected_seven_zip(self):
        data = make_7z([("a.txt", PLAIN_TEXT)], password="hunter2")

        assert _rejection_kind(data, name="bundle.7z") is RejectionKind.ARCHIVE_ENCRYPTED


class TestCancellation:
    def test_cancel_event_aborts_before_reading(self):
        event = threading.Event()
        event.set()
        ctx = ScanContext(space_id=1, blocked=frozenset(), cancel_event=event)

        with pytest.raises(ScanCancelledError) as exc_info:
            _inspect(make_zip([("a.txt", PLAIN_TEXT)]), context=ctx)

        assert exc_info.value.code == "scan_cancelled"

    def test_cancel_between_entries(self):
        event = threading.Event()

        class CancelAfterFirstEntry(FiletypeContentDetector):
            def detect(self, sample, filename=None):
                if filename is not None:
                    event.set()
                return super().detect(sample, filename)

        ctx = ScanContext(space_id=1, blocked=frozenset(), cancel_event=event)
        data = make_zip([("a.txt", PLAIN_TEXT), ("b.txt", PLAIN_TEXT)])

        with pytest.raises(ScanCancelledError):
            _inspect(data, detector=CancelAfterFirstEntry(), context=ctx)

        assert ctx.file_count == 1

    def test_cancel_between_seven_zip_entries(self):
        event = threading.Event()
        seen = []

        class CancelAfterFirstEntry(FiletypeContentDetector):
            def detect(self, sample, filename=None):
                if filename is not None:
                    seen.append(filename)
                    event.set()
                return super().detect(sample, filename)

        ctx = ScanContext(space_id=1, blocked=frozenset(), cancel_event=event)
        data = make_7z([("a.txt", PLAIN_TEXT), ("b.txt", PLAIN_TEXT), ("c.txt", PLAIN_TEXT)])

        with pytest.raises(ScanCancelledError):
            _inspect(data, detector=CancelAfterFirstEntry(), context=ctx, name="bundle.7z")

        assert seen == ["a.txt"]

    def test_expired_deadline(self):
        ctx = ScanContext(space_id=1, blocked=frozenset(), deadline=time.monotonic() - 1)

        with pytest.raises(ScanCancelledError) as exc_info:
            _inspect(make_zip([("a.txt", PLAIN_TEXT)]), context=ctx)

        assert exc_info.value.code == "scan_timeout"


@pytest.mark.parametrize(
    ("mime", "expected"),
    [
        ("application/zip", ArchiveFormat.ZIP),
        ("application/x-tar", ArchiveFormat.TAR),
        ("application/gzip", ArchiveFormat.GZIP),
        ("application/x-7z-compressed", ArchiveFormat.SEVEN_ZIP),
        ("text/plain", ArchiveFormat.UNKNOWN),
        (None, ArchiveFormat.UNKNOWN),
    ],
)
def test_archive_format_from_mime(mime, expected):
    assert ArchiveFormat.from_mime(mime) is expected
