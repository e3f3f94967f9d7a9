"""Recursive archive inspection (zip, tar, gzip/tgz, 7z).

Every non-directory entry is charged against one upload-wide budget
(file count and uncompressed bytes) *before* its content is read, then
its extension is checked against the workspace blocklist and a bounded
sample of its content is checked for native executables. Entries that are
archives themselves are inspected recursively up to the nesting limit.
After each level, the uncompressed/compressed ratio of that level is
compared with the zip-bomb threshold.

Any violation raises immediately, so no further entries are read.
"""

from __future__ import annotations

import bz2
import gzip
import logging
import lzma
import struct
import tarfile
import tempfile
import threading
import time
import zipfile
import zlib
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterator, Union

import py7zr
from py7zr.exceptions import ArchiveError, PasswordRequired

from app.adapters.detection.base import AbstractContentDetector
from app.core.config import UploadLimits
from app.core.errors import RejectionKind, ScanCancelledError, StorageAppError, reject
from app.utils.extensions import extract_extension
from app.utils.file_validators import check_compression_ratio, read_sample
from app.utils.mime_categories import is_native_executable

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_SNIFF_SIZE = 8192
_TAR_BLOCK = 512
_ZIP_ENCRYPTED_FLAG = 0x1

# signature, 22 fixed bytes, file name length, extra field length
_ZIP_LOCAL_HEADER = struct.Struct("<4s22xHH")
_ZIP_LOCAL_HEADER_SIGNATURE = b"PK\x03\x04"


class _ContainerParseError(Exception):
    """I/O error raised while a reader was parsing container headers."""


# Container-level parse failures; BadGzipFile is an OSError, so this tuple
# must be matched before the generic I/O branch.
_MALFORMED_ERRORS: tuple[type[BaseException], ...] = (
    _ContainerParseError,
    zipfile.BadZipFile,
    zipfile.LargeZipFile,
    tarfile.TarError,
    gzip.BadGzipFile,
    EOFError,
    zlib.error,
    lzma.LZMAError,
    struct.error,
    ValueError,
    NotImplementedError,
    ArchiveError,
)


@contextmanager
def _parsing() -> Iterator[None]:
    """Report I/O errors raised while opening a container as a corrupt container.

    Corrupt header offsets make the readers seek outside the archive, which
    surfaces as ``OSError`` on disk-backed spools.
    """
    try:
        yield
    except OSError as exc:
        raise _ContainerParseError(str(exc)) from exc


class ArchiveFormat(str, Enum):
    ZIP = "zip"
    TAR = "tar"
    GZIP = "gzip"
    SEVEN_ZIP = "7z"
    UNKNOWN = "unknown"

    @classmethod
    def from_mime(cls, mime: str | None) -> "ArchiveFormat":
        return ARCHIVE_MIMES.get((mime or "").lower(), cls.UNKNOWN)


ARCHIVE_MIMES: dict[str, ArchiveFormat] = {
    "application/zip": ArchiveFormat.ZIP,
    "application/x-zip-compressed": ArchiveFormat.ZIP,
    "application/x-tar": ArchiveFormat.TAR,
    "application/gzip": ArchiveFormat.GZIP,
    "application/x-gzip": ArchiveFormat.GZIP,
    "application/x-7z-compressed": ArchiveFormat.SEVEN_ZIP,
}


@dataclass
class ScanContext:
    """Per-upload scan state, passed explicitly down the recursion.

    Attributes:
        space_id: Workspace the upload belongs to.
        blocked: Blocked extensions fetched for this upload.
        depth: Current nesting level (0 for the uploaded archive).
        file_count: Non-directory entries seen so far, across all levels.
        uncompressed_total: Uncompressed bytes charged so far, across all levels.
        deadline: ``time.monotonic()`` value after which the scan aborts.
        cancel_event: Optional flag set by the caller to abort the scan.
    """

    space_id: int
    blocked: frozenset[str]
    depth: int = 0
    file_count: int = 0
    uncompressed_total: int = 0
    deadline: float | None = None
    cancel_event: threading.Event | None = field(default=None, repr=False)

    def ensure_active(self) -> None:
        """Raise ``ScanCancelledError`` if the scan was cancelled or timed out."""

        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ScanCancelledError(code="scan_cancelled", message="Archive scan was cancelled")
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise ScanCancelledError(code="scan_timeout", message="Archive scan timed out")

    @contextmanager
    def descend(self) -> Iterator["ScanContext"]:
        self.depth += 1
        try:
            yield self
        finally:
            self.depth -= 1


@dataclass
class ArchiveEntryDescriptor:
    """One entry met while streaming an archive level."""

    name: str
    extension: str
    compressed_size_hint: int | None
    uncompressed_size_hint: int | None
    sample: bytes = field(repr=False)


class _CountingReader:
    """Read-through wrapper charging consumed bytes to the scan budget.

    Used for entries whose size is only known once decompressed (a plain
    gzip member), so the budget is enforced as bytes are produced.
    """

    def __init__(self, raw: BinaryIO, context: ScanContext, limit: int, name: str) -> None:
        self._raw = raw
        self._context = context
        self._limit = limit
        self._name = name
        self.consumed = 0

    def read(self, size: int = _CHUNK_SIZE) -> bytes:
        data = self._raw.read(size)
        self.consumed += len(data)
        self._context.uncompressed_total += len(data)
        if self._context.uncompressed_total > self._limit:
            raise reject(
                RejectionKind.ARCHIVE_TOO_LARGE,
                f"Archive expands beyond {self._limit} bytes",
                offending_name=self._name,
                limit=self._limit,
                actual_value=self._context.uncompressed_total,
            )
        return data


class _DeflateDecompressor:
    """Raw deflate decoder exposing the ``needs_input``/``eof`` interface of ``bz2``."""

    def __init__(self) -> None:
        self._obj = zlib.decompressobj(-zlib.MAX_WBITS)

    @property
    def needs_input(self) -> bool:
        return not self._obj.unconsumed_tail

    @property
    def eof(self) -> bool:
        return self._obj.eof

    def decompress(self, data: bytes, max_length: int) -> bytes:
        return self._obj.decompress(self._obj.unconsumed_tail + data, max_length)


def _zip_decompressor(compress_type: int) -> _DeflateDecompressor | bz2.BZ2Decompressor | None:
    if compress_type == zipfile.ZIP_STORED:
        return None
    if compress_type == zipfile.ZIP_DEFLATED:
        return _DeflateDecompressor()
    if compress_type == zipfile.ZIP_BZIP2:
        return bz2.BZ2Decompressor()
    raise NotImplementedError(f"Unsupported zip compression method {compress_type}")


def _zip_data_offset(stream: BinaryIO, info: zipfile.ZipInfo) -> int:
    """Locate the first byte of an entry's compressed data via its local header."""

    if info.header_offset < 0:
        raise zipfile.BadZipFile(f"Bad local header offset for {info.filename!r}")
    stream.seek(info.header_offset)
    header = stream.read(_ZIP_LOCAL_HEADER.size)
    if len(header) != _ZIP_LOCAL_HEADER.size:
        raise zipfile.BadZipFile(f"Truncated local header for {info.filename!r}")
    signature, name_length, extra_length = _ZIP_LOCAL_HEADER.unpack(header)
    if signature != _ZIP_LOCAL_HEADER_SIGNATURE:
        raise zipfile.BadZipFile(f"Bad local header signature for {info.filename!r}")
    return info.header_offset + _ZIP_LOCAL_HEADER.size + name_length + extra_length


class _ZipEntryReader:
    """Decode a zip entry from its compressed bytes, to the real end of the stream.

    ``zipfile`` stops decompressing at the size declared in the entry
    header, so a header that understates the size would hide content from
    the scan. Decoding here ignores the declared size; an entry that
    produces more than it declares is rejected as soon as it does, and one
    that produces less, or fails its CRC, is rejected by ``finish``.
    """

    def __init__(self, stream: BinaryIO, info: zipfile.ZipInfo) -> None:
        self._stream = stream
        self._name = info.filename
        self._declared = info.file_size
        self._expected_crc = info.CRC
        self._position = _zip_data_offset(stream, info)
        self._raw_left = info.compress_size
        self._decompressor = _zip_decompressor(info.compress_type)
        self._crc = 0
        self._finished = False
        self.produced = 0

    def read(self, size: int = _CHUNK_SIZE) -> bytes:
        parts = []
        wanted = size
        while wanted > 0 and not self._finished:
            chunk = self._produce(wanted)
            parts.append(chunk)
            wanted -= len(chunk)
        data = b"".join(parts)

        self.produced += len(data)
        if self.produced > self._declared:
            raise self._mismatch("Archive entry expands beyond its declared size")
        self._crc = zlib.crc32(data, self._crc)
        return data

    def finish(self, context: ScanContext) -> int:
        """Decode the rest of the entry and verify it against its header."""

        while self.read(_CHUNK_SIZE):
            context.ensure_active()
        if self.produced != self._declared or self._crc != self._expected_crc:
            raise self._mismatch("Archive entry does not match its header")
        return self.produced

    def _mismatch(self, detail: str):
        return reject(
            RejectionKind.ARCHIVE_MALFORMED,
            f"{detail}: {self._name}",
            offending_name=self._name,
            limit=self._declared,
            actual_value=self.produced,
        )

    def _raw(self, size: int) -> bytes:
        if self._raw_left <= 0:
            return b""
        self._stream.seek(self._position)
        data = self._stream.read(min(size, _CHUNK_SIZE, self._raw_left))
        if not data:
            raise EOFError(f"Compressed data of {self._name!r} is truncated")
        self._position += len(data)
        self._raw_left -= len(data)
        return data

    def _produce(self, max_length: int) -> bytes:
        decompressor = self._decompressor
        if decompressor is None:
            data = self._raw(max_length)
            if not data:
                self._finished = True
            return data

        if decompressor.eof:
            self._finished = True
            return b""
        raw = b""
        if decompressor.needs_input:
            raw = self._raw(_CHUNK_SIZE)
            if not raw:
                self._finished = True
                return b""
        return decompressor.decompress(raw, max_length)


_EntryStream = Union[BinaryIO, _CountingReader, _ZipEntryReader]


def _is_tar_header(block: bytes) -> bool:
    return len(block) >= 262 and block[257:262] == b"ustar"


def _gzip_member_name(archive_name: str | None) -> str:
    """Name of the single file inside ``archive_name`` (``notes.txt.gz`` -> ``notes.txt``)."""

    base = PurePosixPath((archive_name or "").strip().replace("\\", "/")).name
    lowered = base.lower()
    if lowered.endswith(".gz"):
        return base[:-3]
    if lowered.endswith(".tgz"):
        return base[:-4] + ".tar"
    return base


def _seven_zip_blocks(archive: py7zr.SevenZipFile) -> list[list[str]]:
    """Group member names by the compressed block (folder) that stores them, in archive order."""

    blocks: dict[int, list[str]] = {}
    for member in archive.files:
        if member.is_directory or member.emptystream:
            continue
        blocks.setdefault(id(member.folder), []).append(member.filename)
    return list(blocks.values())


class ArchiveInspector:
    """Walk archive levels and enforce the archive limits of ``UploadLimits``."""

    def __init__(self, detector: AbstractContentDetector, limits: UploadLimits) -> None:
        self._detector = detector
        self._limits = limits

    def inspect(
        self,
        stream: BinaryIO,
        archive_size: int,
        context: ScanContext,
        *,
        archive_name: str | None = None,
    ) -> None:
        """Inspect one archive level (and, recursively, nested archives).

        Args:
            stream: Seekable archive content.
            archive_size: Compressed size of this level in bytes.
            context: Upload-wide scan state.
            archive_name: Name used in rejections and for plain gzip members.

        Raises:
            UploadRejectedError: On any archive policy violation or malformed container.
            ScanCancelledError: If the deadline passes or the scan is cancelled.
            StorageAppError: On read failures of the underlying stream.
        """
        context.ensure_active()
        sample = read_sample(stream, _SNIFF_SIZE)
        archive_format = ArchiveFormat.from_mime(self._detector.detect(sample))

        logger.info(
            "archive.scan_started",
            extra={
                "archive_format": archive_format.value,
                "depth": context.depth,
                "archive_size": archive_size,
            },
        )

        try:
            level_total = self._scan(archive_format, stream, context, archive_name)
        except _MALFORMED_ERRORS as exc:
            logger.warning(
                "archive.malformed",
                extra={"archive_format": archive_format.value, "error": str(exc)},
            )
            raise reject(
                RejectionKind.ARCHIVE_MALFORMED,
                "Archive could not be read; it may be corrupt or truncated",
                offending_name=archive_name,
            ) from exc
        except PasswordRequired as exc:
            raise reject(
                RejectionKind.ARCHIVE_ENCRYPTED,
                "Encrypted archives cannot be inspected",
                offending_name=archive_name,
            ) from exc
        except OSError as exc:
            raise StorageAppError(
                code=RejectionKind.IO_FAILURE.value,
                message="Failed to read archive content",
                details={"context": {"error": str(exc)}},
            ) from exc

        check_compression_ratio(level_total, archive_size, self._limits.max_compression_ratio)

        logger.info(
            "archive.scan_completed",
            extra={
                "archive_format": archive_format.value,
                "depth": context.depth,
                "file_count": context.file_count,
                "uncompressed_total": context.uncompressed_total,
            },
        )

    def _scan(
        self,
        archive_format: ArchiveFormat,
        stream: BinaryIO,
        context: ScanContext,
        archive_name: str | None,
    ) -> int:
        """Dispatch to the reader for ``archive_format``; return the level's uncompressed bytes."""

        stream.seek(0)
        if archive_format is ArchiveFormat.ZIP:
            return self._scan_zip(stream, context)
        if archive_format is ArchiveFormat.TAR:
            return self._scan_tar(stream, context, mode="r|")
        if archive_format is ArchiveFormat.GZIP:
            return self._scan_gzip(stream, context, archive_name)
        if archive_format is ArchiveFormat.SEVEN_ZIP:
            return self._scan_seven_zip(stream, context)
        raise reject(
            RejectionKind.ARCHIVE_MALFORMED,
            "Content is not a supported archive format",
            offending_name=archive_name,
        )

    def _scan_zip(self, stream: BinaryIO, context: ScanContext) -> int:
        # Only the central directory is taken from zipfile; entry data is
        # decoded by _ZipEntryReader.
        with _parsing(), zipfile.ZipFile(stream) as zf:
            infos = zf.infolist()

        level_total = 0
        for info in infos:
            if info.is_dir():
                continue
            if info.flag_bits & _ZIP_ENCRYPTED_FLAG:
                raise reject(
                    RejectionKind.ARCHIVE_ENCRYPTED,
                    "Encrypted archive entries cannot be inspected",
                    offending_name=info.filename,
                )
            self._charge_entry(context, info.filename, info.file_size)
            entry = _ZipEntryReader(stream, info)
            self._inspect_entry(
                entry,
                context,
                name=info.filename,
                compressed_hint=info.compress_size,
                uncompressed_hint=info.file_size,
            )
            level_total += entry.finish(context)
        return level_total

    def _scan_tar(self, stream: BinaryIO, context: ScanContext, *, mode: str) -> int:
        level_total = 0
        with _parsing():
            tf = tarfile.open(fileobj=stream, mode=mode)
        with tf:
            for member in tf:
                if member.isdir():
                    continue
                self._charge_entry(context, member.name, member.size)
                level_total += member.size
                if not member.isfile():
                    # Links and device nodes carry no content.
                    continue
                entry = tf.extractfile(member)
                if entry is None:
                    continue
                with entry:
                    self._inspect_entry(
                        entry,
                        context,
                        name=member.name,
                        compressed_hint=None,
                        uncompressed_hint=member.size,
                    )
        return level_total

    def _scan_gzip(self, stream: BinaryIO, context: ScanContext, archive_name: str | None) -> int:
        with gzip.GzipFile(fileobj=stream, mode="rb") as gz:
            head = gz.read(_TAR_BLOCK)
        stream.seek(0)
        if _is_tar_header(head):
            return self._scan_tar(stream, context, mode="r|gz")

        name = _gzip_member_name(archive_name)
        self._charge_entry(context, name, None)
        with gzip.GzipFile(fileobj=stream, mode="rb") as gz:
            reader = _CountingReader(gz, context, self._limits.max_uncompressed_size, name)
            self._inspect_entry(
                reader,
                context,
                name=name,
                compressed_hint=None,
                uncompressed_hint=None,
            )
            while reader.read(_CHUNK_SIZE):
                context.ensure_active()
            return reader.consumed

    def _scan_seven_zip(self, stream: BinaryIO, context: ScanContext) -> int:
        with _parsing():
            archive = py7zr.SevenZipFile(stream, mode="r")
        level_total = 0
        with archive:
            if archive.needs_password():
                raise reject(
                    RejectionKind.ARCHIVE_ENCRYPTED,
                    "Encrypted archives cannot be inspected",
                )
            entries = {info.filename: info for info in archive.list() if not info.is_directory}

            # 7z decodes a whole block at a time, so the header budget pass
            # runs before anything is decompressed.
            for info in entries.values():
                size = info.uncompressed or 0
                self._charge_entry(context, info.filename, size)
                level_total += size

            with tempfile.TemporaryDirectory(prefix="space-scan-") as tmp:
                root = Path(tmp)
                for names in _seven_zip_blocks(archive):
                    context.ensure_active()
                    archive.reset()
                    archive.extract(path=root, targets=names)
                    for name in names:
                        context.ensure_active()
                        path = root / name
                        if not path.is_file():
                            continue
                        info = entries[name]
                        with path.open("rb") as entry:
                            self._inspect_entry(
                                entry,
                                context,
                                name=name,
                                compressed_hint=info.compressed,
                                uncompressed_hint=info.uncompressed,
                            )
        return level_total

    def _charge_entry(self, context: ScanContext, name: str, declared_size: int | None) -> None:
        """Count an entry against the upload budget and apply the blocklist to its name."""

        context.ensure_active()

        context.file_count += 1
        if context.file_count > self._limits.max_file_count:
            logger.warning(
                "archive.too_many_files",
                extra={"file_count": context.file_count, "max_file_count": self._limits.max_file_count},
            )
            raise reject(
                RejectionKind.ARCHIVE_TOO_MANY_FILES,
                f"Archive contains more than {self._limits.max_file_count} files",
                offending_name=name,
                limit=self._limits.max_file_count,
                actual_value=context.file_count,
            )

        if declared_size:
            context.uncompressed_total += declared_size
            if context.uncompressed_total > self._limits.max_uncompressed_size:
                logger.warning(
                    "archive.too_large",
                    extra={
                        "uncompressed_total": context.uncompressed_total,
                        "max_uncompressed_size": self._limits.max_uncompressed_size,
                    },
                )
                raise reject(
                    RejectionKind.ARCHIVE_TOO_LARGE,
                    f"Archive expands beyond {self._limits.max_uncompressed_size} bytes",
                    offending_name=name,
                    limit=self._limits.max_uncompressed_size,
                    actual_value=context.uncompressed_total,
                )

        extension = extract_extension(name)
        if extension and extension in context.blocked:
            logger.warning("archive.entry_blocked", extra={"entry_name": name, "extension": extension})
            raise reject(
                RejectionKind.EXTENSION_BLOCKED,
                f"Archive contains a file with blocked extension '.{extension}': {name}",
                offending_name=name,
            )

    def _inspect_entry(
        self,
        entry: _EntryStream,
        context: ScanContext,
        *,
        name: str,
        compressed_hint: int | None,
        uncompressed_hint: int | None,
    ) -> None:
        descriptor = ArchiveEntryDescriptor(
            name=name,
            extension=extract_extension(name),
            compressed_size_hint=compressed_hint,
            uncompressed_size_hint=uncompressed_hint,
            sample=entry.read(self._limits.entry_sample_size),
        )
        mime = self._detector.detect(descriptor.sample, name)
        logger.debug(
            "archive.entry",
            extra={"entry_name": name, "detected_mime": mime, "depth": context.depth},
        )

        if is_native_executable(mime):
            logger.warning(
                "archive.executable_detected",
                extra={"entry_name": name, "detected_mime": mime},
            )
            raise reject(
                RejectionKind.EXECUTABLE_DETECTED,
                f"Archive contains an executable: {name} ({mime})",
                offending_name=name,
            )

        if ArchiveFormat.from_mime(mime) is ArchiveFormat.UNKNOWN:
            return

        if context.depth + 1 > self._limits.max_nesting_depth:
            logger.warning(
                "archive.too_deep",
                extra={"entry_name": name, "max_nesting_depth": self._limits.max_nesting_depth},
            )
            raise reject(
                RejectionKind.ARCHIVE_TOO_DEEP,
                f"Archives may be nested at most {self._limits.max_nesting_depth} level(s): {name}",
                offending_name=name,
                limit=self._limits.max_nesting_depth,
                actual_value=context.depth + 1,
            )

        with self._spool_entry(descriptor, entry) as (nested, nested_size), context.descend():
            self.inspect(nested, nested_size, context, archive_name=name)

    @contextmanager
    def _spool_entry(
        self,
        descriptor: ArchiveEntryDescriptor,
        entry: _EntryStream,
    ) -> Iterator[tuple[BinaryIO, int]]:
        """Copy a nested archive entry (sample plus remainder) to a bounded temporary file."""

        limit = self._limits.max_uncompressed_size
        with tempfile.SpooledTemporaryFile(max_size=self._limits.spool_max_memory) as spool:
            spool.write(descriptor.sample)
            size = len(descriptor.sample)
            while True:
                chunk = entry.read(_CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > limit:
                    raise reject(
                        RejectionKind.ARCHIVE_TOO_LARGE,
                        f"Nested archive exceeds {limit} bytes",
                        offending_name=descriptor.name,
                        limit=limit,
                        actual_value=size,
                    )
                spool.write(chunk)
            spool.seek(0)
            yield spool, size  # type: ignore[misc]
