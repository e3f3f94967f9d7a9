"""Tests for filename/extension gating."""

from __future__ import annotations

import pytest

from app.core.errors import RejectionKind, UploadRejectedError
from app.utils.extensions import extract_extension
from app.utils.file_validators import check_extension

MAX = 10 * 1024 * 1024
BLOCKED = frozenset({"bat", "exe"})


@pytest.mark.parametrize("filename", ["Makefile", "README", "   ", "", None, "archive."])
def test_missing_extension_is_always_rejected(filename):
    with pytest.raises(UploadRejectedError) as exc_info:
        check_extension(filename, 10, frozenset(), MAX)

    assert exc_info.value.kind is RejectionKind.EXTENSION_BLOCKED


def test_accepts_unblocked_extension():
    assert check_extension("report.txt", 1024, BLOCKED, MAX) == "txt"


def test_blocked_extension_names_the_extension():
    with pytest.raises(UploadRejectedError) as exc_info:
        check_extension("virus.bat", 100, BLOCKED, MAX)

    rejection = exc_info.value.rejection
    assert rejection.kind is RejectionKind.EXTENSION_BLOCKED
    assert rejection.offending_name == "bat"


@pytest.mark.parametrize(
    "filename",
    ["VIRUS.BAT", "virus.Bat", "  virus.bat  ", "invoice.pdf.bat", "dir/sub/virus.bat"],
)
def test_blocked_extension_matching_is_normalized(filename):
    with pytest.raises(UploadRejectedError) as exc_info:
        check_extension(filename, 100, BLOCKED, MAX)

    assert exc_info.value.rejection.offending_name == "bat"


def test_only_last_segment_counts():
    # "exe" in the middle is not the extension
    assert check_extension("setup.exe.txt", 100, BLOCKED, MAX) == "txt"


def test_declared_size_over_limit_is_rejected():
    with pytest.raises(UploadRejectedError) as exc_info:
        check_extension("big.txt", MAX + 1, BLOCKED, MAX)

    assert exc_info.value.kind is RejectionKind.SIZE_EXCEEDED


def test_declared_size_at_limit_is_accepted():
    assert check_extension("big.txt", MAX, BLOCKED, MAX) == "txt"


def test_unknown_declared_size_is_not_checked_here():
    assert check_extension("stream.txt", None, BLOCKED, MAX) == "txt"


def test_blocked_extension_wins_over_size():
    with pytest.raises(UploadRejectedError) as exc_info:
        check_extension("virus.bat", MAX + 1, BLOCKED, MAX)

    assert exc_info.value.kind is RejectionKind.EXTENSION_BLOCKED


@pytest.mark.parametrize(
    ("filename", "expected"),
    [
        ("report.final.PDF", "pdf"),
        ("  notes.txt ", "txt"),
        ("C:\\Users\\me\\run.CMD", "cmd"),
        (".bashrc", "bashrc"),
        ("v1.2/readme", ""),
    ],
)
def test_extract_extension(filename, expected):
    assert extract_extension(filename) == expected
