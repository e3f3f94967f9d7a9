"""Filename extension helpers shared by the gates and the blocklist."""

from __future__ import annotations

import re

MAX_EXTENSION_LENGTH = 20

_EXTENSION_TOKEN_RE = re.compile(r"^[a-z0-9.+-]+$")

ARCHIVE_EXTENSIONS = frozenset({"zip", "tar", "gz", "tgz", "7z"})


def extract_extension(filename: str | None) -> str:
    """Return the lower-cased text after the last dot of a filename.

    Leading/trailing whitespace is trimmed and any directory part (``/`` or
    ``\\`` separated, as found in archive entry names) is ignored. A name
    without a dot yields the empty extension.

    Examples:
        >>> extract_extension("report.final.PDF")
        'pdf'
        >>> extract_extension("  notes.txt ")
        'txt'
        >>> extract_extension("Makefile")
        ''
    """
    if not filename:
        return ""
    name = filename.strip().replace("\\", "/").rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1].strip().lower()


def normalize_extension_token(token: str | None) -> str:
    """Normalize a user-supplied extension token (``".EXE "`` -> ``"exe"``)."""

    if not token:
        return ""
    return token.strip().lstrip(".").lower()


def is_valid_extension_token(token: str) -> bool:
    """Check a normalized token against the blocklist charset and length rules."""

    return 0 < len(token) <= MAX_EXTENSION_LENGTH and bool(_EXTENSION_TOKEN_RE.match(token))


def is_archive_extension(extension: str) -> bool:
    return extension in ARCHIVE_EXTENSIONS
