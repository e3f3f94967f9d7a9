"""Signature detector backed by the ``filetype`` package.

``filetype`` recognises binary container formats (images, documents,
archives, PE and ELF executables) by magic numbers. It has no notion of
Mach-O binaries or of text scripts, which carry no fixed signature, so
those are classified here from their leading bytes: Mach-O magic words,
interpreter lines (``#!``), ``<?php`` openers and batch-file preambles.
"""

from __future__ import annotations

import logging
import mimetypes
import posixpath

import filetype

from app.adapters.detection.base import AbstractContentDetector

logger = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"
EMPTY = "application/x-empty"
TEXT_PLAIN = "text/plain"

_MACHO_MAGICS = (
    b"\xfe\xed\xfa\xce",
    b"\xce\xfa\xed\xfe",
    b"\xfe\xed\xfa\xcf",
    b"\xcf\xfa\xed\xfe",
)

_UTF8_BOM = b"\xef\xbb\xbf"

# Interpreter basename (or prefix) -> MIME reported for scripts using it
_INTERPRETER_MIME = {
    "sh": "text/x-shellscript",
    "bash": "text/x-shellscript",
    "dash": "text/x-shellscript",
    "ash": "text/x-shellscript",
    "zsh": "text/x-shellscript",
    "ksh": "text/x-shellscript",
    "csh": "text/x-shellscript",
    "tcsh": "text/x-shellscript",
    "fish": "text/x-shellscript",
    "php": "application/x-php",
    "perl": "text/x-perl",
    "ruby": "text/x-ruby",
    "node": "application/javascript",
    "nodejs": "application/javascript",
    "pwsh": "application/x-powershell",
    "python": "text/x-python",
}


def _interpreter_from_shebang(first_line: bytes) -> str | None:
    """Extract the interpreter name from a ``#!`` line."""

    parts = first_line[2:].decode("utf-8", errors="replace").split()
    if not parts:
        return None
    program = posixpath.basename(parts[0])
    if program == "env":
        # "#!/usr/bin/env -S bash -e": first non-option argument is the interpreter
        args = [p for p in parts[1:] if not p.startswith("-")]
        if not args:
            return None
        program = posixpath.basename(args[0])
    return program.lower()


def _script_mime(sample: bytes) -> str | None:
    """Classify text scripts that have no binary signature."""

    head = sample[len(_UTF8_BOM):] if sample.startswith(_UTF8_BOM) else sample
    stripped = head.lstrip()

    if head.startswith(b"#!"):
        first_line = head.split(b"\n", 1)[0].rstrip(b"\r")
        interpreter = _interpreter_from_shebang(first_line)
        if interpreter is None:
            return "text/x-script"
        if interpreter in _INTERPRETER_MIME:
            return _INTERPRETER_MIME[interpreter]
        for prefix in ("python", "php", "perl", "ruby"):
            if interpreter.startswith(prefix):
                return _INTERPRETER_MIME[prefix]
        return "text/x-script"

    lowered = stripped[:64].lower()
    if lowered.startswith(b"<?php") or lowered.startswith(b"<?="):
        return "application/x-php"
    if lowered.startswith((b"@echo off", b"@echo on", b"@rem ", b"rem ")):
        return "application/x-bat"
    if lowered.startswith((b"<!doctype html", b"<html")):
        return "text/html"
    return None


def _looks_like_text(sample: bytes) -> bool:
    if b"\x00" in sample:
        return False
    try:
        sample.decode("utf-8")
    except UnicodeDecodeError as exc:
        # A multi-byte sequence cut by the sample boundary is still text.
        return exc.reason == "unexpected end of data" and exc.start >= len(sample) - 3
    return True


class FiletypeContentDetector(AbstractContentDetector):
    """Detect content types from magic numbers, then from script preambles."""

    def __init__(self) -> None:
        # Built-in tables only: /etc/mime.types differs between hosts.
        self._mimetypes = mimetypes.MimeTypes()

    def detect(self, sample: bytes, filename: str | None = None) -> str:
        if not sample:
            return EMPTY

        if sample[:4] in _MACHO_MAGICS:
            return "application/x-mach-binary"

        kind = filetype.guess(sample)
        if kind is not None:
            return kind.mime

        script = _script_mime(sample)
        if script is not None:
            return script

        if not _looks_like_text(sample):
            return OCTET_STREAM

        if filename:
            hinted, _ = self._mimetypes.guess_type(filename, strict=False)
            if hinted and hinted.startswith("text/"):
                return hinted
        return TEXT_PLAIN

    def expected_mime_for_extension(self, extension: str) -> str | None:
        if not extension:
            return None
        mime, _ = self._mimetypes.guess_type(f"file.{extension}", strict=False)
        logger.debug(
            "detector.expected_mime",
            extra={"extension": extension, "expected_mime": mime},
        )
        return mime
