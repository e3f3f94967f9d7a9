"""Content categories and the equivalence relation used for disguise detection.

A blocked extension is "expected" to produce a certain category of content.
An upload is disguised when its detected category is equivalent to the
expected category of any blocked extension. Equivalence is data-driven:

1. Named families (shell scripts, batch files, PHP, native executables...)
   group the many vendor-specific MIME strings a detector may report for
   the same kind of content. When either side belongs to a family, the two
   are equivalent only if they belong to the same family.
2. Otherwise, identical MIME types are equivalent.
3. Otherwise, media types sharing a coarse top-level type in
   ``COARSE_TOP_LEVELS`` (``text/*``, ``image/*``, ``audio/*``, ``video/*``)
   are equivalent.

Unknown content (``application/octet-stream``, empty content) is never
equivalent to anything.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from app.adapters.detection.base import AbstractContentDetector


class ContentFamily(str, Enum):
    SHELL_SCRIPT = "shell-script"
    BATCH_SCRIPT = "batch-script"
    PHP_SCRIPT = "php-script"
    POWERSHELL_SCRIPT = "powershell-script"
    PYTHON_SCRIPT = "python-script"
    PERL_SCRIPT = "perl-script"
    RUBY_SCRIPT = "ruby-script"
    JAVASCRIPT = "javascript"
    VBSCRIPT = "vbscript"
    HTML = "html"
    WINDOWS_EXECUTABLE = "windows-executable"
    ELF_BINARY = "elf-binary"
    MACHO_BINARY = "macho-binary"


FAMILY_BY_EXTENSION: dict[str, ContentFamily] = {
    **dict.fromkeys(
        ("sh", "bash", "zsh", "ksh", "csh", "tcsh", "dash", "command"),
        ContentFamily.SHELL_SCRIPT,
    ),
    **dict.fromkeys(("bat", "cmd", "btm"), ContentFamily.BATCH_SCRIPT),
    **dict.fromkeys(
        ("php", "php3", "php4", "php5", "php7", "phtml", "phar", "phps"),
        ContentFamily.PHP_SCRIPT,
    ),
    **dict.fromkeys(("ps1", "psm1", "psd1"), ContentFamily.POWERSHELL_SCRIPT),
    **dict.fromkeys(("py", "pyw"), ContentFamily.PYTHON_SCRIPT),
    **dict.fromkeys(("pl", "pm"), ContentFamily.PERL_SCRIPT),
    "rb": ContentFamily.RUBY_SCRIPT,
    **dict.fromkeys(("js", "mjs", "cjs", "jse"), ContentFamily.JAVASCRIPT),
    **dict.fromkeys(("vbs", "vbe"), ContentFamily.VBSCRIPT),
    **dict.fromkeys(("html", "htm", "xhtml"), ContentFamily.HTML),
    **dict.fromkeys(
        ("exe", "dll", "com", "scr", "cpl", "sys", "ocx", "drv", "efi"),
        ContentFamily.WINDOWS_EXECUTABLE,
    ),
    **dict.fromkeys(("elf", "so", "ko", "axf"), ContentFamily.ELF_BINARY),
    "dylib": ContentFamily.MACHO_BINARY,
}

FAMILY_BY_MIME: dict[str, ContentFamily] = {
    **dict.fromkeys(
        ("application/x-sh", "application/x-shellscript", "text/x-sh", "text/x-shellscript",
         "application/x-csh", "text/x-csh"),
        ContentFamily.SHELL_SCRIPT,
    ),
    **dict.fromkeys(
        ("application/x-bat", "application/bat", "application/x-msdos-program",
         "text/x-msdos-batch", "application/x-msdos-batch"),
        ContentFamily.BATCH_SCRIPT,
    ),
    **dict.fromkeys(
        ("application/x-php", "application/x-httpd-php", "text/x-php", "application/php"),
        ContentFamily.PHP_SCRIPT,
    ),
    **dict.fromkeys(
        ("application/x-powershell", "text/x-powershell"),
        ContentFamily.POWERSHELL_SCRIPT,
    ),
    **dict.fromkeys(
        ("text/x-python", "application/x-python", "text/x-script.python",
         "application/x-python-code"),
        ContentFamily.PYTHON_SCRIPT,
    ),
    **dict.fromkeys(("text/x-perl", "application/x-perl"), ContentFamily.PERL_SCRIPT),
    **dict.fromkeys(("text/x-ruby", "application/x-ruby"), ContentFamily.RUBY_SCRIPT),
    **dict.fromkeys(
        ("application/javascript", "text/javascript", "application/x-javascript",
         "application/ecmascript", "text/ecmascript"),
        ContentFamily.JAVASCRIPT,
    ),
    **dict.fromkeys(("text/vbscript", "application/x-vbscript"), ContentFamily.VBSCRIPT),
    **dict.fromkeys(("text/html", "application/xhtml+xml"), ContentFamily.HTML),
    **dict.fromkeys(
        ("application/x-msdownload", "application/x-dosexec",
         "application/vnd.microsoft.portable-executable", "application/x-ms-dos-executable"),
        ContentFamily.WINDOWS_EXECUTABLE,
    ),
    **dict.fromkeys(
        ("application/x-executable", "application/x-elf", "application/x-sharedlib",
         "application/x-pie-executable"),
        ContentFamily.ELF_BINARY,
    ),
    "application/x-mach-binary": ContentFamily.MACHO_BINARY,
}

# MIME reported for a family when an extension is known only through the table
CANONICAL_MIME: dict[ContentFamily, str] = {
    ContentFamily.SHELL_SCRIPT: "application/x-sh",
    ContentFamily.BATCH_SCRIPT: "application/x-bat",
    ContentFamily.PHP_SCRIPT: "application/x-php",
    ContentFamily.POWERSHELL_SCRIPT: "application/x-powershell",
    ContentFamily.PYTHON_SCRIPT: "text/x-python",
    ContentFamily.PERL_SCRIPT: "text/x-perl",
    ContentFamily.RUBY_SCRIPT: "text/x-ruby",
    ContentFamily.JAVASCRIPT: "text/javascript",
    ContentFamily.VBSCRIPT: "text/vbscript",
    ContentFamily.HTML: "text/html",
    ContentFamily.WINDOWS_EXECUTABLE: "application/x-msdownload",
    ContentFamily.ELF_BINARY: "application/x-executable",
    ContentFamily.MACHO_BINARY: "application/x-mach-binary",
}

NATIVE_EXECUTABLE_MIMES = frozenset(
    {
        "application/x-msdownload",
        "application/x-dosexec",
        "application/vnd.microsoft.portable-executable",
        "application/x-ms-dos-executable",
        "application/x-executable",
        "application/x-elf",
        "application/x-pie-executable",
        "application/x-sharedlib",
        "application/x-mach-binary",
    }
)

UNKNOWN_MIMES = frozenset({"application/octet-stream", "application/x-empty", ""})

COARSE_TOP_LEVELS = frozenset({"text", "image", "audio", "video"})


@dataclass(frozen=True)
class ContentCategory:
    """A detected or expected content type with its optional family tag."""

    mime: str
    family: ContentFamily | None = None

    @property
    def top_level(self) -> str:
        return self.mime.split("/", 1)[0]

    @property
    def is_known(self) -> bool:
        return self.mime not in UNKNOWN_MIMES


def category_for_mime(mime: str | None) -> ContentCategory:
    """Wrap a detector MIME string in a ``ContentCategory``."""

    normalized = (mime or "").split(";", 1)[0].strip().lower()
    return ContentCategory(mime=normalized, family=FAMILY_BY_MIME.get(normalized))


def expected_category(extension: str, detector: AbstractContentDetector) -> ContentCategory | None:
    """Category a file named ``file.<extension>`` is expected to have.

    Table entries take precedence over the detector's filename database,
    whose answers for script extensions are often a generic ``text/plain``.

    Returns:
        The expected category, or None when the extension is unknown.
    """
    family = FAMILY_BY_EXTENSION.get(extension)
    if family is not None:
        return ContentCategory(mime=CANONICAL_MIME[family], family=family)

    mime = detector.expected_mime_for_extension(extension)
    if not mime:
        return None
    category = category_for_mime(mime)
    return category if category.is_known else None


def categories_equivalent(detected: ContentCategory, expected: ContentCategory) -> bool:
    """Apply the equivalence relation described in the module docstring."""

    if not detected.is_known or not expected.is_known:
        return False
    if detected.family is not None or expected.family is not None:
        return detected.family == expected.family
    if detected.mime == expected.mime:
        return True
    return detected.top_level == expected.top_level and detected.top_level in COARSE_TOP_LEVELS


def is_native_executable(mime: str | None) -> bool:
    """True for PE, ELF and Mach-O executables and shared libraries."""

    return category_for_mime(mime).mime in NATIVE_EXECUTABLE_MIMES
