"""Content detector interface.

The defense pipeline classifies uploads by their bytes, not their names.
Services depend on this abstraction so the signature backend can be swapped
(e.g., for a libmagic-based detector) without touching the gates.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class AbstractContentDetector(ABC):
    """Interface for signature/magic-number detectors."""

    @abstractmethod
    def detect(self, sample: bytes, filename: str | None = None) -> str:
        """Classify a content sample.

        Args:
            sample: Leading bytes of the content (bounded by the caller).
            filename: Optional name used only to refine ambiguous text content.

        Returns:
            MIME-like type string (``application/octet-stream`` when unknown).
        """
        raise NotImplementedError

    @abstractmethod
    def expected_mime_for_extension(self, extension: str) -> str | None:
        """Return the MIME type a file carrying ``extension`` would be expected to have.

        Args:
            extension: Lower-cased extension without the leading dot.

        Returns:
            MIME type string, or None when the extension is unknown.
        """
        raise NotImplementedError
