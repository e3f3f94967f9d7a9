"""Content detection adapters.

Signature detection sits behind an abstract interface so the pipeline can
run on the pure-Python ``filetype`` backend and later move to another
detector without changing the gates.
"""

from app.adapters.detection.base import AbstractContentDetector
from app.adapters.detection.filetype_detector import FiletypeContentDetector

__all__ = [
    "AbstractContentDetector",
    "FiletypeContentDetector",
]
