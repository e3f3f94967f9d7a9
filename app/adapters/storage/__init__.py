"""Storage adapters for accepted uploads."""

from app.adapters.storage.base import AbstractFileStorage
from app.adapters.storage.local import LocalFileStorage

__all__ = ["AbstractFileStorage", "LocalFileStorage"]
