"""Stored-file writer interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO


class AbstractFileStorage(ABC):
    """Durable storage for accepted uploads."""

    @abstractmethod
    def save(self, space_id: int, stored_name: str, stream: BinaryIO) -> Path:
        """Write ``stream`` durably and return its location.

        Implementations must leave nothing behind when the write fails.

        Raises:
            StorageAppError: If the bytes cannot be written.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, path: Path) -> None:
        """Remove a stored artifact; a missing file is not an error.

        Raises:
            StorageAppError: If the file exists but cannot be removed.
        """
        raise NotImplementedError
