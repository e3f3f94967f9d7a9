"""File record sink interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from app.schemas.files import StoredFileRecord


class AbstractFileRecordSink(ABC):
    """Where accepted uploads are recorded once their bytes are on disk."""

    @abstractmethod
    def persist(self, record: StoredFileRecord) -> StoredFileRecord:
        """Store a record and return it with its assigned ``file_id``."""
        raise NotImplementedError
