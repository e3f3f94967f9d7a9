"""In-memory file record sink (per-process, thread-safe)."""

from __future__ import annotations

import itertools
import threading

from app.adapters.records.base import AbstractFileRecordSink
from app.schemas.files import StoredFileRecord


class InMemoryFileRecordSink(AbstractFileRecordSink):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._records: dict[int, StoredFileRecord] = {}

    def persist(self, record: StoredFileRecord) -> StoredFileRecord:
        with self._lock:
            file_id = next(self._ids)
            stored = record.model_copy(update={"file_id": file_id})
            self._records[file_id] = stored
            return stored

    def get(self, file_id: int) -> StoredFileRecord | None:
        with self._lock:
            return self._records.get(file_id)

    def list_for_space(self, space_id: int) -> list[StoredFileRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.space_id == space_id]
