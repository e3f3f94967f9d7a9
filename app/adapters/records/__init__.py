"""File record adapters."""

from app.adapters.records.base import AbstractFileRecordSink
from app.adapters.records.in_memory import InMemoryFileRecordSink

__all__ = ["AbstractFileRecordSink", "InMemoryFileRecordSink"]
