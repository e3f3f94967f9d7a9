"""Blocked-extension adapters.

The pipeline depends on ``AbstractBlockSetProvider`` only, so the in-memory
repository can later be replaced by a database-backed one.
"""

from app.adapters.blocklist.base import AbstractBlockSetProvider
from app.adapters.blocklist.in_memory import (
    FIXED_EXTENSIONS,
    BlockedExtensionRule,
    InMemoryBlockedExtensionRepository,
    RuleOrigin,
    SoftDeletable,
)

__all__ = [
    "AbstractBlockSetProvider",
    "BlockedExtensionRule",
    "FIXED_EXTENSIONS",
    "InMemoryBlockedExtensionRepository",
    "RuleOrigin",
    "SoftDeletable",
]
