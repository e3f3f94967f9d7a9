"""Blocked-extension provider interface.

The upload pipeline only needs the set of currently active blocked
extensions of a space, fetched fresh for every upload.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class AbstractBlockSetProvider(ABC):
    """Interface for blocklist backends."""

    @abstractmethod
    def get_blocked_extensions(self, space_id: int) -> frozenset[str]:
        """Return the active blocked extensions of a space.

        Args:
            space_id: Workspace identifier.

        Returns:
            Lower-cased extensions without the leading dot. Unknown spaces
            yield an empty set.
        """
        raise NotImplementedError
