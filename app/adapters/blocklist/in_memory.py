"""In-memory blocked-extension repository.

Notes:
- Per-process only, like the other in-memory adapters.
- Thread-safe: uses a lock around shared state.
- Rules are never removed; they are soft-deactivated and reactivated.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol, runtime_checkable

from app.adapters.blocklist.base import AbstractBlockSetProvider
from app.core.errors import ValidationAppError
from app.utils.extensions import (
    MAX_EXTENSION_LENGTH,
    is_valid_extension_token,
    normalize_extension_token,
)

logger = logging.getLogger(__name__)

FIXED_EXTENSIONS: tuple[str, ...] = ("bat", "cmd", "com", "cpl", "exe", "js", "scr")

MAX_ACTIVE_CUSTOM_RULES = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@runtime_checkable
class SoftDeletable(Protocol):
    """Entities that are deactivated instead of deleted."""

    def is_active(self) -> bool: ...

    def deactivate(self, actor_id: str | None) -> None: ...

    def activate(self, actor_id: str | None) -> None: ...


class RuleOrigin(str, Enum):
    FIXED = "fixed"
    CUSTOM = "custom"


@dataclass
class BlockedExtensionRule:
    """One ``(space_id, extension)`` blocklist entry.

    Attributes:
        space_id: Owning workspace.
        extension: Lower-cased extension without the dot.
        origin: Seeded fixed rule or administrator-added custom rule.
        active: Whether the rule currently blocks uploads.
        created_by: Actor that created the rule.
        updated_by: Actor that last changed the rule.
    """

    space_id: int
    extension: str
    origin: RuleOrigin
    active: bool = True
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def is_active(self) -> bool:
        return self.active

    def deactivate(self, actor_id: str | None) -> None:
        self._set_active(False, actor_id)

    def activate(self, actor_id: str | None) -> None:
        self._set_active(True, actor_id)

    def _set_active(self, active: bool, actor_id: str | None) -> None:
        self.active = active
        self.updated_by = actor_id
        self.updated_at = _utcnow()


class InMemoryBlockedExtensionRepository(AbstractBlockSetProvider):
    """Blocklist store keyed by ``(space_id, extension)``."""

    def __init__(self, *, max_active_custom: int = MAX_ACTIVE_CUSTOM_RULES) -> None:
        if max_active_custom < 1:
            raise ValueError("max_active_custom must be >= 1")

        self._max_active_custom = max_active_custom
        self._lock = threading.RLock()
        self._rules: dict[int, dict[str, BlockedExtensionRule]] = {}

    def provision_space(self, space_id: int, *, actor_id: str | None) -> list[BlockedExtensionRule]:
        """Seed the fixed extensions of a new space, all inactive.

        Calling it again for an existing space leaves its rules untouched.
        """
        with self._lock:
            rules = self._rules.setdefault(space_id, {})
            for extension in FIXED_EXTENSIONS:
                if extension not in rules:
                    rules[extension] = BlockedExtensionRule(
                        space_id=space_id,
                        extension=extension,
                        origin=RuleOrigin.FIXED,
                        active=False,
                        created_by=actor_id,
                        updated_by=actor_id,
                    )
            logger.info("blocklist.space_provisioned", extra={"space_id": space_id})
            return [rules[ext] for ext in FIXED_EXTENSIONS]

    def get_blocked_extensions(self, space_id: int) -> frozenset[str]:
        with self._lock:
            rules = self._rules.get(space_id, {})
            return frozenset(ext for ext, rule in rules.items() if rule.is_active())

    def list_rules(self, space_id: int, *, origin: RuleOrigin | None = None) -> list[BlockedExtensionRule]:
        with self._lock:
            rules = self._rules.get(space_id, {}).values()
            return sorted(
                (rule for rule in rules if origin is None or rule.origin is origin),
                key=lambda rule: rule.extension,
            )

    def count_active_custom(self, space_id: int) -> int:
        with self._lock:
            return sum(
                1
                for rule in self._rules.get(space_id, {}).values()
                if rule.origin is RuleOrigin.CUSTOM and rule.is_active()
            )

    def set_fixed_active(
        self, space_id: int, extension: str, active: bool, *, actor_id: str | None
    ) -> BlockedExtensionRule:
        """Check or uncheck one of the seeded fixed extensions.

        Raises:
            ValidationAppError: If the extension is not a fixed rule of the space.
        """
        token = normalize_extension_token(extension)
        with self._lock:
            rule = self._rules.get(space_id, {}).get(token)
            if rule is None or rule.origin is not RuleOrigin.FIXED:
                raise ValidationAppError(
                    code="fixed_extension_not_found",
                    message=f"'{token}' is not a fixed extension of space {space_id}",
                )
            if active:
                rule.activate(actor_id)
            else:
                rule.deactivate(actor_id)
            logger.info(
                "blocklist.fixed_toggled",
                extra={"space_id": space_id, "extension": token, "active": active},
            )
            return rule

    def add_custom(self, space_id: int, extension: str, *, actor_id: str | None) -> BlockedExtensionRule:
        """Block a custom extension, reactivating an earlier rule if there is one.

        Raises:
            ValidationAppError: If the token is invalid, is a fixed extension,
                or the space already has the maximum number of active custom rules.
        """
        token = normalize_extension_token(extension)
        if not is_valid_extension_token(token):
            raise ValidationAppError(
                code="invalid_extension",
                message=(
                    f"Extensions must be 1-{MAX_EXTENSION_LENGTH} characters "
                    "of letters, digits, '.', '+' or '-'"
                ),
            )

        with self._lock:
            rules = self._rules.setdefault(space_id, {})
            existing = rules.get(token)
            if existing is not None and existing.origin is RuleOrigin.FIXED:
                raise ValidationAppError(
                    code="extension_is_fixed",
                    message=f"'{token}' is a fixed extension; toggle it instead",
                )
            if existing is not None and existing.is_active():
                return existing

            if self.count_active_custom(space_id) >= self._max_active_custom:
                raise ValidationAppError(
                    code="custom_extension_limit",
                    message=f"A space can block at most {self._max_active_custom} custom extensions",
                    details={"limit": self._max_active_custom},
                )

            if existing is not None:
                existing.activate(actor_id)
                rule = existing
            else:
                rule = BlockedExtensionRule(
                    space_id=space_id,
                    extension=token,
                    origin=RuleOrigin.CUSTOM,
                    created_by=actor_id,
                    updated_by=actor_id,
                )
                rules[token] = rule

            logger.info("blocklist.custom_added", extra={"space_id": space_id, "extension": token})
            return rule

    def deactivate_custom(self, space_id: int, extension: str, *, actor_id: str | None) -> BlockedExtensionRule:
        """Soft-delete a custom rule.

        Raises:
            ValidationAppError: If no custom rule exists for the extension.
        """
        token = normalize_extension_token(extension)
        with self._lock:
            rule = self._rules.get(space_id, {}).get(token)
            if rule is None or rule.origin is not RuleOrigin.CUSTOM:
                raise ValidationAppError(
                    code="custom_extension_not_found",
                    message=f"'{token}' is not a custom extension of space {space_id}",
                )
            rule.deactivate(actor_id)
            logger.info("blocklist.custom_removed", extra={"space_id": space_id, "extension": token})
            return rule
