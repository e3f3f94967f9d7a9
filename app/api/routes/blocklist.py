from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Path, status

from app.adapters.blocklist.in_memory import InMemoryBlockedExtensionRepository
from app.api.dependencies import get_blocklist_repository
from app.schemas.blocklist import (
    BlockedExtensionRuleResponse,
    CustomExtensionRequest,
    FixedExtensionToggleRequest,
)

router = APIRouter(prefix="/spaces/{space_id}/blocked-extensions", tags=["Blocklist"])


def _provisioned(
    repo: InMemoryBlockedExtensionRepository, space_id: int, actor_id: str | None
) -> InMemoryBlockedExtensionRepository:
    # Spaces are seeded on first use; provisioning an existing space is a no-op.
    repo.provision_space(space_id, actor_id=actor_id)
    return repo


@router.get("", response_model=list[BlockedExtensionRuleResponse])
def list_blocked_extensions(
    space_id: int = Path(..., ge=1),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
    repo: InMemoryBlockedExtensionRepository = Depends(get_blocklist_repository),
) -> list[BlockedExtensionRuleResponse]:
    """List the fixed and custom rules of a workspace, active or not."""

    rules = _provisioned(repo, space_id, actor_id).list_rules(space_id)
    return [BlockedExtensionRuleResponse.model_validate(rule) for rule in rules]


@router.put("/fixed/{extension}", response_model=BlockedExtensionRuleResponse)
def toggle_fixed_extension(
    request: FixedExtensionToggleRequest,
    space_id: int = Path(..., ge=1),
    extension: str = Path(..., max_length=64),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
    repo: InMemoryBlockedExtensionRepository = Depends(get_blocklist_repository),
) -> BlockedExtensionRuleResponse:
    """Check or uncheck one of the fixed extensions.

    Unknown fixed extensions are answered with ``fixed_extension_not_found``.
    """
    rule = _provisioned(repo, space_id, actor_id).set_fixed_active(
        space_id, extension, request.active, actor_id=actor_id
    )
    return BlockedExtensionRuleResponse.model_validate(rule)


@router.post(
    "/custom",
    response_model=BlockedExtensionRuleResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_custom_extension(
    request: CustomExtensionRequest,
    space_id: int = Path(..., ge=1),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
    repo: InMemoryBlockedExtensionRepository = Depends(get_blocklist_repository),
) -> BlockedExtensionRuleResponse:
    """Block a custom extension (or reactivate a removed one).

    Invalid tokens, fixed extensions and a full custom list are answered
    with 400 and the repository's error code.
    """
    rule = _provisioned(repo, space_id, actor_id).add_custom(
        space_id, request.extension, actor_id=actor_id
    )
    return BlockedExtensionRuleResponse.model_validate(rule)


@router.delete("/custom/{extension}", response_model=BlockedExtensionRuleResponse)
def remove_custom_extension(
    space_id: int = Path(..., ge=1),
    extension: str = Path(..., max_length=64),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
    repo: InMemoryBlockedExtensionRepository = Depends(get_blocklist_repository),
) -> BlockedExtensionRuleResponse:
    """Deactivate a custom rule; the rule is kept and can be added again."""

    rule = _provisioned(repo, space_id, actor_id).deactivate_custom(
        space_id, extension, actor_id=actor_id
    )
    return BlockedExtensionRuleResponse.model_validate(rule)
