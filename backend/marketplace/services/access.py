"""Ownership checks for lifecycle actions. Pure, no DB access.

Every check either returns or raises ForbiddenError; none of them
silently skip.
"""

from marketplace.services.errors import ForbiddenError
from marketplace.services.state_machine import ApplicationStatus

# role → attribute names that carry that party's user id, in lookup order
_OWNER_ATTRS: dict[str, tuple[str, ...]] = {
    "brand": ("brand_owner_id", "brand_user_id"),
    "creator": ("creator_owner_id", "creator_user_id"),
}

_BRAND_APPLICATION_TARGETS = frozenset({
    ApplicationStatus.UNDER_REVIEW,
    ApplicationStatus.SHORTLISTED,
    ApplicationStatus.HIRED,
    ApplicationStatus.REJECTED,
})
_CREATOR_APPLICATION_TARGETS = frozenset({ApplicationStatus.WITHDRAWN})


def owner_id_for(entity, role: str) -> int | None:
    for attr in _OWNER_ATTRS.get(role, ()):
        if hasattr(entity, attr):
            return getattr(entity, attr)
    return None


def assert_owner(entity, acting_user_id: int, role: str) -> None:
    """Raise ForbiddenError unless ``acting_user_id`` is the entity's ``role`` party."""
    owner_id = owner_id_for(entity, role)
    if owner_id is None or owner_id != acting_user_id:
        raise ForbiddenError(
            f"Only the {role} of this {type(entity).__name__.lower()} can perform this action"
        )


def assert_campaign_owner(campaign, acting_user_id: int) -> None:
    assert_owner(campaign, acting_user_id, "brand")


def assert_can_transition_application(
    application, campaign, acting_user_id: int, target: str
) -> None:
    """Brand owner of the campaign moves the application forward or rejects it;
    only the applying creator may withdraw.
    """
    if target in _BRAND_APPLICATION_TARGETS:
        assert_owner(campaign, acting_user_id, "brand")
    elif target in _CREATOR_APPLICATION_TARGETS:
        assert_owner(application, acting_user_id, "creator")
    elif acting_user_id not in (campaign.brand_owner_id, application.creator_owner_id):
        # unreachable targets are left to the guard, outsiders still get 403
        raise ForbiddenError("You are not a party to this application")


def assert_application_party(application, campaign, acting_user_id: int) -> str:
    """Return ``"brand"`` or ``"creator"`` for a party to the application."""
    if acting_user_id == campaign.brand_owner_id:
        return "brand"
    if acting_user_id == application.creator_owner_id:
        return "creator"
    raise ForbiddenError("You are not a party to this application")


def assert_contract_party(contract, acting_user_id: int) -> str:
    """Return ``"brand"`` or ``"creator"`` for a contract party."""
    if acting_user_id == contract.brand_user_id:
        return "brand"
    if acting_user_id == contract.creator_user_id:
        return "creator"
    raise ForbiddenError("You are not a party to this contract")


def assert_admin(role: str | None) -> None:
    if role != "admin":
        raise ForbiddenError("Only an administrator can perform this action")
