"""Marketplace transition guard. Pure logic, no DB dependency.

Defines the status sets of every lifecycle entity, their allowed
transitions, terminal states, and helpers for validation and discovery
of the next legal statuses.
"""

from enum import StrEnum

from marketplace.services.errors import InvalidTransitionError


class EntityType(StrEnum):
    CAMPAIGN = "campaign"
    APPLICATION = "application"
    CONTRACT = "contract"
    MILESTONE = "milestone"
    ESCROW = "escrow"
    PAYMENT = "payment"


class CampaignStatus(StrEnum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class ApplicationStatus(StrEnum):
    APPLIED = "APPLIED"
    UNDER_REVIEW = "UNDER_REVIEW"
    SHORTLISTED = "SHORTLISTED"
    HIRED = "HIRED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"


class ContractStatus(StrEnum):
    DRAFT = "DRAFT"
    PENDING_CREATOR_SIGNATURE = "PENDING_CREATOR_SIGNATURE"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class MilestoneStatus(StrEnum):
    PENDING = "PENDING"
    READY = "READY"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class MilestoneTrigger(StrEnum):
    CONTRACT_SIGNED = "CONTRACT_SIGNED"
    MANUAL = "MANUAL"
    DATE = "DATE"
    DELIVERABLE_APPROVED = "DELIVERABLE_APPROVED"


class EscrowStatus(StrEnum):
    PENDING_DEPOSIT = "PENDING_DEPOSIT"
    FUNDED = "FUNDED"
    PARTIALLY_RELEASED = "PARTIALLY_RELEASED"
    FULLY_RELEASED = "FULLY_RELEASED"
    REFUNDED = "REFUNDED"
    DISPUTED = "DISPUTED"


class PaymentStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


_S = CampaignStatus
CAMPAIGN_TRANSITIONS: dict[CampaignStatus, frozenset[CampaignStatus]] = {
    _S.DRAFT: frozenset({_S.PUBLISHED, _S.CANCELLED}),
    _S.PUBLISHED: frozenset({_S.PAUSED, _S.COMPLETED, _S.CANCELLED}),
    _S.PAUSED: frozenset({_S.PUBLISHED, _S.COMPLETED, _S.CANCELLED}),
    _S.COMPLETED: frozenset(),
    _S.CANCELLED: frozenset(),
}

_A = ApplicationStatus
APPLICATION_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    _A.APPLIED: frozenset({_A.UNDER_REVIEW, _A.REJECTED, _A.WITHDRAWN}),
    _A.UNDER_REVIEW: frozenset({_A.SHORTLISTED, _A.REJECTED, _A.WITHDRAWN}),
    _A.SHORTLISTED: frozenset({_A.HIRED, _A.REJECTED, _A.WITHDRAWN}),
    _A.HIRED: frozenset(),
    _A.REJECTED: frozenset(),
    _A.WITHDRAWN: frozenset(),
}

_C = ContractStatus
CONTRACT_TRANSITIONS: dict[ContractStatus, frozenset[ContractStatus]] = {
    _C.DRAFT: frozenset({_C.PENDING_CREATOR_SIGNATURE, _C.CANCELLED}),
    _C.PENDING_CREATOR_SIGNATURE: frozenset({_C.ACTIVE, _C.CANCELLED}),
    _C.ACTIVE: frozenset({_C.COMPLETED, _C.CANCELLED}),
    _C.COMPLETED: frozenset(),
    _C.CANCELLED: frozenset(),
}

_M = MilestoneStatus
MILESTONE_TRANSITIONS: dict[MilestoneStatus, frozenset[MilestoneStatus]] = {
    _M.PENDING: frozenset({_M.READY, _M.CANCELLED}),
    _M.READY: frozenset({_M.PAID, _M.CANCELLED}),
    _M.PAID: frozenset(),
    _M.CANCELLED: frozenset(),
}

_E = EscrowStatus
ESCROW_TRANSITIONS: dict[EscrowStatus, frozenset[EscrowStatus]] = {
    _E.PENDING_DEPOSIT: frozenset({_E.FUNDED}),
    _E.FUNDED: frozenset(
        {_E.PARTIALLY_RELEASED, _E.FULLY_RELEASED, _E.REFUNDED, _E.DISPUTED}
    ),
    _E.PARTIALLY_RELEASED: frozenset({_E.FULLY_RELEASED, _E.REFUNDED, _E.DISPUTED}),
    _E.FULLY_RELEASED: frozenset(),
    _E.REFUNDED: frozenset(),
    # Dispute resolution paths
    _E.DISPUTED: frozenset({_E.FUNDED, _E.PARTIALLY_RELEASED, _E.REFUNDED}),
}

_P = PaymentStatus
PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    _P.PENDING: frozenset({_P.PROCESSING, _P.COMPLETED, _P.FAILED}),
    _P.PROCESSING: frozenset({_P.COMPLETED, _P.FAILED}),
    _P.COMPLETED: frozenset(),
    _P.FAILED: frozenset(),
}

# entity type → (status enum, transition table)
_TABLES: dict[EntityType, tuple[type[StrEnum], dict]] = {
    EntityType.CAMPAIGN: (CampaignStatus, CAMPAIGN_TRANSITIONS),
    EntityType.APPLICATION: (ApplicationStatus, APPLICATION_TRANSITIONS),
    EntityType.CONTRACT: (ContractStatus, CONTRACT_TRANSITIONS),
    EntityType.MILESTONE: (MilestoneStatus, MILESTONE_TRANSITIONS),
    EntityType.ESCROW: (EscrowStatus, ESCROW_TRANSITIONS),
    EntityType.PAYMENT: (PaymentStatus, PAYMENT_TRANSITIONS),
}

TERMINAL_STATUSES: dict[EntityType, frozenset[str]] = {
    entity_type: frozenset(status for status, targets in table.items() if not targets)
    for entity_type, (_, table) in _TABLES.items()
}


def _lookup(entity_type: str, status: str):
    try:
        status_enum, table = _TABLES[EntityType(entity_type)]
        return status_enum(status), table
    except (KeyError, ValueError):
        return None, None


def is_allowed(entity_type: str, current: str, requested: str) -> bool:
    """Return True if ``current → requested`` is in the table for the entity type.

    Unknown entity types and unknown statuses are never allowed.
    """
    current_status, table = _lookup(entity_type, current)
    if current_status is None:
        return False
    return requested in table[current_status]


def validate_transition(entity_type: str, current: str, requested: str) -> str:
    """Return the requested status if the move is legal.

    Raises InvalidTransitionError otherwise.
    """
    if not is_allowed(entity_type, current, requested):
        raise InvalidTransitionError(entity_type, current, requested)
    return requested


def get_allowed_transitions(entity_type: str, current: str) -> list[str]:
    """Return the statuses reachable in one step, sorted for stable output."""
    current_status, table = _lookup(entity_type, current)
    if current_status is None:
        return []
    return sorted(status.value for status in table[current_status])


def is_terminal(entity_type: str, status: str) -> bool:
    try:
        return status in TERMINAL_STATUSES[EntityType(entity_type)]
    except ValueError:
        return False
