import logging
import secrets
import string
import time
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.schemas import ContractCreate
from marketplace.db.base import utcnow
from marketplace.models.application import Application
from marketplace.models.campaign import Campaign
from marketplace.models.contract import Contract, Milestone
from marketplace.services.access import (
    assert_campaign_owner,
    assert_contract_party,
    assert_owner,
)
from marketplace.services.application import get_application_for_update
from marketplace.services.audit import log_audit
from marketplace.services.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from marketplace.services.fees import round_money
from marketplace.services.lifecycle import run_atomic
from marketplace.services.notification import notify_transition
from marketplace.services.state_machine import (
    ApplicationStatus,
    ContractStatus,
    EntityType,
    MilestoneStatus,
    MilestoneTrigger,
    validate_transition,
)

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase
_CANCELLABLE_MILESTONES = frozenset({MilestoneStatus.PENDING, MilestoneStatus.READY})


def _base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_contract_number() -> str:
    """``MKI-`` + base36 millisecond timestamp + 4 random base36 chars."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"MKI-{_base36(int(time.time() * 1000))}{suffix}"


def _check_money(amount: Decimal, currency: str, label: str) -> None:
    # Numeric(12, 2) would silently truncate finer amounts
    if amount <= 0 or round_money(amount, currency) != amount:
        raise ValidationError(
            f"{label} must be a positive amount in whole {currency} minor units, got {amount}"
        )


async def get_contract_for_update(db: AsyncSession, contract_id: int) -> Contract:
    result = await db.execute(
        select(Contract)
        .where(Contract.id == contract_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    contract = result.scalar_one_or_none()
    if contract is None:
        raise NotFoundError("Contract not found")
    return contract


async def get_contract(db: AsyncSession, contract_id: int, acting_user_id: int) -> Contract:
    """Read a contract with its milestones; parties only."""
    result = await db.execute(
        select(Contract)
        .where(Contract.id == contract_id)
        .execution_options(populate_existing=True)
    )
    contract = result.scalar_one_or_none()
    if contract is None:
        raise NotFoundError("Contract not found")
    assert_contract_party(contract, acting_user_id)
    return contract


async def get_milestone_for_update(db: AsyncSession, milestone_id: int) -> Milestone:
    result = await db.execute(
        select(Milestone)
        .where(Milestone.id == milestone_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    milestone = result.scalar_one_or_none()
    if milestone is None:
        raise NotFoundError("Milestone not found")
    return milestone


async def _get_contract_for_application(db: AsyncSession, application_id: int) -> Contract | None:
    result = await db.execute(
        select(Contract).where(Contract.application_id == application_id)
    )
    return result.scalar_one_or_none()


async def create_contract(
    db: AsyncSession, acting_user_id: int, data: ContractCreate
) -> Contract:
    """Create a DRAFT contract and its PENDING milestones for a HIRED application.

    The unique constraint on ``application_id`` is what decides a race
    between two concurrent creates; the pre-check only gives the common
    case a friendlier message.
    """

    async def _op(db: AsyncSession) -> Contract:
        application: Application = await get_application_for_update(db, data.application_id)
        campaign = await db.get(Campaign, application.campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign not found")
        assert_campaign_owner(campaign, acting_user_id)

        if application.status != ApplicationStatus.HIRED:
            raise InvalidStateError("Contracts can only be created for hired applications")
        if await _get_contract_for_application(db, application.id) is not None:
            raise ConflictError("A contract already exists for this application")

        if data.end_date and data.start_date and data.end_date < data.start_date:
            raise ValidationError("end_date must not be before start_date")
        currency = (data.currency or campaign.currency).upper()
        _check_money(data.total_amount, currency, "Contract total")
        for item in data.milestones:
            _check_money(item.amount, currency, f"Milestone '{item.title}'")
            if item.amount > data.total_amount:
                raise ValidationError(
                    f"Milestone '{item.title}' exceeds the contract total"
                )

        # No explicit ordering supplied: keep submission order
        explicit_order = any(item.order_index for item in data.milestones)
        contract = Contract(
            application_id=application.id,
            campaign_id=campaign.id,
            brand_user_id=campaign.brand_owner_id,
            creator_user_id=application.creator_owner_id,
            contract_number=generate_contract_number(),
            terms=data.terms,
            total_amount=data.total_amount,
            currency=currency,
            status=ContractStatus.DRAFT,
            start_date=data.start_date,
            end_date=data.end_date,
            milestones=[
                Milestone(
                    title=item.title,
                    description=item.description,
                    amount=item.amount,
                    status=MilestoneStatus.PENDING,
                    trigger_type=item.trigger_type,
                    order_index=item.order_index if explicit_order else index,
                    due_date=item.due_date,
                )
                for index, item in enumerate(data.milestones)
            ],
        )
        db.add(contract)
        await db.flush()
        return contract

    contract = await run_atomic(db, _op, name="create_contract")
    logger.info(
        "Contract %s (%s) created for application %s with %d milestones",
        contract.id,
        contract.contract_number,
        contract.application_id,
        len(contract.milestones),
    )
    return contract


async def _transition_contract(
    db: AsyncSession,
    contract_id: int,
    acting_user_id: int,
    target: ContractStatus,
    *,
    required_role: str | None,
    reason: str | None = None,
) -> Contract:
    """Shared load → authorize → guard → mutate path for contract transitions.

    ``required_role`` of None means either party may act.
    """
    old_status: str | None = None
    cascaded: list[int] = []

    async def _op(db: AsyncSession) -> Contract:
        nonlocal old_status
        cascaded.clear()
        contract = await get_contract_for_update(db, contract_id)
        if required_role is None:
            assert_contract_party(contract, acting_user_id)
        else:
            assert_owner(contract, acting_user_id, required_role)
        validate_transition(EntityType.CONTRACT, contract.status, target)

        now = utcnow()
        old_status = contract.status
        if target == ContractStatus.PENDING_CREATOR_SIGNATURE:
            contract.brand_signed_at = now
        elif target == ContractStatus.ACTIVE:
            contract.creator_signed_at = now
            if contract.start_date is None:
                contract.start_date = now
            # Signing releases every milestone that waits on the signature
            for milestone in contract.milestones:
                if (
                    milestone.trigger_type == MilestoneTrigger.CONTRACT_SIGNED
                    and milestone.status == MilestoneStatus.PENDING
                ):
                    milestone.status = validate_transition(
                        EntityType.MILESTONE, milestone.status, MilestoneStatus.READY
                    )
                    milestone.completed_at = now
                    cascaded.append(milestone.id)
        elif target == ContractStatus.CANCELLED:
            if not reason or not reason.strip():
                raise ValidationError("A cancellation reason is required")
            contract.cancelled_at = now
            contract.cancellation_reason = reason.strip()
            for milestone in contract.milestones:
                if milestone.status in _CANCELLABLE_MILESTONES:
                    milestone.status = MilestoneStatus.CANCELLED
                    cascaded.append(milestone.id)
        elif target == ContractStatus.COMPLETED:
            contract.completed_at = now

        contract.status = target
        if target in (ContractStatus.CANCELLED, ContractStatus.COMPLETED):
            await log_audit(
                db,
                action=f"contract_{target.lower()}",
                entity_type=EntityType.CONTRACT,
                entity_id=contract.id,
                user_id=acting_user_id,
                details={
                    "old_status": old_status,
                    "reason": contract.cancellation_reason,
                    "milestones": list(cascaded),
                },
            )
        await db.flush()
        return contract

    contract = await run_atomic(db, _op, name=f"contract_to_{target.lower()}")
    logger.info(
        "Contract %s: %s -> %s",
        contract.id,
        old_status,
        contract.status,
        extra={"contract_id": contract.id, "user_id": acting_user_id, "milestones": cascaded},
    )
    await notify_transition(
        entity_type=EntityType.CONTRACT,
        entity_id=contract.id,
        old_status=old_status,
        new_status=contract.status,
        recipient_ids=[contract.brand_user_id, contract.creator_user_id],
        actor_id=acting_user_id,
    )
    return contract


async def send_contract_for_signature(
    db: AsyncSession, contract_id: int, acting_user_id: int
) -> Contract:
    return await _transition_contract(
        db, contract_id, acting_user_id, ContractStatus.PENDING_CREATOR_SIGNATURE,
        required_role="brand",
    )


async def sign_contract(db: AsyncSession, contract_id: int, acting_user_id: int) -> Contract:
    return await _transition_contract(
        db, contract_id, acting_user_id, ContractStatus.ACTIVE, required_role="creator"
    )


async def cancel_contract(
    db: AsyncSession, contract_id: int, acting_user_id: int, reason: str | None
) -> Contract:
    return await _transition_contract(
        db, contract_id, acting_user_id, ContractStatus.CANCELLED,
        required_role=None, reason=reason,
    )


async def complete_contract(db: AsyncSession, contract_id: int, acting_user_id: int) -> Contract:
    return await _transition_contract(
        db, contract_id, acting_user_id, ContractStatus.COMPLETED, required_role="brand"
    )


async def mark_milestone_ready(
    db: AsyncSession, milestone_id: int, acting_user_id: int
) -> Milestone:
    """Brand confirms a MANUAL/DATE/DELIVERABLE milestone is due for payment."""

    async def _op(db: AsyncSession) -> tuple[Milestone, int]:
        milestone = await get_milestone_for_update(db, milestone_id)
        contract = await get_contract_for_update(db, milestone.contract_id)
        assert_owner(contract, acting_user_id, "brand")
        validate_transition(EntityType.MILESTONE, milestone.status, MilestoneStatus.READY)
        if contract.status != ContractStatus.ACTIVE:
            raise InvalidStateError("Milestones can only become ready on an active contract")

        milestone.status = MilestoneStatus.READY
        milestone.completed_at = utcnow()
        await db.flush()
        return milestone, contract.creator_user_id

    milestone, creator_user_id = await run_atomic(db, _op, name="mark_milestone_ready")
    logger.info(
        "Milestone %s of contract %s is READY", milestone.id, milestone.contract_id
    )
    await notify_transition(
        entity_type=EntityType.MILESTONE,
        entity_id=milestone.id,
        old_status=MilestoneStatus.PENDING,
        new_status=milestone.status,
        recipient_ids=[creator_user_id],
        actor_id=acting_user_id,
    )
    return milestone
