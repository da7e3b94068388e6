"""Escrow lifecycle: funding, milestone releases, refunds and disputes.

Money moves only here. Every mutation runs in one transaction through
``run_atomic`` and is written to the audit log in that same transaction.
The platform fee and fee rate are frozen on the escrow when it is
created; milestone payments use the frozen rate, never the current one.
"""

import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import settings
from marketplace.db.base import utcnow
from marketplace.models.contract import Contract, Milestone
from marketplace.models.escrow import EscrowTransaction, Payment
from marketplace.services.access import assert_admin, assert_contract_party, assert_owner
from marketplace.services.audit import log_audit
from marketplace.services.contract import (
    get_contract,
    get_contract_for_update,
    get_milestone_for_update,
)
from marketplace.services.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    OverReleaseError,
    ValidationError,
)
from marketplace.services.fees import compute_fee, round_money
from marketplace.services.lifecycle import run_atomic
from marketplace.services.notification import notify_transition
from marketplace.services.state_machine import (
    ContractStatus,
    EntityType,
    EscrowStatus,
    MilestoneStatus,
    PaymentStatus,
    validate_transition,
)
from marketplace.services.user import get_user_by_id

logger = logging.getLogger(__name__)

_RELEASABLE = frozenset({EscrowStatus.FUNDED, EscrowStatus.PARTIALLY_RELEASED})
_REFUNDABLE_CONTRACT_STATUSES = frozenset({ContractStatus.CANCELLED, ContractStatus.COMPLETED})
_OPEN_MILESTONES = frozenset({MilestoneStatus.PENDING, MilestoneStatus.READY})


async def get_escrow_for_update(db: AsyncSession, escrow_id: int) -> EscrowTransaction:
    result = await db.execute(
        select(EscrowTransaction)
        .where(EscrowTransaction.id == escrow_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    escrow = result.scalar_one_or_none()
    if escrow is None:
        raise NotFoundError("Escrow not found")
    return escrow


async def _get_escrow_by_reference(db: AsyncSession, reference: str) -> EscrowTransaction:
    result = await db.execute(
        select(EscrowTransaction)
        .where(EscrowTransaction.processor_reference == reference)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    escrow = result.scalar_one_or_none()
    if escrow is None:
        raise NotFoundError("Escrow not found")
    return escrow


async def find_escrow_by_contract(
    db: AsyncSession, contract_id: int
) -> EscrowTransaction | None:
    """Unlocked read, for idempotent replays and party reads."""
    result = await db.execute(
        select(EscrowTransaction)
        .where(EscrowTransaction.contract_id == contract_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_escrow_by_contract_for_update(
    db: AsyncSession, contract_id: int
) -> EscrowTransaction | None:
    result = await db.execute(
        select(EscrowTransaction)
        .where(EscrowTransaction.contract_id == contract_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _cancel_open_milestones(db: AsyncSession, contract_id: int) -> list[int]:
    result = await db.execute(
        select(Milestone)
        .where(
            Milestone.contract_id == contract_id,
            Milestone.status.in_(list(_OPEN_MILESTONES)),
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    cancelled = []
    for milestone in result.scalars().all():
        milestone.status = MilestoneStatus.CANCELLED
        cancelled.append(milestone.id)
    return cancelled


async def _collected_fees(db: AsyncSession, escrow: EscrowTransaction) -> Decimal:
    total = await db.scalar(
        select(func.coalesce(func.sum(Payment.platform_fee), 0)).where(
            Payment.escrow_transaction_id == escrow.id,
            Payment.status == PaymentStatus.COMPLETED,
        )
    )
    return round_money(total or 0, escrow.currency)


async def get_escrow_for_contract_party(
    db: AsyncSession, contract_id: int, acting_user_id: int
) -> EscrowTransaction:
    contract = await get_contract(db, contract_id, acting_user_id)
    escrow = await find_escrow_by_contract(db, contract.id)
    if escrow is None:
        raise NotFoundError("Escrow not found")
    return escrow


# ---------------------------------------------------------------------------
# Funding
# ---------------------------------------------------------------------------


async def fund_escrow(
    db: AsyncSession,
    contract_id: int,
    acting_user_id: int,
    processor_reference: str | None = None,
) -> EscrowTransaction:
    """Open the escrow for an ACTIVE contract.

    The escrow starts in PENDING_DEPOSIT and becomes FUNDED when the payment
    processor confirms the deposit, see ``confirm_escrow_funding``. With
    ``settings.escrow_auto_confirm`` the deposit is treated as confirmed
    immediately.
    """

    async def _op(db: AsyncSession) -> EscrowTransaction:
        contract = await get_contract_for_update(db, contract_id)
        assert_owner(contract, acting_user_id, "brand")
        if contract.status != ContractStatus.ACTIVE:
            raise InvalidStateError("Escrow can only be funded for an active contract")
        if await get_escrow_by_contract_for_update(db, contract.id) is not None:
            raise ConflictError("An escrow already exists for this contract")

        fee_rate = settings.platform_fee_rate
        breakdown = compute_fee(contract.total_amount, fee_rate, contract.currency)
        now = utcnow()
        escrow = EscrowTransaction(
            contract_id=contract.id,
            brand_user_id=contract.brand_user_id,
            creator_user_id=contract.creator_user_id,
            total_amount=round_money(contract.total_amount, contract.currency),
            platform_fee=breakdown.platform_fee,
            fee_rate=fee_rate,
            released_amount=Decimal("0"),
            refunded_amount=Decimal("0"),
            currency=contract.currency,
            status=EscrowStatus.PENDING_DEPOSIT,
            processor_reference=processor_reference,
        )
        if settings.escrow_auto_confirm:
            escrow.status = validate_transition(
                EntityType.ESCROW, EscrowStatus.PENDING_DEPOSIT, EscrowStatus.FUNDED
            )
            escrow.funded_at = now
        db.add(escrow)
        await db.flush()

        await log_audit(
            db,
            action="escrow_created",
            entity_type=EntityType.ESCROW,
            entity_id=escrow.id,
            user_id=acting_user_id,
            details={
                "contract_id": contract.id,
                "total_amount": escrow.total_amount,
                "platform_fee": escrow.platform_fee,
                "fee_rate": fee_rate,
                "status": escrow.status,
            },
        )
        return escrow

    escrow = await run_atomic(db, _op, name="fund_escrow")
    logger.info(
        "Escrow %s for contract %s: %s %s (fee %s)",
        escrow.id,
        contract_id,
        escrow.total_amount,
        escrow.currency,
        escrow.platform_fee,
        extra={"escrow_id": escrow.id, "status": escrow.status},
    )
    await notify_transition(
        entity_type=EntityType.ESCROW,
        entity_id=escrow.id,
        old_status=None,
        new_status=escrow.status,
        recipient_ids=[escrow.brand_user_id, escrow.creator_user_id],
        actor_id=acting_user_id,
        details={"contract_id": contract_id, "total_amount": str(escrow.total_amount)},
    )
    return escrow


async def confirm_escrow_funding(
    db: AsyncSession,
    *,
    escrow_id: int | None = None,
    processor_reference: str | None = None,
) -> EscrowTransaction:
    """Processor callback: the deposit arrived.

    Looked up by escrow id or by the processor's reference. Repeated
    confirmations of an already funded escrow are no-ops.
    """
    if escrow_id is None and not processor_reference:
        raise ValidationError("escrow_id or processor_reference is required")
    changed = False

    async def _op(db: AsyncSession) -> EscrowTransaction:
        nonlocal changed
        changed = False
        if escrow_id is not None:
            escrow = await get_escrow_for_update(db, escrow_id)
        else:
            escrow = await _get_escrow_by_reference(db, processor_reference)

        if escrow.status != EscrowStatus.PENDING_DEPOSIT and escrow.funded_at is not None:
            return escrow

        escrow.status = validate_transition(EntityType.ESCROW, escrow.status, EscrowStatus.FUNDED)
        escrow.funded_at = utcnow()
        if processor_reference and escrow.processor_reference is None:
            escrow.processor_reference = processor_reference
        await log_audit(
            db,
            action="escrow_funded",
            entity_type=EntityType.ESCROW,
            entity_id=escrow.id,
            details={"processor_reference": escrow.processor_reference},
        )
        await db.flush()
        changed = True
        return escrow

    escrow = await run_atomic(db, _op, name="confirm_escrow_funding")
    if not changed:
        logger.info("Escrow %s already funded, confirmation ignored", escrow.id)
        return escrow

    logger.info("Escrow %s: PENDING_DEPOSIT -> FUNDED", escrow.id)
    await notify_transition(
        entity_type=EntityType.ESCROW,
        entity_id=escrow.id,
        old_status=EscrowStatus.PENDING_DEPOSIT,
        new_status=escrow.status,
        recipient_ids=[escrow.brand_user_id, escrow.creator_user_id],
    )
    return escrow


# ---------------------------------------------------------------------------
# Release
# ---------------------------------------------------------------------------


async def release_milestone(
    db: AsyncSession, milestone_id: int, acting_user_id: int
) -> tuple[Payment, Milestone, EscrowTransaction]:
    """Pay a READY milestone out of the contract's escrow.

    Creates a COMPLETED payment, marks the milestone PAID and moves the
    escrow to PARTIALLY_RELEASED or FULLY_RELEASED, all in one commit. A
    release that would exceed the escrow total raises OverReleaseError
    and changes nothing.
    """
    old_escrow_status: str | None = None

    async def _op(db: AsyncSession) -> tuple[Payment, Milestone, EscrowTransaction]:
        nonlocal old_escrow_status
        milestone = await get_milestone_for_update(db, milestone_id)
        contract: Contract = await get_contract_for_update(db, milestone.contract_id)
        assert_owner(contract, acting_user_id, "brand")

        escrow = await get_escrow_by_contract_for_update(db, contract.id)
        if escrow is None:
            raise InvalidStateError("Escrow has not been funded for this contract")
        if milestone.status != MilestoneStatus.READY:
            raise InvalidStateError(f"Milestone is {milestone.status}, not READY")
        if escrow.status not in _RELEASABLE:
            raise InvalidStateError(f"Escrow is {escrow.status}, releases are not allowed")

        amount = round_money(milestone.amount, escrow.currency)
        if amount <= 0:
            raise InvalidStateError(f"Milestone amount {milestone.amount} leaves nothing to release")
        released = escrow.released_amount + amount
        if released > escrow.total_amount:
            raise OverReleaseError(
                f"Releasing {amount} would exceed the escrow total "
                f"({escrow.released_amount} of {escrow.total_amount} already released)"
            )

        breakdown = compute_fee(amount, escrow.fee_rate, escrow.currency)
        now = utcnow()
        prior_fees = await _collected_fees(db, escrow)

        payment = Payment(
            escrow_transaction_id=escrow.id,
            milestone_id=milestone.id,
            recipient_user_id=contract.creator_user_id,
            amount=amount,
            platform_fee=breakdown.platform_fee,
            net_amount=breakdown.net_amount,
            currency=escrow.currency,
            status=PaymentStatus.PENDING,
        )
        # Internal escrow transfer settles in the same commit
        payment.status = validate_transition(
            EntityType.PAYMENT, payment.status, PaymentStatus.COMPLETED
        )
        payment.completed_at = now
        db.add(payment)

        milestone.status = validate_transition(
            EntityType.MILESTONE, milestone.status, MilestoneStatus.PAID
        )
        milestone.paid_at = now

        old_escrow_status = escrow.status
        target = (
            EscrowStatus.FULLY_RELEASED
            if released == escrow.total_amount
            else EscrowStatus.PARTIALLY_RELEASED
        )
        if target != escrow.status:
            escrow.status = validate_transition(EntityType.ESCROW, escrow.status, target)
        escrow.released_amount = released
        await db.flush()

        await log_audit(
            db,
            action="milestone_released",
            entity_type=EntityType.ESCROW,
            entity_id=escrow.id,
            user_id=acting_user_id,
            details={
                "milestone_id": milestone.id,
                "payment_id": payment.id,
                "amount": amount,
                "platform_fee": breakdown.platform_fee,
                "released_amount": released,
            },
        )

        if target == EscrowStatus.FULLY_RELEASED:
            escrow.released_at = now
            # Per-payment fees are never adjusted; the drift is recorded instead
            delta = escrow.platform_fee - (prior_fees + breakdown.platform_fee)
            escrow.fee_rounding_delta = delta
            await log_audit(
                db,
                action="escrow_fully_released",
                entity_type=EntityType.ESCROW,
                entity_id=escrow.id,
                user_id=acting_user_id,
                details={"fee_rounding_delta": delta, "platform_fee": escrow.platform_fee},
            )
            if delta:
                logger.warning(
                    "Escrow %s fee rounding delta %s %s",
                    escrow.id,
                    delta,
                    escrow.currency,
                    extra={"escrow_id": escrow.id},
                )
            await db.flush()
        return payment, milestone, escrow

    payment, milestone, escrow = await run_atomic(db, _op, name="release_milestone")
    logger.info(
        "Milestone %s released: payment %s, escrow %s %s -> %s (%s/%s)",
        milestone.id,
        payment.id,
        escrow.id,
        old_escrow_status,
        escrow.status,
        escrow.released_amount,
        escrow.total_amount,
    )
    await notify_transition(
        entity_type=EntityType.MILESTONE,
        entity_id=milestone.id,
        old_status=MilestoneStatus.READY,
        new_status=milestone.status,
        recipient_ids=[payment.recipient_user_id],
        actor_id=acting_user_id,
        details={"net_amount": str(payment.net_amount), "currency": payment.currency},
    )
    return payment, milestone, escrow


# ---------------------------------------------------------------------------
# Refund
# ---------------------------------------------------------------------------


async def refund_escrow(
    db: AsyncSession, contract_id: int, acting_user_id: int
) -> EscrowTransaction:
    """Return the unreleased balance to the brand once the contract ended."""
    old_status: str | None = None

    async def _op(db: AsyncSession) -> EscrowTransaction:
        nonlocal old_status
        contract = await get_contract_for_update(db, contract_id)
        assert_owner(contract, acting_user_id, "brand")
        escrow = await get_escrow_by_contract_for_update(db, contract.id)
        if escrow is None:
            raise NotFoundError("Escrow not found")

        validate_transition(EntityType.ESCROW, escrow.status, EscrowStatus.REFUNDED)
        if escrow.status == EscrowStatus.DISPUTED:
            raise InvalidStateError("Escrow is under dispute, an administrator must resolve it")
        if contract.status not in _REFUNDABLE_CONTRACT_STATUSES:
            raise InvalidStateError("Escrow can only be refunded after the contract ended")
        remaining = escrow.total_amount - escrow.released_amount
        if remaining <= 0:
            raise InvalidStateError("Nothing left to refund")

        old_status = escrow.status
        _apply_refund(escrow, remaining)
        cancelled = await _cancel_open_milestones(db, contract.id)
        await log_audit(
            db,
            action="escrow_refunded",
            entity_type=EntityType.ESCROW,
            entity_id=escrow.id,
            user_id=acting_user_id,
            details={
                "refunded_amount": remaining,
                "old_status": old_status,
                "cancelled_milestones": cancelled,
            },
        )
        await db.flush()
        return escrow

    escrow = await run_atomic(db, _op, name="refund_escrow")
    logger.info(
        "Escrow %s: %s -> REFUNDED (%s %s)",
        escrow.id,
        old_status,
        escrow.refunded_amount,
        escrow.currency,
    )
    await notify_transition(
        entity_type=EntityType.ESCROW,
        entity_id=escrow.id,
        old_status=old_status,
        new_status=escrow.status,
        recipient_ids=[escrow.brand_user_id, escrow.creator_user_id],
        actor_id=acting_user_id,
    )
    return escrow


def _apply_refund(escrow: EscrowTransaction, amount: Decimal) -> None:
    escrow.status = EscrowStatus.REFUNDED
    escrow.refunded_amount = amount
    escrow.refunded_at = utcnow()


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


async def open_dispute(
    db: AsyncSession, contract_id: int, acting_user_id: int, reason: str | None
) -> EscrowTransaction:
    old_status: str | None = None

    async def _op(db: AsyncSession) -> EscrowTransaction:
        nonlocal old_status
        contract = await get_contract_for_update(db, contract_id)
        assert_contract_party(contract, acting_user_id)
        escrow = await get_escrow_by_contract_for_update(db, contract.id)
        if escrow is None:
            raise NotFoundError("Escrow not found")

        validate_transition(EntityType.ESCROW, escrow.status, EscrowStatus.DISPUTED)
        if not reason or not reason.strip():
            raise ValidationError("A dispute reason is required")

        old_status = escrow.status
        escrow.status_before_dispute = escrow.status
        escrow.status = EscrowStatus.DISPUTED
        escrow.dispute_reason = reason.strip()
        await log_audit(
            db,
            action="escrow_disputed",
            entity_type=EntityType.ESCROW,
            entity_id=escrow.id,
            user_id=acting_user_id,
            details={"old_status": old_status, "reason": escrow.dispute_reason},
        )
        await db.flush()
        return escrow

    escrow = await run_atomic(db, _op, name="open_dispute")
    logger.warning(
        "Escrow %s disputed by user %s (was %s)",
        escrow.id,
        acting_user_id,
        old_status,
        extra={"escrow_id": escrow.id},
    )
    await notify_transition(
        entity_type=EntityType.ESCROW,
        entity_id=escrow.id,
        old_status=old_status,
        new_status=escrow.status,
        recipient_ids=[escrow.brand_user_id, escrow.creator_user_id],
        actor_id=acting_user_id,
        details={"reason": escrow.dispute_reason},
    )
    return escrow


async def resolve_dispute(
    db: AsyncSession,
    escrow_id: int,
    acting_user_id: int,
    target_status: str,
    note: str | None = None,
) -> EscrowTransaction:
    """Administrator closes a dispute.

    FUNDED is only consistent while nothing has been released,
    PARTIALLY_RELEASED only once something has. REFUNDED returns the
    unreleased balance and cancels the milestones still open.
    """

    async def _op(db: AsyncSession) -> EscrowTransaction:
        user = await get_user_by_id(db, acting_user_id)
        assert_admin(user.role if user else None)
        escrow = await get_escrow_for_update(db, escrow_id)
        if escrow.status != EscrowStatus.DISPUTED:
            raise InvalidStateError("Escrow is not under dispute")

        target = EscrowStatus(
            validate_transition(EntityType.ESCROW, escrow.status, target_status)
        )
        if target == EscrowStatus.FUNDED and escrow.released_amount > 0:
            raise InvalidStateError("Funds were already released, resolve to PARTIALLY_RELEASED")
        if target == EscrowStatus.PARTIALLY_RELEASED and escrow.released_amount <= 0:
            raise InvalidStateError("Nothing was released, resolve to FUNDED")

        details: dict = {"target": target, "note": note, "before_dispute": escrow.status_before_dispute}
        if target == EscrowStatus.REFUNDED:
            remaining = escrow.total_amount - escrow.released_amount
            _apply_refund(escrow, remaining)
            details["refunded_amount"] = remaining
            details["cancelled_milestones"] = await _cancel_open_milestones(db, escrow.contract_id)
        else:
            escrow.status = target
        escrow.status_before_dispute = None

        await log_audit(
            db,
            action="escrow_dispute_resolved",
            entity_type=EntityType.ESCROW,
            entity_id=escrow.id,
            user_id=acting_user_id,
            details=details,
        )
        await db.flush()
        return escrow

    escrow = await run_atomic(db, _op, name="resolve_dispute")
    logger.info(
        "Escrow %s: DISPUTED -> %s by admin %s", escrow.id, escrow.status, acting_user_id
    )
    await notify_transition(
        entity_type=EntityType.ESCROW,
        entity_id=escrow.id,
        old_status=EscrowStatus.DISPUTED,
        new_status=escrow.status,
        recipient_ids=[escrow.brand_user_id, escrow.creator_user_id],
        actor_id=acting_user_id,
        details={"note": note} if note else None,
    )
    return escrow
