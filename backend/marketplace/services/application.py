import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.schemas import ApplicationCreate
from marketplace.db.base import utcnow
from marketplace.models.application import Application
from marketplace.models.campaign import Campaign
from marketplace.services.access import (
    assert_application_party,
    assert_can_transition_application,
)
from marketplace.services.audit import log_audit
from marketplace.services.campaign import get_campaign_for_update
from marketplace.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from marketplace.services.lifecycle import as_utc, run_atomic
from marketplace.services.notification import notify_transition
from marketplace.services.state_machine import (
    ApplicationStatus,
    CampaignStatus,
    EntityType,
    is_terminal,
    validate_transition,
)
from marketplace.services.user import get_creator_profile

logger = logging.getLogger(__name__)

# status → timestamp column stamped on entering it
_STATUS_TIMESTAMPS: dict[ApplicationStatus, str] = {
    ApplicationStatus.UNDER_REVIEW: "reviewed_at",
    ApplicationStatus.SHORTLISTED: "shortlisted_at",
    ApplicationStatus.HIRED: "hired_at",
    ApplicationStatus.REJECTED: "rejected_at",
    ApplicationStatus.WITHDRAWN: "withdrawn_at",
}

_HIRING_CAMPAIGN_STATUSES = frozenset({CampaignStatus.PUBLISHED, CampaignStatus.PAUSED})


async def get_application_for_update(db: AsyncSession, application_id: int) -> Application:
    result = await db.execute(
        select(Application)
        .where(Application.id == application_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    application = result.scalar_one_or_none()
    if application is None:
        raise NotFoundError("Application not found")
    return application


async def _get_campaign(db: AsyncSession, campaign_id: int) -> Campaign:
    result = await db.execute(
        select(Campaign)
        .where(Campaign.id == campaign_id)
        .execution_options(populate_existing=True)
    )
    campaign = result.scalar_one_or_none()
    if campaign is None:
        raise NotFoundError("Campaign not found")
    return campaign


async def get_application(
    db: AsyncSession, application_id: int, acting_user_id: int
) -> Application:
    result = await db.execute(
        select(Application)
        .where(Application.id == application_id)
        .execution_options(populate_existing=True)
    )
    application = result.scalar_one_or_none()
    if application is None:
        raise NotFoundError("Application not found")
    campaign = await _get_campaign(db, application.campaign_id)
    assert_application_party(application, campaign, acting_user_id)
    return application


def _deadline_passed(deadline: datetime | None, now: datetime) -> bool:
    deadline = as_utc(deadline)
    return deadline is not None and deadline < now


async def submit_application(
    db: AsyncSession,
    campaign_id: int,
    acting_user_id: int,
    data: ApplicationCreate,
) -> Application:
    async def _op(db: AsyncSession) -> tuple[Application, int]:
        if await get_creator_profile(db, acting_user_id) is None:
            raise ForbiddenError("You need a creator profile to apply")

        campaign = await _get_campaign(db, campaign_id)
        if campaign.brand_owner_id == acting_user_id:
            raise ForbiddenError("You cannot apply to your own campaign")
        if campaign.status != CampaignStatus.PUBLISHED:
            raise InvalidStateError("This campaign is not accepting applications")
        now = utcnow()
        if _deadline_passed(campaign.application_deadline, now):
            raise InvalidStateError("The application deadline has passed")
        if campaign.current_creators >= campaign.max_creators:
            raise InvalidStateError("capacity full")

        existing = await db.scalar(
            select(Application.id).where(
                Application.campaign_id == campaign.id,
                Application.creator_owner_id == acting_user_id,
            )
        )
        if existing is not None:
            raise ConflictError("You have already applied to this campaign")

        application = Application(
            campaign_id=campaign.id,
            creator_owner_id=acting_user_id,
            pitch=data.pitch,
            proposed_rate=data.proposed_rate,
            currency=(data.currency or campaign.currency).upper(),
            status=ApplicationStatus.APPLIED,
            applied_at=now,
        )
        db.add(application)
        await db.flush()
        return application, campaign.brand_owner_id

    application, brand_owner_id = await run_atomic(db, _op, name="submit_application")
    logger.info(
        "Application %s submitted to campaign %s by user %s",
        application.id,
        campaign_id,
        acting_user_id,
    )
    await notify_transition(
        entity_type=EntityType.APPLICATION,
        entity_id=application.id,
        old_status=None,
        new_status=application.status,
        recipient_ids=[brand_owner_id],
        actor_id=acting_user_id,
        details={"campaign_id": campaign_id},
    )
    return application


async def _claim_slot(db: AsyncSession, campaign: Campaign) -> None:
    """Increment current_creators only if a slot is still free at write time."""
    result = await db.execute(
        update(Campaign)
        .where(
            Campaign.id == campaign.id,
            Campaign.current_creators < Campaign.max_creators,
        )
        .values(current_creators=Campaign.current_creators + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InvalidStateError("capacity full")
    await db.refresh(campaign, attribute_names=["current_creators", "updated_at"])


async def transition_application(
    db: AsyncSession,
    application_id: int,
    acting_user_id: int,
    target_status: str,
    reason: str | None = None,
) -> Application:
    """Move an application through review, hiring, rejection or withdrawal.

    Rejection requires a non-empty reason. Hiring re-checks capacity in the
    same transaction that increments the campaign's creator count, so
    concurrent hires can never oversell the last slot.
    """
    old_status: str | None = None
    brand_owner_id: int | None = None

    async def _op(db: AsyncSession) -> Application:
        nonlocal old_status, brand_owner_id
        application = await get_application_for_update(db, application_id)
        campaign = await _get_campaign(db, application.campaign_id)
        brand_owner_id = campaign.brand_owner_id

        assert_can_transition_application(application, campaign, acting_user_id, target_status)
        target = ApplicationStatus(
            validate_transition(EntityType.APPLICATION, application.status, target_status)
        )

        if target == ApplicationStatus.REJECTED:
            if not reason or not reason.strip():
                raise ValidationError("A rejection reason is required")
            application.rejection_reason = reason.strip()

        if target == ApplicationStatus.HIRED:
            campaign = await get_campaign_for_update(db, campaign.id)
            if campaign.status not in _HIRING_CAMPAIGN_STATUSES:
                raise InvalidStateError(f"Cannot hire for a {campaign.status.lower()} campaign")
            if campaign.current_creators >= campaign.max_creators:
                raise InvalidStateError("capacity full")
            await _claim_slot(db, campaign)

        old_status = application.status
        application.status = target
        setattr(application, _STATUS_TIMESTAMPS[target], utcnow())

        if is_terminal(EntityType.APPLICATION, target):
            await log_audit(
                db,
                action=f"application_{target.lower()}",
                entity_type=EntityType.APPLICATION,
                entity_id=application.id,
                user_id=acting_user_id,
                details={
                    "old_status": old_status,
                    "campaign_id": campaign.id,
                    "current_creators": campaign.current_creators,
                    "reason": application.rejection_reason,
                },
            )
        await db.flush()
        return application

    application = await run_atomic(db, _op, name="transition_application")
    logger.info(
        "Application %s: %s -> %s",
        application.id,
        old_status,
        application.status,
        extra={"application_id": application.id, "user_id": acting_user_id},
    )
    await notify_transition(
        entity_type=EntityType.APPLICATION,
        entity_id=application.id,
        old_status=old_status,
        new_status=application.status,
        recipient_ids=[application.creator_owner_id, brand_owner_id],
        actor_id=acting_user_id,
    )
    return application


async def withdraw_application(
    db: AsyncSession, application_id: int, acting_user_id: int
) -> Application:
    return await transition_application(
        db, application_id, acting_user_id, ApplicationStatus.WITHDRAWN
    )
