import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.schemas import CampaignCreate
from marketplace.core.config import settings
from marketplace.db.base import utcnow
from marketplace.models.application import Application
from marketplace.models.campaign import Campaign
from marketplace.services.access import assert_campaign_owner
from marketplace.services.audit import log_audit
from marketplace.services.errors import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from marketplace.services.lifecycle import run_atomic
from marketplace.services.state_machine import (
    CampaignStatus,
    EntityType,
    is_terminal,
    validate_transition,
)
from marketplace.services.user import get_brand_profile

logger = logging.getLogger(__name__)


async def get_campaign_for_update(db: AsyncSession, campaign_id: int) -> Campaign:
    """Load a campaign with a row lock, bypassing any stale identity-map copy."""
    result = await db.execute(
        select(Campaign)
        .where(Campaign.id == campaign_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    campaign = result.scalar_one_or_none()
    if campaign is None:
        raise NotFoundError("Campaign not found")
    return campaign


async def create_campaign(
    db: AsyncSession, acting_user_id: int, data: CampaignCreate
) -> Campaign:
    async def _op(db: AsyncSession) -> Campaign:
        if await get_brand_profile(db, acting_user_id) is None:
            raise ForbiddenError("You need a brand profile to create campaigns")
        if (
            data.budget_min is not None
            and data.budget_max is not None
            and data.budget_min > data.budget_max
        ):
            raise ValidationError("budget_min must not exceed budget_max")

        campaign = Campaign(
            brand_owner_id=acting_user_id,
            title=data.title,
            description=data.description,
            status=CampaignStatus.DRAFT,
            max_creators=data.max_creators or settings.default_max_creators,
            current_creators=0,
            application_deadline=data.application_deadline,
            budget_min=data.budget_min,
            budget_max=data.budget_max,
            currency=(data.currency or settings.default_currency).upper(),
        )
        db.add(campaign)
        await db.flush()
        return campaign

    campaign = await run_atomic(db, _op, name="create_campaign")
    logger.info("Campaign %s created by user %s", campaign.id, acting_user_id)
    return campaign


async def _transition_campaign(
    db: AsyncSession,
    campaign_id: int,
    acting_user_id: int,
    target: CampaignStatus,
) -> Campaign:
    old_status: str | None = None

    async def _op(db: AsyncSession) -> Campaign:
        nonlocal old_status
        campaign = await get_campaign_for_update(db, campaign_id)
        assert_campaign_owner(campaign, acting_user_id)
        validate_transition(EntityType.CAMPAIGN, campaign.status, target)

        if target == CampaignStatus.PUBLISHED:
            if not campaign.title or not campaign.description:
                raise ValidationError("Title and description are required before publishing")
            if campaign.published_at is None:
                campaign.published_at = utcnow()

        old_status = campaign.status
        campaign.status = target
        if is_terminal(EntityType.CAMPAIGN, target):
            await log_audit(
                db,
                action=f"campaign_{target.lower()}",
                entity_type=EntityType.CAMPAIGN,
                entity_id=campaign.id,
                user_id=acting_user_id,
                details={"old_status": old_status},
            )
        await db.flush()
        return campaign

    campaign = await run_atomic(db, _op, name=f"campaign_to_{target.lower()}")
    logger.info(
        "Campaign %s: %s -> %s",
        campaign.id,
        old_status,
        campaign.status,
        extra={"campaign_id": campaign.id, "user_id": acting_user_id},
    )
    return campaign


async def publish_campaign(db: AsyncSession, campaign_id: int, acting_user_id: int) -> Campaign:
    return await _transition_campaign(db, campaign_id, acting_user_id, CampaignStatus.PUBLISHED)


async def pause_campaign(db: AsyncSession, campaign_id: int, acting_user_id: int) -> Campaign:
    return await _transition_campaign(db, campaign_id, acting_user_id, CampaignStatus.PAUSED)


async def cancel_campaign(db: AsyncSession, campaign_id: int, acting_user_id: int) -> Campaign:
    return await _transition_campaign(db, campaign_id, acting_user_id, CampaignStatus.CANCELLED)


async def complete_campaign(db: AsyncSession, campaign_id: int, acting_user_id: int) -> Campaign:
    return await _transition_campaign(db, campaign_id, acting_user_id, CampaignStatus.COMPLETED)


async def delete_campaign(db: AsyncSession, campaign_id: int, acting_user_id: int) -> None:
    """Delete a DRAFT campaign nobody has applied to yet."""

    async def _op(db: AsyncSession) -> None:
        campaign = await get_campaign_for_update(db, campaign_id)
        assert_campaign_owner(campaign, acting_user_id)
        if campaign.status != CampaignStatus.DRAFT:
            raise InvalidStateError("Only draft campaigns can be deleted")

        count = await db.scalar(
            select(func.count()).select_from(Application).where(
                Application.campaign_id == campaign.id
            )
        )
        if count:
            raise InvalidStateError("Campaigns with applications cannot be deleted")

        await db.delete(campaign)
        await db.flush()

    await run_atomic(db, _op, name="delete_campaign")
    logger.info("Campaign %s deleted by user %s", campaign_id, acting_user_id)
