from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.schemas import (
    ApplicationCreate,
    ApplicationResponse,
    ApplicationTransitionRequest,
)
from marketplace.core.deps import get_db
from marketplace.core.security import get_current_user
from marketplace.models.user import User
from marketplace.services import application as application_svc

router = APIRouter(tags=["applications"])


@router.post(
    "/campaigns/{campaign_id}/applications",
    response_model=ApplicationResponse,
    status_code=201,
)
async def submit_application(
    campaign_id: int,
    body: ApplicationCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await application_svc.submit_application(db, campaign_id, user.id, body)


@router.post("/applications/{application_id}/transition", response_model=ApplicationResponse)
async def transition_application(
    application_id: int,
    body: ApplicationTransitionRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Brand: review, shortlist, hire or reject. Creator: withdraw."""
    return await application_svc.transition_application(
        db, application_id, user.id, body.target_status, reason=body.reason
    )


@router.post("/applications/{application_id}/withdraw", response_model=ApplicationResponse)
async def withdraw_application(
    application_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await application_svc.withdraw_application(db, application_id, user.id)


@router.get("/applications/{application_id}", response_model=ApplicationResponse)
async def get_application(
    application_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Campaign brand or applying creator only."""
    return await application_svc.get_application(db, application_id, user.id)
