"""Escrow API endpoints: fund, release, refund, dispute."""

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.schemas import (
    DisputeOpenRequest,
    DisputeResolveRequest,
    EscrowFundRequest,
    EscrowResponse,
    MilestoneReleaseResponse,
)
from marketplace.core.config import settings
from marketplace.core.deps import get_db
from marketplace.core.idempotency import check_idempotency
from marketplace.core.rate_limit import limiter
from marketplace.core.security import get_current_user
from marketplace.models.user import User
from marketplace.services import escrow as escrow_svc

router = APIRouter(prefix="/escrow", tags=["escrow"])


@router.post("/contracts/{contract_id}/fund", response_model=EscrowResponse, status_code=201)
@limiter.limit(settings.rate_limit_escrow)
async def fund_escrow(
    request: Request,
    contract_id: int,
    body: EscrowFundRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key", max_length=128),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Open the escrow for an active contract (brand only).

    A repeat carrying the same ``Idempotency-Key`` gets the escrow the first
    call created. Without a key a second attempt is a 409 conflict.
    """
    if idempotency_key:
        is_new = await check_idempotency(
            f"escrow:fund:{contract_id}:{user.id}:{idempotency_key}", ttl=3600
        )
        if not is_new:
            existing = await escrow_svc.find_escrow_by_contract(db, contract_id)
            if existing is not None and existing.brand_user_id == user.id:
                return existing

    return await escrow_svc.fund_escrow(
        db, contract_id, user.id, processor_reference=body.processor_reference
    )


@router.get("/contracts/{contract_id}", response_model=EscrowResponse)
async def get_escrow(
    contract_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await escrow_svc.get_escrow_for_contract_party(db, contract_id, user.id)


@router.post("/milestones/{milestone_id}/release", response_model=MilestoneReleaseResponse)
@limiter.limit(settings.rate_limit_escrow)
async def release_milestone(
    request: Request,
    milestone_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    payment, milestone, escrow = await escrow_svc.release_milestone(db, milestone_id, user.id)
    return MilestoneReleaseResponse.model_validate(
        {"payment": payment, "milestone": milestone, "escrow": escrow},
        from_attributes=True,
    )


@router.post("/contracts/{contract_id}/refund", response_model=EscrowResponse)
@limiter.limit(settings.rate_limit_escrow)
async def refund_escrow(
    request: Request,
    contract_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await escrow_svc.refund_escrow(db, contract_id, user.id)


@router.post("/contracts/{contract_id}/dispute", response_model=EscrowResponse)
async def open_dispute(
    contract_id: int,
    body: DisputeOpenRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await escrow_svc.open_dispute(db, contract_id, user.id, body.reason)


@router.post("/{escrow_id}/resolve", response_model=EscrowResponse)
async def resolve_dispute(
    escrow_id: int,
    body: DisputeResolveRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Administrator closes a dispute."""
    return await escrow_svc.resolve_dispute(
        db, escrow_id, user.id, body.target_status, note=body.note
    )
