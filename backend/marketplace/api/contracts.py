from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.schemas import (
    ContractCancelRequest,
    ContractCreate,
    ContractResponse,
    MilestoneResponse,
)
from marketplace.core.deps import get_db
from marketplace.core.security import get_current_user
from marketplace.models.user import User
from marketplace.services import contract as contract_svc

router = APIRouter(tags=["contracts"])


@router.post("/contracts", response_model=ContractResponse, status_code=201)
async def create_contract(
    body: ContractCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await contract_svc.create_contract(db, user.id, body)


@router.get("/contracts/{contract_id}", response_model=ContractResponse)
async def get_contract(
    contract_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await contract_svc.get_contract(db, contract_id, user.id)


@router.post("/contracts/{contract_id}/send", response_model=ContractResponse)
async def send_contract(
    contract_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await contract_svc.send_contract_for_signature(db, contract_id, user.id)


@router.post("/contracts/{contract_id}/sign", response_model=ContractResponse)
async def sign_contract(
    contract_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await contract_svc.sign_contract(db, contract_id, user.id)


@router.post("/contracts/{contract_id}/cancel", response_model=ContractResponse)
async def cancel_contract(
    contract_id: int,
    body: ContractCancelRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await contract_svc.cancel_contract(db, contract_id, user.id, body.reason)


@router.post("/contracts/{contract_id}/complete", response_model=ContractResponse)
async def complete_contract(
    contract_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await contract_svc.complete_contract(db, contract_id, user.id)


@router.post("/milestones/{milestone_id}/ready", response_model=MilestoneResponse)
async def mark_milestone_ready(
    milestone_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await contract_svc.mark_milestone_ready(db, milestone_id, user.id)
