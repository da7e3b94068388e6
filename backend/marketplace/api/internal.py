from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.schemas import EscrowResponse, FundingConfirmedRequest
from marketplace.core.deps import get_db
from marketplace.core.security import verify_internal_token
from marketplace.services import escrow as escrow_svc

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(verify_internal_token)],
)


@router.post("/escrow/funding-confirmed", response_model=EscrowResponse)
async def funding_confirmed(
    body: FundingConfirmedRequest,
    db: AsyncSession = Depends(get_db),
):
    """Payment processor callback: the escrow deposit has arrived.

    Safe to deliver more than once.
    """
    return await escrow_svc.confirm_escrow_funding(
        db,
        escrow_id=body.escrow_id,
        processor_reference=body.processor_reference,
    )
