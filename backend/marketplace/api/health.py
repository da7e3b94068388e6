from fastapi import APIRouter

from marketplace.api.schemas import PublicConfigResponse
from marketplace.core.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/config/public", response_model=PublicConfigResponse)
async def public_config() -> PublicConfigResponse:
    """Public platform configuration (fees, limits)."""
    return PublicConfigResponse(
        platform_fee_rate=settings.platform_fee_rate,
        default_currency=settings.default_currency,
        default_max_creators=settings.default_max_creators,
        escrow_auto_confirm=settings.escrow_auto_confirm,
    )
