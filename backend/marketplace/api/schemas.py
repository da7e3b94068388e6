from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from marketplace.services.state_machine import (
    ApplicationStatus,
    EscrowStatus,
    MilestoneTrigger,
)


class ErrorResponse(BaseModel):
    detail: str
    code: str


# ---------------------------------------------------------------------------
# Campaign
# ---------------------------------------------------------------------------


class CampaignCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    max_creators: int | None = Field(default=None, ge=1)
    application_deadline: datetime | None = None
    budget_min: Decimal | None = Field(default=None, ge=0)
    budget_max: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class CampaignResponse(BaseModel):
    id: int
    brand_owner_id: int
    title: str
    description: str | None
    status: str
    max_creators: int
    current_creators: int
    application_deadline: datetime | None
    budget_min: Decimal | None
    budget_max: Decimal | None
    currency: str
    published_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


class ApplicationCreate(BaseModel):
    pitch: str | None = None
    proposed_rate: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class ApplicationTransitionRequest(BaseModel):
    target_status: ApplicationStatus
    reason: str | None = None


class ApplicationResponse(BaseModel):
    id: int
    campaign_id: int
    creator_owner_id: int
    pitch: str | None
    proposed_rate: Decimal | None
    currency: str
    status: str
    rejection_reason: str | None
    applied_at: datetime
    reviewed_at: datetime | None
    shortlisted_at: datetime | None
    rejected_at: datetime | None
    hired_at: datetime | None
    withdrawn_at: datetime | None

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class MilestoneCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    trigger_type: MilestoneTrigger = MilestoneTrigger.MANUAL
    order_index: int = Field(default=0, ge=0)
    due_date: datetime | None = None


class ContractCreate(BaseModel):
    application_id: int
    terms: dict[str, Any] | None = None
    total_amount: Decimal = Field(..., gt=0, decimal_places=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    start_date: datetime | None = None
    end_date: datetime | None = None
    milestones: list[MilestoneCreate] = Field(default_factory=list)


class ContractCancelRequest(BaseModel):
    reason: str | None = None


class MilestoneResponse(BaseModel):
    id: int
    contract_id: int
    title: str
    description: str | None
    amount: Decimal
    status: str
    trigger_type: str
    order_index: int
    due_date: datetime | None
    completed_at: datetime | None
    paid_at: datetime | None

    model_config = {"from_attributes": True}


class ContractResponse(BaseModel):
    id: int
    application_id: int
    campaign_id: int
    brand_user_id: int
    creator_user_id: int
    contract_number: str
    terms: dict[str, Any] | None
    total_amount: Decimal
    currency: str
    status: str
    start_date: datetime | None
    end_date: datetime | None
    brand_signed_at: datetime | None
    creator_signed_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    milestones: list[MilestoneResponse] = []

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Escrow
# ---------------------------------------------------------------------------


class EscrowFundRequest(BaseModel):
    processor_reference: str | None = Field(default=None, max_length=128)


class DisputeOpenRequest(BaseModel):
    reason: str | None = None


class DisputeResolveRequest(BaseModel):
    target_status: EscrowStatus
    note: str | None = None


class FundingConfirmedRequest(BaseModel):
    escrow_id: int | None = None
    processor_reference: str | None = Field(default=None, max_length=128)


class EscrowResponse(BaseModel):
    id: int
    contract_id: int
    brand_user_id: int
    creator_user_id: int
    total_amount: Decimal
    platform_fee: Decimal
    fee_rate: Decimal
    released_amount: Decimal
    refunded_amount: Decimal
    fee_rounding_delta: Decimal | None
    currency: str
    status: str
    status_before_dispute: str | None
    dispute_reason: str | None
    processor_reference: str | None
    funded_at: datetime | None
    released_at: datetime | None
    refunded_at: datetime | None

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    id: int
    escrow_transaction_id: int
    milestone_id: int | None
    recipient_user_id: int
    amount: Decimal
    platform_fee: Decimal
    net_amount: Decimal
    currency: str
    status: str
    type: str
    completed_at: datetime | None

    model_config = {"from_attributes": True}


class MilestoneReleaseResponse(BaseModel):
    payment: PaymentResponse
    milestone: MilestoneResponse
    escrow: EscrowResponse


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------


class PublicConfigResponse(BaseModel):
    platform_fee_rate: Decimal
    default_currency: str
    default_max_creators: int
    escrow_auto_confirm: bool
