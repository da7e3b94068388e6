import re
from decimal import Decimal
from unittest.mock import AsyncMock

import pydantic
import pytest
from sqlalchemy import func, select

from marketplace.api.schemas import ContractCreate, MilestoneCreate
from marketplace.models.audit_log import AuditLog
from marketplace.models.contract import Contract, Milestone
from marketplace.services import contract as contract_svc
from marketplace.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from marketplace.services.state_machine import ContractStatus, MilestoneStatus


async def _milestones(db, contract_id):
    result = await db.execute(
        select(Milestone)
        .where(Milestone.contract_id == contract_id)
        .order_by(Milestone.order_index)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


def test_contract_number_format():
    numbers = {contract_svc.generate_contract_number() for _ in range(20)}
    assert len(numbers) == 20
    for number in numbers:
        assert re.fullmatch(r"MKI-[0-9A-Z]{12,}", number)


class TestCreateContract:
    @pytest.mark.asyncio
    async def test_draft_with_pending_milestones(self, contract, brand, creator, hired_application):
        assert contract.status == ContractStatus.DRAFT
        assert contract.application_id == hired_application.id
        assert contract.brand_user_id == brand.id
        assert contract.creator_user_id == creator.id
        assert contract.total_amount == Decimal("100.00")
        assert contract.contract_number.startswith("MKI-")
        assert [m.status for m in contract.milestones] == [MilestoneStatus.PENDING] * 3
        assert [m.order_index for m in contract.milestones] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_second_contract_is_conflict(
        self, db, brand, contract, hired_application, contract_payload
    ):
        with pytest.raises(ConflictError):
            await contract_svc.create_contract(db, brand.id, contract_payload(hired_application.id))

    @pytest.mark.asyncio
    async def test_concurrent_create_loses_on_unique_constraint(
        self, db, brand, contract, hired_application, contract_payload, monkeypatch
    ):
        """The pre-check read happened before the other create committed."""
        monkeypatch.setattr(
            contract_svc, "_get_contract_for_application", AsyncMock(return_value=None)
        )
        with pytest.raises(ConflictError):
            await contract_svc.create_contract(db, brand.id, contract_payload(hired_application.id))

        count = await db.scalar(
            select(func.count()).select_from(Contract).where(
                Contract.application_id == hired_application.id
            )
        )
        assert count == 1

    @pytest.mark.asyncio
    async def test_requires_hired_application(self, db, brand, application, contract_payload):
        with pytest.raises(InvalidStateError):
            await contract_svc.create_contract(db, brand.id, contract_payload(application.id))

    @pytest.mark.asyncio
    async def test_only_campaign_owner(self, db, creator, hired_application, contract_payload):
        with pytest.raises(ForbiddenError):
            await contract_svc.create_contract(
                db, creator.id, contract_payload(hired_application.id)
            )

    @pytest.mark.asyncio
    async def test_unknown_application(self, db, brand, contract_payload):
        with pytest.raises(NotFoundError):
            await contract_svc.create_contract(db, brand.id, contract_payload(777))

    @pytest.mark.asyncio
    async def test_milestone_above_total(self, db, brand, hired_application):
        payload = ContractCreate(
            application_id=hired_application.id,
            total_amount=Decimal("50"),
            milestones=[MilestoneCreate(title="Everything", amount=Decimal("50.01"))],
        )
        with pytest.raises(ValidationError):
            await contract_svc.create_contract(db, brand.id, payload)

    @pytest.mark.asyncio
    async def test_explicit_order_kept(self, db, brand, hired_application):
        payload = ContractCreate(
            application_id=hired_application.id,
            total_amount=Decimal("30"),
            milestones=[
                MilestoneCreate(title="Second", amount=Decimal("10"), order_index=2),
                MilestoneCreate(title="First", amount=Decimal("20"), order_index=1),
            ],
        )
        contract = await contract_svc.create_contract(db, brand.id, payload)
        assert [m.title for m in await _milestones(db, contract.id)] == ["First", "Second"]


class TestSignature:
    @pytest.mark.asyncio
    async def test_send_then_sign(self, db, brand, creator, contract):
        sent = await contract_svc.send_contract_for_signature(db, contract.id, brand.id)
        assert sent.status == ContractStatus.PENDING_CREATOR_SIGNATURE
        assert sent.brand_signed_at is not None

        signed = await contract_svc.sign_contract(db, contract.id, creator.id)
        assert signed.status == ContractStatus.ACTIVE
        assert signed.creator_signed_at is not None
        assert signed.start_date is not None

    @pytest.mark.asyncio
    async def test_signing_readies_signature_milestones(self, db, active_contract):
        kickoff, first_cut, final = await _milestones(db, active_contract.id)
        assert kickoff.status == MilestoneStatus.READY
        assert kickoff.completed_at is not None
        assert first_cut.status == MilestoneStatus.PENDING
        assert final.status == MilestoneStatus.PENDING

    @pytest.mark.asyncio
    async def test_creator_cannot_send(self, db, creator, contract):
        with pytest.raises(ForbiddenError):
            await contract_svc.send_contract_for_signature(db, contract.id, creator.id)

    @pytest.mark.asyncio
    async def test_brand_cannot_sign(self, db, brand, contract):
        await contract_svc.send_contract_for_signature(db, contract.id, brand.id)
        with pytest.raises(ForbiddenError):
            await contract_svc.sign_contract(db, contract.id, brand.id)

    @pytest.mark.asyncio
    async def test_sign_draft_is_invalid(self, db, creator, contract):
        with pytest.raises(InvalidTransitionError):
            await contract_svc.sign_contract(db, contract.id, creator.id)

    @pytest.mark.asyncio
    async def test_outsider(self, db, outsider, contract):
        with pytest.raises(ForbiddenError):
            await contract_svc.cancel_contract(db, contract.id, outsider.id, "Not mine")


class TestCancellation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("reason", [None, "", "  "])
    async def test_reason_required(self, db, brand, contract, reason):
        with pytest.raises(ValidationError):
            await contract_svc.cancel_contract(db, contract.id, brand.id, reason)
        stored = await db.get(Contract, contract.id)
        await db.refresh(stored)
        assert stored.status == ContractStatus.DRAFT

    @pytest.mark.asyncio
    async def test_cancel_cascades_to_open_milestones(self, db, creator, active_contract):
        cancelled = await contract_svc.cancel_contract(
            db, active_contract.id, creator.id, "Creator unavailable"
        )
        assert cancelled.status == ContractStatus.CANCELLED
        assert cancelled.cancellation_reason == "Creator unavailable"
        assert cancelled.cancelled_at is not None
        assert {m.status for m in await _milestones(db, active_contract.id)} == {
            MilestoneStatus.CANCELLED
        }

        entry = (
            await db.execute(select(AuditLog).where(AuditLog.action == "contract_cancelled"))
        ).scalar_one()
        assert entry.user_id == creator.id

    @pytest.mark.asyncio
    async def test_cancelled_is_terminal(self, db, brand, contract):
        await contract_svc.cancel_contract(db, contract.id, brand.id, "Budget cut")
        with pytest.raises(InvalidTransitionError):
            await contract_svc.send_contract_for_signature(db, contract.id, brand.id)


class TestCompletion:
    @pytest.mark.asyncio
    async def test_brand_completes_active(self, db, brand, active_contract):
        completed = await contract_svc.complete_contract(db, active_contract.id, brand.id)
        assert completed.status == ContractStatus.COMPLETED
        assert completed.completed_at is not None

    @pytest.mark.asyncio
    async def test_draft_cannot_complete(self, db, brand, contract):
        with pytest.raises(InvalidTransitionError):
            await contract_svc.complete_contract(db, contract.id, brand.id)


class TestMilestoneReady:
    @pytest.mark.asyncio
    async def test_brand_marks_ready(self, db, brand, active_contract):
        _, first_cut, _ = active_contract.milestones
        ready = await contract_svc.mark_milestone_ready(db, first_cut.id, brand.id)
        assert ready.status == MilestoneStatus.READY
        assert ready.completed_at is not None

    @pytest.mark.asyncio
    async def test_creator_cannot_mark_ready(self, db, creator, active_contract):
        _, first_cut, _ = active_contract.milestones
        with pytest.raises(ForbiddenError):
            await contract_svc.mark_milestone_ready(db, first_cut.id, creator.id)

    @pytest.mark.asyncio
    async def test_draft_contract_milestone_not_ready(self, db, brand, contract):
        with pytest.raises(InvalidStateError):
            await contract_svc.mark_milestone_ready(db, contract.milestones[1].id, brand.id)

    @pytest.mark.asyncio
    async def test_already_ready(self, db, brand, active_contract):
        kickoff = active_contract.milestones[0]
        with pytest.raises(InvalidTransitionError):
            await contract_svc.mark_milestone_ready(db, kickoff.id, brand.id)


class TestMoneyPrecision:
    def test_schema_rejects_sub_cent_milestone(self):
        with pytest.raises(pydantic.ValidationError):
            MilestoneCreate(title="Tiny", amount=Decimal("0.004"))

    def test_schema_rejects_sub_cent_total(self):
        with pytest.raises(pydantic.ValidationError):
            ContractCreate(application_id=1, total_amount=Decimal("10.005"))

    @pytest.mark.asyncio
    async def test_fraction_of_zero_decimal_currency(self, db, brand, hired_application):
        payload = ContractCreate(
            application_id=hired_application.id,
            total_amount=Decimal("1000"),
            currency="JPY",
            milestones=[MilestoneCreate(title="Half", amount=Decimal("500.50"))],
        )
        with pytest.raises(ValidationError):
            await contract_svc.create_contract(db, brand.id, payload)

        count = await db.scalar(select(func.count()).select_from(Contract))
        assert count == 0

    @pytest.mark.asyncio
    async def test_whole_yen_accepted(self, db, brand, hired_application):
        payload = ContractCreate(
            application_id=hired_application.id,
            total_amount=Decimal("1000"),
            currency="jpy",
            milestones=[MilestoneCreate(title="All", amount=Decimal("1000"))],
        )
        contract = await contract_svc.create_contract(db, brand.id, payload)
        assert contract.currency == "JPY"


class TestGetContract:
    @pytest.mark.asyncio
    async def test_parties_read_milestone_status(self, db, brand, creator, active_contract):
        for user in (brand, creator):
            contract = await contract_svc.get_contract(db, active_contract.id, user.id)
            assert contract.status == ContractStatus.ACTIVE
            assert [m.status for m in contract.milestones] == [
                MilestoneStatus.READY,
                MilestoneStatus.PENDING,
                MilestoneStatus.PENDING,
            ]

    @pytest.mark.asyncio
    async def test_outsider_forbidden(self, db, outsider, contract):
        with pytest.raises(ForbiddenError):
            await contract_svc.get_contract(db, contract.id, outsider.id)

    @pytest.mark.asyncio
    async def test_unknown(self, db, brand):
        with pytest.raises(NotFoundError):
            await contract_svc.get_contract(db, 404, brand.id)
