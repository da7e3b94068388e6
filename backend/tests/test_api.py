"""HTTP surface: routing, auth, error rendering and one full round trip."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from marketplace.core.config import settings

INTERNAL = {"X-Internal-Token": settings.internal_api_token}


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_check(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
        assert resp.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        resp = await client.get("/api/health", headers={"X-Request-ID": "trace-123"})
        assert resp.headers["X-Request-ID"] == "trace-123"

    @pytest.mark.asyncio
    async def test_public_config(self, client):
        resp = await client.get("/api/config/public")
        assert resp.status_code == 200
        data = resp.json()
        assert Decimal(str(data["platform_fee_rate"])) == settings.platform_fee_rate
        assert data["default_currency"] == "USD"


class TestAuth:
    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        resp = await client.post("/api/campaigns", json={"title": "x"})
        assert resp.status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_bad_token(self, client):
        resp = await client.post(
            "/api/campaigns",
            json={"title": "x"},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_internal_requires_shared_secret(self, client):
        resp = await client.post(
            "/api/internal/escrow/funding-confirmed",
            json={"escrow_id": 1},
            headers={"X-Internal-Token": "wrong"},
        )
        assert resp.status_code == 401


class TestErrorRendering:
    @pytest.mark.asyncio
    async def test_forbidden(self, client, auth, creator, draft_campaign):
        resp = await client.post(
            f"/api/campaigns/{draft_campaign.id}/publish", headers=auth(creator)
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "forbidden"

    @pytest.mark.asyncio
    async def test_not_found(self, client, auth, brand):
        resp = await client.post("/api/campaigns/999/publish", headers=auth(brand))
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_invalid_transition(self, client, auth, brand, application):
        resp = await client.post(
            f"/api/applications/{application.id}/transition",
            json={"target_status": "HIRED"},
            headers=auth(brand),
        )
        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == "invalid_transition"
        assert "APPLIED -> HIRED" in body["detail"]

    @pytest.mark.asyncio
    async def test_rejection_without_reason(self, client, auth, brand, application):
        resp = await client.post(
            f"/api/applications/{application.id}/transition",
            json={"target_status": "REJECTED"},
            headers=auth(brand),
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_unknown_status_rejected_by_schema(self, client, auth, brand, application):
        resp = await client.post(
            f"/api/applications/{application.id}/transition",
            json={"target_status": "ARCHIVED"},
            headers=auth(brand),
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_sub_cent_milestone_rejected_by_schema(
        self, client, auth, brand, hired_application
    ):
        resp = await client.post(
            "/api/contracts",
            json={
                "application_id": hired_application.id,
                "total_amount": "10.00",
                "milestones": [{"title": "Tiny", "amount": "0.004"}],
            },
            headers=auth(brand),
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_delete_draft_campaign(self, client, auth, brand, draft_campaign):
        resp = await client.delete(f"/api/campaigns/{draft_campaign.id}", headers=auth(brand))
        assert resp.status_code == 204


class TestEscrowEndpoints:
    @pytest.mark.asyncio
    async def test_second_fund_without_key_is_conflict(
        self, client, auth, brand, funded_escrow, active_contract, monkeypatch
    ):
        seen = AsyncMock(return_value=False)
        monkeypatch.setattr("marketplace.api.escrow.check_idempotency", seen)
        resp = await client.post(
            f"/api/escrow/contracts/{active_contract.id}/fund", json={}, headers=auth(brand)
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "conflict"
        seen.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_replayed_key_returns_existing(
        self, client, auth, brand, funded_escrow, active_contract, monkeypatch
    ):
        seen = AsyncMock(return_value=False)
        monkeypatch.setattr("marketplace.api.escrow.check_idempotency", seen)
        resp = await client.post(
            f"/api/escrow/contracts/{active_contract.id}/fund",
            json={},
            headers={**auth(brand), "Idempotency-Key": "fund-attempt-1"},
        )
        assert resp.status_code == 201
        assert resp.json()["id"] == funded_escrow.id
        assert seen.await_args.args[0].endswith(":fund-attempt-1")

    @pytest.mark.asyncio
    async def test_escrow_read_by_party_only(
        self, client, auth, creator, outsider, funded_escrow, active_contract
    ):
        resp = await client.get(
            f"/api/escrow/contracts/{active_contract.id}", headers=auth(creator)
        )
        assert resp.status_code == 200
        assert resp.json()["id"] == funded_escrow.id
        assert resp.json()["status"] == "FUNDED"

        resp = await client.get(
            f"/api/escrow/contracts/{active_contract.id}", headers=auth(outsider)
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "forbidden"

    @pytest.mark.asyncio
    async def test_processor_confirmation_by_reference(
        self, client, auth, brand, active_contract
    ):
        resp = await client.post(
            f"/api/escrow/contracts/{active_contract.id}/fund",
            json={"processor_reference": "pi_abc"},
            headers=auth(brand),
        )
        assert resp.status_code == 201
        assert resp.json()["status"] == "PENDING_DEPOSIT"

        for _ in range(2):
            resp = await client.post(
                "/api/internal/escrow/funding-confirmed",
                json={"processor_reference": "pi_abc"},
                headers=INTERNAL,
            )
            assert resp.status_code == 200
            assert resp.json()["status"] == "FUNDED"

    @pytest.mark.asyncio
    async def test_dispute_and_admin_resolution(
        self, client, auth, brand, creator, admin, funded_escrow, active_contract
    ):
        resp = await client.post(
            f"/api/escrow/contracts/{active_contract.id}/dispute",
            json={"reason": "Deliverable missing"},
            headers=auth(creator),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "DISPUTED"

        resp = await client.post(
            f"/api/escrow/{funded_escrow.id}/resolve",
            json={"target_status": "REFUNDED"},
            headers=auth(brand),
        )
        assert resp.status_code == 403

        resp = await client.post(
            f"/api/escrow/{funded_escrow.id}/resolve",
            json={"target_status": "REFUNDED", "note": "No delivery"},
            headers=auth(admin),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "REFUNDED"
        assert Decimal(body["refunded_amount"]) == Decimal("100.00")


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_campaign_to_fully_released(self, client, auth, brand, creator):
        resp = await client.post(
            "/api/campaigns",
            json={
                "title": "Summer drop",
                "description": "Two reels and a story",
                "max_creators": 1,
            },
            headers=auth(brand),
        )
        assert resp.status_code == 201
        campaign_id = resp.json()["id"]
        assert resp.json()["status"] == "DRAFT"

        resp = await client.post(f"/api/campaigns/{campaign_id}/publish", headers=auth(brand))
        assert resp.json()["status"] == "PUBLISHED"

        resp = await client.post(
            f"/api/campaigns/{campaign_id}/applications",
            json={"pitch": "Love the brand", "proposed_rate": "250"},
            headers=auth(creator),
        )
        assert resp.status_code == 201
        application_id = resp.json()["id"]

        for target in ("UNDER_REVIEW", "SHORTLISTED", "HIRED"):
            resp = await client.post(
                f"/api/applications/{application_id}/transition",
                json={"target_status": target},
                headers=auth(brand),
            )
            assert resp.status_code == 200, resp.text
        assert resp.json()["hired_at"] is not None

        resp = await client.post(
            "/api/contracts",
            json={
                "application_id": application_id,
                "total_amount": "250.00",
                "terms": {"reels": 2, "stories": 1},
                "milestones": [
                    {"title": "Signing", "amount": "100.00", "trigger_type": "CONTRACT_SIGNED"},
                    {"title": "Delivery", "amount": "150.00"},
                ],
            },
            headers=auth(brand),
        )
        assert resp.status_code == 201, resp.text
        contract = resp.json()
        signing, delivery = (m["id"] for m in contract["milestones"])

        resp = await client.post(f"/api/contracts/{contract['id']}/send", headers=auth(brand))
        assert resp.json()["status"] == "PENDING_CREATOR_SIGNATURE"
        resp = await client.post(f"/api/contracts/{contract['id']}/sign", headers=auth(creator))
        assert resp.json()["status"] == "ACTIVE"
        assert resp.json()["milestones"][0]["status"] == "READY"

        resp = await client.post(
            f"/api/escrow/contracts/{contract['id']}/fund", json={}, headers=auth(brand)
        )
        assert resp.status_code == 201, resp.text
        escrow = resp.json()
        assert Decimal(escrow["platform_fee"]) == Decimal("25.00")

        resp = await client.post(
            "/api/internal/escrow/funding-confirmed",
            json={"escrow_id": escrow["id"]},
            headers=INTERNAL,
        )
        assert resp.json()["status"] == "FUNDED"

        resp = await client.post(f"/api/escrow/milestones/{signing}/release", headers=auth(brand))
        assert resp.status_code == 200, resp.text
        assert resp.json()["escrow"]["status"] == "PARTIALLY_RELEASED"
        assert Decimal(resp.json()["payment"]["net_amount"]) == Decimal("90.00")

        resp = await client.post(f"/api/milestones/{delivery}/ready", headers=auth(brand))
        assert resp.json()["status"] == "READY"

        resp = await client.post(f"/api/escrow/milestones/{delivery}/release", headers=auth(brand))
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["milestone"]["status"] == "PAID"
        assert body["escrow"]["status"] == "FULLY_RELEASED"
        assert Decimal(body["escrow"]["released_amount"]) == Decimal("250.00")
        assert Decimal(body["escrow"]["fee_rounding_delta"]) == Decimal("0")

        resp = await client.post(
            f"/api/contracts/{contract['id']}/complete", headers=auth(brand)
        )
        assert resp.json()["status"] == "COMPLETED"


class TestReads:
    @pytest.mark.asyncio
    async def test_application_read(self, client, auth, brand, creator, other_creator, application):
        for user in (brand, creator):
            resp = await client.get(f"/api/applications/{application.id}", headers=auth(user))
            assert resp.status_code == 200
            assert resp.json()["status"] == "APPLIED"

        resp = await client.get(
            f"/api/applications/{application.id}", headers=auth(other_creator)
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_contract_read(self, client, auth, creator, outsider, active_contract):
        resp = await client.get(f"/api/contracts/{active_contract.id}", headers=auth(creator))
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ACTIVE"
        assert [m["status"] for m in body["milestones"]] == ["READY", "PENDING", "PENDING"]

        resp = await client.get(f"/api/contracts/{active_contract.id}", headers=auth(outsider))
        assert resp.status_code == 403
        assert resp.json()["code"] == "forbidden"

    @pytest.mark.asyncio
    async def test_missing_contract(self, client, auth, brand):
        resp = await client.get("/api/contracts/999", headers=auth(brand))
        assert resp.status_code == 404
