from collections.abc import AsyncGenerator
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from marketplace.api.schemas import (
    ApplicationCreate,
    CampaignCreate,
    ContractCreate,
    MilestoneCreate,
)
from marketplace.core.deps import get_db
from marketplace.core.rate_limit import limiter
from marketplace.core.security import create_access_token
from marketplace.db.base import Base
from marketplace.main import app
from marketplace.models.user import BrandProfile, CreatorProfile, User
from marketplace.services import application as application_svc
from marketplace.services import campaign as campaign_svc
from marketplace.services import contract as contract_svc
from marketplace.services import escrow as escrow_svc
from marketplace.services.state_machine import ApplicationStatus, MilestoneTrigger


@pytest.fixture(autouse=True)
def _no_rate_limit():
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def setup_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session used to build fixture state.

    Kept apart from ``db`` so a rollback in the code under test never
    expires the fixture objects a test still reads ids from.
    """
    async with session_factory() as session:
        yield session


async def _make_user(
    db: AsyncSession,
    email: str,
    role: str,
    *,
    brand: bool = False,
    creator: bool = False,
) -> User:
    user = User(email=email, display_name=email.split("@")[0], role=role)
    db.add(user)
    await db.flush()
    if brand:
        db.add(BrandProfile(user_id=user.id, company_name=f"{user.display_name} Inc"))
    if creator:
        db.add(CreatorProfile(user_id=user.id, display_name=user.display_name))
    await db.commit()
    return user


@pytest.fixture
async def brand(setup_db) -> User:
    return await _make_user(setup_db, "brand@example.com", "brand", brand=True)


@pytest.fixture
async def creator(setup_db) -> User:
    return await _make_user(setup_db, "creator@example.com", "creator", creator=True)


@pytest.fixture
async def other_creator(setup_db) -> User:
    return await _make_user(setup_db, "other@example.com", "creator", creator=True)


@pytest.fixture
async def outsider(setup_db) -> User:
    return await _make_user(setup_db, "outsider@example.com", "creator", creator=True)


@pytest.fixture
async def admin(setup_db) -> User:
    return await _make_user(setup_db, "admin@example.com", "admin")


@pytest.fixture
async def draft_campaign(setup_db, brand):
    return await campaign_svc.create_campaign(
        setup_db,
        brand.id,
        CampaignCreate(
            title="Spring launch",
            description="Short-form videos for the spring collection",
            max_creators=2,
            budget_min=Decimal("50"),
            budget_max=Decimal("500"),
        ),
    )


@pytest.fixture
async def campaign(setup_db, brand, draft_campaign):
    return await campaign_svc.publish_campaign(setup_db, draft_campaign.id, brand.id)


@pytest.fixture
async def application(setup_db, creator, campaign):
    return await application_svc.submit_application(
        setup_db,
        campaign.id,
        creator.id,
        ApplicationCreate(pitch="Three reels", proposed_rate=Decimal("100")),
    )


async def _hire(db, brand_id: int, application_id: int):
    for target in (
        ApplicationStatus.UNDER_REVIEW,
        ApplicationStatus.SHORTLISTED,
        ApplicationStatus.HIRED,
    ):
        application = await application_svc.transition_application(
            db, application_id, brand_id, target
        )
    return application


@pytest.fixture
async def hired_application(setup_db, brand, application):
    return await _hire(setup_db, brand.id, application.id)


def _contract_payload(application_id: int) -> ContractCreate:
    # 33.33 + 33.33 + 33.34: per-milestone fees sum to 9.99 against a 10.00 total fee
    return ContractCreate(
        application_id=application_id,
        terms={"deliverables": "3 reels", "usage": "12 months"},
        total_amount=Decimal("100.00"),
        milestones=[
            MilestoneCreate(
                title="Kickoff",
                amount=Decimal("33.33"),
                trigger_type=MilestoneTrigger.CONTRACT_SIGNED,
            ),
            MilestoneCreate(title="First cut", amount=Decimal("33.33")),
            MilestoneCreate(title="Final delivery", amount=Decimal("33.34")),
        ],
    )


@pytest.fixture
async def contract(setup_db, brand, hired_application):
    return await contract_svc.create_contract(
        setup_db, brand.id, _contract_payload(hired_application.id)
    )


@pytest.fixture
async def active_contract(setup_db, brand, creator, contract):
    await contract_svc.send_contract_for_signature(setup_db, contract.id, brand.id)
    return await contract_svc.sign_contract(setup_db, contract.id, creator.id)


@pytest.fixture
async def funded_escrow(setup_db, brand, active_contract):
    await escrow_svc.fund_escrow(
        setup_db, active_contract.id, brand.id, processor_reference="pi_test_001"
    )
    return await escrow_svc.confirm_escrow_funding(setup_db, processor_reference="pi_test_001")


@pytest.fixture
def hire():
    return _hire


@pytest.fixture
def contract_payload():
    return _contract_payload


@pytest.fixture
def auth():
    """Build Bearer headers for a user, the way the auth service would sign them."""

    def _auth(user: User) -> dict[str, str]:
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}

    return _auth


@pytest.fixture
async def client(session_factory, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the FastAPI app and the test store (no real server)."""

    async def _get_test_db():
        async with session_factory() as session:
            yield session

    monkeypatch.setattr(
        "marketplace.api.escrow.check_idempotency", AsyncMock(return_value=True)
    )
    app.dependency_overrides[get_db] = _get_test_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
    app.dependency_overrides.clear()
