"""
Shared test fixtures: in-memory SQLite async database + FastAPI client.

Strategy:
1. Build the app once with test Settings (no .env, in-memory SQLite)
2. Re-configure the database module per database test so each one gets a
   fresh in-memory database bound to its own event loop
3. Routers resolve get_session at call time and see the per-test engine
"""
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker import database
from ssdf_tracker.config import Settings
from ssdf_tracker.main import create_app
from ssdf_tracker.middleware.context import ActorContext, RequestContext
from ssdf_tracker.models import (
    Base,
    CisControl,
    CisSafeguard,
    ImplementationGroup,
    MappingType,
    Organization,
    Role,
    SsdfCisMapping,
    SsdfGroup,
    SsdfPractice,
    SsdfTask,
)
from ssdf_tracker.schemas.assessment import AssessmentCreate
from ssdf_tracker.services.assessment import create_assessment

TEST_SETTINGS = Settings(
    _env_file=None,
    DATABASE_URL="sqlite+aiosqlite://",
    DEBUG=False,
    LOG_LEVEL="WARNING",
)

fastapi_app = create_app(TEST_SETTINGS)


# ── Fixtures ──

@pytest_asyncio.fixture
async def setup_database():
    """Fresh in-memory database per test."""
    database.configure_database(TEST_SETTINGS)
    async with database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await database.engine.dispose()


@pytest_asyncio.fixture
async def client(setup_database) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def db(setup_database) -> AsyncGenerator[AsyncSession, None]:
    async with database.async_session() as session:
        yield session


# ── Actors ──

def make_actor(role: Role | None, org_ids=None, user_id: str = "u-1") -> ActorContext:
    return ActorContext(
        actor_id=user_id,
        actor_role=role,
        actor_email=f"{user_id}@example.com",
        organization_ids=org_ids,
        request_context=RequestContext(
            request_id=f"req-{user_id}", ip="10.0.0.1", user_agent="pytest", route="/test",
        ),
    )


@pytest.fixture
def actor_factory():
    return make_actor


@pytest.fixture
def admin() -> ActorContext:
    return make_actor(Role.ADMIN, user_id="admin-1")


@pytest.fixture
def assessor(seed_org) -> ActorContext:
    return make_actor(Role.ASSESSOR, frozenset({seed_org}), user_id="assessor-1")


@pytest.fixture
def viewer(seed_org) -> ActorContext:
    return make_actor(Role.VIEWER, frozenset({seed_org}), user_id="viewer-1")


# ── Seed data helpers ──

@pytest_asyncio.fixture
async def seed_org(db: AsyncSession) -> int:
    org = Organization(name="Acme Software")
    db.add(org)
    await db.commit()
    return org.id


@pytest_asyncio.fixture
async def other_org(db: AsyncSession) -> int:
    org = Organization(name="Other Corp")
    db.add(org)
    await db.commit()
    return org.id


@pytest_asyncio.fixture
async def seed_catalog(db: AsyncSession) -> dict[str, int]:
    """Three SSDF tasks, two CIS controls, four mappings.

    PO.1.1 -> 16.1  DIRECT   1.0
    PO.1.2 -> 16.1  PARTIAL  1.0
    PW.1.1 -> 16.14 DIRECT   1.0
    PO.1.1 -> control 4  SUPPORTS 0.5
    """
    db.add_all([
        SsdfGroup(id="PO", name="Prepare the Organization (PO)"),
        SsdfGroup(id="PW", name="Produce Well-Secured Software (PW)"),
    ])
    await db.flush()
    db.add_all([
        SsdfPractice(id="PO.1", group_id="PO", name="Define Security Requirements"),
        SsdfPractice(id="PW.1", group_id="PW", name="Design Software to Meet Security Requirements"),
    ])
    await db.flush()
    db.add_all([
        SsdfTask(id="PO.1.1", practice_id="PO.1", name="Infrastructure security requirements", order_id=1),
        SsdfTask(id="PO.1.2", practice_id="PO.1", name="Software security requirements", order_id=2),
        SsdfTask(id="PW.1.1", practice_id="PW.1", name="Risk modeling", order_id=3),
        CisControl(id="4", name="Secure Configuration of Enterprise Assets and Software"),
        CisControl(id="16", name="Application Software Security"),
    ])
    await db.flush()
    db.add_all([
        CisSafeguard(id="4.1", control_id="4", name="Secure configuration process",
                     implementation_group=ImplementationGroup.IG1),
        CisSafeguard(id="16.1", control_id="16", name="Secure application development process",
                     implementation_group=ImplementationGroup.IG2),
        CisSafeguard(id="16.14", control_id="16", name="Conduct threat modeling",
                     implementation_group=ImplementationGroup.IG3),
    ])
    await db.flush()
    mappings = {
        "po11_16.1": SsdfCisMapping(ssdf_task_id="PO.1.1", cis_safeguard_id="16.1",
                                    mapping_type=MappingType.DIRECT, weight=1.0),
        "po12_16.1": SsdfCisMapping(ssdf_task_id="PO.1.2", cis_safeguard_id="16.1",
                                    mapping_type=MappingType.PARTIAL, weight=1.0),
        "pw11_16.14": SsdfCisMapping(ssdf_task_id="PW.1.1", cis_safeguard_id="16.14",
                                     mapping_type=MappingType.DIRECT, weight=1.0),
        "po11_c4": SsdfCisMapping(ssdf_task_id="PO.1.1", cis_control_id="4",
                                  mapping_type=MappingType.SUPPORTS, weight=0.5),
    }
    db.add_all(mappings.values())
    await db.commit()
    return {key: m.id for key, m in mappings.items()}


@pytest_asyncio.fixture
async def assessment_id(db: AsyncSession, seed_org, seed_catalog, admin) -> int:
    a = await create_assessment(
        db, AssessmentCreate(organization_id=seed_org, name="Platform team 2026"), admin,
    )
    await db.commit()
    return a.id
