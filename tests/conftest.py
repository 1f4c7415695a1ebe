"""
Shared pytest fixtures for the SLA engine test suite.

Provides:
    - database: fresh SQLite file database per test
    - session: AsyncSession bound to that database
    - policy_store / lifecycle / reconciler / aggregator: services over the
      real SQLAlchemy repositories
    - client: httpx AsyncClient against the FastAPI app
    - callers: admin, two agents and a client
"""

from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from helpdesk.infrastructure.database import (
    close_database, create_tables, get_session_maker, init_database
)
from helpdesk.sla.application import (
    BreachReconciler, ComplianceAggregator, DeadlineCalculator,
    PolicyCreateRequest, PolicyStore, TicketCreatedEvent, TicketLifecycleService
)
from helpdesk.sla.domain import Caller, SLAConfig
from helpdesk.sla.infrastructure import SQLAlchemyPolicyRepository, SQLAlchemyTicketRepository

ADMIN = Caller(user_id="admin-1", role="admin")
AGENT_A = Caller(user_id="agent-a", role="agent")
AGENT_B = Caller(user_id="agent-b", role="agent")
CLIENT = Caller(user_id="client-1", role="client")

T0 = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)


def headers_for(caller: Caller) -> dict:
    return {"X-User-Id": caller.user_id, "X-User-Role": caller.role}


# ── Database fixtures ────────────────────────────────────────────────────


@pytest.fixture
async def database(tmp_path):
    """Create the schema in a throwaway SQLite file."""
    init_database(f"sqlite+aiosqlite:///{tmp_path / 'sla.db'}")
    await create_tables()
    yield
    await close_database()


@pytest.fixture
async def session(database):
    async with get_session_maker()() as s:
        yield s


@pytest.fixture
def session_factory(database):
    """Open extra sessions, e.g. to simulate concurrent requests."""
    return get_session_maker()


# ── Service fixtures ─────────────────────────────────────────────────────


@pytest.fixture
def policy_store(session):
    return PolicyStore(SQLAlchemyPolicyRepository(session))


@pytest.fixture
def lifecycle(session, policy_store):
    return TicketLifecycleService(
        SQLAlchemyTicketRepository(session),
        DeadlineCalculator(policy_store),
        policy_store,
    )


@pytest.fixture
def reconciler(session):
    return BreachReconciler(SQLAlchemyTicketRepository(session))


@pytest.fixture
def aggregator(session):
    return ComplianceAggregator(SQLAlchemyTicketRepository(session), SLAConfig())


@pytest.fixture
def make_policy(policy_store):
    async def _make(priority="urgent", response=30, resolution=240, name=None, is_active=True, at=None):
        return await policy_store.create(
            ADMIN,
            PolicyCreateRequest(
                name=name or f"{priority.title()} SLA",
                priority=priority,
                response_minutes=response,
                resolution_minutes=resolution,
                is_active=is_active,
            ),
            current_time=at,
        )
    return _make


@pytest.fixture
def make_ticket(lifecycle):
    counter = {"n": 0}

    async def _make(priority="urgent", created_at=T0, user_id="client-1", assigned_to=None,
                    caller=ADMIN, number=None):
        counter["n"] += 1
        ticket, _ = await lifecycle.register(
            caller,
            TicketCreatedEvent(
                ticket_number=number or f"TKT-{counter['n']:04d}",
                title=f"Ticket {counter['n']}",
                priority=priority,
                user_id=user_id,
                assigned_to=assigned_to,
                created_at=created_at,
            ),
        )
        return ticket
    return _make


# ── HTTP client ──────────────────────────────────────────────────────────


@pytest.fixture
async def client(database):
    from helpdesk.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
