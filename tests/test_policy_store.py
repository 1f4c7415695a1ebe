"""Policy store: activation, validation, deletion and seeding."""

import asyncio

import pytest

from helpdesk.core import ConflictException, ForbiddenException, ResourceNotFoundException, ValidationException
from helpdesk.sla.application import PolicyCreateRequest, PolicyStore, PolicyUpdateRequest
from helpdesk.sla.domain import SLAConfig
from helpdesk.sla.infrastructure import SQLAlchemyPolicyRepository
from tests.conftest import ADMIN, AGENT_A, CLIENT


async def _active_urgent(store):
    return [p for p in await store.list_policies(ADMIN, priority="urgent") if p.is_active]


async def test_create_returns_active_policy_with_presentation_fields(make_policy):
    policy = await make_policy(response=90, resolution=120)

    assert policy.id is not None
    assert policy.is_active is True
    assert policy.tickets_count == 0
    assert policy.formatted_response_time == "1h 30min"
    assert policy.resolution_time_hours == 2


async def test_activating_new_policy_deactivates_previous(policy_store, make_policy):
    p1 = await make_policy(name="P1")
    p2 = await make_policy(name="P2")

    active = await _active_urgent(policy_store)
    assert [p.id for p in active] == [p2.id]
    assert (await policy_store.get(p1.id)).is_active is False
    assert (await policy_store.resolve("urgent")).id == p2.id


async def test_inactive_create_leaves_current_policy(policy_store, make_policy):
    p1 = await make_policy(name="P1")
    await make_policy(name="P2", is_active=False)
    assert (await policy_store.resolve("urgent")).id == p1.id


async def test_reactivating_via_update(policy_store, make_policy):
    p1 = await make_policy(name="P1")
    p2 = await make_policy(name="P2")

    await policy_store.update(ADMIN, p1.id, PolicyUpdateRequest(is_active=True))

    assert (await policy_store.resolve("urgent")).id == p1.id
    assert (await policy_store.get(p2.id)).is_active is False


async def test_moving_active_policy_to_another_priority(policy_store, make_policy):
    high = await make_policy(priority="high", name="High")
    urgent = await make_policy(priority="urgent", name="Urgent")

    await policy_store.update(ADMIN, urgent.id, PolicyUpdateRequest(priority="high"))

    assert (await policy_store.resolve("high")).id == urgent.id
    assert (await policy_store.get(high.id)).is_active is False
    assert await policy_store.resolve("urgent") is None


async def test_concurrent_activation_leaves_single_active(session_factory, make_policy):
    await make_policy(name="P0")

    async def activate(name):
        async with session_factory() as s:
            store = PolicyStore(SQLAlchemyPolicyRepository(s))
            return await store.create(ADMIN, PolicyCreateRequest(
                name=name, priority="urgent", response_minutes=15, resolution_minutes=60
            ))

    created = await asyncio.gather(activate("P1"), activate("P2"))

    async with session_factory() as s:
        store = PolicyStore(SQLAlchemyPolicyRepository(s))
        active = await _active_urgent(store)
    assert len(active) == 1
    assert active[0].id in {p.id for p in created}


async def test_update_validates_merged_budgets(policy_store, make_policy):
    policy = await make_policy(response=30, resolution=240)

    with pytest.raises(ValidationException) as exc:
        await policy_store.update(ADMIN, policy.id, PolicyUpdateRequest(response_minutes=300))
    assert "resolution_minutes" in exc.value.details

    assert (await policy_store.get(policy.id)).response_minutes == 30


async def test_service_rejects_invalid_priority(policy_store):
    data = PolicyCreateRequest.model_construct(
        name="Bogus", description=None, priority="critical",
        response_minutes=10, resolution_minutes=20, is_active=True,
    )
    with pytest.raises(ValidationException):
        await policy_store.create(ADMIN, data)


def test_request_rejects_resolution_below_response():
    with pytest.raises(ValueError):
        PolicyCreateRequest(name="x", priority="low", response_minutes=60, resolution_minutes=30)


async def test_non_admin_cannot_write(policy_store, make_policy):
    policy = await make_policy()
    data = PolicyCreateRequest(name="x", priority="low", response_minutes=1, resolution_minutes=1)

    with pytest.raises(ForbiddenException):
        await policy_store.create(AGENT_A, data)
    with pytest.raises(ForbiddenException):
        await policy_store.update(CLIENT, policy.id, PolicyUpdateRequest(name="y"))
    with pytest.raises(ForbiddenException):
        await policy_store.delete(AGENT_A, policy.id)


async def test_delete_referenced_policy_conflicts(policy_store, make_policy, make_ticket):
    referenced = await make_policy(name="Referenced")
    await make_ticket(priority="urgent")
    unreferenced = await make_policy(priority="low", name="Unused")

    with pytest.raises(ConflictException):
        await policy_store.delete(ADMIN, referenced.id)
    assert (await policy_store.get(referenced.id)).tickets_count == 1

    await policy_store.delete(ADMIN, unreferenced.id)
    with pytest.raises(ResourceNotFoundException):
        await policy_store.get(unreferenced.id)


async def test_delete_unknown_policy(policy_store):
    with pytest.raises(ResourceNotFoundException):
        await policy_store.delete(ADMIN, "00000000-0000-0000-0000-000000000000")
    with pytest.raises(ResourceNotFoundException):
        await policy_store.get("not-a-uuid")


async def test_list_hides_inactive_from_non_admins(policy_store, make_policy):
    await make_policy(priority="urgent", name="Old")
    await make_policy(priority="urgent", name="New")
    await make_policy(priority="low", name="Low")

    admin_view = await policy_store.list_policies(ADMIN)
    assert [(p.priority, p.name) for p in admin_view] == [
        ("low", "Low"), ("urgent", "New"), ("urgent", "Old")
    ]
    assert [p.name for p in await policy_store.list_policies(ADMIN, is_active=False)] == ["Old"]

    client_view = await policy_store.list_policies(CLIENT, is_active=False)
    assert [p.name for p in client_view] == ["Low", "New"]


async def test_seed_defaults_fills_missing_priorities(policy_store, make_policy):
    await make_policy(priority="urgent", name="Custom urgent")

    assert await policy_store.seed_defaults(SLAConfig()) == 3
    assert await policy_store.seed_defaults(SLAConfig()) == 0

    assert (await policy_store.resolve("urgent")).name == "Custom urgent"
    medium = await policy_store.resolve("medium")
    assert (medium.response_minutes, medium.resolution_minutes) == (240, 1440)
