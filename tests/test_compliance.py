"""Compliance statistics and at-risk / breached listings under caller scope."""

from datetime import date, timedelta

import pytest

from helpdesk.core import ValidationException
from helpdesk.sla.application import PolicyUpdateRequest, TicketUpdateRequest
from tests.conftest import ADMIN, AGENT_A, AGENT_B, CLIENT, T0


async def test_rates_are_100_without_tracked_tickets(aggregator, make_ticket):
    await make_ticket(priority="low")  # no policy, untracked

    report = await aggregator.compliance_stats(ADMIN, current_time=T0)

    assert report.total == 0
    assert report.response.compliance_rate == 100.0
    assert report.resolution.compliance_rate == 100.0
    assert set(report.by_priority) == {"low", "medium", "high", "urgent"}
    assert all(row.response.compliance_rate == 100.0 for row in report.by_priority.values())


async def test_compliance_counts(aggregator, make_policy, make_ticket, lifecycle):
    await make_policy(priority="urgent", response=30, resolution=240)
    await make_policy(priority="high", response=60, resolution=480)
    late = await make_ticket(priority="urgent")
    on_time = await make_ticket(priority="urgent")
    await make_ticket(priority="high")
    await lifecycle.record_first_response(AGENT_A, on_time.id, T0 + timedelta(minutes=5))

    report = await aggregator.compliance_stats(ADMIN, current_time=T0 + timedelta(minutes=45))

    assert report.total == 3
    assert report.response.breached == 1
    assert report.response.compliant == 2
    assert report.response.compliance_rate == 66.67
    # high response due at +60 is within the 30 minute window
    assert report.response.at_risk == 1
    assert report.resolution.breached == 0

    urgent = report.by_priority["urgent"]
    assert urgent.total == 2
    assert urgent.response.breached == 1
    assert urgent.response.compliance_rate == 50.0
    assert report.by_priority["low"].total == 0
    assert late.id != on_time.id


async def test_compliance_is_scoped_before_aggregation(aggregator, make_policy, make_ticket):
    await make_policy(response=30, resolution=240)
    await make_ticket(user_id=CLIENT.user_id)
    await make_ticket(user_id="client-2", assigned_to=AGENT_B.user_id)

    now = T0 + timedelta(minutes=45)
    assert (await aggregator.compliance_stats(CLIENT, current_time=now)).total == 1
    assert (await aggregator.compliance_stats(AGENT_A, current_time=now)).total == 1
    assert (await aggregator.compliance_stats(AGENT_B, current_time=now)).total == 2
    assert (await aggregator.compliance_stats(ADMIN, current_time=now)).total == 2


async def test_date_range_is_inclusive_of_date_to(aggregator, make_policy, make_ticket):
    await make_policy(response=30, resolution=240)
    await make_ticket(created_at=T0 + timedelta(hours=23, minutes=59))
    await make_ticket(created_at=T0 + timedelta(days=1))

    report = await aggregator.compliance_stats(
        ADMIN, date_from=date(2024, 1, 1), date_to=date(2024, 1, 1), current_time=T0
    )
    assert report.total == 1

    with pytest.raises(ValidationException):
        await aggregator.compliance_stats(ADMIN, date_from=date(2024, 2, 1), date_to=date(2024, 1, 1))


async def test_agent_at_risk_includes_unassigned_but_not_other_agents(aggregator, make_policy, make_ticket):
    await make_policy(response=30, resolution=240)
    own = await make_ticket(assigned_to=AGENT_A.user_id)
    unassigned = await make_ticket(assigned_to=None)
    await make_ticket(assigned_to=AGENT_B.user_id)

    tickets = await aggregator.at_risk(AGENT_A, minutes=60, current_time=T0 + timedelta(minutes=10))

    assert {t.id for t in tickets} == {own.id, unassigned.id}


async def test_at_risk_sorted_by_sooner_deadline(aggregator, make_policy, make_ticket):
    await make_policy(priority="urgent", response=30, resolution=240)
    await make_policy(priority="high", response=60, resolution=480)
    high = await make_ticket(priority="high", created_at=T0)
    urgent = await make_ticket(priority="urgent", created_at=T0 + timedelta(minutes=5))

    tickets = await aggregator.at_risk(ADMIN, minutes=120, current_time=T0)

    assert [t.id for t in tickets] == [urgent.id, high.id]


async def test_at_risk_excludes_breached_and_met(aggregator, make_policy, make_ticket, lifecycle):
    await make_policy(response=30, resolution=240)
    overdue = await make_ticket(created_at=T0 - timedelta(hours=1))
    answered = await make_ticket(created_at=T0)
    await lifecycle.record_first_response(AGENT_A, answered.id, T0 + timedelta(minutes=1))

    tickets = await aggregator.at_risk(ADMIN, minutes=60, current_time=T0 + timedelta(minutes=2))

    assert overdue.id not in {t.id for t in tickets}
    assert answered.id not in {t.id for t in tickets}


async def test_at_risk_minutes_bounds(aggregator):
    with pytest.raises(ValidationException):
        await aggregator.at_risk(ADMIN, minutes=0)
    with pytest.raises(ValidationException):
        await aggregator.at_risk(ADMIN, minutes=10081)


async def test_breached_listing_paginates_newest_first(aggregator, make_policy, make_ticket):
    await make_policy(response=30, resolution=240)
    tickets = [await make_ticket(created_at=T0 + timedelta(minutes=i)) for i in range(3)]
    now = T0 + timedelta(minutes=40)

    page1, total = await aggregator.breached(ADMIN, page=1, per_page=2, current_time=now)
    page2, _ = await aggregator.breached(ADMIN, page=2, per_page=2, current_time=now)

    assert total == 3
    assert [t.id for t in page1] == [tickets[2].id, tickets[1].id]
    assert [t.id for t in page2] == [tickets[0].id]


async def test_breached_filter_by_type(aggregator, make_policy, make_ticket, lifecycle):
    await make_policy(response=30, resolution=240)
    ticket = await make_ticket()
    await lifecycle.record_first_response(AGENT_A, ticket.id, T0 + timedelta(minutes=5))
    now = T0 + timedelta(hours=5)

    _, response_total = await aggregator.breached(ADMIN, sla_type="response", current_time=now)
    _, resolution_total = await aggregator.breached(ADMIN, sla_type="resolution", current_time=now)

    assert response_total == 0
    assert resolution_total == 1

    with pytest.raises(ValidationException):
        await aggregator.breached(ADMIN, sla_type="escalation")
    with pytest.raises(ValidationException):
        await aggregator.breached(ADMIN, per_page=101)


async def test_grouping_follows_bound_policy_priority(aggregator, policy_store, lifecycle, make_policy, make_ticket):
    policy = await make_policy(priority="urgent", response=30, resolution=240)
    ticket = await make_ticket(priority="urgent")

    await lifecycle.update_attributes(ADMIN, ticket.id, TicketUpdateRequest(priority="low"))
    report = await aggregator.compliance_stats(ADMIN, current_time=T0)
    assert report.by_priority["urgent"].total == 1
    assert report.by_priority["low"].total == 0

    await policy_store.update(ADMIN, policy.id, PolicyUpdateRequest(priority="high"))
    report = await aggregator.compliance_stats(ADMIN, current_time=T0)
    assert report.by_priority["urgent"].total == 0
    assert report.by_priority["high"].total == 1
