"""Breach reconciliation: sweep, single-ticket reconcile and monotonic flags."""

from datetime import timedelta

import pytest

from helpdesk.config import SLAType
from helpdesk.core import ConflictException, RepositoryException
from helpdesk.sla.application import BreachReconciler
from helpdesk.sla.infrastructure import SQLAlchemyTicketRepository
from tests.conftest import AGENT_A, T0


async def test_urgent_ticket_breaches_response_only_after_45_minutes(make_policy, make_ticket, reconciler):
    await make_policy(priority="urgent", response=30, resolution=240)
    ticket = await make_ticket(priority="urgent", created_at=T0)

    summary = await reconciler.sweep(T0 + timedelta(minutes=45))

    assert summary.response_breaches == 1
    assert summary.resolution_breaches == 0
    assert summary.failed == 0

    stored = await reconciler.reconcile(ticket.id, T0 + timedelta(minutes=45))
    assert stored.sla_response_breached is True
    assert stored.sla_resolution_breached is False


async def test_sweep_is_idempotent(make_policy, make_ticket, reconciler):
    await make_policy(response=30, resolution=240)
    await make_ticket()
    now = T0 + timedelta(hours=5)

    first = await reconciler.sweep(now)
    second = await reconciler.sweep(now)

    assert (first.response_breaches, first.resolution_breaches) == (1, 1)
    assert (second.response_breaches, second.resolution_breaches) == (0, 0)


async def test_nothing_breaches_before_due(make_policy, make_ticket, reconciler):
    await make_policy(response=30, resolution=240)
    ticket = await make_ticket()

    summary = await reconciler.sweep(T0 + timedelta(minutes=30))
    assert summary.response_breaches == 0

    stored = await reconciler.reconcile(ticket.id, T0 + timedelta(minutes=30))
    assert stored.sla_response_breached is False


async def test_met_obligations_are_not_flagged(make_policy, make_ticket, lifecycle, reconciler):
    await make_policy(response=30, resolution=240)
    ticket = await make_ticket()
    await lifecycle.record_first_response(AGENT_A, ticket.id, T0 + timedelta(minutes=10))

    summary = await reconciler.sweep(T0 + timedelta(hours=1))
    assert summary.response_breaches == 0


async def test_breach_flag_never_reverts(make_policy, make_ticket, lifecycle, reconciler):
    await make_policy(response=30, resolution=240)
    ticket = await make_ticket()
    await reconciler.sweep(T0 + timedelta(minutes=45))

    responded = await lifecycle.record_first_response(AGENT_A, ticket.id, T0 + timedelta(minutes=50))
    assert responded.first_response_at is not None
    assert responded.sla_response_breached is True

    await reconciler.sweep(T0 + timedelta(minutes=55))
    again = await reconciler.reconcile(ticket.id, T0 + timedelta(minutes=55))
    assert again.sla_response_breached is True


async def test_untracked_tickets_are_ignored(make_ticket, reconciler):
    await make_ticket(priority="low")
    summary = await reconciler.sweep(T0 + timedelta(days=30))
    assert (summary.response_breaches, summary.resolution_breaches) == (0, 0)


async def test_dry_run_counts_without_writing(make_policy, make_ticket, reconciler):
    await make_policy(response=30, resolution=240)
    ticket = await make_ticket()
    now = T0 + timedelta(minutes=45)

    preview = await reconciler.sweep(now, dry_run=True)
    assert preview.dry_run is True
    assert preview.response_breaches == 1

    # Nothing was written, so the real sweep still finds it
    assert (await reconciler.sweep(now)).response_breaches == 1
    assert (await reconciler.reconcile(ticket.id, now)).sla_response_breached is True


class FlakyTicketRepository(SQLAlchemyTicketRepository):
    """Fails to mark one specific ticket with the given error."""

    def __init__(self, session, failing_id, error):
        super().__init__(session)
        self.failing_id = failing_id
        self.error = error

    async def mark_breached(self, ticket_id, sla_type, current_time):
        if ticket_id == self.failing_id:
            raise self.error
        return await super().mark_breached(ticket_id, sla_type, current_time)


@pytest.mark.parametrize("error", [
    RepositoryException("database unavailable"),
    ConflictException("constraint"),
    ConnectionResetError("reset by peer"),
])
async def test_one_failing_ticket_does_not_stop_the_sweep(session, make_policy, make_ticket, caplog, error):
    await make_policy(response=30, resolution=240)
    broken = await make_ticket()
    healthy = await make_ticket()
    now = T0 + timedelta(minutes=45)

    summary = await BreachReconciler(FlakyTicketRepository(session, broken.id, error)).sweep(now)

    assert summary.failed == 1
    assert summary.response_breaches == 1
    assert any(r.levelname == "ERROR" and "Failed to mark SLA breach" in r.getMessage() for r in caplog.records)

    # Retried on the next cycle once the store recovers
    retry = await BreachReconciler(SQLAlchemyTicketRepository(session)).sweep(now)
    assert retry.response_breaches == 1
    assert retry.failed == 0

    repo = SQLAlchemyTicketRepository(session)
    assert (await repo.get_by_id(healthy.id)).sla_response_breached is True
    assert (await repo.get_by_id(broken.id)).sla_response_breached is True


class BrokenRollbackRepository(FlakyTicketRepository):
    """Rollback itself fails after the marking error."""

    async def rollback(self):
        await super().rollback()
        raise ConnectionResetError("connection lost during rollback")


async def test_failed_rollback_does_not_stop_the_sweep(session, make_policy, make_ticket):
    await make_policy(response=30, resolution=240)
    broken = await make_ticket()
    healthy = await make_ticket()

    repo = BrokenRollbackRepository(session, broken.id, ConnectionResetError("reset by peer"))
    summary = await BreachReconciler(repo).sweep(T0 + timedelta(minutes=45))

    assert summary.failed == 1
    assert summary.response_breaches == 1
    assert (await SQLAlchemyTicketRepository(session).get_by_id(healthy.id)).sla_response_breached is True


class ResponseListingFailsRepository(SQLAlchemyTicketRepository):
    async def list_overdue(self, sla_type, current_time):
        if sla_type == SLAType.RESPONSE:
            raise RepositoryException("listing failed")
        return await super().list_overdue(sla_type, current_time)


async def test_failed_listing_does_not_skip_other_obligation(session, make_policy, make_ticket):
    await make_policy(response=30, resolution=240)
    ticket = await make_ticket()

    summary = await BreachReconciler(ResponseListingFailsRepository(session)).sweep(T0 + timedelta(hours=5))

    assert summary.failed == 1
    assert summary.response_breaches == 0
    assert summary.resolution_breaches == 1
    stored = await SQLAlchemyTicketRepository(session).get_by_id(ticket.id)
    assert stored.sla_resolution_breached is True
    assert stored.sla_response_breached is False
