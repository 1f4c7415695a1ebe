"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.
"""

from contextlib import contextmanager
from typing import List, Optional, Tuple
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

from sqlalchemy import (
    select, update, delete, func, case, and_, or_, true, literal
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.sla.application.services import IPolicyRepository, ITicketRepository
from helpdesk.sla.domain import (
    SlaPolicy, Ticket, Caller, ObligationStats, PriorityCompliance
)
from helpdesk.sla.infrastructure.models import SlaPolicyModel, TicketModel
from helpdesk.infrastructure.database import UTCDateTime
from helpdesk.config import SLAType, VALID_PRIORITIES, VALID_SLA_TYPES
from helpdesk.core import ConflictException, RepositoryException

# Stand-in for a missing due timestamp when ordering by the sooner deadline
FAR_FUTURE = datetime(9999, 12, 31, tzinfo=timezone.utc)


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


@contextmanager
def _db_errors(operation: str):
    """Translate SQLAlchemy errors into application exceptions."""
    try:
        yield
    except IntegrityError as e:
        raise ConflictException(
            f"{operation} violates a database constraint",
            {"error": str(e.orig)}
        ) from e
    except SQLAlchemyError as e:
        raise RepositoryException(f"{operation} failed", {"error": str(e)}) from e


def _due_column(sla_type: str):
    if sla_type == SLAType.RESPONSE:
        return TicketModel.sla_response_due_at
    return TicketModel.sla_resolution_due_at


def _event_column(sla_type: str):
    if sla_type == SLAType.RESPONSE:
        return TicketModel.first_response_at
    return TicketModel.resolved_at


def _flag_column(sla_type: str):
    if sla_type == SLAType.RESPONSE:
        return TicketModel.sla_response_breached
    return TicketModel.sla_resolution_breached


def _breached_clause(sla_type: str, current_time: datetime):
    """Persisted flag, or overdue with the event still missing."""
    due = _due_column(sla_type)
    return or_(
        _flag_column(sla_type).is_(True),
        and_(_event_column(sla_type).is_(None), due.isnot(None), due < current_time),
    )


def _at_risk_clause(sla_type: str, current_time: datetime, minutes: int):
    due = _due_column(sla_type)
    return and_(
        _flag_column(sla_type).is_(False),
        _event_column(sla_type).is_(None),
        due.isnot(None),
        due >= current_time,
        due <= current_time + timedelta(minutes=minutes),
    )


def _scope_clause(caller: Caller):
    """Row-level visibility, applied before any aggregation."""
    if caller.is_admin:
        return true()
    if caller.is_agent:
        return or_(TicketModel.assigned_to.is_(None), TicketModel.assigned_to == caller.user_id)
    return TicketModel.user_id == caller.user_id


def _priority_rank():
    return case(
        {priority: rank for rank, priority in enumerate(VALID_PRIORITIES)},
        value=SlaPolicyModel.priority,
        else_=len(VALID_PRIORITIES),
    )


def _policy_to_domain(model: SlaPolicyModel, tickets_count: Optional[int] = None) -> SlaPolicy:
    return SlaPolicy(
        id=str(model.id),
        name=model.name,
        description=model.description,
        priority=model.priority,
        response_minutes=model.response_minutes,
        resolution_minutes=model.resolution_minutes,
        is_active=model.is_active,
        created_at=model.created_at,
        updated_at=model.updated_at,
        tickets_count=tickets_count,
    )


def _ticket_to_domain(model: TicketModel, sla_name: Optional[str] = None) -> Ticket:
    return Ticket(
        id=str(model.id),
        ticket_number=model.ticket_number,
        title=model.title,
        priority=model.priority,
        status=model.status,
        user_id=model.user_id,
        assigned_to=model.assigned_to,
        created_at=model.created_at,
        updated_at=model.updated_at,
        sla_policy_id=str(model.sla_policy_id) if model.sla_policy_id else None,
        sla_name=sla_name,
        sla_response_due_at=model.sla_response_due_at,
        sla_resolution_due_at=model.sla_resolution_due_at,
        first_response_at=model.first_response_at,
        resolved_at=model.resolved_at,
        sla_response_breached=bool(model.sla_response_breached),
        sla_resolution_breached=bool(model.sla_resolution_breached),
    )


class SQLAlchemyPolicyRepository(IPolicyRepository):
    """
    SQLAlchemy implementation of SLA policy repository.

    Handles persistence of SlaPolicy entities using async SQLAlchemy.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    def _tickets_count(self):
        return (
            select(func.count(TicketModel.id))
            .where(TicketModel.sla_policy_id == SlaPolicyModel.id)
            .correlate(SlaPolicyModel)
            .scalar_subquery()
        )

    async def get_by_id(self, policy_id: str) -> Optional[SlaPolicy]:
        """Get policy by ID."""
        policy_uuid = _parse_uuid(policy_id)
        if policy_uuid is None:
            return None

        stmt = (
            select(SlaPolicyModel, self._tickets_count())
            .where(SlaPolicyModel.id == policy_uuid)
            .execution_options(populate_existing=True)
        )
        with _db_errors("Loading SLA policy"):
            result = await self._session.execute(stmt)
        row = result.one_or_none()
        if row is None:
            return None
        return _policy_to_domain(row[0], row[1])

    async def get_active(self, priority: str) -> Optional[SlaPolicy]:
        """Get the active policy for a priority."""
        stmt = select(SlaPolicyModel).where(
            SlaPolicyModel.priority == priority,
            SlaPolicyModel.is_active.is_(True)
        ).execution_options(populate_existing=True)
        with _db_errors("Resolving SLA policy"):
            result = await self._session.execute(stmt)
        model = result.scalars().first()
        return _policy_to_domain(model) if model else None

    async def list(self, filters: dict) -> List[SlaPolicy]:
        """List policies with filters."""
        stmt = select(SlaPolicyModel, self._tickets_count()).execution_options(populate_existing=True)

        conditions = []
        if "priority" in filters:
            conditions.append(SlaPolicyModel.priority == filters["priority"])
        if "is_active" in filters:
            conditions.append(SlaPolicyModel.is_active.is_(bool(filters["is_active"])))
        if conditions:
            stmt = stmt.where(and_(*conditions))

        stmt = stmt.order_by(_priority_rank(), SlaPolicyModel.name, SlaPolicyModel.id)

        with _db_errors("Listing SLA policies"):
            result = await self._session.execute(stmt)
        return [_policy_to_domain(model, count) for model, count in result.all()]

    async def create(self, policy: SlaPolicy) -> SlaPolicy:
        """Create new policy."""
        model = SlaPolicyModel(
            id=uuid4(),
            name=policy.name,
            description=policy.description,
            priority=policy.priority,
            response_minutes=policy.response_minutes,
            resolution_minutes=policy.resolution_minutes,
            is_active=policy.is_active,
            created_at=policy.created_at,
            updated_at=policy.updated_at,
        )

        self._session.add(model)
        with _db_errors("Creating SLA policy"):
            await self._session.flush()

        return _policy_to_domain(model, policy.tickets_count)

    async def update(self, policy: SlaPolicy) -> SlaPolicy:
        """Update existing policy."""
        policy_uuid = _parse_uuid(policy.id)
        model = (
            await self._session.get(SlaPolicyModel, policy_uuid, populate_existing=True)
            if policy_uuid else None
        )
        if model is None:
            raise RepositoryException(f"SLA policy {policy.id} not found")

        model.name = policy.name
        model.description = policy.description
        model.priority = policy.priority
        model.response_minutes = policy.response_minutes
        model.resolution_minutes = policy.resolution_minutes
        model.is_active = policy.is_active
        model.updated_at = policy.updated_at

        with _db_errors("Updating SLA policy"):
            await self._session.flush()

        return _policy_to_domain(model, policy.tickets_count)

    async def deactivate_others(
        self,
        priority: str,
        exclude_id: Optional[str],
        current_time: datetime
    ) -> int:
        stmt = (
            update(SlaPolicyModel)
            .where(SlaPolicyModel.priority == priority, SlaPolicyModel.is_active.is_(True))
            .values(is_active=False, updated_at=current_time)
            .execution_options(synchronize_session=False)
        )
        exclude_uuid = _parse_uuid(exclude_id)
        if exclude_uuid is not None:
            stmt = stmt.where(SlaPolicyModel.id != exclude_uuid)

        with _db_errors("Deactivating SLA policies"):
            result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def delete(self, policy_id: str) -> None:
        policy_uuid = _parse_uuid(policy_id)
        if policy_uuid is None:
            return
        stmt = delete(SlaPolicyModel).where(SlaPolicyModel.id == policy_uuid)
        with _db_errors("Deleting SLA policy"):
            await self._session.execute(stmt)

    async def count_tickets(self, policy_id: str) -> int:
        policy_uuid = _parse_uuid(policy_id)
        if policy_uuid is None:
            return 0
        stmt = select(func.count(TicketModel.id)).where(TicketModel.sla_policy_id == policy_uuid)
        with _db_errors("Counting policy tickets"):
            result = await self._session.execute(stmt)
        return result.scalar_one()

    async def commit(self) -> None:
        with _db_errors("Committing SLA policy changes"):
            await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of the ticket SLA projection repository.

    Breach flags are only ever written through conditional UPDATE statements
    that can set them to true, never back to false.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _select_with_policy_name():
        # Core UPDATEs bypass the identity map, so always refresh loaded rows
        return (
            select(TicketModel, SlaPolicyModel.name)
            .outerjoin(SlaPolicyModel, TicketModel.sla_policy_id == SlaPolicyModel.id)
            .execution_options(populate_existing=True)
        )

    async def _fetch_one(self, condition) -> Optional[Ticket]:
        stmt = self._select_with_policy_name().where(condition)
        with _db_errors("Loading ticket"):
            result = await self._session.execute(stmt)
        row = result.one_or_none()
        if row is None:
            return None
        return _ticket_to_domain(row[0], row[1])

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by internal ID."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return None
        return await self._fetch_one(TicketModel.id == ticket_uuid)

    async def get_by_number(self, ticket_number: str) -> Optional[Ticket]:
        """Get ticket by business ticket number."""
        return await self._fetch_one(TicketModel.ticket_number == ticket_number)

    async def create(self, ticket: Ticket) -> Ticket:
        """Create new ticket."""
        model = TicketModel(
            id=uuid4(),
            ticket_number=ticket.ticket_number,
            title=ticket.title,
            priority=ticket.priority,
            status=ticket.status,
            user_id=ticket.user_id,
            assigned_to=ticket.assigned_to,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            sla_policy_id=_parse_uuid(ticket.sla_policy_id),
            sla_response_due_at=ticket.sla_response_due_at,
            sla_resolution_due_at=ticket.sla_resolution_due_at,
            first_response_at=ticket.first_response_at,
            resolved_at=ticket.resolved_at,
            sla_response_breached=ticket.sla_response_breached,
            sla_resolution_breached=ticket.sla_resolution_breached,
        )

        self._session.add(model)
        with _db_errors("Creating ticket"):
            await self._session.flush()

        return _ticket_to_domain(model, ticket.sla_name)

    async def update_fields(self, ticket_id: str, values: dict, current_time: datetime) -> None:
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            raise RepositoryException(f"Invalid ticket ID: {ticket_id}")

        values = dict(values)
        if "sla_policy_id" in values:
            values["sla_policy_id"] = _parse_uuid(values["sla_policy_id"])
        values["updated_at"] = current_time

        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_uuid)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with _db_errors("Updating ticket"):
            await self._session.execute(stmt)

    async def record_event(
        self,
        ticket_id: str,
        sla_type: str,
        event_time: datetime,
        extra: Optional[dict] = None
    ) -> bool:
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return False

        event_col = _event_column(sla_type)
        flag_col = _flag_column(sla_type)
        due_col = _due_column(sla_type)

        values = {
            event_col.key: event_time,
            flag_col.key: or_(flag_col.is_(True), and_(due_col.isnot(None), due_col < event_time)),
        }
        values.update(extra or {})

        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_uuid, event_col.is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with _db_errors("Recording ticket event"):
            result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def list_overdue(self, sla_type: str, current_time: datetime) -> List[Tuple[str, datetime]]:
        due_col = _due_column(sla_type)
        stmt = (
            select(TicketModel.id, due_col)
            .where(
                TicketModel.sla_policy_id.isnot(None),
                _flag_column(sla_type).is_(False),
                _event_column(sla_type).is_(None),
                due_col.isnot(None),
                due_col < current_time,
            )
            .order_by(due_col)
        )
        with _db_errors("Listing overdue tickets"):
            result = await self._session.execute(stmt)
        return [(str(ticket_id), due_at) for ticket_id, due_at in result.all()]

    async def mark_breached(self, ticket_id: str, sla_type: str, current_time: datetime) -> bool:
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return False

        due_col = _due_column(sla_type)
        flag_col = _flag_column(sla_type)
        stmt = (
            update(TicketModel)
            .where(
                TicketModel.id == ticket_uuid,
                flag_col.is_(False),
                _event_column(sla_type).is_(None),
                due_col.isnot(None),
                due_col < current_time,
            )
            .values({flag_col.key: True})
            .execution_options(synchronize_session=False)
        )
        with _db_errors("Marking SLA breach"):
            result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def compliance_by_priority(
        self,
        caller: Caller,
        current_time: datetime,
        created_from: Optional[datetime],
        created_before: Optional[datetime],
        response_window: int,
        resolution_window: int
    ) -> List[PriorityCompliance]:
        def count_if(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        stmt = (
            select(
                SlaPolicyModel.priority,
                func.count(TicketModel.id),
                count_if(_breached_clause(SLAType.RESPONSE, current_time)),
                count_if(_at_risk_clause(SLAType.RESPONSE, current_time, response_window)),
                count_if(_breached_clause(SLAType.RESOLUTION, current_time)),
                count_if(_at_risk_clause(SLAType.RESOLUTION, current_time, resolution_window)),
            )
            .join(SlaPolicyModel, TicketModel.sla_policy_id == SlaPolicyModel.id)
            .where(_scope_clause(caller))
            .group_by(SlaPolicyModel.priority)
        )
        if created_from is not None:
            stmt = stmt.where(TicketModel.created_at >= created_from)
        if created_before is not None:
            stmt = stmt.where(TicketModel.created_at < created_before)

        with _db_errors("Aggregating SLA compliance"):
            result = await self._session.execute(stmt)

        rows = []
        for priority, total, resp_breached, resp_at_risk, res_breached, res_at_risk in result.all():
            rows.append(PriorityCompliance(
                priority=priority,
                response=ObligationStats(total=total, breached=int(resp_breached), at_risk=int(resp_at_risk)),
                resolution=ObligationStats(total=total, breached=int(res_breached), at_risk=int(res_at_risk)),
            ))
        return rows

    async def list_at_risk(
        self,
        caller: Caller,
        current_time: datetime,
        minutes: int,
        limit: int
    ) -> List[Ticket]:
        far = literal(FAR_FUTURE, UTCDateTime())
        response_due = func.coalesce(TicketModel.sla_response_due_at, far)
        resolution_due = func.coalesce(TicketModel.sla_resolution_due_at, far)
        sooner_due = case((response_due <= resolution_due, response_due), else_=resolution_due)

        stmt = (
            self._select_with_policy_name()
            .where(
                TicketModel.sla_policy_id.isnot(None),
                _scope_clause(caller),
                or_(
                    _at_risk_clause(SLAType.RESPONSE, current_time, minutes),
                    _at_risk_clause(SLAType.RESOLUTION, current_time, minutes),
                ),
            )
            .order_by(sooner_due, TicketModel.created_at, TicketModel.id)
            .limit(limit)
        )
        with _db_errors("Listing at-risk tickets"):
            result = await self._session.execute(stmt)
        return [_ticket_to_domain(model, name) for model, name in result.all()]

    async def list_breached(
        self,
        caller: Caller,
        current_time: datetime,
        sla_type: Optional[str],
        limit: int,
        offset: int
    ) -> Tuple[List[Ticket], int]:
        types = [sla_type] if sla_type else VALID_SLA_TYPES
        conditions = [
            TicketModel.sla_policy_id.isnot(None),
            _scope_clause(caller),
            or_(*[_breached_clause(t, current_time) for t in types]),
        ]

        count_stmt = select(func.count(TicketModel.id)).where(*conditions)
        page_stmt = (
            self._select_with_policy_name()
            .where(*conditions)
            .order_by(TicketModel.created_at.desc(), TicketModel.id.desc())
            .limit(limit)
            .offset(offset)
        )

        with _db_errors("Listing breached tickets"):
            total = (await self._session.execute(count_stmt)).scalar_one()
            result = await self._session.execute(page_stmt)
        return [_ticket_to_domain(model, name) for model, name in result.all()], total

    async def commit(self) -> None:
        with _db_errors("Committing ticket changes"):
            await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()
