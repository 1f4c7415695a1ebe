"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from abc import ABC, abstractmethod

from helpdesk.sla.domain import (
    SlaPolicy, Ticket, Caller, SweepSummary, ComplianceReport,
    PriorityCompliance, ObligationStats, SLACalculator, SLAConfig
)
from helpdesk.sla.application.dto import (
    PolicyCreateRequest, PolicyUpdateRequest, TicketCreatedEvent, TicketUpdateRequest
)
from helpdesk.config import (
    SLAType, TicketStatus, VALID_PRIORITIES, VALID_SLA_TYPES, RESOLVED_STATUSES
)
from helpdesk.core import (
    ConflictException, ForbiddenException, ResourceNotFoundException, ValidationException
)
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

MAX_ACTIVATION_ATTEMPTS = 3
MAX_AT_RISK_MINUTES = 10080
MAX_PER_PAGE = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps from collaborators are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IPolicyRepository(ABC):
    """Interface for SLA policy data access."""

    @abstractmethod
    async def get_by_id(self, policy_id: str) -> Optional[SlaPolicy]:
        """Get policy by ID, with tickets_count populated."""

    @abstractmethod
    async def get_active(self, priority: str) -> Optional[SlaPolicy]:
        """Get the active policy for a priority."""

    @abstractmethod
    async def list(self, filters: dict) -> List[SlaPolicy]:
        """List policies sorted by priority then name."""

    @abstractmethod
    async def create(self, policy: SlaPolicy) -> SlaPolicy:
        """Insert a policy."""

    @abstractmethod
    async def update(self, policy: SlaPolicy) -> SlaPolicy:
        """Write all mutable fields of an existing policy."""

    @abstractmethod
    async def deactivate_others(
        self,
        priority: str,
        exclude_id: Optional[str],
        current_time: datetime
    ) -> int:
        """Deactivate every active policy for a priority except one."""

    @abstractmethod
    async def delete(self, policy_id: str) -> None:
        """Delete a policy."""

    @abstractmethod
    async def count_tickets(self, policy_id: str) -> int:
        """Number of tickets bound to a policy."""

    @abstractmethod
    async def commit(self) -> None:
        """Commit the unit of work."""

    @abstractmethod
    async def rollback(self) -> None:
        """Roll back the unit of work."""


class ITicketRepository(ABC):
    """Interface for ticket SLA projection data access."""

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by internal ID."""

    @abstractmethod
    async def get_by_number(self, ticket_number: str) -> Optional[Ticket]:
        """Get ticket by business ticket number."""

    @abstractmethod
    async def create(self, ticket: Ticket) -> Ticket:
        """Insert a ticket."""

    @abstractmethod
    async def update_fields(self, ticket_id: str, values: dict, current_time: datetime) -> None:
        """Write plain attribute changes."""

    @abstractmethod
    async def record_event(
        self,
        ticket_id: str,
        sla_type: str,
        event_time: datetime,
        extra: Optional[dict] = None
    ) -> bool:
        """
        Record the event satisfying an obligation if it is not recorded yet.

        Sets the matching breach flag in the same write when the event is
        late. Returns True if the event was written.
        """

    @abstractmethod
    async def list_overdue(self, sla_type: str, current_time: datetime) -> List[Tuple[str, datetime]]:
        """(ticket_id, due_at) of tickets overdue for an obligation with the flag still false."""

    @abstractmethod
    async def mark_breached(self, ticket_id: str, sla_type: str, current_time: datetime) -> bool:
        """Conditionally flip a breach flag to true. Returns True if it flipped."""

    @abstractmethod
    async def compliance_by_priority(
        self,
        caller: Caller,
        current_time: datetime,
        created_from: Optional[datetime],
        created_before: Optional[datetime],
        response_window: int,
        resolution_window: int
    ) -> List[PriorityCompliance]:
        """Grouped compliance counters for the caller's scope."""

    @abstractmethod
    async def list_at_risk(
        self,
        caller: Caller,
        current_time: datetime,
        minutes: int,
        limit: int
    ) -> List[Ticket]:
        """At-risk tickets ordered by the sooner due timestamp."""

    @abstractmethod
    async def list_breached(
        self,
        caller: Caller,
        current_time: datetime,
        sla_type: Optional[str],
        limit: int,
        offset: int
    ) -> Tuple[List[Ticket], int]:
        """Page of breached tickets, newest first, and the total count."""

    @abstractmethod
    async def commit(self) -> None:
        """Commit the unit of work."""

    @abstractmethod
    async def rollback(self) -> None:
        """Roll back the unit of work."""


def _require_admin(caller: Caller) -> None:
    if not caller.is_admin:
        raise ForbiddenException("Only admins can manage SLA policies")


def _require_staff(caller: Caller) -> None:
    if caller.is_client:
        raise ForbiddenException("Only agents and admins can perform this action")


# ========== Application Services ==========

class PolicyStore:
    """
    Owns SLA policies and the single-active-policy-per-priority rule.

    Activation deactivates the other policies of the priority and writes the
    new one in a single transaction. A concurrent activation that commits
    first makes ours fail on the partial unique index; the transaction is
    then rolled back and replayed so the last activation wins.
    """

    def __init__(self, policy_repository: IPolicyRepository):
        self._repo = policy_repository

    async def list_policies(
        self,
        caller: Caller,
        priority: Optional[str] = None,
        is_active: Optional[bool] = None
    ) -> List[SlaPolicy]:
        filters: dict = {}
        if priority is not None:
            filters["priority"] = priority
        if not caller.is_admin:
            filters["is_active"] = True
        elif is_active is not None:
            filters["is_active"] = is_active
        return await self._repo.list(filters)

    async def get(self, policy_id: str) -> SlaPolicy:
        policy = await self._repo.get_by_id(policy_id)
        if policy is None:
            raise ResourceNotFoundException("SlaPolicy", policy_id)
        return policy

    async def resolve(self, priority: str) -> Optional[SlaPolicy]:
        """The active policy for a priority, or None."""
        return await self._repo.get_active(priority)

    async def create(
        self,
        caller: Caller,
        data: PolicyCreateRequest,
        current_time: Optional[datetime] = None
    ) -> SlaPolicy:
        _require_admin(caller)
        return await self._create(
            name=data.name,
            description=data.description,
            priority=data.priority,
            response_minutes=data.response_minutes,
            resolution_minutes=data.resolution_minutes,
            is_active=data.is_active,
            current_time=current_time,
        )

    async def update(
        self,
        caller: Caller,
        policy_id: str,
        patch: PolicyUpdateRequest,
        current_time: Optional[datetime] = None
    ) -> SlaPolicy:
        _require_admin(caller)
        changes = {k: v for k, v in patch.model_dump(exclude_unset=True).items()
                   if v is not None or k == "description"}
        now = current_time or _utcnow()

        async def apply() -> SlaPolicy:
            policy = await self._repo.get_by_id(policy_id)
            if policy is None:
                raise ResourceNotFoundException("SlaPolicy", policy_id)

            for key, value in changes.items():
                setattr(policy, key, value)
            self._validate(policy)
            policy.updated_at = now

            if policy.is_active:
                await self._repo.deactivate_others(policy.priority, policy.id, now)
            return await self._repo.update(policy)

        updated = await self._with_activation_retry(apply, "update")
        logger.info(
            "SLA policy updated",
            extra={"policy_id": updated.id, "priority": updated.priority,
                   "is_active": updated.is_active, "changed": sorted(changes)}
        )
        return updated

    async def delete(self, caller: Caller, policy_id: str) -> None:
        _require_admin(caller)
        policy = await self._repo.get_by_id(policy_id)
        if policy is None:
            raise ResourceNotFoundException("SlaPolicy", policy_id)

        tickets_count = await self._repo.count_tickets(policy_id)
        if tickets_count > 0:
            raise ConflictException(
                "Cannot delete SLA policy that is assigned to tickets",
                {"policy_id": policy_id, "tickets_count": tickets_count}
            )

        try:
            await self._repo.delete(policy_id)
            await self._repo.commit()
        except ConflictException:
            await self._repo.rollback()
            raise
        logger.info("SLA policy deleted", extra={"policy_id": policy_id, "priority": policy.priority})

    async def seed_defaults(self, config: SLAConfig) -> int:
        """Create the configured default policy for every priority lacking an active one."""
        created = 0
        for default in config.default_policies:
            if await self._repo.get_active(default.priority) is not None:
                continue
            await self._create(
                name=default.name,
                description=default.description,
                priority=default.priority,
                response_minutes=default.response_minutes,
                resolution_minutes=default.resolution_minutes,
                is_active=True,
            )
            created += 1
        if created:
            logger.info("Seeded default SLA policies", extra={"count": created})
        return created

    async def _create(
        self,
        name: str,
        description: Optional[str],
        priority: str,
        response_minutes: int,
        resolution_minutes: int,
        is_active: bool = True,
        current_time: Optional[datetime] = None
    ) -> SlaPolicy:
        now = current_time or _utcnow()
        candidate = SlaPolicy(
            id=None,
            name=name,
            description=description,
            priority=priority,
            response_minutes=response_minutes,
            resolution_minutes=resolution_minutes,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        self._validate(candidate)

        async def apply() -> SlaPolicy:
            if candidate.is_active:
                await self._repo.deactivate_others(candidate.priority, None, now)
            return await self._repo.create(SlaPolicy(**vars(candidate)))

        policy = await self._with_activation_retry(apply, "create")
        policy.tickets_count = 0
        logger.info(
            "SLA policy created",
            extra={"policy_id": policy.id, "priority": policy.priority, "is_active": policy.is_active}
        )
        return policy

    async def _with_activation_retry(self, operation, action: str) -> SlaPolicy:
        for attempt in range(1, MAX_ACTIVATION_ATTEMPTS + 1):
            try:
                result = await operation()
                await self._repo.commit()
                return result
            except ConflictException as e:
                await self._repo.rollback()
                if attempt == MAX_ACTIVATION_ATTEMPTS:
                    raise ConflictException(
                        "Concurrent SLA policy activation; please retry",
                        {"attempts": attempt, **e.details}
                    ) from e
                logger.warning(
                    "SLA policy activation lost a race, retrying",
                    extra={"action": action, "attempt": attempt}
                )
            except Exception:
                await self._repo.rollback()
                raise

    @staticmethod
    def _validate(policy: SlaPolicy) -> None:
        errors = {}
        if not policy.name or len(policy.name) > 255:
            errors["name"] = "must be between 1 and 255 characters"
        if policy.priority not in VALID_PRIORITIES:
            errors["priority"] = f"must be one of {VALID_PRIORITIES}"
        if not isinstance(policy.response_minutes, int) or policy.response_minutes <= 0:
            errors["response_minutes"] = "must be a positive integer"
        if not isinstance(policy.resolution_minutes, int) or policy.resolution_minutes <= 0:
            errors["resolution_minutes"] = "must be a positive integer"
        elif "response_minutes" not in errors and policy.resolution_minutes < policy.response_minutes:
            errors["resolution_minutes"] = "must be greater than or equal to response_minutes"
        if errors:
            raise ValidationException("Invalid SLA policy", errors)


class DeadlineCalculator:
    """Binds tickets to the active policy for their priority."""

    def __init__(self, policy_store: PolicyStore):
        self._policies = policy_store

    async def assign(self, ticket: Ticket) -> Ticket:
        """
        Resolve the active policy for the ticket's priority and set the due
        timestamps. Without an active policy the ticket stays untracked.
        """
        policy = await self._policies.resolve(ticket.priority)
        if policy is None:
            logger.info(
                "No active SLA policy for priority; ticket untracked",
                extra={"ticket_number": ticket.ticket_number, "priority": ticket.priority}
            )
            return ticket
        return self.bind(ticket, policy)

    @staticmethod
    def bind(ticket: Ticket, policy: SlaPolicy) -> Ticket:
        deadlines = SLACalculator.calculate_deadlines(
            ticket.created_at, policy.response_minutes, policy.resolution_minutes
        )
        ticket.sla_policy_id = policy.id
        ticket.sla_name = policy.name
        ticket.sla_response_due_at = deadlines.response_due_at
        ticket.sla_resolution_due_at = deadlines.resolution_due_at
        return ticket


class TicketLifecycleService:
    """
    Applies ticket lifecycle events from the ticketing subsystem to the SLA
    projection.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        deadline_calculator: DeadlineCalculator,
        policy_store: PolicyStore
    ):
        self._repo = ticket_repository
        self._deadlines = deadline_calculator
        self._policies = policy_store

    async def get_for_caller(self, caller: Caller, ticket_id: str) -> Ticket:
        ticket = await self._repo.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        if not caller.can_see(ticket):
            raise ForbiddenException("Ticket is outside your scope", {"ticket_id": ticket_id})
        return ticket

    async def register(
        self,
        caller: Caller,
        event: TicketCreatedEvent,
        current_time: Optional[datetime] = None
    ) -> Tuple[Ticket, bool]:
        """
        Register a newly created ticket and assign its deadlines.

        Idempotent on ticket_number: a repeated event returns the stored
        ticket unchanged. Returns (ticket, created).
        """
        owner = event.user_id or caller.user_id
        if caller.is_client and owner != caller.user_id:
            raise ForbiddenException("Clients can only register their own tickets")

        existing = await self._repo.get_by_number(event.ticket_number)
        if existing is not None:
            return existing, False

        now = current_time or _utcnow()
        created_at = _as_utc(event.created_at) or now
        ticket = Ticket(
            id=None,
            ticket_number=event.ticket_number,
            title=event.title,
            priority=event.priority,
            status=event.status,
            user_id=owner,
            assigned_to=event.assigned_to,
            created_at=created_at,
            updated_at=created_at,
        )

        try:
            await self._deadlines.assign(ticket)
            stored = await self._repo.create(ticket)
            await self._repo.commit()
        except ConflictException:
            # Another registration of the same number won the insert
            await self._repo.rollback()
            existing = await self._repo.get_by_number(event.ticket_number)
            if existing is None:
                raise
            return existing, False
        except Exception:
            await self._repo.rollback()
            raise

        logger.info(
            "Ticket registered",
            extra={
                "ticket_id": stored.id,
                "ticket_number": stored.ticket_number,
                "priority": stored.priority,
                "sla_policy_id": stored.sla_policy_id,
                "response_due_at": stored.sla_response_due_at.isoformat() if stored.sla_response_due_at else None,
                "resolution_due_at": stored.sla_resolution_due_at.isoformat() if stored.sla_resolution_due_at else None,
            }
        )
        return stored, True

    async def record_first_response(
        self,
        caller: Caller,
        ticket_id: str,
        responded_at: Optional[datetime] = None
    ) -> Ticket:
        """Set first_response_at on the first non-client response; later calls are no-ops."""
        ticket = await self.get_for_caller(caller, ticket_id)
        if caller.is_client:
            logger.debug("Client response does not count as first response", extra={"ticket_id": ticket_id})
            return ticket
        if ticket.first_response_at is not None:
            return ticket

        at = _as_utc(responded_at) or _utcnow()
        await self._write(lambda: self._repo.record_event(ticket_id, SLAType.RESPONSE, at, {"updated_at": at}))
        logger.info("First response recorded", extra={"ticket_id": ticket_id, "responded_at": at.isoformat()})
        return await self.get_for_caller(caller, ticket_id)

    async def resolve(
        self,
        caller: Caller,
        ticket_id: str,
        status: str = TicketStatus.RESOLVED,
        resolved_at: Optional[datetime] = None
    ) -> Ticket:
        _require_staff(caller)
        if status not in RESOLVED_STATUSES:
            raise ValidationException("Resolution status must be resolved or closed", {"status": status})

        ticket = await self.get_for_caller(caller, ticket_id)
        at = _as_utc(resolved_at) or _utcnow()

        if ticket.resolved_at is None:
            await self._write(lambda: self._repo.record_event(
                ticket_id, SLAType.RESOLUTION, at, {"status": status, "updated_at": at}
            ))
            logger.info("Ticket resolved", extra={"ticket_id": ticket_id, "status": status, "resolved_at": at.isoformat()})
        elif ticket.status != status:
            await self._write(lambda: self._repo.update_fields(ticket_id, {"status": status}, at))
        return await self.get_for_caller(caller, ticket_id)

    async def reopen(self, caller: Caller, ticket_id: str, current_time: Optional[datetime] = None) -> Ticket:
        """Move a resolved ticket back to open. A resolution breach stays recorded."""
        _require_staff(caller)
        ticket = await self.get_for_caller(caller, ticket_id)
        if not ticket.is_resolved and ticket.resolved_at is None:
            raise ValidationException("Ticket is not resolved", {"status": ticket.status})

        now = current_time or _utcnow()
        await self._write(lambda: self._repo.update_fields(
            ticket_id, {"status": TicketStatus.OPEN, "resolved_at": None}, now
        ))
        logger.info("Ticket reopened", extra={"ticket_id": ticket_id})
        return await self.get_for_caller(caller, ticket_id)

    async def update_attributes(
        self,
        caller: Caller,
        ticket_id: str,
        changes: TicketUpdateRequest,
        current_time: Optional[datetime] = None
    ) -> Ticket:
        """Priority and assignee changes. Due timestamps are never recomputed here."""
        _require_staff(caller)
        ticket = await self.get_for_caller(caller, ticket_id)

        values = {}
        if changes.priority is not None and changes.priority != ticket.priority:
            values["priority"] = changes.priority
        if changes.unassign:
            values["assigned_to"] = None
        elif changes.assigned_to is not None:
            values["assigned_to"] = changes.assigned_to

        if not values:
            return ticket

        now = current_time or _utcnow()
        await self._write(lambda: self._repo.update_fields(ticket_id, values, now))
        if "priority" in values:
            logger.info(
                "Ticket priority changed; SLA deadlines unchanged",
                extra={"ticket_id": ticket_id, "from": ticket.priority, "to": values["priority"]}
            )

        updated = await self._repo.get_by_id(ticket_id)
        if updated is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return updated

    async def reassign_policy(
        self,
        caller: Caller,
        ticket_id: str,
        policy_id: str,
        current_time: Optional[datetime] = None
    ) -> Ticket:
        """Bind a ticket to another policy and recompute both deadlines from created_at."""
        _require_admin(caller)
        ticket = await self.get_for_caller(caller, ticket_id)
        policy = await self._policies.get(policy_id)

        DeadlineCalculator.bind(ticket, policy)
        now = current_time or _utcnow()
        await self._write(lambda: self._repo.update_fields(
            ticket_id,
            {
                "sla_policy_id": policy.id,
                "sla_response_due_at": ticket.sla_response_due_at,
                "sla_resolution_due_at": ticket.sla_resolution_due_at,
            },
            now
        ))
        logger.info("Ticket SLA policy reassigned", extra={"ticket_id": ticket_id, "policy_id": policy.id})
        return await self.get_for_caller(caller, ticket_id)

    async def _write(self, operation) -> None:
        try:
            await operation()
            await self._repo.commit()
        except Exception:
            await self._repo.rollback()
            raise


class BreachReconciler:
    """
    Persists breach flags for overdue obligations.

    Only ever writes true, through a conditional update, so re-running is a
    no-op and concurrent runs cannot conflict.
    """

    def __init__(self, ticket_repository: ITicketRepository):
        self._repo = ticket_repository

    async def reconcile(self, ticket_id: str, current_time: Optional[datetime] = None) -> Ticket:
        """Re-evaluate both obligations of one ticket."""
        now = current_time or _utcnow()
        ticket = await self._repo.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)

        try:
            for sla_type in VALID_SLA_TYPES:
                if await self._repo.mark_breached(ticket_id, sla_type, now):
                    self._log_breach(ticket_id, sla_type, ticket.due_at(sla_type))
            await self._repo.commit()
        except Exception:
            await self._repo.rollback()
            raise

        refreshed = await self._repo.get_by_id(ticket_id)
        return refreshed or ticket

    async def sweep(self, current_time: Optional[datetime] = None, dry_run: bool = False) -> SweepSummary:
        """
        Flag every overdue obligation whose flag is still false.

        Each ticket is committed on its own; a failure is logged and counted
        and the ticket is picked up again on the next sweep. A failed listing
        for one obligation type does not skip the other.
        """
        now = current_time or _utcnow()
        summary = SweepSummary(dry_run=dry_run)

        for sla_type in VALID_SLA_TYPES:
            try:
                overdue = await self._repo.list_overdue(sla_type, now)
            except Exception:
                logger.exception("Failed to list overdue SLA obligations", extra={"sla_type": sla_type})
                await self._safe_rollback()
                summary.failed += 1
                continue

            if dry_run:
                self._count(summary, sla_type, len(overdue))
                continue

            for ticket_id, due_at in overdue:
                try:
                    flipped = await self._repo.mark_breached(ticket_id, sla_type, now)
                    await self._repo.commit()
                except Exception:
                    logger.exception(
                        "Failed to mark SLA breach",
                        extra={"ticket_id": ticket_id, "sla_type": sla_type}
                    )
                    await self._safe_rollback()
                    summary.failed += 1
                    continue
                if flipped:
                    self._count(summary, sla_type, 1)
                    self._log_breach(ticket_id, sla_type, due_at)

        logger.info(
            "SLA breach sweep finished",
            extra={
                "response_breaches": summary.response_breaches,
                "resolution_breaches": summary.resolution_breaches,
                "failed": summary.failed,
                "dry_run": dry_run,
            }
        )
        return summary

    async def _safe_rollback(self) -> None:
        try:
            await self._repo.rollback()
        except Exception:
            logger.exception("Rollback failed during SLA breach sweep")

    @staticmethod
    def _count(summary: SweepSummary, sla_type: str, n: int) -> None:
        if sla_type == SLAType.RESPONSE:
            summary.response_breaches += n
        else:
            summary.resolution_breaches += n

    @staticmethod
    def _log_breach(ticket_id: str, sla_type: str, due_at: Optional[datetime]) -> None:
        logger.info(
            "SLA breached",
            extra={
                "ticket_id": ticket_id,
                "sla_type": sla_type,
                "due_at": due_at.isoformat() if due_at else None,
            }
        )


class ComplianceAggregator:
    """Read-only compliance statistics and listings, scoped by caller."""

    def __init__(self, ticket_repository: ITicketRepository, config: SLAConfig):
        self._repo = ticket_repository
        self._config = config

    async def compliance_stats(
        self,
        caller: Caller,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        response_window: Optional[int] = None,
        resolution_window: Optional[int] = None,
        current_time: Optional[datetime] = None
    ) -> ComplianceReport:
        if date_from and date_to and date_from > date_to:
            raise ValidationException("date_from must not be after date_to")
        if response_window is None:
            response_window = self._config.get_at_risk_minutes(SLAType.RESPONSE)
        if resolution_window is None:
            resolution_window = self._config.get_at_risk_minutes(SLAType.RESOLUTION)
        self._validate_minutes(response_window, "response_minutes")
        self._validate_minutes(resolution_window, "resolution_minutes")

        created_from = datetime.combine(date_from, time.min, tzinfo=timezone.utc) if date_from else None
        created_before = (
            datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc) if date_to else None
        )

        rows = await self._repo.compliance_by_priority(
            caller, current_time or _utcnow(), created_from, created_before,
            response_window, resolution_window
        )

        by_priority: Dict[str, PriorityCompliance] = {p: PriorityCompliance(priority=p) for p in VALID_PRIORITIES}
        response = ObligationStats()
        resolution = ObligationStats()
        for row in rows:
            by_priority[row.priority] = row
            for total, part in ((response, row.response), (resolution, row.resolution)):
                total.total += part.total
                total.breached += part.breached
                total.at_risk += part.at_risk

        return ComplianceReport(
            response=response,
            resolution=resolution,
            by_priority=by_priority,
            response_window_minutes=response_window,
            resolution_window_minutes=resolution_window,
        )

    async def at_risk(
        self,
        caller: Caller,
        minutes: int = 60,
        current_time: Optional[datetime] = None
    ) -> List[Ticket]:
        self._validate_minutes(minutes, "minutes")
        return await self._repo.list_at_risk(
            caller, current_time or _utcnow(), minutes, self._config.at_risk_limit
        )

    async def breached(
        self,
        caller: Caller,
        sla_type: Optional[str] = None,
        page: int = 1,
        per_page: int = 15,
        current_time: Optional[datetime] = None
    ) -> Tuple[List[Ticket], int]:
        if sla_type is not None and sla_type not in VALID_SLA_TYPES:
            raise ValidationException(f"type must be one of {VALID_SLA_TYPES}", {"type": sla_type})
        if page < 1:
            raise ValidationException("page must be at least 1", {"page": page})
        if not 1 <= per_page <= MAX_PER_PAGE:
            raise ValidationException(f"per_page must be between 1 and {MAX_PER_PAGE}", {"per_page": per_page})

        return await self._repo.list_breached(
            caller, current_time or _utcnow(), sla_type, per_page, (page - 1) * per_page
        )

    @staticmethod
    def _validate_minutes(minutes: int, field: str) -> None:
        if not 1 <= minutes <= MAX_AT_RISK_MINUTES:
            raise ValidationException(
                f"{field} must be between 1 and {MAX_AT_RISK_MINUTES}", {field: minutes}
            )
