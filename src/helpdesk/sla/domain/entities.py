"""
SLA Domain Entities
====================

Pure Python domain entities for SLA monitoring.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from helpdesk.config import (
    SLAType, SLAState, Priority, TicketStatus, UserRole, RESOLVED_STATUSES
)


def format_minutes(minutes: int) -> str:
    """Human-readable budget: ``45 min``, ``2h``, ``1h 30min``."""
    if minutes < 60:
        return f"{minutes} min"
    hours, remainder = divmod(minutes, 60)
    if remainder == 0:
        return f"{hours}h"
    return f"{hours}h {remainder}min"


@dataclass
class SlaPolicy:
    """
    SLA policy entity.

    A named rule scoped to one priority that defines response and
    resolution budgets in minutes.
    """

    id: Optional[str]
    name: str
    priority: Priority
    response_minutes: int
    resolution_minutes: int
    is_active: bool = True
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    tickets_count: Optional[int] = None

    @property
    def response_time_hours(self) -> float:
        return self.response_minutes / 60

    @property
    def resolution_time_hours(self) -> float:
        return self.resolution_minutes / 60

    @property
    def formatted_response_time(self) -> str:
        return format_minutes(self.response_minutes)

    @property
    def formatted_resolution_time(self) -> str:
        return format_minutes(self.resolution_minutes)


@dataclass
class Ticket:
    """
    SLA-relevant projection of a support ticket.

    The ticket itself is owned by the ticketing subsystem; this entity holds
    only what the SLA engine reads and writes.
    """

    id: Optional[str]
    ticket_number: str
    title: str
    priority: Priority
    status: TicketStatus
    user_id: str
    created_at: datetime
    updated_at: datetime
    assigned_to: Optional[str] = None

    # SLA binding
    sla_policy_id: Optional[str] = None
    sla_name: Optional[str] = None
    sla_response_due_at: Optional[datetime] = None
    sla_resolution_due_at: Optional[datetime] = None

    # Lifecycle events
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    # Persisted breach flags (write-once true)
    sla_response_breached: bool = False
    sla_resolution_breached: bool = False

    @property
    def is_sla_tracked(self) -> bool:
        return self.sla_policy_id is not None

    @property
    def is_resolved(self) -> bool:
        return self.status in RESOLVED_STATUSES

    def due_at(self, sla_type: SLAType) -> Optional[datetime]:
        if sla_type == SLAType.RESPONSE:
            return self.sla_response_due_at
        return self.sla_resolution_due_at

    def event_at(self, sla_type: SLAType) -> Optional[datetime]:
        """Timestamp of the event that satisfies the obligation, if any."""
        if sla_type == SLAType.RESPONSE:
            return self.first_response_at
        return self.resolved_at

    def breached_flag(self, sla_type: SLAType) -> bool:
        if sla_type == SLAType.RESPONSE:
            return self.sla_response_breached
        return self.sla_resolution_breached


@dataclass(frozen=True)
class Caller:
    """Identity and role of whoever is asking, as given by the auth layer."""

    user_id: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_agent(self) -> bool:
        return self.role == UserRole.AGENT

    @property
    def is_client(self) -> bool:
        return self.role == UserRole.CLIENT

    def can_see(self, ticket: Ticket) -> bool:
        """Row-level visibility: own tickets, assigned-or-unassigned, or all."""
        if self.is_admin:
            return True
        if self.is_agent:
            return ticket.assigned_to is None or ticket.assigned_to == self.user_id
        return ticket.user_id == self.user_id


@dataclass
class ObligationStatus:
    """Current evaluation of one obligation (response or resolution)."""

    sla_type: SLAType
    state: SLAState
    due_at: Optional[datetime]
    met_at: Optional[datetime]
    breached: bool
    remaining_minutes: Optional[int] = None


@dataclass
class ObligationStats:
    """Compliance counters for one obligation over a set of tickets."""

    total: int = 0
    breached: int = 0
    at_risk: int = 0

    @property
    def compliant(self) -> int:
        return self.total - self.breached

    @property
    def compliance_rate(self) -> float:
        if self.total == 0:
            return 100.0
        return round(self.compliant / self.total * 100, 2)


@dataclass
class PriorityCompliance:
    """Response and resolution counters for tickets bound to one priority."""

    priority: Priority
    response: ObligationStats = field(default_factory=ObligationStats)
    resolution: ObligationStats = field(default_factory=ObligationStats)

    @property
    def total(self) -> int:
        return self.response.total


@dataclass
class SweepSummary:
    """Outcome of one breach reconciliation pass."""

    response_breaches: int = 0
    resolution_breaches: int = 0
    failed: int = 0
    dry_run: bool = False


@dataclass
class ComplianceReport:
    """Compliance statistics over the tickets visible to one caller."""

    response: ObligationStats
    resolution: ObligationStats
    by_priority: Dict[str, PriorityCompliance]
    response_window_minutes: int
    resolution_window_minutes: int

    @property
    def total(self) -> int:
        return self.response.total
