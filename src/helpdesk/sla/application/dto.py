"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from pydantic import BaseModel, Field, model_validator
from typing import Dict, List, Optional, Literal
from datetime import datetime

from helpdesk.config import SLAType
from helpdesk.sla.domain import (
    SlaPolicy, Ticket, SLACalculator, ObligationStats, PriorityCompliance, ComplianceReport,
    SweepSummary
)


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["low", "medium", "high", "urgent"]
TicketStatusStr = Literal["new", "open", "in_progress", "on_hold", "resolved", "closed"]
ResolvedStatusStr = Literal["resolved", "closed"]
SLATypeStr = Literal["response", "resolution"]
SLAStateStr = Literal["pending", "at_risk", "breached", "met"]
SLAStatusStr = Literal["ok", "at_risk", "breached"]


# ========== Request DTOs ==========

class PolicyCreateRequest(BaseModel):
    """Request model for creating an SLA policy."""
    name: str = Field(..., min_length=1, max_length=255, description="Policy name")
    description: Optional[str] = Field(None, description="Free-text description")
    priority: PriorityStr = Field(..., description="Priority the policy applies to")
    response_minutes: int = Field(..., gt=0, description="Response budget in minutes")
    resolution_minutes: int = Field(..., gt=0, description="Resolution budget in minutes")
    is_active: bool = Field(default=True, description="Activate (deactivates the current policy)")

    @model_validator(mode="after")
    def validate_budgets(self) -> "PolicyCreateRequest":
        if self.resolution_minutes < self.response_minutes:
            raise ValueError("resolution_minutes must be greater than or equal to response_minutes")
        return self


class PolicyUpdateRequest(BaseModel):
    """Partial update of an SLA policy. Omitted fields are left unchanged."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    priority: Optional[PriorityStr] = None
    response_minutes: Optional[int] = Field(None, gt=0)
    resolution_minutes: Optional[int] = Field(None, gt=0)
    is_active: Optional[bool] = None


class TicketCreatedEvent(BaseModel):
    """Ticket registered by the ticketing subsystem at creation time."""
    ticket_number: str = Field(..., min_length=1, max_length=64, description="Business ticket number")
    title: str = Field(..., min_length=1, max_length=500)
    priority: PriorityStr = Field(..., description="Priority at creation")
    status: TicketStatusStr = Field(default="new")
    user_id: Optional[str] = Field(None, min_length=1, max_length=64, description="Ticket owner; defaults to caller")
    assigned_to: Optional[str] = Field(None, min_length=1, max_length=64)
    created_at: Optional[datetime] = Field(None, description="Creation timestamp; defaults to now")


class TicketUpdateRequest(BaseModel):
    """Attribute change on an existing ticket. Deadlines are not recomputed."""
    priority: Optional[PriorityStr] = None
    assigned_to: Optional[str] = Field(None, max_length=64)
    unassign: bool = Field(default=False, description="Clear the assignee")


class FirstResponseEvent(BaseModel):
    responded_at: Optional[datetime] = Field(None, description="Defaults to now")


class ResolveEvent(BaseModel):
    status: ResolvedStatusStr = Field(default="resolved")
    resolved_at: Optional[datetime] = Field(None, description="Defaults to now")


class PolicyReassignRequest(BaseModel):
    sla_policy_id: str = Field(..., description="Policy to bind; deadlines are recomputed")


# ========== Response DTOs ==========

class PolicyResponse(BaseModel):
    """Response model for an SLA policy."""
    id: str
    name: str
    description: Optional[str] = None
    priority: PriorityStr
    response_minutes: int
    resolution_minutes: int
    response_time_hours: float
    resolution_time_hours: float
    formatted_response_time: str
    formatted_resolution_time: str
    is_active: bool
    tickets_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, policy: SlaPolicy) -> "PolicyResponse":
        return cls(
            id=policy.id,
            name=policy.name,
            description=policy.description,
            priority=policy.priority,
            response_minutes=policy.response_minutes,
            resolution_minutes=policy.resolution_minutes,
            response_time_hours=round(policy.response_time_hours, 2),
            resolution_time_hours=round(policy.resolution_time_hours, 2),
            formatted_response_time=policy.formatted_response_time,
            formatted_resolution_time=policy.formatted_resolution_time,
            is_active=policy.is_active,
            tickets_count=policy.tickets_count,
            created_at=policy.created_at,
            updated_at=policy.updated_at,
        )


class TicketSLAResponse(BaseModel):
    """Serialized SLA view of a ticket."""
    id: str
    ticket_number: str
    title: str
    priority: PriorityStr
    status: TicketStatusStr
    user_id: str
    assigned_to: Optional[str] = None
    created_at: datetime

    sla_policy_id: Optional[str] = None
    sla_name: Optional[str] = None
    sla_response_due_at: Optional[datetime] = None
    sla_resolution_due_at: Optional[datetime] = None
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    sla_response_breached: bool = False
    sla_resolution_breached: bool = False
    response_time_remaining: Optional[int] = Field(None, description="Signed minutes until response due")
    resolution_time_remaining: Optional[int] = Field(None, description="Signed minutes until resolution due")
    response_state: Optional[SLAStateStr] = None
    resolution_state: Optional[SLAStateStr] = None
    sla_status: SLAStatusStr = "ok"

    @classmethod
    def from_domain(
        cls,
        ticket: Ticket,
        current_time: datetime,
        response_window: int = 30,
        resolution_window: int = 60,
        risk_ratio: float = 0.3
    ) -> "TicketSLAResponse":
        response = SLACalculator.evaluate(ticket, SLAType.RESPONSE, current_time, response_window)
        resolution = SLACalculator.evaluate(ticket, SLAType.RESOLUTION, current_time, resolution_window)

        return cls(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            title=ticket.title,
            priority=ticket.priority,
            status=ticket.status,
            user_id=ticket.user_id,
            assigned_to=ticket.assigned_to,
            created_at=ticket.created_at,
            sla_policy_id=ticket.sla_policy_id,
            sla_name=ticket.sla_name,
            sla_response_due_at=ticket.sla_response_due_at,
            sla_resolution_due_at=ticket.sla_resolution_due_at,
            first_response_at=ticket.first_response_at,
            resolved_at=ticket.resolved_at,
            sla_response_breached=response.breached if response else False,
            sla_resolution_breached=resolution.breached if resolution else False,
            response_time_remaining=response.remaining_minutes if response else None,
            resolution_time_remaining=resolution.remaining_minutes if resolution else None,
            response_state=response.state if response else None,
            resolution_state=resolution.state if resolution else None,
            sla_status=SLACalculator.overall_status(ticket, current_time, risk_ratio),
        )


class AtRiskResponse(BaseModel):
    """Tickets about to breach, soonest deadline first."""
    minutes: int
    tickets: List[TicketSLAResponse] = Field(default_factory=list)


class PaginationMeta(BaseModel):
    current_page: int
    last_page: int
    per_page: int
    total: int


class BreachedResponse(BaseModel):
    """Paginated breached-ticket listing."""
    data: List[TicketSLAResponse] = Field(default_factory=list)
    meta: PaginationMeta


class ObligationComplianceResponse(BaseModel):
    compliant: int
    breached: int
    at_risk: int
    compliance_rate: float

    @classmethod
    def from_domain(cls, stats: ObligationStats) -> "ObligationComplianceResponse":
        return cls(
            compliant=stats.compliant,
            breached=stats.breached,
            at_risk=stats.at_risk,
            compliance_rate=stats.compliance_rate,
        )


class PriorityComplianceResponse(BaseModel):
    total: int
    response_breached: int
    resolution_breached: int
    response_at_risk: int
    resolution_at_risk: int
    response_compliance_rate: float
    resolution_compliance_rate: float

    @classmethod
    def from_domain(cls, row: PriorityCompliance) -> "PriorityComplianceResponse":
        return cls(
            total=row.total,
            response_breached=row.response.breached,
            resolution_breached=row.resolution.breached,
            response_at_risk=row.response.at_risk,
            resolution_at_risk=row.resolution.at_risk,
            response_compliance_rate=row.response.compliance_rate,
            resolution_compliance_rate=row.resolution.compliance_rate,
        )


class ComplianceResponse(BaseModel):
    """SLA compliance statistics for the caller's scope."""
    total_tickets_with_sla: int
    response: ObligationComplianceResponse
    resolution: ObligationComplianceResponse
    by_priority: Dict[str, PriorityComplianceResponse]
    response_window_minutes: int
    resolution_window_minutes: int

    @classmethod
    def from_domain(cls, report: ComplianceReport) -> "ComplianceResponse":
        return cls(
            total_tickets_with_sla=report.total,
            response=ObligationComplianceResponse.from_domain(report.response),
            resolution=ObligationComplianceResponse.from_domain(report.resolution),
            by_priority={
                priority: PriorityComplianceResponse.from_domain(row)
                for priority, row in report.by_priority.items()
            },
            response_window_minutes=report.response_window_minutes,
            resolution_window_minutes=report.resolution_window_minutes,
        )


class SweepResponse(BaseModel):
    response_breaches: int
    resolution_breaches: int
    failed: int
    dry_run: bool

    @classmethod
    def from_domain(cls, summary: SweepSummary) -> "SweepResponse":
        return cls(
            response_breaches=summary.response_breaches,
            resolution_breaches=summary.resolution_breaches,
            failed=summary.failed,
            dry_run=summary.dry_run,
        )
