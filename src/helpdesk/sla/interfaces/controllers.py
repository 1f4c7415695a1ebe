"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA policy management, ticket lifecycle events and
compliance queries.

Controllers are thin - they delegate to application services. Caller
identity comes from the upstream auth layer as ``X-User-Id`` and
``X-User-Role`` headers.
"""

import math
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.config import VALID_ROLES
from helpdesk.core import ForbiddenException, UnauthorizedException
from helpdesk.infrastructure.database import get_session
from helpdesk.sla.application import (
    PolicyStore, DeadlineCalculator, TicketLifecycleService,
    BreachReconciler, ComplianceAggregator,
    PolicyCreateRequest, PolicyUpdateRequest, PolicyResponse,
    TicketCreatedEvent, TicketUpdateRequest, FirstResponseEvent, ResolveEvent,
    PolicyReassignRequest, TicketSLAResponse, AtRiskResponse,
    BreachedResponse, PaginationMeta, ComplianceResponse, SweepResponse
)
from helpdesk.sla.application.dto import PriorityStr, SLATypeStr
from helpdesk.sla.domain import Caller, SLAConfig, Ticket
from helpdesk.sla.infrastructure import SQLAlchemyPolicyRepository, SQLAlchemyTicketRepository
from helpdesk.config import SLAType
from helpdesk.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA"])


# ========== Example payloads for Swagger ==========

POLICY_RESPONSE_EXAMPLE = {
    "id": "7f1c2a40-7c1e-4c55-9d7b-3f0f7e0b6a11",
    "name": "Urgent Priority SLA",
    "description": "Immediate response required for critical issues.",
    "priority": "urgent",
    "response_minutes": 15,
    "resolution_minutes": 120,
    "response_time_hours": 0.25,
    "resolution_time_hours": 2.0,
    "formatted_response_time": "15 min",
    "formatted_resolution_time": "2h",
    "is_active": True,
    "tickets_count": 3,
    "created_at": "2024-01-01T00:00:00Z",
    "updated_at": "2024-01-01T00:00:00Z"
}

TICKET_SLA_RESPONSE_EXAMPLE = {
    "id": "0b8f5a52-0d0a-4f3e-9b0c-5f2e1d7c9a33",
    "ticket_number": "TKT-2024-0001",
    "title": "VPN drops every few minutes",
    "priority": "urgent",
    "status": "open",
    "user_id": "42",
    "assigned_to": None,
    "created_at": "2024-01-01T00:00:00Z",
    "sla_policy_id": "7f1c2a40-7c1e-4c55-9d7b-3f0f7e0b6a11",
    "sla_name": "Urgent Priority SLA",
    "sla_response_due_at": "2024-01-01T00:30:00Z",
    "sla_resolution_due_at": "2024-01-01T04:00:00Z",
    "first_response_at": None,
    "resolved_at": None,
    "sla_response_breached": True,
    "sla_resolution_breached": False,
    "response_time_remaining": -15,
    "resolution_time_remaining": 195,
    "response_state": "breached",
    "resolution_state": "pending",
    "sla_status": "breached"
}


# ========== Dependencies ==========

async def get_caller(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None)
) -> Caller:
    """Caller identity as asserted by the auth layer."""
    if not x_user_id or x_user_role not in VALID_ROLES:
        raise UnauthorizedException("Missing or invalid X-User-Id / X-User-Role headers")
    return Caller(user_id=x_user_id, role=x_user_role)


def get_sla_config(request: Request) -> SLAConfig:
    """Current SLA configuration; defaults when the config manager is not running."""
    manager = getattr(request.app.state, "sla_config_manager", None)
    if manager is None:
        return SLAConfig()
    return manager.config


async def get_policy_store(
    session: AsyncSession = Depends(get_session)
) -> PolicyStore:
    return PolicyStore(SQLAlchemyPolicyRepository(session))


async def get_lifecycle_service(
    session: AsyncSession = Depends(get_session)
) -> TicketLifecycleService:
    policy_store = PolicyStore(SQLAlchemyPolicyRepository(session))
    return TicketLifecycleService(
        SQLAlchemyTicketRepository(session),
        DeadlineCalculator(policy_store),
        policy_store
    )


async def get_reconciler(
    session: AsyncSession = Depends(get_session)
) -> BreachReconciler:
    return BreachReconciler(SQLAlchemyTicketRepository(session))


async def get_aggregator(
    session: AsyncSession = Depends(get_session),
    config: SLAConfig = Depends(get_sla_config)
) -> ComplianceAggregator:
    return ComplianceAggregator(SQLAlchemyTicketRepository(session), config)


def _ticket_view(ticket: Ticket, config: SLAConfig, current_time: datetime) -> TicketSLAResponse:
    return TicketSLAResponse.from_domain(
        ticket,
        current_time,
        response_window=config.get_at_risk_minutes(SLAType.RESPONSE),
        resolution_window=config.get_at_risk_minutes(SLAType.RESOLUTION),
        risk_ratio=config.status_risk_ratio,
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Policy Routes ==========

@router.get(
    "/policies",
    response_model=List[PolicyResponse],
    summary="List SLA policies",
    description="Policies sorted by priority then name. Non-admins only see active policies."
)
async def list_policies(
    priority: Optional[PriorityStr] = Query(None, description="Filter by priority"),
    is_active: Optional[bool] = Query(None, description="Filter by active flag (admins only)"),
    caller: Caller = Depends(get_caller),
    store: PolicyStore = Depends(get_policy_store)
):
    policies = await store.list_policies(caller, priority=priority, is_active=is_active)
    return [PolicyResponse.from_domain(p) for p in policies]


@router.post(
    "/policies",
    response_model=PolicyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create SLA policy",
    description="""
    Create a policy. When `is_active` is true (the default) every other active
    policy for the same priority is deactivated in the same transaction.
    Existing tickets keep their due dates.
    """,
    responses={201: {"content": {"application/json": {"example": POLICY_RESPONSE_EXAMPLE}}}}
)
async def create_policy(
    body: PolicyCreateRequest,
    caller: Caller = Depends(get_caller),
    store: PolicyStore = Depends(get_policy_store)
):
    with log_latency(logger, "create_sla_policy", priority=body.priority):
        policy = await store.create(caller, body)
    return PolicyResponse.from_domain(policy)


@router.get(
    "/policies/{policy_id}",
    response_model=PolicyResponse,
    summary="Get SLA policy",
    responses={404: {"description": "Policy not found"}}
)
async def get_policy(
    policy_id: str,
    caller: Caller = Depends(get_caller),
    store: PolicyStore = Depends(get_policy_store)
):
    return PolicyResponse.from_domain(await store.get(policy_id))


@router.patch(
    "/policies/{policy_id}",
    response_model=PolicyResponse,
    summary="Update SLA policy",
    description="Partial update. An active result deactivates the other policies for its priority."
)
async def update_policy(
    policy_id: str,
    body: PolicyUpdateRequest,
    caller: Caller = Depends(get_caller),
    store: PolicyStore = Depends(get_policy_store)
):
    policy = await store.update(caller, policy_id, body)
    return PolicyResponse.from_domain(policy)


@router.delete(
    "/policies/{policy_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete SLA policy",
    responses={409: {"description": "Policy is assigned to tickets"}}
)
async def delete_policy(
    policy_id: str,
    caller: Caller = Depends(get_caller),
    store: PolicyStore = Depends(get_policy_store)
):
    await store.delete(caller, policy_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ========== Ticket Lifecycle Routes ==========

@router.post(
    "/tickets",
    response_model=TicketSLAResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new ticket",
    description="""
    Called by the ticketing subsystem when a ticket is created. Resolves the
    active policy for the ticket's priority and stores both due timestamps.

    **Idempotent** on `ticket_number`: repeating the event returns the stored
    ticket with status 200.
    """,
    responses={201: {"content": {"application/json": {"example": TICKET_SLA_RESPONSE_EXAMPLE}}}}
)
async def register_ticket(
    body: TicketCreatedEvent,
    response: Response,
    caller: Caller = Depends(get_caller),
    service: TicketLifecycleService = Depends(get_lifecycle_service),
    config: SLAConfig = Depends(get_sla_config)
):
    ticket, created = await service.register(caller, body)
    if not created:
        response.status_code = status.HTTP_200_OK
    return _ticket_view(ticket, config, _now())


@router.get(
    "/tickets/{ticket_id}",
    response_model=TicketSLAResponse,
    summary="Get ticket SLA status",
    responses={
        200: {"content": {"application/json": {"example": TICKET_SLA_RESPONSE_EXAMPLE}}},
        403: {"description": "Ticket outside caller scope"},
        404: {"description": "Ticket not found"}
    }
)
async def get_ticket_sla(
    ticket_id: str,
    caller: Caller = Depends(get_caller),
    service: TicketLifecycleService = Depends(get_lifecycle_service),
    config: SLAConfig = Depends(get_sla_config)
):
    ticket = await service.get_for_caller(caller, ticket_id)
    return _ticket_view(ticket, config, _now())


@router.patch(
    "/tickets/{ticket_id}",
    response_model=TicketSLAResponse,
    summary="Change ticket priority or assignee",
    description="Due timestamps are not recomputed when the priority changes."
)
async def update_ticket(
    ticket_id: str,
    body: TicketUpdateRequest,
    caller: Caller = Depends(get_caller),
    service: TicketLifecycleService = Depends(get_lifecycle_service),
    config: SLAConfig = Depends(get_sla_config)
):
    ticket = await service.update_attributes(caller, ticket_id, body)
    return _ticket_view(ticket, config, _now())


@router.post(
    "/tickets/{ticket_id}/first-response",
    response_model=TicketSLAResponse,
    summary="Record first agent response",
    description="Only the first non-client response counts. Responses from clients are ignored."
)
async def record_first_response(
    ticket_id: str,
    body: Optional[FirstResponseEvent] = None,
    caller: Caller = Depends(get_caller),
    service: TicketLifecycleService = Depends(get_lifecycle_service),
    config: SLAConfig = Depends(get_sla_config)
):
    responded_at = body.responded_at if body else None
    ticket = await service.record_first_response(caller, ticket_id, responded_at)
    return _ticket_view(ticket, config, _now())


@router.post(
    "/tickets/{ticket_id}/resolve",
    response_model=TicketSLAResponse,
    summary="Mark ticket resolved or closed"
)
async def resolve_ticket(
    ticket_id: str,
    body: Optional[ResolveEvent] = None,
    caller: Caller = Depends(get_caller),
    service: TicketLifecycleService = Depends(get_lifecycle_service),
    config: SLAConfig = Depends(get_sla_config)
):
    body = body or ResolveEvent()
    ticket = await service.resolve(caller, ticket_id, body.status, body.resolved_at)
    return _ticket_view(ticket, config, _now())


@router.post(
    "/tickets/{ticket_id}/reopen",
    response_model=TicketSLAResponse,
    summary="Reopen a resolved ticket"
)
async def reopen_ticket(
    ticket_id: str,
    caller: Caller = Depends(get_caller),
    service: TicketLifecycleService = Depends(get_lifecycle_service),
    config: SLAConfig = Depends(get_sla_config)
):
    ticket = await service.reopen(caller, ticket_id)
    return _ticket_view(ticket, config, _now())


@router.put(
    "/tickets/{ticket_id}/policy",
    response_model=TicketSLAResponse,
    summary="Reassign ticket to another SLA policy",
    description="Recomputes both due timestamps from the ticket's creation time. Breach flags are kept."
)
async def reassign_ticket_policy(
    ticket_id: str,
    body: PolicyReassignRequest,
    caller: Caller = Depends(get_caller),
    service: TicketLifecycleService = Depends(get_lifecycle_service),
    config: SLAConfig = Depends(get_sla_config)
):
    ticket = await service.reassign_policy(caller, ticket_id, body.sla_policy_id)
    return _ticket_view(ticket, config, _now())


@router.post(
    "/tickets/{ticket_id}/reconcile",
    response_model=TicketSLAResponse,
    summary="Re-evaluate breach flags of one ticket"
)
async def reconcile_ticket(
    ticket_id: str,
    caller: Caller = Depends(get_caller),
    service: TicketLifecycleService = Depends(get_lifecycle_service),
    reconciler: BreachReconciler = Depends(get_reconciler),
    config: SLAConfig = Depends(get_sla_config)
):
    if caller.is_client:
        raise ForbiddenException("Agents and admins only")
    await service.get_for_caller(caller, ticket_id)
    now = _now()
    ticket = await reconciler.reconcile(ticket_id, now)
    return _ticket_view(ticket, config, now)


# ========== Compliance Routes ==========

@router.get(
    "/compliance",
    response_model=ComplianceResponse,
    summary="SLA compliance statistics",
    description="""
    Compliance over SLA-tracked tickets visible to the caller, overall and per
    priority. `date_to` is inclusive. A rate is 100 when there are no tickets.
    """
)
async def get_compliance(
    date_from: Optional[date] = Query(None, description="Created on or after (YYYY-MM-DD)"),
    date_to: Optional[date] = Query(None, description="Created on or before (YYYY-MM-DD)"),
    response_minutes: Optional[int] = Query(None, ge=1, le=10080, description="At-risk window for response"),
    resolution_minutes: Optional[int] = Query(None, ge=1, le=10080, description="At-risk window for resolution"),
    caller: Caller = Depends(get_caller),
    aggregator: ComplianceAggregator = Depends(get_aggregator)
):
    with log_latency(logger, "sla_compliance", role=caller.role):
        report = await aggregator.compliance_stats(
            caller, date_from, date_to, response_minutes, resolution_minutes
        )
    return ComplianceResponse.from_domain(report)


@router.get(
    "/at-risk",
    response_model=AtRiskResponse,
    summary="Tickets at risk of breaching",
    description="Tickets with a pending obligation due within `minutes`, soonest first."
)
async def get_at_risk(
    minutes: int = Query(60, ge=1, le=10080, description="Look-ahead window in minutes"),
    caller: Caller = Depends(get_caller),
    aggregator: ComplianceAggregator = Depends(get_aggregator),
    config: SLAConfig = Depends(get_sla_config)
):
    now = _now()
    tickets = await aggregator.at_risk(caller, minutes, now)
    return AtRiskResponse(minutes=minutes, tickets=[_ticket_view(t, config, now) for t in tickets])


@router.get(
    "/breached",
    response_model=BreachedResponse,
    summary="Tickets with a breached SLA",
    description="Newest first. Filter with `type=response|resolution`."
)
async def get_breached(
    type: Optional[SLATypeStr] = Query(None, description="Obligation type"),
    page: int = Query(1, ge=1),
    per_page: int = Query(15, ge=1, le=100),
    caller: Caller = Depends(get_caller),
    aggregator: ComplianceAggregator = Depends(get_aggregator),
    config: SLAConfig = Depends(get_sla_config)
):
    now = _now()
    tickets, total = await aggregator.breached(caller, type, page, per_page, now)
    return BreachedResponse(
        data=[_ticket_view(t, config, now) for t in tickets],
        meta=PaginationMeta(
            current_page=page,
            last_page=max(1, math.ceil(total / per_page)),
            per_page=per_page,
            total=total,
        )
    )


@router.post(
    "/reconcile",
    response_model=SweepResponse,
    summary="Run a breach sweep now",
    description="Admins only. `dry_run=true` reports counts without writing."
)
async def run_sweep(
    dry_run: bool = Query(False),
    caller: Caller = Depends(get_caller),
    reconciler: BreachReconciler = Depends(get_reconciler)
):
    if not caller.is_admin:
        raise ForbiddenException("Admins only")
    summary = await reconciler.sweep(dry_run=dry_run)
    return SweepResponse.from_domain(summary)


# Export router for inclusion in main app
sla_router = router
