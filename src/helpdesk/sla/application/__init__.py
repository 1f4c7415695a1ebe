"""
SLA Application Layer
======================

Application layer for SLA monitoring module.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from helpdesk.sla.application.dto import (
    PolicyCreateRequest,
    PolicyUpdateRequest,
    PolicyResponse,
    TicketCreatedEvent,
    TicketUpdateRequest,
    FirstResponseEvent,
    ResolveEvent,
    PolicyReassignRequest,
    TicketSLAResponse,
    AtRiskResponse,
    BreachedResponse,
    PaginationMeta,
    ComplianceResponse,
    SweepResponse,
)
from helpdesk.sla.application.services import (
    PolicyStore,
    DeadlineCalculator,
    TicketLifecycleService,
    BreachReconciler,
    ComplianceAggregator,
    IPolicyRepository,
    ITicketRepository,
)

__all__ = [
    # DTOs
    "PolicyCreateRequest",
    "PolicyUpdateRequest",
    "PolicyResponse",
    "TicketCreatedEvent",
    "TicketUpdateRequest",
    "FirstResponseEvent",
    "ResolveEvent",
    "PolicyReassignRequest",
    "TicketSLAResponse",
    "AtRiskResponse",
    "BreachedResponse",
    "PaginationMeta",
    "ComplianceResponse",
    "SweepResponse",
    # Services
    "PolicyStore",
    "DeadlineCalculator",
    "TicketLifecycleService",
    "BreachReconciler",
    "ComplianceAggregator",
    # Repository Interfaces
    "IPolicyRepository",
    "ITicketRepository",
]
