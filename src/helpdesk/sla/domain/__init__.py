"""
SLA Domain Layer
================

Domain layer for SLA monitoring module.

Contains:
- Entities: Core business objects (SlaPolicy, Ticket, Caller, ObligationStatus)
- Value Objects: Immutable objects (SLAConfig, SLADeadlines)
- Domain Services: Stateless business logic (SLACalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk.sla.domain.entities import (
    SlaPolicy,
    Ticket,
    Caller,
    ObligationStatus,
    ObligationStats,
    PriorityCompliance,
    SweepSummary,
    ComplianceReport,
    format_minutes,
)
from helpdesk.sla.domain.value_objects import (
    SLACalculator,
    SLAConfig,
    SLADeadlines,
    DefaultPolicyConfig,
)

__all__ = [
    # Entities
    "SlaPolicy",
    "Ticket",
    "Caller",
    "ObligationStatus",
    "ObligationStats",
    "PriorityCompliance",
    "SweepSummary",
    "ComplianceReport",
    "format_minutes",
    # Value Objects & Services
    "SLACalculator",
    "SLAConfig",
    "SLADeadlines",
    "DefaultPolicyConfig",
]
