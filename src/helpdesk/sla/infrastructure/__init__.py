"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA monitoring:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
- External: Config watcher and sweep scheduler
"""

from helpdesk.sla.infrastructure.models import SlaPolicyModel, TicketModel
from helpdesk.sla.infrastructure.repositories import (
    SQLAlchemyPolicyRepository,
    SQLAlchemyTicketRepository,
)
from helpdesk.sla.infrastructure.external import SLAConfigManager, SLAScheduler

__all__ = [
    "SlaPolicyModel",
    "TicketModel",
    "SQLAlchemyPolicyRepository",
    "SQLAlchemyTicketRepository",
    "SLAConfigManager",
    "SLAScheduler",
]
