"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    String, Boolean, Integer, Text, Uuid, ForeignKey, Index, CheckConstraint, text
)
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.infrastructure.database import Base, UTCDateTime
from helpdesk.config import Priority, TicketStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SlaPolicyModel(Base):
    """
    Database model for SlaPolicy entity.

    Maps to the 'sla_policies' table.
    """
    __tablename__ = "sla_policies"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    priority: Mapped[Priority] = mapped_column(String(20), nullable=False, index=True)

    # Budgets in minutes
    response_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint("response_minutes > 0", name="ck_sla_policies_response_positive"),
        CheckConstraint("resolution_minutes > 0", name="ck_sla_policies_resolution_positive"),
        # At most one active policy per priority
        Index(
            "uq_sla_policies_active_priority",
            "priority",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )


class TicketModel(Base):
    """
    Database model for the SLA projection of a ticket.

    Maps to the 'tickets' table.
    """
    __tablename__ = "tickets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Business identifier from the ticketing subsystem
    ticket_number: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)

    priority: Mapped[Priority] = mapped_column(String(20), nullable=False, default=Priority.MEDIUM)
    status: Mapped[TicketStatus] = mapped_column(String(20), nullable=False, default=TicketStatus.NEW)

    # Scoping
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    assigned_to: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    # SLA binding; RESTRICT keeps due-date provenance from being orphaned
    sla_policy_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid, ForeignKey("sla_policies.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    sla_response_due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)
    sla_resolution_due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)

    # Lifecycle events
    first_response_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)

    # Write-once breach flags
    sla_response_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    sla_resolution_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
