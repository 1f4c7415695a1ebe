"""
SLA Value Objects
==================

Immutable value objects for SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from helpdesk.config import (
    SLAType, SLAState, SLAStatus, Priority,
    VALID_PRIORITIES, VALID_SLA_TYPES
)
from helpdesk.sla.domain.entities import Ticket, ObligationStatus


@dataclass(frozen=True)
class SLADeadlines:
    """Response and resolution due timestamps bound to a ticket at assignment."""
    response_due_at: datetime
    resolution_due_at: datetime


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all deadline arithmetic and obligation
    classification lives here so the reconciler, the aggregator and the
    ticket view agree on what "breached" and "at risk" mean.

    Time arithmetic is wall-clock minute addition with no calendar or
    business-hours adjustment.
    """

    @staticmethod
    def calculate_deadline(created_at: datetime, sla_minutes: int) -> datetime:
        """
        Calculate one SLA deadline for a ticket.

        Args:
            created_at: When ticket was created
            sla_minutes: Budget in minutes from the bound policy

        Returns:
            The SLA deadline
        """
        return created_at + timedelta(minutes=sla_minutes)

    @classmethod
    def calculate_deadlines(
        cls,
        created_at: datetime,
        response_minutes: int,
        resolution_minutes: int
    ) -> SLADeadlines:
        return SLADeadlines(
            response_due_at=cls.calculate_deadline(created_at, response_minutes),
            resolution_due_at=cls.calculate_deadline(created_at, resolution_minutes),
        )

    @staticmethod
    def is_overdue(
        due_at: Optional[datetime],
        met_at: Optional[datetime],
        current_time: datetime
    ) -> bool:
        """True when the deadline passed and the event is still missing."""
        return due_at is not None and met_at is None and current_time > due_at

    @staticmethod
    def remaining_minutes(
        due_at: Optional[datetime],
        met_at: Optional[datetime],
        current_time: datetime
    ) -> Optional[int]:
        """
        Signed whole minutes until the deadline, truncated toward zero.

        None when there is no deadline or the event is already recorded.
        """
        if due_at is None or met_at is not None:
            return None
        return int((due_at - current_time).total_seconds() / 60)

    @classmethod
    def calculate_state(
        cls,
        due_at: Optional[datetime],
        met_at: Optional[datetime],
        breached_flag: bool,
        current_time: datetime,
        window_minutes: int
    ) -> SLAState:
        """
        Classify one obligation.

        Args:
            due_at: The SLA deadline
            met_at: When the obligation was satisfied (first response/resolution)
            breached_flag: Persisted breach flag
            current_time: Current time for evaluation
            window_minutes: Look-ahead window for "at_risk"

        Returns:
            SLAState: Current SLA state
        """
        if breached_flag or cls.is_overdue(due_at, met_at, current_time):
            return SLAState.BREACHED
        if met_at is not None:
            return SLAState.MET
        if due_at is not None and due_at <= current_time + timedelta(minutes=window_minutes):
            return SLAState.AT_RISK
        return SLAState.PENDING

    @classmethod
    def evaluate(
        cls,
        ticket: Ticket,
        sla_type: SLAType,
        current_time: datetime,
        window_minutes: int
    ) -> Optional[ObligationStatus]:
        """Evaluate one obligation of a ticket; None if the ticket is untracked."""
        if not ticket.is_sla_tracked:
            return None

        due_at = ticket.due_at(sla_type)
        met_at = ticket.event_at(sla_type)
        state = cls.calculate_state(
            due_at, met_at, ticket.breached_flag(sla_type), current_time, window_minutes
        )
        return ObligationStatus(
            sla_type=sla_type,
            state=state,
            due_at=due_at,
            met_at=met_at,
            breached=state == SLAState.BREACHED,
            remaining_minutes=cls.remaining_minutes(due_at, met_at, current_time),
        )

    @classmethod
    def overall_status(
        cls,
        ticket: Ticket,
        current_time: datetime,
        risk_ratio: float = 0.3
    ) -> SLAStatus:
        """
        Single status for list views.

        ``at_risk`` when a pending obligation has less than ``risk_ratio`` of
        its budget (due_at - created_at) left.
        """
        if not ticket.is_sla_tracked:
            return SLAStatus.OK

        for sla_type in VALID_SLA_TYPES:
            due_at = ticket.due_at(sla_type)
            met_at = ticket.event_at(sla_type)
            if ticket.breached_flag(sla_type) or cls.is_overdue(due_at, met_at, current_time):
                return SLAStatus.BREACHED

        for sla_type in VALID_SLA_TYPES:
            due_at = ticket.due_at(sla_type)
            if due_at is None or ticket.event_at(sla_type) is not None:
                continue
            budget = (due_at - ticket.created_at).total_seconds()
            remaining = (due_at - current_time).total_seconds()
            if budget > 0 and remaining / budget < risk_ratio:
                return SLAStatus.AT_RISK

        return SLAStatus.OK


class DefaultPolicyConfig(BaseModel):
    """Policy created at startup for any priority that has no active policy."""
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    priority: str
    response_minutes: int = Field(gt=0)
    resolution_minutes: int = Field(gt=0)

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, v: str) -> str:
        if v not in VALID_PRIORITIES:
            raise ValueError(f"priority must be one of {VALID_PRIORITIES}")
        return v


def _builtin_policies() -> List[DefaultPolicyConfig]:
    return [
        DefaultPolicyConfig(
            name="Low Priority SLA",
            description="Extended timeframes for non-urgent issues.",
            priority=Priority.LOW, response_minutes=480, resolution_minutes=2880,
        ),
        DefaultPolicyConfig(
            name="Medium Priority SLA",
            description="Standard timeframes for regular issues.",
            priority=Priority.MEDIUM, response_minutes=240, resolution_minutes=1440,
        ),
        DefaultPolicyConfig(
            name="High Priority SLA",
            description="Reduced timeframes for important issues.",
            priority=Priority.HIGH, response_minutes=60, resolution_minutes=480,
        ),
        DefaultPolicyConfig(
            name="Urgent Priority SLA",
            description="Immediate response required for critical issues.",
            priority=Priority.URGENT, response_minutes=15, resolution_minutes=120,
        ),
    ]


class SLAConfig(BaseModel):
    """
    SLA behaviour configuration loaded from YAML.

    Policies themselves live in the database; this file only seeds them and
    tunes the read-time classification windows.
    """
    default_policies: List[DefaultPolicyConfig] = Field(
        default_factory=_builtin_policies,
        description="Policies seeded for priorities without an active policy"
    )
    at_risk_minutes: Dict[str, int] = Field(
        default_factory=lambda: {SLAType.RESPONSE: 30, SLAType.RESOLUTION: 60},
        description="Default look-ahead window per obligation for compliance stats"
    )
    at_risk_limit: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Maximum tickets returned by the at-risk listing"
    )
    status_risk_ratio: float = Field(
        default=0.3,
        gt=0,
        lt=1,
        description="Remaining-budget fraction below which sla_status is at_risk"
    )
    business_hours_only: bool = Field(
        default=False,
        description="Accepted for compatibility with the admin UI; has no effect"
    )

    @field_validator("at_risk_minutes")
    @classmethod
    def validate_at_risk_minutes(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Fill in missing obligation types and reject non-positive windows."""
        defaults = {SLAType.RESPONSE: 30, SLAType.RESOLUTION: 60}
        for sla_type in VALID_SLA_TYPES:
            v.setdefault(sla_type, defaults[sla_type])
        for sla_type, minutes in v.items():
            if minutes <= 0:
                raise ValueError(f"at_risk_minutes.{sla_type} must be positive")
        return v

    @model_validator(mode="after")
    def validate_default_policies(self) -> "SLAConfig":
        seen = set()
        for policy in self.default_policies:
            if policy.priority in seen:
                raise ValueError(f"duplicate default policy for priority '{policy.priority}'")
            seen.add(policy.priority)
        return self

    def get_at_risk_minutes(self, sla_type: str) -> int:
        return self.at_risk_minutes.get(sla_type, 60)
