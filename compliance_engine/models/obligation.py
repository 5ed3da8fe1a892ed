"""Reporting obligation templates and their dated instances."""

from dataclasses import dataclass, field
from datetime import date, datetime

from compliance_engine.models.enums import (
    MANUAL_EVENT_STATUSES,
    EventStatus,
    Frequency,
    ObligationType,
    ReferencePoint,
)


@dataclass
class ObligationTemplate:
    """Recurring or one-off reporting duty of a facility."""

    obligation_id: str
    facility_id: str
    obligation_type: ObligationType
    name: str
    frequency: Frequency
    reference_point: ReferencePoint
    deadline_days: int  # Days after the reference point
    activation_date: date
    deadline_business_days: bool = False  # Roll weekend deadlines to Monday
    fixed_deadline_dates: list[date] = field(default_factory=list)
    grace_period_days: int = 0
    is_active: bool = True
    recipient_roles: list[str] = field(default_factory=list)
    requires_certification: bool = False
    description: str | None = None
    clause_reference: str | None = None
    source_obligation_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class ComplianceEvent:
    """Dated instance of an obligation for one reference period."""

    event_id: str
    facility_id: str
    obligation_id: str
    reference_period_start: date
    reference_period_end: date
    deadline_date: date
    grace_deadline_date: date
    status: EventStatus = EventStatus.UPCOMING
    submitted_at: datetime | None = None
    submitted_by: str | None = None
    submission_notes: str | None = None
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    review_notes: str | None = None
    trigger_description: str | None = None  # on_event obligations only
    waiver_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def period_key(self) -> tuple[str, date, date]:
        """Uniqueness key: one event per obligation and reference period."""
        return (self.obligation_id, self.reference_period_start, self.reference_period_end)

    @property
    def is_manual_status(self) -> bool:
        return self.status in MANUAL_EVENT_STATUSES
