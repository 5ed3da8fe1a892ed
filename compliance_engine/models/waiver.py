"""Waiver model."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from compliance_engine.models.enums import RequiredConsent, WaiverStatus, WaiverType


@dataclass
class Waiver:
    """Lender waiver, consent or deadline extension."""

    waiver_id: str
    facility_id: str
    waiver_type: WaiverType
    waiver_period_start: date
    waiver_period_end: date
    required_consent: RequiredConsent = RequiredConsent.MAJORITY_LENDERS
    status: WaiverStatus = WaiverStatus.REQUESTED
    related_covenant_id: str | None = None
    related_test_id: str | None = None
    related_event_id: str | None = None
    supersedes_waiver_id: str | None = None
    description: str | None = None
    conditions: list[str] = field(default_factory=list)
    fee_amount: Decimal | None = None
    fee_currency: str | None = None
    consent_obtained_date: date | None = None
    requested_by: str | None = None
    decided_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def target(self) -> tuple[str | None, str | None, str | None]:
        return (self.related_covenant_id, self.related_test_id, self.related_event_id)

    def overlaps(self, other: "Waiver") -> bool:
        """Whether the two inclusive waiver windows share a day."""
        return (
            self.waiver_period_start <= other.waiver_period_end
            and other.waiver_period_start <= self.waiver_period_end
        )

    def covers(self, day: date) -> bool:
        return self.waiver_period_start <= day <= self.waiver_period_end
