"""Facility model for compliance tracking."""

from dataclasses import dataclass
from datetime import date, datetime

from compliance_engine.models.enums import FacilityStatus


@dataclass
class ComplianceFacility:
    """Credit facility whose obligations and covenants are monitored.

    ``status`` is derived by the recompute job; only
    ``administrative_status`` can be set by hand.
    """

    facility_id: str
    facility_name: str
    borrower_name: str
    maturity_date: date | None = None
    fiscal_year_end: str = "12-31"  # MM-DD
    reporting_currency: str = "USD"
    status: FacilityStatus = FacilityStatus.ACTIVE
    administrative_status: FacilityStatus | None = None
    source_facility_id: str | None = None  # Document extraction provenance
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_closed(self) -> bool:
        return (self.administrative_status or self.status) == FacilityStatus.CLOSED
