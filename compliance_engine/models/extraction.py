"""Records received from document extraction.

Values use the extraction taxonomy (lower-case strings); the importer maps
them onto engine enums.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal


@dataclass
class ExtractedThresholdStep:
    effective_from: date
    threshold_value: Decimal


@dataclass
class ExtractedObligation:
    source_obligation_id: str
    obligation_type: str
    name: str
    frequency: str
    deadline_days: int
    reference_point: str = "period_end"
    deadline_business_days: bool = False
    fixed_deadline_dates: list[date] = field(default_factory=list)
    grace_period_days: int = 0
    recipient_roles: list[str] = field(default_factory=list)
    requires_certification: bool = False
    description: str | None = None
    clause_reference: str | None = None


@dataclass
class ExtractedCovenant:
    source_covenant_id: str
    covenant_type: str
    name: str
    threshold_type: str
    threshold_schedule: list[ExtractedThresholdStep]
    testing_frequency: str = "quarterly"
    testing_basis: str = "period_end"
    numerator_definition: str | None = None
    denominator_definition: str | None = None
    has_equity_cure: bool = False
    cure_period_days: int | None = None
    max_cures: int | None = None
    consecutive_cure_limit: int | None = None
    clause_reference: str | None = None


@dataclass
class ExtractedFacility:
    source_facility_id: str
    facility_name: str
    borrower_name: str
    maturity_date: date | None = None
    fiscal_year_end: str = "12-31"
    reporting_currency: str = "USD"
    obligations: list[ExtractedObligation] = field(default_factory=list)
    covenants: list[ExtractedCovenant] = field(default_factory=list)
