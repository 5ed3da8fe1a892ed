"""Financial covenant models."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from compliance_engine.models.enums import (
    CovenantType,
    TestingBasis,
    TestingFrequency,
    TestOutcome,
    TestResult,
    ThresholdType,
)


@dataclass
class ThresholdStep:
    """Threshold value in force from ``effective_from`` onwards."""

    effective_from: date
    threshold_value: Decimal


@dataclass
class Covenant:
    """Financial maintenance covenant with a step-down threshold schedule."""

    covenant_id: str
    facility_id: str
    covenant_type: CovenantType
    name: str
    threshold_type: ThresholdType
    threshold_schedule: list[ThresholdStep]
    testing_frequency: TestingFrequency
    testing_basis: TestingBasis = TestingBasis.PERIOD_END
    numerator_definition: str | None = None
    denominator_definition: str | None = None
    has_equity_cure: bool = False
    cure_period_days: int | None = None
    max_cures: int | None = None  # None means unlimited
    consecutive_cure_limit: int | None = None  # None means unlimited
    is_active: bool = True
    clause_reference: str | None = None
    source_covenant_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class FinancialInputs:
    """Reported figures for one covenant test."""

    numerator: Decimal
    denominator: Decimal
    test_date: date
    period_end: date | None = None  # Defaults to test_date
    compliance_event_id: str | None = None
    submitted_by: str | None = None


@dataclass
class CovenantTest:
    """Result of evaluating a covenant for one test period."""

    __test__ = False

    test_id: str
    covenant_id: str
    facility_id: str
    test_date: date
    period_start: date
    period_end: date
    numerator_value: Decimal
    denominator_value: Decimal
    calculated_ratio: Decimal
    threshold_value: Decimal
    headroom_absolute: Decimal  # Positive means compliant
    headroom_percentage: Decimal | None  # None when threshold is zero
    breach_amount: Decimal
    outcome: TestOutcome
    resolution_deadline: date | None = None
    cure_deadline: date | None = None
    required_cure_amount: Decimal | None = None
    cure_amount: Decimal | None = None
    cure_received_on: date | None = None
    waiver_id: str | None = None
    compliance_event_id: str | None = None
    submitted_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def test_result(self) -> TestResult:
        if self.outcome == TestOutcome.PASS:
            return TestResult.PASS
        if self.outcome == TestOutcome.CURED:
            return TestResult.CURED
        if self.outcome == TestOutcome.WAIVED:
            return TestResult.WAIVED
        return TestResult.FAIL

    @property
    def cure_applied(self) -> bool:
        return self.outcome == TestOutcome.CURED

    @property
    def waiver_obtained(self) -> bool:
        return self.outcome == TestOutcome.WAIVED


@dataclass
class CureContribution:
    """Equity injected to cure a failed test."""

    facility_id: str
    test_id: str
    amount: Decimal
    received_on: date
    contribution_id: str = ""
    recorded_at: datetime | None = None


@dataclass
class QueuedInputs:
    """Financial inputs waiting for the next recompute tick."""

    queue_id: str
    covenant_id: str
    facility_id: str
    inputs: FinancialInputs
    queued_at: datetime | None = None
    processed: bool = False
    test_id: str | None = field(default=None)
