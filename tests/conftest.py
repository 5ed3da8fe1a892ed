"""Pytest configuration and fixtures."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from compliance_engine.clock import FixedClock
from compliance_engine.models import (
    ComplianceFacility,
    Covenant,
    CovenantType,
    Frequency,
    ObligationTemplate,
    ObligationType,
    ReferencePoint,
    TestingFrequency,
    ThresholdStep,
    ThresholdType,
)
from compliance_engine.notifiers import QueueNotifier
from compliance_engine.service import ComplianceService
from compliance_engine.store import InMemoryComplianceStore


@pytest.fixture
def seed() -> int:
    """Fixed seed for reproducible tests."""
    return 42


@pytest.fixture
def sample_facility_id() -> str:
    """Sample facility ID."""
    return "fac-test-001"


@pytest.fixture
def clock() -> FixedClock:
    """Clock frozen at 2025-01-01 00:00 UTC."""
    return FixedClock(datetime(2025, 1, 1, tzinfo=timezone.utc))


@pytest.fixture
def facility(sample_facility_id: str) -> ComplianceFacility:
    """Sample facility with a December fiscal year end."""
    return ComplianceFacility(
        facility_id=sample_facility_id,
        facility_name="Acme Term Loan B",
        borrower_name="Acme Holdings",
        maturity_date=date(2030, 12, 31),
    )


@pytest.fixture
def quarterly_template(sample_facility_id: str) -> ObligationTemplate:
    """Quarterly financials due 45 days after quarter end, 10 days grace."""
    return ObligationTemplate(
        obligation_id="obl-test-001",
        facility_id=sample_facility_id,
        obligation_type=ObligationType.QUARTERLY_FINANCIALS,
        name="Quarterly Financial Statements",
        frequency=Frequency.QUARTERLY,
        reference_point=ReferencePoint.PERIOD_END,
        deadline_days=45,
        activation_date=date(2025, 1, 1),
        grace_period_days=10,
    )


@pytest.fixture
def event_template(sample_facility_id: str) -> ObligationTemplate:
    """Default notice due 5 days after the triggering event."""
    return ObligationTemplate(
        obligation_id="obl-test-002",
        facility_id=sample_facility_id,
        obligation_type=ObligationType.OTHER,
        name="Notice of Default",
        frequency=Frequency.ON_EVENT,
        reference_point=ReferencePoint.EVENT_DATE,
        deadline_days=5,
        activation_date=date(2025, 1, 1),
    )


@pytest.fixture
def leverage_covenant(sample_facility_id: str) -> Covenant:
    """Maximum leverage of 4.50x with a 30-day equity cure, two cures max."""
    return Covenant(
        covenant_id="cov-test-001",
        facility_id=sample_facility_id,
        covenant_type=CovenantType.LEVERAGE_RATIO,
        name="Total Net Leverage Ratio",
        threshold_type=ThresholdType.MAXIMUM,
        threshold_schedule=[ThresholdStep(date(2024, 1, 1), Decimal("4.50"))],
        testing_frequency=TestingFrequency.QUARTERLY,
        has_equity_cure=True,
        cure_period_days=30,
        max_cures=2,
    )


@pytest.fixture
def coverage_covenant(sample_facility_id: str) -> Covenant:
    """Minimum interest coverage of 2.00x without cure rights."""
    return Covenant(
        covenant_id="cov-test-002",
        facility_id=sample_facility_id,
        covenant_type=CovenantType.INTEREST_COVERAGE,
        name="Interest Coverage Ratio",
        threshold_type=ThresholdType.MINIMUM,
        threshold_schedule=[ThresholdStep(date(2024, 1, 1), Decimal("2.00"))],
        testing_frequency=TestingFrequency.QUARTERLY,
    )


@pytest.fixture
def store() -> InMemoryComplianceStore:
    """Empty in-memory store."""
    return InMemoryComplianceStore()


@pytest.fixture
def notifier() -> QueueNotifier:
    """Notifier collecting fire instructions in memory."""
    return QueueNotifier()


@pytest.fixture
def service(store: InMemoryComplianceStore, clock: FixedClock, notifier: QueueNotifier) -> ComplianceService:
    """Service over an empty store."""
    return ComplianceService(store, clock=clock, notifier=notifier)


@pytest.fixture
def seeded_service(
    service: ComplianceService,
    facility: ComplianceFacility,
    quarterly_template: ObligationTemplate,
    event_template: ObligationTemplate,
    leverage_covenant: Covenant,
    coverage_covenant: Covenant,
) -> ComplianceService:
    """Service with one facility, two obligations and two covenants."""
    service.create_facility(facility)
    service.create_obligation(quarterly_template)
    service.create_obligation(event_template)
    service.create_covenant(leverage_covenant)
    service.create_covenant(coverage_covenant)
    return service
