"""Tests for InMemoryComplianceStore."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from compliance_engine.evaluator import evaluate
from compliance_engine.exceptions import EntityNotFoundError, IntegrityError, ReferentialIntegrityError
from compliance_engine.models import (
    ActivityType,
    ComplianceEvent,
    ComplianceFacility,
    Covenant,
    CureContribution,
    FinancialInputs,
    ObligationTemplate,
    QueuedInputs,
    ReferenceEntity,
    ReferenceKind,
    Waiver,
    WaiverType,
)
from compliance_engine.reminders import AlertThresholdConfig, plan_for_event
from compliance_engine.store import InMemoryComplianceStore

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _event(obligation_id: str = "obl-test-001", quarter_end: date = date(2025, 3, 31), **kwargs) -> ComplianceEvent:
    defaults = dict(
        event_id=f"evt-{quarter_end.isoformat()}",
        facility_id="fac-test-001",
        obligation_id=obligation_id,
        reference_period_start=date(quarter_end.year, quarter_end.month - 2, 1),
        reference_period_end=quarter_end,
        deadline_date=date(quarter_end.year, quarter_end.month + 1, 15),
        grace_deadline_date=date(quarter_end.year, quarter_end.month + 1, 25),
    )
    defaults.update(kwargs)
    return ComplianceEvent(**defaults)


@pytest.fixture
def populated(
    store: InMemoryComplianceStore,
    facility: ComplianceFacility,
    quarterly_template: ObligationTemplate,
    leverage_covenant: Covenant,
) -> InMemoryComplianceStore:
    """Store with one facility, its quarterly obligation and leverage covenant."""
    store.add_facility(facility)
    store.add_obligation(quarterly_template)
    store.add_covenant(leverage_covenant)
    return store


class TestFacilities:
    """Tests for facility storage."""

    def test_add_and_get(self, store: InMemoryComplianceStore, facility: ComplianceFacility) -> None:
        """Test adding and retrieving a facility."""
        store.add_facility(facility)

        assert store.get_facility("fac-test-001") is facility
        assert store.list_facilities() == [facility]

    def test_duplicate(self, store: InMemoryComplianceStore, facility: ComplianceFacility) -> None:
        """Test that facility ids are unique."""
        store.add_facility(facility)

        with pytest.raises(IntegrityError):
            store.add_facility(facility)

    def test_not_found(self, store: InMemoryComplianceStore) -> None:
        """Test that unknown ids raise EntityNotFoundError."""
        with pytest.raises(EntityNotFoundError, match="Facility missing not found"):
            store.get_facility("missing")

    def test_find_by_source(self, store: InMemoryComplianceStore, facility: ComplianceFacility) -> None:
        """Test lookup by extraction provenance."""
        facility.source_facility_id = "DOC-001"
        store.add_facility(facility)

        assert store.find_facility_by_source("DOC-001") is facility
        assert store.find_facility_by_source("DOC-002") is None


class TestReferentialIntegrity:
    """Tests for reference checks."""

    def test_obligation_needs_facility(self, store: InMemoryComplianceStore, quarterly_template) -> None:
        """Test that templates need an existing facility."""
        with pytest.raises(ReferentialIntegrityError):
            store.add_obligation(quarterly_template)

    def test_event_needs_obligation(self, store: InMemoryComplianceStore, facility: ComplianceFacility) -> None:
        """Test that events need an existing obligation."""
        store.add_facility(facility)

        with pytest.raises(ReferentialIntegrityError):
            store.add_event(_event())

    def test_test_needs_covenant(
        self, store: InMemoryComplianceStore, facility: ComplianceFacility, leverage_covenant: Covenant
    ) -> None:
        """Test that covenant tests need an existing covenant."""
        store.add_facility(facility)
        test = evaluate(leverage_covenant, FinancialInputs(Decimal("400"), Decimal("100"), date(2025, 3, 31)))

        with pytest.raises(ReferentialIntegrityError):
            store.add_test(test)

    def test_waiver_needs_target(self, populated: InMemoryComplianceStore) -> None:
        """Test that waivers need their referenced entities."""
        waiver = Waiver(
            waiver_id="wvr-001",
            facility_id="fac-test-001",
            waiver_type=WaiverType.COVENANT_WAIVER,
            waiver_period_start=date(2025, 1, 1),
            waiver_period_end=date(2025, 6, 30),
            related_test_id="missing",
        )

        with pytest.raises(ReferentialIntegrityError):
            populated.add_waiver(waiver)

    def test_cure_needs_test(self, populated: InMemoryComplianceStore) -> None:
        """Test that cure contributions need an existing test."""
        with pytest.raises(ReferentialIntegrityError):
            populated.add_cure_contribution(
                CureContribution("fac-test-001", "missing", Decimal("50"), date(2025, 4, 1))
            )

    def test_save_requires_add(self, populated: InMemoryComplianceStore) -> None:
        """Test that save only updates stored entities."""
        with pytest.raises(EntityNotFoundError):
            populated.save_event(_event())


class TestEvents:
    """Tests for compliance event storage."""

    def test_one_event_per_period(self, populated: InMemoryComplianceStore) -> None:
        """Test that a second event for the same obligation period is refused."""
        populated.add_event(_event())

        with pytest.raises(IntegrityError):
            populated.add_event(_event(event_id="evt-other"))

    def test_list_filters(self, populated: InMemoryComplianceStore) -> None:
        """Test date-range filtering and deadline ordering."""
        q2 = _event(quarter_end=date(2025, 6, 30))
        q1 = _event()
        populated.add_event(q2)
        populated.add_event(q1)

        assert populated.list_events("fac-test-001") == [q1, q2]
        assert populated.list_events("fac-test-001", start=date(2025, 6, 1)) == [q2]
        assert populated.list_events("fac-test-001", end=date(2025, 5, 15)) == [q1]
        assert populated.list_events("fac-test-001", obligation_id="obl-other") == []
        assert populated.list_events("fac-other") == []


class TestTestsAndQueue:
    """Tests for covenant tests, cures and queued inputs."""

    def test_list_tests(self, populated: InMemoryComplianceStore, leverage_covenant: Covenant) -> None:
        """Test filtering by covenant and date."""
        for test_date in (date(2025, 6, 30), date(2025, 3, 31)):
            inputs = FinancialInputs(Decimal("400"), Decimal("100"), test_date)
            populated.add_test(evaluate(leverage_covenant, inputs, test_id=f"t-{test_date.month}"))

        assert [t.test_id for t in populated.list_tests("fac-test-001")] == ["t-3", "t-6"]
        assert [t.test_id for t in populated.list_tests("fac-test-001", start=date(2025, 4, 1))] == ["t-6"]
        assert populated.list_tests("fac-test-001", covenant_id="cov-other") == []

    def test_pending_inputs(self, populated: InMemoryComplianceStore) -> None:
        """Test that processed inputs drop out of the pending list."""
        queued = QueuedInputs(
            queue_id="q-1",
            covenant_id="cov-test-001",
            facility_id="fac-test-001",
            inputs=FinancialInputs(Decimal("400"), Decimal("100"), date(2025, 3, 31)),
        )
        populated.enqueue_inputs(queued)

        assert populated.list_pending_inputs("fac-test-001") == [queued]

        queued.processed = True
        populated.save_queued_inputs(queued)

        assert populated.list_pending_inputs("fac-test-001") == []


class TestWaiversAndReminders:
    """Tests for waiver and reminder storage."""

    def test_list_waivers_by_window(self, populated: InMemoryComplianceStore) -> None:
        """Test that waivers are filtered by overlap with the range."""
        waiver = Waiver(
            waiver_id="wvr-001",
            facility_id="fac-test-001",
            waiver_type=WaiverType.COVENANT_WAIVER,
            waiver_period_start=date(2025, 4, 1),
            waiver_period_end=date(2025, 6, 30),
            related_covenant_id="cov-test-001",
        )
        populated.add_waiver(waiver)

        assert populated.list_waivers("fac-test-001", date(2025, 6, 30), date(2025, 12, 31)) == [waiver]
        assert populated.list_waivers("fac-test-001", date(2025, 7, 1)) == []
        assert populated.list_waivers("fac-test-001", end=date(2025, 3, 31)) == []

    def test_reminders_by_reference(self, populated: InMemoryComplianceStore) -> None:
        """Test saving, listing by reference and deleting reminders."""
        event = _event()
        planned = plan_for_event(AlertThresholdConfig(), event, NOW)
        for reminder in planned:
            populated.save_reminder(reminder)
        reference = ReferenceEntity(ReferenceKind.COMPLIANCE_EVENT, event.event_id)

        assert len(populated.list_reminders("fac-test-001", reference)) == len(planned)
        assert populated.list_reminders("fac-test-001", ReferenceEntity(ReferenceKind.WAIVER, "x")) == []

        populated.delete_reminder(planned[0].reminder_id)
        populated.delete_reminder("missing")

        assert len(populated.list_reminders("fac-test-001")) == len(planned) - 1


class TestActivityAndSummary:
    """Tests for the activity log and summary counts."""

    def test_log_activity(self, populated: InMemoryComplianceStore) -> None:
        """Test that log_activity builds and stores an entry."""
        activity = populated.log_activity(
            "fac-test-001",
            ActivityType.FACILITY_SYNCED,
            "facility",
            "fac-test-001",
            "Imported 1 obligations and 1 covenants",
            NOW,
            {"skipped": []},
        )

        assert populated.list_activities("fac-test-001") == [activity]
        assert activity.details == {"skipped": []}

    def test_summary(self, populated: InMemoryComplianceStore) -> None:
        """Test summary counts."""
        populated.add_event(_event())

        summary = populated.summary()

        assert summary["facilities"] == 1
        assert summary["obligations"] == 1
        assert summary["covenants"] == 1
        assert summary["events"] == 1
        assert summary["tests"] == 0
