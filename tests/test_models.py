"""Tests for domain model helpers."""

from dataclasses import FrozenInstanceError
from datetime import date, datetime, timezone

import pytest

from compliance_engine.models import (
    MANUAL_EVENT_STATUSES,
    Channel,
    ComplianceEvent,
    ComplianceFacility,
    EventStatus,
    FacilityStatus,
    ReferenceEntity,
    ReferenceKind,
    Reminder,
    ReminderType,
    TestOutcome,
    Waiver,
    WaiverType,
)


def _waiver(start: date, end: date) -> Waiver:
    return Waiver(
        waiver_id=f"wvr-{start.isoformat()}",
        facility_id="fac-test-001",
        waiver_type=WaiverType.COVENANT_WAIVER,
        waiver_period_start=start,
        waiver_period_end=end,
        related_covenant_id="cov-test-001",
    )


class TestComplianceFacility:
    """Tests for ComplianceFacility."""

    def test_defaults(self, facility: ComplianceFacility) -> None:
        assert facility.status == FacilityStatus.ACTIVE
        assert facility.fiscal_year_end == "12-31"
        assert facility.reporting_currency == "USD"
        assert not facility.is_closed

    def test_administrative_close(self, facility: ComplianceFacility) -> None:
        """Test that the administrative status overrides the computed one."""
        facility.status = FacilityStatus.DEFAULT
        facility.administrative_status = FacilityStatus.CLOSED

        assert facility.is_closed


class TestComplianceEvent:
    """Tests for ComplianceEvent."""

    def test_period_key(self) -> None:
        event = ComplianceEvent(
            event_id="evt-1",
            facility_id="fac-test-001",
            obligation_id="obl-test-001",
            reference_period_start=date(2025, 1, 1),
            reference_period_end=date(2025, 3, 31),
            deadline_date=date(2025, 5, 15),
            grace_deadline_date=date(2025, 5, 25),
        )

        assert event.period_key == ("obl-test-001", date(2025, 1, 1), date(2025, 3, 31))
        assert event.status == EventStatus.UPCOMING
        assert not event.is_manual_status

    @pytest.mark.parametrize("status", sorted(MANUAL_EVENT_STATUSES, key=lambda s: s.value))
    def test_manual_statuses(self, status: EventStatus) -> None:
        event = ComplianceEvent(
            event_id="evt-1",
            facility_id="fac-test-001",
            obligation_id="obl-test-001",
            reference_period_start=date(2025, 1, 1),
            reference_period_end=date(2025, 3, 31),
            deadline_date=date(2025, 5, 15),
            grace_deadline_date=date(2025, 5, 25),
            status=status,
        )

        assert event.is_manual_status

    def test_computed_statuses_are_not_manual(self) -> None:
        assert EventStatus.UPCOMING not in MANUAL_EVENT_STATUSES
        assert EventStatus.DUE_SOON not in MANUAL_EVENT_STATUSES
        assert EventStatus.OVERDUE not in MANUAL_EVENT_STATUSES


class TestTestOutcome:
    """Tests for TestOutcome helpers."""

    @pytest.mark.parametrize(
        "outcome",
        [TestOutcome.PASS, TestOutcome.CURED, TestOutcome.WAIVED, TestOutcome.FAIL_FINAL],
    )
    def test_terminal(self, outcome: TestOutcome) -> None:
        assert outcome.is_terminal
        assert not outcome.is_pending_failure

    @pytest.mark.parametrize(
        "outcome",
        [
            TestOutcome.FAIL_PENDING,
            TestOutcome.CURE_PENDING,
            TestOutcome.WAIVER_REQUESTED,
            TestOutcome.CURE_AND_WAIVER_PENDING,
        ],
    )
    def test_pending(self, outcome: TestOutcome) -> None:
        assert outcome.is_pending_failure

    def test_string_enum(self) -> None:
        assert TestOutcome.CURE_PENDING == "CURE_PENDING"


class TestWaiver:
    """Tests for Waiver helpers."""

    def test_target(self) -> None:
        waiver = _waiver(date(2025, 1, 1), date(2025, 6, 30))

        assert waiver.target == ("cov-test-001", None, None)

    def test_overlaps_inclusive(self) -> None:
        """Test that windows sharing a single day overlap."""
        first = _waiver(date(2025, 1, 1), date(2025, 6, 30))

        assert first.overlaps(_waiver(date(2025, 6, 30), date(2025, 12, 31)))
        assert first.overlaps(_waiver(date(2025, 2, 1), date(2025, 3, 1)))
        assert not first.overlaps(_waiver(date(2025, 7, 1), date(2025, 12, 31)))


class TestReminder:
    """Tests for Reminder identity."""

    def test_reference_is_hashable_and_frozen(self) -> None:
        reference = ReferenceEntity(ReferenceKind.WAIVER, "wvr-001")

        assert reference == ReferenceEntity(ReferenceKind.WAIVER, "wvr-001")
        assert len({reference, ReferenceEntity(ReferenceKind.WAIVER, "wvr-001")}) == 1
        with pytest.raises(FrozenInstanceError):
            reference.entity_id = "other"

    def test_key(self) -> None:
        scheduled = datetime(2025, 5, 1, 9, 0, tzinfo=timezone.utc)
        reminder = Reminder(
            reminder_id="rem-1",
            facility_id="fac-test-001",
            reference=ReferenceEntity(ReferenceKind.COMPLIANCE_EVENT, "evt-1"),
            reminder_type=ReminderType.DEADLINE_APPROACHING,
            days_before=14,
            scheduled_for=scheduled,
            channel=Channel.EMAIL,
            subject="Quarterly Financial Statements due 2025-05-15",
        )

        assert reminder.key == (ReferenceEntity(ReferenceKind.COMPLIANCE_EVENT, "evt-1"), Channel.EMAIL, scheduled)
        assert not reminder.is_sent
        assert not reminder.skipped
