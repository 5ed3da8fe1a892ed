"""Tests for the cure and waiver resolver."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from compliance_engine import resolver
from compliance_engine.evaluator import evaluate
from compliance_engine.exceptions import InputError, InvalidTransitionError, WaiverConflictError
from compliance_engine.models import (
    ComplianceEvent,
    Covenant,
    CovenantTest,
    CureContribution,
    EventStatus,
    FinancialInputs,
    ObligationTemplate,
    TestOutcome,
    TestResult,
    Waiver,
    WaiverStatus,
    WaiverType,
)


def _failed(covenant: Covenant, test_date: date, test_id: str) -> CovenantTest:
    inputs = FinancialInputs(numerator=Decimal("500"), denominator=Decimal("100"), test_date=test_date)
    return evaluate(covenant, inputs, test_id=test_id)


def _cure(test: CovenantTest, amount: str = "50.00", received_on: date | None = None) -> CureContribution:
    return CureContribution(
        facility_id=test.facility_id,
        test_id=test.test_id,
        amount=Decimal(amount),
        received_on=received_on or test.test_date,
    )


def _waiver(waiver_id: str = "wvr-001", **kwargs) -> Waiver:
    defaults = dict(
        facility_id="fac-test-001",
        waiver_type=WaiverType.COVENANT_WAIVER,
        waiver_period_start=date(2025, 1, 1),
        waiver_period_end=date(2025, 6, 30),
        related_covenant_id="cov-test-001",
    )
    defaults.update(kwargs)
    return Waiver(waiver_id=waiver_id, **defaults)


class TestOnFailure:
    """Tests for routing failed tests."""

    def test_cure_available(self, leverage_covenant: Covenant) -> None:
        """Test that an eligible failure awaits an equity cure."""
        test = _failed(leverage_covenant, date(2025, 3, 31), "t-1")

        assert resolver.on_failure(test, leverage_covenant) == TestOutcome.CURE_PENDING
        assert test.cure_deadline == date(2025, 3, 31) + timedelta(days=30)
        assert test.resolution_deadline is None

    def test_no_cure_rights(self, coverage_covenant: Covenant) -> None:
        """Test that a covenant without cure rights goes to the waiver path."""
        inputs = FinancialInputs(numerator=Decimal("150"), denominator=Decimal("100"), test_date=date(2025, 3, 31))
        test = evaluate(coverage_covenant, inputs)

        assert resolver.on_failure(test, coverage_covenant) == TestOutcome.FAIL_PENDING
        assert test.resolution_deadline == date(2025, 4, 30)
        assert test.cure_deadline is None

    def test_max_cures_exhausted(self, leverage_covenant: Covenant) -> None:
        """Test that a third failure cannot be cured when max_cures is two."""
        history = []
        for index, test_date in enumerate([date(2024, 9, 30), date(2024, 12, 31)]):
            prior = _failed(leverage_covenant, test_date, f"t-{index}")
            resolver.on_failure(prior, leverage_covenant, history)
            resolver.apply_cure(prior, _cure(prior))
            history.append(prior)

        third = _failed(leverage_covenant, date(2025, 3, 31), "t-3")

        assert resolver.cure_counts(third, history) == (2, 2)
        assert resolver.on_failure(third, leverage_covenant, history) == TestOutcome.FAIL_PENDING
        with pytest.raises(InvalidTransitionError):
            resolver.apply_cure(third, _cure(third))

    def test_consecutive_cure_limit(self, leverage_covenant: Covenant) -> None:
        """Test the limit on cures in consecutive periods."""
        leverage_covenant.max_cures = None
        leverage_covenant.consecutive_cure_limit = 1
        prior = _failed(leverage_covenant, date(2024, 12, 31), "t-1")
        resolver.on_failure(prior, leverage_covenant)
        resolver.apply_cure(prior, _cure(prior))

        current = _failed(leverage_covenant, date(2025, 3, 31), "t-2")

        assert not resolver.is_cure_eligible(current, leverage_covenant, [prior])

    def test_non_consecutive_cures_allowed(self, leverage_covenant: Covenant) -> None:
        """Test that a passing test breaks the consecutive run."""
        leverage_covenant.max_cures = None
        leverage_covenant.consecutive_cure_limit = 1
        cured = _failed(leverage_covenant, date(2024, 9, 30), "t-1")
        resolver.on_failure(cured, leverage_covenant)
        resolver.apply_cure(cured, _cure(cured))
        passed = evaluate(
            leverage_covenant,
            FinancialInputs(Decimal("400"), Decimal("100"), date(2024, 12, 31)),
            test_id="t-2",
        )

        current = _failed(leverage_covenant, date(2025, 3, 31), "t-3")

        assert resolver.is_cure_eligible(current, leverage_covenant, [cured, passed])

    def test_pending_cure_holds_a_cure_right(self, leverage_covenant: Covenant) -> None:
        """Test that a failure inside an open cure window cannot take the last cure."""
        leverage_covenant.max_cures = 1
        first = _failed(leverage_covenant, date(2025, 3, 31), "t-a")
        resolver.on_failure(first, leverage_covenant)
        second = _failed(leverage_covenant, date(2025, 4, 15), "t-b")

        assert resolver.cure_counts(second, [first]) == (1, 1)
        assert resolver.on_failure(second, leverage_covenant, [first]) == TestOutcome.FAIL_PENDING
        resolver.apply_cure(first, _cure(first), covenant=leverage_covenant, history=[second])
        with pytest.raises(InvalidTransitionError):
            resolver.apply_cure(second, _cure(second), covenant=leverage_covenant, history=[first])

    def test_cure_cap_checked_when_applied(self, leverage_covenant: Covenant) -> None:
        """Test that applying a cure re-checks the lifetime cap."""
        leverage_covenant.max_cures = 1
        cured = _failed(leverage_covenant, date(2025, 6, 30), "t-a")
        resolver.on_failure(cured, leverage_covenant)
        resolver.apply_cure(cured, _cure(cured))
        # Evaluated earlier than the cured test, so it was routed to the cure path
        stale = _failed(leverage_covenant, date(2025, 3, 31), "t-b")
        resolver.on_failure(stale, leverage_covenant, [cured])

        assert stale.outcome == TestOutcome.CURE_PENDING
        with pytest.raises(InvalidTransitionError):
            resolver.apply_cure(stale, _cure(stale), covenant=leverage_covenant, history=[cured])
        assert stale.outcome == TestOutcome.CURE_PENDING

    def test_only_fresh_failures(self, leverage_covenant: Covenant) -> None:
        """Test that a passing test cannot be routed."""
        test = evaluate(leverage_covenant, FinancialInputs(Decimal("400"), Decimal("100"), date(2025, 3, 31)))

        with pytest.raises(InvalidTransitionError):
            resolver.on_failure(test, leverage_covenant)


class TestCure:
    """Tests for equity cures."""

    @pytest.fixture
    def pending(self, leverage_covenant: Covenant) -> CovenantTest:
        test = _failed(leverage_covenant, date(2025, 3, 31), "t-1")
        resolver.on_failure(test, leverage_covenant)
        return test

    def test_apply_cure(self, pending: CovenantTest) -> None:
        """Test that a sufficient, timely cure cures the test."""
        assert resolver.apply_cure(pending, _cure(pending, received_on=date(2025, 4, 30))) == TestOutcome.CURED
        assert pending.cure_amount == Decimal("50.00")
        assert pending.cure_received_on == date(2025, 4, 30)
        assert pending.cure_applied
        assert pending.test_result == TestResult.CURED

    def test_cure_too_small(self, pending: CovenantTest) -> None:
        """Test that an insufficient cure is rejected."""
        with pytest.raises(InputError) as exc_info:
            resolver.apply_cure(pending, _cure(pending, "49.99"))

        assert "amount" in exc_info.value.field_errors
        assert pending.outcome == TestOutcome.CURE_PENDING

    def test_cure_after_deadline(self, pending: CovenantTest) -> None:
        """Test that a late cure is rejected."""
        with pytest.raises(InvalidTransitionError):
            resolver.apply_cure(pending, _cure(pending, received_on=date(2025, 5, 1)))

    def test_cure_deadline_passes(self, pending: CovenantTest) -> None:
        """Test that an uncured test fails finally after the deadline."""
        assert not resolver.advance(pending, date(2025, 4, 30))
        assert resolver.advance(pending, date(2025, 5, 1))
        assert pending.outcome == TestOutcome.FAIL_FINAL


class TestWaiverPath:
    """Tests for waiver transitions."""

    @pytest.fixture
    def failed(self, coverage_covenant: Covenant) -> CovenantTest:
        inputs = FinancialInputs(Decimal("150"), Decimal("100"), date(2025, 3, 31))
        test = evaluate(coverage_covenant, inputs, test_id="t-1")
        resolver.on_failure(test, coverage_covenant)
        return test

    def test_request_and_approve(self, failed: CovenantTest) -> None:
        """Test a granted waiver."""
        resolver.request_waiver(failed, _waiver())

        assert failed.outcome == TestOutcome.WAIVER_REQUESTED
        assert failed.waiver_id == "wvr-001"
        assert resolver.waiver_approved(failed) == TestOutcome.WAIVED
        assert failed.waiver_obtained
        assert failed.test_result == TestResult.WAIVED

    def test_request_and_reject(self, failed: CovenantTest) -> None:
        """Test a denied waiver."""
        resolver.request_waiver(failed, _waiver())

        assert resolver.waiver_rejected(failed) == TestOutcome.FAIL_FINAL
        assert failed.test_result == TestResult.FAIL

    def test_resolution_deadline(self, failed: CovenantTest) -> None:
        """Test that no waiver request before the window closes fails finally."""
        assert resolver.advance(failed, date(2025, 5, 1))
        assert failed.outcome == TestOutcome.FAIL_FINAL

    def test_waiver_request_stops_the_clock(self, failed: CovenantTest) -> None:
        """Test that a requested waiver is not failed by the resolution deadline."""
        resolver.request_waiver(failed, _waiver())

        assert not resolver.advance(failed, date(2025, 12, 31))
        assert failed.outcome == TestOutcome.WAIVER_REQUESTED

    def test_terminal_states_refuse_transitions(self, failed: CovenantTest) -> None:
        """Test that terminal outcomes cannot move."""
        resolver.request_waiver(failed, _waiver())
        resolver.waiver_approved(failed)

        with pytest.raises(InvalidTransitionError):
            resolver.waiver_rejected(failed)
        with pytest.raises(InvalidTransitionError):
            resolver.request_waiver(failed, _waiver("wvr-002"))


class TestDualPath:
    """Tests for a cure and a waiver pursued together."""

    @pytest.fixture
    def dual(self, leverage_covenant: Covenant) -> CovenantTest:
        test = _failed(leverage_covenant, date(2025, 3, 31), "t-1")
        resolver.on_failure(test, leverage_covenant)
        resolver.request_waiver(test, _waiver())
        return test

    def test_both_pending(self, dual: CovenantTest) -> None:
        """Test the combined pending state."""
        assert dual.outcome == TestOutcome.CURE_AND_WAIVER_PENDING
        assert dual.test_result == TestResult.FAIL

    def test_cure_wins(self, dual: CovenantTest) -> None:
        """Test that a cure resolves the combined state."""
        assert resolver.apply_cure(dual, _cure(dual)) == TestOutcome.CURED

    def test_waiver_rejected_returns_to_cure(self, dual: CovenantTest) -> None:
        """Test that a rejected waiver leaves the cure open."""
        assert resolver.waiver_rejected(dual) == TestOutcome.CURE_PENDING

    def test_cure_deadline_leaves_waiver(self, dual: CovenantTest) -> None:
        """Test that a missed cure leaves the waiver pending."""
        assert resolver.advance(dual, date(2025, 5, 1))
        assert dual.outcome == TestOutcome.WAIVER_REQUESTED


class TestWaiverConflicts:
    """Tests for overlapping waivers."""

    def test_overlap_conflicts(self) -> None:
        """Test that overlapping approved waivers on one target conflict."""
        approved = _waiver("wvr-001", status=WaiverStatus.APPROVED)
        candidate = _waiver("wvr-002", waiver_period_start=date(2025, 6, 30), waiver_period_end=date(2025, 9, 30))

        with pytest.raises(WaiverConflictError):
            resolver.find_conflicting_waiver(candidate, [approved])

    def test_supersedes(self) -> None:
        """Test that naming the overlapped waiver supersedes it."""
        approved = _waiver("wvr-001", status=WaiverStatus.APPROVED)
        candidate = _waiver("wvr-002", supersedes_waiver_id="wvr-001")

        assert resolver.find_conflicting_waiver(candidate, [approved]) is approved

    def test_adjacent_windows(self) -> None:
        """Test that windows sharing no day do not conflict."""
        approved = _waiver("wvr-001", status=WaiverStatus.APPROVED)
        candidate = _waiver("wvr-002", waiver_period_start=date(2025, 7, 1), waiver_period_end=date(2025, 9, 30))

        assert resolver.find_conflicting_waiver(candidate, [approved]) is None

    def test_other_targets_ignored(self) -> None:
        """Test that waivers on other covenants or of other types never conflict."""
        others = [
            _waiver("wvr-001", status=WaiverStatus.APPROVED, related_covenant_id="cov-test-002"),
            _waiver("wvr-003", status=WaiverStatus.APPROVED, waiver_type=WaiverType.CONSENT),
            _waiver("wvr-004", status=WaiverStatus.REJECTED),
        ]

        assert resolver.find_conflicting_waiver(_waiver("wvr-002"), others) is None


class TestEventWaiver:
    """Tests for waivers applied to compliance events."""

    @pytest.fixture
    def event(self) -> ComplianceEvent:
        return ComplianceEvent(
            event_id="evt-001",
            facility_id="fac-test-001",
            obligation_id="obl-test-001",
            reference_period_start=date(2025, 1, 1),
            reference_period_end=date(2025, 3, 31),
            deadline_date=date(2025, 5, 15),
            grace_deadline_date=date(2025, 5, 25),
            status=EventStatus.OVERDUE,
        )

    def test_deadline_extension(self, event: ComplianceEvent, quarterly_template: ObligationTemplate) -> None:
        """Test that an extension moves the deadline and grace deadline."""
        waiver = _waiver(
            waiver_type=WaiverType.DEADLINE_EXTENSION,
            waiver_period_start=date(2025, 5, 15),
            waiver_period_end=date(2025, 6, 30),
            related_covenant_id=None,
            related_event_id="evt-001",
        )
        resolver.apply_event_waiver(event, waiver, quarterly_template)

        assert event.deadline_date == date(2025, 6, 30)
        assert event.grace_deadline_date == date(2025, 7, 10)
        assert event.waiver_id == waiver.waiver_id

    def test_consent_waives_event(self, event: ComplianceEvent, quarterly_template: ObligationTemplate) -> None:
        """Test that other waiver types mark the event waived."""
        resolver.apply_event_waiver(event, _waiver(related_event_id="evt-001"), quarterly_template)

        assert event.status == EventStatus.WAIVED

    def test_accepted_event_cannot_be_waived(
        self, event: ComplianceEvent, quarterly_template: ObligationTemplate
    ) -> None:
        """Test that accepted events are final."""
        event.status = EventStatus.ACCEPTED

        with pytest.raises(InvalidTransitionError):
            resolver.apply_event_waiver(event, _waiver(related_event_id="evt-001"), quarterly_template)
