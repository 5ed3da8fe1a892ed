"""Cure and waiver resolver for failed covenant tests.

A failed test moves through a guarded state machine::

    FAIL_PENDING ──request_waiver──▶ WAIVER_REQUESTED ──approved──▶ WAIVED
         │                               │
         └──deadline──▶ FAIL_FINAL ◀──rejected/expired

    CURE_PENDING ──apply_cure──▶ CURED
         │   └──request_waiver──▶ CURE_AND_WAIVER_PENDING
         └──cure deadline──▶ FAIL_FINAL

Any transition not listed raises ``InvalidTransitionError``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Iterable

from compliance_engine.calendar import compute_grace_deadline
from compliance_engine.config import EvaluationConfig
from compliance_engine.exceptions import InputError, InvalidTransitionError, WaiverConflictError
from compliance_engine.models import (
    ComplianceEvent,
    Covenant,
    CovenantTest,
    CureContribution,
    EventStatus,
    ObligationTemplate,
    TestOutcome,
    Waiver,
    WaiverStatus,
    WaiverType,
)

logger = logging.getLogger(__name__)

# Outcomes that use up one of the covenant's cure rights
CURE_HOLDING_OUTCOMES = frozenset(
    {TestOutcome.CURED, TestOutcome.CURE_PENDING, TestOutcome.CURE_AND_WAIVER_PENDING}
)

TRANSITIONS: dict[tuple[TestOutcome, str], TestOutcome] = {
    (TestOutcome.CURE_PENDING, "apply_cure"): TestOutcome.CURED,
    (TestOutcome.CURE_AND_WAIVER_PENDING, "apply_cure"): TestOutcome.CURED,
    (TestOutcome.FAIL_PENDING, "request_waiver"): TestOutcome.WAIVER_REQUESTED,
    (TestOutcome.CURE_PENDING, "request_waiver"): TestOutcome.CURE_AND_WAIVER_PENDING,
    (TestOutcome.WAIVER_REQUESTED, "waiver_approved"): TestOutcome.WAIVED,
    (TestOutcome.CURE_AND_WAIVER_PENDING, "waiver_approved"): TestOutcome.WAIVED,
    (TestOutcome.WAIVER_REQUESTED, "waiver_rejected"): TestOutcome.FAIL_FINAL,
    (TestOutcome.CURE_AND_WAIVER_PENDING, "waiver_rejected"): TestOutcome.CURE_PENDING,
    (TestOutcome.CURE_PENDING, "cure_deadline_passed"): TestOutcome.FAIL_FINAL,
    (TestOutcome.CURE_AND_WAIVER_PENDING, "cure_deadline_passed"): TestOutcome.WAIVER_REQUESTED,
    (TestOutcome.FAIL_PENDING, "resolution_deadline_passed"): TestOutcome.FAIL_FINAL,
}


def _transition(test: CovenantTest, action: str, now: datetime | None = None) -> TestOutcome:
    target = TRANSITIONS.get((test.outcome, action))
    if target is None:
        raise InvalidTransitionError(
            f"Covenant test {test.test_id}: cannot {action.replace('_', ' ')} in state {test.outcome.value}"
        )
    logger.debug("Test %s: %s -> %s (%s)", test.test_id, test.outcome.value, target.value, action)
    test.outcome = target
    if now is not None:
        test.updated_at = now
    return target


def cure_counts(test: CovenantTest, history: Iterable[CovenantTest]) -> tuple[int, int]:
    """Return ``(lifetime_cures, consecutive_cures)`` before ``test``.

    A prior test still awaiting its cure holds a cure right, so it counts as
    cured. Consecutive cures are the run of such tests immediately preceding
    this one, most recent first.
    """
    prior = sorted(
        (t for t in history if t.test_id != test.test_id and t.test_date < test.test_date),
        key=lambda t: t.test_date,
        reverse=True,
    )
    lifetime = sum(1 for t in prior if t.outcome in CURE_HOLDING_OUTCOMES)
    consecutive = 0
    for t in prior:
        if t.outcome not in CURE_HOLDING_OUTCOMES:
            break
        consecutive += 1
    return lifetime, consecutive


def is_cure_eligible(test: CovenantTest, covenant: Covenant, history: Iterable[CovenantTest]) -> bool:
    """Whether an equity cure is still available for ``test``."""
    if not covenant.has_equity_cure or not covenant.cure_period_days:
        return False
    lifetime, consecutive = cure_counts(test, history)
    if covenant.max_cures is not None and lifetime >= covenant.max_cures:
        return False
    if covenant.consecutive_cure_limit is not None and consecutive >= covenant.consecutive_cure_limit:
        return False
    return True


def on_failure(
    test: CovenantTest,
    covenant: Covenant,
    history: Iterable[CovenantTest] = (),
    config: EvaluationConfig | None = None,
) -> TestOutcome:
    """Route a freshly failed test to the cure or the waiver path.

    Parameters
    ----------
    test : CovenantTest
        Test in state ``FAIL_PENDING`` as produced by the evaluator.
    covenant : Covenant
        The covenant, for its cure rights.
    history : Iterable[CovenantTest]
        Earlier tests of the same covenant.
    config : EvaluationConfig | None
        Supplies the waiver request window.

    Returns
    -------
    TestOutcome
        ``CURE_PENDING`` when a cure is available, else ``FAIL_PENDING``.
    """
    config = config or EvaluationConfig()
    if test.outcome != TestOutcome.FAIL_PENDING:
        raise InvalidTransitionError(
            f"Covenant test {test.test_id} is {test.outcome.value}, expected FAIL_PENDING"
        )
    if is_cure_eligible(test, covenant, history):
        test.outcome = TestOutcome.CURE_PENDING
        test.cure_deadline = test.test_date + timedelta(days=covenant.cure_period_days)
    else:
        test.resolution_deadline = test.test_date + timedelta(days=config.waiver_request_window_days)
    return test.outcome


def apply_cure(
    test: CovenantTest,
    contribution: CureContribution,
    now: datetime | None = None,
    covenant: Covenant | None = None,
    history: Iterable[CovenantTest] = (),
) -> TestOutcome:
    """Apply an equity contribution to a test awaiting cure.

    When ``covenant`` is given, the lifetime cure cap is checked again against
    the cures already applied in ``history``.
    """
    if test.outcome not in (TestOutcome.CURE_PENDING, TestOutcome.CURE_AND_WAIVER_PENDING):
        raise InvalidTransitionError(
            f"Covenant test {test.test_id}: cannot apply cure in state {test.outcome.value}"
        )
    if test.cure_deadline is not None and contribution.received_on > test.cure_deadline:
        raise InvalidTransitionError(
            f"Covenant test {test.test_id}: cure received {contribution.received_on} "
            f"after cure deadline {test.cure_deadline}"
        )
    if covenant is not None and covenant.max_cures is not None:
        applied = sum(1 for t in history if t.test_id != test.test_id and t.outcome == TestOutcome.CURED)
        if applied >= covenant.max_cures:
            raise InvalidTransitionError(
                f"Covenant test {test.test_id}: covenant {covenant.covenant_id} "
                f"has used all {covenant.max_cures} cures"
            )
    required = test.required_cure_amount or 0
    if contribution.amount < required:
        raise InputError(
            f"Cure amount too small for test {test.test_id}",
            {"amount": f"must be at least {required}, got {contribution.amount}"},
        )
    test.cure_amount = contribution.amount
    test.cure_received_on = contribution.received_on
    return _transition(test, "apply_cure", now)


def request_waiver(test: CovenantTest, waiver: Waiver, now: datetime | None = None) -> TestOutcome:
    """Record a waiver request against a failed test."""
    outcome = _transition(test, "request_waiver", now)
    test.waiver_id = waiver.waiver_id
    return outcome


def waiver_approved(test: CovenantTest, now: datetime | None = None) -> TestOutcome:
    return _transition(test, "waiver_approved", now)


def waiver_rejected(test: CovenantTest, now: datetime | None = None) -> TestOutcome:
    """Handle a rejected or expired waiver request."""
    return _transition(test, "waiver_rejected", now)


def advance(test: CovenantTest, as_of: date, now: datetime | None = None) -> bool:
    """Apply deadline-driven transitions; return True if the outcome changed."""
    if test.outcome in (TestOutcome.CURE_PENDING, TestOutcome.CURE_AND_WAIVER_PENDING):
        if test.cure_deadline is not None and as_of > test.cure_deadline:
            _transition(test, "cure_deadline_passed", now)
            return True
    elif test.outcome == TestOutcome.FAIL_PENDING:
        if test.resolution_deadline is not None and as_of > test.resolution_deadline:
            _transition(test, "resolution_deadline_passed", now)
            return True
    return False


def find_conflicting_waiver(waiver: Waiver, others: Iterable[Waiver]) -> Waiver | None:
    """Check that approving ``waiver`` does not overlap another approved waiver.

    Returns
    -------
    Waiver | None
        The waiver that ``waiver`` supersedes, if any.

    Raises
    ------
    WaiverConflictError
        When an approved, non-superseded waiver of the same type and target
        overlaps and is not named in ``supersedes_waiver_id``.
    """
    superseded = None
    for other in others:
        if other.waiver_id == waiver.waiver_id or other.status != WaiverStatus.APPROVED:
            continue
        if other.waiver_type != waiver.waiver_type or other.target != waiver.target:
            continue
        if other.waiver_id == waiver.supersedes_waiver_id:
            superseded = other
            continue
        if waiver.overlaps(other):
            raise WaiverConflictError(
                f"Waiver {waiver.waiver_id} overlaps approved waiver {other.waiver_id} "
                f"({other.waiver_period_start} to {other.waiver_period_end})"
            )
    return superseded


def apply_event_waiver(
    event: ComplianceEvent,
    waiver: Waiver,
    template: ObligationTemplate,
    now: datetime | None = None,
) -> None:
    """Apply an approved waiver to a compliance event.

    Deadline extensions move the deadline to the end of the waiver period and
    recompute the grace deadline; other waiver types mark the event waived.
    """
    if waiver.waiver_type == WaiverType.DEADLINE_EXTENSION:
        event.deadline_date = waiver.waiver_period_end
        event.grace_deadline_date = compute_grace_deadline(event.deadline_date, template.grace_period_days)
    elif event.is_manual_status and event.status != EventStatus.REJECTED:
        raise InvalidTransitionError(
            f"Event {event.event_id} is {event.status.value} and cannot be waived"
        )
    else:
        event.status = EventStatus.WAIVED
    event.waiver_id = waiver.waiver_id
    if now is not None:
        event.updated_at = now
