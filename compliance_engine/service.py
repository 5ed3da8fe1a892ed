"""Compliance service: write and read actions exposed to the API layer.

Every write to a facility happens under that facility's lock, which the
recompute job shares, so manual actions and scheduled recomputes never
interleave for the same facility.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Iterator

from compliance_engine import evaluator, reminders, resolver, scheduler
from compliance_engine.clock import Clock, SystemClock
from compliance_engine.config import EngineConfig
from compliance_engine.exceptions import EntityNotFoundError, InputError, InvalidTransitionError
from compliance_engine.logging import log_context
from compliance_engine.models import (
    ActivityType,
    ComplianceEvent,
    ComplianceFacility,
    Covenant,
    CovenantTest,
    CureContribution,
    EventStatus,
    FacilityStatus,
    FinancialInputs,
    ObligationTemplate,
    QueuedInputs,
    ReferenceEntity,
    ReferenceKind,
    RequiredConsent,
    ReviewDecision,
    TestOutcome,
    Waiver,
    WaiverDecision,
    WaiverStatus,
    WaiverType,
)
from compliance_engine.notifiers.base import Notifier
from compliance_engine.reminders import AlertThresholdConfig
from compliance_engine.status import derive_facility_status
from compliance_engine.store.base import ComplianceRepository
from compliance_engine.validation import (
    validate_covenant,
    validate_facility,
    validate_financial_inputs,
    validate_template,
    validate_waiver_request,
)

logger = logging.getLogger(__name__)

SUBMITTABLE_STATUSES = frozenset(
    {EventStatus.UPCOMING, EventStatus.DUE_SOON, EventStatus.OVERDUE, EventStatus.REJECTED}
)

# Fields that identify a template and can never be edited
IMMUTABLE_OBLIGATION_FIELDS = frozenset({"obligation_id", "facility_id", "source_obligation_id", "created_at"})

AT_RISK_HEADROOM = Decimal("15")

WAIVER_PENDING_OUTCOMES = frozenset({TestOutcome.WAIVER_REQUESTED, TestOutcome.CURE_AND_WAIVER_PENDING})


class FacilityLocks:
    """One re-entrant lock per facility id."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, facility_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(facility_id)
            if lock is None:
                lock = self._locks[facility_id] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, facility_id: str) -> Iterator[None]:
        with self.get(facility_id):
            yield


@dataclass
class WaiverRequest:
    """Parameters of a waiver request."""

    waiver_type: WaiverType
    waiver_period_start: date
    waiver_period_end: date
    required_consent: RequiredConsent = RequiredConsent.MAJORITY_LENDERS
    description: str | None = None
    conditions: list[str] = field(default_factory=list)
    fee_amount: Decimal | None = None
    fee_currency: str | None = None
    supersedes_waiver_id: str | None = None
    requested_by: str | None = None


@dataclass
class AtRiskCovenant:
    facility_id: str
    facility_name: str
    borrower_name: str
    covenant_id: str
    covenant_name: str
    test_date: date
    headroom_percentage: Decimal


@dataclass
class DashboardSummary:
    """Portfolio-wide compliance counts."""

    total_facilities: int
    facilities_by_status: dict[str, int]
    upcoming_7_days: int
    upcoming_30_days: int
    overdue: int
    pending_waivers: int
    facilities_at_risk: list[AtRiskCovenant] = field(default_factory=list)


class ComplianceService:
    """Manual actions, reads and the recompute steps over one repository.

    Parameters
    ----------
    repository : ComplianceRepository
        Storage backend.
    clock : Clock | None
        Source of "now"; wall clock when omitted.
    config : EngineConfig | None
        Engine settings.
    alerts : AlertThresholdConfig | None
        Reminder and headroom alert settings.
    notifier : Notifier | None
        Receives fire instructions for due reminders.
    locks : FacilityLocks | None
        Per-facility locks shared with the recompute job.
    """

    def __init__(
        self,
        repository: ComplianceRepository,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
        alerts: AlertThresholdConfig | None = None,
        notifier: Notifier | None = None,
        locks: FacilityLocks | None = None,
    ) -> None:
        self.repository = repository
        self.clock = clock or SystemClock()
        self.config = config or EngineConfig()
        self.alerts = alerts or AlertThresholdConfig(send_time=self.config.reminder_send_time)
        self.notifier = notifier
        self.locks = locks or FacilityLocks()

    @contextmanager
    def _writing(self, facility_id: str) -> Iterator[None]:
        with self.locks.hold(facility_id):
            with self.repository.transaction(facility_id):
                yield

    def _log(
        self,
        facility_id: str,
        activity_type: ActivityType,
        entity_type: str,
        entity_id: str,
        description: str,
        **details: Any,
    ) -> None:
        self.repository.log_activity(
            facility_id, activity_type, entity_type, entity_id, description, self.clock.now(), details
        )

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def create_facility(self, facility: ComplianceFacility) -> ComplianceFacility:
        """Validate and store a new facility."""
        validate_facility(facility)
        now = self.clock.now()
        facility.created_at = facility.created_at or now
        facility.updated_at = now
        with self._writing(facility.facility_id):
            self.repository.add_facility(facility)
        return facility

    def create_obligation(self, template: ObligationTemplate, generate: bool = True) -> ObligationTemplate:
        """Validate and store an obligation template, optionally generating its events."""
        validate_template(template)
        facility = self.repository.get_facility(template.facility_id)
        now = self.clock.now()
        template.created_at = template.created_at or now
        template.updated_at = now
        with self._writing(template.facility_id):
            self.repository.add_obligation(template)
            if generate:
                self._generate_for_template(facility, template, self.clock.today(), now)
        return template

    def update_obligation(self, obligation_id: str, **changes: Any) -> ObligationTemplate:
        """Edit a template. Only future generation is affected; stored events are kept."""
        bad = IMMUTABLE_OBLIGATION_FIELDS.intersection(changes)
        if bad:
            raise InputError(
                f"Cannot change {', '.join(sorted(bad))} of obligation {obligation_id}",
                {name: "is immutable" for name in bad},
            )
        current = self.repository.get_obligation(obligation_id)
        known = {f.name for f in dataclasses.fields(ObligationTemplate)}
        unknown = set(changes) - known
        if unknown:
            raise InputError(
                f"Unknown obligation fields: {', '.join(sorted(unknown))}",
                {name: "unknown field" for name in unknown},
            )
        updated = dataclasses.replace(current, **{**changes, "updated_at": self.clock.now()})
        validate_template(updated)
        with self._writing(updated.facility_id):
            self.repository.save_obligation(updated)
        return updated

    def create_covenant(self, covenant: Covenant) -> Covenant:
        """Validate and store a covenant."""
        validate_covenant(covenant)
        self.repository.get_facility(covenant.facility_id)
        now = self.clock.now()
        covenant.created_at = covenant.created_at or now
        covenant.updated_at = now
        with self._writing(covenant.facility_id):
            self.repository.add_covenant(covenant)
        return covenant

    def set_administrative_status(
        self,
        facility_id: str,
        status: FacilityStatus | None,
        reason: str | None = None,
    ) -> ComplianceFacility:
        """Set or clear (``None``) the administrative status override."""
        with self._writing(facility_id):
            facility = self.repository.get_facility(facility_id)
            facility.administrative_status = status
            facility.updated_at = self.clock.now()
            self.repository.save_facility(facility)
            self._log(
                facility_id,
                ActivityType.FACILITY_STATUS_CHANGED,
                "facility",
                facility_id,
                f"Administrative status set to {status.value if status else 'none'}",
                reason=reason,
            )
            self.refresh_facility_status(facility_id, self.clock.today())
        return self.repository.get_facility(facility_id)

    # ------------------------------------------------------------------
    # Compliance events
    # ------------------------------------------------------------------
    def submit_event(self, event_id: str, submitted_by: str, notes: str | None = None) -> ComplianceEvent:
        """Record the delivery of a compliance event's documents."""
        event = self.repository.get_event(event_id)
        with self._writing(event.facility_id):
            event = self.repository.get_event(event_id)
            if event.status not in SUBMITTABLE_STATUSES:
                raise InvalidTransitionError(f"Event {event_id} is {event.status.value} and cannot be submitted")
            now = self.clock.now()
            event.status = EventStatus.SUBMITTED
            event.submitted_at = now
            event.submitted_by = submitted_by
            event.submission_notes = notes
            event.updated_at = now
            self.repository.save_event(event)
            self._log(
                event.facility_id,
                ActivityType.EVENT_SUBMITTED,
                "compliance_event",
                event_id,
                f"Compliance event submitted by {submitted_by}",
            )
            self._replan_event(event, now)
        return event

    def start_review(self, event_id: str, reviewer: str | None = None) -> ComplianceEvent:
        event = self.repository.get_event(event_id)
        with self._writing(event.facility_id):
            event = self.repository.get_event(event_id)
            if event.status != EventStatus.SUBMITTED:
                raise InvalidTransitionError(f"Event {event_id} is {event.status.value}, expected SUBMITTED")
            event.status = EventStatus.UNDER_REVIEW
            event.reviewed_by = reviewer
            event.updated_at = self.clock.now()
            self.repository.save_event(event)
        return event

    def review_event(
        self,
        event_id: str,
        decision: ReviewDecision,
        reviewed_by: str,
        notes: str | None = None,
    ) -> ComplianceEvent:
        """Accept or reject a submitted event. Rejected events can be resubmitted."""
        event = self.repository.get_event(event_id)
        with self._writing(event.facility_id):
            event = self.repository.get_event(event_id)
            if event.status not in (EventStatus.SUBMITTED, EventStatus.UNDER_REVIEW):
                raise InvalidTransitionError(f"Event {event_id} is {event.status.value} and cannot be reviewed")
            now = self.clock.now()
            event.status = EventStatus.ACCEPTED if decision == ReviewDecision.ACCEPTED else EventStatus.REJECTED
            event.reviewed_at = now
            event.reviewed_by = reviewed_by
            event.review_notes = notes
            event.updated_at = now
            self.repository.save_event(event)
            self._log(
                event.facility_id,
                ActivityType.EVENT_REVIEWED,
                "compliance_event",
                event_id,
                f"Compliance event {event.status.value.lower()} by {reviewed_by}",
            )
        return event

    def trigger_obligation_event(
        self,
        obligation_id: str,
        event_date: date,
        description: str | None = None,
    ) -> ComplianceEvent:
        """Create the event of an event-driven obligation; repeated triggers return it."""
        template = self.repository.get_obligation(obligation_id)
        with self._writing(template.facility_id):
            existing = self.repository.list_events(template.facility_id, obligation_id=obligation_id)
            now = self.clock.now()
            event = scheduler.trigger_event(template, event_date, description, existing, now)
            if any(e.event_id == event.event_id for e in existing):
                return event
            event.status = scheduler.recompute_status(event, self.clock.today(), self.config.scheduler.due_soon_days)
            self.repository.add_event(event)
            self._log(
                template.facility_id,
                ActivityType.EVENT_TRIGGERED,
                "compliance_event",
                event.event_id,
                f"{template.name} triggered: {description or event_date.isoformat()}",
            )
            self._replan_event(event, now)
        return event

    # ------------------------------------------------------------------
    # Covenant tests
    # ------------------------------------------------------------------
    def submit_covenant_test(self, covenant_id: str, inputs: FinancialInputs) -> CovenantTest:
        """Evaluate financial inputs now and route failures to cure or waiver."""
        covenant = self.repository.get_covenant(covenant_id)
        with self._writing(covenant.facility_id):
            test = self._evaluate_and_store(covenant, inputs, self.clock.now())
            self.refresh_facility_status(covenant.facility_id, self.clock.today())
        return test

    def queue_financial_inputs(self, covenant_id: str, inputs: FinancialInputs) -> QueuedInputs:
        """Queue inputs for evaluation on the next recompute tick."""
        covenant = self.repository.get_covenant(covenant_id)
        inputs = validate_financial_inputs(inputs)
        queued = QueuedInputs(
            queue_id=str(uuid.uuid4()),
            covenant_id=covenant_id,
            facility_id=covenant.facility_id,
            inputs=inputs,
            queued_at=self.clock.now(),
        )
        with self._writing(covenant.facility_id):
            self.repository.enqueue_inputs(queued)
        return queued

    def record_cure(self, test_id: str, amount: Decimal, received_on: date | None = None) -> CovenantTest:
        """Apply an equity cure contribution to a failed test."""
        test = self.repository.get_test(test_id)
        with self._writing(test.facility_id):
            test = self.repository.get_test(test_id)
            now = self.clock.now()
            contribution = CureContribution(
                facility_id=test.facility_id,
                test_id=test_id,
                amount=Decimal(str(amount)),
                received_on=received_on or self.clock.today(),
                contribution_id=str(uuid.uuid4()),
                recorded_at=now,
            )
            covenant = self.repository.get_covenant(test.covenant_id)
            history = self.repository.list_tests(test.facility_id, covenant_id=test.covenant_id)
            awaiting_waiver = test.outcome == TestOutcome.CURE_AND_WAIVER_PENDING
            resolver.apply_cure(test, contribution, now, covenant, history)
            self.repository.add_cure_contribution(contribution)
            self.repository.save_test(test)
            self._log(
                test.facility_id,
                ActivityType.CURE_APPLIED,
                "covenant_test",
                test_id,
                f"Equity cure of {contribution.amount} applied",
                amount=contribution.amount,
            )
            if awaiting_waiver and test.waiver_id is not None:
                self._supersede_by_cure(test.waiver_id, now)
            self._replan_test(test, now)
            self.refresh_facility_status(test.facility_id, self.clock.today())
        return test

    def _evaluate_and_store(self, covenant: Covenant, inputs: FinancialInputs, now: datetime) -> CovenantTest:
        test = evaluator.evaluate(covenant, inputs, self.config.evaluation, now=now)
        facility = self.repository.get_facility(covenant.facility_id)
        if test.outcome == TestOutcome.FAIL_PENDING:
            history = self.repository.list_tests(covenant.facility_id, covenant_id=covenant.covenant_id)
            resolver.on_failure(test, covenant, history, self.config.evaluation)
        self.repository.add_test(test)

        passed = test.outcome == TestOutcome.PASS
        self._log(
            covenant.facility_id,
            ActivityType.COVENANT_TEST_PASSED if passed else ActivityType.COVENANT_TEST_FAILED,
            "covenant_test",
            test.test_id,
            f"Covenant test {'passed' if passed else 'failed'}: {covenant.name} for {facility.facility_name}",
            ratio=test.calculated_ratio,
            threshold=test.threshold_value,
            outcome=test.outcome.value,
        )
        for alert in reminders.headroom_alert(self.alerts, test, covenant, now):
            self.repository.save_reminder(alert)
        self._replan_test(test, now)
        return test

    # ------------------------------------------------------------------
    # Waivers
    # ------------------------------------------------------------------
    def request_waiver(self, target: ReferenceEntity, params: WaiverRequest) -> Waiver:
        """Request a waiver against a covenant, covenant test or compliance event."""
        facility_id, covenant_id, test_id, event_id = self._resolve_target(target)
        waiver = Waiver(
            waiver_id=str(uuid.uuid4()),
            facility_id=facility_id,
            waiver_type=params.waiver_type,
            waiver_period_start=params.waiver_period_start,
            waiver_period_end=params.waiver_period_end,
            required_consent=params.required_consent,
            related_covenant_id=covenant_id,
            related_test_id=test_id,
            related_event_id=event_id,
            supersedes_waiver_id=params.supersedes_waiver_id,
            description=params.description,
            conditions=list(params.conditions),
            fee_amount=params.fee_amount,
            fee_currency=params.fee_currency,
            requested_by=params.requested_by,
        )
        validate_waiver_request(waiver)
        with self._writing(facility_id):
            now = self.clock.now()
            waiver.created_at = waiver.updated_at = now
            if test_id is not None:
                test = self.repository.get_test(test_id)
                resolver.request_waiver(test, waiver, now)
                self.repository.add_waiver(waiver)
                self.repository.save_test(test)
                self._replan_test(test, now)
            else:
                self.repository.add_waiver(waiver)
            self._log(
                facility_id,
                ActivityType.WAIVER_REQUESTED,
                "waiver",
                waiver.waiver_id,
                f"{waiver.waiver_type.value.replace('_', ' ').title()} requested",
                target_kind=target.kind.value,
                target_id=target.entity_id,
            )
        return waiver

    def _resolve_target(self, target: ReferenceEntity) -> tuple[str, str | None, str | None, str | None]:
        if target.kind == ReferenceKind.COVENANT_TEST:
            test = self.repository.get_test(target.entity_id)
            return test.facility_id, test.covenant_id, test.test_id, None
        if target.kind == ReferenceKind.COMPLIANCE_EVENT:
            event = self.repository.get_event(target.entity_id)
            return event.facility_id, None, None, event.event_id
        if target.kind == ReferenceKind.COVENANT:
            covenant = self.repository.get_covenant(target.entity_id)
            return covenant.facility_id, covenant.covenant_id, None, None
        raise InputError(f"Cannot request a waiver for {target.kind.value}", {"target": "unsupported kind"})

    def resolve_waiver(
        self,
        waiver_id: str,
        decision: WaiverDecision,
        consent_obtained_date: date | None = None,
    ) -> Waiver:
        """Approve or reject a requested waiver.

        Raises
        ------
        WaiverConflictError
            If approval would overlap another approved waiver that it does
            not supersede.
        """
        waiver = self.repository.get_waiver(waiver_id)
        with self._writing(waiver.facility_id):
            waiver = self.repository.get_waiver(waiver_id)
            if waiver.status != WaiverStatus.REQUESTED:
                raise InvalidTransitionError(f"Waiver {waiver_id} is {waiver.status.value}, expected REQUESTED")
            now = self.clock.now()
            if decision == WaiverDecision.APPROVED:
                self._approve_waiver(waiver, consent_obtained_date or self.clock.today(), now)
            else:
                self._reject_waiver(waiver, WaiverStatus.REJECTED, now)
            self.refresh_facility_status(waiver.facility_id, self.clock.today())
        return waiver

    def _approve_waiver(self, waiver: Waiver, consent_date: date, now: datetime) -> None:
        others = self.repository.list_waivers(waiver.facility_id)
        superseded = resolver.find_conflicting_waiver(waiver, others)

        if waiver.related_test_id is not None:
            test = self.repository.get_test(waiver.related_test_id)
            if test.outcome not in WAIVER_PENDING_OUTCOMES:
                raise InvalidTransitionError(
                    f"Waiver {waiver.waiver_id}: covenant test {test.test_id} is already {test.outcome.value}"
                )
            resolver.waiver_approved(test, now)
            self.repository.save_test(test)
            self._replan_test(test, now)
        if waiver.related_event_id is not None:
            event = self.repository.get_event(waiver.related_event_id)
            template = self.repository.get_obligation(event.obligation_id)
            resolver.apply_event_waiver(event, waiver, template, now)
            event.status = scheduler.recompute_status(event, self.clock.today(), self.config.scheduler.due_soon_days)
            self.repository.save_event(event)
            self._replan_event(event, now)

        if superseded is not None:
            superseded.status = WaiverStatus.SUPERSEDED
            superseded.updated_at = now
            self.repository.save_waiver(superseded)
            self._replan_waiver(superseded, now)

        waiver.status = WaiverStatus.APPROVED
        waiver.consent_obtained_date = consent_date
        waiver.decided_at = now
        waiver.updated_at = now
        self.repository.save_waiver(waiver)
        self._replan_waiver(waiver, now)
        self._log(
            waiver.facility_id,
            ActivityType.WAIVER_GRANTED,
            "waiver",
            waiver.waiver_id,
            f"Waiver approved for {waiver.waiver_period_start} to {waiver.waiver_period_end}",
            supersedes=superseded.waiver_id if superseded else None,
        )

    def _reject_waiver(self, waiver: Waiver, status: WaiverStatus, now: datetime) -> None:
        if waiver.related_test_id is not None:
            test = self.repository.get_test(waiver.related_test_id)
            if test.waiver_id == waiver.waiver_id and test.outcome in WAIVER_PENDING_OUTCOMES:
                resolver.waiver_rejected(test, now)
                self.repository.save_test(test)
                self._replan_test(test, now)
                if test.outcome == TestOutcome.FAIL_FINAL:
                    self._default_notice(test)
        waiver.status = status
        waiver.decided_at = now
        waiver.updated_at = now
        self.repository.save_waiver(waiver)
        expired = status == WaiverStatus.EXPIRED
        self._log(
            waiver.facility_id,
            ActivityType.WAIVER_EXPIRED if expired else ActivityType.WAIVER_DENIED,
            "waiver",
            waiver.waiver_id,
            "Waiver request expired" if expired else "Waiver request rejected",
        )

    def _supersede_by_cure(self, waiver_id: str, now: datetime) -> None:
        waiver = self.repository.get_waiver(waiver_id)
        if waiver.status != WaiverStatus.REQUESTED:
            return
        waiver.status = WaiverStatus.SUPERSEDED
        waiver.decided_at = now
        waiver.updated_at = now
        self.repository.save_waiver(waiver)
        self._replan_waiver(waiver, now)
        self._log(
            waiver.facility_id,
            ActivityType.WAIVER_DENIED,
            "waiver",
            waiver.waiver_id,
            "Waiver request superseded by equity cure",
        )

    def _default_notice(self, test: CovenantTest) -> None:
        self._log(
            test.facility_id,
            ActivityType.DEFAULT_NOTICE_REQUIRED,
            "covenant_test",
            test.test_id,
            f"Covenant test of {test.test_date} finally failed; default notice workflow required",
            covenant_id=test.covenant_id,
            breach_amount=test.breach_amount,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_events(
        self, facility_id: str, start: date | None = None, end: date | None = None
    ) -> list[ComplianceEvent]:
        return self.repository.list_events(facility_id, start, end)

    def list_tests(self, facility_id: str, start: date | None = None, end: date | None = None) -> list[CovenantTest]:
        return self.repository.list_tests(facility_id, start, end)

    def list_waivers(self, facility_id: str, start: date | None = None, end: date | None = None) -> list[Waiver]:
        return self.repository.list_waivers(facility_id, start, end)

    def dashboard_summary(self, as_of: date | None = None) -> DashboardSummary:
        """Portfolio counts for the compliance dashboard."""
        today = as_of or self.clock.today()
        week, month = today + timedelta(days=7), today + timedelta(days=30)
        by_status: dict[str, int] = defaultdict(int)
        upcoming_7 = upcoming_30 = overdue = pending_waivers = 0
        at_risk: list[AtRiskCovenant] = []

        for facility in self.repository.list_facilities():
            by_status[(facility.administrative_status or facility.status).value] += 1
            for event in self.repository.list_events(facility.facility_id):
                if event.status == EventStatus.OVERDUE:
                    overdue += 1
                elif event.status in (EventStatus.UPCOMING, EventStatus.DUE_SOON):
                    if today <= event.deadline_date <= week:
                        upcoming_7 += 1
                    if today <= event.deadline_date <= month:
                        upcoming_30 += 1
            pending_waivers += sum(
                1 for w in self.repository.list_waivers(facility.facility_id) if w.status == WaiverStatus.REQUESTED
            )

            latest: dict[str, CovenantTest] = {}
            for test in self.repository.list_tests(facility.facility_id):
                latest[test.covenant_id] = test
            for covenant_id, test in latest.items():
                if (
                    test.outcome == TestOutcome.PASS
                    and test.headroom_percentage is not None
                    and test.headroom_percentage < AT_RISK_HEADROOM
                ):
                    covenant = self.repository.get_covenant(covenant_id)
                    at_risk.append(
                        AtRiskCovenant(
                            facility_id=facility.facility_id,
                            facility_name=facility.facility_name,
                            borrower_name=facility.borrower_name,
                            covenant_id=covenant_id,
                            covenant_name=covenant.name,
                            test_date=test.test_date,
                            headroom_percentage=test.headroom_percentage,
                        )
                    )

        at_risk.sort(key=lambda r: r.headroom_percentage)
        return DashboardSummary(
            total_facilities=sum(by_status.values()),
            facilities_by_status=dict(by_status),
            upcoming_7_days=upcoming_7,
            upcoming_30_days=upcoming_30,
            overdue=overdue,
            pending_waivers=pending_waivers,
            facilities_at_risk=at_risk,
        )

    # ------------------------------------------------------------------
    # Recompute steps (called by the job under the facility lock)
    # ------------------------------------------------------------------
    def _generate_for_template(
        self,
        facility: ComplianceFacility,
        template: ObligationTemplate,
        as_of: date,
        now: datetime,
    ) -> list[ComplianceEvent]:
        existing = self.repository.list_events(facility.facility_id, obligation_id=template.obligation_id)
        created = scheduler.generate_events(template, facility, as_of, existing, self.config.scheduler, now)
        for event in created:
            event.status = scheduler.recompute_status(event, as_of, self.config.scheduler.due_soon_days)
            self.repository.add_event(event)
            self._replan_event(event, now)
        return created

    def generate_and_refresh_events(self, facility_id: str, as_of: date, now: datetime) -> int:
        """Generate missing events and recompute time-driven statuses."""
        facility = self.repository.get_facility(facility_id)
        created = 0
        for template in self.repository.list_obligations(facility_id):
            created += len(self._generate_for_template(facility, template, as_of, now))
        for event in self.repository.list_events(facility_id):
            status = scheduler.recompute_status(event, as_of, self.config.scheduler.due_soon_days)
            if status != event.status:
                event.status = status
                event.updated_at = now
                self.repository.save_event(event)
        if created:
            self._log(
                facility_id,
                ActivityType.EVENT_GENERATED,
                "facility",
                facility_id,
                f"Generated {created} compliance events",
                count=created,
            )
        return created

    def evaluate_queued_inputs(self, facility_id: str, now: datetime) -> int:
        """Evaluate inputs queued since the last tick."""
        evaluated = 0
        pending = sorted(
            self.repository.list_pending_inputs(facility_id),
            key=lambda q: (q.inputs.test_date, q.queued_at or now),
        )
        for queued in pending:
            covenant = self.repository.get_covenant(queued.covenant_id)
            test = self._evaluate_and_store(covenant, queued.inputs, now)
            queued.processed = True
            queued.test_id = test.test_id
            self.repository.save_queued_inputs(queued)
            evaluated += 1
        return evaluated

    def advance_deadlines(self, facility_id: str, as_of: date, now: datetime) -> int:
        """Advance cure and resolution deadlines and expire undecided waivers."""
        changed = 0
        for waiver in self.repository.list_waivers(facility_id):
            if waiver.status == WaiverStatus.REQUESTED and waiver.waiver_period_end < as_of:
                self._reject_waiver(waiver, WaiverStatus.EXPIRED, now)
                changed += 1
        for test in self.repository.list_tests(facility_id):
            if resolver.advance(test, as_of, now):
                self.repository.save_test(test)
                self._replan_test(test, now)
                if test.outcome == TestOutcome.FAIL_FINAL:
                    self._default_notice(test)
                changed += 1
        return changed

    def sync_reminders(self, facility_id: str, now: datetime) -> int:
        """Replan reminders for every target of the facility."""
        changes = 0
        templates = {t.obligation_id: t for t in self.repository.list_obligations(facility_id)}
        for event in self.repository.list_events(facility_id):
            changes += self._replan_event(event, now, templates.get(event.obligation_id))
        for test in self.repository.list_tests(facility_id):
            changes += self._replan_test(test, now)
        for waiver in self.repository.list_waivers(facility_id):
            changes += self._replan_waiver(waiver, now)
        return changes

    def dispatch_due_reminders(self, facility_id: str, now: datetime) -> int:
        """Hand due reminders to the notifier and mark them sent."""
        if self.notifier is None:
            return 0
        fired = 0
        for reminder in reminders.due_reminders(self.repository.list_reminders(facility_id), now):
            self.notifier.publish(reminders.fire_instruction(reminder, now))
            reminder.is_sent = True
            reminder.sent_at = now
            self.repository.save_reminder(reminder)
            fired += 1
        return fired

    def refresh_facility_status(self, facility_id: str, as_of: date) -> FacilityStatus:
        """Re-derive and store the facility status."""
        facility = self.repository.get_facility(facility_id)
        status = derive_facility_status(
            facility,
            self.repository.list_tests(facility_id),
            self.repository.list_waivers(facility_id),
            as_of,
        )
        if status != facility.status:
            previous = facility.status
            facility.status = status
            facility.updated_at = self.clock.now()
            self.repository.save_facility(facility)
            self._log(
                facility_id,
                ActivityType.FACILITY_STATUS_CHANGED,
                "facility",
                facility_id,
                f"Facility status changed from {previous.value} to {status.value}",
            )
            logger.info(
                "Facility %s status %s -> %s",
                facility_id,
                previous.value,
                status.value,
                extra=log_context(facility_id=facility_id),
            )
        return status

    # ------------------------------------------------------------------
    # Reminder persistence
    # ------------------------------------------------------------------
    def _apply_replan(self, reference: ReferenceEntity, facility_id: str, desired: list) -> int:
        existing = self.repository.list_reminders(facility_id, reference)
        result = reminders.replan(existing, desired)
        for reminder in result.removed:
            self.repository.delete_reminder(reminder.reminder_id)
        for reminder in result.added:
            self.repository.save_reminder(reminder)
        return len(result.added) + len(result.removed)

    def _replan_event(
        self,
        event: ComplianceEvent,
        now: datetime,
        template: ObligationTemplate | None = None,
    ) -> int:
        if template is None:
            try:
                template = self.repository.get_obligation(event.obligation_id)
            except EntityNotFoundError:
                template = None
        desired = reminders.plan_for_event(
            self.alerts,
            event,
            now,
            template.name if template else "",
            template.recipient_roles if template else (),
        )
        reference = ReferenceEntity(ReferenceKind.COMPLIANCE_EVENT, event.event_id)
        return self._apply_replan(reference, event.facility_id, desired)

    def _replan_test(self, test: CovenantTest, now: datetime) -> int:
        desired = reminders.plan_for_test(self.alerts, test, now)
        reference = ReferenceEntity(ReferenceKind.COVENANT_TEST, test.test_id)
        return self._apply_replan(reference, test.facility_id, desired)

    def _replan_waiver(self, waiver: Waiver, now: datetime) -> int:
        desired = reminders.plan_for_waiver(self.alerts, waiver, now)
        reference = ReferenceEntity(ReferenceKind.WAIVER, waiver.waiver_id)
        return self._apply_replan(reference, waiver.facility_id, desired)
