"""In-memory compliance store with referential integrity."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from compliance_engine.exceptions import EntityNotFoundError, IntegrityError, ReferentialIntegrityError
from compliance_engine.models import (
    Activity,
    ComplianceEvent,
    ComplianceFacility,
    Covenant,
    CovenantTest,
    CureContribution,
    ObligationTemplate,
    QueuedInputs,
    ReferenceEntity,
    Reminder,
    Waiver,
)
from compliance_engine.store.base import ComplianceRepository, in_range


@dataclass
class InMemoryComplianceStore(ComplianceRepository):
    """In-memory store for compliance entities with relationship tracking."""

    # Primary entities
    facilities: dict[str, ComplianceFacility] = field(default_factory=dict)
    obligations: dict[str, ObligationTemplate] = field(default_factory=dict)
    covenants: dict[str, Covenant] = field(default_factory=dict)
    events: dict[str, ComplianceEvent] = field(default_factory=dict)
    tests: dict[str, CovenantTest] = field(default_factory=dict)
    waivers: dict[str, Waiver] = field(default_factory=dict)
    reminders: dict[str, Reminder] = field(default_factory=dict)
    queued_inputs: dict[str, QueuedInputs] = field(default_factory=dict)

    # Append-only records
    cure_contributions: list[CureContribution] = field(default_factory=list)
    activities: list[Activity] = field(default_factory=list)

    # Relationship indexes
    _facility_obligations: dict[str, list[str]] = field(default_factory=dict)
    _facility_covenants: dict[str, list[str]] = field(default_factory=dict)
    _facility_events: dict[str, list[str]] = field(default_factory=dict)
    _facility_tests: dict[str, list[str]] = field(default_factory=dict)
    _facility_waivers: dict[str, list[str]] = field(default_factory=dict)
    _event_keys: dict[tuple, str] = field(default_factory=dict)

    def _require_facility(self, facility_id: str) -> None:
        if facility_id not in self.facilities:
            raise ReferentialIntegrityError(f"Facility {facility_id} not found")

    @staticmethod
    def _get(table: dict, entity_id: str, label: str):
        try:
            return table[entity_id]
        except KeyError:
            raise EntityNotFoundError(f"{label} {entity_id} not found") from None

    # Facilities
    def add_facility(self, facility: ComplianceFacility) -> None:
        """Add a facility to the store."""
        if facility.facility_id in self.facilities:
            raise IntegrityError(f"Facility {facility.facility_id} already exists")
        self.facilities[facility.facility_id] = facility
        self._facility_obligations[facility.facility_id] = []
        self._facility_covenants[facility.facility_id] = []
        self._facility_events[facility.facility_id] = []
        self._facility_tests[facility.facility_id] = []
        self._facility_waivers[facility.facility_id] = []

    def get_facility(self, facility_id: str) -> ComplianceFacility:
        return self._get(self.facilities, facility_id, "Facility")

    def save_facility(self, facility: ComplianceFacility) -> None:
        self._require_facility(facility.facility_id)
        self.facilities[facility.facility_id] = facility

    def list_facilities(self) -> list[ComplianceFacility]:
        return list(self.facilities.values())

    def find_facility_by_source(self, source_facility_id: str) -> ComplianceFacility | None:
        for facility in self.facilities.values():
            if facility.source_facility_id == source_facility_id:
                return facility
        return None

    # Obligation templates
    def add_obligation(self, template: ObligationTemplate) -> None:
        """Add an obligation template to the store."""
        self._require_facility(template.facility_id)
        self.obligations[template.obligation_id] = template
        self._facility_obligations[template.facility_id].append(template.obligation_id)

    def get_obligation(self, obligation_id: str) -> ObligationTemplate:
        return self._get(self.obligations, obligation_id, "Obligation")

    def save_obligation(self, template: ObligationTemplate) -> None:
        if template.obligation_id not in self.obligations:
            raise EntityNotFoundError(f"Obligation {template.obligation_id} not found")
        self.obligations[template.obligation_id] = template

    def list_obligations(self, facility_id: str) -> list[ObligationTemplate]:
        return [self.obligations[oid] for oid in self._facility_obligations.get(facility_id, [])]

    # Compliance events
    def add_event(self, event: ComplianceEvent) -> None:
        """Add a compliance event, enforcing one event per obligation period."""
        if event.obligation_id not in self.obligations:
            raise ReferentialIntegrityError(f"Obligation {event.obligation_id} not found")
        if event.period_key in self._event_keys:
            raise IntegrityError(
                f"Duplicate event for obligation {event.obligation_id} period "
                f"{event.reference_period_start} to {event.reference_period_end}"
            )
        self.events[event.event_id] = event
        self._event_keys[event.period_key] = event.event_id
        self._facility_events[event.facility_id].append(event.event_id)

    def get_event(self, event_id: str) -> ComplianceEvent:
        return self._get(self.events, event_id, "Compliance event")

    def save_event(self, event: ComplianceEvent) -> None:
        if event.event_id not in self.events:
            raise EntityNotFoundError(f"Compliance event {event.event_id} not found")
        self.events[event.event_id] = event

    def list_events(
        self,
        facility_id: str,
        start: date | None = None,
        end: date | None = None,
        obligation_id: str | None = None,
    ) -> list[ComplianceEvent]:
        events = [self.events[eid] for eid in self._facility_events.get(facility_id, [])]
        return sorted(
            (
                e
                for e in events
                if in_range(e.deadline_date, start, end)
                and (obligation_id is None or e.obligation_id == obligation_id)
            ),
            key=lambda e: (e.deadline_date, e.event_id),
        )

    # Covenants and tests
    def add_covenant(self, covenant: Covenant) -> None:
        """Add a covenant to the store."""
        self._require_facility(covenant.facility_id)
        self.covenants[covenant.covenant_id] = covenant
        self._facility_covenants[covenant.facility_id].append(covenant.covenant_id)

    def get_covenant(self, covenant_id: str) -> Covenant:
        return self._get(self.covenants, covenant_id, "Covenant")

    def save_covenant(self, covenant: Covenant) -> None:
        if covenant.covenant_id not in self.covenants:
            raise EntityNotFoundError(f"Covenant {covenant.covenant_id} not found")
        self.covenants[covenant.covenant_id] = covenant

    def list_covenants(self, facility_id: str) -> list[Covenant]:
        return [self.covenants[cid] for cid in self._facility_covenants.get(facility_id, [])]

    def add_test(self, test: CovenantTest) -> None:
        """Add a covenant test to the store."""
        if test.covenant_id not in self.covenants:
            raise ReferentialIntegrityError(f"Covenant {test.covenant_id} not found")
        self.tests[test.test_id] = test
        self._facility_tests[test.facility_id].append(test.test_id)

    def get_test(self, test_id: str) -> CovenantTest:
        return self._get(self.tests, test_id, "Covenant test")

    def save_test(self, test: CovenantTest) -> None:
        if test.test_id not in self.tests:
            raise EntityNotFoundError(f"Covenant test {test.test_id} not found")
        self.tests[test.test_id] = test

    def list_tests(
        self,
        facility_id: str,
        start: date | None = None,
        end: date | None = None,
        covenant_id: str | None = None,
    ) -> list[CovenantTest]:
        tests = [self.tests[tid] for tid in self._facility_tests.get(facility_id, [])]
        return sorted(
            (
                t
                for t in tests
                if in_range(t.test_date, start, end)
                and (covenant_id is None or t.covenant_id == covenant_id)
            ),
            key=lambda t: (t.test_date, t.test_id),
        )

    def add_cure_contribution(self, contribution: CureContribution) -> None:
        if contribution.test_id not in self.tests:
            raise ReferentialIntegrityError(f"Covenant test {contribution.test_id} not found")
        self.cure_contributions.append(contribution)

    def list_cure_contributions(self, test_id: str) -> list[CureContribution]:
        return [c for c in self.cure_contributions if c.test_id == test_id]

    def enqueue_inputs(self, queued: QueuedInputs) -> None:
        if queued.covenant_id not in self.covenants:
            raise ReferentialIntegrityError(f"Covenant {queued.covenant_id} not found")
        self.queued_inputs[queued.queue_id] = queued

    def list_pending_inputs(self, facility_id: str) -> list[QueuedInputs]:
        return [q for q in self.queued_inputs.values() if q.facility_id == facility_id and not q.processed]

    def save_queued_inputs(self, queued: QueuedInputs) -> None:
        self.queued_inputs[queued.queue_id] = queued

    # Waivers
    def add_waiver(self, waiver: Waiver) -> None:
        """Add a waiver request to the store."""
        self._require_facility(waiver.facility_id)
        if waiver.related_test_id and waiver.related_test_id not in self.tests:
            raise ReferentialIntegrityError(f"Covenant test {waiver.related_test_id} not found")
        if waiver.related_event_id and waiver.related_event_id not in self.events:
            raise ReferentialIntegrityError(f"Compliance event {waiver.related_event_id} not found")
        if waiver.related_covenant_id and waiver.related_covenant_id not in self.covenants:
            raise ReferentialIntegrityError(f"Covenant {waiver.related_covenant_id} not found")
        self.waivers[waiver.waiver_id] = waiver
        self._facility_waivers[waiver.facility_id].append(waiver.waiver_id)

    def get_waiver(self, waiver_id: str) -> Waiver:
        return self._get(self.waivers, waiver_id, "Waiver")

    def save_waiver(self, waiver: Waiver) -> None:
        if waiver.waiver_id not in self.waivers:
            raise EntityNotFoundError(f"Waiver {waiver.waiver_id} not found")
        self.waivers[waiver.waiver_id] = waiver

    def list_waivers(
        self,
        facility_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Waiver]:
        waivers = [self.waivers[wid] for wid in self._facility_waivers.get(facility_id, [])]
        return [
            w
            for w in waivers
            if (end is None or w.waiver_period_start <= end)
            and (start is None or w.waiver_period_end >= start)
        ]

    # Reminders
    def list_reminders(self, facility_id: str, reference: ReferenceEntity | None = None) -> list[Reminder]:
        return [
            r
            for r in self.reminders.values()
            if r.facility_id == facility_id and (reference is None or r.reference == reference)
        ]

    def save_reminder(self, reminder: Reminder) -> None:
        self.reminders[reminder.reminder_id] = reminder

    def delete_reminder(self, reminder_id: str) -> None:
        self.reminders.pop(reminder_id, None)

    # Activity log
    def add_activity(self, activity: Activity) -> None:
        self.activities.append(activity)

    def list_activities(self, facility_id: str) -> list[Activity]:
        return [a for a in self.activities if a.facility_id == facility_id]

    def summary(self) -> dict[str, int]:
        """Return summary counts of all entities."""
        return {
            "facilities": len(self.facilities),
            "obligations": len(self.obligations),
            "covenants": len(self.covenants),
            "events": len(self.events),
            "tests": len(self.tests),
            "waivers": len(self.waivers),
            "reminders": len(self.reminders),
            "activities": len(self.activities),
        }
