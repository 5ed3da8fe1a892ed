"""Repository interface for compliance entities."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Iterator

from compliance_engine.models import (
    Activity,
    ActivityType,
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


def in_range(day: date, start: date | None, end: date | None) -> bool:
    """Inclusive date-range filter; open ends match everything."""
    if start is not None and day < start:
        return False
    if end is not None and day > end:
        return False
    return True


class ComplianceRepository(ABC):
    """Storage for facilities, templates, events, tests, waivers and reminders.

    ``add_*`` methods insert and enforce references; ``save_*`` methods
    upsert an entity that already passed ``add_*``. Implementations raise
    ``EntityNotFoundError`` for unknown ids and ``TransientError`` for
    retryable backend failures.
    """

    @contextmanager
    def transaction(self, facility_id: str) -> Iterator[None]:
        """Group the writes of one facility step."""
        yield

    # Facilities
    @abstractmethod
    def add_facility(self, facility: ComplianceFacility) -> None: ...

    @abstractmethod
    def get_facility(self, facility_id: str) -> ComplianceFacility: ...

    @abstractmethod
    def save_facility(self, facility: ComplianceFacility) -> None: ...

    @abstractmethod
    def list_facilities(self) -> list[ComplianceFacility]: ...

    @abstractmethod
    def find_facility_by_source(self, source_facility_id: str) -> ComplianceFacility | None: ...

    # Obligation templates
    @abstractmethod
    def add_obligation(self, template: ObligationTemplate) -> None: ...

    @abstractmethod
    def get_obligation(self, obligation_id: str) -> ObligationTemplate: ...

    @abstractmethod
    def save_obligation(self, template: ObligationTemplate) -> None: ...

    @abstractmethod
    def list_obligations(self, facility_id: str) -> list[ObligationTemplate]: ...

    # Compliance events
    @abstractmethod
    def add_event(self, event: ComplianceEvent) -> None:
        """Insert an event; raises ``IntegrityError`` on a duplicate period key."""

    @abstractmethod
    def get_event(self, event_id: str) -> ComplianceEvent: ...

    @abstractmethod
    def save_event(self, event: ComplianceEvent) -> None: ...

    @abstractmethod
    def list_events(
        self,
        facility_id: str,
        start: date | None = None,
        end: date | None = None,
        obligation_id: str | None = None,
    ) -> list[ComplianceEvent]:
        """Events of a facility whose deadline falls within ``[start, end]``."""

    # Covenants and tests
    @abstractmethod
    def add_covenant(self, covenant: Covenant) -> None: ...

    @abstractmethod
    def get_covenant(self, covenant_id: str) -> Covenant: ...

    @abstractmethod
    def save_covenant(self, covenant: Covenant) -> None: ...

    @abstractmethod
    def list_covenants(self, facility_id: str) -> list[Covenant]: ...

    @abstractmethod
    def add_test(self, test: CovenantTest) -> None: ...

    @abstractmethod
    def get_test(self, test_id: str) -> CovenantTest: ...

    @abstractmethod
    def save_test(self, test: CovenantTest) -> None: ...

    @abstractmethod
    def list_tests(
        self,
        facility_id: str,
        start: date | None = None,
        end: date | None = None,
        covenant_id: str | None = None,
    ) -> list[CovenantTest]:
        """Tests of a facility with ``test_date`` in ``[start, end]``, oldest first."""

    @abstractmethod
    def add_cure_contribution(self, contribution: CureContribution) -> None: ...

    @abstractmethod
    def list_cure_contributions(self, test_id: str) -> list[CureContribution]: ...

    @abstractmethod
    def enqueue_inputs(self, queued: QueuedInputs) -> None: ...

    @abstractmethod
    def list_pending_inputs(self, facility_id: str) -> list[QueuedInputs]: ...

    @abstractmethod
    def save_queued_inputs(self, queued: QueuedInputs) -> None: ...

    # Waivers
    @abstractmethod
    def add_waiver(self, waiver: Waiver) -> None: ...

    @abstractmethod
    def get_waiver(self, waiver_id: str) -> Waiver: ...

    @abstractmethod
    def save_waiver(self, waiver: Waiver) -> None: ...

    @abstractmethod
    def list_waivers(
        self,
        facility_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Waiver]:
        """Waivers of a facility whose window intersects ``[start, end]``."""

    # Reminders
    @abstractmethod
    def list_reminders(self, facility_id: str, reference: ReferenceEntity | None = None) -> list[Reminder]: ...

    @abstractmethod
    def save_reminder(self, reminder: Reminder) -> None: ...

    @abstractmethod
    def delete_reminder(self, reminder_id: str) -> None: ...

    # Activity log
    @abstractmethod
    def add_activity(self, activity: Activity) -> None: ...

    @abstractmethod
    def list_activities(self, facility_id: str) -> list[Activity]: ...

    def log_activity(
        self,
        facility_id: str,
        activity_type: ActivityType,
        entity_type: str,
        entity_id: str,
        description: str,
        occurred_at: datetime,
        details: dict[str, Any] | None = None,
    ) -> Activity:
        """Build and store an activity log entry."""
        activity = Activity(
            activity_id=str(uuid.uuid4()),
            facility_id=facility_id,
            activity_type=activity_type,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            occurred_at=occurred_at,
            details=dict(details or {}),
        )
        self.add_activity(activity)
        return activity
