"""Obligation scheduler: turns templates into dated compliance events."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Iterable

from dateutil.relativedelta import relativedelta

from compliance_engine.calendar import (
    adjust_for_business_day,
    compute_deadline,
    compute_grace_deadline,
    iter_periods,
    resolve_period_boundaries,
)
from compliance_engine.config import SchedulerConfig
from compliance_engine.exceptions import IntegrityError, InvalidTransitionError
from compliance_engine.logging import log_context
from compliance_engine.models import (
    ComplianceEvent,
    ComplianceFacility,
    EventStatus,
    Frequency,
    ObligationTemplate,
    ReferencePoint,
)

logger = logging.getLogger(__name__)

EVENT_NAMESPACE = uuid.UUID("6f1c1d0e-3c5b-4f4e-9a57-2f0c8d7e4b11")


def event_id_for(obligation_id: str, period_start: date, period_end: date) -> str:
    """Deterministic event id for an obligation period."""
    return str(uuid.uuid5(EVENT_NAMESPACE, f"{obligation_id}:{period_start}:{period_end}"))


def _check_template(template: ObligationTemplate) -> None:
    if template.deadline_days < 0:
        raise IntegrityError(f"Obligation {template.obligation_id} has negative deadline_days")
    if template.grace_period_days < 0:
        raise IntegrityError(f"Obligation {template.obligation_id} has negative grace_period_days")


def _build_event(
    template: ObligationTemplate,
    period_start: date,
    period_end: date,
    deadline: date,
    now: datetime | None,
    trigger_description: str | None = None,
) -> ComplianceEvent:
    grace_deadline = compute_grace_deadline(deadline, template.grace_period_days)
    if period_start >= period_end:
        raise IntegrityError(
            f"Obligation {template.obligation_id}: period start {period_start} "
            f"is not before period end {period_end}"
        )
    if deadline > grace_deadline:
        raise IntegrityError(
            f"Obligation {template.obligation_id}: deadline {deadline} after grace deadline {grace_deadline}"
        )
    return ComplianceEvent(
        event_id=event_id_for(template.obligation_id, period_start, period_end),
        facility_id=template.facility_id,
        obligation_id=template.obligation_id,
        reference_period_start=period_start,
        reference_period_end=period_end,
        deadline_date=deadline,
        grace_deadline_date=grace_deadline,
        status=EventStatus.UPCOMING,
        trigger_description=trigger_description,
        created_at=now,
        updated_at=now,
    )


def _periods_for_fixed_dates(
    template: ObligationTemplate, facility: ComplianceFacility
) -> Iterable[tuple[date, date, date]]:
    """Yield ``(start, end, fixed_date)`` for the period ending before each fixed date."""
    for fixed in sorted(template.fixed_deadline_dates):
        start, end = resolve_period_boundaries(
            template.frequency, ReferencePoint.PERIOD_END, fixed, facility.fiscal_year_end
        )
        if end >= fixed:
            start, end = resolve_period_boundaries(
                template.frequency,
                ReferencePoint.PERIOD_END,
                start - timedelta(days=1),
                facility.fiscal_year_end,
            )
        yield start, end, fixed


def generate_events(
    template: ObligationTemplate,
    facility: ComplianceFacility,
    as_of: date,
    existing: Iterable[ComplianceEvent] = (),
    config: SchedulerConfig | None = None,
    now: datetime | None = None,
) -> list[ComplianceEvent]:
    """Create the events of ``template`` that do not exist yet.

    Periods are enumerated from the one containing the activation date while
    the period ends within the lookahead horizon and starts on or before the
    facility maturity date. Once events exist, only periods starting after the
    latest stored period end are created, so an edited template never fills
    in past periods. A one-time obligation gets its event once. Running twice
    with the same inputs creates nothing the second time.

    Parameters
    ----------
    template : ObligationTemplate
        A validated template.
    facility : ComplianceFacility
        Owning facility (fiscal year end and maturity).
    as_of : date
        Reference "today".
    existing : Iterable[ComplianceEvent]
        Events already stored for this obligation.
    config : SchedulerConfig | None
        Lookahead settings.
    now : datetime | None
        Timestamp recorded on new events.

    Returns
    -------
    list[ComplianceEvent]
        Newly created events, ordered by period.

    Raises
    ------
    IntegrityError
        When the template or a generated event breaks an invariant.
    """
    config = config or SchedulerConfig()
    if not template.is_active:
        return []
    _check_template(template)

    if template.frequency == Frequency.ON_EVENT or template.reference_point == ReferencePoint.EVENT_DATE:
        return []

    existing = [event for event in existing if event.obligation_id == template.obligation_id]
    known = {event.period_key for event in existing}
    last_end = max((event.reference_period_end for event in existing), default=None)
    created: list[ComplianceEvent] = []

    def _add(period_start: date, period_end: date, deadline: date) -> None:
        key = (template.obligation_id, period_start, period_end)
        if key in known or (last_end is not None and period_start <= last_end):
            return
        event = _build_event(template, period_start, period_end, deadline, now)
        known.add(key)
        created.append(event)

    if template.frequency == Frequency.ONE_TIME:
        if existing:
            return []
        if not template.fixed_deadline_dates:
            raise IntegrityError(f"One-time obligation {template.obligation_id} has no fixed deadline date")
        deadline = adjust_for_business_day(template.fixed_deadline_dates[0], template.deadline_business_days)
        period_start = min(template.activation_date, deadline - timedelta(days=1))
        _add(period_start, deadline, deadline)
        return created

    horizon = as_of + relativedelta(months=config.lookahead_months)
    maturity = facility.maturity_date

    if template.reference_point == ReferencePoint.FIXED_DATE:
        for period_start, period_end, fixed in _periods_for_fixed_dates(template, facility):
            if fixed < template.activation_date or period_end > horizon:
                continue
            if maturity is not None and period_start > maturity:
                continue
            _add(period_start, period_end, adjust_for_business_day(fixed, template.deadline_business_days))
        return created

    for period_start, period_end in iter_periods(
        template.frequency,
        template.reference_point,
        template.activation_date,
        horizon,
        facility.fiscal_year_end,
    ):
        if maturity is not None and period_start > maturity:
            break
        deadline = compute_deadline(period_end, template.deadline_days, template.deadline_business_days)
        _add(period_start, period_end, deadline)

    if created:
        logger.debug(
            "Generated %d events for obligation %s",
            len(created),
            template.obligation_id,
            extra=log_context(facility_id=template.facility_id, obligation_id=template.obligation_id),
        )
    return created


def trigger_event(
    template: ObligationTemplate,
    event_date: date,
    description: str | None = None,
    existing: Iterable[ComplianceEvent] = (),
    now: datetime | None = None,
) -> ComplianceEvent:
    """Create (or return) the event of an ``on_event`` obligation.

    The reference period runs from ``event_date`` to the later of the
    deadline and the day after the event. A stored event starting on
    ``event_date`` is returned as is, even if the deadline terms changed.

    Raises
    ------
    InvalidTransitionError
        If the obligation is not event-driven or is inactive.
    """
    if template.frequency != Frequency.ON_EVENT and template.reference_point != ReferencePoint.EVENT_DATE:
        raise InvalidTransitionError(f"Obligation {template.obligation_id} is not triggered by events")
    if not template.is_active:
        raise InvalidTransitionError(f"Obligation {template.obligation_id} is inactive")
    _check_template(template)

    deadline = compute_deadline(event_date, template.deadline_days, template.deadline_business_days)
    period_end = max(deadline, event_date + timedelta(days=1))
    for event in existing:
        if event.obligation_id == template.obligation_id and event.reference_period_start == event_date:
            return event
    return _build_event(template, event_date, period_end, deadline, now, trigger_description=description)


def recompute_status(event: ComplianceEvent, as_of: date, due_soon_days: int = 14) -> EventStatus:
    """Time-driven status of an event as of ``as_of``.

    Statuses set by explicit action are returned unchanged. Overdue events are
    never escalated further here.
    """
    if event.is_manual_status:
        return event.status
    if as_of > event.deadline_date:
        return EventStatus.OVERDUE
    if as_of >= event.deadline_date - timedelta(days=due_soon_days):
        return EventStatus.DUE_SOON
    return EventStatus.UPCOMING
