"""Reminder planner.

Reminders are planned against deadlines of compliance events, failed
covenant tests awaiting cure or waiver, and approved waivers nearing expiry.
Planning is idempotent: the identity of a reminder is its
``(reference, channel, scheduled_for)`` key.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Iterable

from compliance_engine.models import (
    AlertSeverity,
    Channel,
    ComplianceEvent,
    Covenant,
    CovenantTest,
    FireInstruction,
    ReferenceEntity,
    ReferenceKind,
    Reminder,
    ReminderType,
    TestOutcome,
    Waiver,
    WaiverStatus,
)

REMINDER_NAMESPACE = uuid.UUID("a3d2c1b0-7e6f-4a5b-8c9d-0e1f2a3b4c5d")

# Reminders created outside planning; replan never removes them.
UNPLANNED_TYPES = frozenset({ReminderType.HEADROOM_ALERT, ReminderType.CUSTOM})


@dataclass
class ReminderTrigger:
    """Send a reminder ``days_before`` a deadline on each channel."""

    days_before: int
    channels: list[Channel] = field(default_factory=lambda: [Channel.EMAIL, Channel.IN_APP])
    enabled: bool = True
    notify_users: list[str] = field(default_factory=list)
    notify_roles: list[str] = field(default_factory=list)


@dataclass
class HeadroomTrigger:
    """Alert when a passing test's headroom falls below ``percentage``."""

    percentage: Decimal
    severity: AlertSeverity
    channels: list[Channel] = field(default_factory=lambda: [Channel.EMAIL, Channel.IN_APP])
    enabled: bool = True


def _triggers(*days: int, channels: tuple[Channel, ...] = (Channel.EMAIL, Channel.IN_APP)) -> list[ReminderTrigger]:
    return [ReminderTrigger(days_before=d, channels=list(channels)) for d in days]


@dataclass
class AlertThresholdConfig:
    """Reminder and alert settings per target kind."""

    compliance_event: list[ReminderTrigger] = field(default_factory=lambda: _triggers(14, 7, 3))
    covenant_test: list[ReminderTrigger] = field(default_factory=lambda: _triggers(7, 3, 1))
    waiver_expiration: list[ReminderTrigger] = field(
        default_factory=lambda: _triggers(30, 14, 7, 1, channels=(Channel.EMAIL, Channel.IN_APP, Channel.SLACK))
    )
    grace_expiry_escalation: bool = True
    grace_expiry_channels: list[Channel] = field(default_factory=lambda: [Channel.EMAIL, Channel.IN_APP])
    headroom: list[HeadroomTrigger] = field(
        default_factory=lambda: [
            HeadroomTrigger(Decimal("25"), AlertSeverity.INFO),
            HeadroomTrigger(Decimal("15"), AlertSeverity.WARNING),
            HeadroomTrigger(Decimal("10"), AlertSeverity.WARNING),
            HeadroomTrigger(Decimal("5"), AlertSeverity.CRITICAL),
        ]
    )
    send_time: time = time(9, 0)
    default_roles: list[str] = field(default_factory=lambda: ["compliance_officer"])


@dataclass
class ReplanResult:
    """Outcome of reconciling stored reminders with the desired set."""

    reminders: list[Reminder]
    added: list[Reminder]
    removed: list[Reminder]

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


def reminder_id_for(reference: ReferenceEntity, channel: Channel, scheduled_for: datetime) -> str:
    key = f"{reference.kind.value}:{reference.entity_id}:{channel.value}:{scheduled_for.isoformat()}"
    return str(uuid.uuid5(REMINDER_NAMESPACE, key))


def scheduled_at(day: date, send_time: time) -> datetime:
    """Send instant for ``day`` in UTC."""
    return datetime.combine(day, send_time, tzinfo=send_time.tzinfo or timezone.utc)


def plan_reminders(
    triggers: Iterable[ReminderTrigger],
    deadline: date,
    as_of: datetime,
    reference: ReferenceEntity,
    facility_id: str,
    reminder_type: ReminderType,
    subject: str,
    send_time: time = time(9, 0),
    notify_roles: Iterable[str] = (),
) -> list[Reminder]:
    """Plan one reminder per enabled trigger and channel.

    Reminders whose send instant is already past are returned marked sent and
    skipped, so they are recorded but never fired.
    """
    planned = []
    for trigger in triggers:
        if not trigger.enabled:
            continue
        scheduled_for = scheduled_at(deadline - timedelta(days=trigger.days_before), send_time)
        in_past = scheduled_for < as_of
        roles = list(trigger.notify_roles) or list(notify_roles)
        for channel in trigger.channels:
            planned.append(
                Reminder(
                    reminder_id=reminder_id_for(reference, channel, scheduled_for),
                    facility_id=facility_id,
                    reference=reference,
                    reminder_type=reminder_type,
                    days_before=trigger.days_before,
                    scheduled_for=scheduled_for,
                    channel=channel,
                    subject=subject,
                    notify_users=list(trigger.notify_users),
                    notify_roles=roles,
                    is_sent=in_past,
                    skipped=in_past,
                )
            )
    return planned


def plan_for_event(
    config: AlertThresholdConfig,
    event: ComplianceEvent,
    as_of: datetime,
    obligation_name: str = "",
    recipient_roles: Iterable[str] = (),
) -> list[Reminder]:
    """Desired reminders for a compliance event."""
    if event.is_manual_status:
        return []
    reference = ReferenceEntity(ReferenceKind.COMPLIANCE_EVENT, event.event_id)
    roles = list(recipient_roles) or config.default_roles
    label = obligation_name or event.obligation_id
    reminders = plan_reminders(
        config.compliance_event,
        event.deadline_date,
        as_of,
        reference,
        event.facility_id,
        ReminderType.DEADLINE_APPROACHING,
        f"{label} due {event.deadline_date.isoformat()}",
        config.send_time,
        roles,
    )
    if config.grace_expiry_escalation:
        escalation = ReminderTrigger(days_before=-1, channels=list(config.grace_expiry_channels))
        reminders += plan_reminders(
            [escalation],
            event.grace_deadline_date,
            as_of,
            reference,
            event.facility_id,
            ReminderType.GRACE_PERIOD_EXPIRED,
            f"{label} grace period expired {event.grace_deadline_date.isoformat()}",
            config.send_time,
            roles,
        )
    return reminders


def plan_for_test(config: AlertThresholdConfig, test: CovenantTest, as_of: datetime) -> list[Reminder]:
    """Desired reminders for a failed test awaiting cure or a waiver decision."""
    if test.outcome in (TestOutcome.CURE_PENDING, TestOutcome.CURE_AND_WAIVER_PENDING):
        deadline, what = test.cure_deadline, "Equity cure deadline"
    elif test.outcome == TestOutcome.FAIL_PENDING:
        deadline, what = test.resolution_deadline, "Waiver request deadline"
    else:
        return []
    if deadline is None:
        return []
    return plan_reminders(
        config.covenant_test,
        deadline,
        as_of,
        ReferenceEntity(ReferenceKind.COVENANT_TEST, test.test_id),
        test.facility_id,
        ReminderType.COVENANT_TEST_DUE,
        f"{what} {deadline.isoformat()} for covenant test {test.test_date.isoformat()}",
        config.send_time,
        config.default_roles,
    )


def plan_for_waiver(config: AlertThresholdConfig, waiver: Waiver, as_of: datetime) -> list[Reminder]:
    """Desired reminders for an approved waiver nearing expiry."""
    if waiver.status != WaiverStatus.APPROVED:
        return []
    return plan_reminders(
        config.waiver_expiration,
        waiver.waiver_period_end,
        as_of,
        ReferenceEntity(ReferenceKind.WAIVER, waiver.waiver_id),
        waiver.facility_id,
        ReminderType.WAIVER_EXPIRING,
        f"Waiver expires {waiver.waiver_period_end.isoformat()}",
        config.send_time,
        config.default_roles,
    )


def replan(existing: Iterable[Reminder], desired: Iterable[Reminder]) -> ReplanResult:
    """Reconcile stored reminders with the desired set.

    Matching keys are kept as stored, unsent planned reminders that are no
    longer desired are removed, and missing ones are added. Sent reminders
    are history and always kept.
    """
    existing = list(existing)
    desired_by_key = {r.key: r for r in desired}
    existing_keys = {r.key for r in existing}

    kept: list[Reminder] = []
    removed: list[Reminder] = []
    for reminder in existing:
        if (
            reminder.key in desired_by_key
            or reminder.is_sent
            or reminder.reminder_type in UNPLANNED_TYPES
        ):
            kept.append(reminder)
        else:
            removed.append(reminder)

    added = [r for key, r in desired_by_key.items() if key not in existing_keys]
    return ReplanResult(reminders=kept + added, added=added, removed=removed)


def headroom_alert(
    config: AlertThresholdConfig,
    test: CovenantTest,
    covenant: Covenant,
    as_of: datetime,
) -> list[Reminder]:
    """Immediate alerts for a passing test whose headroom is tight.

    Only the tightest enabled trigger that the headroom falls below fires.
    """
    if test.outcome != TestOutcome.PASS or test.headroom_percentage is None:
        return []
    breached = [
        trigger
        for trigger in config.headroom
        if trigger.enabled and test.headroom_percentage < trigger.percentage
    ]
    if not breached:
        return []
    trigger = min(breached, key=lambda t: t.percentage)
    reference = ReferenceEntity(ReferenceKind.COVENANT_TEST, test.test_id)
    subject = (
        f"[{trigger.severity.value}] {covenant.name}: headroom {test.headroom_percentage}% "
        f"below {trigger.percentage}%"
    )
    return [
        Reminder(
            reminder_id=reminder_id_for(reference, channel, as_of),
            facility_id=test.facility_id,
            reference=reference,
            reminder_type=ReminderType.HEADROOM_ALERT,
            days_before=0,
            scheduled_for=as_of,
            channel=channel,
            subject=subject,
            notify_roles=list(config.default_roles),
        )
        for channel in trigger.channels
    ]


def due_reminders(reminders: Iterable[Reminder], now: datetime) -> list[Reminder]:
    """Unsent reminders whose send instant has arrived, oldest first."""
    return sorted(
        (r for r in reminders if not r.is_sent and r.scheduled_for <= now),
        key=lambda r: (r.scheduled_for, r.reminder_id),
    )


def fire_instruction(reminder: Reminder, fired_at: datetime | None = None) -> FireInstruction:
    return FireInstruction(
        facility_id=reminder.facility_id,
        reminder_id=reminder.reminder_id,
        reminder_type=reminder.reminder_type,
        channel=reminder.channel,
        subject=reminder.subject,
        reference_entity=reminder.reference,
        target_users=list(reminder.notify_users),
        target_roles=list(reminder.notify_roles),
        fired_at=fired_at,
    )
