"""Reminder models and notifier hand-off records."""

from dataclasses import dataclass, field
from datetime import datetime

from compliance_engine.models.enums import Channel, ReferenceKind, ReminderType


@dataclass(frozen=True)
class ReferenceEntity:
    """Entity a reminder refers to."""

    kind: ReferenceKind
    entity_id: str


@dataclass
class Reminder:
    """Scheduled notification about an upcoming or missed date.

    Identity is ``(reference, channel, scheduled_for)``.
    """

    reminder_id: str
    facility_id: str
    reference: ReferenceEntity
    reminder_type: ReminderType
    days_before: int
    scheduled_for: datetime  # tz-aware
    channel: Channel
    subject: str
    notify_users: list[str] = field(default_factory=list)
    notify_roles: list[str] = field(default_factory=list)
    is_sent: bool = False
    skipped: bool = False  # Planned after its send time
    sent_at: datetime | None = None

    @property
    def key(self) -> tuple[ReferenceEntity, Channel, datetime]:
        return (self.reference, self.channel, self.scheduled_for)


@dataclass
class FireInstruction:
    """Message handed to the notifier; delivery is not awaited."""

    facility_id: str
    reminder_id: str
    reminder_type: ReminderType
    channel: Channel
    subject: str
    reference_entity: ReferenceEntity
    target_users: list[str] = field(default_factory=list)
    target_roles: list[str] = field(default_factory=list)
    fired_at: datetime | None = None
