"""Base models shared across compliance entities."""

from dataclasses import dataclass, field
from datetime import datetime

from compliance_engine.models.enums import ActivityType


@dataclass
class Activity:
    """Audit trail entry for a state change."""

    activity_id: str
    facility_id: str
    activity_type: ActivityType
    entity_type: str  # compliance_event, covenant_test, waiver, facility
    entity_id: str
    description: str
    occurred_at: datetime
    details: dict = field(default_factory=dict)
