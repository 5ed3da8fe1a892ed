"""Domain models for compliance tracking."""

from compliance_engine.models.base import Activity
from compliance_engine.models.covenant import (
    Covenant,
    CovenantTest,
    CureContribution,
    FinancialInputs,
    QueuedInputs,
    ThresholdStep,
)
from compliance_engine.models.enums import (
    MANUAL_EVENT_STATUSES,
    ActivityType,
    AlertSeverity,
    Channel,
    CovenantType,
    EventStatus,
    FacilityStatus,
    Frequency,
    ObligationType,
    ReferenceKind,
    ReferencePoint,
    ReminderType,
    RequiredConsent,
    ReviewDecision,
    TestingBasis,
    TestingFrequency,
    TestOutcome,
    TestResult,
    ThresholdType,
    WaiverDecision,
    WaiverStatus,
    WaiverType,
)
from compliance_engine.models.extraction import (
    ExtractedCovenant,
    ExtractedFacility,
    ExtractedObligation,
    ExtractedThresholdStep,
)
from compliance_engine.models.facility import ComplianceFacility
from compliance_engine.models.obligation import ComplianceEvent, ObligationTemplate
from compliance_engine.models.reminder import FireInstruction, ReferenceEntity, Reminder
from compliance_engine.models.waiver import Waiver

__all__ = [
    "MANUAL_EVENT_STATUSES",
    "Activity",
    "ActivityType",
    "AlertSeverity",
    "Channel",
    "ComplianceEvent",
    "ComplianceFacility",
    "Covenant",
    "CovenantTest",
    "CovenantType",
    "CureContribution",
    "EventStatus",
    "ExtractedCovenant",
    "ExtractedFacility",
    "ExtractedObligation",
    "ExtractedThresholdStep",
    "FacilityStatus",
    "FinancialInputs",
    "FireInstruction",
    "Frequency",
    "ObligationTemplate",
    "ObligationType",
    "QueuedInputs",
    "ReferenceEntity",
    "ReferenceKind",
    "ReferencePoint",
    "Reminder",
    "ReminderType",
    "RequiredConsent",
    "ReviewDecision",
    "TestOutcome",
    "TestResult",
    "TestingBasis",
    "TestingFrequency",
    "ThresholdStep",
    "ThresholdType",
    "Waiver",
    "WaiverDecision",
    "WaiverStatus",
    "WaiverType",
]
