"""Enumeration types for compliance entities."""

from enum import Enum


class FacilityStatus(str, Enum):
    ACTIVE = "ACTIVE"
    WAIVER_PERIOD = "WAIVER_PERIOD"
    DEFAULT = "DEFAULT"
    CLOSED = "CLOSED"


class ObligationType(str, Enum):
    ANNUAL_AUDITED_FINANCIALS = "ANNUAL_AUDITED_FINANCIALS"
    QUARTERLY_FINANCIALS = "QUARTERLY_FINANCIALS"
    MONTHLY_FINANCIALS = "MONTHLY_FINANCIALS"
    COMPLIANCE_CERTIFICATE = "COMPLIANCE_CERTIFICATE"
    ANNUAL_BUDGET = "ANNUAL_BUDGET"
    PROJECTIONS = "PROJECTIONS"
    COVENANT_CALCULATION = "COVENANT_CALCULATION"
    ESG_REPORT = "ESG_REPORT"
    INSURANCE_CERTIFICATE = "INSURANCE_CERTIFICATE"
    OTHER = "OTHER"


class Frequency(str, Enum):
    ANNUAL = "ANNUAL"
    SEMI_ANNUAL = "SEMI_ANNUAL"
    QUARTERLY = "QUARTERLY"
    MONTHLY = "MONTHLY"
    ONE_TIME = "ONE_TIME"
    ON_EVENT = "ON_EVENT"


class ReferencePoint(str, Enum):
    PERIOD_END = "PERIOD_END"
    FISCAL_YEAR_END = "FISCAL_YEAR_END"
    FIXED_DATE = "FIXED_DATE"
    EVENT_DATE = "EVENT_DATE"


class EventStatus(str, Enum):
    UPCOMING = "UPCOMING"
    DUE_SOON = "DUE_SOON"
    OVERDUE = "OVERDUE"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    WAIVED = "WAIVED"


# Statuses set only by an explicit action; recompute never touches them.
MANUAL_EVENT_STATUSES = frozenset(
    {
        EventStatus.SUBMITTED,
        EventStatus.UNDER_REVIEW,
        EventStatus.ACCEPTED,
        EventStatus.REJECTED,
        EventStatus.WAIVED,
    }
)


class CovenantType(str, Enum):
    LEVERAGE_RATIO = "LEVERAGE_RATIO"
    INTEREST_COVERAGE = "INTEREST_COVERAGE"
    FIXED_CHARGE_COVERAGE = "FIXED_CHARGE_COVERAGE"
    DEBT_SERVICE_COVERAGE = "DEBT_SERVICE_COVERAGE"
    CURRENT_RATIO = "CURRENT_RATIO"
    NET_WORTH = "NET_WORTH"
    TANGIBLE_NET_WORTH = "TANGIBLE_NET_WORTH"
    CAPEX = "CAPEX"
    MINIMUM_LIQUIDITY = "MINIMUM_LIQUIDITY"
    MAXIMUM_DEBT = "MAXIMUM_DEBT"
    OTHER = "OTHER"


class ThresholdType(str, Enum):
    MAXIMUM = "MAXIMUM"
    MINIMUM = "MINIMUM"


class TestingFrequency(str, Enum):
    __test__ = False

    QUARTERLY = "QUARTERLY"
    SEMI_ANNUAL = "SEMI_ANNUAL"
    ANNUAL = "ANNUAL"


class TestingBasis(str, Enum):
    __test__ = False

    PERIOD_END = "PERIOD_END"
    ROLLING_12_MONTHS = "ROLLING_12_MONTHS"
    ROLLING_4_QUARTERS = "ROLLING_4_QUARTERS"


class TestResult(str, Enum):
    __test__ = False

    PASS = "PASS"
    FAIL = "FAIL"
    CURED = "CURED"
    WAIVED = "WAIVED"


class TestOutcome(str, Enum):
    """Lifecycle state of a covenant test.

    PASS, CURED, WAIVED and FAIL_FINAL are terminal.
    """

    __test__ = False

    PASS = "PASS"
    FAIL_PENDING = "FAIL_PENDING"
    CURE_PENDING = "CURE_PENDING"
    WAIVER_REQUESTED = "WAIVER_REQUESTED"
    CURE_AND_WAIVER_PENDING = "CURE_AND_WAIVER_PENDING"
    CURED = "CURED"
    WAIVED = "WAIVED"
    FAIL_FINAL = "FAIL_FINAL"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_OUTCOMES

    @property
    def is_pending_failure(self) -> bool:
        return not self.is_terminal


TERMINAL_OUTCOMES = frozenset(
    {TestOutcome.PASS, TestOutcome.CURED, TestOutcome.WAIVED, TestOutcome.FAIL_FINAL}
)


class WaiverType(str, Enum):
    COVENANT_WAIVER = "COVENANT_WAIVER"
    DEADLINE_EXTENSION = "DEADLINE_EXTENSION"
    CONSENT = "CONSENT"
    AMENDMENT = "AMENDMENT"


class RequiredConsent(str, Enum):
    AGENT = "AGENT"
    MAJORITY_LENDERS = "MAJORITY_LENDERS"
    ALL_LENDERS = "ALL_LENDERS"


class WaiverStatus(str, Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    SUPERSEDED = "SUPERSEDED"


class WaiverDecision(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ReviewDecision(str, Enum):
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class ReminderType(str, Enum):
    DEADLINE_APPROACHING = "DEADLINE_APPROACHING"
    COVENANT_TEST_DUE = "COVENANT_TEST_DUE"
    WAIVER_EXPIRING = "WAIVER_EXPIRING"
    GRACE_PERIOD_EXPIRED = "GRACE_PERIOD_EXPIRED"
    HEADROOM_ALERT = "HEADROOM_ALERT"
    CUSTOM = "CUSTOM"


class Channel(str, Enum):
    IN_APP = "IN_APP"
    EMAIL = "EMAIL"
    SLACK = "SLACK"


class ReferenceKind(str, Enum):
    COVENANT = "COVENANT"
    COMPLIANCE_EVENT = "COMPLIANCE_EVENT"
    COVENANT_TEST = "COVENANT_TEST"
    WAIVER = "WAIVER"


class AlertSeverity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class ActivityType(str, Enum):
    FACILITY_SYNCED = "FACILITY_SYNCED"
    EVENT_GENERATED = "EVENT_GENERATED"
    EVENT_SUBMITTED = "EVENT_SUBMITTED"
    EVENT_REVIEWED = "EVENT_REVIEWED"
    EVENT_TRIGGERED = "EVENT_TRIGGERED"
    COVENANT_TEST_PASSED = "COVENANT_TEST_PASSED"
    COVENANT_TEST_FAILED = "COVENANT_TEST_FAILED"
    CURE_APPLIED = "CURE_APPLIED"
    WAIVER_REQUESTED = "WAIVER_REQUESTED"
    WAIVER_GRANTED = "WAIVER_GRANTED"
    WAIVER_DENIED = "WAIVER_DENIED"
    WAIVER_EXPIRED = "WAIVER_EXPIRED"
    DEFAULT_NOTICE_REQUIRED = "DEFAULT_NOTICE_REQUIRED"
    FACILITY_STATUS_CHANGED = "FACILITY_STATUS_CHANGED"
    RECOMPUTE_PAUSED = "RECOMPUTE_PAUSED"
