"""Facility status derivation."""

from datetime import date
from typing import Iterable

from compliance_engine.models import (
    ComplianceFacility,
    CovenantTest,
    FacilityStatus,
    TestOutcome,
    Waiver,
    WaiverStatus,
)


def derive_facility_status(
    facility: ComplianceFacility,
    tests: Iterable[CovenantTest],
    waivers: Iterable[Waiver],
    as_of: date,
) -> FacilityStatus:
    """Status implied by the facility's tests and waivers.

    An administrative override always wins. Otherwise a finally failed test
    puts the facility in default; a test still awaiting cure or waiver, or an
    approved waiver in force, puts it in its waiver period.
    """
    if facility.administrative_status is not None:
        return facility.administrative_status

    outcomes = {test.outcome for test in tests}
    if TestOutcome.FAIL_FINAL in outcomes:
        return FacilityStatus.DEFAULT
    if any(outcome.is_pending_failure for outcome in outcomes):
        return FacilityStatus.WAIVER_PERIOD
    if any(w.status == WaiverStatus.APPROVED and w.covers(as_of) for w in waivers):
        return FacilityStatus.WAIVER_PERIOD
    return FacilityStatus.ACTIVE
