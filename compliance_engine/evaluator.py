"""Covenant test evaluator."""

from __future__ import annotations

import bisect
import logging
import uuid
from datetime import date, datetime
from decimal import ROUND_HALF_UP, ROUND_UP, Decimal

from compliance_engine.calendar import TESTING_PERIOD_MONTHS, period_start_for
from compliance_engine.config import EvaluationConfig
from compliance_engine.exceptions import ConfigurationError, IntegrityError
from compliance_engine.logging import log_context
from compliance_engine.models import (
    Covenant,
    CovenantTest,
    FinancialInputs,
    TestingBasis,
    TestOutcome,
    ThresholdStep,
    ThresholdType,
)
from compliance_engine.validation import validate_financial_inputs

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
ROLLING_MONTHS = 12
CENT = Decimal("0.01")


def _quantum(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def resolve_threshold(covenant: Covenant, as_of: date) -> ThresholdStep:
    """Return the schedule entry in force on ``as_of``.

    Raises
    ------
    IntegrityError
        If the schedule is unsorted or has duplicate ``effective_from`` dates.
    ConfigurationError
        If no entry is in force yet.
    """
    schedule = covenant.threshold_schedule
    dates = [step.effective_from for step in schedule]
    for earlier, later in zip(dates, dates[1:]):
        if earlier >= later:
            raise IntegrityError(
                f"Covenant {covenant.covenant_id} threshold schedule is unsorted or has duplicates"
            )
    idx = bisect.bisect_right(dates, as_of)
    if idx == 0:
        raise ConfigurationError(
            f"Covenant {covenant.covenant_id} has no threshold in force on {as_of}",
            {"threshold_schedule": f"no entry effective on or before {as_of}"},
        )
    return schedule[idx - 1]


def measurement_period(covenant: Covenant, period_end: date) -> tuple[date, date]:
    """Measurement period for a test ending on ``period_end``."""
    if covenant.testing_basis == TestingBasis.PERIOD_END:
        months = TESTING_PERIOD_MONTHS[covenant.testing_frequency]
    else:
        months = ROLLING_MONTHS
    return period_start_for(period_end, months), period_end


def required_cure_amount(
    threshold_type: ThresholdType,
    numerator: Decimal,
    denominator: Decimal,
    threshold: Decimal,
) -> Decimal:
    """Change in the numerator needed to bring the ratio back to the threshold.

    For minimum tests the numerator must rise (e.g. EBITDA cure); for maximum
    tests it must fall (e.g. debt prepayment). Rounded up to the cent.
    """
    target = threshold * denominator
    if threshold_type == ThresholdType.MINIMUM:
        gap = target - numerator
    else:
        gap = numerator - target
    return max(gap, Decimal("0")).quantize(CENT, rounding=ROUND_UP)


def evaluate(
    covenant: Covenant,
    inputs: FinancialInputs,
    config: EvaluationConfig | None = None,
    test_id: str | None = None,
    now: datetime | None = None,
) -> CovenantTest:
    """Evaluate one covenant test.

    Parameters
    ----------
    covenant : Covenant
        Covenant under test.
    inputs : FinancialInputs
        Reported numerator and denominator for the test date.
    config : EvaluationConfig | None
        Rounding settings.
    test_id : str | None
        Identifier for the new test (random when omitted).
    now : datetime | None
        Timestamp recorded on the test.

    Returns
    -------
    CovenantTest
        Outcome ``PASS`` or ``FAIL_PENDING``; failures are handed to the
        cure and waiver resolver by the caller.

    Raises
    ------
    InputError
        On a zero denominator or non-numeric figures.
    ConfigurationError
        If no threshold is in force on the test date.
    """
    config = config or EvaluationConfig()
    inputs = validate_financial_inputs(inputs)
    numerator = inputs.numerator
    denominator = inputs.denominator

    ratio = (numerator / denominator).quantize(_quantum(config.ratio_places), rounding=ROUND_HALF_UP)
    threshold = resolve_threshold(covenant, inputs.test_date).threshold_value

    if covenant.threshold_type == ThresholdType.MAXIMUM:
        passed = ratio <= threshold
        headroom = threshold - ratio
    else:
        passed = ratio >= threshold
        headroom = ratio - threshold

    if threshold == 0:
        headroom_pct = None
    else:
        headroom_pct = (headroom / threshold * HUNDRED).quantize(
            _quantum(config.percentage_places), rounding=ROUND_HALF_UP
        )

    breach = Decimal("0") if passed else abs(headroom)
    period_start, period_end = measurement_period(covenant, inputs.period_end)

    test = CovenantTest(
        test_id=test_id or str(uuid.uuid4()),
        covenant_id=covenant.covenant_id,
        facility_id=covenant.facility_id,
        test_date=inputs.test_date,
        period_start=period_start,
        period_end=period_end,
        numerator_value=numerator,
        denominator_value=denominator,
        calculated_ratio=ratio,
        threshold_value=threshold,
        headroom_absolute=headroom,
        headroom_percentage=headroom_pct,
        breach_amount=breach,
        outcome=TestOutcome.PASS if passed else TestOutcome.FAIL_PENDING,
        required_cure_amount=None
        if passed
        else required_cure_amount(covenant.threshold_type, numerator, denominator, threshold),
        compliance_event_id=inputs.compliance_event_id,
        submitted_by=inputs.submitted_by,
        created_at=now,
        updated_at=now,
    )

    logger.debug(
        "Covenant %s tested on %s: ratio=%s threshold=%s outcome=%s",
        covenant.covenant_id,
        inputs.test_date,
        ratio,
        threshold,
        test.outcome.value,
        extra=log_context(facility_id=covenant.facility_id, covenant_id=covenant.covenant_id),
    )
    return test
