"""Calendar utilities: reporting periods, business-day roll and deadlines.

All functions are pure. Periods end on month ends and are aligned either to
the calendar year or, for fiscal-year-end reference points, to the month of
the facility's fiscal year end.
"""

from __future__ import annotations

import calendar as _calendar
from datetime import date, timedelta
from typing import Iterator

from dateutil.relativedelta import relativedelta

from compliance_engine.models.enums import Frequency, ReferencePoint, TestingFrequency

PERIOD_MONTHS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.SEMI_ANNUAL: 6,
    Frequency.ANNUAL: 12,
}

TESTING_PERIOD_MONTHS = {
    TestingFrequency.QUARTERLY: 3,
    TestingFrequency.SEMI_ANNUAL: 6,
    TestingFrequency.ANNUAL: 12,
}

SATURDAY = 5
SUNDAY = 6


def parse_fiscal_year_end(value: str) -> tuple[int, int]:
    """Parse a ``MM-DD`` fiscal year end into ``(month, day)``.

    Raises
    ------
    ValueError
        If the string is not a valid month/day pair.
    """
    try:
        month_str, day_str = value.split("-")
        month, day = int(month_str), int(day_str)
    except (AttributeError, ValueError):
        raise ValueError(f"Fiscal year end must be MM-DD, got {value!r}") from None
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid fiscal year end month in {value!r}")
    # Leap years allowed so 02-29 is accepted
    if not 1 <= day <= _calendar.monthrange(2024, month)[1]:
        raise ValueError(f"Invalid fiscal year end day in {value!r}")
    return month, day


def period_months(frequency: Frequency | TestingFrequency) -> int:
    """Number of months in one period of a periodic frequency."""
    if isinstance(frequency, TestingFrequency):
        return TESTING_PERIOD_MONTHS[frequency]
    try:
        return PERIOD_MONTHS[frequency]
    except KeyError:
        raise ValueError(f"Frequency {frequency.value} is not periodic") from None


def month_end(d: date) -> date:
    """Last day of the month containing ``d``."""
    return d.replace(day=_calendar.monthrange(d.year, d.month)[1])


def is_month_end(d: date) -> bool:
    return d == month_end(d)


def add_months(d: date, months: int) -> date:
    """Shift ``d`` by whole months, clamping to the end of shorter months."""
    return d + relativedelta(months=months)


def period_start_for(period_end: date, months: int) -> date:
    """First day of the ``months``-long period finishing on ``period_end``."""
    if is_month_end(period_end):
        return period_end.replace(day=1) - relativedelta(months=months - 1)
    return period_end - relativedelta(months=months) + timedelta(days=1)


def resolve_period_boundaries(
    frequency: Frequency,
    reference_point: ReferencePoint,
    anchor_date: date,
    fiscal_year_end: str = "12-31",
) -> tuple[date, date]:
    """Return the reporting period ``(start, end)`` containing ``anchor_date``.

    Parameters
    ----------
    frequency : Frequency
        Periodic frequency (monthly, quarterly, semi-annual or annual).
    reference_point : ReferencePoint
        ``FISCAL_YEAR_END`` aligns the period grid to the fiscal year end
        month; any other reference point aligns it to December.
    anchor_date : date
        Any date inside the wanted period.
    fiscal_year_end : str
        Facility fiscal year end as ``MM-DD``.

    Returns
    -------
    tuple[date, date]
        Inclusive period start and end.

    Raises
    ------
    ValueError
        For ``ONE_TIME`` and ``ON_EVENT`` frequencies, which have no period grid.
    """
    months = period_months(frequency)
    if reference_point == ReferencePoint.FISCAL_YEAR_END:
        align_month, _ = parse_fiscal_year_end(fiscal_year_end)
    else:
        align_month = 12

    offset = (anchor_date.month - align_month) % months
    months_to_end = 0 if offset == 0 else months - offset
    end = month_end(anchor_date.replace(day=1) + relativedelta(months=months_to_end))
    start = end.replace(day=1) - relativedelta(months=months - 1)
    return start, end


def iter_periods(
    frequency: Frequency,
    reference_point: ReferencePoint,
    start: date,
    end: date | None = None,
    fiscal_year_end: str = "12-31",
) -> Iterator[tuple[date, date]]:
    """Yield consecutive periods from the one containing ``start``.

    Stops before the first period ending after ``end`` (never, if ``end`` is None).
    """
    period_start, period_end = resolve_period_boundaries(
        frequency, reference_point, start, fiscal_year_end
    )
    months = period_months(frequency)
    while end is None or period_end <= end:
        yield period_start, period_end
        period_start = period_end + timedelta(days=1)
        period_end = month_end(period_start + relativedelta(months=months - 1))


def adjust_for_business_day(d: date, adjust: bool = True) -> date:
    """Roll a Saturday or Sunday forward to the following Monday."""
    if not adjust:
        return d
    weekday = d.weekday()
    if weekday == SATURDAY:
        return d + timedelta(days=2)
    if weekday == SUNDAY:
        return d + timedelta(days=1)
    return d


def compute_deadline(period_end: date, deadline_days: int, business_day_adjust: bool = False) -> date:
    """``period_end + deadline_days``, rolled to a business day when asked."""
    return adjust_for_business_day(period_end + timedelta(days=deadline_days), business_day_adjust)


def compute_grace_deadline(deadline: date, grace_period_days: int) -> date:
    """Grace deadline in calendar days; never rolled."""
    return deadline + timedelta(days=grace_period_days)
