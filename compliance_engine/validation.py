"""Creation-time validation with field-level error messages."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Any

from compliance_engine.calendar import parse_fiscal_year_end
from compliance_engine.exceptions import ConfigurationError, InputError
from compliance_engine.models import (
    ComplianceFacility,
    Covenant,
    FinancialInputs,
    Frequency,
    ObligationTemplate,
    ReferencePoint,
    Waiver,
    WaiverType,
)


def validate_facility(facility: ComplianceFacility) -> None:
    """Validate a facility before it is stored."""
    errors: dict[str, str] = {}
    if not facility.facility_name:
        errors["facility_name"] = "is required"
    if not facility.borrower_name:
        errors["borrower_name"] = "is required"
    try:
        parse_fiscal_year_end(facility.fiscal_year_end)
    except ValueError as exc:
        errors["fiscal_year_end"] = str(exc)
    currency = facility.reporting_currency or ""
    if len(currency) != 3 or not currency.isalpha() or not currency.isupper():
        errors["reporting_currency"] = "must be a 3-letter upper-case ISO code"
    if errors:
        raise ConfigurationError(f"Invalid facility {facility.facility_id}", errors)


def validate_template(template: ObligationTemplate) -> None:
    """Validate an obligation template.

    Raises
    ------
    ConfigurationError
        With one message per offending field.
    """
    errors: dict[str, str] = {}
    if not template.name:
        errors["name"] = "is required"
    if template.deadline_days < 0:
        errors["deadline_days"] = "must be >= 0"
    if template.grace_period_days < 0:
        errors["grace_period_days"] = "must be >= 0"

    if template.frequency == Frequency.ONE_TIME:
        if len(template.fixed_deadline_dates) != 1:
            errors["fixed_deadline_dates"] = "one_time obligations need exactly one fixed deadline date"
    elif template.frequency == Frequency.ON_EVENT:
        if template.reference_point not in (ReferencePoint.EVENT_DATE, ReferencePoint.PERIOD_END):
            errors["reference_point"] = "on_event obligations are measured from the event date"
    else:
        if template.reference_point == ReferencePoint.EVENT_DATE:
            errors["reference_point"] = "event_date requires frequency on_event"
        if template.reference_point == ReferencePoint.FIXED_DATE and not template.fixed_deadline_dates:
            errors["fixed_deadline_dates"] = "fixed_date reference point needs at least one date"

    if len(set(template.fixed_deadline_dates)) != len(template.fixed_deadline_dates):
        errors["fixed_deadline_dates"] = "dates must be unique"

    if errors:
        raise ConfigurationError(f"Invalid obligation template {template.obligation_id}", errors)


def validate_covenant(covenant: Covenant) -> None:
    """Validate a covenant and its threshold schedule."""
    errors: dict[str, str] = {}
    if not covenant.name:
        errors["name"] = "is required"

    schedule = covenant.threshold_schedule
    if not schedule:
        errors["threshold_schedule"] = "needs at least one entry"
    else:
        dates = [step.effective_from for step in schedule]
        if len(set(dates)) != len(dates):
            errors["threshold_schedule"] = "effective_from dates must be unique"
        elif dates != sorted(dates):
            errors["threshold_schedule"] = "entries must be sorted by effective_from"
        for step in schedule:
            if not isinstance(step.threshold_value, Decimal) or not step.threshold_value.is_finite():
                errors["threshold_schedule"] = f"threshold for {step.effective_from} must be a finite Decimal"
                break

    if covenant.has_equity_cure:
        if covenant.cure_period_days is None or covenant.cure_period_days <= 0:
            errors["cure_period_days"] = "must be > 0 when an equity cure is available"
    if covenant.max_cures is not None and covenant.max_cures < 0:
        errors["max_cures"] = "must be >= 0 or None for unlimited"
    if covenant.consecutive_cure_limit is not None and covenant.consecutive_cure_limit < 0:
        errors["consecutive_cure_limit"] = "must be >= 0 or None for unlimited"

    if errors:
        raise ConfigurationError(f"Invalid covenant {covenant.covenant_id}", errors)


def validate_waiver_request(waiver: Waiver) -> None:
    """Validate a waiver request before it is stored."""
    errors: dict[str, str] = {}
    if waiver.waiver_period_end < waiver.waiver_period_start:
        errors["waiver_period_end"] = "must be on or after waiver_period_start"
    if not any(waiver.target):
        errors["target"] = "a waiver must reference a covenant, test or compliance event"
    if waiver.waiver_type == WaiverType.DEADLINE_EXTENSION and not waiver.related_event_id:
        errors["related_event_id"] = "deadline extensions apply to compliance events"
    if waiver.fee_amount is not None and waiver.fee_amount < 0:
        errors["fee_amount"] = "must be >= 0"
    if errors:
        raise InputError(f"Invalid waiver request {waiver.waiver_id}", errors)


def _to_decimal(value: Any, name: str, errors: dict[str, str]) -> Decimal | None:
    if isinstance(value, bool):
        errors[name] = "must be a number"
        return None
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        errors[name] = f"must be a number, got {value!r}"
        return None
    if not result.is_finite():
        errors[name] = "must be finite"
        return None
    return result


def validate_financial_inputs(inputs: FinancialInputs) -> FinancialInputs:
    """Return a copy of ``inputs`` with numbers normalised to Decimal.

    Raises
    ------
    InputError
        When a figure is not a finite number or the denominator is zero.
    """
    errors: dict[str, str] = {}
    numerator = _to_decimal(inputs.numerator, "numerator", errors)
    denominator = _to_decimal(inputs.denominator, "denominator", errors)
    if denominator is not None and denominator == 0:
        errors["denominator"] = "must not be zero"
    if inputs.period_end is not None and inputs.period_end > inputs.test_date:
        errors["period_end"] = "must not be after test_date"
    if errors:
        raise InputError("Invalid financial inputs", errors)
    return replace(
        inputs,
        numerator=numerator,
        denominator=denominator,
        period_end=inputs.period_end or inputs.test_date,
    )
