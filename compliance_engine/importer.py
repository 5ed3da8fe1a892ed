"""Snapshot import of facilities from document extraction.

Imported records are independent copies: later changes to the extraction
never reach the engine. Each record keeps the ``source_*_id`` it came from,
and re-importing skips sources that were already imported.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date

from compliance_engine.clock import Clock, SystemClock
from compliance_engine.logging import log_context
from compliance_engine.models import (
    ActivityType,
    ComplianceFacility,
    Covenant,
    CovenantType,
    ExtractedCovenant,
    ExtractedFacility,
    ExtractedObligation,
    Frequency,
    ObligationTemplate,
    ObligationType,
    ReferencePoint,
    TestingBasis,
    TestingFrequency,
    ThresholdStep,
    ThresholdType,
)
from compliance_engine.store.base import ComplianceRepository
from compliance_engine.validation import validate_covenant, validate_facility, validate_template

logger = logging.getLogger(__name__)

OBLIGATION_TYPE_MAP = {
    "annual_financials": ObligationType.ANNUAL_AUDITED_FINANCIALS,
    "quarterly_financials": ObligationType.QUARTERLY_FINANCIALS,
    "monthly_financials": ObligationType.MONTHLY_FINANCIALS,
    "compliance_certificate": ObligationType.COMPLIANCE_CERTIFICATE,
    "budget": ObligationType.ANNUAL_BUDGET,
    "audit_report": ObligationType.ANNUAL_AUDITED_FINANCIALS,
    "event_notice": ObligationType.OTHER,
    "other": ObligationType.OTHER,
}

FREQUENCY_MAP = {
    "annual": Frequency.ANNUAL,
    "semi_annual": Frequency.SEMI_ANNUAL,
    "quarterly": Frequency.QUARTERLY,
    "monthly": Frequency.MONTHLY,
    "on_occurrence": Frequency.ON_EVENT,
    "other": Frequency.ONE_TIME,
}

COVENANT_TYPE_MAP = {
    "leverage_ratio": CovenantType.LEVERAGE_RATIO,
    "interest_coverage": CovenantType.INTEREST_COVERAGE,
    "fixed_charge_coverage": CovenantType.FIXED_CHARGE_COVERAGE,
    "debt_service_coverage": CovenantType.DEBT_SERVICE_COVERAGE,
    "net_worth": CovenantType.NET_WORTH,
    "tangible_net_worth": CovenantType.TANGIBLE_NET_WORTH,
    "current_ratio": CovenantType.CURRENT_RATIO,
    "capex_limit": CovenantType.CAPEX,
    "minimum_liquidity": CovenantType.MINIMUM_LIQUIDITY,
    "maximum_debt": CovenantType.MAXIMUM_DEBT,
    "other": CovenantType.OTHER,
}


@dataclass
class ImportResult:
    """What an import created and what it skipped."""

    facility: ComplianceFacility
    facility_created: bool
    obligations: list[ObligationTemplate] = field(default_factory=list)
    covenants: list[Covenant] = field(default_factory=list)
    skipped_sources: list[str] = field(default_factory=list)


def map_obligation_type(value: str) -> ObligationType:
    return OBLIGATION_TYPE_MAP.get(value.lower(), ObligationType.OTHER)


def map_frequency(value: str) -> Frequency:
    return FREQUENCY_MAP.get(value.lower(), Frequency.QUARTERLY)


def map_covenant_type(value: str) -> CovenantType:
    return COVENANT_TYPE_MAP.get(value.lower(), CovenantType.OTHER)


def _map_reference_point(value: str, frequency: Frequency) -> ReferencePoint:
    if frequency == Frequency.ON_EVENT:
        return ReferencePoint.EVENT_DATE
    if frequency == Frequency.ONE_TIME:
        return ReferencePoint.FIXED_DATE
    try:
        return ReferencePoint(value.upper())
    except ValueError:
        return ReferencePoint.PERIOD_END


def _map_testing_frequency(value: str) -> TestingFrequency:
    try:
        return TestingFrequency(value.upper())
    except ValueError:
        return TestingFrequency.QUARTERLY


def _map_testing_basis(value: str) -> TestingBasis:
    try:
        return TestingBasis(value.upper())
    except ValueError:
        return TestingBasis.PERIOD_END


def build_obligation(
    extracted: ExtractedObligation, facility_id: str, activation_date: date
) -> ObligationTemplate:
    frequency = map_frequency(extracted.frequency)
    return ObligationTemplate(
        obligation_id=str(uuid.uuid4()),
        facility_id=facility_id,
        obligation_type=map_obligation_type(extracted.obligation_type),
        name=extracted.name,
        frequency=frequency,
        reference_point=_map_reference_point(extracted.reference_point, frequency),
        deadline_days=extracted.deadline_days,
        activation_date=activation_date,
        deadline_business_days=extracted.deadline_business_days,
        fixed_deadline_dates=list(extracted.fixed_deadline_dates),
        grace_period_days=extracted.grace_period_days,
        recipient_roles=list(extracted.recipient_roles),
        requires_certification=extracted.requires_certification,
        description=extracted.description,
        clause_reference=extracted.clause_reference,
        source_obligation_id=extracted.source_obligation_id,
    )


def build_covenant(extracted: ExtractedCovenant, facility_id: str) -> Covenant:
    return Covenant(
        covenant_id=str(uuid.uuid4()),
        facility_id=facility_id,
        covenant_type=map_covenant_type(extracted.covenant_type),
        name=extracted.name,
        threshold_type=ThresholdType(extracted.threshold_type.upper()),
        threshold_schedule=[
            ThresholdStep(step.effective_from, step.threshold_value)
            for step in sorted(extracted.threshold_schedule, key=lambda s: s.effective_from)
        ],
        testing_frequency=_map_testing_frequency(extracted.testing_frequency),
        testing_basis=_map_testing_basis(extracted.testing_basis),
        numerator_definition=extracted.numerator_definition,
        denominator_definition=extracted.denominator_definition,
        has_equity_cure=extracted.has_equity_cure,
        cure_period_days=extracted.cure_period_days,
        max_cures=extracted.max_cures,
        consecutive_cure_limit=extracted.consecutive_cure_limit,
        clause_reference=extracted.clause_reference,
        source_covenant_id=extracted.source_covenant_id,
    )


def import_facility(
    repository: ComplianceRepository,
    extracted: ExtractedFacility,
    activation_date: date | None = None,
    clock: Clock | None = None,
) -> ImportResult:
    """Copy an extracted facility, its obligations and covenants into the engine.

    Parameters
    ----------
    repository : ComplianceRepository
        Destination store.
    extracted : ExtractedFacility
        Extraction output, keyed by source ids.
    activation_date : date | None
        First day obligations apply; defaults to today.
    clock : Clock | None
        Source of "now".

    Returns
    -------
    ImportResult
        Created records; sources already present are listed as skipped.

    Raises
    ------
    ConfigurationError
        If any mapped record fails validation. Nothing is stored then.
    """
    clock = clock or SystemClock()
    now = clock.now()
    activation_date = activation_date or clock.today()

    facility = repository.find_facility_by_source(extracted.source_facility_id)
    created = facility is None
    if facility is None:
        facility = ComplianceFacility(
            facility_id=str(uuid.uuid4()),
            facility_name=extracted.facility_name,
            borrower_name=extracted.borrower_name,
            maturity_date=extracted.maturity_date,
            fiscal_year_end=extracted.fiscal_year_end,
            reporting_currency=extracted.reporting_currency,
            source_facility_id=extracted.source_facility_id,
            created_at=now,
            updated_at=now,
        )
        validate_facility(facility)

    result = ImportResult(facility=facility, facility_created=created)
    known_obligations = set()
    known_covenants = set()
    if not created:
        known_obligations = {o.source_obligation_id for o in repository.list_obligations(facility.facility_id)}
        known_covenants = {c.source_covenant_id for c in repository.list_covenants(facility.facility_id)}

    for item in extracted.obligations:
        if item.source_obligation_id in known_obligations:
            result.skipped_sources.append(item.source_obligation_id)
            continue
        template = build_obligation(item, facility.facility_id, activation_date)
        template.created_at = template.updated_at = now
        validate_template(template)
        known_obligations.add(item.source_obligation_id)
        result.obligations.append(template)

    for item in extracted.covenants:
        if item.source_covenant_id in known_covenants:
            result.skipped_sources.append(item.source_covenant_id)
            continue
        covenant = build_covenant(item, facility.facility_id)
        covenant.created_at = covenant.updated_at = now
        validate_covenant(covenant)
        known_covenants.add(item.source_covenant_id)
        result.covenants.append(covenant)

    with repository.transaction(facility.facility_id):
        if created:
            repository.add_facility(facility)
        for template in result.obligations:
            repository.add_obligation(template)
        for covenant in result.covenants:
            repository.add_covenant(covenant)
        repository.log_activity(
            facility.facility_id,
            ActivityType.FACILITY_SYNCED,
            "facility",
            facility.facility_id,
            f"Imported {len(result.obligations)} obligations and {len(result.covenants)} covenants",
            now,
            {
                "source_facility_id": extracted.source_facility_id,
                "skipped": list(result.skipped_sources),
            },
        )

    logger.info(
        "Imported facility %s: %d obligations, %d covenants, %d skipped",
        facility.facility_id,
        len(result.obligations),
        len(result.covenants),
        len(result.skipped_sources),
        extra=log_context(facility_id=facility.facility_id),
    )
    return result
