"""Sample loan portfolio generator.

Produces extraction records (facilities with their reporting obligations
and financial covenants) and plausible reported financials for covenant
tests, for demos and load runs of the recompute job.
"""

from __future__ import annotations

import random
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterator

from dateutil.relativedelta import relativedelta

from compliance_engine.evaluator import resolve_threshold
from compliance_engine.generators.base import BaseGenerator
from compliance_engine.models import (
    Covenant,
    ExtractedCovenant,
    ExtractedFacility,
    ExtractedObligation,
    ExtractedThresholdStep,
    FinancialInputs,
    ThresholdType,
)

CENTS = Decimal("0.01")


class PortfolioGenerator(BaseGenerator):
    """Generate extracted credit facilities."""

    FISCAL_YEAR_ENDS = ["12-31", "12-31", "12-31", "03-31", "06-30", "09-30"]
    CURRENCIES = ["USD", "USD", "EUR", "GBP"]
    FACILITY_KINDS = ["Term Loan B", "Revolving Credit Facility", "Term Loan A", "Delayed Draw Term Loan"]

    # (source type, name, frequency, deadline days, grace days, roles)
    OBLIGATIONS = [
        ("annual_financials", "Annual Audited Financial Statements", "annual", 120, 30, ["agent", "lenders"]),
        ("quarterly_financials", "Quarterly Financial Statements", "quarterly", 45, 10, ["agent", "lenders"]),
        ("compliance_certificate", "Compliance Certificate", "quarterly", 45, 5, ["agent"]),
        ("budget", "Annual Budget", "annual", 60, 0, ["agent"]),
        ("event_notice", "Notice of Default", "on_occurrence", 5, 0, ["agent"]),
    ]

    def generate(self, start: date) -> ExtractedFacility:
        """Generate a facility closing around ``start``.

        Parameters
        ----------
        start : date
            Approximate closing date; maturities fall 3 to 7 years later.

        Returns
        -------
        ExtractedFacility
            Facility with its obligations and covenants.
        """
        borrower = self.fake.company()
        closing = start - timedelta(days=random.randint(0, 365))
        maturity = closing + relativedelta(years=random.randint(3, 7))
        fiscal_year_end = random.choice(self.FISCAL_YEAR_ENDS)
        source_id = f"DOC-{self.fake.unique.bothify('####-????').upper()}"

        obligations = []
        for index, (kind, name, frequency, days, grace, roles) in enumerate(self.OBLIGATIONS):
            obligations.append(
                ExtractedObligation(
                    source_obligation_id=f"{source_id}-OBL-{index + 1}",
                    obligation_type=kind,
                    name=name,
                    frequency=frequency,
                    deadline_days=days,
                    reference_point="fiscal_year_end" if frequency == "annual" else "period_end",
                    deadline_business_days=random.random() < 0.5,
                    grace_period_days=grace,
                    recipient_roles=list(roles),
                    requires_certification=kind == "compliance_certificate",
                    clause_reference=f"Section {random.randint(5, 9)}.{random.randint(1, 12):02d}",
                )
            )

        return ExtractedFacility(
            source_facility_id=source_id,
            facility_name=f"{borrower} {random.choice(self.FACILITY_KINDS)}",
            borrower_name=borrower,
            maturity_date=maturity,
            fiscal_year_end=fiscal_year_end,
            reporting_currency=random.choice(self.CURRENCIES),
            obligations=obligations,
            covenants=self._covenants(source_id, closing),
        )

    def generate_batch(self, count: int, start: date) -> Iterator[ExtractedFacility]:
        for _ in range(count):
            yield self.generate(start)

    def _covenants(self, source_id: str, closing: date) -> list[ExtractedCovenant]:
        opening = Decimal(str(random.choice([4.5, 5.0, 5.5, 6.0])))
        step_down = Decimal("0.25")
        leverage_steps = [
            ExtractedThresholdStep(closing + relativedelta(years=year), opening - step_down * year)
            for year in range(3)
        ]
        has_cure = random.random() < 0.7
        return [
            ExtractedCovenant(
                source_covenant_id=f"{source_id}-COV-1",
                covenant_type="leverage_ratio",
                name="Total Net Leverage Ratio",
                threshold_type="maximum",
                threshold_schedule=leverage_steps,
                numerator_definition="Consolidated Total Net Debt",
                denominator_definition="Consolidated EBITDA (LTM)",
                testing_basis="rolling_4_quarters",
                has_equity_cure=has_cure,
                cure_period_days=30 if has_cure else None,
                max_cures=random.choice([2, 3, 4]) if has_cure else None,
                consecutive_cure_limit=2 if has_cure else None,
            ),
            ExtractedCovenant(
                source_covenant_id=f"{source_id}-COV-2",
                covenant_type="interest_coverage",
                name="Interest Coverage Ratio",
                threshold_type="minimum",
                threshold_schedule=[
                    ExtractedThresholdStep(closing, Decimal(str(random.choice([2.0, 2.5, 3.0]))))
                ],
                numerator_definition="Consolidated EBITDA",
                denominator_definition="Consolidated Interest Expense",
            ),
        ]


class FinancialsGenerator(BaseGenerator):
    """Generate reported figures for covenant tests.

    Ratios are drawn around the threshold in force: most pass with some
    headroom, ``breach_rate`` of them fail.
    """

    def __init__(self, seed: int | None = None, breach_rate: float = 0.15) -> None:
        super().__init__(seed)
        self.breach_rate = breach_rate

    def generate(self, covenant: Covenant, test_date: date, submitted_by: str | None = None) -> FinancialInputs:
        threshold = resolve_threshold(covenant, test_date).threshold_value
        if random.random() < self.breach_rate:
            margin = Decimal(str(round(random.uniform(-0.15, -0.01), 4)))
        else:
            margin = Decimal(str(round(random.uniform(0.02, 0.40), 4)))
        if covenant.threshold_type == ThresholdType.MAXIMUM:
            ratio = threshold * (1 - margin)
        else:
            ratio = threshold * (1 + margin)

        denominator = Decimal(random.randint(20, 500) * 1000)
        numerator = (ratio * denominator).quantize(CENTS, rounding=ROUND_HALF_UP)
        return FinancialInputs(
            numerator=numerator,
            denominator=denominator,
            test_date=test_date,
            submitted_by=submitted_by or self.fake.email(),
        )
