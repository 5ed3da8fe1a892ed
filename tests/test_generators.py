"""Tests for sample portfolio generators."""

from datetime import date
from decimal import Decimal

from compliance_engine.clock import FixedClock
from compliance_engine.evaluator import evaluate, resolve_threshold
from compliance_engine.generators import FinancialsGenerator, PortfolioGenerator
from compliance_engine.importer import import_facility
from compliance_engine.models import Covenant, TestOutcome
from compliance_engine.store import InMemoryComplianceStore

START = date(2025, 1, 1)


class TestPortfolioGenerator:
    """Tests for PortfolioGenerator."""

    def test_generate_facility(self, seed: int) -> None:
        """Test facility generation."""
        gen = PortfolioGenerator(seed=seed)
        facility = gen.generate(START)

        assert facility.source_facility_id.startswith("DOC-")
        assert facility.borrower_name in facility.facility_name
        assert facility.maturity_date > START
        assert facility.reporting_currency in PortfolioGenerator.CURRENCIES
        assert len(facility.obligations) == len(PortfolioGenerator.OBLIGATIONS)
        assert [c.covenant_type for c in facility.covenants] == ["leverage_ratio", "interest_coverage"]

    def test_leverage_steps_down(self, seed: int) -> None:
        """Test that the leverage schedule tightens each year."""
        facility = PortfolioGenerator(seed=seed).generate(START)

        steps = facility.covenants[0].threshold_schedule
        assert len(steps) == 3
        assert steps[0].threshold_value - steps[1].threshold_value == Decimal("0.25")
        assert steps[0].effective_from <= START

    def test_generate_batch_unique_sources(self, seed: int) -> None:
        gen = PortfolioGenerator(seed=seed)
        facilities = list(gen.generate_batch(5, START))

        assert len({f.source_facility_id for f in facilities}) == 5

    def test_reproducible(self) -> None:
        first = PortfolioGenerator(seed=7).generate(START)
        second = PortfolioGenerator(seed=7).generate(START)

        assert first.facility_name == second.facility_name
        assert first.maturity_date == second.maturity_date

    def test_imports_cleanly(self, seed: int, store: InMemoryComplianceStore, clock: FixedClock) -> None:
        """Test that generated extraction passes import validation."""
        for extracted in PortfolioGenerator(seed=seed).generate_batch(3, START):
            import_facility(store, extracted, activation_date=START, clock=clock)

        assert store.summary()["facilities"] == 3
        assert store.summary()["covenants"] == 6


class TestFinancialsGenerator:
    """Tests for FinancialsGenerator."""

    def test_passing_inputs(self, seed: int, leverage_covenant: Covenant, coverage_covenant: Covenant) -> None:
        """Test that a zero breach rate yields passing tests."""
        gen = FinancialsGenerator(seed=seed, breach_rate=0.0)

        for covenant in (leverage_covenant, coverage_covenant):
            inputs = gen.generate(covenant, date(2025, 3, 31))
            assert inputs.submitted_by is not None
            assert inputs.numerator == inputs.numerator.quantize(Decimal("0.01"))
            assert evaluate(covenant, inputs).outcome == TestOutcome.PASS

    def test_breaching_inputs(self, seed: int, leverage_covenant: Covenant, coverage_covenant: Covenant) -> None:
        """Test that a full breach rate yields failing tests."""
        gen = FinancialsGenerator(seed=seed, breach_rate=1.0)

        for covenant in (leverage_covenant, coverage_covenant):
            inputs = gen.generate(covenant, date(2025, 3, 31), submitted_by="cfo@acme.com")
            test = evaluate(covenant, inputs)
            assert inputs.submitted_by == "cfo@acme.com"
            assert test.outcome == TestOutcome.FAIL_PENDING
            assert test.threshold_value == resolve_threshold(covenant, date(2025, 3, 31)).threshold_value
