#!/usr/bin/env python3
"""Simulate the compliance engine over a sample portfolio.

Generates facilities from synthetic extraction records, then runs one
recompute tick per simulated day. Covenant financials are queued at each
quarter end and evaluated by the next tick; due reminders are emitted to
the console or to Kafka.
"""

import argparse
import logging
import signal
import sys
import time
from datetime import date, datetime, timedelta
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from compliance_engine.calendar import is_month_end
from compliance_engine.clock import FixedClock
from compliance_engine.config import EngineConfig, KafkaConfig
from compliance_engine.generators import FinancialsGenerator, PortfolioGenerator
from compliance_engine.importer import import_facility
from compliance_engine.job import RecomputeJob
from compliance_engine.logging import setup_logging
from compliance_engine.notifiers import ConsoleNotifier, KafkaNotifier
from compliance_engine.service import ComplianceService
from compliance_engine.store import InMemoryComplianceStore, PostgresComplianceStore

logger = logging.getLogger(__name__)

QUARTER_END_MONTHS = (3, 6, 9, 12)


def build_portfolio(
    service: ComplianceService,
    count: int,
    seed: int,
    start: date,
) -> int:
    """Import ``count`` generated facilities; return the number of covenants."""
    generator = PortfolioGenerator(seed=seed)
    covenants = 0
    for extracted in generator.generate_batch(count, start):
        result = import_facility(service.repository, extracted, activation_date=start, clock=service.clock)
        covenants += len(result.covenants)
    logger.info("Imported %d facilities with %d covenants", count, covenants)
    return covenants


def queue_quarter_end_financials(service: ComplianceService, financials: FinancialsGenerator, day: date) -> int:
    """Queue one test per covenant when ``day`` is a quarter end."""
    if day.month not in QUARTER_END_MONTHS or not is_month_end(day):
        return 0
    queued = 0
    for facility in service.repository.list_facilities():
        for covenant in service.repository.list_covenants(facility.facility_id):
            if not covenant.is_active or covenant.threshold_schedule[0].effective_from > day:
                continue
            service.queue_financial_inputs(covenant.covenant_id, financials.generate(covenant, day))
            queued += 1
    return queued


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run the compliance recompute job over a sample portfolio")
    parser.add_argument(
        "--facilities",
        type=int,
        default=10,
        help="Number of facilities to generate (default: 10)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed for reproducibility (default: 42)",
    )
    parser.add_argument(
        "--start",
        type=date.fromisoformat,
        default=date(2025, 1, 1),
        help="First simulated day, YYYY-MM-DD (default: 2025-01-01)",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=90,
        help="Number of simulated days, one tick per day (default: 90)",
    )
    parser.add_argument(
        "--breach-rate",
        type=float,
        default=0.15,
        help="Share of covenant tests that fail (default: 0.15)",
    )
    parser.add_argument(
        "--notifier",
        choices=["console", "kafka"],
        default="console",
        help="Where due reminders are sent (default: console)",
    )
    parser.add_argument(
        "--kafka-bootstrap",
        type=str,
        default=None,
        help="Kafka bootstrap servers (default: from KAFKA_BOOTSTRAP_SERVERS)",
    )
    parser.add_argument(
        "--postgres",
        action="store_true",
        help="Persist to PostgreSQL (POSTGRES_* environment) instead of memory",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Log level (default: from LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON",
    )
    args = parser.parse_args()

    config = EngineConfig.from_env()
    setup_logging(args.log_level or config.log_level, "json" if args.json_logs else "standard")

    if args.postgres:
        repository = PostgresComplianceStore(config.postgres.connection_string)
        repository.create_tables()
    else:
        repository = InMemoryComplianceStore()

    if args.notifier == "kafka":
        kafka_config = config.kafka
        if args.kafka_bootstrap:
            kafka_config = KafkaConfig(bootstrap_servers=args.kafka_bootstrap, topic=config.kafka.topic)
        notifier = KafkaNotifier(kafka_config)
    else:
        notifier = ConsoleNotifier(pretty=False)

    clock = FixedClock(args.start)
    service = ComplianceService(repository, clock=clock, config=config, notifier=notifier)
    job = RecomputeJob(service)

    # Graceful shutdown
    original_sigint = signal.getsignal(signal.SIGINT)

    def _signal_handler(signum: int, frame: object) -> None:
        logger.info("Shutdown requested, finishing current tick...")
        job.cancel()

    signal.signal(signal.SIGINT, _signal_handler)

    t0 = time.perf_counter()
    build_portfolio(service, args.facilities, args.seed, args.start)
    financials = FinancialsGenerator(seed=args.seed, breach_rate=args.breach_rate)

    ticks = failed = queued = 0
    try:
        for offset in range(args.days):
            if job.cancelled:
                break
            day = args.start + timedelta(days=offset)
            clock.set(datetime.combine(day, config.reminder_send_time))
            result = job.run_tick()
            ticks += 1
            failed += len(result.failed)
            queued += queue_quarter_end_financials(service, financials, day)
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        notifier.close()

    elapsed = time.perf_counter() - t0
    summary = service.dashboard_summary()
    logger.info("=" * 60)
    logger.info("Simulation complete: %d ticks in %.1fs", ticks, elapsed)
    logger.info("=" * 60)
    logger.info("Facilities by status: %s", summary.facilities_by_status)
    logger.info("Covenant tests queued: %d", queued)
    logger.info("Overdue events: %d", summary.overdue)
    logger.info("Events due within 7 / 30 days: %d / %d", summary.upcoming_7_days, summary.upcoming_30_days)
    logger.info("Pending waivers: %d", summary.pending_waivers)
    logger.info("Covenants at risk: %d", len(summary.facilities_at_risk))
    if failed:
        logger.warning("Facility runs with errors: %d", failed)
    if isinstance(repository, InMemoryComplianceStore):
        for entity, count in repository.summary().items():
            logger.info("  - %s: %d", entity, count)


if __name__ == "__main__":
    main()
