"""Daily recompute job.

Each tick runs the recompute steps for every open facility in parallel.
Within a facility the steps run in order under the facility lock, so a
tick never interleaves with manual actions on the same facility. A
transient failure is retried with exponential backoff; an integrity
failure pauses the facility until it is resumed by an operator.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable

from compliance_engine.config import RecomputeConfig
from compliance_engine.exceptions import IntegrityError, TransientError
from compliance_engine.logging import log_context
from compliance_engine.models import ActivityType, FacilityStatus
from compliance_engine.service import ComplianceService

logger = logging.getLogger(__name__)

STEPS = ("generate", "evaluate", "advance", "reminders", "status")


@dataclass
class FacilityRunResult:
    """Outcome of one facility in one tick."""

    facility_id: str
    steps_completed: list[str] = field(default_factory=list)
    events_created: int = 0
    tests_evaluated: int = 0
    deadlines_advanced: int = 0
    reminders_changed: int = 0
    reminders_fired: int = 0
    status: FacilityStatus | None = None
    paused: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class TickResult:
    """Outcome of one tick across the portfolio."""

    started_at: datetime
    finished_at: datetime | None = None
    facilities: list[FacilityRunResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failed(self) -> list[FacilityRunResult]:
        return [r for r in self.facilities if not r.ok]


class RecomputeJob:
    """Runs the recompute steps for every facility on each tick.

    Parameters
    ----------
    service : ComplianceService
        Service whose repository, clock, locks and notifier are used.
    config : RecomputeConfig | None
        Worker count, retry and tick interval settings. Defaults to the
        service's engine config.
    sleep : Callable[[float], None]
        Used for retry backoff.
    """

    def __init__(
        self,
        service: ComplianceService,
        config: RecomputeConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.service = service
        self.config = config or service.config.recompute
        self.sleep = sleep
        self.paused: set[str] = set()
        self._cancel = threading.Event()

    @property
    def repository(self):
        return self.service.repository

    def cancel(self) -> None:
        """Stop scheduling further facilities; running steps finish."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def resume_facility(self, facility_id: str) -> None:
        """Clear the pause flag set by an integrity failure."""
        self.paused.discard(facility_id)
        logger.info("Recompute resumed for facility %s", facility_id)

    def run_tick(self, now: datetime | None = None) -> TickResult:
        """Run one tick over all open, non-paused facilities."""
        now = now or self.service.clock.now()
        result = TickResult(started_at=now)

        facility_ids = []
        for facility in self.repository.list_facilities():
            if facility.is_closed or facility.facility_id in self.paused:
                result.skipped.append(facility.facility_id)
            else:
                facility_ids.append(facility.facility_id)

        logger.info(
            "Recompute tick started: %d facilities (%d skipped)",
            len(facility_ids),
            len(result.skipped),
            extra=log_context(tick=now),
        )

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = {
                executor.submit(self._run_if_not_cancelled, facility_id, now): facility_id
                for facility_id in facility_ids
            }
            for future in as_completed(futures):
                facility_result = future.result()
                if facility_result is None:
                    result.cancelled = True
                    continue
                result.facilities.append(facility_result)

        result.facilities.sort(key=lambda r: r.facility_id)
        result.finished_at = self.service.clock.now()
        logger.info(
            "Recompute tick finished: %d ok, %d failed%s",
            len(result.facilities) - len(result.failed),
            len(result.failed),
            " (cancelled)" if result.cancelled else "",
            extra=log_context(tick=now),
        )
        return result

    def _run_if_not_cancelled(self, facility_id: str, now: datetime) -> FacilityRunResult | None:
        if self.cancelled:
            return None
        return self.run_facility(facility_id, now)

    def run_facility(self, facility_id: str, now: datetime | None = None) -> FacilityRunResult:
        """Run every step for one facility under its lock."""
        now = now or self.service.clock.now()
        as_of = now.date()
        result = FacilityRunResult(facility_id=facility_id)

        with self.service.locks.hold(facility_id):
            for step in STEPS:
                try:
                    self._run_step(step, facility_id, as_of, now, result)
                except IntegrityError as exc:
                    self._pause(facility_id, step, now, exc)
                    result.paused = True
                    result.error = str(exc)
                    break
                except Exception as exc:
                    logger.exception(
                        "Recompute step %s failed for facility %s",
                        step,
                        facility_id,
                        extra=log_context(facility_id=facility_id, step=step, tick=now),
                    )
                    result.error = f"{type(exc).__name__}: {exc}"
                    break
                result.steps_completed.append(step)
        return result

    def _run_step(
        self,
        step: str,
        facility_id: str,
        as_of: date,
        now: datetime,
        result: FacilityRunResult,
    ) -> None:
        attempt = 0
        while True:
            try:
                with self.repository.transaction(facility_id):
                    self._execute(step, facility_id, as_of, now, result)
                return
            except TransientError:
                if attempt >= self.config.max_retries:
                    raise
                delay = self.config.backoff_seconds * 2**attempt
                attempt += 1
                logger.warning(
                    "Transient failure in step %s for facility %s, retry %d/%d in %.2fs",
                    step,
                    facility_id,
                    attempt,
                    self.config.max_retries,
                    delay,
                    extra=log_context(facility_id=facility_id, step=step, tick=now),
                )
                self.sleep(delay)

    def _execute(
        self,
        step: str,
        facility_id: str,
        as_of: date,
        now: datetime,
        result: FacilityRunResult,
    ) -> None:
        service = self.service
        if step == "generate":
            result.events_created = service.generate_and_refresh_events(facility_id, as_of, now)
        elif step == "evaluate":
            result.tests_evaluated = service.evaluate_queued_inputs(facility_id, now)
        elif step == "advance":
            result.deadlines_advanced = service.advance_deadlines(facility_id, as_of, now)
        elif step == "reminders":
            result.reminders_changed = service.sync_reminders(facility_id, now)
            result.reminders_fired = service.dispatch_due_reminders(facility_id, now)
        elif step == "status":
            result.status = service.refresh_facility_status(facility_id, as_of)
        else:
            raise ValueError(f"Unknown recompute step: {step}")

    def _pause(self, facility_id: str, step: str, now: datetime, exc: IntegrityError) -> None:
        self.paused.add(facility_id)
        logger.error(
            "Integrity failure in step %s, recompute paused for facility %s: %s",
            step,
            facility_id,
            exc,
            extra=log_context(facility_id=facility_id, step=step, tick=now),
        )
        self.repository.log_activity(
            facility_id,
            ActivityType.RECOMPUTE_PAUSED,
            "facility",
            facility_id,
            f"Recompute paused after integrity failure in step {step}",
            now,
            {"step": step, "error": str(exc)},
        )

    def run_forever(self, interval: float | None = None, max_ticks: int | None = None) -> int:
        """Tick every ``interval`` seconds until cancelled; return the tick count."""
        interval = self.config.tick_interval_seconds if interval is None else interval
        ticks = 0
        while not self.cancelled:
            self.run_tick()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            if self._cancel.wait(interval):
                break
        return ticks
