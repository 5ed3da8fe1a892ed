"""PostgreSQL compliance store (psycopg 3).

Each entity lives in its own table with a few key columns used for lookups
and the full record in a JSONB ``payload`` column.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import date
from typing import Any, Callable, Iterator, TypeVar

import psycopg
from psycopg import errors as pg_errors
from psycopg.types.json import Jsonb

from compliance_engine.exceptions import (
    EntityNotFoundError,
    IntegrityError,
    ReferentialIntegrityError,
    TransientError,
)
from compliance_engine.models import (
    Activity,
    ComplianceEvent,
    ComplianceFacility,
    Covenant,
    CovenantTest,
    CureContribution,
    ObligationTemplate,
    QueuedInputs,
    ReferenceEntity,
    Reminder,
    Waiver,
)
from compliance_engine.serialization import from_dict, to_dict
from compliance_engine.store.base import ComplianceRepository, in_range

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS compliance_facilities (
        facility_id TEXT PRIMARY KEY,
        source_facility_id TEXT,
        payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS compliance_obligations (
        obligation_id TEXT PRIMARY KEY,
        facility_id TEXT NOT NULL REFERENCES compliance_facilities (facility_id),
        payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS compliance_events (
        event_id TEXT PRIMARY KEY,
        facility_id TEXT NOT NULL REFERENCES compliance_facilities (facility_id),
        obligation_id TEXT NOT NULL REFERENCES compliance_obligations (obligation_id),
        reference_period_start DATE NOT NULL,
        reference_period_end DATE NOT NULL,
        deadline_date DATE NOT NULL,
        payload JSONB NOT NULL
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS compliance_events_period_key
        ON compliance_events (obligation_id, reference_period_start, reference_period_end)
    """,
    """
    CREATE TABLE IF NOT EXISTS covenants (
        covenant_id TEXT PRIMARY KEY,
        facility_id TEXT NOT NULL REFERENCES compliance_facilities (facility_id),
        payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS covenant_tests (
        test_id TEXT PRIMARY KEY,
        facility_id TEXT NOT NULL REFERENCES compliance_facilities (facility_id),
        covenant_id TEXT NOT NULL REFERENCES covenants (covenant_id),
        test_date DATE NOT NULL,
        payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cure_contributions (
        contribution_id TEXT PRIMARY KEY,
        test_id TEXT NOT NULL REFERENCES covenant_tests (test_id),
        payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS queued_financial_inputs (
        queue_id TEXT PRIMARY KEY,
        facility_id TEXT NOT NULL REFERENCES compliance_facilities (facility_id),
        processed BOOLEAN NOT NULL DEFAULT FALSE,
        payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS waivers (
        waiver_id TEXT PRIMARY KEY,
        facility_id TEXT NOT NULL REFERENCES compliance_facilities (facility_id),
        payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reminders (
        reminder_id TEXT PRIMARY KEY,
        facility_id TEXT NOT NULL REFERENCES compliance_facilities (facility_id),
        reference_kind TEXT NOT NULL,
        reference_id TEXT NOT NULL,
        payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS compliance_activities (
        activity_id TEXT PRIMARY KEY,
        facility_id TEXT NOT NULL REFERENCES compliance_facilities (facility_id),
        occurred_at TIMESTAMPTZ NOT NULL,
        payload JSONB NOT NULL
    )
    """,
]

# Table name, primary key column and extra key columns per entity type
TABLES: dict[type, tuple[str, str, tuple[str, ...]]] = {
    ComplianceFacility: ("compliance_facilities", "facility_id", ("source_facility_id",)),
    ObligationTemplate: ("compliance_obligations", "obligation_id", ("facility_id",)),
    ComplianceEvent: (
        "compliance_events",
        "event_id",
        ("facility_id", "obligation_id", "reference_period_start", "reference_period_end", "deadline_date"),
    ),
    Covenant: ("covenants", "covenant_id", ("facility_id",)),
    CovenantTest: ("covenant_tests", "test_id", ("facility_id", "covenant_id", "test_date")),
    CureContribution: ("cure_contributions", "contribution_id", ("test_id",)),
    QueuedInputs: ("queued_financial_inputs", "queue_id", ("facility_id", "processed")),
    Waiver: ("waivers", "waiver_id", ("facility_id",)),
    Activity: ("compliance_activities", "activity_id", ("facility_id", "occurred_at")),
}


class PostgresComplianceStore(ComplianceRepository):
    """Compliance repository backed by PostgreSQL.

    Parameters
    ----------
    connection_string : str
        libpq connection string.
    connect : Callable[..., psycopg.Connection] | None
        Connection factory, ``psycopg.connect`` by default.
    """

    def __init__(
        self,
        connection_string: str,
        connect: Callable[..., psycopg.Connection] | None = None,
    ) -> None:
        self.connection_string = connection_string
        self._connect = connect or psycopg.connect
        self._local = threading.local()

    # Connection handling
    @contextmanager
    def _connection(self) -> Iterator[psycopg.Connection]:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            # Inside transaction(): reuse the open connection
            yield conn
            return
        try:
            with self._connect(self.connection_string) as conn:
                yield conn
        except psycopg.OperationalError as exc:
            raise TransientError(f"PostgreSQL unavailable: {exc}") from exc

    @contextmanager
    def transaction(self, facility_id: str) -> Iterator[None]:
        """Run the enclosed writes in one transaction on one connection."""
        if getattr(self._local, "conn", None) is not None:
            yield
            return
        try:
            with self._connect(self.connection_string) as conn:
                self._local.conn = conn
                try:
                    with conn.transaction():
                        yield
                finally:
                    self._local.conn = None
        except psycopg.OperationalError as exc:
            raise TransientError(f"PostgreSQL unavailable: {exc}") from exc

    def create_tables(self) -> None:
        """Create tables and indexes if they do not exist."""
        with self._connection() as conn:
            with conn.cursor() as cur:
                for statement in SCHEMA:
                    cur.execute(statement)
        logger.info("PostgreSQL compliance schema ready")

    # Generic helpers
    def _upsert(self, entity: Any, insert_only: bool = False) -> None:
        table, pk, key_columns = TABLES[type(entity)]
        columns = (pk, *key_columns, "payload")
        values = [getattr(entity, pk)]
        values += [getattr(entity, c) for c in key_columns]
        values.append(Jsonb(to_dict(entity)))
        placeholders = ", ".join(["%s"] * len(columns))
        if insert_only:
            conflict = ""
        else:
            updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in columns if c != pk)
            conflict = f" ON CONFLICT ({pk}) DO UPDATE SET {updates}"
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}){conflict}"  # noqa: S608
        with self._connection() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(sql, values)
                except pg_errors.UniqueViolation as exc:
                    raise IntegrityError(f"Duplicate {table} row: {exc}") from exc
                except pg_errors.ForeignKeyViolation as exc:
                    raise ReferentialIntegrityError(f"Missing reference for {table}: {exc}") from exc

    def _update_existing(self, entity: Any) -> None:
        table, pk, _ = TABLES[type(entity)]
        entity_id = getattr(entity, pk)
        if self._fetch_one(type(entity), entity_id) is None:
            raise EntityNotFoundError(f"{table} row {entity_id} not found")
        self._upsert(entity)

    def _fetch_one(self, cls: type[T], entity_id: str) -> T | None:
        table, pk, _ = TABLES[cls]
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT payload FROM {table} WHERE {pk} = %s", (entity_id,))  # noqa: S608
                row = cur.fetchone()
        return from_dict(cls, row[0]) if row else None

    def _get(self, cls: type[T], entity_id: str, label: str) -> T:
        entity = self._fetch_one(cls, entity_id)
        if entity is None:
            raise EntityNotFoundError(f"{label} {entity_id} not found")
        return entity

    def _fetch_where(self, cls: type[T], where: str = "", params: tuple = ()) -> list[T]:
        table, _, _ = TABLES[cls]
        sql = f"SELECT payload FROM {table}"  # noqa: S608
        if where:
            sql += f" WHERE {where}"
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
        return [from_dict(cls, row[0]) for row in rows]

    # Facilities
    def add_facility(self, facility: ComplianceFacility) -> None:
        self._upsert(facility, insert_only=True)

    def get_facility(self, facility_id: str) -> ComplianceFacility:
        return self._get(ComplianceFacility, facility_id, "Facility")

    def save_facility(self, facility: ComplianceFacility) -> None:
        self._update_existing(facility)

    def list_facilities(self) -> list[ComplianceFacility]:
        return self._fetch_where(ComplianceFacility)

    def find_facility_by_source(self, source_facility_id: str) -> ComplianceFacility | None:
        rows = self._fetch_where(ComplianceFacility, "source_facility_id = %s", (source_facility_id,))
        return rows[0] if rows else None

    # Obligation templates
    def add_obligation(self, template: ObligationTemplate) -> None:
        self._upsert(template, insert_only=True)

    def get_obligation(self, obligation_id: str) -> ObligationTemplate:
        return self._get(ObligationTemplate, obligation_id, "Obligation")

    def save_obligation(self, template: ObligationTemplate) -> None:
        self._update_existing(template)

    def list_obligations(self, facility_id: str) -> list[ObligationTemplate]:
        return self._fetch_where(ObligationTemplate, "facility_id = %s", (facility_id,))

    # Compliance events
    def add_event(self, event: ComplianceEvent) -> None:
        self._upsert(event, insert_only=True)

    def get_event(self, event_id: str) -> ComplianceEvent:
        return self._get(ComplianceEvent, event_id, "Compliance event")

    def save_event(self, event: ComplianceEvent) -> None:
        self._update_existing(event)

    def list_events(
        self,
        facility_id: str,
        start: date | None = None,
        end: date | None = None,
        obligation_id: str | None = None,
    ) -> list[ComplianceEvent]:
        events = self._fetch_where(ComplianceEvent, "facility_id = %s", (facility_id,))
        return sorted(
            (
                e
                for e in events
                if in_range(e.deadline_date, start, end)
                and (obligation_id is None or e.obligation_id == obligation_id)
            ),
            key=lambda e: (e.deadline_date, e.event_id),
        )

    # Covenants and tests
    def add_covenant(self, covenant: Covenant) -> None:
        self._upsert(covenant, insert_only=True)

    def get_covenant(self, covenant_id: str) -> Covenant:
        return self._get(Covenant, covenant_id, "Covenant")

    def save_covenant(self, covenant: Covenant) -> None:
        self._update_existing(covenant)

    def list_covenants(self, facility_id: str) -> list[Covenant]:
        return self._fetch_where(Covenant, "facility_id = %s", (facility_id,))

    def add_test(self, test: CovenantTest) -> None:
        self._upsert(test, insert_only=True)

    def get_test(self, test_id: str) -> CovenantTest:
        return self._get(CovenantTest, test_id, "Covenant test")

    def save_test(self, test: CovenantTest) -> None:
        self._update_existing(test)

    def list_tests(
        self,
        facility_id: str,
        start: date | None = None,
        end: date | None = None,
        covenant_id: str | None = None,
    ) -> list[CovenantTest]:
        tests = self._fetch_where(CovenantTest, "facility_id = %s", (facility_id,))
        return sorted(
            (
                t
                for t in tests
                if in_range(t.test_date, start, end)
                and (covenant_id is None or t.covenant_id == covenant_id)
            ),
            key=lambda t: (t.test_date, t.test_id),
        )

    def add_cure_contribution(self, contribution: CureContribution) -> None:
        self._upsert(contribution, insert_only=True)

    def list_cure_contributions(self, test_id: str) -> list[CureContribution]:
        return self._fetch_where(CureContribution, "test_id = %s", (test_id,))

    def enqueue_inputs(self, queued: QueuedInputs) -> None:
        self._upsert(queued, insert_only=True)

    def list_pending_inputs(self, facility_id: str) -> list[QueuedInputs]:
        return self._fetch_where(QueuedInputs, "facility_id = %s AND NOT processed", (facility_id,))

    def save_queued_inputs(self, queued: QueuedInputs) -> None:
        self._upsert(queued)

    # Waivers
    def add_waiver(self, waiver: Waiver) -> None:
        self._upsert(waiver, insert_only=True)

    def get_waiver(self, waiver_id: str) -> Waiver:
        return self._get(Waiver, waiver_id, "Waiver")

    def save_waiver(self, waiver: Waiver) -> None:
        self._update_existing(waiver)

    def list_waivers(
        self,
        facility_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Waiver]:
        waivers = self._fetch_where(Waiver, "facility_id = %s", (facility_id,))
        return [
            w
            for w in waivers
            if (end is None or w.waiver_period_start <= end)
            and (start is None or w.waiver_period_end >= start)
        ]

    # Reminders
    def list_reminders(self, facility_id: str, reference: ReferenceEntity | None = None) -> list[Reminder]:
        if reference is None:
            where, params = "facility_id = %s", (facility_id,)
        else:
            where = "facility_id = %s AND reference_kind = %s AND reference_id = %s"
            params = (facility_id, reference.kind.value, reference.entity_id)
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT payload FROM reminders WHERE {where}", params)  # noqa: S608
                rows = cur.fetchall()
        return [from_dict(Reminder, row[0]) for row in rows]

    def save_reminder(self, reminder: Reminder) -> None:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO reminders (reminder_id, facility_id, reference_kind, reference_id, payload)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (reminder_id) DO UPDATE SET payload = EXCLUDED.payload
                    """,
                    (
                        reminder.reminder_id,
                        reminder.facility_id,
                        reminder.reference.kind.value,
                        reminder.reference.entity_id,
                        Jsonb(to_dict(reminder)),
                    ),
                )

    def delete_reminder(self, reminder_id: str) -> None:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM reminders WHERE reminder_id = %s", (reminder_id,))

    # Activity log
    def add_activity(self, activity: Activity) -> None:
        self._upsert(activity, insert_only=True)

    def list_activities(self, facility_id: str) -> list[Activity]:
        activities = self._fetch_where(Activity, "facility_id = %s", (facility_id,))
        return sorted(activities, key=lambda a: a.occurred_at)
