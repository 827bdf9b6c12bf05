"""Record store clients for admissions, consultations and their auxiliary tables."""

from __future__ import annotations

import json
from copy import deepcopy
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Protocol

from sqlalchemy import Table, and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.sql import Select, Update

from repositories.retry import ReadRetryPolicy, read_with_retry
from repositories.schema import (
    ADMISSIONS_TABLE,
    APPOINTMENTS_TABLE,
    CONSULTATIONS_TABLE,
    DAILY_REPORTS_TABLE,
    clinic_appointments,
    consultations,
    daily_reports,
    patients,
)
from shared.models.census import AdmissionStatus, ConsultationStatus

_FIXTURE_DIRECTORY = Path(__file__).parent / "fixtures" / "census"

_TABLE_NAMES: tuple[str, ...] = (
    ADMISSIONS_TABLE,
    CONSULTATIONS_TABLE,
    APPOINTMENTS_TABLE,
    DAILY_REPORTS_TABLE,
)

_COLUMNS: dict[str, frozenset[str]] = {
    table.name: frozenset(table.c.keys())
    for table in (patients, consultations, clinic_appointments, daily_reports)
}

_STATUS_COLUMNS: dict[str, str] = {
    ADMISSIONS_TABLE: "patient_status",
    CONSULTATIONS_TABLE: "status",
}

_ACTIVE_STATUS: dict[str, str] = {
    ADMISSIONS_TABLE: AdmissionStatus.ACTIVE.value,
    CONSULTATIONS_TABLE: ConsultationStatus.ACTIVE.value,
}

_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (SQLAlchemyError, OSError)

Row = dict[str, Any]


class StoreError(RuntimeError):
    """Raised when the record store rejects or fails a query or update."""

    def __init__(self, message: str, *, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table


class RecordMissingError(StoreError):
    """Raised when an update matched no row."""

    def __init__(self, table: str, mrn: str) -> None:
        super().__init__(f"No Active row in '{table}' has mrn '{mrn}'.", table=table)
        self.mrn = mrn


class FixtureLoadError(RuntimeError):
    """Raised when census fixtures cannot be loaded from disk."""

    def __init__(self, errors: list[str], tables: dict[str, list[Row]] | None = None) -> None:
        message = "Failed to load census fixtures:\n" + "\n".join(errors)
        super().__init__(message)
        self.errors = errors
        self.tables: dict[str, list[Row]] = tables or {}


class RecordStore(Protocol):
    """Query contract the census core issues against persistent storage."""

    async def fetch_admissions(self, *, discharged_since: datetime) -> list[Row]:
        """Return active admissions plus those discharged since ``discharged_since``."""

    async def fetch_active_admissions(self) -> list[Row]:
        """Return admissions whose status is ``Active``."""

    async def fetch_consultations(self) -> list[Row]:
        """Return every consultation, newest first."""

    async def fetch_active_consultations(self) -> list[Row]:
        """Return consultations whose status is ``Active``."""

    async def fetch_appointments(self) -> list[Row]:
        """Return every clinic appointment, newest first."""

    async def fetch_daily_reports(self, report_date: date) -> list[Row]:
        """Return the daily reports filed for ``report_date``."""

    async def update_admission(self, mrn: str, changes: Mapping[str, Any]) -> None:
        """Apply ``changes`` to the Active ``patients`` row keyed by ``mrn``.

        Raises :class:`RecordMissingError` when no Active row matches, so a
        terminal row is never rewritten.
        """

    async def update_consultation(self, mrn: str, changes: Mapping[str, Any]) -> None:
        """Apply ``changes`` to the Active ``consultations`` row keyed by ``mrn``."""


# ---------------------------------------------------------------------------
# SQL queries
# ---------------------------------------------------------------------------


def admissions_query(discharged_since: datetime) -> Select:
    """Active census plus admissions discharged inside the trailing window."""

    status = patients.c.patient_status
    return (
        select(patients)
        .where(
            or_(
                status == AdmissionStatus.ACTIVE.value,
                and_(
                    status == AdmissionStatus.DISCHARGED.value,
                    patients.c.updated_at >= discharged_since,
                ),
            )
        )
        .order_by(patients.c.admission_date.desc())
    )


def active_admissions_query() -> Select:
    return (
        select(patients)
        .where(patients.c.patient_status == AdmissionStatus.ACTIVE.value)
        .order_by(patients.c.admission_date.desc())
    )


def consultations_query() -> Select:
    return select(consultations).order_by(consultations.c.created_at.desc())


def active_consultations_query() -> Select:
    return (
        select(consultations)
        .where(consultations.c.status == ConsultationStatus.ACTIVE.value)
        .order_by(consultations.c.created_at.desc())
    )


def appointments_query() -> Select:
    return select(clinic_appointments).order_by(clinic_appointments.c.created_at.desc())


def daily_reports_query(report_date: date) -> Select:
    return (
        select(daily_reports)
        .where(daily_reports.c.report_date == report_date)
        .order_by(daily_reports.c.created_at.desc())
    )


def active_row_update(table: Table, mrn: str, changes: Mapping[str, Any]) -> Update:
    """``UPDATE`` of the row keyed by ``mrn`` that only matches while it is Active."""

    status_column = table.c[_STATUS_COLUMNS[table.name]]
    return (
        update(table)
        .where(table.c.mrn == mrn, status_column == _ACTIVE_STATUS[table.name])
        .values(**dict(changes))
    )


class SqlRecordStore:
    """Record store backed by an async SQLAlchemy engine."""

    def __init__(
        self,
        database_url: str | None = None,
        *,
        engine: AsyncEngine | None = None,
        read_policy: ReadRetryPolicy | None = None,
        echo: bool = False,
    ) -> None:
        if engine is None:
            if not database_url:
                raise ValueError("SqlRecordStore requires a database URL or an engine.")
            engine = create_async_engine(database_url, echo=echo)
        self._engine: AsyncEngine = engine
        self._read_policy = read_policy or ReadRetryPolicy(retry_exceptions=_RETRYABLE_ERRORS)

    async def _fetch(self, table: str, statement: Select) -> list[Row]:
        async def _run() -> list[Row]:
            async with self._engine.connect() as connection:
                result = await connection.execute(statement)
                return [dict(row) for row in result.mappings()]

        try:
            return await read_with_retry(_run, policy=self._read_policy)
        except _RETRYABLE_ERRORS as exc:
            raise StoreError(f"Query against '{table}' failed: {exc}", table=table) from exc

    async def _update(self, table: Table, mrn: str, changes: Mapping[str, Any]) -> None:
        _validate_changes(table.name, changes, table.c.keys())
        statement = active_row_update(table, mrn, changes)
        try:
            async with self._engine.begin() as connection:
                result = await connection.execute(statement)
        except _RETRYABLE_ERRORS as exc:
            raise StoreError(f"Update of '{table.name}' failed: {exc}", table=table.name) from exc
        if result.rowcount == 0:
            raise RecordMissingError(table.name, mrn)

    async def fetch_admissions(self, *, discharged_since: datetime) -> list[Row]:
        return await self._fetch(ADMISSIONS_TABLE, admissions_query(discharged_since))

    async def fetch_active_admissions(self) -> list[Row]:
        return await self._fetch(ADMISSIONS_TABLE, active_admissions_query())

    async def fetch_consultations(self) -> list[Row]:
        return await self._fetch(CONSULTATIONS_TABLE, consultations_query())

    async def fetch_active_consultations(self) -> list[Row]:
        return await self._fetch(CONSULTATIONS_TABLE, active_consultations_query())

    async def fetch_appointments(self) -> list[Row]:
        return await self._fetch(APPOINTMENTS_TABLE, appointments_query())

    async def fetch_daily_reports(self, report_date: date) -> list[Row]:
        return await self._fetch(DAILY_REPORTS_TABLE, daily_reports_query(report_date))

    async def update_admission(self, mrn: str, changes: Mapping[str, Any]) -> None:
        await self._update(patients, mrn, changes)

    async def update_consultation(self, mrn: str, changes: Mapping[str, Any]) -> None:
        await self._update(consultations, mrn, changes)

    async def dispose(self) -> None:
        """Dispose of the underlying engine."""

        await self._engine.dispose()


# ---------------------------------------------------------------------------
# Fixture-backed store
# ---------------------------------------------------------------------------


def _validate_changes(table: str, changes: Mapping[str, Any], columns: Iterable[str]) -> None:
    if not changes:
        raise StoreError(f"Refusing an empty update against '{table}'.", table=table)
    unknown = set(changes).difference(columns)
    if unknown:
        raise StoreError(
            f"Unknown columns for '{table}': {', '.join(sorted(unknown))}", table=table
        )


def _sortable(value: Any) -> datetime | None:
    """Return ``value`` as an aware datetime for ordering and range checks.

    Naive values are read as UTC, matching how ``timestamptz`` columns are
    compared server-side.
    """

    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return None


def _identifier(value: Any) -> str | None:
    # Integer keys in fixtures are read back as the strings the mappers produce.
    return None if value is None else str(value)


def _as_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _newest_first(rows: Iterable[Row], column: str) -> list[Row]:
    minimum = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(
        rows,
        key=lambda row: _sortable(row.get(column)) or minimum,
        reverse=True,
    )


def load_census_fixtures(directory: Path) -> dict[str, list[Row]]:
    """Load ``<table>.json`` row lists from ``directory``."""

    tables: dict[str, list[Row]] = {}
    errors: list[str] = []

    for name in _TABLE_NAMES:
        path = directory / f"{name}.json"
        if not path.exists():
            continue
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            errors.append(f"{path}: invalid JSON ({exc.msg})")
            continue
        if not isinstance(payload, list) or not all(
            isinstance(row, Mapping) for row in payload
        ):
            errors.append(f"{path}: top-level JSON payload must be a list of objects")
            continue
        tables[name] = [dict(row) for row in payload]

    if errors:
        raise FixtureLoadError(errors, tables)

    return tables


class FixtureRecordStore:
    """In-memory record store seeded from row lists or JSON fixtures."""

    def __init__(self, tables: Mapping[str, Iterable[Mapping[str, Any]]] | None = None) -> None:
        source = tables or {}
        self._tables: dict[str, list[Row]] = {
            name: [dict(deepcopy(row)) for row in source.get(name, ())]
            for name in _TABLE_NAMES
        }
        self.updates: list[tuple[str, str, Row]] = []

    @classmethod
    def from_directory(cls, directory: Path | None = None) -> "FixtureRecordStore":
        """Build a store from the fixture files under ``directory``."""

        resolved = directory or _FIXTURE_DIRECTORY
        if not resolved.exists():
            return cls()
        return cls(load_census_fixtures(resolved))

    def rows(self, table: str) -> list[Row]:
        """Return a copy of every row currently held for ``table``."""

        return deepcopy(self._tables[table])

    def _select(
        self,
        table: str,
        predicate: Callable[[Row], bool] | None = None,
        *,
        order_by: str,
    ) -> list[Row]:
        rows = [row for row in self._tables[table] if predicate is None or predicate(row)]
        return deepcopy(_newest_first(rows, order_by))

    async def fetch_admissions(self, *, discharged_since: datetime) -> list[Row]:
        since = _sortable(discharged_since)

        def _visible(row: Row) -> bool:
            status = row.get("patient_status")
            if status == AdmissionStatus.ACTIVE.value:
                return True
            if status != AdmissionStatus.DISCHARGED.value:
                return False
            updated_at = _sortable(row.get("updated_at"))
            return updated_at is not None and since is not None and updated_at >= since

        return self._select(ADMISSIONS_TABLE, _visible, order_by="admission_date")

    async def fetch_active_admissions(self) -> list[Row]:
        return self._select(
            ADMISSIONS_TABLE,
            lambda row: row.get("patient_status") == AdmissionStatus.ACTIVE.value,
            order_by="admission_date",
        )

    async def fetch_consultations(self) -> list[Row]:
        return self._select(CONSULTATIONS_TABLE, order_by="created_at")

    async def fetch_active_consultations(self) -> list[Row]:
        return self._select(
            CONSULTATIONS_TABLE,
            lambda row: row.get("status") == ConsultationStatus.ACTIVE.value,
            order_by="created_at",
        )

    async def fetch_appointments(self) -> list[Row]:
        return self._select(APPOINTMENTS_TABLE, order_by="created_at")

    async def fetch_daily_reports(self, report_date: date) -> list[Row]:
        return self._select(
            DAILY_REPORTS_TABLE,
            lambda row: _as_date(row.get("report_date")) == report_date,
            order_by="created_at",
        )

    def _update(self, table: str, mrn: str, changes: Mapping[str, Any]) -> None:
        _validate_changes(table, changes, _COLUMNS[table])
        status_column = _STATUS_COLUMNS[table]
        matched = [
            row
            for row in self._tables[table]
            if _identifier(row.get("mrn")) == mrn
            and row.get(status_column) == _ACTIVE_STATUS[table]
        ]
        if not matched:
            raise RecordMissingError(table, mrn)
        for row in matched:
            row.update(deepcopy(dict(changes)))
        self.updates.append((table, mrn, deepcopy(dict(changes))))

    async def update_admission(self, mrn: str, changes: Mapping[str, Any]) -> None:
        self._update(ADMISSIONS_TABLE, mrn, changes)

    async def update_consultation(self, mrn: str, changes: Mapping[str, Any]) -> None:
        self._update(CONSULTATIONS_TABLE, mrn, changes)


def build_record_store(
    database_url: str | None,
    *,
    fixtures_path: Path | None = None,
    read_attempts: int = 3,
    echo: bool = False,
) -> RecordStore:
    """Return a SQL store when ``database_url`` is set, fixtures otherwise."""

    if database_url:
        policy = ReadRetryPolicy(attempts=read_attempts, retry_exceptions=_RETRYABLE_ERRORS)
        return SqlRecordStore(database_url, read_policy=policy, echo=echo)
    return FixtureRecordStore.from_directory(fixtures_path)


__all__ = [
    "FixtureLoadError",
    "FixtureRecordStore",
    "RecordMissingError",
    "RecordStore",
    "Row",
    "SqlRecordStore",
    "StoreError",
    "active_admissions_query",
    "active_consultations_query",
    "active_row_update",
    "admissions_query",
    "appointments_query",
    "build_record_store",
    "consultations_query",
    "daily_reports_query",
    "load_census_fixtures",
]
