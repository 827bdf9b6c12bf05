"""Tests for the census refresh pipeline and report hand-off."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import UTC, date, datetime, timedelta
from typing import Any

import pytest

from repositories.records import FixtureRecordStore, StoreError
from services.census.census import CensusService
from services.census.errors import FetchError
from services.census.notifications import NotificationLevel
from shared.models.census import AppointmentRecord, RecordOrigin, UnifiedRecord

NOW = datetime(2024, 3, 14, 15, 0, tzinfo=UTC)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _FailingStore(FixtureRecordStore):
    """Fixture store whose selected reads raise :class:`StoreError`."""

    def __init__(self, *, fail: Sequence[str] = (), slow_consultations: bool = False) -> None:
        super().__init__(FixtureRecordStore.from_directory()._tables)
        self.fail = set(fail)
        self.slow_consultations = slow_consultations
        self.completed: list[str] = []

    async def fetch_admissions(self, *, discharged_since: datetime) -> list[dict[str, Any]]:
        if "admissions" in self.fail:
            raise StoreError("admissions unavailable", table="patients")
        return await super().fetch_admissions(discharged_since=discharged_since)

    async def fetch_consultations(self) -> list[dict[str, Any]]:
        if self.slow_consultations:
            await asyncio.sleep(0.05)
        if "consultations" in self.fail:
            raise StoreError("consultations unavailable", table="consultations")
        rows = await super().fetch_consultations()
        self.completed.append("consultations")
        return rows

    async def fetch_appointments(self) -> list[dict[str, Any]]:
        if "appointments" in self.fail:
            raise StoreError("appointments unavailable", table="clinic_appointments")
        return await super().fetch_appointments()


class _RecordingAssembler:
    def __init__(self) -> None:
        self.calls: list[tuple[list[UnifiedRecord], list[AppointmentRecord], date, str | None]] = []

    def render(self, records, appointments, target_date, specialty) -> bytes:  # type: ignore[no-untyped-def]
        self.calls.append((list(records), list(appointments), target_date, specialty))
        return b"%PDF-stub"


def _service(store: FixtureRecordStore) -> CensusService:
    return CensusService(store, clock=lambda: NOW, tz=UTC)


@pytest.mark.anyio("asyncio")
async def test_refresh_loads_admissions_then_consultations() -> None:
    service = _service(FixtureRecordStore.from_directory())

    records = await service.refresh()

    assert [record.key for record in records] == [
        (RecordOrigin.ADMISSION, "A1"),
        (RecordOrigin.ADMISSION, "A2"),
        (RecordOrigin.ADMISSION, "A3"),
        (RecordOrigin.CONSULTATION, "A1"),
        (RecordOrigin.CONSULTATION, "C7"),
    ]
    assert service.last_refreshed == NOW


@pytest.mark.anyio("asyncio")
async def test_discharged_admissions_outside_window_are_hidden() -> None:
    store = FixtureRecordStore.from_directory()
    service = CensusService(
        store,
        clock=lambda: NOW + timedelta(days=3),
        discharge_window=timedelta(hours=48),
    )

    records = await service.refresh()

    assert (RecordOrigin.ADMISSION, "A3") not in [record.key for record in records]


@pytest.mark.anyio("asyncio")
async def test_refresh_keeps_previous_records_when_a_fetch_fails() -> None:
    store = _FailingStore()
    service = _service(store)
    before = await service.refresh()
    service.notifications.drain()

    store.fail = {"admissions"}
    after = await service.refresh()

    assert after == before
    [notification] = service.notifications.drain()
    assert notification.level is NotificationLevel.WARNING
    assert notification.message == "Failed to fetch admissions"


@pytest.mark.anyio("asyncio")
async def test_both_fetches_complete_before_failure_is_reported() -> None:
    store = _FailingStore(fail=["admissions"], slow_consultations=True)
    service = _service(store)

    with pytest.raises(FetchError) as excinfo:
        await service.load_unified()

    assert excinfo.value.sources == ("admissions",)
    assert store.completed == ["consultations"]


@pytest.mark.anyio("asyncio")
async def test_both_failures_produce_one_warning_each() -> None:
    service = _service(_FailingStore(fail=["admissions", "consultations"]))

    records = await service.refresh()

    assert records == ()
    assert [item.message for item in service.notifications.drain()] == [
        "Failed to fetch admissions",
        "Failed to fetch consultations",
    ]


@pytest.mark.anyio("asyncio")
async def test_appointment_failure_keeps_previous_appointments() -> None:
    store = _FailingStore()
    service = _service(store)
    loaded = await service.refresh_appointments()

    store.fail = {"appointments"}
    kept = await service.refresh_appointments()

    assert kept == loaded
    assert len(kept) == 2


@pytest.mark.anyio("asyncio")
async def test_daily_reports_are_filtered_by_date() -> None:
    service = _service(FixtureRecordStore.from_directory())

    reports = await service.refresh_daily_reports(date(2024, 3, 14))

    assert [report.report_id for report in reports] == ["R-1"]


@pytest.mark.anyio("asyncio")
async def test_report_receives_filtered_records_and_all_appointments() -> None:
    service = _service(FixtureRecordStore.from_directory())
    await service.refresh()
    await service.refresh_appointments()
    assembler = _RecordingAssembler()

    filename, document = service.build_report(assembler, date(2024, 3, 14), "Neurology")

    assert filename == "daily_report_2024-03-14_Neurology.pdf"
    assert document == b"%PDF-stub"
    [(records, appointments, target_date, specialty)] = assembler.calls
    assert [record.key for record in records] == [(RecordOrigin.CONSULTATION, "A1")]
    assert len(appointments) == 2
    assert target_date == date(2024, 3, 14)
    assert specialty == "Neurology"
