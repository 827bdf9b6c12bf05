"""Tests for discharge routing, validation and failure handling."""

from __future__ import annotations

import asyncio
from datetime import UTC, date, datetime, time
from typing import Any, Mapping

import pytest

from repositories.records import FixtureRecordStore, StoreError
from services.census.discharge import DISCHARGE_ROUTES, DischargeEngine, validate_schedule
from services.census.errors import (
    DischargeError,
    DischargeInProgressError,
    DischargeValidationError,
    RecordNotFoundError,
)
from services.census.notifications import NotificationLevel
from shared.models.census import RecordOrigin, UnifiedRecord

NOW = datetime(2024, 3, 14, 15, 42, 17, tzinfo=UTC)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _BrokenStore(FixtureRecordStore):
    async def update_admission(self, mrn: str, changes: Mapping[str, Any]) -> None:
        raise StoreError("connection reset", table="patients")


class _GatedStore(FixtureRecordStore):
    def __init__(self) -> None:
        super().__init__(FixtureRecordStore.from_directory()._tables)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def update_consultation(self, mrn: str, changes: Mapping[str, Any]) -> None:
        self.started.set()
        await self.release.wait()
        await super().update_consultation(mrn, changes)


def _engine(store: FixtureRecordStore) -> DischargeEngine:
    return DischargeEngine(store, clock=lambda: NOW, tz=UTC)


async def _loaded(store: FixtureRecordStore) -> DischargeEngine:
    engine = _engine(store)
    await engine.refresh_candidates()
    return engine


def test_routes_cover_both_origins() -> None:
    admission = DISCHARGE_ROUTES[RecordOrigin.ADMISSION]
    consultation = DISCHARGE_ROUTES[RecordOrigin.CONSULTATION]

    assert (admission.table, admission.status_column, admission.terminal_status) == (
        "patients",
        "patient_status",
        "Discharged",
    )
    assert (consultation.table, consultation.status_column, consultation.terminal_status) == (
        "consultations",
        "status",
        "Completed",
    )


def test_validate_schedule_names_missing_fields() -> None:
    with pytest.raises(DischargeValidationError) as excinfo:
        validate_schedule("", "not-a-time")

    assert excinfo.value.fields == ("dischargeDate", "dischargeTime")
    assert excinfo.value.status_code == 400
    assert validate_schedule("2024-03-14", "14:30") == (date(2024, 3, 14), time(14, 30))


@pytest.mark.anyio("asyncio")
async def test_candidates_hold_only_active_records() -> None:
    engine = await _loaded(FixtureRecordStore.from_directory())

    assert [record.key for record in engine.candidates] == [
        (RecordOrigin.ADMISSION, "A1"),
        (RecordOrigin.ADMISSION, "A2"),
        (RecordOrigin.CONSULTATION, "A1"),
    ]


@pytest.mark.anyio("asyncio")
async def test_select_prefills_current_date_and_minute() -> None:
    engine = await _loaded(FixtureRecordStore.from_directory())

    form = engine.select_by_key(RecordOrigin.ADMISSION, "A2")

    assert engine.selected is not None and engine.selected.mrn == "A2"
    assert form.discharge_date == date(2024, 3, 14)
    assert form.discharge_time == time(15, 42)
    assert form.note == ""


@pytest.mark.anyio("asyncio")
async def test_consultation_discharge_updates_only_the_consultation_row() -> None:
    store = FixtureRecordStore.from_directory()
    engine = await _loaded(store)
    consultation = engine.find_candidate(RecordOrigin.CONSULTATION, "A1")

    outcome = await engine.discharge(consultation, "2024-03-14", "14:30", "Seen and cleared")

    assert [(table, mrn) for table, mrn, _ in store.updates] == [("consultations", "A1")]
    [(_, _, changes)] = store.updates
    assert changes["status"] == "Completed"
    assert changes["discharge_note"] == "Seen and cleared"
    assert changes["discharge_date"] == datetime(2024, 3, 14, 14, 30, tzinfo=UTC)
    assert changes["updated_at"] == NOW

    admission_a1 = next(row for row in store.rows("patients") if row["mrn"] == "A1")
    assert admission_a1["patient_status"] == "Active"
    assert [record.key for record in engine.candidates] == [
        (RecordOrigin.ADMISSION, "A1"),
        (RecordOrigin.ADMISSION, "A2"),
    ]
    assert outcome.table == "consultations"
    assert outcome.message == "Consultation Maria Lopez has been successfully discharged."


@pytest.mark.anyio("asyncio")
async def test_admission_discharge_clears_selection_and_notifies() -> None:
    store = FixtureRecordStore.from_directory()
    engine = await _loaded(store)
    engine.select_by_key(RecordOrigin.ADMISSION, "A2")
    engine.form.note = "Home with inhalers"

    outcome = await engine.submit()

    assert outcome.status == "Discharged"
    assert engine.selected is None
    assert engine.form.discharge_date is None
    [notification] = engine.notifications.drain()
    assert notification.level is NotificationLevel.SUCCESS
    assert notification.message == "Patient John Carter has been successfully discharged."
    assert store.rows("patients")[1]["patient_status"] == "Discharged"


@pytest.mark.anyio("asyncio")
async def test_invalid_form_never_reaches_the_store() -> None:
    store = FixtureRecordStore.from_directory()
    engine = await _loaded(store)
    record = engine.find_candidate(RecordOrigin.ADMISSION, "A1")

    with pytest.raises(DischargeValidationError):
        await engine.discharge(record, None, "14:30")
    with pytest.raises(DischargeValidationError):
        await engine.discharge(None, "2024-03-14", "14:30")

    assert store.updates == []
    assert len(engine.candidates) == 3


@pytest.mark.anyio("asyncio")
async def test_inactive_record_is_rejected() -> None:
    engine = _engine(FixtureRecordStore.from_directory())
    completed = UnifiedRecord(
        mrn="C7",
        patient_name="Samuel Okafor",
        admission_timestamp=datetime(2024, 3, 13, 14, 30),
        specialty="Hematology",
        status="Completed",
        origin=RecordOrigin.CONSULTATION,
    )

    with pytest.raises(DischargeValidationError):
        engine.select(completed)
    with pytest.raises(DischargeValidationError):
        await engine.discharge(completed, "2024-03-14", "14:30")


@pytest.mark.anyio("asyncio")
async def test_store_failure_keeps_candidate_and_selection() -> None:
    store = _BrokenStore(FixtureRecordStore.from_directory()._tables)
    engine = await _loaded(store)
    engine.select_by_key(RecordOrigin.ADMISSION, "A1")
    before = engine.candidates

    with pytest.raises(DischargeError) as excinfo:
        await engine.submit()

    assert excinfo.value.status_code == 502
    assert engine.candidates == before
    assert engine.selected is not None and engine.selected.mrn == "A1"
    assert engine.form.discharge_date == date(2024, 3, 14)
    [notification] = engine.notifications.drain()
    assert notification.level is NotificationLevel.ERROR
    assert not engine.is_in_flight(before[0])


@pytest.mark.anyio("asyncio")
async def test_missing_store_row_is_a_discharge_error() -> None:
    store = FixtureRecordStore.from_directory()
    engine = await _loaded(store)
    ghost = UnifiedRecord(
        mrn="Z9",
        patient_name="Unknown",
        admission_timestamp=datetime(2024, 3, 14, 8, 0),
        specialty="Neurology",
        status="Active",
        origin=RecordOrigin.ADMISSION,
    )

    with pytest.raises(DischargeError):
        await engine.discharge(ghost, "2024-03-14", "14:30")

    assert len(engine.candidates) == 3


@pytest.mark.anyio("asyncio")
async def test_stale_candidate_cannot_overwrite_a_discharged_row() -> None:
    store = FixtureRecordStore.from_directory()
    engine = await _loaded(store)
    stale = engine.find_candidate(RecordOrigin.ADMISSION, "A2")
    # Another session discharges the patient after our candidates were loaded.
    await store.update_admission(
        "A2", {"patient_status": "Discharged", "discharge_note": "first"}
    )

    with pytest.raises(DischargeError):
        await engine.discharge(stale, "2024-03-15", "18:00", "second")

    row = next(row for row in store.rows("patients") if row["mrn"] == "A2")
    assert row["patient_status"] == "Discharged"
    assert row["discharge_note"] == "first"
    assert row.get("discharge_date") is None
    assert engine.find_candidate(RecordOrigin.ADMISSION, "A2") == stale


@pytest.mark.anyio("asyncio")
async def test_integer_mrn_admission_can_be_discharged() -> None:
    store = FixtureRecordStore(
        {
            "patients": [
                {
                    "mrn": 101,
                    "patient_name": "Ada Brooks",
                    "admission_date": "2024-03-14T08:00:00",
                    "specialty": "Neurology",
                    "patient_status": "Active",
                    "updated_at": "2024-03-14T08:00:00",
                }
            ]
        }
    )
    engine = await _loaded(store)
    record = engine.find_candidate(RecordOrigin.ADMISSION, "101")

    outcome = await engine.discharge(record, "2024-03-14", "14:30")

    assert outcome.status == "Discharged"
    assert store.rows("patients")[0]["patient_status"] == "Discharged"
    assert engine.candidates == ()


@pytest.mark.anyio("asyncio")
async def test_second_discharge_of_same_record_is_refused_while_in_flight() -> None:
    store = _GatedStore()
    engine = await _loaded(store)
    record = engine.find_candidate(RecordOrigin.CONSULTATION, "A1")

    first = asyncio.create_task(engine.discharge(record, "2024-03-14", "14:30"))
    await store.started.wait()
    assert engine.is_in_flight(record)

    with pytest.raises(DischargeInProgressError):
        await engine.discharge(record, "2024-03-14", "14:31")

    store.release.set()
    await first
    assert len(store.updates) == 1
    assert not engine.is_in_flight(record)


@pytest.mark.anyio("asyncio")
async def test_unknown_candidate_raises_not_found() -> None:
    engine = await _loaded(FixtureRecordStore.from_directory())

    with pytest.raises(RecordNotFoundError):
        engine.find_candidate(RecordOrigin.CONSULTATION, "C7")


@pytest.mark.anyio("asyncio")
async def test_candidate_search_and_specialty_filter() -> None:
    engine = await _loaded(FixtureRecordStore.from_directory())

    assert [r.key for r in engine.filter_candidates("carter")] == [
        (RecordOrigin.ADMISSION, "A2")
    ]
    assert [r.key for r in engine.filter_candidates("A1", "Neurology")] == [
        (RecordOrigin.CONSULTATION, "A1")
    ]
