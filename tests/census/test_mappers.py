"""Tests for row mapping and the unified census projection."""

from __future__ import annotations

from datetime import datetime

import pytest

from services.census.errors import UnificationInvariantViolation
from services.census.mappers import (
    map_admission_row,
    map_appointment_row,
    map_consultation_row,
    map_daily_report_row,
    unify,
    unify_rows,
)
from shared.models.census import AppointmentType, RecordOrigin, UnifiedRecord


def _admission_row(**overrides: object) -> dict[str, object]:
    row: dict[str, object] = {
        "mrn": "A1",
        "patient_name": "Maria Lopez",
        "admission_date": "2024-03-14T08:00:00",
        "specialty": "General Internal Medicine",
        "patient_status": "Active",
        "diagnosis": "Community-acquired pneumonia",
        "updated_at": "2024-03-14T08:00:00",
    }
    row.update(overrides)
    return row


def _consultation_row(**overrides: object) -> dict[str, object]:
    row: dict[str, object] = {
        "mrn": "A1",
        "patient_name": "Maria Lopez",
        "created_at": "2024-03-14T09:00:00",
        "consultation_specialty": "Neurology",
        "status": "Active",
        "requesting_department": "ER",
    }
    row.update(overrides)
    return row


def test_admission_unifies_with_fields_unchanged() -> None:
    admission = map_admission_row(_admission_row())

    [record] = unify([admission])

    assert record.origin is RecordOrigin.ADMISSION
    assert record.mrn == "A1"
    assert record.patient_name == "Maria Lopez"
    assert record.admission_timestamp == datetime(2024, 3, 14, 8, 0)
    assert record.specialty == "General Internal Medicine"
    assert record.status == "Active"
    assert record.diagnosis == "Community-acquired pneumonia"


def test_consultation_projects_onto_admission_shape() -> None:
    consultation = map_consultation_row(_consultation_row())

    [record] = unify([consultation])

    assert record.origin is RecordOrigin.CONSULTATION
    assert record.admission_timestamp == datetime(2024, 3, 14, 9, 0)
    assert record.specialty == "Neurology"
    assert record.diagnosis == "ER"
    assert record.status == "Active"


def test_shared_mrn_keeps_two_distinct_rows() -> None:
    records = unify_rows([_admission_row()], [_consultation_row()])

    assert [record.key for record in records] == [
        (RecordOrigin.ADMISSION, "A1"),
        (RecordOrigin.CONSULTATION, "A1"),
    ]


def test_unify_preserves_block_order_without_resorting() -> None:
    admissions = [
        _admission_row(mrn="A2", admission_date="2024-03-10T08:00:00"),
        _admission_row(mrn="A1", admission_date="2024-03-14T08:00:00"),
    ]
    consultations = [_consultation_row(mrn="C1", created_at="2024-03-01T08:00:00")]

    records = unify_rows(admissions, consultations)

    assert [record.mrn for record in records] == ["A2", "A1", "C1"]


def test_unify_passes_unified_records_through() -> None:
    [existing] = unify_rows([_admission_row()], [])

    assert unify([existing]) == [existing]


def test_unify_rejects_unknown_objects() -> None:
    with pytest.raises(TypeError):
        unify([{"mrn": "A1"}])  # type: ignore[list-item]


def test_unified_records_are_frozen() -> None:
    [record] = unify_rows([], [_consultation_row()])

    with pytest.raises(Exception):
        record.origin = RecordOrigin.ADMISSION  # type: ignore[misc]
    assert isinstance(record, UnifiedRecord)


def test_missing_timestamp_raises_invariant_violation() -> None:
    row = _admission_row()
    row.pop("admission_date")

    with pytest.raises(UnificationInvariantViolation) as excinfo:
        map_admission_row(row)

    assert excinfo.value.table == "patients"
    assert excinfo.value.fields == ("admission_date",)
    assert excinfo.value.mrn == "A1"


def test_invariant_violation_names_consultation_columns() -> None:
    row = _consultation_row()
    row.pop("created_at")

    with pytest.raises(UnificationInvariantViolation) as excinfo:
        map_consultation_row(row)

    assert excinfo.value.table == "consultations"
    assert excinfo.value.fields == ("created_at",)


def test_integer_identifiers_become_strings() -> None:
    admission = map_admission_row(_admission_row(mrn=1042))

    assert admission.mrn == "1042"


def test_auxiliary_rows_map_to_their_records() -> None:
    appointment = map_appointment_row(
        {
            "appointment_id": "APT-1",
            "patient_name": "Grace Kim",
            "patient_medical_number": "M-1",
            "clinic_specialty": "Rheumatology",
            "appointment_type": "Urgent",
            "created_at": "2024-03-14T07:30:00",
        }
    )
    report = map_daily_report_row(
        {
            "report_id": "R-1",
            "patient_id": "A1",
            "report_date": "2024-03-14",
            "report_content": "Stable.",
        }
    )

    assert appointment.appointment_type is AppointmentType.URGENT
    assert report.content == "Stable."
    assert report.report_date.isoformat() == "2024-03-14"
