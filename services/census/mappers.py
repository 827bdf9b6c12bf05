"""Conversion of store rows into typed records and the unified census view."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from repositories.schema import (
    ADMISSIONS_TABLE,
    APPOINTMENTS_TABLE,
    CONSULTATIONS_TABLE,
    DAILY_REPORTS_TABLE,
)
from shared.models.census import (
    AdmissionRecord,
    AppointmentRecord,
    ConsultationRecord,
    DailyReportRecord,
    RecordOrigin,
    UnifiedRecord,
    to_camel,
)

from .errors import UnificationInvariantViolation

ModelT = TypeVar("ModelT", bound=BaseModel)

# Store column -> model field. Columns not listed are ignored.
_ADMISSION_COLUMNS: dict[str, str] = {
    "mrn": "mrn",
    "patient_name": "patient_name",
    "admission_date": "admission_timestamp",
    "specialty": "specialty",
    "patient_status": "status",
    "diagnosis": "diagnosis",
    "updated_at": "last_updated",
}

_CONSULTATION_COLUMNS: dict[str, str] = {
    "mrn": "mrn",
    "patient_name": "patient_name",
    "created_at": "created_timestamp",
    "consultation_specialty": "consultation_specialty",
    "status": "status",
    "requesting_department": "requesting_department",
    "updated_at": "last_updated",
}

_APPOINTMENT_COLUMNS: dict[str, str] = {
    "appointment_id": "appointment_id",
    "patient_name": "patient_name",
    "patient_medical_number": "patient_medical_number",
    "clinic_specialty": "clinic_specialty",
    "appointment_type": "appointment_type",
    "created_at": "created_timestamp",
}

_DAILY_REPORT_COLUMNS: dict[str, str] = {
    "report_id": "report_id",
    "patient_id": "patient_id",
    "report_date": "report_date",
    "report_content": "content",
}


def _failed_columns(exc: ValidationError, columns: Mapping[str, str]) -> list[str]:
    """Name the store columns behind the fields pydantic rejected."""

    by_name: dict[str, str] = {}
    for column, field in columns.items():
        by_name[field] = column
        by_name[to_camel(field)] = column
    failed = set()
    for error in exc.errors():
        head = str(error["loc"][0]) if error["loc"] else "<row>"
        failed.add(by_name.get(head, head))
    return sorted(failed)


def _map_row(
    row: Mapping[str, Any],
    columns: Mapping[str, str],
    model: type[ModelT],
    table: str,
) -> ModelT:
    if row is None:
        raise UnificationInvariantViolation(table, ["<row>"])
    payload = {field: row[column] for column, field in columns.items() if column in row}
    # Identifiers stored as integers are normalised to strings.
    for key in ("mrn", "appointment_id", "report_id", "patient_id"):
        if isinstance(payload.get(key), int):
            payload[key] = str(payload[key])
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        fields = _failed_columns(exc, columns)
        mrn = row.get("mrn")
        raise UnificationInvariantViolation(
            table, fields, mrn=str(mrn) if mrn is not None else None
        ) from exc


def map_admission_row(row: Mapping[str, Any]) -> AdmissionRecord:
    """Convert a ``patients`` row into an :class:`AdmissionRecord`."""

    return _map_row(row, _ADMISSION_COLUMNS, AdmissionRecord, ADMISSIONS_TABLE)


def map_consultation_row(row: Mapping[str, Any]) -> ConsultationRecord:
    """Convert a ``consultations`` row into a :class:`ConsultationRecord`."""

    return _map_row(row, _CONSULTATION_COLUMNS, ConsultationRecord, CONSULTATIONS_TABLE)


def map_appointment_row(row: Mapping[str, Any]) -> AppointmentRecord:
    return _map_row(row, _APPOINTMENT_COLUMNS, AppointmentRecord, APPOINTMENTS_TABLE)


def map_daily_report_row(row: Mapping[str, Any]) -> DailyReportRecord:
    return _map_row(row, _DAILY_REPORT_COLUMNS, DailyReportRecord, DAILY_REPORTS_TABLE)


def unify_admission(admission: AdmissionRecord) -> UnifiedRecord:
    """Tag ``admission`` with its origin; every field passes through unchanged."""

    return UnifiedRecord(**admission.model_dump(), origin=RecordOrigin.ADMISSION)


def unify_consultation(consultation: ConsultationRecord) -> UnifiedRecord:
    """Project ``consultation`` onto the admission shape.

    ``created_timestamp`` becomes ``admission_timestamp``,
    ``consultation_specialty`` becomes ``specialty`` and
    ``requesting_department`` fills the ``diagnosis`` column.
    """

    return UnifiedRecord(
        mrn=consultation.mrn,
        patient_name=consultation.patient_name,
        admission_timestamp=consultation.created_timestamp,
        specialty=consultation.consultation_specialty,
        status=consultation.status,
        diagnosis=consultation.requesting_department,
        last_updated=consultation.last_updated,
        origin=RecordOrigin.CONSULTATION,
    )


def unify(records: Iterable[AdmissionRecord | ConsultationRecord]) -> list[UnifiedRecord]:
    """Return the unified view of ``records`` in input order.

    Nothing is re-sorted, dropped or deduplicated: an admission and a
    consultation sharing an ``mrn`` stay two distinct rows.
    """

    unified: list[UnifiedRecord] = []
    for record in records:
        # UnifiedRecord subclasses AdmissionRecord, so it must be checked first.
        if isinstance(record, UnifiedRecord):
            unified.append(record)
        elif isinstance(record, AdmissionRecord):
            unified.append(unify_admission(record))
        elif isinstance(record, ConsultationRecord):
            unified.append(unify_consultation(record))
        else:
            raise TypeError(f"Cannot unify object of type {type(record).__name__}")
    return unified


def unify_rows(
    admission_rows: Sequence[Mapping[str, Any]],
    consultation_rows: Sequence[Mapping[str, Any]],
) -> list[UnifiedRecord]:
    """Map and unify raw rows: the admissions block followed by consultations."""

    admissions = [map_admission_row(row) for row in admission_rows]
    consultations = [map_consultation_row(row) for row in consultation_rows]
    return unify([*admissions, *consultations])


__all__ = [
    "map_admission_row",
    "map_appointment_row",
    "map_consultation_row",
    "map_daily_report_row",
    "unify",
    "unify_admission",
    "unify_consultation",
    "unify_rows",
]
