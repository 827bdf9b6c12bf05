"""SQLAlchemy table definitions for the census record store."""

from __future__ import annotations

from sqlalchemy import Column, Date, DateTime, MetaData, String, Table, Text

metadata = MetaData()

patients = Table(
    "patients",
    metadata,
    Column("mrn", String(64), primary_key=True),
    Column("patient_name", String(255), nullable=False),
    Column("admission_date", DateTime(timezone=True), nullable=False),
    Column("specialty", String(128), nullable=False),
    Column("patient_status", String(32), nullable=False),
    Column("diagnosis", Text),
    Column("updated_at", DateTime(timezone=True)),
    Column("discharge_note", Text),
    Column("discharge_date", DateTime(timezone=True)),
)

consultations = Table(
    "consultations",
    metadata,
    Column("mrn", String(64), primary_key=True),
    Column("patient_name", String(255), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("consultation_specialty", String(128), nullable=False),
    Column("status", String(32), nullable=False),
    Column("requesting_department", String(128)),
    Column("updated_at", DateTime(timezone=True)),
    Column("discharge_note", Text),
    Column("discharge_date", DateTime(timezone=True)),
)

clinic_appointments = Table(
    "clinic_appointments",
    metadata,
    Column("appointment_id", String(64), primary_key=True),
    Column("patient_name", String(255), nullable=False),
    Column("patient_medical_number", String(64), nullable=False),
    Column("clinic_specialty", String(128), nullable=False),
    Column("appointment_type", String(16), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

daily_reports = Table(
    "daily_reports",
    metadata,
    Column("report_id", String(64), primary_key=True),
    Column("patient_id", String(64), nullable=False),
    Column("report_date", Date, nullable=False),
    Column("report_content", Text),
    Column("created_at", DateTime(timezone=True)),
)

ADMISSIONS_TABLE = patients.name
CONSULTATIONS_TABLE = consultations.name
APPOINTMENTS_TABLE = clinic_appointments.name
DAILY_REPORTS_TABLE = daily_reports.name


__all__ = [
    "ADMISSIONS_TABLE",
    "APPOINTMENTS_TABLE",
    "CONSULTATIONS_TABLE",
    "DAILY_REPORTS_TABLE",
    "clinic_appointments",
    "consultations",
    "daily_reports",
    "metadata",
    "patients",
]
