"""Shared data models for the ward census services."""

from .census import (
    AdmissionRecord,
    AdmissionStatus,
    AppointmentRecord,
    AppointmentType,
    CamelModel,
    ConsultationRecord,
    ConsultationStatus,
    DailyReportRecord,
    RecordOrigin,
    SPECIALTIES,
    Specialty,
    UnifiedRecord,
)

__all__ = [
    "AdmissionRecord",
    "AdmissionStatus",
    "AppointmentRecord",
    "AppointmentType",
    "CamelModel",
    "ConsultationRecord",
    "ConsultationStatus",
    "DailyReportRecord",
    "RecordOrigin",
    "SPECIALTIES",
    "Specialty",
    "UnifiedRecord",
]
