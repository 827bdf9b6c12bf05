"""Census data models shared by the ward census services."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------


def to_camel(value: str) -> str:
    """Convert ``snake_case`` ``value`` into ``camelCase`` for JSON aliases."""

    components = value.split("_")
    if not components:
        return value
    first, *rest = components
    return first + "".join(token.capitalize() for token in rest)


class CamelModel(BaseModel):
    """Base model applying camelCase aliases and ignoring unknown fields."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Specialty(str, Enum):
    """Inpatient specialties a record may be filed under."""

    GENERAL_INTERNAL_MEDICINE = "General Internal Medicine"
    RESPIRATORY_MEDICINE = "Respiratory Medicine"
    INFECTIOUS_DISEASES = "Infectious Diseases"
    NEUROLOGY = "Neurology"
    GASTROENTEROLOGY = "Gastroenterology"
    RHEUMATOLOGY = "Rheumatology"
    HEMATOLOGY = "Hematology"
    THROMBOSIS_MEDICINE = "Thrombosis Medicine"
    IMMUNOLOGY_ALLERGY = "Immunology & Allergy"
    SAFETY_ADMISSION = "Safety Admission"
    MEDICAL_CONSULTATIONS = "Medical Consultations"

    def __str__(self) -> str:  # pragma: no cover - trivial wrapper
        return self.value


SPECIALTIES: tuple[str, ...] = tuple(member.value for member in Specialty)


class RecordOrigin(str, Enum):
    """Table a unified record was read from."""

    ADMISSION = "admission"
    CONSULTATION = "consultation"

    def __str__(self) -> str:  # pragma: no cover - trivial wrapper
        return self.value


class AdmissionStatus(str, Enum):
    """Known values of the ``patients.patient_status`` column."""

    ACTIVE = "Active"
    DISCHARGED = "Discharged"


class ConsultationStatus(str, Enum):
    """Known values of the ``consultations.status`` column."""

    ACTIVE = "Active"
    COMPLETED = "Completed"


class AppointmentType(str, Enum):
    """Clinic appointment priority."""

    URGENT = "Urgent"
    REGULAR = "Regular"


# ---------------------------------------------------------------------------
# Source records
# ---------------------------------------------------------------------------


class AdmissionRecord(CamelModel):
    """An inpatient admission episode as stored in the ``patients`` table."""

    mrn: str = Field(description="Medical record number of the admitted patient")
    patient_name: str = Field(description="Display name of the patient")
    admission_timestamp: datetime = Field(description="When the patient was admitted")
    specialty: str = Field(description="Admitting specialty")
    status: str = Field(description="Admission status, e.g. Active or Discharged")
    diagnosis: Optional[str] = Field(default=None)
    last_updated: Optional[datetime] = Field(default=None)


class ConsultationRecord(CamelModel):
    """A consultation request as stored in the ``consultations`` table."""

    mrn: str = Field(description="Medical record number of the consulted patient")
    patient_name: str
    created_timestamp: datetime = Field(description="When the consultation was opened")
    consultation_specialty: str
    status: str = Field(description="Consultation status, e.g. Active or Completed")
    requesting_department: Optional[str] = Field(default=None)
    last_updated: Optional[datetime] = Field(default=None)


class UnifiedRecord(AdmissionRecord):
    """Admission-shaped projection of either source record.

    Instances are immutable so the ``origin`` tag captured during unification
    cannot drift before a discharge is routed on it.
    """

    model_config = ConfigDict(frozen=True)

    origin: RecordOrigin = Field(description="Table the record was read from")

    @property
    def key(self) -> tuple[RecordOrigin, str]:
        """Return the ``(origin, mrn)`` pair identifying the backing row."""

        return self.origin, self.mrn

    @property
    def is_active(self) -> bool:
        """Return ``True`` while the record can still be discharged."""

        if self.origin is RecordOrigin.CONSULTATION:
            return self.status == ConsultationStatus.ACTIVE.value
        return self.status == AdmissionStatus.ACTIVE.value


class AppointmentRecord(CamelModel):
    """A clinic appointment read from ``clinic_appointments``."""

    appointment_id: str
    patient_name: str
    patient_medical_number: str
    clinic_specialty: str
    appointment_type: AppointmentType
    created_timestamp: datetime


class DailyReportRecord(CamelModel):
    """A free-text daily report filed against a patient."""

    report_id: str
    patient_id: str
    report_date: date
    content: str = Field(default="")


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
    "to_camel",
]
