"""Daily report documents built from the filtered census view."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from io import BytesIO
from typing import Protocol
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A3
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from shared.models.census import AppointmentRecord, UnifiedRecord

REPORT_TITLE = "Daily Patient Report"

CENSUS_COLUMNS: tuple[str, ...] = (
    "MRN",
    "Patient Name",
    "Specialty",
    "Status",
    "Diagnosis/Department",
)
APPOINTMENT_COLUMNS: tuple[str, ...] = (
    "Patient Name",
    "Medical Number",
    "Specialty",
    "Type",
)


class ReportAssembler(Protocol):
    """Renders a daily report document."""

    def render(
        self,
        records: Sequence[UnifiedRecord],
        appointments: Sequence[AppointmentRecord],
        target_date: date,
        specialty: str | None,
    ) -> bytes:
        """Return the rendered document for ``target_date``."""


def report_filename(target_date: date, specialty: str | None = None) -> str:
    """Return ``daily_report_<date>[_<specialty>].pdf``."""

    suffix = f"_{specialty}" if specialty else ""
    return f"daily_report_{target_date.isoformat()}{suffix}.pdf".replace("/", "-")


def census_rows(records: Sequence[UnifiedRecord]) -> list[tuple[str, ...]]:
    return [
        (
            record.mrn,
            record.patient_name,
            record.specialty,
            record.status,
            record.diagnosis or "",
        )
        for record in records
    ]


def appointment_rows(appointments: Sequence[AppointmentRecord]) -> list[tuple[str, ...]]:
    return [
        (
            appointment.patient_name,
            appointment.patient_medical_number,
            appointment.clinic_specialty,
            appointment.appointment_type.value,
        )
        for appointment in appointments
    ]


class PdfReportAssembler:
    """Render the daily report as a PDF with reportlab."""

    def __init__(self, *, pagesize: tuple[float, float] = A3, margin: float = 30.0) -> None:
        self._pagesize = pagesize
        self._margin = margin
        styles = getSampleStyleSheet()
        self._title_style = styles["Title"]
        self._subtitle_style = styles["Heading2"]
        self._cell_style = ParagraphStyle("CensusCell", parent=styles["BodyText"], fontSize=10)
        self._header_style = ParagraphStyle(
            "CensusHeader", parent=self._cell_style, fontName="Helvetica-Bold"
        )

    def _table(
        self, header: Sequence[str], rows: Sequence[Sequence[str]], width: float
    ) -> Table:
        data = [[Paragraph(escape(text), self._header_style) for text in header]]
        data.extend([Paragraph(escape(cell), self._cell_style) for cell in row] for row in rows)
        table = Table(data, colWidths=[width / len(header)] * len(header), repeatRows=1)
        table.setStyle(
            TableStyle(
                [
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.black),
                    ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ]
            )
        )
        return table

    def render(
        self,
        records: Sequence[UnifiedRecord],
        appointments: Sequence[AppointmentRecord],
        target_date: date,
        specialty: str | None,
    ) -> bytes:
        buffer = BytesIO()
        document = SimpleDocTemplate(
            buffer,
            pagesize=self._pagesize,
            leftMargin=self._margin,
            rightMargin=self._margin,
            topMargin=self._margin,
            bottomMargin=self._margin,
            title=f"{REPORT_TITLE} {target_date.isoformat()}",
        )

        story = [
            Paragraph(REPORT_TITLE, self._title_style),
            Paragraph(f"Date: {target_date.isoformat()}", self._subtitle_style),
        ]
        if specialty:
            story.append(Paragraph(f"Specialty: {escape(specialty)}", self._subtitle_style))
        story.append(Spacer(1, 12))

        story.append(Paragraph("Patients and Consultations", self._subtitle_style))
        story.append(self._table(CENSUS_COLUMNS, census_rows(records), document.width))
        story.append(Spacer(1, 20))

        story.append(Paragraph("Appointments", self._subtitle_style))
        story.append(
            self._table(APPOINTMENT_COLUMNS, appointment_rows(appointments), document.width)
        )

        document.build(story)
        return buffer.getvalue()


__all__ = [
    "APPOINTMENT_COLUMNS",
    "CENSUS_COLUMNS",
    "PdfReportAssembler",
    "REPORT_TITLE",
    "ReportAssembler",
    "appointment_rows",
    "census_rows",
    "report_filename",
]
