"""FastAPI application exposing the ward census and discharge workflow."""

from __future__ import annotations

import asyncio
from datetime import date, datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Response, status
from pydantic import Field

from repositories.records import build_record_store
from services.census.census import CensusService
from services.census.config import get_settings
from services.census.discharge import DischargeEngine
from services.census.notifications import Notification, NotificationCenter
from services.census.reporting import PdfReportAssembler, ReportAssembler
from shared.http.errors import register_exception_handlers
from shared.models.census import (
    AppointmentRecord,
    CamelModel,
    DailyReportRecord,
    RecordOrigin,
    Specialty,
    UnifiedRecord,
)
from shared.observability.logger import configure_logging
from shared.observability.middleware import (
    CorrelationIdMiddleware,
    RequestTimingMiddleware,
)

SERVICE_NAME = "census"

_settings = get_settings()
configure_logging(service_name=SERVICE_NAME, level=_settings.log_level)

app = FastAPI(title="Ward Census Service")
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)

_notifications = NotificationCenter()
_store = build_record_store(
    _settings.database.dsn,
    fixtures_path=_settings.fixtures_path,
    read_attempts=_settings.read_retry_attempts,
    echo=_settings.database.echo,
)
_census = CensusService(
    _store,
    notifications=_notifications,
    discharge_window=_settings.discharge_window,
    tz=_settings.resolve_timezone(),
)
_discharge_engine = DischargeEngine(
    _store,
    notifications=_notifications,
    tz=_settings.resolve_timezone(),
)
_assembler = PdfReportAssembler()


def get_census_service() -> CensusService:
    """Return the shared :class:`CensusService` instance."""

    return _census


def get_discharge_engine() -> DischargeEngine:
    """Return the shared :class:`DischargeEngine` instance."""

    return _discharge_engine


def get_report_assembler() -> ReportAssembler:
    return _assembler


class CensusResponse(CamelModel):
    """Filtered census view with the unfiltered appointment list."""

    target_date: date
    specialty: Optional[Specialty] = None
    records: list[UnifiedRecord] = Field(default_factory=list)
    appointments: list[AppointmentRecord] = Field(default_factory=list)
    last_refreshed: Optional[datetime] = None
    notifications: list[Notification] = Field(default_factory=list)


class DailyReportsResponse(CamelModel):
    target_date: date
    reports: list[DailyReportRecord] = Field(default_factory=list)
    notifications: list[Notification] = Field(default_factory=list)


class CandidatesResponse(CamelModel):
    candidates: list[UnifiedRecord] = Field(default_factory=list)
    notifications: list[Notification] = Field(default_factory=list)


class SelectionResponse(CamelModel):
    """The selected candidate with the prefilled discharge form."""

    record: UnifiedRecord
    discharge_date: Optional[date] = None
    discharge_time: Optional[str] = None
    discharge_note: str = ""


class DischargeRequest(CamelModel):
    """Discharge form submission; date and time are validated by the engine."""

    discharge_date: Optional[str] = Field(default=None, description="ISO date, e.g. 2024-03-14")
    discharge_time: Optional[str] = Field(default=None, description="Clock time, e.g. 14:30")
    discharge_note: Optional[str] = Field(default="")


class DischargeResponse(CamelModel):
    record: UnifiedRecord
    table: str
    status: str
    discharged_at: datetime
    message: str
    notifications: list[Notification] = Field(default_factory=list)


def _today(census: CensusService) -> date:
    return datetime.now(census.timezone).date()


def _resolve_specialty(value: str | None) -> str | None:
    """Map the ``specialty`` query value onto :class:`Specialty`; blank means all."""

    if value is None or not value.strip():
        return None
    try:
        return Specialty(value.strip()).value
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "detail": f"Unknown specialty '{value}'.",
                "allowed": [member.value for member in Specialty],
            },
        ) from exc


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    """Return a simple health payload for orchestration checks."""

    return {"status": "ok", "service": SERVICE_NAME}


@app.get("/census", response_model=CensusResponse, tags=["census"])
async def read_census(
    target_date: Optional[date] = Query(default=None, alias="date"),
    specialty: Optional[str] = Query(default=None),
    census: CensusService = Depends(get_census_service),
) -> CensusResponse:
    """Refresh the census and return the records for one day and specialty."""

    resolved_specialty = _resolve_specialty(specialty)
    resolved_date = target_date or _today(census)
    await asyncio.gather(census.refresh(), census.refresh_appointments())
    return CensusResponse(
        target_date=resolved_date,
        specialty=resolved_specialty,
        records=census.view(resolved_date, resolved_specialty),
        appointments=list(census.appointments),
        last_refreshed=census.last_refreshed,
        notifications=census.notifications.drain(),
    )


@app.get("/census/report", tags=["census"])
async def download_report(
    target_date: Optional[date] = Query(default=None, alias="date"),
    specialty: Optional[str] = Query(default=None),
    census: CensusService = Depends(get_census_service),
    assembler: ReportAssembler = Depends(get_report_assembler),
) -> Response:
    """Return the daily report PDF for one day and specialty."""

    resolved_specialty = _resolve_specialty(specialty)
    resolved_date = target_date or _today(census)
    await asyncio.gather(census.refresh(), census.refresh_appointments())
    filename, document = census.build_report(assembler, resolved_date, resolved_specialty)
    return Response(
        content=document,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/census/daily-reports", response_model=DailyReportsResponse, tags=["census"])
async def read_daily_reports(
    target_date: Optional[date] = Query(default=None, alias="date"),
    census: CensusService = Depends(get_census_service),
) -> DailyReportsResponse:
    resolved_date = target_date or _today(census)
    reports = await census.refresh_daily_reports(resolved_date)
    return DailyReportsResponse(
        target_date=resolved_date,
        reports=list(reports),
        notifications=census.notifications.drain(),
    )


@app.get("/discharge/candidates", response_model=CandidatesResponse, tags=["discharge"])
async def read_discharge_candidates(
    search: Optional[str] = Query(default=None, description="Patient name or MRN fragment"),
    specialty: Optional[str] = Query(default=None),
    engine: DischargeEngine = Depends(get_discharge_engine),
) -> CandidatesResponse:
    """Refresh and return the records that can still be discharged."""

    resolved_specialty = _resolve_specialty(specialty)
    await engine.refresh_candidates()
    return CandidatesResponse(
        candidates=engine.filter_candidates(search, resolved_specialty),
        notifications=engine.notifications.drain(),
    )


async def _ensure_candidates(engine: DischargeEngine) -> None:
    if not engine.candidates:
        await engine.refresh_candidates()


@app.post(
    "/discharge/{origin}/{mrn}/select",
    response_model=SelectionResponse,
    tags=["discharge"],
)
async def select_discharge_candidate(
    origin: RecordOrigin,
    mrn: str,
    engine: DischargeEngine = Depends(get_discharge_engine),
) -> SelectionResponse:
    """Select a candidate and return the prefilled discharge form."""

    await _ensure_candidates(engine)
    form = engine.select_by_key(origin, mrn)
    return SelectionResponse(
        record=engine.selected,
        discharge_date=form.discharge_date,
        discharge_time=form.discharge_time.strftime("%H:%M") if form.discharge_time else None,
        discharge_note=form.note,
    )


@app.post(
    "/discharge/{origin}/{mrn}",
    response_model=DischargeResponse,
    status_code=status.HTTP_200_OK,
    tags=["discharge"],
)
async def discharge_record(
    origin: RecordOrigin,
    mrn: str,
    payload: DischargeRequest,
    engine: DischargeEngine = Depends(get_discharge_engine),
) -> DischargeResponse:
    """Discharge the candidate identified by ``origin`` and ``mrn``."""

    await _ensure_candidates(engine)
    record = engine.find_candidate(origin, mrn)
    outcome = await engine.discharge(
        record,
        payload.discharge_date,
        payload.discharge_time,
        payload.discharge_note,
    )
    return DischargeResponse(
        record=outcome.record,
        table=outcome.table,
        status=outcome.status,
        discharged_at=outcome.discharged_at,
        message=outcome.message,
        notifications=engine.notifications.drain(),
    )


__all__ = [
    "app",
    "get_census_service",
    "get_discharge_engine",
    "get_report_assembler",
    "health",
]
