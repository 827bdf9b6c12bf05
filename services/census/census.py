"""Refresh pipeline for the daily census view.

Each refresh fetches, maps and unifies the source tables and then replaces the
held sequences wholesale. Filtering is a separate pure step applied on demand.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, tzinfo
from typing import Callable, Iterable

from repositories.records import RecordStore
from shared.models.census import AppointmentRecord, DailyReportRecord, UnifiedRecord
from shared.observability.logger import get_logger

from .errors import FetchError
from .filters import filter_by_date_and_specialty
from .mappers import map_appointment_row, map_daily_report_row, unify_rows
from .notifications import NotificationCenter
from .reporting import ReportAssembler, report_filename
from .sources import gather_sources

logger = get_logger(__name__)

DEFAULT_DISCHARGE_WINDOW = timedelta(hours=48)


class CensusService:
    """Holds the most recently loaded census data.

    ``load_*`` methods raise :class:`FetchError`. ``refresh*`` methods are the
    fetch boundary: they turn a :class:`FetchError` into a warning
    notification and keep whatever was loaded before.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        notifications: NotificationCenter | None = None,
        clock: Callable[[], datetime] | None = None,
        discharge_window: timedelta = DEFAULT_DISCHARGE_WINDOW,
        tz: tzinfo | None = None,
    ) -> None:
        self._store = store
        self._notifications = notifications or NotificationCenter()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._discharge_window = discharge_window
        self._tz = tz
        self._records: tuple[UnifiedRecord, ...] = ()
        self._appointments: tuple[AppointmentRecord, ...] = ()
        self._daily_reports: tuple[DailyReportRecord, ...] = ()
        self._daily_report_date: date | None = None
        self.last_refreshed: datetime | None = None

    @property
    def records(self) -> tuple[UnifiedRecord, ...]:
        return self._records

    @property
    def appointments(self) -> tuple[AppointmentRecord, ...]:
        return self._appointments

    @property
    def daily_reports(self) -> tuple[DailyReportRecord, ...]:
        return self._daily_reports

    @property
    def notifications(self) -> NotificationCenter:
        return self._notifications

    @property
    def timezone(self) -> tzinfo | None:
        return self._tz

    def _report_failure(self, exc: FetchError) -> None:
        for source in exc.sources:
            self._notifications.warning(f"Failed to fetch {source}", source=source)

    # -- loaders --------------------------------------------------------

    async def load_unified(self) -> list[UnifiedRecord]:
        """Fetch admissions and consultations concurrently and unify them.

        Admissions include those discharged within the trailing window. Both
        fetches must succeed before anything is unified.
        """

        discharged_since = self._clock() - self._discharge_window
        results = await gather_sources(
            admissions=self._store.fetch_admissions(discharged_since=discharged_since),
            consultations=self._store.fetch_consultations(),
        )
        return unify_rows(results["admissions"], results["consultations"])

    async def load_appointments(self) -> list[AppointmentRecord]:
        results = await gather_sources(appointments=self._store.fetch_appointments())
        return [map_appointment_row(row) for row in results["appointments"]]

    async def load_daily_reports(self, report_date: date) -> list[DailyReportRecord]:
        results = await gather_sources(
            **{"daily reports": self._store.fetch_daily_reports(report_date)}
        )
        return [map_daily_report_row(row) for row in results["daily reports"]]

    # -- fetch boundary -------------------------------------------------

    async def refresh(self) -> tuple[UnifiedRecord, ...]:
        try:
            records = await self.load_unified()
        except FetchError as exc:
            self._report_failure(exc)
            return self._records
        self._records = tuple(records)
        self.last_refreshed = self._clock()
        logger.info("census_refresh_completed", records=len(self._records))
        return self._records

    async def refresh_appointments(self) -> tuple[AppointmentRecord, ...]:
        try:
            appointments = await self.load_appointments()
        except FetchError as exc:
            self._report_failure(exc)
            return self._appointments
        self._appointments = tuple(appointments)
        return self._appointments

    async def refresh_daily_reports(self, report_date: date) -> tuple[DailyReportRecord, ...]:
        try:
            reports = await self.load_daily_reports(report_date)
        except FetchError as exc:
            self._report_failure(exc)
            if self._daily_report_date == report_date:
                return self._daily_reports
            return ()
        self._daily_reports = tuple(reports)
        self._daily_report_date = report_date
        return self._daily_reports

    def replace(
        self,
        records: Iterable[UnifiedRecord],
        appointments: Iterable[AppointmentRecord] | None = None,
    ) -> None:
        """Install already-loaded data, e.g. from :meth:`load_unified`."""

        self._records = tuple(records)
        if appointments is not None:
            self._appointments = tuple(appointments)
        self.last_refreshed = self._clock()

    # -- views ----------------------------------------------------------

    def view(self, target_date: date, specialty: str | None = None) -> list[UnifiedRecord]:
        """Return the held records for ``target_date`` and ``specialty``."""

        return filter_by_date_and_specialty(self._records, target_date, specialty, tz=self._tz)

    def build_report(
        self,
        assembler: ReportAssembler,
        target_date: date,
        specialty: str | None = None,
    ) -> tuple[str, bytes]:
        """Render the daily report from held data.

        The assembler receives date/specialty-filtered records and every
        appointment, unfiltered.
        """

        records = self.view(target_date, specialty)
        document = assembler.render(records, list(self._appointments), target_date, specialty)
        logger.info(
            "daily_report_rendered",
            records=len(records),
            appointments=len(self._appointments),
            report_date=target_date.isoformat(),
        )
        return report_filename(target_date, specialty), document


__all__ = ["CensusService", "DEFAULT_DISCHARGE_WINDOW"]
