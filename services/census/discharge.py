"""Discharge state transitions for admissions and consultations.

Admissions move ``Active -> Discharged`` and consultations ``Active ->
Completed``. Both terminal states are final. The backing table is chosen by
the record's ``origin`` tag through :data:`DISCHARGE_ROUTES`; record content is
never inspected to decide where an update goes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, tzinfo
from operator import attrgetter
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping

from repositories.records import RecordStore, StoreError
from repositories.schema import ADMISSIONS_TABLE, CONSULTATIONS_TABLE
from shared.models.census import (
    AdmissionStatus,
    ConsultationStatus,
    RecordOrigin,
    UnifiedRecord,
)
from shared.observability.logger import get_logger

from .errors import (
    DischargeError,
    DischargeInProgressError,
    DischargeValidationError,
    FetchError,
    RecordNotFoundError,
)
from .filters import matches_specialty, search_records
from .mappers import unify_rows
from .notifications import NotificationCenter
from .sources import gather_sources

logger = get_logger(__name__)

Updater = Callable[[str, Mapping[str, Any]], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class DischargeRoute:
    """Where and how a discharge for one origin is written."""

    origin: RecordOrigin
    table: str
    status_column: str
    terminal_status: str
    label: str
    updater: Callable[[RecordStore], Updater]

    def build_payload(
        self, *, note: str, discharged_at: datetime, now: datetime
    ) -> dict[str, Any]:
        return {
            self.status_column: self.terminal_status,
            "updated_at": now,
            "discharge_note": note,
            "discharge_date": discharged_at,
        }

    async def apply(self, store: RecordStore, mrn: str, payload: Mapping[str, Any]) -> None:
        await self.updater(store)(mrn, payload)


DISCHARGE_ROUTES: Mapping[RecordOrigin, DischargeRoute] = MappingProxyType(
    {
        RecordOrigin.ADMISSION: DischargeRoute(
            origin=RecordOrigin.ADMISSION,
            table=ADMISSIONS_TABLE,
            status_column="patient_status",
            terminal_status=AdmissionStatus.DISCHARGED.value,
            label="Patient",
            updater=attrgetter("update_admission"),
        ),
        RecordOrigin.CONSULTATION: DischargeRoute(
            origin=RecordOrigin.CONSULTATION,
            table=CONSULTATIONS_TABLE,
            status_column="status",
            terminal_status=ConsultationStatus.COMPLETED.value,
            label="Consultation",
            updater=attrgetter("update_consultation"),
        ),
    }
)


def route_for(record: UnifiedRecord) -> DischargeRoute:
    return DISCHARGE_ROUTES[record.origin]


def _parse_date(value: date | str | None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            return None
    return None


def _parse_time(value: time | str | None) -> time | None:
    if isinstance(value, time):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return time.fromisoformat(value.strip())
        except ValueError:
            return None
    return None


def validate_schedule(
    discharge_date: date | str | None, discharge_time: time | str | None
) -> tuple[date, time]:
    """Return the parsed date and time or raise :class:`DischargeValidationError`."""

    parsed_date = _parse_date(discharge_date)
    parsed_time = _parse_time(discharge_time)
    invalid: list[str] = []
    if parsed_date is None:
        invalid.append("dischargeDate")
    if parsed_time is None:
        invalid.append("dischargeTime")
    if invalid:
        raise DischargeValidationError(
            "Please fill in all required fields: a valid discharge date and time.",
            fields=invalid,
        )
    assert parsed_date is not None and parsed_time is not None
    return parsed_date, parsed_time


@dataclass
class DischargeForm:
    """Operator input for the record currently selected for discharge."""

    discharge_date: date | None = None
    discharge_time: time | None = None
    note: str = ""

    def reset(self) -> None:
        self.discharge_date = None
        self.discharge_time = None
        self.note = ""


@dataclass(frozen=True)
class DischargeOutcome:
    """Result of a confirmed discharge."""

    record: UnifiedRecord
    table: str
    status: str
    discharged_at: datetime
    message: str
    payload: Mapping[str, Any] = field(default_factory=dict)


class DischargeEngine:
    """Owns the discharge candidate list and applies discharge transitions."""

    def __init__(
        self,
        store: RecordStore,
        *,
        notifications: NotificationCenter | None = None,
        clock: Callable[[], datetime] | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        self._store = store
        self._notifications = notifications or NotificationCenter()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._tz = tz
        self._candidates: tuple[UnifiedRecord, ...] = ()
        self._in_flight: set[tuple[RecordOrigin, str]] = set()
        self.selected: UnifiedRecord | None = None
        self.form = DischargeForm()

    @property
    def candidates(self) -> tuple[UnifiedRecord, ...]:
        return self._candidates

    @property
    def notifications(self) -> NotificationCenter:
        return self._notifications

    def is_in_flight(self, record: UnifiedRecord) -> bool:
        return record.key in self._in_flight

    # -- candidates -----------------------------------------------------

    async def load_candidates(self) -> list[UnifiedRecord]:
        """Fetch active admissions and consultations; raises :class:`FetchError`."""

        results = await gather_sources(
            **{
                "active admissions": self._store.fetch_active_admissions(),
                "active consultations": self._store.fetch_active_consultations(),
            }
        )
        unified = unify_rows(results["active admissions"], results["active consultations"])
        return [record for record in unified if record.is_active]

    async def refresh_candidates(self) -> tuple[UnifiedRecord, ...]:
        """Replace the candidate list, keeping the previous one if a fetch fails."""

        try:
            candidates = await self.load_candidates()
        except FetchError as exc:
            for source in exc.sources:
                self._notifications.warning(f"Failed to fetch {source}", source=source)
            return self._candidates

        self._candidates = tuple(candidates)
        if self.selected is not None and self._find(self.selected.key) is None:
            self._clear_selection()
        logger.info("discharge_candidates_refreshed", count=len(self._candidates))
        return self._candidates

    def filter_candidates(
        self, search: str | None = None, specialty: str | None = None
    ) -> list[UnifiedRecord]:
        return [
            record
            for record in search_records(self._candidates, search)
            if matches_specialty(record, specialty)
        ]

    def _find(self, key: tuple[RecordOrigin, str]) -> UnifiedRecord | None:
        for record in self._candidates:
            if record.key == key:
                return record
        return None

    def find_candidate(self, origin: RecordOrigin, mrn: str) -> UnifiedRecord:
        record = self._find((origin, mrn))
        if record is None:
            raise RecordNotFoundError(origin, mrn)
        return record

    # -- selection ------------------------------------------------------

    def select(self, record: UnifiedRecord) -> DischargeForm:
        """Select ``record`` and prefill the form with the current date and time."""

        if not record.is_active:
            raise DischargeValidationError(
                f"{route_for(record).label} '{record.mrn}' is {record.status} "
                "and cannot be discharged."
            )
        now = self._clock().astimezone(self._tz)
        self.selected = record
        self.form = DischargeForm(
            discharge_date=now.date(),
            discharge_time=now.time().replace(second=0, microsecond=0, tzinfo=None),
            note="",
        )
        return self.form

    def select_by_key(self, origin: RecordOrigin, mrn: str) -> DischargeForm:
        return self.select(self.find_candidate(origin, mrn))

    def _clear_selection(self) -> None:
        self.selected = None
        self.form.reset()

    # -- transition -----------------------------------------------------

    async def discharge(
        self,
        selected: UnifiedRecord | None,
        discharge_date: date | str | None,
        discharge_time: time | str | None,
        note: str | None = "",
    ) -> DischargeOutcome:
        """Move ``selected`` to its terminal status.

        Local state changes only after the store confirms the update. A store
        failure raises :class:`DischargeError` and leaves the candidate list,
        the selection and the form untouched.
        """

        if selected is None:
            raise DischargeValidationError(
                "Select a patient or consultation to discharge.", fields=["selected"]
            )
        when_date, when_time = validate_schedule(discharge_date, discharge_time)
        route = route_for(selected)
        if not selected.is_active:
            raise DischargeValidationError(
                f"{route.label} '{selected.mrn}' is {selected.status} and cannot be discharged."
            )

        key = selected.key
        if key in self._in_flight:
            raise DischargeInProgressError(*key)

        discharged_at = datetime.combine(when_date, when_time.replace(tzinfo=None), tzinfo=self._tz)
        payload = route.build_payload(
            note=note or "", discharged_at=discharged_at, now=self._clock()
        )
        log = logger.bind(origin=selected.origin.value, mrn=selected.mrn, table=route.table)

        self._in_flight.add(key)
        try:
            await route.apply(self._store, selected.mrn, payload)
        except StoreError as exc:
            log.warning("discharge_failed", error=str(exc))
            self._notifications.error(
                f"Failed to discharge {route.label.lower()}",
                origin=selected.origin.value,
                mrn=selected.mrn,
            )
            raise DischargeError(selected.origin, selected.mrn, cause=exc) from exc
        finally:
            self._in_flight.discard(key)

        self._candidates = tuple(record for record in self._candidates if record.key != key)
        self._clear_selection()

        message = f"{route.label} {selected.patient_name} has been successfully discharged."
        self._notifications.success(message, origin=selected.origin.value, mrn=selected.mrn)
        log.info("discharge_applied", status=route.terminal_status)
        return DischargeOutcome(
            record=selected,
            table=route.table,
            status=route.terminal_status,
            discharged_at=discharged_at,
            message=message,
            payload=payload,
        )

    async def submit(self) -> DischargeOutcome:
        """Discharge the selected record using the current form values."""

        return await self.discharge(
            self.selected,
            self.form.discharge_date,
            self.form.discharge_time,
            self.form.note,
        )


__all__ = [
    "DISCHARGE_ROUTES",
    "DischargeEngine",
    "DischargeForm",
    "DischargeOutcome",
    "DischargeRoute",
    "route_for",
    "validate_schedule",
]
