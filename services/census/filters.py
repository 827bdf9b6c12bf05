"""Pure projections over the unified census view."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, tzinfo

from shared.models.census import UnifiedRecord


def local_calendar_date(value: datetime, tz: tzinfo | None = None) -> date:
    """Return the calendar day ``value`` falls on in the local zone.

    Naive timestamps are already local. Aware timestamps are converted to
    ``tz``, or to the host zone when ``tz`` is ``None``, before the date
    components are read.
    """

    if value.tzinfo is None or value.utcoffset() is None:
        return value.date()
    return value.astimezone(tz).date()


def matches_date(record: UnifiedRecord, target_date: date, tz: tzinfo | None = None) -> bool:
    return local_calendar_date(record.admission_timestamp, tz) == target_date


def matches_specialty(record: UnifiedRecord, specialty: str | None) -> bool:
    if not specialty:
        return True
    return record.specialty == specialty


def filter_by_date_and_specialty(
    records: Iterable[UnifiedRecord],
    target_date: date,
    specialty: str | None = None,
    *,
    tz: tzinfo | None = None,
) -> list[UnifiedRecord]:
    """Return the records dated ``target_date`` and, if given, in ``specialty``.

    Order is preserved and the inputs are not modified, so applying the filter
    twice gives the same result as applying it once.
    """

    if isinstance(target_date, datetime):
        target_date = target_date.date()
    return [
        record
        for record in records
        if matches_date(record, target_date, tz) and matches_specialty(record, specialty)
    ]


def search_records(records: Iterable[UnifiedRecord], term: str | None) -> list[UnifiedRecord]:
    """Match ``term`` against patient names (case-insensitive) or MRNs."""

    needle = (term or "").strip()
    if not needle:
        return list(records)
    folded = needle.casefold()
    return [
        record
        for record in records
        if folded in record.patient_name.casefold() or needle in record.mrn
    ]


__all__ = [
    "filter_by_date_and_specialty",
    "local_calendar_date",
    "matches_date",
    "matches_specialty",
    "search_records",
]
