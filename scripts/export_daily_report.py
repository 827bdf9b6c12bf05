"""Render the daily census report PDF for one date from the command line."""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import date
from pathlib import Path
from typing import Iterable

from repositories.records import SqlRecordStore, build_record_store
from services.census.census import CensusService
from services.census.config import get_settings
from services.census.reporting import PdfReportAssembler
from shared.models.census import SPECIALTIES
from shared.observability.logger import configure_logging


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"'{value}' is not an ISO date (YYYY-MM-DD)") from exc


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Load the census and appointments from the configured record store "
            "and write the daily report PDF."
        )
    )
    parser.add_argument("report_date", type=_parse_date, help="Report date, e.g. 2024-03-14.")
    parser.add_argument(
        "--specialty",
        choices=SPECIALTIES,
        default=None,
        help="Restrict census rows to one specialty (appointments are never filtered).",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Destination file or directory (default: the current directory).",
    )
    parser.add_argument(
        "--database-url",
        dest="database_url",
        default=None,
        help="SQLAlchemy async URL overriding CENSUS_DATABASE__DSN.",
    )
    return parser


def _destination(output: Path | None, filename: str) -> Path:
    if output is None:
        return Path.cwd() / filename
    if output.is_dir():
        return output / filename
    return output


async def _run_async(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = build_record_store(
        args.database_url or settings.database.dsn,
        fixtures_path=settings.fixtures_path,
        read_attempts=settings.read_retry_attempts,
    )
    census = CensusService(
        store,
        discharge_window=settings.discharge_window,
        tz=settings.resolve_timezone(),
    )
    try:
        # load_* raise FetchError, so a failed fetch aborts the export.
        records, appointments = await asyncio.gather(
            census.load_unified(), census.load_appointments()
        )
    finally:
        if isinstance(store, SqlRecordStore):
            await store.dispose()

    census.replace(records, appointments)
    filename, document = census.build_report(
        PdfReportAssembler(), args.report_date, args.specialty
    )
    destination = _destination(args.output, filename)
    destination.write_bytes(document)
    print(f"Wrote {destination} ({len(document)} bytes)")
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_parser()
    parsed_args = parser.parse_args(None if argv is None else list(argv))
    configure_logging(service_name="census-export", level=get_settings().log_level)
    try:
        return asyncio.run(_run_async(parsed_args))
    except KeyboardInterrupt:  # pragma: no cover - manual cancellation guard
        return 130
    except Exception as exc:  # pragma: no cover - surface script errors cleanly
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
