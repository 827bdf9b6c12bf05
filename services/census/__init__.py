"""Ward census service package."""

from pathlib import Path

from dotenv import load_dotenv

from .census import CensusService
from .discharge import DISCHARGE_ROUTES, DischargeEngine
from .filters import filter_by_date_and_specialty, search_records
from .mappers import unify, unify_rows

__all__ = [
    "__version__",
    "CensusService",
    "DISCHARGE_ROUTES",
    "DischargeEngine",
    "filter_by_date_and_specialty",
    "search_records",
    "unify",
    "unify_rows",
]

__version__ = "0.1.0"

load_dotenv(Path(__file__).resolve().parents[2] / ".env", override=False)
