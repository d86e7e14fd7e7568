"""Feed validation collaborator.

The job core consumes validation only as severity-classified error counts.
``GtfsZipValidator`` is a structural check of the feed archive (required
tables present and parseable, GTFS+ tables non-empty, service calendar end
date); a full GTFS validator can be plugged in through the ``Validator``
protocol.
"""

import csv
import io
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

REQUIRED_TABLES = (
    "agency.txt",
    "stops.txt",
    "routes.txt",
    "trips.txt",
    "stop_times.txt",
)
CALENDAR_TABLES = ("calendar.txt", "calendar_dates.txt")
# MTC GTFS+ extension tables, optional but checked when present
GTFS_PLUS_TABLES = (
    "calendar_attributes.txt",
    "directions.txt",
    "fare_rider_categories.txt",
    "farezone_attributes.txt",
    "rider_categories.txt",
    "route_attributes.txt",
    "stop_attributes.txt",
    "timepoints.txt",
)


@dataclass
class ValidationResult:
    """Severity-classified outcome of validating a feed version.

    Attributes:
        blocking_error_count: Errors that block publishing and deployment
        gtfs_plus_blocking_error_count: Blocking errors in GTFS+ tables
        high_severity_error_count: Errors that block deployment
        last_calendar_date: Last date with service, if known
        errors: Individual error records (type, severity, message)
    """

    blocking_error_count: int = 0
    gtfs_plus_blocking_error_count: int = 0
    high_severity_error_count: int = 0
    last_calendar_date: Optional[date] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def has_blocking_errors(self) -> bool:
        return self.blocking_error_count > 0

    @property
    def has_critical_errors(self) -> bool:
        return self.blocking_error_count > 0 or self.high_severity_error_count > 0

    def is_out_of_date(self, today: Optional[date] = None) -> bool:
        """Whether the feed's service ends before ``today``."""
        if self.last_calendar_date is None:
            return False
        return self.last_calendar_date < (today or date.today())

    def add_error(
        self, error_type: str, severity: str, message: str, gtfs_plus: bool = False
    ) -> None:
        """Record an error. Blocking errors in GTFS+ tables are counted separately."""
        self.errors.append({"type": error_type, "severity": severity, "message": message})
        if severity == "BLOCKING" and gtfs_plus:
            self.gtfs_plus_blocking_error_count += 1
        elif severity == "BLOCKING":
            self.blocking_error_count += 1
        elif severity == "HIGH":
            self.high_severity_error_count += 1


class Validator(Protocol):
    """Contract for feed validators."""

    def validate(self, feed_path: Path) -> ValidationResult:
        ...


def _parse_gtfs_date(value: str) -> Optional[date]:
    try:
        return datetime.strptime(value.strip(), "%Y%m%d").date()
    except ValueError:
        return None


class GtfsZipValidator:
    """Structural validator for GTFS zip archives."""

    def validate(self, feed_path: Path) -> ValidationResult:
        result = ValidationResult()

        if not zipfile.is_zipfile(feed_path):
            result.add_error("INVALID_ARCHIVE", "BLOCKING", f"{feed_path.name} is not a zip archive")
            return result

        with zipfile.ZipFile(feed_path) as archive:
            names = {Path(n).name for n in archive.namelist() if not n.endswith("/")}

            for table in REQUIRED_TABLES:
                if table not in names:
                    result.add_error("MISSING_TABLE", "BLOCKING", f"Required table {table} is missing")

            if not any(table in names for table in CALENDAR_TABLES):
                result.add_error(
                    "MISSING_TABLE",
                    "BLOCKING",
                    "Feed has neither calendar.txt nor calendar_dates.txt",
                )

            for table in GTFS_PLUS_TABLES:
                if table in names and not self._has_header(archive, table):
                    result.add_error(
                        "EMPTY_GTFS_PLUS_TABLE",
                        "BLOCKING",
                        f"GTFS+ table {table} has no header row",
                        gtfs_plus=True,
                    )

            result.last_calendar_date = self._last_service_date(archive)

        logger.debug(
            f"Validated {feed_path}: {result.blocking_error_count} blocking, "
            f"{result.high_severity_error_count} high severity, "
            f"{result.gtfs_plus_blocking_error_count} GTFS+ blocking"
        )
        return result

    def _last_service_date(self, archive: zipfile.ZipFile) -> Optional[date]:
        """Latest end_date in calendar.txt or date in calendar_dates.txt."""
        last: Optional[date] = None
        for member, column in (("calendar.txt", "end_date"), ("calendar_dates.txt", "date")):
            path = next((n for n in archive.namelist() if Path(n).name == member), None)
            if path is None:
                continue
            with archive.open(path) as raw:
                reader = csv.DictReader(io.TextIOWrapper(raw, encoding="utf-8-sig"))
                for row in reader:
                    parsed = _parse_gtfs_date(row.get(column) or "")
                    if parsed and (last is None or parsed > last):
                        last = parsed
        return last

    def _has_header(self, archive: zipfile.ZipFile, member: str) -> bool:
        path = next(n for n in archive.namelist() if Path(n).name == member)
        with archive.open(path) as raw:
            header = next(csv.reader(io.TextIOWrapper(raw, encoding="utf-8-sig")), [])
        return any(column.strip() for column in header)
