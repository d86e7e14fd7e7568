"""Tests for the GTFS archive validator."""

from datetime import date

from feedmanager.services.validator import GtfsZipValidator, ValidationResult
from tests.conftest import GTFS_TABLES, write_gtfs_zip


class TestValidationResult:
    """Tests for ValidationResult."""

    def test_add_error_counts_by_severity(self) -> None:
        """Test blocking and high severity errors are counted separately."""
        result = ValidationResult()
        result.add_error("MISSING_TABLE", "BLOCKING", "stops.txt missing")
        result.add_error("BAD_TIME", "HIGH", "Invalid arrival time")
        result.add_error("UNUSED_STOP", "LOW", "Stop is never served")

        assert result.blocking_error_count == 1
        assert result.high_severity_error_count == 1
        assert len(result.errors) == 3
        assert result.has_blocking_errors is True
        assert result.has_critical_errors is True

    def test_gtfs_plus_blocking_counted_separately(self) -> None:
        """Test blocking errors in GTFS+ tables have their own count."""
        result = ValidationResult()
        result.add_error("EMPTY_GTFS_PLUS_TABLE", "BLOCKING", "route_attributes.txt is empty", gtfs_plus=True)

        assert result.gtfs_plus_blocking_error_count == 1
        assert result.blocking_error_count == 0
        assert result.has_blocking_errors is False

    def test_out_of_date(self) -> None:
        """Test out of date compares the last service date to today."""
        result = ValidationResult(last_calendar_date=date(2024, 1, 31))
        assert result.is_out_of_date(date(2024, 2, 1)) is True
        assert result.is_out_of_date(date(2024, 1, 31)) is False
        assert ValidationResult().is_out_of_date(date(2024, 2, 1)) is False


class TestGtfsZipValidator:
    """Tests for GtfsZipValidator."""

    def test_valid_feed(self, gtfs_zip) -> None:
        """Test a complete feed has no errors."""
        result = GtfsZipValidator().validate(gtfs_zip)

        assert result.errors == []
        assert result.has_critical_errors is False
        assert result.last_calendar_date == date(2099, 12, 31)

    def test_missing_required_table(self, tmp_path) -> None:
        """Test a missing required table is a blocking error."""
        tables = {name: content for name, content in GTFS_TABLES.items() if name != "stops.txt"}
        path = write_gtfs_zip(tmp_path / "feed.zip", tables)

        result = GtfsZipValidator().validate(path)

        assert result.blocking_error_count == 1
        assert "stops.txt" in result.errors[0]["message"]

    def test_missing_calendar(self, tmp_path) -> None:
        """Test a feed without any calendar table is blocked."""
        tables = {name: content for name, content in GTFS_TABLES.items() if name != "calendar.txt"}
        path = write_gtfs_zip(tmp_path / "feed.zip", tables)

        result = GtfsZipValidator().validate(path)

        assert result.blocking_error_count == 1
        assert result.last_calendar_date is None

    def test_calendar_dates_extend_service(self, tmp_path) -> None:
        """Test the last service date includes calendar_dates.txt exceptions."""
        tables = dict(GTFS_TABLES)
        tables["calendar.txt"] = (
            "service_id,monday,tuesday,wednesday,thursday,friday,saturday,sunday,start_date,end_date\n"
            "WK,1,1,1,1,1,0,0,20240101,20240630\n"
        )
        tables["calendar_dates.txt"] = "service_id,date,exception_type\nWK,20240704,1\nWK,20240101,2\n"
        path = write_gtfs_zip(tmp_path / "feed.zip", tables)

        result = GtfsZipValidator().validate(path)

        assert result.last_calendar_date == date(2024, 7, 4)

    def test_not_a_zip(self, tmp_path) -> None:
        """Test a non-archive file is a blocking error."""
        path = tmp_path / "feed.zip"
        path.write_text("<html>Not found</html>")

        result = GtfsZipValidator().validate(path)

        assert result.blocking_error_count == 1
        assert result.errors[0]["type"] == "INVALID_ARCHIVE"

    def test_empty_gtfs_plus_table(self, tmp_path) -> None:
        """Test an empty GTFS+ table is a GTFS+ blocking error."""
        tables = dict(GTFS_TABLES)
        tables["route_attributes.txt"] = ""
        tables["directions.txt"] = "route_id,direction_id,direction\nR1,0,Outbound\n"
        path = write_gtfs_zip(tmp_path / "feed.zip", tables)

        result = GtfsZipValidator().validate(path)

        assert result.gtfs_plus_blocking_error_count == 1
        assert result.blocking_error_count == 0
        assert "route_attributes.txt" in result.errors[0]["message"]
