"""Unit tests for deadline input validation, copy titles and status stamping."""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from dtrack.db.models import Deadline
from dtrack.deadlines.service import apply_status, copy_title, strip_copy_marker, validate_deadline_input
from dtrack.errors import ValidationError
from dtrack.time_utils import as_utc, day_boundaries, get_zone, parse_due_date

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class TestValidateDeadlineInput:
    def test_required_fields(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_deadline_input({})
        assert exc_info.value.errors == ["Title is required", "Due date is required"]

    def test_valid_input_is_normalised(self):
        clean = validate_deadline_input({
            "title": "  Essay  ",
            "due_date": "2030-01-15",
            "description": "",
            "priority": "high",
            "owner_id": 99,
        })
        assert clean["title"] == "Essay"
        assert clean["due_date"] == datetime(2030, 1, 15, 23, 59, 59, tzinfo=timezone.utc)
        assert clean["description"] is None
        assert "owner_id" not in clean

    def test_collects_every_error(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_deadline_input({
                "title": "x" * 256,
                "due_date": "soon",
                "priority": "critical",
                "status": "done",
                "estimated_hours": -1,
                "completion_percentage": 150,
            })
        errors = exc_info.value.errors
        assert "Title must be at most 255 characters" in errors
        assert "Due date must be a valid ISO 8601 date" in errors
        assert "Priority must be one of: low, medium, high, urgent" in errors
        assert "Status must be one of: pending, in_progress, completed, overdue" in errors
        assert "Estimated hours must be a non-negative number" in errors
        assert "Completion percentage must be between 0 and 100" in errors

    def test_partial_allows_missing_fields(self):
        assert validate_deadline_input({"notes": "n"}, partial=True) == {"notes": "n"}

    def test_partial_rejects_blanking_required_fields(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_deadline_input({"title": " ", "due_date": ""}, partial=True)
        assert exc_info.value.errors == ["Title cannot be empty", "Due date cannot be empty"]


class TestCopyTitles:
    def test_suffix_appended_once(self):
        assert copy_title("Essay", " (My Copy)") == "Essay (My Copy)"

    def test_suffix_does_not_stack(self):
        assert copy_title("Essay (My Copy)", " (My Copy)") == "Essay (My Copy)"
        assert copy_title("Essay (Copy)", " (My Copy)") == "Essay (My Copy)"

    def test_strip_repeated_markers(self):
        assert strip_copy_marker("Essay (My Copy) (My Copy)") == "Essay"

    def test_long_title_fits_column(self):
        title = copy_title("x" * 300, " (My Copy)")
        assert len(title) == 255
        assert title.endswith(" (My Copy)")


class TestApplyStatus:
    def test_completed_stamps_and_clears(self):
        deadline = Deadline(title="Essay", status="pending")
        apply_status(deadline, "completed", NOW)
        assert deadline.status == "completed"
        assert deadline.completed_at == NOW

        apply_status(deadline, "in_progress", NOW + timedelta(hours=1))
        assert deadline.completed_at is None

    def test_recompleting_keeps_original_stamp(self):
        deadline = Deadline(title="Essay", status="completed", completed_at=NOW)
        apply_status(deadline, "completed", NOW + timedelta(hours=5))
        assert deadline.completed_at == NOW


class TestTimeUtils:
    def test_date_only_means_end_of_day(self):
        assert parse_due_date("2030-01-15") == datetime(2030, 1, 15, 23, 59, 59, tzinfo=timezone.utc)
        assert parse_due_date(date(2030, 1, 15)) == datetime(2030, 1, 15, 23, 59, 59, tzinfo=timezone.utc)

    def test_offsets_normalised_to_utc(self):
        assert parse_due_date("2030-01-15T10:00:00Z") == datetime(2030, 1, 15, 10, 0, tzinfo=timezone.utc)
        assert parse_due_date("2030-01-15T10:00:00+02:00") == datetime(2030, 1, 15, 8, 0, tzinfo=timezone.utc)

    def test_invalid_string(self):
        with pytest.raises(ValueError):
            parse_due_date("next tuesday")

    def test_as_utc_on_naive(self):
        assert as_utc(datetime(2030, 1, 1, 12, 0)).tzinfo is timezone.utc

    def test_day_boundaries_utc(self):
        start, end = day_boundaries(NOW)
        assert start == datetime(2026, 3, 2, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 3, tzinfo=timezone.utc)

    def test_day_boundaries_in_zone(self):
        start, end = day_boundaries(NOW, ZoneInfo("America/New_York"))
        assert start == datetime(2026, 3, 2, 5, 0, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 3, 5, 0, tzinfo=timezone.utc)

    def test_get_zone(self):
        assert get_zone("utc") is timezone.utc
        assert get_zone("Europe/Berlin") == ZoneInfo("Europe/Berlin")
