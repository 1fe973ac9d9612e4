"""Tests for seed-context extraction from user messages."""

from datetime import UTC, date, datetime

import pytest

from flowdesk.workflows.models import StepTemplate, WorkflowTemplate
from flowdesk.workflows.parameters import ParameterExtractor

# Wednesday
_NOW = datetime(2026, 10, 21, 8, 30, tzinfo=UTC)


@pytest.fixture
def extractor() -> ParameterExtractor:
    return ParameterExtractor(clock=lambda: _NOW)


def _template(**defaults: object) -> WorkflowTemplate:
    return WorkflowTemplate(
        id="wf",
        name="Workflow",
        steps=[StepTemplate(id="a", plugin_name="P", function_name="F")],
        default_parameters=defaults,
    )


class TestExtract:
    """Tests for ParameterExtractor.extract."""

    def test_base_keys(self, extractor: ParameterExtractor) -> None:
        params = extractor.extract(_template(), "hello", user_id="user-1")

        assert params["userMessage"] == "hello"
        assert params["userId"] == "user-1"
        assert params["timestamp"] == _NOW.isoformat()
        assert "primaryEmail" not in params
        assert "extractedDates" not in params
        assert "extractedDateTime" not in params

    def test_merge_order(self, extractor: ParameterExtractor) -> None:
        """Conversation context overrides defaults; extracted values override both."""
        params = extractor.extract(
            _template(meetingSubject="default", selectedMeetingId=""),
            "email bob@example.com",
            conversation_context={
                "meetingSubject": "Budget",
                "primaryEmail": "stale@example.com",
                "userMessage": "old message",
            },
        )

        assert params["meetingSubject"] == "Budget"
        assert params["selectedMeetingId"] == ""
        assert params["primaryEmail"] == "bob@example.com"
        assert params["userMessage"] == "email bob@example.com"

    def test_emails(self, extractor: ParameterExtractor) -> None:
        params = extractor.extract(
            _template(), "cc ann@example.com, Bob.Smith@corp.io and ann@example.com"
        )

        assert params["extractedEmails"] == ["ann@example.com", "Bob.Smith@corp.io"]
        assert params["primaryEmail"] == "ann@example.com"

    def test_date_and_time_combine(self, extractor: ParameterExtractor) -> None:
        params = extractor.extract(_template(), "Schedule it tomorrow at 3pm")

        assert params["primaryDate"] == "2026-10-22"
        assert params["primaryTime"] == "15:00"
        assert params["extractedDateTime"] == "2026-10-22T15:00:00"

    def test_time_without_date_has_no_datetime(self, extractor: ParameterExtractor) -> None:
        params = extractor.extract(_template(), "at 10:30")

        assert params["extractedTimes"] == ["10:30"]
        assert "extractedDateTime" not in params


class TestExtractDates:
    """Tests for ParameterExtractor.extract_dates."""

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("today", date(2026, 10, 21)),
            ("tomorrow", date(2026, 10, 22)),
            ("yesterday", date(2026, 10, 20)),
            ("next friday", date(2026, 10, 23)),
            ("next wednesday", date(2026, 10, 28)),
            ("this wednesday", date(2026, 10, 21)),
            ("on Monday", date(2026, 10, 26)),
            ("next week", date(2026, 10, 26)),
            ("in 3 days", date(2026, 10, 24)),
            ("2026-11-05", date(2026, 11, 5)),
            ("11/05/2026", date(2026, 11, 5)),
            ("Dec 25", date(2026, 12, 25)),
            ("March 3", date(2027, 3, 3)),
            ("January 5th, 2027", date(2027, 1, 5)),
        ],
    )
    def test_single_expressions(
        self, extractor: ParameterExtractor, message: str, expected: date
    ) -> None:
        assert extractor.extract_dates(message) == [expected]

    def test_message_order_is_kept(self, extractor: ParameterExtractor) -> None:
        dates = extractor.extract_dates("Move the Friday sync to 2026-11-05 or tomorrow")

        assert dates == [date(2026, 10, 23), date(2026, 11, 5), date(2026, 10, 22)]

    def test_invalid_calendar_date_ignored(self, extractor: ParameterExtractor) -> None:
        assert extractor.extract_dates("2026-02-30") == []

    def test_no_dates(self, extractor: ParameterExtractor) -> None:
        assert extractor.extract_dates("nothing scheduled") == []


class TestExtractTimes:
    """Tests for ParameterExtractor.extract_times."""

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("at 14:30", ["14:30"]),
            ("at 9:15 am", ["09:15"]),
            ("2:45PM", ["14:45"]),
            ("from 9am to 5 pm", ["09:00", "17:00"]),
            ("12am", ["00:00"]),
            ("12pm", ["12:00"]),
            ("at 25:00", []),
            ("I am 5 minutes late", []),
        ],
    )
    def test_times(self, message: str, expected: list[str]) -> None:
        assert ParameterExtractor.extract_times(message) == expected
