"""Seed-context extraction from a triggering user message.

Builds the initial execution context for a template. Keys are merged in a
fixed order and later sources overwrite earlier ones:

1. template ``default_parameters``
2. caller-supplied conversation context
3. ``userMessage``, ``userId``, ``timestamp``
4. ``extractedEmails`` / ``primaryEmail``
5. ``extractedDates`` / ``primaryDate`` (ISO ``YYYY-MM-DD``)
6. ``extractedTimes`` / ``primaryTime`` (24h ``HH:MM``)
7. ``extractedDateTime`` when both a date and a time were found

Relative dates ("tomorrow", "next friday", "in 3 days") resolve against an
injectable clock so results are reproducible in tests.
"""

import logging
import re
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Any

from flowdesk.workflows.models import WorkflowTemplate

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_EMAIL = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

_WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}  # fmt: skip

_ISO_DATE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_US_DATE = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b")
_MONTH_DATE = re.compile(
    r"\b(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?\s+"
    r"(\d{1,2})(?:st|nd|rd|th)?(?:,?\s+(\d{4}))?\b",
    re.IGNORECASE,
)
_IN_DAYS = re.compile(r"\bin\s+(\d{1,3})\s+days?\b", re.IGNORECASE)
_NEXT_WEEK = re.compile(r"\bnext\s+week\b", re.IGNORECASE)
_WEEKDAY = re.compile(
    r"\b(?:(next|this|on)\s+)?(" + "|".join(_WEEKDAYS) + r")\b",
    re.IGNORECASE,
)
_RELATIVE_DAY = re.compile(r"\b(today|tomorrow|yesterday)\b", re.IGNORECASE)

_CLOCK_TIME = re.compile(r"\b(\d{1,2}):(\d{2})(?:\s*([ap])\.?m\.?)?(?![\w:])", re.IGNORECASE)
_MERIDIEM_TIME = re.compile(r"\b(\d{1,2})\s*([ap])\.?m\b\.?", re.IGNORECASE)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _to_24h(hour: int, minute: int, meridiem: str | None) -> tuple[int, int] | None:
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem.lower() == "p" else 0)
    if hour > 23 or minute > 59:
        return None
    return hour, minute


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class ParameterExtractor:
    """Derives the seed execution context from a user message."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or _utcnow

    def extract(
        self,
        template: WorkflowTemplate,
        message: str,
        *,
        user_id: str = "",
        conversation_context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Build the seed context for running *template*.

        Args:
            template: Template being started.
            message: The triggering user message.
            user_id: Requesting user.
            conversation_context: Extra values from the conversation, e.g. a
                ``selectedMeetingId`` chosen in the UI.

        Returns:
            A fresh dict; keys with no extracted value are left absent.
        """
        now = self._clock()
        message = message or ""

        params: dict[str, Any] = dict(template.default_parameters)
        if conversation_context:
            params.update(conversation_context)

        params["userMessage"] = message
        params["userId"] = user_id
        params["timestamp"] = now.isoformat()

        emails = self.extract_emails(message)
        if emails:
            params["extractedEmails"] = emails
            params["primaryEmail"] = emails[0]

        dates = self.extract_dates(message, today=now.date())
        if dates:
            params["extractedDates"] = [d.isoformat() for d in dates]
            params["primaryDate"] = dates[0].isoformat()

        times = self.extract_times(message)
        if times:
            params["extractedTimes"] = times
            params["primaryTime"] = times[0]

        if dates and times:
            params["extractedDateTime"] = f"{dates[0].isoformat()}T{times[0]}:00"

        logger.debug(
            "Extracted workflow parameters",
            extra={
                "template_id": template.id,
                "emails": len(emails),
                "dates": len(dates),
                "times": len(times),
            },
        )
        return params

    # ------------------------------------------------------------------
    # Individual extractors
    # ------------------------------------------------------------------

    @staticmethod
    def extract_emails(message: str) -> list[str]:
        """Email addresses in message order, without duplicates."""
        return list(dict.fromkeys(m.group(0) for m in _EMAIL.finditer(message)))

    def extract_dates(self, message: str, today: date | None = None) -> list[date]:
        """Resolve date expressions in *message* to calendar dates.

        Patterns are tried from most to least specific; a span consumed by
        one pattern is not matched again (so "next friday" is not also read
        as a bare "friday"). Results are in message order, deduplicated.
        """
        today = today or self._clock().date()
        found: list[tuple[int, date]] = []
        consumed: list[tuple[int, int]] = []

        def claim(match: re.Match[str], value: date | None) -> None:
            start, end = match.span()
            if value is None or any(s < end and start < e for s, e in consumed):
                return
            consumed.append((start, end))
            found.append((start, value))

        for m in _ISO_DATE.finditer(message):
            claim(m, _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3))))

        for m in _US_DATE.finditer(message):
            claim(m, _safe_date(int(m.group(3)), int(m.group(1)), int(m.group(2))))

        for m in _MONTH_DATE.finditer(message):
            month = _MONTHS[m.group(1)[:3].lower()]
            day = int(m.group(2))
            if m.group(3):
                claim(m, _safe_date(int(m.group(3)), month, day))
                continue
            value = _safe_date(today.year, month, day)
            if value is not None and value < today:
                # A month-day without a year means the next occurrence
                value = _safe_date(today.year + 1, month, day)
            claim(m, value)

        for m in _IN_DAYS.finditer(message):
            claim(m, today + timedelta(days=int(m.group(1))))

        for m in _NEXT_WEEK.finditer(message):
            claim(m, today + timedelta(days=(7 - today.weekday()) % 7 or 7))

        for m in _WEEKDAY.finditer(message):
            target = _WEEKDAYS.index(m.group(2).lower())
            ahead = (target - today.weekday()) % 7
            if m.group(1) and m.group(1).lower() == "next" and ahead == 0:
                ahead = 7
            claim(m, today + timedelta(days=ahead))

        for m in _RELATIVE_DAY.finditer(message):
            offset = {"today": 0, "tomorrow": 1, "yesterday": -1}[m.group(1).lower()]
            claim(m, today + timedelta(days=offset))

        found.sort(key=lambda item: item[0])
        return list(dict.fromkeys(value for _, value in found))

    @staticmethod
    def extract_times(message: str) -> list[str]:
        """Clock times ("14:30", "2:30 pm", "9am") as 24h ``HH:MM`` strings."""
        found: list[tuple[int, str]] = []
        consumed: list[tuple[int, int]] = []

        for m in _CLOCK_TIME.finditer(message):
            parsed = _to_24h(int(m.group(1)), int(m.group(2)), m.group(3))
            if parsed is not None:
                consumed.append(m.span())
                found.append((m.start(), f"{parsed[0]:02d}:{parsed[1]:02d}"))

        for m in _MERIDIEM_TIME.finditer(message):
            start, end = m.span()
            if any(s < end and start < e for s, e in consumed):
                continue
            parsed = _to_24h(int(m.group(1)), 0, m.group(2))
            if parsed is not None:
                found.append((start, f"{parsed[0]:02d}:{parsed[1]:02d}"))

        found.sort(key=lambda item: item[0])
        return list(dict.fromkeys(value for _, value in found))
