"""Google Calendar client and day/title event reconciliation."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta

from googleapiclient.errors import HttpError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .constants import (
    DEFAULT_CALENDAR_ID,
    DEFAULT_EVENT_LOCATION,
    EVENT_DURATION_HOURS,
    RETRYABLE_STATUS_CODES,
)
from .errors import CalendarIntegrationError
from .models import ExtractedAlert

logger = logging.getLogger(__name__)


def _is_retryable_http_error(exc: BaseException) -> bool:
    return isinstance(exc, HttpError) and exc.resp.status in RETRYABLE_STATUS_CODES


@retry(
    retry=retry_if_exception(_is_retryable_http_error),
    wait=wait_exponential(multiplier=1, min=1, max=60),
    stop=stop_after_attempt(3),
    reraise=True,
)
def _execute(request) -> dict:
    return request.execute()


def to_rfc3339(value: datetime) -> str:
    """Format a datetime for the Calendar API; naive values are local time."""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat()


def day_window(day: date) -> tuple[datetime, datetime]:
    """Return the 00:00:00 - 23:59:59 window of a calendar day."""
    return datetime.combine(day, time.min), datetime.combine(day, time(23, 59, 59))


class GoogleCalendar:
    """Calendar port backed by an authenticated Google Calendar service."""

    def __init__(self, service, calendar_id: str = DEFAULT_CALENDAR_ID) -> None:
        self._service = service
        self.calendar_id = calendar_id

    # --- provider operations ---

    def find_events(self, time_min: datetime, time_max: datetime, query: str | None = None) -> list[dict]:
        """List single events in [time_min, time_max], optionally text-filtered."""
        events: list[dict] = []
        page_token: str | None = None

        while True:
            kwargs: dict = {
                "calendarId": self.calendar_id,
                "timeMin": to_rfc3339(time_min),
                "timeMax": to_rfc3339(time_max),
                "singleEvents": True,
                "orderBy": "startTime",
            }
            if query:
                kwargs["q"] = query
            if page_token:
                kwargs["pageToken"] = page_token

            try:
                resp = _execute(self._service.events().list(**kwargs))
            except HttpError as e:
                raise CalendarIntegrationError(f"Failed to list calendar events: {e}") from e
            events.extend(resp.get("items", []))

            page_token = resp.get("nextPageToken")
            if not page_token:
                return events

    def insert_event(
        self,
        summary: str,
        description: str | None,
        location: str | None,
        start: datetime,
        end: datetime,
    ) -> dict:
        body = {
            "summary": summary,
            "description": description,
            "location": location,
            "start": {"dateTime": to_rfc3339(start)},
            "end": {"dateTime": to_rfc3339(end)},
        }
        try:
            return _execute(self._service.events().insert(calendarId=self.calendar_id, body=body))
        except HttpError as e:
            raise CalendarIntegrationError(f"Failed to create calendar event '{summary}': {e}") from e

    def delete_event(self, event_id: str) -> None:
        try:
            _execute(self._service.events().delete(calendarId=self.calendar_id, eventId=event_id))
        except HttpError as e:
            raise CalendarIntegrationError(f"Failed to delete calendar event {event_id}: {e}") from e

    # --- reconciliation ---

    def ensure_event(self, alert: ExtractedAlert) -> str | None:
        """Make sure one event titled like the alert exists on the alert's day.

        An existing match is reused, since AI-estimated times can drift between
        cycles for the same announcement. Returns the event link, or None when
        the provider fails.
        """
        time_min, time_max = day_window(alert.date.date())
        try:
            existing = self.find_events(time_min, time_max, query=alert.title)
            if existing:
                link = existing[0].get("htmlLink")
                logger.info("Calendar event already exists for '%s' (ID: %s)", alert.title, existing[0].get("id"))
                return link

            created = self.insert_event(
                summary=alert.title,
                description=alert.description,
                location=alert.url or DEFAULT_EVENT_LOCATION,
                start=alert.date,
                end=alert.date + timedelta(hours=EVENT_DURATION_HOURS),
            )
        except Exception:
            logger.exception("Failed to reconcile calendar event for '%s'", alert.title)
            return None

        logger.info("Calendar event created: %s (ID: %s)", alert.title, created.get("id"))
        return created.get("htmlLink")

    def clear_day(self, day: date) -> int:
        """Delete every event on the given day. Returns the number deleted.

        Raises:
            CalendarIntegrationError: If the events on that day cannot be listed.
        """
        time_min, time_max = day_window(day)
        events = self.find_events(time_min, time_max)
        deleted = 0
        for event in events:
            try:
                self.delete_event(event["id"])
                deleted += 1
            except Exception:
                logger.exception("Failed to delete calendar event %s", event.get("id"))
        logger.info("Deleted %d of %d events on %s", deleted, len(events), day.isoformat())
        return deleted
