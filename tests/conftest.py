"""Shared fixtures and fakes for tests."""

from __future__ import annotations

import base64
from datetime import datetime

import pytest

from red_alert.calendar_client import GoogleCalendar
from red_alert.config import Settings
from red_alert.models import Category, ExtractedAlert, RawMessage
from red_alert.notifier import AlertBroadcaster
from red_alert.store import AlertStore

NOW = datetime(2025, 12, 16, 9, 0, 0)


def b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


class _Request:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class FakeEvents:
    """Minimal stand-in for ``calendar.events()``."""

    def __init__(self) -> None:
        self.items: list[dict] = []
        self.fail_list = False
        self.fail_insert = False
        self.fail_delete: set[str] = set()
        self.list_calls: list[dict] = []
        self._next_id = 1

    def list(self, **kwargs):
        self.list_calls.append(kwargs)

        def run():
            if self.fail_list:
                raise ConnectionError("calendar unreachable")
            lo = datetime.fromisoformat(kwargs["timeMin"])
            hi = datetime.fromisoformat(kwargs["timeMax"])
            q = kwargs.get("q")
            items = [
                e
                for e in self.items
                if lo <= datetime.fromisoformat(e["start"]["dateTime"]) <= hi
                and (not q or q.lower() in e["summary"].lower())
            ]
            return {"items": items}

        return _Request(run)

    def insert(self, calendarId, body):
        def run():
            if self.fail_insert:
                raise ConnectionError("calendar unreachable")
            event_id = f"evt{self._next_id}"
            self._next_id += 1
            event = dict(body, id=event_id, htmlLink=f"https://calendar.example/{event_id}")
            self.items.append(event)
            return event

        return _Request(run)

    def delete(self, calendarId, eventId):
        def run():
            if eventId in self.fail_delete:
                raise ConnectionError("delete refused")
            self.items = [e for e in self.items if e["id"] != eventId]
            return {}

        return _Request(run)


class FakeCalendarService:
    def __init__(self) -> None:
        self._events = FakeEvents()

    def events(self) -> FakeEvents:
        return self._events


class FakeMailbox:
    """In-memory mailbox recording every call the poller makes."""

    def __init__(self, messages: list[RawMessage] | None = None) -> None:
        self.messages = {m.message_id: m for m in messages or []}
        self.unread: list[str] = list(self.messages)
        self.queries: list[str] = []
        self.fetched: list[str] = []
        self.marked_read: list[str] = []
        self.fail_search = False
        self.fail_fetch: set[str] = set()
        self.fail_mark_read = False

    def search(self, query: str, max_results: int) -> list[str]:
        self.queries.append(query)
        if self.fail_search:
            raise ConnectionError("gmail unreachable")
        return self.unread[:max_results]

    def fetch_full(self, message_id: str) -> RawMessage:
        self.fetched.append(message_id)
        if message_id in self.fail_fetch:
            raise ConnectionError(f"cannot fetch {message_id}")
        return self.messages[message_id]

    def mark_read(self, message_id: str) -> None:
        self.marked_read.append(message_id)
        if self.fail_mark_read:
            raise ConnectionError("modify failed")
        if message_id in self.unread:
            self.unread.remove(message_id)


class FakeExtractor:
    """Returns a fixed alert for bodies containing a trigger word."""

    def __init__(self, alert: ExtractedAlert | None = None, trigger: str = "LIVE") -> None:
        self.alert = alert
        self.trigger = trigger
        self.calls: list[tuple[str, datetime]] = []

    def analyze(self, text: str, reference_time: datetime) -> ExtractedAlert | None:
        self.calls.append((text, reference_time))
        if self.alert is not None and self.trigger in text:
            return self.alert
        return None


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(db_path=tmp_path / "test.db", ai_delay_seconds=0.0)


@pytest.fixture
def store(tmp_path):
    with AlertStore(db_path=tmp_path / "test.db") as s:
        yield s


@pytest.fixture
def calendar_service() -> FakeCalendarService:
    return FakeCalendarService()


@pytest.fixture
def calendar(calendar_service) -> GoogleCalendar:
    return GoogleCalendar(calendar_service)


@pytest.fixture
def broadcaster():
    published = []
    notifier = AlertBroadcaster()
    notifier.subscribe(published.append)
    notifier.published = published
    return notifier


@pytest.fixture
def school_category(store) -> Category:
    return store.create_category(Category(name="School", from_filter="school.edu", subject_keywords="LIVE,CALL"))


@pytest.fixture
def live_message() -> RawMessage:
    return RawMessage(
        message_id="msg_live_001",
        sender="Prof. Ada <ada@school.edu>",
        subject="LIVE class tomorrow",
        date="Mon, 15 Dec 2025 19:01:33 -0300",
        body="Join the LIVE class tomorrow at 20:00 on https://meet.example/abc",
    )


@pytest.fixture
def sync_message() -> RawMessage:
    return RawMessage(
        message_id="msg_sync_001",
        sender="Team Lead <lead@school.edu>",
        subject="Team Sync",
        date="Mon, 15 Dec 2025 10:00:00 +0000",
        body="Notes from the weekly sync. " * 20,
    )


@pytest.fixture
def live_alert() -> ExtractedAlert:
    return ExtractedAlert(
        title="LIVE class",
        date=datetime(2025, 12, 16, 20, 0, 0),
        url="https://meet.example/abc",
        description="Weekly live class",
        is_urgent=False,
    )
