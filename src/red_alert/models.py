"""Data models for Red Alert."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime


@dataclass
class Category:
    """A named filter selecting which mailbox messages to poll.

    Keyword fields are comma-separated; terms are OR'd within a field and the
    fields are AND'd together.
    """

    name: str
    from_filter: str | None = None
    subject_keywords: str | None = None
    body_keywords: str | None = None
    description: str | None = None
    is_active: bool = True
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class RawMessage:
    """A fully fetched mailbox message, body already decoded."""

    message_id: str
    sender: str
    subject: str
    date: str  # raw Date header
    body: str | None = None
    snippet: str = ""  # provider snippet, not the pipeline snippet


@dataclass(frozen=True)
class ExtractedAlert:
    """A scheduled event detected in an email.

    Raises:
        ValueError: On construction when the title is blank or the date is missing.
    """

    title: str
    date: datetime
    url: str | None = None
    description: str | None = None
    is_urgent: bool = False
    calendar_link: str | None = None

    def __post_init__(self) -> None:
        if self.title is None or not str(self.title).strip():
            raise ValueError("Title cannot be null or empty")
        if self.date is None:
            raise ValueError("Date cannot be null")

    def with_changes(self, **changes) -> ExtractedAlert:
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """JSON-ready payload as delivered to subscribers."""
        return {
            "title": self.title,
            "date": self.date.isoformat(),
            "url": self.url,
            "description": self.description,
            "isUrgent": self.is_urgent,
            "calendarLink": self.calendar_link,
        }


@dataclass
class ProcessedMessageRecord:
    """Ledger entry for a message the pipeline has handled."""

    message_id: str
    sender: str
    subject: str
    snippet: str
    received_at: datetime | None
    category_id: int | None = None
    category_name: str | None = None
    processed_at: datetime | None = None
    id: int | None = None


@dataclass
class AlertRecord:
    """History entry for an alert that matched an event."""

    title: str
    alert_date: datetime
    description: str | None = None
    url: str | None = None
    is_urgent: bool = False
    message_id: str | None = None
    sender: str | None = None
    subject: str | None = None
    category_id: int | None = None
    created_at: datetime | None = None
    id: int | None = None


@dataclass
class PollResult:
    """Outcome of a single polling cycle."""

    started_at: datetime
    finished_at: datetime | None = None
    categories_polled: int = 0
    messages_found: int = 0
    analyzed: int = 0
    matched: int = 0
    skipped: int = 0
    deferred: int = 0
    errors: list[str] = field(default_factory=list)
    skipped_cycle: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data
