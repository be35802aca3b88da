"""Gmail search query construction from category filters."""

from __future__ import annotations

from .constants import UNREAD_FILTER
from .models import Category


def parse_keywords(raw: str | None) -> list[str]:
    """Split a comma-separated keyword string, trimming and dropping blanks.

    Input order is preserved.
    """
    if not raw:
        return []
    return [k.strip() for k in raw.split(",") if k.strip()]


def _or_group(keywords: list[str]) -> str:
    return "(" + " OR ".join(f'"{k}"' if " " in k else k for k in keywords) + ")"


def build_query(category: Category) -> str:
    """Build the Gmail search query for a category.

    Examples:
      from="school.edu", subject="LIVE,CALL"
        -> 'from:school.edu subject:(LIVE OR CALL) is:unread'
      subject="live class", body="link, room"
        -> 'subject:("live class") (link OR room) is:unread'
    """
    parts: list[str] = []

    if category.from_filter and category.from_filter.strip():
        parts.append(f"from:{category.from_filter.strip()}")

    subject_keywords = parse_keywords(category.subject_keywords)
    if subject_keywords:
        parts.append("subject:" + _or_group(subject_keywords))

    body_keywords = parse_keywords(category.body_keywords)
    if body_keywords:
        parts.append(_or_group(body_keywords))

    parts.append(UNREAD_FILTER)
    return " ".join(parts)


def build_search_query(
    from_filter: str | None = None,
    subject: str | None = None,
    body: str | None = None,
    unread_only: bool = True,
) -> str:
    """Build an ad-hoc Gmail query. Values are passed through unquoted.

    With nothing to filter on, falls back to unread messages so a search is
    never unbounded.
    """
    parts: list[str] = []
    if from_filter and from_filter.strip():
        parts.append(f"from:{from_filter.strip()}")
    if subject and subject.strip():
        parts.append(f"subject:{subject.strip()}")
    if body and body.strip():
        parts.append(body.strip())
    if unread_only:
        parts.append(UNREAD_FILTER)
    return " ".join(parts) or UNREAD_FILTER
