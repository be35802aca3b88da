"""Gmail API client functions for searching, fetching and marking messages."""

from __future__ import annotations

import base64
import binascii
import logging

from googleapiclient.errors import HttpError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .constants import HEADER_NOT_FOUND, LABEL_UNREAD, RETRYABLE_STATUS_CODES, USER_ID
from .errors import MailboxIntegrationError
from .models import RawMessage

logger = logging.getLogger(__name__)


def _is_retryable_http_error(exc: BaseException) -> bool:
    return isinstance(exc, HttpError) and exc.resp.status in RETRYABLE_STATUS_CODES


@retry(
    retry=retry_if_exception(_is_retryable_http_error),
    wait=wait_exponential(multiplier=1, min=1, max=60),
    stop=stop_after_attempt(5),
    reraise=True,
)
def _execute(request) -> dict:
    return request.execute()


def list_message_ids(service, query: str, max_results: int) -> list[str]:
    """List message IDs matching the query, newest first, up to max_results."""
    ids: list[str] = []
    page_token: str | None = None

    while True:
        kwargs: dict = {
            "userId": USER_ID,
            "q": query,
            "maxResults": max_results,
            "fields": "messages/id,nextPageToken",
        }
        if page_token:
            kwargs["pageToken"] = page_token

        resp = _execute(service.users().messages().list(**kwargs))
        for msg in resp.get("messages", []):
            ids.append(msg["id"])
            if len(ids) >= max_results:
                return ids

        page_token = resp.get("nextPageToken")
        if not page_token:
            break

    return ids


def get_header(headers: list[dict], name: str) -> str:
    """Return a header value by case-insensitive name."""
    for h in headers:
        if h.get("name", "").lower() == name.lower():
            return h.get("value", "")
    return HEADER_NOT_FOUND


def decode_base64url(data: str) -> str:
    """Decode Gmail's base64url body data.

    Raises:
        binascii.Error: If the data is not valid base64.
    """
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def _iter_parts(part: dict):
    for child in part.get("parts") or []:
        yield child
        yield from _iter_parts(child)


def extract_body(payload: dict | None) -> str | None:
    """Extract the text body of a message payload.

    A single-part body wins. Otherwise the first part (depth-first) whose data
    decodes is used. Returns None when nothing decodes.
    """
    if not payload:
        return None

    data = (payload.get("body") or {}).get("data")
    if data:
        try:
            return decode_base64url(data)
        except binascii.Error:
            logger.warning("Could not decode single-part message body")
            return None

    for part in _iter_parts(payload):
        data = (part.get("body") or {}).get("data")
        if not data:
            continue
        try:
            return decode_base64url(data)
        except binascii.Error:
            logger.debug("Skipping undecodable part (%s)", part.get("mimeType", "unknown"))

    return None


def get_full_message(service, message_id: str) -> RawMessage:
    """Fetch a message in full format and decode its body."""
    message = _execute(
        service.users().messages().get(userId=USER_ID, id=message_id, format="full")
    )
    payload = message.get("payload") or {}
    headers = payload.get("headers") or []

    return RawMessage(
        message_id=message_id,
        sender=get_header(headers, "From"),
        subject=get_header(headers, "Subject"),
        date=get_header(headers, "Date"),
        body=extract_body(payload),
        snippet=message.get("snippet", ""),
    )


def mark_as_read(service, message_id: str) -> None:
    """Remove the UNREAD label from a message."""
    _execute(
        service.users().messages().modify(
            userId=USER_ID,
            id=message_id,
            body={"removeLabelIds": [LABEL_UNREAD]},
        )
    )


class GmailMailbox:
    """Mailbox port backed by an authenticated Gmail service.

    API errors that survive the retries surface as MailboxIntegrationError.
    """

    def __init__(self, service) -> None:
        self._service = service

    def search(self, query: str, max_results: int) -> list[str]:
        logger.debug("Searching Gmail: %s", query)
        try:
            return list_message_ids(self._service, query, max_results)
        except HttpError as e:
            raise MailboxIntegrationError(f"Gmail search failed: {e}") from e

    def fetch_full(self, message_id: str) -> RawMessage:
        try:
            return get_full_message(self._service, message_id)
        except HttpError as e:
            raise MailboxIntegrationError(f"Failed to fetch message {message_id}: {e}") from e

    def mark_read(self, message_id: str) -> None:
        try:
            mark_as_read(self._service, message_id)
        except HttpError as e:
            raise MailboxIntegrationError(f"Failed to mark message {message_id} as read: {e}") from e
        logger.debug("Marked message as read: %s", message_id)
