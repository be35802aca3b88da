"""Polling orchestration: categories -> Gmail -> AI -> calendar -> notify -> mark read.

One cycle walks every active category sequentially. Failures are contained at
category and message granularity so a bad message never aborts the cycle, and
a cycle never raises into the scheduler. Overlapping cycles (timer plus manual
trigger) are tolerated rather than prevented: each message ID is claimed in
the seen-set before any work, and the ledger insert is idempotent.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Callable

from .breaker import CircuitBreaker
from .config import Settings
from .constants import EMAIL_DATE_FORMAT, NO_SUBJECT, SNIPPET_LENGTH
from .dedup import SeenSet
from .errors import CircuitOpenError
from .models import AlertRecord, Category, ExtractedAlert, PollResult, ProcessedMessageRecord, RawMessage
from .query import build_query

logger = logging.getLogger(__name__)


def parse_email_date(value: str | None, clock: Callable[[], datetime] = datetime.now) -> datetime:
    """Parse a 'Mon, 16 Dec 2025 19:01:33 -0300' style Date header.

    The header's wall-clock time is kept and its offset dropped. Blank or
    unparseable values fall back to ``clock()``.
    """
    if not value or not value.strip():
        return clock()
    try:
        return datetime.strptime(value.strip(), EMAIL_DATE_FORMAT).replace(tzinfo=None)
    except ValueError:
        logger.warning("Failed to parse email date '%s', using current time", value)
        return clock()


def make_snippet(body: str, length: int = SNIPPET_LENGTH) -> str:
    snippet = body[:length] + "..." if len(body) > length else body
    return snippet.replace("\r", " ").replace("\n", " ")


def fallback_alert(message: RawMessage, snippet: str, received_at: datetime) -> ExtractedAlert:
    """Informational, non-urgent alert for a message with no detected event."""
    subject = message.subject.strip() if message.subject else ""
    return ExtractedAlert(
        title=subject or NO_SUBJECT,
        date=received_at,
        url=None,
        description=f"Email from: {message.sender}\n\n{snippet}",
        is_urgent=False,
    )


class AlertPoller:
    """Runs polling cycles over every active category."""

    def __init__(
        self,
        mailbox,
        calendar,
        extractor,
        notifier,
        store,
        settings: Settings | None = None,
        seen: SeenSet | None = None,
        mailbox_breaker: CircuitBreaker | None = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or Settings()
        self.mailbox = mailbox
        self.calendar = calendar
        self.extractor = extractor
        self.notifier = notifier
        self.store = store
        self.seen = seen if seen is not None else SeenSet(self.settings.seen_set_capacity)
        self.mailbox_breaker = mailbox_breaker or CircuitBreaker(
            "gmail",
            failure_threshold=self.settings.breaker_failure_threshold,
            reset_timeout=self.settings.breaker_reset_timeout,
        )
        self._clock = clock
        self._sleep = sleep

    # --- cycle ---

    def poll_emails(self) -> PollResult:
        """Run one polling cycle and report what happened. Never raises."""
        result = PollResult(started_at=self._clock())
        try:
            self._run_cycle(result)
        except CircuitOpenError as e:
            self._fallback_polling(e, result)
        except Exception as e:
            logger.exception("Error during email polling")
            result.errors.append(f"cycle: {e}")
        result.finished_at = self._clock()
        logger.info(
            "Email polling completed. Analyzed %d message(s), %d matched, %d deferred.",
            result.analyzed,
            result.matched,
            result.deferred,
        )
        return result

    def _fallback_polling(self, exc: BaseException, result: PollResult) -> None:
        logger.error("Gmail service unavailable, skipping polling cycle. Error: %s", exc)
        result.skipped_cycle = True

    def _run_cycle(self, result: PollResult) -> None:
        logger.info("Starting email polling cycle")

        categories = self.store.get_active_categories()
        if not categories:
            logger.info("No active categories configured. Skipping polling.")
            return

        if self.mailbox_breaker.is_open:
            raise CircuitOpenError(self.mailbox_breaker.name)

        logger.info("Polling %d active categories", len(categories))
        for category in categories:
            try:
                self.poll_category(category, result)
            except CircuitOpenError:
                raise
            except Exception as e:
                logger.error("Error polling category '%s': %s", category.name, e)
                result.errors.append(f"{category.name}: {e}")
            result.categories_polled += 1

    def poll_category(self, category: Category, result: PollResult) -> None:
        query = build_query(category)
        logger.info("Polling category '%s' with query: %s", category.name, query)

        message_ids = self.mailbox_breaker.call(
            self.mailbox.search, query, self.settings.search_max_results
        )
        if not message_ids:
            logger.debug("No messages found for category '%s'", category.name)
            return

        logger.info("Found %d message(s) for category '%s'", len(message_ids), category.name)
        result.messages_found += len(message_ids)

        for message_id in message_ids:
            # Claimed before any work; a concurrent cycle sees the claim and skips.
            if not self.seen.add_if_absent(message_id):
                result.skipped += 1
                continue

            if self.store.exists_by_message_id(message_id):
                logger.info("Message %s already in ledger, marking read", message_id)
                self._mark_read(message_id)
                result.skipped += 1
                continue

            if result.analyzed >= self.settings.max_messages_per_cycle:
                self.seen.discard(message_id)
                result.deferred += 1
                continue

            result.analyzed += 1
            try:
                if self.process_message(message_id, category):
                    result.matched += 1
            except CircuitOpenError:
                self.seen.discard(message_id)
                raise
            except Exception as e:
                self.seen.discard(message_id)
                logger.exception("Error processing message: %s", message_id)
                result.errors.append(f"{message_id}: {e}")

        if result.deferred:
            logger.info(
                "Cycle cap of %d reached, %d message(s) left for the next cycle",
                self.settings.max_messages_per_cycle,
                result.deferred,
            )

    # --- single message ---

    def process_message(self, message_id: str, category: Category) -> bool:
        """Handle one unseen message end to end. Returns True on an event match.

        Fetch and ledger-write failures propagate; the caller releases the
        claim so the message is retried next cycle. AI, calendar, notify and
        mark-read failures are contained.
        """
        message: RawMessage = self.mailbox_breaker.call(self.mailbox.fetch_full, message_id)

        body = message.body
        if body is None or not body.strip():
            logger.warning("Empty email body for message ID: %s", message_id)
            self._mark_read(message_id)
            return False

        logger.info("Processing email: '%s' from '%s'", message.subject, message.sender)
        snippet = make_snippet(body)
        received_at = parse_email_date(message.date, self._clock)

        if self.settings.ai_delay_seconds > 0:
            self._sleep(self.settings.ai_delay_seconds)
        alert = self.extractor.analyze(body, received_at)

        matched = alert is not None
        if matched:
            alert = self._handle_match(alert, message, snippet, received_at, category)
        else:
            logger.info("Email received (no event): '%s'", message.subject)
            alert = fallback_alert(message, snippet, received_at)

        self._publish(alert)
        self._mark_read(message_id)
        return matched

    def _handle_match(
        self,
        alert: ExtractedAlert,
        message: RawMessage,
        snippet: str,
        received_at: datetime,
        category: Category,
    ) -> ExtractedAlert:
        logger.info("Event detected: %s at %s", alert.title, alert.date.isoformat())

        self.store.save_if_not_exists(
            ProcessedMessageRecord(
                message_id=message.message_id,
                sender=message.sender,
                subject=message.subject,
                snippet=snippet,
                received_at=received_at,
                category_id=category.id,
            )
        )
        try:
            self.store.add_alert(
                AlertRecord(
                    title=alert.title,
                    alert_date=alert.date,
                    description=alert.description,
                    url=alert.url,
                    is_urgent=alert.is_urgent or self.settings.force_urgent,
                    message_id=message.message_id,
                    sender=message.sender,
                    subject=message.subject,
                    category_id=category.id,
                )
            )
        except Exception:
            logger.exception("Failed to save alert history for '%s'", alert.title)

        link = self.calendar.ensure_event(alert)
        changes: dict = {"calendar_link": link}
        if self.settings.force_urgent:
            changes["is_urgent"] = True
        return alert.with_changes(**changes)

    def _publish(self, alert: ExtractedAlert) -> None:
        try:
            self.notifier.publish(alert)
        except Exception:
            logger.exception("Failed to publish alert '%s'", alert.title)

    def _mark_read(self, message_id: str) -> None:
        try:
            self.mailbox.mark_read(message_id)
        except Exception as e:
            logger.error("Failed to mark message as read: %s (%s)", message_id, e)

    # --- triggers ---

    def trigger_poll(self) -> dict:
        """Run one cycle on demand and summarize it for a caller. Never raises."""
        logger.info("Manual email polling triggered")
        try:
            result = self.poll_emails()
        except Exception as e:
            logger.exception("Error during manual polling")
            return {"success": False, "error": str(e), "timestamp": self._clock().isoformat()}
        outcome: dict = {"timestamp": self._clock().isoformat(), "result": result.to_dict()}
        if result.skipped_cycle:
            outcome.update(success=False, error="Polling cycle skipped: mailbox unavailable")
        else:
            outcome.update(success=True, message="Polling cycle executed")
        return outcome

    def run_forever(self, interval: float | None = None, stop_event: threading.Event | None = None) -> None:
        """Run cycles every ``interval`` seconds until ``stop_event`` is set."""
        interval = self.settings.poll_interval if interval is None else interval
        stop_event = stop_event or threading.Event()
        logger.info("Scheduler started, polling every %.0f seconds", interval)
        while not stop_event.is_set():
            try:
                self.poll_emails()
            except Exception:
                logger.exception("Polling cycle crashed")
            stop_event.wait(interval)
        logger.info("Scheduler stopped")
