"""Manually injected alerts for exercising subscribers without a real email."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from .constants import NO_SUBJECT, TEST_ALERT_DESCRIPTION, TEST_ALERT_TITLE
from .models import AlertRecord, ExtractedAlert

logger = logging.getLogger(__name__)


def _save_and_publish(store, notifier, alert: ExtractedAlert, record: AlertRecord) -> AlertRecord:
    saved = store.add_alert(record)
    notifier.publish(alert)
    return saved


def simulate_from_processed(
    store,
    notifier,
    record_id: int,
    clock: Callable[[], datetime] = datetime.now,
) -> AlertRecord:
    """Replay a ledger entry as an urgent alert dated now.

    Raises:
        ProcessedEmailNotFoundError: When no ledger entry has ``record_id``.
    """
    processed = store.get_processed_by_id(record_id)
    subject = processed.subject.strip() if processed.subject else ""
    alert = ExtractedAlert(
        title=subject or NO_SUBJECT,
        date=clock(),
        description=f"Simulated alert from email sent by: {processed.sender}",
        is_urgent=True,
    )
    logger.info("Simulating alert from processed email %d: %s", record_id, alert.title)
    return _save_and_publish(
        store,
        notifier,
        alert,
        AlertRecord(
            title=alert.title,
            alert_date=alert.date,
            description=alert.description,
            is_urgent=True,
            message_id=processed.message_id,
            sender=processed.sender,
            subject=processed.subject,
            category_id=processed.category_id,
        ),
    )


def simulate_test_alert(
    store,
    notifier,
    title: str | None = None,
    description: str | None = None,
    url: str | None = None,
    clock: Callable[[], datetime] = datetime.now,
) -> AlertRecord:
    alert = ExtractedAlert(
        title=title or TEST_ALERT_TITLE,
        date=clock(),
        url=url,
        description=description or TEST_ALERT_DESCRIPTION,
        is_urgent=True,
    )
    logger.info("Simulating test alert: %s", alert.title)
    return _save_and_publish(
        store,
        notifier,
        alert,
        AlertRecord(
            title=alert.title,
            alert_date=alert.date,
            description=alert.description,
            url=url,
            is_urgent=True,
        ),
    )
