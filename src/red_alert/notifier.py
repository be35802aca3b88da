"""Best-effort broadcast of alerts to in-process subscribers."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from .constants import ALERTS_TOPIC
from .models import ExtractedAlert

logger = logging.getLogger(__name__)

Subscriber = Callable[[ExtractedAlert], None]


class AlertBroadcaster:
    """Publish-to-topic sink. Delivery is best-effort; nothing is queued or retried."""

    def __init__(self, topic: str = ALERTS_TOPIC) -> None:
        self.topic = topic
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, alert: ExtractedAlert) -> None:
        """Deliver the alert to every subscriber; failures are logged, not raised."""
        with self._lock:
            subscribers = list(self._subscribers)

        logger.info("Publishing alert '%s' (urgent=%s) to %s", alert.title, alert.is_urgent, self.topic)
        for callback in subscribers:
            try:
                callback(alert)
            except Exception:
                logger.exception("Subscriber %r failed on %s", callback, self.topic)
