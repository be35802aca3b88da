"""In-memory record of recently processed message IDs."""

from __future__ import annotations

import logging
import threading

from .constants import SEEN_SET_CAPACITY

logger = logging.getLogger(__name__)


class SeenSet:
    """Bounded, thread-safe set of message IDs.

    Once the set grows past ``capacity`` it is cleared entirely rather than
    evicting the oldest entries.
    """

    def __init__(self, capacity: int = SEEN_SET_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._ids: set[str] = set()
        self._lock = threading.Lock()

    def __contains__(self, message_id: object) -> bool:
        with self._lock:
            return message_id in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def add(self, message_id: str) -> None:
        with self._lock:
            self._ids.add(message_id)
            if len(self._ids) > self.capacity:
                logger.debug("Seen-set exceeded %d entries, clearing", self.capacity)
                self._ids.clear()

    def add_if_absent(self, message_id: str) -> bool:
        """Atomically claim an ID. Returns False when it was already present.

        A claim survives the overflow clear it may trigger.
        """
        with self._lock:
            if message_id in self._ids:
                return False
            if len(self._ids) >= self.capacity:
                logger.debug("Seen-set reached %d entries, clearing", self.capacity)
                self._ids.clear()
            self._ids.add(message_id)
            return True

    def discard(self, message_id: str) -> None:
        """Release a claim so the message is retried next cycle."""
        with self._lock:
            self._ids.discard(message_id)

    def clear(self) -> None:
        with self._lock:
            self._ids.clear()
