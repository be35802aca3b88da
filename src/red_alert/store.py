"""SQLite store for categories, the processed-email ledger and alert history."""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from . import constants
from .errors import CategoryNotFoundError, DuplicateCategoryError, ProcessedEmailNotFoundError
from .models import AlertRecord, Category, ProcessedMessageRecord

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    description TEXT,
    from_filter TEXT,
    subject_keywords TEXT,
    body_keywords TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS processed_emails (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email_id TEXT NOT NULL UNIQUE,
    from_address TEXT NOT NULL,
    subject TEXT,
    snippet TEXT,
    received_at TEXT,
    category_id INTEGER,
    processed_at TEXT NOT NULL,
    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT,
    alert_date TEXT NOT NULL,
    url TEXT,
    is_urgent INTEGER NOT NULL DEFAULT 0,
    email_id TEXT,
    email_from TEXT,
    email_subject TEXT,
    category_id INTEGER,
    created_at TEXT NOT NULL,
    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE SET NULL
);
"""

_PROCESSED_SELECT = (
    "SELECT p.*, c.name AS category_name FROM processed_emails p "
    "LEFT JOIN categories c ON c.id = p.category_id"
)


def _to_text(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _to_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        from_filter=row["from_filter"],
        subject_keywords=row["subject_keywords"],
        body_keywords=row["body_keywords"],
        is_active=bool(row["is_active"]),
        created_at=_to_datetime(row["created_at"]),
        updated_at=_to_datetime(row["updated_at"]),
    )


def _row_to_processed(row: sqlite3.Row) -> ProcessedMessageRecord:
    return ProcessedMessageRecord(
        id=row["id"],
        message_id=row["email_id"],
        sender=row["from_address"],
        subject=row["subject"],
        snippet=row["snippet"],
        received_at=_to_datetime(row["received_at"]),
        category_id=row["category_id"],
        category_name=row["category_name"],
        processed_at=_to_datetime(row["processed_at"]),
    )


def _row_to_alert(row: sqlite3.Row) -> AlertRecord:
    return AlertRecord(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        alert_date=_to_datetime(row["alert_date"]),
        url=row["url"],
        is_urgent=bool(row["is_urgent"]),
        message_id=row["email_id"],
        sender=row["email_from"],
        subject=row["email_subject"],
        category_id=row["category_id"],
        created_at=_to_datetime(row["created_at"]),
    )


class AlertStore:
    """Persistent SQLite store shared by the poller and the CLI.

    A single connection is shared across threads, serialized by a lock, so a
    manual trigger may run alongside the scheduler.
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        self.db_path = Path(db_path or constants.DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript(_CREATE_TABLES_SQL)

    # --- categories ---

    def list_categories(self) -> list[Category]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM categories ORDER BY id").fetchall()
        return [_row_to_category(r) for r in rows]

    def get_active_categories(self) -> list[Category]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM categories WHERE is_active = 1 ORDER BY id"
            ).fetchall()
        return [_row_to_category(r) for r in rows]

    def get_category(self, category_id: int) -> Category:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM categories WHERE id = ?", (category_id,)
            ).fetchone()
        if row is None:
            raise CategoryNotFoundError(category_id)
        return _row_to_category(row)

    def category_name_exists(self, name: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM categories WHERE name = ?", (name,)
            ).fetchone()
        return row is not None

    def create_category(self, category: Category) -> Category:
        """Insert a new category.

        Raises:
            DuplicateCategoryError: If another category already has the name.
        """
        now = datetime.now()
        with self._lock:
            if self.category_name_exists(category.name):
                raise DuplicateCategoryError(category.name)
            try:
                with self._conn:
                    cursor = self._conn.execute(
                        "INSERT INTO categories (name, description, from_filter, subject_keywords, "
                        "body_keywords, is_active, created_at, updated_at) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            category.name,
                            category.description,
                            category.from_filter,
                            category.subject_keywords,
                            category.body_keywords,
                            int(category.is_active),
                            now.isoformat(),
                            now.isoformat(),
                        ),
                    )
            except sqlite3.IntegrityError as e:
                raise DuplicateCategoryError(category.name) from e
            logger.info("Created category: %s", category.name)
            return self.get_category(cursor.lastrowid)

    def update_category(self, category_id: int, updated: Category) -> Category:
        """Replace the editable fields of a category.

        Raises:
            CategoryNotFoundError: If no category has the id.
            DuplicateCategoryError: If the new name belongs to another category.
        """
        with self._lock:
            existing = self.get_category(category_id)
            if existing.name != updated.name and self.category_name_exists(updated.name):
                raise DuplicateCategoryError(updated.name)
            with self._conn:
                self._conn.execute(
                    "UPDATE categories SET name = ?, description = ?, from_filter = ?, "
                    "subject_keywords = ?, body_keywords = ?, is_active = ?, updated_at = ? "
                    "WHERE id = ?",
                    (
                        updated.name,
                        updated.description,
                        updated.from_filter,
                        updated.subject_keywords,
                        updated.body_keywords,
                        int(updated.is_active),
                        datetime.now().isoformat(),
                        category_id,
                    ),
                )
            logger.info("Updated category: %s", updated.name)
            return self.get_category(category_id)

    def toggle_category(self, category_id: int) -> Category:
        with self._lock:
            category = self.get_category(category_id)
            with self._conn:
                self._conn.execute(
                    "UPDATE categories SET is_active = ?, updated_at = ? WHERE id = ?",
                    (int(not category.is_active), datetime.now().isoformat(), category_id),
                )
            logger.info("Toggled category '%s' to active=%s", category.name, not category.is_active)
            return self.get_category(category_id)

    def delete_category(self, category_id: int) -> None:
        with self._lock:
            category = self.get_category(category_id)
            with self._conn:
                self._conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
            logger.info("Deleted category: %s", category.name)

    # --- processed-email ledger ---

    def exists_by_message_id(self, message_id: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM processed_emails WHERE email_id = ?", (message_id,)
            ).fetchone()
        return row is not None

    def get_processed(self, message_id: str) -> ProcessedMessageRecord | None:
        with self._lock:
            row = self._conn.execute(
                f"{_PROCESSED_SELECT} WHERE p.email_id = ?", (message_id,)
            ).fetchone()
        return _row_to_processed(row) if row else None

    def get_processed_by_id(self, record_id: int) -> ProcessedMessageRecord:
        with self._lock:
            row = self._conn.execute(
                f"{_PROCESSED_SELECT} WHERE p.id = ?", (record_id,)
            ).fetchone()
        if row is None:
            raise ProcessedEmailNotFoundError(record_id)
        return _row_to_processed(row)

    def save_if_not_exists(self, record: ProcessedMessageRecord) -> ProcessedMessageRecord:
        """Insert the record unless its message id is already in the ledger.

        Returns the stored record, which is the earlier one on a duplicate.
        """
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    "INSERT OR IGNORE INTO processed_emails (email_id, from_address, subject, "
                    "snippet, received_at, category_id, processed_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.message_id,
                        record.sender,
                        record.subject,
                        record.snippet,
                        _to_text(record.received_at),
                        record.category_id,
                        datetime.now().isoformat(),
                    ),
                )
            if cursor.rowcount:
                logger.info("Saved processed email: %s - %s", record.message_id, record.subject)
            else:
                logger.debug("Processed email already recorded: %s", record.message_id)
            return self.get_processed(record.message_id)

    def list_processed(self, category_id: int | None = None) -> list[ProcessedMessageRecord]:
        with self._lock:
            if category_id is None:
                rows = self._conn.execute(
                    f"{_PROCESSED_SELECT} ORDER BY p.processed_at DESC, p.id DESC"
                ).fetchall()
            else:
                rows = self._conn.execute(
                    f"{_PROCESSED_SELECT} WHERE p.category_id = ? ORDER BY p.processed_at DESC, p.id DESC",
                    (category_id,),
                ).fetchall()
        return [_row_to_processed(r) for r in rows]

    def count_processed(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) AS c FROM processed_emails").fetchone()["c"]

    def delete_processed(self, record_id: int) -> None:
        with self._lock:
            with self._conn:
                cursor = self._conn.execute("DELETE FROM processed_emails WHERE id = ?", (record_id,))
        if not cursor.rowcount:
            raise ProcessedEmailNotFoundError(record_id)
        logger.info("Deleted processed email %d", record_id)

    def delete_all_processed(self) -> int:
        with self._lock:
            with self._conn:
                cursor = self._conn.execute("DELETE FROM processed_emails")
        logger.info("Deleted %d processed emails", cursor.rowcount)
        return cursor.rowcount

    # --- alert history ---

    def add_alert(self, alert: AlertRecord) -> AlertRecord:
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    "INSERT INTO alerts (title, description, alert_date, url, is_urgent, email_id, "
                    "email_from, email_subject, category_id, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        alert.title,
                        alert.description,
                        _to_text(alert.alert_date),
                        alert.url,
                        int(alert.is_urgent),
                        alert.message_id,
                        alert.sender,
                        alert.subject,
                        alert.category_id,
                        datetime.now().isoformat(),
                    ),
                )
            row = self._conn.execute(
                "SELECT * FROM alerts WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
        logger.info("Alert saved: %s (ID: %d)", alert.title, row["id"])
        return _row_to_alert(row)

    def recent_alerts(self, limit: int = constants.DEFAULT_HISTORY_LIMIT, urgent_only: bool = False) -> list[AlertRecord]:
        where = "WHERE is_urgent = 1 " if urgent_only else ""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM alerts {where}ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [_row_to_alert(r) for r in rows]

    def count_alerts(self, urgent_only: bool = False) -> int:
        sql = "SELECT COUNT(*) AS c FROM alerts"
        if urgent_only:
            sql += " WHERE is_urgent = 1"
        with self._lock:
            return self._conn.execute(sql).fetchone()["c"]

    def clear_alerts(self) -> int:
        with self._lock:
            with self._conn:
                cursor = self._conn.execute("DELETE FROM alerts")
        logger.info("Cleared %d alerts", cursor.rowcount)
        return cursor.rowcount

    def delete_alerts_older_than(self, cutoff: datetime) -> int:
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    "DELETE FROM alerts WHERE created_at < ?", (cutoff.isoformat(),)
                )
        logger.info("Deleted %d alerts older than %s", cursor.rowcount, cutoff.isoformat())
        return cursor.rowcount

    # --- lifecycle ---

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> AlertStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.close()
