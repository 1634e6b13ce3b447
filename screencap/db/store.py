"""
Event Store for Screencap

The authoritative record of events, screenshots and queued classification
work. Every mutation runs inside a single SQLite transaction opened with
``BEGIN IMMEDIATE`` so concurrent writers (capture and the classification
worker) serialize instead of interleaving.

Store calls made inside ``with store.transaction():`` on the same thread
join that transaction.
"""

import logging
import sqlite3
import threading
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from screencap.core.errors import StorageError
from screencap.core.paths import DB_PATH
from screencap.db.migrations import get_connection, init_database
from screencap.db.models import (
    EVENT_COLUMNS,
    QUEUE_COLUMNS,
    SCREENSHOT_COLUMNS,
    STATUS_COMPLETED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    Event,
    QueueEntry,
    Screenshot,
    encode_column,
    event_from_row,
    queue_entry_from_row,
    screenshot_from_row,
)

logger = logging.getLogger(__name__)

_UPDATABLE_EVENT_COLUMNS = frozenset(EVENT_COLUMNS) - {"id"}


def _placeholders(values: Iterable[Any]) -> str:
    return ", ".join("?" for _ in values)


class EventStore:
    """SQLite-backed repository for events, screenshots and the queue."""

    def __init__(self, db_path: Path | str | None = None, migrate: bool = True):
        self.db_path = Path(db_path) if db_path else DB_PATH
        self._local = threading.local()
        if migrate:
            try:
                init_database(self.db_path)
            except sqlite3.Error as e:
                raise StorageError(f"Failed to migrate {self.db_path}: {e}", e) from e

    # ------------------------------------------------------------------
    # Connections and transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block atomically.

        Nested calls on the same thread reuse the outer transaction.

        Raises:
            StorageError: if SQLite fails; the transaction is rolled back
        """
        current = getattr(self._local, "conn", None)
        if current is not None:
            yield current
            return

        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}", e) from e

        self._local.conn = conn
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StorageError(f"Database transaction failed: {e}", e) from e
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            self._local.conn = None
            conn.close()

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        current = getattr(self._local, "conn", None)
        if current is not None:
            yield current
            return

        conn = None
        try:
            conn = get_connection(self.db_path)
            yield conn
        except sqlite3.Error as e:
            raise StorageError(f"Database read failed: {e}", e) from e
        finally:
            if conn is not None:
                conn.close()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def insert_event(self, event: Event) -> None:
        values = [encode_column(name, getattr(event, name)) for name in EVENT_COLUMNS]
        with self.transaction() as conn:
            conn.execute(
                f"INSERT INTO events ({', '.join(EVENT_COLUMNS)}) "
                f"VALUES ({_placeholders(EVENT_COLUMNS)})",
                values,
            )

    def get_event(self, event_id: str) -> Event | None:
        with self._read() as conn:
            row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
        return event_from_row(row) if row else None

    def update_event(self, event_id: str, **changes: Any) -> bool:
        """
        Update columns of one event.

        Returns:
            True if the event exists
        """
        if not changes:
            return self.get_event(event_id) is not None

        unknown = set(changes) - _UPDATABLE_EVENT_COLUMNS
        if unknown:
            raise ValueError(f"Unknown event columns: {sorted(unknown)}")

        assignments = ", ".join(f"{name} = ?" for name in changes)
        values = [encode_column(name, value) for name, value in changes.items()]
        with self.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE events SET {assignments} WHERE id = ?", [*values, event_id]
            )
        return cursor.rowcount > 0

    def find_merge_candidate(self, display_id: str | None, since: float) -> Event | None:
        """Most recent non-dismissed event on a display that ended at or after ``since``."""
        with self._read() as conn:
            row = conn.execute(
                """
                SELECT * FROM events
                WHERE display_id IS ? AND dismissed = 0 AND end_at >= ?
                ORDER BY end_at DESC, start_at DESC
                LIMIT 1
                """,
                (display_id, since),
            ).fetchone()
        return event_from_row(row) if row else None

    def extend_event(self, event_id: str, end_at: float) -> None:
        """Count one more screenshot and push ``end_at`` forward."""
        with self.transaction() as conn:
            conn.execute(
                """
                UPDATE events
                SET merged_count = merged_count + 1, end_at = MAX(end_at, ?)
                WHERE id = ?
                """,
                (end_at, event_id),
            )

    def find_cached_classification(
        self, stable_hash: str, context_key: str, exclude_id: str | None = None
    ) -> Event | None:
        """Latest completed, classified event with the same fingerprint and context."""
        with self._read() as conn:
            row = conn.execute(
                """
                SELECT * FROM events
                WHERE stable_hash = ? AND context_key = ? AND status = ?
                  AND category IS NOT NULL AND id IS NOT ?
                ORDER BY end_at DESC
                LIMIT 1
                """,
                (stable_hash, context_key, STATUS_COMPLETED, exclude_id),
            ).fetchone()
        return event_from_row(row) if row else None

    def list_events(
        self,
        start: float | None = None,
        end: float | None = None,
        category: str | None = None,
        project: str | None = None,
        status: str | None = None,
        include_dismissed: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Event]:
        """Events overlapping [start, end], newest first."""
        clauses: list[str] = []
        params: list[Any] = []
        if start is not None:
            clauses.append("end_at >= ?")
            params.append(start)
        if end is not None:
            clauses.append("start_at <= ?")
            params.append(end)
        if category is not None:
            clauses.append("category = ?")
            params.append(category)
        if project is not None:
            clauses.append("project = ?")
            params.append(project)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if not include_dismissed:
            clauses.append("dismissed = 0")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._read() as conn:
            rows = conn.execute(
                f"SELECT * FROM events {where} ORDER BY start_at DESC LIMIT ? OFFSET ?",
                [*params, limit, offset],
            ).fetchall()
        return [event_from_row(row) for row in rows]

    def distinct_categories(self) -> list[str]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT DISTINCT category FROM events WHERE category IS NOT NULL ORDER BY category"
            ).fetchall()
        return [row[0] for row in rows]

    def distinct_projects(self) -> list[str]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT DISTINCT project FROM events WHERE project IS NOT NULL ORDER BY project"
            ).fetchall()
        return [row[0] for row in rows]

    def project_counts(self) -> dict[str, int]:
        """Number of events per distinct project spelling."""
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT project, COUNT(*) AS n FROM events
                WHERE project IS NOT NULL AND TRIM(project) != ''
                GROUP BY project
                """
            ).fetchall()
        return {row["project"]: row["n"] for row in rows}

    def rename_projects(self, renames: dict[str, str]) -> int:
        """Rewrite project spellings. Returns the number of rows changed."""
        updated = 0
        with self.transaction() as conn:
            for old, new in renames.items():
                if old == new:
                    continue
                cursor = conn.execute("UPDATE events SET project = ? WHERE project = ?", (new, old))
                updated += cursor.rowcount
        return updated

    def delete_event(self, event_id: str) -> bool:
        """
        Delete an event with its screenshots, queue entry and image files.

        Returns:
            True if the event existed
        """
        with self.transaction() as conn:
            rows = conn.execute(
                "SELECT path FROM screenshots WHERE event_id = ?", (event_id,)
            ).fetchall()
            event_row = conn.execute(
                "SELECT original_path FROM events WHERE id = ?", (event_id,)
            ).fetchone()
            if event_row is None:
                return False

            paths = {row["path"] for row in rows if row["path"]}
            if event_row["original_path"]:
                paths.add(event_row["original_path"])

            # Exact repeats of another event's image must keep that file
            shared = set()
            if paths:
                shared_rows = conn.execute(
                    f"SELECT DISTINCT path FROM screenshots "
                    f"WHERE event_id != ? AND path IN ({_placeholders(paths)})",
                    [event_id, *paths],
                ).fetchall()
                shared = {row["path"] for row in shared_rows}

            conn.execute("DELETE FROM events WHERE id = ?", (event_id,))

        for path in paths - shared:
            try:
                Path(path).unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not delete {path}: {e}")

        logger.info(f"Deleted event {event_id} ({len(paths - shared)} file(s))")
        return True

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def _update_many(self, event_ids: list[str], sql: str, params: tuple = ()) -> int:
        if not event_ids:
            return 0
        with self.transaction() as conn:
            cursor = conn.execute(
                f"{sql} WHERE id IN ({_placeholders(event_ids)})", [*params, *event_ids]
            )
        return cursor.rowcount

    def relabel_events(self, event_ids: list[str], label: str) -> int:
        """Apply a user label; a user decision is full confidence."""
        return self._update_many(
            event_ids, "UPDATE events SET user_label = ?, confidence = 1.0", (label,)
        )

    def dismiss_events(self, event_ids: list[str]) -> int:
        return self._update_many(event_ids, "UPDATE events SET dismissed = 1")

    def confirm_addiction(self, event_ids: list[str]) -> int:
        """Promote the addiction candidate to a tracked addiction."""
        return self._update_many(
            event_ids,
            """
            UPDATE events
            SET tracked_addiction = COALESCE(addiction_candidate, tracked_addiction),
                addiction_candidate = NULL
            """,
        )

    def reject_addiction(self, event_ids: list[str]) -> int:
        return self._update_many(
            event_ids,
            "UPDATE events SET tracked_addiction = NULL, addiction_candidate = NULL",
        )

    def set_caption(self, event_id: str, caption: str | None) -> bool:
        """User caption override; clearing it hands the caption back to the classifier."""
        return self.update_event(event_id, caption=caption, caption_manual=bool(caption))

    def set_project(self, event_id: str, project: str | None) -> bool:
        return self.update_event(event_id, project=project, project_manual=bool(project))

    # ------------------------------------------------------------------
    # Screenshots
    # ------------------------------------------------------------------

    def insert_screenshot(self, screenshot: Screenshot) -> None:
        values = [encode_column(name, getattr(screenshot, name)) for name in SCREENSHOT_COLUMNS]
        with self.transaction() as conn:
            conn.execute(
                f"INSERT INTO screenshots ({', '.join(SCREENSHOT_COLUMNS)}) "
                f"VALUES ({_placeholders(SCREENSHOT_COLUMNS)})",
                values,
            )

    def get_screenshots(self, event_id: str) -> list[Screenshot]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM screenshots WHERE event_id = ? ORDER BY timestamp, rowid",
                (event_id,),
            ).fetchall()
        return [screenshot_from_row(row) for row in rows]

    def latest_screenshot(self, event_id: str, primary_only: bool = True) -> Screenshot | None:
        sql = "SELECT * FROM screenshots WHERE event_id = ?"
        if primary_only:
            sql += " AND is_primary = 1"
        sql += " ORDER BY timestamp DESC, rowid DESC LIMIT 1"
        with self._read() as conn:
            row = conn.execute(sql, (event_id,)).fetchone()
        return screenshot_from_row(row) if row else None

    def count_screenshots(self, event_id: str, primary_only: bool = False) -> int:
        sql = "SELECT COUNT(*) FROM screenshots WHERE event_id = ?"
        if primary_only:
            sql += " AND is_primary = 1"
        with self._read() as conn:
            return conn.execute(sql, (event_id,)).fetchone()[0]

    # ------------------------------------------------------------------
    # Classification queue
    # ------------------------------------------------------------------

    def enqueue(self, event_id: str, now: float) -> bool:
        """
        Queue an event for classification if it is not already queued.

        Returns:
            True if a new entry was created
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO queue (id, event_id, attempts, created_at, next_attempt_at)
                VALUES (?, ?, 0, ?, ?)
                """,
                (str(uuid.uuid4()), event_id, now, now),
            )
        return cursor.rowcount > 0

    def get_queue_entry(self, event_id: str) -> QueueEntry | None:
        with self._read() as conn:
            row = conn.execute("SELECT * FROM queue WHERE event_id = ?", (event_id,)).fetchone()
        return queue_entry_from_row(row) if row else None

    def due_entries(self, now: float, limit: int = 10) -> list[QueueEntry]:
        """Entries whose next attempt is due and whose event is pending, oldest first."""
        columns = ", ".join(f"q.{name}" for name in QUEUE_COLUMNS)
        with self._read() as conn:
            rows = conn.execute(
                f"""
                SELECT {columns} FROM queue q
                JOIN events e ON e.id = q.event_id
                WHERE q.next_attempt_at <= ? AND e.status = ?
                ORDER BY q.next_attempt_at, q.created_at
                LIMIT ?
                """,
                (now, STATUS_PENDING, limit),
            ).fetchall()
        return [queue_entry_from_row(row) for row in rows]

    def claim_event(self, event_id: str) -> bool:
        """Move an event from pending to processing. False if someone else got it."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE events SET status = ? WHERE id = ? AND status = ?",
                (STATUS_PROCESSING, event_id, STATUS_PENDING),
            )
        return cursor.rowcount == 1

    def update_queue_entry(
        self, event_id: str, attempts: int, next_attempt_at: float, last_error: str | None
    ) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                UPDATE queue SET attempts = ?, next_attempt_at = ?, last_error = ?
                WHERE event_id = ?
                """,
                (attempts, next_attempt_at, last_error, event_id),
            )

    def remove_queue_entry(self, event_id: str) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM queue WHERE event_id = ?", (event_id,))
        return cursor.rowcount > 0

    def reset_processing(self) -> list[str]:
        """Return interrupted ``processing`` events to ``pending``."""
        with self.transaction() as conn:
            rows = conn.execute(
                "SELECT id FROM events WHERE status = ?", (STATUS_PROCESSING,)
            ).fetchall()
            ids = [row["id"] for row in rows]
            conn.execute(
                "UPDATE events SET status = ? WHERE status = ?",
                (STATUS_PENDING, STATUS_PROCESSING),
            )
        return ids

    def pending_without_queue(self, limit: int = 100) -> list[Event]:
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT e.* FROM events e
                LEFT JOIN queue q ON q.event_id = e.id
                WHERE e.status = ? AND q.id IS NULL
                ORDER BY e.start_at
                LIMIT ?
                """,
                (STATUS_PENDING, limit),
            ).fetchall()
        return [event_from_row(row) for row in rows]

    def purge_completed_queue_entries(self) -> int:
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                DELETE FROM queue
                WHERE event_id IN (SELECT id FROM events WHERE status = ?)
                """,
                (STATUS_COMPLETED,),
            )
        return cursor.rowcount

    def queue_stats(self) -> dict[str, Any]:
        with self._read() as conn:
            queued = conn.execute("SELECT COUNT(*) FROM queue").fetchone()[0]
            by_status = {
                row["status"]: row["n"]
                for row in conn.execute(
                    "SELECT status, COUNT(*) AS n FROM events GROUP BY status"
                ).fetchall()
            }
        return {"queued": queued, "events_by_status": by_status}
