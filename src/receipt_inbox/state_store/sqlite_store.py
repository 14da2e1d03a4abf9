"""
SQLite-based record store.

Tables:
- receipts: one durable row per captured document, source of truth for
  upload status and attempt count
- schema_version / migrations: schema bookkeeping

Every mutation runs in a single transaction. Status changes and the attempt
increment that belongs to a submission are committed together, so no reader
ever observes one without the other.
"""

import logging
import sqlite3
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..errors import PersistenceError, RecordNotFoundError
from ..uploads.state_machine import (
    SUBMITTABLE,
    TransferEvent,
    UploadStatus,
    event_for,
)

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "image/jpeg"


def _isoformat(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds").replace(
        "+00:00", "Z"
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReceiptRecord:
    """One captured receipt and its upload bookkeeping."""

    id: str
    created_at: str  # ISO timestamp
    updated_at: str  # ISO timestamp
    payload: bytes
    status: UploadStatus
    upload_attempts: int
    content_type: str = DEFAULT_CONTENT_TYPE
    last_error: str | None = None
    uploaded_at: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ReceiptRecord":
        """Create from database row."""
        keys = row.keys()
        return cls(
            id=row["id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            payload=bytes(row["payload"]),
            status=UploadStatus(row["status"]),
            upload_attempts=row["upload_attempts"],
            content_type=row["content_type"] if "content_type" in keys else DEFAULT_CONTENT_TYPE,
            last_error=row["last_error"] if "last_error" in keys else None,
            uploaded_at=row["uploaded_at"] if "uploaded_at" in keys else None,
        )


class StateStore:
    """
    SQLite-based store for captured receipts.

    Connections are opened per operation, so the store can be shared between
    the dispatcher and the thread folding transfer completions. SQLite
    serializes writers; each public method is one atomic unit.
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: Path | str,
        run_migrations: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
            clock: Source of "now" for created_at/updated_at
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _now(self) -> str:
        return _isoformat(self._clock())

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block in one transaction; sqlite errors become PersistenceError."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open receipts database {self.db_path}: {e}") from e
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Receipts database error, rolled back: {e}")
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS receipts (
                    id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    payload BLOB NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending'
                        CHECK (status IN ('pending', 'uploading', 'uploaded', 'failed')),
                    upload_attempts INTEGER NOT NULL DEFAULT 0
                        CHECK (upload_attempts >= 0)
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_receipts_status_created "
                "ON receipts(status, created_at)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            MigrationRunner(conn).run_pending()
        except sqlite3.Error as e:
            raise PersistenceError(f"Schema migration failed: {e}") from e
        finally:
            conn.close()

    @staticmethod
    def _fetch(conn: sqlite3.Connection, record_id: str) -> ReceiptRecord | None:
        row = conn.execute("SELECT * FROM receipts WHERE id = ?", (record_id,)).fetchone()
        return ReceiptRecord.from_row(row) if row else None

    # Record lifecycle

    def create_record(
        self, payload: bytes, content_type: str = DEFAULT_CONTENT_TYPE
    ) -> ReceiptRecord:
        """
        Persist a newly captured receipt as pending with zero attempts.

        Raises:
            PersistenceError: If the row could not be written (nothing is left behind)
        """
        if not payload:
            raise ValueError("Receipt payload must not be empty")

        record_id = uuid.uuid4().hex
        now = self._now()

        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO receipts
                (id, created_at, updated_at, payload, status, upload_attempts, content_type)
                VALUES (?, ?, ?, ?, ?, 0, ?)
            """,
                (record_id, now, now, sqlite3.Binary(payload), UploadStatus.PENDING.value, content_type),
            )
            record = self._fetch(conn, record_id)

        logger.info(f"Captured receipt {record_id} ({len(payload)} bytes)")
        return record

    def get_record(self, record_id: str) -> ReceiptRecord | None:
        """Get a record by ID."""
        with self._transaction() as conn:
            return self._fetch(conn, record_id)

    def record_exists(self, record_id: str) -> bool:
        with self._transaction() as conn:
            row = conn.execute("SELECT 1 FROM receipts WHERE id = ?", (record_id,)).fetchone()
            return row is not None

    def delete_record(self, record_id: str) -> bool:
        """Delete a record. Returns True if a row was removed."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM receipts WHERE id = ?", (record_id,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted receipt {record_id}")
        return deleted

    # Status transitions

    def update_status(
        self,
        record_id: str,
        new_status: UploadStatus | str,
        error_message: str | None = None,
    ) -> ReceiptRecord:
        """
        Move a record to a new status (atomic read-modify-write).

        Moving into uploading also increments upload_attempts in the same
        transaction.

        Raises:
            RecordNotFoundError: If the record does not exist
            InvalidTransitionError: If the transition is not legal
        """
        new_status = UploadStatus(new_status)

        with self._transaction() as conn:
            current = self._fetch(conn, record_id)
            if current is None:
                raise RecordNotFoundError(record_id)

            event = event_for(current.status, new_status)
            self._write_transition(conn, record_id, event, new_status, error_message)
            updated = self._fetch(conn, record_id)

        logger.info(f"Receipt {record_id}: {current.status.value} -> {new_status.value}")
        return updated

    def _write_transition(
        self,
        conn: sqlite3.Connection,
        record_id: str,
        event: TransferEvent,
        new_status: UploadStatus,
        error_message: str | None,
    ) -> None:
        now = self._now()
        if event is TransferEvent.SUBMITTED:
            conn.execute(
                """
                UPDATE receipts
                SET status = ?, upload_attempts = upload_attempts + 1, updated_at = ?
                WHERE id = ?
            """,
                (new_status.value, now, record_id),
            )
        elif new_status is UploadStatus.UPLOADED:
            conn.execute(
                """
                UPDATE receipts
                SET status = ?, updated_at = ?, uploaded_at = ?, last_error = NULL
                WHERE id = ?
            """,
                (new_status.value, now, now, record_id),
            )
        elif new_status is UploadStatus.FAILED:
            conn.execute(
                "UPDATE receipts SET status = ?, updated_at = ?, last_error = ? WHERE id = ?",
                (new_status.value, now, error_message, record_id),
            )
        else:
            conn.execute(
                "UPDATE receipts SET status = ?, updated_at = ? WHERE id = ?",
                (new_status.value, now, record_id),
            )

    def increment_attempts(self, record_id: str) -> int:
        """
        Increment upload_attempts on its own. Returns the new count.

        Raises:
            RecordNotFoundError: If the record does not exist
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE receipts SET upload_attempts = upload_attempts + 1, updated_at = ? "
                "WHERE id = ?",
                (self._now(), record_id),
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError(record_id)
            row = conn.execute(
                "SELECT upload_attempts FROM receipts WHERE id = ?", (record_id,)
            ).fetchone()
            return row[0]

    def begin_transfer(self, record_id: str) -> ReceiptRecord | None:
        """
        Claim a record for submission: pending/failed -> uploading, attempts + 1.

        Compare-and-set: returns None when the record no longer exists or is
        not in a submittable status, so concurrent claims cannot both win.
        """
        statuses = tuple(s.value for s in SUBMITTABLE)

        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE receipts
                SET status = ?, upload_attempts = upload_attempts + 1, updated_at = ?
                WHERE id = ? AND status IN ({", ".join("?" for _ in statuses)})
            """,
                (UploadStatus.UPLOADING.value, self._now(), record_id, *statuses),
            )
            if cursor.rowcount == 0:
                return None
            return self._fetch(conn, record_id)

    def revert_transfer(self, record_id: str, previous: ReceiptRecord) -> bool:
        """
        Undo a claim whose submission the transport rejected.

        Restores the prior status and attempt count, but only if the row is
        still exactly as begin_transfer left it.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE receipts
                SET status = ?, upload_attempts = ?, updated_at = ?
                WHERE id = ? AND status = ? AND upload_attempts = ?
            """,
                (
                    previous.status.value,
                    previous.upload_attempts,
                    self._now(),
                    record_id,
                    UploadStatus.UPLOADING.value,
                    previous.upload_attempts + 1,
                ),
            )
            reverted = cursor.rowcount > 0

        if reverted:
            logger.warning(
                f"Receipt {record_id}: submission rejected, reverted to {previous.status.value}"
            )
        return reverted

    def complete_transfer(
        self,
        record_id: str,
        succeeded: bool,
        error_message: str | None = None,
    ) -> bool:
        """
        Fold a transfer outcome into the record: uploading -> uploaded|failed.

        Returns False (and changes nothing) when the record is gone or is not
        uploading, which makes repeated completions for one key a no-op.
        """
        target = UploadStatus.UPLOADED if succeeded else UploadStatus.FAILED
        event = TransferEvent.SUCCEEDED if succeeded else TransferEvent.FAILED

        with self._transaction() as conn:
            row = conn.execute(
                "SELECT status FROM receipts WHERE id = ?", (record_id,)
            ).fetchone()
            if row is None or row["status"] != UploadStatus.UPLOADING.value:
                return False
            self._write_transition(conn, record_id, event, target, error_message)

        return True

    # Queries

    def list_by_status(
        self,
        status: UploadStatus | str,
        oldest_first: bool = False,
        max_attempts: int | None = None,
        limit: int | None = None,
    ) -> list[ReceiptRecord]:
        """
        List records in a status.

        Ordered by created_at descending (newest first) unless oldest_first,
        ties broken by id.

        Args:
            status: Status to filter by
            oldest_first: Reverse the order to created_at ascending
            max_attempts: Only records with fewer upload attempts than this
            limit: Maximum rows to return
        """
        direction = "ASC" if oldest_first else "DESC"
        query = "SELECT * FROM receipts WHERE status = ?"
        params: list[Any] = [UploadStatus(status).value]

        if max_attempts is not None:
            query += " AND upload_attempts < ?"
            params.append(max_attempts)

        query += f" ORDER BY created_at {direction}, id {direction}"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [ReceiptRecord.from_row(row) for row in rows]

    def list_records(self, limit: int = 100, offset: int = 0) -> list[ReceiptRecord]:
        """List all records, newest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM receipts ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()
            return [ReceiptRecord.from_row(row) for row in rows]

    def list_exhausted(self, max_attempts: int) -> list[ReceiptRecord]:
        """Failed records that reached the retry ceiling."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM receipts
                WHERE status = ? AND upload_attempts >= ?
                ORDER BY created_at DESC, id DESC
            """,
                (UploadStatus.FAILED.value, max_attempts),
            ).fetchall()
            return [ReceiptRecord.from_row(row) for row in rows]

    def get_stats(self, max_attempts: int | None = None) -> dict[str, int]:
        """Get record counts per status."""
        stats = {status.value: 0 for status in UploadStatus}

        with self._transaction() as conn:
            for row in conn.execute(
                "SELECT status, COUNT(*) AS n FROM receipts GROUP BY status"
            ).fetchall():
                stats[row["status"]] = row["n"]

            stats["total"] = sum(stats[s.value] for s in UploadStatus)
            if max_attempts is not None:
                stats["exhausted"] = conn.execute(
                    "SELECT COUNT(*) FROM receipts WHERE status = ? AND upload_attempts >= ?",
                    (UploadStatus.FAILED.value, max_attempts),
                ).fetchone()[0]

        return stats
