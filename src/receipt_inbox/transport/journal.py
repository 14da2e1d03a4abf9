"""
Transfer journal for the HTTP transport.

Plays the part of a background transfer session that outlives the process:
every submitted transfer and its outcome is written to a small SQLite file.
On the next start the transport can report outcomes that finished but were
never folded into the receipts store. Transfers still marked running belong
to workers that died with the process and are dropped.
"""

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class TransferJournal:
    """SQLite-backed record of transfers per session."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        with self._connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transfers (
                    transfer_handle TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    key TEXT NOT NULL,
                    submitted_at TEXT NOT NULL,
                    succeeded INTEGER,  -- NULL while running
                    error TEXT,
                    finished_at TEXT
                )
            """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transfers_session ON transfers(session_id)"
            )

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = sqlite3.connect(str(self.db_path), timeout=30)
            conn.row_factory = sqlite3.Row
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    def record_submitted(self, transfer_handle: str, session_id: str, key: str) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO transfers (transfer_handle, session_id, key, submitted_at)
                VALUES (?, ?, ?, ?)
            """,
                (transfer_handle, session_id, key, _now()),
            )

    def record_outcome(
        self, transfer_handle: str, succeeded: bool, error: str | None = None
    ) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                UPDATE transfers SET succeeded = ?, error = ?, finished_at = ?
                WHERE transfer_handle = ?
            """,
                (int(succeeded), error, _now(), transfer_handle),
            )

    def forget(self, transfer_handle: str) -> None:
        with self._connection() as conn:
            conn.execute("DELETE FROM transfers WHERE transfer_handle = ?", (transfer_handle,))

    def load_restorable(self, session_id: str) -> list[sqlite3.Row]:
        """
        Finished-but-unacknowledged transfers of a session.

        Entries without an outcome are deleted: nothing is running them any more.
        """
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM transfers WHERE session_id = ? AND succeeded IS NULL",
                (session_id,),
            )
            if cursor.rowcount:
                logger.warning(
                    f"Dropped {cursor.rowcount} interrupted transfers from session '{session_id}'"
                )
            return conn.execute(
                """
                SELECT * FROM transfers
                WHERE session_id = ? AND succeeded IS NOT NULL
                ORDER BY finished_at
            """,
                (session_id,),
            ).fetchall()

    def count(self, session_id: str | None = None) -> int:
        with self._connection() as conn:
            if session_id is None:
                return conn.execute("SELECT COUNT(*) FROM transfers").fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM transfers WHERE session_id = ?", (session_id,)
            ).fetchone()[0]
