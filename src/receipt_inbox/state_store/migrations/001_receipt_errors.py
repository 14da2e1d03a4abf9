"""
Migration 001: Add failure bookkeeping columns to receipts.

- last_error: message of the most recent failed transfer
- uploaded_at: when the endpoint acknowledged the upload

No downgrade: older SQLite builds cannot drop columns.
"""

import sqlite3

VERSION = 1
NAME = "receipt_errors"


def upgrade(conn: sqlite3.Connection) -> None:
    """Add last_error and uploaded_at columns."""
    cursor = conn.execute("PRAGMA table_info(receipts)")
    columns = [row[1] for row in cursor.fetchall()]

    if "last_error" not in columns:
        conn.execute("ALTER TABLE receipts ADD COLUMN last_error TEXT")
    if "uploaded_at" not in columns:
        conn.execute("ALTER TABLE receipts ADD COLUMN uploaded_at TEXT")
        conn.execute(
            "UPDATE receipts SET uploaded_at = updated_at WHERE status = 'uploaded'"
        )
