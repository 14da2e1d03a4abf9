"""
Migration 002: Store the payload MIME type alongside each receipt.

Existing rows were all captured as JPEG.
"""

import sqlite3

VERSION = 2
NAME = "receipt_content_type"


def upgrade(conn: sqlite3.Connection) -> None:
    """Add content_type column and an index for exhausted-failure lookups."""
    cursor = conn.execute("PRAGMA table_info(receipts)")
    columns = [row[1] for row in cursor.fetchall()]

    if "content_type" not in columns:
        conn.execute(
            "ALTER TABLE receipts ADD COLUMN content_type TEXT NOT NULL DEFAULT 'image/jpeg'"
        )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_receipts_status_attempts
        ON receipts (status, upload_attempts)
    """
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the index; the column stays."""
    conn.execute("DROP INDEX IF EXISTS idx_receipts_status_attempts")
    conn.commit()
