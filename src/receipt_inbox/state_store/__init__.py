"""
State Store (SQLite-based).

Durable table of captured receipts. Source of truth for record existence,
upload status and attempt counts; the in-memory transfer registry is only a
rebuildable index over it.
"""

from .sqlite_store import (
    DEFAULT_CONTENT_TYPE,
    ReceiptRecord,
    StateStore,
)

__all__ = [
    "DEFAULT_CONTENT_TYPE",
    "ReceiptRecord",
    "StateStore",
]
