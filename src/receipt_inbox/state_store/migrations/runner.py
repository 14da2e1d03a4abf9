"""
Versioned schema migrations for the receipts database.

Migration modules live next to this file and are named ``NNN_name.py``.
Each one defines:
- VERSION: int
- NAME: str
- upgrade(conn: Connection) -> None
- downgrade(conn: Connection) -> None  (optional)

Applied versions are recorded in a ``migrations`` table so every start only
runs what is missing.
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    """A single schema step."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]
    downgrade: Callable[[sqlite3.Connection], None] | None = None


def get_all_migrations() -> list[Migration]:
    """Discover migration modules, sorted by version."""
    found: dict[int, Migration] = {}

    for py_file in Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py"):
        module = importlib.import_module(f"{__package__}.{py_file.stem}")
        version = module.VERSION
        if version in found:
            raise RuntimeError(
                f"Duplicate migration version {version}: "
                f"{found[version].name} and {module.NAME}"
            )
        found[version] = Migration(
            version=version,
            name=module.NAME,
            upgrade=module.upgrade,
            downgrade=getattr(module, "downgrade", None),
        )

    return [found[v] for v in sorted(found)]


class MigrationRunner:
    """Applies pending migrations on an open connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def get_applied_versions(self) -> set[int]:
        rows = self.conn.execute("SELECT version FROM migrations").fetchall()
        return {row[0] for row in rows}

    def get_current_version(self) -> int:
        """Highest applied version, 0 for a fresh database."""
        return max(self.get_applied_versions(), default=0)

    def pending(self) -> list[Migration]:
        applied = self.get_applied_versions()
        return [m for m in get_all_migrations() if m.version not in applied]

    def apply(self, migration: Migration) -> None:
        """Apply one migration and record it in the same commit."""
        logger.info(f"Applying migration {migration.version:03d}_{migration.name}")
        applied_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        try:
            migration.upgrade(self.conn)
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (migration.version, migration.name, applied_at),
            )
            self.conn.commit()
        except Exception as e:
            self.conn.rollback()
            logger.error(f"Migration {migration.version:03d}_{migration.name} failed: {e}")
            raise

    def rollback_last(self) -> int | None:
        """
        Undo the most recently applied migration.

        Returns:
            The version rolled back, or None when nothing is applied

        Raises:
            NotImplementedError: If the migration has no downgrade step
        """
        current = self.get_current_version()
        if current == 0:
            return None

        migration = next(m for m in get_all_migrations() if m.version == current)
        if migration.downgrade is None:
            raise NotImplementedError(
                f"Migration {migration.version:03d}_{migration.name} cannot be rolled back"
            )

        migration.downgrade(self.conn)
        self.conn.execute("DELETE FROM migrations WHERE version = ?", (current,))
        self.conn.commit()
        logger.info(f"Rolled back migration {migration.version:03d}_{migration.name}")
        return current

    def run_pending(self) -> list[int]:
        """Apply every pending migration in order. Returns applied versions."""
        applied = []
        for migration in self.pending():
            self.apply(migration)
            applied.append(migration.version)

        if applied:
            logger.info(f"Applied {len(applied)} migrations: {applied}")
        else:
            logger.debug("Receipts schema is up to date")
        return applied
