"""
Database Migration Runner for Screencap

Applies numbered SQL files from the migrations/ directory in order.
Each file records its own version in schema_version.
"""

import logging
import re
import sqlite3
from pathlib import Path

from screencap.core.paths import DB_PATH

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

EXPECTED_TABLES = ("schema_version", "events", "screenshots", "queue")


def get_connection(db_path: Path | str | None = None) -> sqlite3.Connection:
    """
    Open a connection to the SQLite database.

    The connection runs in autocommit mode so callers control transactions
    explicitly with ``BEGIN IMMEDIATE``.

    Args:
        db_path: Path to the database file. Defaults to ~/Screencap/db/screencap.sqlite

    Returns:
        sqlite3.Connection with foreign keys enabled and Row results
    """
    db_path = Path(db_path) if db_path else DB_PATH
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), timeout=30, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA busy_timeout = 30000")
    return conn


def get_current_version(conn: sqlite3.Connection) -> int:
    """Current schema version, or 0 if no migrations have been applied."""
    try:
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    except sqlite3.OperationalError:
        return 0
    return row[0] if row[0] is not None else 0


class MigrationRunner:
    """
    Manages database schema migrations.

    Migrations are SQL files named like ``001_initial_schema.sql``.
    """

    def __init__(self, db_path: Path | str | None = None, migrations_dir: Path | None = None):
        self.db_path = Path(db_path) if db_path else DB_PATH
        self.migrations_dir = migrations_dir or MIGRATIONS_DIR

    def _available(self) -> list[tuple[int, Path]]:
        if not self.migrations_dir.exists():
            return []
        found = []
        for path in self.migrations_dir.glob("*.sql"):
            match = re.match(r"^(\d+)_", path.name)
            if match:
                found.append((int(match.group(1)), path))
        return sorted(found, key=lambda item: item[0])

    def get_pending_migrations(self) -> list[tuple[int, Path]]:
        """List of (version, path) for migrations not yet applied."""
        conn = get_connection(self.db_path)
        try:
            current = get_current_version(conn)
        finally:
            conn.close()
        return [(version, path) for version, path in self._available() if version > current]

    def run_migrations(self) -> int:
        """
        Apply all pending migrations.

        Returns:
            Number of migrations applied
        """
        pending = self.get_pending_migrations()
        if not pending:
            logger.debug("No pending migrations")
            return 0

        logger.info(f"Found {len(pending)} pending migration(s)")
        conn = get_connection(self.db_path)
        try:
            for _version, path in pending:
                logger.info(f"Applying migration: {path.name}")
                try:
                    conn.executescript(f"BEGIN;\n{path.read_text()}\nCOMMIT;")
                except sqlite3.Error as e:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    logger.error(f"Migration failed: {path.name}: {e}")
                    raise
        finally:
            conn.close()

        return len(pending)

    def get_status(self) -> dict:
        """Current version and pending migrations."""
        conn = get_connection(self.db_path)
        try:
            current = get_current_version(conn)
        finally:
            conn.close()
        pending = self.get_pending_migrations()
        return {
            "current_version": current,
            "pending_migrations": len(pending),
            "pending_files": [p.name for _, p in pending],
            "database_path": str(self.db_path),
        }


def init_database(db_path: Path | str | None = None) -> int:
    """Run all pending migrations. Returns the number applied."""
    applied = MigrationRunner(db_path).run_migrations()
    if applied:
        logger.info(f"Applied {applied} migration(s)")
    return applied


def verify_schema(conn: sqlite3.Connection) -> dict:
    """Check that all expected tables exist."""
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
    existing = [row[0] for row in rows.fetchall()]
    missing = [t for t in EXPECTED_TABLES if t not in existing]
    return {"valid": not missing, "existing": existing, "missing": missing}


if __name__ == "__main__":
    import fire

    def status(db_path: str | None = None):
        """Show migration status."""
        return MigrationRunner(db_path).get_status()

    def migrate(db_path: str | None = None):
        """Run pending migrations."""
        return {"applied": init_database(db_path)}

    def verify(db_path: str | None = None):
        """Verify database schema."""
        conn = get_connection(db_path)
        try:
            return verify_schema(conn)
        finally:
            conn.close()

    fire.Fire({"status": status, "migrate": migrate, "verify": verify})
