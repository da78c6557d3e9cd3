"""Database migration system for schema changes.

Migrations are plain SQL files named after the schema version they produce
(``0001.sql``, ``0002.sql``, ...). The current version lives in the
database's own ``user_version`` header field, so no ledger table is needed.
"""

import shutil
import sqlite3
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from .database import DatabaseManager, StorageError


logger = logging.getLogger(__name__)

DEFAULT_MIGRATIONS_DIR = Path(__file__).parent / "migration"


class MigrationError(Exception):
    """Exception raised during database migrations."""
    pass


def split_statements(sql: str) -> List[str]:
    """Split a SQL script into single statements.

    A semicolon only ends a statement when SQLite agrees the text before it
    is complete, so semicolons inside strings and trigger bodies are kept.
    """
    statements = []
    buffer = ""
    for piece in sql.split(";"):
        buffer += piece + ";"
        if sqlite3.complete_statement(buffer):
            if buffer.strip(" \t\r\n;"):
                statements.append(buffer.strip())
            buffer = ""

    # Anything left over ends inside a comment or is unterminated SQL.
    rest = buffer[:-1].strip()
    if any(line.strip() and not line.strip().startswith("--")
           for line in rest.splitlines()):
        statements.append(rest)
    return statements


class MigrationManager:
    """Manages database schema migrations."""

    def __init__(self, db_manager: DatabaseManager,
                 migrations_dir: Optional[Path] = None):
        """Initialize migration manager.

        Args:
            db_manager: Database manager instance
            migrations_dir: Directory holding the ``*.sql`` migration files
        """
        self.db_manager = db_manager
        self.migrations_dir = migrations_dir or DEFAULT_MIGRATIONS_DIR

    def get_schema_version(self) -> int:
        """Get the version of the last applied migration."""
        try:
            return self.db_manager.get_schema_version()
        except StorageError as e:
            raise MigrationError(f"Cannot read schema version: {e}")

    def discover_migrations(self) -> List[Tuple[int, Path]]:
        """Get all available migrations.

        Returns:
            List of (version, path) tuples sorted by version

        Raises:
            MigrationError: If a migration file name is not a version number
        """
        migrations = []
        for path in self.migrations_dir.glob("*.sql"):
            try:
                version = int(path.stem)
            except ValueError:
                raise MigrationError(f"Migration file name is not a version: {path.name}")
            migrations.append((version, path))

        migrations.sort()
        for (prev, _), (version, path) in zip(migrations, migrations[1:]):
            if prev == version:
                raise MigrationError(f"Duplicate migration version {version}: {path.name}")

        return migrations

    def get_pending_migrations(self) -> List[Tuple[int, Path]]:
        """Get list of migrations that have not been applied yet."""
        current_version = self.get_schema_version()
        return [
            (version, path) for version, path in self.discover_migrations()
            if version > current_version
        ]

    def needs_migration(self) -> bool:
        """Check if database needs migration."""
        return bool(self.get_pending_migrations())

    def migrate(self) -> List[int]:
        """Apply all pending migrations.

        Returns:
            Versions that were applied, in order

        Raises:
            MigrationError: If migration fails
        """
        pending = self.get_pending_migrations()
        if not pending:
            logger.info("Database is up to date")
            return []

        logger.info(f"Applying {len(pending)} migrations: {[v for v, _ in pending]}")

        applied = []
        for version, path in pending:
            try:
                ran = self._apply_migration(version, path)
            except Exception as e:
                logger.error(f"Migration {path.name} failed: {e}")
                raise MigrationError(f"Migration to version {version} failed: {e}")
            if ran:
                logger.info(f"Applied migration to version {version}")
                applied.append(version)

        logger.info("All migrations applied successfully")
        return applied

    def _apply_migration(self, version: int, path: Path) -> bool:
        """Apply a single migration file within one transaction.

        The script and the ``user_version`` bump commit together, or not at
        all. The version is re-read under the write lock, so a script another
        process applied in the meantime is skipped.

        Returns:
            True if the script ran, False if the database was already at or
            past its version
        """
        statements = split_statements(path.read_text(encoding='utf-8'))

        with self.db_manager.transaction(write=True) as conn:
            current = conn.execute("PRAGMA user_version").fetchone()[0]
            if current >= version:
                logger.info(f"Migration {path.name} already applied (version {current})")
                return False

            for statement in statements:
                conn.execute(statement)
            # PRAGMA does not accept bound parameters.
            conn.execute(f"PRAGMA user_version = {int(version)}")

        return True

    def create_backup(self, backup_path: Path) -> None:
        """Create database backup before migration.

        Args:
            backup_path: Path for backup file
        """
        try:
            shutil.copy2(self.db_manager.db_path, backup_path)
            logger.info(f"Database backup created: {backup_path}")
        except Exception as e:
            logger.warning(f"Failed to create backup: {e}")


def migrate_database(db_path: Path, busy_timeout_ms: int = 5000) -> List[int]:
    """Convenience function to migrate database.

    Args:
        db_path: Path to database file
        busy_timeout_ms: SQLite busy timeout for the migration connection

    Returns:
        Versions that were applied

    Raises:
        MigrationError: If migration fails
    """
    try:
        db_manager = DatabaseManager(db_path, busy_timeout_ms)
    except StorageError as e:
        raise MigrationError(f"Cannot open database: {e}")

    migration_manager = MigrationManager(db_manager)

    if not migration_manager.needs_migration():
        logger.info("Database is already up to date")
        return []

    if migration_manager.get_schema_version() > 0:
        migration_manager.create_backup(Path(db_path).with_suffix('.backup'))

    return migration_manager.migrate()
