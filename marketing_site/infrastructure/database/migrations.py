"""Versioned schema migrations for the submission store."""

from datetime import datetime
from pathlib import Path
from typing import List, Dict, Any

import aiosqlite

from ...core.exceptions import DatabaseError
from ..logging.service import get_logger


logger = get_logger("database")


class Migration:
    """Represents a single database migration."""

    def __init__(self, version: int, name: str, up_sql: str, down_sql: str = ""):
        self.version = version
        self.name = name
        self.up_sql = up_sql
        self.down_sql = down_sql

    def __str__(self):
        return f"Migration {self.version}: {self.name}"


class MigrationManager:
    """Manages database schema migrations."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.migrations = self._get_migrations()

    def _get_migrations(self) -> List[Migration]:
        """Define all database migrations."""
        return [
            Migration(
                version=1,
                name="initial_schema",
                up_sql="""
                -- Contact and brochure form submissions
                CREATE TABLE IF NOT EXISTS submissions (
                    id TEXT PRIMARY KEY,
                    form_type TEXT NOT NULL,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    phone TEXT,
                    message TEXT,

                    -- Request context
                    ip_address TEXT,
                    user_agent TEXT,

                    email_sent INTEGER NOT NULL DEFAULT 0,
                    metadata TEXT DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                -- Durable copy of delivery run summaries
                CREATE TABLE IF NOT EXISTS email_records (
                    id TEXT PRIMARY KEY,
                    recipient TEXT NOT NULL,
                    sender TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    status TEXT NOT NULL,
                    message_id TEXT,
                    error TEXT,
                    transport_name TEXT,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );
                """,
                down_sql="""
                DROP TABLE IF EXISTS email_records;
                DROP TABLE IF EXISTS submissions;
                """
            ),

            Migration(
                version=2,
                name="add_lookup_indexes",
                up_sql="""
                CREATE INDEX IF NOT EXISTS idx_submissions_form_type ON submissions(form_type);
                CREATE INDEX IF NOT EXISTS idx_submissions_email ON submissions(email);
                CREATE INDEX IF NOT EXISTS idx_submissions_created_at ON submissions(created_at);
                CREATE INDEX IF NOT EXISTS idx_email_records_status ON email_records(status);
                CREATE INDEX IF NOT EXISTS idx_email_records_created_at ON email_records(created_at);
                """,
                down_sql="""
                DROP INDEX IF EXISTS idx_email_records_created_at;
                DROP INDEX IF EXISTS idx_email_records_status;
                DROP INDEX IF EXISTS idx_submissions_created_at;
                DROP INDEX IF EXISTS idx_submissions_email;
                DROP INDEX IF EXISTS idx_submissions_form_type;
                """
            ),
        ]

    async def migrate(self) -> int:
        """Run all pending migrations and return how many were applied."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS schema_migrations (
                        version INTEGER PRIMARY KEY,
                        name TEXT NOT NULL,
                        applied_at TEXT NOT NULL
                    )
                """)
                await db.commit()

                current_version = await self._get_current_version(db)

                pending_migrations = [m for m in self.migrations if m.version > current_version]

                for migration in pending_migrations:
                    await self._apply_migration(db, migration)

                if pending_migrations:
                    logger.info(f"Applied {len(pending_migrations)} migrations")

                return len(pending_migrations)

        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(f"Migration failed: {str(e)}", cause=e)

    async def _get_current_version(self, db: aiosqlite.Connection) -> int:
        """Get the current database schema version."""
        cursor = await db.execute("SELECT MAX(version) FROM schema_migrations")
        result = await cursor.fetchone()
        return result[0] if result[0] is not None else 0

    async def _apply_migration(self, db: aiosqlite.Connection, migration: Migration):
        """Apply a single migration."""
        try:
            logger.info(f"Applying {migration}")

            await db.executescript(migration.up_sql)

            await db.execute("""
                INSERT INTO schema_migrations (version, name, applied_at)
                VALUES (?, ?, ?)
            """, (migration.version, migration.name, datetime.now().isoformat()))

            await db.commit()

        except Exception as e:
            await db.rollback()
            raise DatabaseError(f"Failed to apply migration {migration.version}: {str(e)}", cause=e)

    async def rollback(self, target_version: int) -> int:
        """Roll back to ``target_version`` and return how many migrations were undone."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                current_version = await self._get_current_version(db)

                if target_version >= current_version:
                    return 0

                rollback_migrations = [
                    m for m in reversed(self.migrations)
                    if target_version < m.version <= current_version
                ]

                for migration in rollback_migrations:
                    logger.info(f"Rolling back {migration}")
                    await db.executescript(migration.down_sql)
                    await db.execute("DELETE FROM schema_migrations WHERE version = ?", (migration.version,))
                    await db.commit()

                return len(rollback_migrations)

        except Exception as e:
            raise DatabaseError(f"Rollback failed: {str(e)}", cause=e)

    async def get_migration_status(self) -> Dict[str, Any]:
        """Current version and pending migrations."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    applied_at TEXT NOT NULL
                )
            """)
            current_version = await self._get_current_version(db)

        return {
            "current_version": current_version,
            "latest_version": max(m.version for m in self.migrations),
            "pending": [str(m) for m in self.migrations if m.version > current_version]
        }
