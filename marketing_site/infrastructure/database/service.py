"""Submission store on SQLite: form submissions and durable email records."""

import json
import time
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any
from uuid import UUID

import aiosqlite

from ...core.exceptions import DatabaseError, SubmissionNotFoundError
from ...core.models.email import EmailRecord, EmailStatus
from ...core.models.forms import FormType, StoredSubmission
from .migrations import MigrationManager


class ProductionDatabaseService:
    """Async SQLite access for submissions and email records."""

    def __init__(self, db_path: Path, logging_service=None, connection_timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.logging_service = logging_service
        self.connection_timeout = connection_timeout
        self.migration_manager = MigrationManager(self.db_path)

    async def initialize(self):
        """Create the database file and apply pending migrations."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            await self.migration_manager.migrate()
        except Exception as e:
            raise DatabaseError(f"Database initialization failed: {str(e)}", cause=e)

    def _connect(self):
        return aiosqlite.connect(self.db_path, timeout=self.connection_timeout)

    @asynccontextmanager
    async def transaction(self):
        """Async context manager for database transactions."""
        async with self._connect() as db:
            try:
                await db.execute("BEGIN")
                yield db
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    def _log(self, operation: str, table: str, started: float, entity_id=None, error: Optional[Exception] = None):
        if not self.logging_service:
            return
        self.logging_service.log_database_operation(
            operation,
            table=table,
            entity_id=entity_id,
            duration_ms=(time.perf_counter() - started) * 1000,
            success=error is None,
            error_message=str(error) if error else None
        )

    # Submission Operations
    async def save_submission(self, submission: StoredSubmission) -> StoredSubmission:
        """Insert a form submission."""
        started = time.perf_counter()
        try:
            now = datetime.now().isoformat()
            async with self.transaction() as db:
                await db.execute("""
                    INSERT INTO submissions (
                        id, form_type, name, email, phone, message,
                        ip_address, user_agent, email_sent, metadata,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    str(submission.id), submission.form_type.value, submission.name,
                    submission.email, submission.phone, submission.message,
                    submission.ip_address, submission.user_agent,
                    int(submission.email_sent), json.dumps(submission.metadata),
                    submission.created_at.isoformat(), now
                ))
        except Exception as e:
            self._log("insert", "submissions", started, submission.id, e)
            raise DatabaseError(f"Failed to save submission: {str(e)}", cause=e)

        self._log("insert", "submissions", started, submission.id)
        return submission

    async def get_submission(self, submission_id: UUID) -> Optional[StoredSubmission]:
        """Get submission by ID."""
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    "SELECT * FROM submissions WHERE id = ?",
                    (str(submission_id),)
                )
                row = await cursor.fetchone()
        except Exception as e:
            raise DatabaseError(f"Failed to get submission {submission_id}: {str(e)}", cause=e)

        return self._row_to_submission(row) if row else None

    async def mark_email_sent(self, submission_id: UUID, email_sent: bool = True) -> None:
        """Flag whether the notification for a submission went out."""
        started = time.perf_counter()
        try:
            async with self.transaction() as db:
                cursor = await db.execute(
                    "UPDATE submissions SET email_sent = ?, updated_at = ? WHERE id = ?",
                    (int(email_sent), datetime.now().isoformat(), str(submission_id))
                )
                updated = cursor.rowcount
        except Exception as e:
            self._log("update", "submissions", started, submission_id, e)
            raise DatabaseError(f"Failed to update submission {submission_id}: {str(e)}", cause=e)

        if not updated:
            raise SubmissionNotFoundError(str(submission_id))
        self._log("update", "submissions", started, submission_id)

    async def list_submissions(
        self,
        form_type: Optional[FormType] = None,
        limit: int = 50
    ) -> List[StoredSubmission]:
        """Most recent submissions first."""
        query = "SELECT * FROM submissions"
        params: list = []
        if form_type is not None:
            query += " WHERE form_type = ?"
            params.append(form_type.value)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(query, params)
                rows = await cursor.fetchall()
        except Exception as e:
            raise DatabaseError(f"Failed to list submissions: {str(e)}", cause=e)

        return [self._row_to_submission(row) for row in rows]

    # Email Record Operations
    async def save_email_record(self, record: EmailRecord) -> None:
        """Durable sink for delivery run summaries."""
        started = time.perf_counter()
        try:
            async with self.transaction() as db:
                await db.execute("""
                    INSERT INTO email_records (
                        id, recipient, sender, subject, status, message_id,
                        error, transport_name, attempts, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    str(record.id), record.recipient, record.sender, record.subject,
                    record.status.value, record.message_id, record.error,
                    record.transport_name, record.attempts, record.created_at.isoformat()
                ))
        except Exception as e:
            self._log("insert", "email_records", started, record.id, e)
            raise DatabaseError(f"Failed to save email record: {str(e)}", cause=e)

        self._log("insert", "email_records", started, record.id)

    async def get_email_records(self, limit: int = 100) -> List[EmailRecord]:
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    "SELECT * FROM email_records ORDER BY created_at DESC LIMIT ?",
                    (limit,)
                )
                rows = await cursor.fetchall()
        except Exception as e:
            raise DatabaseError(f"Failed to get email records: {str(e)}", cause=e)

        return [
            EmailRecord(
                id=UUID(row["id"]),
                recipient=row["recipient"],
                sender=row["sender"],
                subject=row["subject"],
                status=EmailStatus(row["status"]),
                message_id=row["message_id"],
                error=row["error"],
                transport_name=row["transport_name"],
                attempts=row["attempts"],
                created_at=datetime.fromisoformat(row["created_at"])
            )
            for row in rows
        ]

    async def get_database_stats(self) -> Dict[str, Any]:
        """Row counts used by the health endpoint."""
        try:
            async with self._connect() as db:
                stats: Dict[str, Any] = {}
                for table in ("submissions", "email_records"):
                    cursor = await db.execute(f"SELECT COUNT(*) FROM {table}")
                    stats[f"{table}_count"] = (await cursor.fetchone())[0]

                cursor = await db.execute("SELECT COUNT(*) FROM submissions WHERE email_sent = 0")
                stats["submissions_without_email"] = (await cursor.fetchone())[0]
        except Exception as e:
            raise DatabaseError(f"Failed to get database stats: {str(e)}", cause=e)

        stats["database_path"] = str(self.db_path)
        return stats

    def _row_to_submission(self, row: aiosqlite.Row) -> StoredSubmission:
        return StoredSubmission(
            id=UUID(row["id"]),
            form_type=FormType(row["form_type"]),
            name=row["name"],
            email=row["email"],
            phone=row["phone"],
            message=row["message"],
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
            email_sent=bool(row["email_sent"]),
            metadata=json.loads(row["metadata"] or "{}"),
            created_at=datetime.fromisoformat(row["created_at"])
        )
