"""
sqlite_store.py — SQLite job store, the default backend.
One connection per operation; every statement is a single-row change.
"""

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional

from config import COMPLETED_STATUS, DB_PATH
from exceptions import DuplicateJobError, StoreError
from models import EmailConfig, Job
from monitoring import get_logger
from stores.base import BaseJobStore, JOB_COLUMNS

logger = get_logger("stores.sqlite")

SCHEMA = """
    CREATE TABLE IF NOT EXISTS jobs (
        id TEXT PRIMARY KEY,
        job_number TEXT NOT NULL,
        client_name TEXT NOT NULL DEFAULT '',
        forwarding_date TEXT,
        production_deadline TEXT,
        status TEXT NOT NULL DEFAULT 'Pending',
        reminder_sent INTEGER NOT NULL DEFAULT 0,
        snooze_expires_at TEXT,
        last_reminder_sent_at TEXT,
        overdue_reminder_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT
    );

    CREATE TABLE IF NOT EXISTS email_configurations (
        user_id TEXT PRIMARY KEY,
        to_email TEXT NOT NULL,
        from_email TEXT NOT NULL,
        from_password TEXT NOT NULL,
        configured INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT
    );

    CREATE TABLE IF NOT EXISTS run_locks (
        name TEXT PRIMARY KEY,
        started_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);
    CREATE INDEX IF NOT EXISTS idx_jobs_job_number ON jobs(job_number);
"""


def _iso(dt: datetime) -> str:
    """UTC ISO timestamp with second resolution, so stored values sort as text."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


class SqliteJobStore(BaseJobStore):
    def __init__(self, db_path: Path = DB_PATH):
        super().__init__("sqlite")
        self.db_path = Path(db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Connection that commits on success and maps sqlite errors to StoreError."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path))
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"Cannot open {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"SQLite error: {e}") from e
        finally:
            conn.close()

    def init_schema(self):
        """Create all tables if they don't exist."""
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    # --- Jobs ---

    def fetch_active_jobs(self) -> list[Job]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM jobs WHERE status != ? ORDER BY production_deadline ASC",
                (COMPLETED_STATUS,)
            ).fetchall()
        return [Job.from_row(dict(row)) for row in rows]

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return Job.from_row(dict(row)) if row else None

    def get_job_by_number(self, job_number: str) -> Optional[Job]:
        with self._connect() as conn:
            row = conn.execute(
                """SELECT * FROM jobs WHERE job_number = ?
                   ORDER BY (status = ?) ASC, created_at DESC
                   LIMIT 1""",
                (job_number, COMPLETED_STATUS)
            ).fetchone()
        return Job.from_row(dict(row)) if row else None

    def insert_job(self, job: Job) -> Job:
        row = job.to_row()
        row["id"] = row["id"] or uuid.uuid4().hex
        row["created_at"] = row["created_at"] or _iso(datetime.now(timezone.utc))
        row["reminder_sent"] = int(bool(row["reminder_sent"]))

        placeholders = ", ".join("?" * len(JOB_COLUMNS))
        with self._connect() as conn:
            # Only active jobs hold their number
            existing = job.status != COMPLETED_STATUS and conn.execute(
                "SELECT 1 FROM jobs WHERE job_number = ? AND status != ?",
                (job.job_number, COMPLETED_STATUS)
            ).fetchone()
            if existing:
                raise DuplicateJobError(f"Job number {job.job_number} already exists")
            conn.execute(
                f"INSERT INTO jobs ({', '.join(JOB_COLUMNS)}) VALUES ({placeholders})",
                [row[col] for col in JOB_COLUMNS]
            )
        logger.info(f"Inserted job {job.job_number} ({row['id']})")
        return Job.from_row(row)

    def delete_job(self, job_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
        return cursor.rowcount > 0

    def record_reminder(self, job_id: str, sent_at: datetime, overdue_milestone: Optional[int] = None) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """UPDATE jobs SET
                       reminder_sent = 1,
                       last_reminder_sent_at = ?,
                       snooze_expires_at = NULL,
                       overdue_reminder_count = CASE
                           WHEN ? IS NOT NULL AND overdue_reminder_count = ?
                           THEN overdue_reminder_count + 1
                           ELSE overdue_reminder_count
                       END
                   WHERE id = ? AND status != ?""",
                (_iso(sent_at), overdue_milestone, overdue_milestone, job_id, COMPLETED_STATUS)
            )
        return cursor.rowcount > 0

    def set_status(self, job_id: str, status: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("UPDATE jobs SET status = ? WHERE id = ?", (status, job_id))
        return cursor.rowcount > 0

    def snooze_job(self, job_id: str, expires_at: datetime) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE jobs SET snooze_expires_at = ?, reminder_sent = 0 WHERE id = ?",
                (_iso(expires_at), job_id)
            )
        return cursor.rowcount > 0

    def cancel_snooze(self, job_id: str) -> bool:
        # reminder_sent is left as is
        with self._connect() as conn:
            cursor = conn.execute("UPDATE jobs SET snooze_expires_at = NULL WHERE id = ?", (job_id,))
        return cursor.rowcount > 0

    # --- Run lock ---

    def acquire_run_lock(self, name: str, now: datetime, stale_after: timedelta) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """INSERT INTO run_locks (name, started_at) VALUES (?, ?)
                   ON CONFLICT(name) DO UPDATE SET started_at = excluded.started_at
                   WHERE run_locks.started_at < ?""",
                (name, _iso(now), _iso(now - stale_after))
            )
        return cursor.rowcount > 0

    def release_run_lock(self, name: str, started_at: datetime) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM run_locks WHERE name = ? AND started_at = ?",
                (name, _iso(started_at))
            )
        return cursor.rowcount > 0

    # --- Email configurations ---

    def get_email_config(self, user_id: str) -> Optional[EmailConfig]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM email_configurations WHERE user_id = ?", (user_id,)
            ).fetchone()
        return EmailConfig.from_row(dict(row)) if row else None

    def save_email_config(self, user_id: str, config: EmailConfig):
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO email_configurations
                       (user_id, to_email, from_email, from_password, configured, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                       to_email = excluded.to_email,
                       from_email = excluded.from_email,
                       from_password = excluded.from_password,
                       configured = excluded.configured,
                       updated_at = excluded.updated_at""",
                (
                    user_id, config.to_email, config.from_email, config.from_password,
                    int(config.configured), _iso(datetime.now(timezone.utc))
                )
            )

    def delete_email_config(self, user_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM email_configurations WHERE user_id = ?", (user_id,))
        return cursor.rowcount > 0

    def list_configured_email_configs(self) -> list[EmailConfig]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM email_configurations WHERE configured = 1 ORDER BY updated_at DESC"
            ).fetchall()
        return [EmailConfig.from_row(dict(row)) for row in rows]
