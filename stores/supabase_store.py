"""
supabase_store.py — Job store backed by a Supabase (hosted Postgres) project.
Uses the service-role key, so row level security does not apply.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from postgrest.exceptions import APIError
from supabase import create_client, Client

from config import COMPLETED_STATUS, SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY
from exceptions import ConfigError, DuplicateJobError, StoreError
from models import EmailConfig, Job
from monitoring import get_logger
from stores.base import BaseJobStore, JOB_COLUMNS

logger = get_logger("stores.supabase")

TABLE_JOBS = "jobs"
TABLE_EMAIL_CONFIGS = "email_configurations"
TABLE_RUN_LOCKS = "run_locks"

# Postgres error code for a duplicate primary key
UNIQUE_VIOLATION = "23505"


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


class SupabaseJobStore(BaseJobStore):
    def __init__(self, url: str = SUPABASE_URL, service_key: str = SUPABASE_SERVICE_ROLE_KEY, client: Optional[Client] = None):
        super().__init__("supabase")
        if client is None:
            if not url or not service_key:
                raise ConfigError("Missing Supabase environment variables")
            try:
                client = create_client(url, service_key)
            except Exception as e:
                raise ConfigError(f"Supabase client could not be created: {e}") from e
        self.client = client
        logger.info("Supabase client initialized successfully")

    def _execute(self, query, action: str) -> list[dict[str, Any]]:
        """Run a PostgREST query, mapping any client failure to StoreError."""
        try:
            result = query.execute()
        except Exception as e:
            raise StoreError(f"Failed to {action}: {e}") from e
        return result.data or []

    # --- Jobs ---

    def fetch_active_jobs(self) -> list[Job]:
        rows = self._execute(
            self.client.table(TABLE_JOBS)
            .select("*")
            .neq("status", COMPLETED_STATUS)
            .order("production_deadline"),
            "fetch jobs",
        )
        return [Job.from_row(row) for row in rows]

    def get_job(self, job_id: str) -> Optional[Job]:
        rows = self._execute(
            self.client.table(TABLE_JOBS).select("*").eq("id", job_id).limit(1),
            f"get job {job_id}",
        )
        return Job.from_row(rows[0]) if rows else None

    def get_job_by_number(self, job_number: str) -> Optional[Job]:
        rows = self._execute(
            self.client.table(TABLE_JOBS)
            .select("*")
            .eq("job_number", job_number)
            .order("created_at", desc=True),
            f"get job {job_number}",
        )
        if not rows:
            return None
        active = [row for row in rows if row.get("status") != COMPLETED_STATUS]
        return Job.from_row(active[0] if active else rows[0])

    def insert_job(self, job: Job) -> Job:
        if job.status != COMPLETED_STATUS:
            self._check_number_free(job.job_number)

        # id and created_at come from column defaults unless supplied
        row = {col: value for col, value in job.to_row().items() if col in JOB_COLUMNS and value is not None}
        rows = self._execute(self.client.table(TABLE_JOBS).insert(row), f"insert job {job.job_number}")
        if not rows:
            raise StoreError(f"No data returned from insert of job {job.job_number}")
        logger.info(f"Inserted job {job.job_number} ({rows[0].get('id')})")
        return Job.from_row(rows[0])

    def _check_number_free(self, job_number: str):
        existing = self._execute(
            self.client.table(TABLE_JOBS)
            .select("id")
            .eq("job_number", job_number)
            .neq("status", COMPLETED_STATUS)
            .limit(1),
            f"check job {job_number}",
        )
        if existing:
            raise DuplicateJobError(f"Job number {job_number} already exists")

    def delete_job(self, job_id: str) -> bool:
        rows = self._execute(self.client.table(TABLE_JOBS).delete().eq("id", job_id), f"delete job {job_id}")
        return bool(rows)

    def record_reminder(self, job_id: str, sent_at: datetime, overdue_milestone: Optional[int] = None) -> bool:
        update = {
            "reminder_sent": True,
            "last_reminder_sent_at": _iso(sent_at),
            "snooze_expires_at": None,
        }

        if overdue_milestone is not None:
            # Compare-and-set on the counter so two overlapping runs bump it once
            rows = self._execute(
                self.client.table(TABLE_JOBS)
                .update({**update, "overdue_reminder_count": overdue_milestone + 1})
                .eq("id", job_id)
                .eq("overdue_reminder_count", overdue_milestone)
                .neq("status", COMPLETED_STATUS),
                f"record reminder for {job_id}",
            )
            if rows:
                return True

        rows = self._execute(
            self.client.table(TABLE_JOBS)
            .update(update)
            .eq("id", job_id)
            .neq("status", COMPLETED_STATUS),
            f"record reminder for {job_id}",
        )
        return bool(rows)

    def set_status(self, job_id: str, status: str) -> bool:
        rows = self._execute(
            self.client.table(TABLE_JOBS).update({"status": status}).eq("id", job_id),
            f"set status of {job_id}",
        )
        return bool(rows)

    def snooze_job(self, job_id: str, expires_at: datetime) -> bool:
        rows = self._execute(
            self.client.table(TABLE_JOBS)
            .update({"snooze_expires_at": _iso(expires_at), "reminder_sent": False})
            .eq("id", job_id),
            f"snooze {job_id}",
        )
        return bool(rows)

    def cancel_snooze(self, job_id: str) -> bool:
        rows = self._execute(
            self.client.table(TABLE_JOBS).update({"snooze_expires_at": None}).eq("id", job_id),
            f"cancel snooze of {job_id}",
        )
        return bool(rows)

    # --- Run lock ---

    def acquire_run_lock(self, name: str, now: datetime, stale_after: timedelta) -> bool:
        # Insert wins outright; otherwise only a stale marker may be taken over
        try:
            self.client.table(TABLE_RUN_LOCKS).insert({"name": name, "started_at": _iso(now)}).execute()
            return True
        except APIError as e:
            if e.code != UNIQUE_VIOLATION:
                raise StoreError(f"Failed to take run lock {name}: {e.message or e}") from e
            logger.debug(f"Run lock '{name}' already present, checking staleness")
        except Exception as e:
            raise StoreError(f"Failed to take run lock {name}: {e}") from e

        rows = self._execute(
            self.client.table(TABLE_RUN_LOCKS)
            .update({"started_at": _iso(now)})
            .eq("name", name)
            .lt("started_at", _iso(now - stale_after)),
            f"take over run lock {name}",
        )
        return bool(rows)

    def release_run_lock(self, name: str, started_at: datetime) -> bool:
        rows = self._execute(
            self.client.table(TABLE_RUN_LOCKS)
            .delete()
            .eq("name", name)
            .eq("started_at", _iso(started_at)),
            f"release run lock {name}",
        )
        return bool(rows)

    # --- Email configurations ---

    def get_email_config(self, user_id: str) -> Optional[EmailConfig]:
        rows = self._execute(
            self.client.table(TABLE_EMAIL_CONFIGS).select("*").eq("user_id", user_id).limit(1),
            f"get email configuration for {user_id}",
        )
        return EmailConfig.from_row(rows[0]) if rows else None

    def save_email_config(self, user_id: str, config: EmailConfig):
        self._execute(
            self.client.table(TABLE_EMAIL_CONFIGS).upsert(
                {
                    "user_id": user_id,
                    "to_email": config.to_email,
                    "from_email": config.from_email,
                    "from_password": config.from_password,
                    "configured": config.configured,
                    "updated_at": _iso(datetime.now(timezone.utc)),
                },
                on_conflict="user_id",
            ),
            f"save email configuration for {user_id}",
        )

    def delete_email_config(self, user_id: str) -> bool:
        rows = self._execute(
            self.client.table(TABLE_EMAIL_CONFIGS).delete().eq("user_id", user_id),
            f"delete email configuration for {user_id}",
        )
        return bool(rows)

    def list_configured_email_configs(self) -> list[EmailConfig]:
        rows = self._execute(
            self.client.table(TABLE_EMAIL_CONFIGS)
            .select("*")
            .eq("configured", True)
            .order("updated_at", desc=True),
            "list email configurations",
        )
        return [EmailConfig.from_row(row) for row in rows]
