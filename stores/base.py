"""
base.py — Contract every job store backend implements.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator, Optional

from exceptions import StoreError
from models import EmailConfig, Job
from monitoring import get_logger

logger = get_logger("stores.base")

# Persisted columns, in table order
JOB_COLUMNS = [
    "id", "job_number", "client_name", "forwarding_date", "production_deadline",
    "status", "reminder_sent", "snooze_expires_at", "last_reminder_sent_at",
    "overdue_reminder_count", "created_at",
]


class BaseJobStore(ABC):
    def __init__(self, name):
        self.name = name

    # --- Jobs ---

    @abstractmethod
    def fetch_active_jobs(self) -> list[Job]:
        """All jobs whose status is not Completed, earliest deadline first."""

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Job]:
        pass

    @abstractmethod
    def get_job_by_number(self, job_number: str) -> Optional[Job]:
        """Newest active job with this number, else the newest completed one."""

    @abstractmethod
    def insert_job(self, job: Job) -> Job:
        """Insert a job, rejecting a duplicate active job number."""

    @abstractmethod
    def delete_job(self, job_id: str) -> bool:
        pass

    @abstractmethod
    def record_reminder(self, job_id: str, sent_at: datetime, overdue_milestone: Optional[int] = None) -> bool:
        """
        Mark one job as reminded in a single row update.

        Sets last_reminder_sent_at and reminder_sent, clears the snooze, and
        bumps overdue_reminder_count only while it still equals
        overdue_milestone. Completed rows are left alone.
        Returns False if no row was updated.
        """

    @abstractmethod
    def set_status(self, job_id: str, status: str) -> bool:
        pass

    @abstractmethod
    def snooze_job(self, job_id: str, expires_at: datetime) -> bool:
        """Suppress reminders until expires_at and re-arm reminder_sent."""

    @abstractmethod
    def cancel_snooze(self, job_id: str) -> bool:
        pass

    # --- Run lock ---

    @abstractmethod
    def acquire_run_lock(self, name: str, now: datetime, stale_after: timedelta) -> bool:
        """Take the named lock unless someone holds one younger than stale_after."""

    @abstractmethod
    def release_run_lock(self, name: str, started_at: datetime) -> bool:
        """Drop the lock only if it still carries this run's start time."""

    @contextmanager
    def run_lock(self, name: str, now: datetime, stale_after: timedelta) -> Iterator[bool]:
        """Yield whether the lock was taken; release it afterwards if it was."""
        acquired = self.acquire_run_lock(name, now, stale_after)
        try:
            yield acquired
        finally:
            if acquired:
                try:
                    if not self.release_run_lock(name, now):
                        logger.warning(f"[{self.name}] Run lock '{name}' was taken over before release")
                except StoreError as e:
                    logger.error(f"[{self.name}] Could not release run lock '{name}': {e}")

    # --- Email configurations ---

    @abstractmethod
    def get_email_config(self, user_id: str) -> Optional[EmailConfig]:
        pass

    @abstractmethod
    def save_email_config(self, user_id: str, config: EmailConfig):
        pass

    @abstractmethod
    def delete_email_config(self, user_id: str) -> bool:
        pass

    @abstractmethod
    def list_configured_email_configs(self) -> list[EmailConfig]:
        pass

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
