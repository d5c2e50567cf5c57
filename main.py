"""
main.py — Scheduled entry point for the reminder check.
The host timer invokes run() every 5 minutes; each call is independent.
"""

import time
from datetime import timedelta
from typing import Optional

from clock import CivilNow, civil_now
from config import (
    validate_config, require_config,
    STORE_BACKEND, DB_PATH, SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY,
    GMAIL_ADDRESS, GMAIL_APP_PASSWORD, REMINDER_TO_EMAIL,
    RUN_LOCK_NAME, RUN_LOCK_STALE_MINUTES,
)
from dispatch import run as run_dispatch
from email_digest import GmailSender
from exceptions import ConfigError, StoreError
from models import EmailConfig, RunReport
from monitoring import setup_logging, get_logger, log_run_summary, send_event
from stores.base import BaseJobStore


def get_job_store() -> BaseJobStore:
    """Build the job store selected by JOB_STORE_BACKEND."""
    if STORE_BACKEND == "supabase":
        from stores.supabase_store import SupabaseJobStore
        return SupabaseJobStore(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)

    from stores.sqlite_store import SqliteJobStore
    store = SqliteJobStore(DB_PATH)
    store.init_schema()
    return store


def resolve_email_config(store: BaseJobStore) -> EmailConfig:
    """
    Environment credentials first, then the newest configured row in the store.
    Raises ConfigError when neither is complete.
    """
    env_config = EmailConfig(
        to_email=REMINDER_TO_EMAIL,
        from_email=GMAIL_ADDRESS,
        from_password=GMAIL_APP_PASSWORD,
    )
    if env_config.is_complete():
        return env_config

    for stored in store.list_configured_email_configs():
        if stored.is_complete():
            return stored

    raise ConfigError("No complete email configuration in the environment or the store")


def run(store: Optional[BaseJobStore] = None, mail_sender=None, now: Optional[CivilNow] = None) -> dict:
    """Execute one reminder check. Returns {success, totalProcessed, totalSent}."""
    setup_logging()
    logger = get_logger("main")

    logger.info("=" * 60)
    logger.info("REMINDER CHECK — Starting run")

    for warning in validate_config():
        logger.warning(f"Config: {warning}")

    run_start = time.time()

    # Configuration problems are fatal: report them, then re-raise
    try:
        require_config()
        if store is None:
            store = get_job_store()
        if mail_sender is None:
            mail_sender = GmailSender(resolve_email_config(store))
    except ConfigError as e:
        logger.critical(f"Reminder check cannot start: {e}")
        send_event("error", "Reminder check cannot start", {"error": str(e)}, "critical")
        raise
    except StoreError as e:
        # Store outages are retried by the next timer tick
        logger.error(f"Store unavailable at startup, nothing sent: {e}")
        send_event("error", "Reminder check failed", {"error": str(e)}, "error")
        return RunReport(success=False, errors=[f"Store error: {e}"]).to_status()

    now = now or civil_now()
    logger.info(f"Civil time: {now.instant.isoformat()}")

    report = _locked_run(store, mail_sender, now, logger)
    duration = time.time() - run_start
    log_run_summary(logger, report, duration)

    data = {
        "totalProcessed": report.processed,
        "totalSent": report.sent,
        "failedUpdates": len(report.failed_updates),
        "durationSeconds": round(duration, 2),
    }
    if report.skipped:
        send_event("event", "Reminder check skipped, another run holds the lock", data, "warning")
    elif not report.success:
        send_event("error", "Reminder check failed", {**data, "errors": report.errors}, "error")
    elif report.errors:
        send_event("event", "Reminder check completed with errors", {**data, "errors": report.errors}, "warning")
    else:
        send_event("event", "Reminder check completed", data, "info")

    logger.info("REMINDER CHECK — Run complete")

    status = report.to_status()
    if report.skipped:
        status["skipped"] = True
    return status


def _locked_run(store: BaseJobStore, mail_sender, now: CivilNow, logger) -> RunReport:
    """Load and dispatch under the advisory run lock."""
    stale_after = timedelta(minutes=RUN_LOCK_STALE_MINUTES)
    try:
        with store.run_lock(RUN_LOCK_NAME, now.utc, stale_after) as acquired:
            if not acquired:
                logger.warning(f"Run lock '{RUN_LOCK_NAME}' is held, skipping this cycle")
                return RunReport(skipped=True)

            jobs = store.fetch_active_jobs()
            logger.info(f"Loaded {len(jobs)} active jobs")
            return run_dispatch(jobs, now, mail_sender, store)
    except StoreError as e:
        logger.error(f"Store unavailable, nothing sent: {e}")
        return RunReport(success=False, errors=[f"Store error: {e}"])


if __name__ == "__main__":
    run()
