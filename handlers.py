"""
handlers.py — On-demand entry points called by the dashboard.

Payloads use the dashboard's camelCase JSON shape:
    send_reminder          {"job": {...} | "jobs": [...], "emailConfig": {...}}
    check_missed_reminders {"emailConfig": {...}}
    trigger_reminders      no payload
"""

from datetime import timedelta
from typing import Any, Optional

import main
from clock import CivilNow, civil_now
from config import RUN_LOCK_NAME, RUN_LOCK_STALE_MINUTES
from dispatch import dispatch
from eligibility import is_completed
from email_digest import GmailSender
from exceptions import MailSendError, ReminderError, StoreError
from missed_reminders import missed_decisions
from models import EmailConfig, Job
from monitoring import get_logger, send_event
from stores.base import BaseJobStore

logger = get_logger("handlers")


def _error(message: str, details: Optional[str] = None) -> dict[str, Any]:
    body = {"success": False, "error": message}
    if details:
        body["details"] = details
    return body


def _email_config(payload: dict[str, Any]) -> Optional[EmailConfig]:
    config = EmailConfig.from_payload(payload.get("emailConfig"))
    if config is None or not config.is_complete():
        return None
    return config


def send_reminder(
    payload: dict[str, Any],
    store: Optional[BaseJobStore] = None,
    mail_sender=None,
    now: Optional[CivilNow] = None,
) -> dict[str, Any]:
    """Send a reminder for one job (or a bundle) right now."""
    raw_jobs = payload.get("jobs") or ([payload["job"]] if payload.get("job") else [])
    if not raw_jobs:
        return _error("Missing job data")

    email_config = _email_config(payload)
    if email_config is None:
        return _error("Incomplete email configuration")

    jobs = [Job.from_payload(raw) for raw in raw_jobs]
    jobs = [job for job in jobs if not is_completed(job)]
    if not jobs:
        return _error("Completed jobs are not reminded")

    now = now or civil_now()
    mail_sender = mail_sender or GmailSender(email_config)

    try:
        mail_sender.send_digest(jobs)
    except MailSendError as e:
        logger.error(f"Manual reminder failed: {e}")
        send_event("error", "Failed to send email reminder", {"error": str(e), "jobCount": len(jobs)}, "error")
        return _error("Failed to send email", str(e))

    if store is not None:
        for job in jobs:
            _record_manual_reminder(store, job, now)

    send_event("event", "Email reminder sent successfully", {
        "jobCount": len(jobs),
        "recipientEmail": email_config.to_email,
        "isBundled": len(jobs) > 1,
    }, "info")
    return {"success": True, "message": "Reminder email sent successfully"}


def _record_manual_reminder(store: BaseJobStore, job: Job, now: CivilNow):
    """Manual sends never advance the overdue escalation."""
    try:
        job_id = job.id
        if job_id is None:
            stored = store.get_job_by_number(job.job_number)
            job_id = stored.id if stored else None
        if job_id is None:
            logger.warning(f"[{job.job_number}] Not in the store, reminder not recorded")
            return
        store.record_reminder(job_id, now.utc, None)
    except StoreError as e:
        logger.error(f"[{job.job_number}] Reminder sent but not recorded: {e}")


def check_missed_reminders(
    payload: dict[str, Any],
    store: Optional[BaseJobStore] = None,
    mail_sender=None,
    now: Optional[CivilNow] = None,
) -> dict[str, Any]:
    """Find reminders that scheduled runs missed and send them now."""
    email_config = _email_config(payload)
    if email_config is None:
        return _error("Missing email configuration")

    now = now or civil_now()
    mail_sender = mail_sender or GmailSender(email_config)

    try:
        store = store or main.get_job_store()
        with store.run_lock(RUN_LOCK_NAME, now.utc, timedelta(minutes=RUN_LOCK_STALE_MINUTES)) as acquired:
            if not acquired:
                return _error("A reminder run is already in progress")
            jobs = store.fetch_active_jobs()
            missed = missed_decisions(jobs, now)
            if not missed:
                send_event("event", "No missed reminders found", {}, "info")
                return {"success": True, "message": "No missed reminders found", "missedCount": 0, "sentCount": 0}
            report = dispatch(missed, now, mail_sender, store, processed=len(jobs))
    except ReminderError as e:
        logger.error(f"Missed reminder check failed: {e}")
        send_event("error", "Failed to check missed reminders", {"error": str(e)}, "error")
        return _error("Failed to check missed reminders", str(e))

    send_event("event", "Missed reminders check completed", {
        "totalMissed": len(missed),
        "totalSent": report.sent,
        "errors": report.errors,
    }, "info" if report.success else "error")

    if not report.success:
        return _error("Failed to send missed reminders", "; ".join(report.errors))
    return {
        "success": True,
        "message": f"Processed {len(missed)} missed reminders",
        "missedCount": len(missed),
        "sentCount": report.sent,
    }


def trigger_reminders() -> dict[str, Any]:
    """Run the scheduled check immediately."""
    try:
        result = main.run()
    except ReminderError as e:
        return _error("Failed to trigger reminders", str(e))
    return {"success": True, "message": "Reminder check triggered successfully", "result": result}
