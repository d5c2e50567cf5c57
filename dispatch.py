"""
dispatch.py — Sends the reminder digest and records who was reminded.

One poll cycle produces at most one digest email holding every job that
became eligible. The send is all-or-nothing: if it fails, no job is marked.
After a successful send each job is updated on its own row; a failed update
is logged and the job may be reminded again on the next pass.
"""

from typing import Optional

from clock import CivilNow
from eligibility import evaluate_all, is_completed
from exceptions import MailSendError, StoreError
from models import Decision, Job, RunReport
from monitoring import get_logger

logger = get_logger("dispatch")


def run(
    jobs: list[Job],
    now: CivilNow,
    mail_sender,
    job_store,
    milestones: Optional[list[int]] = None,
) -> RunReport:
    """Evaluate every non-completed job and dispatch the ones that are due."""
    due = evaluate_all(jobs, now, milestones)
    logger.info(f"{len(due)} of {len(jobs)} jobs due for a reminder")
    return dispatch(due, now, mail_sender, job_store, processed=len(jobs))


def dispatch(
    due: list[tuple[Job, Decision]],
    now: CivilNow,
    mail_sender,
    job_store,
    processed: Optional[int] = None,
) -> RunReport:
    """
    Send one digest for the given (job, decision) pairs, then record each
    reminder in the store.
    """
    report = RunReport(processed=len(due) if processed is None else processed)
    batch = _single_reminder_per_job(due)

    if not batch:
        logger.info("No reminders to send this cycle")
        return report

    jobs = [job for job, _ in batch]
    try:
        mail_sender.send_digest(jobs)
    except MailSendError as e:
        report.success = False
        report.errors.append(f"Mail send failed: {e}")
        logger.error(f"Digest for {len(jobs)} jobs not sent, nothing marked: {e}")
        return report

    report.sent = len(jobs)
    logger.info(f"Digest sent for {len(jobs)} jobs: {', '.join(j.job_number for j in jobs)}")

    for job, decision in batch:
        milestone = decision.milestone_index if decision.is_overdue else None
        if job.id is None:
            logger.warning(f"[{job.job_number}] No store id, reminder not recorded")
            report.failed_updates.append(job.job_number)
            continue
        try:
            updated = job_store.record_reminder(job.id, now.utc, milestone)
        except StoreError as e:
            report.failed_updates.append(job.job_number)
            report.errors.append(f"Update failed for {job.job_number}: {e}")
            logger.error(f"[{job.job_number}] Reminder sent but not recorded: {e}")
            continue
        if not updated:
            logger.warning(f"[{job.job_number}] Row missing or completed, reminder not recorded")
            continue
        report.sent_job_ids.append(job.id)

    return report


def _single_reminder_per_job(due: list[tuple[Job, Decision]]) -> list[tuple[Job, Decision]]:
    """Drop completed jobs, non-send decisions and repeats of the same job."""
    seen = set()
    batch = []
    for job, decision in due:
        if not decision.should_send or is_completed(job):
            continue
        key = job.id if job.id is not None else job.job_number
        if key in seen:
            logger.warning(f"[{job.job_number}] Duplicate entry in batch dropped")
            continue
        seen.add(key)
        batch.append((job, decision))
    return batch
