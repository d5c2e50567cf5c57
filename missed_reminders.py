"""
missed_reminders.py — Finds reminders that scheduled runs should have sent.

Works from stored job state only, so it can recover after the host was
down through one or more 9 AM windows.
"""

from typing import Iterable, Optional

from clock import CivilNow, civil_date_only, parse_timestamp, reminder_window_passed
from config import REMINDER_MILESTONES
from eligibility import is_completed, overdue_count, reminded_on
from models import (
    ACTION_SEND_DUE_TOMORROW, ACTION_SEND_OVERDUE, ACTION_SEND_SNOOZE_EXPIRED,
    Decision, Job,
)
from monitoring import get_logger

logger = get_logger("missed_reminders")


def find_missed(jobs: Iterable[Job], now: CivilNow, milestones: Optional[list[int]] = None) -> list[Job]:
    """Jobs that should already have been reminded but were not."""
    return [job for job, _ in missed_decisions(jobs, now, milestones)]


def missed_decisions(
    jobs: Iterable[Job],
    now: CivilNow,
    milestones: Optional[list[int]] = None,
) -> list[tuple[Job, Decision]]:
    """Missed jobs paired with the decision the dispatcher should act on."""
    if milestones is None:
        milestones = REMINDER_MILESTONES

    jobs = list(jobs)
    missed = []
    for job in jobs:
        try:
            decision = _missed_decision(job, now, milestones)
        except (TypeError, ValueError) as e:
            logger.warning(f"[{job.job_number}] Skipped malformed record: {e}")
            continue
        if decision is not None:
            missed.append((job, decision))

    logger.info(f"Missed reminder sweep: {len(missed)} of {len(jobs)} jobs missed a reminder")
    return missed


def _missed_decision(job: Job, now: CivilNow, milestones: list[int]) -> Optional[Decision]:
    if is_completed(job):
        return None

    snooze_expires_at = parse_timestamp(job.snooze_expires_at)
    if snooze_expires_at is not None:
        if snooze_expires_at <= now.instant and not job.reminder_sent:
            return Decision(ACTION_SEND_SNOOZE_EXPIRED, "missed_snooze_expired")
        return None

    if reminded_on(job, now.date):
        return None

    deadline = civil_date_only(job.production_deadline)
    days_overdue = (now.date - deadline).days
    window_passed = reminder_window_passed(now)

    if days_overdue > 0:
        count = overdue_count(job)
        if count >= len(milestones):
            return None
        milestone = milestones[count]
        # Today's window only counts once it has closed
        if days_overdue > milestone or (days_overdue == milestone and window_passed):
            return Decision(ACTION_SEND_OVERDUE, "missed_overdue_milestone", milestone_index=count)
        return None

    if deadline == now.tomorrow and window_passed:
        return Decision(ACTION_SEND_DUE_TOMORROW, "missed_due_tomorrow")

    return None
