"""
eligibility.py — Decides whether a job needs a reminder right now.

Rules are checked in priority order and the first match wins:

    1. Completed jobs never get reminders.
    2. An active snooze suppresses everything else.
    3. An expired snooze fires immediately, at any time of day.
    4. Overdue jobs escalate at fixed day milestones (2, 5, 8 by default),
       one reminder per milestone, only inside the 9 AM window.
    5. Jobs due tomorrow get one reminder inside the 9 AM window.

A job is reminded at most once per civil day for deadline causes.
Malformed records evaluate to "none" rather than raising.
"""

from datetime import date
from typing import Iterable, Optional

from clock import CivilNow, civil_date_of, civil_date_only, in_reminder_window, parse_timestamp
from config import COMPLETED_STATUS, REMINDER_MILESTONES
from models import (
    ACTION_NONE, ACTION_SEND_DUE_TOMORROW, ACTION_SEND_OVERDUE, ACTION_SEND_SNOOZE_EXPIRED,
    Decision, Job,
)
from monitoring import get_logger

logger = get_logger("eligibility")


def evaluate(job: Job, now: CivilNow, milestones: Optional[list[int]] = None) -> Decision:
    """Return the reminder decision for one job at one instant."""
    if milestones is None:
        milestones = REMINDER_MILESTONES

    if is_completed(job):
        return Decision(ACTION_NONE, "completed")

    try:
        snooze_expires_at = parse_timestamp(job.snooze_expires_at)
    except (TypeError, ValueError):
        logger.warning(f"[{job.job_number}] Unparseable snooze_expires_at: {job.snooze_expires_at!r}")
        return Decision(ACTION_NONE, "malformed_record")

    if snooze_expires_at is not None:
        if snooze_expires_at > now.instant:
            return Decision(ACTION_NONE, "snoozed")
        return Decision(ACTION_SEND_SNOOZE_EXPIRED, "snooze_expired")

    try:
        deadline = civil_date_only(job.production_deadline)
    except (TypeError, ValueError):
        logger.warning(f"[{job.job_number}] Unparseable production_deadline: {job.production_deadline!r}")
        return Decision(ACTION_NONE, "malformed_deadline")

    try:
        sent_today = reminded_on(job, now.date)
    except (TypeError, ValueError):
        logger.warning(f"[{job.job_number}] Unparseable last_reminder_sent_at: {job.last_reminder_sent_at!r}")
        return Decision(ACTION_NONE, "malformed_record")

    days_overdue = (now.date - deadline).days

    if days_overdue > 0:
        return _evaluate_overdue(job, now, days_overdue, sent_today, milestones)

    if deadline == now.tomorrow:
        if not in_reminder_window(now):
            return Decision(ACTION_NONE, "outside_window")
        if sent_today:
            return Decision(ACTION_NONE, "already_sent_today")
        return Decision(ACTION_SEND_DUE_TOMORROW, "due_tomorrow")

    return Decision(ACTION_NONE, "not_due")


def _evaluate_overdue(
    job: Job,
    now: CivilNow,
    days_overdue: int,
    sent_today: bool,
    milestones: list[int],
) -> Decision:
    """Escalation step for a job past its deadline."""
    try:
        count = overdue_count(job)
    except ValueError:
        logger.warning(f"[{job.job_number}] Unreadable overdue_reminder_count: {job.overdue_reminder_count!r}")
        return Decision(ACTION_NONE, "malformed_record")
    if count >= len(milestones):
        return Decision(ACTION_NONE, "milestones_exhausted")

    if days_overdue < milestones[count]:
        return Decision(ACTION_NONE, "milestone_not_reached")
    if not in_reminder_window(now):
        return Decision(ACTION_NONE, "outside_window")
    if sent_today:
        return Decision(ACTION_NONE, "already_sent_today")

    return Decision(ACTION_SEND_OVERDUE, "overdue_milestone", milestone_index=count)


def is_completed(job: Job) -> bool:
    return job.status == COMPLETED_STATUS


def overdue_count(job: Job) -> int:
    """Overdue reminders already sent, floored at 0. Raises ValueError if not an integer."""
    count = job.overdue_reminder_count
    if isinstance(count, bool) or not isinstance(count, int):
        raise ValueError(f"overdue_reminder_count is not an integer: {count!r}")
    return max(count, 0)


def reminded_on(job: Job, day: date) -> bool:
    """
    Whether the job's last reminder went out on the given civil date.
    Raises ValueError when last_reminder_sent_at is malformed.
    """
    return civil_date_of(job.last_reminder_sent_at) == day


def evaluate_all(
    jobs: Iterable[Job],
    now: CivilNow,
    milestones: Optional[list[int]] = None,
) -> list[tuple[Job, Decision]]:
    """Evaluate every job, keeping the ones that need a reminder."""
    due = []
    for job in jobs:
        decision = evaluate(job, now, milestones)
        if decision.should_send:
            due.append((job, decision))
    return due
