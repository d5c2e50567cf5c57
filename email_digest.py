"""
email_digest.py — Reminder digest email.
Sends via Gmail SMTP using an App Password.
"""

import html
import smtplib
from dataclasses import dataclass
from datetime import date
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Optional
from urllib.parse import quote

from clock import civil_date_only, civil_now, format_civil
from config import DASHBOARD_URL, SENDER_NAME, SMTP_HOST, SMTP_PORT, SMTP_TIMEOUT, URGENT_DAYS
from exceptions import MailSendError
from models import EmailConfig, Job
from monitoring import get_logger

logger = get_logger("email_digest")

# Urgency levels, least to most severe
ON_TRACK = (0, "On Track", "#10b981")
URGENT = (1, "URGENT", "#f59e0b")
DUE_TODAY = (2, "DUE TODAY", "#f59e0b")
OVERDUE = (3, "OVERDUE", "#ef4444")


@dataclass
class JobUrgency:
    job: Job
    days_remaining: Optional[int]  # None when the deadline is unreadable
    level: int
    label: str
    color: str


def job_urgency(job: Job, today: date) -> JobUrgency:
    """Classify a job by civil days left until its production deadline."""
    try:
        days_remaining = (civil_date_only(job.production_deadline) - today).days
    except (TypeError, ValueError):
        return JobUrgency(job, None, *ON_TRACK)

    if days_remaining < 0:
        level = OVERDUE
    elif days_remaining == 0:
        level = DUE_TODAY
    elif days_remaining <= URGENT_DAYS:
        level = URGENT
    else:
        level = ON_TRACK
    return JobUrgency(job, days_remaining, *level)


def format_date(value: Optional[str]) -> str:
    """YYYY-MM-DD -> dd-Mon-yyyy, e.g. 05-Jan-2025."""
    try:
        return civil_date_only(value).strftime("%d-%b-%Y")
    except (TypeError, ValueError):
        return value or "—"


def _days_text(days_remaining: Optional[int]) -> str:
    if days_remaining is None:
        return "unknown"
    if days_remaining < 0:
        overdue = -days_remaining
        return f"{overdue} day{'s' if overdue != 1 else ''} overdue"
    if days_remaining == 0:
        return "due today"
    return f"{days_remaining} day{'s' if days_remaining != 1 else ''} remaining"


def _action_text(urgencies: list[JobUrgency]) -> str:
    if len(urgencies) > 1:
        return (
            f"You have {len(urgencies)} jobs requiring attention. Please follow up with the "
            "production team for each job to ensure all tasks are on track for their deadlines."
        )
    days = urgencies[0].days_remaining
    if days is not None and days < 0:
        return "This job is LATE. Please follow up with the production team immediately."
    if days == 0:
        return "This job is DUE TODAY. Please check the status with the production team."
    return "Please follow up with the production team to ensure this job is on track for the deadline."


def _dashboard_link(jobs: list[Job]) -> str:
    if len(jobs) == 1:
        return f"{DASHBOARD_URL}?job={quote(jobs[0].job_number)}"
    return DASHBOARD_URL


def build_digest_content(jobs: list[Job], today: Optional[date] = None) -> tuple[str, str, str]:
    """Build subject, HTML body and plain-text body for a digest."""
    if not jobs:
        raise ValueError("A digest needs at least one job")

    now = civil_now()
    today = today or now.date
    urgencies = [job_urgency(job, today) for job in jobs]
    worst = max(urgencies, key=lambda u: u.level)

    # --- Subject line ---
    if len(jobs) == 1:
        subject = f"Reminder: {jobs[0].job_number} ({jobs[0].client_name}) - {worst.label}"
    else:
        subject = f"Reminder: {len(jobs)} Jobs - {worst.label}"

    action = _action_text(urgencies)
    link = _dashboard_link(jobs)
    sent_at = format_civil(now.instant)

    return subject, _build_html(urgencies, worst, action, link, sent_at), _build_text(urgencies, worst, action, link, sent_at)


def _build_html(urgencies: list[JobUrgency], worst: JobUrgency, action: str, link: str, sent_at: str) -> str:
    count = len(urgencies)
    due_today = sum(1 for u in urgencies if u.days_remaining == 0)
    overdue = sum(1 for u in urgencies if u.days_remaining is not None and u.days_remaining < 0)
    heading = "Job Status Update" if count == 1 else f"{count} Jobs Requiring Attention"

    html_parts = [_html_header()]

    html_parts.append(f"""
    <div style="background:{worst.color}; color:#ffffff; padding:16px; border-radius:8px; margin-bottom:20px; text-align:center;">
        <h2 style="margin:0;">{worst.label} - {html.escape(heading)}</h2>
    </div>
    <div style="background:#f1f5f9; padding:16px; border-radius:8px; margin-bottom:20px;">
        <p style="margin:4px 0; color:#555;">Total jobs: <strong>{count}</strong></p>
        <p style="margin:4px 0; color:#555;">Due today: <strong>{due_today}</strong></p>
        <p style="margin:4px 0; color:#555;">Overdue: <strong>{overdue}</strong></p>
    </div>
    """)

    for u in urgencies:
        job = u.job
        html_parts.append(f"""
        <div style="border:1px solid #e2e8f0; border-radius:8px; padding:14px; margin-bottom:12px; background:#f8fafc;">
            <div style="display:flex; justify-content:space-between; align-items:center;">
                <h3 style="margin:0; color:#1e293b;">{html.escape(job.job_number)}</h3>
                <span style="background:{u.color}; color:white; padding:3px 10px; border-radius:4px; font-weight:bold; font-size:12px;">{u.label}</span>
            </div>
            <p style="margin:4px 0; color:#64748b; font-size:14px;"><strong>Client:</strong> {html.escape(job.client_name)}</p>
            <p style="margin:4px 0; color:#64748b; font-size:14px;"><strong>Forwarding Date:</strong> {format_date(job.forwarding_date)}</p>
            <p style="margin:4px 0; color:#64748b; font-size:14px;"><strong>Deadline:</strong> {format_date(job.production_deadline)} ({_days_text(u.days_remaining)})</p>
            <p style="margin:4px 0; color:#64748b; font-size:14px;"><strong>Status:</strong> {html.escape(job.status)}</p>
        </div>
        """)

    html_parts.append(f"""
    <p style="color:#333; font-size:14px;">{action}</p>
    <div style="text-align:center; margin:24px 0;">
        <a href="{html.escape(link)}" style="background:#1e293b; color:white; padding:12px 24px; border-radius:6px; text-decoration:none; font-weight:bold;">
            View in Dashboard
        </a>
    </div>
    """)

    html_parts.append(_html_footer(sent_at))
    return "\n".join(html_parts)


def _build_text(urgencies: list[JobUrgency], worst: JobUrgency, action: str, link: str, sent_at: str) -> str:
    rule = "─" * 63
    lines = [
        f"{SENDER_NAME.upper()} - JOB REMINDER",
        worst.label,
        "",
        "JOB DETAILS:" if len(urgencies) == 1 else "JOBS REQUIRING ATTENTION:",
        rule,
    ]
    for i, u in enumerate(urgencies):
        if i > 0:
            lines.append(rule)
        job = u.job
        lines.extend([
            f"Job No.: {job.job_number}",
            f"Client: {job.client_name}",
            f"Forwarding Date: {format_date(job.forwarding_date)}",
            f"Production Deadline: {format_date(job.production_deadline)}",
            f"Status: {job.status}",
            f"Days Remaining: {_days_text(u.days_remaining)}",
        ])
    lines.extend([
        "",
        "ACTION REQUIRED:",
        action,
        "",
        f"View in Dashboard: {link}",
        "",
        f"Automated reminder sent at {sent_at}.",
        "This is an automated message. Please do not reply to this email.",
    ])
    return "\n".join(lines)


def _html_header() -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width:600px; margin:0 auto; padding:20px; color:#333;">
    <h1 style="color:#1e293b; border-bottom:2px solid #1e293b; padding-bottom:8px;">🔔 Job Reminder Alert</h1>
    <p style="color:#64748b; margin-top:0;">Automated reminder from {html.escape(SENDER_NAME)}</p>
    """


def _html_footer(sent_at: str) -> str:
    return f"""
    <hr style="border:none; border-top:1px solid #e0e0e0; margin:24px 0;">
    <p style="color:#999; font-size:12px; text-align:center;">
        Sent at {sent_at}. This is an automated message. Please do not reply to this email.
    </p>
    </body>
    </html>
    """


class GmailSender:
    """Mail sender for reminder digests over Gmail SMTP."""

    def __init__(self, email_config: EmailConfig, host: str = SMTP_HOST, port: int = SMTP_PORT, timeout: float = SMTP_TIMEOUT):
        self.email_config = email_config
        self.host = host
        self.port = port
        self.timeout = timeout

    def send_digest(self, jobs: list[Job], today: Optional[date] = None):
        """
        Send one digest covering all jobs.
        Raises MailSendError if the message was not accepted.
        """
        if not self.email_config or not self.email_config.is_complete():
            raise MailSendError("Incomplete email configuration")

        subject, html_body, text_body = build_digest_content(jobs, today)

        try:
            self._send_email(subject, html_body, text_body)
        except (smtplib.SMTPException, OSError) as e:
            raise MailSendError(f"{type(e).__name__}: {e}") from e

        logger.info(f"Reminder digest ({len(jobs)} jobs) sent to {self.email_config.to_email}")

    def _send_email(self, subject: str, html_body: str, text_body: str):
        """Send an email via Gmail SMTP."""
        cfg = self.email_config
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((SENDER_NAME, cfg.from_email))
        msg["To"] = cfg.to_email

        # Plain text first so clients prefer the HTML part
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as server:
            server.login(cfg.from_email, cfg.from_password)
            server.sendmail(cfg.from_email, [cfg.to_email], msg.as_string())
