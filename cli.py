# cli.py
import sys
import time
from datetime import timedelta

import click

import main
from clock import civil_now, format_civil
from config import COMPLETED_STATUS, POLL_INTERVAL_MINUTES, SNOOZE_PRESETS_HOURS
from eligibility import evaluate
from exceptions import ReminderError
from handlers import send_reminder, check_missed_reminders


@click.group()
def cli():
    """job-reminder - deadline reminders for production jobs"""
    pass


def _store():
    try:
        return main.get_job_store()
    except ReminderError as e:
        click.echo(f"❌ {e}")
        sys.exit(1)


def _find_job(store, job_number):
    job = store.get_job_by_number(job_number)
    if job is None:
        click.echo(f"❌ Job {job_number} not found.")
        sys.exit(1)
    return job


def _email_payload(store):
    try:
        config = main.resolve_email_config(store)
    except ReminderError as e:
        click.echo(f"❌ {e}")
        sys.exit(1)
    return {"toEmail": config.to_email, "fromEmail": config.from_email, "fromPassword": config.from_password}


# ---------------- Setup ----------------
@cli.command("init-db")
def init_db():
    """Create the SQLite tables"""
    _store()
    click.echo("✅ Database ready.")


# ---------------- Scheduled run ----------------
@cli.command()
def run():
    """Run one reminder check (what the 5-minute timer calls)"""
    try:
        status = main.run()
    except ReminderError as e:
        click.echo(f"❌ Reminder check cannot start: {e}")
        sys.exit(1)
    icon = "✅" if status["success"] else "❌"
    click.echo(f"{icon} processed={status['totalProcessed']} sent={status['totalSent']}")
    if not status["success"]:
        sys.exit(1)


@cli.command()
@click.option("--interval", default=POLL_INTERVAL_MINUTES, type=int, help="Minutes between checks")
def watch(interval):
    """Run the reminder check forever, every --interval minutes"""
    click.echo(f"👀 Checking every {interval} minutes. Ctrl+C to stop.")
    try:
        while True:
            try:
                status = main.run()
                click.echo(f"[{format_civil(civil_now().instant)}] processed={status['totalProcessed']} sent={status['totalSent']}")
            except ReminderError as e:
                click.echo(f"❌ {e}")
                sys.exit(1)
            time.sleep(interval * 60)
    except KeyboardInterrupt:
        click.echo("👋 Stopped.")


@cli.command("check-missed")
def check_missed():
    """Send reminders that scheduled runs missed"""
    store = _store()
    result = check_missed_reminders({"emailConfig": _email_payload(store)}, store=store)
    if not result["success"]:
        click.echo(f"❌ {result['error']}: {result.get('details', '')}")
        sys.exit(1)
    click.echo(f"✅ {result['message']} (sent {result['sentCount']}).")


# ---------------- Single job ----------------
@cli.command()
@click.argument("job_number")
def send(job_number):
    """Send a reminder for one job now"""
    store = _store()
    job = _find_job(store, job_number)
    result = send_reminder({"job": job.to_payload(), "emailConfig": _email_payload(store)}, store=store)
    if not result["success"]:
        click.echo(f"❌ {result['error']}")
        sys.exit(1)
    click.echo(f"📧 Reminder sent for {job_number}.")


@cli.command()
@click.argument("job_number")
@click.option("--hours", default=24, type=int, help=f"Snooze length in hours (presets: {SNOOZE_PRESETS_HOURS})")
def snooze(job_number, hours):
    """Snooze reminders for a job"""
    store = _store()
    job = _find_job(store, job_number)
    if job.snooze_expires_at:
        click.echo(f"⚠️ Job {job_number} is already snoozed; cancel the snooze first.")
        sys.exit(1)
    expires_at = civil_now().utc + timedelta(hours=hours)
    store.snooze_job(job.id, expires_at)
    click.echo(f"😴 Job {job_number} snoozed until {format_civil(expires_at)}.")


@cli.command("cancel-snooze")
@click.argument("job_number")
def cancel_snooze(job_number):
    """Cancel a job's snooze"""
    store = _store()
    job = _find_job(store, job_number)
    store.cancel_snooze(job.id)
    click.echo(f"🔔 Snooze cancelled for {job_number}.")


@cli.command()
@click.argument("job_number")
def complete(job_number):
    """Mark a job Completed (no more reminders)"""
    store = _store()
    job = _find_job(store, job_number)
    store.set_status(job.id, COMPLETED_STATUS)
    click.echo(f"✅ Job {job_number} marked {COMPLETED_STATUS}.")


# ---------------- Preview ----------------
@cli.command()
def preview():
    """Show what the next check would decide for each active job"""
    store = _store()
    now = civil_now()
    jobs = store.fetch_active_jobs()
    if not jobs:
        click.echo("No active jobs.")
        return
    click.echo(f"Civil time: {format_civil(now.instant)}")
    click.echo(f"{'JOB':<16}{'DEADLINE':<12}{'SENT':<6}{'OVERDUE#':<10}{'DECISION':<22}REASON")
    click.echo("-" * 80)
    for job in jobs:
        decision = evaluate(job, now)
        click.echo(
            f"{job.job_number:<16}{job.production_deadline or '-':<12}"
            f"{'yes' if job.reminder_sent else 'no':<6}{job.overdue_reminder_count:<10}"
            f"{decision.action:<22}{decision.reason}"
        )


if __name__ == "__main__":
    cli()
