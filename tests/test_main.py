import sqlite3

import pytest

import main
from config import RUN_LOCK_NAME
from conftest import day
from datetime import timedelta
from exceptions import ConfigError, StoreError
from models import EmailConfig
from stores.sqlite_store import SqliteJobStore


class BrokenStore(SqliteJobStore):
    def fetch_active_jobs(self):
        raise StoreError("database is locked")


class UnreachableConfigStore(SqliteJobStore):
    def list_configured_email_configs(self):
        raise StoreError("connection reset")


def test_run_sends_due_jobs_and_reports(store, sender, make_job, at):
    due = store.insert_job(make_job(production_deadline=day(1)))
    store.insert_job(make_job(production_deadline=day(9)))
    store.insert_job(make_job(production_deadline=day(1), status="Completed"))

    status = main.run(store=store, mail_sender=sender, now=at(9, 0))

    assert status == {"success": True, "totalProcessed": 2, "totalSent": 1, "errors": []}
    assert sender.sent_numbers == [due.job_number]
    assert store.get_job(due.id).reminder_sent is True


def test_run_outside_window_sends_nothing(store, sender, make_job, at):
    store.insert_job(make_job(production_deadline=day(1)))
    status = main.run(store=store, mail_sender=sender, now=at(14, 30))
    assert status["success"]
    assert status["totalSent"] == 0
    assert sender.digests == []


def test_run_reports_mail_failure(store, failing_sender, make_job, at):
    job = store.insert_job(make_job(production_deadline=day(1)))
    status = main.run(store=store, mail_sender=failing_sender, now=at(9, 0))
    assert status["success"] is False
    assert status["totalSent"] == 0
    assert store.get_job(job.id).last_reminder_sent_at is None


def test_run_store_failure_is_reported_not_raised(tmp_path, sender, at):
    broken = BrokenStore(tmp_path / "jobs.db")
    broken.init_schema()
    status = main.run(store=broken, mail_sender=sender, now=at(9, 0))
    assert status["success"] is False
    assert "database is locked" in status["errors"][0]
    assert sender.digests == []


def test_run_skips_while_another_run_holds_the_lock(store, sender, make_job, at):
    now = at(9, 0)
    store.insert_job(make_job(production_deadline=day(1)))
    assert store.acquire_run_lock(RUN_LOCK_NAME, now.utc, timedelta(minutes=10))

    status = main.run(store=store, mail_sender=sender, now=now)

    assert status["skipped"] is True
    assert status["totalSent"] == 0
    assert sender.digests == []


def test_run_raises_on_fatal_config(monkeypatch, store, sender):
    def bad_config():
        raise ConfigError("Unknown JOB_STORE_BACKEND 'mongo'")

    monkeypatch.setattr(main, "require_config", bad_config)
    with pytest.raises(ConfigError):
        main.run(store=store, mail_sender=sender)


def test_resolve_email_config_prefers_environment(monkeypatch, store):
    monkeypatch.setattr(main, "GMAIL_ADDRESS", "bot@example.com")
    monkeypatch.setattr(main, "GMAIL_APP_PASSWORD", "app-pass")
    monkeypatch.setattr(main, "REMINDER_TO_EMAIL", "ops@example.com")
    store.save_email_config("user-1", EmailConfig("stored@example.com", "x@example.com", "pw"))

    assert main.resolve_email_config(store).to_email == "ops@example.com"


def test_resolve_email_config_falls_back_to_store(monkeypatch, store):
    monkeypatch.setattr(main, "GMAIL_ADDRESS", "")
    monkeypatch.setattr(main, "GMAIL_APP_PASSWORD", "")
    monkeypatch.setattr(main, "REMINDER_TO_EMAIL", "")
    store.save_email_config("user-1", EmailConfig("stored@example.com", "x@example.com", "pw"))

    assert main.resolve_email_config(store).to_email == "stored@example.com"


def test_resolve_email_config_without_any_config(monkeypatch, store):
    monkeypatch.setattr(main, "GMAIL_ADDRESS", "")
    monkeypatch.setattr(main, "GMAIL_APP_PASSWORD", "")
    monkeypatch.setattr(main, "REMINDER_TO_EMAIL", "")
    with pytest.raises(ConfigError):
        main.resolve_email_config(store)


def test_one_corrupt_row_does_not_block_the_others(store, sender, make_job, at):
    corrupt = store.insert_job(make_job(production_deadline=day(-3)))
    healthy = store.insert_job(make_job(production_deadline=day(1)))
    with sqlite3.connect(store.db_path) as conn:
        conn.execute("UPDATE jobs SET overdue_reminder_count = 'x' WHERE id = ?", (corrupt.id,))

    status = main.run(store=store, mail_sender=sender, now=at(9, 2))

    assert status["success"]
    assert status["totalProcessed"] == 2
    assert sender.sent_numbers == [healthy.job_number]
    assert store.get_job(corrupt.id).last_reminder_sent_at is None


def test_store_failure_while_resolving_credentials_returns_failed_status(monkeypatch, tmp_path, at):
    monkeypatch.setattr(main, "GMAIL_ADDRESS", "")
    monkeypatch.setattr(main, "GMAIL_APP_PASSWORD", "")
    monkeypatch.setattr(main, "REMINDER_TO_EMAIL", "")
    unreachable = UnreachableConfigStore(tmp_path / "jobs.db")
    unreachable.init_schema()

    status = main.run(store=unreachable, now=at(9, 2))

    assert status["success"] is False
    assert status["totalSent"] == 0
    assert "connection reset" in status["errors"][0]
