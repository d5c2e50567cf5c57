import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from conftest import day
from exceptions import DuplicateJobError, StoreError
from models import EmailConfig
from stores.sqlite_store import SqliteJobStore

NOW = datetime(2025, 3, 10, 4, 2, tzinfo=timezone.utc)


def test_fetch_active_excludes_completed_and_orders_by_deadline(store, make_job):
    late = store.insert_job(make_job(production_deadline=day(5)))
    early = store.insert_job(make_job(production_deadline=day(-1)))
    store.insert_job(make_job(production_deadline=day(0), status="Completed"))

    jobs = store.fetch_active_jobs()
    assert [job.id for job in jobs] == [early.id, late.id]


def test_insert_assigns_id_and_defaults(store, make_job):
    job = store.insert_job(make_job(id=None))
    assert job.id
    assert job.created_at
    stored = store.get_job(job.id)
    assert stored.reminder_sent is False
    assert stored.overdue_reminder_count == 0
    assert stored.snooze_expires_at is None


def test_duplicate_active_job_number_rejected(store, make_job):
    store.insert_job(make_job(job_number="J-1"))
    with pytest.raises(DuplicateJobError):
        store.insert_job(make_job(job_number="J-1"))


def test_completed_job_may_share_an_active_number(store, make_job):
    store.insert_job(make_job(job_number="J-3"))
    archived = store.insert_job(make_job(job_number="J-3", status="Completed"))
    assert store.get_job(archived.id).status == "Completed"
    with pytest.raises(DuplicateJobError):
        store.insert_job(make_job(job_number="J-3"))


def test_job_number_reusable_after_completion(store, make_job):
    old = store.insert_job(make_job(job_number="J-1", created_at="2025-01-01T00:00:00+00:00"))
    store.set_status(old.id, "Completed")
    new = store.insert_job(make_job(job_number="J-1", created_at="2025-02-01T00:00:00+00:00"))
    assert store.get_job_by_number("J-1").id == new.id


def test_get_job_by_number_prefers_active(store, make_job):
    active = store.insert_job(make_job(job_number="J-2", created_at="2025-01-01T00:00:00+00:00"))
    store.insert_job(make_job(job_number="J-2", status="Completed", created_at="2025-03-01T00:00:00+00:00"))
    assert store.get_job_by_number("J-2").id == active.id
    assert store.get_job_by_number("missing") is None


def test_record_reminder_increments_once_per_milestone(store, make_job):
    job = store.insert_job(make_job())
    assert store.record_reminder(job.id, NOW, 0)
    # A second run acting on the same stale decision must not bump again
    assert store.record_reminder(job.id, NOW, 0)
    stored = store.get_job(job.id)
    assert stored.overdue_reminder_count == 1
    assert stored.reminder_sent is True
    assert stored.last_reminder_sent_at == "2025-03-10T04:02:00+00:00"


def test_record_reminder_without_milestone_keeps_count(store, make_job):
    job = store.insert_job(make_job(overdue_reminder_count=2))
    store.snooze_job(job.id, NOW + timedelta(hours=1))
    store.record_reminder(job.id, NOW, None)
    stored = store.get_job(job.id)
    assert stored.overdue_reminder_count == 2
    assert stored.snooze_expires_at is None


def test_record_reminder_skips_completed_and_missing_rows(store, make_job):
    job = store.insert_job(make_job(status="Completed"))
    assert store.record_reminder(job.id, NOW, None) is False
    assert store.get_job(job.id).last_reminder_sent_at is None
    assert store.record_reminder("nope", NOW, None) is False


def test_snooze_rearms_reminder_and_cancel_clears(store, make_job):
    job = store.insert_job(make_job(reminder_sent=True))
    store.snooze_job(job.id, NOW + timedelta(hours=4))
    stored = store.get_job(job.id)
    assert stored.reminder_sent is False
    assert stored.snooze_expires_at == "2025-03-10T08:02:00+00:00"

    store.cancel_snooze(job.id)
    assert store.get_job(job.id).snooze_expires_at is None


def test_delete_job(store, make_job):
    job = store.insert_job(make_job())
    assert store.delete_job(job.id)
    assert store.get_job(job.id) is None
    assert not store.delete_job(job.id)


def test_run_lock_blocks_until_stale(store):
    stale_after = timedelta(minutes=10)
    assert store.acquire_run_lock("check", NOW, stale_after)
    assert not store.acquire_run_lock("check", NOW + timedelta(minutes=5), stale_after)
    assert store.acquire_run_lock("check", NOW + timedelta(minutes=11), stale_after)
    assert store.release_run_lock("check", NOW + timedelta(minutes=11))
    assert store.acquire_run_lock("check", NOW + timedelta(minutes=12), stale_after)


def test_overrun_does_not_release_a_lock_taken_over_by_a_newer_run(store):
    stale_after = timedelta(minutes=10)
    takeover = NOW + timedelta(minutes=11)
    with store.run_lock("check", NOW, stale_after) as acquired:
        assert acquired
        # This run overran; the next one treats its marker as stale
        assert store.acquire_run_lock("check", takeover, stale_after)

    assert not store.release_run_lock("check", NOW)
    assert not store.acquire_run_lock("check", takeover + timedelta(minutes=1), stale_after)
    assert store.release_run_lock("check", takeover)


def test_run_lock_context_manager_releases(store):
    stale_after = timedelta(minutes=10)
    with store.run_lock("check", NOW, stale_after) as acquired:
        assert acquired
        with store.run_lock("check", NOW, stale_after) as second:
            assert not second
    assert store.acquire_run_lock("check", NOW, stale_after)


def test_email_configurations(store):
    assert store.get_email_config("user-1") is None
    store.save_email_config("user-1", EmailConfig("a@example.com", "b@example.com", "pw", configured=False))
    store.save_email_config("user-2", EmailConfig("c@example.com", "d@example.com", "pw2", configured=True))
    assert [c.to_email for c in store.list_configured_email_configs()] == ["c@example.com"]

    store.save_email_config("user-1", EmailConfig("new@example.com", "b@example.com", "pw", configured=True))
    assert store.get_email_config("user-1").to_email == "new@example.com"
    assert len(store.list_configured_email_configs()) == 2

    assert store.delete_email_config("user-1")
    assert store.get_email_config("user-1") is None


def test_unopenable_database_raises_store_error(tmp_path):
    store = SqliteJobStore(tmp_path)  # a directory, not a file
    with pytest.raises(StoreError):
        store.fetch_active_jobs()


def test_non_numeric_counter_still_loads(store, make_job):
    job = store.insert_job(make_job())
    with sqlite3.connect(store.db_path) as conn:
        conn.execute("UPDATE jobs SET overdue_reminder_count = 'x' WHERE id = ?", (job.id,))

    [loaded] = store.fetch_active_jobs()
    assert loaded.overdue_reminder_count == "x"
