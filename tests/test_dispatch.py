from datetime import timedelta

from conftest import day
from dispatch import dispatch, run
from exceptions import StoreError
from models import ACTION_SEND_DUE_TOMORROW, Decision


def _seed(store, make_job, **fields):
    return store.insert_job(make_job(**fields))


def test_run_sends_one_digest_with_every_eligible_job(store, sender, make_job, at):
    tomorrow = _seed(store, make_job, production_deadline=day(1))
    overdue = _seed(store, make_job, production_deadline=day(-3))
    later = _seed(store, make_job, production_deadline=day(6))

    report = run(store.fetch_active_jobs(), at(9, 2), sender, store)

    assert len(sender.digests) == 1
    assert sorted(sender.sent_numbers) == sorted([tomorrow.job_number, overdue.job_number])
    assert later.job_number not in sender.sent_numbers
    assert report.success
    assert report.processed == 3
    assert report.sent == 2
    assert sorted(report.sent_job_ids) == sorted([tomorrow.id, overdue.id])


def test_successful_send_updates_bookkeeping(store, sender, make_job, at):
    now = at(9, 2)
    overdue = _seed(store, make_job, production_deadline=day(-3))
    run(store.fetch_active_jobs(), now, sender, store)

    stored = store.get_job(overdue.id)
    assert stored.reminder_sent is True
    assert stored.last_reminder_sent_at is not None
    assert stored.snooze_expires_at is None
    assert stored.overdue_reminder_count == 1


def test_snooze_expiry_clears_snooze_without_escalating(store, sender, make_job, at):
    now = at(15, 0)
    job = _seed(store, make_job, production_deadline=day(-3))
    store.snooze_job(job.id, now.utc - timedelta(minutes=10))

    run(store.fetch_active_jobs(), now, sender, store)

    stored = store.get_job(job.id)
    assert sender.sent_numbers == [job.job_number]
    assert stored.snooze_expires_at is None
    assert stored.overdue_reminder_count == 0


def test_mail_failure_marks_nothing(store, failing_sender, make_job, at):
    jobs = [
        _seed(store, make_job, production_deadline=day(1)),
        _seed(store, make_job, production_deadline=day(-3)),
    ]

    report = run(store.fetch_active_jobs(), at(9, 2), failing_sender, store)

    assert failing_sender.calls == 1
    assert not report.success
    assert report.sent == 0
    assert "Mail send failed" in report.errors[0]
    for job in jobs:
        stored = store.get_job(job.id)
        assert stored.last_reminder_sent_at is None
        assert stored.reminder_sent is False
        assert stored.overdue_reminder_count == 0


def test_failed_batch_is_retried_next_poll(store, failing_sender, sender, make_job, at):
    job = _seed(store, make_job, production_deadline=day(1))
    run(store.fetch_active_jobs(), at(9, 0), failing_sender, store)
    run(store.fetch_active_jobs(), at(9, 4), sender, store)
    assert sender.sent_numbers == [job.job_number]


def test_nothing_due_sends_nothing(store, sender, make_job, at):
    _seed(store, make_job, production_deadline=day(1))
    report = run(store.fetch_active_jobs(), at(14, 0), sender, store)
    assert sender.digests == []
    assert report.success
    assert report.sent == 0
    assert report.processed == 1


def test_second_poll_in_same_window_is_idempotent(store, sender, make_job, at):
    _seed(store, make_job, production_deadline=day(1))
    _seed(store, make_job, production_deadline=day(-9))

    run(store.fetch_active_jobs(), at(9, 0), sender, store)
    report = run(store.fetch_active_jobs(), at(9, 4), sender, store)

    assert len(sender.digests) == 1
    assert report.sent == 0


class _FlakyStore:
    """Delegates to a real store but fails updates for chosen ids."""

    def __init__(self, inner, failing_ids):
        self.inner = inner
        self.failing_ids = set(failing_ids)

    def record_reminder(self, job_id, sent_at, overdue_milestone=None):
        if job_id in self.failing_ids:
            raise StoreError("connection reset")
        return self.inner.record_reminder(job_id, sent_at, overdue_milestone)


def test_per_job_update_failure_is_isolated(store, sender, make_job, at):
    ok = _seed(store, make_job, production_deadline=day(1))
    broken = _seed(store, make_job, production_deadline=day(1))

    report = run(store.fetch_active_jobs(), at(9, 2), sender, _FlakyStore(store, [broken.id]))

    assert report.success
    assert report.sent == 2
    assert report.sent_job_ids == [ok.id]
    assert report.failed_updates == [broken.job_number]
    assert broken.job_number in report.errors[0]
    assert store.get_job(ok.id).reminder_sent is True
    assert store.get_job(broken.id).reminder_sent is False


def test_dispatch_sends_each_job_once_and_skips_completed(store, sender, make_job, at):
    job = _seed(store, make_job, production_deadline=day(1))
    done = make_job(status="Completed", production_deadline=day(1))
    decision = Decision(ACTION_SEND_DUE_TOMORROW, "due_tomorrow")

    report = dispatch([(job, decision), (job, decision), (done, decision)], at(9, 2), sender, store)

    assert sender.sent_numbers == [job.job_number]
    assert report.sent == 1


def test_overdue_count_climbs_one_milestone_at_a_time(store, sender, make_job, at):
    job = _seed(store, make_job, production_deadline=day(0))

    counts = []
    for offset in range(1, 21):
        run(store.fetch_active_jobs(), at(9, 2, offset=offset), sender, store)
        counts.append(store.get_job(job.id).overdue_reminder_count)

    # Milestones 2, 5, 8 days overdue
    assert len(sender.digests) == 3
    assert counts[0] == 0
    assert counts[1] == 1
    assert counts[4] == 2
    assert counts[7] == 3
    assert counts[-1] == 3
    assert counts == sorted(counts)


def test_failed_updates_are_reported_by_job_number(store, sender, make_job, at):
    stray = make_job(id=None, production_deadline=day(1))
    broken = _seed(store, make_job, production_deadline=day(1))
    due = [(stray, Decision(ACTION_SEND_DUE_TOMORROW, "due_tomorrow")),
           (broken, Decision(ACTION_SEND_DUE_TOMORROW, "due_tomorrow"))]

    report = dispatch(due, at(9, 2), sender, _FlakyStore(store, [broken.id]))

    assert report.sent == 2
    assert report.failed_updates == [stray.job_number, broken.job_number]
