"""Shared fixtures: a fixed civil clock, a temp SQLite store and fake mail senders."""

from datetime import date, timedelta

import pytest

import monitoring
from clock import civil_at
from exceptions import MailSendError
from models import Job
from stores.sqlite_store import SqliteJobStore

# Every test runs on civil 2025-03-10 unless it says otherwise
TODAY = date(2025, 3, 10)


def day(offset: int) -> str:
    """ISO date `offset` civil days from TODAY."""
    return (TODAY + timedelta(days=offset)).isoformat()


class RecordingSender:
    def __init__(self):
        self.digests = []

    def send_digest(self, jobs):
        self.digests.append(list(jobs))

    @property
    def sent_numbers(self):
        return [job.job_number for digest in self.digests for job in digest]


class FailingSender:
    def __init__(self):
        self.calls = 0

    def send_digest(self, jobs):
        self.calls += 1
        raise MailSendError("SMTP relay unavailable")


@pytest.fixture(autouse=True)
def quiet_log_sink(monkeypatch):
    monkeypatch.setattr(monitoring, "DISCORD_WEBHOOK_URL", "")


@pytest.fixture
def at():
    """at(hour, minute, offset=0) -> CivilNow on TODAY + offset days."""
    def _at(hour=9, minute=2, offset=0):
        d = TODAY + timedelta(days=offset)
        return civil_at(d.year, d.month, d.day, hour, minute)
    return _at


@pytest.fixture
def make_job():
    counter = {"n": 0}

    def _make_job(**overrides):
        counter["n"] += 1
        fields = {
            "id": f"job-{counter['n']}",
            "job_number": f"J-{100 + counter['n']}",
            "client_name": "Acme Printing",
            "forwarding_date": day(-7),
            "production_deadline": day(1),
            "status": "In Production",
        }
        fields.update(overrides)
        return Job(**fields)
    return _make_job


@pytest.fixture
def store(tmp_path):
    s = SqliteJobStore(tmp_path / "jobs.db")
    s.init_schema()
    return s


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def failing_sender():
    return FailingSender()
