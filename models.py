"""
models.py — Data models for the Job Reminder scheduler.

The store persists snake_case columns and the dashboard exchanges camelCase
JSON. Both conversions go through the from_/to_ helpers below and nowhere else.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

# Decision actions
ACTION_NONE = "none"
ACTION_SEND_OVERDUE = "send_overdue"
ACTION_SEND_DUE_TOMORROW = "send_due_tomorrow"
ACTION_SEND_SNOOZE_EXPIRED = "send_snooze_expired"

SEND_ACTIONS = (ACTION_SEND_OVERDUE, ACTION_SEND_DUE_TOMORROW, ACTION_SEND_SNOOZE_EXPIRED)

# Persisted column -> dashboard payload key
_ROW_TO_PAYLOAD = {
    "id": "id",
    "job_number": "jobNumber",
    "client_name": "clientName",
    "forwarding_date": "forwardingDate",
    "production_deadline": "productionDeadline",
    "status": "status",
    "reminder_sent": "reminderSent",
    "snooze_expires_at": "snoozeExpiresAt",
    "last_reminder_sent_at": "lastReminderSentAt",
    "overdue_reminder_count": "overdueReminderCount",
    "created_at": "createdAt",
}


def _as_count(value: Any) -> Any:
    """Stored counter as an int. Unreadable values pass through for the engine to reject."""
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return value


@dataclass
class Job:
    """A production job tracked on the dashboard."""
    job_number: str
    client_name: str
    production_deadline: Optional[str]
    status: str = "Pending"
    forwarding_date: Optional[str] = None
    id: Optional[str] = None
    reminder_sent: bool = False
    snooze_expires_at: Optional[str] = None  # ISO timestamp
    last_reminder_sent_at: Optional[str] = None  # ISO timestamp
    overdue_reminder_count: int = 0  # a non-numeric stored value is kept as is
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Job":
        """Build a Job from a snake_case store row."""
        values = {col: row.get(col) for col in _ROW_TO_PAYLOAD}
        return cls._from_values(values)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Job":
        """Build a Job from a camelCase dashboard payload."""
        values = {col: payload.get(key) for col, key in _ROW_TO_PAYLOAD.items()}
        return cls._from_values(values)

    @classmethod
    def _from_values(cls, values: dict[str, Any]) -> "Job":
        return cls(
            id=str(values["id"]) if values["id"] is not None else None,
            job_number=str(values["job_number"] or ""),
            client_name=values["client_name"] or "",
            forwarding_date=values["forwarding_date"],
            production_deadline=values["production_deadline"],
            status=values["status"] or "Pending",
            reminder_sent=bool(values["reminder_sent"]),
            snooze_expires_at=values["snooze_expires_at"],
            last_reminder_sent_at=values["last_reminder_sent_at"],
            overdue_reminder_count=_as_count(values["overdue_reminder_count"]),
            created_at=values["created_at"],
        )

    def to_row(self) -> dict[str, Any]:
        """Snake_case representation for the store."""
        return {col: getattr(self, col) for col in _ROW_TO_PAYLOAD}

    def to_payload(self) -> dict[str, Any]:
        """CamelCase representation for the dashboard."""
        return {key: getattr(self, col) for col, key in _ROW_TO_PAYLOAD.items()}


@dataclass
class EmailConfig:
    """Credentials and recipient for reminder digests."""
    to_email: str
    from_email: str
    from_password: str
    configured: bool = True

    def is_complete(self) -> bool:
        return bool(self.to_email and self.from_email and self.from_password)

    @classmethod
    def from_payload(cls, payload: Optional[dict[str, Any]]) -> Optional["EmailConfig"]:
        if not payload:
            return None
        return cls(
            to_email=payload.get("toEmail") or "",
            from_email=payload.get("fromEmail") or "",
            from_password=payload.get("fromPassword") or "",
            configured=bool(payload.get("configured", True)),
        )

    @classmethod
    def from_row(cls, row: Optional[dict[str, Any]]) -> Optional["EmailConfig"]:
        if not row:
            return None
        return cls(
            to_email=row.get("to_email") or "",
            from_email=row.get("from_email") or "",
            from_password=row.get("from_password") or "",
            configured=bool(row.get("configured")),
        )


@dataclass(frozen=True)
class Decision:
    """Outcome of evaluating one job at one instant."""
    action: str
    reason: str
    milestone_index: Optional[int] = None  # only for send_overdue

    @property
    def should_send(self) -> bool:
        return self.action in SEND_ACTIONS

    @property
    def is_overdue(self) -> bool:
        return self.action == ACTION_SEND_OVERDUE


@dataclass
class RunReport:
    """Result of one coordinator pass."""
    processed: int = 0
    sent: int = 0
    errors: list[str] = field(default_factory=list)
    success: bool = True
    skipped: bool = False
    sent_job_ids: list[str] = field(default_factory=list)
    failed_updates: list[str] = field(default_factory=list)  # job numbers
    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_status(self) -> dict[str, Any]:
        """Status object returned by the scheduled entry point."""
        return {
            "success": self.success,
            "totalProcessed": self.processed,
            "totalSent": self.sent,
            "errors": list(self.errors),
        }
