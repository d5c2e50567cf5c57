"""
monitoring.py — Logging setup and alerting for the reminder scheduler.
Alerts go to a Discord webhook; failures there never reach the caller.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from clock import civil_now, format_civil
from config import LOG_DIR, LOG_FILE, DISCORD_WEBHOOK_URL, LOG_SINK, TIMEZONE_LABEL

# Embed colours and emoji by level
LEVEL_STYLES = {
    "info": (0x00FF00, "✅"),
    "warning": (0xFFA500, "⚠️"),
    "error": (0xFF4500, "❌"),
    "critical": (0xFF0000, "🚨"),
}

# Discord rejects embed field values longer than this
FIELD_LIMIT = 1024


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Set up structured logging to both file and stdout.
    Returns the root logger for the application.
    """
    LOG_DIR.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("job_reminder")
    logger.setLevel(level)

    # Prevent duplicate handlers on re-init
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    file_handler = logging.FileHandler(str(LOG_FILE), mode="a", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger for a specific module."""
    return logging.getLogger(f"job_reminder.{name}")


logger = get_logger("monitoring")


def log_run_summary(logger: logging.Logger, report, duration: float):
    """Log a complete run summary."""
    logger.info("=" * 60)
    logger.info("RUN SUMMARY")
    logger.info(f"  Skipped (locked):  {report.skipped}")
    logger.info(f"  Jobs processed:    {report.processed}")
    logger.info(f"  Reminders sent:    {report.sent}")
    logger.info(f"  Failed updates:    {len(report.failed_updates)}")
    logger.info(f"  Errors:            {len(report.errors)}")
    logger.info(f"  Duration:          {duration:.1f}s")

    if report.errors:
        logger.warning("ERRORS:")
        for err in report.errors:
            logger.warning(f"  - {err}")

    logger.info("=" * 60)


def send_event(
    event_type: str,
    message: str,
    data: Optional[dict[str, Any]] = None,
    level: str = "info",
    webhook_url: Optional[str] = None,
) -> bool:
    """
    Post a structured event to the Discord log sink.
    Returns True if Discord accepted it. Never raises.
    """
    data = data or {}
    webhook_url = DISCORD_WEBHOOK_URL if webhook_url is None else webhook_url

    if not webhook_url:
        logger.info(f"Log sink ({event_type}/{level}): {message} {data if data else ''}".rstrip())
        return False

    try:
        payload = build_embed_payload(event_type, message, data, level)
        response = httpx.post(webhook_url, json=payload, timeout=LOG_SINK["timeout_seconds"])
        if response.status_code >= 400:
            logger.warning(f"Log sink rejected event ({response.status_code}): {message}")
            return False
        return True
    except Exception as e:
        logger.warning(f"Failed to send event to log sink: {type(e).__name__}: {e}")
        return False


def build_embed_payload(event_type: str, message: str, data: dict[str, Any], level: str) -> dict[str, Any]:
    """Build the Discord webhook body for one event."""
    if event_type == "error":
        color, emoji = (0xFF0000, "🚨") if level == "critical" else (0xFF4500, "⚠️")
    else:
        color, emoji = LEVEL_STYLES.get(level, LEVEL_STYLES["info"])

    now = civil_now()
    embed = {
        "title": f"{emoji} {event_type.capitalize()} Log - {level.upper()}",
        "description": message,
        "color": color,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "fields": [
            {"name": f"📅 Time ({TIMEZONE_LABEL})", "value": format_civil(now.instant), "inline": True},
            {"name": "🏷️ Type", "value": event_type, "inline": True},
            {"name": "📊 Level", "value": level, "inline": True},
        ],
        "footer": {"text": LOG_SINK["footer"]},
    }

    if data:
        dumped = json.dumps(data, indent=2, default=str)
        if len(dumped) > FIELD_LIMIT - 12:
            dumped = dumped[:FIELD_LIMIT - 16] + "\n..."
        embed["fields"].append({
            "name": "📋 Additional Data",
            "value": f"```json\n{dumped}\n```",
            "inline": False,
        })

    return {"embeds": [embed], "username": LOG_SINK["username"]}
