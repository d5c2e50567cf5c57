"""
config.py — Loads preferences.yaml and environment variables.
Provides typed access to all configuration.
"""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

from exceptions import ConfigError

# Load .env file
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent

# Load preferences.yaml
PREFERENCES_PATH = PROJECT_ROOT / "preferences.yaml"
with open(PREFERENCES_PATH, "r") as f:
    _prefs = yaml.safe_load(f)


# --- Reminders ---
REMINDER_MILESTONES = [int(d) for d in _prefs["reminders"]["milestones"]]
WINDOW_HOUR = int(_prefs["reminders"]["window_hour"])
WINDOW_MINUTES = int(_prefs["reminders"]["window_minutes"])
POLL_INTERVAL_MINUTES = int(_prefs["reminders"]["poll_interval_minutes"])
COMPLETED_STATUS = _prefs["reminders"]["completed_status"]
SNOOZE_PRESETS_HOURS = _prefs["reminders"]["snooze_presets_hours"]

# --- Timezone ---
UTC_OFFSET_HOURS = _prefs["timezone"]["utc_offset_hours"]
TIMEZONE_LABEL = _prefs["timezone"]["label"]

# --- Run Lock ---
RUN_LOCK_NAME = _prefs["run_lock"]["name"]
RUN_LOCK_STALE_MINUTES = _prefs["run_lock"]["stale_after_minutes"]

# --- Email ---
EMAIL_PREFS = _prefs["email"]
SENDER_NAME = EMAIL_PREFS["sender_name"]
DASHBOARD_URL = EMAIL_PREFS["dashboard_url"]
SMTP_HOST = EMAIL_PREFS["smtp_host"]
SMTP_PORT = int(EMAIL_PREFS["smtp_port"])
SMTP_TIMEOUT = EMAIL_PREFS["timeout_seconds"]
URGENT_DAYS = int(EMAIL_PREFS["urgent_days"])

# --- Log Sink ---
LOG_SINK = _prefs["log_sink"]

# --- Secrets (from .env) ---
GMAIL_ADDRESS = os.getenv("GMAIL_ADDRESS", "")
GMAIL_APP_PASSWORD = os.getenv("GMAIL_APP_PASSWORD", "")
REMINDER_TO_EMAIL = os.getenv("REMINDER_TO_EMAIL") or GMAIL_ADDRESS
DISCORD_WEBHOOK_URL = os.getenv("DISCORD_WEBHOOK_URL", "")
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

# --- Store ---
STORE_BACKEND = (os.getenv("JOB_STORE_BACKEND") or _prefs["store"]["backend"]).lower()
DB_PATH = Path(os.getenv("JOB_DB_PATH") or PROJECT_ROOT / _prefs["store"]["sqlite_path"])

# --- Logging ---
LOG_DIR = PROJECT_ROOT / "logs"
LOG_FILE = LOG_DIR / "job_reminder.log"

STORE_BACKENDS = ("sqlite", "supabase")


def validate_config():
    """Check that non-fatal configuration is present."""
    warnings = []

    if not DISCORD_WEBHOOK_URL:
        warnings.append("DISCORD_WEBHOOK_URL is not set — run events will only be logged locally")
    if not GMAIL_ADDRESS or not GMAIL_APP_PASSWORD:
        warnings.append("Gmail credentials are not set — falling back to a stored email configuration")
    if not REMINDER_TO_EMAIL:
        warnings.append("REMINDER_TO_EMAIL is not set — falling back to a stored email configuration")
    if not REMINDER_MILESTONES:
        warnings.append("No overdue milestones configured — overdue jobs will never be reminded")

    return warnings


def require_config():
    """Raise ConfigError for anything the scheduled run cannot start without."""
    if STORE_BACKEND not in STORE_BACKENDS:
        raise ConfigError(f"Unknown JOB_STORE_BACKEND '{STORE_BACKEND}' (expected one of {STORE_BACKENDS})")
    if STORE_BACKEND == "supabase" and (not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY):
        raise ConfigError("Missing Supabase environment variables (SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)")
    if not 0 <= WINDOW_HOUR <= 23 or not 1 <= WINDOW_MINUTES <= 60:
        raise ConfigError(f"Invalid reminder window {WINDOW_HOUR}:00 + {WINDOW_MINUTES}m")
    if sorted(REMINDER_MILESTONES) != REMINDER_MILESTONES:
        raise ConfigError(f"Overdue milestones must be ascending, got {REMINDER_MILESTONES}")
