"""
exceptions.py — Error taxonomy for the reminder scheduler.
"""


class ReminderError(Exception):
    """Base class for every error raised by this project."""


class ConfigError(ReminderError):
    """Missing or invalid configuration. Fatal at process start."""


class StoreError(ReminderError):
    """The job store could not be read or written."""


class DuplicateJobError(StoreError):
    """An active job with the same job number already exists."""


class MailSendError(ReminderError):
    """The digest email could not be delivered. Nothing in the batch was sent."""
