"""
Error taxonomy for tempo.
"""

from __future__ import annotations


class TempoError(Exception):
    """Base error for tempo."""


class ValidationError(TempoError):
    """Malformed cron expression or missing job field."""


class PersistenceError(TempoError):
    """Job store file could not be written."""


class StoreCorruptionError(TempoError):
    """Job store file exists but cannot be decoded."""


class NotFoundError(TempoError):
    """Job id is not present in the store."""


class WebhookError(TempoError):
    """Transport or HTTP-status failure during a dispatch."""

    def __init__(self, status_code: int, message: str):
        super().__init__(status_code, message)
        self.status_code = status_code
        self.message = message

    def __str__(self) -> str:
        return f"webhook returned status code: {self.status_code}, message: {self.message}"
