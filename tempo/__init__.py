"""
tempo - cron-driven webhook scheduler.
"""

from .cron import CronSchedule, is_valid_cron, parse_cron
from .dispatcher import WebhookDispatcher
from .errors import (
    NotFoundError,
    PersistenceError,
    StoreCorruptionError,
    TempoError,
    ValidationError,
    WebhookError,
)
from .models import DispatchResult, Job, TriggerEvent
from .scheduler import Scheduler, TriggerRegistry
from .storage import JobStore

__version__ = "0.1.0"

__all__ = [
    "CronSchedule",
    "DispatchResult",
    "Job",
    "JobStore",
    "NotFoundError",
    "PersistenceError",
    "Scheduler",
    "StoreCorruptionError",
    "TempoError",
    "TriggerEvent",
    "TriggerRegistry",
    "ValidationError",
    "WebhookDispatcher",
    "WebhookError",
    "is_valid_cron",
    "parse_cron",
]
