"""
Defaults, environment-driven settings and logging setup.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ValidationError

LOGGER_NAME = "tempo"
LOG_FILE = "tempo.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
JOBS_FILE = "jobs.json"
DEFAULT_DATA_DIR = Path("~/.tempo")
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_TICK_SECONDS = 1.0
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_PREVIEW_COUNT = 5
DEFAULT_METHOD = "GET"
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _env(name: str) -> Optional[str]:
    """Environment value with surrounding blanks removed; blank counts as unset."""
    return (os.getenv(name) or "").strip() or None


def resolve_data_dir(data_dir: Optional[os.PathLike] = None) -> Path:
    raw = data_dir or _env("TEMPO_HOME") or DEFAULT_DATA_DIR
    return Path(raw).expanduser()


def local_timezone() -> Tuple[ZoneInfo, str]:
    """Zone of the host clock, then $TZ, then UTC."""
    host_key = getattr(datetime.now().astimezone().tzinfo, "key", None)
    for key in (host_key, _env("TZ")):
        if not key:
            continue
        try:
            return ZoneInfo(key), key
        except (ZoneInfoNotFoundError, ValueError):
            continue
    return ZoneInfo("UTC"), "UTC"


def parse_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f'Error: Invalid timezone "{name}".') from exc


def parse_log_level(value: str) -> str:
    level = value.strip().upper()
    if level not in VALID_LOG_LEVELS:
        allowed = ", ".join(sorted(VALID_LOG_LEVELS))
        raise ValidationError(f'Error: Invalid log level "{value}"; expected one of: {allowed}.')
    return level


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValidationError(f'Error: {name} must be a number, got "{raw}".') from exc
    if value <= 0:
        raise ValidationError(f"Error: {name} must be > 0.")
    return value


def _env_int(name: str) -> Optional[int]:
    raw = _env(name)
    if raw is None:
        return None
    if not raw.isdigit() or int(raw) < 1:
        raise ValidationError(f'Error: {name} must be an integer >= 1, got "{raw}".')
    return int(raw)


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    timeout_seconds: float
    timezone: ZoneInfo
    timezone_name: str
    log_level: str
    max_in_flight: Optional[int]

    @property
    def jobs_file(self) -> Path:
        return self.data_dir / JOBS_FILE

    @property
    def log_file(self) -> Path:
        return self.data_dir / LOG_FILE

    @staticmethod
    def from_env(data_dir: Optional[os.PathLike] = None, log_level: Optional[str] = None) -> "Settings":
        tz_name = _env("TEMPO_TIMEZONE")
        if tz_name:
            zone = parse_timezone(tz_name)
        else:
            zone, tz_name = local_timezone()
        return Settings(
            data_dir=resolve_data_dir(data_dir),
            timeout_seconds=_env_float("TEMPO_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
            timezone=zone,
            timezone_name=tz_name,
            log_level=parse_log_level(log_level or os.getenv("TEMPO_LOG_LEVEL") or DEFAULT_LOG_LEVEL),
            max_in_flight=_env_int("TEMPO_MAX_IN_FLIGHT"),
        )


def setup_logging(level: str = DEFAULT_LOG_LEVEL, log_file: Optional[Path] = None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level))
    if logger.handlers:
        return logger
    formatter = logging.Formatter(LOG_FORMAT)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)
    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as exc:
            logger.warning("Cannot open log file %s: %s", log_file, exc)
        else:
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
    return logger
