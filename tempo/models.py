"""
Job definitions and the transient records produced while running them.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from .config import DEFAULT_METHOD
from .cron import parse_cron
from .errors import ValidationError

# Persisted key -> attribute name. Lookup is case-insensitive so legacy
# files written with "ID", "URL", "CronExpr", ... still load.
PAYLOAD_FIELDS = {
    "id": "id",
    "url": "url",
    "cronexpr": "cron_expr",
    "cron_expr": "cron_expr",
    "method": "method",
    "body": "body",
    "headers": "headers",
}


@dataclass(frozen=True)
class Job:
    id: str
    url: str
    cron_expr: str
    method: str = DEFAULT_METHOD
    body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    def copy(self) -> "Job":
        return replace(self, headers=dict(self.headers))

    def validate(self) -> None:
        if not self.id.strip():
            raise ValidationError("Error: job id is required.")
        if not self.url.strip():
            raise ValidationError(f'Error: job "{self.id}" has no url.')
        if not self.cron_expr.strip():
            raise ValidationError(f'Error: job "{self.id}" has no schedule.')
        parse_cron(self.cron_expr)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "cronExpr": self.cron_expr,
            "method": self.method,
            "body": self.body,
            "headers": dict(self.headers),
        }

    @staticmethod
    def from_payload(raw: Any, field_path: str = "job") -> "Job":
        if not isinstance(raw, Mapping):
            raise ValidationError(f"Error: {field_path} must be an object.")
        values: Dict[str, Any] = {}
        for key, value in raw.items():
            attr = PAYLOAD_FIELDS.get(str(key).lower())
            if attr is not None:
                values[attr] = value

        def text(attr: str, default: str = "") -> str:
            value = values.get(attr)
            if value is None:
                return default
            if not isinstance(value, str):
                raise ValidationError(f"Error: {field_path}.{attr} must be a string.")
            return value

        headers_raw = values.get("headers") or {}
        if not isinstance(headers_raw, Mapping):
            raise ValidationError(f"Error: {field_path}.headers must be an object.")
        headers: Dict[str, str] = {}
        for name, value in headers_raw.items():
            if not isinstance(name, str) or not isinstance(value, str):
                raise ValidationError(f"Error: {field_path}.headers must map strings to strings.")
            headers[name] = value

        return Job(
            id=text("id"),
            url=text("url"),
            cron_expr=text("cron_expr"),
            method=text("method") or DEFAULT_METHOD,
            body=text("body"),
            headers=headers,
        )


@dataclass
class DispatchResult:
    job_id: str
    success: bool
    status_code: int
    message: str
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class TriggerEvent:
    job: Job
    scheduled_for: datetime
    handle: Optional[int] = None

    @property
    def job_id(self) -> str:
        return self.job.id
