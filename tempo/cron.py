"""
Six-field cron expressions (second resolution) evaluated with croniter.

Expressions are written ``sec min hour day-of-month month day-of-week``.
croniter expects the seconds field last, so parsed expressions are
reordered before they reach it. Day-of-month and day-of-week are OR'd
when both are restricted.

Every field is checked against its bounds before croniter sees it, and an
expression is only accepted if it can produce at least one firing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Dict, List, Optional, Tuple

from croniter import CroniterBadDateError, croniter

from .errors import ValidationError

UTC = timezone.utc
FIELD_NAMES = ("second", "minute", "hour", "day_of_month", "month", "day_of_week")
FIELD_BOUNDS = ((0, 59), (0, 59), (0, 23), (1, 31), (1, 12), (0, 7))
CRON_FIELD_RE = re.compile(r"^[0-9A-Za-z*,/\-?]+$")
MONTH_NAMES = {
    name: number
    for number, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"), start=1
    )
}
WEEKDAY_NAMES = {name: number for number, name in enumerate(("sun", "mon", "tue", "wed", "thu", "fri", "sat"))}
NAMED_VALUES = {"month": MONTH_NAMES, "day_of_week": WEEKDAY_NAMES}
DESCRIPTORS = {
    "@yearly": "0 0 0 1 1 *",
    "@annually": "0 0 0 1 1 *",
    "@monthly": "0 0 0 1 * *",
    "@weekly": "0 0 0 * * 0",
    "@daily": "0 0 0 * * *",
    "@midnight": "0 0 0 * * *",
    "@hourly": "0 0 * * * *",
}


@dataclass(frozen=True)
class CronSchedule:
    expression: str
    fields: Tuple[str, ...]
    timezone: tzinfo = UTC

    @property
    def croniter_expr(self) -> str:
        return " ".join(self.fields[1:] + self.fields[:1])

    def next_after(self, after: datetime) -> datetime:
        """First firing instant strictly after ``after``, as aware UTC."""
        local_after = as_utc(after).replace(microsecond=0).astimezone(self.timezone)
        nxt = croniter(self.croniter_expr, local_after).get_next(datetime)
        if nxt.tzinfo is None:
            nxt = nxt.replace(tzinfo=self.timezone)
        return nxt.astimezone(UTC)

    def is_due(self, at: datetime) -> bool:
        marker = as_utc(at).replace(microsecond=0)
        return self.next_after(marker - timedelta(seconds=1)) == marker

    def next_runs(self, count: int, after: Optional[datetime] = None) -> List[datetime]:
        cursor = as_utc(after) if after is not None else datetime.now(tz=UTC)
        runs: List[datetime] = []
        while len(runs) < count:
            cursor = self.next_after(cursor)
            runs.append(cursor)
        return runs


def as_utc(value: datetime) -> datetime:
    """Convert to aware UTC; naive values are read as UTC wall time."""
    return value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)


def _replace_names(token: str, names: Dict[str, int], field_name: str) -> str:
    def repl(match: re.Match) -> str:
        name = match.group(0).lower()
        if name not in names:
            raise ValidationError(f'Error: Invalid name "{match.group(0)}" at {field_name}.')
        return str(names[name])

    return re.sub(r"[A-Za-z]+", repl, token)


def _check_range(token: str, field_name: str, low: int, high: int) -> None:
    if token == "*":
        return
    if token == "?":
        if field_name not in ("day_of_month", "day_of_week"):
            raise ValidationError(f'Error: "?" is only allowed in day fields, got it at {field_name}.')
        return
    if "-" in token:
        left, right = token.split("-", 1)
        if not left.isdigit() or not right.isdigit():
            raise ValidationError(f'Error: Invalid range "{token}" at {field_name}.')
        start, end = int(left), int(right)
        if start > end:
            raise ValidationError(f'Error: Invalid range "{token}" at {field_name}.')
        if start < low or end > high:
            raise ValidationError(f'Error: Range "{token}" out of bounds {low}-{high} at {field_name}.')
        return
    if not token.isdigit():
        raise ValidationError(f'Error: Invalid token "{token}" at {field_name}.')
    if not low <= int(token) <= high:
        raise ValidationError(f'Error: Value "{token}" out of bounds {low}-{high} at {field_name}.')


def _check_field(token: str, field_name: str, low: int, high: int) -> str:
    if not CRON_FIELD_RE.match(token):
        raise ValidationError(f'Error: Invalid cron token "{token}" at {field_name}.')
    names = NAMED_VALUES.get(field_name)
    if names is not None:
        token = _replace_names(token, names, field_name)

    for part in token.split(","):
        if not part:
            raise ValidationError(f'Error: Invalid cron token "{token}" at {field_name}.')
        base = part
        if "/" in part:
            base, step = part.split("/", 1)
            if not step.isdigit() or int(step) <= 0:
                raise ValidationError(f'Error: Invalid step "{part}" at {field_name}.')
            if int(step) > high - low + 1:
                raise ValidationError(f'Error: Step "{step}" too large at {field_name}.')
        _check_range(base, field_name, low, high)
    return "*" if token == "?" else token


def normalize_cron(expr: str) -> Tuple[str, ...]:
    """Split ``expr`` into six bounds-checked fields with names resolved to numbers."""
    if not isinstance(expr, str):
        raise ValidationError("Error: cron expression must be a string.")
    text = expr.strip()
    if not text:
        raise ValidationError("Error: cron expression cannot be empty.")
    if text.startswith("@"):
        expanded = DESCRIPTORS.get(text.lower())
        if expanded is None:
            raise ValidationError(f'Error: Unsupported cron descriptor "{text}".')
        text = expanded

    parts = text.split()
    if len(parts) != len(FIELD_NAMES):
        raise ValidationError(
            f'Error: Invalid cron expression "{expr}": expected 6 fields '
            f"(second minute hour day month weekday), got {len(parts)}."
        )
    return tuple(
        _check_field(token, name, low, high)
        for token, name, (low, high) in zip(parts, FIELD_NAMES, FIELD_BOUNDS)
    )


def parse_cron(expr: str, tz: Optional[tzinfo] = None) -> CronSchedule:
    fields = normalize_cron(expr)
    schedule = CronSchedule(expression=expr.strip(), fields=fields, timezone=tz or UTC)
    try:
        croniter(schedule.croniter_expr, datetime.now(tz=schedule.timezone)).get_next(datetime)
    except CroniterBadDateError as exc:
        raise ValidationError(f'Error: cron expression "{expr}" never fires.') from exc
    except (ValueError, KeyError, TypeError) as exc:
        raise ValidationError(f'Error: Invalid cron expression "{expr}": {exc}') from exc
    return schedule


def is_valid_cron(expr: str) -> bool:
    try:
        parse_cron(expr)
    except ValidationError:
        return False
    return True
