from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tempo import ValidationError, is_valid_cron, parse_cron

UTC = timezone.utc
BASE = datetime(2026, 3, 2, 12, 0, 0, tzinfo=UTC)  # a Monday


def test_every_five_seconds_due_only_on_multiples_of_five() -> None:
    schedule = parse_cron("*/5 * * * * *")
    for offset in range(0, 120):
        at = BASE + timedelta(seconds=offset)
        assert schedule.is_due(at) is (at.second % 5 == 0), at.isoformat()


def test_is_due_is_pure_function_of_time() -> None:
    at = BASE + timedelta(seconds=15, microseconds=250000)
    first = parse_cron("*/15 * * * * *")
    second = parse_cron("*/15 * * * * *")
    assert first.is_due(at) is True
    assert first.is_due(at) == second.is_due(at) == first.is_due(at)


def test_next_after_is_strictly_in_future() -> None:
    schedule = parse_cron("*/5 * * * * *")
    assert schedule.next_after(BASE) == BASE + timedelta(seconds=5)
    assert schedule.next_after(BASE + timedelta(milliseconds=400)) == BASE + timedelta(seconds=5)
    assert schedule.next_after(BASE + timedelta(seconds=4)) == BASE + timedelta(seconds=5)


def test_seconds_field_comes_first() -> None:
    schedule = parse_cron("30 15 * * * *")
    assert schedule.next_after(BASE) == datetime(2026, 3, 2, 12, 15, 30, tzinfo=UTC)
    assert schedule.is_due(datetime(2026, 3, 2, 13, 15, 30, tzinfo=UTC))
    assert not schedule.is_due(datetime(2026, 3, 2, 13, 30, 15, tzinfo=UTC))


def test_ranges_lists_and_names() -> None:
    schedule = parse_cron("0 0 9-10 * * mon")
    assert schedule.is_due(datetime(2026, 3, 2, 9, 0, 0, tzinfo=UTC))
    assert schedule.is_due(datetime(2026, 3, 2, 10, 0, 0, tzinfo=UTC))
    assert not schedule.is_due(datetime(2026, 3, 3, 9, 0, 0, tzinfo=UTC))

    listed = parse_cron("0,20,40 * * * * *")
    due = [s for s in range(60) if listed.is_due(BASE.replace(second=s))]
    assert due == [0, 20, 40]


def test_day_of_month_and_weekday_are_ored() -> None:
    # 10th of the month OR any Friday.
    schedule = parse_cron("0 0 0 10 * 5")
    assert schedule.is_due(datetime(2026, 3, 6, 0, 0, 0, tzinfo=UTC))  # Friday
    assert schedule.is_due(datetime(2026, 3, 10, 0, 0, 0, tzinfo=UTC))  # Tuesday the 10th
    assert not schedule.is_due(datetime(2026, 3, 9, 0, 0, 0, tzinfo=UTC))


def test_descriptors_expand_to_six_fields() -> None:
    hourly = parse_cron("@hourly")
    assert hourly.fields == ("0", "0", "*", "*", "*", "*")
    assert hourly.is_due(datetime(2026, 3, 2, 13, 0, 0, tzinfo=UTC))
    assert not hourly.is_due(datetime(2026, 3, 2, 13, 0, 1, tzinfo=UTC))
    assert parse_cron("@daily").next_after(BASE) == datetime(2026, 3, 3, 0, 0, 0, tzinfo=UTC)


def test_schedule_evaluated_in_its_timezone() -> None:
    eastern = timezone(timedelta(hours=-5))
    schedule = parse_cron("0 0 9 * * *", tz=eastern)
    assert schedule.next_after(BASE) == datetime(2026, 3, 2, 14, 0, 0, tzinfo=UTC)


def test_next_runs_preview() -> None:
    runs = parse_cron("0 */10 * * * *").next_runs(3, after=BASE)
    assert [run.strftime("%H:%M:%S") for run in runs] == ["12:10:00", "12:20:00", "12:30:00"]


@pytest.mark.parametrize(
    "expr",
    [
        "not a cron",
        "",
        "   ",
        "* * * * *",
        "* * * * * * *",
        "61 * * * * *",
        "* * 25 * * *",
        "*/0 * * * * *",
        "@every 5s",
        "* * * * * $",
        "0 0 0 0 * *",
        "5-1 * * * * *",
        "0 0 0 L * *",
        "0 0 0 * 13 *",
        "0 0 0 * * 8",
        "0 0 0 * jan-xyz *",
        "0 60 * * * *",
        "? * * * * *",
        "0 0 0 31 2 *",
    ],
)
def test_invalid_expressions_rejected(expr: str) -> None:
    with pytest.raises(ValidationError):
        parse_cron(expr)
    assert is_valid_cron(expr) is False


def test_valid_expression_helpers() -> None:
    assert is_valid_cron("*/10 * * * * *")
    assert is_valid_cron("0 30 9 * * 1-5")
    schedule = parse_cron("  */10 * * * * *  ")
    assert schedule.expression == "*/10 * * * * *"


def test_names_resolve_to_numbers() -> None:
    schedule = parse_cron("0 0 9 * JAN-mar mon-fri")
    assert schedule.fields == ("0", "0", "9", "*", "1-3", "1-5")
    assert schedule.expression == "0 0 9 * JAN-mar mon-fri"
    assert schedule.is_due(datetime(2026, 3, 2, 9, 0, 0, tzinfo=UTC))
    assert not schedule.is_due(datetime(2026, 4, 1, 9, 0, 0, tzinfo=UTC))


def test_bounds_edges_accepted() -> None:
    for expr in ("59 59 23 31 12 7", "0 0 0 1 1 0", "0 0 0 ? * 1", "5-50/5 * * * * *"):
        assert is_valid_cron(expr), expr


def test_impossible_date_never_fires() -> None:
    with pytest.raises(ValidationError, match="never fires"):
        parse_cron("0 0 0 31 2 *")
    assert is_valid_cron("0 0 0 29 2 *")
