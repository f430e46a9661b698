"""
tempo command line.

Stores webhook jobs, runs them once on demand, and runs the scheduler in
the foreground.
"""

from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

import yaml

from .config import DEFAULT_METHOD, DEFAULT_PREVIEW_COUNT, Settings, setup_logging
from .cron import parse_cron
from .dispatcher import WebhookDispatcher
from .errors import NotFoundError, TempoError, ValidationError, WebhookError
from .models import Job
from .scheduler import Scheduler
from .storage import JobStore

logger = logging.getLogger(__name__)

UTC = timezone.utc
DEFAULT_EXPORT_FILE = "tempo-jobs.json"
VALID_FORMATS = {"json", "yaml"}
PREVIEW_WIDTH = 50

InputFn = Callable[[str], str]


def parse_headers(raw: Optional[List[str]]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for header in raw or []:
        name, sep, value = header.partition("=")
        if not sep or not name:
            raise ValidationError(f"Error: invalid header format: {header}. Use 'Key=Value'")
        headers[name] = value
    return headers


def _truncate(text: str) -> str:
    return text if len(text) <= PREVIEW_WIDTH else text[:PREVIEW_WIDTH] + "..."


def _print_job_details(job: Job, indent: str = "  ") -> None:
    if job.body:
        print(f"{indent}Body: {_truncate(job.body)}")
    if job.headers:
        print(f"{indent}Headers: {job.headers}")


def _prompt_job(job_id: Optional[str], input_fn: InputFn) -> Job:
    if not job_id:
        job_id = input_fn("Job ID: ").strip()
        if not job_id:
            raise ValidationError("Error: job ID cannot be empty")
    url = input_fn("Webhook URL: ").strip()
    if not url:
        raise ValidationError("Error: URL cannot be empty")
    method = input_fn(f"HTTP Method [{DEFAULT_METHOD}]: ").strip().upper() or DEFAULT_METHOD
    schedule = input_fn("Cron Schedule (e.g., '*/30 * * * * *'): ").strip()
    if not schedule:
        raise ValidationError("Error: schedule cannot be empty")
    body = input_fn("Request Body (optional): ").strip()

    headers: Dict[str, str] = {}
    print("Add headers (press Enter when done):")
    while True:
        header = input_fn("Header (Key=Value): ").strip()
        if not header:
            break
        try:
            headers.update(parse_headers([header]))
        except ValidationError:
            print("Invalid format. Use 'Key=Value'")
    return Job(id=job_id, url=url, cron_expr=schedule, method=method, body=body, headers=headers)


def command_add(
    store: JobStore,
    job_id: Optional[str],
    url: Optional[str],
    method: str,
    schedule: Optional[str],
    body: str,
    headers: Optional[List[str]],
    interactive: bool = False,
    input_fn: InputFn = input,
) -> int:
    if interactive:
        job = _prompt_job(job_id, input_fn)
    else:
        if not url:
            raise ValidationError("Error: URL is required. Use --url or --interactive")
        if not schedule:
            raise ValidationError("Error: schedule is required. Use --schedule or --interactive")
        if not job_id:
            raise ValidationError("Error: job ID is required")
        job = Job(
            id=job_id,
            url=url,
            cron_expr=schedule,
            method=method or DEFAULT_METHOD,
            body=body or "",
            headers=parse_headers(headers),
        )

    job.validate()
    store.add_job(job)
    print(f"Added job '{job.id}': {job.method} {job.url}")
    _print_job_details(job)
    return 0


def command_list(store: JobStore, verbose: bool) -> int:
    jobs = sorted(store.get_all_jobs(), key=lambda job: job.id)
    if not jobs:
        print("No jobs configured yet.")
        print("Use 'tempo add' to create your first job.")
        if verbose:
            print("")
            print("Example jobs:")
            print("  tempo add health-check --url 'https://api.example.com/health' --schedule '*/30 * * * * *'")
            print(
                "  tempo add weekly-report --url 'https://api.example.com/reports' "
                "--method POST --schedule '0 0 9 * * 1'"
            )
        return 0

    print(f"Found {len(jobs)} job(s):")
    print("")
    for job in jobs:
        print(f"ID: {job.id}")
        print(f"  Method: {job.method}")
        print(f"  URL: {job.url}")
        print(f"  Schedule: {job.cron_expr}")
        _print_job_details(job)
        if verbose:
            try:
                nxt = parse_cron(job.cron_expr).next_after(datetime.now(tz=UTC))
                print(f"  Next run: {nxt.astimezone().isoformat()}")
            except ValidationError as exc:
                print(f"  Invalid schedule: {exc}")
        print("")
    return 0


def command_run(
    store: JobStore,
    dispatcher: WebhookDispatcher,
    job_id: Optional[str],
    url: Optional[str],
    method: str,
    body: str,
    headers: Optional[List[str]],
) -> int:
    if job_id:
        job, found = store.get_job(job_id)
        if not found or job is None:
            raise NotFoundError(f"Error: job '{job_id}' not found")
        print(f"Running job '{job_id}'...")
    elif url:
        job = Job(
            id="one-off",
            url=url,
            cron_expr="",
            method=method or DEFAULT_METHOD,
            body=body or "",
            headers=parse_headers(headers),
        )
    else:
        raise ValidationError("Error: either job ID or --url is required")

    print(f"Executing: {job.method} {job.url}")
    _print_job_details(job, indent="")
    try:
        result = dispatcher.call(job)
    except WebhookError as exc:
        print(f"Error: {exc}")
        return 1
    print(f"Job executed successfully ({result.message}, {result.duration_seconds:.2f}s)")
    return 0


def command_remove(store: JobStore, job_id: Optional[str], remove_all: bool) -> int:
    if remove_all:
        store.remove_all_jobs()
        print("Removed all jobs")
        return 0
    if not job_id:
        raise ValidationError("Error: job ID is required")
    store.remove_job(job_id)
    print(f"Removed job '{job_id}'")
    return 0


def command_validate(store: JobStore) -> int:
    jobs = sorted(store.get_all_jobs(), key=lambda job: job.id)
    invalid = 0
    print(f"Store: {store.path}")
    print(f"Total jobs: {len(jobs)}")
    for job in jobs:
        try:
            job.validate()
        except ValidationError as exc:
            invalid += 1
            print(f"- {job.id}: INVALID ({exc})")
            continue
        print(f"- {job.id}: ok ({job.cron_expr})")
    return 1 if invalid else 0


def command_preview(store: JobStore, settings: Settings, job_id: Optional[str], count: int) -> int:
    if count <= 0:
        raise ValidationError("Error: --count must be >= 1")
    if job_id:
        job, found = store.get_job(job_id)
        if not found or job is None:
            raise NotFoundError(f"Error: job '{job_id}' not found")
        selected = [job]
    else:
        selected = sorted(store.get_all_jobs(), key=lambda job: job.id)

    now = datetime.now(tz=UTC)
    for job in selected:
        print("=" * 80)
        print(f"Job: {job.id} ({job.method} {job.url})")
        print(f"Schedule: {job.cron_expr} [{settings.timezone_name}]")
        try:
            schedule = parse_cron(job.cron_expr, settings.timezone)
        except ValidationError as exc:
            print(f"Invalid schedule: {exc}")
            continue
        print(f"Next {count} run(s):")
        for run_dt in schedule.next_runs(count, after=now):
            print(f"- {run_dt.astimezone(settings.timezone).isoformat()}")
    print("=" * 80)
    return 0


def command_start(store: JobStore, settings: Settings) -> int:
    jobs = sorted(store.get_all_jobs(), key=lambda job: job.id)
    scheduler = Scheduler(
        dispatcher=WebhookDispatcher(timeout_seconds=settings.timeout_seconds),
        timezone=settings.timezone,
        max_in_flight=settings.max_in_flight,
    )
    print("Starting Tempo Scheduler...")
    if not jobs:
        print("No jobs configured. Use 'tempo add' to create jobs first.")
        print("Starting scheduler in idle mode...")
    else:
        print(f"Loading {len(jobs)} job(s)...")
        for job in jobs:
            if scheduler.add_job(job):
                print(f"  + {job.id}: {job.method} {job.url}")
            else:
                print(f"  ! {job.id}: skipped (invalid schedule {job.cron_expr!r})")
        print("")
    print("Press Ctrl+C to stop")
    scheduler.run_forever()
    print("Scheduler stopped.")
    return 0


def _resolve_format(fmt: Optional[str], path: Path) -> str:
    if fmt:
        fmt = fmt.lower()
    elif path.suffix.lower() in {".yaml", ".yml"}:
        fmt = "yaml"
    else:
        fmt = "json"
    if fmt not in VALID_FORMATS:
        raise ValidationError(f"Error: unsupported format: {fmt}")
    return fmt


def command_export(store: JobStore, filename: Optional[str], fmt: Optional[str]) -> int:
    path = Path(filename or DEFAULT_EXPORT_FILE)
    fmt = _resolve_format(fmt, path)
    jobs = sorted(store.get_all_jobs(), key=lambda job: job.id)
    payload = [job.to_payload() for job in jobs]
    if fmt == "yaml":
        text = yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)
    else:
        text = json.dumps(payload, indent=2)
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise TempoError(f"Error: failed to write file {path}: {exc}") from exc
    print(f"Exported {len(jobs)} job(s) to {path}")
    return 0


def command_import(store: JobStore, filename: str, fmt: Optional[str]) -> int:
    path = Path(filename)
    fmt = _resolve_format(fmt, path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise TempoError(f"Error: failed to read file {path}: {exc}") from exc

    try:
        payload = yaml.safe_load(text) if fmt == "yaml" else json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Error: failed to parse {fmt.upper()} in {path}: {exc}") from exc
    if payload is None:
        payload = []
    if not isinstance(payload, list):
        raise ValidationError(f"Error: {path} must contain a list of jobs.")

    jobs = [Job.from_payload(raw, field_path=f"jobs[{index}]") for index, raw in enumerate(payload)]
    for job in jobs:
        store.add_job(job)
    print(f"Imported {len(jobs)} job(s) from {path}")
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tempo",
        description="Tempo - a simple webhook scheduler",
        epilog=(
            "Examples:\n"
            "  tempo add health-check --url https://api.example.com/health --schedule '*/30 * * * * *'\n"
            "  tempo list\n"
            "  tempo start"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--data-dir", help="Directory holding jobs.json (default: ~/.tempo or $TEMPO_HOME)")
    parser.add_argument("--log-level", help="Log level (default: INFO or $TEMPO_LOG_LEVEL)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    add_parser = subparsers.add_parser("add", help="Add a new webhook job")
    add_parser.add_argument("job_id", nargs="?", help="Job ID")
    add_parser.add_argument("-u", "--url", help="Webhook URL")
    add_parser.add_argument("-m", "--method", default=DEFAULT_METHOD, help="HTTP method (GET, POST, PUT, DELETE)")
    add_parser.add_argument("-s", "--schedule", help="Cron schedule expression (e.g., '*/30 * * * * *')")
    add_parser.add_argument("-b", "--body", default="", help="Request body")
    add_parser.add_argument("-H", "--header", action="append", help="HTTP header (format: 'Key=Value')")
    add_parser.add_argument("-i", "--interactive", action="store_true", help="Interactive guided setup")

    list_parser = subparsers.add_parser("list", help="List all configured jobs")
    list_parser.add_argument("-v", "--verbose", action="store_true", help="Show detailed job information")

    run_parser = subparsers.add_parser("run", help="Run a job immediately")
    run_parser.add_argument("job_id", nargs="?", help="Stored job ID")
    run_parser.add_argument("-u", "--url", help="Webhook URL (for one-off execution)")
    run_parser.add_argument("-m", "--method", default=DEFAULT_METHOD, help="HTTP method")
    run_parser.add_argument("-b", "--body", default="", help="Request body")
    run_parser.add_argument("-H", "--header", action="append", help="HTTP header (format: 'Key=Value')")

    remove_parser = subparsers.add_parser("remove", help="Remove a webhook job")
    remove_parser.add_argument("job_id", nargs="?", help="Job ID")
    remove_parser.add_argument("-a", "--all", action="store_true", dest="remove_all", help="Remove all jobs")

    subparsers.add_parser("start", help="Run the scheduler in the foreground")
    subparsers.add_parser("validate", help="Check every stored schedule")

    preview_parser = subparsers.add_parser("preview", help="Show upcoming run times")
    preview_parser.add_argument("job_id", nargs="?", help="Preview a single job")
    preview_parser.add_argument("--count", type=int, default=DEFAULT_PREVIEW_COUNT, help="Next run count")

    export_parser = subparsers.add_parser("export", help="Export job configurations")
    export_parser.add_argument("filename", nargs="?", help=f"Output file (default: {DEFAULT_EXPORT_FILE})")
    export_parser.add_argument("-f", "--format", help="Export format (json, yaml)")

    import_parser = subparsers.add_parser("import", help="Import job configurations")
    import_parser.add_argument("filename", help="Input file")
    import_parser.add_argument("-f", "--format", help="Import format (json, yaml)")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None, input_fn: InputFn = input) -> int:
    args = parse_args(argv)

    try:
        settings = Settings.from_env(data_dir=args.data_dir, log_level=args.log_level)
        setup_logging(settings.log_level, settings.log_file)
        store = JobStore(settings.data_dir)

        if args.command == "add":
            return command_add(
                store,
                job_id=args.job_id,
                url=args.url,
                method=args.method,
                schedule=args.schedule,
                body=args.body,
                headers=args.header,
                interactive=args.interactive,
                input_fn=input_fn,
            )
        if args.command == "list":
            return command_list(store, verbose=args.verbose)
        if args.command == "run":
            return command_run(
                store,
                WebhookDispatcher(timeout_seconds=settings.timeout_seconds),
                job_id=args.job_id,
                url=args.url,
                method=args.method,
                body=args.body,
                headers=args.header,
            )
        if args.command == "remove":
            return command_remove(store, job_id=args.job_id, remove_all=args.remove_all)
        if args.command == "start":
            return command_start(store, settings)
        if args.command == "validate":
            return command_validate(store)
        if args.command == "preview":
            return command_preview(store, settings, job_id=args.job_id, count=args.count)
        if args.command == "export":
            return command_export(store, filename=args.filename, fmt=args.format)
        if args.command == "import":
            return command_import(store, filename=args.filename, fmt=args.format)
        raise TempoError(f"Unsupported command: {args.command}")
    except TempoError as exc:
        logger.error(str(exc))
        return 1
    except Exception as exc:  # pragma: no cover - defensive
        logger.exception("Unexpected error: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
