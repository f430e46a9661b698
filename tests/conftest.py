from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, Iterator, List

import pytest

from tempo.models import DispatchResult, Job

UTC = timezone.utc


@dataclass
class RecordedRequest:
    method: str
    path: str
    headers: Dict[str, str]
    body: bytes


@dataclass
class WebhookServer:
    base_url: str
    requests: List[RecordedRequest] = field(default_factory=list)

    def url(self, path: str) -> str:
        return self.base_url + path


class _Handler(BaseHTTPRequestHandler):
    server_version = "TempoTest/1.0"

    def _handle(self) -> None:
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length else b""
        self.server.recorder.requests.append(  # type: ignore[attr-defined]
            RecordedRequest(
                method=self.command,
                path=self.path,
                headers={k: v for k, v in self.headers.items()},
                body=body,
            )
        )
        status = 200
        if self.path.startswith("/status/"):
            status = int(self.path.rsplit("/", 1)[1])
        if self.path.startswith("/slow"):
            time.sleep(2)
        payload = b"" if status in (204, 304) else b"ok"
        self.send_response(status)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        if payload and self.command != "HEAD":
            self.wfile.write(payload)

    do_GET = _handle
    do_POST = _handle
    do_PUT = _handle
    do_DELETE = _handle
    do_PATCH = _handle
    do_HEAD = _handle

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        return


@pytest.fixture
def webhook_server() -> Iterator[WebhookServer]:
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    recorder = WebhookServer(base_url=f"http://127.0.0.1:{server.server_address[1]}")
    server.recorder = recorder  # type: ignore[attr-defined]
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield recorder
    finally:
        server.shutdown()
        server.server_close()


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> datetime:
        with self._lock:
            self.now = self.now + timedelta(seconds=seconds)
            return self.now


class RecordingDispatcher:
    def __init__(self, success: bool = True, status_code: int = 200, duration_seconds: float = 0.0):
        self.success = success
        self.duration_seconds = duration_seconds
        self.status_code = status_code
        self.calls: List[Job] = []
        self._lock = threading.Lock()
        self.called = threading.Event()

    def __call__(self, job: Job) -> DispatchResult:
        with self._lock:
            self.calls.append(job)
        self.called.set()
        return DispatchResult(
            job_id=job.id,
            success=self.success,
            status_code=self.status_code,
            message="200 OK" if self.success else f"{self.status_code} Error",
            duration_seconds=self.duration_seconds,
        )

    def ids(self) -> List[str]:
        with self._lock:
            return [job.id for job in self.calls]


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 12, 0, 0, tzinfo=UTC))


@pytest.fixture
def recording_dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


def make_job(job_id: str = "job-1", cron_expr: str = "*/5 * * * * *", **overrides: object) -> Job:
    values: Dict[str, object] = {
        "id": job_id,
        "url": "http://127.0.0.1:9/hook",
        "cron_expr": cron_expr,
        "method": "POST",
        "body": '{"hello": "world"}',
        "headers": {"Content-Type": "application/json"},
    }
    values.update(overrides)
    return Job(**values)  # type: ignore[arg-type]


@pytest.fixture(autouse=True)
def reset_tempo_logger() -> Iterator[None]:
    yield
    logger = logging.getLogger("tempo")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
