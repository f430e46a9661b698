"""
Single-shot webhook calls with classified outcomes.
"""

from __future__ import annotations

import http.client
import logging
import re
import time
from typing import Dict, Optional
from urllib import error as urllib_error
from urllib import request as urllib_request

from .config import DEFAULT_METHOD, DEFAULT_TIMEOUT_SECONDS
from .errors import WebhookError
from .models import DispatchResult, Job

logger = logging.getLogger(__name__)

TRANSPORT_FAILURE_STATUS = 500
CREATE_FAILURE_MESSAGE = "Error creating request"
SEND_FAILURE_MESSAGE = "Error sending request"
HTTP_TOKEN_RE = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")


class WebhookDispatcher:
    """Performs one HTTP request per job and classifies the result.

    ``retries`` is opt-in and defaults to zero; when set, only transport
    failures and 5xx responses are retried.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        retries: int = 0,
        retry_backoff_seconds: float = 1.0,
        opener: Optional[urllib_request.OpenerDirector] = None,
    ):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if retries < 0:
            raise ValueError("retries must be >= 0")
        self.timeout_seconds = timeout_seconds
        self.retries = retries
        self.retry_backoff_seconds = max(0.0, retry_backoff_seconds)
        self._opener = opener or urllib_request.build_opener()

    def __call__(self, job: Job) -> DispatchResult:
        return self.dispatch(job)

    def dispatch(self, job: Job) -> DispatchResult:
        attempt = 0
        while True:
            result = self._dispatch_once(job)
            if result.success or attempt >= self.retries or not _retryable(result):
                return result
            attempt += 1
            delay = self.retry_backoff_seconds * (2 ** (attempt - 1))
            logger.info(
                "Retrying %s in %.1fs (attempt %s of %s)",
                job.id,
                delay,
                attempt,
                self.retries,
            )
            time.sleep(delay)

    def call(self, job: Job) -> DispatchResult:
        """Dispatch and raise ``WebhookError`` on failure."""
        result = self.dispatch(job)
        if not result.success:
            raise WebhookError(result.status_code, result.message)
        return result

    def _dispatch_once(self, job: Job) -> DispatchResult:
        logger.info(
            "Calling webhook: %s, method: %s, body: %s, headers: %s",
            job.url,
            job.method,
            job.body,
            job.headers,
        )
        started = time.monotonic()

        def result(success: bool, status_code: int, message: str) -> DispatchResult:
            return DispatchResult(
                job_id=job.id,
                success=success,
                status_code=status_code,
                message=message,
                duration_seconds=time.monotonic() - started,
            )

        try:
            req = build_request(job)
        except ValueError as exc:
            logger.warning("%s: %s", CREATE_FAILURE_MESSAGE, exc)
            return result(False, TRANSPORT_FAILURE_STATUS, CREATE_FAILURE_MESSAGE)

        try:
            with self._opener.open(req, timeout=self.timeout_seconds) as response:
                status = response.status
                reason = response.reason
        except urllib_error.HTTPError as exc:
            try:
                status_text = f"{exc.code} {exc.reason}".strip()
            finally:
                exc.close()
            if exc.code < 400:
                logger.info("Response: %s", status_text)
                return result(True, exc.code, status_text)
            return result(False, exc.code, status_text)
        except (urllib_error.URLError, http.client.HTTPException, OSError, ValueError) as exc:
            logger.warning("%s: %s", SEND_FAILURE_MESSAGE, exc)
            return result(False, TRANSPORT_FAILURE_STATUS, SEND_FAILURE_MESSAGE)

        status_text = f"{status} {reason}".strip()
        if status >= 400:
            return result(False, status, status_text)
        logger.info("Response: %s", status_text)
        return result(True, status, status_text)


def build_request(job: Job) -> urllib_request.Request:
    method = job.method or DEFAULT_METHOD
    if not HTTP_TOKEN_RE.fullmatch(method):
        raise ValueError(f'invalid method "{method}"')
    data = job.body.encode("utf-8") if job.body else None
    req = urllib_request.Request(url=job.url, data=data, method=method)
    for key, value in merge_headers(job.headers).items():
        req.add_header(key, value)
    return req


def merge_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Fold names differing only in case into one comma-joined field, first spelling kept."""
    merged: Dict[str, str] = {}
    spelling: Dict[str, str] = {}
    for key, value in headers.items():
        name = spelling.setdefault(key.lower(), key)
        merged[name] = f"{merged[name]}, {value}" if name in merged else value
    return merged


def _retryable(result: DispatchResult) -> bool:
    return result.status_code >= 500 and result.message != CREATE_FAILURE_MESSAGE
