"""
File-backed job store.

All jobs live in a single JSON array that is rewritten in full on every
mutation. Mutations hold the exclusive side of a reader/writer lock across
both the in-memory change and the write, so the file on disk is always a
snapshot of some observed in-memory state.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from .config import JOBS_FILE, resolve_data_dir
from .errors import NotFoundError, PersistenceError, StoreCorruptionError, ValidationError
from .models import Job

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many readers or one writer; writers are preferred once waiting."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class JobStore:
    def __init__(self, data_dir: Optional[os.PathLike] = None, autoload: bool = True):
        self.data_dir = resolve_data_dir(data_dir)
        self._path = self.data_dir / JOBS_FILE
        self._lock = ReadWriteLock()
        self._jobs: Dict[str, Job] = {}
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Error: failed to create data directory {self.data_dir}: {exc}") from exc
        if autoload:
            self.load()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> None:
        with self._lock.write():
            self._jobs = self._read_file()
        logger.debug("Loaded %s job(s) from %s", len(self._jobs), self._path)

    def add_job(self, job: Job) -> None:
        with self._lock.write():
            previous = dict(self._jobs)
            self._jobs[job.id] = job.copy()
            self._commit(previous)

    def get_job(self, job_id: str) -> Tuple[Optional[Job], bool]:
        with self._lock.read():
            job = self._jobs.get(job_id)
        if job is None:
            return None, False
        return job.copy(), True

    def get_all_jobs(self) -> List[Job]:
        with self._lock.read():
            return [job.copy() for job in self._jobs.values()]

    def remove_job(self, job_id: str) -> None:
        with self._lock.write():
            if job_id not in self._jobs:
                raise NotFoundError(f"job '{job_id}' not found")
            previous = dict(self._jobs)
            del self._jobs[job_id]
            self._commit(previous)

    def remove_all_jobs(self) -> None:
        with self._lock.write():
            previous = dict(self._jobs)
            self._jobs = {}
            self._commit(previous)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        with self._lock.read():
            return job_id in self._jobs

    def _commit(self, previous: Dict[str, Job]) -> None:
        # Caller holds the write lock.
        try:
            self._write_file()
        except PersistenceError:
            self._jobs = previous
            raise

    def _read_file(self) -> Dict[str, Job]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StoreCorruptionError(f"Error: failed to read {self._path}: {exc}") from exc

        if not text.strip():
            return {}
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StoreCorruptionError(f"Error: failed to parse jobs in {self._path}: {exc}") from exc
        if payload is None:
            return {}
        if not isinstance(payload, list):
            raise StoreCorruptionError(f"Error: {self._path} must contain a JSON array of jobs.")

        jobs: Dict[str, Job] = {}
        for index, raw in enumerate(payload):
            try:
                job = Job.from_payload(raw, field_path=f"jobs[{index}]")
            except ValidationError as exc:
                raise StoreCorruptionError(f"{exc} ({self._path})") from exc
            jobs[job.id] = job
        return jobs

    def _write_file(self) -> None:
        data = json.dumps([job.to_payload() for job in self._jobs.values()], indent=2)
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(data, encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as exc:
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                pass
            raise PersistenceError(f"Error: failed to write jobs file {self._path}: {exc}") from exc
