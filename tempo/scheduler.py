"""
Trigger registry and scheduler lifecycle.

One daemon thread evaluates armed triggers once per second. Every due
trigger is dispatched on its own daemon thread, so a slow webhook never
delays evaluation of the others. Outcomes are logged and dropped.
"""

from __future__ import annotations

import itertools
import logging
import signal
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Callable, Dict, List, Optional

from .config import DEFAULT_TICK_SECONDS, local_timezone
from .cron import CronSchedule, as_utc, parse_cron
from .dispatcher import WebhookDispatcher
from .errors import TempoError, ValidationError, WebhookError
from .models import DispatchResult, Job, TriggerEvent

logger = logging.getLogger(__name__)

UTC = timezone.utc
STATE_CREATED = "created"
STATE_RUNNING = "running"
STATE_STOPPED = "stopped"

Dispatch = Callable[[Job], DispatchResult]
Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class Trigger:
    handle: int
    job: Job
    schedule: CronSchedule
    next_fire: Optional[datetime]


class TriggerRegistry:
    """Armed triggers keyed by job id, guarded by a single lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._triggers: Dict[str, Trigger] = {}
        self._handles = itertools.count(1)

    def arm(self, job: Job, schedule: CronSchedule, now: datetime) -> int:
        with self._lock:
            handle = next(self._handles)
            self._triggers[job.id] = Trigger(
                handle=handle,
                job=job.copy(),
                schedule=schedule,
                next_fire=schedule.next_after(now),
            )
            return handle

    def disarm(self, job_id: str) -> bool:
        with self._lock:
            return self._triggers.pop(job_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._triggers.clear()

    def get(self, job_id: str) -> Optional[Trigger]:
        with self._lock:
            return self._triggers.get(job_id)

    def job_ids(self) -> List[str]:
        with self._lock:
            return list(self._triggers)

    def next_fire_time(self) -> Optional[datetime]:
        with self._lock:
            pending = [t.next_fire for t in self._triggers.values() if t.next_fire is not None]
        return min(pending) if pending else None

    def reschedule(self, now: datetime) -> None:
        with self._lock:
            for trigger in self._triggers.values():
                trigger.next_fire = trigger.schedule.next_after(now)

    def collect_due(self, now: datetime) -> List[TriggerEvent]:
        # Missed instants collapse into a single firing; the next fire time
        # always moves past ``now``.
        events: List[TriggerEvent] = []
        with self._lock:
            for trigger in self._triggers.values():
                if trigger.next_fire is None or trigger.next_fire > now:
                    continue
                events.append(
                    TriggerEvent(job=trigger.job, scheduled_for=trigger.next_fire, handle=trigger.handle)
                )
                trigger.next_fire = trigger.schedule.next_after(now)
        return events

    def is_due(self, job_id: str, at: datetime) -> bool:
        trigger = self.get(job_id)
        return trigger is not None and trigger.schedule.is_due(at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._triggers)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._triggers


class Scheduler:
    """Owns a trigger registry and drives it from a background tick loop.

    Lifecycle is ``created -> running -> stopped``; a stopped scheduler
    cannot be restarted. Jobs may be added in any state, but only a running
    scheduler fires them.

    With ``background=False`` no tick thread is spawned and the embedding
    host (or a test) calls :meth:`tick` itself.
    """

    def __init__(
        self,
        dispatcher: Optional[Dispatch] = None,
        timezone: Optional[tzinfo] = None,
        clock: Optional[Clock] = None,
        max_in_flight: Optional[int] = None,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        background: bool = True,
    ):
        if max_in_flight is not None and max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be > 0")
        self.dispatcher: Dispatch = dispatcher or WebhookDispatcher()
        self.timezone = timezone or local_timezone()[0]
        self.registry = TriggerRegistry()
        self.tick_seconds = tick_seconds
        self.background = background
        self._clock = clock or _utc_now
        self._state = STATE_CREATED
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._slots = threading.BoundedSemaphore(max_in_flight) if max_in_flight else None
        self._in_flight = 0
        self._in_flight_cond = threading.Condition()

    @property
    def state(self) -> str:
        return self._state

    @property
    def in_flight(self) -> int:
        with self._in_flight_cond:
            return self._in_flight

    def now(self) -> datetime:
        return as_utc(self._clock())

    def add_job(self, job: Job, strict: bool = False) -> bool:
        """Arm ``job``. Invalid jobs are logged and skipped unless ``strict``."""
        try:
            job.validate()
            schedule = parse_cron(job.cron_expr, self.timezone)
        except ValidationError as exc:
            logger.error("Error adding job %s: %s", job.id or "(no id)", exc)
            if strict:
                raise
            return False

        self.registry.arm(job, schedule, self.now())
        trigger = self.registry.get(job.id)
        logger.info(
            "Armed %s (%s %s) schedule=%s next=%s",
            job.id,
            job.method,
            job.url,
            schedule.expression,
            trigger.next_fire.isoformat() if trigger and trigger.next_fire else "-",
        )
        return True

    def remove_job(self, job_id: str) -> bool:
        removed = self.registry.disarm(job_id)
        if removed:
            logger.info("Disarmed %s", job_id)
        return removed

    def jobs(self) -> List[str]:
        return self.registry.job_ids()

    def start(self) -> None:
        with self._state_lock:
            if self._state == STATE_RUNNING:
                logger.warning("Scheduler already running.")
                return
            if self._state == STATE_STOPPED:
                raise TempoError("Error: scheduler has been stopped and cannot be restarted.")
            self.registry.reschedule(self.now())
            self._state = STATE_RUNNING

        if self.background:
            self._thread = threading.Thread(target=self._loop, daemon=True, name="tempo-scheduler")
            self._thread.start()
        next_fire = self.registry.next_fire_time()
        logger.info(
            "Scheduler started with %s job(s), next fire %s",
            len(self.registry),
            next_fire.isoformat() if next_fire else "-",
        )

    def stop(self, timeout_seconds: float = 2.0) -> None:
        with self._state_lock:
            if self._state == STATE_STOPPED:
                return
            self._state = STATE_STOPPED
            self._stop_event.set()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout_seconds)
        logger.info("Scheduler stopped (%s dispatch(es) still in flight)", self.in_flight)

    def tick(self, now: Optional[datetime] = None) -> List[TriggerEvent]:
        """Fire every trigger due at ``now``. Does nothing unless running."""
        with self._state_lock:
            if self._state != STATE_RUNNING:
                return []
            at = as_utc(now) if now is not None else self.now()
            events = self.registry.collect_due(at)
            for event in events:
                self._launch(event)
        return events

    def wait_for_dispatches(self, timeout_seconds: Optional[float] = None) -> bool:
        deadline = None if timeout_seconds is None else time.monotonic() + timeout_seconds
        with self._in_flight_cond:
            while self._in_flight:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._in_flight_cond.wait(remaining)
        return True

    def run_forever(self) -> None:
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, lambda signum, frame: self._stop_event.set())
        self.background = True
        self.start()
        try:
            while not self._stop_event.wait(0.5):
                pass
        except KeyboardInterrupt:
            logger.info("Scheduler interrupted by user.")
        finally:
            self.stop()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as exc:  # pragma: no cover - defensive
                logger.exception("Scheduler tick failed: %s", exc)
            self._stop_event.wait(self.tick_seconds - (time.time() % self.tick_seconds))

    def _launch(self, event: TriggerEvent) -> None:
        if self._slots is not None and not self._slots.acquire(blocking=False):
            logger.warning(
                "Skipping %s at %s: in-flight limit reached (%s running)",
                event.job_id,
                event.scheduled_for.isoformat(),
                self.in_flight,
            )
            return
        with self._in_flight_cond:
            self._in_flight += 1
        logger.debug("Dispatching %s scheduled for %s", event.job_id, event.scheduled_for.isoformat())
        thread = threading.Thread(
            target=self._run_dispatch,
            args=(event,),
            daemon=True,
            name=f"tempo-dispatch-{event.job_id}",
        )
        try:
            thread.start()
        except RuntimeError as exc:
            logger.error("Cannot start dispatch for %s: %s", event.job_id, exc)
            self._release_slot()

    def _release_slot(self) -> None:
        if self._slots is not None:
            self._slots.release()
        with self._in_flight_cond:
            self._in_flight -= 1
            self._in_flight_cond.notify_all()

    def _run_dispatch(self, event: TriggerEvent) -> None:
        try:
            result = self.dispatcher(event.job)
            if result.success:
                logger.info("Job %s executed successfully in %.2fs", event.job_id, result.duration_seconds)
            else:
                logger.error(
                    "Error calling webhook for %s after %.2fs: %s",
                    event.job_id,
                    result.duration_seconds,
                    WebhookError(result.status_code, result.message),
                )
        except Exception as exc:
            logger.exception("Unexpected error dispatching %s: %s", event.job_id, exc)
        finally:
            self._release_slot()
