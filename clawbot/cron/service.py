"""Persistent job scheduler driven by a single event-loop timer."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter
from pydantic import ValidationError

from clawbot.cron.types import CronJob, CronJobState, CronPayload, CronSchedule, CronStore

LOGGER = logging.getLogger(__name__)

JobCallback = Callable[[CronJob], Awaitable[str | None]]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _resolve_zone(tz: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown timezone '{tz}'") from exc


def compute_next_run(schedule: CronSchedule, now_ms: int) -> int | None:
    """Next fire time in epoch ms strictly after ``now_ms``, or None if it never fires."""

    if schedule.kind == "at":
        if schedule.at_ms is None:
            return None
        return schedule.at_ms if schedule.at_ms > now_ms else None

    if schedule.kind == "every":
        if not schedule.every_ms or schedule.every_ms <= 0:
            return None
        return now_ms + schedule.every_ms

    if schedule.kind == "cron" and schedule.expr:
        try:
            zone = _resolve_zone(schedule.tz) if schedule.tz else None
            base = datetime.fromtimestamp(now_ms / 1000, tz=zone) if zone else datetime.fromtimestamp(now_ms / 1000).astimezone()
            upcoming = croniter(schedule.expr, base).get_next(datetime)
        except (ValueError, KeyError):
            LOGGER.warning("Cannot compute next run for cron expression %r", schedule.expr)
            return None
        return int(upcoming.timestamp() * 1000)

    return None


def validate_schedule_for_add(schedule: CronSchedule) -> None:
    """Reject schedules that could never be stored sensibly.

    Raises:
        ValueError: with a message suitable for showing to the model/user.
    """
    if schedule.tz and schedule.kind != "cron":
        raise ValueError("tz can only be used with cron schedules")
    if schedule.kind == "at" and schedule.at_ms is None:
        raise ValueError("at schedules need a timestamp")
    if schedule.kind == "every" and schedule.every_ms is None:
        raise ValueError("every schedules need an interval")
    if schedule.kind == "cron":
        if not schedule.expr or not croniter.is_valid(schedule.expr):
            raise ValueError(f"invalid cron expression '{schedule.expr}'")
        if schedule.tz:
            _resolve_zone(schedule.tz)


class CronService:
    """Owns the job store and keeps one timer armed for the soonest due job."""

    def __init__(self, store_path: Path, on_job: JobCallback | None = None) -> None:
        self._store_path = store_path
        self.on_job = on_job
        self._store: CronStore | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._tick_task: asyncio.Task[None] | None = None
        self._running = False
        self._executing: set[str] = set()

    def _load_store(self) -> CronStore:
        if self._store is not None:
            return self._store
        if not self._store_path.exists():
            self._store = CronStore()
            return self._store
        try:
            self._store = CronStore.model_validate_json(self._store_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError):
            LOGGER.warning("Failed to load cron store %s, starting empty", self._store_path, exc_info=True)
            self._store = CronStore()
        return self._store

    def _save_store(self) -> None:
        if self._store is None:
            return
        self._store_path.parent.mkdir(parents=True, exist_ok=True)
        self._store_path.write_text(self._store.model_dump_json(indent=2), encoding="utf-8")

    def _next_wake_ms(self) -> int | None:
        times = [
            job.state.next_run_at_ms
            for job in self._load_store().jobs
            if job.enabled and job.state.next_run_at_ms is not None
        ]
        return min(times) if times else None

    def _arm_timer(self) -> None:
        if self._executing:
            return
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        next_wake = self._next_wake_ms()
        if not self._running or next_wake is None:
            return
        delay = max(0, next_wake - _now_ms()) / 1000
        self._timer = asyncio.get_running_loop().call_later(delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        self._tick_task = asyncio.get_running_loop().create_task(self._on_timer(), name="cron-tick")

    async def _on_timer(self) -> None:
        store = self._load_store()
        now = _now_ms()
        due = [
            job
            for job in store.jobs
            if job.enabled
            and job.id not in self._executing
            and job.state.next_run_at_ms is not None
            and now >= job.state.next_run_at_ms
        ]
        try:
            for job in due:
                await self._execute_job(job)
            self._save_store()
        except OSError:
            LOGGER.exception("Cron: failed to persist %s", self._store_path)
        finally:
            self._arm_timer()

    async def _execute_job(self, job: CronJob) -> None:
        start = _now_ms()
        LOGGER.info("Cron: executing job '%s' (%s)", job.name, job.id)
        self._executing.add(job.id)
        try:
            if self.on_job is not None:
                await self.on_job(job)
            job.state.last_status = "ok"
            job.state.last_error = None
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Cron: job '%s' (%s) failed", job.name, job.id)
            job.state.last_status = "error"
            job.state.last_error = str(exc)
        finally:
            self._executing.discard(job.id)

        job.state.last_run_at_ms = start
        job.updated_at_ms = _now_ms()

        if job.schedule.kind == "at":
            if job.delete_after_run:
                store = self._load_store()
                store.jobs = [j for j in store.jobs if j.id != job.id]
            else:
                job.enabled = False
                job.state.next_run_at_ms = None
        else:
            job.state.next_run_at_ms = compute_next_run(job.schedule, _now_ms())

    async def start(self) -> None:
        self._running = True
        store = self._load_store()
        now = _now_ms()
        for job in store.jobs:
            if job.enabled:
                job.state.next_run_at_ms = compute_next_run(job.schedule, now)
        self._save_store()
        self._arm_timer()
        LOGGER.info("Cron service started with %d jobs", len(store.jobs))

    def stop(self) -> None:
        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def list_jobs(self, include_disabled: bool = False) -> list[CronJob]:
        jobs = self._load_store().jobs
        if not include_disabled:
            jobs = [job for job in jobs if job.enabled]
        return sorted(jobs, key=lambda j: j.state.next_run_at_ms if j.state.next_run_at_ms is not None else float("inf"))

    def get_job(self, job_id: str) -> CronJob | None:
        return next((job for job in self._load_store().jobs if job.id == job_id), None)

    def add_job(
        self,
        name: str,
        schedule: CronSchedule,
        message: str,
        deliver: bool = False,
        channel: str | None = None,
        to: str | None = None,
        delete_after_run: bool = False,
    ) -> CronJob:
        validate_schedule_for_add(schedule)
        store = self._load_store()
        now = _now_ms()
        job = CronJob(
            id=uuid.uuid4().hex[:8],
            name=name,
            enabled=True,
            schedule=schedule,
            payload=CronPayload(kind="agent_turn", message=message, deliver=deliver, channel=channel, to=to),
            state=CronJobState(next_run_at_ms=compute_next_run(schedule, now)),
            created_at_ms=now,
            updated_at_ms=now,
            delete_after_run=delete_after_run,
        )
        store.jobs.append(job)
        self._save_store()
        self._arm_timer()
        LOGGER.info("Cron: added job '%s' (%s)", name, job.id)
        return job

    def remove_job(self, job_id: str) -> bool:
        store = self._load_store()
        before = len(store.jobs)
        store.jobs = [job for job in store.jobs if job.id != job_id]
        removed = len(store.jobs) < before
        if removed:
            self._save_store()
            self._arm_timer()
            LOGGER.info("Cron: removed job %s", job_id)
        return removed

    def enable_job(self, job_id: str, enabled: bool = True) -> CronJob | None:
        job = self.get_job(job_id)
        if job is None:
            return None
        job.enabled = enabled
        job.updated_at_ms = _now_ms()
        job.state.next_run_at_ms = compute_next_run(job.schedule, _now_ms()) if enabled else None
        self._save_store()
        self._arm_timer()
        return job

    async def run_job(self, job_id: str, force: bool = False) -> bool:
        job = self.get_job(job_id)
        if job is None:
            return False
        if not force and not job.enabled:
            return False
        if job.id in self._executing:
            return False
        try:
            await self._execute_job(job)
            self._save_store()
        finally:
            self._arm_timer()
        return True

    def status(self) -> dict[str, object]:
        return {
            "enabled": self._running,
            "jobs": len(self._load_store().jobs),
            "next_wake_at_ms": self._next_wake_ms(),
        }
