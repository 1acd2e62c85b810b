"""Cron job types."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class CronSchedule(BaseModel):
    """When a job fires.

    ``at`` fires once at ``at_ms``; ``every`` fires every ``every_ms`` measured
    from the previous computation; ``cron`` follows ``expr`` evaluated in
    ``tz`` (local time when unset).
    """

    kind: Literal["at", "every", "cron"]
    at_ms: int | None = None
    every_ms: int | None = None
    expr: str | None = None
    tz: str | None = None

    @classmethod
    def at(cls, at_ms: int) -> CronSchedule:
        return cls(kind="at", at_ms=at_ms)

    @classmethod
    def every(cls, every_ms: int) -> CronSchedule:
        return cls(kind="every", every_ms=every_ms)

    @classmethod
    def cron(cls, expr: str, tz: str | None = None) -> CronSchedule:
        return cls(kind="cron", expr=expr, tz=tz)

    def describe(self) -> str:
        if self.kind == "at":
            return f"at {self.at_ms}"
        if self.kind == "every":
            return f"every {(self.every_ms or 0) // 1000}s"
        return f"cron '{self.expr}'" + (f" ({self.tz})" if self.tz else "")


class CronPayload(BaseModel):
    """What a job does when it fires."""

    kind: Literal["system_event", "agent_turn"] = "agent_turn"
    message: str = ""
    deliver: bool = False
    channel: str | None = None
    to: str | None = None


class CronJobState(BaseModel):
    next_run_at_ms: int | None = None
    last_run_at_ms: int | None = None
    last_status: Literal["ok", "error", "skipped"] | None = None
    last_error: str | None = None


class CronJob(BaseModel):
    id: str
    name: str
    enabled: bool = True
    schedule: CronSchedule
    payload: CronPayload = Field(default_factory=CronPayload)
    state: CronJobState = Field(default_factory=CronJobState)
    created_at_ms: int = 0
    updated_at_ms: int = 0
    delete_after_run: bool = False


class CronStore(BaseModel):
    version: int = 1
    jobs: list[CronJob] = Field(default_factory=list)
