"""Tool for scheduling reminders and recurring tasks."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from clawbot.cron.service import CronService
from clawbot.cron.types import CronSchedule
from clawbot.tools.base import ContextualTool, TurnContext


class CronTool(ContextualTool):
    """Add, list and remove scheduled jobs that deliver to the current chat."""

    name = "cron"
    description = (
        "Schedule reminders and recurring tasks. Actions: add, list, remove. "
        "For add, give exactly one of every_seconds, cron_expr (optionally with tz) "
        "or at (ISO datetime, one-shot)."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": ["add", "list", "remove"], "description": "Action to perform."},
            "message": {"type": "string", "description": "Reminder message (for add)."},
            "every_seconds": {"type": "integer", "minimum": 1, "description": "Interval in seconds."},
            "cron_expr": {"type": "string", "description": "Cron expression like '0 9 * * *'."},
            "tz": {"type": "string", "description": "IANA timezone for cron expressions, e.g. 'America/Vancouver'."},
            "at": {"type": "string", "description": "ISO datetime for one-time execution."},
            "job_id": {"type": "string", "description": "Job ID (for remove)."},
        },
        "required": ["action"],
    }

    def __init__(self, cron: CronService) -> None:
        self._cron = cron

    async def run_in_context(self, context: TurnContext, **kwargs: Any) -> str:
        action = kwargs["action"]
        if action == "add":
            return self._add_job(context, kwargs)
        if action == "list":
            return self._list_jobs()
        if action == "remove":
            return self._remove_job(kwargs.get("job_id") or "")
        return f"Unknown action: {action}"

    def _add_job(self, context: TurnContext, args: dict[str, Any]) -> str:
        message = args.get("message") or ""
        if not message:
            return "Error: message is required for add"
        if not context.channel or not context.chat_id:
            return "Error: no session context (channel/chat_id)"

        every = args.get("every_seconds")
        cron_expr = args.get("cron_expr")
        tz = args.get("tz")
        at = args.get("at")

        delete_after_run = False
        if every:
            schedule = CronSchedule.every(int(every) * 1000)
        elif cron_expr:
            schedule = CronSchedule.cron(cron_expr, tz)
        elif at:
            try:
                when = datetime.fromisoformat(at)
            except ValueError:
                return "Error: invalid ISO datetime in at"
            if when.tzinfo is None:
                when = when.astimezone()
            schedule = CronSchedule.at(int(when.timestamp() * 1000))
            delete_after_run = True
        else:
            return "Error: either every_seconds, cron_expr, or at is required"

        if tz and not cron_expr:
            return "Error: tz can only be used with cron_expr"

        try:
            job = self._cron.add_job(
                name=message[:30],
                schedule=schedule,
                message=message,
                deliver=True,
                channel=context.channel,
                to=context.chat_id,
                delete_after_run=delete_after_run,
            )
        except ValueError as exc:
            return f"Error: {exc}"
        return f"Created job '{job.name}' (id: {job.id})"

    def _list_jobs(self) -> str:
        jobs = self._cron.list_jobs()
        if not jobs:
            return "No scheduled jobs."
        lines = [f"- {job.name} (id: {job.id}, {job.schedule.kind})" for job in jobs]
        return "Scheduled jobs:\n" + "\n".join(lines)

    def _remove_job(self, job_id: str) -> str:
        if not job_id:
            return "Error: job_id is required for remove"
        if self._cron.remove_job(job_id):
            return f"Removed job {job_id}"
        return f"Job {job_id} not found"
