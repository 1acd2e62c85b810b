import re

import pytest

from clawbot.cron.service import CronService
from clawbot.tools.base import TurnContext
from clawbot.tools.cron import CronTool

SIGNAL_CHAT = TurnContext("signal", "42", "signal:42")


@pytest.fixture
def cron(tmp_path):
    return CronService(tmp_path / "jobs.json")


@pytest.fixture
def tool(cron):
    return CronTool(cron)


@pytest.mark.asyncio
async def test_add_recurring_job_targets_current_chat(tool, cron):
    result = await tool.run_in_context(SIGNAL_CHAT, action="add", message="drink water", every_seconds=3600)

    assert re.fullmatch(r"Created job 'drink water' \(id: [0-9a-f]{8}\)", result)
    (job,) = cron.list_jobs()
    assert job.schedule.every_ms == 3_600_000
    assert (job.payload.deliver, job.payload.channel, job.payload.to) == (True, "signal", "42")


@pytest.mark.asyncio
async def test_add_one_shot_job_deletes_after_run(tool, cron):
    await tool.run_in_context(SIGNAL_CHAT, action="add", message="renew passport", at="2099-01-01T09:00:00")

    (job,) = cron.list_jobs()
    assert job.schedule.kind == "at"
    assert job.delete_after_run is True


@pytest.mark.asyncio
async def test_scheduler_errors_become_error_text(tool, cron):
    result = await tool.run_in_context(
        SIGNAL_CHAT, action="add", message="standup", cron_expr="0 9 * * 1-5", tz="Nowhere/City"
    )

    assert result == "Error: unknown timezone 'Nowhere/City'"
    assert cron.list_jobs(include_disabled=True) == []


@pytest.mark.asyncio
async def test_tz_requires_cron_expression(tool):
    assert await tool.run_in_context(SIGNAL_CHAT, action="add", message="x", every_seconds=10, tz="UTC") == (
        "Error: tz can only be used with cron_expr"
    )


@pytest.mark.asyncio
async def test_add_requires_message_schedule_and_context(cron):
    tool = CronTool(cron)
    assert await tool.run(action="add", message="x", every_seconds=5) == "Error: no session context (channel/chat_id)"

    assert await tool.run_in_context(SIGNAL_CHAT, action="add") == "Error: message is required for add"
    assert await tool.run_in_context(SIGNAL_CHAT, action="add", message="x") == (
        "Error: either every_seconds, cron_expr, or at is required"
    )
    assert await tool.run_in_context(SIGNAL_CHAT, action="add", message="x", at="tomorrow") == (
        "Error: invalid ISO datetime in at"
    )


@pytest.mark.asyncio
async def test_list_and_remove(tool, cron):
    assert await tool.run_in_context(SIGNAL_CHAT, action="list") == "No scheduled jobs."
    await tool.run_in_context(SIGNAL_CHAT, action="add", message="stretch", cron_expr="*/30 * * * *")
    job_id = cron.list_jobs()[0].id

    listing = await tool.run_in_context(SIGNAL_CHAT, action="list")
    assert listing == f"Scheduled jobs:\n- stretch (id: {job_id}, cron)"

    assert await tool.run_in_context(SIGNAL_CHAT, action="remove", job_id=job_id) == f"Removed job {job_id}"
    assert await tool.run_in_context(SIGNAL_CHAT, action="remove", job_id=job_id) == f"Job {job_id} not found"
    assert await tool.run_in_context(SIGNAL_CHAT, action="remove") == "Error: job_id is required for remove"
