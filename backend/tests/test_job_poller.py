"""
Tests for the job poller.

Covers: terminal states, SUCCEEDED without a URL, wall-clock deadline,
network failures, retries, cooperative cancellation.
"""

import asyncio
from typing import List, Union

import httpx
import pytest

from wallcraft.core.errors import PollError
from wallcraft.services.dashscope import TaskStatus
from wallcraft.services.job_poller import (
    MSG_CANCELED,
    MSG_FAILED,
    MSG_TIMEOUT,
    MSG_UNKNOWN,
    CancelToken,
    JobPoller,
    OutcomeKind,
)
from wallcraft.services.job_submitter import JobStatus


# -- Helpers ------------------------------------------------------------------


def status(task_status: str, **kwargs) -> JobStatus:
    return JobStatus(task_id="task-1", task_status=TaskStatus(task_status), **kwargs)


class ScriptedFetch:
    """Replays a script of statuses/exceptions; the last entry repeats."""

    def __init__(self, *script: Union[JobStatus, Exception]):
        self.script = list(script)
        self.calls: List[str] = []

    async def __call__(self, task_id: str) -> JobStatus:
        self.calls.append(task_id)
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item


def make_poller(fetch, clock, **kwargs) -> JobPoller:
    kwargs.setdefault("interval", 15.0)
    kwargs.setdefault("max_wait", 300.0)
    return JobPoller(fetch, clock=clock, **kwargs)


# -- Tests --------------------------------------------------------------------


class TestTerminalStates:

    async def test_succeeded_with_url(self, clock, fake_sleep):
        fetch = ScriptedFetch(status("PENDING"), status("RUNNING"), status("SUCCEEDED", video_url="https://cdn/v.mp4"))
        outcome = await make_poller(fetch, clock).poll("task-1", started_at=clock(), token=CancelToken(fake_sleep))

        assert outcome.succeeded
        assert outcome.result_url == "https://cdn/v.mp4"
        assert len(fetch.calls) == 3
        assert fake_sleep.calls == [15.0, 15.0]

    async def test_succeeded_without_url_keeps_polling(self, clock, fake_sleep):
        fetch = ScriptedFetch(status("SUCCEEDED"), status("SUCCEEDED", video_url="https://cdn/v.mp4"))
        outcome = await make_poller(fetch, clock).poll("task-1", started_at=clock(), token=CancelToken(fake_sleep))

        assert outcome.succeeded
        assert len(fetch.calls) == 2

    async def test_failed_uses_remote_message(self, clock, fake_sleep):
        fetch = ScriptedFetch(status("FAILED", error_message="内容审核未通过"))
        outcome = await make_poller(fetch, clock).poll("task-1", started_at=clock(), token=CancelToken(fake_sleep))

        assert outcome.kind == OutcomeKind.FAILED
        assert outcome.message == "内容审核未通过"

    async def test_failed_without_message_uses_generic(self, clock, fake_sleep):
        fetch = ScriptedFetch(status("FAILED"))
        outcome = await make_poller(fetch, clock).poll("task-1", started_at=clock(), token=CancelToken(fake_sleep))
        assert outcome.message == MSG_FAILED

    async def test_canceled(self, clock, fake_sleep):
        fetch = ScriptedFetch(status("CANCELED", error_message="ignored"))
        outcome = await make_poller(fetch, clock).poll("task-1", started_at=clock(), token=CancelToken(fake_sleep))

        assert outcome.kind == OutcomeKind.CANCELED
        assert outcome.message == MSG_CANCELED

    async def test_unknown_is_terminal(self, clock, fake_sleep):
        fetch = ScriptedFetch(status("UNKNOWN"))
        outcome = await make_poller(fetch, clock).poll("task-1", started_at=clock(), token=CancelToken(fake_sleep))

        assert outcome.kind == OutcomeKind.FAILED
        assert outcome.message == MSG_UNKNOWN


class TestDeadline:

    async def test_running_forever_times_out(self, clock, fake_sleep):
        fetch = ScriptedFetch(status("RUNNING"))
        started = clock()
        outcome = await make_poller(fetch, clock).poll("task-1", started_at=started, token=CancelToken(fake_sleep))

        assert outcome.kind == OutcomeKind.TIMEOUT
        assert outcome.message == MSG_TIMEOUT
        # 0s, 15s, ..., 300s 各查询一次，315s 时超时，不再调度
        assert len(fetch.calls) == 21
        assert clock() - started == 315.0
        assert len(fake_sleep.calls) == 21

    async def test_deadline_counts_from_submission(self, clock, fake_sleep):
        fetch = ScriptedFetch(status("RUNNING"))
        started = clock() - 301.0
        outcome = await make_poller(fetch, clock).poll("task-1", started_at=started, token=CancelToken(fake_sleep))

        assert outcome.kind == OutcomeKind.TIMEOUT
        assert fetch.calls == []


class TestNetworkErrors:

    async def test_single_failure_surfaces_immediately(self, clock, fake_sleep):
        fetch = ScriptedFetch(httpx.ConnectError("connection refused"), status("SUCCEEDED", video_url="u"))
        outcome = await make_poller(fetch, clock).poll("task-1", started_at=clock(), token=CancelToken(fake_sleep))

        assert outcome.kind == OutcomeKind.NETWORK
        assert outcome.message == "网络错误"
        assert len(fetch.calls) == 1

    async def test_poll_error_message_is_kept(self, clock, fake_sleep):
        fetch = ScriptedFetch(PollError("任务状态响应格式错误"))
        outcome = await make_poller(fetch, clock).poll("task-1", started_at=clock(), token=CancelToken(fake_sleep))
        assert outcome.message == "任务状态响应格式错误"

    async def test_retries_when_configured(self, clock, fake_sleep):
        fetch = ScriptedFetch(
            httpx.ReadTimeout("timeout"),
            httpx.ReadTimeout("timeout"),
            status("SUCCEEDED", video_url="https://cdn/v.mp4"),
        )
        outcome = await make_poller(fetch, clock, retries=2).poll(
            "task-1", started_at=clock(), token=CancelToken(fake_sleep)
        )

        assert outcome.succeeded
        assert len(fetch.calls) == 3


class TestCancellation:

    async def test_cancelled_before_start(self, clock, fake_sleep):
        fetch = ScriptedFetch(status("RUNNING"))
        token = CancelToken(fake_sleep)
        token.cancel()

        assert await make_poller(fetch, clock).poll("task-1", started_at=clock(), token=token) is None
        assert fetch.calls == []

    async def test_response_after_cancel_is_ignored(self, clock, fake_sleep):
        token = CancelToken(fake_sleep)

        async def fetch(task_id):
            token.cancel()
            return status("SUCCEEDED", video_url="https://cdn/late.mp4")

        assert await make_poller(fetch, clock).poll("task-1", started_at=clock(), token=token) is None
        assert fake_sleep.calls == []

    async def test_cancel_clears_pending_timer(self):
        fetch = ScriptedFetch(status("RUNNING"))
        token = CancelToken()
        poller = JobPoller(fetch, interval=3600.0, max_wait=7200.0)
        task = asyncio.create_task(poller.poll("task-1", started_at=poller.clock(), token=token))

        while not fetch.calls:
            await asyncio.sleep(0)
        await asyncio.sleep(0)
        token.cancel()

        assert await asyncio.wait_for(task, timeout=1.0) is None
        assert len(fetch.calls) == 1


class TestCancelToken:

    def test_epochs_increase(self):
        assert CancelToken().epoch < CancelToken().epoch

    async def test_wait_returns_false_when_already_cancelled(self, fake_sleep):
        token = CancelToken(fake_sleep)
        token.cancel()
        assert await token.wait(15.0) is False
        assert fake_sleep.calls == []

    async def test_wait_returns_true_after_delay(self, fake_sleep):
        assert await CancelToken(fake_sleep).wait(15.0) is True
        assert fake_sleep.calls == [15.0]
