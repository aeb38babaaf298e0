import asyncio
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from blind_dispatch.core.errors import PollTimeoutError, ProviderError
from blind_dispatch.core.polling import TaskPoll, TaskState, poll_task


def _fetcher(payloads):
    seen = []
    it = iter(payloads)

    async def fetch(task_id):
        seen.append(task_id)
        return next(it)

    return fetch, seen


async def _no_sleep(seconds):
    return None


def test_poll_reaches_success():
    fetch, seen = _fetcher([{"status": "pending"}, None, {"status": "succeeded", "url": "u"}])
    poll = asyncio.run(poll_task("t1", "custom", fetch, sleep=_no_sleep))
    assert poll.state is TaskState.SUCCEEDED
    assert poll.attempts == 3
    assert poll.last_payload["url"] == "u"
    assert seen == ["t1", "t1", "t1"]


def test_poll_failure_raises_provider_error():
    fetch, _ = _fetcher([{"task_status": "FAILED", "errors": "bad prompt"}])
    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(poll_task("t2", "custom", fetch, sleep=_no_sleep))
    assert excinfo.value.code == "task_failed"
    assert "bad prompt" in str(excinfo.value)


def test_poll_timeout_respects_ceiling_and_interval():
    waits = []

    async def sleep(seconds):
        waits.append(seconds)

    fetch, seen = _fetcher([{"status": "RUNNING"}] * 10)
    with pytest.raises(PollTimeoutError) as excinfo:
        asyncio.run(poll_task("t3", "custom", fetch, interval=0.5, max_attempts=4, sleep=sleep))
    assert excinfo.value.task_id == "t3"
    assert len(seen) == 4
    assert waits == [0.5] * 4


def test_task_poll_observe_transitions():
    poll = TaskPoll(task_id="t", provider="custom")
    assert poll.state is TaskState.SUBMITTED
    assert poll.observe({"status": "queued"}) is TaskState.POLLING
    assert not poll.terminal
    assert poll.observe({"task_status": "SUCCEED"}) is TaskState.SUCCEEDED
    assert poll.terminal
