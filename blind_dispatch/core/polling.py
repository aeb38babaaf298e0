"""Submit-then-poll state machine for async vendor tasks (e.g. queued image generation)."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

from .errors import PollTimeoutError, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_MAX_ATTEMPTS = 15

SUCCESS_STATUSES = {"SUCCEED", "SUCCEEDED", "SUCCESS", "COMPLETED"}
FAILURE_STATUSES = {"FAILED", "FAILURE", "ERROR", "CANCELED", "CANCELLED"}


class TaskState(str, enum.Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class TaskPoll:
    """Tracks one async task from submission to a terminal state."""

    task_id: str
    provider: str
    state: TaskState = TaskState.SUBMITTED
    attempts: int = 0
    last_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.state in (TaskState.SUCCEEDED, TaskState.FAILED, TaskState.TIMED_OUT)

    def observe(self, payload: dict[str, Any]) -> TaskState:
        self.attempts += 1
        self.last_payload = payload
        status = str(payload.get("task_status") or payload.get("status") or "").upper()
        if status in SUCCESS_STATUSES:
            self.state = TaskState.SUCCEEDED
        elif status in FAILURE_STATUSES:
            self.state = TaskState.FAILED
        else:
            self.state = TaskState.POLLING
        return self.state


async def poll_task(
    task_id: str,
    provider: str,
    fetch_status: Callable[[str], Awaitable[Union[dict[str, Any], None]]],
    *,
    interval: float = DEFAULT_POLL_INTERVAL,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> TaskPoll:
    """Poll ``fetch_status`` at a fixed interval until the task finishes.

    ``fetch_status`` may return ``None`` for a transient non-answer; that still
    consumes an attempt. Raises ``ProviderError`` on a failed task and
    ``PollTimeoutError`` once ``max_attempts`` is exhausted.
    """
    poll = TaskPoll(task_id=task_id, provider=provider)
    while poll.attempts < max_attempts:
        await sleep(interval)
        payload = await fetch_status(task_id)
        if payload is None:
            poll.attempts += 1
            poll.state = TaskState.POLLING
            continue
        state = poll.observe(payload)
        if state is TaskState.SUCCEEDED:
            return poll
        if state is TaskState.FAILED:
            detail = payload.get("errors") or payload.get("message") or "Task failed"
            raise ProviderError(f"Task {task_id} failed: {detail}", provider, code="task_failed")
    poll.state = TaskState.TIMED_OUT
    logger.warning("Task %s timed out after %s attempts", task_id, poll.attempts)
    raise PollTimeoutError(provider, task_id, poll.attempts)
