from __future__ import annotations

import asyncio
from enum import Enum


class PeriodicTaskState(str, Enum):
    """
    Lifecycle of a periodic background component.

    Transitions:
    - IDLE -> RUNNING on `start()`
    - RUNNING -> STOPPING on `stop()` or cancellation
    - STOPPING -> TERMINATED after the in-flight tick finishes
    - no transition out of TERMINATED
    """

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    TERMINATED = "terminated"


async def wait_or_stop(stop_event: asyncio.Event, timeout_s: float) -> bool:
    """
    Sleep for `timeout_s` unless `stop_event` fires first.

    Parameters:
    - stop_event: cooperative stop signal.
    - timeout_s: nominal sleep duration.

    Returns:
    - `True` when stop was requested, `False` when the full interval elapsed.
    """
    if stop_event.is_set():
        return True
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout_s)
    except TimeoutError:
        return False
    return True


async def join_task(task: asyncio.Task[None] | None, *, timeout_s: float) -> bool:
    """
    Await a background task for at most `timeout_s`, cancelling it on overrun.

    Parameters:
    - task: task to join or `None`.
    - timeout_s: join budget in seconds.

    Returns:
    - `True` when the task exited by itself, `False` when it had to be cancelled.
    """
    if task is None or task.done():
        return True
    done, _ = await asyncio.wait({task}, timeout=max(timeout_s, 0.0))
    if task in done:
        return True
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    return False
