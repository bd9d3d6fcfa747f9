"""Fire-and-forget task runner for work that must not delay a response.

Flow Diagram — schedule()
=========================
::
    ┌──────────────┐
    │ schedule(fn) │
    └──────┬───────┘
           ▼
    ┌──────────────┐   YES   ┌──────────────────┐
    │ pending >=   │────────►│ drop, count, log │
    │ max pending? │         └──────────────────┘
    └──────┬───────┘
        NO ▼
    ┌──────────────┐
    │ create_task  │──► done callback removes it from the pending set
    └──────────────┘

Key Behaviours
===============
- ``schedule`` never raises and never awaits the work.
- Failures inside the work are logged and counted, never propagated.
- The pending set is bounded so a slow database cannot grow memory without limit.
- ``drain`` is called on shutdown: it waits for in-flight work, then cancels the rest.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from prometheus_client import Counter, Gauge

__all__ = ["BackgroundTaskRunner"]

logger = logging.getLogger(__name__)

BACKGROUND_TASKS_TOTAL = Counter(
    "shortlinks_background_tasks_total",
    "Background tasks by outcome",
    ["outcome"],
)
BACKGROUND_TASKS_PENDING = Gauge(
    "shortlinks_background_tasks_pending",
    "Background tasks currently in flight",
)


class BackgroundTaskRunner:
    def __init__(self, max_pending: int = 1000) -> None:
        self._max_pending = max_pending
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, func: Callable[..., Awaitable[Any]], *args: Any, name: str | None = None) -> bool:
        """Run ``func(*args)`` in the background. Returns False if the work was dropped."""
        if len(self._tasks) >= self._max_pending:
            BACKGROUND_TASKS_TOTAL.labels(outcome="dropped").inc()
            logger.warning(f"Background queue full ({self._max_pending}), dropping {name or func}")
            return False
        try:
            task = asyncio.get_running_loop().create_task(self._run(func, args), name=name)
        except RuntimeError as exc:
            BACKGROUND_TASKS_TOTAL.labels(outcome="dropped").inc()
            logger.error(f"Could not schedule background task {name or func}: {exc}")
            return False

        self._tasks.add(task)
        BACKGROUND_TASKS_PENDING.set(len(self._tasks))
        task.add_done_callback(self._discard)
        return True

    def _discard(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        BACKGROUND_TASKS_PENDING.set(len(self._tasks))

    async def _run(self, func: Callable[..., Awaitable[Any]], args: tuple) -> None:
        try:
            await func(*args)
        except asyncio.CancelledError:
            BACKGROUND_TASKS_TOTAL.labels(outcome="cancelled").inc()
            raise
        except Exception:
            BACKGROUND_TASKS_TOTAL.labels(outcome="failed").inc()
            logger.exception("Background task failed")
        else:
            BACKGROUND_TASKS_TOTAL.labels(outcome="completed").inc()

    async def drain(self, timeout: float = 5.0) -> None:
        if not self._tasks:
            return
        pending = set(self._tasks)
        logger.info(f"Draining {len(pending)} background task(s)")
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Cancelled {len(still_running)} background task(s) after {timeout}s")
            await asyncio.gather(*still_running, return_exceptions=True)
