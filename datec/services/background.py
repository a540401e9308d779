"""
Background task registry for best-effort work.

Fire-and-forget steps (graph nodes, counter init, notifications, download
tracking) run here so they never block the caller. Failures are logged as
BestEffortFailure and go no further.
"""
import asyncio
import logging
from typing import Awaitable, Optional, Set

from datec.errors import BestEffortFailure

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Keeps references to in-flight best-effort tasks until they finish"""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self.failures = 0

    def spawn(self, work: Awaitable, name: str) -> asyncio.Task:
        task = asyncio.ensure_future(self._guard(work, name))
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, work: Awaitable, name: str):
        try:
            return await work
        except asyncio.CancelledError:
            logger.warning(f"Best-effort step {name} cancelled")
            raise
        except Exception as e:
            self.failures += 1
            failure = BestEffortFailure(name, e)
            logger.warning(f"⚠️ {failure.message}")
            return None

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None):
        """Wait for in-flight tasks, including ones spawned while waiting"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        while self._tasks:
            remaining = None if deadline is None else max(deadline - loop.time(), 0)
            done, pending = await asyncio.wait(set(self._tasks), timeout=remaining)
            if pending and deadline is not None and loop.time() >= deadline:
                logger.warning(f"{len(pending)} best-effort tasks still running after drain timeout")
                return
