"""
Task boundary for work that runs after a state transition has committed.

Nothing dispatched here can undo the transition: failures are logged with context
and, for awaited work, returned as SideEffectFailure records.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Set, Tuple

from registrar.core.config import settings
from registrar.core.exceptions import SideEffectFailure
from registrar.core.logging import get_logger

logger = get_logger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]


class SideEffectDispatcher:
    """Bounded pool of background tasks (audit entries, notifications, snapshots)."""

    def __init__(self, max_concurrency: int) -> None:
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def run(
        self, name: str, factory: TaskFactory, **context: Any
    ) -> Tuple[Any, Optional[SideEffectFailure]]:
        """Await one unit of post-commit work. Returns (result, None) or (None, failure)."""
        try:
            async with self._semaphore:
                result = await factory()
        except Exception as exc:  # noqa: BLE001
            logger.error("side_effect_failed", task=name, error=str(exc), exc_info=True, **context)
            return None, SideEffectFailure(
                name=name, reason=str(exc) or exc.__class__.__name__, details={k: str(v) for k, v in context.items()}
            )
        return result, None

    def dispatch(self, name: str, factory: TaskFactory, **context: Any) -> asyncio.Task:
        """Fire-and-forget: schedule the work and return immediately."""
        task = asyncio.create_task(self.run(name, factory, **context), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight task (shutdown hook, tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


_dispatcher: Optional[SideEffectDispatcher] = None


def get_dispatcher() -> SideEffectDispatcher:
    """Process-wide dispatcher, created lazily inside the running event loop."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = SideEffectDispatcher(settings.side_effect_concurrency)
    return _dispatcher
