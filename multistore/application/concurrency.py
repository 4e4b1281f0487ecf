"""Concurrency helpers for application services.

Provides per-key async locks that serialize read-modify-write cycles on
one aggregate, and a runner for background work that must outlive the
request which started it.
"""

import asyncio
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Any

import structlog

logger = structlog.get_logger()


def order_lock_key(order_id: str) -> str:
    return f"order:{order_id}"


def payment_lock_key(payment_id: str) -> str:
    return f"payment:{payment_id}"


def wallet_lock_key(transaction_id: str) -> str:
    return f"wallet:{transaction_id}"


class KeyedLockRegistry:
    """Registry of asyncio locks keyed by aggregate.

    Locks live for the lifetime of the process and only serialize work
    within it; cross-process races are caught by versioned saves.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        async with self._lock_for(key):
            yield

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


class BackgroundTaskRunner:
    """Runs fire-and-forget coroutines and keeps track of them.

    Failures are logged when the task finishes; the caller that spawned
    the task never sees them.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
        """Schedule a coroutine on the running loop.

        Args:
            coro: Coroutine to run.
            name: Task name used in logs.

        Returns:
            The created task.
        """
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug("Background task started", task=task.get_name())
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("Background task cancelled", task=task.get_name())
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Background task failed",
                task=task.get_name(),
                error=str(error),
                error_type=type(error).__name__,
            )

    async def drain(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding tasks and wait for them to stop."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Background tasks stopped", cancelled=len(tasks))


# ============================================================================
# Singletons
# ============================================================================


_lock_registry: KeyedLockRegistry | None = None
_task_runner: BackgroundTaskRunner | None = None


def get_lock_registry() -> KeyedLockRegistry:
    """Get lock registry singleton."""
    global _lock_registry
    if _lock_registry is None:
        _lock_registry = KeyedLockRegistry()
    return _lock_registry


def get_task_runner() -> BackgroundTaskRunner:
    """Get background task runner singleton."""
    global _task_runner
    if _task_runner is None:
        _task_runner = BackgroundTaskRunner()
    return _task_runner


def reset_concurrency() -> None:
    """Reset lock registry and task runner (for testing)."""
    global _lock_registry, _task_runner
    _lock_registry = None
    _task_runner = None
