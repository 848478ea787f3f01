"""
Scoped mutual-exclusion guards.

A guard inserts its key into a shared set on construction and removes it on
release. Used as a context manager the release happens on every exit path,
including exceptions raised across an ``await``.
"""

import logging
from typing import Hashable, MutableSet, Optional

logger = logging.getLogger(__name__)

MAX_CONCURRENT = 100


class GuardError(RuntimeError):
    """Base for guard acquisition failures."""


class AlreadyProcessing(GuardError):
    pass


class TooManyConcurrentRequests(GuardError):
    pass


class _Guard:
    def __init__(self, held: MutableSet[Hashable], key: Hashable):
        self._held = held
        self.key = key
        self._released = False

    def release(self) -> None:
        if self._released:
            return
        self._held.discard(self.key)
        self._released = True

    @property
    def released(self) -> bool:
        return self._released

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


class TaskGuard(_Guard):
    """At most one in-flight handler per task type."""

    def __init__(self, active_tasks: MutableSet[Hashable], task_type: Hashable):
        if task_type in active_tasks:
            raise AlreadyProcessing(f"{task_type} already running")
        active_tasks.add(task_type)
        super().__init__(active_tasks, task_type)

    @classmethod
    def try_acquire(cls, active_tasks: MutableSet[Hashable], task_type: Hashable) -> Optional["TaskGuard"]:
        """Return a guard, or None when the task type is already held."""
        try:
            return cls(active_tasks, task_type)
        except AlreadyProcessing:
            logger.debug("Skipping %s: already processing", task_type)
            return None


class CallerGuard(_Guard):
    """One in-flight request per caller identity, bounded overall."""

    def __init__(self, callers: MutableSet[Hashable], caller: Hashable, max_concurrent: int = MAX_CONCURRENT):
        if caller in callers:
            raise AlreadyProcessing(f"caller {caller} already has a request in flight")
        if len(callers) >= max_concurrent:
            raise TooManyConcurrentRequests(f"{len(callers)} concurrent requests (max {max_concurrent})")
        callers.add(caller)
        super().__init__(callers, caller)
