"""
Tests for the task scheduler and the scoped guards.
"""

import asyncio

import pytest

from core.guard import (
    AlreadyProcessing,
    CallerGuard,
    TaskGuard,
    TooManyConcurrentRequests,
)
from core.tasks import NANOS_PER_SECOND, TaskScheduler, TaskType


class TestTaskScheduler:
    """Readiness-ordered dispatch"""

    def test_nothing_ready_on_empty_scheduler(self, clock):
        scheduler = TaskScheduler(clock)
        assert scheduler.pop_if_ready() is None

    def test_schedule_now_is_ready_immediately(self, clock):
        scheduler = TaskScheduler(clock)
        scheduler.schedule_now(TaskType.PROCESS_LOGIC)

        task = scheduler.pop_if_ready()
        assert task.task_type is TaskType.PROCESS_LOGIC
        assert task.ready_at == clock.now
        assert len(scheduler) == 0

    def test_delayed_task_waits(self, clock):
        scheduler = TaskScheduler(clock)
        scheduler.schedule_after(240, TaskType.PROCESS_LOGIC)

        assert scheduler.pop_if_ready() is None
        clock.advance(239)
        assert scheduler.pop_if_ready() is None
        clock.advance(1)
        assert scheduler.pop_if_ready().task_type is TaskType.PROCESS_LOGIC

    def test_earliest_ready_task_first(self, clock):
        scheduler = TaskScheduler(clock)
        scheduler.schedule_after(10, TaskType.FETCH_QUOTES)
        scheduler.schedule_after(5, TaskType.REFRESH_CONTEXT)
        scheduler.schedule_now(TaskType.TAKE_DECISION)
        clock.advance(60)

        order = [scheduler.pop_if_ready().task_type for _ in range(3)]
        assert order == [TaskType.TAKE_DECISION, TaskType.REFRESH_CONTEXT, TaskType.FETCH_QUOTES]

    def test_duplicates_are_kept(self, clock):
        """Same type may be scheduled many times; insertion order breaks ties"""
        scheduler = TaskScheduler(clock)
        first = scheduler.schedule_now(TaskType.FETCH_QUOTES)
        second = scheduler.schedule_now(TaskType.FETCH_QUOTES)

        assert len(scheduler) == 2
        assert scheduler.pop_if_ready() is first
        assert scheduler.pop_if_ready() is second

    def test_ready_at_in_nanoseconds(self, clock):
        scheduler = TaskScheduler(clock)
        task = scheduler.schedule_after(3600, TaskType.REFRESH_CONTEXT)
        assert task.ready_at == clock.now + 3600 * NANOS_PER_SECOND

    def test_task_type_display(self):
        assert str(TaskType.REFRESH_MINER_BURN_RATE) == "RefreshMinerBurnRate"
        assert str(TaskType.PROCESS_LOGIC) == "ProcessLogic"


class TestTaskGuard:
    """At most one in-flight handler per task type"""

    def test_second_acquire_fails(self):
        active = set()
        guard = TaskGuard(active, TaskType.PROCESS_LOGIC)
        with pytest.raises(AlreadyProcessing):
            TaskGuard(active, TaskType.PROCESS_LOGIC)
        guard.release()
        assert TaskGuard(active, TaskType.PROCESS_LOGIC) is not None

    def test_other_types_are_independent(self):
        active = set()
        TaskGuard(active, TaskType.PROCESS_LOGIC)
        TaskGuard(active, TaskType.FETCH_QUOTES)
        assert active == {TaskType.PROCESS_LOGIC, TaskType.FETCH_QUOTES}

    def test_released_on_error_path(self):
        active = set()
        with pytest.raises(RuntimeError):
            with TaskGuard(active, TaskType.TAKE_DECISION):
                raise RuntimeError("boom")
        assert TaskType.TAKE_DECISION not in active
        with TaskGuard(active, TaskType.TAKE_DECISION):
            assert TaskType.TAKE_DECISION in active

    def test_released_across_await(self):
        active = set()

        async def handler():
            with TaskGuard(active, TaskType.FETCH_QUOTES):
                await asyncio.sleep(0)
                raise ValueError("remote failed")

        with pytest.raises(ValueError):
            asyncio.run(handler())
        assert active == set()

    def test_try_acquire_skips_silently(self):
        active = {TaskType.REFRESH_CONTEXT}
        assert TaskGuard.try_acquire(active, TaskType.REFRESH_CONTEXT) is None
        guard = TaskGuard.try_acquire(active, TaskType.TAKE_DECISION)
        assert guard is not None

    def test_release_is_idempotent(self):
        active = set()
        guard = TaskGuard(active, TaskType.PROCESS_LOGIC)
        guard.release()
        other = TaskGuard(active, TaskType.PROCESS_LOGIC)
        guard.release()
        assert guard.released
        assert TaskType.PROCESS_LOGIC in active
        other.release()


class TestCallerGuard:
    def test_one_request_per_caller(self):
        callers = set()
        CallerGuard(callers, "alice")
        with pytest.raises(AlreadyProcessing):
            CallerGuard(callers, "alice")

    def test_capacity(self):
        callers = set()
        guards = [CallerGuard(callers, f"caller-{i}", max_concurrent=3) for i in range(3)]
        with pytest.raises(TooManyConcurrentRequests):
            CallerGuard(callers, "caller-3", max_concurrent=3)
        guards[0].release()
        assert CallerGuard(callers, "caller-3", max_concurrent=3).key == "caller-3"
