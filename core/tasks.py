"""
Task scheduler.

Holds ``(task_type, ready_at)`` descriptors and hands out whichever one is due.
It performs no I/O and never blocks: a periodic tick asks ``pop_if_ready`` and
dispatches the result. Periodic behaviour comes only from handlers re-arming
themselves with ``schedule_after``.
"""

import heapq
import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

NANOS_PER_SECOND = 1_000_000_000


class TaskType(Enum):
    REFRESH_CONTEXT = "refresh_context"
    TAKE_DECISION = "take_decision"
    PROCESS_LOGIC = "process_logic"
    FETCH_QUOTES = "fetch_quotes"
    REFRESH_MINER_BURN_RATE = "refresh_miner_burn_rate"

    def __str__(self) -> str:
        return "".join(part.capitalize() for part in self.value.split("_"))


@dataclass(order=True)
class ScheduledTask:
    ready_at: int
    seq: int
    task_type: TaskType = field(compare=False)


def timestamp_nanos() -> int:
    return time.time_ns()


class TaskScheduler:
    """Min-heap of scheduled tasks keyed by readiness time (ns)."""

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or timestamp_nanos
        self._heap: List[ScheduledTask] = []
        self._seq = itertools.count()

    def now(self) -> int:
        return self._clock()

    def schedule_after(self, delay_seconds: float, task_type: TaskType) -> ScheduledTask:
        ready_at = self.now() + int(max(0.0, delay_seconds) * NANOS_PER_SECOND)
        task = ScheduledTask(ready_at=ready_at, seq=next(self._seq), task_type=task_type)
        heapq.heappush(self._heap, task)
        return task

    def schedule_now(self, task_type: TaskType) -> ScheduledTask:
        return self.schedule_after(0, task_type)

    def pop_if_ready(self) -> Optional[ScheduledTask]:
        """Remove and return the earliest due task, or None when nothing is due."""
        if self._heap and self._heap[0].ready_at <= self.now():
            return heapq.heappop(self._heap)
        return None

    def pending(self) -> List[ScheduledTask]:
        return sorted(self._heap)

    def __len__(self) -> int:
        return len(self._heap)
