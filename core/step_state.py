"""
Core: Settlement Step State Machine

Explicit lifecycle for every queued settlement step.

States: QUEUED → RUNNING → (SETTLED | QUEUED on retry | DROPPED)

A settled step may carry follow-up steps (a swap spawns its withdrawal); the
follow-ups are registered here with a link back to their parent, so the growth
of the pipeline can be audited after the fact.
"""

from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)


class StepStatus(Enum):
    """Step lifecycle states"""
    QUEUED = "queued"      # Waiting at or behind the queue head
    RUNNING = "running"    # External call in flight
    SETTLED = "settled"    # Executed and popped
    DROPPED = "dropped"    # Popped without executing (poisoned)


@dataclass
class StepRecord:
    """Lifecycle of one queued step, keyed by its queue key."""
    key: int
    kind: str
    amount: int
    status: str = StepStatus.QUEUED.value
    parent_key: Optional[int] = None
    attempts: int = 0
    follow_up_keys: List[int] = field(default_factory=list)

    queued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def is_terminal(self) -> bool:
        return self.status in {StepStatus.SETTLED.value, StepStatus.DROPPED.value}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind,
            "amount": self.amount,
            "status": self.status,
            "parent_key": self.parent_key,
            "attempts": self.attempts,
            "follow_up_keys": list(self.follow_up_keys),
            "queued_at": self.queued_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "last_error": self.last_error,
        }


class StepStateMachine:
    """
    Step state machine with transition validation.

    Keeps a bounded in-memory record of recent steps. The queue itself is the
    durable source of truth; this is the audit view on top of it.
    """

    VALID_TRANSITIONS = {
        StepStatus.QUEUED: {StepStatus.RUNNING, StepStatus.DROPPED},
        StepStatus.RUNNING: {StepStatus.SETTLED, StepStatus.QUEUED, StepStatus.DROPPED},
        StepStatus.SETTLED: set(),
        StepStatus.DROPPED: set(),
    }

    def __init__(self, keep_last_n: int = 200):
        self.steps: Dict[int, StepRecord] = {}
        self.keep_last_n = keep_last_n

    def register(self, key: int, kind: str, amount: int, parent_key: Optional[int] = None) -> StepRecord:
        """Track a step; existing records are returned unchanged."""
        if key in self.steps:
            return self.steps[key]
        record = StepRecord(key=key, kind=kind, amount=amount, parent_key=parent_key)
        self.steps[key] = record
        if parent_key is not None and parent_key in self.steps:
            self.steps[parent_key].follow_up_keys.append(key)
        return record

    def transition(self, key: int, new_status: StepStatus, error: Optional[str] = None) -> bool:
        """
        Move a step to ``new_status``.

        Returns:
            True if the transition was valid and applied
        """
        record = self.steps.get(key)
        if record is None:
            logger.error(f"Step {key} not tracked")
            return False

        current = StepStatus(record.status)
        if new_status not in self.VALID_TRANSITIONS[current]:
            logger.warning(f"Invalid transition for step {key}: {current.value} → {new_status.value}")
            return False

        now = datetime.now(timezone.utc)
        record.status = new_status.value
        if new_status == StepStatus.RUNNING:
            record.attempts += 1
            record.started_at = now
        elif new_status == StepStatus.QUEUED:
            record.last_error = error
        else:
            record.completed_at = now
            if error:
                record.last_error = error
            self._cleanup()

        logger.debug(f"Step {key} ({record.kind}) transitioned: {current.value} → {new_status.value}")
        return True

    def get(self, key: int) -> Optional[StepRecord]:
        return self.steps.get(key)

    def _cleanup(self) -> None:
        terminal = sorted((r for r in self.steps.values() if r.is_terminal()), key=lambda r: r.key)
        excess = len(terminal) - self.keep_last_n
        for record in terminal[:max(0, excess)]:
            del self.steps[record.key]

    def get_summary(self) -> Dict[str, Any]:
        counts = {status.value: 0 for status in StepStatus}
        for record in self.steps.values():
            counts[record.status] += 1
        return {"tracked_steps": len(self.steps), "status_breakdown": counts}
