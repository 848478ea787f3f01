"""
Durable FIFO of settlement steps.

Every pushed action gets a strictly increasing key. Only the lowest key is
ever read or removed, so all pending steps execute in one global order and a
later trade cannot start before an earlier one has drained.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from core.actions import Action, action_from_dict
from infra.state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueuedAction:
    key: int
    action: Action


class ActionQueue:
    """Action queue persisted in the ``action_queue`` section of the state store."""

    def __init__(self, store: StateStore):
        self._store = store

    def _entries(self) -> List[dict]:
        return self._store.load().setdefault("action_queue", [])

    def next(self) -> Optional[QueuedAction]:
        """Head of the queue without removing it."""
        entries = self._entries()
        if not entries:
            return None
        head = entries[0]
        return QueuedAction(key=int(head["key"]), action=action_from_dict(head["action"]))

    def pop_front(self, expected_key: Optional[int] = None) -> Optional[QueuedAction]:
        """
        Remove the head.

        With ``expected_key`` the head is only removed if it is still that
        entry, so a caller that awaited in between cannot pop someone else's step.
        """
        head = self.next()
        if head is None:
            return None
        if expected_key is not None and head.key != expected_key:
            logger.warning(f"Queue head moved (expected key {expected_key}, found {head.key}); not popping")
            return None
        # the cached state only changes once the new queue is on disk
        state = self._store.load()
        self._store.save({**state, "action_queue": state["action_queue"][1:]})
        return head

    def push(self, action: Action) -> int:
        return self.push_all([action])[0]

    def push_all(self, actions: Iterable[Action]) -> List[int]:
        """Append actions in order; returns the assigned keys."""
        state = self._store.load()
        entries = list(state.get("action_queue") or [])
        next_key = int(state.get("next_action_key", 0))
        if entries:
            next_key = max(next_key, int(entries[-1]["key"]) + 1)
        keys = []
        for action in actions:
            entries.append({"key": next_key, "action": action.to_dict()})
            keys.append(next_key)
            next_key += 1
        self._store.save({**state, "action_queue": entries, "next_action_key": next_key})
        if keys:
            logger.debug(f"Queued {len(keys)} action(s) with keys {keys}")
        return keys

    def items(self) -> List[QueuedAction]:
        return [QueuedAction(key=int(e["key"]), action=action_from_dict(e["action"])) for e in self._entries()]

    def __len__(self) -> int:
        return len(self._entries())
