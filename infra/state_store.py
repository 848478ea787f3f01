"""
Infrastructure: State Store

Persistent agent state with atomic writes (temp file + rename).

Holds the action queue, market state snapshot, the set-once system context
and the miner identity. The trade audit log lives in its own JSONL file.
"""

import copy
import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pathlib import Path
import logging

logger = logging.getLogger(__name__)


DEFAULT_STATE = {
    "action_queue": [],  # [{"key": int, "action": {...}}] ordered by key
    "next_action_key": 0,  # monotonically increasing, never reused
    "market": {},  # AgentState.to_dict()
    "context": None,  # system prompt, set once
    "miner": None,  # miner identity, set once
    "events": [],  # recent pipeline events
}

MAX_EVENTS = 100


class StateStore:
    """
    Persistent state storage using a JSON file.

    Features:
    - Atomic writes (temp file + rename)
    - In-memory cache so reads between writes do not touch disk
    - Bounded event history
    """

    def __init__(self, state_file: Optional[str] = None):
        """
        Initialize state store.

        Args:
            state_file: Path to state JSON file (default: $STATE_FILE or data/.agent_state.json)
        """
        if state_file:
            self.state_file = Path(state_file)
        else:
            self.state_file = Path(os.getenv("STATE_FILE", "data/.agent_state.json"))

        self.state_file.parent.mkdir(parents=True, exist_ok=True)

        self._state: Optional[Dict[str, Any]] = None
        logger.info(f"Initialized StateStore at {self.state_file}")

    def load(self) -> Dict[str, Any]:
        """
        Load state, reading the file on first access.

        Returns:
            State dict with defaults merged
        """
        if self._state is not None:
            return self._state

        if not self.state_file.exists():
            logger.debug("No state file found, using defaults")
            self._state = copy.deepcopy(DEFAULT_STATE)
            return self._state

        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            # A corrupt file must not be silently replaced: the queue may hold in-flight steps
            logger.error(f"Failed to load state from {self.state_file}: {e}")
            raise

        if not isinstance(data, dict):
            raise ValueError(f"Invalid state file format in {self.state_file}")

        self._state = {**copy.deepcopy(DEFAULT_STATE), **data}
        logger.debug("Loaded state from file")
        return self._state

    def save(self, state: Optional[Dict[str, Any]] = None) -> None:
        """
        Save state to file atomically.

        Args:
            state: State dict to save (default: the cached state)
        """
        if state is None:
            state = self.load()

        temp_fd, temp_path = tempfile.mkstemp(
            dir=self.state_file.parent,
            prefix=".state_",
            suffix=".json.tmp",
        )
        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                json.dump(state, f, indent=2)
            os.replace(temp_path, self.state_file)
        except Exception:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise

        self._state = state
        logger.debug("Saved state to file")

    def get(self, key: str, default: Any = None) -> Any:
        return self.load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.save({**self.load(), key: value})

    def set_once(self, key: str, value: Any) -> None:
        """Write ``key`` only if it has never been set."""
        current = self.get(key)
        if current is not None:
            raise ValueError(f"{key} is already set")
        self.set(key, value)

    def record_event(self, event: str, save: bool = True, **kwargs) -> None:
        """Append to the bounded event history."""
        state = self.load()
        events = state.setdefault("events", [])
        events.append({"at": datetime.now(timezone.utc).isoformat(), "event": event, **kwargs})
        if len(events) > MAX_EVENTS:
            state["events"] = events[-MAX_EVENTS:]
        if save:
            self.save(state)

    def reset(self) -> Dict[str, Any]:
        """Reset to defaults and persist."""
        state = copy.deepcopy(DEFAULT_STATE)
        self.save(state)
        logger.warning("State reset to defaults")
        return state


def create_state_store_from_config(cfg: Optional[Dict[str, Any]]) -> StateStore:
    cfg = cfg or {}
    path = os.getenv("STATE_FILE") or cfg.get("path")
    return StateStore(state_file=path)
