"""
Core: Trade Audit Log

Append-only JSONL record of every TradeAction the agent decided on.
Entries are never rewritten; the file is the durable trade history.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

from core.actions import TradeAction

logger = logging.getLogger(__name__)


class TradeLog:
    """
    Append-only trade history.

    Output format: JSONL (one TradeAction per line)
    """

    def __init__(self, audit_file: Optional[str] = None):
        """
        Initialize trade log.

        Args:
            audit_file: Path to log file (default: logs/trades.jsonl)
        """
        self.audit_file = Path(audit_file) if audit_file else Path("logs/trades.jsonl")
        self.audit_file.parent.mkdir(parents=True, exist_ok=True)
        self._entries: List[TradeAction] = self._read_all()
        logger.info(f"Initialized TradeLog at {self.audit_file} ({len(self._entries)} entries)")

    def _read_all(self) -> List[TradeAction]:
        if not self.audit_file.exists():
            return []
        entries = []
        with open(self.audit_file, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(TradeAction.from_dict(json.loads(line)))
                except (ValueError, KeyError) as e:
                    logger.warning(f"Skipping unreadable trade log line {line_no}: {e}")
        return entries

    def append(self, trade_action: TradeAction) -> int:
        """Append a trade and return its index."""
        with open(self.audit_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(trade_action.to_dict()) + "\n")
            f.flush()
        self._entries.append(trade_action)
        logger.info(f"Recorded trade #{len(self._entries) - 1}: {trade_action}")
        return len(self._entries) - 1

    def get(self, index: int) -> Optional[TradeAction]:
        """Entry at ``index``; the most recent trade is never returned."""
        if 0 <= index < len(self._entries) - 1:
            return self._entries[index]
        return None

    def last(self, length: int) -> List[TradeAction]:
        """The last ``length`` trades, oldest first."""
        if length <= 0:
            return []
        return list(self._entries[-length:])

    def __len__(self) -> int:
        return len(self._entries)
