"""
Tests for the JSON state store and the trade audit log.
"""

import json

import pytest

from core.actions import TradeAction
from core.audit_log import TradeLog
from core.tokens import Token
from infra.state_store import MAX_EVENTS, StateStore, create_state_store_from_config


class TestStateStore:
    def test_defaults_when_missing(self, tmp_path):
        store = StateStore(str(tmp_path / "nested" / "state.json"))
        state = store.load()
        assert state["action_queue"] == []
        assert state["next_action_key"] == 0
        assert state["context"] is None

    def test_save_is_durable(self, tmp_path):
        path = tmp_path / "state.json"
        StateStore(str(path)).set("miner", "miner-1")

        assert json.loads(path.read_text())["miner"] == "miner-1"
        assert StateStore(str(path)).get("miner") == "miner-1"
        assert not list(tmp_path.glob(".state_*.json.tmp"))

    def test_set_once(self, store):
        store.set_once("context", "hello")
        with pytest.raises(ValueError, match="already set"):
            store.set_once("context", "again")

    def test_corrupt_file_is_not_replaced(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        with pytest.raises(ValueError):
            StateStore(str(path)).load()
        assert path.read_text() == "{not json"

    def test_event_history_is_bounded(self, store):
        for i in range(MAX_EVENTS + 5):
            store.record_event("tick", save=False, n=i)
        events = store.get("events")
        assert len(events) == MAX_EVENTS
        assert events[-1]["n"] == MAX_EVENTS + 4

    def test_env_overrides_config_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STATE_FILE", str(tmp_path / "env.json"))
        store = create_state_store_from_config({"path": str(tmp_path / "cfg.json")})
        assert store.state_file == tmp_path / "env.json"


class TestTradeLog:
    def test_append_and_last(self, tmp_path):
        log = TradeLog(str(tmp_path / "trades.jsonl"))
        first = TradeAction.buy(Token.ALICE, 1, ts=1)
        second = TradeAction.sell(Token.BOB, 2, ts=2)

        assert log.append(first) == 0
        assert log.append(second) == 1
        assert log.last(5) == [first, second]
        assert log.last(1) == [second]
        assert log.last(0) == []

    def test_get_never_returns_most_recent(self, tmp_path):
        log = TradeLog(str(tmp_path / "trades.jsonl"))
        first = TradeAction.buy(Token.ALICE, 1, ts=1)
        log.append(first)
        assert log.get(0) is None
        log.append(TradeAction.sell(Token.BOB, 2, ts=2))
        assert log.get(0) == first
        assert log.get(1) is None

    def test_history_reloaded(self, tmp_path):
        path = str(tmp_path / "trades.jsonl")
        TradeLog(path).append(TradeAction.sell(Token.ALICE, 5, ts=3))
        assert len(TradeLog(path)) == 1

    def test_unreadable_lines_skipped(self, tmp_path):
        path = tmp_path / "trades.jsonl"
        path.write_text('{"side": "buy", "token": "BOB", "amount": 1, "ts": 1}\nnot-json\n')
        assert len(TradeLog(str(path))) == 1
