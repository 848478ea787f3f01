"""
Tests for the durable action queue and the settlement drain step.
"""

import asyncio

import pytest

from core.action_queue import ActionQueue
from core.actions import ApproveAction, DepositAction, SwapAction, WithdrawAction
from core.exceptions import InsufficientFunds, RemoteCallError
from core.execution import ExecutionEngine
from core.risk import RiskSettings
from core.step_state import StepStateMachine, StepStatus
from core.tasks import TaskScheduler, TaskType
from core.tokens import ALICE_LEDGER, ALICE_POOL, BOB_POOL, ICP_LEDGER, Token
from infra.state_store import StateStore


def _engine(store, gateway, clock, metrics=None, mode="LIVE"):
    queue = ActionQueue(store)
    engine = ExecutionEngine(
        queue=queue,
        ledger=gateway,
        pool=gateway,
        scheduler=TaskScheduler(clock),
        steps=StepStateMachine(),
        metrics=metrics,
        mode=mode,
    )
    return engine, queue


class TestActionQueue:
    """FIFO with monotonically increasing keys"""

    def test_push_assigns_increasing_keys(self, store):
        queue = ActionQueue(store)
        keys = queue.push_all([
            ApproveAction(pool_id=ALICE_POOL, amount=1, token=Token.ICP),
            DepositAction(pool_id=ALICE_POOL, ledger_id=ICP_LEDGER, amount=1),
        ])
        assert keys == [0, 1]
        assert queue.push(WithdrawAction(pool_id=ALICE_POOL, token=Token.ALICE, amount=1)) == 2
        assert len(queue) == 3

    def test_keys_never_reused_after_drain(self, store):
        queue = ActionQueue(store)
        queue.push(ApproveAction(pool_id=ALICE_POOL, amount=1, token=Token.ICP))
        queue.pop_front()
        assert queue.push(ApproveAction(pool_id=ALICE_POOL, amount=2, token=Token.ICP)) == 1

    def test_next_does_not_remove(self, store):
        queue = ActionQueue(store)
        action = ApproveAction(pool_id=BOB_POOL, amount=5, token=Token.BOB)
        queue.push(action)
        assert queue.next().action == action
        assert queue.next().action == action
        assert len(queue) == 1

    def test_pop_front_checks_expected_key(self, store):
        queue = ActionQueue(store)
        queue.push_all([
            ApproveAction(pool_id=BOB_POOL, amount=5, token=Token.BOB),
            ApproveAction(pool_id=BOB_POOL, amount=6, token=Token.BOB),
        ])
        assert queue.pop_front(expected_key=1) is None
        assert len(queue) == 2
        assert queue.pop_front(expected_key=0).key == 0
        assert queue.next().key == 1

    def test_pop_on_empty_queue(self, store):
        assert ActionQueue(store).pop_front() is None

    def test_failed_save_leaves_queue_untouched(self, tmp_path, monkeypatch):
        path = str(tmp_path / "state.json")
        store = StateStore(path)
        queue = ActionQueue(store)
        queue.push(ApproveAction(pool_id=ALICE_POOL, amount=1, token=Token.ICP))

        def disk_full(*_):
            raise OSError("No space left on device")

        monkeypatch.setattr(store, "save", disk_full)
        with pytest.raises(OSError):
            queue.pop_front(expected_key=0)
        with pytest.raises(OSError):
            queue.push(ApproveAction(pool_id=BOB_POOL, amount=2, token=Token.BOB))

        assert [item.key for item in queue.items()] == [0]
        assert store.get("next_action_key") == 1
        assert len(ActionQueue(StateStore(path))) == 1

    def test_queue_survives_restart(self, tmp_path):
        path = str(tmp_path / "state.json")
        ActionQueue(StateStore(path)).push(WithdrawAction(pool_id=ALICE_POOL, token=Token.ICP, amount=9))

        restored = ActionQueue(StateStore(path))
        assert [item.action for item in restored.items()] == [
            WithdrawAction(pool_id=ALICE_POOL, token=Token.ICP, amount=9)
        ]


class TestDrainStep:
    """process_logic executes only the queue head"""

    def test_empty_queue_reports_no_work(self, store, gateway, clock):
        engine, _ = _engine(store, gateway, clock)
        assert asyncio.run(engine.process_logic()) is False
        assert gateway.calls == []

    def test_three_successful_steps_drain_in_order(self, store, gateway, clock):
        engine, queue = _engine(store, gateway, clock)
        queue.push_all([
            ApproveAction(pool_id=ALICE_POOL, amount=1_000_000, token=Token.ICP),
            DepositAction(pool_id=ALICE_POOL, ledger_id=ICP_LEDGER, amount=1_000_000),
            ApproveAction(pool_id=BOB_POOL, amount=2_000_000, token=Token.ICP),
        ])

        for remaining in (2, 1, 0):
            assert asyncio.run(engine.process_logic()) is True
            assert len(queue) == remaining

        assert [name for name, _ in gateway.calls] == ["approve", "deposit_from", "approve"]
        assert asyncio.run(engine.process_logic()) is False

    def test_failure_leaves_head_in_place(self, store, gateway, clock):
        engine, queue = _engine(store, gateway, clock)
        queue.push(ApproveAction(pool_id=ALICE_POOL, amount=1_000_000, token=Token.ICP))
        gateway.fail["approve"] = 1

        with pytest.raises(RemoteCallError):
            asyncio.run(engine.process_logic())
        assert len(queue) == 1
        assert engine.steps.get(0).status == StepStatus.QUEUED.value
        assert engine.steps.get(0).last_error is not None

        assert asyncio.run(engine.process_logic()) is True
        assert len(queue) == 0
        assert engine.steps.get(0).attempts == 2
        assert engine.steps.get(0).status == StepStatus.SETTLED.value

    def test_insufficient_funds_drops_head(self, store, gateway, clock, metrics):
        """A deposit smaller than two fees can never succeed"""
        engine, queue = _engine(store, gateway, clock, metrics=metrics)
        queue.push_all([
            DepositAction(pool_id=ALICE_POOL, ledger_id=ALICE_LEDGER, amount=150_000_000),
            ApproveAction(pool_id=BOB_POOL, amount=1, token=Token.BOB),
        ])

        assert asyncio.run(engine.process_logic()) is True

        assert queue.next().key == 1
        assert gateway.calls_to("deposit_from") == []
        assert engine.steps.get(0).status == StepStatus.DROPPED.value
        assert metrics.dropped_actions == 1
        assert metrics.action_results == {"deposit:dropped": 1}


class TestStepSemantics:
    """Per-action fee and slippage arithmetic"""

    def test_approve_forwards_amount(self, store, gateway, clock):
        engine, _ = _engine(store, gateway, clock)
        asyncio.run(engine.execute_action(ApproveAction(pool_id=BOB_POOL, amount=77, token=Token.BOB)))
        assert gateway.calls_to("approve") == [(BOB_POOL, 77, Token.BOB.ledger_id)]

    def test_deposit_subtracts_two_fees(self, store, gateway, clock):
        engine, _ = _engine(store, gateway, clock)
        asyncio.run(engine.execute_action(
            DepositAction(pool_id=ALICE_POOL, ledger_id=ICP_LEDGER, amount=1_000_000_000)
        ))
        assert gateway.calls_to("deposit_from") == [(ALICE_POOL, 999_980_000, 10_000, ICP_LEDGER)]

    def test_swap_quotes_floor_and_enqueues_withdraw(self, store, gateway, clock):
        engine, queue = _engine(store, gateway, clock)
        gateway.quote_out = 1_000_000
        gateway.swap_out = 950_000
        queue.push(SwapAction(
            pool_id=ALICE_POOL, from_token=Token.ICP, to_token=Token.ALICE,
            amount=1_000_000_000, zero_for_one=False,
        ))

        assert asyncio.run(engine.process_logic()) is True

        assert gateway.calls_to("quote") == [(ALICE_POOL, 999_980_000, False)]
        assert gateway.calls_to("swap") == [(ALICE_POOL, 999_980_000, 900_000, False)]
        assert [item.action for item in queue.items()] == [
            WithdrawAction(pool_id=ALICE_POOL, token=Token.ALICE, amount=950_000)
        ]
        swap_step = engine.steps.get(0)
        assert swap_step.follow_up_keys == [1]
        assert engine.steps.get(1).parent_key == 0

    def test_swap_failure_keeps_head_and_adds_nothing(self, store, gateway, clock):
        engine, queue = _engine(store, gateway, clock)
        gateway.fail["swap"] = 1
        queue.push(SwapAction(
            pool_id=BOB_POOL, from_token=Token.BOB, to_token=Token.ICP,
            amount=100_000_000, zero_for_one=True,
        ))

        with pytest.raises(RemoteCallError):
            asyncio.run(engine.process_logic())
        assert len(queue) == 1
        assert queue.next().action.kind.value == "swap"

    def test_withdraw_subtracts_one_fee_and_refreshes(self, store, gateway, clock):
        engine, queue = _engine(store, gateway, clock)
        queue.push(WithdrawAction(pool_id=BOB_POOL, token=Token.ICP, amount=1_000_000))

        assert asyncio.run(engine.process_logic()) is True

        assert gateway.calls_to("withdraw") == [(BOB_POOL, 990_000, 10_000, ICP_LEDGER)]
        ready = engine.scheduler.pop_if_ready()
        assert ready.task_type is TaskType.REFRESH_CONTEXT

    def test_withdraw_below_fee_raises(self, store, gateway, clock):
        engine, _ = _engine(store, gateway, clock)
        with pytest.raises(InsufficientFunds):
            asyncio.run(engine.execute_action(WithdrawAction(pool_id=ALICE_POOL, token=Token.ALICE, amount=10)))

    def test_dry_run_never_writes(self, store, gateway, clock):
        engine, queue = _engine(store, gateway, clock, mode="DRY_RUN")
        gateway.quote_out = 1_000_000
        queue.push_all([
            ApproveAction(pool_id=ALICE_POOL, amount=10_000_000_000, token=Token.ALICE),
            DepositAction(pool_id=ALICE_POOL, ledger_id=ALICE_LEDGER, amount=10_000_000_000),
            SwapAction(
                pool_id=ALICE_POOL, from_token=Token.ALICE, to_token=Token.ICP,
                amount=10_000_000_000, zero_for_one=True,
            ),
        ])

        while asyncio.run(engine.process_logic()):
            pass

        assert [name for name, _ in gateway.calls] == ["quote"]
        assert len(queue) == 0

    @pytest.mark.parametrize("tolerance, floor", [(0.10, 900), (0.15, 850), (0.3, 700)])
    def test_slippage_floor_uses_configured_tolerance(self, store, gateway, clock, tolerance, floor):
        engine = ExecutionEngine(
            queue=ActionQueue(store),
            ledger=gateway,
            pool=gateway,
            scheduler=TaskScheduler(clock),
            settings=RiskSettings(slippage_tolerance=tolerance),
        )
        assert engine.min_output(1000) == floor

    def test_unknown_mode_rejected(self, store, gateway, clock):
        with pytest.raises(ValueError, match="Unknown execution mode"):
            _engine(store, gateway, clock, mode="PAPER")
