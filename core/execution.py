"""
Core: Execution Engine

Drains the durable action queue one step at a time against the pool and
ledger services.

Only the head of the queue is ever executed. A step that succeeds is popped
(after its follow-ups are queued); a step that fails stays at the head for the
next attempt. A step whose fees exceed its amount can never succeed, so it is
dropped instead of blocking the pipeline forever.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from core.action_queue import ActionQueue, QueuedAction
from core.actions import (
    Action,
    ApproveAction,
    DepositAction,
    SwapAction,
    WithdrawAction,
)
from core.exceptions import InsufficientFunds, checked_sub
from core.gateway import LedgerClient, PoolClient
from core.risk import BPS, RiskSettings
from core.step_state import StepStateMachine, StepStatus
from core.tasks import TaskScheduler, TaskType
from core.tokens import fee_for_ledger
from infra.metrics import MetricsRecorder

logger = logging.getLogger(__name__)


@dataclass
class StepOutcome:
    """What a settled step asks the pipeline to do next."""
    follow_ups: List[Action] = field(default_factory=list)
    refresh_context: bool = False


class ExecutionEngine:
    """
    Settlement step executor.

    In DRY_RUN mode nothing is written to a ledger or pool: approvals,
    deposits and withdrawals are logged, and a swap "realises" its quoted
    minimum output so the pipeline still grows and drains as it would live.
    """

    def __init__(
        self,
        queue: ActionQueue,
        ledger: LedgerClient,
        pool: PoolClient,
        scheduler: TaskScheduler,
        steps: Optional[StepStateMachine] = None,
        metrics: Optional[MetricsRecorder] = None,
        settings: Optional[RiskSettings] = None,
        mode: str = "DRY_RUN",
    ):
        self.queue = queue
        self.ledger = ledger
        self.pool = pool
        self.scheduler = scheduler
        self.steps = steps or StepStateMachine()
        self.metrics = metrics
        self.settings = settings or RiskSettings()
        self.mode = mode.upper()
        if self.mode not in ("DRY_RUN", "LIVE"):
            raise ValueError(f"Unknown execution mode: {mode}")
        logger.info(f"Initialized ExecutionEngine (mode={self.mode})")

    @property
    def dry_run(self) -> bool:
        return self.mode == "DRY_RUN"

    def min_output(self, quoted: int) -> int:
        """Swap floor: the quote less the slippage tolerance (integer arithmetic)."""
        return checked_sub(quoted, quoted * self.settings.slippage_bps // BPS, "slippage floor")

    # ------------------------------------------------------------------
    # Single steps
    # ------------------------------------------------------------------

    async def execute_action(self, action: Action) -> StepOutcome:
        """
        Run one settlement step.

        Raises:
            RemoteCallError: the service rejected the call or was unreachable
            InsufficientFunds: fees exceed the step's amount
        """
        if isinstance(action, ApproveAction):
            return await self._approve(action)
        if isinstance(action, DepositAction):
            return await self._deposit(action)
        if isinstance(action, SwapAction):
            return await self._swap(action)
        if isinstance(action, WithdrawAction):
            return await self._withdraw(action)
        raise TypeError(f"Unsupported action: {action!r}")

    async def _approve(self, action: ApproveAction) -> StepOutcome:
        if self.dry_run:
            logger.info(f"[DRY_RUN] Would approve {action.pool_id} for {action.amount} {action.token}")
            return StepOutcome()
        block = await self.ledger.approve(action.pool_id, action.amount, action.token.ledger_id)
        logger.info(f"Approved {action.pool_id} for {action.amount} {action.token} (block {block})")
        return StepOutcome()

    async def _deposit(self, action: DepositAction) -> StepOutcome:
        fee = fee_for_ledger(action.ledger_id)
        amount = checked_sub(action.amount, 2 * fee, f"deposit into {action.pool_id}")
        if self.dry_run:
            logger.info(f"[DRY_RUN] Would deposit {amount} (fee {fee}) from {action.ledger_id} into {action.pool_id}")
            return StepOutcome()
        await self.pool.deposit_from(action.pool_id, amount, fee, action.ledger_id)
        logger.info(f"Deposited {amount} from {action.ledger_id} into {action.pool_id}")
        return StepOutcome()

    async def _swap(self, action: SwapAction) -> StepOutcome:
        # Fees are taken from the planned amount, not from what the deposit netted.
        amount_in = checked_sub(action.amount, 2 * action.from_token.fee, f"swap {action.from_token}->{action.to_token}")
        quoted = await self.pool.quote(action.pool_id, amount_in, action.zero_for_one)
        floor = self.min_output(quoted)

        if self.dry_run:
            logger.info(
                f"[DRY_RUN] Would swap {amount_in} {action.from_token} -> {action.to_token} "
                f"(quoted {quoted}, floor {floor})"
            )
            amount_out = floor
        else:
            amount_out = await self.pool.swap(action.pool_id, amount_in, floor, action.zero_for_one)
            logger.info(f"Swapped {amount_in} {action.from_token} -> {amount_out} {action.to_token} (floor {floor})")

        withdraw = WithdrawAction(pool_id=action.pool_id, token=action.to_token, amount=amount_out)
        return StepOutcome(follow_ups=[withdraw])

    async def _withdraw(self, action: WithdrawAction) -> StepOutcome:
        fee = action.token.fee
        amount = checked_sub(action.amount, fee, f"withdraw {action.token} from {action.pool_id}")
        if self.dry_run:
            logger.info(f"[DRY_RUN] Would withdraw {amount} {action.token} from {action.pool_id}")
        else:
            await self.pool.withdraw(action.pool_id, amount, fee, action.token.ledger_id)
            logger.info(f"Withdrew {amount} {action.token} from {action.pool_id}")
        return StepOutcome(refresh_context=True)

    # ------------------------------------------------------------------
    # Drain step
    # ------------------------------------------------------------------

    async def process_logic(self) -> bool:
        """
        Execute the head of the queue.

        Returns:
            True if a step was consumed (settled or dropped) and more work may
            remain, False if the queue was empty.

        Raises:
            RemoteCallError: the head step failed and stays queued
        """
        head = self.queue.next()
        if head is None:
            self._record_queue_length()
            return False

        kind = head.action.kind.value
        self.steps.register(head.key, kind, head.action.amount)
        self.steps.transition(head.key, StepStatus.RUNNING)

        try:
            outcome = await self.execute_action(head.action)
        except InsufficientFunds as e:
            self._drop(head, e)
            return True
        except Exception as e:
            self.steps.transition(head.key, StepStatus.QUEUED, error=str(e))
            if self.metrics:
                self.metrics.record_action(kind, "failed")
            raise

        self._settle(head, outcome)
        return True

    def _settle(self, head: QueuedAction, outcome: StepOutcome) -> None:
        # Follow-ups are durable before the head disappears.
        keys = self.queue.push_all(outcome.follow_ups) if outcome.follow_ups else []
        popped = self.queue.pop_front(expected_key=head.key)
        if popped is None:
            logger.warning(f"Step {head.key} settled but was no longer at the queue head")

        for key, follow_up in zip(keys, outcome.follow_ups):
            self.steps.register(key, follow_up.kind.value, follow_up.amount, parent_key=head.key)
        self.steps.transition(head.key, StepStatus.SETTLED)

        if outcome.refresh_context:
            self.scheduler.schedule_now(TaskType.REFRESH_CONTEXT)
        if self.metrics:
            self.metrics.record_action(head.action.kind.value, "settled")
        self._record_queue_length()

    def _drop(self, head: QueuedAction, error: InsufficientFunds) -> None:
        kind = head.action.kind.value
        popped = self.queue.pop_front(expected_key=head.key)
        if popped is None:
            logger.warning(f"Step {head.key} could not be dropped: no longer at the queue head")
        self.steps.transition(head.key, StepStatus.DROPPED, error=str(error))
        logger.error(f"[{TaskType.PROCESS_LOGIC}] Dropped step {head.key} ({kind}): {error}")
        if self.metrics:
            self.metrics.record_action(kind, "dropped")
            self.metrics.record_dropped_action(kind)
        self._record_queue_length()

    def _record_queue_length(self) -> None:
        if self.metrics:
            self.metrics.record_queue_length(len(self.queue))
