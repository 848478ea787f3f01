"""
Trading Cycle - the work behind each scheduled task.

Holds the agent's collaborators and exposes one coroutine per piece of work:
refreshing balances and pool snapshots, sampling quotes, taking a decision
and tuning the miner. The runner wraps each in a task guard and decides when
to re-arm it; none of the methods here touch the guard sets.

Read-only accessors for reporting live here as well.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from core.action_queue import ActionQueue
from core.actions import TradeAction
from core.audit_log import TradeLog
from core.decision import parse_trade_action
from core.exceptions import RemoteCallError, TradeValidationError
from core.gateway import LedgerClient, MinerClient, PoolClient
from core.market_data import PoolOverview, Quote
from core.risk import RiskEngine
from core.state import AgentState
from core.tasks import NANOS_PER_SECOND, TaskScheduler, TaskType
from core.tokens import Token, tradable_tokens
from infra.metrics import MetricsRecorder
from infra.state_store import StateStore

from ai.llm_client import random_seed
from ai.snapshot_builder import build_user_prompt

logger = logging.getLogger(__name__)

# Price history of this token gates decisions.
DECISION_GATE_TOKEN = Token.ALICE

SECONDS_PER_DAY = 86_400
MINER_BURN_DAYS = 7
MINER_ROUND_SECONDS = 240


@dataclass
class CadenceSettings:
    """Re-arm delays (seconds) from policy.yaml ``cadence`` section."""
    refresh_context_seconds: int = 3600
    take_decision_seconds: int = 14_400
    fetch_quotes_seconds: int = 14_400
    process_logic_idle_seconds: int = 240
    process_logic_retry_seconds: int = 5
    miner_refresh_seconds: int = 86_400

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]]) -> "CadenceSettings":
        cfg = cfg or {}
        return cls(**{k: v for k, v in cfg.items() if k in cls.__dataclass_fields__})


def derive_sell_zero_for_one(token: Token, snapshot: PoolOverview) -> Optional[bool]:
    """Selling ``token`` is zero-for-one when it is the pool's token0."""
    symbol = token.name.lower()
    if snapshot.token0_symbol.lower() == symbol:
        return True
    if snapshot.token1_symbol.lower() == symbol:
        return False
    return None


def miner_cycles_per_round(cycle_balance: int) -> int:
    """Spread the cycle balance over a week of fixed-length rounds."""
    burn_rate = cycle_balance // MINER_BURN_DAYS
    return (burn_rate // SECONDS_PER_DAY) * MINER_ROUND_SECONDS


class TradingCycle:
    """Handlers' shared context: state, collaborators and persistence."""

    def __init__(
        self,
        state: AgentState,
        store: StateStore,
        queue: ActionQueue,
        trade_log: TradeLog,
        ledger: LedgerClient,
        pool: PoolClient,
        miner: Optional[MinerClient],
        llm,
        scheduler: TaskScheduler,
        risk: RiskEngine,
        derive_direction_from_pool: bool = False,
        metrics: Optional[MetricsRecorder] = None,
    ):
        self.state = state
        self.store = store
        self.queue = queue
        self.trade_log = trade_log
        self.ledger = ledger
        self.pool = pool
        self.miner = miner
        self.llm = llm
        self.scheduler = scheduler
        self.risk = risk
        self.derive_direction_from_pool = derive_direction_from_pool
        self.metrics = metrics

    def persist_market(self) -> None:
        self.store.set("market", self.state.to_dict())

    # ------------------------------------------------------------------
    # Context refresh
    # ------------------------------------------------------------------

    async def refresh_balances(self) -> Dict[Token, int]:
        """Fetch every balance concurrently; failures keep the previous value."""
        tokens = list(Token)
        results = await asyncio.gather(
            *(self.ledger.balance_of(token.ledger_id) for token in tokens),
            return_exceptions=True,
        )
        updated = {}
        for token, result in zip(tokens, results):
            if isinstance(result, RemoteCallError):
                logger.warning(f"[{TaskType.REFRESH_CONTEXT}] Balance of {token} unavailable: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            self.state.balances[token] = int(result)
            updated[token] = int(result)
            if self.metrics:
                self.metrics.record_balance(token.name, int(result))
        return updated

    async def refresh_prices(self) -> Dict[Token, PoolOverview]:
        """Fetch a pool snapshot for every tradable token concurrently."""
        tokens = list(tradable_tokens())
        results = await asyncio.gather(
            *(self.pool.get_pool(token.pool_id) for token in tokens),
            return_exceptions=True,
        )
        updated = {}
        for token, result in zip(tokens, results):
            if isinstance(result, RemoteCallError):
                logger.warning(f"[{TaskType.REFRESH_CONTEXT}] Pool snapshot of {token} unavailable: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            self.state.insert_price(token, result)
            updated[token] = result
            if self.derive_direction_from_pool:
                self._update_direction(token, result)
        return updated

    def _update_direction(self, token: Token, snapshot: PoolOverview) -> None:
        derived = derive_sell_zero_for_one(token, snapshot)
        if derived is None:
            logger.warning(
                f"{token} not found in pool {snapshot.pool} "
                f"({snapshot.token0_symbol}/{snapshot.token1_symbol}); keeping direction"
            )
            return
        if self.state.sell_zero_for_one.get(token) != derived:
            logger.info(f"Sell direction of {token} is now zero_for_one={derived}")
        self.state.sell_zero_for_one[token] = derived

    async def refresh_context(self) -> None:
        await self.refresh_balances()
        await self.refresh_prices()
        self.persist_market()

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def prune_quotes(self) -> int:
        retention = self.risk.settings.quote_retention_days * SECONDS_PER_DAY * NANOS_PER_SECOND
        removed = self.state.suppress_old_quotes(self.scheduler.now(), retention)
        if removed:
            logger.debug(f"[{TaskType.FETCH_QUOTES}] Pruned {removed} stale quote(s)")
        return removed

    async def fetch_quotes(self) -> Dict[Token, Quote]:
        """
        Quote the probe amount in the sell direction for each token whose last
        quote is stale. Any failure schedules an immediate retry.
        """
        settings = self.risk.settings
        now = self.scheduler.now()
        staleness = settings.quote_staleness_seconds * NANOS_PER_SECOND
        tokens = [t for t in tradable_tokens() if not self.state.is_quote_too_early(t, now, staleness)]
        if not tokens:
            logger.debug(f"[{TaskType.FETCH_QUOTES}] All quotes are fresh")
            return {}

        results = await asyncio.gather(
            *(
                self.pool.quote(token.pool_id, settings.quote_probe_amount, self.state.sell_zero_for_one[token])
                for token in tokens
            ),
            return_exceptions=True,
        )

        recorded = {}
        retry = False
        for token, result in zip(tokens, results):
            if isinstance(result, RemoteCallError):
                logger.warning(f"[{TaskType.FETCH_QUOTES}] Quote for {token} failed: {result}")
                retry = True
                continue
            if isinstance(result, BaseException):
                raise result
            quote = Quote(value=int(result), ts=self.scheduler.now())
            self.state.insert_quote(token, quote)
            recorded[token] = quote
            logger.debug(f"[{TaskType.FETCH_QUOTES}] {token}: {quote.value}")

        if retry:
            self.scheduler.schedule_now(TaskType.FETCH_QUOTES)
        self.persist_market()
        return recorded

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    @property
    def system_context(self) -> Optional[str]:
        return self.store.get("context")

    def set_system_context(self, context: str) -> None:
        """The system context can only be written once."""
        self.store.set_once("context", context)

    async def take_decision(self) -> TradeAction:
        """
        Ask the model for a verdict and queue the resulting trade.

        Raises:
            TradeValidationError: not enough history, no system context, or
                an unusable verdict
            RemoteCallError: the model could not be reached
        """
        samples = len(self.state.prices[DECISION_GATE_TOKEN])
        if samples < self.risk.settings.min_price_samples:
            raise TradeValidationError("Not yet ready to make a decision, not enough price history")
        context = self.system_context
        if not context:
            raise TradeValidationError("Not yet ready to make a decision, no system context")

        seed = random_seed()
        prompt = build_user_prompt(self.state)
        verdict = await self.llm.generate_text(context, prompt, seed)

        trade = parse_trade_action(verdict, self.risk, now=self.scheduler.now())
        self.trade_log.append(trade)
        self.queue.push_all(trade.actions(self.state.sell_zero_for_one))
        self.store.record_event("trade_queued", side=trade.side.value, token=trade.token.name, amount=trade.amount)
        self.scheduler.schedule_now(TaskType.PROCESS_LOGIC)
        if self.metrics:
            self.metrics.record_queue_length(len(self.queue))
        return trade

    # ------------------------------------------------------------------
    # Miner
    # ------------------------------------------------------------------

    @property
    def miner_id(self) -> Optional[str]:
        return self.store.get("miner")

    def set_miner(self, miner_id: str) -> None:
        self.store.set_once("miner", miner_id)

    async def refresh_miner_settings(self) -> int:
        """
        Returns:
            The new per-round cycle cap

        Raises:
            RuntimeError: no miner has been spawned
            RemoteCallError: the miner could not be reached
        """
        miner_id = self.miner_id
        if miner_id is None or self.miner is None:
            raise RuntimeError("miner not spawned")
        stats = await self.miner.get_statistics(miner_id)
        cycles_per_round = miner_cycles_per_round(stats.cycle_balance)
        await self.miner.update_miner_settings(miner_id, cycles_per_round)
        return cycles_per_round

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    def get_balances(self) -> Dict[str, int]:
        return {token.name: self.state.get_balance(token) for token in Token}

    def get_price_history(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            token.name: [snapshot.to_dict() for snapshot in tracker.get_prices()]
            for token, tracker in sorted(self.state.prices.items())
        }

    def get_latest_quotes(self) -> Dict[str, Optional[Dict[str, int]]]:
        result = {}
        for token in tradable_tokens():
            quote = self.state.maybe_get_last_quote(token)
            result[token.name] = quote.to_dict() if quote else None
        return result

    def get_trade_actions(self, length: int = 10) -> List[Dict[str, Any]]:
        return [trade.to_dict() for trade in self.trade_log.last(length)]

    def get_queue(self) -> List[Dict[str, Any]]:
        return [{"key": item.key, **item.action.to_dict()} for item in self.queue.items()]

    def get_portfolio(self) -> Dict[str, Any]:
        return {
            "portfolio_value": self.risk.portfolio_value(),
            "risk": self.risk.snapshot(),
            "sell_zero_for_one": {t.name: flag for t, flag in self.state.sell_zero_for_one.items()},
        }
