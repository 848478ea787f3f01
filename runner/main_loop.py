"""
Pool Agent Runner: Main Loop

Drives the agent from a single periodic tick.
Pattern: cooperative asyncio loop + self re-arming handlers

Flow:
1. Validate and load config (app.yaml, policy.yaml)
2. Restore durable state (market snapshot, action queue, trade log)
3. Seed the boot schedule
4. Every tick, pop whichever scheduled task is due and spawn its handler
   behind a per-type task guard
5. Each handler re-arms its own next run

Handlers run as asyncio tasks on one thread; they only interleave while
awaiting a remote call.
"""

import asyncio
import signal
import yaml
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from pathlib import Path
import logging

from core.action_queue import ActionQueue
from core.audit_log import TradeLog
from core.exceptions import RemoteCallError, TradeValidationError
from core.execution import ExecutionEngine
from core.gateway import HttpGateway
from core.guard import TaskGuard
from core.risk import RiskEngine, RiskSettings
from core.state import AgentState
from core.step_state import StepStateMachine
from core.tasks import TaskScheduler, TaskType
from core.tokens import Token
from core.trading_cycle import CadenceSettings, TradingCycle
from infra.healthcheck import StatusServer
from infra.metrics import MetricsRecorder
from infra.state_store import create_state_store_from_config
from ai.llm_client import create_decision_client

logger = logging.getLogger(__name__)


class AgentLoop:
    """
    Main agent loop orchestrator.

    Responsibilities:
    - Load config
    - Wire core modules
    - Dispatch due tasks each tick
    - Re-arm handlers on every exit path
    - Serve metrics and status endpoints
    """

    def __init__(
        self,
        config_dir: str = "config",
        gateway=None,
        llm=None,
        clock: Optional[Callable[[], int]] = None,
        configure_logging: bool = True,
    ):
        self.config_dir = Path(config_dir)
        from tools.config_validator import validate_all_configs
        validation_errors = validate_all_configs(config_dir)
        if validation_errors:
            logger.error("=" * 80)
            logger.error("CONFIGURATION VALIDATION FAILED")
            logger.error("=" * 80)
            for idx, error in enumerate(validation_errors, start=1):
                lines = str(error).splitlines()
                if not lines:
                    continue
                logger.error(f"{idx:>2}. {lines[0]}")
            logger.error("=" * 80)
            raise ValueError(f"Invalid configuration: {len(validation_errors)} error(s) found")

        # Load configs
        self.app_config = self._load_yaml("app.yaml")
        self.policy_config = self._load_yaml("policy.yaml")

        self.mode = (self.app_config.get("app", {}) or {}).get("mode", "DRY_RUN").upper()
        self.tick_seconds = float((self.app_config.get("loop", {}) or {}).get("tick_seconds", 1.0))

        if configure_logging:
            self._setup_logging(self.app_config.get("logging", {}) or {})
        logger.info(f"Starting pool agent in mode={self.mode}")

        # Policy
        self.risk_settings = RiskSettings.from_config(self.policy_config.get("risk"))
        self.cadence = CadenceSettings.from_config(self.policy_config.get("cadence"))
        pools_cfg = self.policy_config.get("pools", {}) or {}

        # Durable state
        state_cfg = self.app_config.get("state", {}) or {}
        self.state_store = create_state_store_from_config(state_cfg)
        self.state = AgentState.from_dict(
            self.state_store.get("market"),
            history_capacity=self.risk_settings.price_history_capacity,
        )
        self._apply_direction_overrides(self.policy_config.get("tokens", {}) or {})
        self.trade_log = TradeLog(state_cfg.get("trade_log_path"))
        self.queue = ActionQueue(self.state_store)

        # Monitoring
        self.monitoring_config = self.app_config.get("monitoring", {}) or {}
        self.metrics = MetricsRecorder(
            enabled=bool(self.monitoring_config.get("metrics_enabled", False)),
            port=int(self.monitoring_config.get("metrics_port", 9100)),
        )
        self.status_server: Optional[StatusServer] = None

        # Collaborators
        if gateway is None:
            gw_cfg = self.app_config.get("gateway", {}) or {}
            gateway = HttpGateway(
                base_url=gw_cfg["base_url"],
                account=gw_cfg["account"],
                timeout_seconds=float(gw_cfg.get("timeout_seconds", 20.0)),
                max_retries=int(gw_cfg.get("max_retries", 3)),
            )
        self.gateway = gateway

        llm_cfg = self.app_config.get("llm", {}) or {}
        if llm is None:
            llm = create_decision_client(
                provider=llm_cfg.get("provider", "xai"),
                model=llm_cfg.get("model"),
                base_url=llm_cfg.get("base_url"),
                timeout_s=float(llm_cfg.get("timeout_seconds", 30.0)),
                mock=bool(llm_cfg.get("mock", False)),
            )
        self.llm = llm

        # Core
        self.scheduler = TaskScheduler(clock)
        self.steps = StepStateMachine()
        self.risk = RiskEngine(self.state, self.risk_settings)
        self.engine = ExecutionEngine(
            queue=self.queue,
            ledger=self.gateway,
            pool=self.gateway,
            scheduler=self.scheduler,
            steps=self.steps,
            metrics=self.metrics,
            settings=self.risk_settings,
            mode=self.mode,
        )
        self.cycle = TradingCycle(
            state=self.state,
            store=self.state_store,
            queue=self.queue,
            trade_log=self.trade_log,
            ledger=self.gateway,
            pool=self.gateway,
            miner=self.gateway,
            llm=self.llm,
            scheduler=self.scheduler,
            risk=self.risk,
            derive_direction_from_pool=bool(pools_cfg.get("derive_direction_from_pool", False)),
            metrics=self.metrics,
        )

        context = llm_cfg.get("system_context")
        if context and self.cycle.system_context is None:
            self.cycle.set_system_context(context)

        self._handlers: Dict[TaskType, Callable[[], Awaitable[None]]] = {
            TaskType.REFRESH_CONTEXT: self._handle_refresh_context,
            TaskType.TAKE_DECISION: self._handle_take_decision,
            TaskType.PROCESS_LOGIC: self._handle_process_logic,
            TaskType.FETCH_QUOTES: self._handle_fetch_quotes,
            TaskType.REFRESH_MINER_BURN_RATE: self._handle_refresh_miner_burn_rate,
        }
        self._inflight: Set[asyncio.Task] = set()
        self._running = False

        logger.info(f"Initialized AgentLoop in {self.mode} mode ({len(self.queue)} queued step(s))")

    def _load_yaml(self, filename: str) -> dict:
        path = self.config_dir / filename
        with open(path) as f:
            return yaml.safe_load(f) or {}

    @staticmethod
    def _setup_logging(log_cfg: Dict[str, Any]) -> None:
        handlers: List[logging.Handler] = [logging.StreamHandler()]
        log_file = log_cfg.get("file")
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            handlers.insert(0, logging.FileHandler(log_file))
        logging.basicConfig(
            level=getattr(logging, str(log_cfg.get("level", "INFO")).upper()),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            handlers=handlers,
        )

    def _apply_direction_overrides(self, tokens_cfg: Dict[str, Any]) -> None:
        for name, token_cfg in tokens_cfg.items():
            token = Token.parse(name)
            if token is None or token.is_numeraire or not token_cfg:
                continue
            if "sell_zero_for_one" in token_cfg:
                self.state.sell_zero_for_one[token] = bool(token_cfg["sell_zero_for_one"])

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def boot_schedule(self) -> None:
        self.scheduler.schedule_now(TaskType.REFRESH_CONTEXT)
        self.scheduler.schedule_now(TaskType.FETCH_QUOTES)
        self.scheduler.schedule_now(TaskType.PROCESS_LOGIC)
        self.scheduler.schedule_now(TaskType.REFRESH_MINER_BURN_RATE)
        self.scheduler.schedule_after(self.cadence.take_decision_seconds, TaskType.TAKE_DECISION)

    def tick(self) -> Optional[asyncio.Task]:
        """Dispatch at most one due task. Must be called from the running event loop."""
        task = self.scheduler.pop_if_ready()
        if task is None:
            return None
        return self.dispatch(task.task_type)

    def _has_ready_task(self) -> bool:
        pending = self.scheduler.pending()
        return bool(pending) and pending[0].ready_at <= self.scheduler.now()

    def dispatch(self, task_type: TaskType) -> Optional[asyncio.Task]:
        guard = TaskGuard.try_acquire(self.state.active_tasks, task_type)
        if guard is None:
            self.metrics.record_guard_contention(str(task_type))
            return None
        task = asyncio.create_task(self._run_guarded(guard, task_type), name=str(task_type))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _run_guarded(self, guard: TaskGuard, task_type: TaskType) -> None:
        with guard:
            try:
                await self._handlers[task_type]()
            except Exception:
                logger.exception(f"[{task_type}] Handler failed")
                self.metrics.record_task_run(str(task_type), "error")
                return
        self.metrics.record_task_run(str(task_type), "ok")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_refresh_context(self) -> None:
        try:
            await self.cycle.refresh_context()
        finally:
            self.scheduler.schedule_after(self.cadence.refresh_context_seconds, TaskType.REFRESH_CONTEXT)

    async def _handle_take_decision(self) -> None:
        try:
            trade = await self.cycle.take_decision()
            logger.info(f"[{TaskType.TAKE_DECISION}] Took a new decision: {trade}")
        except (TradeValidationError, RemoteCallError) as e:
            logger.info(f"[{TaskType.TAKE_DECISION}] No trade: {e}")
        finally:
            self.scheduler.schedule_after(self.cadence.take_decision_seconds, TaskType.TAKE_DECISION)

    async def _handle_process_logic(self) -> None:
        rearmed = False
        try:
            if await self.engine.process_logic():
                self.scheduler.schedule_now(TaskType.PROCESS_LOGIC)
            else:
                self.scheduler.schedule_after(self.cadence.process_logic_idle_seconds, TaskType.PROCESS_LOGIC)
            rearmed = True
        except RemoteCallError as e:
            logger.info(f"[{TaskType.PROCESS_LOGIC}] Failed to process logic: {e}")
        finally:
            if not rearmed:
                self.scheduler.schedule_after(self.cadence.process_logic_retry_seconds, TaskType.PROCESS_LOGIC)

    async def _handle_fetch_quotes(self) -> None:
        logger.debug(f"[{TaskType.FETCH_QUOTES}] Fetching quotes.")
        try:
            self.cycle.prune_quotes()
            await self.cycle.fetch_quotes()
        finally:
            self.scheduler.schedule_after(self.cadence.fetch_quotes_seconds, TaskType.FETCH_QUOTES)

    async def _handle_refresh_miner_burn_rate(self) -> None:
        try:
            cycles = await self.cycle.refresh_miner_settings()
            logger.info(f"[{TaskType.REFRESH_MINER_BURN_RATE}] refreshed miner burn rate: {cycles} cycles per round")
        except (RuntimeError, RemoteCallError) as e:
            logger.info(f"[{TaskType.REFRESH_MINER_BURN_RATE}] not refreshed: {e}")
        finally:
            self.scheduler.schedule_after(self.cadence.miner_refresh_seconds, TaskType.REFRESH_MINER_BURN_RATE)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _health_status_snapshot(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "mode": self.mode,
            "active_tasks": sorted(str(t) for t in list(self.state.active_tasks)),
            "scheduled_tasks": len(self.scheduler),
            "queue_length": len(self.queue),
            "trades": len(self.trade_log),
        }

    def _queue_snapshot(self) -> Dict[str, Any]:
        return {"queue": self.cycle.get_queue(), "steps": self.steps.get_summary()}

    def _context_snapshot(self) -> Dict[str, Any]:
        return {"context": self.cycle.system_context, "miner": self.cycle.miner_id}

    def _start_status_server(self) -> None:
        if not self.monitoring_config.get("status_enabled", True) or self.status_server:
            return
        port = int(self.monitoring_config.get("status_port", 8080))
        server = StatusServer(
            port,
            self._health_status_snapshot,
            routes={
                "/balances": self.cycle.get_balances,
                "/prices": self.cycle.get_price_history,
                "/trades": self.cycle.get_trade_actions,
                "/portfolio": self.cycle.get_portfolio,
                "/queue": self._queue_snapshot,
                "/context": self._context_snapshot,
            },
        )
        try:
            server.start()
        except OSError as exc:
            logger.error("Failed to start status server on port %s: %s", port, exc)
            return
        self.status_server = server

    def _stop_status_server(self) -> None:
        if self.status_server:
            self.status_server.stop()
            self.status_server = None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run_once(self) -> None:
        """Boot, run every task that is due right now once, and wait for them."""
        self.boot_schedule()
        due = [t for t in self.scheduler.pending() if t.ready_at <= self.scheduler.now()]
        spawned = []
        for _ in due:
            task = self.tick()
            if task is not None:
                spawned.append(task)
        if spawned:
            await asyncio.gather(*spawned)

    def _handle_stop(self, *_):
        logger.info("Stop requested; finishing in-flight handlers")
        self._running = False

    async def run_forever(self) -> None:
        self._running = True
        signal.signal(signal.SIGINT, self._handle_stop)
        signal.signal(signal.SIGTERM, self._handle_stop)

        self.metrics.start()
        self._start_status_server()
        self.boot_schedule()
        logger.info(f"Starting agent loop (tick={self.tick_seconds}s)")

        try:
            while self._running:
                # Dispatch everything due this tick before sleeping
                while self.tick() is not None or self._has_ready_task():
                    pass
                await asyncio.sleep(self.tick_seconds)
            if self._inflight:
                await asyncio.wait(list(self._inflight), timeout=30)
        finally:
            self._stop_status_server()
            self.state_store.save()
        logger.info("Agent loop stopped cleanly.")


def main():
    """Entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Pool trading agent")
    parser.add_argument("--once", action="store_true", help="Run every due task once and exit")
    parser.add_argument("--config-dir", default="config", help="Config directory")
    args = parser.parse_args()

    # Logging configured in __init__
    loop = AgentLoop(config_dir=args.config_dir)

    if args.once:
        asyncio.run(loop.run_once())
    else:
        asyncio.run(loop.run_forever())


if __name__ == "__main__":
    main()
