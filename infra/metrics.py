"""Prometheus-backed metrics hooks for the agent loop and settlement pipeline."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from prometheus_client import Counter, Gauge, start_http_server

logger = logging.getLogger(__name__)

_METRIC_PREFIX = "agent_"


class MetricsRecorder:
    """
    Expose agent stats via Prometheus.

    Singleton pattern to prevent duplicate metric registration errors.
    The recorder keeps a plain-dict mirror of the last values so status
    endpoints and tests can read them without scraping.
    """
    _instance: Optional['MetricsRecorder'] = None
    _initialized: bool = False

    def __new__(cls, enabled: bool = True, port: int = 9100):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, enabled: bool = True, port: int = 9100) -> None:
        if self.__class__._initialized:
            return

        self._enabled = bool(enabled)
        self._port = port
        self._started = False
        self.__class__._initialized = True

        self.task_runs: Dict[str, int] = {}
        self.action_results: Dict[str, int] = {}
        self.dropped_actions = 0
        self.queue_length = 0
        self.guard_contention: Dict[str, int] = {}
        self.balances: Dict[str, int] = {}

        if not self._enabled:
            self._task_counter = None
            self._guard_contention_counter = None
            self._action_counter = None
            self._dropped_counter = None
            self._queue_gauge = None
            self._balance_gauge = None
            return

        self._task_counter = Counter(
            "agent_task_runs_total",
            "Scheduled task handler runs by type and outcome",
            labelnames=("task", "outcome"),
        )
        self._guard_contention_counter = Counter(
            "agent_guard_contention_total",
            "Ticks skipped because the task type was already running",
            labelnames=("task",),
        )
        self._action_counter = Counter(
            "agent_actions_total",
            "Settlement steps executed by kind and outcome",
            labelnames=("kind", "outcome"),
        )
        self._dropped_counter = Counter(
            "agent_actions_dropped_total",
            "Settlement steps dropped from the queue head as unrecoverable",
            labelnames=("kind",),
        )
        self._queue_gauge = Gauge(
            "agent_action_queue_length",
            "Pending settlement steps",
        )
        self._balance_gauge = Gauge(
            "agent_token_balance_e8s",
            "Last observed ledger balance per token",
            labelnames=("token",),
        )

    @classmethod
    def _reset_for_testing(cls) -> None:
        """
        Reset singleton state for testing.
        WARNING: Only call from test fixtures/teardown.
        """
        if cls._instance is not None:
            from prometheus_client import REGISTRY

            for collector in list(REGISTRY._collector_to_names):
                names = REGISTRY._collector_to_names.get(collector, set())
                if any(name.startswith(_METRIC_PREFIX) for name in names):
                    REGISTRY.unregister(collector)

        cls._instance = None
        cls._initialized = False

    def start(self) -> None:
        if not self._enabled or self._started:
            return
        try:
            start_http_server(self._port)
        except OSError as exc:
            self._enabled = False
            logger.error("Failed to start metrics exporter on port %s: %s", self._port, exc)
            return
        self._started = True
        logger.info("Prometheus metrics exporter listening on 0.0.0.0:%s", self._port)

    def is_enabled(self) -> bool:
        return self._enabled

    def record_task_run(self, task: str, outcome: str) -> None:
        key = f"{task}:{outcome}"
        self.task_runs[key] = self.task_runs.get(key, 0) + 1
        if self._task_counter is not None:
            self._task_counter.labels(task=task, outcome=outcome).inc()

    def record_guard_contention(self, task: str) -> None:
        self.guard_contention[task] = self.guard_contention.get(task, 0) + 1
        if self._guard_contention_counter is not None:
            self._guard_contention_counter.labels(task=task).inc()

    def record_action(self, kind: str, outcome: str) -> None:
        key = f"{kind}:{outcome}"
        self.action_results[key] = self.action_results.get(key, 0) + 1
        if self._action_counter is not None:
            self._action_counter.labels(kind=kind, outcome=outcome).inc()

    def record_dropped_action(self, kind: str) -> None:
        self.dropped_actions += 1
        if self._dropped_counter is not None:
            self._dropped_counter.labels(kind=kind).inc()

    def record_queue_length(self, length: int) -> None:
        self.queue_length = length
        if self._queue_gauge is not None:
            self._queue_gauge.set(length)

    def record_balance(self, token: str, amount: int) -> None:
        self.balances[token] = amount
        if self._balance_gauge is not None:
            self._balance_gauge.labels(token=token).set(amount)
