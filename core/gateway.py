"""
Core: Ledger / Pool / Miner gateway

Abstract async capabilities the agent consumes, plus ``HttpGateway``, which
reaches the ledger, pool and miner services through a JSON HTTP bridge.

Every bridge call is ``POST {base_url}/call`` with
``{"canister": <id>, "method": <name>, "args": {...}}`` and answers
``{"ok": <value>}`` or ``{"err": <reason>}``.
"""

import asyncio
import logging
import os
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from core.exceptions import RemoteCallError
from core.market_data import PoolOverview
from core.tokens import POOL_DATA_SERVICE

logger = logging.getLogger(__name__)


class LedgerClient(ABC):
    @abstractmethod
    async def balance_of(self, ledger_id: str) -> int:
        """Balance of the agent's own account on ``ledger_id``."""

    @abstractmethod
    async def approve(self, spender: str, amount: int, ledger_id: str) -> int:
        """Allow ``spender`` to pull ``amount``; returns the ledger block index."""


class PoolClient(ABC):
    @abstractmethod
    async def quote(self, pool_id: str, amount_in: int, zero_for_one: bool) -> int:
        """Expected output for swapping ``amount_in``."""

    @abstractmethod
    async def swap(self, pool_id: str, amount_in: int, amount_out_minimum: int, zero_for_one: bool) -> int:
        """Execute a swap; returns the realised output amount."""

    @abstractmethod
    async def deposit_from(self, pool_id: str, amount: int, fee: int, token_ledger: str) -> int:
        """Pull ``amount`` (net of fees) from the ledger into pool escrow."""

    @abstractmethod
    async def withdraw(self, pool_id: str, amount: int, fee: int, token_ledger: str) -> int:
        """Move ``amount`` out of pool escrow back to the agent's ledger account."""

    @abstractmethod
    async def get_pool(self, pool_id: str) -> PoolOverview:
        """Public pool snapshot from the pool data service."""


@dataclass
class MinerStats:
    cycle_balance: int
    cycles_burned_per_round: int = 0
    last_round_cycles_burned: int = 0
    round_length_secs: int = 0


class MinerClient(ABC):
    @abstractmethod
    async def get_statistics(self, miner_id: str) -> MinerStats:
        pass

    @abstractmethod
    async def update_miner_settings(self, miner_id: str, max_cycles_per_round: int) -> None:
        pass


class HttpGateway(LedgerClient, PoolClient, MinerClient):
    """
    Bridge-backed implementation of every collaborator capability.

    Requests run in a worker thread so the event loop keeps dispatching other
    handlers while a call is in flight.

    Retries on:
    - 429 (rate limit)
    - 5xx (server errors)
    - Network errors (timeout, connection)

    Does NOT retry on:
    - 4xx (except 429)
    - a well-formed ``{"err": ...}`` answer from the service
    """

    def __init__(
        self,
        base_url: str,
        account: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 20.0,
        max_retries: int = 3,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.account = account
        self.api_key = api_key if api_key is not None else os.getenv("GATEWAY_API_KEY", "")
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(1, int(max_retries))
        self._session = session or requests.Session()
        logger.info(f"Initialized HttpGateway (base_url={self.base_url}, account={self.account})")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _req(self, canister: str, method: str, args: Dict[str, Any]) -> Any:
        """Blocking bridge call with exponential backoff."""
        url = f"{self.base_url}/call"
        body = {"canister": canister, "method": method, "args": args}
        source = f"{method}@{canister}"
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                response = self._session.post(url, json=body, headers=self._headers(), timeout=self.timeout_seconds)
                response.raise_for_status()
                payload = response.json()
                if not isinstance(payload, dict):
                    raise RemoteCallError(source, f"unexpected response {payload!r}")
                if "err" in payload:
                    raise RemoteCallError(source, f"Error while calling canister {payload['err']!r}")
                if "ok" not in payload:
                    raise RemoteCallError(source, f"malformed response {payload!r}")
                return payload["ok"]

            except requests.exceptions.HTTPError as e:
                status_code = e.response.status_code if e.response is not None else 0
                if 400 <= status_code < 500 and status_code != 429:
                    logger.error(f"Gateway client error: {status_code} on {source}")
                    raise RemoteCallError(source, f"HTTP {status_code}", e) from e
                logger.warning(f"Gateway error ({status_code}) on {source}, attempt {attempt + 1}/{self.max_retries}")
                last_exception = e

            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                logger.warning(f"Network error on {source}: {e}, attempt {attempt + 1}/{self.max_retries}")
                last_exception = e

            except ValueError as e:
                # json decoding; RemoteCallError is not a ValueError
                raise RemoteCallError(source, f"invalid JSON response: {e}", e) from e

            except requests.exceptions.RequestException as e:
                raise RemoteCallError(source, str(e), e) from e

            if attempt < self.max_retries - 1:
                backoff = (2 ** attempt) + random.uniform(0, 1)
                logger.info(f"Retrying {source} in {backoff:.1f}s...")
                time.sleep(backoff)

        logger.error(f"All {self.max_retries} retries exhausted for {source}")
        raise RemoteCallError(source, f"failed after {self.max_retries} attempts", last_exception)

    async def _call(self, canister: str, method: str, args: Dict[str, Any]) -> Any:
        return await asyncio.to_thread(self._req, canister, method, args)

    # ---- ledger -------------------------------------------------------

    async def balance_of(self, ledger_id: str) -> int:
        return int(await self._call(ledger_id, "icrc1_balance_of", {"owner": self.account}))

    async def approve(self, spender: str, amount: int, ledger_id: str) -> int:
        return int(await self._call(ledger_id, "icrc2_approve", {"spender": spender, "amount": str(amount)}))

    # ---- pool ---------------------------------------------------------

    @staticmethod
    def _swap_args(amount_in: int, amount_out_minimum: int, zero_for_one: bool) -> Dict[str, Any]:
        return {
            "amountIn": str(amount_in),
            "amountOutMinimum": str(amount_out_minimum),
            "zeroForOne": zero_for_one,
        }

    async def quote(self, pool_id: str, amount_in: int, zero_for_one: bool) -> int:
        return int(await self._call(pool_id, "quote", self._swap_args(amount_in, 0, zero_for_one)))

    async def swap(self, pool_id: str, amount_in: int, amount_out_minimum: int, zero_for_one: bool) -> int:
        return int(await self._call(pool_id, "swap", self._swap_args(amount_in, amount_out_minimum, zero_for_one)))

    async def deposit_from(self, pool_id: str, amount: int, fee: int, token_ledger: str) -> int:
        args = {"amount": str(amount), "fee": str(fee), "token": token_ledger}
        return int(await self._call(pool_id, "depositFrom", args))

    async def withdraw(self, pool_id: str, amount: int, fee: int, token_ledger: str) -> int:
        args = {"amount": str(amount), "fee": str(fee), "token": token_ledger}
        return int(await self._call(pool_id, "withdraw", args))

    async def get_pool(self, pool_id: str) -> PoolOverview:
        payload = await self._call(POOL_DATA_SERVICE, "getPool", {"pool": pool_id})
        try:
            return PoolOverview.from_wire(payload)
        except (TypeError, ValueError) as e:
            raise RemoteCallError(f"getPool@{POOL_DATA_SERVICE}", f"bad pool snapshot: {e}", e) from e

    # ---- miner --------------------------------------------------------

    async def get_statistics(self, miner_id: str) -> MinerStats:
        payload = await self._call(miner_id, "get_statistics_v2", {})
        try:
            return MinerStats(
                cycle_balance=int(payload["cycle_balance"]),
                cycles_burned_per_round=int(payload.get("cycles_burned_per_round", 0)),
                last_round_cycles_burned=int(payload.get("last_round_cyles_burned", 0)),
                round_length_secs=int(payload.get("round_length_secs", 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteCallError(f"get_statistics_v2@{miner_id}", f"bad statistics: {e}", e) from e

    async def update_miner_settings(self, miner_id: str, max_cycles_per_round: int) -> None:
        await self._call(miner_id, "update_miner_settings", {"max_cycles_per_round": str(max_cycles_per_round)})
