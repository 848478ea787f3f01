"""
Agent state: balances, pool snapshot history, quote history and guard sets.

One ``AgentState`` is created at process start and handed to every handler.
Only the guard sets are process-local; everything else round-trips through
``to_dict``/``from_dict`` for the durable state store.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Set

from core.market_data import PoolOverview, Quote
from core.tasks import NANOS_PER_SECOND, TaskType
from core.tokens import E8S, Token, default_sell_directions, tradable_tokens

PRICE_HISTORY_CAPACITY = 8
ONE_HOUR_NANOS = 3600 * NANOS_PER_SECOND
QUOTE_RETENTION_NANOS = 30 * 24 * ONE_HOUR_NANOS


class PriceTracker:
    """Bounded FIFO of pool snapshots; the oldest is evicted on overflow."""

    def __init__(self, max_size: int = PRICE_HISTORY_CAPACITY):
        if max_size <= 0:
            raise ValueError("PriceTracker capacity must be positive")
        self.max_size = max_size
        self._prices: Deque[PoolOverview] = deque(maxlen=max_size)

    def add_price(self, price: PoolOverview) -> None:
        self._prices.append(price)

    def get_prices(self) -> List[PoolOverview]:
        return list(self._prices)

    def get_latest(self) -> Optional[PoolOverview]:
        return self._prices[-1] if self._prices else None

    def __len__(self) -> int:
        return len(self._prices)


@dataclass
class AgentState:
    balances: Dict[Token, int] = field(default_factory=dict)
    prices: Dict[Token, PriceTracker] = field(default_factory=dict)
    token_to_quotes: Dict[Token, Deque[Quote]] = field(default_factory=dict)
    sell_zero_for_one: Dict[Token, bool] = field(default_factory=default_sell_directions)
    active_tasks: Set[TaskType] = field(default_factory=set)
    history_capacity: int = PRICE_HISTORY_CAPACITY

    def __post_init__(self):
        for token in tradable_tokens():
            self.prices.setdefault(token, PriceTracker(self.history_capacity))

    # ------------------------------------------------------------------
    # Balances and prices
    # ------------------------------------------------------------------

    def get_balance(self, token: Token) -> int:
        return self.balances.get(token, 0)

    def insert_price(self, token: Token, price: PoolOverview) -> None:
        tracker = self.prices.get(token)
        if tracker is not None:
            tracker.add_price(price)

    def get_all_prices(self) -> str:
        lines = []
        for token in sorted(self.prices):
            history = ", ".join(price.display() for price in self.prices[token].get_prices())
            lines.append(f" - {token}: [{history}]\n")
        return "".join(lines)

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def insert_quote(self, token: Token, quote: Quote) -> None:
        self.token_to_quotes.setdefault(token, deque()).append(quote)

    def get_quotes(self, token: Token) -> List[Quote]:
        return list(self.token_to_quotes.get(token, ()))

    def maybe_get_last_quote(self, token: Token) -> Optional[Quote]:
        quotes = self.token_to_quotes.get(token)
        return quotes[-1] if quotes else None

    def is_quote_too_early(self, token: Token, now: int, staleness_nanos: int = ONE_HOUR_NANOS) -> bool:
        """True while the last quote for ``token`` is younger than the staleness window."""
        quote = self.maybe_get_last_quote(token)
        return quote is not None and now < quote.ts + staleness_nanos

    def suppress_old_quotes(self, now: int, retention_nanos: int = QUOTE_RETENTION_NANOS) -> int:
        """Drop quotes older than the retention window from the front. Returns the count removed."""
        removed = 0
        for quotes in self.token_to_quotes.values():
            while quotes and now > quotes[0].ts + retention_nanos:
                quotes.popleft()
                removed += 1
        return removed

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    def maybe_get_asset_value_in_portfolio(self, token: Token) -> Optional[int]:
        if token.is_numeraire:
            return self.get_balance(token)
        quote = self.maybe_get_last_quote(token)
        if quote is None:
            return None
        return self.get_balance(token) * quote.value // E8S

    def maybe_portfolio_value(self) -> Optional[int]:
        total = 0
        for token in Token:
            value = self.maybe_get_asset_value_in_portfolio(token)
            if value is None:
                return None
            total += value
        return total

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balances": {token.name: amount for token, amount in self.balances.items()},
            "prices": {
                token.name: [price.to_dict() for price in tracker.get_prices()]
                for token, tracker in self.prices.items()
            },
            "quotes": {
                token.name: [quote.to_dict() for quote in quotes]
                for token, quotes in self.token_to_quotes.items()
            },
            "sell_zero_for_one": {token.name: flag for token, flag in self.sell_zero_for_one.items()},
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], history_capacity: int = PRICE_HISTORY_CAPACITY) -> "AgentState":
        state = cls(history_capacity=history_capacity)
        if not data:
            return state
        for name, amount in (data.get("balances") or {}).items():
            token = Token.parse(name)
            if token is not None:
                state.balances[token] = int(amount)
        for name, snapshots in (data.get("prices") or {}).items():
            token = Token.parse(name)
            if token is None:
                continue
            for snapshot in snapshots:
                state.insert_price(token, PoolOverview.from_wire(snapshot))
        for name, quotes in (data.get("quotes") or {}).items():
            token = Token.parse(name)
            if token is None:
                continue
            for quote in quotes:
                state.insert_quote(token, Quote.from_dict(quote))
        for name, flag in (data.get("sell_zero_for_one") or {}).items():
            token = Token.parse(name)
            if token is not None and not token.is_numeraire:
                state.sell_zero_for_one[token] = bool(flag)
        return state
