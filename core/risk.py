"""
Core: Risk Engine

Historical-simulation Value-at-Risk over each token's quote history, and the
position sizing that follows from it.

Pattern: size trades inversely to estimated risk and directly to the remaining
risk budget, clamped to a fixed fraction of existing holdings.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from core.state import AgentState
from core.tokens import E8S, Token, tradable_tokens

logger = logging.getLogger(__name__)

# Fractions are applied in basis points to keep sizing in integer e8s
BPS = 10_000


@dataclass
class RiskSettings:
    """Risk constants from policy.yaml ``risk`` section."""
    price_history_capacity: int = 8
    min_price_samples: int = 4
    var_confidence: float = 0.95
    risk_budget: float = 0.10
    position_cap_fraction: float = 0.10
    slippage_tolerance: float = 0.10
    quote_staleness_seconds: int = 3600
    quote_retention_days: int = 30
    quote_probe_amount: int = E8S

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]]) -> "RiskSettings":
        cfg = cfg or {}
        known = {k: v for k, v in cfg.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    @property
    def position_cap_bps(self) -> int:
        return round(self.position_cap_fraction * BPS)

    @property
    def slippage_bps(self) -> int:
        return round(self.slippage_tolerance * BPS)


class RiskEngine:
    """
    Sizing calculations on top of ``AgentState``.

    All methods are pure reads of the state; none of them awaits, so a result
    is consistent with the state at the moment of the call.
    """

    def __init__(self, state: AgentState, settings: Optional[RiskSettings] = None):
        self.state = state
        self.settings = settings or RiskSettings()

    def compute_token_returns(self, token: Token) -> List[float]:
        """Consecutive percentage changes across the quote history, oldest first."""
        values = [quote.value for quote in self.state.get_quotes(token)]
        returns = []
        for previous, current in zip(values, values[1:]):
            if previous == 0:
                logger.debug("Skipping return for %s after a zero quote", token)
                continue
            returns.append((current - previous) / previous)
        return returns

    def value_at_risk(self, token: Token) -> float:
        """Loss at the configured confidence over observed returns (no interpolation)."""
        if token.is_numeraire:
            return 0.0
        losses = sorted(max(-r, 0.0) for r in self.compute_token_returns(token))
        if not losses:
            return 0.0
        index = min(int(math.floor(self.settings.var_confidence * len(losses))), len(losses) - 1)
        return losses[index]

    def portfolio_value(self) -> Optional[int]:
        return self.state.maybe_portfolio_value()

    def risk_majorant(self, portfolio_value: float, asset_value: float) -> float:
        """Weighted VaR across tradable tokens, capped at the risk budget."""
        if portfolio_value <= 0:
            return self.settings.risk_budget
        weight = asset_value / portfolio_value
        total = sum(weight * self.value_at_risk(token) for token in tradable_tokens())
        return min(total, self.settings.risk_budget)

    def max_trade(self, token: Token) -> int:
        """Position cap: a fixed fraction of what is already held of ``token``."""
        return self.state.get_balance(token) * self.settings.position_cap_bps // BPS

    def amount_to_buy(self, token: Token) -> int:
        portfolio_value = float(self.portfolio_value() or 0)
        last_quote = self.state.maybe_get_last_quote(token)
        quote = float(last_quote.value) if last_quote else 0.0

        if portfolio_value + quote <= 0:
            return 0
        max_trade = self.max_trade(token)
        var = self.value_at_risk(token)
        if var <= 0 or quote <= 0:
            return max_trade

        var_maj = self.risk_majorant(portfolio_value, quote)
        risk_trade = E8S * (self.settings.risk_budget - var_maj) * portfolio_value / (quote * var)
        amount = min(max_trade, max(0, int(risk_trade)))
        logger.debug(
            "Sizing %s: portfolio=%s quote=%s var=%.4f var_maj=%.4f max_trade=%s -> %s",
            token, portfolio_value, quote, var, var_maj, max_trade, amount,
        )
        return amount

    def amount_to_sell(self, token: Token) -> int:
        return self.max_trade(token)

    def snapshot(self) -> Dict[str, Any]:
        """Per-token risk view for status endpoints."""
        return {
            token.name: {
                "value_at_risk": self.value_at_risk(token),
                "samples": len(self.state.get_quotes(token)),
                "amount_to_buy": self.amount_to_buy(token),
            }
            for token in tradable_tokens()
        }
