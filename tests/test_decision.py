"""
Tests for the verdict parser and the prompt builder.
"""

import pytest

from ai.snapshot_builder import build_portfolio, build_user_prompt
from core.actions import TradeSide
from core.decision import parse_trade_action
from core.exceptions import TradeValidationError
from core.market_data import Quote
from core.risk import RiskEngine
from core.state import AgentState
from core.tokens import BOB_POOL, E8S, Token
from tests.helpers import make_pool


def _risk(**balances) -> RiskEngine:
    state = AgentState(balances={Token[name]: amount for name, amount in balances.items()})
    return RiskEngine(state)


class TestParseTradeAction:
    """Grammar and sizing validation"""

    @pytest.mark.parametrize("verdict", ["buy icp", "SELL ICP", "Buy Icp"])
    def test_numeraire_always_rejected(self, verdict):
        risk = _risk(ICP=1_000 * E8S, ALICE=1_000 * E8S, BOB=1_000 * E8S)
        with pytest.raises(TradeValidationError, match="Cannot buy nor sell ICP"):
            parse_trade_action(verdict, risk)

    def test_single_word_is_no_action(self):
        with pytest.raises(TradeValidationError, match="No action taken: HODL, not doing anything."):
            parse_trade_action("HODL", _risk())

    @pytest.mark.parametrize("verdict", ["", "BUY BOB NOW", "I think BUY BOB"])
    def test_wrong_arity(self, verdict):
        with pytest.raises(TradeValidationError, match="Invalid input format"):
            parse_trade_action(verdict, _risk())

    def test_unknown_token(self):
        with pytest.raises(TradeValidationError, match="Unknown token"):
            parse_trade_action("BUY DOGE", _risk())

    def test_unknown_action(self):
        with pytest.raises(TradeValidationError, match="Unknown action"):
            parse_trade_action("HOLD ALICE", _risk(ALICE=100 * E8S))

    def test_sell_at_minimum_is_accepted(self):
        """10% of 100 ALICE equals the 10 ALICE minimum"""
        trade = parse_trade_action("SELL ALICE", _risk(ALICE=10_000_000_000), now=123)

        assert trade.side is TradeSide.SELL
        assert trade.token is Token.ALICE
        assert trade.amount == 1_000_000_000
        assert trade.ts == 123

    def test_sell_below_minimum_names_both_amounts(self):
        with pytest.raises(TradeValidationError) as exc:
            parse_trade_action("sell alice", _risk(ALICE=9_999_999_999))
        assert str(exc.value) == "ALICE balance too low, minimum to trade is 10.0 got 9.99999999"

    def test_buy_uses_risk_sizing(self):
        state = AgentState(balances={Token.ICP: 10 * E8S, Token.ALICE: 100 * E8S, Token.BOB: 0})
        for i, value in enumerate([100, 110, 99]):
            state.insert_quote(Token.ALICE, Quote(value=value, ts=i))
        state.insert_quote(Token.BOB, Quote(value=E8S, ts=0))

        trade = parse_trade_action("  buy   ALICE ", RiskEngine(state))
        assert trade.side is TradeSide.BUY
        assert trade.amount == 10 * E8S

    def test_buy_without_budget_is_rejected(self):
        with pytest.raises(TradeValidationError, match="BOB balance too low"):
            parse_trade_action("BUY BOB", _risk(ICP=100 * E8S))


class TestPromptBuilder:
    def test_portfolio_lists_held_tokens_with_prices(self):
        state = AgentState(balances={Token.ICP: 150_000_000, Token.ALICE: 300 * E8S})
        state.insert_price(Token.ALICE, make_pool(price0=0.02))
        state.insert_price(Token.BOB, make_pool(pool=BOB_POOL, token0="BOB", token1="ICP", price0=1.1, price1=9.5))

        portfolio = build_portfolio(state)

        assert portfolio == "- 1.5 ICP, 1 ICP = $9.5\n- 300.0 ALICE, 1 ALICE = $0.02\n"

    def test_portfolio_without_prices(self):
        state = AgentState(balances={Token.BOB: E8S})
        assert build_portfolio(state) == "- 1.0 BOB\n"

    def test_user_prompt_lists_verdicts_and_history(self):
        state = AgentState(balances={Token.ICP: E8S})
        state.insert_price(Token.ALICE, make_pool())

        prompt = build_user_prompt(state)

        assert "BUY BOB, SELL BOB, BUY ALICE, HODL" in prompt
        assert " - ALICE: [ALICE Price: $0.02" in prompt
        assert " - BOB: []" in prompt
