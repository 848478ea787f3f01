"""
Snapshot Builder - Construct the market context shown to the decision model.

Builds the user prompt from:
- Current holdings with their latest pool price
- The verdicts the model may answer with
- Every tracked pool snapshot, oldest first
"""

import logging
from typing import Optional

from core.state import AgentState
from core.tokens import Token, display_amount

logger = logging.getLogger(__name__)

ALLOWED_VERDICTS = ("BUY BOB", "SELL BOB", "BUY ALICE", "HODL")

# The numeraire has no pool of its own; its price is read off this pool.
NUMERAIRE_PRICE_SOURCE = Token.BOB


def _latest_price(state: AgentState, token: Token) -> Optional[float]:
    source = NUMERAIRE_PRICE_SOURCE if token.is_numeraire else token
    tracker = state.prices.get(source)
    latest = tracker.get_latest() if tracker else None
    if latest is None:
        return None
    if token.is_numeraire:
        # Only quoted as the pool's second token.
        if latest.token1_symbol.lower() == token.name.lower():
            return latest.token1_price
        return None
    return latest.price_of(token.name)


def build_portfolio(state: AgentState) -> str:
    """
    One line per held token.

    Example:
        - 12.5 ICP, 1 ICP = $9.1
        - 300.0 ALICE, 1 ALICE = $0.02
    """
    lines = []
    for token in Token:
        if token not in state.balances:
            continue
        line = f"- {display_amount(state.balances[token])} {token}"
        price = _latest_price(state, token)
        if price is not None:
            line += f", 1 {token} = ${price}"
        lines.append(line + "\n")
    return "".join(lines)


def build_user_prompt(state: AgentState) -> str:
    portfolio = build_portfolio(state)
    verdicts = ", ".join(ALLOWED_VERDICTS)
    return (
        f"Your portfolio is: \n{portfolio}"
        f"You can *only* answer with one of the following: {verdicts}.\n"
        "What should you do next to maximize shareholder value?\n"
        "------- More Context\n"
        "The current evolution of each asset in your portfolio is the following, "
        f"each entry is recorded every 4 hours: \n{state.get_all_prices()}"
    )
