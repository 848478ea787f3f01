"""
Core: Decision Parser

Turns a model's one-line verdict (``"BUY ALICE"``, ``"sell bob"``, ``"HODL"``)
into a sized ``TradeAction``. Anything else is rejected with a readable
``TradeValidationError``; nothing is mutated here.
"""

import logging
from typing import Optional

from core.actions import TradeAction, TradeSide
from core.exceptions import TradeValidationError
from core.risk import RiskEngine
from core.tasks import timestamp_nanos
from core.tokens import Token, display_amount

logger = logging.getLogger(__name__)

_VERBS = {"buy": TradeSide.BUY, "sell": TradeSide.SELL}


def parse_trade_action(text: str, risk: RiskEngine, now: Optional[int] = None) -> TradeAction:
    """
    Parse ``<action> <token>`` (case-insensitive) into a sized trade.

    Buy size comes from the risk engine; sell size is the position cap of the
    current holdings.

    Raises:
        TradeValidationError: bad arity, unknown token or verb, the numeraire,
            or an amount below the token's trade minimum
    """
    parts = text.split()
    if len(parts) != 2:
        if len(parts) == 1:
            raise TradeValidationError(f"No action taken: {parts[0]}, not doing anything.")
        raise TradeValidationError("Invalid input format")

    verb = parts[0].lower()
    token = Token.parse(parts[1])
    if token is None:
        raise TradeValidationError("Unknown token")
    if token.is_numeraire:
        raise TradeValidationError(f"Cannot buy nor sell {token}")

    side = _VERBS.get(verb)
    if side is None:
        raise TradeValidationError("Unknown action")

    if side is TradeSide.BUY:
        amount = risk.amount_to_buy(token)
    else:
        amount = risk.amount_to_sell(token)

    minimum = token.minimum_amount_to_trade
    if amount < minimum:
        raise TradeValidationError(
            f"{token} balance too low, minimum to trade is {display_amount(minimum)} got {display_amount(amount)}"
        )

    ts = now if now is not None else timestamp_nanos()
    trade = TradeAction(side=side, token=token, amount=amount, ts=ts)
    logger.debug(f"Parsed verdict {text!r} -> {trade}")
    return trade
