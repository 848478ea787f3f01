"""
Settlement steps and trade intents.

A ``TradeAction`` is the audit record of a decision. It expands into the
Approve -> Deposit -> Swap steps that the action queue drains; a settled swap
adds its own Withdraw step.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Union

from core.tokens import NUMERAIRE, Token


class ActionKind(Enum):
    APPROVE = "approve"
    DEPOSIT = "deposit"
    SWAP = "swap"
    WITHDRAW = "withdraw"


@dataclass(frozen=True)
class ApproveAction:
    """Let ``pool_id`` pull up to ``amount`` of ``token`` from our ledger account."""
    pool_id: str
    amount: int
    token: Token
    kind = ActionKind.APPROVE

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "pool_id": self.pool_id, "amount": self.amount, "token": self.token.name}


@dataclass(frozen=True)
class DepositAction:
    """Move ``amount`` (gross of fees) from the ledger into the pool's escrow."""
    pool_id: str
    ledger_id: str
    amount: int
    kind = ActionKind.DEPOSIT

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "pool_id": self.pool_id, "ledger_id": self.ledger_id, "amount": self.amount}


@dataclass(frozen=True)
class SwapAction:
    pool_id: str
    from_token: Token
    to_token: Token
    amount: int
    zero_for_one: bool
    kind = ActionKind.SWAP

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "pool_id": self.pool_id,
            "from": self.from_token.name,
            "to": self.to_token.name,
            "amount": self.amount,
            "zero_for_one": self.zero_for_one,
        }


@dataclass(frozen=True)
class WithdrawAction:
    """Pull ``amount`` of ``token`` out of pool escrow back to our ledger account."""
    pool_id: str
    token: Token
    amount: int
    kind = ActionKind.WITHDRAW

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "pool_id": self.pool_id, "token": self.token.name, "amount": self.amount}


Action = Union[ApproveAction, DepositAction, SwapAction, WithdrawAction]


def action_from_dict(data: Mapping[str, Any]) -> Action:
    kind = ActionKind(data["kind"])
    if kind is ActionKind.APPROVE:
        return ApproveAction(pool_id=data["pool_id"], amount=int(data["amount"]), token=Token[data["token"]])
    if kind is ActionKind.DEPOSIT:
        return DepositAction(pool_id=data["pool_id"], ledger_id=data["ledger_id"], amount=int(data["amount"]))
    if kind is ActionKind.SWAP:
        return SwapAction(
            pool_id=data["pool_id"],
            from_token=Token[data["from"]],
            to_token=Token[data["to"]],
            amount=int(data["amount"]),
            zero_for_one=bool(data["zero_for_one"]),
        )
    return WithdrawAction(pool_id=data["pool_id"], token=Token[data["token"]], amount=int(data["amount"]))


class TradeSide(Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class TradeAction:
    side: TradeSide
    token: Token
    amount: int
    ts: int

    def __post_init__(self):
        if self.token.is_numeraire:
            raise ValueError(f"Cannot trade the numeraire {self.token}")

    @classmethod
    def buy(cls, token: Token, amount: int, ts: int) -> "TradeAction":
        return cls(TradeSide.BUY, token, amount, ts)

    @classmethod
    def sell(cls, token: Token, amount: int, ts: int) -> "TradeAction":
        return cls(TradeSide.SELL, token, amount, ts)

    def zero_for_one(self, sell_directions: Mapping[Token, bool]) -> bool:
        """Swap direction for this trade given the per-token sell orientation."""
        sell_flag = sell_directions[self.token]
        return sell_flag if self.side is TradeSide.SELL else not sell_flag

    def actions(self, sell_directions: Mapping[Token, bool]) -> List[Action]:
        """Expand into the three settlement steps, in execution order."""
        pool_id = self.token.pool_id
        zero_for_one = self.zero_for_one(sell_directions)
        if self.side is TradeSide.BUY:
            source, target = NUMERAIRE, self.token
        else:
            source, target = self.token, NUMERAIRE
        return [
            ApproveAction(pool_id=pool_id, amount=self.amount, token=source),
            DepositAction(pool_id=pool_id, ledger_id=source.ledger_id, amount=self.amount),
            SwapAction(pool_id=pool_id, from_token=source, to_token=target, amount=self.amount, zero_for_one=zero_for_one),
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {"side": self.side.value, "token": self.token.name, "amount": self.amount, "ts": self.ts}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TradeAction":
        return cls(
            side=TradeSide(data["side"]),
            token=Token[data["token"]],
            amount=int(data["amount"]),
            ts=int(data["ts"]),
        )

    def __str__(self) -> str:
        return f"{self.side.name} {self.amount} {self.token}"
