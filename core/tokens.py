"""
Token registry: ledger/pool addresses, transfer fees and trade minimums.

ICP is the numéraire (unit value, no pool of its own). ALICE and BOB are the
tradable assets, each quoted against ICP in a dedicated pool.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Optional

ICP_LEDGER = "ryjl3-tyaaa-aaaaa-aaaba-cai"
BOB_LEDGER = "7pail-xaaaa-aaaas-aabmq-cai"
ALICE_LEDGER = "oj6if-riaaa-aaaaq-aaeha-cai"

BOB_POOL = "ybilh-nqaaa-aaaag-qkhzq-cai"
ALICE_POOL = "fj6py-4yaaa-aaaag-qnfla-cai"
POOL_DATA_SERVICE = "5kfng-baaaa-aaaag-qj3da-cai"

E8S = 100_000_000


class Token(Enum):
    """Closed set of assets the agent holds. Ordering follows the value."""
    ICP = 0
    ALICE = 1
    BOB = 2

    def __str__(self) -> str:
        return self.name

    def __lt__(self, other: "Token") -> bool:
        return self.value < other.value

    @classmethod
    def parse(cls, name: str) -> Optional["Token"]:
        """Case-insensitive lookup by name, None when unknown."""
        try:
            return cls[name.strip().upper()]
        except KeyError:
            return None

    @property
    def spec(self) -> "TokenSpec":
        return TOKEN_SPECS[self]

    @property
    def ledger_id(self) -> str:
        return self.spec.ledger_id

    @property
    def pool_id(self) -> str:
        if self.spec.pool_id is None:
            raise ValueError(f"{self} has no pool")
        return self.spec.pool_id

    @property
    def fee(self) -> int:
        return self.spec.fee_e8s

    @property
    def minimum_amount_to_trade(self) -> int:
        return self.spec.minimum_trade_e8s

    @property
    def is_numeraire(self) -> bool:
        return self is NUMERAIRE


@dataclass(frozen=True)
class TokenSpec:
    ledger_id: str
    pool_id: Optional[str]
    fee_e8s: int
    minimum_trade_e8s: int


TOKEN_SPECS: Dict[Token, TokenSpec] = {
    Token.ICP: TokenSpec(ledger_id=ICP_LEDGER, pool_id=None, fee_e8s=10_000, minimum_trade_e8s=100_000),
    Token.ALICE: TokenSpec(ledger_id=ALICE_LEDGER, pool_id=ALICE_POOL, fee_e8s=100_000_000, minimum_trade_e8s=1_000_000_000),
    Token.BOB: TokenSpec(ledger_id=BOB_LEDGER, pool_id=BOB_POOL, fee_e8s=1_000_000, minimum_trade_e8s=10_000_000),
}

NUMERAIRE = Token.ICP


def tradable_tokens() -> Iterator[Token]:
    """Tokens that can appear in a trade, in enum order."""
    for token in Token:
        if not token.is_numeraire:
            yield token


def fee_for_ledger(ledger_id: str) -> int:
    """Transfer fee of the token living on ``ledger_id``."""
    for spec in TOKEN_SPECS.values():
        if spec.ledger_id == ledger_id:
            return spec.fee_e8s
    raise ValueError(f"Unknown ledger: {ledger_id}")


def display_amount(amount_e8s: int) -> str:
    """Render an e8s amount with up to 8 decimals, trailing zeros trimmed."""
    whole, frac = divmod(int(amount_e8s), E8S)
    if frac == 0:
        return f"{whole}.0"
    return f"{whole}.{frac:08d}".rstrip("0")


def default_sell_directions() -> Dict[Token, bool]:
    """Pool orientation assumed at deploy time: the asset is token0 in its pool."""
    return {token: True for token in tradable_tokens()}
