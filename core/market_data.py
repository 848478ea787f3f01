"""Market data records: quote samples and pool snapshots."""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Quote:
    """Pool output (e8s of ICP) for a fixed probe amount of the asset."""
    value: int
    ts: int  # nanoseconds

    def to_dict(self) -> Dict[str, int]:
        return {"value": self.value, "ts": self.ts}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Quote":
        return cls(value=int(data["value"]), ts=int(data["ts"]))


@dataclass
class PoolOverview:
    """Public snapshot of a liquidity pool as reported by the pool data service."""
    pool: str
    token0_symbol: str
    token1_symbol: str
    token0_price: float
    token1_price: float
    token0_volume_24h: float = 0.0
    token1_volume_24h: float = 0.0
    token0_total_volume: float = 0.0
    token1_total_volume: float = 0.0
    volume_usd_1d: float = 0.0
    volume_usd_7d: float = 0.0
    tx_count: int = 0

    # Wire names used by the pool data service
    _FIELD_MAP = {
        "pool": "pool",
        "token0Symbol": "token0_symbol",
        "token1Symbol": "token1_symbol",
        "token0Price": "token0_price",
        "token1Price": "token1_price",
        "token0Volume24H": "token0_volume_24h",
        "token1Volume24H": "token1_volume_24h",
        "token0TotalVolume": "token0_total_volume",
        "token1TotalVolume": "token1_total_volume",
        "volumeUSD1d": "volume_usd_1d",
        "volumeUSD7d": "volume_usd_7d",
        "txCount": "tx_count",
    }

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> "PoolOverview":
        kwargs: Dict[str, Any] = {}
        for wire_name, attr in cls._FIELD_MAP.items():
            if wire_name in payload:
                kwargs[attr] = payload[wire_name]
            elif attr in payload:
                kwargs[attr] = payload[attr]
        kwargs["tx_count"] = int(kwargs.get("tx_count", 0) or 0)
        for attr in ("token0_price", "token1_price"):
            kwargs[attr] = float(kwargs.get(attr, 0.0) or 0.0)
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def price_of(self, symbol: str) -> Optional[float]:
        """USD price of ``symbol`` if it is one of the pool's two tokens."""
        symbol = symbol.lower()
        if self.token0_symbol.lower() == symbol:
            return self.token0_price
        if self.token1_symbol.lower() == symbol:
            return self.token1_price
        return None

    def display(self) -> str:
        return (
            f"{self.token0_symbol} Price: ${self.token0_price} - Volume (24H): ${self.token0_volume_24h}"
            f" - Total Volume: ${self.token0_total_volume}\n"
            f"    {self.token1_symbol} Price: ${self.token1_price} - Volume (24H): ${self.token1_volume_24h}"
            f" - Total Volume: ${self.token1_total_volume}\n"
            f"    Volume in Last 1 Day (USD): {self.volume_usd_1d}\n"
            f"    Volume in Last 7 Days (USD): {self.volume_usd_7d}\n"
            f"    Total Transaction Count: {self.tx_count}"
        )
