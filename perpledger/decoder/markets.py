"""
Market registry and decoder configuration

Maps on-chain market ids to symbols and decimal scales. Passed explicitly
into the decoder; there is no process-wide decoder state.
"""
from dataclasses import dataclass, field
from typing import Optional


# On-chain market id -> symbol
MARKET_MAP: dict[int, str] = {
    0: "SOL-USDC",
    2: "LETTERA-USDC",
    4: "VELIT-USDC",
    6: "SUN-USDC",
    8: "BRSH-USDC",
    10: "MSHK-USDC",
    12: "SOL-USDC-V2",
    14: "trs-USDC",
    16: "sad-USDC",
    18: "MDVD-USDC",
    20: "333-USDC",
    22: "BRSH-USDC-V2",
    24: "1-USDC",
    26: "TST-USDC",
    28: "asd-USDC",
}

# On-chain market id -> base asset decimals
DECIMAL_MAP: dict[int, int] = {
    0: 9,
    2: 5,
    4: 6,
    6: 4,
    8: 6,
    10: 4,
    12: 6,
    14: 6,
    16: 6,
    18: 9,
    20: 9,
    22: 4,
    24: 6,
    26: 6,
    28: 6,
}

PRICE_SCALE = 1e9
QUOTE_SCALE = 1e6  # USDC


@dataclass(frozen=True)
class PriceBand:
    """Raw price range that identifies a market when no id is available"""
    low: int
    high: int
    market_id: int

    def contains(self, raw_price: int) -> bool:
        return self.low <= raw_price <= self.high


# SOL traded between 10 and 1000 USDC
DEFAULT_PRICE_BANDS: tuple[PriceBand, ...] = (
    PriceBand(low=10 * 10**9, high=1000 * 10**9, market_id=0),
)


@dataclass(frozen=True)
class MarketRegistry:
    """Market id lookups"""
    markets: dict[int, str] = field(default_factory=lambda: dict(MARKET_MAP))
    decimals: dict[int, int] = field(default_factory=lambda: dict(DECIMAL_MAP))
    default_decimals: int = 9

    def symbol(self, market_id: int) -> str:
        """Symbol for a market id; unmapped ids become UNKNOWN-{id}"""
        return self.markets.get(market_id, f"UNKNOWN-{market_id}")

    def size_scale(self, market_id: int) -> float:
        return float(10 ** self.decimals.get(market_id, self.default_decimals))

    def market_id(self, symbol: str) -> Optional[int]:
        for market_id, name in self.markets.items():
            if name == symbol:
                return market_id
        return None


@dataclass(frozen=True)
class DecoderConfig:
    """Everything the decoder needs, passed in explicitly"""
    program_id: Optional[str] = None
    registry: MarketRegistry = field(default_factory=MarketRegistry)
    price_bands: tuple[PriceBand, ...] = DEFAULT_PRICE_BANDS
    price_scale: float = PRICE_SCALE
    quote_scale: float = QUOTE_SCALE
    # Raw prices at or below this are already in decimal units
    raw_price_threshold: int = 1_000_000

    def normalize_price(self, raw_price: int) -> float:
        if raw_price > self.raw_price_threshold:
            return raw_price / self.price_scale
        return float(raw_price)

    def normalize_size(self, raw_qty: int, market_id: int) -> float:
        return abs(raw_qty) / self.registry.size_scale(market_id)

    def normalize_quote(self, raw_amount: int) -> float:
        return raw_amount / self.quote_scale
