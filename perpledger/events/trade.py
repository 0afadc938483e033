"""
Trade events

A TradeEvent is one fill decoded from a transaction's program logs. One
transaction can carry several fills; they share the signature and are told
apart by fill_index.
"""
from typing import Literal
from enum import Enum

from pydantic import Field, computed_field

from .base import BaseEvent


class TradeSide(str, Enum):
    """Raw side of a fill as reported on-chain"""
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "TradeSide":
        return TradeSide.SELL if self is TradeSide.BUY else TradeSide.BUY


class OrderType(str, Enum):
    """Order type of the order that produced the fill"""
    LIMIT = "LIMIT"
    MARKET = "MARKET"
    IOC = "IOC"


class TradeType(str, Enum):
    """Product type"""
    SPOT = "SPOT"
    PERP = "PERP"


UNRESOLVED_MARKET_ID = -1


def make_fill_key(signature: str, fill_index: int) -> str:
    """
    Unique key of a fill

    The first fill of a transaction is keyed by the bare signature; later
    fills of the same transaction get an index suffix.
    """
    return signature if fill_index == 0 else f"{signature}:{fill_index}"


class TradeEvent(BaseEvent):
    """
    One executed fill

    Prices and sizes are already normalized to decimal units. fee, funding
    and soc_loss are this fill's even share of the transaction totals.
    """
    event_type: Literal["trade"] = "trade"

    signature: str = Field(description="Transaction signature")
    fill_index: int = Field(default=0, ge=0, description="Index of the fill inside its transaction")

    side: TradeSide
    price: float = Field(gt=0)
    size: float = Field(gt=0)

    market_id: int = Field(default=UNRESOLVED_MARKET_ID, description="On-chain market id, -1 if unresolved")
    symbol: str = Field(description="Human readable market (e.g., 'SOL-USDC')")

    fee: float = Field(default=0.0, ge=0)
    funding: float = Field(default=0.0, description="Funding payment share (signed)")
    soc_loss: float = Field(default=0.0, description="Socialized loss share")

    order_type: OrderType = OrderType.LIMIT
    trade_type: TradeType = TradeType.SPOT

    @computed_field
    @property
    def notional(self) -> float:
        return self.price * self.size

    @property
    def fill_key(self) -> str:
        return make_fill_key(self.signature, self.fill_index)

    @property
    def market_key(self) -> str:
        """Market component of the position key: id when resolved, else symbol"""
        if self.market_id != UNRESOLVED_MARKET_ID:
            return str(self.market_id)
        return self.symbol
