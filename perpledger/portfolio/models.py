"""
Persistent portfolio models

Position is the aggregate root; Fill rows are its children. Every derived
Position field (sizes, averages, PnL, status) is a pure function of the
Position's fills and is recomputed from the full fill set on each sync.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..events.trade import TradeSide, OrderType, TradeType


class PositionSide(str, Enum):
    """Position side"""
    LONG = "LONG"
    SHORT = "SHORT"

    @classmethod
    def from_trade_side(cls, side: TradeSide) -> "PositionSide":
        """Side of a position opened by a fill with this raw side"""
        return cls.LONG if side == TradeSide.BUY else cls.SHORT

    @property
    def opening_side(self) -> TradeSide:
        """Raw side that increases a position of this side"""
        return TradeSide.BUY if self is PositionSide.LONG else TradeSide.SELL

    @property
    def direction(self) -> int:
        """PnL sign multiplier"""
        return 1 if self is PositionSide.LONG else -1


class PositionStatus(str, Enum):
    """Position lifecycle status"""
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class Position(BaseModel):
    """Aggregated holding in one market and side"""

    id: str = Field(description="Deterministic composite key")
    wallet_address: str
    market: str
    side: PositionSide
    status: PositionStatus = PositionStatus.OPEN

    avg_entry_price: float = 0.0
    avg_exit_price: Optional[float] = None
    total_size: float = Field(default=0.0, ge=0)
    total_fees: float = 0.0
    realized_pnl: Optional[float] = None

    # Realized PnL breakdown
    price_pnl: float = 0.0
    funding: float = 0.0
    soc_loss: float = 0.0

    created_at: datetime = Field(description="Timestamp of the earliest fill")
    updated_at: datetime = Field(description="Timestamp of the latest fill")
    closed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def summary(self) -> dict[str, Any]:
        """Compact dict for logging"""
        return {
            "id": self.id,
            "market": self.market,
            "side": self.side.value,
            "status": self.status.value,
            "size": self.total_size,
            "avg_entry": self.avg_entry_price,
            "realized": self.realized_pnl,
        }


class Fill(BaseModel):
    """One executed trade belonging to exactly one Position"""

    signature: str = Field(description="Unique fill key (transaction signature)")
    position_id: str
    price: float
    size: float
    fee: float = 0.0
    funding: float = 0.0
    soc_loss: float = 0.0
    is_entry: bool = Field(description="True when the fill increases the position")
    timestamp: datetime
    order_type: Optional[OrderType] = None
    trade_type: Optional[TradeType] = None

    @property
    def notional(self) -> float:
        return self.price * self.size
