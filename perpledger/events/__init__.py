"""
Event models

Immutable facts decoded from chain data.

Usage:
    from perpledger.events import TradeEvent, TradeSide

    event = TradeEvent(
        signature="5h9...",
        side=TradeSide.BUY,
        price=100.0,
        size=10.0,
        market_id=0,
        symbol="SOL-USDC",
        timestamp=datetime(2026, 1, 5, tzinfo=timezone.utc),
    )
"""

from .base import BaseEvent
from .trade import (
    TradeEvent,
    TradeSide,
    OrderType,
    TradeType,
    UNRESOLVED_MARKET_ID,
    make_fill_key,
)

__all__ = [
    "BaseEvent",
    "TradeEvent",
    "TradeSide",
    "OrderType",
    "TradeType",
    "UNRESOLVED_MARKET_ID",
    "make_fill_key",
]
