"""
Market id resolvers

A fill's market is resolved by trying strategies in order until one
answers:
1. ExplicitIdResolver: the fill's own instr_id field
2. OrderCorrelationResolver: the instr_id of another message in the same
   transaction sharing the fill's order_id
3. PriceBandResolver: a configured raw price band (fallback for malformed
   logs; tune bands in DecoderConfig)
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .markets import PriceBand
from .messages import FillMessage, Message, OrderPlaced, NO_INSTR_ID


@dataclass
class ResolutionContext:
    """Transaction-wide facts available to resolvers"""
    order_markets: dict[int, int] = field(default_factory=dict)

    @classmethod
    def from_messages(cls, messages: Iterable[Message]) -> "ResolutionContext":
        """Build the order id -> market id map from every message in the transaction"""
        order_markets: dict[int, int] = {}
        for message in messages:
            if isinstance(message, (OrderPlaced, FillMessage)) and message.instr_id != NO_INSTR_ID:
                order_markets[message.order_id] = message.instr_id
        return cls(order_markets=order_markets)


class MarketResolver(ABC):
    """One step of the market resolution ladder"""

    name: str = "resolver"

    @abstractmethod
    def resolve(self, fill: FillMessage, context: ResolutionContext) -> Optional[int]:
        """Return a market id, or None to defer to the next resolver"""
        pass


class ExplicitIdResolver(MarketResolver):
    name = "explicit"

    def resolve(self, fill: FillMessage, context: ResolutionContext) -> Optional[int]:
        return fill.instr_id if fill.has_instr_id else None


class OrderCorrelationResolver(MarketResolver):
    name = "order_correlation"

    def resolve(self, fill: FillMessage, context: ResolutionContext) -> Optional[int]:
        return context.order_markets.get(fill.order_id)


class PriceBandResolver(MarketResolver):
    """Infer the market from where the raw price falls"""
    name = "price_band"

    def __init__(self, bands: Iterable[PriceBand]):
        self.bands = tuple(bands)

    def resolve(self, fill: FillMessage, context: ResolutionContext) -> Optional[int]:
        for band in self.bands:
            if band.contains(fill.price):
                return band.market_id
        return None


def default_resolvers(bands: Iterable[PriceBand]) -> list[MarketResolver]:
    """Resolver ladder in priority order"""
    return [
        ExplicitIdResolver(),
        OrderCorrelationResolver(),
        PriceBandResolver(bands),
    ]


def resolve_market(
    fill: FillMessage,
    context: ResolutionContext,
    resolvers: Iterable[MarketResolver]
) -> tuple[Optional[int], Optional[str]]:
    """
    Run the ladder

    Returns:
        (market_id, resolver name), or (None, None) when nothing resolved
    """
    for resolver in resolvers:
        market_id = resolver.resolve(fill, context)
        if market_id is not None:
            return market_id, resolver.name
    return None, None
