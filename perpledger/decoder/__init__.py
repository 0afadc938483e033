"""
Protocol log decoding

Turns raw transaction log lines into TradeEvents.

Components:
- messages: Closed set of tagged binary message layouts
- payload: Payload extraction and encoding fallbacks
- resolvers: Ordered market id resolution strategies
- markets: Market registry and DecoderConfig
- EventDecoder: Ties it together per transaction

Usage:
    decoder = EventDecoder(DecoderConfig(program_id=settings.rpc.program_id))
    events = decoder.decode_transaction(signature, log_lines, block_time)
"""

from .decoder import EventDecoder, create_event_decoder, block_time_to_datetime
from .markets import DecoderConfig, MarketRegistry, PriceBand, MARKET_MAP, DECIMAL_MAP
from .messages import (
    MessageTag,
    OrderPlaced,
    FillMessage,
    SpotFees,
    PerpFees,
    PerpFunding,
    PerpSocLoss,
    parse_message,
    NO_INSTR_ID,
    NO_ORDER_TYPE,
)
from .payload import extract_payloads, decode_payload, decode_logs
from .resolvers import (
    MarketResolver,
    ResolutionContext,
    ExplicitIdResolver,
    OrderCorrelationResolver,
    PriceBandResolver,
    default_resolvers,
    resolve_market,
)

__all__ = [
    "EventDecoder",
    "create_event_decoder",
    "block_time_to_datetime",
    "DecoderConfig",
    "MarketRegistry",
    "PriceBand",
    "MARKET_MAP",
    "DECIMAL_MAP",
    "MessageTag",
    "OrderPlaced",
    "FillMessage",
    "SpotFees",
    "PerpFees",
    "PerpFunding",
    "PerpSocLoss",
    "parse_message",
    "NO_INSTR_ID",
    "NO_ORDER_TYPE",
    "extract_payloads",
    "decode_payload",
    "decode_logs",
    "MarketResolver",
    "ResolutionContext",
    "ExplicitIdResolver",
    "OrderCorrelationResolver",
    "PriceBandResolver",
    "default_resolvers",
    "resolve_market",
]
