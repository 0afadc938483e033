"""
Event Decoder

Turns one transaction's log lines into TradeEvents:
- Extracts and decodes program-data payloads
- Resolves each fill's market through the resolver ladder
- Normalizes raw integers to decimal prices and sizes
- Spreads transaction-level fees, funding and socialized losses evenly
  over the transaction's fills

A transaction that fails to decode contributes no events; the decoder logs
and never raises.
"""
from datetime import datetime, timezone
from typing import Optional, Union
from loguru import logger
from pydantic import ValidationError

from shared.config.settings import RpcSettings
from shared.models.base import DecodeError
from ..events.trade import (
    OrderType,
    TradeEvent,
    TradeSide,
    TradeType,
    UNRESOLVED_MARKET_ID,
)
from .markets import DecoderConfig
from .messages import (
    FillMessage,
    Message,
    PerpFees,
    PerpFunding,
    PerpSocLoss,
    SpotFees,
    NO_ORDER_TYPE,
)
from .payload import decode_logs
from .resolvers import MarketResolver, ResolutionContext, default_resolvers, resolve_market


ORDER_TYPES = {0: OrderType.LIMIT, 1: OrderType.MARKET, 2: OrderType.IOC}

BlockTime = Union[int, float, datetime, None]


def block_time_to_datetime(block_time: BlockTime) -> Optional[datetime]:
    """Chain block time (unix seconds) as an aware UTC datetime"""
    if block_time is None:
        return None
    if isinstance(block_time, datetime):
        return block_time if block_time.tzinfo else block_time.replace(tzinfo=timezone.utc)
    return datetime.fromtimestamp(float(block_time), tz=timezone.utc)


class EventDecoder:
    """Decode protocol program logs into trade events"""

    def __init__(
        self,
        config: Optional[DecoderConfig] = None,
        resolvers: Optional[list[MarketResolver]] = None
    ):
        """
        Initialize decoder

        Args:
            config: Decoder configuration (program id, markets, price bands)
            resolvers: Market resolver ladder; defaults to explicit id,
                order correlation, then price band
        """
        self.config = config or DecoderConfig()
        self.resolvers = resolvers if resolvers is not None else default_resolvers(self.config.price_bands)

        logger.info(
            f"Initialized EventDecoder: program={self.config.program_id}, "
            f"resolvers={[r.name for r in self.resolvers]}"
        )

    def decode_messages(self, log_lines: list[str]) -> list[Message]:
        """Decode every recognizable protocol message in the logs"""
        return decode_logs(log_lines, self.config.program_id)

    def decode_transaction(
        self,
        signature: str,
        log_lines: list[str],
        block_time: BlockTime
    ) -> list[TradeEvent]:
        """
        Decode one transaction

        Args:
            signature: Transaction signature
            log_lines: Transaction log messages
            block_time: Block time (unix seconds or datetime)

        Returns:
            Trade events, empty if the transaction has no fills or is malformed
        """
        try:
            messages = self.decode_messages(log_lines)
            if not messages:
                return []
            return self.map_messages(messages, signature, block_time)
        except DecodeError as e:
            logger.warning(f"Skipping transaction {signature[:8]}...: {e}")
            return []
        except Exception as e:
            logger.error(f"Failed to decode transaction {signature[:8]}...: {e}")
            return []

    def map_messages(
        self,
        messages: list[Message],
        signature: str,
        block_time: BlockTime
    ) -> list[TradeEvent]:
        """Map decoded messages of one transaction to trade events"""
        timestamp = block_time_to_datetime(block_time)
        fills = [m for m in messages if isinstance(m, FillMessage) and m.price > 0 and m.qty != 0]

        if not fills:
            return []
        if timestamp is None:
            logger.warning(f"Transaction {signature[:8]}... has no block time; skipping {len(fills)} fill(s)")
            return []

        context = ResolutionContext.from_messages(messages)

        total_fees, total_funding, total_soc_loss = self._transaction_amounts(messages)
        share = 1.0 / len(fills)

        events = []
        for index, fill in enumerate(fills):
            market_id, resolved_by = resolve_market(fill, context, self.resolvers)
            if market_id is None:
                logger.warning(f"Could not resolve market for fill {index} of {signature[:8]}...")
                market_id = UNRESOLVED_MARKET_ID
            elif resolved_by != "explicit":
                logger.debug(f"Market {market_id} for {signature[:8]}... resolved via {resolved_by}")

            try:
                event = TradeEvent(
                    signature=signature,
                    fill_index=index,
                    side=TradeSide.BUY if fill.side == 0 else TradeSide.SELL,
                    price=self.config.normalize_price(fill.price),
                    size=self.config.normalize_size(fill.qty, market_id),
                    market_id=market_id,
                    symbol=self.config.registry.symbol(market_id),
                    timestamp=timestamp,
                    fee=total_fees * share,
                    funding=total_funding * share,
                    soc_loss=total_soc_loss * share,
                    order_type=self._order_type(fill),
                    trade_type=TradeType.PERP if fill.is_perp else TradeType.SPOT,
                    metadata={"market_resolved_by": resolved_by or "none"},
                )
            except ValidationError as e:
                raise DecodeError(f"Invalid fill {index}: {e}") from e

            events.append(event)

        return events

    def _transaction_amounts(self, messages: list[Message]) -> tuple[float, float, float]:
        """Fees, funding and socialized losses summed over the transaction"""
        fees = 0.0
        funding = 0.0
        soc_loss = 0.0

        for message in messages:
            if isinstance(message, SpotFees):
                fees += abs(self.config.normalize_quote(message.fees))
            elif isinstance(message, PerpFees):
                amount = message.fees if message.fees != 0 else message.rebates
                fees += abs(self.config.normalize_quote(amount))
            elif isinstance(message, PerpFunding):
                funding += self.config.normalize_quote(message.funding)
            elif isinstance(message, PerpSocLoss):
                soc_loss += abs(self.config.normalize_quote(message.soc_loss))

        return fees, funding, soc_loss

    @staticmethod
    def _order_type(fill: FillMessage) -> OrderType:
        """Explicit order type first, then the IOC flag, then LIMIT"""
        if fill.order_type != NO_ORDER_TYPE and fill.order_type in ORDER_TYPES:
            return ORDER_TYPES[fill.order_type]
        if fill.ioc:
            return OrderType.IOC
        return OrderType.LIMIT


def create_event_decoder(rpc_settings: RpcSettings) -> EventDecoder:
    """Factory function to create a decoder from settings"""
    return EventDecoder(DecoderConfig(program_id=rpc_settings.program_id))
