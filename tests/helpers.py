"""
Test helpers: message builders and in-memory fakes
"""
import base64
from datetime import datetime, timezone
from typing import Optional

from shared.models.base import RateLimitedError, SourceError
from perpledger.decoder.messages import (
    FillMessage,
    MessageTag,
    OrderPlaced,
    NO_INSTR_ID,
    NO_ORDER_TYPE,
)
from perpledger.events import TradeEvent, TradeSide
from perpledger.portfolio import PositionAggregator
from perpledger.portfolio.models import Fill, Position, PositionSide
from perpledger.sources.base import IPriceSource, ITransactionSource, RawTransaction, SignatureInfo


WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
OTHER_WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
PROGRAM_ID = "Drvrseg8AQLP8B96DBGmHRjFGviFNYTkHueY9g3k27Gu"

# 2026-01-05 08:00:00 UTC
T0 = 1_767_600_000


def utc(block_time: int) -> datetime:
    return datetime.fromtimestamp(block_time, tz=timezone.utc)


# ===== Message helpers =====


def fill_message(
    side: TradeSide,
    price: float,
    size: float,
    instr_id: int = 0,
    order_id: int = 1,
    perp: bool = True,
    order_type: int = NO_ORDER_TYPE,
    ioc: int = 0,
    decimals: int = 9
) -> FillMessage:
    """Fill with raw price (1e9 scale) and raw size (market decimals)"""
    return FillMessage(
        tag=MessageTag.PERP_FILL if perp else MessageTag.SPOT_FILL,
        side=0 if side == TradeSide.BUY else 1,
        order_type=order_type,
        ioc=ioc,
        instr_id=instr_id,
        order_id=order_id,
        price=int(round(price * 1e9)),
        qty=int(round(size * 10 ** decimals)),
    )


def order_message(instr_id: int, order_id: int, perp: bool = True) -> OrderPlaced:
    return OrderPlaced(
        tag=MessageTag.PERP_ORDER_PLACED if perp else MessageTag.SPOT_ORDER_PLACED,
        side=0,
        order_type=0,
        instr_id=instr_id,
        order_id=order_id,
        price=0,
        qty=0,
    )


def program_log(message, program_id: Optional[str] = None) -> str:
    payload = base64.b64encode(message.pack()).decode()
    if program_id:
        return f"Program {program_id} data: {payload}"
    return f"Program data: {payload}"


def logs(*messages) -> list[str]:
    """Log lines of a transaction emitting the given messages"""
    return (
        [f"Program {PROGRAM_ID} invoke [1]"]
        + [program_log(m) for m in messages]
        + [f"Program {PROGRAM_ID} success"]
    )


def trade_event(
    signature: str,
    side: TradeSide,
    price: float,
    size: float,
    block_time: int,
    market_id: int = 0,
    symbol: str = "SOL-USDC",
    fill_index: int = 0,
    fee: float = 0.0
) -> TradeEvent:
    return TradeEvent(
        signature=signature,
        fill_index=fill_index,
        side=side,
        price=price,
        size=size,
        market_id=market_id,
        symbol=symbol,
        timestamp=utc(block_time),
        fee=fee,
    )


def make_position(
    position_id: str,
    wallet: str = WALLET,
    market: str = "SOL-USDC",
    side: PositionSide = PositionSide.LONG,
    block_time: int = T0
) -> Position:
    return Position(
        id=position_id,
        wallet_address=wallet,
        market=market,
        side=side,
        created_at=utc(block_time),
        updated_at=utc(block_time),
    )


def make_fill(
    signature: str,
    position_id: str,
    price: float,
    size: float,
    is_entry: bool,
    block_time: int = T0,
    fee: float = 0.0
) -> Fill:
    return Fill(
        signature=signature,
        position_id=position_id,
        price=price,
        size=size,
        fee=fee,
        is_entry=is_entry,
        timestamp=utc(block_time),
    )


async def store_position(store, position: Position, fills: list[Fill]) -> Position:
    """Persist a position with its fills and derived fields"""
    await store.ensure_position(position)
    for fill in fills:
        await store.upsert_fill(fill)
    updated = PositionAggregator().recompute(position, await store.list_fills(position.id))
    await store.update_position(updated)
    return updated


# ===== Fakes =====


class FakeTransactionSource(ITransactionSource):
    """Scripted wallet history"""

    def __init__(self):
        self.transactions: dict[str, RawTransaction] = {}
        self.history: list[SignatureInfo] = []  # newest first
        self.failures: dict[str, int] = {}
        self.errors: dict[str, Exception] = {}
        self.transaction_calls: dict[str, int] = {}
        self.signature_calls: list[tuple[int, Optional[str]]] = []

    def add(self, signature: str, block_time: int, log_lines: list[str], err=None) -> None:
        self.transactions[signature] = RawTransaction(
            signature=signature,
            block_time=block_time,
            log_lines=log_lines,
            err=err,
        )
        self.history.append(SignatureInfo(signature=signature, block_time=block_time, err=err))
        self.history.sort(key=lambda s: s.block_time or 0, reverse=True)

    def fail(self, signature: str, times: int) -> None:
        """Make get_transaction rate limit this signature the next N times"""
        self.failures[signature] = times

    def break_with(self, signature: str, error: Exception) -> None:
        """Make get_transaction raise this error for the signature on every call"""
        self.errors[signature] = error

    async def list_signatures(
        self,
        wallet_address: str,
        limit: int,
        before: Optional[str] = None
    ) -> list[SignatureInfo]:
        self.signature_calls.append((limit, before))
        start = 0
        if before is not None:
            start = next(i for i, s in enumerate(self.history) if s.signature == before) + 1
        return [s.model_copy() for s in self.history[start:start + limit]]

    async def get_transaction(self, signature: str) -> Optional[RawTransaction]:
        self.transaction_calls[signature] = self.transaction_calls.get(signature, 0) + 1
        if signature in self.errors:
            raise self.errors[signature]
        if self.failures.get(signature, 0) > 0:
            self.failures[signature] -= 1
            raise RateLimitedError(f"429 for {signature}")
        tx = self.transactions.get(signature)
        return tx.model_copy() if tx else None


class FakePriceSource(IPriceSource):
    """Static prices, optionally failing"""

    def __init__(self, prices: Optional[dict[str, float]] = None):
        self.prices = dict(prices or {})
        self.failing = False
        self.error: Exception = SourceError("price API down")
        self.calls: list[list[str]] = []

    async def get_prices(self, symbols: list[str]) -> dict[str, float]:
        self.calls.append(list(symbols))
        if self.failing:
            raise self.error
        return {s: self.prices[s] for s in symbols if s in self.prices}


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
