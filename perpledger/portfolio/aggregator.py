"""
Position Aggregator

Maps decoded trade events onto logical positions and derives each
position's fields from its complete fill set.

Positions are keyed by (market, side, UTC day of the opening fill, wallet).
This is a heuristic boundary: two round trips in the same market and side on
the same day merge into one position.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional
from loguru import logger

from ..events.trade import TradeEvent
from .models import Fill, Position, PositionSide, PositionStatus
from .position import DEFAULT_EPSILON, replay_cost_basis


MS_PER_DAY = 86_400_000


def to_utc(ts: datetime) -> datetime:
    """Treat naive timestamps as UTC"""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def day_bucket(ts: datetime) -> int:
    """Days since the Unix epoch (UTC)"""
    return int(to_utc(ts).timestamp() * 1000) // MS_PER_DAY


def position_key(event: TradeEvent, wallet_address: str) -> str:
    """Deterministic position id for a fill that opens or extends a position"""
    return f"{event.market_key}-{event.side.value}-{day_bucket(event.timestamp)}-{wallet_address}"


def split_fill_key(fill_key: str, part: int) -> str:
    """
    Key of one part of a fill split across positions

    The first part keeps the fill key so re-deliveries still find it.
    """
    return fill_key if part == 0 else f"{fill_key}#{part}"


@dataclass
class OpenBook:
    """Running net size of a position while events are being assigned"""
    position_id: str
    market_key: str
    side: PositionSide
    net_size: float
    opened_at: datetime


@dataclass(frozen=True)
class FillAssignment:
    """A trade event mapped to its owning position"""
    event: TradeEvent
    position_id: str
    side: PositionSide
    is_entry: bool
    fill_key: Optional[str] = None

    def to_fill(self) -> Fill:
        event = self.event
        return Fill(
            signature=self.fill_key or event.fill_key,
            position_id=self.position_id,
            price=event.price,
            size=event.size,
            fee=event.fee,
            funding=event.funding,
            soc_loss=event.soc_loss,
            is_entry=self.is_entry,
            timestamp=event.timestamp,
            order_type=event.order_type,
            trade_type=event.trade_type,
        )


class PositionAggregator:
    """
    Groups trade events into positions and recomputes position state

    Assignment rule, applied in chronological order:
    - A fill opposite to an open position in the same market is an exit of
      the most recently opened such position
    - An exit larger than that position closes it; the excess reduces the
      next open position or opens the opposite side. Fees, funding and
      socialized loss stay on the first part
    - Otherwise it is an entry of the position keyed by its own market,
      side and day
    """

    def __init__(self, epsilon: float = DEFAULT_EPSILON):
        """
        Initialize aggregator

        Args:
            epsilon: Net size below which a position counts as closed
        """
        self.epsilon = epsilon

        logger.debug(f"Initialized PositionAggregator: epsilon={epsilon}")

    @staticmethod
    def market_key_of(position: Position) -> str:
        """Market component of a stored position's id"""
        # id is "{market_key}-{side}-{bucket}-{wallet}" and market_key may itself contain dashes
        return position.id.rsplit("-", 3)[0]

    def books_from_positions(self, positions: Iterable[Position]) -> list[OpenBook]:
        """Seed running books from stored open positions"""
        return [
            OpenBook(
                position_id=p.id,
                market_key=self.market_key_of(p),
                side=p.side,
                net_size=p.total_size,
                opened_at=p.created_at,
            )
            for p in positions
            if p.is_open and p.total_size >= self.epsilon
        ]

    def assign(
        self,
        events: Iterable[TradeEvent],
        wallet_address: str,
        open_books: Iterable[OpenBook] = ()
    ) -> list[FillAssignment]:
        """
        Assign events to positions

        Args:
            events: Decoded trade events, any order
            wallet_address: Owning wallet
            open_books: Positions already open before these events

        Returns:
            One assignment per event part, in chronological order
        """
        books: dict[str, OpenBook] = {b.position_id: b for b in open_books}
        assignments: list[FillAssignment] = []

        for event in sorted(events, key=lambda e: (e.timestamp, e.signature, e.fill_index)):
            remaining: Optional[TradeEvent] = event
            part = 0

            while remaining is not None:
                target = self._find_position_to_reduce(books, remaining)
                if target is None:
                    break

                if remaining.size <= target.net_size + self.epsilon:
                    closing, carry = remaining, None
                else:
                    # Larger than the book: close it and carry the excess forward
                    closing = remaining.model_copy(update={"size": target.net_size})
                    carry = remaining.model_copy(update={
                        "size": remaining.size - target.net_size,
                        "fee": 0.0,
                        "funding": 0.0,
                        "soc_loss": 0.0,
                    })
                    logger.debug(
                        f"Fill {event.fill_key} flips {target.position_id}: "
                        f"closing {closing.size}, carrying {carry.size}"
                    )

                target.net_size = max(target.net_size - closing.size, 0.0)
                assignments.append(FillAssignment(
                    event=closing,
                    position_id=target.position_id,
                    side=target.side,
                    is_entry=False,
                    fill_key=split_fill_key(event.fill_key, part),
                ))
                remaining = carry
                part += 1

            if remaining is None:
                continue

            side = PositionSide.from_trade_side(remaining.side)
            pid = position_key(remaining, wallet_address)
            book = books.get(pid)
            if book is None:
                book = OpenBook(
                    position_id=pid,
                    market_key=remaining.market_key,
                    side=side,
                    net_size=0.0,
                    opened_at=remaining.timestamp,
                )
                books[pid] = book
            elif book.net_size < self.epsilon:
                # Same key reopened after going flat
                book.opened_at = remaining.timestamp

            book.net_size += remaining.size
            assignments.append(FillAssignment(
                event=remaining,
                position_id=pid,
                side=side,
                is_entry=True,
                fill_key=split_fill_key(event.fill_key, part),
            ))

        return assignments

    def _find_position_to_reduce(
        self,
        books: dict[str, OpenBook],
        event: TradeEvent
    ) -> Optional[OpenBook]:
        candidates = [
            b for b in books.values()
            if b.market_key == event.market_key
            and b.side.opening_side != event.side
            and b.net_size >= self.epsilon
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda b: (to_utc(b.opened_at), b.position_id))

    @staticmethod
    def group(assignments: Iterable[FillAssignment]) -> dict[str, list[FillAssignment]]:
        """Group assignments by position id, preserving first-seen order"""
        groups: dict[str, list[FillAssignment]] = {}
        for assignment in assignments:
            groups.setdefault(assignment.position_id, []).append(assignment)
        return groups

    @staticmethod
    def new_position(
        position_id: str,
        assignments: list[FillAssignment],
        wallet_address: str
    ) -> Position:
        """Skeleton position created before any of its fills are stored"""
        first = min(assignments, key=lambda a: a.event.timestamp)
        return Position(
            id=position_id,
            wallet_address=wallet_address,
            market=first.event.symbol,
            side=first.side,
            status=PositionStatus.OPEN,
            created_at=first.event.timestamp,
            updated_at=first.event.timestamp,
        )

    def recompute(self, position: Position, fills: list[Fill]) -> Position:
        """
        Derive position fields from its complete fill set

        Args:
            position: Stored position
            fills: Every fill currently stored for the position

        Returns:
            Updated copy of the position
        """
        if not fills:
            return position

        state = replay_cost_basis(fills, position.side, self.epsilon)
        closed = state.is_flat
        has_realized = state.exit_size > 0 or state.funding != 0 or state.soc_loss != 0

        updated = position.model_copy(update={
            "status": PositionStatus.CLOSED if closed else PositionStatus.OPEN,
            "total_size": 0.0 if closed else abs(state.net_size),
            "avg_entry_price": state.avg_entry_price,
            "avg_exit_price": state.avg_exit_price,
            "total_fees": state.total_fees,
            "price_pnl": state.realized_pnl,
            "funding": state.funding,
            "soc_loss": state.soc_loss,
            "realized_pnl": state.total_pnl if has_realized else None,
            "created_at": state.first_fill,
            "updated_at": state.last_fill,
            "closed_at": state.last_fill if closed else None,
        })

        logger.debug(f"Recomputed position: {updated.summary()}")
        return updated
