"""
Cost Basis Tracker

Replays fills against a running weighted-average cost basis:
- Entry fills move the average toward the fill price
- Exit fills realize PnL against the current average
- A fill arriving after the position went flat starts a fresh basis

Used both by the sync path (to derive stored Position fields) and by the
PnL engine (to derive the live basis of open positions), so the two can
never disagree.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Protocol
from loguru import logger

from .models import PositionSide


DEFAULT_EPSILON = 1e-6


class FillLike(Protocol):
    """Anything carrying the fields needed for a cost basis replay"""
    price: float
    size: float
    fee: float
    funding: float
    soc_loss: float
    is_entry: bool
    timestamp: datetime


@dataclass
class CostBasisState:
    """
    Running cost basis for one position

    net_size is signed relative to the position side: positive while the
    position is open, zero when flat, negative only if exits exceeded entries.
    """
    side: PositionSide
    epsilon: float = DEFAULT_EPSILON

    net_size: float = 0.0
    avg_cost: float = 0.0
    realized_pnl: float = 0.0

    # Totals for averages
    entry_size: float = 0.0
    entry_value: float = 0.0
    exit_size: float = 0.0
    exit_value: float = 0.0

    # Costs and carry
    total_fees: float = 0.0
    funding: float = 0.0
    soc_loss: float = 0.0

    # Timestamps
    first_fill: Optional[datetime] = None
    last_fill: Optional[datetime] = None
    num_fills: int = 0

    @property
    def is_flat(self) -> bool:
        return abs(self.net_size) < self.epsilon

    @property
    def avg_entry_price(self) -> float:
        return self.entry_value / self.entry_size if self.entry_size > 0 else 0.0

    @property
    def avg_exit_price(self) -> Optional[float]:
        return self.exit_value / self.exit_size if self.exit_size > 0 else None

    @property
    def total_pnl(self) -> float:
        """Price PnL plus funding minus socialized losses"""
        return self.realized_pnl + self.funding - self.soc_loss

    def apply(self, fill: FillLike) -> None:
        """Apply one fill"""
        if fill.is_entry:
            self._add(fill.price, fill.size)
        else:
            self._reduce(fill.price, fill.size)

        self.total_fees += fill.fee
        self.funding += fill.funding
        self.soc_loss += fill.soc_loss

        if self.first_fill is None or fill.timestamp < self.first_fill:
            self.first_fill = fill.timestamp
        if self.last_fill is None or fill.timestamp > self.last_fill:
            self.last_fill = fill.timestamp
        self.num_fills += 1

    def _add(self, price: float, size: float) -> None:
        """Entry fill: extend the position"""
        if self.net_size < self.epsilon:
            # Flat (or over-closed): stale basis from a finished cycle must not leak in
            self.avg_cost = price
        else:
            self.avg_cost = (self.net_size * self.avg_cost + price * size) / (self.net_size + size)

        self.net_size += size
        self.entry_size += size
        self.entry_value += price * size

    def _reduce(self, price: float, size: float) -> None:
        """Exit fill: realize PnL against the running basis, up to the held size"""
        closable = min(size, max(self.net_size, 0.0))
        if closable < size:
            logger.debug(f"Exit of {size} @ {price} exceeds held size {self.net_size}; realizing {closable}")
        if closable > 0 and self.avg_cost > 0:
            self.realized_pnl += (price - self.avg_cost) * closable * self.side.direction

        self.net_size -= size
        self.exit_size += size
        self.exit_value += price * size


def replay_cost_basis(
    fills: Iterable[FillLike],
    side: PositionSide,
    epsilon: float = DEFAULT_EPSILON
) -> CostBasisState:
    """
    Replay fills in chronological order

    Args:
        fills: Fills of one position, any order
        side: Position side
        epsilon: Flatness threshold

    Returns:
        Final cost basis state
    """
    state = CostBasisState(side=side, epsilon=epsilon)
    # Entries before exits within the same block time
    for fill in sorted(fills, key=lambda f: (f.timestamp, not f.is_entry)):
        state.apply(fill)
    return state
