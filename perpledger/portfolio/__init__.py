"""
Positions, cost basis and PnL

Components:
- Position / Fill: Persistent models
- PositionAggregator: Assigns trade events to positions and recomputes them
- replay_cost_basis: Weighted-average cost basis replay
- pnl.PnlEngine: Mark-to-market of open positions (imported from
  perpledger.portfolio.pnl; it depends on the storage layer)

Usage:
    aggregator = PositionAggregator(epsilon=1e-6)
    assignments = aggregator.assign(events, wallet)

    from perpledger.portfolio.pnl import PnlEngine
    engine = PnlEngine(store, CoinGeckoPriceSource(settings.price))
    rows = await engine.get_wallet_performance(wallet)
"""

from .models import Position, Fill, PositionSide, PositionStatus
from .position import CostBasisState, replay_cost_basis, DEFAULT_EPSILON
from .aggregator import (
    PositionAggregator,
    FillAssignment,
    OpenBook,
    position_key,
    day_bucket,
    to_utc,
)

__all__ = [
    "Position",
    "Fill",
    "PositionSide",
    "PositionStatus",
    "CostBasisState",
    "replay_cost_basis",
    "DEFAULT_EPSILON",
    "PositionAggregator",
    "FillAssignment",
    "OpenBook",
    "position_key",
    "day_bucket",
    "to_utc",
]
