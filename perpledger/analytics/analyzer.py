"""
Analytics Engine

Read-only aggregation over a wallet's stored positions and fills:
- Comprehensive performance summary (PnL, win rate, sessions, markets, risk)
- Chart series (historical PnL, equity curve, drawdown, heatmap)
- Time-of-day and daily activity
- Portfolio composition of open positions
- Behavioral metrics and paginated trade history
- Cross-wallet leaderboard by realized PnL
"""
import calendar
from collections import defaultdict
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
from loguru import logger
from pydantic import BaseModel, Field

from ..events.trade import OrderType, TradeType
from ..portfolio.aggregator import to_utc
from ..portfolio.models import Fill, Position, PositionSide, PositionStatus
from ..portfolio.pnl import PnlEngine
from ..storage.base import Store
from .behavioral import BehavioralMetrics, TapeEntry, compute_behavioral_metrics
from .metrics import calculate_risk_metrics, drawdown_frame, safe_ratio


# Trading sessions by UTC close hour: (label, start, end)
SESSIONS = (
    ("Asian", 0, 8),
    ("London", 8, 16),
    ("New York", 16, 24),
)

DEFAULT_STARTING_BALANCE = 10_000.0


def session_of(ts: datetime) -> str:
    hour = to_utc(ts).hour
    for label, start, end in SESSIONS:
        if start <= hour < end:
            return label
    return SESSIONS[0][0]


def _r2(value: float) -> float:
    return round(value, 2)


def _date_key(ts: datetime) -> str:
    return to_utc(ts).date().isoformat()


class AnalyticsFilters(BaseModel):
    """Position filters for the comprehensive summary"""
    market: Optional[str] = None
    start: Optional[datetime] = Field(default=None, description="Earliest position created_at")
    end: Optional[datetime] = Field(default=None, description="Latest position created_at")


class TradeHistoryQuery(BaseModel):
    """Trade history filters and pagination"""
    market: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: int = Field(default=20, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


@dataclass
class ComprehensiveAnalytics:
    """Performance summary of a wallet"""
    total_pnl: dict[str, float]
    win_rate: float
    trade_count: dict[str, int]
    avg_trade_duration: float  # minutes
    long_short_ratio: float
    largest_gain: Optional[dict[str, Any]]
    largest_loss: Optional[dict[str, Any]]
    avg_win: float
    avg_loss: float
    total_fees: float
    total_volume: float
    fee_composition: dict[str, float]
    session_performance: dict[str, dict[str, float]]
    order_type_performance: dict[str, dict[str, float]]
    market_performance: dict[str, dict[str, float]]
    risk_metrics: dict[str, float]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AnalyticsEngine:
    """
    Analytics over stored positions and fills

    Realized figures come from CLOSED positions with a realized PnL;
    unrealized PnL is delegated to the PnlEngine when one is provided.
    """

    def __init__(
        self,
        store: Store,
        pnl_engine: Optional[PnlEngine] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize analytics engine

        Args:
            store: Position and fill store
            pnl_engine: Engine for unrealized PnL (unrealized is 0 without one)
            clock: Current time source, used by trade history volume windows
        """
        self.store = store
        self.pnl_engine = pnl_engine
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        logger.info(f"Initialized AnalyticsEngine: unrealized={'on' if pnl_engine else 'off'}")

    # ===== Loading =====

    async def _positions_with_fills(
        self,
        wallet_address: str,
        **filters: Any
    ) -> list[tuple[Position, list[Fill]]]:
        positions = await self.store.list_positions(wallet_address, **filters)
        return [(p, await self.store.list_fills(p.id)) for p in positions]

    @staticmethod
    def _closed(positions: list[Position]) -> list[Position]:
        """Closed positions with realized PnL, in close order"""
        closed = [
            p for p in positions
            if p.status == PositionStatus.CLOSED and p.realized_pnl is not None
        ]
        return sorted(closed, key=lambda p: to_utc(p.closed_at or p.updated_at))

    # ===== Summary =====

    async def get_comprehensive_analytics(
        self,
        wallet_address: str,
        filters: Optional[AnalyticsFilters] = None
    ) -> ComprehensiveAnalytics:
        """
        Full performance summary

        Args:
            wallet_address: Wallet to analyze
            filters: Optional market and created_at range

        Returns:
            ComprehensiveAnalytics
        """
        filters = filters or AnalyticsFilters()
        loaded = await self._positions_with_fills(
            wallet_address,
            market=filters.market,
            created_from=filters.start,
            created_to=filters.end,
        )
        positions = [p for p, _ in loaded]
        all_fills = [f for _, fills in loaded for f in fills]

        open_positions = [p for p in positions if p.status == PositionStatus.OPEN]
        closed = self._closed(positions)
        pnls = [p.realized_pnl for p in closed]

        unrealized = 0.0
        if open_positions and self.pnl_engine is not None:
            unrealized = await self.pnl_engine.get_total_unrealized(wallet_address)

        realized = sum(pnls)
        wins = [p for p in closed if p.realized_pnl > 0]
        losses = [p for p in closed if p.realized_pnl < 0]

        durations = [
            (to_utc(p.closed_at) - to_utc(p.created_at)).total_seconds() / 60
            for p in closed
            if p.closed_at and to_utc(p.closed_at) > to_utc(p.created_at)
        ]

        longs = sum(1 for p in positions if p.side == PositionSide.LONG)
        shorts = sum(1 for p in positions if p.side == PositionSide.SHORT)

        by_pnl = sorted(closed, key=lambda p: p.realized_pnl, reverse=True)
        largest_gain = self._extreme(by_pnl[0]) if by_pnl and by_pnl[0].realized_pnl > 0 else None
        largest_loss = self._extreme(by_pnl[-1]) if by_pnl and by_pnl[-1].realized_pnl < 0 else None

        total_fees = sum(f.fee for f in all_fills)
        fee_composition = {
            "spot": _r2(sum(f.fee for f in all_fills if f.trade_type == TradeType.SPOT)),
            "perp": _r2(sum(f.fee for f in all_fills if f.trade_type == TradeType.PERP)),
            "total": _r2(total_fees),
        }

        risk = calculate_risk_metrics([(p.closed_at or p.updated_at, p.realized_pnl) for p in closed])

        result = ComprehensiveAnalytics(
            total_pnl={
                "realized": realized,
                "unrealized": unrealized,
                "total": realized + unrealized,
            },
            win_rate=_r2(safe_ratio(len(wins), len(closed)) * 100),
            trade_count={
                "total": len(positions),
                "wins": len(wins),
                "losses": len(losses),
                "open": len(open_positions),
            },
            avg_trade_duration=round(safe_ratio(sum(durations), len(durations)), 1),
            long_short_ratio=_r2(longs / shorts if shorts else float(longs)),
            largest_gain=largest_gain,
            largest_loss=largest_loss,
            avg_win=_r2(safe_ratio(sum(p.realized_pnl for p in wins), len(wins))),
            avg_loss=_r2(safe_ratio(sum(p.realized_pnl for p in losses), len(losses))),
            total_fees=_r2(total_fees),
            total_volume=_r2(sum(f.notional for f in all_fills)),
            fee_composition=fee_composition,
            session_performance=self._session_performance(closed),
            order_type_performance=self._order_type_performance(positions, all_fills),
            market_performance=self._market_performance(loaded),
            risk_metrics={k: _r2(v) for k, v in risk.to_dict().items()},
        )

        logger.debug(
            f"Analytics for {wallet_address[:8]}...: {len(positions)} positions, "
            f"realized={realized:.2f}, unrealized={unrealized:.2f}"
        )
        return result

    @staticmethod
    def _extreme(position: Position) -> dict[str, Any]:
        return {
            "amount": position.realized_pnl,
            "position_id": position.id,
            "market": position.market,
        }

    @staticmethod
    def _session_performance(closed: list[Position]) -> dict[str, dict[str, float]]:
        sessions = {label: {"pnl": 0.0, "count": 0} for label, _, _ in SESSIONS}
        for p in closed:
            if p.closed_at is None:
                continue
            stats = sessions[session_of(p.closed_at)]
            stats["pnl"] += p.realized_pnl
            stats["count"] += 1
        return sessions

    @staticmethod
    def _order_type_performance(
        positions: list[Position],
        fills: list[Fill]
    ) -> dict[str, dict[str, float]]:
        by_id = {p.id: p for p in positions}
        performance = {}

        for order_type in OrderType:
            typed = [f for f in fills if f.order_type == order_type]
            if not typed:
                continue

            position_ids = {f.position_id for f in typed}
            total = sum(
                by_id[pid].realized_pnl or 0.0
                for pid in position_ids
                if by_id[pid].status == PositionStatus.CLOSED
            )
            performance[order_type.value] = {
                "count": len(typed),
                "total_pnl": total,
                "avg_pnl": safe_ratio(total, len(position_ids)),
            }

        return performance

    @staticmethod
    def _market_performance(loaded: list[tuple[Position, list[Fill]]]) -> dict[str, dict[str, float]]:
        groups: dict[str, list[tuple[Position, list[Fill]]]] = defaultdict(list)
        for position, fills in loaded:
            groups[position.market].append((position, fills))

        performance = {}
        for market, members in groups.items():
            closed = [
                p for p, _ in members
                if p.status == PositionStatus.CLOSED and p.realized_pnl is not None
            ]
            wins = sum(1 for p in closed if p.realized_pnl > 0)
            performance[market] = {
                "pnl": _r2(sum(p.realized_pnl for p in closed)),
                "win_rate": round(safe_ratio(wins, len(closed)) * 100),
                "trade_count": len(members),
                "volume": _r2(sum(f.notional for _, fills in members for f in fills)),
            }
        return performance

    # ===== Series =====

    async def get_historical_pnl(
        self,
        wallet_address: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> list[dict[str, Any]]:
        """
        Cumulative realized PnL and drawdown per closed position

        Args:
            wallet_address: Wallet to analyze
            start: Earliest close time
            end: Latest close time

        Returns:
            Points with date, cumulative_pnl, drawdown (% of peak), realized_pnl
        """
        closed = [
            p for p in self._closed(await self.store.list_positions(wallet_address, status=PositionStatus.CLOSED))
            if p.closed_at is not None
            and (start is None or to_utc(p.closed_at) >= to_utc(start))
            and (end is None or to_utc(p.closed_at) <= to_utc(end))
        ]
        if not closed:
            return []

        frame = drawdown_frame(p.realized_pnl for p in closed)
        return [
            {
                "date": _date_key(p.closed_at),
                "cumulative_pnl": _r2(row.cumulative),
                "drawdown": _r2(row.drawdown_pct),
                "realized_pnl": _r2(p.realized_pnl),
            }
            for p, row in zip(closed, frame.itertuples())
        ]

    async def get_time_based_performance(
        self,
        wallet_address: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> dict[str, list[dict[str, Any]]]:
        """
        Daily and hourly activity

        A closed position's realized PnL is split evenly across its exit
        fills and attributed to the day and hour of each exit.

        Returns:
            {"daily": [...], "hourly": [...]}
        """
        positions = {p.id: p for p in await self.store.list_positions(wallet_address)}
        fills = await self.store.list_wallet_fills(wallet_address, start, end)

        exit_counts: dict[str, int] = defaultdict(int)
        for f in fills:
            if not f.is_entry:
                exit_counts[f.position_id] += 1

        daily: dict[str, dict[str, float]] = {}
        hourly: dict[int, dict[str, float]] = {}

        for f in fills:
            day = daily.setdefault(_date_key(f.timestamp), {"pnl": 0.0, "trades": 0, "volume": 0.0})
            hour = hourly.setdefault(to_utc(f.timestamp).hour, {"pnl": 0.0, "trades": 0})

            day["trades"] += 1
            day["volume"] += f.notional
            hour["trades"] += 1

            position = positions.get(f.position_id)
            if (
                not f.is_entry
                and position is not None
                and position.status == PositionStatus.CLOSED
                and position.realized_pnl
            ):
                share = position.realized_pnl / exit_counts[f.position_id]
                day["pnl"] += share
                hour["pnl"] += share

        return {
            "daily": [
                {"date": date, "pnl": _r2(d["pnl"]), "trades": d["trades"], "volume": _r2(d["volume"])}
                for date, d in daily.items()
            ],
            "hourly": [
                {"hour": h, "pnl": _r2(d["pnl"]), "trades": d["trades"]}
                for h, d in sorted(hourly.items())
            ],
        }

    async def get_equity_curve(
        self,
        wallet_address: str,
        starting_balance: float = DEFAULT_STARTING_BALANCE
    ) -> list[dict[str, Any]]:
        """Account equity after each closed position"""
        closed = self._closed(await self.store.list_positions(wallet_address, status=PositionStatus.CLOSED))

        curve = []
        cumulative = 0.0
        for p in closed:
            cumulative += p.realized_pnl
            curve.append({
                "timestamp": p.closed_at,
                "equity": starting_balance + cumulative,
                "change": p.realized_pnl,
                "market": p.market,
            })
        return curve

    async def get_portfolio_composition(self, wallet_address: str) -> list[dict[str, Any]]:
        """
        Open notional per market at cost basis

        Unresolved markets are grouped under OTHER.

        Returns:
            Slices with market, value and percentage, largest first
        """
        positions = await self.store.list_positions(wallet_address, status=PositionStatus.OPEN)

        totals: dict[str, float] = defaultdict(float)
        for p in positions:
            market = "OTHER" if p.market.startswith("UNKNOWN") else p.market
            totals[market] += p.total_size * p.avg_entry_price

        total_value = sum(totals.values())
        composition = [
            {
                "market": market,
                "value": _r2(value),
                "percentage": _r2(value / total_value * 100) if total_value > 0 else 0.0,
            }
            for market, value in totals.items()
        ]
        return sorted(composition, key=lambda c: c["value"], reverse=True)

    async def get_drawdown_series(self, wallet_address: str) -> list[dict[str, Any]]:
        """
        Cumulative realized PnL, running peak and absolute drawdown

        Includes open positions that already realized something (partial
        exits, funding). Zero-PnL positions are skipped.
        """
        positions = [
            p for p in await self.store.list_positions(wallet_address)
            if p.realized_pnl is not None and p.realized_pnl != 0
        ]
        positions.sort(key=lambda p: to_utc(p.closed_at or p.updated_at))
        if not positions:
            return []

        frame = drawdown_frame(p.realized_pnl for p in positions)
        return [
            {
                "timestamp": to_utc(p.closed_at or p.updated_at).isoformat(),
                "pnl": _r2(row.cumulative),
                "drawdown": _r2(row.drawdown),
                "peak": _r2(row.peak),
            }
            for p, row in zip(positions, frame.itertuples())
        ]

    async def get_heatmap(self, wallet_address: str, year: int, month: int) -> dict[str, dict[str, Any]]:
        """
        Realized PnL per day of a month

        Positions are attributed to the UTC day they were last updated.

        Returns:
            date -> {"pnl", "count", "positions"}
        """
        start = datetime(year, month, 1, tzinfo=timezone.utc)
        days = calendar.monthrange(year, month)[1]
        end = start + timedelta(days=days)

        heatmap: dict[str, dict[str, Any]] = {}
        for p in await self.store.list_positions(wallet_address):
            updated = to_utc(p.updated_at)
            if not (start <= updated < end):
                continue
            day = heatmap.setdefault(_date_key(updated), {"pnl": 0.0, "count": 0, "positions": []})
            day["pnl"] += p.realized_pnl or 0.0
            day["count"] += 1
            day["positions"].append(p.id)

        return dict(sorted(heatmap.items()))

    # ===== Behavior and history =====

    async def get_behavioral_metrics(self, wallet_address: str) -> BehavioralMetrics:
        """Streaks, expectancy, risk/reward and revenge trading"""
        positions = await self.store.list_positions(wallet_address)
        fills = await self.store.list_wallet_fills(wallet_address)

        markets = {p.id: p.market for p in positions}
        tape = [
            TapeEntry(timestamp=to_utc(f.timestamp), market=markets.get(f.position_id, ""), is_entry=f.is_entry)
            for f in fills
        ]
        closed_pnls = [p.realized_pnl for p in self._closed(positions)]

        return compute_behavioral_metrics(closed_pnls, tape)

    async def get_trade_history(
        self,
        wallet_address: str,
        query: Optional[TradeHistoryQuery] = None
    ) -> dict[str, Any]:
        """
        Paginated fills (newest first) with summary KPIs

        Args:
            wallet_address: Wallet to list
            query: Market, time range and pagination

        Returns:
            {"summary": {...}, "data": [fill dicts], "pagination": {...}}
        """
        query = query or TradeHistoryQuery()
        positions = {p.id: p for p in await self.store.list_positions(wallet_address)}

        def in_market(fill: Fill) -> bool:
            return query.market is None or (
                fill.position_id in positions and positions[fill.position_id].market == query.market
            )

        all_fills = [f for f in await self.store.list_wallet_fills(wallet_address) if in_market(f)]
        fills = [
            f for f in all_fills
            if (query.start is None or to_utc(f.timestamp) >= to_utc(query.start))
            and (query.end is None or to_utc(f.timestamp) <= to_utc(query.end))
        ]
        fills.sort(key=lambda f: to_utc(f.timestamp), reverse=True)

        page = fills[query.offset:query.offset + query.limit]
        total = len(fills)

        summary = {
            "total_trades": total,
            "total_fees": sum(f.fee for f in fills),
            "avg_trade_size": round(safe_ratio(sum(f.size for f in fills), total), 4),
            "distribution": self._distribution(fills),
            "trade_frequency": round(total / self._days_span(query, all_fills), 2),
            "profit_factor": self._history_profit_factor(positions.values(), query),
        }
        summary.update(self._volume_24h(all_fills))

        return {
            "summary": summary,
            "data": [
                {**f.model_dump(mode="json"), "market": positions[f.position_id].market if f.position_id in positions else None}
                for f in page
            ],
            "pagination": {
                "total": total,
                "has_more": query.offset + query.limit < total,
            },
        }

    @staticmethod
    def _distribution(fills: list[Fill]) -> dict[str, int]:
        spot = sum(1 for f in fills if f.trade_type == TradeType.SPOT)
        perp = sum(1 for f in fills if f.trade_type == TradeType.PERP)
        total = spot + perp or 1
        return {"spot": round(spot / total * 100), "perp": round(perp / total * 100)}

    def _days_span(self, query: TradeHistoryQuery, fills: list[Fill]) -> float:
        if query.start and query.end:
            seconds = (to_utc(query.end) - to_utc(query.start)).total_seconds()
        elif fills:
            first = min(to_utc(f.timestamp) for f in fills)
            seconds = (self._clock() - first).total_seconds()
        else:
            return 1.0
        return max(1.0, seconds / 86_400)

    def _volume_24h(self, fills: list[Fill]) -> dict[str, float]:
        now = self._clock()
        day_ago = now - timedelta(hours=24)
        two_days_ago = now - timedelta(hours=48)

        current = sum(f.notional for f in fills if to_utc(f.timestamp) >= day_ago)
        previous = sum(f.notional for f in fills if two_days_ago <= to_utc(f.timestamp) < day_ago)

        if previous == 0:
            change = 100.0 if current > 0 else 0.0
        else:
            change = (current - previous) / previous * 100

        return {
            "net_volume_24h": round(current),
            "volume_change_24h": round(change, 1),
        }

    @staticmethod
    def _history_profit_factor(positions, query: TradeHistoryQuery) -> float:
        pnls = [
            p.realized_pnl for p in positions
            if p.status == PositionStatus.CLOSED
            and p.realized_pnl is not None
            and (query.market is None or p.market == query.market)
            and (query.start is None or (p.closed_at and to_utc(p.closed_at) >= to_utc(query.start)))
            and (query.end is None or (p.closed_at and to_utc(p.closed_at) <= to_utc(query.end)))
        ]
        gross_profit = sum(p for p in pnls if p > 0)
        gross_loss = abs(sum(p for p in pnls if p < 0))
        if gross_loss == 0:
            return 100.0 if gross_profit > 0 else 0.0
        return _r2(gross_profit / gross_loss)

    # ===== Leaderboard =====

    async def get_global_leaderboard(self, limit: int = 10) -> list[dict[str, Any]]:
        """
        Top wallets by realized PnL across every stored wallet

        Args:
            limit: Number of wallets returned

        Returns:
            Rows with the shortened wallet, realized PnL and win rate over
            closed positions, best first
        """
        rows = []
        for wallet_address in await self.store.list_wallets():
            positions = await self.store.list_positions(wallet_address)
            realized = sum(p.realized_pnl for p in positions if p.realized_pnl is not None)
            closed = [p for p in positions if p.status == PositionStatus.CLOSED]
            wins = sum(1 for p in closed if (p.realized_pnl or 0.0) > 0)

            rows.append({
                "wallet": f"{wallet_address[:4]}...{wallet_address[-4:]}",
                "wallet_address": wallet_address,
                "pnl": _r2(realized),
                "win_rate": _r2(safe_ratio(wins, len(closed)) * 100),
                "closed_positions": len(closed),
            })

        rows.sort(key=lambda r: (-r["pnl"], r["wallet_address"]))
        logger.debug(f"Leaderboard over {len(rows)} wallets")
        return rows[:limit]
