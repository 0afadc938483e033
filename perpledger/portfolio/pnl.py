"""
PnL Engine

Marks a wallet's open positions to market:
- Replays each open position's fills for the live cost basis
- Prices every market in one batch request
- Falls back to a recently cached price, then to the cost basis itself,
  when the price source is unavailable

price_source on each row says which of these produced the mark.
"""
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Optional
from loguru import logger

from shared.config.settings import PriceSettings, SyncSettings
from shared.models.base import SourceError
from shared.utils.cache import TTLCache
from ..sources.base import IPriceSource
from ..storage.base import Store
from .models import PositionStatus
from .position import replay_cost_basis


class PriceSource(str, Enum):
    """Where a mark price came from"""
    LIVE = "live"
    CACHE = "cache"
    COST_BASIS = "cost_basis"


@dataclass
class WalletPerformance:
    """Mark-to-market view of one open position"""
    position_id: str
    market: str
    side: str
    entry_price: float
    current_price: float
    size: float
    unrealized_pnl: float
    realized_pnl: float
    price_source: PriceSource

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["price_source"] = self.price_source.value
        return data


class PnlEngine:
    """Unrealized and realized PnL for open positions"""

    def __init__(
        self,
        store: Store,
        price_source: IPriceSource,
        cache: Optional[TTLCache] = None,
        price_config: Optional[PriceSettings] = None,
        sync_config: Optional[SyncSettings] = None
    ):
        """
        Initialize PnL engine

        Args:
            store: Position and fill store
            price_source: Mark price source
            cache: Price cache (built from price_config if omitted)
            price_config: Price cache ttl and staleness limits
            sync_config: Epsilon thresholds
        """
        price_config = price_config or PriceSettings()
        sync_config = sync_config or SyncSettings()

        self.store = store
        self.price_source = price_source
        self.cache = cache if cache is not None else TTLCache(
            ttl=price_config.cache_ttl,
            max_stale=price_config.max_stale
        )
        self.close_epsilon = sync_config.close_epsilon
        self.flat_epsilon = sync_config.flat_epsilon

        logger.info(
            f"Initialized PnlEngine: cache_ttl={self.cache.ttl}s, max_stale={self.cache.max_stale}s"
        )

    async def get_prices(self, symbols: list[str]) -> dict[str, tuple[float, PriceSource]]:
        """
        Resolve mark prices for a batch of symbols

        Returns:
            symbol -> (price, source) for every symbol that could be priced;
            symbols missing from the result fall back to cost basis
        """
        marks: dict[str, tuple[float, PriceSource]] = {}
        missing = []

        for symbol in symbols:
            cached = self.cache.get(symbol)
            if cached is not None:
                marks[symbol] = (cached, PriceSource.CACHE)
            else:
                missing.append(symbol)

        if not missing:
            return marks

        try:
            live = await self.price_source.get_prices(missing)
            self.cache.set_many(live)
        except SourceError as e:
            logger.warning(f"Price source unavailable for {missing}: {e}")
            live = {}
        except Exception as e:
            logger.opt(exception=e).error(f"Price source failed for {missing}")
            live = {}

        for symbol in missing:
            if symbol in live:
                marks[symbol] = (live[symbol], PriceSource.LIVE)
                continue

            stale = self.cache.get_stale(symbol)
            if stale is not None:
                logger.debug(f"Using stale cached price for {symbol}")
                marks[symbol] = (stale, PriceSource.CACHE)

        return marks

    async def get_wallet_performance(self, wallet_address: str) -> list[WalletPerformance]:
        """
        Mark every open position of a wallet

        Args:
            wallet_address: Wallet to evaluate

        Returns:
            One row per open position that still has size or realized PnL
        """
        positions = await self.store.list_positions(wallet_address, status=PositionStatus.OPEN)
        if not positions:
            return []

        marks = await self.get_prices(sorted({p.market for p in positions}))

        rows = []
        for position in positions:
            fills = await self.store.list_fills(position.id)
            state = replay_cost_basis(fills, position.side, self.close_epsilon)
            net = abs(state.net_size)

            if net < self.flat_epsilon and abs(state.total_pnl) < self.flat_epsilon:
                continue

            avg = state.avg_cost
            mark, source = marks.get(position.market, (avg, PriceSource.COST_BASIS))
            if source == PriceSource.COST_BASIS:
                logger.debug(f"No price for {position.market}; marking {position.id} at cost basis")

            rows.append(WalletPerformance(
                position_id=position.id,
                market=position.market,
                side=position.side.value,
                entry_price=avg,
                current_price=mark,
                size=net,
                unrealized_pnl=(mark - avg) * net * position.side.direction,
                realized_pnl=state.total_pnl,
                price_source=source,
            ))

        logger.debug(f"Marked {len(rows)} open positions for {wallet_address[:8]}...")
        return rows

    async def get_total_unrealized(self, wallet_address: str) -> float:
        """Sum of unrealized PnL over the wallet's open positions"""
        rows = await self.get_wallet_performance(wallet_address)
        return sum(row.unrealized_pnl for row in rows)
