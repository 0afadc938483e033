"""
Sync Orchestrator

Reconciles a wallet's on-chain trade history into stored positions:

    IDLE -> FETCHING -> DECODING -> AGGREGATING -> PERSISTING -> NOTIFYING -> IDLE

Running a sync twice over the same data is a no-op: positions are created
idempotently, fills are upserted by signature, and every touched position is
recomputed from its complete fill set.
"""
import asyncio
import contextlib
import re
from enum import Enum
from typing import Optional
from loguru import logger
from pydantic import BaseModel, Field

from shared.config.settings import SyncSettings
from shared.models.base import InvalidWalletAddressError
from ..events.trade import TradeEvent
from ..portfolio.aggregator import FillAssignment, PositionAggregator
from ..portfolio.models import Fill, Position, PositionStatus
from ..sources.fetcher import TradeFetcher
from ..storage.base import Store, UpsertResult
from .notifier import BackgroundNotifier


WALLET_ADDRESS_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def validate_wallet_address(wallet_address: str) -> str:
    """
    Check a base58 wallet address

    Raises:
        InvalidWalletAddressError: If the address is missing or malformed
    """
    if not isinstance(wallet_address, str) or not WALLET_ADDRESS_PATTERN.match(wallet_address):
        raise InvalidWalletAddressError(f"Invalid wallet address: {wallet_address!r}")
    return wallet_address


class SyncState(str, Enum):
    """Per-wallet sync phase"""
    IDLE = "idle"
    FETCHING = "fetching"
    DECODING = "decoding"
    AGGREGATING = "aggregating"
    PERSISTING = "persisting"
    NOTIFYING = "notifying"


class SyncResult(BaseModel):
    """Outcome of one sync call"""
    success: bool = True
    positions_updated: int = Field(default=0, description="Positions recomputed and written back")
    fills_processed: int = Field(default=0, description="Fills newly inserted")
    fills_seen: int = Field(default=0, description="Decoded fills, including already stored ones")
    closed_positions: list[str] = Field(default_factory=list, description="Positions closed by this sync")


class SyncOrchestrator:
    """
    Wallet sync coordinator

    Per-transaction fetch and decode failures are contained by the fetcher.
    Persistence failures abort the call and propagate; the sync can be
    retried safely because every write is idempotent.
    """

    def __init__(
        self,
        fetcher: TradeFetcher,
        store: Store,
        notifier: Optional[BackgroundNotifier] = None,
        aggregator: Optional[PositionAggregator] = None,
        config: Optional[SyncSettings] = None
    ):
        """
        Initialize orchestrator

        Args:
            fetcher: Trade fetcher (transaction source + decoder)
            store: Position and fill store
            notifier: Position-closed notifier (optional)
            aggregator: Position aggregator (built from config if omitted)
            config: Sync configuration
        """
        self.config = config or SyncSettings()
        self.fetcher = fetcher
        self.store = store
        self.notifier = notifier
        self.aggregator = aggregator or PositionAggregator(epsilon=self.config.close_epsilon)

        self._states: dict[str, SyncState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

        logger.info(
            f"Initialized SyncOrchestrator: default_limit={self.config.default_limit}, "
            f"serialize_wallets={self.config.serialize_wallets}"
        )

    def state_of(self, wallet_address: str) -> SyncState:
        """Current sync phase of a wallet"""
        return self._states.get(wallet_address, SyncState.IDLE)

    def _set_state(self, wallet_address: str, state: SyncState) -> None:
        self._states[wallet_address] = state
        logger.debug(f"Sync {wallet_address[:8]}...: {state.value}")

    def _wallet_lock(self, wallet_address: str):
        if not self.config.serialize_wallets:
            return contextlib.nullcontext()
        if wallet_address not in self._locks:
            self._locks[wallet_address] = asyncio.Lock()
        return self._locks[wallet_address]

    async def sync_wallet(self, wallet_address: str, limit: Optional[int] = None) -> SyncResult:
        """
        Sync a wallet's recent trades into the store

        Args:
            wallet_address: Base58 wallet address
            limit: Maximum transactions to inspect (defaults to config)

        Returns:
            SyncResult

        Raises:
            InvalidWalletAddressError: Before any work, if the address is malformed
            ValueError: Before any work, if limit is below 1
            StoreError: If persistence fails
        """
        validate_wallet_address(wallet_address)
        if limit is None:
            limit = self.config.default_limit
        elif limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")

        async with self._wallet_lock(wallet_address):
            try:
                return await self._sync(wallet_address, limit)
            finally:
                self._set_state(wallet_address, SyncState.IDLE)

    async def _sync(self, wallet_address: str, limit: int) -> SyncResult:
        self._set_state(wallet_address, SyncState.FETCHING)
        since = await self.store.latest_fill_timestamp(wallet_address)
        transactions = await self.fetcher.fetch_transactions(wallet_address, limit, since)

        self._set_state(wallet_address, SyncState.DECODING)
        events = self._unique(self.fetcher.decode(transactions))
        if not events:
            logger.info(f"No new trades for {wallet_address[:8]}... since {since}")
            return SyncResult()

        known = await self.store.get_fills([e.fill_key for e in events])
        new_events = [e for e in events if e.fill_key not in known]
        redelivered = [e for e in events if e.fill_key in known]

        self._set_state(wallet_address, SyncState.AGGREGATING)
        open_positions = await self.store.list_positions(wallet_address, status=PositionStatus.OPEN)
        assignments = self.aggregator.assign(
            new_events,
            wallet_address,
            self.aggregator.books_from_positions(open_positions)
        )
        groups = self.aggregator.group(assignments)

        self._set_state(wallet_address, SyncState.PERSISTING)
        result = await self._persist(wallet_address, groups, redelivered, known)
        result.fills_seen = len(events)

        if result.closed_positions:
            self._set_state(wallet_address, SyncState.NOTIFYING)
            self._notify(result.closed_positions)

        logger.info(
            f"Synced {wallet_address[:8]}...: {result.fills_processed} new fills, "
            f"{result.positions_updated} positions updated, "
            f"{len(result.closed_positions)} closed"
        )
        return result

    @staticmethod
    def _unique(events: list[TradeEvent]) -> list[TradeEvent]:
        """Drop duplicate deliveries of the same fill within one batch"""
        seen: set[str] = set()
        unique = []
        for event in events:
            if event.fill_key in seen:
                continue
            seen.add(event.fill_key)
            unique.append(event)
        return unique

    async def _persist(
        self,
        wallet_address: str,
        groups: dict[str, list[FillAssignment]],
        redelivered: list[TradeEvent],
        known: dict[str, Fill]
    ) -> SyncResult:
        result = SyncResult()
        touched: set[str] = set()
        status_before: dict[str, Optional[PositionStatus]] = {}

        for position_id, group in groups.items():
            existing = await self.store.get_position(position_id)
            status_before[position_id] = existing.status if existing else None
            if existing is None:
                await self.store.ensure_position(
                    self.aggregator.new_position(position_id, group, wallet_address)
                )

            for assignment in group:
                if await self.store.upsert_fill(assignment.to_fill()) == UpsertResult.INSERTED:
                    result.fills_processed += 1
            touched.add(position_id)

        # Re-delivered fills keep their position; only corrected amounts flow through
        for event in redelivered:
            stored = known[event.fill_key]
            corrected = stored.model_copy(update={
                "fee": event.fee,
                "funding": event.funding,
                "soc_loss": event.soc_loss,
            })
            if await self.store.upsert_fill(corrected) == UpsertResult.UPDATED:
                if stored.position_id not in status_before:
                    existing = await self.store.get_position(stored.position_id)
                    status_before[stored.position_id] = existing.status if existing else None
                touched.add(stored.position_id)

        for position_id in sorted(touched):
            position = await self.store.get_position(position_id)
            if position is None:
                continue
            updated = await self._recompute(position)
            result.positions_updated += 1

            was_open = status_before.get(position_id) in (None, PositionStatus.OPEN)
            if was_open and updated.status == PositionStatus.CLOSED:
                result.closed_positions.append(position_id)

        return result

    async def _recompute(self, position: Position) -> Position:
        fills = await self.store.list_fills(position.id)
        updated = self.aggregator.recompute(position, fills)
        await self.store.update_position(updated)
        return updated

    def _notify(self, position_ids: list[str]) -> None:
        if self.notifier is None:
            return
        for position_id in position_ids:
            self.notifier.dispatch(position_id)
