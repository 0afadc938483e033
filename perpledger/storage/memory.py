"""
In-memory store

Dict-backed Store for tests and single-process use. Enforces the same
constraints as the database store: unique fill signatures and fills only
under existing positions.
"""
from datetime import datetime
from typing import Iterable, Optional
from loguru import logger

from shared.models.base import StoreIntegrityError
from ..portfolio.aggregator import to_utc
from ..portfolio.models import Fill, Position, PositionStatus
from .base import Store, UpsertResult, fill_changes


class InMemoryStore(Store):
    """Store positions and fills in process memory"""

    def __init__(self):
        """Initialize empty store"""
        self.positions: dict[str, Position] = {}
        self.fills: dict[str, Fill] = {}  # signature -> Fill

        logger.info("Initialized InMemoryStore")

    async def ensure_position(self, position: Position) -> Position:
        existing = self.positions.get(position.id)
        if existing is not None:
            return existing.model_copy()

        self.positions[position.id] = position.model_copy()
        logger.debug(f"Created position {position.id}")
        return position.model_copy()

    async def get_position(self, position_id: str) -> Optional[Position]:
        position = self.positions.get(position_id)
        return position.model_copy() if position else None

    async def update_position(self, position: Position) -> None:
        if position.id not in self.positions:
            raise StoreIntegrityError(f"Position {position.id} does not exist")
        self.positions[position.id] = position.model_copy()

    async def list_positions(
        self,
        wallet_address: str,
        status: Optional[PositionStatus] = None,
        market: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None
    ) -> list[Position]:
        result = []
        for p in self.positions.values():
            if p.wallet_address != wallet_address:
                continue
            if status is not None and p.status != status:
                continue
            if market is not None and p.market != market:
                continue
            if created_from is not None and to_utc(p.created_at) < to_utc(created_from):
                continue
            if created_to is not None and to_utc(p.created_at) > to_utc(created_to):
                continue
            result.append(p.model_copy())

        return sorted(result, key=lambda p: (to_utc(p.created_at), p.id))

    async def list_wallets(self) -> list[str]:
        return sorted({p.wallet_address for p in self.positions.values()})

    async def upsert_fill(self, fill: Fill) -> UpsertResult:
        stored = self.fills.get(fill.signature)

        if stored is None:
            if fill.position_id not in self.positions:
                raise StoreIntegrityError(
                    f"Fill {fill.signature} references missing position {fill.position_id}"
                )
            self.fills[fill.signature] = fill.model_copy()
            return UpsertResult.INSERTED

        changes = fill_changes(stored, fill)
        if not changes:
            return UpsertResult.UNCHANGED

        self.fills[fill.signature] = stored.model_copy(update=changes)
        logger.debug(f"Corrected fill {fill.signature}: {changes}")
        return UpsertResult.UPDATED

    async def get_fills(self, signatures: Iterable[str]) -> dict[str, Fill]:
        return {
            sig: self.fills[sig].model_copy()
            for sig in signatures
            if sig in self.fills
        }

    async def list_fills(self, position_id: str) -> list[Fill]:
        fills = [f.model_copy() for f in self.fills.values() if f.position_id == position_id]
        return sorted(fills, key=lambda f: (to_utc(f.timestamp), f.signature))

    async def list_wallet_fills(
        self,
        wallet_address: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> list[Fill]:
        position_ids = {
            pid for pid, p in self.positions.items()
            if p.wallet_address == wallet_address
        }
        fills = []
        for f in self.fills.values():
            if f.position_id not in position_ids:
                continue
            if start is not None and to_utc(f.timestamp) < to_utc(start):
                continue
            if end is not None and to_utc(f.timestamp) > to_utc(end):
                continue
            fills.append(f.model_copy())

        return sorted(fills, key=lambda f: (to_utc(f.timestamp), f.signature))

    async def latest_fill_timestamp(self, wallet_address: str) -> Optional[datetime]:
        fills = await self.list_wallet_fills(wallet_address)
        return fills[-1].timestamp if fills else None

    def get_statistics(self) -> dict[str, int]:
        """Get store statistics"""
        return {
            "positions": len(self.positions),
            "fills": len(self.fills),
        }
