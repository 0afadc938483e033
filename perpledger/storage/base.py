"""
Abstract store for positions and fills

Storage technology is an implementation detail; the engine only relies on:
- Position ids are deterministic and create is idempotent
- Fill signatures are unique; re-upserting a known fill never duplicates it
- A fill cannot reference a missing position
"""
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from ..portfolio.models import Fill, Position, PositionStatus


class UpsertResult(str, Enum):
    """Outcome of a fill upsert"""
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


# Fill columns a re-delivered fill may correct
MUTABLE_FILL_FIELDS = ("fee", "funding", "soc_loss")


def fill_changes(stored: Fill, incoming: Fill) -> dict[str, float]:
    """Mutable fields that differ between a stored fill and a re-delivered one"""
    return {
        name: getattr(incoming, name)
        for name in MUTABLE_FILL_FIELDS
        if getattr(stored, name) != getattr(incoming, name)
    }


class Store(ABC):
    """Persistence interface for the sync, PnL and analytics engines"""

    # ===== Positions =====

    @abstractmethod
    async def ensure_position(self, position: Position) -> Position:
        """
        Create the position if its id is unknown

        Returns:
            The stored position (the existing row when it already existed)
        """
        pass

    @abstractmethod
    async def get_position(self, position_id: str) -> Optional[Position]:
        """Get position by id"""
        pass

    @abstractmethod
    async def update_position(self, position: Position) -> None:
        """
        Overwrite a stored position's fields

        Raises:
            StoreIntegrityError: If the position does not exist
        """
        pass

    @abstractmethod
    async def list_positions(
        self,
        wallet_address: str,
        status: Optional[PositionStatus] = None,
        market: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None
    ) -> list[Position]:
        """List a wallet's positions ordered by created_at"""
        pass

    @abstractmethod
    async def list_wallets(self) -> list[str]:
        """Every wallet with at least one stored position, sorted"""
        pass

    # ===== Fills =====

    @abstractmethod
    async def upsert_fill(self, fill: Fill) -> UpsertResult:
        """
        Insert a fill, or correct the mutable fields of an existing one

        The owning position of an existing fill is never changed.

        Raises:
            StoreIntegrityError: If the fill's position does not exist
        """
        pass

    @abstractmethod
    async def get_fills(self, signatures: Iterable[str]) -> dict[str, Fill]:
        """Look up stored fills by signature"""
        pass

    @abstractmethod
    async def list_fills(self, position_id: str) -> list[Fill]:
        """All fills of a position ordered by timestamp"""
        pass

    @abstractmethod
    async def list_wallet_fills(
        self,
        wallet_address: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> list[Fill]:
        """All fills of a wallet's positions ordered by timestamp"""
        pass

    @abstractmethod
    async def latest_fill_timestamp(self, wallet_address: str) -> Optional[datetime]:
        """Timestamp of the wallet's most recent fill, None if it has none"""
        pass

    async def get_fill(self, signature: str) -> Optional[Fill]:
        """Look up one fill by signature"""
        return (await self.get_fills([signature])).get(signature)

    async def close(self) -> None:
        """Release resources"""
        pass
