"""
Base interfaces for external data sources

Two collaborators feed the engine:
- ITransactionSource: wallet transaction history and per-transaction logs
- IPriceSource: current mark prices for market symbols

Implementations raise SourceError (or RateLimitedError) on failure;
"no data" is an empty result, never an error.
"""
from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field


class SignatureInfo(BaseModel):
    """One entry of a wallet's transaction history"""
    signature: str
    block_time: Optional[int] = Field(default=None, description="Unix seconds, None if the node has none")
    slot: Optional[int] = None
    err: Optional[Any] = Field(default=None, description="Transaction error, None if it succeeded")

    @property
    def succeeded(self) -> bool:
        return self.err is None


class RawTransaction(BaseModel):
    """The parts of a confirmed transaction the decoder needs"""
    signature: str
    block_time: Optional[int] = None
    log_lines: list[str] = Field(default_factory=list)
    fee: int = Field(default=0, description="Network fee in lamports")
    err: Optional[Any] = None


class ITransactionSource(ABC):
    """Interface for transaction history providers"""

    @abstractmethod
    async def list_signatures(
        self,
        wallet_address: str,
        limit: int,
        before: Optional[str] = None
    ) -> list[SignatureInfo]:
        """
        List a wallet's transaction signatures, newest first

        Args:
            wallet_address: Wallet to list
            limit: Maximum number of signatures
            before: Only return signatures older than this one

        Returns:
            Signatures, newest first
        """
        pass

    @abstractmethod
    async def get_transaction(self, signature: str) -> Optional[RawTransaction]:
        """
        Get one transaction

        Returns:
            The transaction, or None if the node does not know it
        """
        pass

    async def close(self) -> None:
        """Release resources"""
        pass


class IPriceSource(ABC):
    """Interface for mark price providers"""

    @abstractmethod
    async def get_prices(self, symbols: list[str]) -> dict[str, float]:
        """
        Get current prices for a batch of market symbols

        Symbols the source cannot price are omitted from the result.
        """
        pass

    async def close(self) -> None:
        """Release resources"""
        pass
