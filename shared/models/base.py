"""
Base abstract interfaces and error taxonomy shared across packages
"""
from abc import ABC, abstractmethod
from typing import Optional, TypeVar, Generic


# Type variables for generic interfaces
K = TypeVar('K')
V = TypeVar('V')


# ===== Errors =====


class PerpLedgerError(Exception):
    """Base class for all application errors"""
    pass


class SourceError(PerpLedgerError):
    """External source (RPC, price API) failed"""
    pass


class RateLimitedError(SourceError):
    """External source rejected the request with a rate limit"""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class DecodeError(PerpLedgerError):
    """Transaction log payload could not be decoded"""
    pass


class StoreError(PerpLedgerError):
    """Persistence operation failed"""
    pass


class StoreIntegrityError(StoreError):
    """Referential or uniqueness constraint violated"""
    pass


class InvalidWalletAddressError(PerpLedgerError, ValueError):
    """Caller supplied a missing or malformed wallet address"""
    pass


# ===== Abstract Base Interfaces =====


class ICacheProvider(ABC, Generic[K, V]):
    """Abstract interface for caching"""

    @abstractmethod
    def get(self, key: K) -> Optional[V]:
        """Get a fresh value from cache"""
        pass

    @abstractmethod
    def set(self, key: K, value: V) -> None:
        """Set value in cache"""
        pass

    @abstractmethod
    def delete(self, key: K) -> None:
        """Delete from cache"""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear entire cache"""
        pass
