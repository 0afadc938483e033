"""
Wallet synchronization

Components:
- SyncOrchestrator: Fetch -> decode -> aggregate -> persist -> notify
- BackgroundNotifier: Fire-and-forget position-closed notifications

Usage:
    orchestrator = SyncOrchestrator(fetcher, store, BackgroundNotifier(LoggingSink()))
    result = await orchestrator.sync_wallet(wallet, limit=100)
"""

from .orchestrator import (
    SyncOrchestrator,
    SyncResult,
    SyncState,
    validate_wallet_address,
    WALLET_ADDRESS_PATTERN,
)
from .notifier import (
    IPositionClosedSink,
    LoggingSink,
    CallbackSink,
    BackgroundNotifier,
)

__all__ = [
    "SyncOrchestrator",
    "SyncResult",
    "SyncState",
    "validate_wallet_address",
    "WALLET_ADDRESS_PATTERN",
    "IPositionClosedSink",
    "LoggingSink",
    "CallbackSink",
    "BackgroundNotifier",
]
