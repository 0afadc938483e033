"""
PerpLedger

Event-sourced position reconstruction and PnL accounting for on-chain
perpetual-futures trading activity.
"""

__version__ = "0.1.0"
