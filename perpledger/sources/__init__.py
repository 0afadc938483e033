"""
External data sources

Components:
- ITransactionSource / SolanaRpcSource: Wallet history and transaction logs
- IPriceSource / CoinGeckoPriceSource: Mark prices
- TradeFetcher: History walk + decode into TradeEvents

Usage:
    source = SolanaRpcSource(settings.rpc)
    fetcher = TradeFetcher(source, EventDecoder(DecoderConfig(program_id=settings.rpc.program_id)))
    events = await fetcher.fetch_decoded_trades(wallet, limit=100, since=watermark)
"""

from .base import ITransactionSource, IPriceSource, SignatureInfo, RawTransaction
from .rpc import SolanaRpcSource
from .prices import CoinGeckoPriceSource
from .fetcher import TradeFetcher

__all__ = [
    "ITransactionSource",
    "IPriceSource",
    "SignatureInfo",
    "RawTransaction",
    "SolanaRpcSource",
    "CoinGeckoPriceSource",
    "TradeFetcher",
]
